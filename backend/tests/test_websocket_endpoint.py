"""
训练条目 websocket 端点测试

连接后先收到完整森林，之后每次写入收到一条变更事件。
"""

OWNER = "user-1"
API = "/api/v1/training"


def create(client, item_id, parent_id=None):
    response = client.post(f"{API}/items", json={
        "id": item_id, "owner_id": OWNER, "parent_id": parent_id, "title": f"Item {item_id}"
    })
    assert response.status_code == 201, response.text


def test_snapshot_then_change_events(client):
    create(client, "a")
    create(client, "b", "a")

    with client.websocket_connect(f"/ws/training/{OWNER}") as websocket:
        snapshot = websocket.receive_json()
        assert snapshot["event_type"] == "snapshot"
        assert snapshot["owner_id"] == OWNER
        assert [node["id"] for node in snapshot["tree"]] == ["a"]
        assert [child["id"] for child in snapshot["tree"][0]["children"]] == ["b"]

        response = client.patch(f"{API}/items/b/progress", json={"progress_percentage": 40})
        assert response.status_code == 200

        event = websocket.receive_json()
        assert event["event_type"] == "update"
        assert event["item_id"] == "b"
        assert event["record"]["progress_percentage"] == 40
        assert event["record"]["status"] == "in_progress"

        websocket.send_text("refresh")
        refreshed = websocket.receive_json()
        assert refreshed["event_type"] == "snapshot"
        assert refreshed["tree"][0]["children"][0]["progress_percentage"] == 40
        assert refreshed["version"] > snapshot["version"]


def test_events_of_other_users_are_not_pushed(client):
    with client.websocket_connect(f"/ws/training/{OWNER}") as websocket:
        assert websocket.receive_json()["tree"] == []

        response = client.post(f"{API}/items", json={"id": "x", "owner_id": "someone-else", "title": "X"})
        assert response.status_code == 201
        create(client, "mine")

        event = websocket.receive_json()
        assert event["event_type"] == "insert"
        assert event["item_id"] == "mine"
