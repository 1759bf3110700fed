import logging

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect

from microlearning.config.dependency_injection import get_tree_cache
from microlearning.core.websocket_manager import ws_manager
from microlearning.schemas.change_event import TreeSnapshot
from microlearning.services.tree_cache import TrainingTreeCache

logger = logging.getLogger(__name__)

router = APIRouter()

REFRESH_MESSAGE = "refresh"


async def send_snapshot(websocket: WebSocket, cache: TrainingTreeCache):
    snapshot = TreeSnapshot(owner_id=cache.owner_id, version=cache.version, tree=cache.forest.to_nested())
    await websocket.send_text(snapshot.model_dump_json())


@router.websocket("/training/{owner_id}")
async def training_changes(
        websocket: WebSocket,
        owner_id: str,
        cache: TrainingTreeCache = Depends(get_tree_cache)
):
    """
    推送该用户训练条目的变更。

    连接建立后先发送一次完整森林（TreeSnapshot），之后每次写入推送一条 ChangeEvent JSON。
    客户端发送 "refresh" 会重新加载并再次收到完整森林，其他消息只用于保持连接。
    """
    await ws_manager.connect(owner_id, websocket)
    logger.info(f"WebSocket connected for {owner_id}")
    try:
        await cache.refresh_in_thread()
        await send_snapshot(websocket, cache)
        while True:
            message = await websocket.receive_text()
            if message.strip().lower() == REFRESH_MESSAGE:
                await cache.refresh_in_thread()
                await send_snapshot(websocket, cache)
    except WebSocketDisconnect:
        logger.info(f"WebSocket disconnected for {owner_id}")
    finally:
        await ws_manager.disconnect(owner_id, websocket)
