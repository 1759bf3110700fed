import logging
import threading
from typing import Callable, Dict, List, Optional

from microlearning.core.config import settings
from microlearning.schemas.change_event import ChangeEvent

logger = logging.getLogger(__name__)

ChangeCallback = Callable[[ChangeEvent], None]


class ChangeFeed:
    """
    进程内的训练条目变更订阅。

    订阅者可以按 owner_id 过滤（为空表示接收全部事件）；
    某个回调抛出的异常只记录日志，不影响其他订阅者。
    """

    def __init__(self):
        self._subscribers: Dict[int, tuple] = {}
        self._next_token = 0
        self._lock = threading.Lock()

    def subscribe(self, owner_id: Optional[str], on_change: ChangeCallback) -> Callable[[], None]:
        """注册回调，返回取消订阅的函数"""
        with self._lock:
            token = self._next_token
            self._next_token += 1
            self._subscribers[token] = (owner_id, on_change)

        def unsubscribe():
            with self._lock:
                self._subscribers.pop(token, None)

        return unsubscribe

    def publish(self, event: ChangeEvent) -> None:
        with self._lock:
            targets = [cb for owner, cb in self._subscribers.values() if owner is None or owner == event.owner_id]
        for callback in targets:
            try:
                callback(event)
            except Exception as e:
                logger.error(f"Change subscriber failed for {event.event_type} {event.item_id}: {e}", exc_info=True)

    def __len__(self) -> int:
        return len(self._subscribers)


class RedisChangePublisher:
    """
    将变更事件发布到 Redis 频道 `{prefix}{owner_id}`，
    由各个 API 进程中的 redis_subscriber 转发给 websocket 客户端。
    """

    def __init__(self, redis_client, channel_prefix: str = None):
        self.redis_client = redis_client
        self.channel_prefix = channel_prefix or settings.CHANGE_CHANNEL_PREFIX

    def channel_for(self, owner_id: str) -> str:
        return f"{self.channel_prefix}{owner_id}"

    def __call__(self, event: ChangeEvent) -> None:
        self.redis_client.publish(self.channel_for(event.owner_id), event.model_dump_json())


def create_change_feed(redis_client=None) -> ChangeFeed:
    """创建变更订阅；提供 Redis 客户端时同时挂上 Redis 发布者"""
    feed = ChangeFeed()
    if redis_client is not None:
        feed.subscribe(None, RedisChangePublisher(redis_client))
        logger.info("Redis change publisher attached")
    return feed
