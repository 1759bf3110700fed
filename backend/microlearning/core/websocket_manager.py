import asyncio
import logging
from typing import Dict, Set
from fastapi import WebSocket

from microlearning.schemas.change_event import ChangeEvent

logger = logging.getLogger(__name__)


class WebSocketManager:
    """按用户管理websocket连接，同一用户可以有多个连接（多个标签页）"""

    def __init__(self):
        self.active_connections: Dict[str, Set[WebSocket]] = {}
        self._lock = asyncio.Lock() # 并发锁

    async def connect(self, owner_id: str, websocket: WebSocket):
        await websocket.accept()
        async with self._lock: # 获取锁
            self.active_connections.setdefault(owner_id, set()).add(websocket)

    async def disconnect(self, owner_id: str, websocket: WebSocket):
        async with self._lock: # 获取锁
            sockets = self.active_connections.get(owner_id)
            if sockets is not None:
                sockets.discard(websocket)
                if not sockets:
                    del self.active_connections[owner_id]

    async def send_to_user(self, owner_id: str, message: str):
        """发送给该用户的所有连接；发送失败的连接会被移除，不影响其他连接"""
        async with self._lock:
            sockets = list(self.active_connections.get(owner_id, ()))
        for websocket in sockets:
            try:
                await websocket.send_text(message)
            except Exception as e:
                logger.warning(f"WebSocket send to {owner_id} failed, dropping connection: {e}")
                await self.disconnect(owner_id, websocket)


class WebSocketForwarder:
    """
    ChangeFeed 订阅者：把变更事件转发给 websocket 客户端。

    发布可能发生在线程池里的同步接口中，因此发送协程总是通过
    run_coroutine_threadsafe 提交到应用的事件循环。
    未开启 Redis 变更订阅时由 lifespan 挂到进程内的 ChangeFeed 上。
    """

    def __init__(self, manager: WebSocketManager, loop: asyncio.AbstractEventLoop):
        self.manager = manager
        self.loop = loop

    def __call__(self, event: ChangeEvent) -> None:
        future = asyncio.run_coroutine_threadsafe(
            self.manager.send_to_user(event.owner_id, event.model_dump_json()), self.loop
        )
        future.add_done_callback(self._log_failure)

    @staticmethod
    def _log_failure(future) -> None:
        if not future.cancelled() and future.exception() is not None:
            logger.error(f"Forwarding change event failed: {future.exception()}")


ws_manager = WebSocketManager()
