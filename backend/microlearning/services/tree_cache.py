"""
训练树缓存

显式持有某个用户当前的训练森林，代替全局的流式状态。

- refresh() / refresh_async(): 重新加载快照并重建森林
- subscribe(callback): 森林变化后通知观察者，返回取消订阅函数
- attach(change_feed): 收到存储层变更事件时增量更新

并发刷新时，每次刷新在发起时领取一个递增序号，只有当没有更晚发起的刷新
已经生效时结果才会被应用：最终的森林总是对应最后发起且完成的那次加载。
变更事件同样领取序号，因此在它之前发起的刷新不会覆盖它。
"""
import asyncio
import itertools
import logging
import threading
from typing import Awaitable, Callable, Dict, Iterable, Optional

from microlearning.core.change_feed import ChangeFeed
from microlearning.core.exceptions import TrainingError
from microlearning.schemas.change_event import ChangeEvent, ChangeType
from microlearning.schemas.training_item import TrainingItemRecord
from microlearning.services.training_tree import TrainingForest, build_tree

logger = logging.getLogger(__name__)

Loader = Callable[[], Iterable[TrainingItemRecord]]
AsyncLoader = Callable[[], Awaitable[Iterable[TrainingItemRecord]]]
TreeObserver = Callable[[TrainingForest], None]


class TrainingTreeCache:
    def __init__(self, owner_id: str, loader: Optional[Loader] = None):
        self.owner_id = owner_id
        self.loader = loader
        self._forest = TrainingForest()
        self._records: Dict[str, TrainingItemRecord] = {}
        self._observers: Dict[int, TreeObserver] = {}
        self._observer_tokens = itertools.count()
        self._sequence = itertools.count(1)
        self._applied_seq = 0
        self._lock = threading.Lock()
        self._detach: Optional[Callable[[], None]] = None

    @property
    def forest(self) -> TrainingForest:
        return self._forest

    @property
    def version(self) -> int:
        """最近一次生效的序号"""
        return self._applied_seq

    def _next_seq(self) -> int:
        with self._lock:
            return next(self._sequence)

    # ------------------------------------------------------------------
    # 观察者
    # ------------------------------------------------------------------
    def subscribe(self, observer: TreeObserver) -> Callable[[], None]:
        token = next(self._observer_tokens)
        self._observers[token] = observer

        def unsubscribe():
            self._observers.pop(token, None)

        return unsubscribe

    def _notify(self) -> None:
        for observer in list(self._observers.values()):
            try:
                observer(self._forest)
            except Exception as e:
                logger.error(f"Tree observer failed for {self.owner_id}: {e}", exc_info=True)

    # ------------------------------------------------------------------
    # 刷新
    # ------------------------------------------------------------------
    def _apply(self, seq: int, records: Iterable[TrainingItemRecord]) -> bool:
        records = list(records)
        with self._lock:
            if seq < self._applied_seq:
                logger.debug(f"Discarding stale refresh #{seq} (applied #{self._applied_seq})")
                return False
            self._applied_seq = seq
            self._records = {record.id: record for record in records}
            self._forest = build_tree(records)
        self._notify()
        return True

    def refresh(self, loader: Optional[Loader] = None) -> TrainingForest:
        loader = loader or self.loader
        if loader is None:
            raise TrainingError("TrainingTreeCache.refresh() needs a loader")
        seq = self._next_seq()
        self._apply(seq, loader())
        return self._forest

    async def refresh_async(self, loader: AsyncLoader) -> TrainingForest:
        seq = self._next_seq()
        records = await loader()
        self._apply(seq, records)
        return self._forest

    async def refresh_in_thread(self, loader: Optional[Loader] = None) -> TrainingForest:
        """在线程池中执行同步加载（例如 SQLAlchemy 查询），不阻塞事件循环"""
        loader = loader or self.loader
        if loader is None:
            raise TrainingError("TrainingTreeCache.refresh_in_thread() needs a loader")
        seq = self._next_seq()
        records = await asyncio.to_thread(loader)
        self._apply(seq, records)
        return self._forest

    # ------------------------------------------------------------------
    # 变更事件
    # ------------------------------------------------------------------
    def apply_change(self, event: ChangeEvent) -> None:
        if event.owner_id != self.owner_id:
            return
        records = dict(self._records)
        if event.event_type == ChangeType.DELETE:
            records.pop(event.item_id, None)
        elif event.record is not None:
            records[event.item_id] = event.record
        else:
            return
        self._apply(self._next_seq(), records.values())

    def attach(self, change_feed: ChangeFeed) -> Callable[[], None]:
        """订阅变更流；重复调用会先解除上一次订阅"""
        self.detach()
        self._detach = change_feed.subscribe(self.owner_id, self.apply_change)
        return self.detach

    def detach(self) -> None:
        if self._detach is not None:
            self._detach()
            self._detach = None
