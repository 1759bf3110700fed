import logging
from typing import Generator

import redis
import redis.asyncio as aioredis
from fastapi import Depends
from sqlalchemy.orm import Session

from microlearning.core.change_feed import ChangeFeed, create_change_feed
from microlearning.core.config import settings
from microlearning.db.database import get_db
from microlearning.services.review_period_service import ReviewPeriodService
from microlearning.services.training_service import TrainingService
from microlearning.services.training_store import SqlTrainingItemStore
from microlearning.services.tree_cache import TrainingTreeCache

logger = logging.getLogger(__name__)

_redis_client_instance = None
_aioredis_instance = None
_change_feed_instance = None


def get_redis_client() -> redis.Redis:
    """
    获取 Redis 客户端单例实例（同步，用于发布变更事件）
    """
    global _redis_client_instance
    if _redis_client_instance is None:
        _redis_client_instance = redis.from_url(settings.REDIS_URL, decode_responses=False)
    return _redis_client_instance


def get_aioredis() -> aioredis.Redis:
    """
    获取异步 Redis 客户端单例实例（用于 pub/sub 订阅）
    """
    global _aioredis_instance
    if _aioredis_instance is None:
        _aioredis_instance = aioredis.from_url(settings.REDIS_URL, decode_responses=True)
    return _aioredis_instance


def get_change_feed() -> ChangeFeed:
    """
    获取进程内变更订阅单例；开启 ENABLE_REDIS_CHANGE_FEED 时同时发布到 Redis
    """
    global _change_feed_instance
    if _change_feed_instance is None:
        redis_client = get_redis_client() if settings.ENABLE_REDIS_CHANGE_FEED else None
        _change_feed_instance = create_change_feed(redis_client)
    return _change_feed_instance


def get_training_store(db: Session = Depends(get_db)) -> SqlTrainingItemStore:
    return SqlTrainingItemStore(db, change_feed=get_change_feed())


def get_training_service(store: SqlTrainingItemStore = Depends(get_training_store)) -> TrainingService:
    """
    获取训练条目服务实例（每个请求一个，绑定请求的数据库会话）
    """
    return TrainingService(store)


def get_review_period_service(
    db: Session = Depends(get_db),
    training_service: TrainingService = Depends(get_training_service),
) -> ReviewPeriodService:
    return ReviewPeriodService(db, training_service)


def get_tree_cache(
    owner_id: str,
    training_service: TrainingService = Depends(get_training_service),
) -> Generator[TrainingTreeCache, None, None]:
    """
    获取某个用户的训练树缓存（每个 websocket 连接一个）。

    缓存挂在进程内的变更订阅上，连接期间随写入增量更新；连接结束时解除订阅。
    """
    cache = TrainingTreeCache(owner_id, loader=lambda: training_service.store.select(owner_id=owner_id))
    cache.attach(get_change_feed())
    try:
        yield cache
    finally:
        cache.detach()
