import asyncio
import logging
from microlearning.config.dependency_injection import get_aioredis
from microlearning.core.config import settings
from microlearning.core.websocket_manager import ws_manager
from microlearning.schemas.change_event import ChangeEvent

logger = logging.getLogger(__name__)


async def dispatch_message(message: dict) -> bool:
    """
    处理一条 pub/sub 消息，返回是否转发给了 websocket。

    频道格式为 `{CHANGE_CHANNEL_PREFIX}{owner_id}`，消息体是 ChangeEvent 的 JSON。
    """
    # 只处理模式消息
    if message["type"] != "pmessage":
        return False
    channel = message["channel"]
    if isinstance(channel, bytes):
        channel = channel.decode()
    raw_data = message["data"]
    if isinstance(raw_data, bytes):
        raw_data = raw_data.decode()

    try:
        ChangeEvent.model_validate_json(raw_data)
    except ValueError:
        logger.warning(f"收到无效的变更消息: {raw_data} (channel={channel})")
        return False

    owner_id = channel[len(settings.CHANGE_CHANNEL_PREFIX):]
    logger.debug(f"准备分发变更给用户 {owner_id}")
    await ws_manager.send_to_user(owner_id, raw_data)
    return True


async def redis_subscriber():
    redis = get_aioredis()
    pubsub = redis.pubsub()
    pattern = f"{settings.CHANGE_CHANNEL_PREFIX}*"
    await pubsub.psubscribe(pattern)
    logger.info(f"已订阅 {pattern}")
    try:
        async for message in pubsub.listen():
            try:
                await dispatch_message(message)
            except Exception as e:
                logger.error(f"处理消息出错: {e}", exc_info=True)
    except asyncio.CancelledError:
        await pubsub.punsubscribe(pattern)
        raise
