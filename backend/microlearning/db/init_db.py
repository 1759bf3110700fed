#!/usr/bin/env python3
"""
数据库初始化脚本

这个脚本用于创建所有数据库表。应用启动时也会调用 init_db()，已存在的表不会被修改。

    python -m microlearning.db.init_db
"""
import logging

from sqlalchemy.engine import Engine

from microlearning.db.base_class import Base
from microlearning.core.config import settings

# 导入所有模型，确保它们被正确注册
from microlearning.models.training_item import TrainingItem  # noqa: F401
from microlearning.models.review_period import ReviewPeriod  # noqa: F401

logger = logging.getLogger(__name__)


def init_db(bind: Engine = None):
    """初始化数据库，创建所有表"""
    if bind is None:
        from microlearning.db.database import engine as bind
    logger.info(f"Using database URL: {bind.url.render_as_string(hide_password=True)}")
    # 创建所有表
    Base.metadata.create_all(bind=bind)
    logger.info("数据库表创建成功！")


if __name__ == "__main__":
    logging.basicConfig(level=settings.LOG_LEVEL)
    init_db()
