from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List

class Settings(BaseSettings):
    """
    应用程序配置设置类，从环境变量或.env文件加载所有配置项。
    使用Pydantic进行数据验证和类型检查。

    包含服务器配置、数据库连接、Redis变更推送以及训练树的行为开关。
    """
    # Server
    BACKEND_PORT: int = 8000

    # Model configuration tells Pydantic where to find the .env file.
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding='utf-8',
        extra='ignore',
        case_sensitive=True
    )

    PROJECT_NAME: str = "Micro-Learning Tracker"
    API_V1_STR: str = "/api/v1"

    BACKEND_CORS_ORIGINS: List[str] = ["*"]

    DATABASE_URL: str = "sqlite:///./microlearning.db"

    # Logging
    LOG_LEVEL: str = "INFO"

    # Redis pub/sub used to fan out training item changes to websocket clients
    REDIS_URL: str = "redis://localhost:6379/0"
    ENABLE_REDIS_CHANGE_FEED: bool = False
    CHANGE_CHANNEL_PREFIX: str = "training:user:"

    # Training tree behaviour
    DEFAULT_DURATION_MINUTES: int = 30
    # True: 重复完成时保留首次完成时间; False: 每次达到100%都覆盖 completed_at
    PRESERVE_FIRST_COMPLETION: bool = True

    # roadmap.sh 导入：从 developer-roadmap 仓库读取 Markdown（GitHub contents API）
    ROADMAP_CONTENT_URL: str = (
        "https://api.github.com/repos/kamranahmedse/developer-roadmap/contents/"
        "src/data/roadmaps/{roadmap_id}/{roadmap_id}.md"
    )
    ROADMAP_FETCH_TIMEOUT: float = 10.0

# Create a single, globally accessible instance of the settings.
settings = Settings()
