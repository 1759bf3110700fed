from microlearning.core.config import Settings, settings


def test_settings_are_loaded_correctly():
    """
    测试关键配置项是否从 .env 或环境变量中正确加载到 settings 对象
    """
    required_attributes = [
        "PROJECT_NAME",
        "API_V1_STR",
        "DATABASE_URL",
        "REDIS_URL",
        "CHANGE_CHANNEL_PREFIX",
    ]

    missing_or_empty_settings = [attr for attr in required_attributes if not getattr(settings, attr, None)]

    assert not missing_or_empty_settings, (
        f"The following required settings are missing or empty in your configuration "
        f"(check .env file or environment variables): {missing_or_empty_settings}"
    )


def test_environment_overrides_defaults(monkeypatch):
    monkeypatch.setenv("PRESERVE_FIRST_COMPLETION", "false")
    monkeypatch.setenv("DEFAULT_DURATION_MINUTES", "45")
    monkeypatch.setenv("BACKEND_CORS_ORIGINS", '["http://localhost:5173"]')

    overridden = Settings(_env_file=None)

    assert overridden.PRESERVE_FIRST_COMPLETION is False
    assert overridden.DEFAULT_DURATION_MINUTES == 45
    assert overridden.BACKEND_CORS_ORIGINS == ["http://localhost:5173"]


def test_test_environment_uses_memory_database():
    assert settings.DATABASE_URL == "sqlite://"
    assert settings.ENABLE_REDIS_CHANGE_FEED is False
