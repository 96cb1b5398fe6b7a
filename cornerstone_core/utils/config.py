# cornerstone_core/utils/config.py
# Copyright (c) 2026 Monolink Systems
# Licensed under AGPLv3 (Nebula Open Source Edition, non-corporate)

import yaml
from pathlib import Path
from pydantic_settings import BaseSettings

CONFIG_PATH = Path(__file__).parent.parent / "serviceconfig.yaml"

DEFAULT_PLUGIN_TIMEOUT = 300
DEFAULT_PLUGIN_WORK_DIR = "./plugins"


def load_yaml_config(config_path: str | Path | None = None):
    target = Path(config_path) if config_path else CONFIG_PATH
    if target.exists():
        with open(target, "r", encoding="utf-8") as f:
            return yaml.safe_load(f) or {}
    return {}

class Settings(BaseSettings):
    APP_NAME: str = "Cornerstone Core"
    APP_VERSION: str = "0.1.0"
    LOG_LEVEL: str = "INFO"
    LOG_DIR: str = "logs"

    SERVER_HOST: str = "127.0.0.1"
    SERVER_PORT: int = 8000
    DEBUG: bool = False

    DATABASE_PATH: str = "storage/databases/cornerstone.db"
    SESSION_SECRET: str = ""
    SESSION_TTL_SECONDS: int = 3600

    # Fallbacks used when the app_settings row has not been created yet
    PLUGIN_TIMEOUT: int = DEFAULT_PLUGIN_TIMEOUT
    PLUGIN_WORK_DIR: str = DEFAULT_PLUGIN_WORK_DIR

    class Config:
        env_prefix = "CORNERSTONE_"
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"

yaml_config = load_yaml_config()
settings = Settings(**yaml_config.get("server", {}))
