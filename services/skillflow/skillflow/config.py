"""全局配置加载模块：从环境变量构建运行参数并提供缓存访问。"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _csv_to_list(value: str) -> list[str]:
    """将逗号分隔字符串转换为去空白列表。"""
    return [item.strip() for item in value.split(",") if item.strip()]


class Settings(BaseSettings):
    """系统运行配置对象，从环境变量读取并提供类型化访问。"""
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_name: str = "Skillflow Orchestrator"
    api_prefix: str = "/api/v1"
    environment: str = "dev"

    database_url: str = "sqlite:///./skillflow.db"
    redis_url: str = "redis://localhost:6379/0"
    celery_task_always_eager: bool = False

    registry_path: Path = Field(default=Path("./registry/skills.json"))
    match_strategy: str = "fuzzy"
    min_match_score: float = Field(default=0.5, ge=0.0, le=1.0)
    ambiguity_margin: float = Field(default=0.05, ge=0.0)
    max_pool_size: int = Field(default=16, gt=0)
    cancel_grace_seconds: float = Field(default=2.0, ge=0.0)

    opencode_base_url: str = "http://127.0.0.1:4096"
    opencode_server_username: str = "opencode"
    opencode_server_password: str | None = None
    opencode_request_timeout_seconds: int = 30
    opencode_poll_interval_seconds: float = 1.0
    opencode_directory: Path | None = None
    default_agent: str = "build"

    log_dir: Path = Field(default=Path("./logs"))
    log_level: str = "INFO"
    log_debug_modules: str = ""
    log_debug_run_ids: str = ""
    log_stderr_level: str = "ERROR"
    log_redact_secrets: bool = True
    log_detail_chars: int = 2000
    log_max_bytes: int = 20 * 1024 * 1024
    log_backup_count: int = 10

    def log_debug_modules_list(self) -> list[str]:
        return _csv_to_list(self.log_debug_modules)

    def log_debug_run_ids_list(self) -> list[str]:
        return _csv_to_list(self.log_debug_run_ids)

    def resolved_registry_path(self) -> Path:
        # 相对路径统一按当前工作目录解析，避免不同启动方式下语义漂移。
        if self.registry_path.is_absolute():
            return self.registry_path
        return (Path.cwd() / self.registry_path).resolve()


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """构建并缓存 Settings。"""
    return Settings()
