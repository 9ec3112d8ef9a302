"""Settings loader for the GridFlow store core."""

from pathlib import Path
from typing import Any, Literal

import tomllib
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _toml_settings_source() -> dict[str, Any]:
    """Load settings from config.toml with keys mapped to Settings fields.

    This source has LOWER priority than env/.env so those can override TOML.
    """
    cfg_path = Path("config.toml")
    if not cfg_path.exists():
        return {}
    with cfg_path.open("rb") as f:
        t = tomllib.load(f)

    store_cfg = t.get("store", {}) or {}
    import_cfg = t.get("import", {}) or {}
    log_cfg = t.get("logging", {}) or {}

    out: dict[str, Any] = {
        "env": t.get("app", {}).get("env", "dev"),
        "store_open_max_retries": int(store_cfg.get("open_max_retries", 3)),
        "store_open_retry_delay_seconds": float(store_cfg.get("open_retry_delay_seconds", 0.2)),
        "import_concurrency": import_cfg.get("concurrency", "queue"),
        "id_strategy": import_cfg.get("id_strategy", "sequential"),
        "orphan_recovery_enabled": bool(import_cfg.get("orphan_recovery", True)),
        "logging_level": log_cfg.get("level", "INFO"),
        "logging_file_path": log_cfg.get("file_path", "logs/gridflow.jsonl"),
        "logging_max_bytes": log_cfg.get("max_bytes", 5_000_000),
        "logging_backup_count": log_cfg.get("backup_count", 5),
    }
    # [store].database_url is optional; env DATABASE_URL normally wins anyway
    if store_cfg.get("database_url"):
        out["database_url"] = store_cfg["database_url"]

    # Per-handler levels: strings INFO|DEBUG|WARNING|ERROR|CRITICAL|NONE
    # Booleans map True -> overall level, False -> NONE
    overall = str(out["logging_level"]).upper()

    def _norm_level(v, default):
        if isinstance(v, str):
            return v.upper()
        if isinstance(v, bool):
            return default if v else "NONE"
        return default

    out["logging_console"] = _norm_level(log_cfg.get("console"), overall)
    out["logging_file"] = _norm_level(log_cfg.get("to_file"), overall)
    return out


class Settings(BaseSettings):
    env: str = Field(default="dev")
    database_url: str = Field(default="sqlite+aiosqlite:///./gridflow.sqlite3")

    # --- Store ---
    store_open_max_retries: int = Field(default=3, ge=0)
    store_open_retry_delay_seconds: float = Field(default=0.2, ge=0)

    # --- Import pipeline ---
    import_concurrency: Literal["queue", "reject"] = "queue"
    id_strategy: Literal["sequential", "ulid"] = "sequential"
    orphan_recovery_enabled: bool = True

    # --- Logging ---
    logging_level: str = "INFO"
    logging_console: str = "INFO"
    logging_file: str = "INFO"
    logging_file_path: str = "logs/gridflow.jsonl"
    logging_max_bytes: int = 5_000_000
    logging_backup_count: int = 5

    model_config = SettingsConfigDict(
        env_prefix="",
        case_sensitive=False,
        env_file=".env",
        extra="ignore",
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        # Precedence (highest to lowest):
        # 1) init_settings (explicit overrides in code/tests)
        # 2) dotenv (.env in cwd)
        # 3) env_settings (OS env)
        # 4) TOML (config.toml) project defaults
        # 5) file_secret_settings
        return (
            init_settings,
            dotenv_settings,
            env_settings,
            _toml_settings_source,
            file_secret_settings,
        )


def load_settings() -> Settings:
    return Settings()
