import json
from pathlib import Path

#pydantic-settings
from pydantic import Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigError

SETTINGS_FILE = "azops.settings.json"


def _find_settings_file(start: Path | None = None) -> Path | None:
    p = (start or Path.cwd()).resolve()
    for cand_dir in (p, *p.parents):
        cand = cand_dir / SETTINGS_FILE
        if cand.exists():
            return cand
    return None


def _load_settings_file() -> dict:
    cand = _find_settings_file()
    if cand is None:
        return {}
    try:
        data = json.loads(cand.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise ConfigError(f"Cannot read {cand}: {exc}") from exc
    values = data.get("Values") if isinstance(data, dict) else None
    return values or {}


class ToolSettings(BaseSettings):
    model_config = SettingsConfigDict(
        case_sensitive=True,
        env_file=None,  # disable .env
        extra="ignore",
    )

    AZ_PATH: str = Field(default="")
    FUNC_PATH: str = Field(default="")
    AZURE_SUBSCRIPTION_ID: str = Field(default="")
    TS_RETENTION_COUNT: int = Field(default=400, ge=0)
    SECRET_BACKEND: str = Field(default="cli")
    DEV_STORAGE_CONNECTION: str = Field(default="UseDevelopmentStorage=true")
    DOCS_EXTENSION: str = Field(default=".md")
    LOG_LEVEL: str = Field(default="INFO")

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        """Custom settings loader: init → env → azops.settings.json"""
        return (
            init_settings,
            env_settings,
            lambda _settings=None: _load_settings_file(),
        )


def get(key: str, default=None):
    try:
        settings = ToolSettings()
    except ValidationError as exc:
        bad = ", ".join(sorted({str(e["loc"][0]) for e in exc.errors() if e.get("loc")})) or "settings"
        raise ConfigError(f"Invalid setting {bad}: {exc.errors()[0]['msg']}") from exc
    return getattr(settings, key, default)
