from __future__ import annotations

"""Local `config.json` model with environment overrides."""

import json
import logging
import os
import time
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError


logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.statscode.dev"
TRUTHY = {"1", "true", "yes", "on"}


class StatsCodeConfig(BaseModel):
    """User-editable settings; camelCase keys written by other clients are accepted."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    token: str | None = None
    auto_sync: bool = Field(default=True, alias="autoSync")
    api_url: str = Field(default=DEFAULT_API_URL, alias="apiUrl")
    user_id: str = Field(default="anonymous", alias="userId")
    debug: bool = False
    sync_timeout_seconds: float = Field(default=5.0, gt=0, le=60, alias="syncTimeoutSeconds")
    handle_ttl_minutes: int = Field(default=120, gt=0, alias="handleTtlMinutes")
    idle_threshold_minutes: int = Field(default=5, gt=0, alias="idleThresholdMinutes")

    @property
    def authenticated(self) -> bool:
        return bool(self.token)


def _env_flag(name: str) -> bool | None:
    raw = os.environ.get(name, "").strip().lower()
    if not raw:
        return None
    return raw in TRUTHY


def _apply_env_overrides(data: dict[str, Any]) -> dict[str, Any]:
    merged = dict(data)
    debug = _env_flag("STATSCODE_DEBUG")
    if debug is not None:
        merged["debug"] = debug
    for env_name, key in (
        ("STATSCODE_API_URL", "api_url"),
        ("STATSCODE_TOKEN", "token"),
        ("STATSCODE_USER_ID", "user_id"),
    ):
        value = os.environ.get(env_name, "").strip()
        if value:
            merged.pop(StatsCodeConfig.model_fields[key].alias or key, None)
            merged[key] = value
    return merged


def load_config(path: Path) -> StatsCodeConfig:
    """Read config from disk; any problem yields defaults so hooks never fail."""

    data: dict[str, Any] = {}
    if path.exists():
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("ignoring unreadable config %s: %s", path, exc)
            raw = {}
        if isinstance(raw, dict):
            data = raw
    try:
        return StatsCodeConfig.model_validate(_apply_env_overrides(data))
    except ValidationError as exc:
        logger.warning("ignoring invalid config %s: %s", path, exc.errors()[0].get("msg"))
        return StatsCodeConfig.model_validate(_apply_env_overrides({}))


def save_json(path: Path, value: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    temp_path = path.parent / f".{path.name}.{os.getpid()}.tmp"
    payload = json.dumps(value, indent=2)
    for attempt in range(5):
        temp_path.write_text(payload, encoding="utf-8")
        try:
            temp_path.replace(path)
            return
        except PermissionError:
            if attempt == 4:
                raise
            # On Windows, AV/indexers can briefly lock newly-written temp files.
            time.sleep(0.02 * (attempt + 1))


def save_config(path: Path, config: StatsCodeConfig) -> None:
    save_json(path, config.model_dump(mode="json"))
