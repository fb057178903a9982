from __future__ import annotations

import os
from pathlib import Path


def statscode_home() -> Path:
    configured = os.environ.get("STATSCODE_HOME")
    if configured:
        return Path(configured).expanduser().resolve()
    return Path.home() / ".statscode"


def ensure_home_dirs(base: Path) -> dict[str, Path]:
    logs = base / "logs"
    insights = base / "insights"
    exports = base / "exports"
    for path in (base, logs, insights, exports):
        path.mkdir(parents=True, exist_ok=True)
    return {
        "base": base,
        "logs": logs,
        "insights": insights,
        "exports": exports,
        "db": base / "stats.sqlite",
        "handle": base / "current_session.json",
        "key": base / "device.key",
        "config": base / "config.json",
    }
