from __future__ import annotations

"""Core side of the host lifecycle callbacks.

Every entry point is best-effort: failures are logged and swallowed so the
host's own tool pipeline is never interrupted.
"""

import functools
import logging
import os
from collections.abc import Callable
from pathlib import Path
from typing import Any

from .models import (
    FileEditMetadata,
    PromptMetadata,
    ToolInputMetadata,
    ToolResultMetadata,
    count_lines,
)
from .service import StatsCodeService
from .sync import SyncResult


logger = logging.getLogger(__name__)

DEFAULT_TOOL = "claude-code"
HookHandler = Callable[[StatsCodeService, dict[str, Any], str], Any]


def best_effort(func: HookHandler) -> HookHandler:
    @functools.wraps(func)
    def wrapper(service: StatsCodeService, payload: dict[str, Any], tool: str = DEFAULT_TOOL) -> Any:
        try:
            return func(service, payload, tool)
        except Exception:
            logger.exception("hook %s failed", func.__name__)
            return None

    return wrapper


def _tool_input(payload: dict[str, Any]) -> dict[str, Any]:
    value = payload.get("tool_input")
    return value if isinstance(value, dict) else {}


def _tool_result(payload: dict[str, Any]) -> Any:
    for key in ("tool_response", "tool_result"):
        if key in payload:
            return payload[key]
    return None


def result_success(result: Any) -> bool:
    if isinstance(result, dict):
        if isinstance(result.get("success"), bool):
            return result["success"]
        if result.get("is_error") or result.get("error"):
            return False
    return True


def tool_input_metadata(tool_name: str, args: dict[str, Any]) -> FileEditMetadata | ToolInputMetadata:
    input_keys = tuple(str(key) for key in args)
    file_path = args.get("file_path")
    if tool_name == "Edit" and isinstance(file_path, str) and file_path:
        return FileEditMetadata(
            file_path=file_path,
            lines_added=count_lines(args.get("new_string")),
            lines_removed=count_lines(args.get("old_string")),
            input_keys=input_keys,
        )
    if tool_name == "Write" and isinstance(file_path, str) and file_path:
        return FileEditMetadata(
            file_path=file_path,
            lines_added=count_lines(args.get("content")),
            lines_removed=0,
            input_keys=input_keys,
        )
    return ToolInputMetadata(input_keys=input_keys)


def _project_path(payload: dict[str, Any]) -> str:
    cwd = payload.get("cwd")
    return cwd if isinstance(cwd, str) and cwd else os.getcwd()


@best_effort
def on_session_start(service: StatsCodeService, payload: dict[str, Any], tool: str = DEFAULT_TOOL) -> str | None:
    ref = service.coordinator.attach_or_create(tool, _project_path(payload), allow_create=True)
    if ref is None:
        return None
    logger.debug("session %s %s", "started" if ref.created else "resumed", ref.session_id)
    return ref.session_id


@best_effort
def on_pre_tool_use(service: StatsCodeService, payload: dict[str, Any], tool: str = DEFAULT_TOOL) -> str | None:
    ref = service.coordinator.attach_or_create(tool)
    if ref is None:
        logger.debug("pre-tool-use without an open session, dropped")
        return None
    tool_name = str(payload.get("tool_name") or "")
    return service.store.record_interaction(
        ref.session_id,
        "tool_use",
        tool_name=tool_name or None,
        metadata=tool_input_metadata(tool_name, _tool_input(payload)),
    )


@best_effort
def on_post_tool_use(service: StatsCodeService, payload: dict[str, Any], tool: str = DEFAULT_TOOL) -> str | None:
    ref = service.coordinator.attach_or_create(tool)
    if ref is None:
        logger.debug("post-tool-use without an open session, dropped")
        return None
    tool_name = str(payload.get("tool_name") or "")
    result = _tool_result(payload)
    success = result_success(result)
    lowered = tool_name.lower()
    if "edit" in lowered or "write" in lowered:
        kind = "accept" if success else "reject"
    else:
        kind = "response"
    error = result.get("error") if isinstance(result, dict) else None
    return service.store.record_interaction(
        ref.session_id,
        kind,
        tool_name=tool_name or None,
        metadata=ToolResultMetadata(success=success, error=str(error)[:200] if error else None),
    )


@best_effort
def on_prompt(service: StatsCodeService, payload: dict[str, Any], tool: str = DEFAULT_TOOL) -> str | None:
    ref = service.coordinator.attach_or_create(tool)
    if ref is None:
        logger.debug("prompt without an open session, dropped")
        return None
    prompt = payload.get("prompt")
    chars = len(prompt) if isinstance(prompt, str) else 0
    return service.store.record_interaction(ref.session_id, "prompt", metadata=PromptMetadata(prompt_chars=chars))


def _bounded_sync(service: StatsCodeService) -> SyncResult | None:
    task = service.start_background_sync()
    if task is None:
        return None
    return task.wait(service.config.sync_timeout_seconds)


@best_effort
def on_stop(service: StatsCodeService, payload: dict[str, Any], tool: str = DEFAULT_TOOL) -> SyncResult | None:
    return _bounded_sync(service)


@best_effort
def on_session_end(service: StatsCodeService, payload: dict[str, Any], tool: str = DEFAULT_TOOL) -> SyncResult | None:
    session = service.coordinator.end_current(tool)
    if session is not None:
        logger.debug("session ended %s", session.id)
    return _bounded_sync(service)


@best_effort
def on_pre_compact(service: StatsCodeService, payload: dict[str, Any], tool: str = DEFAULT_TOOL) -> Path | None:
    trigger = payload.get("trigger")
    return service.debrief(tool, trigger=trigger if isinstance(trigger, str) and trigger else "auto")


HOOK_HANDLERS: dict[str, HookHandler] = {
    "session-start": on_session_start,
    "pre-tool-use": on_pre_tool_use,
    "post-tool-use": on_post_tool_use,
    "prompt": on_prompt,
    "stop": on_stop,
    "session-end": on_session_end,
    "pre-compact": on_pre_compact,
}


def dispatch(service: StatsCodeService, event: str, payload: dict[str, Any], tool: str = DEFAULT_TOOL) -> Any:
    handler = HOOK_HANDLERS.get(event)
    if handler is None:
        logger.warning("unknown hook event %s ignored", event)
        return None
    return handler(service, payload, tool)
