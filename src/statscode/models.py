from __future__ import annotations

"""Session/interaction records and the tagged metadata variants they carry."""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Union


VALID_TOOLS = ("claude-code", "opencode", "codex", "antigravity", "cursor")
VALID_INTERACTION_KINDS = ("prompt", "response", "tool_use", "accept", "reject", "edit", "undo")
FILE_EDIT_TOOLS = {"Edit", "Write"}


def utc_now() -> datetime:
    return datetime.now(tz=UTC)


def to_ms(value: datetime) -> int:
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return int(round(value.timestamp() * 1000))


def from_ms(value: int) -> datetime:
    return datetime.fromtimestamp(value / 1000, tz=UTC)


def iso(value: datetime) -> str:
    return value.astimezone(UTC).isoformat().replace("+00:00", "Z")


def parse_iso(value: str) -> datetime:
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def count_lines(text: Any) -> int:
    if not isinstance(text, str) or not text:
        return 0
    return len(text.split("\n"))


@dataclass(frozen=True)
class FileEditMetadata:
    """Edit/Write tool input: the touched file and its line deltas."""

    file_path: str
    lines_added: int = 0
    lines_removed: int = 0
    input_keys: tuple[str, ...] = ()
    kind: str = field(default="file_edit", init=False)

    @property
    def lines_net(self) -> int:
        return self.lines_added - self.lines_removed

    @property
    def lines_generated(self) -> int:
        return self.lines_added

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "filePath": self.file_path,
            "linesAdded": self.lines_added,
            "linesRemoved": self.lines_removed,
            "linesNet": self.lines_net,
            "linesGenerated": self.lines_generated,
            "inputKeys": list(self.input_keys),
        }


@dataclass(frozen=True)
class ToolInputMetadata:
    input_keys: tuple[str, ...] = ()
    kind: str = field(default="tool_input", init=False)

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, "inputKeys": list(self.input_keys)}


@dataclass(frozen=True)
class ToolResultMetadata:
    success: bool
    error: str | None = None
    kind: str = field(default="tool_result", init=False)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"kind": self.kind, "success": self.success}
        if self.error:
            payload["error"] = self.error
        return payload


@dataclass(frozen=True)
class PromptMetadata:
    prompt_chars: int = 0
    kind: str = field(default="prompt", init=False)

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, "promptChars": self.prompt_chars}


@dataclass(frozen=True)
class OpaqueMetadata:
    """Anything not recognised; kept verbatim and never read by the analyzer."""

    payload: dict[str, Any] = field(default_factory=dict)
    kind: str = field(default="opaque", init=False)

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, **{k: v for k, v in self.payload.items() if k != "kind"}}


InteractionMetadata = Union[FileEditMetadata, ToolInputMetadata, ToolResultMetadata, PromptMetadata, OpaqueMetadata]


def _int_or_zero(value: Any) -> int:
    if isinstance(value, bool):
        return 0
    if isinstance(value, (int, float)):
        return int(value)
    return 0


def _keys(value: Any) -> tuple[str, ...]:
    if not isinstance(value, list):
        return ()
    return tuple(str(item) for item in value)


def parse_metadata(raw: dict[str, Any] | None) -> InteractionMetadata | None:
    """Map a stored metadata object onto its variant.

    Rows written without a `kind` tag are classified by their keys.
    """

    if raw is None:
        return None
    if not isinstance(raw, dict):
        return OpaqueMetadata(payload={"value": raw})
    kind = raw.get("kind")
    if kind == "file_edit" or (kind is None and isinstance(raw.get("filePath"), str)):
        return FileEditMetadata(
            file_path=str(raw.get("filePath", "")),
            lines_added=_int_or_zero(raw.get("linesAdded")),
            lines_removed=_int_or_zero(raw.get("linesRemoved")),
            input_keys=_keys(raw.get("inputKeys")),
        )
    if kind == "tool_result" or (kind is None and isinstance(raw.get("success"), bool)):
        error = raw.get("error")
        return ToolResultMetadata(success=bool(raw.get("success")), error=str(error) if error else None)
    if kind == "tool_input" or (kind is None and "inputKeys" in raw):
        return ToolInputMetadata(input_keys=_keys(raw.get("inputKeys")))
    if kind == "prompt":
        return PromptMetadata(prompt_chars=_int_or_zero(raw.get("promptChars")))
    return OpaqueMetadata(payload=dict(raw))


@dataclass(frozen=True)
class Session:
    id: str
    tool: str
    start_time: datetime
    end_time: datetime | None = None
    project_path: str | None = None
    metadata: dict[str, Any] | None = None

    @property
    def is_open(self) -> bool:
        return self.end_time is None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "tool": self.tool,
            "startTime": iso(self.start_time),
            "endTime": iso(self.end_time) if self.end_time else None,
            "projectPath": self.project_path,
            "metadata": self.metadata,
        }


@dataclass(frozen=True)
class Interaction:
    id: str
    session_id: str
    kind: str
    timestamp: datetime
    duration_ms: int | None = None
    tool_name: str | None = None
    metadata: InteractionMetadata | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "sessionId": self.session_id,
            "kind": self.kind,
            "timestamp": iso(self.timestamp),
            "durationMs": self.duration_ms,
            "toolName": self.tool_name,
            "metadata": self.metadata.to_dict() if self.metadata else None,
        }


def validate_tool(tool: str) -> str:
    if tool not in VALID_TOOLS:
        raise ValueError(f"Unknown tool kind: {tool}")
    return tool


def validate_interaction_kind(kind: str) -> str:
    if kind not in VALID_INTERACTION_KINDS:
        raise ValueError(f"Unknown interaction kind: {kind}")
    return kind
