"""Typed agent events and outbound messages.

The transport emits loosely shaped JSON objects. ``parse_event`` turns each
into one tagged variant carrying only the fields that kind guarantees; shapes
it does not recognize become ``UnknownEvent`` and are passed through.
"""

from dataclasses import dataclass, field
from typing import Any, Literal

TurnOutcome = Literal["success", "error", "other"]


@dataclass(frozen=True)
class SystemInitEvent:
    """Session initialized by the agent (``system``/``init``)."""

    session_id: str | None
    raw: dict[str, Any] = field(default_factory=dict, repr=False)
    type: Literal["system"] = "system"


@dataclass(frozen=True)
class AssistantEvent:
    """Assistant output; ``texts`` holds its non-empty text blocks."""

    texts: tuple[str, ...]
    raw: dict[str, Any] = field(default_factory=dict, repr=False)
    type: Literal["assistant"] = "assistant"

    @property
    def text(self) -> str | None:
        return "\n".join(self.texts) if self.texts else None


@dataclass(frozen=True)
class UserEvent:
    """User echo; ``tool_result_ids`` lists the tool calls it answers."""

    tool_result_ids: tuple[str, ...]
    raw: dict[str, Any] = field(default_factory=dict, repr=False)
    type: Literal["user"] = "user"


@dataclass(frozen=True)
class ResultEvent:
    """End of an agent turn."""

    subtype: str
    num_turns: int
    is_error: bool = False
    total_cost_usd: float | None = None
    duration_ms: int | None = None
    raw: dict[str, Any] = field(default_factory=dict, repr=False)
    type: Literal["result"] = "result"

    @property
    def outcome(self) -> TurnOutcome:
        if self.subtype == "success":
            return "success"
        if self.subtype.startswith("error"):
            return "error"
        return "other"


@dataclass(frozen=True)
class UnknownEvent:
    """Any event kind not modelled above."""

    type: str
    raw: dict[str, Any] = field(default_factory=dict, repr=False)


AgentEvent = SystemInitEvent | AssistantEvent | UserEvent | ResultEvent | UnknownEvent


def _content_blocks(payload: dict[str, Any]) -> list[dict[str, Any]]:
    message = payload.get("message")
    if not isinstance(message, dict):
        return []
    content = message.get("content")
    if not isinstance(content, list):
        return []
    return [block for block in content if isinstance(block, dict)]


def _optional_number(value: Any) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return value


def parse_event(payload: dict[str, Any]) -> AgentEvent:
    """Convert one raw transport payload into a typed event."""
    kind = payload.get("type")
    kind = kind if isinstance(kind, str) else ""

    if kind == "system" and payload.get("subtype") == "init":
        session_id = payload.get("session_id")
        return SystemInitEvent(
            session_id=session_id if isinstance(session_id, str) and session_id else None,
            raw=payload,
        )

    if kind == "assistant":
        texts = tuple(
            block["text"]
            for block in _content_blocks(payload)
            if block.get("type") == "text" and isinstance(block.get("text"), str) and block["text"]
        )
        return AssistantEvent(texts=texts, raw=payload)

    if kind == "user":
        message = payload.get("message")
        role = message.get("role") if isinstance(message, dict) else None
        ids = ()
        if role == "user":
            ids = tuple(
                block["tool_use_id"]
                for block in _content_blocks(payload)
                if block.get("type") == "tool_result" and isinstance(block.get("tool_use_id"), str)
            )
        return UserEvent(tool_result_ids=ids, raw=payload)

    if kind == "result":
        subtype = payload.get("subtype")
        num_turns = payload.get("num_turns")
        duration = _optional_number(payload.get("duration_ms"))
        return ResultEvent(
            subtype=subtype if isinstance(subtype, str) else "",
            num_turns=num_turns if isinstance(num_turns, int) and not isinstance(num_turns, bool) else 0,
            is_error=payload.get("is_error") is True,
            total_cost_usd=_optional_number(payload.get("total_cost_usd")),
            duration_ms=int(duration) if duration is not None else None,
            raw=payload,
        )

    return UnknownEvent(type=kind, raw=payload)


@dataclass
class SessionMode:
    """Agent mode attached to each caller message."""

    permission_mode: str = "default"
    model: str | None = None
    fallback_model: str | None = None
    custom_system_prompt: str | None = None
    append_system_prompt: str | None = None
    allowed_tools: list[str] | None = None
    disallowed_tools: list[str] | None = None


@dataclass
class OutboundMessage:
    """A message supplied by the caller for the next turn."""

    text: str
    mode: SessionMode = field(default_factory=SessionMode)


@dataclass(frozen=True)
class UserMessage:
    """A user message pushed into the transport."""

    content: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": "user",
            "message": {"role": "user", "content": self.content},
        }
