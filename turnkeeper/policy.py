"""Decide, at each turn boundary, whether to nudge the agent onward.

Two gates run in a fixed order:

1. Structural auto-continue: a successful turn with at most one internal
   turn is taken as a premature stop. Bounded by a consecutive-streak limit.
2. Smart continue: with an active checkpoint, a longer successful turn that
   did not emit the completion marker is judged by the completion assessor.
   Bounded by the checkpoint's ``max_retries`` for the whole session.

If neither fires the turn is complete and control goes back to the caller.
"""

from collections import deque
from collections.abc import Iterator, Sequence
from dataclasses import dataclass, field
from typing import Literal, Protocol

from turnkeeper.checkpoint import CheckpointConfig
from turnkeeper.config import PREMATURE_STOP_MESSAGE
from turnkeeper.events import ResultEvent, TurnOutcome
from turnkeeper.logging import get_logger

log = get_logger(__name__)

DEFAULT_AUTO_CONTINUE_LIMIT = 3
DEFAULT_BUFFER_SIZE = 5


@dataclass(frozen=True)
class TurnResult:
    """Outcome of one completed agent turn."""

    outcome: TurnOutcome
    turn_count: int

    @classmethod
    def from_event(cls, event: ResultEvent) -> "TurnResult":
        return cls(outcome=event.outcome, turn_count=max(0, event.num_turns))


@dataclass(frozen=True)
class Decision:
    """What the driver should do after a turn."""

    action: Literal["continue", "complete"]
    message: str | None = None
    reason: Literal["auto", "smart"] | None = None

    @property
    def should_continue(self) -> bool:
        return self.action == "continue"


COMPLETE = Decision(action="complete")


class Assessor(Protocol):
    async def assess(self, recent_texts: Sequence[str], config: CheckpointConfig) -> bool: ...


class RecentTextBuffer:
    """Fixed-capacity FIFO of recent assistant texts."""

    def __init__(self, capacity: int = DEFAULT_BUFFER_SIZE):
        self.capacity = max(1, capacity)
        self._items: deque[str] = deque(maxlen=self.capacity)

    def push(self, text: str) -> None:
        self._items.append(text)

    def contains(self, marker: str) -> bool:
        return any(marker in text for text in self._items)

    def snapshot(self) -> list[str]:
        return list(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[str]:
        return iter(self._items)


@dataclass
class ContinuationState:
    auto_continue_count: int = 0
    auto_continue_limit: int = DEFAULT_AUTO_CONTINUE_LIMIT
    smart_continue_count: int = 0
    smart_continue_limit: int = 0
    recent_texts: RecentTextBuffer = field(default_factory=RecentTextBuffer)
    compaction_in_flight: bool = False


class ContinuationPolicy:
    """Per-session continuation decision engine."""

    def __init__(
        self,
        checkpoint: CheckpointConfig | None = None,
        assessor: Assessor | None = None,
        *,
        auto_continue_limit: int = DEFAULT_AUTO_CONTINUE_LIMIT,
        auto_continue_message: str = PREMATURE_STOP_MESSAGE,
    ):
        self.checkpoint = checkpoint
        self.assessor = assessor
        self.auto_continue_message = auto_continue_message
        self.state = ContinuationState(
            auto_continue_limit=auto_continue_limit,
            smart_continue_limit=checkpoint.max_retries if checkpoint else 0,
            recent_texts=RecentTextBuffer(checkpoint.buffer_size if checkpoint else DEFAULT_BUFFER_SIZE),
        )

    @property
    def smart_enabled(self) -> bool:
        return bool(self.checkpoint and self.checkpoint.enabled and self.assessor is not None)

    def record_assistant_text(self, text: str) -> None:
        self.state.recent_texts.push(text)

    def begin_compaction(self) -> None:
        self.state.compaction_in_flight = True

    def finish_compaction(self) -> bool:
        """Clear the compaction flag; True if one was in flight."""
        was_compacting = self.state.compaction_in_flight
        self.state.compaction_in_flight = False
        return was_compacting

    async def evaluate(self, result: TurnResult) -> Decision:
        """Evaluate one turn result; gate 1 is always consulted first."""
        decision = self._auto_continue(result)
        if decision is not None:
            return decision
        return await self._smart_continue(result)

    def _auto_continue(self, result: TurnResult) -> Decision | None:
        state = self.state
        if (
            result.outcome == "success"
            and result.turn_count <= 1
            and not state.compaction_in_flight
            and state.auto_continue_count < state.auto_continue_limit
        ):
            state.auto_continue_count += 1
            log.debug(
                "Suspected premature stop, auto-continuing",
                turn_count=result.turn_count,
                attempt=state.auto_continue_count,
                limit=state.auto_continue_limit,
            )
            return Decision(action="continue", message=self.auto_continue_message, reason="auto")

        state.auto_continue_count = 0
        return None

    async def _smart_continue(self, result: TurnResult) -> Decision:
        state = self.state
        checkpoint = self.checkpoint
        if checkpoint is None or not self.smart_enabled:
            return COMPLETE
        if state.compaction_in_flight or state.smart_continue_count >= state.smart_continue_limit:
            return COMPLETE
        if result.outcome != "success" or result.turn_count <= 1:
            return COMPLETE
        if state.recent_texts.contains(checkpoint.completion_marker):
            log.debug("Completion marker found, turn complete", marker=checkpoint.completion_marker)
            return COMPLETE

        log.debug("Checkpoint active without completion marker, assessing", marker=checkpoint.completion_marker)
        try:
            done = await self.assessor.assess(state.recent_texts.snapshot(), checkpoint)
        except Exception as e:
            log.warning("Completion assessment raised, assuming not done", error=str(e))
            done = False

        if done:
            log.debug("Task assessed as done")
            return COMPLETE

        state.smart_continue_count += 1
        log.debug(
            "Task not done, injecting continuation",
            attempt=state.smart_continue_count,
            limit=state.smart_continue_limit,
        )
        return Decision(action="continue", message=checkpoint.continue_message, reason="smart")
