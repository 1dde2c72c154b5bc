"""Drive one agent session: push messages, consume events, apply the policy."""

import asyncio
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol, TypeVar

from turnkeeper.assessor import CompletionAssessor
from turnkeeper.checkpoint import CheckpointConfig, load_checkpoint_config
from turnkeeper.config import Config, ProviderCredentials, get_config
from turnkeeper.events import (
    AgentEvent,
    AssistantEvent,
    OutboundMessage,
    ResultEvent,
    SessionMode,
    SystemInitEvent,
    UnknownEvent,
    UserEvent,
    UserMessage,
    parse_event,
)
from turnkeeper.exceptions import TransportAbortedError
from turnkeeper.logging import get_logger
from turnkeeper.message_queue import MessageQueue
from turnkeeper.policy import ContinuationPolicy, TurnResult
from turnkeeper.special_commands import parse_special_command

log = get_logger(__name__)

T = TypeVar("T")

_TYPED_EVENTS = (SystemInitEvent, AssistantEvent, UserEvent, ResultEvent, UnknownEvent)
_END_OF_STREAM = object()


@dataclass
class QueryOptions:
    """Options handed to the transport when the query starts."""

    cwd: str
    resume: str | None = None
    permission_mode: str = "default"
    model: str | None = None
    fallback_model: str | None = None
    custom_system_prompt: str | None = None
    append_system_prompt: str | None = None
    allowed_tools: list[str] = field(default_factory=list)
    disallowed_tools: list[str] | None = None


class AgentTransport(Protocol):
    """The agent message exchange; consumes user messages, yields events."""

    def query(
        self,
        prompt: AsyncIterator[UserMessage],
        options: QueryOptions,
    ) -> AsyncIterator[AgentEvent | dict[str, Any]]: ...


@dataclass
class SessionOptions:
    """Fixed per-session parameters."""

    path: str
    session_id: str | None = None
    allowed_tools: list[str] = field(default_factory=list)
    system_prompt: str = ""


@dataclass
class SessionCallbacks:
    """Caller hooks. Only next_message may suspend."""

    next_message: Callable[[], Awaitable[OutboundMessage | None]]
    on_ready: Callable[[], None]
    on_session_found: Callable[[str], None]
    on_message: Callable[[AgentEvent], None]
    is_aborted: Callable[[str], bool]
    on_thinking_change: Callable[[bool], None] | None = None
    on_completion_event: Callable[[str], None] | None = None
    on_session_reset: Callable[[], None] | None = None


SessionRecordWaiter = Callable[[str], Awaitable[bool]]


class _SessionCancelled(Exception):
    pass


def _join_prompt(prefix: str | None, base: str) -> str | None:
    if not prefix:
        return None
    return f"{prefix}\n\n{base}" if base else prefix


def build_query_options(options: SessionOptions, mode: SessionMode) -> QueryOptions:
    """Merge the session's fixed settings with the first message's mode."""
    return QueryOptions(
        cwd=options.path,
        resume=options.session_id,
        permission_mode=mode.permission_mode,
        model=mode.model,
        fallback_model=mode.fallback_model,
        custom_system_prompt=_join_prompt(mode.custom_system_prompt, options.system_prompt),
        append_system_prompt=_join_prompt(mode.append_system_prompt, options.system_prompt) or options.system_prompt or None,
        allowed_tools=[*(mode.allowed_tools or []), *options.allowed_tools],
        disallowed_tools=mode.disallowed_tools,
    )


async def _next_event(iterator: AsyncIterator[Any]) -> Any:
    try:
        return await iterator.__anext__()
    except StopAsyncIteration:
        return _END_OF_STREAM


class SessionDriver:
    """Continuation control loop for a single agent session.

    Every event is forwarded to ``callbacks.on_message`` in arrival order.
    At each turn result the ``ContinuationPolicy`` decides between pushing a
    synthesized continuation and handing control back to the caller.
    Setting ``cancel_event`` ends the session quietly at the next suspension
    point.

    ``mode`` holds the ``SessionMode`` of the most recent caller message. The
    first one shapes ``QueryOptions``; later ones are exposed here for
    transports and callers that apply per-message modes.
    """

    def __init__(
        self,
        transport: AgentTransport,
        callbacks: SessionCallbacks,
        options: SessionOptions,
        *,
        config: Config | None = None,
        credentials: ProviderCredentials | None = None,
        policy: ContinuationPolicy | None = None,
        checkpoint_loader: Callable[[str, str], CheckpointConfig | None] = load_checkpoint_config,
        wait_for_session_record: SessionRecordWaiter | None = None,
        cancel_event: asyncio.Event | None = None,
    ):
        self.transport = transport
        self.callbacks = callbacks
        self.options = options
        self.config = config if config is not None else get_config()
        self.credentials = credentials if credentials is not None else ProviderCredentials.from_env()
        self.policy = policy
        self.checkpoint_loader = checkpoint_loader
        self.wait_for_session_record = wait_for_session_record
        self.cancel_event = cancel_event

        self.queue: MessageQueue[UserMessage] = MessageQueue()
        self.mode: SessionMode | None = None
        self.thinking = False
        self._stream: AsyncIterator[Any] | None = None

    def _build_policy(self) -> ContinuationPolicy:
        checkpoint = self.checkpoint_loader(self.options.path, self.config.checkpoint.dir_name)
        assessor = None
        if checkpoint is not None and checkpoint.enabled:
            log.debug("Checkpoint mode detected, smart continue enabled", path=self.options.path)
            assessor = CompletionAssessor(self.credentials, self.config.assessment)
        return ContinuationPolicy(
            checkpoint,
            assessor,
            auto_continue_limit=self.config.auto_continue.limit,
            auto_continue_message=self.config.auto_continue.message,
        )

    async def run(self) -> None:
        """Run the session until the caller runs out of messages or it is aborted."""
        try:
            await self._run()
        except (_SessionCancelled, TransportAbortedError):
            log.debug("Session aborted", path=self.options.path)
        finally:
            self._update_thinking(False)
            self.queue.end()
            await self._close_stream()

    async def _run(self) -> None:
        if self.policy is None:
            self.policy = self._build_policy()

        initial = await self._race(self.callbacks.next_message())
        if initial is None:
            log.debug("No initial message, session not started")
            return
        if not self._accept_caller_message(initial):
            return

        self.queue.push(UserMessage(initial.text))
        options = build_query_options(self.options, initial.mode)
        self._stream = aiter(self.transport.query(self.queue, options))

        self._update_thinking(True)
        log.debug("Iterating agent events", path=self.options.path, resume=options.resume)
        while True:
            item = await self._race(_next_event(self._stream))
            if item is _END_OF_STREAM:
                log.debug("Agent event stream finished")
                return
            event = item if isinstance(item, _TYPED_EVENTS) else parse_event(item)
            if not await self._handle_event(event):
                return

    async def _handle_event(self, event: AgentEvent) -> bool:
        """Process one event; False ends the session."""
        if isinstance(event, AssistantEvent) and event.text:
            self.policy.record_assistant_text(event.text)

        self.callbacks.on_message(event)

        if isinstance(event, SystemInitEvent):
            self._update_thinking(True)
            if event.session_id:
                await self._discover_session(event.session_id)
            return True

        if isinstance(event, ResultEvent):
            return await self._on_turn_result(event)

        if isinstance(event, UserEvent):
            for tool_use_id in event.tool_result_ids:
                if self.callbacks.is_aborted(tool_use_id):
                    log.debug("Tool aborted, ending session", tool_use_id=tool_use_id)
                    return False
        return True

    async def _discover_session(self, session_id: str) -> None:
        if self.wait_for_session_record is not None:
            log.debug("Waiting for session record", session_id=session_id)
            found = await self._race(self.wait_for_session_record(session_id))
            log.debug("Session record wait finished", session_id=session_id, found=found)
        self.callbacks.on_session_found(session_id)

    async def _on_turn_result(self, event: ResultEvent) -> bool:
        self._update_thinking(False)
        log.debug(
            "Result received",
            subtype=event.subtype,
            num_turns=event.num_turns,
            is_error=event.is_error,
            cost_usd=event.total_cost_usd,
            duration_ms=event.duration_ms,
        )

        decision = await self._race(self.policy.evaluate(TurnResult.from_event(event)))
        if decision.should_continue and decision.message is not None:
            log.info("Continuing turn", reason=decision.reason)
            self.queue.push(UserMessage(decision.message))
            self._update_thinking(True)
            return True

        if self.policy.finish_compaction():
            log.debug("Compaction completed")
            self._emit_completion("Compaction completed")

        self.callbacks.on_ready()

        next_message = await self._race(self.callbacks.next_message())
        if next_message is None:
            log.debug("Caller has no further messages, ending session")
            return False
        if not self._accept_caller_message(next_message):
            return False
        self.queue.push(UserMessage(next_message.text))
        return True

    def _accept_caller_message(self, message: OutboundMessage) -> bool:
        """Apply special commands and the message mode; False ends the session."""
        command = parse_special_command(message.text)
        if command.type == "clear":
            log.debug("Clear command received, resetting session")
            self._emit_completion("Context was reset")
            if self.callbacks.on_session_reset:
                self.callbacks.on_session_reset()
            return False
        if command.type == "compact":
            log.debug("Compact command received")
            self.policy.begin_compaction()
            self._emit_completion("Compaction started")
        self.mode = message.mode
        return True

    def _emit_completion(self, text: str) -> None:
        if self.callbacks.on_completion_event:
            self.callbacks.on_completion_event(text)

    def _update_thinking(self, thinking: bool) -> None:
        if self.thinking == thinking:
            return
        self.thinking = thinking
        log.debug("Thinking state changed", thinking=thinking)
        if self.callbacks.on_thinking_change:
            self.callbacks.on_thinking_change(thinking)

    async def _race(self, work: Awaitable[T]) -> T:
        """Await work, abandoning it if the session is cancelled first."""
        if self.cancel_event is None:
            return await work
        if self.cancel_event.is_set():
            if asyncio.iscoroutine(work):
                work.close()
            raise _SessionCancelled()

        work_task = asyncio.ensure_future(work)
        cancel_task = asyncio.create_task(self.cancel_event.wait())
        try:
            done, _ = await asyncio.wait(
                {work_task, cancel_task},
                return_when=asyncio.FIRST_COMPLETED,
            )
            if work_task in done:
                return work_task.result()

            work_task.cancel()
            await asyncio.wait({work_task})
            if not work_task.cancelled() and work_task.exception() is not None:
                log.debug("Abandoned work failed during cancel", error=str(work_task.exception()))
            raise _SessionCancelled()
        finally:
            if not cancel_task.done():
                cancel_task.cancel()
            if not work_task.done():
                work_task.cancel()

    async def _close_stream(self) -> None:
        stream = self._stream
        self._stream = None
        aclose = getattr(stream, "aclose", None)
        if aclose is None:
            return
        try:
            await aclose()
        except Exception as e:
            log.debug("Closing agent event stream failed", error=str(e))


async def wait_for_session_file(
    project_dir: Path | str,
    session_id: str,
    *,
    timeout_s: float = 10.0,
    poll_interval_s: float = 0.1,
) -> bool:
    """Poll until ``<project_dir>/<session_id>.jsonl`` exists; False on timeout."""
    target = Path(project_dir) / f"{session_id}.jsonl"
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout_s
    while not target.exists():
        if loop.time() >= deadline:
            return False
        await asyncio.sleep(poll_interval_s)
    return True
