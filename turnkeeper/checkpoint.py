"""Read-only access to the per-directory checkpoint store.

Layout under the working directory::

    .checkpoints/current                      active thread id
    .checkpoints/threads/<id>/thread.json     {"config": {"smartContinue": {...}}}

A missing pointer disables smart continue. A thread without a
``smartContinue`` block runs with the defaults below.
"""

import json
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from turnkeeper.exceptions import CheckpointError
from turnkeeper.logging import get_logger

log = get_logger(__name__)

DEFAULT_STORE_DIR = ".checkpoints"
POINTER_FILENAME = "current"
THREAD_FILENAME = "thread.json"

DEFAULT_ASSESSMENT_MODEL = "claude-haiku-4-5-20251001"
DEFAULT_COMPLETION_MARKER = "[CHECKPOINT_COMPLETE]"
DEFAULT_CONTINUE_MESSAGE = (
    "Please keep going. You stopped before the task was finished; "
    "continue from exactly where you left off."
)

ProviderName = Literal["anthropic", "openai", "gemini"]


class CheckpointConfig(BaseModel):
    """Smart-continue settings of the active checkpoint thread."""

    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    enabled: bool = True
    model: str = DEFAULT_ASSESSMENT_MODEL
    provider: ProviderName | None = None
    max_retries: int = Field(default=2, ge=0)
    buffer_size: int = Field(default=5, ge=1)
    completion_marker: str = DEFAULT_COMPLETION_MARKER
    timeout_ms: int = Field(default=8000, gt=0)
    continue_message: str = DEFAULT_CONTINUE_MESSAGE


def read_checkpoint_config(cwd: Path | str, store_dir: str = DEFAULT_STORE_DIR) -> CheckpointConfig | None:
    """Read the active checkpoint config, raising on unreadable data.

    Returns:
        The config, or None when no checkpoint thread is active.

    Raises:
        CheckpointError: pointer or thread document is unreadable or invalid
    """
    root = Path(cwd) / store_dir
    pointer = root / POINTER_FILENAME
    if not pointer.is_file():
        return None

    try:
        thread_id = pointer.read_text(encoding="utf-8").strip()
    except OSError as e:
        raise CheckpointError(str(pointer), str(e)) from e
    if not thread_id:
        return None

    thread_path = root / "threads" / thread_id / THREAD_FILENAME
    if not thread_path.is_file():
        return CheckpointConfig()

    try:
        data: Any = json.loads(thread_path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
        raise CheckpointError(str(thread_path), str(e)) from e

    thread_config = data.get("config") if isinstance(data, dict) else None
    smart = thread_config.get("smartContinue") if isinstance(thread_config, dict) else None
    if not smart:
        return CheckpointConfig()
    if not isinstance(smart, dict):
        raise CheckpointError(str(thread_path), "smartContinue must be an object")

    # JSON nulls mean "use the default", same as an absent key.
    cleaned = {key: value for key, value in smart.items() if value is not None}
    try:
        return CheckpointConfig.model_validate(cleaned)
    except ValidationError as e:
        raise CheckpointError(str(thread_path), str(e)) from e


def load_checkpoint_config(cwd: Path | str, store_dir: str = DEFAULT_STORE_DIR) -> CheckpointConfig | None:
    """Load the active checkpoint config; any failure disables smart continue."""
    try:
        config = read_checkpoint_config(cwd, store_dir)
    except CheckpointError as e:
        log.warning("Checkpoint config unreadable, smart continue disabled", path=e.path, error=str(e))
        return None
    if config is not None:
        log.debug(
            "Checkpoint config loaded",
            cwd=str(cwd),
            enabled=config.enabled,
            provider=config.provider,
            max_retries=config.max_retries,
        )
    return config
