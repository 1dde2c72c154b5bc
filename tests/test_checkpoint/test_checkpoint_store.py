import json
from pathlib import Path

import pytest

from turnkeeper.checkpoint import (
    DEFAULT_COMPLETION_MARKER,
    CheckpointConfig,
    load_checkpoint_config,
    read_checkpoint_config,
)
from turnkeeper.exceptions import CheckpointError


def _write_thread(root: Path, thread_id: str, document: object | str) -> Path:
    store = root / ".checkpoints"
    store.mkdir(parents=True, exist_ok=True)
    (store / "current").write_text(f"{thread_id}\n", encoding="utf-8")
    thread_dir = store / "threads" / thread_id
    thread_dir.mkdir(parents=True, exist_ok=True)
    path = thread_dir / "thread.json"
    text = document if isinstance(document, str) else json.dumps(document)
    path.write_text(text, encoding="utf-8")
    return path


def test_no_pointer_means_no_checkpoint(tmp_path: Path):
    assert load_checkpoint_config(tmp_path) is None


def test_empty_pointer_means_no_checkpoint(tmp_path: Path):
    store = tmp_path / ".checkpoints"
    store.mkdir()
    (store / "current").write_text("  \n", encoding="utf-8")

    assert load_checkpoint_config(tmp_path) is None


def test_missing_thread_document_uses_defaults(tmp_path: Path):
    store = tmp_path / ".checkpoints"
    store.mkdir()
    (store / "current").write_text("thread-1", encoding="utf-8")

    config = load_checkpoint_config(tmp_path)

    assert config == CheckpointConfig()
    assert config.enabled is True
    assert config.max_retries == 2
    assert config.buffer_size == 5
    assert config.timeout_ms == 8000
    assert config.completion_marker == DEFAULT_COMPLETION_MARKER


def test_thread_without_smart_continue_block_uses_defaults(tmp_path: Path):
    _write_thread(tmp_path, "t", {"config": {"other": True}})

    assert load_checkpoint_config(tmp_path) == CheckpointConfig()


def test_camel_case_fields_are_read(tmp_path: Path):
    _write_thread(
        tmp_path,
        "t",
        {
            "config": {
                "smartContinue": {
                    "enabled": False,
                    "model": "gpt-4o",
                    "provider": "openai",
                    "maxRetries": 4,
                    "bufferSize": 3,
                    "completionMarker": "<<DONE>>",
                    "timeoutMs": 1500,
                    "continueMessage": "keep going",
                }
            }
        },
    )

    config = load_checkpoint_config(tmp_path)

    assert config is not None
    assert config.enabled is False
    assert config.model == "gpt-4o"
    assert config.provider == "openai"
    assert config.max_retries == 4
    assert config.buffer_size == 3
    assert config.completion_marker == "<<DONE>>"
    assert config.timeout_ms == 1500
    assert config.continue_message == "keep going"


def test_partial_block_keeps_defaults_for_missing_and_null_fields(tmp_path: Path):
    _write_thread(tmp_path, "t", {"config": {"smartContinue": {"maxRetries": 1, "model": None}}})

    config = load_checkpoint_config(tmp_path)

    assert config.max_retries == 1
    assert config.model == CheckpointConfig().model
    assert config.provider is None


def test_invalid_json_disables_smart_continue(tmp_path: Path):
    _write_thread(tmp_path, "t", "{not json")

    assert load_checkpoint_config(tmp_path) is None


def test_invalid_provider_disables_smart_continue(tmp_path: Path):
    _write_thread(tmp_path, "t", {"config": {"smartContinue": {"provider": "cohere"}}})

    assert load_checkpoint_config(tmp_path) is None


def test_read_raises_checkpoint_error_with_path(tmp_path: Path):
    path = _write_thread(tmp_path, "t", "[1, 2")

    with pytest.raises(CheckpointError) as excinfo:
        read_checkpoint_config(tmp_path)

    assert excinfo.value.path == str(path)


def test_custom_store_directory(tmp_path: Path):
    store = tmp_path / ".cp"
    store.mkdir()
    (store / "current").write_text("x", encoding="utf-8")

    assert load_checkpoint_config(tmp_path) is None
    assert load_checkpoint_config(tmp_path, store_dir=".cp") == CheckpointConfig()


def test_checkpoint_config_is_immutable():
    config = CheckpointConfig()
    with pytest.raises(Exception):
        config.max_retries = 10
