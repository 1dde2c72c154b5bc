import pytest
import structlog

import turnkeeper.config as config_module


@pytest.fixture(autouse=True)
def _reset_global_state():
    yield
    # CLI tests configure structlog against a captured stream.
    structlog.reset_defaults()
    config_module._config = None
