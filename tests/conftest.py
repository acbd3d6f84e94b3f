import logging
from datetime import datetime, timezone

import pytest

from parley.config import Config
from parley.engine import ConversationEngine
from parley.timeutil import ManualClock


@pytest.fixture
def clock():
    return ManualClock(datetime(2026, 1, 13, 10, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def make_engine(tmp_path, clock):
    engines = []

    def _make(**overrides):
        cfg = Config(data_dir=str(tmp_path), validate_invariants=True)
        for key, value in overrides.items():
            setattr(cfg, key, value)
        engine = ConversationEngine.from_config(cfg, clock=clock)
        engines.append(engine)
        return engine

    yield _make
    for engine in engines:
        engine.close()


@pytest.fixture(autouse=True)
def _detach_log_handlers():
    yield
    logger = logging.getLogger("parley")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
