"""
Pytest fixtures for the ontology FSM engine test suite.

Provides:
- Structured logging configuration and log capture
- Deterministic clock and actor ids
- SQLite-backed engines and session factories (in-memory and file)
- The bundled default configuration pack and engines wired from it
"""

import json
import logging
from datetime import UTC, datetime
from io import StringIO

import pytest

from onto_config import get_active_config
from onto_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
)
from onto_kernel.db.immutability import (
    register_immutability_listeners,
    unregister_immutability_listeners,
)
from onto_kernel.domain.clock import DeterministicClock
from onto_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from onto_services.wiring import build_engine

TEST_ACTOR_ID = "actor-0001"
TEST_USER_ID = "user-0001"
FIXED_TIME = datetime(2026, 3, 14, 9, 30, tzinfo=UTC)


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture onto_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, engine):
            engine.run_transition(...)
            logs = captured_logs()
            assert any(r["message"] == "fsm_transition" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("onto_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Identity and time
# =============================================================================


@pytest.fixture
def actor_id() -> str:
    return TEST_ACTOR_ID


@pytest.fixture
def user_id() -> str:
    return TEST_USER_ID


@pytest.fixture
def deterministic_clock():
    return DeterministicClock(FIXED_TIME)


# =============================================================================
# Database fixtures
# =============================================================================


@pytest.fixture
def sqlite_engine():
    """Fresh in-memory SQLite database with all tables."""
    engine = init_engine_from_url("sqlite://")
    create_tables(engine)
    register_immutability_listeners()
    yield engine
    unregister_immutability_listeners()
    drop_tables(engine)
    reset_engine()


@pytest.fixture
def session_factory(sqlite_engine):
    return get_session_factory()


@pytest.fixture
def file_session_factory(tmp_path):
    """File-backed SQLite so concurrent threads use separate connections."""
    engine = init_engine_from_url(f"sqlite:///{tmp_path / 'onto_fsm.db'}")
    create_tables(engine)
    yield get_session_factory()
    drop_tables(engine)
    reset_engine()


# =============================================================================
# Configuration and engines
# =============================================================================


@pytest.fixture(scope="session")
def default_pack():
    """The bundled default configuration set, assembled and validated once."""
    return get_active_config()


@pytest.fixture
def components(default_pack, deterministic_clock):
    """In-memory engine wired from the default pack."""
    return build_engine(default_pack, clock=deterministic_clock)


@pytest.fixture
def engine(components):
    return components.engine


@pytest.fixture
def entity_store(components):
    return components.entity_store


@pytest.fixture
def job_queue(components):
    return components.job_queue


@pytest.fixture
def document_store(components):
    return components.document_store
