"""
Shared test fixtures and configuration.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from cloudadmin.adapters.base import SessionOptions
from cloudadmin.adapters.mock import FakeSession
from cloudadmin.core.engine.executor import CommandEngine
from cloudadmin.core.models.settings import EngineSettings
from cloudadmin.core.services.auth import StaticAuthProvider
from cloudadmin.core.services.prompts import AutoPrompter

ADMIN_UPN = "admin@contoso.com"


@pytest.fixture
def fake_session() -> FakeSession:
    return FakeSession()


@pytest.fixture
def sleeps() -> list[float]:
    """Backoff delays requested by the engine, in order."""
    return []


@pytest.fixture
def prompter() -> AutoPrompter:
    return AutoPrompter()


@pytest.fixture
def auth() -> StaticAuthProvider:
    return StaticAuthProvider(ADMIN_UPN, {"https://graph.microsoft.com/.default": "graph-token"})


@pytest.fixture
def make_engine(fake_session, sleeps, prompter, auth, tmp_path: Path):
    """Build a CommandEngine on top of ``fake_session``.

    Keyword arguments override EngineSettings fields.  Backoff sleeps
    are recorded instead of awaited; ``tmp_path`` as base dir keeps the
    bundled-runtime path setup from touching the real environment.
    """

    def _make(session: FakeSession | None = None, **overrides) -> CommandEngine:
        target = session or fake_session

        def factory(options: SessionOptions) -> FakeSession:
            target.options = options
            return target

        async def record_sleep(delay: float) -> None:
            sleeps.append(delay)

        return CommandEngine(
            auth,
            settings=EngineSettings(**overrides),
            session_factory=factory,
            prompter=prompter,
            base_dir=tmp_path,
            sleep=record_sleep,
        )

    return _make
