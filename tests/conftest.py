"""Shared pytest fixtures."""

from __future__ import annotations

import os

import pytest

from chatrelay.ai.orchestration.interrupts import InterruptController
from chatrelay.chat.mentionables import MentionableRegistry
from chatrelay.services.settings import Settings


@pytest.fixture(autouse=True)
def _isolate_environment(monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
    for name in list(os.environ):
        if name.startswith("CHATRELAY_"):
            monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("CHATRELAY_LOG_DIR", str(tmp_path / "logs"))


@pytest.fixture
def registry() -> MentionableRegistry:
    return MentionableRegistry()


@pytest.fixture
def settings() -> Settings:
    return Settings(base_url="http://backend.test", api_token="secret-token")


@pytest.fixture
def interrupts():
    controller = InterruptController()
    yield controller
    controller.close()
