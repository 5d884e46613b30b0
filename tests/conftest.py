"""Shared test fixtures."""

from __future__ import annotations

import sys

import pytest

from assist_router.config import Settings
from assist_router.models import ProviderDescriptor, ProviderKind

ECHO_AGENT_ARGS = ("-m", "assist_router.backend.echo_agent")


@pytest.fixture()
def settings() -> Settings:
    return Settings()


@pytest.fixture()
def echo_descriptor() -> ProviderDescriptor:
    """Local descriptor running the deterministic echo agent."""

    return ProviderDescriptor(
        name="echo",
        kind=ProviderKind.LOCAL,
        command=sys.executable,
        args=ECHO_AGENT_ARGS,
    )


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    monkeypatch.delenv("ASSIST_ROUTER_PRICING", raising=False)
