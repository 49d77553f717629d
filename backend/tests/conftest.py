"""Pytest configuration and fixtures."""

from collections.abc import AsyncGenerator, Iterator
from typing import Any

import httpx
import pytest
import respx

from autoflow.client.automations import AutomationsClient
from autoflow.config import CoordinatorSettings
from autoflow.services.session import GraphSession

BASE_URL = "http://backend.test/api"
TOKEN = "test-token"


def node_payload(code: str, **overrides: Any) -> dict[str, Any]:
    """Raw node as the backend sends it."""
    payload: dict[str, Any] = {
        "code": code,
        "name": f"Step {code}",
        "headline": f"Headline {code}",
        "description": f"Does the {code} work",
        "dependencies": [],
        "status": "operational",
        "statusLabel": "Operational",
        "sequence": 1,
        "kind": "webhook",
        "webhookUrl": f"https://hooks.example.com/{code.lower()}",
        "connected": True,
        "lastRun": None,
    }
    payload.update(overrides)
    return payload


def sample_nodes() -> list[dict[str, Any]]:
    """A feeds B and C; D waits on both and has no webhook."""
    return [
        node_payload("A", sequence=1),
        node_payload("B", sequence=2, dependencies=["A"]),
        node_payload("C", sequence=3, dependencies=["A"]),
        node_payload("D", sequence=4, dependencies=["B", "C"], webhookUrl=None, connected=False),
    ]


@pytest.fixture
def settings() -> CoordinatorSettings:
    """Settings with short timers so revert behaviour is observable."""
    return CoordinatorSettings(
        api_base_url=BASE_URL,
        api_token=TOKEN,
        revert_delay=0.05,
        poll_interval=3600,
        timezone="Europe/Berlin",
        history_limit=25,
        hidden_codes=["VPE"],
    )


@pytest.fixture
def backend() -> Iterator[respx.MockRouter]:
    """Mocked automations backend; routes are added per test."""
    with respx.mock(base_url=BASE_URL, assert_all_called=False) as router:
        yield router


@pytest.fixture
async def automations_client() -> AsyncGenerator[AutomationsClient, None]:
    async with AutomationsClient(BASE_URL, token=TOKEN, timeout=5) as client:
        yield client


@pytest.fixture
async def graph_session(
    backend: respx.MockRouter,
    automations_client: AutomationsClient,
    settings: CoordinatorSettings,
) -> AsyncGenerator[GraphSession, None]:
    """A mounted session over the sample graph."""
    backend.get("/automations").mock(
        return_value=httpx.Response(200, json={"nodes": sample_nodes()})
    )
    backend.get("/automations/status").mock(return_value=httpx.Response(200, json=[]))

    session = GraphSession(automations_client, settings)
    await session.mount()
    yield session
    await session.unmount()
