"""Shared fixtures: a temp-dir state store, a configured target, and mocked collaborators."""

from unittest.mock import MagicMock

import pytest

from bridge.page_agent import PageAgentBridge, PageInfo
from clients.service_client import RemoteServiceClient
from coordinator.coordinator import Coordinator
from coordinator.events import EventBus
from coordinator.heartbeat import Heartbeat
from models.workflow import GeneratedArtifact, PreviewVariant
from storage.state_store import CONFIG_KEY, StateStore

# Opaque image payloads; the coordinator never decodes them.
FULL_PNG = b"\x89PNG\r\n\x1a\n" + b"full-viewport"
CROPPED_PNG = b"\x89PNG\r\n\x1a\n" + b"10x10"

PREVIEW_URL = "https://test--site--org.example/preview/quick-links"


@pytest.fixture
def store(tmp_path):
    """Empty store in a temp directory."""
    return StateStore(state_dir=str(tmp_path / "state"))


@pytest.fixture
def configured_store(store):
    store.set(
        CONFIG_KEY,
        {"repositoryRef": "org/repo", "contentOrg": "org", "contentSite": "site"},
    )
    return store


@pytest.fixture
def page():
    page = MagicMock()
    page.url = "https://example.com/booking"
    return page


@pytest.fixture
def bridge(page):
    """Page agent bridge with a single focused content page."""
    bridge = MagicMock(spec=PageAgentBridge)
    bridge.find_target_page.return_value = PageInfo(page=page, url=page.url, focused=True)
    bridge.capture_visible.return_value = FULL_PNG
    bridge.crop.return_value = CROPPED_PNG
    return bridge


@pytest.fixture
def service():
    """Remote service stub answering the happy path."""
    service = MagicMock(spec=RemoteServiceClient)
    service.generate.return_value = GeneratedArtifact(
        artifact_name="quick-links",
        markup="<div class=\"quick-links\">Book online</div>",
        style=".quick-links { display: flex; }",
        behavior="export default function decorate(block) {}",
    )
    service.push_preview.return_value = PreviewVariant(
        preview_url=PREVIEW_URL,
        branch_ref="preview-abc123",
    )
    return service


@pytest.fixture
def heartbeat():
    # Long interval: the ping never fires during a test.
    return Heartbeat(interval=60)


@pytest.fixture
def events():
    return EventBus()


@pytest.fixture
def coordinator(configured_store, service, bridge, heartbeat, events):
    return Coordinator(
        store=configured_store,
        service=service,
        bridge=bridge,
        heartbeat=heartbeat,
        events=events,
    )


def drain_events(queue):
    """Everything currently queued for a subscriber, in publish order."""
    collected = []
    while not queue.empty():
        collected.append(queue.get_nowait())
    return collected
