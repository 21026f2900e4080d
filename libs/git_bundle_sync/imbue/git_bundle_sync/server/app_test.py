"""Tests for the sync server FastAPI application."""

import asyncio
import threading
from datetime import timedelta
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from pydantic import SecretStr
from starlette.requests import Request
from starlette.types import Message

from imbue.git_bundle_sync.config import SyncServerConfig
from imbue.git_bundle_sync.context import SyncContext
from imbue.git_bundle_sync.data_types import PulledBundle
from imbue.git_bundle_sync.data_types import SyncOutcome
from imbue.git_bundle_sync.primitives import AccessToken
from imbue.git_bundle_sync.primitives import AccessTokenPolicy
from imbue.git_bundle_sync.primitives import CommitId
from imbue.git_bundle_sync.primitives import IdempotencyHash
from imbue.git_bundle_sync.primitives import RemoteUrl
from imbue.git_bundle_sync.primitives import SyncOutcomeKind
from imbue.git_bundle_sync.server.app import HASH_HEADER
from imbue.git_bundle_sync.server.app import HEAD_HEADER
from imbue.git_bundle_sync.server.app import IS_PARTIAL_HEADER
from imbue.git_bundle_sync.server.app import REASON_HEADER
from imbue.git_bundle_sync.server.app import create_app
from imbue.git_bundle_sync.server.app import render_index_page
from imbue.git_bundle_sync.server.app import render_outcome
from imbue.git_bundle_sync.server.app import run_until_disconnected
from imbue.git_bundle_sync.testing import RemoteWithHistory

TEST_TOKEN = "remote-token-12345"
AUTH_HEADER = {"Authorization": f"Bearer {TEST_TOKEN}"}


def _make_client(sync_context: SyncContext, **config_values: object) -> TestClient:
    config = SyncServerConfig(root_dir=sync_context.root_dir, **config_values)
    return TestClient(create_app(config=config, sync_context=sync_context))


@pytest.fixture
def client(sync_context: SyncContext) -> TestClient:
    return _make_client(sync_context)


# ===================================
# Rendering
# ===================================


def test_render_no_content_carries_reason() -> None:
    response = render_outcome(SyncOutcome(kind=SyncOutcomeKind.NO_CONTENT, message="no commits"))
    assert response.status_code == 204
    assert response.headers[REASON_HEADER] == "no commits"


def test_render_pulled_bundle() -> None:
    pulled_bundle = PulledBundle(
        data=b"# v2 git bundle\n",
        head_commit_id=CommitId("6f1e0c3a51c8a4c4b0f5c2e9f1a7d3b8c9e0a1b2"),
        is_partial=True,
        idempotency_hash=IdempotencyHash("ab" * 32),
    )
    response = render_outcome(
        SyncOutcome(kind=SyncOutcomeKind.SUCCESS, message="bundle created", pulled_bundle=pulled_bundle)
    )
    assert response.status_code == 200
    assert response.body == b"# v2 git bundle\n"
    assert response.headers[IS_PARTIAL_HEADER] == "true"
    assert response.headers[HEAD_HEADER] == "6f1e0c3a51c8a4c4b0f5c2e9f1a7d3b8c9e0a1b2"
    assert pulled_bundle.filename in response.headers["Content-Disposition"]


@pytest.mark.parametrize(
    ("kind", "status_code"),
    [
        (SyncOutcomeKind.NOT_FOUND, 404),
        (SyncOutcomeKind.AUTH_FAILED, 401),
        (SyncOutcomeKind.CONFLICT, 409),
        (SyncOutcomeKind.BAD_INPUT, 400),
        (SyncOutcomeKind.INTERNAL_ERROR, 500),
    ],
)
def test_render_failures(kind: SyncOutcomeKind, status_code: int) -> None:
    response = render_outcome(SyncOutcome(kind=kind, message="reason"))
    assert response.status_code == status_code
    assert response.body == b'{"detail":"reason"}'


def test_index_page_lists_fixed_routes_only_when_configured(tmp_path: Path) -> None:
    assert "/pull/&lt;branch&gt;" not in render_index_page(SyncServerConfig(root_dir=tmp_path))
    page = render_index_page(SyncServerConfig(root_dir=tmp_path, source_repo=RemoteUrl("https://example.com/a&b.git")))
    assert "/pull/&lt;branch&gt;" in page
    assert "a&amp;b.git" in page


# ===================================
# Endpoints
# ===================================


def test_index(client: TestClient) -> None:
    response = client.get("/")
    assert response.status_code == 200
    assert "<!DOCTYPE html>" in response.text


def test_pull_returns_bundle_and_metadata(client: TestClient, source_remote: RemoteWithHistory) -> None:
    commit_id = source_remote.add_commit("a.txt", "a")

    response = client.get("/pull", params={"repository": source_remote.url, "branch": "main"}, headers=AUTH_HEADER)

    assert response.status_code == 200
    assert response.headers["content-type"] == "application/octet-stream"
    assert response.headers[HEAD_HEADER] == commit_id
    assert response.headers[IS_PARTIAL_HEADER] == "false"
    assert len(response.headers[HASH_HEADER]) == 64
    assert response.content.startswith(b"# v")


def test_pull_with_since(client: TestClient, source_remote: RemoteWithHistory) -> None:
    source_remote.add_commit("a.txt", "a", age=timedelta(hours=3))
    source_remote.add_commit("b.txt", "b", age=timedelta(minutes=5))

    response = client.get(
        "/pull",
        params={"repository": source_remote.url, "branch": "main", "since": "1h"},
        headers=AUTH_HEADER,
    )

    assert response.status_code == 200
    assert response.headers[IS_PARTIAL_HEADER] == "true"


def test_pull_of_empty_repository(client: TestClient, source_remote: RemoteWithHistory) -> None:
    response = client.get("/pull", params={"repository": source_remote.url, "branch": "main"}, headers=AUTH_HEADER)
    assert response.status_code == 204
    assert response.headers[REASON_HEADER] == "no commits"


def test_pull_of_missing_repository(client: TestClient, tmp_path: Path) -> None:
    response = client.get(
        "/pull",
        params={"repository": str(tmp_path / "nowhere.git"), "branch": "main"},
        headers=AUTH_HEADER,
    )
    assert response.status_code == 404
    assert response.json() == {"detail": "repository not found"}


def test_pull_without_token_is_rejected(client: TestClient, source_remote: RemoteWithHistory) -> None:
    response = client.get("/pull", params={"repository": source_remote.url, "branch": "main"})
    assert response.status_code == 400
    assert response.json() == {"detail": "missing access token"}


def test_pull_without_token_when_optional(sync_context: SyncContext, source_remote: RemoteWithHistory) -> None:
    source_remote.add_commit("a.txt", "a")
    client = _make_client(sync_context, pull_token_policy=AccessTokenPolicy.OPTIONAL)

    response = client.get("/pull", params={"repository": source_remote.url, "branch": "main"})

    assert response.status_code == 200


@pytest.mark.parametrize(
    ("params", "detail"),
    [
        ({"branch": "main"}, "missing repository"),
        ({"repository": "/srv/repo.git"}, "missing branch"),
        ({"repository": "/srv/repo.git", "branch": "main", "since": "soon"}, "Invalid duration"),
        ({"repository": "/srv/repo.git", "branch": "main", "after": "yesterday"}, "RFC 3339"),
        (
            {"repository": "/srv/repo.git", "branch": "main", "since": "1h", "after": "2024-01-01T00:00:00Z"},
            "cannot both be set",
        ),
    ],
)
def test_pull_rejects_bad_input(client: TestClient, params: dict[str, str], detail: str) -> None:
    response = client.get("/pull", params=params, headers=AUTH_HEADER)
    assert response.status_code == 400
    assert detail in response.json()["detail"]


def test_push_round_trip(client: TestClient, source_remote: RemoteWithHistory, empty_remote_path: Path) -> None:
    source_remote.add_commit("a.txt", "a")
    pulled = client.get("/pull", params={"repository": source_remote.url, "branch": "main"}, headers=AUTH_HEADER)

    response = client.post(
        "/push",
        params={"repository": str(empty_remote_path), "branch": "main"},
        headers=AUTH_HEADER,
        content=pulled.content,
    )

    assert response.status_code == 200
    assert response.json() == {"detail": "bundle pushed"}


def test_push_of_incremental_bundle_into_empty_repository_conflicts(
    client: TestClient,
    source_remote: RemoteWithHistory,
    empty_remote_path: Path,
) -> None:
    source_remote.add_commit("a.txt", "a", age=timedelta(hours=3))
    source_remote.add_commit("b.txt", "b", age=timedelta(minutes=5))
    pulled = client.get(
        "/pull",
        params={"repository": source_remote.url, "branch": "main", "since": "1h"},
        headers=AUTH_HEADER,
    )

    response = client.post(
        "/push",
        params={"repository": str(empty_remote_path), "branch": "main"},
        headers=AUTH_HEADER,
        content=pulled.content,
    )

    assert response.status_code == 409


def test_push_without_branch_is_rejected(client: TestClient, empty_remote_path: Path) -> None:
    response = client.post("/push", params={"repository": str(empty_remote_path)}, headers=AUTH_HEADER, content=b"")
    assert response.status_code == 400
    assert response.json() == {"detail": "missing branch"}


def test_metrics_endpoint(client: TestClient, source_remote: RemoteWithHistory) -> None:
    client.get("/pull", params={"repository": source_remote.url, "branch": "main"}, headers=AUTH_HEADER)

    response = client.get("/metrics")

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/plain")
    assert 'git_sync_outcomes_total{op="pull",outcome="no_content"} 1.0' in response.text


# ===================================
# Fixed-repository routes
# ===================================


def test_fixed_routes_are_absent_by_default(client: TestClient) -> None:
    assert client.get("/pull/main", headers=AUTH_HEADER).status_code == 404
    assert client.post("/push/main", headers=AUTH_HEADER, content=b"").status_code in (404, 405)


def test_fixed_pull_requires_the_configured_bearer_token(
    sync_context: SyncContext,
    source_remote: RemoteWithHistory,
) -> None:
    commit_id = source_remote.add_commit("a.txt", "a")
    client = _make_client(
        sync_context,
        source_repo=RemoteUrl(source_remote.url),
        auth_token=SecretStr(TEST_TOKEN),
    )

    assert client.get("/pull/main").status_code == 401
    assert client.get("/pull/main", headers={"Authorization": "Bearer wrong"}).status_code == 401

    response = client.get("/pull/main", headers=AUTH_HEADER)
    assert response.status_code == 200
    assert response.headers[HEAD_HEADER] == commit_id


def test_fixed_push_uses_the_configured_sink(
    sync_context: SyncContext,
    source_remote: RemoteWithHistory,
    empty_remote_path: Path,
) -> None:
    source_remote.add_commit("a.txt", "a")
    client = _make_client(
        sync_context,
        source_repo=RemoteUrl(source_remote.url),
        sink_repo=RemoteUrl(str(empty_remote_path)),
        remote_token=AccessToken("remote-side-token"),
    )
    pulled = client.get("/pull/main")
    assert pulled.status_code == 200

    response = client.post("/push/main", content=pulled.content)

    assert response.status_code == 200


# ===================================
# Client disconnects
# ===================================


def _make_request(receive_disconnect: bool) -> Request:
    async def receive() -> Message:
        if receive_disconnect:
            return {"type": "http.disconnect"}
        await asyncio.Event().wait()
        return {"type": "http.request", "body": b""}

    scope = {
        "type": "http",
        "method": "GET",
        "scheme": "http",
        "server": ("testserver", 80),
        "path": "/pull",
        "query_string": b"",
        "headers": [],
    }
    return Request(scope, receive)


def test_client_disconnect_sets_the_cancel_event() -> None:
    request = _make_request(receive_disconnect=True)

    was_cancelled = asyncio.run(
        run_until_disconnected(request, lambda cancel_event: cancel_event.wait(timeout=5.0))
    )

    assert was_cancelled


def test_connected_client_leaves_the_cancel_event_clear() -> None:
    request = _make_request(receive_disconnect=False)
    events: list[threading.Event] = []

    def _work(cancel_event: threading.Event) -> str:
        events.append(cancel_event)
        return "done"

    assert asyncio.run(run_until_disconnected(request, _work)) == "done"
    assert len(events) == 1
    assert not events[0].is_set()
