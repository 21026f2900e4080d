import asyncio
import threading
from collections.abc import Callable
from typing import Annotated
from typing import Final
from typing import TypeVar

from fastapi import Depends
from fastapi import FastAPI
from fastapi import HTTPException
from fastapi import Query
from fastapi import Request
from fastapi.responses import HTMLResponse
from fastapi.responses import JSONResponse
from fastapi.responses import Response
from loguru import logger
from starlette.concurrency import run_in_threadpool

from imbue.git_bundle_sync.config import SyncServerConfig
from imbue.git_bundle_sync.context import SyncContext
from imbue.git_bundle_sync.data_types import BundleOptions
from imbue.git_bundle_sync.data_types import RemoteRepoRef
from imbue.git_bundle_sync.data_types import SyncOutcome
from imbue.git_bundle_sync.errors import AccessTokenMissingError
from imbue.git_bundle_sync.errors import BadInputError
from imbue.git_bundle_sync.metrics import METRICS_CONTENT_TYPE
from imbue.git_bundle_sync.primitives import AccessTokenPolicy
from imbue.git_bundle_sync.primitives import SyncOutcomeKind
from imbue.git_bundle_sync.pull import pull_bundle
from imbue.git_bundle_sync.push import push_bundle
from imbue.git_bundle_sync.utils.duration import parse_duration
from imbue.git_bundle_sync.utils.duration import parse_timestamp

HEAD_HEADER: Final[str] = "X-Git-Head"
IS_PARTIAL_HEADER: Final[str] = "X-Git-IsPartial"
HASH_HEADER: Final[str] = "X-Git-Hash"
REASON_HEADER: Final[str] = "X-Git-Sync-Reason"

_DISCONNECT_POLL_SECONDS: Final[float] = 0.5

T = TypeVar("T")

_BUNDLE_MEDIA_TYPE: Final[str] = "application/octet-stream"

_STATUS_BY_OUTCOME_KIND: Final[dict[SyncOutcomeKind, int]] = {
    SyncOutcomeKind.SUCCESS: 200,
    SyncOutcomeKind.NO_CONTENT: 204,
    SyncOutcomeKind.NOT_FOUND: 404,
    SyncOutcomeKind.AUTH_FAILED: 401,
    SyncOutcomeKind.CONFLICT: 409,
    SyncOutcomeKind.BAD_INPUT: 400,
    SyncOutcomeKind.INTERNAL_ERROR: 500,
}


# -- Dependency injection helpers --


def _get_config(request: Request) -> SyncServerConfig:
    return request.app.state.config


def _get_sync_context(request: Request) -> SyncContext:
    return request.app.state.sync_context


ConfigDep = Annotated[SyncServerConfig, Depends(_get_config)]
SyncContextDep = Annotated[SyncContext, Depends(_get_sync_context)]


# -- Request helpers --


def _get_bearer_token(request: Request) -> str | None:
    auth = request.headers.get("Authorization", "")
    if auth.startswith("Bearer "):
        token = auth[7:].strip()
        return token or None
    return None


def _check_token_policy(policy: AccessTokenPolicy, token: str | None) -> None:
    if policy == AccessTokenPolicy.REQUIRED and token is None:
        raise AccessTokenMissingError()


def _check_inbound_token(config: SyncServerConfig, request: Request) -> None:
    """The fixed-repository routes only serve callers presenting the configured bearer token."""
    if config.auth_token is None:
        return
    if _get_bearer_token(request) != config.auth_token.get_secret_value():
        raise HTTPException(status_code=401, detail="Unauthorized")


def _get_fixed_repo_token(config: SyncServerConfig, request: Request) -> str | None:
    if config.remote_token is not None:
        return config.remote_token.get_secret_value()
    return _get_bearer_token(request)


def _build_bundle_options(since: str | None, after: str | None) -> BundleOptions:
    return BundleOptions.build(
        since=parse_duration(since) if since else None,
        after=parse_timestamp(after) if after else None,
    )


def render_outcome(outcome: SyncOutcome) -> Response:
    """Translate a SyncOutcome into the HTTP response callers see."""
    status_code = _STATUS_BY_OUTCOME_KIND[outcome.kind]
    if outcome.kind == SyncOutcomeKind.NO_CONTENT:
        return Response(status_code=status_code, headers={REASON_HEADER: outcome.message})
    pulled_bundle = outcome.pulled_bundle
    if outcome.kind == SyncOutcomeKind.SUCCESS and pulled_bundle is not None:
        return Response(
            content=pulled_bundle.data,
            media_type=_BUNDLE_MEDIA_TYPE,
            headers={
                HEAD_HEADER: str(pulled_bundle.head_commit_id),
                IS_PARTIAL_HEADER: "true" if pulled_bundle.is_partial else "false",
                HASH_HEADER: str(pulled_bundle.idempotency_hash),
                "Content-Disposition": f'attachment; filename="{pulled_bundle.filename}"',
            },
        )
    return JSONResponse(status_code=status_code, content={"detail": outcome.message})


async def _handle_bad_input(request: Request, exc: Exception) -> JSONResponse:
    logger.debug("Rejecting request to {}: {}", request.url.path, exc)
    return JSONResponse(status_code=400, content={"detail": str(exc)})


async def _watch_for_disconnect(request: Request, cancel_event: threading.Event) -> None:
    while not await request.is_disconnected():
        await asyncio.sleep(_DISCONNECT_POLL_SECONDS)
    logger.info("Client disconnected from {}, stopping git", request.url.path)
    cancel_event.set()


async def run_until_disconnected(request: Request, func: Callable[[threading.Event], T]) -> T:
    """Run func in the worker threadpool, setting the event it receives if the client goes away.

    Any request body must already have been read, since checking for a disconnect consumes messages.
    """
    cancel_event = threading.Event()
    watcher = asyncio.create_task(_watch_for_disconnect(request, cancel_event))
    try:
        return await run_in_threadpool(func, cancel_event)
    finally:
        watcher.cancel()


# -- Route handlers --


async def _handle_pull(
    config: ConfigDep,
    sync_context: SyncContextDep,
    request: Request,
    repository: str | None = Query(None, description="URL of the repository to export"),
    branch: str | None = Query(None, description="Branch to export"),
    since: str | None = Query(None, description="Only include commits newer than this duration (e.g. 1h30m)"),
    after: str | None = Query(None, description="Only include commits after this RFC 3339 timestamp"),
) -> Response:
    token = _get_bearer_token(request)
    _check_token_policy(config.get_token_policy(is_push=False), token)
    repo = RemoteRepoRef.build(repository, branch, token)
    options = _build_bundle_options(since, after)
    outcome = await run_until_disconnected(
        request, lambda cancel_event: pull_bundle(sync_context, repo, options, cancel_event)
    )
    return render_outcome(outcome)


async def _handle_push(
    config: ConfigDep,
    sync_context: SyncContextDep,
    request: Request,
    repository: str | None = Query(None, description="URL of the repository to update"),
    branch: str | None = Query(None, description="Branch to update"),
) -> Response:
    token = _get_bearer_token(request)
    _check_token_policy(config.get_token_policy(is_push=True), token)
    repo = RemoteRepoRef.build(repository, branch, token)
    payload = await request.body()
    outcome = await run_until_disconnected(
        request, lambda cancel_event: push_bundle(sync_context, repo, payload, cancel_event)
    )
    return render_outcome(outcome)


async def _handle_fixed_pull(
    branch: str,
    config: ConfigDep,
    sync_context: SyncContextDep,
    request: Request,
    since: str | None = Query(None),
    after: str | None = Query(None),
) -> Response:
    _check_inbound_token(config, request)
    token = _get_fixed_repo_token(config, request)
    _check_token_policy(config.get_token_policy(is_push=False), token)
    repo = RemoteRepoRef.build(config.source_repo, branch, token)
    options = _build_bundle_options(since, after)
    outcome = await run_until_disconnected(
        request, lambda cancel_event: pull_bundle(sync_context, repo, options, cancel_event)
    )
    return render_outcome(outcome)


async def _handle_fixed_push(
    branch: str,
    config: ConfigDep,
    sync_context: SyncContextDep,
    request: Request,
) -> Response:
    _check_inbound_token(config, request)
    token = _get_fixed_repo_token(config, request)
    _check_token_policy(config.get_token_policy(is_push=True), token)
    repo = RemoteRepoRef.build(config.sink_repo, branch, token)
    payload = await request.body()
    outcome = await run_until_disconnected(
        request, lambda cancel_event: push_bundle(sync_context, repo, payload, cancel_event)
    )
    return render_outcome(outcome)


def _handle_metrics(sync_context: SyncContextDep) -> Response:
    return Response(content=sync_context.metrics.render(), media_type=METRICS_CONTENT_TYPE)


def _handle_index(config: ConfigDep) -> HTMLResponse:
    return HTMLResponse(content=render_index_page(config))


def render_index_page(config: SyncServerConfig) -> str:
    """HTML listing of the endpoints this server offers."""
    items = [
        "<li><code>GET /pull?repository=&lt;url&gt;&amp;branch=&lt;branch&gt;[&amp;since=1h|&amp;after=RFC3339]</code></li>",
        "<li><code>POST /push?repository=&lt;url&gt;&amp;branch=&lt;branch&gt;</code> (bundle as body)</li>",
    ]
    if config.source_repo is not None:
        items.append(f"<li><code>GET /pull/&lt;branch&gt;</code> from <code>{_escape(config.source_repo)}</code></li>")
    if config.sink_repo is not None:
        items.append(f"<li><code>POST /push/&lt;branch&gt;</code> to <code>{_escape(config.sink_repo)}</code></li>")
    items.append('<li><a href="/metrics">/metrics</a></li>')
    return (
        "<!DOCTYPE html>\n<html><head><title>git-bundle-sync</title></head><body>"
        "<h1>git-bundle-sync</h1><ul>" + "".join(items) + "</ul></body></html>"
    )


def _escape(text: str) -> str:
    return text.replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;")


def create_app(config: SyncServerConfig, sync_context: SyncContext) -> FastAPI:
    """Create the sync server FastAPI application.

    The fixed-repository routes are only registered when the matching repository is configured.
    """
    app = FastAPI(title="git-bundle-sync", docs_url=None, redoc_url=None)

    app.state.config = config
    app.state.sync_context = sync_context

    app.add_exception_handler(BadInputError, _handle_bad_input)

    app.get("/", response_class=HTMLResponse)(_handle_index)
    app.get("/metrics")(_handle_metrics)
    app.get("/pull")(_handle_pull)
    app.post("/push")(_handle_push)
    if config.source_repo is not None:
        app.get("/pull/{branch}")(_handle_fixed_pull)
    if config.sink_repo is not None:
        app.post("/push/{branch}")(_handle_fixed_push)

    return app
