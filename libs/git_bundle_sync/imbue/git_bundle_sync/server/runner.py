import uvicorn
from loguru import logger

from imbue.git_bundle_sync.classifier import DIAGNOSTIC_MARKERS_VERSION
from imbue.git_bundle_sync.config import SyncServerConfig
from imbue.git_bundle_sync.context import SyncContext
from imbue.git_bundle_sync.server.app import create_app


def start_sync_server(config: SyncServerConfig) -> None:
    """Build the sync context and app for config and serve it with uvicorn until interrupted."""
    sync_context = SyncContext.build(
        root_dir=config.root_dir,
        command_timeout_seconds=config.command_timeout_seconds,
        lock_timeout_seconds=config.lock_timeout_seconds,
    )
    app = create_app(config=config, sync_context=sync_context)

    scheme = "https" if config.is_https else "http"
    logger.info("Serving on {}://{}:{} (mirrors in {})", scheme, config.host, config.port, config.root_dir)
    logger.debug("Classifying git failures with diagnostic marker table v{}", DIAGNOSTIC_MARKERS_VERSION)
    uvicorn.run(
        app,
        host=config.host,
        port=config.port,
        ssl_certfile=str(config.cert_file) if config.cert_file is not None else None,
        ssl_keyfile=str(config.key_file) if config.key_file is not None else None,
        log_level=config.log_level.lower(),
    )
