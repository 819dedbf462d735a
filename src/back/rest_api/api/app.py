"""Application factory for rest-api."""
import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from starlette.responses import Response

from ..observability.metrics import metrics_text
from ..observability.middleware import MetricsMiddleware, RequestIdMiddleware, RequestLoggingMiddleware
from .config import APIConfig, ConfigurationHolder
from .context import API_PREFIX
from .pipeline import RequestPipeline
from .responses import ResponseBuilder
from .schemas import Configuration
from .storage import Storage

logger = logging.getLogger(__name__)

API_METHODS = ['GET', 'HEAD', 'POST', 'PUT', 'PATCH', 'DELETE', 'OPTIONS']


def create_app(
    config: APIConfig | None = None,
    configuration: Configuration | dict[str, Any] | None = None,
    storage: Storage | None = None,
    watch_config: bool | None = None,
    min_compress_size: int = 0,
) -> FastAPI:
    """Create a pre-wired FastAPI application.

    All dependencies are injectable for testing and customization.

    Args:
        config: Process settings. Defaults to ``WORKSPACE_ROOT`` (or the
            current directory) as workspace.
        configuration: Host configuration document. When omitted it is
            read from ``config.config_path``; without a path the defaults
            apply (guest access, no endpoints).
        storage: Storage backend. Defaults to LocalStorage.
        watch_config: Reload when the configuration file changes.
            Defaults to ``config.watch_config``.
        min_compress_size: Smallest body (bytes) that gets compressed.

    Returns:
        Configured FastAPI application.

    Raises:
        ConfigValidationError: If the initial configuration is invalid.

    Example:
        app = create_app(
            APIConfig(workspace_root=Path('/srv/share')),
            configuration={'guest': {'canOpen': True, 'files': ['*.md']}},
        )
    """
    if config is None:
        workspace = Path(os.environ.get('WORKSPACE_ROOT', Path.cwd()))
        workspace.mkdir(parents=True, exist_ok=True)
        config = APIConfig(workspace_root=workspace)

    try:
        config.validate_startup()
    except ValueError as e:
        logger.error('Configuration validation failed: %s', e)
        raise

    holder = ConfigurationHolder(config, configuration=configuration, storage=storage)
    pipeline = RequestPipeline(holder, ResponseBuilder(min_compress_size=min_compress_size))
    watch = config.watch_config if watch_config is None else watch_config

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info('REST API startup')
        logger.info('Workspace root: %s', config.workspace_root)
        logger.info('Configuration file: %s', config.config_path or '-')
        if watch:
            holder.start_watcher()
        yield
        await holder.stop_watcher()

    app = FastAPI(
        title='REST API',
        description='Workspace file tree and scripted endpoints over HTTP',
        version='0.1.0',
        lifespan=lifespan,
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_credentials=True,
        allow_methods=['*'],
        allow_headers=['*'],
    )

    # Middleware chain executes in reverse order of registration
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(MetricsMiddleware)
    app.add_middleware(RequestIdMiddleware)

    app.state.config = config
    app.state.holder = holder
    app.state.pipeline = pipeline

    @app.get('/health')
    async def health():
        """Health check endpoint."""
        return {
            'status': 'ok',
            'generation': holder.current.number,
        }

    @app.get('/metrics')
    async def prometheus_metrics():
        """Prometheus metrics exposition endpoint."""
        body, content_type = metrics_text()
        return Response(content=body, media_type=content_type)

    @app.api_route(API_PREFIX, methods=API_METHODS, include_in_schema=False)
    @app.api_route(API_PREFIX + '/{path:path}', methods=API_METHODS, include_in_schema=False)
    async def dispatch(request: Request) -> Response:
        return await pipeline.handle(request)

    return app
