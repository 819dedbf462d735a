"""Configuration for rest-api.

Two layers:

- ``APIConfig``: process settings (workspace root, configuration file,
  CORS origins), filled from environment variables.
- ``Configuration`` (see ``schemas``): the host configuration document
  with accounts, endpoints and the validator. Each accepted document is
  compiled into an immutable ``ConfigGeneration``; ``ConfigurationHolder``
  swaps generations atomically on reload.
"""
from __future__ import annotations

import asyncio
import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from pydantic import ValidationError
from watchfiles import awatch

from ..observability.metrics import CONFIG_RELOADS_TOTAL
from .accounts import AccountStore
from .auth import IdentityResolver
from .endpoints import EndpointRouter
from .engine import ScriptExecutionEngine, ScriptState
from .modules.files import FileService
from .schemas import Configuration
from .scripts import ScriptLoadError, ScriptRegistry
from .storage import LocalStorage, Storage
from .user import UserVariableStore
from .visibility import VisibilityFilter

logger = logging.getLogger(__name__)

_TRUTHY = {'1', 'true', 'yes', 'on'}


def _default_cors_origins() -> list[str]:
    """Get default CORS origins, supporting env override."""
    env_origins = os.environ.get('CORS_ORIGINS', '')
    if env_origins:
        return [o.strip() for o in env_origins.split(',') if o.strip()]
    return ['*']


def _default_config_path() -> Path | None:
    raw = os.environ.get('REST_API_CONFIG', '').strip()
    return Path(raw) if raw else None


def _default_watch_config() -> bool:
    return os.environ.get('REST_API_WATCH_CONFIG', '').strip().lower() in _TRUTHY


@dataclass
class APIConfig:
    """Process-level settings shared by the app factory and its services.

    Environment variables:
        WORKSPACE_ROOT: served directory (read by ``create_app`` when no
            config is passed)
        REST_API_CONFIG: path of the JSON configuration document
        CORS_ORIGINS: comma-separated allowed origins
        REST_API_WATCH_CONFIG: reload when the configuration file changes
    """
    workspace_root: Path
    config_path: Path | None = field(default_factory=_default_config_path)
    cors_origins: list[str] = field(default_factory=_default_cors_origins)
    watch_config: bool = field(default_factory=_default_watch_config)

    def __post_init__(self) -> None:
        self.workspace_root = Path(self.workspace_root)
        if self.config_path is not None:
            self.config_path = Path(self.config_path)

    def validate_path(self, path: Path | str) -> Path:
        """Validate that a path is within workspace_root.

        Args:
            path: Path to validate (relative or absolute)

        Returns:
            Resolved absolute path within workspace_root

        Raises:
            ValueError: If path escapes workspace_root
        """
        if isinstance(path, str):
            path = Path(path)

        resolved = (self.workspace_root / path).resolve()

        if not resolved.is_relative_to(self.workspace_root.resolve()):
            raise ValueError(f'Path traversal detected: {path}')

        return resolved

    def validate_startup(self) -> None:
        """Fail fast on settings the server cannot start with.

        Raises:
            ValueError: If the workspace root is not a directory.
        """
        if not self.workspace_root.is_dir():
            raise ValueError(f'Workspace root is not a directory: {self.workspace_root}')


class ConfigValidationError(Exception):
    """The configuration document cannot be turned into a generation."""


def parse_configuration(data: Any) -> Configuration:
    """Validate a decoded configuration document.

    Raises:
        ConfigValidationError: If the document does not validate.
    """
    if isinstance(data, Configuration):
        return data
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigValidationError('Configuration must be a JSON object')
    try:
        return Configuration.model_validate(data)
    except ValidationError as exc:
        raise ConfigValidationError(str(exc)) from exc


def load_configuration(path: Path) -> Configuration:
    """Read and validate the JSON configuration file at ``path``.

    Raises:
        ConfigValidationError: If the file is unreadable, not JSON, or invalid.
    """
    try:
        text = Path(path).read_text(encoding='utf-8')
    except OSError as exc:
        raise ConfigValidationError(f'Cannot read configuration {path}: {exc}') from exc
    try:
        data = json.loads(text) if text.strip() else {}
    except json.JSONDecodeError as exc:
        raise ConfigValidationError(f'Invalid JSON in {path}: {exc}') from exc
    return parse_configuration(data)


@dataclass(frozen=True)
class ConfigGeneration:
    """Everything compiled from one accepted configuration document."""

    number: int
    configuration: Configuration
    accounts: AccountStore
    identity: IdentityResolver
    router: EndpointRouter
    registry: ScriptRegistry
    script_state: ScriptState
    engine: ScriptExecutionEngine
    visibility: VisibilityFilter
    files: FileService


def build_generation(
    configuration: Configuration,
    *,
    workspace_root: Path,
    number: int,
    storage: Storage,
) -> ConfigGeneration:
    """Compile ``configuration`` and load every script it references.

    Raises:
        ConfigValidationError: On an invalid endpoint pattern or a script
            that cannot be loaded.
    """
    try:
        router = EndpointRouter.from_configuration(configuration.endpoints)
    except ValueError as exc:
        raise ConfigValidationError(f'Invalid endpoint pattern: {exc}') from exc

    registry = ScriptRegistry(workspace_root)
    try:
        for endpoint in router.endpoints:
            registry.load_api(endpoint.pattern, endpoint.script)
        if configuration.validator is not None:
            registry.load_validator(configuration.validator.script)
    except ScriptLoadError as exc:
        raise ConfigValidationError(str(exc)) from exc

    accounts = AccountStore.from_configuration(configuration)
    visibility = VisibilityFilter(workspace_root, with_dot=configuration.with_dot)
    script_state = ScriptState()
    engine = ScriptExecutionEngine(
        registry,
        script_state,
        globals=configuration.globals,
        validator=configuration.validator,
    )
    return ConfigGeneration(
        number=number,
        configuration=configuration,
        accounts=accounts,
        identity=IdentityResolver(accounts, configuration.realm),
        router=router,
        registry=registry,
        script_state=script_state,
        engine=engine,
        visibility=visibility,
        files=FileService(storage, visibility),
    )


class ConfigurationHolder:
    """Owns the active generation and replaces it on reload.

    Requests read ``current`` once and keep that generation for their
    whole lifetime; a reload only swaps the reference. User variables live
    here so they survive reloads.
    """

    def __init__(
        self,
        config: APIConfig,
        configuration: Configuration | dict | None = None,
        storage: Storage | None = None,
    ):
        self.config = config
        self.storage = storage or LocalStorage(config.workspace_root)
        self.variables = UserVariableStore()
        self._number = 0
        self._watcher_task: asyncio.Task | None = None

        initial = parse_configuration(configuration) if configuration is not None else self._read()
        self._generation = self._build(initial)
        CONFIG_RELOADS_TOTAL.labels(outcome='initial').inc()
        logger.info(
            'Configuration generation %d active (%d endpoints)',
            self._generation.number,
            len(self._generation.router.endpoints),
        )

    @property
    def current(self) -> ConfigGeneration:
        return self._generation

    def _read(self) -> Configuration:
        if self.config.config_path is None:
            return Configuration()
        return load_configuration(self.config.config_path)

    def _build(self, configuration: Configuration) -> ConfigGeneration:
        generation = build_generation(
            configuration,
            workspace_root=self.config.workspace_root,
            number=self._number + 1,
            storage=self.storage,
        )
        self._number = generation.number
        return generation

    def reload(self, configuration: Configuration | dict | None = None) -> bool:
        """Build a new generation and make it current.

        With no argument the configuration file is read again. On failure
        the previous generation stays active.

        Returns:
            True if the new generation was swapped in.
        """
        try:
            parsed = parse_configuration(configuration) if configuration is not None else self._read()
            generation = self._build(parsed)
        except ConfigValidationError as exc:
            CONFIG_RELOADS_TOTAL.labels(outcome='failed').inc()
            logger.error(
                'Configuration reload failed, keeping generation %d: %s',
                self._generation.number,
                exc,
            )
            return False

        self._generation = generation
        CONFIG_RELOADS_TOTAL.labels(outcome='ok').inc()
        logger.info(
            'Configuration generation %d active (%d endpoints)',
            generation.number,
            len(generation.router.endpoints),
        )
        return True

    # File watching

    def start_watcher(self) -> None:
        """Start watching the configuration file (idempotent)."""
        if self._watcher_task is not None or self.config.config_path is None:
            return
        self._watcher_task = asyncio.create_task(self._watch_loop())

    async def stop_watcher(self) -> None:
        task, self._watcher_task = self._watcher_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _watch_loop(self) -> None:
        target = self.config.config_path.resolve()

        def _is_target(_change: Any, path: str) -> bool:
            return Path(path).resolve() == target

        logger.info('config_watcher_start', extra={'path': str(target)})
        try:
            async for changes in awatch(target.parent, watch_filter=_is_target):
                logger.info('config_change', extra={'changes': str(changes)})
                self.reload()
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception('config_watcher_error')
