"""Script module loading and the per-generation handler registry.

A script is a Python file. API scripts export module-level callables
named after lower-case HTTP methods (``get``, ``post``, ``delete``, ...);
validator scripts export ``validate``. Handlers may be plain functions or
coroutine functions.

Scripts are loaded once per configuration generation. A script that
cannot be loaded fails the generation build.
"""
from __future__ import annotations

import hashlib
import importlib.util
import logging
import sys
import types
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Mapping

logger = logging.getLogger(__name__)

HTTP_METHODS = ('get', 'head', 'post', 'put', 'patch', 'delete', 'options')
VALIDATE = 'validate'


class ScriptLoadError(Exception):
    """A script is missing, fails to import, or lacks required exports."""


@dataclass(frozen=True)
class HandlerSet:
    """The entry points exported by one loaded script."""

    script: str
    path: Path
    module: types.ModuleType = field(repr=False)
    handlers: Mapping[str, Callable] = field(default_factory=dict)

    @property
    def methods(self) -> tuple[str, ...]:
        return tuple(self.handlers)

    def handler_for(self, method: str) -> Callable | None:
        return self.handlers.get(method.lower())


def _module_name(path: Path) -> str:
    digest = hashlib.sha256(str(path).encode('utf-8')).hexdigest()[:16]
    return f'rest_api_script_{path.stem}_{digest}'


def load_module(path: Path) -> types.ModuleType:
    """Load (or reload) a Python module from *path*."""
    module_name = _module_name(path)

    # Remove from cache so we always get a fresh copy
    sys.modules.pop(module_name, None)

    spec = importlib.util.spec_from_file_location(module_name, path)
    if spec is None or spec.loader is None:
        raise ImportError(f'Cannot create module spec for {path}')
    mod = importlib.util.module_from_spec(spec)
    sys.modules[module_name] = mod
    try:
        spec.loader.exec_module(mod)
    except BaseException:
        sys.modules.pop(module_name, None)
        raise
    return mod


class ScriptRegistry:
    """Maps endpoint patterns (and the validator) to loaded handler sets."""

    def __init__(self, workspace_root: Path):
        self.workspace_root = Path(workspace_root).resolve()
        self._api: dict[str, HandlerSet] = {}
        self._validator: HandlerSet | None = None

    def resolve_script_path(self, script: str) -> Path:
        """Resolve a script reference relative to the workspace root.

        Raises:
            ScriptLoadError: If no such file exists.
        """
        candidate = Path(script).expanduser()
        if not candidate.is_absolute():
            candidate = self.workspace_root / candidate
        if not candidate.is_file() and candidate.suffix != '.py':
            with_suffix = candidate.with_name(candidate.name + '.py')
            if with_suffix.is_file():
                candidate = with_suffix
        if not candidate.is_file():
            raise ScriptLoadError(f'Script not found: {script}')
        return candidate.resolve()

    def _load(self, script: str) -> tuple[Path, types.ModuleType]:
        path = self.resolve_script_path(script)
        try:
            module = load_module(path)
        except Exception as exc:
            raise ScriptLoadError(f'Could not load script {script}: {exc}') from exc
        return path, module

    def load_api(self, key: str, script: str) -> HandlerSet:
        """Load an API script and register it under ``key``."""
        path, module = self._load(script)
        handlers = {
            method: getattr(module, method)
            for method in HTTP_METHODS
            if callable(getattr(module, method, None))
        }
        if not handlers:
            logger.warning('Script %s exports no HTTP method handlers', script)
        handler_set = HandlerSet(script=script, path=path, module=module, handlers=handlers)
        self._api[key] = handler_set
        logger.info('Loaded API script %s for %s (methods: %s)', script, key, ', '.join(handlers) or '-')
        return handler_set

    def load_validator(self, script: str) -> HandlerSet:
        """Load the validator script.

        Raises:
            ScriptLoadError: If the script does not export ``validate``.
        """
        path, module = self._load(script)
        validate = getattr(module, VALIDATE, None)
        if not callable(validate):
            raise ScriptLoadError(f'Validator script {script} does not export validate()')
        self._validator = HandlerSet(script=script, path=path, module=module, handlers={VALIDATE: validate})
        logger.info('Loaded validator script %s', script)
        return self._validator

    def get(self, key: str) -> HandlerSet | None:
        return self._api.get(key)

    @property
    def validator(self) -> HandlerSet | None:
        return self._validator
