"""Script execution engine.

Builds the argument object for a script invocation, calls the handler
(plain or coroutine function), captures what it did and turns it into an
``Outcome`` for the response builder.

State scopes handed to scripts:

- ``globals``: deep copy of the configuration ``globals`` per invocation.
- ``workspace_state``: one dict shared by every script of a generation.
- ``global_state``: one dict per script kind (API methods, validators).
- ``state``: per endpoint pattern, seeded from the endpoint's configured
  ``state`` and written back after every invocation.

The shared dicts are handed out by reference and are not synchronized.
Invocations of one endpoint are serialized on a per-pattern
``asyncio.Lock``, so each invocation sees the ``state`` left by the
previous one. The validator is serialized on its own lock.
"""
from __future__ import annotations

import asyncio
import copy
import importlib
import inspect
import json
import time
from dataclasses import dataclass, field
from typing import Any, Callable

from ..observability.logging import get_logger
from ..observability.metrics import SCRIPT_DURATION_SECONDS, SCRIPT_INVOCATIONS_TOTAL
from .context import RequestContext, RemoteClient
from .endpoints import RouteMatch
from .errors import ApiError, ErrorKind, bad_request, method_not_allowed
from .responses import DEFAULT_ENCODING, ApiResponse, Outcome
from .schemas import ValidatorModel
from .scripts import VALIDATE, ScriptRegistry

logger = get_logger(__name__)

KIND_API = 'api'
KIND_VALIDATOR = 'validator'


@dataclass
class ScriptState:
    """Mutable state shared by the scripts of one configuration generation."""

    workspace_state: dict[str, Any] = field(default_factory=dict)
    api_global_state: dict[str, Any] = field(default_factory=dict)
    validator_global_state: dict[str, Any] = field(default_factory=dict)
    validator_state: Any = None
    _endpoint_states: dict[str, Any] = field(default_factory=dict)
    _locks: dict[str, asyncio.Lock] = field(default_factory=dict)

    def endpoint_state(self, key: str, initial: Any = None) -> Any:
        if key not in self._endpoint_states:
            self._endpoint_states[key] = copy.deepcopy(initial)
        return self._endpoint_states[key]

    def store_endpoint_state(self, key: str, value: Any) -> None:
        self._endpoint_states[key] = value

    def lock_for(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock


class ScriptArguments:
    """Arguments common to every script invocation."""

    def __init__(
        self,
        *,
        globals: Any,
        global_state: dict[str, Any],
        workspace_state: dict[str, Any],
        state: Any,
        logger: Any,
    ):
        self._globals = globals
        self._global_state = global_state
        self._workspace_state = workspace_state
        self.state = state
        self.logger = logger

    @property
    def globals(self) -> Any:
        return self._globals

    @property
    def global_state(self) -> dict[str, Any]:
        return self._global_state

    @property
    def workspace_state(self) -> dict[str, Any]:
        return self._workspace_state

    def require(self, name: str) -> Any:
        """Import a module by name."""
        return importlib.import_module(name)


class ValidatorArguments(ScriptArguments):
    """Arguments of ``validate(args)``."""

    def __init__(self, *, value: Any, context: RequestContext, options: Any, **kwargs: Any):
        super().__init__(**kwargs)
        self.value = value
        self.context = context
        self.options = options


class ApiMethodArguments(ScriptArguments):
    """Arguments of an API method handler.

    Response helpers return the arguments object so calls can be chained::

        args.set_content('pong', 'text/plain').headers['X-Pong'] = '1'
    """

    def __init__(
        self,
        *,
        request: RequestContext,
        path: str,
        params: dict[str, str],
        options: Any,
        encoding: str = DEFAULT_ENCODING,
        **kwargs: Any,
    ):
        super().__init__(**kwargs)
        self._request = request
        self.path = path
        self.params = params
        self.options = options
        self.encoding = encoding
        self.response = ApiResponse()
        self.headers: dict[str, Any] = {}
        self.status_code: int | None = None
        self.compress = True
        self.content: Any = None
        self.mime: str | None = None
        self._has_content = False
        self._written = bytearray()

    @property
    def request(self) -> RequestContext:
        return self._request

    @property
    def user(self):
        return self._request.user

    # Body access

    async def get_body(self) -> bytes:
        return await self._request.request.body()

    async def get_text(self, encoding: str | None = None) -> str:
        body = await self.get_body()
        try:
            return body.decode(encoding or self.encoding)
        except (LookupError, UnicodeDecodeError) as exc:
            raise bad_request(f'Could not decode request body: {exc}')

    async def get_json(self, encoding: str | None = None) -> Any:
        """Parse the request body as JSON. Empty bodies give None.

        Raises:
            ApiError: BAD_REQUEST if the body is not valid JSON.
        """
        text = await self.get_text(encoding)
        if not text.strip():
            return None
        try:
            return json.loads(text)
        except json.JSONDecodeError as exc:
            raise bad_request(f'Invalid JSON body: {exc.msg}')

    # Response shaping

    def _send(self, code: int, msg: str | None) -> 'ApiMethodArguments':
        self.response.code = code
        self.response.msg = msg
        self.status_code = code
        return self

    def send_error(self, err: Any = None) -> 'ApiMethodArguments':
        msg = str(err) if err is not None else ErrorKind.SCRIPT_FAILURE.default_message
        return self._send(500, msg or type(err).__name__)

    def send_forbidden(self) -> 'ApiMethodArguments':
        return self._send(403, ErrorKind.FORBIDDEN.default_message)

    def send_not_found(self) -> 'ApiMethodArguments':
        return self._send(404, ErrorKind.NOT_FOUND.default_message)

    def send_method_not_allowed(self) -> 'ApiMethodArguments':
        return self._send(405, ErrorKind.METHOD_NOT_ALLOWED.default_message)

    def set_content(self, content: Any, mime: str | None = None) -> 'ApiMethodArguments':
        self.content = content
        self.mime = mime
        self._has_content = True
        self._written.clear()
        return self

    def write(self, data: Any) -> 'ApiMethodArguments':
        """Append raw data to the body; the envelope is then not sent."""
        if data is None:
            return self
        if isinstance(data, (bytes, bytearray, memoryview)):
            self._written.extend(bytes(data))
        elif isinstance(data, str):
            self._written.extend(data.encode(self.encoding))
        else:
            self._written.extend(json.dumps(data, default=str).encode(self.encoding))
        return self

    def to_outcome(self) -> Outcome:
        outcome = Outcome(
            response=self.response,
            status_code=self.status_code,
            headers=dict(self.headers),
            compress=bool(self.compress),
            encoding=self.encoding or DEFAULT_ENCODING,
        )
        if self._has_content:
            outcome.content = self.content
            outcome.mime = self.mime
            outcome.has_content = True
        elif self._written:
            outcome.content = bytes(self._written)
            outcome.mime = self.mime or f'text/plain; charset={outcome.encoding}'
            outcome.has_content = True
        return outcome


async def _call(handler: Callable, args: ScriptArguments) -> Any:
    result = handler(args)
    if inspect.isawaitable(result):
        result = await result
    return result


class ScriptExecutionEngine:
    """Invokes endpoint handlers and the validator of one generation."""

    def __init__(
        self,
        registry: ScriptRegistry,
        state: ScriptState,
        *,
        globals: Any = None,
        validator: ValidatorModel | None = None,
    ):
        self.registry = registry
        self.state = state
        self._globals = globals
        self._validator = validator
        if validator is not None:
            state.validator_state = copy.deepcopy(validator.state)

    def snapshot_globals(self) -> Any:
        return copy.deepcopy(self._globals)

    @property
    def has_validator(self) -> bool:
        return self._validator is not None and self.registry.validator is not None

    async def invoke_endpoint(self, match: RouteMatch, context: RequestContext) -> Outcome:
        """Run the handler of ``match`` for the request method.

        Raises:
            ApiError: METHOD_NOT_ALLOWED when the script has no handler for
                the method, SCRIPT_FAILURE when the handler raises, or any
                ApiError the handler raised itself.
        """
        endpoint = match.endpoint
        handler_set = self.registry.get(endpoint.pattern)
        if handler_set is None:
            raise ApiError(ErrorKind.INTERNAL_ERROR, f'No script loaded for endpoint {endpoint.pattern}')

        handler = handler_set.handler_for(context.method)
        if handler is None:
            raise method_not_allowed(f'{context.method} is not supported by this endpoint')

        script_logger = logger.bind(endpoint=endpoint.pattern, script=endpoint.script)
        async with self.state.lock_for(endpoint.pattern):
            args = ApiMethodArguments(
                request=context,
                path=context.path,
                params=dict(match.params),
                options=copy.deepcopy(endpoint.options),
                globals=self.snapshot_globals(),
                global_state=self.state.api_global_state,
                workspace_state=self.state.workspace_state,
                state=self.state.endpoint_state(endpoint.pattern, endpoint.state),
                logger=script_logger,
            )
            start = time.perf_counter()
            try:
                result = await _call(handler, args)
            except ApiError as exc:
                SCRIPT_INVOCATIONS_TOTAL.labels(kind=KIND_API, outcome=exc.kind.value).inc()
                raise
            except Exception as exc:
                SCRIPT_INVOCATIONS_TOTAL.labels(kind=KIND_API, outcome=ErrorKind.SCRIPT_FAILURE.value).inc()
                script_logger.exception('script_failed', method=context.method)
                raise ApiError(ErrorKind.SCRIPT_FAILURE, str(exc) or type(exc).__name__) from exc
            finally:
                SCRIPT_DURATION_SECONDS.labels(kind=KIND_API).observe(time.perf_counter() - start)
                self.state.store_endpoint_state(endpoint.pattern, args.state)

        SCRIPT_INVOCATIONS_TOTAL.labels(kind=KIND_API, outcome='ok').inc()
        if result is not None and result is not args:
            args.response.data = result
        return args.to_outcome()

    async def validate(self, context: RequestContext) -> bool:
        """Run the validator for ``context``. True when no validator is configured.

        A validator that raises counts as a rejection.
        """
        handler_set = self.registry.validator
        if self._validator is None or handler_set is None:
            return True

        validate = handler_set.handler_for(VALIDATE)
        script_logger = logger.bind(script=handler_set.script, kind=KIND_VALIDATOR)
        async with self.state.lock_for(f'{KIND_VALIDATOR}:{handler_set.script}'):
            client: RemoteClient = context.client
            args = ValidatorArguments(
                value=client,
                context=context,
                options=copy.deepcopy(self._validator.options),
                globals=self.snapshot_globals(),
                global_state=self.state.validator_global_state,
                workspace_state=self.state.workspace_state,
                state=self.state.validator_state,
                logger=script_logger,
            )
            start = time.perf_counter()
            try:
                accepted = bool(await _call(validate, args))
            except Exception:
                script_logger.exception('validator_failed')
                accepted = False
            finally:
                SCRIPT_DURATION_SECONDS.labels(kind=KIND_VALIDATOR).observe(time.perf_counter() - start)
                self.state.validator_state = args.state

        SCRIPT_INVOCATIONS_TOTAL.labels(kind=KIND_VALIDATOR, outcome='accepted' if accepted else 'rejected').inc()
        if not accepted:
            script_logger.info('validator_rejected', client=client.address)
        return accepted
