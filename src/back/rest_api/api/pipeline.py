"""Request dispatch pipeline.

Every request under ``/api`` runs through the same phases::

    UNRESOLVED -> AUTHENTICATING -> AUTHORIZED | REJECTED
    AUTHORIZED -> ROUTED -> EXECUTING -> RESPONDING -> DONE
    REJECTED -> RESPONDING -> DONE

A request reads the active configuration generation once on entry and
uses it until the response is sent, so a concurrent reload never mixes
two generations inside one request.
"""
from __future__ import annotations

import logging
from enum import Enum

from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from ..observability.logging import bind_request_fields
from .accounts import Capability
from .config import ConfigGeneration, ConfigurationHolder
from .context import API_PREFIX, RequestContext
from .errors import ApiError, ErrorKind, forbidden
from .responses import Outcome, ResponseBuilder
from .user import User

logger = logging.getLogger(__name__)

FILES_ROUTE = API_PREFIX + '/{path}'


def _endpoint_route(pattern: str) -> str:
    return API_PREFIX + '/' + pattern.strip('/')


class RequestPhase(str, Enum):
    UNRESOLVED = 'unresolved'
    AUTHENTICATING = 'authenticating'
    AUTHORIZED = 'authorized'
    REJECTED = 'rejected'
    ROUTED = 'routed'
    EXECUTING = 'executing'
    RESPONDING = 'responding'
    DONE = 'done'


class RequestPipeline:
    """Authenticates, routes and executes one request at a time."""

    def __init__(self, holder: ConfigurationHolder, builder: ResponseBuilder | None = None):
        self.holder = holder
        self.builder = builder or ResponseBuilder()

    async def handle(self, request: Request) -> Response:
        generation = self.holder.current
        phase = RequestPhase.UNRESOLVED
        try:
            context = RequestContext.from_request(request, generation.configuration, generation.number)
            phase = RequestPhase.AUTHENTICATING
            self._authenticate(generation, context)
            phase = RequestPhase.AUTHORIZED

            if not await generation.engine.validate(context):
                raise forbidden('Request rejected by validator')

            match = generation.router.match(context.path)
            phase = RequestPhase.ROUTED
            self._label(request, FILES_ROUTE if match is None else _endpoint_route(match.endpoint.pattern))
            if match is not None and not context.user.can(Capability.EXECUTE):
                raise forbidden(f'Account may not execute {match.endpoint.pattern}')

            phase = RequestPhase.EXECUTING
            if match is None:
                outcome = await generation.files.dispatch(context)
            else:
                outcome = await generation.engine.invoke_endpoint(match, context)
        except ApiError as exc:
            if phase in (RequestPhase.UNRESOLVED, RequestPhase.AUTHENTICATING, RequestPhase.AUTHORIZED):
                phase = RequestPhase.REJECTED
            logger.info(
                'Request failed in phase %s: %s %s -> %s (%s)',
                phase.value,
                request.method,
                request.url.path,
                exc.http_status,
                exc.message,
            )
            outcome = Outcome.from_error(exc)
        except Exception:
            logger.exception('Unhandled error in phase %s: %s %s', phase.value, request.method, request.url.path)
            outcome = Outcome.from_error(ApiError(ErrorKind.INTERNAL_ERROR))

        return self._respond(outcome, request)

    def _authenticate(self, generation: ConfigGeneration, context: RequestContext) -> None:
        account = generation.identity.resolve(
            context.request.headers.get('authorization'),
            context.client,
        )
        context.bind_user(User(account, context, self.holder.variables, generation.visibility))
        context.request.state.user = context.user.name
        bind_request_fields(user=context.user.name, generation=generation.number)

    @staticmethod
    def _label(request: Request, route: str) -> None:
        request.state.route = route
        bind_request_fields(route=route)

    def _respond(self, outcome: Outcome, request: Request) -> Response:
        try:
            return self.builder.build(outcome, request.headers)
        except Exception:
            logger.exception('Failed to build response for %s %s', request.method, request.url.path)
            error = ApiError(ErrorKind.INTERNAL_ERROR)
            return JSONResponse(error.to_envelope(), status_code=error.http_status)
