"""Per-request context handed to the pipeline stages and to scripts."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Mapping
from urllib.parse import unquote

from starlette.datastructures import URL
from starlette.requests import Request

from .schemas import Configuration

if TYPE_CHECKING:
    from .user import User

API_PREFIX = '/api'


@dataclass(frozen=True)
class RemoteClient:
    """Address of the calling client."""

    address: str
    port: int

    def to_dict(self) -> dict[str, Any]:
        return {'address': self.address, 'port': self.port}


def api_path(url_path: str) -> str:
    """Return the part of ``url_path`` after ``/api``, always starting with ``/``."""
    path = unquote(url_path)
    if path == API_PREFIX or path.startswith(API_PREFIX + '/'):
        path = path[len(API_PREFIX):]
    return path or '/'


@dataclass(eq=False)
class RequestContext:
    """Snapshot of one request.

    Everything except ``user`` is fixed at construction; ``user`` is bound
    exactly once, after identity resolution.
    """

    client: RemoteClient
    config: Configuration
    generation: int
    query: Mapping[str, str]
    method: str
    request: Request
    time: datetime
    url: URL
    path: str
    _user: 'User | None' = field(default=None, repr=False)

    @property
    def user(self) -> 'User | None':
        return self._user

    def bind_user(self, user: 'User') -> None:
        if self._user is not None:
            raise RuntimeError('User already bound to this request')
        self._user = user

    @property
    def GET(self) -> Mapping[str, str]:
        """Alias of ``query`` for script authors used to the GET mapping."""
        return self.query

    @classmethod
    def from_request(cls, request: Request, config: Configuration, generation: int) -> 'RequestContext':
        client = request.client
        return cls(
            client=RemoteClient(
                address=client.host if client else '',
                port=client.port if client else 0,
            ),
            config=config,
            generation=generation,
            query=dict(request.query_params),
            method=request.method.upper(),
            request=request,
            time=datetime.now(timezone.utc),
            url=request.url,
            path=api_path(request.url.path),
        )
