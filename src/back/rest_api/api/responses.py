"""Response builder: turns an ``Outcome`` into an HTTP response.

Rules:
  - ``set_content`` payloads are sent verbatim with their mime type;
    otherwise the ``{code, data, msg}`` envelope is serialized as JSON in
    the outcome's text encoding.
  - Status: an explicit ``status_code`` wins; otherwise envelope codes in
    the 4xx/5xx range become the HTTP status and anything else is 200.
  - Compression (gzip, then deflate) when the outcome allows it and the
    client advertises support. A failing compressor degrades to the
    uncompressed body.
  - Headers set on the outcome override every default set here.
"""
from __future__ import annotations

import gzip
import json
import logging
import zlib
from dataclasses import dataclass, field
from typing import Any, Mapping

from starlette.responses import Response

from .errors import ApiError

logger = logging.getLogger(__name__)

DEFAULT_ENCODING = 'utf-8'
SUPPORTED_CODINGS = ('gzip', 'deflate')


@dataclass
class ApiResponse:
    """The uniform response envelope."""

    code: int = 0
    data: Any = None
    msg: str | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {'code': self.code}
        if self.data is not None:
            out['data'] = self.data
        if self.msg is not None:
            out['msg'] = self.msg
        return out


@dataclass
class Outcome:
    """What a handler produced, before it becomes an HTTP response."""

    response: ApiResponse = field(default_factory=ApiResponse)
    status_code: int | None = None
    headers: dict[str, Any] = field(default_factory=dict)
    content: Any = None
    has_content: bool = False
    mime: str | None = None
    compress: bool = True
    encoding: str = DEFAULT_ENCODING

    @classmethod
    def from_error(cls, error: ApiError, encoding: str = DEFAULT_ENCODING) -> 'Outcome':
        return cls(
            response=ApiResponse(code=error.http_status, msg=error.message),
            status_code=error.http_status,
            headers=dict(error.headers),
            encoding=encoding,
        )

    @classmethod
    def of_content(cls, content: Any, mime: str | None = None, **kwargs: Any) -> 'Outcome':
        return cls(content=content, has_content=True, mime=mime, **kwargs)


def status_for(outcome: Outcome) -> int:
    if outcome.status_code:
        return int(outcome.status_code)
    code = outcome.response.code
    if isinstance(code, int) and 400 <= code <= 599:
        return code
    return 200


def negotiate_coding(accept_encoding: str | None) -> str | None:
    """Pick the preferred supported content coding, or None."""
    if not accept_encoding:
        return None
    accepted: dict[str, float] = {}
    for item in accept_encoding.split(','):
        name, _, params = item.strip().partition(';')
        name = name.strip().lower()
        if not name:
            continue
        quality = 1.0
        params = params.strip()
        if params.startswith('q='):
            try:
                quality = float(params[2:])
            except ValueError:
                quality = 0.0
        accepted[name] = quality

    best: str | None = None
    best_q = 0.0
    for coding in SUPPORTED_CODINGS:
        q = accepted.get(coding, accepted.get('*', 0.0))
        if q > best_q:
            best, best_q = coding, q
    return best


def compress_body(body: bytes, coding: str) -> bytes:
    if coding == 'gzip':
        return gzip.compress(body)
    if coding == 'deflate':
        return zlib.compress(body)
    raise ValueError(f'Unsupported content coding: {coding}')


class ResponseBuilder:
    """Serializes outcomes and applies content negotiation."""

    def __init__(self, *, min_compress_size: int = 0):
        self.min_compress_size = min_compress_size

    def render_body(self, outcome: Outcome) -> tuple[bytes, str]:
        """Return the raw body and its content type."""
        encoding = outcome.encoding or DEFAULT_ENCODING
        if outcome.has_content:
            content = outcome.content
            if content is None:
                return b'', outcome.mime or 'application/octet-stream'
            if isinstance(content, (bytes, bytearray, memoryview)):
                return bytes(content), outcome.mime or 'application/octet-stream'
            if isinstance(content, str):
                return content.encode(encoding), outcome.mime or f'text/plain; charset={encoding}'
            body = json.dumps(content, default=str, ensure_ascii=False).encode(encoding)
            return body, outcome.mime or f'application/json; charset={encoding}'

        body = json.dumps(outcome.response.to_dict(), default=str, ensure_ascii=False)
        return body.encode(encoding), f'application/json; charset={encoding}'

    def build(self, outcome: Outcome, request_headers: Mapping[str, str] | None = None) -> Response:
        body, content_type = self.render_body(outcome)
        headers: dict[str, str] = {'Content-Type': content_type}

        if outcome.compress and len(body) >= self.min_compress_size:
            coding = negotiate_coding((request_headers or {}).get('accept-encoding'))
            if coding is not None:
                try:
                    body = compress_body(body, coding)
                    headers['Content-Encoding'] = coding
                    headers['Vary'] = 'Accept-Encoding'
                except Exception:
                    logger.warning('Compression with %s failed, sending uncompressed body', coding, exc_info=True)

        for name, value in outcome.headers.items():
            if value is None or name.lower() == 'content-length':
                continue
            headers = {k: v for k, v in headers.items() if k.lower() != name.lower()}
            headers[name] = str(value)

        return Response(content=body, status_code=status_for(outcome), headers=headers)
