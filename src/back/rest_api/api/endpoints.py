"""Custom endpoint routing.

Patterns are paths relative to ``/api`` with placeholders:

    hello                 -> /api/hello
    users/{id}            -> /api/users/42            (params: id='42')
    files/{rest:path}     -> /api/files/a/b.txt       (params: rest='a/b.txt')

Matching is case-insensitive and ignores leading/trailing slashes. When
several active patterns match, the most specific one wins: more literal
segments first, then more segments, then declaration order.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping

from .schemas import ApiEndpointModel

_PLACEHOLDER = re.compile(r'\{([A-Za-z_][A-Za-z0-9_]*)(?::(path))?\}')


def _split(path: str) -> list[str]:
    stripped = path.strip().strip('/')
    return stripped.split('/') if stripped else []


@dataclass(frozen=True)
class EndpointPattern:
    """A compiled endpoint pattern."""

    source: str
    regex: re.Pattern
    param_names: tuple[str, ...]
    literal_segments: int
    segment_count: int

    def match(self, path: str) -> dict[str, str] | None:
        m = self.regex.match('/'.join(_split(path)))
        if m is None:
            return None
        return {name: m.group(name) for name in self.param_names}


def compile_pattern(pattern: str) -> EndpointPattern:
    """Compile a pattern string.

    Raises:
        ValueError: On duplicate placeholder names or unbalanced braces.
    """
    segments = _split(pattern)
    parts: list[str] = []
    names: list[str] = []
    literal = 0
    for segment in segments:
        pos = 0
        regex_parts: list[str] = []
        for m in _PLACEHOLDER.finditer(segment):
            regex_parts.append(re.escape(segment[pos:m.start()]))
            name, kind = m.group(1), m.group(2)
            if name in names:
                raise ValueError(f'Duplicate placeholder {{{name}}} in endpoint pattern {pattern!r}')
            names.append(name)
            regex_parts.append(f'(?P<{name}>.+)' if kind == 'path' else f'(?P<{name}>[^/]+)')
            pos = m.end()
        tail = segment[pos:]
        if '{' in tail or '}' in tail:
            raise ValueError(f'Unbalanced braces in endpoint pattern {pattern!r}')
        regex_parts.append(re.escape(tail))
        if pos == 0:
            literal += 1
        parts.append(''.join(regex_parts))

    regex = re.compile('^' + '/'.join(parts) + '$', re.IGNORECASE)
    return EndpointPattern(
        source=pattern,
        regex=regex,
        param_names=tuple(names),
        literal_segments=literal,
        segment_count=len(segments),
    )


@dataclass(frozen=True)
class Endpoint:
    """An active endpoint bound to a script."""

    pattern: str
    script: str
    compiled: EndpointPattern
    order: int
    options: Any = None
    state: Any = None

    @property
    def precedence(self) -> tuple[int, int, int]:
        return (-self.compiled.literal_segments, -self.compiled.segment_count, self.order)


@dataclass(frozen=True)
class RouteMatch:
    endpoint: Endpoint
    params: dict[str, str] = field(default_factory=dict)


class EndpointRouter:
    """Matches request paths against the active endpoints."""

    def __init__(self, endpoints: Iterable[Endpoint] = ()):
        self._endpoints = tuple(sorted(endpoints, key=lambda e: e.precedence))

    @property
    def endpoints(self) -> tuple[Endpoint, ...]:
        """Endpoints in match precedence order."""
        return self._endpoints

    def match(self, path: str) -> RouteMatch | None:
        for endpoint in self._endpoints:
            params = endpoint.compiled.match(path)
            if params is not None:
                return RouteMatch(endpoint=endpoint, params=params)
        return None

    @classmethod
    def from_configuration(cls, endpoints: Mapping[str, ApiEndpointModel]) -> 'EndpointRouter':
        """Build a router from the configured endpoints; inactive ones are skipped.

        Raises:
            ValueError: If a pattern is invalid.
        """
        active = []
        for order, (pattern, model) in enumerate(endpoints.items()):
            if not model.is_active:
                continue
            active.append(Endpoint(
                pattern=pattern,
                script=model.script,
                compiled=compile_pattern(pattern),
                order=order,
                options=model.options,
                state=model.state,
            ))
        return cls(active)
