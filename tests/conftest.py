"""Pytest configuration for rest_api tests."""
import base64
import sys
import textwrap
from pathlib import Path

# Add src/back to path for src-layout imports
_PROJECT_ROOT = Path(__file__).parent.parent
_SRC_BACK = _PROJECT_ROOT / 'src' / 'back'
if str(_SRC_BACK) not in sys.path:
    sys.path.insert(0, str(_SRC_BACK))

import pytest
from starlette.requests import Request


@pytest.fixture
def workspace_root(tmp_path):
    """Create a temporary workspace root for testing."""
    workspace = tmp_path / 'workspace'
    workspace.mkdir()
    return workspace


@pytest.fixture
def write_script(workspace_root):
    """Write a script module under ``workspace_root/scripts`` and return its relative path."""
    def _write(name: str, source: str) -> str:
        scripts = workspace_root / 'scripts'
        scripts.mkdir(exist_ok=True)
        (scripts / name).write_text(textwrap.dedent(source))
        return f'scripts/{name}'
    return _write


@pytest.fixture
def make_request():
    """Build a bare Starlette request without going through an app."""
    def _make(
        method: str = 'GET',
        path: str = '/api/',
        headers: dict[str, str] | None = None,
        body: bytes = b'',
        query: str = '',
        client: tuple[str, int] = ('127.0.0.1', 50000),
    ) -> Request:
        scope = {
            'type': 'http',
            'http_version': '1.1',
            'method': method,
            'scheme': 'http',
            'path': path,
            'raw_path': path.encode('utf-8'),
            'root_path': '',
            'query_string': query.encode('latin-1'),
            'headers': [
                (k.lower().encode('latin-1'), v.encode('latin-1'))
                for k, v in (headers or {}).items()
            ],
            'client': client,
            'server': ('test', 80),
        }

        async def receive():
            return {'type': 'http.request', 'body': body, 'more_body': False}

        return Request(scope, receive)
    return _make


def basic_auth(username: str, password: str) -> dict[str, str]:
    """Return an Authorization header for HTTP Basic credentials."""
    token = base64.b64encode(f'{username}:{password}'.encode('utf-8')).decode('ascii')
    return {'Authorization': f'Basic {token}'}


@pytest.fixture
def auth_header():
    return basic_auth
