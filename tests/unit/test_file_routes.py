"""Unit tests for workspace file routes served under /api."""
import base64

import pytest
from httpx import AsyncClient, ASGITransport

from rest_api.api.app import create_app
from rest_api.api.config import APIConfig


def _basic(username, password):
    token = base64.b64encode(f'{username}:{password}'.encode()).decode()
    return {'Authorization': f'Basic {token}'}


EDITOR = _basic('editor', 'pw')
VIEWER = _basic('viewer', 'pw')


@pytest.fixture
def app(workspace_root):
    """Create test app with a viewer (read-only) and an editor account."""
    (workspace_root / 'test.txt').write_text('test content')
    (workspace_root / 'notes.md').write_text('# notes')
    (workspace_root / '.env').write_text('SECRET=1')
    (workspace_root / 'subdir').mkdir()
    (workspace_root / 'subdir' / 'nested.txt').write_text('nested content')

    configuration = {
        'guest': False,
        'users': [
            {'name': 'viewer', 'password': 'pw'},
            {
                'name': 'editor',
                'password': 'pw',
                'canWrite': True,
                'canCreate': True,
                'canDelete': True,
            },
        ],
    }
    return create_app(APIConfig(workspace_root=workspace_root), configuration=configuration)


def _client(app):
    return AsyncClient(transport=ASGITransport(app=app), base_url='http://test')


class TestListing:

    @pytest.mark.asyncio
    async def test_root_listing(self, app):
        async with _client(app) as client:
            r = await client.get('/api/', headers=VIEWER)
        assert r.status_code == 200
        body = r.json()
        assert body['code'] == 0
        names = [e['name'] for e in body['data']]
        assert names == ['subdir', 'notes.md', 'test.txt']

    @pytest.mark.asyncio
    async def test_bare_api_lists_root(self, app):
        async with _client(app) as client:
            r = await client.get('/api', headers=VIEWER)
        assert [e['name'] for e in r.json()['data']] == ['subdir', 'notes.md', 'test.txt']

    @pytest.mark.asyncio
    async def test_subdir_listing(self, app):
        async with _client(app) as client:
            r = await client.get('/api/subdir', headers=VIEWER)
        entries = r.json()['data']
        assert entries[0]['path'] == '/subdir/nested.txt'
        assert entries[0]['type'] == 'file'

    @pytest.mark.asyncio
    async def test_missing_path(self, app):
        async with _client(app) as client:
            r = await client.get('/api/nope', headers=VIEWER)
        assert r.status_code == 404
        assert r.json()['code'] == 404

    @pytest.mark.asyncio
    async def test_traversal_is_not_found(self, app):
        async with _client(app) as client:
            r = await client.get('/api/subdir/%2e%2e/%2e%2e/etc/passwd', headers=VIEWER)
        assert r.status_code == 404

    @pytest.mark.asyncio
    async def test_dot_file_not_served(self, app):
        async with _client(app) as client:
            r = await client.get('/api/.env', headers=VIEWER)
        assert r.status_code == 404


class TestFileContent:

    @pytest.mark.asyncio
    async def test_get_file(self, app):
        async with _client(app) as client:
            r = await client.get('/api/test.txt', headers=VIEWER)
        assert r.status_code == 200
        assert r.text == 'test content'
        assert r.headers['content-type'].startswith('text/plain')

    @pytest.mark.asyncio
    async def test_info(self, app):
        async with _client(app) as client:
            r = await client.get('/api/test.txt?info', headers=VIEWER)
        data = r.json()['data']
        assert data['name'] == 'test.txt'
        assert data['size'] == len('test content')

    @pytest.mark.asyncio
    async def test_head(self, app):
        async with _client(app) as client:
            r = await client.head('/api/test.txt', headers=VIEWER)
        assert r.status_code == 200
        assert r.headers['content-type'].startswith('text/plain')


class TestWrite:

    @pytest.mark.asyncio
    async def test_viewer_cannot_write(self, app, workspace_root):
        async with _client(app) as client:
            r = await client.put('/api/test.txt', content=b'changed', headers=VIEWER)
        assert r.status_code == 403
        assert (workspace_root / 'test.txt').read_text() == 'test content'

    @pytest.mark.asyncio
    async def test_editor_overwrites(self, app, workspace_root):
        async with _client(app) as client:
            r = await client.put('/api/test.txt', content=b'changed', headers=EDITOR)
        assert r.status_code == 200
        assert r.json()['data']['size'] == len('changed')
        assert (workspace_root / 'test.txt').read_text() == 'changed'

    @pytest.mark.asyncio
    async def test_editor_creates_with_post(self, app, workspace_root):
        async with _client(app) as client:
            r = await client.post('/api/subdir/new.txt', content=b'fresh', headers=EDITOR)
        assert r.status_code == 200
        assert (workspace_root / 'subdir' / 'new.txt').read_text() == 'fresh'

    @pytest.mark.asyncio
    async def test_trailing_slash_creates_directory(self, app, workspace_root):
        async with _client(app) as client:
            r = await client.put('/api/made/', headers=EDITOR)
        assert r.status_code == 200
        assert r.json()['data']['type'] == 'dir'
        assert (workspace_root / 'made').is_dir()

    @pytest.mark.asyncio
    async def test_cannot_write_root(self, app):
        async with _client(app) as client:
            r = await client.put('/api/', content=b'x', headers=EDITOR)
        assert r.status_code == 400

    @pytest.mark.asyncio
    async def test_cannot_write_hidden_file(self, app, workspace_root):
        async with _client(app) as client:
            r = await client.put('/api/.env', content=b'x', headers=EDITOR)
        assert r.status_code == 404
        assert (workspace_root / '.env').read_text() == 'SECRET=1'


class TestDelete:

    @pytest.mark.asyncio
    async def test_viewer_cannot_delete(self, app, workspace_root):
        async with _client(app) as client:
            r = await client.delete('/api/test.txt', headers=VIEWER)
        assert r.status_code == 403
        assert (workspace_root / 'test.txt').exists()

    @pytest.mark.asyncio
    async def test_editor_deletes(self, app, workspace_root):
        async with _client(app) as client:
            r = await client.delete('/api/subdir', headers=EDITOR)
        assert r.status_code == 200
        assert r.json()['data'] == {'path': '/subdir'}
        assert not (workspace_root / 'subdir').exists()

    @pytest.mark.asyncio
    async def test_delete_root_forbidden(self, app, workspace_root):
        async with _client(app) as client:
            r = await client.delete('/api/', headers=EDITOR)
        assert r.status_code == 403
        assert workspace_root.exists()


class TestUnsupportedMethods:

    @pytest.mark.asyncio
    async def test_patch_not_allowed(self, app):
        async with _client(app) as client:
            r = await client.patch('/api/test.txt', content=b'x', headers=EDITOR)
        assert r.status_code == 405


class TestSymlinksLeavingWorkspace:

    @pytest.fixture
    def outside_link(self, workspace_root):
        secret = workspace_root.parent / 'secret.txt'
        secret.write_text('outside')
        (workspace_root / 'link.txt').symlink_to(secret)
        (workspace_root / 'linkdir').symlink_to(workspace_root.parent, target_is_directory=True)
        return secret

    @pytest.mark.asyncio
    async def test_listing_skips_outside_links(self, app, outside_link):
        async with _client(app) as client:
            r = await client.get('/api/', headers=VIEWER)
        assert r.status_code == 200
        names = [e['name'] for e in r.json()['data']]
        assert 'link.txt' not in names
        assert 'linkdir' not in names

    @pytest.mark.asyncio
    async def test_get_outside_link_is_not_found(self, app, outside_link):
        async with _client(app) as client:
            r = await client.get('/api/link.txt', headers=VIEWER)
            info = await client.get('/api/link.txt?info', headers=VIEWER)
            nested = await client.get('/api/linkdir/secret.txt', headers=VIEWER)
        assert r.status_code == 404
        assert r.json()['code'] == 404
        assert info.status_code == 404
        assert nested.status_code == 404

    @pytest.mark.asyncio
    async def test_write_through_outside_link_is_not_found(self, app, outside_link):
        async with _client(app) as client:
            r = await client.put('/api/link.txt', content=b'overwritten', headers=EDITOR)
        assert r.status_code == 404
        assert outside_link.read_text() == 'outside'

    @pytest.mark.asyncio
    async def test_delete_outside_link_is_not_found(self, app, outside_link):
        async with _client(app) as client:
            r = await client.delete('/api/linkdir', headers=EDITOR)
        assert r.status_code == 404
        assert outside_link.exists()

    @pytest.mark.asyncio
    async def test_link_inside_workspace_still_served(self, app, workspace_root):
        (workspace_root / 'alias.txt').symlink_to(workspace_root / 'test.txt')
        async with _client(app) as client:
            r = await client.get('/api/alias.txt', headers=VIEWER)
        assert r.status_code == 200
        assert r.text == 'test content'
