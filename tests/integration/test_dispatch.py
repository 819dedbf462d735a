"""End-to-end dispatch: identity, validator, endpoint scripts and file visibility."""
import gzip
import json

import pytest
from httpx import AsyncClient, ASGITransport
from prometheus_client import REGISTRY

from rest_api.api.app import create_app
from rest_api.api.config import APIConfig


@pytest.fixture
def workspace(workspace_root):
    (workspace_root / 'docs').mkdir()
    (workspace_root / 'docs' / 'readme.txt').write_text('read me')
    (workspace_root / 'docs' / 'guide.md').write_text('# guide')
    (workspace_root / 'docs' / 'secret.md').write_text('# secret')
    (workspace_root / 'docs' / '.hidden.md').write_text('# hidden')
    (workspace_root / 'notes.md').write_text('# notes')
    return workspace_root


@pytest.fixture
def scripts(write_script):
    return {
        'hello': write_script('hello.py', '''
            def get(args):
                name = args.params.get('name', 'world')
                return {'hello': name, 'user': args.user.name}
        '''),
        'counter': write_script('counter.py', '''
            def get(args):
                args.state['count'] += 1
                return args.state['count']
        '''),
        'hit': write_script('hit.py', '''
            CALLS = []

            def get(args):
                CALLS.append(args.path)
                return len(CALLS)
        '''),
        'boom': write_script('boom.py', '''
            def get(args):
                raise RuntimeError('kaboom')
        '''),
        'page': write_script('page.py', '''
            def get(args):
                args.set_content('<h1>page</h1>', 'text/html; charset=utf-8')
        '''),
        'big': write_script('big.py', '''
            def get(args):
                return 'x' * 4096
        '''),
        'plain': write_script('plain.py', '''
            def get(args):
                args.compress = False
                args.headers['X-Plain'] = 'yes'
                return 'x' * 4096
        '''),
        'whoami': write_script('whoami.py', '''
            def get(args):
                visits = args.user.get('visits', 0) + 1
                args.user.set('visits', visits)
                return {'name': args.user.name, 'visits': visits, 'values': args.user.values}
        '''),
        'deny': write_script('deny.py', '''
            def validate(args):
                return args.context.request.headers.get('x-allow') == 'yes'
        '''),
    }


def _make(workspace, configuration):
    app = create_app(APIConfig(workspace_root=workspace, config_path=None), configuration=configuration)
    return app, AsyncClient(transport=ASGITransport(app=app), base_url='http://test')


def _guest(**flags):
    return {'canExecute': True, **flags}


class TestIdentity:

    @pytest.mark.asyncio
    async def test_guest_disabled_everything_is_401(self, workspace, scripts):
        app, client = _make(workspace, {
            'guest': False,
            'endpoints': {'/hello': {'script': scripts['hello']}},
        })
        async with client:
            for method, path in [('GET', '/api/'), ('GET', '/api/hello'), ('DELETE', '/api/notes.md')]:
                r = await client.request(method, path)
                assert r.status_code == 401
                assert r.json()['code'] == 401
                assert r.headers['www-authenticate'] == 'Basic realm="REST API"'
        assert (workspace / 'notes.md').exists()

    @pytest.mark.asyncio
    async def test_custom_realm(self, workspace):
        app, client = _make(workspace, {'guest': False, 'realm': 'Docs'})
        async with client:
            r = await client.get('/api/')
        assert r.headers['www-authenticate'] == 'Basic realm="Docs"'

    @pytest.mark.asyncio
    async def test_inactive_user_forbidden(self, workspace, auth_header):
        app, client = _make(workspace, {
            'guest': False,
            'users': [{'name': 'old', 'password': 'pw', 'isActive': False}],
        })
        async with client:
            r = await client.get('/api/', headers=auth_header('old', 'pw'))
        assert r.status_code == 403
        assert r.json()['code'] == 403

    @pytest.mark.asyncio
    async def test_user_overrides_guest(self, workspace, scripts, auth_header):
        app, client = _make(workspace, {
            'guest': _guest(),
            'users': [{'name': 'alice', 'password': 'pw', 'canExecute': True}],
            'endpoints': {'/hello': {'script': scripts['hello']}},
        })
        async with client:
            anonymous = await client.get('/api/hello')
            named = await client.get('/api/hello', headers=auth_header('alice', 'pw'))
            wrong = await client.get('/api/hello', headers=auth_header('alice', 'bad'))
        assert anonymous.json()['data']['user'] is None
        assert named.json()['data']['user'] == 'alice'
        assert wrong.status_code == 401


class TestVisibility:

    @pytest.mark.asyncio
    async def test_can_open_false_forbids_file_reads(self, workspace):
        app, client = _make(workspace, {'guest': {'canExecute': True, 'canOpen': False}})
        async with client:
            r = await client.get('/api/docs/readme.txt')
        assert r.status_code == 403
        assert r.json()['code'] == 403

    @pytest.mark.asyncio
    async def test_include_filter_on_listing(self, workspace):
        app, client = _make(workspace, {'guest': {'files': ['*.md']}})
        async with client:
            r = await client.get('/api/docs')
            txt = await client.get('/api/docs/readme.txt')
        names = [e['name'] for e in r.json()['data']]
        assert names == ['guide.md', 'secret.md']
        assert txt.status_code == 404

    @pytest.mark.asyncio
    async def test_exclude_dominates_include(self, workspace):
        app, client = _make(workspace, {'guest': {'files': ['*.md'], 'exclude': ['secret.md']}})
        async with client:
            listing = await client.get('/api/docs')
            direct = await client.get('/api/docs/secret.md')
        assert [e['name'] for e in listing.json()['data']] == ['guide.md']
        assert direct.status_code == 404

    @pytest.mark.asyncio
    async def test_dot_files_hidden(self, workspace):
        app, client = _make(workspace, {})
        async with client:
            listing = await client.get('/api/docs')
            direct = await client.get('/api/docs/.hidden.md')
        assert '.hidden.md' not in [e['name'] for e in listing.json()['data']]
        assert direct.status_code == 404

    @pytest.mark.asyncio
    async def test_with_dot_shows_dot_files(self, workspace):
        app, client = _make(workspace, {'withDot': True})
        async with client:
            listing = await client.get('/api/docs')
            direct = await client.get('/api/docs/.hidden.md')
        assert '.hidden.md' in [e['name'] for e in listing.json()['data']]
        assert direct.text == '# hidden'

    @pytest.mark.asyncio
    async def test_account_with_dot(self, workspace, auth_header):
        app, client = _make(workspace, {'users': [{'name': 'dev', 'password': 'pw', 'withDot': True}]})
        async with client:
            guest = await client.get('/api/docs/.hidden.md')
            dev = await client.get('/api/docs/.hidden.md', headers=auth_header('dev', 'pw'))
        assert guest.status_code == 404
        assert dev.status_code == 200

    @pytest.mark.asyncio
    async def test_repeat_get_is_identical(self, workspace):
        app, client = _make(workspace, {})
        async with client:
            first = await client.get('/api/docs')
            second = await client.get('/api/docs')
        assert first.status_code == second.status_code == 200
        assert first.json() == second.json()


class TestEndpoints:

    @pytest.mark.asyncio
    async def test_endpoint_takes_precedence_over_files(self, workspace, scripts):
        (workspace / 'hello').write_text('file named hello')
        app, client = _make(workspace, {
            'guest': _guest(),
            'endpoints': {'/hello': {'script': scripts['hello']}},
        })
        async with client:
            r = await client.get('/api/hello')
        assert r.json() == {'code': 0, 'data': {'hello': 'world', 'user': None}}

    @pytest.mark.asyncio
    async def test_path_params(self, workspace, scripts):
        app, client = _make(workspace, {
            'guest': _guest(),
            'endpoints': {'/hello/{name}': {'script': scripts['hello']}},
        })
        async with client:
            r = await client.get('/api/HELLO/ada')
        assert r.json()['data']['hello'] == 'ada'

    @pytest.mark.asyncio
    async def test_can_execute_required(self, workspace, scripts):
        app, client = _make(workspace, {'endpoints': {'/hit': {'script': scripts['hit']}}})
        async with client:
            r = await client.get('/api/hit')
        assert r.status_code == 403
        assert app.state.holder.current.registry.get('/hit').module.CALLS == []

    @pytest.mark.asyncio
    async def test_method_not_allowed(self, workspace, scripts):
        app, client = _make(workspace, {
            'guest': _guest(),
            'endpoints': {'/hello': {'script': scripts['hello']}},
        })
        async with client:
            r = await client.post('/api/hello', content=b'{}')
        assert r.status_code == 405
        assert r.json()['code'] == 405

    @pytest.mark.asyncio
    async def test_state_round_trip(self, workspace, scripts):
        app, client = _make(workspace, {
            'guest': _guest(),
            'endpoints': {'/count': {'script': scripts['counter'], 'state': {'count': 0}}},
        })
        async with client:
            values = [(await client.get('/api/count')).json()['data'] for _ in range(3)]
        assert values == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_inactive_endpoint_falls_through_to_files(self, workspace, scripts):
        app, client = _make(workspace, {
            'guest': _guest(),
            'endpoints': {'/notes.md': {'script': scripts['hit'], 'isActive': False}},
        })
        async with client:
            r = await client.get('/api/notes.md')
        assert r.text == '# notes'

    @pytest.mark.asyncio
    async def test_most_specific_pattern_wins(self, workspace, scripts):
        app, client = _make(workspace, {
            'guest': _guest(),
            'endpoints': {
                '/hello/{name}': {'script': scripts['hello']},
                '/hello/me': {'script': scripts['hit']},
            },
        })
        async with client:
            specific = await client.get('/api/hello/me')
            generic = await client.get('/api/hello/you')
        assert specific.json()['data'] == 1
        assert generic.json()['data']['hello'] == 'you'

    @pytest.mark.asyncio
    async def test_script_exception_is_500(self, workspace, scripts):
        app, client = _make(workspace, {
            'guest': _guest(),
            'endpoints': {'/boom': {'script': scripts['boom']}},
        })
        async with client:
            r = await client.get('/api/boom')
        assert r.status_code == 500
        assert r.json() == {'code': 500, 'msg': 'kaboom'}

    @pytest.mark.asyncio
    async def test_set_content(self, workspace, scripts):
        app, client = _make(workspace, {
            'guest': _guest(),
            'endpoints': {'/page': {'script': scripts['page']}},
        })
        async with client:
            r = await client.get('/api/page')
        assert r.text == '<h1>page</h1>'
        assert r.headers['content-type'] == 'text/html; charset=utf-8'

    @pytest.mark.asyncio
    async def test_user_variables_persist_between_requests(self, workspace, scripts, auth_header):
        app, client = _make(workspace, {
            'users': [{'name': 'alice', 'password': 'pw', 'canExecute': True, 'values': {'team': 'red'}}],
            'endpoints': {'/whoami': {'script': scripts['whoami']}},
        })
        headers = auth_header('alice', 'pw')
        async with client:
            await client.get('/api/whoami', headers=headers)
            r = await client.get('/api/whoami', headers=headers)
        assert r.json()['data'] == {'name': 'alice', 'visits': 2, 'values': {'team': 'red'}}


class TestValidator:

    @pytest.mark.asyncio
    async def test_rejection_skips_endpoint(self, workspace, scripts):
        app, client = _make(workspace, {
            'guest': _guest(),
            'validator': scripts['deny'],
            'endpoints': {'/hit': {'script': scripts['hit']}},
        })
        async with client:
            rejected = await client.get('/api/hit')
            accepted = await client.get('/api/hit', headers={'X-Allow': 'yes'})
        assert rejected.status_code == 403
        assert rejected.json()['code'] == 403
        assert accepted.status_code == 200
        assert app.state.holder.current.registry.get('/hit').module.CALLS == ['/hit']

    @pytest.mark.asyncio
    async def test_validator_runs_after_authentication(self, workspace, scripts):
        app, client = _make(workspace, {'guest': False, 'validator': scripts['deny']})
        async with client:
            r = await client.get('/api/', headers={'X-Allow': 'yes'})
        assert r.status_code == 401


class TestCompression:

    @pytest.mark.asyncio
    async def test_gzip_when_accepted(self, workspace, scripts):
        app, client = _make(workspace, {
            'guest': _guest(),
            'endpoints': {'/big': {'script': scripts['big']}},
        })
        async with client:
            r = await client.get('/api/big', headers={'Accept-Encoding': 'gzip'})
        assert r.headers['content-encoding'] == 'gzip'
        assert r.json()['data'] == 'x' * 4096

    @pytest.mark.asyncio
    async def test_script_can_disable_compression(self, workspace, scripts):
        app, client = _make(workspace, {
            'guest': _guest(),
            'endpoints': {'/plain': {'script': scripts['plain']}},
        })
        async with client:
            r = await client.get('/api/plain', headers={'Accept-Encoding': 'gzip'})
        assert 'content-encoding' not in r.headers
        assert r.headers['x-plain'] == 'yes'
        assert json.loads(r.content)['data'] == 'x' * 4096

    @pytest.mark.asyncio
    async def test_raw_gzip_body(self, workspace, scripts):
        app, client = _make(workspace, {
            'guest': _guest(),
            'endpoints': {'/big': {'script': scripts['big']}},
        })
        async with client:
            async with client.stream('GET', '/api/big', headers={'Accept-Encoding': 'gzip'}) as r:
                raw = b''.join([chunk async for chunk in r.aiter_raw()])
        assert json.loads(gzip.decompress(raw))['data'] == 'x' * 4096


class TestReload:

    @pytest.mark.asyncio
    async def test_failed_reload_keeps_serving_old_generation(self, workspace, scripts):
        app, client = _make(workspace, {
            'guest': _guest(),
            'endpoints': {'/hello': {'script': scripts['hello']}},
        })
        holder = app.state.holder
        assert holder.reload({'endpoints': {'/hello': {'script': 'scripts/missing.py'}}}) is False
        async with client:
            r = await client.get('/api/hello')
        assert r.json()['data']['hello'] == 'world'
        assert holder.current.number == 1

    @pytest.mark.asyncio
    async def test_reload_applies_new_accounts(self, workspace):
        app, client = _make(workspace, {})
        async with client:
            assert (await client.get('/api/')).status_code == 200
            assert app.state.holder.reload({'guest': False}) is True
            assert (await client.get('/api/')).status_code == 401


class TestUnexpectedErrors:

    @pytest.mark.asyncio
    async def test_internal_error_envelope(self, workspace, monkeypatch):
        app, client = _make(workspace, {})

        async def _explode(context):
            raise OSError('disk on fire')

        monkeypatch.setattr(app.state.holder.current.files, 'dispatch', _explode)
        async with client:
            r = await client.get('/api/notes.md')
        assert r.status_code == 500
        assert r.json() == {'code': 500, 'msg': 'Internal server error'}


class TestRouteLabels:

    @pytest.mark.asyncio
    async def test_endpoint_and_file_requests_are_labelled_by_route(self, workspace, scripts):
        app, client = _make(workspace, {
            'guest': _guest(),
            'endpoints': {'/greet/{name}': {'script': scripts['hello']}},
        })
        endpoint = {'method': 'GET', 'path': '/api/greet/{name}', 'status': '200'}
        files = {'method': 'GET', 'path': '/api/{path}', 'status': '200'}
        before_endpoint = REGISTRY.get_sample_value('http_server_requests_total', endpoint) or 0.0
        before_files = REGISTRY.get_sample_value('http_server_requests_total', files) or 0.0
        async with client:
            await client.get('/api/greet/ann')
            await client.get('/api/greet/bob')
            await client.get('/api/notes.md')
        assert REGISTRY.get_sample_value('http_server_requests_total', endpoint) == before_endpoint + 2
        assert REGISTRY.get_sample_value('http_server_requests_total', files) == before_files + 1
