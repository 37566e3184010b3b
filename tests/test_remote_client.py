"""
Tests for the remote sheet client with a stubbed requests session.
"""

import asyncio
import json

import pytest
import requests

from errors import MalformedResponse, RemoteRejected, RemoteUnreachable
from remote_client import RemoteBackend

URL = 'https://example.invalid/exec'


class StubResponse:
    def __init__(self, body, status_code=200):
        self.text = body if isinstance(body, str) else json.dumps(body)
        self.status_code = status_code

    @property
    def ok(self):
        return self.status_code < 400


class StubSession:
    """Records posted forms and answers with canned responses"""

    def __init__(self, response=None, error=None):
        self.headers = {}
        self.response = response
        self.error = error
        self.calls = []
        self.closed = False

    def post(self, url, files=None, timeout=None):
        self.calls.append({'url': url, 'files': files, 'timeout': timeout})
        if self.error is not None:
            raise self.error
        return self.response

    def head(self, url, timeout=None, allow_redirects=False):
        if self.error is not None:
            raise self.error
        return self.response

    def close(self):
        self.closed = True


def _client(response=None, error=None, url=URL):
    session = StubSession(response, error)
    return RemoteBackend(url, timeout=12.5, session=session), session


def test_save_posts_multipart_record():
    client, session = _client(StubResponse({'success': True}))
    record = {'completeName': 'Juan Dela Cruz', 'toothData': {'18': 'X'}}

    result = asyncio.run(client.save(record))

    assert result == {'success': True}
    call = session.calls[0]
    assert call['url'] == URL
    assert call['timeout'] == 12.5
    assert call['files']['action'] == (None, 'save')
    assert json.loads(call['files']['record'][1]) == record


def test_save_not_accepted_raises_rejected():
    client, _ = _client(StubResponse({'success': False, 'error': 'Sheet is locked'}))
    with pytest.raises(RemoteRejected, match='Sheet is locked'):
        asyncio.run(client.save({}))


def test_http_error_raises_unreachable():
    client, _ = _client(StubResponse('Internal error', status_code=500))
    with pytest.raises(RemoteUnreachable) as excinfo:
        asyncio.run(client.get_all())
    assert excinfo.value.status_code == 500


def test_transport_error_raises_unreachable():
    client, _ = _client(error=requests.ConnectionError('connection refused'))
    with pytest.raises(RemoteUnreachable):
        asyncio.run(client.save({}))


def test_non_json_body_raises_malformed():
    client, _ = _client(StubResponse('<html>Sign in</html>'))
    with pytest.raises(MalformedResponse) as excinfo:
        asyncio.run(client.get_all())
    assert excinfo.value.body == '<html>Sign in</html>'


def test_json_array_body_raises_malformed():
    client, _ = _client(StubResponse([1, 2]))
    with pytest.raises(MalformedResponse):
        asyncio.run(client.get_all())


def test_search_sends_normalized_fields():
    client, session = _client(StubResponse({
        'success': True, 'found': True, 'records': [{'completeName': 'Juan Dela Cruz'}],
    }))

    rows = asyncio.run(client.search('  Juan  Dela Cruz ', '2015-01-05', 'Rizal ES'))

    assert rows == [{'completeName': 'Juan Dela Cruz'}]
    files = session.calls[0]['files']
    assert files['action'] == (None, 'search')
    assert files['completeName'] == (None, 'Juan Dela Cruz')
    assert files['dob'] == (None, '05/01/2015')
    assert files['school'] == (None, 'Rizal ES')


def test_search_not_found_returns_empty():
    client, _ = _client(StubResponse({'success': True, 'found': False}))
    assert asyncio.run(client.search('Juan', '05/01/2015', 'Rizal ES')) == []


def test_get_all_drops_non_object_rows():
    client, _ = _client(StubResponse({'success': True, 'records': [{'School': 'Rizal ES'}, 'junk', None]}))
    assert asyncio.run(client.get_all()) == [{'School': 'Rizal ES'}]


def test_missing_url_is_unreachable():
    client, session = _client(StubResponse({'success': True}), url='')
    with pytest.raises(RemoteUnreachable):
        asyncio.run(client.save({}))
    assert session.calls == []
    assert asyncio.run(client.is_reachable()) is False


def test_reachability_probe():
    up, _ = _client(StubResponse('', status_code=405))
    down, _ = _client(StubResponse('', status_code=503))
    offline, _ = _client(error=requests.ConnectionError('no route'))

    assert asyncio.run(up.is_reachable()) is True
    assert asyncio.run(down.is_reachable()) is False
    assert asyncio.run(offline.is_reachable()) is False


def test_close_closes_session():
    client, session = _client()
    client.close()
    assert session.closed
