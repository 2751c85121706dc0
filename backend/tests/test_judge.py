import json

import httpx
import pytest

from letterduel.game.errors import JudgeQuotaExceededError, JudgeUnavailableError
from letterduel.game.judge import JudgeClient, JudgeEntry


def _client(handler):
    return JudgeClient('http://judge.test/', transport=httpx.MockTransport(handler))


def test_judge_word_posts_word_letter_mode():
    seen = {}

    def handler(request):
        seen['path'] = request.url.path
        seen['body'] = json.loads(request.content)
        return httpx.Response(200, json={'valid': True})

    assert _client(handler).judge_word('سمك', 'س', 'classic') is True
    assert seen['path'] == '/validate'
    assert seen['body'] == {'word': 'سمك', 'letter': 'س', 'mode': 'classic'}


def test_judge_batch_maps_results_by_player_and_category():
    def handler(request):
        body = json.loads(request.content)
        assert request.url.path == '/validate/batch'
        assert body['roundId'] == 4
        return httpx.Response(200, json={'results': [
            {'playerId': e['playerId'], 'category': e['category'], 'valid': e['word'] == 'سمك'}
            for e in body['entries']
        ]})

    entries = [JudgeEntry('a', 'animal', 'سمك'), JudgeEntry('b', 'animal', 'سلطعون')]
    verdicts = _client(handler).judge_batch(4, 'س', 'classic', entries)
    assert verdicts == {('a', 'animal'): True, ('b', 'animal'): False}


def test_judge_batch_with_missing_entries_is_unavailable():
    def handler(request):
        return httpx.Response(200, json={'results': [{'playerId': 'a', 'category': 'animal', 'valid': True}]})

    entries = [JudgeEntry('a', 'animal', 'سمك'), JudgeEntry('a', 'fruit', 'سفرجل')]
    with pytest.raises(JudgeUnavailableError):
        _client(handler).judge_batch(1, 'س', 'classic', entries)


def test_quota_flag_raises():
    def handler(request):
        return httpx.Response(200, json={'quotaExceeded': True})

    with pytest.raises(JudgeQuotaExceededError):
        _client(handler).judge_word('سمك', 'س', 'classic')


@pytest.mark.parametrize('status,kwargs', [
    (500, {'json': {'error': 'boom'}}),
    (200, {'content': b'not json'}),
    (200, {'json': ['not', 'a', 'dict']}),
])
def test_bad_responses_are_unavailable(status, kwargs):
    with pytest.raises(JudgeUnavailableError):
        _client(lambda request: httpx.Response(status, **kwargs)).judge_word('سمك', 'س', 'classic')


def test_transport_errors_are_unavailable():
    def handler(request):
        raise httpx.ConnectError('refused', request=request)

    with pytest.raises(JudgeUnavailableError):
        _client(handler).judge_word('سمك', 'س', 'classic')


def test_health_check():
    assert _client(lambda r: httpx.Response(200, json={'status': 'ok'})).health_check() is True
    assert _client(lambda r: httpx.Response(503)).health_check() is False


def test_close_is_idempotent():
    client = _client(lambda r: httpx.Response(200, json={'valid': False}))
    assert client.judge_word('سمك', 'س', 'classic') is False
    client.close()
    client.close()
