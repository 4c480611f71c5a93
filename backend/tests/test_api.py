import pytest

from conftest import make_identity, seed_round


@pytest.fixture()
def auth_headers(make_token):
    return {'Authorization': f"Bearer {make_token('viewer-1', 'Viewer')}"}


def test_index_and_health_are_public(client):
    assert client.get('/').status_code == 200
    assert client.get('/health').get_json() == {'status': 'ok'}


def test_missing_or_bad_token_is_401(client):
    res = client.get('/me')
    assert res.status_code == 401
    assert res.get_json() == {'error': 'Access token required'}
    res = client.get('/me', headers={'Authorization': 'Bearer not-a-token'})
    assert res.status_code == 401
    res = client.get('/api/questions/rounds', headers={'Authorization': 'Token abc'})
    assert res.status_code == 401


def test_me_returns_verified_identity(client, auth_headers):
    res = client.get('/me', headers=auth_headers)
    assert res.status_code == 200
    assert res.get_json()['user'] == {'userId': 'viewer-1', 'name': 'Viewer', 'email': 'viewer-1@example.com'}


def test_unknown_lobby_is_404(client, auth_headers):
    res = client.get('/api/lobbies/main-lobby', headers=auth_headers)
    assert res.status_code == 404
    assert res.get_json() == {'error': 'Lobby not found'}


def test_malformed_lobby_id_is_400(client, auth_headers):
    res = client.get('/api/lobbies/bad.lobby.id', headers=auth_headers)
    assert res.status_code == 400


def test_lobby_snapshot_hides_answer(client, auth_headers, orchestrator):
    round_id, ids = seed_round('Opening', 1, 2)
    orchestrator.player_connect('main-lobby', make_identity('p1'), 'sid-p1')
    orchestrator.start_question('main-lobby', 0, round_id=round_id)

    res = client.get('/api/lobbies/main-lobby', headers=auth_headers)
    assert res.status_code == 200
    lobby = res.get_json()
    assert lobby['gameState'] == 'question'
    assert lobby['currentRound'] == 0
    assert lobby['currentRoundId'] == round_id
    assert lobby['currentQuestion']['id'] == ids[0]
    assert 'correctAnswer' not in lobby['currentQuestion']
    assert 'correctIndex' not in lobby['currentQuestion']
    assert lobby['players'][0]['userId'] == 'p1'


def test_leaderboards(client, auth_headers, orchestrator):
    round_id, _ = seed_round('Opening', 1, 2)
    orchestrator.player_connect('main-lobby', make_identity('p1'), 'sid-p1')
    orchestrator.player_connect('main-lobby', make_identity('p2'), 'sid-p2')
    orchestrator.start_question('main-lobby', 0, round_id=round_id)
    orchestrator.submit_answer('main-lobby', 'p2', 'sid-p2', 'A')

    total = client.get('/api/lobbies/main-lobby/leaderboard', headers=auth_headers).get_json()
    assert total['type'] == 'total'
    assert [(e['userId'], e['rank']) for e in total['leaderboard']] == [('p2', 1), ('p1', 2)]

    res = client.get(f'/api/lobbies/main-lobby/leaderboard?type=round&roundId={round_id}', headers=auth_headers)
    assert res.get_json()['leaderboard'][0] == {
        'userId': 'p2', 'name': 'P2', 'score': 100, 'totalScore': 100, 'rank': 1,
    }

    assert client.get('/api/lobbies/main-lobby/leaderboard?type=round', headers=auth_headers).status_code == 400
    assert client.get('/api/lobbies/main-lobby/leaderboard?type=weekly', headers=auth_headers).status_code == 400
    res = client.get('/api/lobbies/main-lobby/leaderboard?type=round&roundId=missing', headers=auth_headers)
    assert res.status_code == 404


def test_round_listing_and_lookup(client, auth_headers):
    second, _ = seed_round('Second', 2, 1)
    first, _ = seed_round('First', 1, 3)
    data = client.get('/api/questions/rounds', headers=auth_headers).get_json()
    assert data['totalRounds'] == 2
    assert [r['id'] for r in data['rounds']] == [first, second]

    assert client.get(f'/api/questions/rounds/{first}', headers=auth_headers).get_json()['round']['name'] == 'First'
    assert client.get('/api/questions/rounds/missing', headers=auth_headers).status_code == 404


def test_round_questions_are_stripped(client, auth_headers):
    round_id, ids = seed_round('First', 1, 3, inactive_positions=(3,))
    data = client.get(f'/api/questions/round/{round_id}', headers=auth_headers).get_json()
    assert data['totalQuestions'] == 2
    assert [q['id'] for q in data['questions']] == ids[:2]
    assert all('correctIndex' not in q for q in data['questions'])

    data = client.get(f'/api/questions/round/{round_id}/index/2', headers=auth_headers).get_json()
    assert data['question']['id'] == ids[1]
    assert data['currentQuestion'] == 2
    assert data['totalQuestions'] == 2

    assert client.get(f'/api/questions/round/{round_id}/index/3', headers=auth_headers).status_code == 404
    assert client.get(f'/api/questions/round/{round_id}/index/0', headers=auth_headers).status_code == 400
    assert client.get(f'/api/questions/round/{round_id}/total', headers=auth_headers).get_json()['totalQuestions'] == 2


def test_global_question_index_and_totals(client, auth_headers):
    first, first_ids = seed_round('First', 1, 2)
    second, _ = seed_round('Second', 2, 1)
    data = client.get('/api/questions/index/1', headers=auth_headers).get_json()
    assert data['question']['id'] == first_ids[0]
    assert data['totalQuestions'] == 3

    totals = client.get('/api/questions/total', headers=auth_headers).get_json()
    assert totals == {'totalQuestions': 3, 'perRound': {first: 2, second: 1}}


def test_question_by_id_includes_answer(client, auth_headers):
    _, ids = seed_round('First', 1, 1)
    data = client.get(f'/api/questions/{ids[0]}', headers=auth_headers).get_json()
    assert data['question']['correctAnswer'] == 'A'
    assert client.get('/api/questions/nope', headers=auth_headers).status_code == 404


def test_archived_session_lookup(client, auth_headers, orchestrator):
    assert client.get('/api/sessions/missing', headers=auth_headers).status_code == 404

    round_id, _ = seed_round('First', 1, 1)
    orchestrator.host_connect('main-lobby', make_identity('host-1'), 'sid-host')
    orchestrator.player_connect('main-lobby', make_identity('p1'), 'sid-p1')
    orchestrator.start_question('main-lobby', 0, round_id=round_id)
    orchestrator.submit_answer('main-lobby', 'p1', 'sid-p1', 'A')
    session = orchestrator.end_game('main-lobby')

    res = client.get(f"/api/sessions/{session['id']}", headers=auth_headers)
    assert res.status_code == 200
    data = res.get_json()
    assert data['success'] is True
    assert data['session']['hostName'] == 'Host-1'
    assert data['players'] == [{'userId': 'p1', 'name': 'P1', 'score': 100, 'rank': 1}]
