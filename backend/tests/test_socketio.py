import pytest

from conftest import seed_round
from livetrivia import socketio
from livetrivia.socketio_events import _sid_to_ctx

NS = '/ws'


@pytest.fixture()
def connect(flask_app, make_token):
    clients = []

    def _connect(user_id, name=None, is_host=False, lobby='main-lobby'):
        token = make_token(user_id, name or user_id.title())
        client = socketio.test_client(
            flask_app, namespace=NS, auth={'token': token, 'lobbyName': lobby, 'isHost': is_host},
        )
        clients.append(client)
        return client

    yield _connect
    for client in clients:
        if client.is_connected(NS):
            client.disconnect(namespace=NS)


def _events(client, name):
    return [pkt['args'][0] for pkt in client.get_received(NS) if pkt['name'] == name]


def _updates(received, update_type):
    return [pkt['args'][0]['data'] for pkt in received
            if pkt['name'] == 'lobby-update' and pkt['args'][0]['type'] == update_type]


def test_connection_without_valid_token_is_refused(flask_app):
    client = socketio.test_client(flask_app, namespace=NS, auth={'token': 'forged'})
    assert not client.is_connected(NS)
    client = socketio.test_client(flask_app, namespace=NS)
    assert not client.is_connected(NS)


def test_token_cookie_is_accepted(flask_app, make_token):
    token = make_token('p1', 'P1')
    client = socketio.test_client(flask_app, namespace=NS, headers={'Cookie': f'wsToken={token}'})
    assert client.is_connected(NS)
    joined = _events(client, 'lobby-joined')
    assert joined[0]['player']['userId'] == 'p1'
    client.disconnect(namespace=NS)


def test_host_and_player_join(connect, services):
    seed_round('Opening', 1, 2)
    host = connect('host-1', 'Quizmaster', is_host=True)
    assert host.is_connected(NS)
    host_joined = _events(host, 'lobby-joined')[0]
    assert host_joined['isNewHost'] is True
    assert host_joined['totalQuestions'] == 2
    assert host_joined['lobby']['host']['name'] == 'Quizmaster'
    assert len(host_joined['rounds']) == 1

    player = connect('p1')
    player_joined = _events(player, 'lobby-joined')[0]
    assert player_joined['isReconnect'] is False
    assert player_joined['lobby']['playerCount'] == 1

    assert _updates(host.get_received(NS), 'player-joined')[0]['player']['userId'] == 'p1'
    assert services.lobbies.get('main-lobby')['players'][0]['socket_id'] is not None


def test_full_lobby_refuses_connection(connect, services):
    first = connect('p1')
    assert first.is_connected(NS)
    services.lobbies.update('main-lobby', max_players=1)

    second = connect('p2')
    assert not second.is_connected(NS)
    assert all(ctx['identity'].user_id != 'p2' for ctx in _sid_to_ctx.values())
    assert [p['user_id'] for p in services.lobbies.get('main-lobby')['players']] == ['p1']


def test_player_cannot_run_host_commands(connect, services):
    seed_round('Opening', 1, 2)
    connect('host-1', is_host=True)
    player = connect('p1')
    player.get_received(NS)

    player.emit('host-start-question', {'lobbyId': 'main-lobby', 'questionIndex': 0}, namespace=NS)
    assert _events(player, 'error') == [{'message': 'Only the host can do that'}]
    assert services.lobbies.get('main-lobby')['game_state'] == 'lobby'


def test_question_flow_over_socket(connect, tasks, clock):
    seed_round('Opening', 1, 2)
    host = connect('host-1', is_host=True)
    player = connect('p1')
    host.get_received(NS)
    player.get_received(NS)

    host.emit('host-start-question', {'lobbyId': 'main-lobby', 'questionIndex': 0}, namespace=NS)
    started = _updates(player.get_received(NS), 'question-started')[0]
    assert started['questionNumber'] == 1
    assert 'correctAnswer' not in started['question']

    clock.advance(15)
    player.emit('submit-answer', {'answer': 'A', 'questionId': started['question']['id']}, namespace=NS)
    received = player.get_received(NS)
    ack = [pkt['args'][0] for pkt in received if pkt['name'] == 'answer-submitted'][0]
    assert ack == {'success': True, 'isCorrect': True, 'pointsEarned': 75, 'timeTaken': '15.0'}
    assert _updates(received, 'answered-count-updated')[0] == {
        'answeredCount': 1, 'totalPlayers': 1, 'waitingCount': 0,
    }

    player.emit('submit-answer', {'answer': 'B', 'questionId': started['question']['id']}, namespace=NS)
    assert _events(player, 'error') == [{'message': 'You have already answered this question'}]

    host.emit('host-end-question', 'main-lobby', namespace=NS)
    ended = _updates(player.get_received(NS), 'question-ended')[0]
    assert ended['correctAnswer'] == 'A'
    assert ended['leaderboard'][0]['score'] == 75
    assert ended['nextQuestionIndex'] == 1
    tasks.discard()


def test_countdown_runs_through_background_task(connect, tasks):
    seed_round('Opening', 1, 2)
    host = connect('host-1', is_host=True)
    player = connect('p1')
    host.get_received(NS)
    player.get_received(NS)

    host.emit('host-start-countdown', {'lobbyId': 'main-lobby', 'countdownSeconds': 2, 'questionIndex': 0},
              namespace=NS)
    tasks.run_next()
    received = player.get_received(NS)
    assert [pkt['args'][0]['countdown'] for pkt in received if pkt['name'] == 'countdown-update'] == [1, 0]
    assert len(_updates(received, 'question-started')) == 1
    tasks.discard()


def test_invalid_payloads_are_reported(connect):
    host = connect('host-1', is_host=True)
    host.get_received(NS)
    host.emit('host-change-round', {'lobbyId': 'main-lobby'}, namespace=NS)
    assert _events(host, 'error') == [{'message': 'roundId is required'}]
    host.emit('host-start-countdown', {'lobbyId': 'main-lobby', 'countdownSeconds': -3, 'questionIndex': 0},
              namespace=NS)
    assert _events(host, 'error') == [{'message': 'countdownSeconds must be a non-negative integer'}]


def test_leave_lobby_keeps_player_record(connect, services):
    connect('host-1', is_host=True)
    player = connect('p1')
    player.emit('leave-lobby', {}, namespace=NS)
    assert _events(player, 'left') == [{'room': 'main-lobby'}]
    lobby = services.lobbies.get('main-lobby')
    assert [p['user_id'] for p in lobby['players']] == ['p1']
    assert lobby['players'][0]['socket_id'] is None
