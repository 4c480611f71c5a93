import pytest

from livetrivia.errors import StoreFailure, ValidationFailure


def test_get_creates_default_lobby(services):
    lobby = services.lobbies.get('main-lobby')
    assert lobby['name'] == 'Main Trivia Lobby'
    assert lobby['status'] == 'waiting'
    assert lobby['game_state'] == 'lobby'
    assert lobby['current_round_id'] is None
    assert lobby['current_question'] is None
    assert lobby['players'] == []
    assert services.store.find_lobby('main-lobby') is not None


def test_unknown_lobby_gets_generic_name(services):
    assert services.lobbies.get('friday-night')['name'] == 'friday-night Lobby'


@pytest.mark.parametrize('bad_id', ['', ' spaces ', '../etc', None, 42, 'x' * 65])
def test_invalid_lobby_ids_are_rejected(services, bad_id):
    with pytest.raises(ValidationFailure):
        services.lobbies.get(bad_id)


def test_update_merges_fields_and_refreshes_cache(services):
    services.lobbies.get('main-lobby')
    services.lobbies.update('main-lobby', status='countdown', countdown=5)
    lobby = services.lobbies.update('main-lobby', current_question_index=2)
    assert lobby['status'] == 'countdown'
    assert lobby['countdown'] == 5
    assert lobby['current_question_index'] == 2
    assert services.store.find_lobby('main-lobby')['countdown'] == 5


def test_returned_documents_do_not_alias_the_cache(services):
    lobby = services.lobbies.get('main-lobby')
    lobby['players'].append({'user_id': 'ghost'})
    assert services.lobbies.get('main-lobby')['players'] == []


def test_reset_keeps_host_and_clears_game_fields(services):
    services.lobbies.get('main-lobby')
    services.lobbies.update(
        'main-lobby',
        host={'user_id': 'h1', 'name': 'Hosty', 'email': None, 'socket_id': 'sid-h', 'last_active': 1.0},
        status='in-progress',
        game_state='question',
        current_question={'id': 'q1', 'correctAnswer': 'A'},
        current_question_index=3,
        current_round_id='r1',
        round_progress=[{'round_id': 'r1', 'next_question_index': 3, 'is_completed': False}],
    )
    lobby = services.lobbies.reset('main-lobby')
    assert lobby['host']['user_id'] == 'h1'
    assert lobby['status'] == 'waiting'
    assert lobby['game_state'] == 'lobby'
    assert lobby['current_question'] is None
    assert lobby['current_question_index'] == 0
    assert lobby['current_round_id'] is None
    assert lobby['round_progress'] == []


def test_store_failure_leaves_cache_unchanged(services, monkeypatch):
    services.lobbies.get('main-lobby')
    services.lobbies.update('main-lobby', countdown=7)

    def unavailable(lobby_id, fields):
        raise StoreFailure()

    monkeypatch.setattr(services.store, 'update_lobby', unavailable)
    with pytest.raises(StoreFailure):
        services.lobbies.update('main-lobby', countdown=99)
    assert services.lobbies.get('main-lobby')['countdown'] == 7


def test_refresh_reads_durable_copy(services):
    services.lobbies.get('main-lobby')
    services.store.update_lobby('main-lobby', {'status': 'in-progress'})
    assert services.lobbies.get('main-lobby')['status'] == 'waiting'
    assert services.lobbies.refresh('main-lobby')['status'] == 'in-progress'
