from betparty.errors import (
    ConflictError,
    LobbyFull,
    NotFoundError,
    error_payload,
    user_message,
)


def test_user_message_prefers_lobby_error_text():
    assert user_message(NotFoundError('Lobby not found')) == 'Lobby not found'
    assert user_message(LobbyFull()) == 'This lobby is full'


def test_user_message_for_other_failures():
    assert user_message(None) == 'Unknown error'
    assert user_message(RuntimeError('disk full')) == 'disk full'
    assert user_message(KeyError()) == 'KeyError'


def test_error_payload_carries_kind_and_details():
    assert error_payload(LobbyFull()) == {'error': 'This lobby is full', 'kind': 'lobby_full'}
    assert error_payload(ConflictError(cause='integrity')) == {
        'error': 'Someone else changed this lobby, try again',
        'kind': 'conflict',
        'details': {'cause': 'integrity'},
    }
    assert error_payload(ValueError('bad')) == {'error': 'bad', 'kind': 'error'}


def test_api_errors_use_readable_text(player_client):
    host = player_client('host')
    res = host.post('/api/lobbies/join', json={'code': 'ZZZZZZ'})
    assert res.status_code == 404
    body = res.get_json()
    assert body == {'error': 'Lobby not found', 'kind': 'not_found'}
