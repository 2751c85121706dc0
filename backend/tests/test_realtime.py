import pytest

from letterduel.services import get_services


@pytest.fixture()
def sio(app_and_socketio):
    app, socketio = app_and_socketio
    clients = []

    def _connect():
        test_client = socketio.test_client(app, flask_test_client=app.test_client())
        clients.append(test_client)
        return test_client

    yield app, _connect
    for test_client in clients:
        if test_client.is_connected():
            test_client.disconnect()


def _events(test_client, name):
    return [e['args'][0] for e in test_client.get_received() if e['name'] == name]


def test_create_room(sio):
    app, connect = sio
    alice = connect()

    ack = alice.emit('room:create', {'name': 'Alice', 'mode': 'classic', 'totalRounds': 3}, callback=True)
    assert ack['ok'] is True
    assert ack['playerId']

    states = _events(alice, 'room:state')
    assert states[-1]['code'] == ack['roomCode']
    assert states[-1]['status'] == 'waiting'
    assert states[-1]['hostId'] == ack['playerId']
    assert get_services(app).rooms.get_room(ack['roomCode']).total_rounds == 3


def test_unknown_mode_and_missing_room(sio):
    app, connect = sio
    alice = connect()

    ack = alice.emit('room:create', {'name': 'Alice', 'mode': 'speedrun'}, callback=True)
    assert ack == {'ok': False, 'error': 'unknown_mode'}

    ack = alice.emit('room:join', {'roomCode': 'NOPE00', 'name': 'Alice'}, callback=True)
    assert ack['ok'] is False
    assert ack['error'] == 'room_not_found'
    assert _events(alice, 'room:error')[-1]['error'] == 'room_not_found'
    assert get_services(app).rooms.list_rooms() == []


def test_join_starts_game_and_disconnect_hands_over(sio):
    app, connect = sio
    rooms = get_services(app).rooms
    alice = connect()
    bob = connect()

    created = alice.emit('room:create', {'name': 'Alice', 'mode': 'classic'}, callback=True)
    code = created['roomCode']
    joined = bob.emit('room:join', {'roomCode': code, 'name': 'Bob'}, callback=True)
    assert joined['ok'] is True

    room = rooms.get_room(code)
    assert room.status == 'playing'
    assert _events(bob, 'room:state')[-1]['status'] == 'playing'
    assert _events(alice, 'room:state')[-1]['status'] == 'playing'

    assert bob.emit('answers:submit', {'answers': {'animal': 'سمك'}}, callback=True) == {'ok': True}
    assert rooms.get_room(code).players[joined['playerId']].submitted is True
    # Only the host may stop the round.
    assert bob.emit('game:stop', {}, callback=True) == {'ok': False}

    alice.disconnect()
    room = rooms.get_room(code)
    assert set(room.players) == {joined['playerId']}
    assert room.host_id == joined['playerId']
    notices = _events(bob, 'room:notice')
    assert 'new_host' in [n['code'] for n in notices]


def test_leave_deletes_empty_room(sio):
    app, connect = sio
    alice = connect()
    created = alice.emit('room:create', {'name': 'Alice', 'mode': 'survival'}, callback=True)

    assert alice.emit('room:leave', {}, callback=True) == {'ok': True}
    assert get_services(app).rooms.get_room(created['roomCode']) is None


def test_commands_outside_a_room_are_rejected(sio):
    app, connect = sio
    alice = connect()

    ack = alice.emit('answers:submit', {'answers': {}}, callback=True)
    assert ack['error'] == 'not_in_room'
    assert alice.emit('game:start', {}, callback=True) == {'ok': False}
