def _names(received):
    return [pkt['name'] for pkt in received]


def _first(received, name):
    for pkt in received:
        if pkt['name'] == name:
            return pkt['args'][0]
    raise AssertionError(f"no {name} event in {_names(received)}")


def test_socket_connect_identifies_user(login, sio_for):
    sio = sio_for(login('hana'))
    assert sio.is_connected('/ws')
    connected = _first(sio.get_received('/ws'), 'connected')
    assert connected['display_name'] == 'hana'


def test_each_socket_resolves_its_own_user(login, sio_for):
    hana = sio_for(login('hana'))
    alice = sio_for(login('alice'))
    assert _first(hana.get_received('/ws'), 'connected')['display_name'] == 'hana'
    assert _first(alice.get_received('/ws'), 'connected')['display_name'] == 'alice'

    # an event from the first socket still runs as its own user
    hana.emit('create_room', namespace='/ws')
    room_id = _first(hana.get_received('/ws'), 'room_created')['room_id']
    alice.emit('join_room', {'room_id': room_id}, namespace='/ws')
    assert _first(alice.get_received('/ws'), 'seat_assigned')['seat'] == 'client'


def test_operations_require_login(flask_app, sio_for):
    sio = sio_for(flask_app.test_client())
    sio.get_received('/ws')
    sio.emit('create_room', namespace='/ws')
    error = _first(sio.get_received('/ws'), 'error')
    assert error['code'] == 'LoginRequired'
    assert error['operation'] == 'create_room'


def test_create_join_and_relay(login, sio_for):
    host = sio_for(login('hana'))
    guest = sio_for(login('alice'))
    host.get_received('/ws')
    guest.get_received('/ws')

    host.emit('create_room', namespace='/ws')
    received = host.get_received('/ws')
    assert _names(received) == ['room_created', 'room_state', 'seat_assigned']
    room_id = _first(received, 'room_created')['room_id']
    assert _first(received, 'room_state')['puzzle_progress']['shared_level'] == 1

    guest.emit('join_room', {'room_id': room_id}, namespace='/ws')
    got = guest.get_received('/ws')
    assert _first(got, 'seat_assigned')['seat'] == 'client'
    assert _first(got, 'room_state')['room_id'] == room_id
    seats = _first(host.get_received('/ws'), 'seat_map_changed')['seats']
    assert seats['client']['display_name'] == 'alice'

    guest.emit('record_move', {'room_id': room_id, 'transform': {'x': 1, 'y': 2, 'z': 3}}, namespace='/ws')
    assert guest.get_received('/ws') == []
    moved = _first(host.get_received('/ws'), 'remote_transform')
    assert moved == {'room_id': room_id, 'seat': 'client', 'transform': {'x': 1, 'y': 2, 'z': 3}}

    host.emit('update_object', {'room_id': room_id, 'object_id': 'block_2', 'state': {'broken': True}}, namespace='/ws')
    changed = _first(guest.get_received('/ws'), 'object_changed')
    assert changed['state'] == {'x': 3, 'y': 0.5, 'z': -1, 'broken': True}

    host.emit('update_puzzle', {'room_id': room_id, 'partial': {'level_reached': 2}}, namespace='/ws')
    for sio in (host, guest):
        progress = _first(sio.get_received('/ws'), 'puzzle_progress_changed')
        assert progress['host_level'] == 2
        assert progress['shared_level'] == 1


def test_invite_delivery_and_gating(login, sio_for):
    host = sio_for(login('hana'))
    alice_http = login('alice')
    alice_tabs = [sio_for(alice_http), sio_for(alice_http)]
    mallory = sio_for(login('mallory'))

    host.emit('create_room', namespace='/ws')
    room_id = _first(host.get_received('/ws'), 'room_created')['room_id']
    for sio in alice_tabs + [mallory]:
        sio.get_received('/ws')

    host.emit('invite', {'room_id': room_id, 'target_display_name': 'nobody'}, namespace='/ws')
    assert _first(host.get_received('/ws'), 'invite_error')['code'] == 'TargetUserNotFound'

    host.emit('invite', {'room_id': room_id, 'target_display_name': 'alice'}, namespace='/ws')
    assert _first(host.get_received('/ws'), 'invite_sent')['target_display_name'] == 'alice'
    for tab in alice_tabs:
        notice = _first(tab.get_received('/ws'), 'invite_received')
        assert notice == {'room_id': room_id, 'host_display_name': 'hana'}

    mallory.emit('join_room', {'room_id': room_id}, namespace='/ws')
    rejected = _first(mallory.get_received('/ws'), 'join_error')
    assert rejected['code'] == 'InviteOnlyRejected'
    assert rejected['room_id'] == room_id

    alice_tabs[0].emit('join_room', {'room_id': room_id}, namespace='/ws')
    assert _first(alice_tabs[0].get_received('/ws'), 'seat_assigned')['seat'] == 'client'
    assert _first(host.get_received('/ws'), 'seat_map_changed')['status'] == 'active'


def test_disconnect_and_close(login, sio_for):
    host_http = login('hana')
    host = sio_for(host_http)
    guest = sio_for(login('alice'))

    host.emit('create_room', namespace='/ws')
    room_id = _first(host.get_received('/ws'), 'room_created')['room_id']
    guest.emit('join_room', {'room_id': room_id}, namespace='/ws')
    guest.get_received('/ws')

    host.disconnect(namespace='/ws')
    left = _first(guest.get_received('/ws'), 'participant_left')
    assert left['seat'] == 'host'

    guest.emit('close_room', {'room_id': room_id}, namespace='/ws')
    assert _first(guest.get_received('/ws'), 'error')['code'] == 'NotHost'

    host_again = sio_for(host_http)
    host_again.emit('join_room', {'room_id': room_id}, namespace='/ws')
    assert _first(host_again.get_received('/ws'), 'seat_assigned')['seat'] == 'host'
    guest.get_received('/ws')

    host_again.emit('close_room', {'room_id': room_id}, namespace='/ws')
    assert _first(host_again.get_received('/ws'), 'room_closed') == {'room_id': room_id}
    assert _first(guest.get_received('/ws'), 'room_closed') == {'room_id': room_id}

    guest.emit('join_room', {'room_id': room_id}, namespace='/ws')
    assert _first(guest.get_received('/ws'), 'join_error')['code'] == 'RoomNotFound'


def test_missing_room_id_is_reported(login, sio_for):
    sio = sio_for(login('hana'))
    sio.get_received('/ws')
    sio.emit('join_room', {}, namespace='/ws')
    error = _first(sio.get_received('/ws'), 'join_error')
    assert error['code'] == 'InvalidPayload'
