import json
from types import SimpleNamespace

import pytest

from wist.services.rooms.room import PuzzleProgress, Room, RoomStatus, Seat


def _record(room, **overrides):
    fields = room.record_fields()
    data = dict(
        room_id=room.room_id,
        host_user_id=fields['host_user_id'],
        client_user_id=fields['client_user_id'],
        invited_user_id=fields['invited_user_id'],
        status=fields['status'],
        state_json=fields['state_json'],
        revision=fields['revision'],
    )
    data.update(overrides)
    return SimpleNamespace(**data)


def test_new_room_defaults():
    room = Room('ABCDE', host_user_id=1)
    assert room.status is RoomStatus.WAITING
    assert room.puzzle.to_dict() == {'host_level': 1, 'client_level': 1, 'shared_level': 1, 'respawn_token': None}
    # objects start as a copy of the world's blocks
    assert room.objects == room.world['blocks']
    room.objects['block_1']['x'] = 99
    assert room.world['blocks']['block_1']['x'] == 0
    assert room.is_empty


def test_shared_level_is_min_after_every_update():
    progress = PuzzleProgress()
    for seat, level in [(Seat.HOST, 4), (Seat.CLIENT, 2), (Seat.CLIENT, 7), (Seat.HOST, 1), (Seat.HOST, 9)]:
        progress.set_level(seat, level)
        assert progress.shared_level == min(progress.host_level, progress.client_level)


def test_respawn_collapses_both_levels_to_shared():
    progress = PuzzleProgress(host_level=3, client_level=1)
    progress.respawn('T1')
    assert (progress.host_level, progress.client_level, progress.shared_level) == (1, 1, 1)
    assert progress.respawn_token == 'T1'


def test_apply_puzzle_level_then_respawn_in_one_update():
    room = Room('ABCDE', host_user_id=1)
    room.puzzle.set_level(Seat.CLIENT, 2)
    room.apply_puzzle(Seat.HOST, {'level_reached': 5, 'respawn_token': 7})
    assert room.puzzle.to_dict() == {'host_level': 2, 'client_level': 2, 'shared_level': 2, 'respawn_token': 7}


def test_merge_object_is_shallow_and_idempotent():
    room = Room('ABCDE', host_user_id=1)
    once = room.merge_object('block_1', {'x': 5, 'broken': True})
    twice = room.merge_object('block_1', {'x': 5, 'broken': True})
    assert once == twice == {'x': 5, 'y': 0.5, 'z': -2, 'broken': True}
    # unknown objects are created from the partial state
    assert room.merge_object('lever', {'on': True}) == {'on': True}


def test_bind_reports_replaced_connection():
    room = Room('ABCDE', host_user_id=1)
    assert room.bind(Seat.HOST, 'sid-1', 'ana') is None
    assert room.bind(Seat.HOST, 'sid-1') is None
    assert room.bind(Seat.HOST, 'sid-2') == 'sid-1'
    assert room.seat_for_connection('sid-2') is Seat.HOST
    assert room.seat_for_connection('sid-1') is None
    room.unbind(Seat.HOST)
    assert room.is_empty


def test_seat_for_user_uses_durable_identity():
    room = Room('ABCDE', host_user_id=1)
    assert room.seat_for_user(1) is Seat.HOST
    assert room.seat_for_user(2) is None
    room.claim_client(2, 'bo')
    assert room.seat_for_user(2) is Seat.CLIENT
    assert room.status is RoomStatus.ACTIVE
    assert room.seat_map()['client'] == {'user_id': 2, 'display_name': 'bo', 'connected': False}


def test_from_record_restores_progress_and_positions():
    room = Room('ABCDE', host_user_id=1)
    room.claim_client(2, 'bo')
    room.puzzle.set_level(Seat.HOST, 3)
    room.record_transform(Seat.CLIENT, {'x': 1, 'y': 2, 'z': 3})
    room.merge_object('block_2', {'broken': True})
    room.touch()

    restored = Room.from_record(_record(room))
    assert restored.status is RoomStatus.ACTIVE
    assert restored.client_user_id == 2
    assert restored.puzzle.host_level == 3
    assert restored.player_positions == {'client': {'x': 1, 'y': 2, 'z': 3}}
    assert restored.objects['block_2']['broken'] is True
    assert restored.revision == room.revision
    assert restored.is_empty


@pytest.mark.parametrize('overrides', [
    {'state_json': None},
    {'state_json': '{not json'},
    {'state_json': json.dumps(['a', 'list'])},
    {'state_json': json.dumps({'world': {}})},
    {'status': 'closed'},
    {'status': 'bogus'},
    {'status': 'invited', 'invited_user_id': None},
])
def test_from_record_rejects_corrupt_records(overrides):
    room = Room('ABCDE', host_user_id=1)
    with pytest.raises((ValueError, KeyError, TypeError)):
        Room.from_record(_record(room, **overrides))


def test_from_record_rejects_bad_levels():
    room = Room('ABCDE', host_user_id=1)
    state = room.snapshot()
    state['puzzle_progress']['host_level'] = 0
    with pytest.raises(ValueError):
        Room.from_record(_record(room, state_json=json.dumps(state)))
