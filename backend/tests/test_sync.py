from letterduel.game.models import PlayAgainRequest, Player, Room
from letterduel.game.sync import ClientSync, elapsed_seconds, remaining_seconds, room_public_state


def _room(**kwargs):
    defaults = dict(
        code='ROOM01',
        mode='classic',
        status='playing',
        round_id=1,
        phases=['accuracy'],
        phase='accuracy',
        phase_start_at=10_000,
        phase_duration=60,
        players={
            'a': Player(id='a', name='Alice', is_host=True, joined_at=1, answers={'words': {'animal': 'سمك'}}),
            'b': Player(id='b', name='Bob', joined_at=2, answers={'words': {'animal': 'سلحفاة'}}),
        },
    )
    defaults.update(kwargs)
    return Room(**defaults)


def test_reduce_detects_round_and_phase_changes():
    sync = ClientSync('b')
    first = sync.reduce(_room())
    assert first.new_round and first.phase_changed and first.status_changed
    assert first.restart_timer

    again = sync.reduce(_room())
    assert not again.new_round and not again.phase_changed and not again.status_changed
    assert not again.restart_timer

    nxt = sync.reduce(_room(round_id=2))
    assert nxt.new_round
    assert not nxt.phase_changed


def test_reduce_reports_deletion_and_leaving():
    sync = ClientSync('b')
    assert not sync.reduce(None).room_deleted

    sync.reduce(_room())
    deleted = sync.reduce(None)
    assert deleted.room_deleted
    assert [n.code for n in deleted.notices] == ['room_deleted']

    sync.reduce(_room())
    gone = _room()
    del gone.players['b']
    assert sync.reduce(gone).left_room


def test_becoming_host_is_announced_once():
    sync = ClientSync('b')
    sync.reduce(_room())

    room = _room()
    room.players['a'].is_host = False
    room.players['b'].is_host = True
    delta = sync.reduce(room)
    assert delta.became_host
    assert [n.code for n in delta.notices] == ['new_host']
    assert not sync.reduce(room).became_host


def test_play_again_prompt_and_decline():
    sync = ClientSync('b')
    prompt = sync.reduce(_room(status='results', play_again_request=PlayAgainRequest('a')))
    assert prompt.play_again_prompt

    requester = ClientSync('a')
    declined = requester.reduce(_room(status='results', play_again_request=PlayAgainRequest('a', 'declined')))
    assert not declined.play_again_prompt
    assert [n.code for n in declined.notices] == ['play_again_declined']


def test_remaining_and_elapsed_use_server_offset():
    room = _room()
    assert remaining_seconds(room, 10_000) == 60
    assert remaining_seconds(room, 25_500) == 45
    assert remaining_seconds(room, 20_000, server_offset_ms=5_000) == 45
    assert remaining_seconds(room, 200_000) == 0
    assert remaining_seconds(_room(status='results'), 10_000) is None
    assert elapsed_seconds(room, 12_500) == 2.5


def test_public_state_hides_opponent_answers_while_playing():
    state = room_public_state(_room(), viewer_id='a', remaining_sec=30)
    assert state['players']['a']['answers'] == {'words': {'animal': 'سمك'}}
    assert state['players']['b']['answers'] == {}
    assert state['remainingSec'] == 30
    assert state['playerCount'] == 2
    assert state['hostId'] == 'a'
    assert 'createdAt' not in state

    results = room_public_state(_room(status='results'), viewer_id='a')
    assert results['players']['b']['answers'] == {'words': {'animal': 'سلحفاة'}}


def test_public_state_hides_the_liar_until_reveal():
    ctx = {'liar': 'b', 'answerOrder': ['b', 'a'], 'anonymousAnswers': ['x', 'y']}
    room = _room(mode='bluff', phases=['answer', 'vote', 'reveal'], phase='vote', phase_index=1, mode_context=ctx)

    for_truth = room_public_state(room, viewer_id='a')
    assert 'liar' not in for_truth['modeContext']
    assert 'answerOrder' not in for_truth['modeContext']
    assert for_truth['modeContext']['anonymousAnswers'] == ['x', 'y']

    for_liar = room_public_state(room, viewer_id='b')
    assert for_liar['modeContext']['liar'] == 'b'

    room.phase = 'reveal'
    room.phase_index = 2
    assert room_public_state(room, viewer_id='a')['modeContext']['liar'] == 'b'
    # The stored room is never mutated.
    assert room.mode_context == ctx
