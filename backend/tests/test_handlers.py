import random

from letterduel.game.handlers import build_mode_context, get_handler
from letterduel.game.modes import get_mode_config
from letterduel.game.models import Player, Room
from letterduel.game.validation import ValidationService
from letterduel.game.words import CATEGORY_IDS, build_constraints


def _room(mode, phase, **kwargs):
    players = {
        'a': Player(id='a', name='Alice', is_host=True, joined_at=1),
        'b': Player(id='b', name='Bob', joined_at=2),
    }
    return Room(
        code='ROOM01',
        mode=mode,
        status='playing',
        round_id=1,
        current_round_number=1,
        phase=phase,
        players=players,
        **kwargs,
    )


def test_category_context_lists_all_categories():
    ctx = build_mode_context('classic', room=_room('classic', 'accuracy'), letter='س')
    assert ctx == {'categories': list(CATEGORY_IDS)}


def test_category_submission_rejected_when_phase_is_locked():
    handler = get_handler('multiphase')
    room = _room('multiphase', 'challenge', phases=['speed', 'accuracy', 'challenge'], phase_index=2)
    assert handler.accept_submission(room, room.players['a'], {'animal': 'سمك'}) is None

    room.phase = 'speed'
    assert handler.accept_submission(room, room.players['a'], {'animal': 'سمك'}) == {'words': {'animal': 'سمك'}}


def test_survival_one_submission_and_elimination():
    handler = get_handler('survival')
    validation = ValidationService()
    room = _room('survival', 'survival', letter='م')

    assert handler.accept_submission(room, room.players['a'], {'answer': 'منزل'}) == {'answer': 'منزل'}
    room.players['a'].answers = {'answer': 'منزل'}
    room.players['a'].submitted = True
    assert handler.accept_submission(room, room.players['a'], {'answer': 'مدرسة'}) is None

    room.players['b'].answers = {'answer': 'كتاب'}
    room.players['b'].submitted = True
    assert handler.reconcile(room, validation) == {'players/b/eliminated': True}

    room.players['b'].eliminated = True
    assert handler.reconcile(room, validation) == {}
    assert handler.round_over(room, validation)


def test_survival_evaluate_carries_streak():
    handler = get_handler('survival')
    room = _room('survival', 'survival', letter='م')
    room.players['a'].answers = {'answer': 'منزل'}
    room.players['a'].submitted = True
    room.players['a'].streak = 2

    into = {}
    handler.evaluate(room, ValidationService(), into)
    assert into['a'].score == 30
    assert into['a'].details == {'answer': 'منزل', 'valid': True, 'streak': 3}
    assert into['b'].score == 0

    handler.apply_result(room.players['a'], into['a'])
    handler.apply_result(room.players['b'], into['b'])
    assert room.players['a'].streak == 3
    assert room.players['a'].eliminated is False
    assert room.players['b'].eliminated is True


def test_memory_context_and_scoring():
    handler = get_handler('memory')
    room = _room('memory', 'recall')
    room.mode_context = handler.build_context(room, 'س', random.Random(3), 4)
    shown = room.mode_context['words']
    assert len(shown) == 4
    assert len(set(shown)) == 4
    assert room.mode_context['showDuration'] == 5

    room.players['a'].answers = {'words': shown, 'risk': False}
    room.players['b'].answers = {'words': shown[:1] + ['غلط']}
    into = {}
    handler.evaluate(room, ValidationService(), into)
    assert into['a'].score == 40
    assert into['b'].score == 10
    assert into['b'].details['correct'] == 1


def _bluff_room():
    handler = get_handler('bluff')
    room = _room('bluff', 'answer', phases=['answer', 'vote', 'reveal'])
    room.mode_context = handler.build_context(room, 'س', random.Random(7), 5)
    return handler, room


def test_bluff_vote_phase_builds_anonymous_answers():
    handler, room = _bluff_room()
    assert room.mode_context['liar'] in ('a', 'b')

    room.players['a'].answers = handler.accept_submission(room, room.players['a'], {'answer': 'سمك'})
    room.players['b'].answers = handler.accept_submission(room, room.players['b'], {'answer': 'سلحفاة'})

    room.phase = 'vote'
    room.phase_index = 1
    ctx = handler.on_phase_enter(room, 'vote', random.Random(1))
    assert sorted(ctx['answerOrder']) == ['a', 'b']
    assert ctx['anonymousAnswers'] == [room.players[pid].answers['answer'] for pid in ctx['answerOrder']]
    room.mode_context = ctx

    # Only the vote is taken in the vote phase; the answer is kept.
    payload = handler.accept_submission(room, room.players['a'], {'answer': 'تغيير', 'vote': 1})
    assert payload == {'answer': 'سمك', 'vote': 1}
    assert handler.accept_submission(room, room.players['a'], {'vote': 5}) is None


def test_bluff_scoring_rewards_catching_the_liar():
    handler, room = _bluff_room()
    liar = room.mode_context['liar']
    truth = 'b' if liar == 'a' else 'a'

    room.players[liar].answers = {'answer': 'سمك'}
    room.players[truth].answers = {'answer': 'سلحفاة'}
    room.mode_context = handler.on_phase_enter(room, 'vote', random.Random(1))
    liar_index = room.mode_context['answerOrder'].index(liar)
    room.players[truth].answers['vote'] = liar_index

    reveal = handler.on_phase_enter(room, 'reveal', random.Random(1))
    assert {r['playerId']: r['isLiar'] for r in reveal['reveals']} == {liar: True, truth: False}

    into = {}
    handler.evaluate(room, ValidationService(), into)
    assert into[truth].score == 20
    assert into[liar].score == 10
    assert into[liar].details['isLiar'] is True


def test_bluff_liar_scores_for_each_fooled_player():
    handler, room = _bluff_room()
    liar = room.mode_context['liar']
    truth = 'b' if liar == 'a' else 'a'

    room.players[liar].answers = {'answer': 'سمك'}
    room.players[truth].answers = {'answer': 'سلحفاة'}
    room.mode_context = handler.on_phase_enter(room, 'vote', random.Random(1))
    room.players[truth].answers['vote'] = room.mode_context['answerOrder'].index(truth)

    into = {}
    handler.evaluate(room, ValidationService(), into)
    assert into[truth].score == 10
    assert into[liar].score == 20


def test_objective_first_solver_ends_round():
    handler = get_handler('objective')
    validation = ValidationService()
    room = _room('objective', 'solve', letter='س')
    room.mode_context = {'constraints': [
        {'type': 'startsWith', 'value': 'س'},
        {'type': 'minLength', 'value': 4},
    ]}

    room.players['b'].answers = {'answer': 'سمك'}
    room.players['b'].submitted = True
    assert not handler.round_over(room, validation)
    room.players['a'].answers = {'answer': 'سبع'}
    room.players['a'].submitted = True
    # Both submitted, neither solved: the round keeps running.
    assert not handler.round_over(room, validation)

    room.players['a'].answers = {'answer': 'سلطان'}
    room.players['a'].submitted = True
    assert handler.round_over(room, validation)

    into = {}
    handler.evaluate(room, validation, into)
    assert into['a'].score == 20
    assert into['b'].score == 0
    assert into['a'].details['passed'] is True


def test_objective_context_is_anchored_on_letter():
    handler = get_handler('objective')
    ctx = handler.build_context(_room('objective', 'solve'), 'ر', random.Random(2), 5)
    assert ctx['constraints'][0]['type'] == 'startsWith'
    assert ctx['constraints'][0]['value'] == 'ر'
    assert len(ctx['constraints']) == 4


def test_memory_context_round_trip():
    config = get_mode_config('memory')
    for seed in range(5):
        ctx = build_mode_context('memory', config, rng=random.Random(seed), word_count=5)
        words = ctx['words']
        assert len(words) == 5
        comparison = ValidationService.string_compare(words, words)
        assert comparison.correct == comparison.total == 5


def test_objective_constraints_include_endings():
    seen = set()
    for seed in range(60):
        constraints = build_constraints('س', random.Random(seed))
        kinds = [c['type'] for c in constraints]
        seen.add(kinds[-1])
        if kinds[-1] == 'endsWith':
            banned = next(c['value'] for c in constraints if c['type'] == 'notContains')
            assert constraints[-1]['value'] != banned
    assert seen == {'length', 'minLength', 'endsWith'}
