import pytest

from betparty.errors import (
    AlreadyAnswered,
    NoActiveQuestion,
    NotAuthenticated,
    NotFoundError,
    QuestionExpired,
    TransientIOError,
    UpdateFailed,
    ValidationError,
)
from betparty.models import AnswerRecord, LobbyMember
from betparty.services.lobbies import state_machine as sm
from betparty.services.lobbies.answers import submit_answer

QUESTION = {'text': 'Will the Patriots score on this drive?', 'tip': 'Red zone', 'correct_answer': 'Yes'}


@pytest.fixture()
def live_lobby(ctx, make_user):
    owner = make_user('host')
    players = [make_user('alice'), make_user('bob')]
    lobby = sm.create_lobby(ctx, owner, buy_in=20, max_players=5)
    for p in players:
        sm.join_lobby(ctx, lobby.code, p)
    sm.start_lobby(ctx, lobby.id, owner)
    question = sm.publish_question(ctx, lobby.id, QUESTION, owner_id=owner)
    return {'id': lobby.id, 'owner': owner, 'players': players, 'key': question.key}


def _member(lobby_id, user_id):
    return LobbyMember.query.filter_by(lobby_id=lobby_id, user_id=user_id).first()


def test_three_players_one_correct(ctx, live_lobby):
    lid, key = live_lobby['id'], live_lobby['key']
    owner = live_lobby['owner']
    alice, bob = live_lobby['players']

    right = submit_answer(ctx, lid, owner, key, 'yes')
    wrong_a = submit_answer(ctx, lid, alice, key, 'No')
    wrong_b = submit_answer(ctx, lid, bob, key, 'NO')

    assert right.is_correct and right.points_delta == 20
    assert (right.points_earned, right.correct_bets, right.questions_attempted) == (20, 1, 1)
    for outcome in (wrong_a, wrong_b):
        assert not outcome.is_correct
        assert (outcome.points_earned, outcome.correct_bets, outcome.questions_attempted) == (0, 0, 1)
    assert AnswerRecord.query.filter_by(lobby_id=lid).count() == 3
    assert all(o.log_recorded for o in (right, wrong_a, wrong_b))


def test_second_answer_is_rejected_without_points(ctx, live_lobby):
    lid, key = live_lobby['id'], live_lobby['key']
    alice = live_lobby['players'][0]
    submit_answer(ctx, lid, alice, key, 'Yes')
    with pytest.raises(AlreadyAnswered):
        submit_answer(ctx, lid, alice, key, 'No')
    member = _member(lid, alice)
    assert member.points_earned == 20
    assert member.questions_attempted == 1
    assert AnswerRecord.query.filter_by(lobby_id=lid, user_id=alice, question_key=key).count() == 1


def test_duplicate_blocked_even_when_log_is_missing(ctx, live_lobby):
    lid, key = live_lobby['id'], live_lobby['key']
    alice = live_lobby['players'][0]
    submit_answer(ctx, lid, alice, key, 'Yes')
    # Simulate the best-effort log never landing
    AnswerRecord.query.filter_by(lobby_id=lid, user_id=alice).delete()
    ctx.store.commit()
    with pytest.raises(AlreadyAnswered):
        submit_answer(ctx, lid, alice, key, 'Yes')
    assert _member(lid, alice).points_earned == 20


def test_wrong_key_or_no_question(ctx, live_lobby):
    lid, key = live_lobby['id'], live_lobby['key']
    alice = live_lobby['players'][0]
    with pytest.raises(NoActiveQuestion):
        submit_answer(ctx, lid, alice, 'not-the-key', 'Yes')
    sm.clear_question(ctx, lid, owner_id=live_lobby['owner'])
    with pytest.raises(NoActiveQuestion):
        submit_answer(ctx, lid, alice, key, 'Yes')


def test_answers_for_new_question_are_scored_again(ctx, live_lobby):
    lid, owner = live_lobby['id'], live_lobby['owner']
    alice = live_lobby['players'][0]
    submit_answer(ctx, lid, alice, live_lobby['key'], 'Yes')
    second = sm.publish_question(ctx, lid, {'text': 'Interception?', 'correct_answer': 'No'}, owner_id=owner)
    outcome = submit_answer(ctx, lid, alice, second.key, 'No')
    assert (outcome.points_earned, outcome.correct_bets, outcome.questions_attempted) == (40, 2, 2)


def test_expired_question(ctx, live_lobby, clock):
    clock.advance(20 + 2 + 0.5)
    with pytest.raises(QuestionExpired):
        submit_answer(ctx, live_lobby['id'], live_lobby['players'][0], live_lobby['key'], 'Yes')


def test_late_answer_inside_grace_counts(ctx, live_lobby, clock):
    clock.advance(21)
    outcome = submit_answer(ctx, live_lobby['id'], live_lobby['players'][0], live_lobby['key'], 'Yes')
    assert outcome.is_correct


def test_invalid_inputs(ctx, live_lobby, make_user):
    lid, key = live_lobby['id'], live_lobby['key']
    with pytest.raises(NotAuthenticated):
        submit_answer(ctx, lid, None, key, 'Yes')
    with pytest.raises(ValidationError):
        submit_answer(ctx, lid, live_lobby['players'][0], key, 'Perhaps')
    with pytest.raises(NotFoundError):
        submit_answer(ctx, lid, make_user('stranger'), key, 'Yes')
    with pytest.raises(NotFoundError):
        submit_answer(ctx, 'missing', live_lobby['players'][0], key, 'Yes')


def test_log_failure_is_not_fatal(ctx, live_lobby, monkeypatch):
    lid, key = live_lobby['id'], live_lobby['key']
    alice = live_lobby['players'][0]

    def broken_append(record):
        raise TransientIOError()

    monkeypatch.setattr(ctx.store, 'append_answer_record', broken_append)
    outcome = submit_answer(ctx, lid, alice, key, 'Yes')
    assert outcome.log_recorded is False
    assert _member(lid, alice).points_earned == 20


def test_points_update_failure_propagates(ctx, live_lobby, monkeypatch):
    lid, key = live_lobby['id'], live_lobby['key']
    alice = live_lobby['players'][0]

    def broken_increment(*args, **kwargs):
        raise TransientIOError()

    monkeypatch.setattr(ctx.store, 'increment_membership', broken_increment)
    with pytest.raises(UpdateFailed):
        submit_answer(ctx, lid, alice, key, 'Yes')
    monkeypatch.undo()

    # The player can retry before the window closes
    outcome = submit_answer(ctx, lid, alice, key, 'Yes')
    assert outcome.points_earned == 20
