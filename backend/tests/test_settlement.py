import json
import logging

import pytest

from betparty import db
from betparty.errors import AuthError, InvalidTransition, NotSettled, TransientIOError
from betparty.models import User
from betparty.services.lobbies import state_machine as sm
from betparty.services.lobbies.answers import submit_answer
from betparty.services.lobbies.settlement import (
    allocate_payouts,
    compute_accuracy,
    get_leaderboard,
    settle_lobby,
)


def _play(ctx, make_user, answers, buy_in=20):
    """Run one question where ``answers`` maps username -> choice ('Yes' is right)."""
    ids = {name: make_user(name) for name in answers}
    names = list(answers)
    owner = ids[names[0]]
    lobby = sm.create_lobby(ctx, owner, buy_in=buy_in, max_players=5)
    for name in names[1:]:
        sm.join_lobby(ctx, lobby.code, ids[name])
    sm.start_lobby(ctx, lobby.id, owner)
    question = sm.publish_question(ctx, lobby.id, {'text': 'Sack on 3rd down?', 'correct_answer': 'Yes'},
                                   owner_id=owner)
    for name, choice in answers.items():
        if choice is not None:
            submit_answer(ctx, lobby.id, ids[name], question.key, choice)
    return lobby.id, owner, ids


def test_allocate_payouts_conserves_pool_and_is_monotonic():
    assert allocate_payouts([20, 0, 0], 60) == [60, 0, 0]
    assert allocate_payouts([40, 20, 20], 100) == [50, 25, 25]
    assert allocate_payouts([10, 10, 10], 100) == [34, 33, 33]
    assert allocate_payouts([0, 0, 0], 60) == [20, 20, 20]
    assert allocate_payouts([30, -10], 40) == [40, 0]
    assert allocate_payouts([], 0) == []
    for points, pool in [([7, 5, 3, 1], 97), ([13, 11, 2], 50), ([1, 1, 1, 1, 1], 3)]:
        payouts = allocate_payouts(points, pool)
        assert sum(payouts) == pool
        assert all(p >= 0 for p in payouts)
        for i in range(len(points) - 1):
            if points[i] > points[i + 1]:
                assert payouts[i] >= payouts[i + 1]


def test_accuracy():
    assert compute_accuracy(0, 0) == 0
    assert compute_accuracy(1, 3) == 1 / 3
    assert compute_accuracy(2, 2) == 1


def test_settle_pays_out_pool(ctx, make_user):
    lid, owner, ids = _play(ctx, make_user, {'host': 'Yes', 'alice': 'No', 'bob': 'No'})
    sm.finish_lobby(ctx, lid, owner)
    result = settle_lobby(ctx, lid, requester_id=ids['alice'])

    assert result['pool'] == 60
    assert result['buy_in'] == 20
    rows = result['leaderboard']
    assert [r['username'] for r in rows] == ['host', 'alice', 'bob']
    assert sum(r['payout'] for r in rows) == 60
    top = rows[0]
    assert (top['points_earned'], top['correct_bets'], top['questions_attempted']) == (20, 1, 1)
    assert top['payout'] == 60 and top['profit'] == 40 and top['new_balance'] == 1040
    assert top['accuracy'] == 1
    assert rows[1]['profit'] == -20 and rows[1]['new_balance'] == 980
    assert rows[1]['accuracy'] == 0
    assert db.session.get(User, ids['host']).balance == 1040
    assert db.session.get(User, ids['bob']).balance == 980


def test_settle_twice_is_identical_and_credits_once(ctx, make_user):
    lid, owner, ids = _play(ctx, make_user, {'host': 'No', 'alice': 'Yes', 'bob': None})
    sm.finish_lobby(ctx, lid, owner)
    first = settle_lobby(ctx, lid, requester_id=owner)
    balances = {name: db.session.get(User, uid).balance for name, uid in ids.items()}
    second = settle_lobby(ctx, lid, requester_id=ids['bob'])
    assert json.dumps(first, sort_keys=True) == json.dumps(second, sort_keys=True)
    assert {name: db.session.get(User, uid).balance for name, uid in ids.items()} == balances
    assert get_leaderboard(ctx, lid) == first


def test_ties_break_on_join_order(ctx, make_user):
    lid, owner, ids = _play(ctx, make_user, {'host': 'No', 'alice': 'No', 'bob': 'No'})
    sm.finish_lobby(ctx, lid, owner)
    rows = settle_lobby(ctx, lid, requester_id=owner)['leaderboard']
    assert [r['username'] for r in rows] == ['host', 'alice', 'bob']
    # Nobody scored: everyone gets the buy-in back
    assert [r['payout'] for r in rows] == [20, 20, 20]
    assert [r['rank'] for r in rows] == [1, 2, 3]


def test_settle_live_lobby_needs_host(ctx, make_user):
    lid, owner, ids = _play(ctx, make_user, {'host': 'Yes', 'alice': 'No'})
    with pytest.raises(AuthError):
        settle_lobby(ctx, lid, requester_id=ids['alice'])
    result = settle_lobby(ctx, lid, requester_id=owner)
    assert result['pool'] == 40
    assert sm.load_lobby(ctx, lid).status == 'finished'


def test_settle_waiting_lobby_is_rejected(ctx, make_user):
    owner = make_user('host')
    lobby = sm.create_lobby(ctx, owner)
    with pytest.raises(InvalidTransition):
        settle_lobby(ctx, lobby.id, requester_id=owner)
    with pytest.raises(NotSettled):
        get_leaderboard(ctx, lobby.id)


def test_failed_settlement_leaves_lobby_unsettled(ctx, make_user, monkeypatch):
    lid, owner, ids = _play(ctx, make_user, {'host': 'Yes', 'alice': 'No'})
    sm.finish_lobby(ctx, lid, owner)

    def broken_save(lobby_id, payload):
        raise TransientIOError()

    monkeypatch.setattr(ctx.store, 'save_settlement', broken_save)
    with pytest.raises(TransientIOError):
        settle_lobby(ctx, lid, requester_id=owner)
    lobby = sm.load_lobby(ctx, lid)
    assert lobby.status == 'finished'
    assert lobby.settled_at is None
    assert db.session.get(User, ids['host']).balance == 1000

    monkeypatch.undo()
    # Pool of 40 goes to the host: 1000 + 40 payout - 20 buy-in, credited once
    assert settle_lobby(ctx, lid, requester_id=owner)['leaderboard'][0]['new_balance'] == 1020
    assert db.session.get(User, ids['host']).balance == 1020
    assert db.session.get(User, ids['alice']).balance == 980
    settle_lobby(ctx, lid, requester_id=owner)
    assert db.session.get(User, ids['host']).balance == 1020


def test_players_who_left_mid_game_are_settled(ctx, make_user):
    lid, owner, ids = _play(ctx, make_user, {'host': 'Yes', 'alice': 'Yes', 'bob': None})
    sm.leave_lobby(ctx, lid, ids['bob'])
    sm.finish_lobby(ctx, lid, owner)
    result = settle_lobby(ctx, lid, requester_id=owner)
    assert result['player_count'] == 3
    assert result['pool'] == 60
    assert [r['payout'] for r in result['leaderboard']] == [30, 30, 0]


def test_username_falls_back_to_short_id(ctx, make_user):
    lid, owner, ids = _play(ctx, make_user, {'host': 'Yes', 'ghost': 'No'})
    # Drop the profile row the leaderboard would read the name from
    User.query.filter_by(id=ids['ghost']).delete()
    db.session.commit()
    sm.finish_lobby(ctx, lid, owner)
    rows = settle_lobby(ctx, lid, requester_id=owner)['leaderboard']
    assert rows[1]['username'] == ids['ghost'][:8]
    assert rows[1]['new_balance'] == -20


def test_losing_the_claim_to_a_concurrent_settle_changes_nothing(ctx, make_user, monkeypatch, caplog):
    lid, owner, ids = _play(ctx, make_user, {'host': 'Yes', 'alice': 'No'})
    sm.finish_lobby(ctx, lid, owner)

    # Another request claimed the lobby and has not committed yet
    monkeypatch.setattr(ctx.store, 'claim_settlement', lambda lobby_id, now: False)
    with caplog.at_level(logging.INFO):
        result = settle_lobby(ctx, lid, requester_id=ids['alice'])
    assert result == {'lobby_id': lid, 'settling': True}
    assert '[settle-failed]' not in caplog.text
    assert not [r for r in caplog.records if r.levelno >= logging.ERROR]
    assert sm.load_lobby(ctx, lid).settled_at is None
    assert db.session.get(User, ids['host']).balance == 1000

    monkeypatch.undo()

    # This time the other request commits before our claim is tried
    def other_writer_wins(lobby_id, now):
        monkeypatch.undo()
        settle_lobby(ctx, lobby_id, requester_id=owner)
        return False

    monkeypatch.setattr(ctx.store, 'claim_settlement', other_writer_wins)
    result = settle_lobby(ctx, lid, requester_id=ids['alice'])
    assert result['pool'] == 40
    assert result == get_leaderboard(ctx, lid)
    assert db.session.get(User, ids['host']).balance == 1020
