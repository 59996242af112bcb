"""Pool settlement and the final leaderboard.

Payouts are proportional to each player's positive points. Shares are
floored and the leftover units go one each to players in leaderboard
order, which keeps ``sum(payout) == pool`` and never pays a lower-ranked
player more than a higher-ranked one. A lobby where nobody scored is
refunded evenly.
"""

import json
from dataclasses import asdict, dataclass
from typing import List

from betparty.errors import BetPartyError, InvalidTransition, NotSettled
from betparty.models import display_name, load_settlement
from .state_machine import finish_lobby, load_lobby, require_owner


@dataclass
class LeaderboardRow:
    rank: int
    user_id: str
    username: str
    points_earned: int
    correct_bets: int
    questions_attempted: int
    payout: int
    profit: int
    new_balance: int
    accuracy: float

    def to_dict(self):
        return asdict(self)


def compute_accuracy(correct_bets: int, questions_attempted: int) -> float:
    if not questions_attempted:
        return 0.0
    return correct_bets / questions_attempted


def leaderboard_order(members) -> list:
    return sorted(members, key=lambda m: (-(m.points_earned or 0), m.joined_at, m.id))


def allocate_payouts(points: List[int], pool: int) -> List[int]:
    """Split ``pool`` across players given in leaderboard order."""
    if not points:
        return []
    weights = [max(p, 0) for p in points]
    total = sum(weights)
    if total == 0:
        weights = [1] * len(points)
        total = len(points)
    shares = [pool * w // total for w in weights]
    leftover = pool - sum(shares)
    for idx in range(leftover):
        shares[idx] += 1
    return shares


def build_leaderboard(members, users: dict, buy_in: int) -> List[LeaderboardRow]:
    ordered = leaderboard_order(members)
    pool = buy_in * len(ordered)
    payouts = allocate_payouts([m.points_earned or 0 for m in ordered], pool)
    rows = []
    for rank, (member, payout) in enumerate(zip(ordered, payouts), start=1):
        user = users.get(member.user_id)
        prior = user.balance if user is not None else 0
        profit = payout - buy_in
        rows.append(LeaderboardRow(
            rank=rank,
            user_id=member.user_id,
            username=display_name(user, member.user_id),
            points_earned=member.points_earned or 0,
            correct_bets=member.correct_bets or 0,
            questions_attempted=member.questions_attempted or 0,
            payout=payout,
            profit=profit,
            new_balance=prior + profit,
            accuracy=compute_accuracy(member.correct_bets or 0, member.questions_attempted or 0),
        ))
    return rows


def settle_lobby(ctx, lobby_id, requester_id=None, by_scheduler=False) -> dict:
    """Settle a finished lobby once and return its leaderboard payload.

    Calling it again returns the stored payload untouched. A live lobby is
    finished first, but only by its host or the scheduler. On any failure
    the transaction is rolled back and the lobby stays finished but
    unsettled. A caller that loses the claim to a settlement still in
    flight changes nothing and gets ``{'settling': True}`` back.
    """
    store = ctx.store
    lobby = load_lobby(ctx, lobby_id)
    cached = load_settlement(lobby)
    if lobby.settled_at is not None and cached is not None:
        return cached

    if lobby.status == 'active':
        if not by_scheduler:
            require_owner(lobby, requester_id, 'end a live lobby')
        lobby = finish_lobby(ctx, lobby.id, owner_id=requester_id, by_scheduler=by_scheduler)
    elif lobby.status != 'finished':
        raise InvalidTransition('Only finished lobbies can be settled')

    try:
        if not store.claim_settlement(lobby.id, ctx.now()):
            store.rollback()
            cached = load_settlement(load_lobby(ctx, lobby.id))
            if cached is None:
                # Another caller holds the claim and has not committed yet
                ctx.logger.info(f"[settle-skip] lobby={lobby.id} settlement in progress elsewhere")
                return {'lobby_id': lobby.id, 'settling': True}
            return cached

        members = store.list_memberships(lobby.id)
        users = {m.user_id: store.get_user(m.user_id) for m in members}
        rows = build_leaderboard(members, users, lobby.buy_in)
        for row in rows:
            if users.get(row.user_id) is not None:
                store.set_user_balance(row.user_id, row.new_balance)
        payload = {
            'lobby_id': lobby.id,
            'buy_in': lobby.buy_in,
            'player_count': len(rows),
            'pool': lobby.buy_in * len(rows),
            'leaderboard': [row.to_dict() for row in rows],
        }
        store.save_settlement(lobby.id, json.dumps(payload, sort_keys=True))
        store.commit()
    except BetPartyError as exc:
        store.rollback()
        ctx.logger.error(f"[settle-failed] lobby={lobby.id} kind={exc.kind}")
        raise

    ctx.logger.info(f"[settle] lobby={lobby.id} pool={payload['pool']} players={payload['player_count']}")
    return load_settlement(load_lobby(ctx, lobby.id))


def get_leaderboard(ctx, lobby_id) -> dict:
    lobby = load_lobby(ctx, lobby_id)
    cached = load_settlement(lobby)
    if lobby.settled_at is None or cached is None:
        raise NotSettled()
    return cached
