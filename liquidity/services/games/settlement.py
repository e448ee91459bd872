from typing import Iterable, List, NamedTuple

from liquidity.clock import derive_balance


class Settlement(NamedTuple):
    player_count: int
    withdrawn_count: int
    lost_count: int
    total_withdrawn: float
    total_lost: float
    total_claims: float
    actual_cash: float = 0.0

    def to_dict(self):
        return self._asdict()


def settle_players(store, game_id: int, elapsed: int) -> List[dict]:
    """Freeze the live balance of every player still holding a deposit.

    Players who withdrew keep their frozen ``withdrawn_amount`` untouched.
    """
    settled = []
    final_balance = derive_balance(elapsed)
    for player in store.players.list(game_id=game_id):
        if player['has_withdrawn']:
            settled.append(player)
            continue
        row = store.players.update({'id': player['id'], 'has_withdrawn': False}, balance=final_balance)
        settled.append(row or store.players.get(id=player['id']))
    return settled


def summarize(players: Iterable[dict]) -> Settlement:
    """Bankruptcy figures: every claim is owed, none of it is in the vault."""
    players = list(players)
    withdrawn = [p for p in players if p['has_withdrawn']]
    remaining = [p for p in players if not p['has_withdrawn']]
    total_withdrawn = round(sum(float(p['withdrawn_amount']) for p in withdrawn), 2)
    total_lost = round(sum(float(p['balance']) for p in remaining), 2)
    return Settlement(
        player_count=len(players),
        withdrawn_count=len(withdrawn),
        lost_count=len(remaining),
        total_withdrawn=total_withdrawn,
        total_lost=total_lost,
        total_claims=round(total_withdrawn + total_lost, 2),
        actual_cash=0.0,
    )
