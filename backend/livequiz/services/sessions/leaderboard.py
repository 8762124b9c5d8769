from dataclasses import dataclass, asdict
from typing import Iterable, List, Optional


@dataclass(frozen=True)
class RankedPlayer:
    rank: int
    id: str
    display_name: str
    avatar_token: Optional[str]
    score: int

    def to_dict(self) -> dict:
        data = asdict(self)
        return {
            'rank': data['rank'],
            'id': data['id'],
            'displayName': data['display_name'],
            'avatarToken': data['avatar_token'],
            'score': data['score'],
        }


def rank(players: Iterable) -> List[RankedPlayer]:
    """Rank players by score, highest first.

    ``sorted`` is stable, so players with equal scores keep the order they
    were given in, which is join order when called with ``session.players``.
    """
    ordered = sorted(players, key=lambda p: -(p.score or 0))
    return [
        RankedPlayer(
            rank=pos,
            id=p.player_key,
            display_name=p.display_name,
            avatar_token=p.avatar_token,
            score=p.score or 0,
        )
        for pos, p in enumerate(ordered, start=1)
    ]


def rank_dicts(players: Iterable) -> List[dict]:
    return [r.to_dict() for r in rank(players)]
