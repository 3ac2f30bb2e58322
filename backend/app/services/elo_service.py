"""
backend/app/services/elo_service.py

Purpose:
    Pure Elo engine for table-soccer matches. Team strength is the mean rating
    of its occupied slots; both players on a team receive the same delta.
    No I/O, never raises on malformed rosters (empty teams rate as default).

Dependencies:
    - app.models.match
"""

from __future__ import annotations

import math
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Literal

from app.models.match import Team
from app.models.user import DEFAULT_ELO

K_FACTOR = 32
RATING_SCALE = 400
DEFAULT_RATING = DEFAULT_ELO

Outcome = Literal["red", "blue", "draw"]


@dataclass(frozen=True)
class Settlement:
    """Full result of settling one match."""

    outcome: Outcome
    red_rating: float
    blue_rating: float
    red_expected: float
    blue_expected: float
    red_delta: int
    blue_delta: int
    red_players: tuple[str, ...] = ()
    blue_players: tuple[str, ...] = ()
    changes: dict[str, int] = field(default_factory=dict)

    @property
    def winners(self) -> tuple[str, ...]:
        if self.outcome == "red":
            return self.red_players
        if self.outcome == "blue":
            return self.blue_players
        return ()

    @property
    def losers(self) -> tuple[str, ...]:
        if self.outcome == "red":
            return self.blue_players
        if self.outcome == "blue":
            return self.red_players
        return ()


def round_half_away(value: float) -> int:
    """Round to nearest, ties away from zero (keeps win/loss deltas symmetric)."""
    return int(math.copysign(math.floor(abs(value) + 0.5), value))


def expected_score(rating_a: float, rating_b: float) -> float:
    """E = 1 / (1 + 10^((Rb - Ra) / C))"""
    return 1 / (1 + 10 ** ((rating_b - rating_a) / RATING_SCALE))


def rating_delta(rating: float, opponent_rating: float, actual: float, k: int = K_FACTOR) -> int:
    return round_half_away(k * (actual - expected_score(rating, opponent_rating)))


def lookup_rating(player_id: str, ratings: Mapping[str, float]) -> float:
    value = ratings.get(player_id)
    if value is None:
        return float(DEFAULT_RATING)
    return float(value)


def team_rating(team: Team, ratings: Mapping[str, float]) -> float:
    players = team.players()
    if not players:
        return float(DEFAULT_RATING)
    return sum(lookup_rating(pid, ratings) for pid in players) / len(players)


def match_outcome(red_score: int, blue_score: int) -> Outcome:
    if red_score > blue_score:
        return "red"
    if blue_score > red_score:
        return "blue"
    return "draw"


def settle(red_team: Team, blue_team: Team, ratings: Mapping[str, float], k: int = K_FACTOR) -> Settlement:
    """Compute per-player Elo deltas for a finished match.

    Every player on a team gets that team's delta. A player listed on both
    teams (which the assignment rules prevent) ends up with the blue delta.
    """
    red_rating = team_rating(red_team, ratings)
    blue_rating = team_rating(blue_team, ratings)

    outcome = match_outcome(red_team.score, blue_team.score)
    if outcome == "draw":
        red_actual = blue_actual = 0.5
    else:
        red_actual = 1.0 if outcome == "red" else 0.0
        blue_actual = 1.0 - red_actual

    red_delta = rating_delta(red_rating, blue_rating, red_actual, k)
    blue_delta = rating_delta(blue_rating, red_rating, blue_actual, k)

    red_players = tuple(red_team.players())
    blue_players = tuple(blue_team.players())
    changes: dict[str, int] = {}
    for pid in red_players:
        changes[pid] = red_delta
    for pid in blue_players:
        changes[pid] = blue_delta

    return Settlement(
        outcome=outcome,
        red_rating=red_rating,
        blue_rating=blue_rating,
        red_expected=expected_score(red_rating, blue_rating),
        blue_expected=expected_score(blue_rating, red_rating),
        red_delta=red_delta,
        blue_delta=blue_delta,
        red_players=red_players,
        blue_players=blue_players,
        changes=changes,
    )
