from __future__ import annotations

from dataclasses import dataclass

from app.game.live.types import ParticipantSnapshot


@dataclass(frozen=True, slots=True)
class StandingRow:
    rank: int
    participant: ParticipantSnapshot


@dataclass(frozen=True, slots=True)
class TeamTotals:
    red: int
    blue: int

    @property
    def winner(self) -> str | None:
        if self.red > self.blue:
            return "red"
        if self.blue > self.red:
            return "blue"
        return None


def build_leaderboard(participants: list[ParticipantSnapshot]) -> list[StandingRow]:
    """Orders by score, highest first; equal scores share a rank (1, 1, 3)."""
    ordered = sorted(participants, key=lambda p: p.score, reverse=True)
    rows: list[StandingRow] = []
    for position, participant in enumerate(ordered, start=1):
        if rows and rows[-1].participant.score == participant.score:
            rank = rows[-1].rank
        else:
            rank = position
        rows.append(StandingRow(rank=rank, participant=participant))
    return rows


def team_totals(participants: list[ParticipantSnapshot]) -> TeamTotals:
    return TeamTotals(
        red=sum(p.score for p in participants if p.team == "red"),
        blue=sum(p.score for p in participants if p.team == "blue"),
    )
