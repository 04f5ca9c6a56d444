from __future__ import annotations

from app.game.live.results import build_leaderboard, team_totals
from app.game.live.types import ParticipantSnapshot


def _participant(pid: str, score: int, team: str | None = None) -> ParticipantSnapshot:
    return ParticipantSnapshot(id=pid, room_id="room-1", nickname=pid, score=score, team=team)


def test_leaderboard_orders_by_score_and_shares_ranks_on_ties() -> None:
    rows = build_leaderboard(
        [
            _participant("c", 300),
            _participant("a", 900),
            _participant("b", 900),
            _participant("d", 0),
        ]
    )

    assert [row.participant.id for row in rows] == ["a", "b", "c", "d"]
    assert [row.rank for row in rows] == [1, 1, 3, 4]


def test_empty_leaderboard() -> None:
    assert build_leaderboard([]) == []


def test_team_totals_pick_the_higher_team() -> None:
    totals = team_totals(
        [
            _participant("a", 400, "red"),
            _participant("b", 250, "blue"),
            _participant("c", 300, "blue"),
            _participant("d", 999),
        ]
    )

    assert (totals.red, totals.blue) == (400, 550)
    assert totals.winner == "blue"


def test_team_totals_tie_has_no_winner() -> None:
    totals = team_totals([_participant("a", 100, "red"), _participant("b", 100, "blue")])

    assert totals.winner is None
