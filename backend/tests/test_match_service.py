"""
backend/tests/test_match_service.py

Purpose:
    Match state machine against the in-memory store: guards as silent no-ops,
    the one-slot-per-player invariant, the win rule boundary and completion.
"""

from __future__ import annotations

import asyncio
import sys
from datetime import timedelta

import pytest
from bson import ObjectId
from bson.errors import InvalidId
from fastapi import HTTPException

sys.path.insert(0, "backend")

from app.models.match import new_match_doc, slot_paths
from app.services.match_service import MatchService, winning_team
from app.utils import utcnow


async def _lobby(db, creator="alice", others=("bob", "carol", "dave")) -> str:
    service = MatchService(db)
    match_id = await service.create_match(creator)
    await db.matches.update_one(
        {"_id": ObjectId(match_id)},
        {"$set": {"participants": [creator, *others]}},
    )
    return match_id


async def _live(db, *, red=("A", None), blue=("B", None), score=(0, 0)) -> str:
    doc = new_match_doc("A", utcnow())
    doc.update({
        "status": "live",
        "participants": [p for p in (*red, *blue) if p is not None],
        "red_team": {"attacker": red[0], "defender": red[1], "score": score[0]},
        "blue_team": {"attacker": blue[0], "defender": blue[1], "score": score[1]},
        "started_at": utcnow(),
    })
    result = await db.matches.insert_one(doc)
    return str(result.inserted_id)


def _occupants(doc: dict) -> list[str]:
    out = []
    for team, role, _ in slot_paths():
        pid = doc[f"{team}_team"][role]
        if pid is not None:
            out.append(pid)
    return out


@pytest.mark.asyncio
async def test_create_match_shapes_a_fresh_lobby(fake_db):
    service = MatchService(fake_db)
    match_id = await service.create_match("alice")
    doc = await service.get_match(match_id)

    assert doc["status"] == "lobby"
    assert doc["participants"] == ["alice"]
    assert doc["created_by"] == "alice"
    assert doc["red_team"] == {"attacker": None, "defender": None, "score": 0}
    assert doc["blue_team"] == {"attacker": None, "defender": None, "score": 0}
    assert doc["events"] == []
    assert doc["last_activity_at"] is not None


@pytest.mark.asyncio
async def test_get_match_missing_and_malformed_ids(fake_db):
    service = MatchService(fake_db)
    with pytest.raises(HTTPException) as exc:
        await service.get_match(str(ObjectId()))
    assert exc.value.status_code == 404
    with pytest.raises(InvalidId):
        await service.get_match("not-an-id")


@pytest.mark.asyncio
async def test_assign_moves_player_between_slots(fake_db):
    service = MatchService(fake_db)
    match_id = await _lobby(fake_db)

    await service.assign_to_team(match_id, "bob", "red", "attacker")
    doc = await service.assign_to_team(match_id, "bob", "blue", "defender")

    assert doc["red_team"]["attacker"] is None
    assert doc["blue_team"]["defender"] == "bob"


@pytest.mark.asyncio
async def test_assign_sequence_keeps_one_slot_per_player(fake_db):
    service = MatchService(fake_db)
    match_id = await _lobby(fake_db)
    moves = [
        ("alice", "red", "attacker"),
        ("bob", "red", "defender"),
        ("alice", "red", "defender"),
        ("carol", "blue", "attacker"),
        ("bob", "blue", "attacker"),
        ("dave", "red", "attacker"),
        ("alice", "blue", "defender"),
        ("carol", "blue", "defender"),
        ("alice", "red", "attacker"),
    ]
    for player, team, role in moves:
        doc = await service.assign_to_team(match_id, player, team, role)
        occupants = _occupants(doc)
        assert len(occupants) == len(set(occupants))

    doc = await service.get_match(match_id)
    assert doc["red_team"]["attacker"] == "alice"
    assert doc["blue_team"]["defender"] == "carol"


@pytest.mark.asyncio
async def test_concurrent_assignments_of_one_player_leave_one_slot(fake_db):
    service = MatchService(fake_db)
    match_id = await _lobby(fake_db)

    await asyncio.gather(
        service.assign_to_team(match_id, "bob", "red", "attacker"),
        service.assign_to_team(match_id, "bob", "blue", "defender"),
        service.assign_to_team(match_id, "bob", "red", "defender"),
    )
    doc = await service.get_match(match_id)
    assert _occupants(doc).count("bob") == 1


@pytest.mark.asyncio
async def test_assign_guards(fake_db):
    service = MatchService(fake_db)
    match_id = await _lobby(fake_db)

    assert await service.assign_to_team(match_id, "mallory", "red", "attacker") is None
    live_id = await _live(fake_db)
    assert await service.assign_to_team(live_id, "A", "blue", "defender") is None
    with pytest.raises(HTTPException):
        await service.assign_to_team(str(ObjectId()), "bob", "red", "attacker")


@pytest.mark.asyncio
async def test_assign_refreshes_last_activity(fake_db):
    service = MatchService(fake_db)
    match_id = await _lobby(fake_db)
    stale = utcnow() - timedelta(seconds=25)
    await fake_db.matches.update_one({"_id": ObjectId(match_id)}, {"$set": {"last_activity_at": stale}})

    doc = await service.assign_to_team(match_id, "bob", "red", "attacker")
    assert doc["last_activity_at"] > stale


@pytest.mark.asyncio
async def test_remove_from_team(fake_db):
    service = MatchService(fake_db)
    match_id = await _lobby(fake_db)
    await service.assign_to_team(match_id, "bob", "red", "attacker")

    doc = await service.remove_from_team(match_id, "red", "attacker")
    assert doc["red_team"]["attacker"] is None


@pytest.mark.asyncio
async def test_start_requires_creator_and_both_teams(fake_db):
    service = MatchService(fake_db)
    match_id = await _lobby(fake_db)

    await service.assign_to_team(match_id, "alice", "red", "attacker")
    assert await service.start_match(match_id, "alice") is None

    await service.assign_to_team(match_id, "bob", "blue", "defender")
    assert await service.start_match(match_id, "bob") is None

    doc = await service.start_match(match_id, "alice")
    assert doc["status"] == "live"
    assert doc["started_at"] is not None
    assert await service.start_match(match_id, "alice") is None


@pytest.mark.asyncio
async def test_start_allows_uneven_teams(fake_db):
    service = MatchService(fake_db)
    match_id = await _lobby(fake_db)
    await service.assign_to_team(match_id, "alice", "red", "attacker")
    await service.assign_to_team(match_id, "bob", "blue", "attacker")
    await service.assign_to_team(match_id, "carol", "blue", "defender")

    doc = await service.start_match(match_id, "alice")
    assert doc["status"] == "live"


@pytest.mark.asyncio
async def test_goal_ignored_unless_live(fake_db):
    service = MatchService(fake_db)
    match_id = await _lobby(fake_db)

    assert await service.add_goal(match_id, "red") is None
    doc = await service.get_match(match_id)
    assert doc["red_team"]["score"] == 0
    assert doc["events"] == []


@pytest.mark.asyncio
async def test_goal_increments_and_logs_event(fake_db):
    service = MatchService(fake_db)
    match_id = await _live(fake_db)

    outcome = await service.add_goal(match_id, "blue")
    assert (outcome.red_score, outcome.blue_score) == (0, 1)
    assert outcome.winner is None
    assert outcome.match["events"][-1]["type"] == "goal"
    assert outcome.match["events"][-1]["team"] == "blue"


@pytest.mark.parametrize(
    "red,blue,expected",
    [
        (10, 9, None),
        (10, 8, "red"),
        (9, 10, None),
        (8, 10, "blue"),
        (10, 7, "red"),
        (12, 10, "red"),
        (11, 10, None),
        (9, 0, None),
    ],
)
def test_winning_team_rule(red, blue, expected):
    assert winning_team(red, blue) == expected


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "score,team,completes",
    [
        ((9, 9), "red", False),
        ((10, 8), "blue", False),
        ((9, 7), "red", True),
    ],
)
async def test_win_boundary(fake_db, score, team, completes):
    service = MatchService(fake_db)
    match_id = await _live(fake_db, score=score)

    outcome = await service.add_goal(match_id, team)
    doc = await service.get_match(match_id)

    assert (outcome.winner is not None) is completes
    assert doc["status"] == ("completed" if completes else "live")


@pytest.mark.asyncio
async def test_winning_goal_completes_without_writing_ratings(fake_db):
    service = MatchService(fake_db)
    await fake_db.users.insert_one({"_id": "A", "username": "a", "elo": 1000})
    await fake_db.users.insert_one({"_id": "B", "username": "b", "elo": 1000})
    match_id = await _live(fake_db, score=(9, 2))

    outcome = await service.add_goal(match_id, "red")
    doc = await service.get_match(match_id)

    assert outcome.winner == "red"
    assert outcome.settlement.changes == {"A": 16, "B": -16}
    assert doc["status"] == "completed"
    assert doc["ended_at"] is not None
    assert (doc["red_team"]["score"], doc["blue_team"]["score"]) == (10, 2)
    assert doc.get("elo_changes") is None
    assert (await fake_db.users.find_one({"_id": "A"}))["elo"] == 1000


@pytest.mark.asyncio
async def test_racing_winning_goals_complete_once(fake_db):
    service = MatchService(fake_db)
    match_id = await _live(fake_db, score=(9, 7))

    outcomes = await asyncio.gather(service.add_goal(match_id, "red"), service.add_goal(match_id, "red"))
    doc = await service.get_match(match_id)

    counted = [o for o in outcomes if o is not None]
    goals = [e for e in doc["events"] if e["type"] == "goal"]
    assert doc["status"] == "completed"
    # Both goals may land while the match is still live; each one counted is logged.
    assert doc["red_team"]["score"] == 9 + len(goals)
    assert 1 <= len(counted) == len(goals) <= 2
    assert sorted(o.red_score for o in counted) == list(range(10, 10 + len(counted)))
    assert sum(1 for o in counted if o.settlement is not None) == 1
    assert doc.get("elo_changes") is None


@pytest.mark.asyncio
async def test_complete_never_lowers_scores(fake_db):
    service = MatchService(fake_db)
    match_id = await _live(fake_db, score=(10, 6))

    preview = await service.complete_match(match_id, 9, 6)
    doc = await service.get_match(match_id)

    assert preview is not None
    assert doc["red_team"]["score"] == 10


@pytest.mark.asyncio
async def test_complete_rejects_ties_and_non_live(fake_db):
    service = MatchService(fake_db)
    live_id = await _live(fake_db, score=(5, 5))
    assert await service.complete_match(live_id) is None
    assert (await service.get_match(live_id))["status"] == "live"

    lobby_id = await _lobby(fake_db)
    assert await service.complete_match(lobby_id, 10, 0) is None

    done_id = await _live(fake_db, score=(10, 3))
    assert await service.complete_match(done_id) is not None
    assert await service.complete_match(done_id) is None


@pytest.mark.asyncio
async def test_swap_roles_including_empty_slot(fake_db):
    service = MatchService(fake_db)
    match_id = await _live(fake_db, red=("A", None))

    doc = await service.swap_roles(match_id, "red")
    assert doc["red_team"]["attacker"] is None
    assert doc["red_team"]["defender"] == "A"
    assert doc["events"][-1]["type"] == "swap"

    lobby_id = await _lobby(fake_db)
    assert await service.swap_roles(lobby_id, "red") is None


@pytest.mark.asyncio
async def test_delete_lobby_is_idempotent(fake_db):
    service = MatchService(fake_db)
    match_id = await _lobby(fake_db)
    await fake_db.invitations.insert_one({"match_id": match_id, "invitee_uid": "eve", "status": "pending"})

    assert await service.delete_lobby(match_id) is True
    assert await service.delete_lobby(match_id) is False
    assert await service.find_match(match_id) is None
    assert await fake_db.invitations.count_documents({}) == 0

    live_id = await _live(fake_db)
    assert await service.delete_lobby(live_id) is False
    assert await service.find_match(live_id) is not None


@pytest.mark.asyncio
async def test_list_player_matches_newest_first(fake_db):
    service = MatchService(fake_db)
    ids = []
    for offset in range(3):
        doc = new_match_doc("alice", utcnow() - timedelta(minutes=10 - offset))
        ids.append(str((await fake_db.matches.insert_one(doc)).inserted_id))
    await fake_db.matches.insert_one(new_match_doc("zed", utcnow()))

    history = await service.list_player_matches("alice", limit=2)
    assert [str(m["_id"]) for m in history] == [ids[2], ids[1]]


@pytest.mark.asyncio
async def test_stale_final_scores_cannot_complete_a_stored_tie(fake_db):
    service = MatchService(fake_db)
    match_id = await _live(fake_db, score=(3, 5))

    assert await service.complete_match(match_id, 5, 3) is None

    doc = await service.get_match(match_id)
    assert doc["status"] == "live"
    assert (doc["red_team"]["score"], doc["blue_team"]["score"]) == (3, 5)


@pytest.mark.asyncio
async def test_completion_preview_matches_stored_scores(fake_db):
    service = MatchService(fake_db)
    match_id = await _live(fake_db, score=(3, 10))

    preview = await service.complete_match(match_id, 5, 3)
    doc = await service.get_match(match_id)

    assert (doc["red_team"]["score"], doc["blue_team"]["score"]) == (5, 10)
    assert preview.outcome == "blue"
    assert preview.changes == {"A": -16, "B": 16}
