"""Unit tests for chess_arbiter/api/dispatch.py"""

from uuid import uuid4

import pytest

from conftest import ArbiterHarness

from chess_arbiter.api.dispatch import CommandDispatcher


@pytest.fixture
def dispatcher(harness: ArbiterHarness) -> CommandDispatcher:
    return CommandDispatcher(harness.arbitrator)


def test_error_goes_only_to_the_sending_connection(harness: ArbiterHarness, dispatcher: CommandDispatcher) -> None:
    sender = harness.connect("alice", "alice-1")
    other_tab = harness.connect("alice", "alice-2")

    accepted = dispatcher.dispatch("alice", sender, {"type": "resign", "matchId": str(uuid4())})

    assert accepted is False
    assert sender.messages == [{"type": "error", "message": "Game not found."}]
    assert other_tab.messages == []


def test_request_errors_are_reported(harness: ArbiterHarness, dispatcher: CommandDispatcher) -> None:
    sender = harness.connect("alice")
    dispatcher.dispatch("alice", sender, {"type": "make_move", "matchId": str(uuid4()), "from": "e2"})
    assert sender.last()["type"] == "error"
    assert "to" in sender.last()["message"]


def test_self_join_via_protocol(harness: ArbiterHarness, dispatcher: CommandDispatcher) -> None:
    alice = harness.connect("alice")
    assert dispatcher.dispatch("alice", alice, {"type": "create_game", "opponentType": "challengeLink"})
    token = alice.last()["joinLink"].rsplit("/", 1)[-1]

    assert not dispatcher.dispatch("alice", alice, {"type": "join_challenge", "token": token})
    assert alice.last() == {"type": "error", "message": "You cannot join your own challenge."}
    assert len(harness.arbitrator.store) == 0


def test_full_game_flow(harness: ArbiterHarness, dispatcher: CommandDispatcher) -> None:
    alice, bob = harness.connect("alice"), harness.connect("bob")
    dispatcher.dispatch("alice", alice, {"type": "create_game", "opponentType": "openQueue"})
    dispatcher.dispatch("bob", bob, {"type": "create_game", "opponentType": "openQueue"})

    started = {c: c.of_type("game_started")[0] for c in (alice, bob)}
    white = next(identity for identity, c in (("alice", alice), ("bob", bob)) if started[c]["side"] == "white")
    white_connection = alice if white == "alice" else bob
    match_id = started[alice]["matchId"]

    assert dispatcher.dispatch(white, white_connection, {"type": "make_move", "matchId": match_id, "from": "e2", "to": "e4"})
    assert alice.last()["type"] == bob.last()["type"] == "move_made"

    assert dispatcher.dispatch(white, white_connection, {"type": "reset_game", "matchId": match_id})
    assert alice.last()["type"] == bob.last()["type"] == "game_reset"

    assert dispatcher.dispatch("alice", alice, {"type": "resign", "matchId": match_id})
    assert alice.last()["outcome"] == "loss"
    assert bob.last()["outcome"] == "win"
