"""
Tests for peer replication.

Covers: intent broadcasting, remote replay, stale and out-of-order
messages, response windows across peers, timeouts, periodic snapshots,
and rebuilding a replica from relay history.
"""

import logging

import pytest
from copy import deepcopy

from server.godaigo.buffs import BuffLedger
from server.godaigo.engine import GodaigoEngine
from server.godaigo.scrolls import SCROLLS
from server.godaigo.session import PeerSession, wire
from server.godaigo.state import create_initial_state


# ── Helpers ───────────────────────────────────────────────────────────

START_HEXES = [(-3, 2), (-1, 3)]


class FakeClock:

    def __init__(self, now=100.0):
        self.now = now

    def __call__(self):
        return self.now


def make_state():
    """Two players on a fixed board: a fire shrine, two catacombs, two hidden shrines."""
    state = create_initial_state(["p1", "p2"], ["Alice", "Bob"], seed="session-seed")
    state["tiles"] = [
        {"id": "t0", "q": 0, "r": 0, "shrine": "fire", "flipped": False},
        {"id": "t1", "q": 2, "r": 1, "shrine": "catacomb", "flipped": False},
        {"id": "t2", "q": 3, "r": -2, "shrine": "water", "flipped": True},
        {"id": "t3", "q": 1, "r": -3, "shrine": "earth", "flipped": True},
        {"id": "t4", "q": -2, "r": -1, "shrine": "catacomb", "flipped": False},
        {"id": "p0", "q": -3, "r": 2, "shrine": "player", "flipped": False, "owner": 0},
        {"id": "p1", "q": -1, "r": 3, "shrine": "player", "flipped": False, "owner": 1},
    ]
    for i, player in enumerate(state["players"]):
        player["position"] = list(START_HEXES[i])
    return state


def arm(state, player_idx, sid):
    """Put a scroll in a player's active area and lay its pattern around them."""
    for deck in state["decks"].values():
        if sid in deck:
            deck.remove(sid)
    player = state["players"][player_idx]
    player["active"].append(sid)
    q, r = player["position"]
    for dq, dr, element in SCROLLS[sid].patterns[0]:
        state["stones"].append({"q": q + dq, "r": r + dr, "element": element})


def make_peers(state=None, clock=None):
    engine = GodaigoEngine()
    state = state if state is not None else make_state()
    clock = clock or FakeClock()
    alice = PeerSession(engine, deepcopy(state), 0, clock=clock)
    bob = PeerSession(engine, deepcopy(state), 1, clock=clock)
    return alice, bob


def deliver(sender, *receivers):
    """Hand everything the sender queued to each receiver; returns the messages."""
    messages = sender.drain()
    for message in messages:
        for receiver in receivers:
            receiver.receive(deepcopy(message))
    return messages


def comparable(state):
    """State without the free-text log, which differs between peers."""
    state = deepcopy(state)
    state.pop("log")
    return state


def responding_state():
    state = make_state()
    arm(state, 0, "FIRE_SCROLL_2")
    arm(state, 1, "EARTH_SCROLL_1")
    return state


def place_earth():
    return {"kind": "place_stone", "element": "earth", "to": [-2, 2]}


# ══════════════════════════════════════════════════════════════════════
# Game Action Replication
# ══════════════════════════════════════════════════════════════════════

class TestGameActions:

    def setup_method(self):
        state = make_state()
        state["players"][0]["pool"]["earth"] = 2
        self.alice, self.bob = make_peers(state)

    def test_action_is_broadcast(self):
        self.alice.act(place_earth())
        [message] = self.alice.outbox
        assert message["type"] == "game-action"
        payload = message["payload"]
        assert payload["playerIndex"] == 0
        assert payload["seq"] == 1
        assert payload["turnNumber"] == 0
        assert payload["action"] == place_earth()

    def test_remote_peer_replays(self):
        self.alice.act(place_earth())
        deliver(self.alice, self.bob)
        assert self.bob.state["stones"] == self.alice.state["stones"]
        assert self.bob.state["players"][0]["ap"] == 4
        assert self.bob.remote_seq[0] == 1

    def test_duplicate_action_discarded(self):
        self.alice.act(place_earth())
        [message] = self.alice.drain()
        self.bob.receive(deepcopy(message))
        self.bob.receive(deepcopy(message))
        assert len(self.bob.state["stones"]) == 1
        assert self.bob.state["players"][0]["pool"]["earth"] == 1

    def test_seq_gap_logged(self, caplog):
        self.alice.act(place_earth())
        [message] = self.alice.drain()
        message["payload"]["seq"] = 3
        with caplog.at_level(logging.WARNING):
            self.bob.receive(message)
        assert "Desync" in caplog.text
        assert len(self.bob.state["stones"]) == 1

    def test_action_from_finished_turn_discarded(self):
        self.bob.state["turn_number"] = 2
        self.bob.receive(wire("game-action", playerIndex=0, seq=1, turnNumber=0,
                              action=place_earth()))
        assert self.bob.state["stones"] == []

    def test_invalid_remote_action_rejected(self, caplog):
        with caplog.at_level(logging.WARNING):
            self.bob.receive(wire("game-action", playerIndex=1, seq=1, turnNumber=0,
                                  action=place_earth()))
        assert "Rejected place_stone" in caplog.text
        assert self.bob.state["stones"] == []

    def test_invalid_local_intent_sends_nothing(self):
        with pytest.raises(ValueError, match="Not your turn"):
            self.bob.act(place_earth())
        assert self.bob.outbox == []

    def test_reveal_sends_notification(self):
        for session in (self.alice, self.bob):
            session.state["players"][0]["position"] = [1, 0]
        self.alice.act({"kind": "move", "path": [[2, -1]]})
        types = [m["type"] for m in self.alice.outbox]
        assert types == ["game-action", "scroll-collected"]
        deliver(self.alice, self.bob)
        assert self.bob.state["players"][0]["hand"] == self.alice.state["players"][0]["hand"]
        assert self.bob.state["tiles"] == self.alice.state["tiles"]

    def test_listeners_see_remote_events(self):
        seen = []
        self.bob.subscribe(lambda event_type, payload, remote: seen.append((event_type, remote)))
        self.alice.act({"kind": "move", "path": [[-2, 2]]})
        deliver(self.alice, self.bob)
        assert ("player-move", True) in seen
        assert ("game-action", True) in seen


# ══════════════════════════════════════════════════════════════════════
# Turn Changes
# ══════════════════════════════════════════════════════════════════════

class TestTurnChange:

    def setup_method(self):
        self.alice, self.bob = make_peers()

    def test_end_turn_sends_turn_change(self):
        self.alice.act({"kind": "end_turn"})
        [message] = self.alice.outbox
        assert message == wire("turn-change", playerIndex=1, turnNumber=1, turnStartedAt=100000)

    def test_remote_turn_change_applies(self):
        self.alice.act({"kind": "end_turn"})
        deliver(self.alice, self.bob)
        assert self.bob.state["current_player"] == 1
        assert self.bob.state["turn_number"] == 1
        assert self.bob.state["turn_started_at"] == 100000
        assert comparable(self.bob.state) == comparable(self.alice.state)

    def test_stale_turn_change_ignored(self):
        self.alice.act({"kind": "end_turn"})
        [message] = self.alice.drain()
        self.bob.receive(deepcopy(message))
        self.bob.receive(deepcopy(message))
        assert self.bob.state["turn_number"] == 1
        assert self.bob.state["current_player"] == 1

    def test_turn_change_ahead_adopts_sender(self, caplog):
        with caplog.at_level(logging.WARNING):
            self.bob.receive(wire("turn-change", playerIndex=1, turnNumber=3, turnStartedAt=5000))
        assert "Desync" in caplog.text
        assert self.bob.state["turn_number"] == 3
        assert self.bob.state["current_player"] == 1
        assert self.bob.state["turn_started_at"] == 5000

    def test_action_after_turn_change(self):
        self.alice.act({"kind": "end_turn"})
        deliver(self.alice, self.bob)
        self.bob.act({"kind": "move", "path": [[-1, 2]]})
        [message] = self.bob.outbox
        assert message["payload"]["turnNumber"] == 1
        deliver(self.bob, self.alice)
        assert self.alice.state["players"][1]["position"] == [-1, 2]


# ══════════════════════════════════════════════════════════════════════
# Periodic Snapshots
# ══════════════════════════════════════════════════════════════════════

class TestSnapshots:

    def setup_method(self):
        self.alice, self.bob = make_peers()

    def test_only_current_player_broadcasts(self):
        assert self.bob.sync_messages() == []
        messages = self.alice.sync_messages()
        assert [m["type"] for m in messages] == ["turn-sync", "common-area-sync"]
        assert self.alice.outbox == messages

    def test_small_start_drift_tolerated(self):
        self.alice.state["turn_started_at"] = 10000
        self.bob.state["turn_started_at"] = 11500
        self.alice.sync_messages()
        deliver(self.alice, self.bob)
        assert self.bob.state["turn_started_at"] == 11500

    def test_large_start_drift_corrected(self):
        self.alice.state["turn_started_at"] = 10000
        self.bob.state["turn_started_at"] = 13000
        self.alice.sync_messages()
        deliver(self.alice, self.bob)
        assert self.bob.state["turn_started_at"] == 10000

    def test_turn_mismatch_corrected(self, caplog):
        with caplog.at_level(logging.WARNING):
            self.bob.receive(wire("turn-sync", playerIndex=0, turnNumber=2, turnStartedAt=9000))
        assert "Desync" in caplog.text
        assert self.bob.state["turn_number"] == 2
        assert self.bob.state["turn_started_at"] == 9000

    def test_common_area_corrected(self):
        self.alice.state["common_area"]["earth"] = "EARTH_SCROLL_2"
        self.alice.sync_messages()
        deliver(self.alice, self.bob)
        assert self.bob.state["common_area"] == self.alice.state["common_area"]


# ══════════════════════════════════════════════════════════════════════
# Response Windows Across Peers
# ══════════════════════════════════════════════════════════════════════

class TestResponses:

    def setup_method(self):
        self.clock = FakeClock()
        self.alice, self.bob = make_peers(responding_state(), self.clock)
        self.alice.act({"kind": "cast_scroll", "scroll_id": "FIRE_SCROLL_2"})
        deliver(self.alice, self.bob)

    def test_window_opens_everywhere(self):
        for session in (self.alice, self.bob):
            window = session.state["response_window"]
            assert window["id"] == 1
            assert window["opened_at"] == 100000
        assert self.alice.response_deadline() == 115000
        assert self.bob.response_deadline() == 115000

    def test_respond_waits_for_caster(self):
        assert self.bob.act({"kind": "respond", "scroll_id": "EARTH_SCROLL_1"}) is None
        [message] = self.bob.outbox
        assert message == wire("scroll-response", scrollName="EARTH_SCROLL_1", playerIndex=1,
                               isCounter=True, windowId=1)
        assert self.bob.state["response_window"] is not None
        assert self.bob.state["players"][1]["ap"] == 5

    def test_caster_resolves_and_broadcasts(self):
        self.bob.act({"kind": "respond", "scroll_id": "EARTH_SCROLL_1"})
        deliver(self.bob, self.alice)
        assert self.alice.state["response_window"] is None
        [message] = self.alice.outbox
        assert message["type"] == "response-resolved"
        results = [(r["scrollName"], r["result"]) for r in message["payload"]["results"]]
        assert results == [("EARTH_SCROLL_1", "countered-original"), ("FIRE_SCROLL_2", "countered")]

        deliver(self.alice, self.bob)
        assert self.bob.state["response_window"] is None
        assert self.bob.state["players"][1]["ap"] == 3
        assert comparable(self.bob.state) == comparable(self.alice.state)

    def test_invalid_response_not_sent(self):
        with pytest.raises(ValueError, match="cannot answer"):
            self.bob.act({"kind": "respond", "scroll_id": "VOID_SCROLL_1"})
        assert self.bob.outbox == []

    def test_response_for_old_window_ignored(self):
        self.alice.receive(wire("scroll-response", scrollName="EARTH_SCROLL_1", playerIndex=1,
                                isCounter=True, windowId=0))
        assert self.alice.state["response_window"]["id"] == 1
        assert self.alice.outbox == []

    def test_only_caster_closes_after_passes(self):
        self.bob.act({"kind": "pass_response"})
        assert self.bob.state["response_window"]["status"] == "open"
        assert [m["type"] for m in self.bob.outbox] == ["response-pass"]

        deliver(self.bob, self.alice)
        assert self.alice.state["response_window"] is None
        assert [m["type"] for m in self.alice.outbox] == ["response-resolved"]
        assert BuffLedger(self.alice.state).has("burning_motivation", 0)

        deliver(self.alice, self.bob)
        assert self.bob.state["response_window"] is None
        assert comparable(self.bob.state) == comparable(self.alice.state)

    def test_passed_excavate_ends_turn_with_casters_clock(self):
        state = make_state()
        arm(state, 0, "CATACOMB_SCROLL_4")
        arm(state, 1, "EARTH_SCROLL_1")
        alice, bob = make_peers(state, FakeClock())
        alice.act({"kind": "cast_scroll", "scroll_id": "CATACOMB_SCROLL_4"})
        deliver(alice, bob)

        bob.act({"kind": "pass_response"})
        assert [m["type"] for m in bob.outbox] == ["response-pass"]
        deliver(bob, alice)
        assert [m["type"] for m in alice.outbox] == ["response-resolved", "turn-change"]

        deliver(alice, bob)
        for session in (alice, bob):
            assert session.state["current_player"] == 1
            assert session.state["turn_number"] == 1
            assert session.state["turn_started_at"] == 100000
            assert BuffLedger(session.state).has("excavate", 0)
        assert comparable(bob.state) == comparable(alice.state)

    def test_timeout_auto_passes_responder(self):
        self.clock.now = 116.0
        self.bob.on_response_timeout()
        assert [m["type"] for m in self.bob.outbox] == ["response-pass"]
        deliver(self.bob, self.alice)
        deliver(self.alice, self.bob)
        assert comparable(self.bob.state) == comparable(self.alice.state)

    def test_timeout_expires_on_caster(self):
        self.clock.now = 116.0
        self.alice.on_response_timeout()
        assert self.alice.state["response_window"] is None
        [message] = self.alice.outbox
        assert message["type"] == "response-resolved"
        deliver(self.alice, self.bob)
        assert BuffLedger(self.bob.state).has("burning_motivation", 0)
        assert comparable(self.bob.state) == comparable(self.alice.state)

    def test_caster_does_not_reapply_own_resolution(self):
        self.bob.act({"kind": "respond", "scroll_id": "EARTH_SCROLL_1"})
        deliver(self.bob, self.alice)
        [message] = self.alice.drain()
        before = deepcopy(self.alice.state)
        self.alice.receive(message)
        assert self.alice.state == before


# ══════════════════════════════════════════════════════════════════════
# Reconnect Replay
# ══════════════════════════════════════════════════════════════════════

class TestReplay:

    def play_exchange(self):
        """Alice casts, Bob counters, Alice resolves. Returns relay history as (sender, msg)."""
        state = responding_state()
        alice, bob = make_peers(state)
        history = []
        alice.act({"kind": "cast_scroll", "scroll_id": "FIRE_SCROLL_2"})
        history += [(0, m) for m in deliver(alice, bob)]
        bob.act({"kind": "respond", "scroll_id": "EARTH_SCROLL_1"})
        history += [(1, m) for m in deliver(bob, alice)]
        history += [(0, m) for m in deliver(alice, bob)]
        return state, alice, bob, history

    def test_responder_rebuilds(self):
        state, alice, bob, history = self.play_exchange()
        fresh = PeerSession(bob.engine, deepcopy(state), 1, clock=FakeClock())
        fresh.replay([(sender == 1, deepcopy(m)) for sender, m in history])
        assert comparable(fresh.state) == comparable(bob.state)
        assert fresh.outbox == []

    def test_caster_rebuilds(self):
        state, alice, bob, history = self.play_exchange()
        fresh = PeerSession(alice.engine, deepcopy(state), 0, clock=FakeClock())
        fresh.replay([(sender == 0, deepcopy(m)) for sender, m in history])
        assert comparable(fresh.state) == comparable(alice.state)
        assert fresh.seq == 1
        assert fresh.outbox == []

    def pass_history(self):
        """Alice casts and Bob passes; returns (state, alice, relay history up to the pass)."""
        state = responding_state()
        alice, bob = make_peers(state)
        history = []
        alice.act({"kind": "cast_scroll", "scroll_id": "FIRE_SCROLL_2"})
        history += [(0, m) for m in deliver(alice, bob)]
        bob.act({"kind": "pass_response"})
        history += [(1, m) for m in deliver(bob, alice)]
        return state, alice, history

    def test_caster_keeps_its_recorded_close(self):
        state, alice, history = self.pass_history()
        history += [(0, m) for m in alice.drain()]
        fresh = PeerSession(alice.engine, deepcopy(state), 0, clock=FakeClock())
        fresh.replay([(sender == 0, deepcopy(m)) for sender, m in history])
        assert fresh.state["response_window"] is None
        assert comparable(fresh.state) == comparable(alice.state)
        assert fresh.outbox == []

    def test_caster_closes_window_left_open(self):
        state, alice, history = self.pass_history()
        alice.drain()
        fresh = PeerSession(alice.engine, deepcopy(state), 0, clock=FakeClock())
        fresh.replay([(sender == 0, deepcopy(m)) for sender, m in history])
        assert fresh.state["response_window"] is None
        assert [m["type"] for m in fresh.outbox] == ["response-resolved"]
        assert BuffLedger(fresh.state).has("burning_motivation", 0)
