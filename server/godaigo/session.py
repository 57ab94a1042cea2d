"""
Peer session: one player's replica of the game.

There is no central authority. Each peer applies its own intents locally
and broadcasts them; every other peer replays them through the same
deterministic engine. Response windows are the one exception: only the
caster's peer decides how a window resolves, and the others apply its
canonical response-resolved payload.

Wire messages are {"type": ..., "payload": {...}}. Intents map to events:

  end_turn         -> turn-change
  respond          -> scroll-response (applied by the caster's peer only)
  pass_response    -> response-pass (recorded everywhere; the caster's peer
                      closes the window once everyone has passed)
  expire_response  -> response-resolved (caster only)
  everything else  -> game-action {playerIndex, seq, turnNumber, action}
"""

import logging
import time

from server.godaigo.response import ResponseWindowCoordinator
from server.godaigo.scrolls import SCROLLS

logger = logging.getLogger(__name__)

# Engine events other peers reproduce by replaying the action; sent as notifications
NOTIFY_EVENTS = {"scroll-collected", "scholars-insight", "create-stones"}

# Intents stamped with the sender's clock (milliseconds) so replays agree
TIMED_ACTIONS = (
    "end_turn", "cast_scroll", "expire_response", "commit_selection", "cancel_selection",
)

# Start times closer than this are treated as the same turn start
TURN_START_TOLERANCE_MS = 2000


def wire(event_type, **payload):
    return {"type": event_type, "payload": payload}


class PeerSession:

    def __init__(self, engine, state, local_index, clock=time.time):
        self.engine = engine
        self.state = state
        self.local_index = local_index
        self.clock = clock
        self.outbox = []
        self.seq = 0
        self.remote_seq = {}
        self.listeners = []
        # Set while rebuilding from relay history
        self.replaying = False
        self.held = None

    @property
    def player_id(self):
        return self.state["player_ids"][self.local_index]

    def now_ms(self):
        return int(self.clock() * 1000)

    def subscribe(self, listener):
        """listener(event_type, payload, remote) is called for every event seen."""
        self.listeners.append(listener)

    def _notify(self, event_type, payload, remote):
        for listener in self.listeners:
            listener(event_type, payload, remote)

    def drain(self):
        out, self.outbox = self.outbox, []
        return out

    def _send(self, event_type, **payload):
        self.outbox.append(wire(event_type, **payload))

    # ── Local Intents ─────────────────────────────────────────────────

    def act(self, action):
        """
        Apply one of our own intents and queue what peers need to see.
        Raises ValueError for an invalid intent; nothing is sent then.
        """
        kind = action.get("kind")
        if kind == "respond":
            return self._respond(action)

        action = dict(action)
        if kind in TIMED_ACTIONS:
            action.setdefault("now", self.now_ms())
        window = self.state["response_window"]

        result = self.engine.apply_action(self.state, self.player_id, action)
        self.state = result.new_state

        if kind == "pass_response":
            self._send("response-pass", playerIndex=self.local_index, windowId=window["id"])
        elif kind not in ("end_turn", "expire_response"):
            self.seq += 1
            self._send(
                "game-action", playerIndex=self.local_index, seq=self.seq,
                turnNumber=self.state["turn_number"] - self._turns_advanced(result), action=action,
            )
        self._publish(result.events, local=True)
        return result

    def _turns_advanced(self, result):
        return sum(1 for e in result.events if e["type"] == "turn-change")

    def _respond(self, action):
        """Send a response to the caster's peer; our state changes when it resolves."""
        window = self.state["response_window"]
        if window is None or window["status"] != "open":
            raise ValueError("No response window is open")
        sid = action.get("scroll_id")
        coordinator = ResponseWindowCoordinator(self.state, self.engine.registry)
        report = coordinator.can_player_respond(self.local_index)
        if sid not in report["valid_scrolls"]:
            raise ValueError(report["reason"] or "That scroll cannot answer right now")
        self._send(
            "scroll-response", scrollName=sid, playerIndex=self.local_index,
            isCounter=SCROLLS[sid].is_counter, windowId=window["id"],
        )
        return None

    def _publish(self, events, local):
        """Forward engine events to listeners and, for our own actions, to peers."""
        for event in events:
            payload = {k: v for k, v in event.items() if k != "type"}
            event_type = event["type"]
            self._notify(event_type, payload, not local)
            if event_type == "turn-change" and local:
                self._send("turn-change", **payload)
            elif event_type == "response-resolved" and self._is_caster(payload):
                self._send("response-resolved", **payload)
            elif event_type in NOTIFY_EVENTS and local:
                self._send(event_type, **payload)

    def _is_caster(self, payload):
        return payload["triggeringScroll"]["caster"] == self.local_index

    # ── Remote Events ─────────────────────────────────────────────────

    def receive(self, message):
        """Handle one message from a peer."""
        event_type = message.get("type")
        payload = message.get("payload") or {}
        handler = {
            "game-action": self._on_game_action,
            "scroll-response": self._on_scroll_response,
            "response-pass": self._on_response_pass,
            "response-resolved": self._on_response_resolved,
            "turn-change": self._on_turn_change,
            "turn-sync": self._on_turn_sync,
            "common-area-sync": self._on_common_area_sync,
        }.get(event_type)
        if handler is not None:
            handler(payload)
        self._notify(event_type, payload, True)

    def replay(self, history):
        """
        Rebuild this replica from the relay's history after a reconnect.
        history is a list of (from_self, message) pairs, oldest first.

        While replaying, a window we cast is settled by our own
        response-resolved from the history rather than decided again. If
        the history ends before we settled it, we decide now and broadcast.
        """
        self.replaying = True
        self.held = None
        try:
            for from_self, message in history:
                payload = message.get("payload") or {}
                if from_self and message.get("type") == "response-resolved":
                    result = self.engine.apply_remote_resolution(self.state, payload)
                    self.state = result.new_state
                    self.held = None
                else:
                    self.receive(message)
                if from_self and message.get("type") == "game-action":
                    self.seq = max(self.seq, payload["seq"])
        finally:
            self.replaying = False
        self.outbox.clear()
        logger.info(f"Replayed {len(history)} events; now on turn {self.state['turn_number']}")

        held, self.held = self.held, None
        if held is None:
            return
        kind, payload = held
        if kind == "respond":
            self._on_scroll_response(payload)
        elif self._owes_close():
            self.act({"kind": "expire_response"})

    def _apply_remote(self, player_idx, action):
        player_id = self.state["player_ids"][player_idx]
        try:
            result = self.engine.apply_action(self.state, player_id, action)
        except ValueError as e:
            logger.warning(f"Rejected {action.get('kind')} from player {player_idx}: {e}")
            return None
        self.state = result.new_state
        self._publish(result.events, local=False)
        return result

    def _on_game_action(self, payload):
        sender = payload["playerIndex"]
        seq = payload["seq"]
        last = self.remote_seq.get(sender, 0)
        if seq <= last:
            logger.info(f"Discarding stale action {seq} from player {sender}")
            return
        if seq > last + 1:
            logger.warning(f"Desync: expected action {last + 1} from player {sender}, got {seq}")
        self.remote_seq[sender] = seq

        turn = payload.get("turnNumber")
        if turn is not None and turn < self.state["turn_number"]:
            logger.info(f"Discarding action from finished turn {turn}")
            return
        if turn is not None and turn > self.state["turn_number"]:
            logger.warning(f"Desync: action for turn {turn}, local turn is {self.state['turn_number']}")
        self._apply_remote(sender, payload["action"])

    def _on_scroll_response(self, payload):
        window = self.state["response_window"]
        if window is None or window["caster"] != self.local_index:
            return
        if payload.get("windowId") != window["id"]:
            logger.info(f"Discarding response for window {payload.get('windowId')}")
            return
        if self.replaying:
            # Our own response-resolved later in the history settles it
            self.held = ("respond", payload)
            return
        self._apply_remote(payload["playerIndex"], {
            "kind": "respond", "scroll_id": payload["scrollName"], "now": self.now_ms(),
        })

    def _on_response_pass(self, payload):
        window = self.state["response_window"]
        if window is None or payload.get("windowId") != window["id"]:
            logger.info(f"Discarding pass for window {payload.get('windowId')}")
            return
        self._apply_remote(payload["playerIndex"], {"kind": "pass_response"})
        if self._owes_close():
            if self.replaying:
                self.held = ("close", payload)
            else:
                self.act({"kind": "expire_response"})

    def _owes_close(self):
        """True when we cast the open window and every eligible responder has passed."""
        window = self.state["response_window"]
        if window is None or window["status"] != "open" or window["caster"] != self.local_index:
            return False
        return ResponseWindowCoordinator(self.state, self.engine.registry).all_passed()

    def _on_response_resolved(self, payload):
        if self._is_caster(payload):
            return
        result = self.engine.apply_remote_resolution(self.state, payload)
        self.state = result.new_state
        self._publish(result.events, local=False)

    def _on_turn_change(self, payload):
        expected = self.state["turn_number"] + 1
        turn = payload["turnNumber"]
        if turn < expected:
            logger.info(f"Discarding stale turn-change {turn}")
            return

        current = self.state["current_player"]
        result = self._apply_remote(current, {"kind": "end_turn", "now": payload.get("turnStartedAt")})
        if turn > expected or result is None or self.state["current_player"] != payload["playerIndex"]:
            logger.warning(
                f"Desync: turn-change to {turn} for player {payload['playerIndex']}, "
                f"local turn {self.state['turn_number']} for player {self.state['current_player']}"
            )
            self._adopt_turn(payload)

    def _adopt_turn(self, payload):
        self.state["current_player"] = payload["playerIndex"]
        self.state["turn_number"] = payload["turnNumber"]
        self.state["turn_started_at"] = payload.get("turnStartedAt")

    def _on_turn_sync(self, payload):
        state = self.state
        if (payload["playerIndex"] != state["current_player"]
                or payload["turnNumber"] != state["turn_number"]):
            logger.warning(
                f"Desync: turn-sync says turn {payload['turnNumber']} for player "
                f"{payload['playerIndex']}; correcting"
            )
            self._adopt_turn(payload)
            return
        started = payload.get("turnStartedAt")
        local = state["turn_started_at"]
        if started is not None and (local is None or abs(started - local) > TURN_START_TOLERANCE_MS):
            logger.warning(f"Correcting turn start time from {local} to {started}")
            state["turn_started_at"] = started

    def _on_common_area_sync(self, payload):
        remote = payload["commonArea"]
        if remote != self.state["common_area"]:
            logger.warning(f"Desync: common area {self.state['common_area']} corrected to {remote}")
            self.state["common_area"] = dict(remote)

    # ── Timers and Snapshots ──────────────────────────────────────────

    def response_deadline(self):
        """Clock time (ms) at which the open window times out, or None."""
        window = self.state["response_window"]
        if window is None or window["opened_at"] is None:
            return None
        return window["opened_at"] + int(window["timeout"] * 1000)

    def on_response_timeout(self):
        """
        Local timer fired. The caster closes the window; anyone else who has
        not answered auto-passes.
        """
        window = self.state["response_window"]
        if window is None or window["status"] != "open":
            return None
        if window["caster"] == self.local_index:
            return self.act({"kind": "expire_response"})
        if self.local_index in window["eligible"] and self.local_index not in window["passed"]:
            logger.info(f"Auto-passing on window {window['id']}")
            return self.act({"kind": "pass_response"})
        return None

    def sync_messages(self):
        """Snapshots the active player's peer broadcasts on an interval."""
        if self.state["current_player"] != self.local_index:
            return []
        snapshots = [
            wire("turn-sync", playerIndex=self.state["current_player"],
                 turnNumber=self.state["turn_number"],
                 turnStartedAt=self.state["turn_started_at"]),
            wire("common-area-sync", commonArea=dict(self.state["common_area"])),
        ]
        self.outbox.extend(snapshots)
        return snapshots
