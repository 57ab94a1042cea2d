"""
Response window coordinator.

After a scroll is cast, every other player gets one chance to answer it
with a counter (cancels the original) or a response (runs first, then the
original still resolves). The window lives at state["response_window"]:

    {
        "id": 7,                    # state["window_seq"] when opened
        "status": "open",           # open -> resolving -> (removed)
        "caster": 0,
        "scroll_id": "FIRE_SCROLL_5",
        "source": "active",         # or "common"
        "stack": [entry, ...],      # original first, at most one response
        "eligible": [1, 2],         # non-casters who could respond at open
        "passed": [],
        "opened_at": 1712000500,    # ms, from the caster's clock
        "timeout": 15.0,            # seconds
    }

Only the first response is accepted. The caster's peer resolves and
broadcasts the canonical result; other peers replay it through
apply_resolution().
"""

import logging

from server.godaigo.buffs import BuffLedger
from server.godaigo.effects import (
    EffectContext, record_scroll_cast, scroll_cost, send_to_common, spend_ap,
)
from server.godaigo.scrolls import SCROLLS, get_scroll, scroll_matches
from server.godaigo.state import (
    activate_elements, common_area_scrolls, draw_stones_to_pool, player_pos, stones_by_hex,
)

logger = logging.getLogger(__name__)

RESPONSE_TIMEOUT = 15.0
MAX_STACK = 2


def stack_entry(sid, caster, is_original, from_common=False):
    definition = SCROLLS[sid]
    return {
        "scroll_id": sid,
        "caster": caster,
        "is_original": is_original,
        "is_counter": not is_original and definition.is_counter,
        "is_response": not is_original,
        "from_common": from_common,
    }


class ResponseWindowCoordinator:

    def __init__(self, state, registry, log=None, events=None, timeout=RESPONSE_TIMEOUT):
        self.state = state
        self.registry = registry
        self.log = log if log is not None else []
        self.events = events if events is not None else []
        self.timeout = timeout

    @property
    def window(self):
        return self.state["response_window"]

    def _context(self, sid, triggering=None, source=None):
        return EffectContext(
            state=self.state,
            scroll_id=sid,
            triggering_scroll=triggering,
            source=source,
            log=self.log,
            events=self.events,
            registry=self.registry,
        )

    def _emit(self, event_type, **payload):
        self.events.append({"type": event_type, **payload})

    def _name(self, player_idx):
        return self.state["players"][player_idx]["name"]

    # ── Eligibility ───────────────────────────────────────────────────

    def can_player_respond(self, player_idx):
        """
        Whether a player could answer a window right now. Returns
        {can_respond, valid_scrolls, reason}.
        """
        state = self.state
        player = state["players"][player_idx]
        common = common_area_scrolls(state)
        if not player["active"] and not common:
            return {"can_respond": False, "valid_scrolls": [],
                    "reason": "No scrolls in active area or common area"}

        candidates = [sid for sid in player["active"] + common if SCROLLS[sid].can_respond]
        if not candidates:
            return {"can_respond": False, "valid_scrolls": [], "reason": "No scrolls available"}

        position = player_pos(state, player_idx)
        if position is None:
            return {"can_respond": False, "valid_scrolls": [], "reason": "Player position not found"}

        stones = stones_by_hex(state)
        valid = [
            sid for sid in candidates
            if scroll_matches(SCROLLS[sid], stones, position)
            and scroll_cost(state, sid, player_idx) <= player["ap"]
        ]
        if not valid:
            return {"can_respond": False, "valid_scrolls": [],
                    "reason": "No valid responses you can afford"}
        return {"can_respond": True, "valid_scrolls": valid, "reason": None}

    def can_any_player_respond(self, caster):
        """Indices of non-casters who hold a castable, affordable response."""
        return [
            p["index"] for p in self.state["players"]
            if p["index"] != caster and self.can_player_respond(p["index"])["can_respond"]
        ]

    # ── Transitions ───────────────────────────────────────────────────

    def open(self, caster, sid, source, now=None):
        """
        Open a window for a freshly cast scroll. When nobody could answer it
        the window is skipped and the original resolves immediately.
        """
        if self.window is not None:
            raise ValueError("A response window is already open")

        self.state["window_seq"] += 1
        original = stack_entry(sid, caster, True, from_common=source == "common")
        solo = len(self.state["players"]) < 2
        eligible = [] if solo else self.can_any_player_respond(caster)

        self.state["response_window"] = {
            "id": self.state["window_seq"],
            "status": "open",
            "caster": caster,
            "scroll_id": sid,
            "source": source,
            "stack": [original],
            "eligible": eligible,
            "passed": [],
            "opened_at": now,
            "timeout": self.timeout,
        }

        if not eligible:
            logger.debug(f"Response window for {sid} skipped: no eligible responders")
            outcome = self.resolve(emit=False)
            outcome["skipped"] = True
            outcome["results"] = outcome["responses"]
            outcome["responses"] = []
            return outcome

        self.state["sub_phase"] = "response"
        self._emit("response-window-opened", scrollName=sid, casterIndex=caster,
                   windowId=self.state["window_seq"])
        self.log.append(f"{self._name(caster)} casts {SCROLLS[sid].name}; waiting for responses")
        return {"skipped": False, "opened": True, "windowId": self.state["window_seq"],
                "eligible": list(eligible)}

    def _require_open(self):
        window = self.window
        if window is None or window["status"] != "open":
            raise ValueError("No response window is open")
        return window

    def record_response(self, player_idx, sid):
        """Validate and push a response. Raises ValueError if it cannot be accepted."""
        window = self._require_open()
        if len(window["stack"]) >= MAX_STACK:
            raise ValueError("A response has already been recorded")
        if player_idx == window["caster"]:
            raise ValueError("You cannot respond to your own scroll")
        if player_idx in window["passed"]:
            raise ValueError("You already passed")

        definition = get_scroll(sid)
        if not definition.can_respond:
            raise ValueError(f"{definition.name} cannot be cast as a response")
        player = self.state["players"][player_idx]
        if sid in player["active"]:
            from_common = False
        elif sid in common_area_scrolls(self.state):
            from_common = True
        else:
            raise ValueError("Scroll is not in your active area or the common area")

        position = player_pos(self.state, player_idx)
        if not scroll_matches(definition, stones_by_hex(self.state), position):
            raise ValueError(f"The pattern for {definition.name} does not match around you")

        spend_ap(self.state, player_idx, scroll_cost(self.state, sid, player_idx))
        return self._push_response(player_idx, sid, from_common)

    def _push_response(self, player_idx, sid, from_common):
        window = self.window
        if len(window["stack"]) >= MAX_STACK:
            raise ValueError("A response has already been recorded")
        entry = stack_entry(sid, player_idx, False, from_common=from_common)
        window["stack"].append(entry)
        self._emit("scroll-response", scrollName=sid, playerIndex=player_idx,
                   isCounter=entry["is_counter"], windowId=window["id"])
        self.log.append(f"{self._name(player_idx)} responds with {SCROLLS[sid].name}")

        if BuffLedger(self.state).has("quick_reflexes", player_idx):
            void = draw_stones_to_pool(self.state, "void", 1, player_idx)
            wind = draw_stones_to_pool(self.state, "wind", 1, player_idx)
            self._emit("quick-reflexes-draw", playerIndex=player_idx, void=void, wind=wind)
        return entry

    def record_pass(self, player_idx):
        """
        Record a pass. Returns True once every eligible responder has passed;
        closing the window is still left to the caster.
        """
        window = self._require_open()
        if player_idx == window["caster"]:
            raise ValueError("The caster cannot pass on their own scroll")
        if player_idx not in window["passed"]:
            window["passed"].append(player_idx)
            self._emit("response-pass", playerIndex=player_idx, windowId=window["id"])
        return self.all_passed()

    def all_passed(self):
        window = self.window
        return all(idx in window["passed"] for idx in window["eligible"])

    def expire(self, now=None):
        """
        Close the window with no response: at once when every eligible
        responder has passed, otherwise only after the timeout.
        """
        window = self._require_open()
        if self.all_passed():
            logger.info(f"Every responder passed on window {window['id']}")
        else:
            if now is not None and window["opened_at"] is not None:
                remaining = window["timeout"] - (now - window["opened_at"]) / 1000
                if remaining > 0:
                    raise ValueError(f"Response window still open for {remaining:.1f}s")
            logger.info(f"Response window {window['id']} timed out")
        return self.resolve(now=now)

    # ── Resolution ────────────────────────────────────────────────────

    def resolve(self, emit=True, now=None):
        """
        Run the stack: the response first, then the original unless the
        response countered it. Returns {skipped, responses, windowId, ends_turn}.
        now (ms, the caster's clock) rides along in the broadcast so every
        peer starts a turn the original ends at the same time.
        """
        window = self.window
        window["status"] = "resolving"
        stack = window["stack"]
        original = stack[0]
        response = stack[1] if len(stack) > 1 else None
        triggering = {"id": original["scroll_id"], "caster": original["caster"]}

        results = []
        countered = False
        redirect = None
        ends_turn = False

        if response is not None:
            sid, idx = response["scroll_id"], response["caster"]
            source = "common" if response["from_common"] else "active"
            result = self.registry.execute(sid, idx, self._context(sid, triggering, source))
            if result.success and result.is_counter:
                countered = True
                outcome = "countered-original"
            elif result.success:
                outcome = "response-resolved"
            else:
                outcome = "response-failed"
            if result.success:
                activate_elements(self.state, idx, SCROLLS[sid].activation_elements)
                record_scroll_cast(self.state, sid, idx)
                redirect = result.data.get("redirect_to_common")
            if result.to_common:
                send_to_common(self.state, idx, sid)
            results.append(self._result(response, outcome, result))

        if countered:
            results.append(self._result(original, "countered", None))
            self.log.append(f"{SCROLLS[original['scroll_id']].name} was countered")
        else:
            sid, idx = original["scroll_id"], original["caster"]
            result = self.registry.execute(sid, idx, self._context(sid, source=window["source"]))
            if result.success:
                activate_elements(self.state, idx, SCROLLS[sid].activation_elements)
                record_scroll_cast(self.state, sid, idx)
            if result.to_common or redirect == sid:
                send_to_common(self.state, idx, sid)
            ends_turn = result.ends_turn
            results.append(self._result(original, "resolved" if result.success else "failed", result))

        self.state["response_window"] = None
        if self.state["sub_phase"] == "response":
            self.state["sub_phase"] = None

        if emit:
            self._emit("response-resolved", results=results, triggeringScroll=triggering,
                       windowId=window["id"], now=now)
        return {"skipped": False, "responses": results, "windowId": window["id"],
                "ends_turn": ends_turn}

    def _result(self, entry, outcome, effect):
        sid = entry["scroll_id"]
        row = {
            "scrollName": sid,
            "casterIndex": entry["caster"],
            "result": outcome,
            "isResponse": entry["is_response"],
        }
        if effect is not None:
            row["effect"] = effect.to_dict()
            if effect.message:
                self.log.append(f"{SCROLLS[sid].name}: {effect.message}")
        return row

    def apply_resolution(self, payload):
        """
        Replay the caster's canonical result on a non-casting peer. Patterns
        are not re-checked; a local outcome that differs is logged as a desync.
        Returns the local outcome, or None for a stale or unknown window.
        """
        window = self.window
        window_id = payload.get("windowId")
        if window is None or (window_id is not None and window_id < window["id"]):
            logger.info(f"Discarding stale response-resolved for window {window_id}")
            return None
        if window_id is not None and window_id > window["id"]:
            logger.warning(
                f"Desync: response-resolved for window {window_id}, local window is {window['id']}"
            )
            return None

        responses = [r for r in payload["results"] if r["isResponse"]]
        if responses and len(window["stack"]) < MAX_STACK:
            row = responses[0]
            idx, sid = row["casterIndex"], row["scrollName"]
            player = self.state["players"][idx]
            cost = scroll_cost(self.state, sid, idx)
            if cost > player["ap"]:
                logger.warning(f"Desync: player {idx} lacks {cost} AP for {sid}; applying anyway")
            player["ap"] = max(0, player["ap"] - cost)
            self._push_response(idx, sid, sid not in player["active"])

        outcome = self.resolve(emit=False)
        local = [(r["scrollName"], r["result"]) for r in outcome["responses"]]
        canonical = [(r["scrollName"], r["result"]) for r in payload["results"]]
        if local != canonical:
            logger.warning(f"Desync: resolved {local}, caster reported {canonical}")
        return outcome
