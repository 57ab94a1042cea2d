"""
Turn boundaries: what happens when a turn ends and the next one starts.
"""

import logging

from server.godaigo.buffs import BuffLedger
from server.godaigo.effects import (
    EffectContext, open_selection, record_scroll_cast, request_cascade, send_to_common,
    shrine_yield, tile_at_center,
)
from server.godaigo.scrolls import ELEMENTS
from server.godaigo.selection import SelectionFlow
from server.godaigo.state import (
    AP_PER_TURN, MAX_ACTIVE_SIZE, MAX_HAND_SIZE,
    activate_elements, board_hexes, is_free_hex, new_turn_tracking, player_pos, scroll_holder,
)

logger = logging.getLogger(__name__)

EXCAVATE_SCROLL = "CATACOMB_SCROLL_4"


class TurnLifecycleManager:

    def __init__(self, state, registry, log=None, events=None):
        self.state = state
        self.registry = registry
        self.log = log if log is not None else []
        self.events = events if events is not None else []

    def _context(self, sid=None, source=None):
        return EffectContext(
            state=self.state,
            scroll_id=sid,
            source=source,
            log=self.log,
            events=self.events,
            registry=self.registry,
        )

    # ── End of Turn ───────────────────────────────────────────────────

    def end_turn(self, now=None):
        state = self.state
        idx = state["current_player"]
        ctx = self._context()

        tile = tile_at_center(state, player_pos(state, idx))
        if tile is not None and not tile["flipped"] and tile["shrine"] in ELEMENTS:
            shrine_yield(ctx, idx, tile)

        SelectionFlow(state).cancel()
        BuffLedger(state).sweep_turn_end()
        state["turn_tracking"] = new_turn_tracking()

        for player in state["players"]:
            if len(player["hand"]) > MAX_HAND_SIZE or len(player["active"]) > MAX_ACTIVE_SIZE:
                request_cascade(ctx, player["index"])

        state["current_player"] = (idx + 1) % len(state["players"])
        state["turn_number"] += 1
        state["turn_started_at"] = now
        self.events.append({
            "type": "turn-change",
            "playerIndex": state["current_player"],
            "turnNumber": state["turn_number"],
            "turnStartedAt": now,
        })
        self.log.append(f"{state['players'][state['current_player']]['name']}'s turn")
        logger.debug(f"Turn {state['turn_number']} begins for player {state['current_player']}")
        self.start_turn(now)

    # ── Start of Turn ─────────────────────────────────────────────────

    def start_turn(self, now=None):
        state = self.state
        idx = state["current_player"]
        ledger = BuffLedger(state)

        for record in ledger.consume_owner_next_turn(idx):
            payload = record["payload"]
            if payload.get("trigger") is not None:
                state["deferred_queue"].append({
                    "kind": "replay",
                    "owner": idx,
                    "trigger": payload["trigger"],
                    "scroll_id": payload["scroll_id"],
                    "definition": payload["definition"],
                    "marker": payload["marker"],
                })
            elif record["key"] == "excavate_teleport":
                state["deferred_queue"].append({"kind": "teleport", "owner": idx})
            else:
                logger.debug(f"Buff {record['key']} expired for player {idx}")

        ledger.clear_until_condition("excavate", idx)
        state["players"][idx]["ap"] = AP_PER_TURN
        self.run_deferred(now)

    def run_deferred(self, now=None):
        """Work through queued start-of-turn items while no selection is pending."""
        queue = self.state["deferred_queue"]
        while queue and self.state["selection"] is None and self.state["winner"] is None:
            item = queue.pop(0)
            if item["kind"] == "teleport":
                self._offer_teleport(item["owner"])
            elif item["kind"] == "end_turn":
                if self.state["current_player"] == item["owner"]:
                    self.end_turn(now)
                    return
            elif self._replay(item).ends_turn:
                # The owner's other queued items still run first
                queue.append({"kind": "end_turn", "owner": item["owner"]})

    def _replay(self, item):
        state = self.state
        owner, sid = item["owner"], item["scroll_id"]
        name = item["definition"]["name"]
        result = self.registry.execute(sid, owner, self._context(sid, source="deferred"))
        activate_elements(state, owner, [item["marker"]])
        record_scroll_cast(state, sid, owner)
        if result.to_common:
            holder = scroll_holder(state, sid)
            if holder is not None:
                send_to_common(state, holder, sid)
        self.events.append({
            "type": "deferred-trigger",
            "playerIndex": owner,
            "scrollName": sid,
            "definition": item["definition"],
            "trigger": item["trigger"],
            "marker": item["marker"],
            "result": result.to_dict(),
        })
        self.log.append(
            f"{state['players'][owner]['name']} replays {name} ({item['trigger']}): {result.message}"
        )
        return result

    def _offer_teleport(self, owner):
        options = [list(pos) for pos in sorted(board_hexes(self.state))
                   if is_free_hex(self.state, pos)]
        open_selection(
            self._context(EXCAVATE_SCROLL), "hex_pick", owner, options,
            "Excavate: choose a hex to teleport to", min_picks=0, step="teleport",
        )
