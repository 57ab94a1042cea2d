"""
Godaigo — game engine implementation.

Implements the GameEngine interface as a pure state machine over a plain
dict. No networking, no clock: timestamps arrive inside actions.

Phase machine:
  main → cast_scroll → [response window] → [selection steps] → main → end_turn

sub_phase is one of None, "response" or "selection". A player listed in
pending_cascade must cascade a scroll before taking main-phase actions.
"""

import logging
from copy import deepcopy
from math import ceil

from server.game_engine import ActionResult, GameEngine
from server.godaigo.buffs import BuffLedger
from server.godaigo.effects import (
    EffectContext, default_registry, record_stone_placed, reveal_tile, scroll_cost,
    send_to_common, spend_ap,
)
from server.godaigo.hexgrid import as_hex, distance, is_adjacent, neighbors
from server.godaigo.response import RESPONSE_TIMEOUT, ResponseWindowCoordinator
from server.godaigo.scrolls import ELEMENTS, SCROLLS, get_scroll, scroll_matches
from server.godaigo.selection import SelectionFlow
from server.godaigo.state import (
    MAX_ACTIVE_SIZE, MAX_HAND_SIZE, PLACEMENT_RANGE, STONE_PLACEMENT_COST, TELEPORT_COST,
    board_hexes, check_win_condition, common_area_scrolls, create_initial_state,
    discard_to_common_area, is_free_hex, player_at, player_pos, remove_from_player,
    remove_stone, scroll_holder, stone_at, stones_by_hex, tile_at, tile_center,
)
from server.godaigo.turns import TurnLifecycleManager

logger = logging.getLogger(__name__)


class GodaigoEngine(GameEngine):

    player_count_range = (2, 5)

    def __init__(self, registry=None, response_timeout=RESPONSE_TIMEOUT):
        self.registry = registry if registry is not None else default_registry()
        self.response_timeout = response_timeout

    # ── Setup ─────────────────────────────────────────────────────────

    def initial_state(self, player_ids, player_names, seed=None):
        low, high = self.player_count_range
        if not low <= len(player_ids) <= high:
            raise ValueError(f"Godaigo requires {low}-{high} players")
        return create_initial_state(player_ids, player_names, seed=seed)

    # ── Collaborators ─────────────────────────────────────────────────

    def _coordinator(self, state, log, events):
        return ResponseWindowCoordinator(state, self.registry, log, events, self.response_timeout)

    def _turns(self, state, log, events):
        return TurnLifecycleManager(state, self.registry, log, events)

    def _context(self, state, log, events, sid=None, source=None):
        return EffectContext(
            state=state, scroll_id=sid, source=source, log=log, events=events,
            registry=self.registry,
        )

    # ── Views ─────────────────────────────────────────────────────────

    def get_player_view(self, state, player_id):
        """Return state with other hands, deck order and the seed hidden."""
        view = deepcopy(state)
        player_idx = self._player_index(state, player_id)
        for player in view["players"]:
            if player["index"] != player_idx:
                player["hand"] = len(player["hand"])
        view["decks"] = {el: len(deck) for el, deck in view["decks"].items()}
        view.pop("seed", None)
        view.pop("log", None)
        return view

    def get_valid_actions(self, state, player_id):
        player_idx = self._player_index(state, player_id)
        if state["winner"] is not None:
            return []

        actions = []
        if player_idx in state["pending_cascade"]:
            actions += self._valid_cascade_actions(state, player_idx)

        sub = state["sub_phase"]
        if sub == "response":
            actions += self._valid_response_actions(state, player_idx)
        elif sub == "selection":
            actions += self._valid_selection_actions(state, player_idx)
        elif state["current_player"] == player_idx and player_idx not in state["pending_cascade"]:
            actions += self._valid_main_actions(state, player_idx)
        return actions

    def get_waiting_for(self, state):
        if state["winner"] is not None:
            return []
        ids = state["player_ids"]
        sub = state["sub_phase"]
        if sub == "response":
            window = state["response_window"]
            deciding = [ids[i] for i in window["eligible"] if i not in window["passed"]]
            # Everyone passed: the caster closes the window
            return deciding or [ids[window["caster"]]]
        if sub == "selection":
            return [ids[state["selection"]["owner"]]]
        if state["pending_cascade"]:
            return [ids[i] for i in state["pending_cascade"]]
        return [ids[state["current_player"]]]

    def get_phase_info(self, state):
        sub = state["sub_phase"]
        current = state["players"][state["current_player"]]["name"]

        if state["winner"] is not None:
            description = f"{state['players'][state['winner']]['name']} has won"
        elif sub == "response":
            window = state["response_window"]
            description = f"{current} cast {SCROLLS[window['scroll_id']].name}: waiting for responses"
        elif sub == "selection":
            flow = state["selection"]
            owner = state["players"][flow["owner"]]["name"]
            description = f"{owner}: {SCROLLS[flow['scroll_id']].name} ({flow['step']})"
        elif state["pending_cascade"]:
            names = [state["players"][i]["name"] for i in state["pending_cascade"]]
            description = f"Waiting for {', '.join(names)} to cascade a scroll"
        else:
            description = f"{current}: Move, place stones or cast scrolls"

        return {
            "phase": sub or state["phase"],
            "turn": state["turn_number"],
            "current_player": current,
            "description": description,
        }

    # ── Action Dispatch ───────────────────────────────────────────────

    def apply_action(self, state, player_id, action):
        player_idx = self._player_index(state, player_id)
        if state["winner"] is not None:
            raise ValueError("Game is over")

        state = deepcopy(state)
        kind = action.get("kind")
        sub = state["sub_phase"]
        log, events = [], []

        # Cascades can be owed by anyone, so they bypass the phase checks
        if kind == "cascade_scroll":
            self._do_cascade_scroll(state, player_idx, action, log)

        # ── Response Window ───────────────────────────────────────
        elif sub == "response":
            coordinator = self._coordinator(state, log, events)
            if kind == "respond":
                coordinator.record_response(player_idx, action.get("scroll_id"))
                outcome = coordinator.resolve(now=action.get("now"))
                self._after_resolution(state, outcome, action, log, events)
            elif kind == "pass_response":
                # Only the caster's peer closes the window, with expire_response
                coordinator.record_pass(player_idx)
            elif kind == "expire_response":
                if state["response_window"]["caster"] != player_idx:
                    raise ValueError("Only the caster's peer closes the window")
                self._after_resolution(
                    state, coordinator.expire(action.get("now")), action, log, events,
                )
            else:
                raise ValueError(f"Invalid action kind for response: {kind}")

        # ── Selection Flow ────────────────────────────────────────
        elif sub == "selection":
            if kind == "choose":
                self._do_choose(state, player_idx, action)
            elif kind == "commit_selection":
                self._do_commit_selection(state, player_idx, action, log, events)
            elif kind == "cancel_selection":
                SelectionFlow(state).cancel(player_idx)
                log.append(f"{state['players'][player_idx]['name']} cancels the selection")
                self._turns(state, log, events).run_deferred(action.get("now"))
            else:
                raise ValueError(f"Invalid action kind for selection: {kind}")

        # ── Main Phase ────────────────────────────────────────────
        elif state["phase"] == "main":
            if state["current_player"] != player_idx:
                raise ValueError("Not your turn")
            if player_idx in state["pending_cascade"]:
                raise ValueError("Cascade a scroll before doing anything else")

            if kind == "move":
                self._do_move(state, player_idx, action, log, events)
            elif kind == "teleport":
                self._do_teleport(state, player_idx, action, log, events)
            elif kind == "place_stone":
                self._do_place_stone(state, player_idx, action, log)
            elif kind == "move_scroll":
                self._do_move_scroll(state, player_idx, action, log)
            elif kind == "cast_scroll":
                self._do_cast_scroll(state, player_idx, action, log, events)
            elif kind == "transform_stone":
                self._do_transform_stone(state, player_idx, action, log)
            elif kind == "nudge_stone":
                self._do_nudge_stone(state, player_idx, action, log)
            elif kind == "end_turn":
                self._turns(state, log, events).end_turn(action.get("now"))
            else:
                raise ValueError(f"Invalid action kind for main: {kind}")

        else:
            raise ValueError(f"Invalid phase/sub_phase: {state['phase']}/{sub}")

        return self._finish(state, log, events)

    def apply_remote_resolution(self, state, payload):
        """Apply a caster's response-resolved payload on a non-casting peer."""
        state = deepcopy(state)
        log, events = [], []
        outcome = self._coordinator(state, log, events).apply_resolution(payload)
        if outcome is not None:
            self._after_resolution(state, outcome, {"now": payload.get("now")}, log, events)
        return self._finish(state, log, events)

    def _finish(self, state, log, events):
        game_over = False
        winner = check_win_condition(state)
        if winner is not None and state["winner"] is None:
            state["winner"] = winner
            state["phase"] = "game_over"
            log.append(f"{state['players'][winner]['name']} wins!")
        if state["winner"] is not None:
            game_over = True
        state["log"].extend(log)
        return ActionResult(new_state=state, log=log, events=events, game_over=game_over)

    def _after_resolution(self, state, outcome, action, log, events):
        if outcome.get("ends_turn") and state["winner"] is None and check_win_condition(state) is None:
            self._turns(state, log, events).end_turn(action.get("now"))

    # ── Main-Phase Actions ────────────────────────────────────────────

    def _do_move(self, state, player_idx, action, log, events):
        path = [as_hex(step) for step in action.get("path") or []]
        if not path:
            raise ValueError("Move needs at least one step")

        board = board_hexes(state)
        here = player_pos(state, player_idx)
        paid = 0
        for step in path:
            if not is_adjacent(here, step):
                raise ValueError("Each step must be to an adjacent hex")
            if step not in board:
                raise ValueError("Cannot move off the board")
            other = player_at(state, step)
            if other is not None and other != player_idx:
                raise ValueError("Another player is standing there")
            paid += self._step_cost(state, player_idx, step)
            here = step

        landing = stone_at(state, here)
        if landing is not None and landing["element"] != "void":
            raise ValueError(f"Cannot end a move on {landing['element']}")

        cost = paid
        if BuffLedger(state).has("steam_vents", player_idx):
            cost = ceil(paid / 2)
        spend_ap(state, player_idx, cost)
        state["players"][player_idx]["position"] = list(here)
        events.append({"type": "player-move", "playerIndex": player_idx,
                       "q": here[0], "r": here[1], "apSpent": cost})
        log.append(f"{state['players'][player_idx]['name']} moves {len(path)} hexes for {cost} AP")

        tile = tile_at(state, here)
        if tile is not None and tile["flipped"] and tile["shrine"] != "player":
            reveal_tile(self._context(state, log, events), player_idx, tile)
            events.append({"type": "tile-flip", "tileId": tile["id"], "flipped": False})

    def _step_cost(self, state, player_idx, pos):
        stone = stone_at(state, pos)
        if stone is None:
            return 1
        if stone["element"] == "wind":
            return 0
        if stone["element"] in ("earth", "water") and BuffLedger(state).has("mudslide", player_idx):
            return 0
        return 1

    def _teleport_points(self, state, player_idx):
        freedom = BuffLedger(state).has("freedom", player_idx)
        points = set()
        for tile in state["tiles"]:
            if tile["flipped"]:
                continue
            if tile["shrine"] == "catacomb" or (freedom and tile["shrine"] in ELEMENTS):
                points.add(tile_center(tile))
        return points

    def _do_teleport(self, state, player_idx, action, log, events):
        dest = as_hex(action.get("to"))
        points = self._teleport_points(state, player_idx)
        here = player_pos(state, player_idx)
        if here not in points:
            raise ValueError("You must stand on a catacomb to teleport")
        if dest not in points or dest == here:
            raise ValueError("Teleport destination must be another catacomb")
        if not is_free_hex(state, dest):
            raise ValueError("Teleport destination is occupied")
        spend_ap(state, player_idx, TELEPORT_COST)
        state["players"][player_idx]["position"] = list(dest)
        events.append({"type": "player-move", "playerIndex": player_idx,
                       "q": dest[0], "r": dest[1], "apSpent": TELEPORT_COST})
        log.append(f"{state['players'][player_idx]['name']} teleports")

    def _placement_range(self, state, player_idx, element):
        """Max placement distance for an element, or None for anywhere."""
        ledger = BuffLedger(state)
        for key in ("global_placement", "sky_placement"):
            record = ledger.owned(key, player_idx)
            if record is not None and element in record["payload"]["elements"]:
                return None
        record = ledger.owned("earth_extended_placement", player_idx)
        if record is not None and element == "earth":
            return record["payload"]["range"]
        return PLACEMENT_RANGE

    def _do_place_stone(self, state, player_idx, action, log):
        element = action.get("element")
        target = as_hex(action.get("to"))
        player = state["players"][player_idx]
        if element not in ELEMENTS:
            raise ValueError(f"Unknown element: {element}")
        if player["pool"][element] < 1:
            raise ValueError(f"You have no {element} stones")
        if target is None or not is_free_hex(state, target):
            raise ValueError("Stones must go on an empty hex")
        limit = self._placement_range(state, player_idx, element)
        if limit is not None and distance(player_pos(state, player_idx), target) > limit:
            raise ValueError(f"{element.capitalize()} stones must be within {limit} hexes")

        spend_ap(state, player_idx, STONE_PLACEMENT_COST)
        player["pool"][element] -= 1
        state["stones"].append({"q": target[0], "r": target[1], "element": element})
        bonus = record_stone_placed(state, player_idx)
        line = f"{player['name']} places {element}"
        if bonus:
            line += f" (+{bonus} AP)"
        log.append(line)

    def _do_move_scroll(self, state, player_idx, action, log):
        sid = action.get("scroll_id")
        to = action.get("to")
        player = state["players"][player_idx]
        if to == "active":
            if sid not in player["hand"]:
                raise ValueError("Scroll is not in your hand")
            if len(player["active"]) >= MAX_ACTIVE_SIZE:
                raise ValueError("Your active area is full")
            player["hand"].remove(sid)
            player["active"].append(sid)
        elif to == "hand":
            if sid not in player["active"]:
                raise ValueError("Scroll is not in your active area")
            if len(player["hand"]) >= MAX_HAND_SIZE:
                raise ValueError("Your hand is full")
            player["active"].remove(sid)
            player["hand"].append(sid)
        else:
            raise ValueError(f"Invalid destination: {to}")
        log.append(f"{player['name']} moves a scroll to their {to}")

    def _do_cast_scroll(self, state, player_idx, action, log, events):
        sid = action.get("scroll_id")
        definition = get_scroll(sid)
        player = state["players"][player_idx]
        if sid in player["active"]:
            source = "active"
        elif sid in common_area_scrolls(state):
            source = "common"
        else:
            raise ValueError("Scroll must be in your active area or the common area")
        if not definition.castable_in_main_phase:
            raise ValueError(f"{definition.name} can only be cast as a response")
        if not scroll_matches(definition, stones_by_hex(state), player_pos(state, player_idx)):
            raise ValueError(f"The pattern for {definition.name} does not match around you")

        spend_ap(state, player_idx, scroll_cost(state, sid, player_idx))
        outcome = self._coordinator(state, log, events).open(
            player_idx, sid, source, now=action.get("now"),
        )
        self._after_resolution(state, outcome, action, log, events)

    def _do_transform_stone(self, state, player_idx, action, log):
        if not BuffLedger(state).has("water_transformation", player_idx):
            raise ValueError("You cannot transform stones right now")
        target = as_hex(action.get("at"))
        element = action.get("element")
        stone = stone_at(state, target) if target is not None else None
        if stone is None or stone["element"] != "water":
            raise ValueError("Choose a water stone")
        if not is_adjacent(player_pos(state, player_idx), target):
            raise ValueError("The water stone must be adjacent to you")
        if element not in ELEMENTS or element == "water":
            raise ValueError("Choose another element")
        if state["source_pool"][element] < 1:
            raise ValueError(f"No {element} stones left in the source")
        remove_stone(state, stone)
        state["source_pool"][element] -= 1
        state["stones"].append({"q": target[0], "r": target[1], "element": element})
        log.append(f"{state['players'][player_idx]['name']} transforms water into {element}")

    def _do_nudge_stone(self, state, player_idx, action, log):
        if not BuffLedger(state).has("breath_of_power", player_idx):
            raise ValueError("You cannot move stones right now")
        origin = as_hex(action.get("at"))
        dest = as_hex(action.get("to"))
        stone = stone_at(state, origin) if origin is not None else None
        if stone is None:
            raise ValueError("There is no stone there")
        if not is_adjacent(player_pos(state, player_idx), origin):
            raise ValueError("The stone must be adjacent to you")
        if dest is None or not is_adjacent(origin, dest) or not is_free_hex(state, dest):
            raise ValueError("Stones move to an adjacent empty hex")
        stone["q"], stone["r"] = dest
        log.append(f"{state['players'][player_idx]['name']} moves a {stone['element']} stone")

    # ── Selection Actions ─────────────────────────────────────────────

    def _do_choose(self, state, player_idx, action):
        flow = state["selection"]
        eligible = self.registry.options(state, flow)
        SelectionFlow(state).choose(player_idx, action.get("value"), eligible)

    def _do_commit_selection(self, state, player_idx, action, log, events):
        flow = deepcopy(state["selection"])
        eligible = self.registry.options(state, flow)
        picks = SelectionFlow(state).commit(player_idx, eligible)
        if picks is None:
            log.append("Some choices are no longer valid; choose again")
            return

        ctx = self._context(state, log, events, sid=flow["scroll_id"], source="selection")
        result = self.registry.complete(ctx, flow, picks)
        if result.message:
            log.append(result.message)
        if result.to_common:
            # A replayed scroll is still held by whoever cast it first
            holder = scroll_holder(state, flow["scroll_id"])
            if holder is not None:
                send_to_common(state, holder, flow["scroll_id"])
        if result.ends_turn:
            self._turns(state, log, events).end_turn(action.get("now"))
        self._turns(state, log, events).run_deferred(action.get("now"))

    # ── Cascade ───────────────────────────────────────────────────────

    def _do_cascade_scroll(self, state, player_idx, action, log):
        if player_idx not in state["pending_cascade"]:
            raise ValueError("You have nothing to cascade")
        sid = action.get("scroll_id")
        to = action.get("to", "common")
        player = state["players"][player_idx]

        if to == "active":
            if sid not in player["hand"]:
                raise ValueError("Scroll is not in your hand")
            if len(player["active"]) >= MAX_ACTIVE_SIZE:
                raise ValueError("Your active area is full")
            player["hand"].remove(sid)
            player["active"].append(sid)
        elif to == "common":
            if remove_from_player(state, player_idx, sid) is None:
                raise ValueError("You do not hold that scroll")
            discard_to_common_area(state, sid)
        else:
            raise ValueError(f"Invalid cascade destination: {to}")
        log.append(f"{player['name']} cascades {SCROLLS[sid].name} to {to}")

        if len(player["hand"]) <= MAX_HAND_SIZE and len(player["active"]) <= MAX_ACTIVE_SIZE:
            state["pending_cascade"].remove(player_idx)

    # ── Valid Action Generators ───────────────────────────────────────

    def _valid_main_actions(self, state, player_idx):
        player = state["players"][player_idx]
        here = player_pos(state, player_idx)
        board = board_hexes(state)
        actions = []

        for step in neighbors(here):
            if step not in board or player_at(state, step) is not None:
                continue
            stone = stone_at(state, step)
            if stone is not None and stone["element"] != "void":
                continue
            if self._step_cost(state, player_idx, step) <= player["ap"]:
                actions.append({"kind": "move", "path": [list(step)]})

        if player["ap"] >= TELEPORT_COST:
            points = self._teleport_points(state, player_idx)
            if here in points:
                for dest in sorted(points - {here}):
                    if is_free_hex(state, dest):
                        actions.append({"kind": "teleport", "to": list(dest)})

        if player["ap"] >= STONE_PLACEMENT_COST:
            free = [pos for pos in sorted(board) if is_free_hex(state, pos)]
            for element in ELEMENTS:
                if player["pool"][element] < 1:
                    continue
                limit = self._placement_range(state, player_idx, element)
                for pos in free:
                    if limit is None or distance(here, pos) <= limit:
                        actions.append({"kind": "place_stone", "element": element, "to": list(pos)})

        for sid in player["hand"]:
            if len(player["active"]) < MAX_ACTIVE_SIZE:
                actions.append({"kind": "move_scroll", "scroll_id": sid, "to": "active"})
        for sid in player["active"]:
            if len(player["hand"]) < MAX_HAND_SIZE:
                actions.append({"kind": "move_scroll", "scroll_id": sid, "to": "hand"})

        stones = stones_by_hex(state)
        for sid in player["active"] + common_area_scrolls(state):
            definition = SCROLLS[sid]
            if not definition.castable_in_main_phase:
                continue
            if scroll_cost(state, sid, player_idx) > player["ap"]:
                continue
            if scroll_matches(definition, stones, here):
                actions.append({"kind": "cast_scroll", "scroll_id": sid})

        actions.append({"kind": "end_turn"})
        return actions

    def _valid_response_actions(self, state, player_idx):
        window = state["response_window"]
        if player_idx == window["caster"]:
            return [{"kind": "expire_response"}]
        if player_idx in window["passed"] or len(window["stack"]) > 1:
            return []
        report = self._coordinator(state, [], []).can_player_respond(player_idx)
        actions = [{"kind": "respond", "scroll_id": sid} for sid in report["valid_scrolls"]]
        actions.append({"kind": "pass_response"})
        return actions

    def _valid_selection_actions(self, state, player_idx):
        flow = state["selection"]
        if flow["owner"] != player_idx:
            return []
        actions = [{"kind": "choose", "value": value} for value in self.registry.options(state, flow)]
        if len(flow["picks"]) >= flow["min_picks"]:
            actions.append({"kind": "commit_selection"})
        actions.append({"kind": "cancel_selection"})
        return actions

    def _valid_cascade_actions(self, state, player_idx):
        player = state["players"][player_idx]
        actions = []
        for sid in player["hand"]:
            if len(player["active"]) < MAX_ACTIVE_SIZE:
                actions.append({"kind": "cascade_scroll", "scroll_id": sid, "to": "active"})
        for sid in player["hand"] + player["active"]:
            actions.append({"kind": "cascade_scroll", "scroll_id": sid, "to": "common"})
        return actions

    # ── Helpers ───────────────────────────────────────────────────────

    def _player_index(self, state, player_id):
        if player_id not in state["player_ids"]:
            raise ValueError(f"Unknown player: {player_id}")
        return state["player_ids"].index(player_id)
