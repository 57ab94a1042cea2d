"""
Effect handlers for the 25 elemental scrolls.

One class per scroll. Handlers that need the caster to choose something
open a SelectionFlow in execute() and finish the job in complete(); a
multi-step choice chains by opening the next step from complete().
"""

import logging

from server.godaigo.buffs import register_cleanup
from server.godaigo.effects import (
    EffectResult, ScrollEffect, add_scroll_to_hand, clear_tiles, draw_scroll_to_hand,
    open_selection, record_scroll_cast, regain_ap, register, request_cascade, reveal_tile,
    targetable_players,
)
from server.godaigo.hexgrid import as_hex, distance, tiles_touch
from server.godaigo.scrolls import DEFERRED_MARKERS, ELEMENTS, SCROLL_ELEMENTS, SCROLLS
from server.godaigo.state import (
    EXTENDED_PLACEMENT_RANGE, MAX_AP, MAX_HAND_SIZE, STONE_RANK,
    activate_elements, board_hexes, discard_to_common_area, draw_stones_to_pool,
    is_free_hex, remove_from_player, return_scroll_to_deck, return_stones_to_source,
    shuffle_deck, tile_by_id, tile_center,
)

logger = logging.getLogger(__name__)


def _hand_and_active(state, player_idx):
    player = state["players"][player_idx]
    return player["hand"] + player["active"]


def _nonempty_decks(state):
    return [el for el in SCROLL_ELEMENTS if state["decks"][el]]


# ══════════════════════════════════════════════════════════════════════
# Earth
# ══════════════════════════════════════════════════════════════════════

@register
class IronStance(ScrollEffect):
    """Counter: the triggering scroll is cancelled outright."""

    scroll_id = "EARTH_SCROLL_1"

    def execute(self, caster, ctx):
        trig = ctx.triggering_scroll
        if trig is None:
            return EffectResult.fail("Iron Stance can only counter a scroll")
        name = SCROLLS[trig["id"]].name
        return EffectResult(is_counter=True, message=f"Iron Stance counters {name}")


@register
class ShiftingSands(ScrollEffect):
    scroll_id = "EARTH_SCROLL_2"

    def execute(self, caster, ctx):
        options = self.options(ctx.state, None)
        if len(options) < 2:
            return EffectResult.fail("Need at least 2 eligible tiles to swap")
        return open_selection(
            ctx, "tile_swap", caster, options,
            "Shifting Sands: choose two tiles to swap", min_picks=2, max_picks=2,
        )

    def options(self, state, flow):
        return [t["id"] for t in clear_tiles(state)]

    def complete(self, caster, ctx, flow, picks):
        first = tile_by_id(ctx.state, picks[0])
        second = tile_by_id(ctx.state, picks[1])
        first["q"], first["r"], second["q"], second["r"] = (
            second["q"], second["r"], first["q"], first["r"],
        )
        ctx.emit("tile-swap", tile1Id=first["id"], tile2Id=second["id"])
        return EffectResult(message=f"Swapped tiles {first['id']} and {second['id']}")


@register
class MasonsSavvy(ScrollEffect):
    scroll_id = "EARTH_SCROLL_3"

    def execute(self, caster, ctx):
        drawn = draw_stones_to_pool(ctx.state, "earth", 5, caster)
        ctx.buffs.apply_this_turn(
            "earth_extended_placement", caster, {"range": EXTENDED_PLACEMENT_RANGE},
        )
        return EffectResult(
            message=f"Drew {drawn} earth; earth stones may be placed within "
                    f"{EXTENDED_PLACEMENT_RANGE} hexes this turn",
            data={"drawn": drawn},
        )


@register
class HeavyStomp(ScrollEffect):
    """Flip a tile. Revealing a hidden shrine draws one of its scrolls."""

    scroll_id = "EARTH_SCROLL_4"

    def execute(self, caster, ctx):
        options = self.options(ctx.state, None)
        if not options:
            return EffectResult.fail("No tile can be flipped")
        return open_selection(ctx, "tile_flip", caster, options, "Heavy Stomp: choose a tile to flip")

    def options(self, state, flow):
        return [t["id"] for t in clear_tiles(state)]

    def complete(self, caster, ctx, flow, picks):
        tile = tile_by_id(ctx.state, picks[0])
        if tile["flipped"]:
            reveal_tile(ctx, caster, tile)
            message = f"Revealed a {tile['shrine']} shrine"
        else:
            tile["flipped"] = True
            message = f"Hid the {tile['shrine']} shrine"
        ctx.emit("tile-flip", tileId=tile["id"], flipped=tile["flipped"])
        return EffectResult(message=message)


@register
class Avalanche(ScrollEffect):
    scroll_id = "EARTH_SCROLL_5"

    def execute(self, caster, ctx):
        ctx.buffs.apply_this_turn("global_placement", caster, {"elements": list(ELEMENTS)})
        return EffectResult(message="Stones may be placed anywhere this turn")


# ══════════════════════════════════════════════════════════════════════
# Water
# ══════════════════════════════════════════════════════════════════════

@register
class Reflect(ScrollEffect):
    """
    As a response: piggyback on the triggering scroll and replay it at the
    start of the caster's next turn, crediting only water.
    In the main phase: duplicate the last scroll cast this turn.
    """

    scroll_id = "WATER_SCROLL_1"

    def execute(self, caster, ctx):
        trig = ctx.triggering_scroll
        if trig is not None:
            if trig["id"] == self.scroll_id:
                return EffectResult.fail("Cannot reflect Reflect")
            store_deferred_trigger(ctx, "reflect", caster, trig["id"], self.scroll_id)
            return EffectResult(
                deferred=True,
                message=f"Reflect will replay {SCROLLS[trig['id']].name} next turn",
            )

        last = ctx.state["turn_tracking"]["last_cast"]
        if last is None:
            return EffectResult.fail("No scroll cast this turn")
        if last["id"] == self.scroll_id:
            return EffectResult.fail("Cannot reflect Reflect")

        mirrored = ctx.registry.execute(last["id"], caster, ctx.child(last["id"], source="mirror"))
        if mirrored.reason == "No effect defined":
            granted = grant_base_stones(ctx, caster, SCROLLS[last["id"]])
            return EffectResult(message=f"Reflect grants {granted}", data={"granted": granted})
        return EffectResult(
            success=mirrored.success,
            message=f"Reflect mirrors {SCROLLS[last['id']].name}: {mirrored.message}",
            reason=mirrored.reason,
            requires_selection=mirrored.requires_selection,
            ends_turn=mirrored.ends_turn,
        )


def store_deferred_trigger(ctx, kind, owner, sid, countering_id):
    """Keep a scroll to replay when owner's next turn starts, crediting a fixed marker."""
    ctx.buffs.apply_owner_next_turn(f"{kind}_pending_{ctx.state['window_seq']}", owner, {
        "trigger": kind,
        "scroll_id": sid,
        "definition": SCROLLS[sid].to_dict(),
        "marker": DEFERRED_MARKERS[countering_id],
    })


def grant_base_stones(ctx, caster, definition):
    """Fallback for mirroring a scroll with no effect: stones by level."""
    granted = {}
    if definition.is_catacomb:
        for element in definition.pattern_elements:
            granted[element] = draw_stones_to_pool(ctx.state, element, 2, caster)
    else:
        granted[definition.element] = draw_stones_to_pool(
            ctx.state, definition.element, definition.level, caster,
        )
    return granted


@register
class RefreshingThought(ScrollEffect):
    scroll_id = "WATER_SCROLL_2"

    def execute(self, caster, ctx):
        options = self.options(ctx.state, {"owner": caster})
        if not options:
            return EffectResult.fail("No scrolls in hand to discard")
        return open_selection(
            ctx, "scroll_discard", caster, options,
            "Refreshing Thought: discard a scroll from your hand",
        )

    def options(self, state, flow):
        return list(state["players"][flow["owner"]]["hand"])

    def complete(self, caster, ctx, flow, picks):
        sid = picks[0]
        remove_from_player(ctx.state, caster, sid)
        discard_to_common_area(ctx.state, sid)
        element = SCROLLS[sid].element
        drawn = draw_scroll_to_hand(ctx, caster, element)
        if drawn is None:
            return EffectResult(message=f"Discarded {SCROLLS[sid].name}; the {element} deck is empty")
        return EffectResult(message=f"Discarded {SCROLLS[sid].name} and drew a {element} scroll")


@register
class InspiringDraught(ScrollEffect):
    """Draw two from one deck, then put one scroll of that element back."""

    scroll_id = "WATER_SCROLL_3"

    def execute(self, caster, ctx):
        decks = _nonempty_decks(ctx.state)
        if not decks:
            return EffectResult.fail("All scroll decks are empty")
        return open_selection(
            ctx, "deck_pick", caster, decks, "Inspiring Draught: choose a deck", step="deck",
        )

    def options(self, state, flow):
        if flow["step"] == "deck":
            return _nonempty_decks(state)
        element = flow["data"]["element"]
        return [sid for sid in _hand_and_active(state, flow["owner"])
                if SCROLLS[sid].element == element]

    def complete(self, caster, ctx, flow, picks):
        state = ctx.state
        hand = state["players"][caster]["hand"]
        if flow["step"] == "deck":
            element = picks[0]
            drawn = []
            for _ in range(2):
                sid = state["decks"][element].pop() if state["decks"][element] else None
                if sid is None:
                    break
                hand.append(sid)
                drawn.append(sid)
            ctx.log.append(f"{ctx.name(caster)} draws {len(drawn)} {element} scroll(s)")
            returnable = [sid for sid in _hand_and_active(state, caster)
                          if SCROLLS[sid].element == element]
            return open_selection(
                ctx, "scroll_return", caster, returnable,
                f"Inspiring Draught: put back one {element} scroll",
                step="return", data={"element": element},
            )

        sid = picks[0]
        element = flow["data"]["element"]
        remove_from_player(state, caster, sid)
        return_scroll_to_deck(state, sid)
        shuffle_deck(state, element)
        if len(hand) > MAX_HAND_SIZE:
            request_cascade(ctx, caster)
        return EffectResult(message=f"Returned {SCROLLS[sid].name} and shuffled the {element} deck")


@register
class WanderingRiver(ScrollEffect):
    scroll_id = "WATER_SCROLL_4"

    def execute(self, caster, ctx):
        options = self.options(ctx.state, {"step": "tile"})
        if not options:
            return EffectResult.fail("No tile to enchant")
        return open_selection(
            ctx, "tile_element", caster, options, "Wandering River: choose a tile", step="tile",
        )

    def options(self, state, flow):
        if flow["step"] == "tile":
            return [t["id"] for t in state["tiles"] if t["shrine"] != "player"]
        return list(ELEMENTS)

    def complete(self, caster, ctx, flow, picks):
        if flow["step"] == "tile":
            return open_selection(
                ctx, "tile_element", caster, list(ELEMENTS),
                "Wandering River: choose an element", step="element",
                data={"tile_id": picks[0]},
            )
        tile_id = flow["data"]["tile_id"]
        ctx.buffs.apply_owner_next_turn(
            "wandering_river", caster, {"tile_id": tile_id, "element": picks[0]},
        )
        return EffectResult(message=f"Tile {tile_id} counts as {picks[0]} until your next turn")


@register
class ControlTheCurrent(ScrollEffect):
    scroll_id = "WATER_SCROLL_5"

    def execute(self, caster, ctx):
        ctx.buffs.apply_this_turn("water_transformation", caster)
        return EffectResult(message="Adjacent water stones may be transformed this turn")


# ══════════════════════════════════════════════════════════════════════
# Fire
# ══════════════════════════════════════════════════════════════════════

@register
class UnbiddenLamplight(ScrollEffect):
    """Response: the triggering scroll still resolves, then goes to the common area."""

    scroll_id = "FIRE_SCROLL_1"

    def execute(self, caster, ctx):
        trig = ctx.triggering_scroll
        if trig is None:
            return EffectResult.fail("Unbidden Lamplight can only respond to a scroll")
        return EffectResult(
            message=f"{SCROLLS[trig['id']].name} will go to the common area",
            data={"redirect_to_common": trig["id"]},
        )


@register
class BurningMotivation(ScrollEffect):
    scroll_id = "FIRE_SCROLL_2"

    def execute(self, caster, ctx):
        record = ctx.buffs.apply_this_turn("burning_motivation", caster, stack=True)
        stacks = record["payload"]["stacks"]
        return EffectResult(message=f"Gain {2 * stacks} AP per stone placed this turn")


@register
class SacrificialPyre(ScrollEffect):
    """Activate a hand scroll without its pattern; it then goes to the common area."""

    scroll_id = "FIRE_SCROLL_3"

    def execute(self, caster, ctx):
        options = self.options(ctx.state, {"owner": caster})
        if not options:
            return EffectResult.fail("No scroll in hand to sacrifice")
        return open_selection(
            ctx, "scroll_sacrifice", caster, options, "Sacrificial Pyre: choose a scroll to activate",
        )

    def options(self, state, flow):
        return [sid for sid in state["players"][flow["owner"]]["hand"] if sid != self.scroll_id]

    def complete(self, caster, ctx, flow, picks):
        sid = picks[0]
        definition = SCROLLS[sid]
        remove_from_player(ctx.state, caster, sid)
        discard_to_common_area(ctx.state, sid)
        activate_elements(ctx.state, caster, definition.activation_elements)
        record_scroll_cast(ctx.state, sid, caster)
        result = ctx.registry.execute(sid, caster, ctx.child(sid, source="hand"))
        return EffectResult(
            success=result.success,
            message=f"Sacrificed {definition.name}: {result.message}",
            reason=result.reason,
            requires_selection=result.requires_selection,
            ends_turn=result.ends_turn,
        )


@register
class Transmute(ScrollEffect):
    """Discard any number of stones or scrolls; regain 2 AP each."""

    scroll_id = "FIRE_SCROLL_4"

    def execute(self, caster, ctx):
        options = self.options(ctx.state, {"owner": caster})
        if not options:
            return EffectResult.fail("Nothing to discard")
        return open_selection(
            ctx, "transmute", caster, options, "Transmute: choose stones or scrolls to discard",
            min_picks=1, max_picks=len(options),
        )

    def options(self, state, flow):
        player = state["players"][flow["owner"]]
        options = []
        for element in ELEMENTS:
            options += [f"stone:{element}:{i}" for i in range(player["pool"][element])]
        options += [f"scroll:{sid}" for sid in player["hand"] + player["active"]
                    if sid != self.scroll_id]
        return options

    def complete(self, caster, ctx, flow, picks):
        state = ctx.state
        pool = state["players"][caster]["pool"]
        for pick in picks:
            kind, value = pick.split(":")[:2]
            if kind == "stone":
                pool[value] -= 1
                return_stones_to_source(state, value, 1)
            else:
                remove_from_player(state, caster, value)
                discard_to_common_area(state, value)
        gained = regain_ap(state, caster, 2 * len(picks), MAX_AP)
        return EffectResult(message=f"Discarded {len(picks)}, regained {gained} AP")


@register
class Arson(ScrollEffect):
    scroll_id = "FIRE_SCROLL_5"

    def execute(self, caster, ctx):
        options = self.options(ctx.state, {"owner": caster, "step": "player"})
        if not options:
            return EffectResult.fail("No opponent has stones to destroy")
        return open_selection(
            ctx, "player_target", caster, options, "Arson: choose an opponent", step="player",
        )

    def options(self, state, flow):
        if flow["step"] == "player":
            return [
                idx for idx in targetable_players(state, flow["owner"], include_self=False)
                if sum(state["players"][idx]["pool"].values()) > 0
            ]
        pool = state["players"][flow["data"]["target"]]["pool"]
        return [el for el in ELEMENTS if pool[el] > 0]

    def complete(self, caster, ctx, flow, picks):
        if flow["step"] == "player":
            target = picks[0]
            pool = ctx.state["players"][target]["pool"]
            return open_selection(
                ctx, "element_pick", caster, [el for el in ELEMENTS if pool[el] > 0],
                "Arson: choose a stone to destroy", step="element", data={"target": target},
            )
        target = flow["data"]["target"]
        element = picks[0]
        ctx.state["players"][target]["pool"][element] -= 1
        return_stones_to_source(ctx.state, element, 1)
        ctx.emit("stone-destroyed", playerIndex=target, element=element, casterIndex=caster)
        return EffectResult(
            message=f"Destroyed one of {ctx.name(target)}'s {element} stones",
            to_common=True,
        )


# ══════════════════════════════════════════════════════════════════════
# Wind
# ══════════════════════════════════════════════════════════════════════

@register
class SighOfRecollection(ScrollEffect):
    """Draw a scroll and a stone of the element that was just activated."""

    scroll_id = "WIND_SCROLL_1"

    def execute(self, caster, ctx):
        target = self._recollected(ctx)
        if target is None:
            return EffectResult.fail("No scroll activated this turn")

        definition = SCROLLS[target]
        drawn_scroll = draw_scroll_to_hand(ctx, caster, definition.element)
        stones = {}
        elements = definition.pattern_elements if definition.is_catacomb else (definition.element,)
        for element in elements:
            stones[element] = draw_stones_to_pool(ctx.state, element, 1, caster)
        return EffectResult(
            message=f"Recollected {definition.name}",
            data={"scroll": drawn_scroll, "stones": stones},
        )

    def _recollected(self, ctx):
        if ctx.triggering_scroll is not None:
            return ctx.triggering_scroll["id"]
        tracking = ctx.state["turn_tracking"]
        for entry in (tracking["last_cast"], tracking["previous_cast"]):
            if entry is not None and entry["id"] != self.scroll_id:
                return entry["id"]
        return None


@register
class Respirate(ScrollEffect):
    scroll_id = "WIND_SCROLL_2"

    def execute(self, caster, ctx):
        drawn = draw_stones_to_pool(ctx.state, "wind", 2, caster)
        ctx.buffs.apply_this_turn("respirate_wind", caster)
        return EffectResult(message=f"Drew {drawn} wind; all wind returns at end of turn")


@register_cleanup("respirate_wind")
def _return_respirated_wind(state, record):
    pool = state["players"][record["owner"]]["pool"]
    returned = return_stones_to_source(state, "wind", pool["wind"])
    pool["wind"] -= returned
    logger.info(f"Respirate returned {returned} wind stones from player {record['owner']}")


@register
class Freedom(ScrollEffect):
    scroll_id = "WIND_SCROLL_3"

    def execute(self, caster, ctx):
        ctx.buffs.apply_owner_next_turn("freedom", caster)
        return EffectResult(message="Elemental shrines act as catacombs until your next turn")


@register
class TakeFlight(ScrollEffect):
    scroll_id = "WIND_SCROLL_4"

    def execute(self, caster, ctx):
        options = targetable_players(ctx.state, caster)
        return open_selection(
            ctx, "player_target", caster, options, "Take Flight: choose a player", step="player",
        )

    def options(self, state, flow):
        if flow["step"] == "player":
            return targetable_players(state, flow["owner"])
        return [list(pos) for pos in sorted(board_hexes(state)) if is_free_hex(state, pos)]

    def complete(self, caster, ctx, flow, picks):
        if flow["step"] == "player":
            return open_selection(
                ctx, "hex_pick", caster, self.options(ctx.state, {"step": "destination"}),
                "Take Flight: choose a destination", step="destination",
                data={"target": picks[0]},
            )
        target = flow["data"]["target"]
        dest = as_hex(picks[0])
        ctx.state["players"][target]["position"] = list(dest)
        ctx.emit("player-move", playerIndex=target, q=dest[0], r=dest[1], apSpent=0)
        return EffectResult(message=f"{ctx.name(target)} takes flight", to_common=True)


@register
class BreathOfPower(ScrollEffect):
    scroll_id = "WIND_SCROLL_5"

    def execute(self, caster, ctx):
        ctx.buffs.apply_this_turn("breath_of_power", caster)
        return EffectResult(message="Adjacent stones may be moved this turn")


# ══════════════════════════════════════════════════════════════════════
# Void
# ══════════════════════════════════════════════════════════════════════

@register
class Psychic(ScrollEffect):
    """Counter the triggering scroll, then cast it yourself next turn (credits void)."""

    scroll_id = "VOID_SCROLL_1"

    def execute(self, caster, ctx):
        trig = ctx.triggering_scroll
        if trig is None:
            return EffectResult.fail("Psychic can only counter a scroll")
        if trig["id"] == self.scroll_id:
            return EffectResult.fail("Cannot psychic Psychic")
        store_deferred_trigger(ctx, "psychic", caster, trig["id"], self.scroll_id)
        return EffectResult(
            is_counter=True,
            deferred=True,
            to_common=True,
            message=f"Psychic steals {SCROLLS[trig['id']].name}",
        )


@register
class ScholarsInsight(ScrollEffect):
    scroll_id = "VOID_SCROLL_2"

    def execute(self, caster, ctx):
        decks = _nonempty_decks(ctx.state)
        if not decks:
            return EffectResult.fail("All scroll decks are empty")
        return open_selection(
            ctx, "deck_pick", caster, decks, "Scholar's Insight: choose a deck to search",
            step="deck",
        )

    def options(self, state, flow):
        if flow["step"] == "deck":
            return _nonempty_decks(state)
        return sorted(state["decks"][flow["data"]["element"]])

    def complete(self, caster, ctx, flow, picks):
        if flow["step"] == "deck":
            element = picks[0]
            return open_selection(
                ctx, "deck_search", caster, sorted(ctx.state["decks"][element]),
                "Scholar's Insight: choose a scroll", step="scroll", data={"element": element},
            )
        element = flow["data"]["element"]
        sid = picks[0]
        ctx.state["decks"][element].remove(sid)
        add_scroll_to_hand(ctx, caster, sid)
        shuffle_deck(ctx.state, element)
        ctx.emit("scholars-insight", playerIndex=caster, element=element, scrollName=sid)
        return EffectResult(message=f"Took {SCROLLS[sid].name} from the {element} deck")


@register
class Telekinesis(ScrollEffect):
    """Move a clear tile so it touches two others without stranding a neighbour."""

    scroll_id = "VOID_SCROLL_3"

    def execute(self, caster, ctx):
        options = self.options(ctx.state, {"step": "tile"})
        if not options:
            return EffectResult.fail("No tile can be moved")
        return open_selection(
            ctx, "tile_move", caster, options, "Telekinesis: choose a tile to move", step="tile",
        )

    def options(self, state, flow):
        if flow["step"] == "tile":
            return [t["id"] for t in clear_tiles(state) if tile_destinations(state, t)]
        tile = tile_by_id(state, flow["data"]["tile_id"])
        return [list(pos) for pos in tile_destinations(state, tile)]

    def complete(self, caster, ctx, flow, picks):
        if flow["step"] == "tile":
            tile = tile_by_id(ctx.state, picks[0])
            return open_selection(
                ctx, "tile_move", caster, [list(p) for p in tile_destinations(ctx.state, tile)],
                "Telekinesis: choose where it goes", step="destination",
                data={"tile_id": tile["id"]},
            )
        tile = tile_by_id(ctx.state, flow["data"]["tile_id"])
        tile["q"], tile["r"] = as_hex(picks[0])
        ctx.emit("tile-move", tileId=tile["id"], q=tile["q"], r=tile["r"])
        return EffectResult(message=f"Moved tile {tile['id']}")


def tile_destinations(state, tile):
    """Centers a tile could move to: no overlap, touching 2+ tiles, no neighbour stranded."""
    here = tile_center(tile)
    others = [tile_center(t) for t in state["tiles"] if t["id"] != tile["id"]]
    candidates = set()
    for center in others:
        for q in range(center[0] - 3, center[0] + 4):
            for r in range(center[1] - 3, center[1] + 4):
                if distance((q, r), center) == 3:
                    candidates.add((q, r))
    candidates.discard(here)

    neighbours = [c for c in others if tiles_touch(c, here)]
    destinations = []
    for pos in sorted(candidates):
        if any(distance(pos, c) < 3 for c in others):
            continue
        if sum(1 for c in others if tiles_touch(c, pos)) < 2:
            continue
        stranded = False
        for n in neighbours:
            rest = [c for c in others if c != n] + [pos]
            if not any(tiles_touch(n, c) for c in rest):
                stranded = True
                break
        if not stranded:
            destinations.append(pos)
    return destinations


@register
class Simplify(ScrollEffect):
    scroll_id = "VOID_SCROLL_4"

    def execute(self, caster, ctx):
        ctx.buffs.apply_this_turn("simplify", caster)
        return EffectResult(message="Scrolls cost 1 AP this turn")


@register
class Create(ScrollEffect):
    scroll_id = "VOID_SCROLL_5"

    def execute(self, caster, ctx):
        return open_selection(ctx, "element_pick", caster, list(ELEMENTS), "Create: choose a stone type")

    def options(self, state, flow):
        return list(ELEMENTS)

    def complete(self, caster, ctx, flow, picks):
        element = picks[0]
        drawn = draw_stones_to_pool(ctx.state, element, STONE_RANK[element], caster)
        ctx.emit("create-stones", playerIndex=caster, element=element, count=drawn)
        return EffectResult(message=f"Created {drawn} {element}", data={"drawn": drawn})
