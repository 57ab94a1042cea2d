"""
Effect handlers for the ten catacomb scrolls.

Catacomb scrolls are two-element, level 2, and mostly lay down buffs that
the engine consults for movement, placement and shrine output.
"""

from server.godaigo.effects import (
    EffectResult, ScrollEffect, open_selection, register, regain_ap, shrine_element,
    targetable_players, tile_at_center,
)
from server.godaigo.hexgrid import as_hex, distance
from server.godaigo.scrolls import ELEMENTS, SCROLLS
from server.godaigo.state import (
    MAX_AP, board_hexes, discard_to_common_area, draw_stones_to_pool, is_free_hex, player_pos,
    remove_stone, stones_on_tile, tile_by_id,
)

REFLECTING_POOL_RANGE = 5


@register
class Mudslide(ScrollEffect):
    scroll_id = "CATACOMB_SCROLL_1"

    def execute(self, caster, ctx):
        ctx.buffs.apply_this_turn("mudslide", caster)
        return EffectResult(message="Earth and water stones move like wind this turn")


@register
class Mine(ScrollEffect):
    """Double the output of the elemental shrine the caster stands on."""

    scroll_id = "CATACOMB_SCROLL_2"

    def execute(self, caster, ctx):
        tile = tile_at_center(ctx.state, player_pos(ctx.state, caster))
        if tile is None or tile["flipped"] or tile["shrine"] not in ELEMENTS:
            return EffectResult(message="Mine: not standing on an elemental shrine, no bonus")
        element = shrine_element(ctx.state, tile)
        ctx.buffs.apply_this_turn("mine", caster, {"shrine": element})
        return EffectResult(message=f"Mine: the {element} shrine yields double this turn")


@register
class CallToAdventure(ScrollEffect):
    scroll_id = "CATACOMB_SCROLL_3"

    def execute(self, caster, ctx):
        ctx.buffs.apply_this_turn("call_to_adventure", caster)
        return EffectResult(message="Revealed tiles yield their stones this turn")


@register
class Excavate(ScrollEffect):
    """
    End the turn. Until the caster's next turn they cannot be targeted; when
    it starts they may teleport to any unoccupied hex.
    """

    scroll_id = "CATACOMB_SCROLL_4"

    def execute(self, caster, ctx):
        ctx.buffs.apply_until_condition("excavate", caster)
        ctx.buffs.apply_owner_next_turn("excavate_teleport", caster)
        return EffectResult(message="Excavate: immune until your next turn", ends_turn=True)

    def options(self, state, flow):
        return [list(pos) for pos in sorted(board_hexes(state)) if is_free_hex(state, pos)]

    def complete(self, caster, ctx, flow, picks):
        if not picks:
            return EffectResult(message="Stayed put")
        dest = as_hex(picks[0])
        ctx.state["players"][caster]["position"] = list(dest)
        ctx.emit("player-move", playerIndex=caster, q=dest[0], r=dest[1], apSpent=0)
        return EffectResult(message=f"{ctx.name(caster)} emerges at {dest}")


@register
class SteamVents(ScrollEffect):
    scroll_id = "CATACOMB_SCROLL_5"

    def execute(self, caster, ctx):
        ctx.buffs.apply_this_turn("steam_vents", caster)
        return EffectResult(message="Each AP spent moving covers two hexes this turn")


@register
class SeedTheSkies(ScrollEffect):
    scroll_id = "CATACOMB_SCROLL_6"

    def execute(self, caster, ctx):
        drawn = draw_stones_to_pool(ctx.state, "water", 5, caster)
        ctx.buffs.apply_this_turn("sky_placement", caster, {"elements": ["water", "wind"]})
        return EffectResult(
            message=f"Drew {drawn} water; water and wind may be placed anywhere this turn",
            data={"drawn": drawn},
        )


@register
class ReflectingPool(ScrollEffect):
    scroll_id = "CATACOMB_SCROLL_7"

    def execute(self, caster, ctx):
        if ctx.buffs.has("reflecting_pool_used", caster):
            return EffectResult.fail("Reflecting Pool can only be used once per turn")
        here = player_pos(ctx.state, caster)
        nearby = {
            s["element"] for s in ctx.state["stones"]
            if distance(here, (s["q"], s["r"])) <= REFLECTING_POOL_RANGE
        }
        gained = regain_ap(ctx.state, caster, 2 * len(nearby), MAX_AP)
        ctx.buffs.apply_this_turn("reflecting_pool_used", caster)
        return EffectResult(message=f"Regained {gained} AP from {len(nearby)} stone types")


@register
class Plunder(ScrollEffect):
    """Discard one of a player's active scrolls to the common area."""

    scroll_id = "CATACOMB_SCROLL_8"

    def execute(self, caster, ctx):
        options = self.options(ctx.state, {"owner": caster, "step": "player"})
        if not options:
            return EffectResult.fail("No player has an active scroll to plunder")
        return open_selection(
            ctx, "player_target", caster, options, "Plunder: choose a player", step="player",
        )

    def _plunderable(self, state, caster, target):
        active = state["players"][target]["active"]
        if target == caster:
            return [sid for sid in active if sid != self.scroll_id]
        return list(active)

    def options(self, state, flow):
        caster = flow["owner"]
        if flow["step"] == "player":
            return [
                idx for idx in targetable_players(state, caster)
                if self._plunderable(state, caster, idx)
            ]
        return self._plunderable(state, caster, flow["data"]["target"])

    def complete(self, caster, ctx, flow, picks):
        if flow["step"] == "player":
            target = picks[0]
            return open_selection(
                ctx, "scroll_pick", caster, self._plunderable(ctx.state, caster, target),
                "Plunder: choose a scroll", step="scroll", data={"target": target},
            )
        target = flow["data"]["target"]
        sid = picks[0]
        ctx.state["players"][target]["active"].remove(sid)
        discard_to_common_area(ctx.state, sid)
        ctx.emit("scroll-plundered", casterIndex=caster, targetIndex=target, scrollName=sid)
        return EffectResult(message=f"Plundered {SCROLLS[sid].name} from {ctx.name(target)}")


@register
class QuickReflexes(ScrollEffect):
    scroll_id = "CATACOMB_SCROLL_9"

    def execute(self, caster, ctx):
        ctx.buffs.apply_owner_next_turn("quick_reflexes", caster)
        return EffectResult(message="Level 1 scrolls cost 0 AP until your next turn")


@register
class Combust(ScrollEffect):
    scroll_id = "CATACOMB_SCROLL_10"

    def execute(self, caster, ctx):
        options = self.options(ctx.state, None)
        if not options:
            return EffectResult.fail("No tile has stones to destroy")
        return open_selection(ctx, "tile_pick", caster, options, "Combust: choose a tile")

    def options(self, state, flow):
        return [
            t["id"] for t in state["tiles"]
            if t["shrine"] != "player" and stones_on_tile(state, t)
        ]

    def complete(self, caster, ctx, flow, picks):
        tile = tile_by_id(ctx.state, picks[0])
        destroyed = stones_on_tile(ctx.state, tile)
        for stone in destroyed:
            remove_stone(ctx.state, stone)
        ctx.emit("stones-destroyed", tileId=tile["id"], count=len(destroyed))
        return EffectResult(message=f"Destroyed {len(destroyed)} stones")
