"""
Scroll effect registry and the primitives every handler shares.

Each scroll id maps to exactly one ScrollEffect subclass (see elemental.py
and catacomb.py). Handlers never reach for global state: everything they
touch arrives through an EffectContext, and everything they want peers to
hear about goes out through ctx.emit().
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from server.godaigo.buffs import BuffLedger
from server.godaigo.scrolls import SCROLLS
from server.godaigo.selection import SelectionFlow
from server.godaigo.state import (
    BASE_SCROLL_COST, MAX_HAND_SIZE, STONE_RANK,
    discard_to_common_area, draw_scroll, draw_stones_to_pool, remove_from_player, tile_center,
    tile_is_clear,
)

logger = logging.getLogger(__name__)


@dataclass
class EffectResult:
    success: bool = True
    message: str = ""
    reason: Optional[str] = None
    requires_selection: bool = False
    # Counter handlers report this so the coordinator can cancel the original
    is_counter: bool = False
    # The effect stored a trigger for the caster's next turn
    deferred: bool = False
    # The scroll that produced this effect goes to the common area afterwards
    to_common: bool = False
    ends_turn: bool = False
    data: dict = field(default_factory=dict)

    @classmethod
    def fail(cls, reason):
        return cls(success=False, reason=reason, message=reason)

    def to_dict(self):
        out = {"success": self.success, "message": self.message}
        if self.reason:
            out["reason"] = self.reason
        if self.requires_selection:
            out["requiresSelection"] = True
        return out


@dataclass
class EffectContext:
    """Everything one effect execution may read or write."""
    state: dict
    scroll_id: Optional[str] = None
    # {"id": ..., "caster": ...} when running as a response, counter or replay
    triggering_scroll: Optional[dict] = None
    # Where the running scroll was cast from: active, common, hand, deferred, mirror
    source: Optional[str] = None
    log: list = field(default_factory=list)
    events: list = field(default_factory=list)
    on_cascade: Optional[Callable[[dict, int], Any]] = None
    # Needed by handlers that run another scroll's effect (mirror, sacrifice, replay)
    registry: Optional["EffectRegistry"] = None

    @property
    def buffs(self):
        return BuffLedger(self.state)

    def emit(self, event_type, **payload):
        self.events.append({"type": event_type, **payload})

    def name(self, player_idx):
        return self.state["players"][player_idx]["name"]

    def child(self, scroll_id, triggering_scroll=None, source=None):
        """A context for a nested execution that shares this one's sinks."""
        return EffectContext(
            state=self.state,
            scroll_id=scroll_id,
            triggering_scroll=triggering_scroll,
            source=source,
            log=self.log,
            events=self.events,
            on_cascade=self.on_cascade,
            registry=self.registry,
        )


class ScrollEffect:
    """Base handler. Subclasses set scroll_id and override execute()."""

    scroll_id = None

    @property
    def definition(self):
        return SCROLLS[self.scroll_id]

    def execute(self, caster, ctx):
        raise NotImplementedError

    def options(self, state, flow):
        """Eligible picks for the flow's current step."""
        return []

    def complete(self, caster, ctx, flow, picks):
        return EffectResult.fail("Nothing to complete")


# ── Registry ──────────────────────────────────────────────────────────

_HANDLERS = {}


def register(cls):
    """Class decorator: one handler instance per scroll id."""
    if cls.scroll_id in _HANDLERS:
        raise ValueError(f"Duplicate effect handler for {cls.scroll_id}")
    _HANDLERS[cls.scroll_id] = cls()
    return cls


class EffectRegistry:

    def __init__(self, handlers=None):
        self.handlers = dict(_HANDLERS if handlers is None else handlers)

    def get(self, sid):
        return self.handlers.get(sid)

    def missing(self):
        """Catalog ids with no registered handler."""
        return sorted(sid for sid in SCROLLS if sid not in self.handlers)

    def execute(self, sid, caster, ctx):
        handler = self.handlers.get(sid)
        if handler is None:
            logger.error(f"No effect defined for {sid}")
            return EffectResult(success=False, reason="No effect defined")
        logger.debug(f"Executing {sid} for player {caster}")
        return handler.execute(caster, ctx)

    def options(self, state, flow):
        handler = self.handlers.get(flow["scroll_id"])
        if handler is None:
            return []
        return handler.options(state, flow)

    def complete(self, ctx, flow, picks):
        handler = self.handlers.get(flow["scroll_id"])
        if handler is None:
            logger.error(f"No effect defined for {flow['scroll_id']}")
            return EffectResult(success=False, reason="No effect defined")
        return handler.complete(flow["owner"], ctx, flow, picks)


def default_registry():
    """Registry loaded with every built-in handler."""
    # Importing the handler modules registers their classes
    from server.godaigo import catacomb, elemental  # noqa: F401

    registry = EffectRegistry()
    missing = registry.missing()
    if missing:
        logger.error(f"Scrolls without effect handlers: {missing}")
    return registry


# ── Turn Tracking ─────────────────────────────────────────────────────

def record_scroll_cast(state, sid, caster):
    tracking = state["turn_tracking"]
    tracking["previous_cast"] = tracking["last_cast"]
    tracking["last_cast"] = {"id": sid, "caster": caster}


def record_stone_placed(state, player_idx):
    """Count a placement; Burning Motivation pays out per stack."""
    state["turn_tracking"]["stones_placed"] += 1
    stacks = BuffLedger(state).stacks("burning_motivation", player_idx)
    if stacks:
        state["players"][player_idx]["ap"] += 2 * stacks
    return stacks * 2


# ── Action Points ─────────────────────────────────────────────────────

def scroll_cost(state, sid, player_idx):
    """Casting cost after the caster's cost-reducing buffs."""
    ledger = BuffLedger(state)
    cost = BASE_SCROLL_COST
    if ledger.has("simplify", player_idx):
        cost = min(cost, 1)
    if ledger.has("quick_reflexes", player_idx) and SCROLLS[sid].level == 1:
        cost = 0
    return cost


def spend_ap(state, player_idx, amount):
    player = state["players"][player_idx]
    if amount > player["ap"]:
        raise ValueError(f"Not enough AP! Need {amount}, have {player['ap']}")
    player["ap"] -= amount


def regain_ap(state, player_idx, amount, cap):
    player = state["players"][player_idx]
    before = player["ap"]
    player["ap"] = max(before, min(cap, before + amount))
    return player["ap"] - before


# ── Scroll Primitives ─────────────────────────────────────────────────

def add_scroll_to_hand(ctx, player_idx, sid):
    """Give a player a scroll. Overflowing the hand asks for a cascade."""
    hand = ctx.state["players"][player_idx]["hand"]
    hand.append(sid)
    if len(hand) > MAX_HAND_SIZE:
        request_cascade(ctx, player_idx)


def request_cascade(ctx, player_idx):
    pending = ctx.state["pending_cascade"]
    if player_idx not in pending:
        pending.append(player_idx)
        ctx.log.append(f"{ctx.name(player_idx)} must cascade a scroll")
    if ctx.on_cascade is not None:
        ctx.on_cascade(ctx.state, player_idx)


def draw_scroll_to_hand(ctx, player_idx, element):
    """Draw the top scroll of a deck into a hand. Returns the id or None."""
    sid = draw_scroll(ctx.state, element)
    if sid is None:
        return None
    add_scroll_to_hand(ctx, player_idx, sid)
    ctx.emit("scroll-collected", playerIndex=player_idx, scrollName=sid, shrineType=element)
    return sid


def open_selection(ctx, kind, owner, options, prompt, min_picks=1, max_picks=1,
                   step="pick", data=None):
    SelectionFlow.open(
        ctx.state, kind, owner, ctx.scroll_id, options,
        min_picks=min_picks, max_picks=max_picks, step=step, data=data,
    )
    return EffectResult(requires_selection=True, message=prompt)


# ── Targeting ─────────────────────────────────────────────────────────

def is_immune(state, player_idx):
    """Excavate: the owner cannot be targeted by scrolls until their next turn."""
    return BuffLedger(state).has("excavate", player_idx)


def targetable_players(state, caster, include_self=True):
    targets = []
    for player in state["players"]:
        idx = player["index"]
        if idx == caster:
            if include_self:
                targets.append(idx)
        elif not is_immune(state, idx):
            targets.append(idx)
    return targets


def clear_tiles(state):
    """Non-player tiles with nothing standing or lying on them."""
    return [
        t for t in state["tiles"]
        if t["shrine"] != "player" and tile_is_clear(state, t)
    ]


# ── Shrines ───────────────────────────────────────────────────────────

def shrine_element(state, tile):
    """The element a shrine produces, honoring Wandering River. The latest enchantment wins."""
    for river in reversed(BuffLedger(state).holders("wandering_river")):
        if river["payload"].get("tile_id") == tile["id"]:
            return river["payload"]["element"]
    return tile["shrine"]


def shrine_yield(ctx, player_idx, tile):
    """Draw a shrine's stones into a player's pool. Returns (element, drawn)."""
    element = shrine_element(ctx.state, tile)
    if element not in STONE_RANK:
        return element, 0
    amount = STONE_RANK[element]
    mine = ctx.buffs.owned("mine", player_idx)
    if mine is not None and mine["payload"].get("shrine") == element:
        amount *= 2
    drawn = draw_stones_to_pool(ctx.state, element, amount, player_idx)
    ctx.log.append(f"{ctx.name(player_idx)} draws {drawn} {element} from a shrine")
    return element, drawn


def reveal_tile(ctx, player_idx, tile):
    """Turn a hidden shrine face up; the revealer draws one of its scrolls."""
    tile["flipped"] = False
    ctx.log.append(f"{ctx.name(player_idx)} reveals a {tile['shrine']} shrine")
    drawn = draw_scroll_to_hand(ctx, player_idx, tile["shrine"])
    if ctx.buffs.has("call_to_adventure", player_idx):
        shrine_yield(ctx, player_idx, tile)
    return drawn


def tile_at_center(state, pos):
    for tile in state["tiles"]:
        if tile_center(tile) == pos:
            return tile
    return None


def send_to_common(state, player_idx, sid):
    """
    Move a resolved scroll from its owner to the common area. A scroll the
    player no longer holds (cast from the common area, already discarded)
    stays where it is.
    """
    if remove_from_player(state, player_idx, sid) is None:
        return False
    discard_to_common_area(state, sid)
    return True
