"""
Interactive selection flows.

Some scrolls need the caster to pick tiles, players, decks, elements or
scrolls before they finish. The pending flow lives at state["selection"]
so it survives snapshots and replays the same way on every peer:

    {
        "kind": "tile_swap",         # what the picks mean
        "owner": 0,                  # only this player may choose
        "scroll_id": "EARTH_SCROLL_2",
        "step": "pick",              # handler-defined stage name
        "options": [...],            # eligible values when prompted
        "picks": [],
        "min_picks": 2,
        "max_picks": 2,
        "data": {...},               # carried between chained steps
        "highlighted": [...],        # markers a renderer may show
    }

Eligibility is supplied by the owning handler and checked twice: when a
value is chosen, and again for every pick at commit. Nothing on the board
changes until the handler's completion runs, so cancelling never leaves a
partial mutation behind.
"""

import logging

logger = logging.getLogger(__name__)


class SelectionFlow:
    """Commit/cancel transitions over the flow stored in a game state."""

    def __init__(self, state):
        self.state = state

    @classmethod
    def open(cls, state, kind, owner, scroll_id, options, min_picks=1, max_picks=1,
             step="pick", data=None):
        if state["selection"] is not None:
            raise ValueError("Another selection is already in progress")
        options = list(options)
        state["selection"] = {
            "kind": kind,
            "owner": owner,
            "scroll_id": scroll_id,
            "step": step,
            "options": options,
            "picks": [],
            "min_picks": min_picks,
            "max_picks": max_picks,
            "data": dict(data or {}),
            "highlighted": list(options),
        }
        state["sub_phase"] = "selection"
        logger.debug(f"Selection {kind}/{step} opened for player {owner} with {len(options)} options")
        return cls(state)

    @property
    def data(self):
        return self.state["selection"]

    def _require_owner(self, player_idx):
        flow = self.data
        if flow is None:
            raise ValueError("No selection in progress")
        if flow["owner"] != player_idx:
            raise ValueError("This selection belongs to another player")
        return flow

    def choose(self, player_idx, value, eligible):
        """
        Toggle one pick. A value already picked is unpicked; a new value
        must be eligible right now and fit under max_picks.
        """
        flow = self._require_owner(player_idx)
        if value in flow["picks"]:
            flow["picks"].remove(value)
            return flow["picks"]
        if value not in eligible:
            raise ValueError(f"{value} is not a valid choice")
        if len(flow["picks"]) >= flow["max_picks"]:
            raise ValueError(f"Choose at most {flow['max_picks']}")
        flow["picks"].append(value)
        flow["options"] = list(eligible)
        flow["highlighted"] = [v for v in eligible if v not in flow["picks"]]
        return flow["picks"]

    def commit(self, player_idx, eligible):
        """
        Re-validate every pick against fresh eligibility. Stale picks are
        dropped and None is returned with the flow still open; otherwise
        the flow closes and its picks are returned.
        """
        flow = self._require_owner(player_idx)
        if len(flow["picks"]) < flow["min_picks"]:
            raise ValueError(f"Choose at least {flow['min_picks']}")

        stale = [p for p in flow["picks"] if p not in eligible]
        if stale:
            flow["picks"] = [p for p in flow["picks"] if p in eligible]
            flow["options"] = list(eligible)
            flow["highlighted"] = [v for v in eligible if v not in flow["picks"]]
            logger.info(f"Selection {flow['kind']}: dropped stale picks {stale}")
            return None

        picks = list(flow["picks"])
        self.close()
        return picks

    def cancel(self, player_idx=None):
        if player_idx is not None:
            self._require_owner(player_idx)
        flow = self.close()
        if flow is not None:
            logger.debug(f"Selection {flow['kind']} cancelled")
        return flow

    def close(self):
        flow = self.state["selection"]
        self.state["selection"] = None
        if self.state["sub_phase"] == "selection":
            self.state["sub_phase"] = None
        return flow
