"""
Buff ledger.

Lingering modifiers live in state["buffs"], one record per (key, owner):

    "excavate:1" -> {"key": "excavate", "owner": 1, "payload": {...}, "expiry": ...}

Two players can hold the same buff at once; neither ever touches the
other's record.

Three expiry policies:
  this_turn        purged by the turn-end sweep
  owner_next_turn  purged (and handed back for one-shot triggers) the first
                   time the owner's turn starts
  until_condition  only cleared by an explicit call for the matching owner;
                   no sweep ever touches it
"""

import logging

logger = logging.getLogger(__name__)

THIS_TURN = "this_turn"
OWNER_NEXT_TURN = "owner_next_turn"
UNTIL_CONDITION = "until_condition"

# key -> fn(state, record), run when a this_turn record is swept
_cleanup_hooks = {}


def register_cleanup(key):
    """Decorator: run fn(state, record) when the keyed buff is swept at turn end."""
    def decorator(fn):
        _cleanup_hooks[key] = fn
        return fn
    return decorator


def slot(key, owner):
    """Where a record lives in state["buffs"]. JSON object keys must be strings."""
    return f"{key}:{owner}"


class BuffLedger:

    def __init__(self, state):
        self.state = state
        self.records = state["buffs"]

    # ── Creation ──────────────────────────────────────────────────────

    def _apply(self, key, owner, payload, expiry, stack=False):
        existing = self.records.get(slot(key, owner))
        if stack and existing is not None:
            existing["payload"]["stacks"] += 1
            logger.debug(f"Buff {key} stacked to {existing['payload']['stacks']} for player {owner}")
            return existing

        record = {
            "key": key,
            "owner": owner,
            "payload": dict(payload or {}),
            "expiry": expiry,
        }
        if stack:
            record["payload"]["stacks"] = 1
        # Re-applying moves the record to the end so the newest comes last
        self.records.pop(slot(key, owner), None)
        self.records[slot(key, owner)] = record
        logger.debug(f"Buff {key} ({expiry}) applied for player {owner}")
        return record

    def apply_this_turn(self, key, owner, payload=None, stack=False):
        return self._apply(key, owner, payload, THIS_TURN, stack=stack)

    def apply_owner_next_turn(self, key, owner, payload=None):
        return self._apply(key, owner, payload, OWNER_NEXT_TURN)

    def apply_until_condition(self, key, owner, payload=None):
        return self._apply(key, owner, payload, UNTIL_CONDITION)

    # ── Queries ───────────────────────────────────────────────────────

    def owned(self, key, player_idx):
        """player_idx's record for key, or None."""
        return self.records.get(slot(key, player_idx))

    def holders(self, key):
        """Every live record for key, oldest first."""
        return [r for r in self.records.values() if r["key"] == key]

    def has(self, key, player_idx=None):
        if player_idx is None:
            return bool(self.holders(key))
        return self.owned(key, player_idx) is not None

    def stacks(self, key, player_idx):
        record = self.owned(key, player_idx)
        if record is None:
            return 0
        return record["payload"].get("stacks", 1)

    def remove(self, key, owner):
        return self.records.pop(slot(key, owner), None)

    # ── Sweeps ────────────────────────────────────────────────────────

    def sweep_turn_end(self):
        """Purge every this_turn record, running its cleanup hook first."""
        purged = []
        for name in [s for s, r in self.records.items() if r["expiry"] == THIS_TURN]:
            record = self.records.pop(name)
            hook = _cleanup_hooks.get(record["key"])
            if hook is not None:
                hook(self.state, record)
            purged.append(record)
        if purged:
            logger.debug(f"Turn-end sweep purged {[r['key'] for r in purged]}")
        return purged

    def consume_owner_next_turn(self, player_idx):
        """
        Called once when player_idx's turn begins. Purges and returns that
        owner's owner_next_turn records so the caller can fire their
        one-shot triggers.
        """
        consumed = []
        for name in [s for s, r in self.records.items()
                     if r["expiry"] == OWNER_NEXT_TURN and r["owner"] == player_idx]:
            consumed.append(self.records.pop(name))
        return consumed

    def clear_until_condition(self, key, player_idx):
        record = self.owned(key, player_idx)
        if record is None or record["expiry"] != UNTIL_CONDITION:
            return False
        del self.records[slot(key, player_idx)]
        logger.info(f"Cleared {key} for player {player_idx}")
        return True
