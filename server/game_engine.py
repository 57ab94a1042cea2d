"""
Abstract game engine interface.

Every peer runs the same engine over the same plain-dict state. The relay
server only uses it to build the seeded starting state; the peers use it
to validate intents and to replay each other's actions deterministically.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field


@dataclass
class ActionResult:
    """Returned by apply_action to tell the caller what happened."""
    new_state: dict
    # Human-readable lines for the game log
    log: list[str] = field(default_factory=list)
    # Broadcast events raised while applying the action: {"type": ..., **payload}
    events: list[dict] = field(default_factory=list)
    # If the game is over after this action
    game_over: bool = False


class GameEngine(ABC):
    """
    Pure-logic game engine. No networking, no rendering, no clock: callers
    pass timestamps in with the action when a rule needs one.

    State is always a plain dict (JSON-serializable) so it can be sent over
    the wire, snapshotted for resync, and compared between peers.
    """

    # Subclasses can override to restrict player counts.
    player_count_range: tuple[int, int] = (2, 5)

    @abstractmethod
    def initial_state(self, player_ids: list[str], player_names: list[str], seed: str | None = None) -> dict:
        """
        Create the starting game state for the given players. All shuffles
        and draws derive from seed, so peers holding the same starting
        state stay in lockstep. Called once by the relay when a room starts.
        """
        ...

    @abstractmethod
    def get_player_view(self, state: dict, player_id: str) -> dict:
        """
        Return a redacted view of the state for one player: other players'
        hands and the deck order are hidden.
        """
        ...

    @abstractmethod
    def get_valid_actions(self, state: dict, player_id: str) -> list[dict]:
        """
        Return the list of actions this player can currently take.
        Empty list means they have nothing to do right now.
        """
        ...

    @abstractmethod
    def apply_action(self, state: dict, player_id: str, action: dict) -> ActionResult:
        """
        Validate and apply a player's action to a copy of the state.
        Raises ValueError if the action is invalid; the input is untouched.
        """
        ...

    @abstractmethod
    def get_waiting_for(self, state: dict) -> list[str]:
        """Return the player_ids who need to act before the game can proceed."""
        ...

    @abstractmethod
    def get_phase_info(self, state: dict) -> dict:
        """
        Return a summary of the current phase for display purposes.
        e.g. {"phase": "response", "turn": 3, "description": "Waiting for responses"}
        """
        ...
