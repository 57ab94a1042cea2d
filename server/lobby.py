"""
Rooms, seats and tokens for the relay.

Nothing here touches a socket. The relay in server.py owns connections and
asks the lobby who may do what; every refusal is a ValueError whose message
goes straight back to the client.
"""

import logging
import secrets
import time
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

ROOM_CODE_CHARS = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"  # no I/O/0/1 for clarity
ROOM_CODE_LENGTH = 5


def new_room_code():
    return "".join(secrets.choice(ROOM_CODE_CHARS) for _ in range(ROOM_CODE_LENGTH))


def new_token():
    return secrets.token_urlsafe(24)


@dataclass
class Seat:
    player_id: str
    name: str
    token: str
    websocket: object = None

    @property
    def connected(self):
        return self.websocket is not None

    def summary(self):
        return {"player_id": self.player_id, "name": self.name, "connected": self.connected}


@dataclass
class Room:
    code: str
    game_name: str
    engine: object
    host_id: str = None
    seats: dict = field(default_factory=dict)        # player_id -> Seat, in join order
    initial_state: dict = None
    # Every relayed peer event, oldest first, for replay on reconnect
    history: list = field(default_factory=list)
    created_at: float = field(default_factory=time.time)

    @property
    def started(self):
        return self.initial_state is not None

    def roster(self):
        return [seat.summary() for seat in self.seats.values()]

    def player_index(self, player_id):
        return self.initial_state["player_ids"].index(player_id)

    def connected_seats(self, exclude=None):
        return [seat for pid, seat in self.seats.items() if seat.connected and pid != exclude]


class Lobby:

    def __init__(self):
        self.rooms: dict[str, Room] = {}
        self.tokens: dict[str, tuple[str, str]] = {}    # token -> (room_code, player_id)
        self.engines = {}                               # game_name -> engine factory

    def register_engine(self, game_name, factory):
        """factory() returns a fresh GameEngine for one room."""
        self.engines[game_name] = factory

    def _add_seat(self, room, name):
        seat = Seat(player_id=f"p_{new_token()[:8]}", name=name, token=new_token())
        room.seats[seat.player_id] = seat
        self.tokens[seat.token] = (room.code, seat.player_id)
        return seat

    # ── Seating ──────────────────────────────────────────────────────

    def create_room(self, game_name, host_name):
        factory = self.engines.get(game_name)
        if factory is None:
            raise ValueError(f"Unknown game: {game_name}. Available: {sorted(self.engines)}")

        code = new_room_code()
        while code in self.rooms:
            code = new_room_code()
        room = Room(code=code, game_name=game_name, engine=factory())
        seat = self._add_seat(room, host_name)
        room.host_id = seat.player_id
        self.rooms[code] = room
        logger.info(f"Room {code} created for {game_name} by {host_name}")
        return room, seat

    def join_room(self, code, name):
        room = self.rooms.get(code)
        if room is None:
            raise ValueError(f"Room {code} not found")
        if room.started:
            raise ValueError("Game already in progress")
        if len(room.seats) >= room.engine.player_count_range[1]:
            raise ValueError("Room is full")
        seat = self._add_seat(room, name)
        logger.info(f"{name} joined room {code}")
        return room, seat

    def leave_room(self, code, player_id):
        """
        Give up a seat before the game starts. The host role passes to the
        next seat; the last one out closes the room. Returns the room, or
        None once it is gone.
        """
        room = self.rooms.get(code)
        if room is None or player_id not in room.seats:
            return None
        if room.started:
            raise ValueError("Cannot leave a game in progress")

        seat = room.seats.pop(player_id)
        self.tokens.pop(seat.token, None)
        logger.info(f"{seat.name} left room {code}")
        if not room.seats:
            del self.rooms[code]
            logger.info(f"Room {code} closed")
            return None
        if room.host_id == player_id:
            room.host_id = next(iter(room.seats))
        return room

    def authenticate(self, token):
        entry = self.tokens.get(token) if token else None
        if entry is None:
            raise ValueError("Invalid token")
        code, player_id = entry
        room = self.rooms.get(code)
        if room is None or player_id not in room.seats:
            raise ValueError("Room or player not found")
        return room, room.seats[player_id]

    # ── Game ─────────────────────────────────────────────────────────

    def start_game(self, code, requester_id, seed=None):
        """Build the shared starting state. Every peer derives play from its seed."""
        room = self.rooms.get(code)
        if room is None:
            raise ValueError("Room not found")
        if room.host_id != requester_id:
            raise ValueError("Only the host can start the game")
        if room.started:
            raise ValueError("Game already started")
        low = room.engine.player_count_range[0]
        if len(room.seats) < low:
            raise ValueError(f"Need at least {low} players")

        player_ids = list(room.seats)
        names = [room.seats[pid].name for pid in player_ids]
        seed = seed or secrets.token_hex(8)
        room.initial_state = room.engine.initial_state(player_ids, names, seed=seed)
        logger.info(f"Room {code} started with {len(player_ids)} players, seed {seed}")
        return room.initial_state

    def record(self, room, player_id, event):
        """Append a peer event to the room history and wrap it for the others."""
        if not room.started:
            raise ValueError("Game not started")
        if not isinstance(event, dict) or "type" not in event:
            raise ValueError("Broadcast needs an event with a type")
        envelope = {"type": "peer_event", "from": player_id, "event": event}
        room.history.append(envelope)
        return envelope
