"""
WebSocket relay for peer-replicated games.

There is no authoritative game state on the server. After the host starts
a room the relay hands every peer the same seeded starting state, then
forwards each peer's broadcasts to the rest of the room and keeps them in
order so a reconnecting peer can replay its way back.
"""

import asyncio
import json
import logging
from dataclasses import dataclass

import websockets

from server.config import load_settings
from server.lobby import Lobby

logger = logging.getLogger(__name__)


@dataclass
class Connection:
    """One socket and, once authenticated, the seat it speaks for."""
    websocket: object
    room: object = None
    seat: object = None


class RelayServer:

    def __init__(self, lobby=None):
        self.lobby = lobby or Lobby()
        # Usable before auth
        self.open_handlers = {
            "create": self._on_create,
            "join": self._on_join,
            "auth": self._on_auth,
            "reconnect": self._on_auth,
        }
        self.seated_handlers = {
            "start": self._on_start,
            "leave": self._on_leave,
            "broadcast": self._on_broadcast,
            "get_state": self._on_get_state,
            "chat": self._on_chat,
        }

    # ── Connection Loop ──────────────────────────────────────────────

    async def handle_connection(self, websocket):
        conn = Connection(websocket)
        try:
            async for raw in websocket:
                await self._dispatch(conn, raw)
        except websockets.ConnectionClosed:
            logger.debug("Connection closed")
        finally:
            await self._disconnect(conn)

    async def _dispatch(self, conn, raw):
        try:
            msg = json.loads(raw)
        except json.JSONDecodeError:
            await self._send(conn.websocket, {"type": "error", "message": "Invalid JSON"})
            return

        msg_type = msg.get("type")
        handler = self.open_handlers.get(msg_type)
        if handler is None:
            handler = self.seated_handlers.get(msg_type)
            if handler is None:
                await self._send(conn.websocket, {"type": "error",
                                                  "message": f"Unknown message type: {msg_type}"})
                return
            if conn.seat is None:
                await self._send(conn.websocket, {"type": "error",
                                                  "message": "Not authenticated. Send 'auth' first."})
                return
            if conn.room.code not in self.lobby.rooms:
                await self._send(conn.websocket, {"type": "error", "message": "Room no longer exists"})
                return

        try:
            await handler(conn, msg)
        except ValueError as e:
            await self._send(conn.websocket, {"type": "error", "message": str(e)})

    async def _disconnect(self, conn):
        seat, room = conn.seat, conn.room
        if seat is None or seat.websocket is not conn.websocket:
            return
        seat.websocket = None
        logger.info(f"{seat.name} disconnected from {room.code}")
        await self._broadcast(room, {
            "type": "lobby_update",
            "players": room.roster(),
            "reason": f"{seat.name} disconnected",
        })

    # ── Lobby Messages ───────────────────────────────────────────────

    async def _on_create(self, conn, msg):
        room, seat = self.lobby.create_room(msg.get("game", "godaigo"), msg.get("name", "Host"))
        await self._send(conn.websocket, {
            "type": "created",
            "room_code": room.code,
            "player_id": seat.player_id,
            "token": seat.token,
            "game": room.game_name,
        })

    async def _on_join(self, conn, msg):
        code = msg.get("room_code", "").upper()
        room, seat = self.lobby.join_room(code, msg.get("name", "Player"))
        await self._send(conn.websocket, {
            "type": "joined",
            "room_code": room.code,
            "player_id": seat.player_id,
            "token": seat.token,
        })

    async def _on_auth(self, conn, msg):
        room, seat = self.lobby.authenticate(msg.get("token"))
        seat.websocket = conn.websocket
        conn.room, conn.seat = room, seat

        await self._send(conn.websocket, {
            "type": "authenticated",
            "room_code": room.code,
            "player_id": seat.player_id,
            "name": seat.name,
            "is_host": seat.player_id == room.host_id,
            "game_started": room.started,
        })
        await self._broadcast(room, {
            "type": "lobby_update",
            "players": room.roster(),
            "game_started": room.started,
        })
        # Mid-game arrivals rebuild their replica from the start
        if room.started:
            await self._send_resync(room, seat)

    async def _on_leave(self, conn, msg):
        room = self.lobby.leave_room(conn.room.code, conn.seat.player_id)
        await self._send(conn.websocket, {"type": "left", "room_code": conn.room.code})
        conn.room, conn.seat = None, None
        if room is not None:
            await self._broadcast(room, {"type": "lobby_update", "players": room.roster(),
                                         "host_id": room.host_id})

    async def _on_chat(self, conn, msg):
        await self._broadcast(conn.room, {
            "type": "chat",
            "from": conn.seat.name,
            "message": msg.get("message", ""),
        })

    # ── Game Messages ────────────────────────────────────────────────

    async def _on_start(self, conn, msg):
        room = conn.room
        self.lobby.start_game(room.code, conn.seat.player_id, msg.get("seed"))
        for seat in room.connected_seats():
            await self._send(seat.websocket, {
                "type": "game_started",
                "state": room.initial_state,
                "player_index": room.player_index(seat.player_id),
            })

    async def _on_broadcast(self, conn, msg):
        envelope = self.lobby.record(conn.room, conn.seat.player_id, msg.get("event"))
        for seat in conn.room.connected_seats(exclude=conn.seat.player_id):
            await self._send(seat.websocket, envelope)

    async def _on_get_state(self, conn, msg):
        if not conn.room.started:
            raise ValueError("Game not started")
        await self._send_resync(conn.room, conn.seat)

    # ── Sending ──────────────────────────────────────────────────────

    async def _send(self, websocket, data):
        try:
            await websocket.send(json.dumps(data))
        except websockets.ConnectionClosed:
            logger.debug("Dropped a message to a closed socket")

    async def _broadcast(self, room, data):
        for seat in room.connected_seats():
            await self._send(seat.websocket, data)

    async def _send_resync(self, room, seat):
        await self._send(seat.websocket, {
            "type": "resync",
            "state": room.initial_state,
            "player_index": room.player_index(seat.player_id),
            "history": room.history,
        })


# ── Entry Point ──────────────────────────────────────────────────────

async def run_server(host="0.0.0.0", port=8765, response_timeout=15.0):
    from server.godaigo.engine import GodaigoEngine

    relay = RelayServer()
    relay.lobby.register_engine("godaigo", lambda: GodaigoEngine(response_timeout=response_timeout))
    logger.info(f"Relay starting on ws://{host}:{port}")
    logger.info(f"Registered games: {sorted(relay.lobby.engines)}")

    async with websockets.serve(relay.handle_connection, host, port):
        await asyncio.Future()  # run forever


def main():
    settings = load_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    asyncio.run(run_server(settings.host, settings.port, settings.response_timeout))


if __name__ == "__main__":
    main()
