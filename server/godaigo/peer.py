"""
Headless peer client.

Connects to the relay, joins or creates a room, keeps a PeerSession in
step with the other peers, and runs the two local timers the session
needs: the response-window timeout and the periodic snapshot broadcast.
Intents are read from stdin, one JSON action per line.
"""

import asyncio
import json
import logging
import sys

import websockets

from server.config import load_settings
from server.godaigo.engine import GodaigoEngine
from server.godaigo.session import PeerSession

logger = logging.getLogger(__name__)

# Fire the response timer a little after the deadline so the engine agrees it passed
TIMER_SLACK = 0.05


class PeerClient:

    def __init__(self, settings, engine=None):
        self.settings = settings
        self.engine = engine or GodaigoEngine(response_timeout=settings.response_timeout)
        self.session = None
        self.player_id = None
        self.websocket = None
        self._response_timer = None

    # ── Connection ───────────────────────────────────────────────────

    async def run(self):
        async with websockets.connect(self.settings.server_url) as websocket:
            self.websocket = websocket
            if self.settings.room_code:
                await self._send({"type": "join", "room_code": self.settings.room_code,
                                  "name": self.settings.player_name})
            else:
                await self._send({"type": "create", "game": "godaigo",
                                  "name": self.settings.player_name})

            sync_task = asyncio.create_task(self._sync_loop())
            input_task = asyncio.create_task(self._input_loop())
            try:
                async for raw in websocket:
                    await self._handle(json.loads(raw))
            finally:
                sync_task.cancel()
                input_task.cancel()
                if self._response_timer is not None:
                    self._response_timer.cancel()

    async def _send(self, data):
        await self.websocket.send(json.dumps(data))

    async def flush(self):
        """Relay everything the session queued for the other peers."""
        if self.session is None:
            return
        for event in self.session.drain():
            await self._send({"type": "broadcast", "event": event})
        self._arm_response_timer()

    # ── Relay Messages ───────────────────────────────────────────────

    async def _handle(self, msg):
        msg_type = msg.get("type")

        if msg_type in ("created", "joined"):
            self.player_id = msg["player_id"]
            logger.info(f"In room {msg['room_code']} as {self.player_id}")
            await self._send({"type": "auth", "token": msg["token"]})

        elif msg_type == "game_started":
            self.session = PeerSession(self.engine, msg["state"], msg["player_index"])
            self.session.subscribe(self._on_event)
            logger.info(f"Game started; you are player {msg['player_index']}")

        elif msg_type == "resync":
            self.session = PeerSession(self.engine, msg["state"], msg["player_index"])
            self.session.subscribe(self._on_event)
            history = [(env["from"] == self.player_id, env["event"]) for env in msg["history"]]
            self.session.replay(history)

        elif msg_type == "peer_event" and self.session is not None:
            self.session.receive(msg["event"])

        elif msg_type == "error":
            logger.warning(f"Relay error: {msg.get('message')}")

        else:
            logger.debug(f"Relay message: {msg_type}")

        await self.flush()

    def _on_event(self, event_type, payload, remote):
        logger.info(f"{'<-' if remote else '--'} {event_type} {payload}")

    # ── Timers ───────────────────────────────────────────────────────

    def _arm_response_timer(self):
        deadline = self.session.response_deadline() if self.session else None
        if deadline is None:
            if self._response_timer is not None:
                self._response_timer.cancel()
                self._response_timer = None
            return
        if self._response_timer is None or self._response_timer.done():
            delay = max(0.0, deadline / 1000 - self.session.clock()) + TIMER_SLACK
            self._response_timer = asyncio.create_task(self._response_timeout(delay))

    async def _response_timeout(self, delay):
        await asyncio.sleep(delay)
        self._response_timer = None
        try:
            self.session.on_response_timeout()
        except ValueError as e:
            logger.warning(f"Response timeout: {e}")
        await self.flush()

    async def _sync_loop(self):
        while True:
            await asyncio.sleep(self.settings.sync_interval)
            if self.session is not None:
                self.session.sync_messages()
                await self.flush()

    async def _input_loop(self):
        loop = asyncio.get_running_loop()
        while True:
            line = await loop.run_in_executor(None, sys.stdin.readline)
            if not line:
                return
            line = line.strip()
            if not line:
                continue
            if line == "start":
                await self._send({"type": "start"})
                continue
            try:
                action = json.loads(line)
            except json.JSONDecodeError:
                logger.warning(f"Not a JSON action: {line}")
                continue
            await self.submit(action)

    async def submit(self, action):
        if self.session is None:
            logger.warning("Game has not started")
            return
        try:
            result = self.session.act(action)
        except ValueError as e:
            logger.warning(f"Invalid action: {e}")
            return
        if result is not None:
            for line in result.log:
                logger.info(line)
        await self.flush()


def main():
    settings = load_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    asyncio.run(PeerClient(settings).run())


if __name__ == "__main__":
    main()
