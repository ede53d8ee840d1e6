"""Position source fed by a phone or browser over WebSocket.

The client streams messages of the form::

    {"type": "position", "data": {"latitude": .., "longitude": .., "heading": ..,
                                  "accuracy": .., "timestamp": ..}}
    {"type": "orientation", "data": {"heading": ..}}
    {"type": "error", "data": {"code": "PERMISSION_DENIED" | "TIMEOUT" | ...}}

and receives ``state``, ``log`` and ``audio`` messages back.
"""

import asyncio
import json
import queue
import threading
import time
from typing import Optional

import websockets

from .models import UserPosition


class WebSocketPositionSource:
    """Runs a WebSocket server in a background thread and queues incoming fixes"""

    def __init__(self, host: str = "0.0.0.0", port: int = 8765):
        self.host = host
        self.port = port
        self.location_queue: queue.Queue = queue.Queue()
        self.last_location: Optional[UserPosition] = None
        self.last_error: Optional[str] = None
        self.orientation_heading: Optional[float] = None
        self.consecutive_failures = 0
        self.connected_clients: set = set()
        self.ws_loop: Optional[asyncio.AbstractEventLoop] = None
        self.ws_thread: Optional[threading.Thread] = None
        self._running = False

    def start(self):
        """Start the WebSocket server in a background thread"""
        self._running = True
        self.ws_thread = threading.Thread(target=self._run_ws_server, daemon=True)
        self.ws_thread.start()
        print(f"Waiting for positions on ws://{self.host}:{self.port}")

    def _run_ws_server(self):
        self.ws_loop = asyncio.new_event_loop()
        asyncio.set_event_loop(self.ws_loop)

        async def main():
            async with websockets.serve(self._handler, self.host, self.port):
                while self._running:
                    await asyncio.sleep(0.1)

        try:
            self.ws_loop.run_until_complete(main())
        except OSError as e:
            self.last_error = f"websocket server error: {e}"
            print(f"WebSocket server error: {e}")

    async def _handler(self, websocket):
        self.connected_clients.add(websocket)
        try:
            async for message in websocket:
                self.handle_message(message)
        finally:
            self.connected_clients.discard(websocket)

    def handle_message(self, message: str):
        """Parse one client message"""
        try:
            msg = json.loads(message)
        except json.JSONDecodeError:
            return
        data = msg.get("data") or {}
        msg_type = msg.get("type")

        if msg_type == "position":
            try:
                location = UserPosition.from_dict(data)
            except KeyError:
                return
            if location.timestamp is None:
                location.timestamp = time.time()
            self.location_queue.put(location)
        elif msg_type == "orientation":
            heading = data.get("heading")
            if heading is not None:
                self.orientation_heading = float(heading)
        elif msg_type == "error":
            code = str(data.get("code", "sensor error"))
            self.last_error = code.lower().replace("_", " ")

    def get_location(self, timeout: int = 30) -> Optional[UserPosition]:
        """Block until the client sends a fix"""
        try:
            location = self.location_queue.get(timeout=timeout)
        except queue.Empty:
            self.consecutive_failures += 1
            if not self.last_error:
                self.last_error = "timeout"
            return None
        self.last_location = location
        self.last_error = None
        self.consecutive_failures = 0
        return location

    def get_heading(self) -> Optional[float]:
        """Device-orientation heading, used when a fix carries none"""
        return self.orientation_heading

    def get_status(self) -> str:
        if self.consecutive_failures == 0:
            return f"WebSocket OK ({len(self.connected_clients)} clients)"
        return f"WebSocket: {self.consecutive_failures} consecutive failures ({self.last_error})"

    # ------------------------------------------------------------------
    # Outbound messages
    # ------------------------------------------------------------------

    def _send_message(self, msg_type: str, data: dict):
        """Send a message to all connected WebSocket clients"""
        if not self.connected_clients or not self.ws_loop:
            return

        message = json.dumps({"type": msg_type, "data": data}, default=str)

        async def send_to_all():
            for client in list(self.connected_clients):
                try:
                    await client.send(message)
                except websockets.ConnectionClosed:
                    self.connected_clients.discard(client)

        asyncio.run_coroutine_threadsafe(send_to_all(), self.ws_loop)

    def send_state(self, state: dict):
        self._send_message("state", state)

    def send_log(self, message: str, data: Optional[dict] = None):
        self._send_message("log", {"message": message, "data": data})

    def send_audio(self, text: str):
        self._send_message("audio", {"text": text})

    def stop(self):
        self._running = False
