"""Progress persistence per (itinerary, identity)."""

import json
import sqlite3
from datetime import datetime
from typing import Optional, Union

import requests

from .api import BackendClient
from .logger import Logger
from .models import AuthenticatedIdentity, GuestIdentity, ProgressState

Identity = Union[AuthenticatedIdentity, GuestIdentity]


class ProgressLoadError(Exception):
    """Stored progress could not be read; distinct from having none"""


class ProgressStore:
    """Common interface; scopes differ only in durability"""

    def load(self, itinerary_id: str, identity: Identity) -> Optional[ProgressState]:
        raise NotImplementedError

    def save(self, itinerary_id: str, identity: Identity, state: ProgressState) -> bool:
        raise NotImplementedError

    def clear(self, itinerary_id: str, identity: Identity) -> bool:
        raise NotImplementedError


class GuestProgressStore(ProgressStore):
    """In-memory SQLite store; everything is gone once the app session closes"""

    def __init__(self, db_path: str = ":memory:"):
        self.conn = sqlite3.connect(db_path, check_same_thread=False)
        self._init_schema()

    def _init_schema(self):
        self.conn.execute("""
            CREATE TABLE IF NOT EXISTS guest_progress (
                itinerary_id TEXT NOT NULL,
                session_id TEXT NOT NULL,
                state TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                PRIMARY KEY (itinerary_id, session_id)
            )
        """)
        self.conn.commit()

    def load(self, itinerary_id: str, identity: GuestIdentity) -> Optional[ProgressState]:
        cursor = self.conn.execute(
            "SELECT state FROM guest_progress WHERE itinerary_id = ? AND session_id = ?",
            (itinerary_id, identity.session_id)
        )
        row = cursor.fetchone()
        if row:
            return ProgressState.from_dict(json.loads(row[0]))
        return None

    def save(self, itinerary_id: str, identity: GuestIdentity, state: ProgressState) -> bool:
        now = datetime.now().isoformat()
        self.conn.execute("""
            INSERT INTO guest_progress (itinerary_id, session_id, state, updated_at)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(itinerary_id, session_id) DO UPDATE SET
                state = excluded.state,
                updated_at = excluded.updated_at
        """, (itinerary_id, identity.session_id, json.dumps(state.to_dict()), now))
        self.conn.commit()
        return True

    def clear(self, itinerary_id: str, identity: GuestIdentity) -> bool:
        self.conn.execute(
            "DELETE FROM guest_progress WHERE itinerary_id = ? AND session_id = ?",
            (itinerary_id, identity.session_id)
        )
        self.conn.commit()
        return True

    def end_session(self, identity: GuestIdentity):
        """Drop every itinerary's progress for a guest session"""
        self.conn.execute("DELETE FROM guest_progress WHERE session_id = ?", (identity.session_id,))
        self.conn.commit()

    def close(self):
        self.conn.close()


class AuthenticatedProgressStore(ProgressStore):
    """Server-persisted progress via the backend's itinerary-progress endpoint"""

    def __init__(self, client: BackendClient, logger: Optional[Logger] = None):
        self.client = client
        self.logger = logger

    def load(self, itinerary_id: str, identity: AuthenticatedIdentity) -> Optional[ProgressState]:
        try:
            data = self.client.get_progress(itinerary_id, identity.token)
        except (requests.RequestException, ValueError) as e:
            self._log("Failed to load progress", {"itinerary": itinerary_id, "error": str(e)})
            raise ProgressLoadError(str(e)) from e
        if not data:
            return None
        return ProgressState.from_dict(data)

    def save(self, itinerary_id: str, identity: AuthenticatedIdentity, state: ProgressState) -> bool:
        try:
            self.client.post_progress(itinerary_id, state.to_dict(), identity.token)
            return True
        except requests.RequestException as e:
            self._log("Failed to save progress", {"itinerary": itinerary_id, "error": str(e)})
            return False

    def clear(self, itinerary_id: str, identity: AuthenticatedIdentity) -> bool:
        # The endpoint is upsert-only; clearing writes an empty state
        return self.save(itinerary_id, identity, ProgressState())

    def _log(self, message: str, data: Optional[dict] = None):
        if self.logger:
            self.logger.log(message, data)


class ProgressStores(ProgressStore):
    """Routes each call to the store matching the identity type"""

    def __init__(self, guest: GuestProgressStore, authenticated: Optional[AuthenticatedProgressStore] = None):
        self.guest = guest
        self.authenticated = authenticated

    def for_identity(self, identity: Identity) -> ProgressStore:
        if isinstance(identity, AuthenticatedIdentity):
            if self.authenticated is None:
                raise ValueError("No authenticated progress store configured")
            return self.authenticated
        if isinstance(identity, GuestIdentity):
            return self.guest
        raise TypeError(f"Unknown identity type: {type(identity).__name__}")

    def load(self, itinerary_id: str, identity: Identity) -> Optional[ProgressState]:
        return self.for_identity(identity).load(itinerary_id, identity)

    def save(self, itinerary_id: str, identity: Identity, state: ProgressState) -> bool:
        return self.for_identity(identity).save(itinerary_id, identity, state)

    def clear(self, itinerary_id: str, identity: Identity) -> bool:
        return self.for_identity(identity).clear(itinerary_id, identity)
