"""Registered OAuth clients, persisted to a JSON file.

The file is a single JSON object keyed by client_id and is rewritten
wholesale on every registration. Writes go to a temp file that is then
renamed over the original, so a crash mid-write keeps the previous file.
"""

import asyncio
import json
import logging
import os
import secrets
import tempfile
import threading
import time
from pathlib import Path
from typing import Optional

from oauth.errors import PersistenceError
from oauth.models import RegisteredClient

logger = logging.getLogger(__name__)


class ClientRegistry:
    """Dynamic client registration store (RFC 7591)."""

    def __init__(self, file_path: Path):
        self.file_path = Path(file_path)
        self.last_persist_error: Optional[Exception] = None
        self._clients: dict[str, RegisteredClient] = {}
        self._lock = threading.Lock()
        # Serializes snapshot+write so concurrent saves cannot lose updates
        self._write_lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._clients)

    def __contains__(self, client_id: str) -> bool:
        with self._lock:
            return client_id in self._clients

    def load(self) -> None:
        """Load registered clients from file.

        A missing file means no clients yet. An unreadable or malformed
        file raises PersistenceError: starting with an empty registry would
        overwrite it on the next registration.
        """
        if not self.file_path.exists():
            logger.info(f"[CLIENTS] No saved clients file at {self.file_path}, starting empty")
            return

        try:
            with open(self.file_path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise PersistenceError(f"Cannot load clients from {self.file_path}: {e}") from e

        if not isinstance(data, dict):
            raise PersistenceError(f"{self.file_path} must contain a JSON object keyed by client_id")

        clients = {}
        for client_id, client_data in data.items():
            if not isinstance(client_data, dict):
                raise PersistenceError(f"Malformed record for client {client_id} in {self.file_path}")
            uris = client_data.get("redirect_uris")
            if not isinstance(uris, list) or not uris or not all(isinstance(u, str) for u in uris):
                raise PersistenceError(f"Client {client_id} in {self.file_path} has no valid redirect_uris")
            try:
                clients[client_id] = RegisteredClient.from_dict(dict(client_data, client_id=client_id))
            except (TypeError, ValueError) as e:
                raise PersistenceError(f"Malformed record for client {client_id} in {self.file_path}: {e}") from e

        with self._lock:
            self._clients = clients
        logger.info(f"[CLIENTS] Loaded {len(clients)} registered clients from file")

    def get(self, client_id: str) -> Optional[RegisteredClient]:
        if not client_id:
            return None
        with self._lock:
            return self._clients.get(client_id)

    async def register(self, client: RegisteredClient) -> RegisteredClient:
        """Store a client, assigning a client_id if it has none, and persist.

        The client is registered in memory even if the file write fails;
        the failure is logged and kept in last_persist_error.
        """
        if not client.client_id:
            client = RegisteredClient(
                client_id=secrets.token_urlsafe(24),
                redirect_uris=client.redirect_uris,
                client_secret=client.client_secret,
                client_id_issued_at=client.client_id_issued_at or int(time.time()),
                token_endpoint_auth_method=client.token_endpoint_auth_method,
                metadata=client.metadata,
            )

        with self._lock:
            self._clients[client.client_id] = client
        logger.info(f"[CLIENTS] Registered client {client.client_id} ({client.client_name})")

        try:
            await asyncio.to_thread(self.save)
        except PersistenceError as e:
            self.last_persist_error = e
            logger.error(f"[CLIENTS] Failed to save client registration, it will be lost on restart: {e}")
        return client

    def save(self) -> None:
        """Write the whole registry to disk atomically."""
        with self._write_lock:
            with self._lock:
                snapshot = {cid: c.to_dict() for cid, c in self._clients.items()}

            tmp_name = None
            try:
                self.file_path.parent.mkdir(parents=True, exist_ok=True)
                fd, tmp_name = tempfile.mkstemp(
                    dir=self.file_path.parent, prefix=f".{self.file_path.name}.", suffix=".tmp"
                )
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(snapshot, f, indent=2)
                    f.flush()
                    os.fsync(f.fileno())
                # Client secrets live in this file
                os.chmod(tmp_name, 0o600)
                os.replace(tmp_name, self.file_path)
            except OSError as e:
                if tmp_name and os.path.exists(tmp_name):
                    os.unlink(tmp_name)
                raise PersistenceError(f"Cannot save clients to {self.file_path}: {e}") from e

        self.last_persist_error = None
        logger.info(f"[CLIENTS] Saved {len(snapshot)} registered clients to file")
