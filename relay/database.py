import asyncio
import json
import logging
import sqlite3
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from .models import DirectThread, Room, User

logger = logging.getLogger(__name__)

COLLECTIONS = ("users", "rooms", "direct_threads")


@dataclass
class Snapshot:
    version: int
    users: Dict[str, dict] = field(default_factory=dict)
    rooms: Dict[str, dict] = field(default_factory=dict)
    direct_threads: Dict[str, dict] = field(default_factory=dict)


@dataclass
class LoadedState:
    version: int
    users: List[User]
    rooms: List[Room]
    threads: List[DirectThread]


class RelayDB:
    """SQLite file holding the three keyed collections as JSON bodies.

    A snapshot replaces every collection inside a single transaction, so the
    file never mixes two state versions.
    """

    def __init__(self, db_path: str = "relay.db"):
        self.db_path = db_path
        self.init_database()

    def init_database(self):
        with sqlite3.connect(self.db_path) as conn:
            for name in COLLECTIONS:
                conn.execute(f"""
                    CREATE TABLE IF NOT EXISTS {name} (
                        id TEXT PRIMARY KEY,
                        body TEXT NOT NULL
                    )
                """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS snapshot_meta (
                    key TEXT PRIMARY KEY,
                    value INTEGER NOT NULL
                )
            """)
            conn.commit()
        logger.info("Database initialized at %s", self.db_path)

    def write_snapshot(self, snapshot: Snapshot) -> None:
        conn = sqlite3.connect(self.db_path)
        try:
            with conn:
                current = self._version(conn)
                if current is not None and snapshot.version <= current:
                    logger.debug("Skipping stale snapshot v%s (stored v%s)", snapshot.version, current)
                    return
                for name in COLLECTIONS:
                    rows = getattr(snapshot, name)
                    conn.execute(f"DELETE FROM {name}")
                    conn.executemany(
                        f"INSERT INTO {name} (id, body) VALUES (?, ?)",
                        [(key, json.dumps(body, separators=(",", ":"))) for key, body in rows.items()],
                    )
                conn.execute(
                    "INSERT INTO snapshot_meta (key, value) VALUES ('version', ?) "
                    "ON CONFLICT(key) DO UPDATE SET value=excluded.value",
                    (snapshot.version,),
                )
        finally:
            conn.close()

    def _version(self, conn) -> Optional[int]:
        row = conn.execute("SELECT value FROM snapshot_meta WHERE key='version'").fetchone()
        return int(row[0]) if row else None

    def _read(self, conn, name: str) -> List[dict]:
        return [json.loads(body) for (body,) in conn.execute(f"SELECT body FROM {name}").fetchall()]

    def load(self) -> LoadedState:
        with sqlite3.connect(self.db_path) as conn:
            version = self._version(conn) or 0
            users = [User.from_record(r) for r in self._read(conn, "users")]
            rooms = [Room.from_dict(r) for r in self._read(conn, "rooms")]
            threads = [DirectThread.from_dict(r) for r in self._read(conn, "direct_threads")]
        logger.info("Loaded %d users, %d rooms, %d threads (v%d)", len(users), len(rooms), len(threads), version)
        return LoadedState(version, users, rooms, threads)


class PersistenceSync:
    """Ordered, fire-and-forget snapshot writer.

    ``schedule`` only records the latest snapshot; a single writer task saves
    snapshots one at a time in version order, dropping intermediate versions
    that were superseded while a write was running. A failed write is logged
    and left for the next snapshot to cover.
    """

    def __init__(self, db: RelayDB, version: int = 0):
        self.db = db
        self.version = version
        self.written_version = version
        self._pending: Optional[Snapshot] = None
        self._wakeup = asyncio.Event()
        self._idle = asyncio.Event()
        self._idle.set()
        self._task: Optional[asyncio.Task] = None

    def capture(self, identity, channels) -> Snapshot:
        self.version += 1
        records = channels.to_records()
        return Snapshot(
            version=self.version,
            users=identity.to_records(),
            rooms=records["rooms"],
            direct_threads=records["direct_threads"],
        )

    def schedule(self, identity, channels) -> Snapshot:
        snapshot = self.capture(identity, channels)
        self._pending = snapshot
        self._idle.clear()
        self._wakeup.set()
        return snapshot

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._writer())

    async def _writer(self):
        loop = asyncio.get_running_loop()
        while True:
            await self._wakeup.wait()
            self._wakeup.clear()
            snapshot, self._pending = self._pending, None
            if snapshot is not None:
                try:
                    await loop.run_in_executor(None, self.db.write_snapshot, snapshot)
                    self.written_version = snapshot.version
                except Exception:
                    logger.exception("Snapshot v%s failed; will retry with next mutation", snapshot.version)
            if self._pending is None:
                self._idle.set()

    async def flush(self) -> None:
        """Wait until every scheduled snapshot has been attempted."""
        if self._task is None:
            snapshot, self._pending = self._pending, None
            if snapshot is not None:
                self.db.write_snapshot(snapshot)
                self.written_version = snapshot.version
            self._idle.set()
            return
        await self._idle.wait()

    async def stop(self) -> None:
        if self._task is None:
            return
        await self.flush()
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
