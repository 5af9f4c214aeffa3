"""
Persistent storage of finalized training sessions.

All sessions live in one UTF-8 JSON document under a single blob key:

    {"sessions": [TrainingSession, ...]}

Every operation reads the whole document, changes it and writes it back.
Operations are serialized on one lock so each read-modify-write cycle
completes before the next begins.

The mobile app stored a bare JSON array under the same key; that layout
is still read, and is rewritten in the current layout on the next put.
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any, List, Optional

from ride_telemetry.config import SESSIONS_STORAGE_KEY
from ride_telemetry.data.blob_store import KeyValueBlobStore
from ride_telemetry.data.models import TrainingSession
from ride_telemetry.errors import CorruptStore, NotFound, SchemaError, StorageUnavailable

logger = logging.getLogger('rideTelemetry.store')


@dataclass
class _Document:
    """Parsed contents of the backing blob."""
    sessions: List[TrainingSession] = field(default_factory=list)
    quarantined: List[Any] = field(default_factory=list)


class SessionStore:
    """
    Keyed collection of TrainingSession records.

    Records that fail schema validation are quarantined: they are hidden
    from every read but kept in the document untouched.
    """

    def __init__(self, blob_store: KeyValueBlobStore, key: str = SESSIONS_STORAGE_KEY):
        self._blobs = blob_store
        self.key = key
        self._lock: Optional[asyncio.Lock] = None
        self._cache: List[TrainingSession] = []
        self._warned_corrupt = False
        self.quarantined: List[Any] = []

    def _get_lock(self) -> asyncio.Lock:
        if self._lock is None:
            self._lock = asyncio.Lock()
        return self._lock

    # -------------------------------------------------------------------------
    # Document I/O
    # -------------------------------------------------------------------------

    async def _read_blob(self) -> Optional[bytes]:
        try:
            return await self._blobs.read(self.key)
        except StorageUnavailable:
            raise
        except OSError as e:
            raise StorageUnavailable(f"read failed for {self.key}: {e}") from e

    async def _write_blob(self, data: bytes):
        try:
            await self._blobs.write(self.key, data)
        except StorageUnavailable:
            raise
        except OSError as e:
            raise StorageUnavailable(f"write failed for {self.key}: {e}") from e

    def _parse(self, raw: bytes) -> _Document:
        try:
            document = json.loads(raw.decode('utf-8'))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise CorruptStore(f"unreadable session document: {e}") from e
        except RecursionError as e:
            raise CorruptStore("session document nests too deeply") from e

        if isinstance(document, list):
            records = document
        elif isinstance(document, dict) and isinstance(document.get('sessions'), list):
            records = document['sessions']
        else:
            raise CorruptStore("session document has no 'sessions' array")

        parsed = _Document()
        for record in records:
            try:
                session = TrainingSession.from_dict(record)
            except SchemaError as e:
                logger.debug("Quarantining session record: %s", e)
                parsed.quarantined.append(record)
                continue
            # Legacy documents could hold the same id twice; the later one wins
            parsed.sessions = [s for s in parsed.sessions if s.id != session.id]
            parsed.sessions.append(session)

        if parsed.quarantined:
            logger.warning(
                "Quarantined %d invalid session record(s) in '%s'",
                len(parsed.quarantined), self.key
            )
        return parsed

    async def _load(self) -> _Document:
        """
        Read and parse the document.

        Raises:
            StorageUnavailable: the blob store failed
            CorruptStore: the document is not valid JSON of the right shape
        """
        raw = await self._read_blob()
        if raw is None:
            document = _Document()
        else:
            document = self._parse(raw)
        self._cache = list(document.sessions)
        self.quarantined = list(document.quarantined)
        return document

    async def _load_or_empty(self) -> _Document:
        """Like _load, but a corrupt document reads as empty."""
        try:
            return await self._load()
        except CorruptStore as e:
            if not self._warned_corrupt:
                logger.warning("Session store '%s' is corrupt, treating as empty: %s",
                               self.key, e)
                self._warned_corrupt = True
            self._cache = []
            self.quarantined = []
            return _Document()

    async def _save(self, document: _Document):
        payload = {
            'sessions': [s.to_dict() for s in document.sessions] + document.quarantined
        }
        data = json.dumps(payload, ensure_ascii=False).encode('utf-8')
        await self._write_blob(data)
        self._cache = list(document.sessions)
        self._warned_corrupt = False

    @staticmethod
    def _newest_first(sessions: List[TrainingSession]) -> List[TrainingSession]:
        return sorted(sessions, key=lambda s: s.start_time, reverse=True)

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    async def put(self, session: TrainingSession):
        """
        Insert a session, replacing any record with the same id.

        Either the whole new document is written or the old one is kept.

        Raises:
            StorageUnavailable: the document could not be read or written
        """
        async with self._get_lock():
            document = await self._load_or_empty()
            for i, existing in enumerate(document.sessions):
                if existing.id == session.id:
                    document.sessions[i] = session
                    break
            else:
                document.sessions.append(session)
            await self._save(document)
            logger.info("Stored session %s (%d total)", session.id, len(document.sessions))

    async def list(self) -> List[TrainingSession]:
        """
        All sessions, newest start time first.

        A corrupt document lists as empty. If storage cannot be read,
        the last list this store saw is returned.
        """
        async with self._get_lock():
            try:
                document = await self._load_or_empty()
            except StorageUnavailable as e:
                logger.warning("Session store unavailable, serving cached list: %s", e)
                return self._newest_first(self._cache)
            return self._newest_first(document.sessions)

    async def list_for_user(self, user_id: str) -> List[TrainingSession]:
        """Sessions belonging to one user, newest first."""
        return [s for s in await self.list() if s.user_id == user_id]

    async def get(self, session_id: str) -> TrainingSession:
        """
        Load one session by id.

        Raises:
            NotFound: no such session
            StorageUnavailable: the document could not be read
        """
        async with self._get_lock():
            document = await self._load_or_empty()
        for session in document.sessions:
            if session.id == session_id:
                return session
        raise NotFound(session_id)

    async def delete(self, session_id: str):
        """
        Remove a session. Unknown ids are ignored.

        Raises:
            StorageUnavailable: the document could not be read or written
        """
        async with self._get_lock():
            document = await self._load_or_empty()
            remaining = [s for s in document.sessions if s.id != session_id]
            if len(remaining) == len(document.sessions):
                return
            document.sessions = remaining
            await self._save(document)
            logger.info("Deleted session %s", session_id)
