"""
carelog/archive/store.py
Archive store: ordered collection of sessions, most recent first.

  insert  replace-and-promote: an existing session with the same id is
          removed and the new one goes to the front (never an error)
  delete  removes by id; clears the active selection if it pointed there
  attach  swaps in a session copy carrying a new analysis (position kept);
          update_analysis validates against the stored session under the lock

Every mutation persists the whole collection immediately (write-through).
The new collection is written first and only then swapped in, so a failed
write leaves both memory and the blob store at their prior state.
A single in-process lock serializes all mutations.
"""

import dataclasses
import logging
import threading
from typing import Callable, Iterator, List, Optional

from carelog.archive.codec import sessions_from_json, sessions_to_json
from carelog.errors import SessionNotFound
from carelog.models.record import AnalysisResult, ChatSession
from carelog.storage.blob_store import BlobStore

logger = logging.getLogger(__name__)

STORE_KEY = 'carelog_sessions'


class ArchiveStore:

    def __init__(self, blob_store: BlobStore, key: str = STORE_KEY):
        self._blob_store = blob_store
        self._key        = key
        self._lock       = threading.RLock()
        self._sessions: List[ChatSession] = []
        self._active_id: Optional[str]    = None

    # ── LOAD ─────────────────────────────────────────────────

    def load(self) -> int:
        """
        Read the persisted collection. No prior value → empty collection.
        Raises FormatError if the stored blob is corrupt.
        """
        with self._lock:
            blob = self._blob_store.get(self._key)
            self._sessions  = sessions_from_json(blob) if blob else []
            self._active_id = None
            logger.info(f"Loaded {len(self._sessions)} archived session(s)")
            return len(self._sessions)

    # ── READ ─────────────────────────────────────────────────

    @property
    def sessions(self) -> List[ChatSession]:
        with self._lock:
            return list(self._sessions)

    def __len__(self) -> int:
        return len(self._sessions)

    def __iter__(self) -> Iterator[ChatSession]:
        return iter(self.sessions)

    def __contains__(self, session_id: str) -> bool:
        return self.find(session_id) is not None

    def find(self, session_id: str) -> Optional[ChatSession]:
        with self._lock:
            return next((s for s in self._sessions if s.id == session_id), None)

    def get(self, session_id: str) -> ChatSession:
        session = self.find(session_id)
        if session is None:
            raise SessionNotFound(session_id)
        return session

    @property
    def active_session_id(self) -> Optional[str]:
        return self._active_id

    @property
    def active_session(self) -> Optional[ChatSession]:
        with self._lock:
            return self.find(self._active_id) if self._active_id else None

    def select(self, session_id: Optional[str]) -> None:
        """Set (or clear, with None) the active session."""
        with self._lock:
            if session_id is not None and self.find(session_id) is None:
                raise SessionNotFound(session_id)
            self._active_id = session_id

    # ── MUTATE ───────────────────────────────────────────────

    def insert(self, session: ChatSession, activate: bool = True) -> None:
        with self._lock:
            replaced = self.find(session.id) is not None
            updated  = [session] + [s for s in self._sessions if s.id != session.id]
            self._commit(updated)
            if activate:
                self._active_id = session.id
        if replaced:
            logger.info(f"Session {session.id} replaced and promoted to most recent")
        else:
            logger.info(f"Session {session.id} archived ({len(session.messages)} messages)")

    def delete(self, session_id: str) -> None:
        with self._lock:
            if self.find(session_id) is None:
                raise SessionNotFound(session_id)
            self._commit([s for s in self._sessions if s.id != session_id])
            if self._active_id == session_id:
                self._active_id = None
        logger.info(f"Session {session_id} deleted")

    def attach_analysis(self, session_id: str, analysis: AnalysisResult) -> ChatSession:
        """Replace the session's analysis wholesale. Returns the new session."""
        return self.update_analysis(session_id, lambda current: analysis)

    def update_analysis(
        self,
        session_id: str,
        build:      Callable[[ChatSession], AnalysisResult],
    ) -> ChatSession:
        """
        Build an analysis from the session as currently stored and attach it,
        in one locked step. If build raises, nothing is persisted.
        """
        with self._lock:
            current = self.get(session_id)
            updated_session = dataclasses.replace(current, analysis=build(current))
            self._commit([
                updated_session if s.id == session_id else s
                for s in self._sessions
            ])
            return updated_session

    def _commit(self, sessions: List[ChatSession]) -> None:
        self._blob_store.set(self._key, sessions_to_json(sessions))
        self._sessions = sessions
