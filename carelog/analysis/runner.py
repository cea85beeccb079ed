"""
carelog/analysis/runner.py
Runs the analysis collaborator for one session and merges the result.

At most one request per session is in flight; a second run() for the same
session raises AnalysisInProgress. cancel() abandons the outstanding
request, which then surfaces as CollaboratorError. If the caller's own task
is cancelled, the request is cancelled with it and CancelledError propagates.
No session mutation happens unless the payload validates.
"""

import asyncio
import logging
from typing import Dict, Set

from carelog.analysis.merge import MergeReport, merge_analysis
from carelog.analysis.sampling import DEFAULT_SAMPLE_LIMIT, sample_messages
from carelog.archive.store import ArchiveStore
from carelog.errors import AnalysisInProgress, CollaboratorError
from carelog.llm.base import AnalysisCollaborator

logger = logging.getLogger(__name__)


class AnalysisRunner:

    def __init__(
        self,
        store:        ArchiveStore,
        collaborator: AnalysisCollaborator,
        sample_limit: int  = DEFAULT_SAMPLE_LIMIT,
        strict:       bool = False,
    ):
        self.store        = store
        self.collaborator = collaborator
        self.sample_limit = sample_limit
        self.strict       = strict
        self._in_flight: Dict[str, asyncio.Future] = {}
        self._cancel_requested: Set[str] = set()

    def is_running(self, session_id: str) -> bool:
        return session_id in self._in_flight

    def cancel(self, session_id: str) -> bool:
        """Cancel the outstanding request for a session. False if none."""
        request = self._in_flight.get(session_id)
        if request is None or request.done():
            return False
        self._cancel_requested.add(session_id)
        request.cancel()
        logger.info(f"Analysis cancel requested for {session_id}")
        return True

    async def run(self, session_id: str) -> MergeReport:
        session = self.store.get(session_id)
        if session_id in self._in_flight:
            raise AnalysisInProgress(session_id)

        sampled = sample_messages(session.messages, self.sample_limit)
        if len(sampled) < len(session.messages):
            logger.info(
                f"Session {session_id}: sampled {len(sampled)} of "
                f"{len(session.messages)} messages for analysis"
            )

        request = asyncio.ensure_future(self.collaborator.analyze(sampled))
        self._in_flight[session_id] = request
        try:
            payload = await request
        except asyncio.CancelledError:
            if session_id in self._cancel_requested:
                raise CollaboratorError(f"Analysis cancelled for session {session_id}") from None
            raise
        except CollaboratorError:
            logger.error(f"Analysis collaborator failed for {session_id}")
            raise
        except Exception as e:
            logger.error(f"Analysis collaborator error for {session_id}: {e}")
            raise CollaboratorError(f"Analysis request failed: {e}") from e
        finally:
            self._in_flight.pop(session_id, None)
            self._cancel_requested.discard(session_id)

        return merge_analysis(self.store, session_id, payload, strict=self.strict)
