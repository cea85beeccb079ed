"""
carelog/errors.py
Error taxonomy. Every core operation fails clean: when one of these is
raised, no session has been created or mutated and nothing was persisted.
"""


class CarelogError(Exception):
    """Base class for all carelog errors."""


class FormatError(CarelogError):
    """Raw input is not decodable text, or an archive is not well-formed."""


class SchemaError(CarelogError):
    """An analysis payload violates the required-field or enum contract."""


class CollaboratorError(CarelogError):
    """The external analysis request failed or was cancelled."""


class AnalysisInProgress(CollaboratorError):
    """A second analysis was requested while one is outstanding for the session."""

    def __init__(self, session_id: str):
        super().__init__(f"Analysis already running for session {session_id}")
        self.session_id = session_id


class SessionNotFound(CarelogError, KeyError):
    """No session with the given identifier exists in the archive store."""

    def __init__(self, session_id: str):
        super().__init__(f"Session not found: {session_id}")
        self.session_id = session_id

    def __str__(self) -> str:
        return self.args[0]
