"""
carelog/session_builder.py
Assembles a ChatSession from a raw transcript: hash → parse → classify →
participants → id + timestamp. Pure computation, no I/O.

Second construction path: load_archive() accepts a previously exported
session archive and re-validates it before returning.
"""

import logging
import time
import uuid
from typing import Optional, Union

from carelog.archive.export import import_archive
from carelog.hashing import content_hash
from carelog.models.record import ChatSession
from carelog.parsers.line_parser import decode_transcript, parse_transcript

logger = logging.getLogger(__name__)


def new_session_id() -> str:
    return uuid.uuid4().hex[:12]


def build_session(
    raw:        Union[bytes, str],
    file_name:  str,
    session_id: Optional[str] = None,
    now_ms:     Optional[int] = None,
) -> ChatSession:
    """
    Build a session from raw transcript bytes (or already-decoded text).
    Raises FormatError only if the bytes are not decodable text.
    Zero recognized messages is a valid, empty session.
    """
    text = decode_transcript(raw)
    size = len(raw) if isinstance(raw, bytes) else len(text.encode('utf-8'))

    parsed = parse_transcript(text)

    session = ChatSession(
        id           = session_id or new_session_id(),
        file_name    = file_name,
        timestamp    = now_ms if now_ms is not None else int(time.time() * 1000),
        file_hash    = content_hash(text),
        file_size    = size,
        messages     = parsed.messages,
        participants = parsed.participants,
    )
    if not session.messages:
        logger.warning(f"{file_name}: no recognizable messages — archived as empty session")
    return session


def load_archive(raw: Union[bytes, str]) -> ChatSession:
    """Rebuild a session from an exported archive. Raises FormatError / SchemaError."""
    return import_archive(raw)


def build_from_upload(raw: Union[bytes, str], file_name: str) -> ChatSession:
    """Dispatch on file extension: .json archives vs. raw .txt transcripts."""
    if file_name.lower().endswith('.json'):
        return load_archive(raw)
    return build_session(raw, file_name)
