"""
carelog/archive/export.py
Single-session archive files (export / import).

Every export carries: archive format version, the full session, and an
integrity hash (SHA-256 of the canonical session JSON). Re-importing an
export reproduces the session field-for-field, analysis included.
Archives written by the original browser tool (no version / hash keys)
are accepted as long as they hold a session id and a message list.
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional, Union

from carelog.archive.codec import session_from_dict, session_to_dict
from carelog.errors import FormatError
from carelog.hashing import content_hash
from carelog.models.record import ChatSession
from carelog.parsers.line_parser import decode_transcript

logger = logging.getLogger(__name__)

ARCHIVE_FORMAT_VERSION = '1.0'

_ENVELOPE_KEYS = ('archiveFormatVersion', 'contentHashSha256')


def _canonical_hash(session_dict: Dict[str, Any]) -> str:
    """SHA-256 of canonical JSON serialization (no envelope keys)."""
    canonical = json.dumps(session_dict, sort_keys=True, separators=(',', ':'), ensure_ascii=False)
    return content_hash(canonical)


def export_to_dict(session: ChatSession) -> Dict[str, Any]:
    payload = session_to_dict(session)
    return {
        'archiveFormatVersion': ARCHIVE_FORMAT_VERSION,
        **payload,
        'contentHashSha256': _canonical_hash(payload),
    }


def export_archive(session: ChatSession, indent: Optional[int] = 2) -> str:
    """Export one session to archive JSON text."""
    return json.dumps(export_to_dict(session), indent=indent, ensure_ascii=False)


def archive_file_name(session: ChatSession) -> str:
    """Evidence_Archive_<transcript stem>.json"""
    name = session.file_name
    stem = name[:-4] if name.lower().endswith('.txt') else Path(name).stem
    return f"Evidence_Archive_{stem or session.id}.json"


def import_archive(raw: Union[bytes, str]) -> ChatSession:
    """
    Parse and re-validate an archive document.
    Raises FormatError for malformed JSON, missing structure, duplicate
    message ids or an integrity hash mismatch.
    """
    text = decode_transcript(raw)
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise FormatError(f"Archive is not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise FormatError("Archive is not a JSON object")

    expected = data.get('contentHashSha256')
    payload  = {k: v for k, v in data.items() if k not in _ENVELOPE_KEYS}

    if expected is not None and expected != _canonical_hash(payload):
        raise FormatError("Archive integrity hash mismatch — file was modified after export")

    session = session_from_dict(payload)
    logger.info(f"Imported archive {session.id} ({len(session.messages)} messages)")
    return session
