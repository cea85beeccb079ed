"""
carelog/parsers/line_parser.py
Parses LINE chat exports (plain text, one entry per line).

Two line forms are recognized:
    2024/05/01（三）                      date header — sets current date
    上午09:15 王小姐 這個月的費用...       message — emitted under current date

Anything else (export headers, blank separators, multi-line continuations)
is skipped. Parsing never fails on malformed lines; only undecodable input
raises FormatError, and that happens in decode_transcript().
"""

import logging
import re
from dataclasses import dataclass, field
from typing import List, Union

from carelog.detectors.keyword_classifier import classify
from carelog.errors import FormatError
from carelog.models.record import ChatMessage

logger = logging.getLogger(__name__)

# BOMs for encoding detection
BOM_UTF8     = b'\xef\xbb\xbf'
BOM_UTF16_LE = b'\xff\xfe'
BOM_UTF16_BE = b'\xfe\xff'

HEADER_PREFIXES = ('[LINE]', '儲存日期')

DATE_PATTERN    = re.compile(r'^([0-9]{4}/[0-9]{2}/[0-9]{2})[（(](.)[)）]$')
MESSAGE_PATTERN = re.compile(r'^([上下]午[0-9]{2}:[0-9]{2})\s+(\S+)\s+(.*)$')

# Join / leave / call / unsend notices
SYSTEM_MARKERS = ('已新增', '至群組', '通話時間', '已退出群組', '已收回訊息')


@dataclass
class ParsedTranscript:
    messages:     List[ChatMessage] = field(default_factory=list)
    participants: List[str]         = field(default_factory=list)


def decode_transcript(raw: Union[bytes, str]) -> str:
    """
    Decode raw export bytes to text.
    Strips a UTF-8 BOM, honours UTF-16 BOMs, otherwise requires strict UTF-8.
    Raises FormatError if the bytes are not decodable text.
    """
    if isinstance(raw, str):
        return raw
    try:
        if raw.startswith(BOM_UTF8):
            return raw[len(BOM_UTF8):].decode('utf-8')
        if raw.startswith(BOM_UTF16_LE):
            return raw[len(BOM_UTF16_LE):].decode('utf-16-le')
        if raw.startswith(BOM_UTF16_BE):
            return raw[len(BOM_UTF16_BE):].decode('utf-16-be')
        return raw.decode('utf-8')
    except UnicodeDecodeError as e:
        raise FormatError(f"Transcript is not valid UTF-8 text: {e}") from e


def is_system_notice(content: str) -> bool:
    return any(marker in content for marker in SYSTEM_MARKERS)


def parse_transcript(text: str) -> ParsedTranscript:
    """
    Parse transcript text into ordered messages plus participants.
    Message ids are derived from the raw line index, so identical text
    always yields identical ids.
    """
    result       = ParsedTranscript()
    seen_senders = set()
    current_date = ''
    skipped      = 0

    for idx, line in enumerate(text.split('\n')):
        trimmed = line.strip()
        if not trimmed or trimmed.startswith(HEADER_PREFIXES):
            continue

        date_match = DATE_PATTERN.match(trimmed)
        if date_match:
            current_date = date_match.group(1)
            continue

        msg_match = MESSAGE_PATTERN.match(trimmed)
        if not msg_match or not current_date:
            skipped += 1
            continue

        time_str, sender, content = msg_match.groups()
        result.messages.append(_build_message(idx, current_date, time_str, sender, content))

        if sender not in seen_senders:
            seen_senders.add(sender)
            result.participants.append(sender)

    logger.info(
        f"Parsed {len(result.messages)} messages, "
        f"{len(result.participants)} participants"
    )
    if skipped:
        logger.debug(f"Skipped {skipped} unrecognized line(s)")
    return result


def _build_message(idx: int, date: str, time_str: str, sender: str, content: str) -> ChatMessage:
    system = is_system_notice(content)
    if system:
        tags, important = [], False
    else:
        tags, important = classify(content)

    return ChatMessage(
        id           = f'msg-{idx}',
        date         = date,
        time         = time_str,
        datetime     = f'{date} {time_str}',
        sender       = sender,
        content      = content,
        is_system    = system,
        is_important = important,
        tags         = tags,
    )
