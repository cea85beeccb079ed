"""
carelog/hashing.py
Content hasher. SHA-256 of the transcript text exactly as it was read.
Identity / dedup key only, not a security control.
"""

import hashlib
from typing import Union


def content_hash(text: Union[str, bytes]) -> str:
    """Return the 64-char lowercase hex SHA-256 digest of text (UTF-8 encoded)."""
    if isinstance(text, str):
        text = text.encode('utf-8')
    return hashlib.sha256(text).hexdigest()
