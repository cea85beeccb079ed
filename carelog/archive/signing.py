"""
carelog/archive/signing.py
Detached signatures for exported evidence archives.

An archive Evidence_Archive_<stem>.json may carry a sidecar
Evidence_Archive_<stem>.json.sig holding one line: the lowercase hex
HMAC-SHA256 of the archive bytes exactly as written. The key is derived
from the signing secret with a carelog-specific prefix, so a signature made
for some other document type under the same secret never verifies here.

Verification fails closed: missing, malformed or mismatched signatures are
all "not valid". The secret never reaches logs or exception messages.
"""

import hashlib
import hmac
import logging
import re
from pathlib import Path
from typing import Optional, Union

logger = logging.getLogger(__name__)

SIGNATURE_SUFFIX = '.sig'

_KEY_CONTEXT = b'carelog-archive-signature-v1:'
_HEX_SIGNATURE = re.compile(r'^[0-9a-f]{64}$')


def _derive_key(signing_secret: str) -> bytes:
    return hashlib.sha256(_KEY_CONTEXT + signing_secret.encode('utf-8')).digest()


def _as_bytes(content: Union[bytes, str]) -> bytes:
    return content.encode('utf-8') if isinstance(content, str) else content


def _normalize_signature(signature: Optional[str]) -> Optional[str]:
    """Trim whitespace / trailing newline from a .sig file. None if not 64 hex chars."""
    if not isinstance(signature, str):
        return None
    candidate = signature.strip().lower()
    return candidate if _HEX_SIGNATURE.match(candidate) else None


def sign_archive(archive_content: Union[bytes, str], signing_secret: str) -> str:
    """Hex HMAC-SHA256 over the archive bytes (str is signed as UTF-8)."""
    return hmac.new(_derive_key(signing_secret), _as_bytes(archive_content), hashlib.sha256).hexdigest()


def verify_archive(
    archive_content: Union[bytes, str],
    signature:       Optional[str],
    signing_secret:  str,
) -> bool:
    """True only if signature matches the content."""
    candidate = _normalize_signature(signature)
    if candidate is None:
        return False
    return hmac.compare_digest(sign_archive(archive_content, signing_secret), candidate)


# ── SIDECAR FILES ────────────────────────────────────────────

def signature_path(archive_path: Path) -> Path:
    archive_path = Path(archive_path)
    return archive_path.with_name(archive_path.name + SIGNATURE_SUFFIX)


def write_signature(archive_path: Path, archive_content: Union[bytes, str], signing_secret: str) -> Path:
    """Write the sidecar signature next to an exported archive. Returns its path."""
    path = signature_path(archive_path)
    path.write_text(sign_archive(archive_content, signing_secret) + '\n', encoding='utf-8')
    logger.info(f"Signature written for {Path(archive_path).name}")
    return path


def verify_archive_file(
    archive_path:   Path,
    signing_secret: str,
    sig_path:       Optional[Path] = None,
) -> Optional[bool]:
    """
    Check an archive file against its sidecar signature.
    None if there is no signature file; otherwise whether it verifies.
    """
    sig_path = Path(sig_path) if sig_path is not None else signature_path(archive_path)
    if not sig_path.exists():
        return None
    valid = verify_archive(
        Path(archive_path).read_bytes(),
        sig_path.read_text(encoding='utf-8'),
        signing_secret,
    )
    if not valid:
        logger.warning(f"Signature check failed for {Path(archive_path).name}")
    return valid
