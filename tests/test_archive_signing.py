"""
tests/test_archive_signing.py
Signed archive export tests.
"""

import hashlib
import hmac
import logging

from carelog.archive.export import export_archive
from carelog.archive.signing import (
    sign_archive,
    signature_path,
    verify_archive,
    verify_archive_file,
    write_signature,
)


SECRET = "test-signing-secret-never-log"


class TestSignedArchive:

    def test_signed_archive_verifies(self, session):
        body = export_archive(session)
        sig = sign_archive(body, SECRET)
        assert verify_archive(body, sig, SECRET) is True

    def test_tampered_archive_fails_verification(self, session):
        body = export_archive(session)
        sig = sign_archive(body, SECRET)
        assert verify_archive(body.replace('費用', '費甪'), sig, SECRET) is False

    def test_unsigned_archive_rejected(self, session):
        body = export_archive(session)
        assert verify_archive(body, "", SECRET) is False
        assert verify_archive(body, "0" * 64, SECRET) is False
        assert verify_archive(body, None, SECRET) is False

    def test_bytes_and_str_agree(self, session):
        body = export_archive(session)
        assert sign_archive(body, SECRET) == sign_archive(body.encode('utf-8'), SECRET)

    def test_trailing_newline_in_signature_file_tolerated(self, session):
        body = export_archive(session)
        assert verify_archive(body, sign_archive(body, SECRET) + "\n", SECRET) is True

    def test_different_secret_different_signature(self, session):
        body = export_archive(session)
        sig1 = sign_archive(body, "secret1")
        assert verify_archive(body, sig1, "secret2") is False

    def test_signing_key_never_logged(self, session, caplog):
        caplog.set_level(logging.DEBUG)
        body = export_archive(session)
        verify_archive(body, sign_archive(body, SECRET), SECRET)
        assert SECRET not in caplog.text

    def test_uppercase_hex_accepted(self, session):
        body = export_archive(session)
        assert verify_archive(body, sign_archive(body, SECRET).upper(), SECRET) is True

    def test_non_hex_signature_rejected(self, session):
        body = export_archive(session)
        assert verify_archive(body, "not-a-hex-signature", SECRET) is False

    def test_key_is_scoped_to_archives(self, session):
        body = export_archive(session).encode('utf-8')
        plain_key = hashlib.sha256(SECRET.encode('utf-8')).digest()
        other_doc_sig = hmac.new(plain_key, body, hashlib.sha256).hexdigest()
        assert verify_archive(body, other_doc_sig, SECRET) is False


class TestSignatureFiles:

    def _export(self, tmp_path, session):
        path = tmp_path / 'Evidence_Archive_chat.json'
        content = export_archive(session)
        path.write_bytes(content.encode('utf-8'))
        return path, content

    def test_sidecar_path(self, tmp_path):
        assert signature_path(tmp_path / 'a.json') == tmp_path / 'a.json.sig'

    def test_write_then_verify(self, tmp_path, session):
        path, content = self._export(tmp_path, session)
        sig = write_signature(path, content, SECRET)
        assert sig.read_text(encoding='utf-8').endswith('\n')
        assert verify_archive_file(path, SECRET) is True

    def test_missing_sidecar_is_none(self, tmp_path, session):
        path, _ = self._export(tmp_path, session)
        assert verify_archive_file(path, SECRET) is None

    def test_modified_archive_fails(self, tmp_path, session):
        path, content = self._export(tmp_path, session)
        write_signature(path, content, SECRET)
        path.write_bytes(content.replace('王小姐', '王先生').encode('utf-8'))
        assert verify_archive_file(path, SECRET) is False

    def test_explicit_signature_path(self, tmp_path, session):
        path, content = self._export(tmp_path, session)
        elsewhere = tmp_path / 'detached.sig'
        elsewhere.write_text(sign_archive(content, SECRET), encoding='utf-8')
        assert verify_archive_file(path, SECRET, elsewhere) is True

    def test_secret_not_logged_by_file_helpers(self, tmp_path, session, caplog):
        caplog.set_level(logging.DEBUG)
        path, content = self._export(tmp_path, session)
        write_signature(path, content, SECRET)
        path.write_bytes(b'tampered')
        verify_archive_file(path, SECRET)
        assert SECRET not in caplog.text
