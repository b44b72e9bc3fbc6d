import base64
import os

import pytest

from digistore.domain.exceptions import CorruptPayloadError, SecretStoreConfigError
from digistore.infrastructure.secret_store import (
    NONCE_LENGTH, SecretStore, load_secret_store, parse_key
)


class TestSecretStore:
    @pytest.mark.parametrize("plaintext", [
        b"",
        b"a",
        os.urandom(500),
        "login:пароль🔑".encode("utf-8"),
    ])
    def test_decrypt_returns_original_bytes(self, secret_store, plaintext):
        assert secret_store.decrypt(secret_store.encrypt(plaintext)) == plaintext

    def test_text_roundtrip(self, secret_store):
        blob = secret_store.encrypt("user@example.com:hunter2")
        assert secret_store.decrypt_text(blob) == "user@example.com:hunter2"

    def test_same_plaintext_gives_different_blobs(self, secret_store):
        first = secret_store.encrypt("XXXX-YYYY-ZZZZ")
        second = secret_store.encrypt("XXXX-YYYY-ZZZZ")
        assert first != second
        assert first[:NONCE_LENGTH] != second[:NONCE_LENGTH]

    def test_wrong_key_is_corrupt_payload(self, secret_store):
        blob = secret_store.encrypt("XXXX-YYYY-ZZZZ")
        other = SecretStore(os.urandom(32))
        with pytest.raises(CorruptPayloadError):
            other.decrypt(blob)

    def test_tampered_blob_is_corrupt_payload(self, secret_store):
        blob = bytearray(secret_store.encrypt("XXXX-YYYY-ZZZZ"))
        blob[-1] ^= 0x01
        with pytest.raises(CorruptPayloadError):
            secret_store.decrypt(bytes(blob))

    @pytest.mark.parametrize("blob", [b"", b"short", os.urandom(NONCE_LENGTH + 3)])
    def test_short_blob_is_corrupt_payload(self, secret_store, blob):
        with pytest.raises(CorruptPayloadError):
            secret_store.decrypt(blob)

    def test_non_utf8_plaintext_is_corrupt_for_text(self, secret_store):
        blob = secret_store.encrypt(b"\xff\xfe\xfd")
        with pytest.raises(CorruptPayloadError):
            secret_store.decrypt_text(blob)


class TestKeyLoading:
    def test_32_char_key(self):
        assert parse_key("k" * 32) == b"k" * 32

    def test_hex_key(self):
        raw = os.urandom(32)
        assert parse_key(raw.hex()) == raw

    def test_base64_key(self):
        raw = os.urandom(32)
        assert parse_key(base64.urlsafe_b64encode(raw).decode()) == raw

    @pytest.mark.parametrize("raw", ["", "too-short", "x" * 31, "y" * 33])
    def test_bad_key_fails_fast(self, raw):
        with pytest.raises(SecretStoreConfigError):
            load_secret_store(raw)

    def test_bytes_key_of_wrong_length(self):
        with pytest.raises(SecretStoreConfigError):
            SecretStore(os.urandom(16))

    def test_key_from_string_decrypts_blob_of_same_key(self):
        key = "0123456789abcdef0123456789abcdef"
        blob = load_secret_store(key).encrypt("code")
        assert load_secret_store(key).decrypt_text(blob) == "code"
