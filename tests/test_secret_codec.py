"""Tests for src/security/secret_codec.py."""

from __future__ import annotations

import hashlib

import pytest

from src.errors import ConfigurationError
from src.security.secret_codec import SecretCodec, derive_key


def _tamper(blob: str, index: int) -> str:
    replacement = "A" if blob[index] != "A" else "B"
    return blob[:index] + replacement + blob[index + 1:]


class TestDeriveKey:
    def test_hex_key_used_verbatim(self) -> None:
        assert derive_key("ab" * 32) == bytes.fromhex("ab" * 32)

    def test_other_secret_is_hashed(self) -> None:
        assert derive_key("passphrase") == hashlib.sha256(b"passphrase").digest()

    def test_wrong_length_hex_is_hashed(self) -> None:
        assert len(derive_key("ab" * 16)) == 32
        assert derive_key("ab" * 16) != bytes.fromhex("ab" * 16)


class TestSecretCodec:
    def test_round_trip(self, codec: SecretCodec) -> None:
        for plaintext in ("sk-test-secret-key", "ünïcødé ✓", "x"):
            assert codec.decrypt(codec.encrypt(plaintext)) == plaintext

    def test_blob_format(self, codec: SecretCodec) -> None:
        blob = codec.encrypt("sk-test-secret-key")
        assert blob.count(":") == 2
        assert "sk-test-secret-key" not in blob

    def test_fresh_iv_per_encryption(self, codec: SecretCodec) -> None:
        first = codec.encrypt("same")
        second = codec.encrypt("same")
        assert first != second
        assert first.split(":")[0] != second.split(":")[0]

    def test_every_single_character_tamper_fails(self, codec: SecretCodec) -> None:
        blob = codec.encrypt("sk-test-secret-key")
        for index in range(len(blob)):
            assert codec.decrypt(_tamper(blob, index)) is None, index

    def test_truncated_blob_fails(self, codec: SecretCodec) -> None:
        blob = codec.encrypt("sk-test-secret-key")
        assert codec.decrypt(blob[:-4]) is None
        assert codec.decrypt(blob.rsplit(":", 1)[0]) is None

    @pytest.mark.parametrize("blob", ["bad", "", "a:b:c", "::", None, 42])
    def test_malformed_blob_returns_none(self, codec: SecretCodec, blob: object) -> None:
        assert codec.decrypt(blob) is None  # type: ignore[arg-type]

    def test_wrong_key_returns_none(self, codec: SecretCodec) -> None:
        blob = codec.encrypt("sk-test-secret-key")
        assert SecretCodec("another secret").decrypt(blob) is None

    def test_passphrase_secret_round_trip(self) -> None:
        codec = SecretCodec("not-a-hex-key")
        assert codec.decrypt(codec.encrypt("value")) == "value"

    @pytest.mark.parametrize("plaintext", ["", None, 123])
    def test_encrypt_rejects_non_strings(self, codec: SecretCodec, plaintext: object) -> None:
        with pytest.raises(ValueError):
            codec.encrypt(plaintext)  # type: ignore[arg-type]

    def test_missing_secret_fails_on_first_use(self) -> None:
        codec = SecretCodec(None)
        with pytest.raises(ConfigurationError):
            codec.encrypt("value")
        with pytest.raises(ConfigurationError):
            codec.key
