"""Tests for credential encryption (AES-256-GCM)."""

from __future__ import annotations

import base64

import pytest
from conftest import OTHER_ENCRYPTION_KEY, TEST_ENCRYPTION_KEY

from aiah.core.encryption import (
    MIN_BLOB_LENGTH,
    NONCE_LENGTH,
    TAG_LENGTH,
    DecryptionError,
    EncryptionConfigError,
    decrypt,
    encrypt,
    generate_key,
)


def _flip(blob: str, index: int) -> str:
    raw = bytearray(base64.b64decode(blob))
    raw[index] ^= 0x01
    return base64.b64encode(bytes(raw)).decode("ascii")


class TestRoundTrip:
    @pytest.mark.parametrize(
        "plaintext",
        [
            "",
            "sk-ant-api03-abcdef",
            "ünïcødé \N{SNOWMAN} \N{PILE OF POO}",
            "x" * 10_000,
            "quotes \" ' and \\ backslashes\n\t",
        ],
    )
    def test_decrypt_restores_plaintext(self, plaintext: str) -> None:
        assert decrypt(encrypt(plaintext)) == plaintext

    def test_explicit_key(self) -> None:
        blob = encrypt("secret", OTHER_ENCRYPTION_KEY)
        assert decrypt(blob, OTHER_ENCRYPTION_KEY) == "secret"

    def test_layout_is_nonce_tag_ciphertext(self) -> None:
        raw = base64.b64decode(encrypt("abcd"))
        assert len(raw) == NONCE_LENGTH + TAG_LENGTH + 4

    def test_empty_plaintext_is_minimum_length(self) -> None:
        assert len(base64.b64decode(encrypt(""))) == MIN_BLOB_LENGTH


class TestNonDeterminism:
    def test_same_plaintext_different_blobs(self) -> None:
        first = encrypt("same key twice")
        second = encrypt("same key twice")
        assert first != second
        assert decrypt(first) == decrypt(second) == "same key twice"


class TestTamperDetection:
    def test_every_byte_region_is_authenticated(self) -> None:
        blob = encrypt("sk-ant-tamper-target")
        length = len(base64.b64decode(blob))
        # First nonce byte, first tag byte, first and last ciphertext bytes.
        for index in (0, NONCE_LENGTH - 1, NONCE_LENGTH, MIN_BLOB_LENGTH - 1, MIN_BLOB_LENGTH, length - 1):
            with pytest.raises(DecryptionError):
                decrypt(_flip(blob, index))

    def test_truncated_blob(self) -> None:
        raw = base64.b64decode(encrypt("hello"))
        short = base64.b64encode(raw[: MIN_BLOB_LENGTH - 1]).decode("ascii")
        with pytest.raises(DecryptionError, match="truncated"):
            decrypt(short)

    def test_dropping_ciphertext_bytes_fails(self) -> None:
        raw = base64.b64decode(encrypt("hello world"))
        cut = base64.b64encode(raw[:-3]).decode("ascii")
        with pytest.raises(DecryptionError):
            decrypt(cut)

    def test_not_base64(self) -> None:
        with pytest.raises(DecryptionError):
            decrypt("this is not base64!!")


class TestKeys:
    def test_cross_key_isolation(self) -> None:
        blob = encrypt("secret", TEST_ENCRYPTION_KEY)
        with pytest.raises(DecryptionError):
            decrypt(blob, OTHER_ENCRYPTION_KEY)

    def test_missing_key_names_the_variable(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("ENCRYPTION_KEY", raising=False)
        with pytest.raises(EncryptionConfigError, match="ENCRYPTION_KEY"):
            encrypt("secret")
        with pytest.raises(EncryptionConfigError, match="ENCRYPTION_KEY"):
            decrypt("AAAA")

    def test_malformed_key(self) -> None:
        with pytest.raises(EncryptionConfigError):
            encrypt("secret", "not-hex")
        with pytest.raises(EncryptionConfigError):
            encrypt("secret", "abcd")

    def test_generate_key_is_usable(self) -> None:
        key = generate_key()
        assert len(bytes.fromhex(key)) == 32
        assert decrypt(encrypt("x", key), key) == "x"


class TestNoLeak:
    def test_plaintext_not_in_output(self) -> None:
        plaintext = "sk-ant-REDACTED"
        blob = encrypt(plaintext)
        assert plaintext not in blob
        assert plaintext.encode() not in base64.b64decode(blob)
