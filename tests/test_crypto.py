"""
test_crypto.py — Crypto Envelope tests

Covers:
  - seal/unseal round trip, including empty payloads
  - Tamper detection (ciphertext, tag, associated data, nonce)
  - Wrong key yields IntegrityError, never plaintext
  - scrypt derivation determinism and salt sensitivity
  - KdfParams validation and serialization
  - VaultKey caching and repr hygiene
"""

import os
from unittest import mock

import pytest

from strongbox.crypto import (
    KEY_LENGTH,
    NONCE_LENGTH,
    SALT_LENGTH,
    KdfParams,
    VaultKey,
    derive_key,
    generate_nonce,
    generate_salt,
    seal,
    unseal,
)
from strongbox.errors import ConfigurationError, IntegrityError

from conftest import FAST_KDF


@pytest.fixture
def key():
    return os.urandom(KEY_LENGTH)


@pytest.fixture
def nonce():
    return generate_nonce()


# ---------------------------------------------------------------------------
# seal / unseal
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("payload", [b"", b"x", b"hunter2" * 1000])
def test_round_trip(key, nonce, payload):
    sealed = seal(payload, key, nonce)
    assert len(sealed) == len(payload) + 16
    assert unseal(sealed, key, nonce) == payload


def test_round_trip_with_associated_data(key, nonce):
    sealed = seal(b"secret", key, nonce, b"header")
    assert unseal(sealed, key, nonce, b"header") == b"secret"


def test_flipped_ciphertext_bit_detected(key, nonce):
    sealed = bytearray(seal(b"payload", key, nonce))
    sealed[0] ^= 0x01
    with pytest.raises(IntegrityError):
        unseal(bytes(sealed), key, nonce)


def test_flipped_tag_bit_detected(key, nonce):
    sealed = bytearray(seal(b"payload", key, nonce))
    sealed[-1] ^= 0x80
    with pytest.raises(IntegrityError):
        unseal(bytes(sealed), key, nonce)


def test_wrong_associated_data_detected(key, nonce):
    sealed = seal(b"payload", key, nonce, b"v1")
    with pytest.raises(IntegrityError):
        unseal(sealed, key, nonce, b"v2")


def test_wrong_key_detected(key, nonce):
    sealed = seal(b"payload", key, nonce)
    with pytest.raises(IntegrityError):
        unseal(sealed, os.urandom(KEY_LENGTH), nonce)


def test_wrong_nonce_detected(key, nonce):
    sealed = seal(b"payload", key, nonce)
    with pytest.raises(IntegrityError):
        unseal(sealed, key, generate_nonce())


def test_bad_lengths_rejected(key, nonce):
    sealed = seal(b"payload", key, nonce)
    with pytest.raises(IntegrityError):
        unseal(sealed, key[:16], nonce)
    with pytest.raises(IntegrityError):
        unseal(sealed, key, nonce[:8])


def test_random_material_sizes():
    assert len(generate_salt()) == SALT_LENGTH
    assert len(generate_nonce()) == NONCE_LENGTH
    assert generate_nonce() != generate_nonce()


# ---------------------------------------------------------------------------
# Key derivation
# ---------------------------------------------------------------------------

def test_derive_key_deterministic():
    salt = b"s" * SALT_LENGTH
    assert derive_key("pw", salt, FAST_KDF) == derive_key("pw", salt, FAST_KDF)
    assert len(derive_key("pw", salt, FAST_KDF)) == KEY_LENGTH


def test_derive_key_depends_on_salt_secret_and_cost():
    salt = b"s" * SALT_LENGTH
    base = derive_key("pw", salt, FAST_KDF)
    assert derive_key("pw", b"t" * SALT_LENGTH, FAST_KDF) != base
    assert derive_key("pw2", salt, FAST_KDF) != base
    assert derive_key("pw", salt, KdfParams(log2_n=5, r=8, p=1)) != base


@pytest.mark.parametrize("params", [
    KdfParams(log2_n=0),
    KdfParams(log2_n=31),
    KdfParams(r=0),
    KdfParams(r=256),
    KdfParams(p=0),
    KdfParams(log2_n=24, r=255, p=1),
    KdfParams(log2_n=20, r=8, p=255),
])
def test_kdf_params_validation(params):
    with pytest.raises(ConfigurationError):
        params.validate()


def test_kdf_params_defaults_and_dict():
    params = KdfParams()
    assert params.n == 2 ** 15
    assert params.memory == 32 * 1024 * 1024
    assert KdfParams.from_dict(params.to_dict()) == params


def test_scrypt_out_of_memory_is_integrity_error():
    with mock.patch("strongbox.crypto.Scrypt") as scrypt:
        scrypt.return_value.derive.side_effect = MemoryError
        with pytest.raises(IntegrityError):
            derive_key("pw", b"s" * SALT_LENGTH, FAST_KDF)


def test_kdf_params_from_bad_dict():
    with pytest.raises(ConfigurationError):
        KdfParams.from_dict({"log2_n": "many"})
    with pytest.raises(ConfigurationError):
        KdfParams.from_dict({"r": 8, "p": 1})


# ---------------------------------------------------------------------------
# VaultKey
# ---------------------------------------------------------------------------

def test_vault_key_generate_uses_fresh_salt():
    a = VaultKey.generate("pw", FAST_KDF)
    b = VaultKey.generate("pw", FAST_KDF)
    assert a.salt != b.salt
    assert a.key != b.key


def test_vault_key_derives_for_foreign_salt():
    key = VaultKey.generate("pw", FAST_KDF)
    other_salt = generate_salt()
    assert key.for_header(other_salt, FAST_KDF) == derive_key("pw", other_salt, FAST_KDF)
    assert key.for_header(key.salt, FAST_KDF) == key.key


def test_vault_key_repr_hides_key():
    key = VaultKey.generate("pw", FAST_KDF)
    text = repr(key)
    assert key.key.hex() not in text
    assert "****" in text
