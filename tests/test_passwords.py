from unittest.mock import MagicMock

import pytest

from jobgate.service.passwords import CredentialVerifier


@pytest.fixture
def verifier():
    return CredentialVerifier(time_cost=1, memory_cost=1024, parallelism=1)


def test_hash_then_verify(verifier):
    stored = verifier.hash("CorrectHorse9")
    assert stored.startswith("$argon2id$")
    assert verifier.verify("CorrectHorse9", stored) is True
    assert verifier.verify("WrongHorse9", stored) is False


def test_hashes_are_salted(verifier):
    assert verifier.hash("same-secret") != verifier.hash("same-secret")


def test_empty_secret_cannot_be_hashed(verifier):
    with pytest.raises(ValueError):
        verifier.hash("")


@pytest.mark.parametrize("stored", [None, ""])
def test_missing_hash_fails_without_hashing(verifier, stored):
    verifier._hasher = MagicMock()
    assert verifier.verify("anything", stored) is False
    verifier._hasher.verify.assert_not_called()
    verifier._hasher.hash.assert_not_called()


def test_unreadable_hash_is_a_mismatch(verifier):
    assert verifier.verify("secret", "not-an-argon2-hash") is False


def test_needs_rehash_when_parameters_change(verifier):
    stored = verifier.hash("secret-value")
    assert verifier.needs_rehash(stored) is False
    stronger = CredentialVerifier(time_cost=2, memory_cost=1024, parallelism=1)
    assert stronger.needs_rehash(stored) is True
    assert stronger.verify("secret-value", stored) is True


def test_needs_rehash_ignores_missing_hash(verifier):
    assert verifier.needs_rehash(None) is False
