"""
Tests for phone canonicalization and identity hashing
"""

import hashlib

import pytest

from services.identity_hasher import (
    ZERO_HASH,
    IdentityHasher,
    hash_phone,
    identity_hash_for,
    is_identity_hash,
    is_wallet_address,
    is_zero_hash,
    mask_phone,
    normalize_phone,
    same_hash,
)


class TestNormalizePhone:
    """One canonical form for every call site"""

    @pytest.mark.parametrize("raw", [
        "012-345 6789",
        "0123456789",
        "+60 12-345 6789",
        "+60123456789",
        "0060123456789",
        "60123456789",
        "123456789",
        "(012) 345-6789",
    ])
    def test_malaysian_variants_share_one_form(self, raw):
        assert normalize_phone(raw, "+60") == "+60123456789"

    def test_plus_prefix_is_kept_for_foreign_numbers(self):
        assert normalize_phone("+1 (415) 555-0100", "+60") == "+14155550100"

    def test_without_default_country_digits_are_returned(self):
        assert normalize_phone("012 345 6789") == "0123456789"

    def test_empty_and_garbage_inputs_never_raise(self):
        assert normalize_phone(None, "+60") == ""
        assert normalize_phone("", "+60") == ""
        assert normalize_phone("call me", "+60") == ""


class TestHashPhone:

    def test_hash_is_sha256_of_utf8_identifier(self):
        expected = "0x" + hashlib.sha256("+60123456789".encode("utf-8")).hexdigest()
        assert hash_phone("+60123456789") == expected

    def test_hash_is_deterministic_and_fixed_length(self):
        first = identity_hash_for("012-345 6789", "+60")
        second = identity_hash_for("012-345 6789", "+60")
        assert first == second
        assert len(first) == 66
        assert is_identity_hash(first)

    def test_equivalent_inputs_hash_identically(self):
        assert identity_hash_for("0123456789", "+60") == identity_hash_for("+60123456789", "+60")

    def test_different_numbers_hash_differently(self):
        assert identity_hash_for("0123456789", "+60") != identity_hash_for("0123456788", "+60")


class TestHelpers:

    def test_zero_hash_detection(self):
        assert is_zero_hash(ZERO_HASH)
        assert is_zero_hash(ZERO_HASH.upper().replace("0X", "0x"))
        assert is_zero_hash("")
        assert not is_zero_hash(hash_phone("+60123456789"))

    def test_same_hash_ignores_case(self):
        value = hash_phone("+60123456789")
        assert same_hash(value, value.upper().replace("0X", "0x"))
        assert not same_hash(value, None)

    def test_wallet_address_shape(self):
        assert is_wallet_address("0x" + "ab" * 20)
        assert not is_wallet_address("0x1234")
        assert not is_identity_hash("0x" + "ab" * 20)

    def test_mask_phone_hides_middle_digits(self):
        masked = mask_phone("+60123456789")
        assert masked.startswith("+601")
        assert masked.endswith("789")
        assert "2345" not in masked

    def test_hasher_binds_default_country_code(self):
        hasher = IdentityHasher("+60")
        assert hasher.normalize("012-345 6789") == "+60123456789"
        assert hasher.identity_for("012-345 6789") == hasher.hash("+60123456789")
