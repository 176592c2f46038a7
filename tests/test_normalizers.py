from __future__ import annotations

import pytest

from batch_geocoding.geocoding import AddressNormalizer, normalize_key


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("Main St, City", "main st, city"),
        ("main   st, city", "main st, city"),
        ("  MAIN\tST,\n City  ", "main st, city"),
        ("", ""),
        ("   ", ""),
    ],
)
def test_normalize_key(raw, expected):
    assert normalize_key(raw) == expected


def test_case_and_spacing_variants_share_a_key():
    assert normalize_key("Rua  Augusta, 100") == normalize_key("rua augusta,   100")


def test_distinct_addresses_keep_distinct_keys():
    assert normalize_key("Rua Augusta, 100") != normalize_key("Rua Augusta, 101")


def test_address_normalizer_matches_key():
    normalizer = AddressNormalizer()

    assert normalizer.normalize("  A   B ") == normalize_key("a b") == "a b"
