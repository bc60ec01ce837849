import pytest

from mpesa_gateway.phone import is_valid_mobile, normalize_phone


@pytest.mark.parametrize("raw, expected", [
    ("0710909198", "254710909198"),
    ("710909198", "254710909198"),
    ("254710909198", "254710909198"),
    ("+254 710 909 198", "254710909198"),
    ("0110-909-198", "254110909198"),
])
def test_normalize_phone(raw, expected):
    assert normalize_phone(raw) == expected


@pytest.mark.parametrize("raw", ["0710909198", "+254710909198", "710909198", "0110909198", "(0710) 909-198"])
def test_valid_mobile_numbers(raw):
    assert is_valid_mobile(raw)


@pytest.mark.parametrize("raw", [
    "",
    "12345",
    "0810909198",
    "2547109091981",
    "abc",
    "call me on 0710909198 pls",
    "ORD-0710909198",
    "0710909198x",
    "254+710909198",
])
def test_invalid_mobile_numbers(raw):
    assert not is_valid_mobile(raw)
