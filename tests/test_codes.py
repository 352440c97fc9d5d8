"""Unit tests for short-code generation utilities."""

import pytest

from app.codes import (
    ALPHABET,
    DEFAULT_CODE_LENGTH,
    generate_batch,
    generate_short_code,
    is_valid_short_code,
    sanitize_custom_code,
)


def test_alphabet_has_62_distinct_symbols() -> None:
    assert len(ALPHABET) == 62
    assert len(set(ALPHABET)) == 62


def test_generate_short_code_default_length() -> None:
    assert len(generate_short_code()) == DEFAULT_CODE_LENGTH == 7


@pytest.mark.parametrize("length", [1, 4, 10, 32])
def test_generate_short_code_custom_length(length: int) -> None:
    assert len(generate_short_code(length)) == length


def test_generate_short_code_only_alphabet_characters() -> None:
    for _ in range(200):
        assert all(c in ALPHABET for c in generate_short_code())


@pytest.mark.parametrize("length", [0, -3, 2.5, True])
def test_generate_short_code_rejects_bad_length(length) -> None:
    with pytest.raises(ValueError):
        generate_short_code(length)


def test_generate_batch_returns_distinct_codes() -> None:
    batch = generate_batch(500, 7)
    assert len(batch) == 500
    assert all(len(code) == 7 for code in batch)


def test_generate_batch_can_exhaust_tiny_space() -> None:
    # 62 single-character codes exist; asking for all of them must terminate.
    assert generate_batch(62, 1) == set(ALPHABET)


def test_generate_batch_rejects_impossible_request() -> None:
    with pytest.raises(ValueError):
        generate_batch(63, 1)


@pytest.mark.parametrize(
    ("code", "expected"),
    [
        ("abc123", True),
        ("abcd", True),
        ("abcdefghij", True),
        ("abc", False),
        ("abcdefghijk", False),
        ("abc@123", False),
        ("", False),
        (None, False),
        (1234, False),
    ],
)
def test_is_valid_short_code(code, expected: bool) -> None:
    assert is_valid_short_code(code) is expected


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("my-link", "mylink"),
        ("hello@123", "hello123"),
        ("  spaced  ", "spaced"),
        ("   test   ", "test"),
        ("ab", None),
        ("!!!", None),
        ("", None),
        (None, None),
    ],
)
def test_sanitize_custom_code(raw, expected) -> None:
    assert sanitize_custom_code(raw) == expected
