import random

import pytest

from nedapay.exceptions import CounterExhausted, StorageUnavailable
from nedapay.referral.codes import (
    ALPHABET,
    CODE_LENGTH,
    MAX_COUNTER,
    build_code,
    checksum_char,
    decode_counter,
    encode_counter,
    generate_code,
    is_valid_code,
    normalize_code,
    parse_code,
)
from nedapay.referral.counters import InMemoryCounterStore


class _FailingStore:
    def increment(self, shard):
        raise StorageUnavailable(shard, "connection refused")


class _FixedStore:
    def __init__(self, value):
        self.value = value

    def increment(self, shard):
        return self.value


def test_alphabet_has_32_unambiguous_symbols():
    assert len(ALPHABET) == 32
    assert len(set(ALPHABET)) == 32
    for ambiguous in "01IO":
        assert ambiguous not in ALPHABET


def test_encode_counter_pads_with_zero_symbol():
    assert encode_counter(0) == "22222"
    assert encode_counter(1) == "22223"
    assert encode_counter(31) == "2222Z"
    assert encode_counter(32) == "22232"
    assert encode_counter(MAX_COUNTER) == "ZZZZZ"


def test_encode_counter_rejects_out_of_range():
    with pytest.raises(ValueError):
        encode_counter(-1)
    with pytest.raises(ValueError):
        encode_counter(MAX_COUNTER + 1)


def test_decode_counter_inverts_encode():
    for value in (0, 1, 31, 32, 1023, 123456, MAX_COUNTER):
        assert decode_counter(encode_counter(value)) == value


def test_shard_a_counter_one():
    # A is index 8, "3" is index 1: checksum index 9 -> "B"
    assert build_code("A", 1) == "A22223B"


def test_checksum_is_index_sum_mod_32():
    partial = "ZZZZZZ"
    assert checksum_char(partial) == ALPHABET[(31 * 6) % 32]


def test_generated_code_checksum_matches():
    store = InMemoryCounterStore()
    for _ in range(500):
        code = generate_code(store)
        assert len(code) == CODE_LENGTH
        assert checksum_char(code[:6]) == code[6]
        assert is_valid_code(code)


def test_ten_thousand_codes_are_distinct():
    store = InMemoryCounterStore()
    rng = random.Random(42)
    codes = [generate_code(store, rng) for _ in range(10_000)]
    assert len(set(codes)) == 10_000


def test_generate_code_uses_rng_for_shard():
    store = InMemoryCounterStore()
    rng = random.Random(7)
    expected_shard = random.Random(7).choice(ALPHABET)

    code = generate_code(store, rng)

    assert code[0] == expected_shard
    assert store.peek(expected_shard) == 1
    assert parse_code(code) == (expected_shard, 1)


def test_generate_code_propagates_storage_failure():
    with pytest.raises(StorageUnavailable) as exc_info:
        generate_code(_FailingStore())
    assert exc_info.value.retryable


def test_counter_rollover_raises():
    with pytest.raises(CounterExhausted):
        generate_code(_FixedStore(MAX_COUNTER + 1))


def test_last_counter_value_still_encodes():
    code = generate_code(_FixedStore(MAX_COUNTER), random.Random(0))
    assert code[1:6] == "ZZZZZ"


def test_any_single_character_corruption_is_detected():
    code = build_code("K", 987654)
    for position in range(CODE_LENGTH):
        for replacement in ALPHABET:
            if replacement == code[position]:
                continue
            corrupted = code[:position] + replacement + code[position + 1:]
            assert not is_valid_code(corrupted), corrupted


@pytest.mark.parametrize("code", [None, "", "A22223", "A22223BX", "A22O23B", "a22223b"])
def test_is_valid_code_rejects_malformed(code):
    assert not is_valid_code(code)


def test_normalize_code():
    assert normalize_code("  a22223b ") == "A22223B"
    assert normalize_code(None) == ""
    assert is_valid_code(normalize_code("a22223b"))


def test_parse_code_rejects_invalid():
    with pytest.raises(ValueError):
        parse_code("A22223C")
