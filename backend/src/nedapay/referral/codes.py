"""Referral code generation and validation.

A referral code is laid out as ``[shard:1][counter:5][checksum:1]``:

- shard: a random alphabet symbol selecting one of 32 counters
- counter: the shard's freshly incremented value, base-32, zero-padded
- checksum: sum of the alphabet indices of the first six characters, mod 32

Codes are 7 characters long. The column that stores them has room for an
eighth character which is reserved and never populated.
"""

import random
import secrets

from nedapay.exceptions import CounterExhausted
from nedapay.logging_config import get_logger
from nedapay.referral.counters import CounterStore

logger = get_logger(__name__)

# Digits 2-9 and uppercase letters without I and O
ALPHABET = "23456789ABCDEFGHJKLMNPQRSTUVWXYZ"
BASE = len(ALPHABET)  # 32

COUNTER_WIDTH = 5
CODE_LENGTH = 1 + COUNTER_WIDTH + 1  # 7
RESERVED_LENGTH = 8  # storage width, spare slot unused

MAX_COUNTER = BASE ** COUNTER_WIDTH - 1  # 33,554,431

_INDEX = {char: i for i, char in enumerate(ALPHABET)}


def encode_counter(value: int, width: int = COUNTER_WIDTH) -> str:
    """Encode a non-negative integer in base 32, left-padded to ``width``.

    Raises:
        ValueError: If the value is negative or does not fit in ``width`` digits
    """
    if value < 0:
        raise ValueError(f"Counter value must be non-negative, got {value}")
    if value >= BASE ** width:
        raise ValueError(f"Counter value {value} does not fit in {width} digits")

    digits = []
    for _ in range(width):
        value, remainder = divmod(value, BASE)
        digits.append(ALPHABET[remainder])
    return "".join(reversed(digits))


def decode_counter(segment: str) -> int:
    """Decode a base-32 counter segment back to its integer value."""
    value = 0
    for char in segment:
        if char not in _INDEX:
            raise ValueError(f"Character {char!r} is not in the code alphabet")
        value = value * BASE + _INDEX[char]
    return value


def checksum_char(partial: str) -> str:
    """Compute the checksum symbol for the shard + counter prefix."""
    total = 0
    for char in partial:
        if char not in _INDEX:
            raise ValueError(f"Character {char!r} is not in the code alphabet")
        total += _INDEX[char]
    return ALPHABET[total % BASE]


def normalize_code(code: str | None) -> str:
    """Uppercase and strip user input before lookup."""
    if not code:
        return ""
    return code.strip().upper()


def is_valid_code(code: str | None) -> bool:
    """Check length, alphabet and checksum of a referral code.

    Detects any single-character corruption. Does not check whether the
    code has actually been issued.
    """
    if not code or len(code) != CODE_LENGTH:
        return False
    if any(char not in _INDEX for char in code):
        return False
    return checksum_char(code[:-1]) == code[-1]


def parse_code(code: str) -> tuple[str, int]:
    """Split a valid code into its shard symbol and counter value.

    Raises:
        ValueError: If the code fails validation
    """
    if not is_valid_code(code):
        raise ValueError(f"Invalid referral code: {code!r}")
    return code[0], decode_counter(code[1:1 + COUNTER_WIDTH])


def build_code(shard: str, value: int) -> str:
    """Assemble a code from a shard symbol and a counter value.

    Raises:
        CounterExhausted: If the value no longer fits in the counter segment
    """
    if shard not in _INDEX or len(shard) != 1:
        raise ValueError(f"Shard must be a single alphabet symbol, got {shard!r}")
    if value < 0 or value > MAX_COUNTER:
        raise CounterExhausted(shard, value)

    partial = shard + encode_counter(value)
    return partial + checksum_char(partial)


def generate_code(store: CounterStore, rng: random.Random | None = None) -> str:
    """Generate a fresh referral code.

    Picks a shard uniformly at random, atomically bumps that shard's counter
    in ``store`` and encodes the result. Uniqueness across the system is
    enforced by the unique index where the code is persisted; callers retry
    on collision.

    Args:
        store: Counter store providing atomic per-shard increments
        rng: Random source for shard selection (defaults to the OS CSPRNG)

    Returns:
        A 7-character referral code

    Raises:
        StorageUnavailable: If the counter could not be incremented
        CounterExhausted: If the selected shard has run out of values
    """
    rng = rng or secrets.SystemRandom()
    shard = rng.choice(ALPHABET)

    value = store.increment(shard)
    code = build_code(shard, value)

    logger.debug("referral_code_generated", shard=shard, counter=value, code=code)
    return code
