"""Error types raised by the referral and webhook subsystems."""


class NedapayError(Exception):
    """Base class for all nedapay errors."""

    retryable: bool = False


class StorageUnavailable(NedapayError):
    """The counter store could not be incremented."""

    retryable = True

    def __init__(self, shard: str, reason: str = ""):
        self.shard = shard
        self.reason = reason
        message = f"Counter store unavailable for shard {shard!r}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class CounterExhausted(NedapayError):
    """A shard counter ran past the largest encodable value."""

    def __init__(self, shard: str, value: int):
        self.shard = shard
        self.value = value
        super().__init__(f"Counter for shard {shard!r} exhausted at {value}")


class CollisionRejected(NedapayError):
    """A generated referral code already exists in persistent storage."""

    retryable = True

    def __init__(self, code: str):
        self.code = code
        super().__init__(f"Referral code {code!r} already taken")


class InvalidReferralCode(NedapayError):
    """A referral code is malformed, unknown or inactive."""

    def __init__(self, code: str):
        self.code = code
        super().__init__(f"Invalid referral code: {code!r}")


class InvalidSignature(NedapayError):
    """A webhook signature is missing or does not match the body."""

    def __init__(self, provider: str, reason: str = "invalid signature"):
        self.provider = provider
        self.reason = reason
        super().__init__(f"{provider}: {reason}")


class MissingSecret(NedapayError):
    """A shared secret required for verification is not configured."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Secret not configured: {name}")
