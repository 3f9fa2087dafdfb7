"""nedapay backend: referral codes and provider webhook verification."""

__version__ = "1.0.0"
