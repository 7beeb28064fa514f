"""Microsoft 365 mail access audit and triage toolkit."""

__version__ = "0.1.0"
