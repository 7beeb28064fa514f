"""Cross-cutting pieces: logging configuration and the exception hierarchy."""
