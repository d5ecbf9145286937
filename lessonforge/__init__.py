"""lessonforge - generate, compile and load interactive lesson components."""

__version__ = "0.1.0"
