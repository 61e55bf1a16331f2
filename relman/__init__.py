"""relman: move, reversion and promote release artifacts."""

__version__ = "0.1.0"
