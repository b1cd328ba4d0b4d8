"""WeCarry request lifecycle engine."""

__version__ = "0.1.0"
