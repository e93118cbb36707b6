"""Skirmish - turn-based tactical combat rules engine."""

__version__ = "0.1.0"
