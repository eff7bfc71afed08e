"""Sourdough bake logger: append-only JSONL event log for bread bakes."""

__version__ = "0.1.0"
