"""Lifecycle orchestration for disposable lakehouse lab environments."""

__version__ = "0.1.0"
