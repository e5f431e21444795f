"""Persisted lab lifecycle state."""

from labctl.state.models import STATE_VERSION, ComponentRecord, LabState
from labctl.state.store import StateStore

__all__ = ["STATE_VERSION", "ComponentRecord", "LabState", "StateStore"]
