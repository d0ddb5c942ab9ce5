"""Private state codec; the host-side store lives in ``state_store``."""

from .private_state import PrivateState, compute_expiry, ephemeral_changed, record_ephemeral

__all__ = ["PrivateState", "compute_expiry", "ephemeral_changed", "record_ephemeral"]
