"""Feature flags du moteur de synchronisation.

Defaults: OFF. Values can be toggled via environment variables.

Env vars (truthy if in {"1","true","yes","on"}, case-insensitive):
- SYNC_DISTRIBUTE_INLINE: run distribution items in-process instead of sending Celery tasks
- SYNC_AUTOREPAIR_ON_CHANGE: run the low-risk repairer on every item change
"""

from __future__ import annotations

import os

_TRUE = {"1", "true", "yes", "on"}


def _get_bool(*env_keys: str, default: bool = False) -> bool:
    """Read a boolean from env.

    Args:
        env_keys: Environment variable names to try in order.
        default: Default value if not found.
    Returns:
        bool: Effective flag value.
    """
    for k in env_keys:
        v = os.getenv(k)
        if v is not None:
            return str(v).strip().lower() in _TRUE
    return default


def ff_distribute_inline() -> bool:
    """Return whether distribution items run synchronously (default OFF)."""
    return _get_bool("SYNC_DISTRIBUTE_INLINE", "FF_SYNC_DISTRIBUTE_INLINE", default=False)


def ff_autorepair_on_change() -> bool:
    """Return whether low-risk repairs run on every change (default OFF)."""
    return _get_bool("SYNC_AUTOREPAIR_ON_CHANGE", "FF_SYNC_AUTOREPAIR_ON_CHANGE", default=False)
