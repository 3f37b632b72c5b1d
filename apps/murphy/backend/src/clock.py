from __future__ import annotations

from datetime import datetime, timezone


def utc_now() -> datetime:
    """Timezone-aware current instant; the only place the wall clock is read."""
    return datetime.now(timezone.utc)
