"""Session state — the per-run flags shared between components."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any


@dataclass
class SessionState:
    """Mutable session flags, owned by one application context.

    Components receive this object explicitly; nothing reads it from
    module-level globals.
    """

    online: bool = True
    logged_in: bool = False
    voice_enabled: bool = True
    language: str = "bn"
    dark_mode: bool = False

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
