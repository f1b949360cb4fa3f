from __future__ import annotations

from dataclasses import dataclass


@dataclass
class GenerationResult:
    """
    Stable result contract handed back to callers of the coordinator.

    Exactly one of the following holds:

    * ``success`` is ``True`` and ``text`` carries the final text.
    * ``success`` is ``False`` and ``error`` carries a user-displayable
      message (``error_category`` tells the caller which kind).
    * ``cancelled`` is ``True`` -- the caller asked for it, nothing to show.
    """

    success: bool
    text: str | None = None
    error: str | None = None
    error_category: str | None = None
    cancelled: bool = False
    entries_dropped: int | None = None
    total_entries: int | None = None
    provider: str | None = None
    model: str | None = None


@dataclass(frozen=True)
class ContextBundle:
    rendered: str
    dropped_entry_count: int = 0
    total_entry_count: int = 0
    truncated: bool = False

    @property
    def is_empty(self) -> bool:
        return not self.rendered
