"""
Comparison selection kept for the duration of a browsing session.

The selection is a short ordered list of record ids shown side by side. It
lives outside ImageRecord and is serialized on its own (a JSON list of ids)
so a UI can restore it.
"""

import json
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field

MAX_COMPARE_SLOTS = 4


@dataclass
class CompareSelection:
    """Up to ``MAX_COMPARE_SLOTS`` selected record ids, packed to the front."""

    ids: list[str] = field(default_factory=list)
    on_select: Callable[[list[str]], None] | None = field(default=None, repr=False, compare=False)

    def __post_init__(self) -> None:
        self.ids = _dedupe(self.ids)[:MAX_COMPARE_SLOTS]

    @property
    def slots(self) -> list[str | None]:
        """Fixed-size view with empty slots as None."""
        return self.ids + [None] * (MAX_COMPARE_SLOTS - len(self.ids))

    @property
    def primary(self) -> str | None:
        """Id in the first slot, used as the base for quick comparisons."""
        return self.ids[0] if self.ids else None

    def is_selected(self, record_id: str) -> bool:
        return record_id in self.ids

    def toggle(self, record_id: str) -> list[str]:
        """
        Select or deselect a record.

        Selecting a selected id removes it and packs the rest to the front.
        Selecting a new id fills the first empty slot, or replaces the last
        slot when all are taken.

        Returns:
            The new selection
        """
        if record_id in self.ids:
            self.ids = [existing for existing in self.ids if existing != record_id]
        elif len(self.ids) < MAX_COMPARE_SLOTS:
            self.ids = self.ids + [record_id]
        else:
            self.ids = self.ids[:-1] + [record_id]

        self._notify()
        return list(self.ids)

    def set_slot(self, index: int, record_id: str) -> list[str]:
        """Put a record into a given slot (used by quick comparisons)."""
        if not 0 <= index < MAX_COMPARE_SLOTS:
            raise IndexError(f"Slot {index} out of range")
        slots = [existing for existing in self.slots if existing != record_id]
        slots.insert(index, record_id)
        self.ids = [existing for existing in slots if existing is not None][:MAX_COMPARE_SLOTS]
        self._notify()
        return list(self.ids)

    def clear(self) -> None:
        self.ids = []
        self._notify()

    def to_json(self) -> str:
        return json.dumps(self.ids)

    @classmethod
    def from_json(
        cls,
        raw: str | None,
        known_ids: Iterable[str] | None = None,
        on_select: Callable[[list[str]], None] | None = None,
    ) -> "CompareSelection":
        """
        Restore a saved selection.

        Ids missing from ``known_ids`` (deleted records) are dropped; unreadable
        input yields an empty selection.
        """
        ids: list[str] = []
        if raw:
            try:
                loaded = json.loads(raw)
            except json.JSONDecodeError:
                loaded = []
            if isinstance(loaded, list):
                ids = [item for item in loaded if isinstance(item, str)]

        if known_ids is not None:
            known = set(known_ids)
            ids = [record_id for record_id in ids if record_id in known]

        return cls(ids=ids, on_select=on_select)

    def _notify(self) -> None:
        if self.on_select is not None:
            self.on_select(list(self.ids))


def _dedupe(ids: Iterable[str]) -> list[str]:
    seen: set[str] = set()
    result = []
    for record_id in ids:
        if record_id not in seen:
            seen.add(record_id)
            result.append(record_id)
    return result
