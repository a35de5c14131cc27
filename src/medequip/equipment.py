"""
Equipment directory boundary

Equipment records are owned by a separate registry; the workflow engine
only needs to know whether an id exists, which organization owns it, and
how many records there are (for platform analytics).
"""

from typing import Protocol


class EquipmentDirectory(Protocol):
    """Read-only view of the external equipment registry"""

    def owner_of(self, equipment_id: str) -> str | None:
        """Organization id owning the equipment, None if unknown"""
        ...

    def count(self) -> int:
        """Total number of equipment records"""
        ...


class InMemoryEquipmentDirectory:
    """Dictionary-backed directory for tests, demos and the CLI"""

    def __init__(self, records: dict[str, str] | None = None) -> None:
        self._owners: dict[str, str] = dict(records or {})

    def register(self, equipment_id: str, organization_id: str) -> None:
        self._owners[equipment_id] = organization_id

    def owner_of(self, equipment_id: str) -> str | None:
        return self._owners.get(equipment_id)

    def count(self) -> int:
        return len(self._owners)
