from __future__ import annotations


class WorkshopError(Exception):
    """Base class for every failure raised by the mirror core."""


class IoError(WorkshopError):
    pass


class ResolutionError(WorkshopError):
    def __init__(self, workshop_id: str, reason: str) -> None:
        super().__init__(f"Failed to resolve workshop item {workshop_id}: {reason}")
        self.workshop_id = str(workshop_id)
        self.reason = reason


class TransferFailed(WorkshopError):
    def __init__(self, item_id: str, reason: str) -> None:
        super().__init__(f"Transfer of workshop item {item_id} failed: {reason}")
        self.item_id = str(item_id)
        self.reason = reason


class CorruptStore(WorkshopError):
    pass


class ConfigError(WorkshopError):
    pass
