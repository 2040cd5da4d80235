"""Error taxonomy for reminder scheduling and notification dispatch."""

from typing import List, Optional


class ReminderError(Exception):
    """Base class for all reminder errors."""


class NoValidTimes(ReminderError):
    """No reminder time survived validation; the save is rejected wholesale."""

    def __init__(self, rejected: Optional[List[str]] = None):
        self.rejected = list(rejected or [])
        super().__init__("No valid reminder times provided")


class StoreError(ReminderError):
    """Persisting or deleting reminder records failed (fully or partially)."""

    def __init__(self, message: str, persisted: int = 0):
        self.persisted = persisted
        super().__init__(message)


class ChannelError(ReminderError):
    """A notification channel could not deliver."""

    soft = False

    def __init__(self, channel: str, message: str):
        self.channel = channel
        super().__init__(f"[{channel}] {message}")


class ChannelNotConfigured(ChannelError):
    """Channel unavailable for this user/deployment. Degrades, never fails the action."""

    soft = True


class InvalidRecipient(ChannelError):
    pass


class ChannelTransportError(ChannelError):
    pass
