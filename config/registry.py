"""
config/registry.py
Logical service name → base URL(s). Read from settings so deployments
can point the gateway and internal callers anywhere without code changes.
"""

import itertools
from typing import Dict, Iterator, List

from config.settings import settings

DISPLAY_NAMES = {
    "users": "User",
    "bookings": "Booking",
    "payments": "Payment",
    "notifications": "Notification",
}


class ServiceRegistry:
    """Round-robins over the configured targets of each logical service."""

    def __init__(self, targets: Dict[str, List[str]]):
        self._targets = {name: list(urls) for name, urls in targets.items() if urls}
        self._cursors: Dict[str, Iterator[str]] = {
            name: itertools.cycle(urls) for name, urls in self._targets.items()
        }

    @classmethod
    def from_settings(cls) -> "ServiceRegistry":
        return cls(settings.service_urls)

    def __contains__(self, name: str) -> bool:
        return name in self._targets

    def resolve(self, name: str) -> str:
        """Next base URL for `name`. Raises KeyError for unknown services."""
        if name not in self._cursors:
            raise KeyError(name)
        return next(self._cursors[name])

    def display_name(self, name: str) -> str:
        return DISPLAY_NAMES.get(name, name.capitalize())

    def as_dict(self) -> dict:
        return {
            name: {"name": self.display_name(name), "urls": urls}
            for name, urls in self._targets.items()
        }
