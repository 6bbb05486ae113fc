"""
Change polling.

Clients poll with the lastUpdate they were last given. The freshness
index answers "has anything changed" from memory; only when it has does
the devices collection get a range query, and only for the changed
subset.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List

from fleetsync.freshness import FreshnessIndex
from fleetsync.store import DocumentStore
from fleetsync.timestamps import as_utc, format_timestamp

logger = logging.getLogger(__name__)


@dataclass
class UpdateCheck:
    """Result of one poll."""
    needs_update: bool
    last_update: datetime
    updated_devices: List[Dict[str, Any]] = field(default_factory=list)
    icon_map: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict:
        result = {
            'needsUpdate': self.needs_update,
            'lastUpdate': format_timestamp(self.last_update),
            'iconMap': self.icon_map,
        }
        if self.needs_update:
            result['updatedDevices'] = self.updated_devices
        return result


class ChangeQuery:
    """Answers check-for-updates polls."""

    def __init__(self, store: DocumentStore, freshness: FreshnessIndex):
        self.store = store
        self.freshness = freshness

    def check_for_updates(self, client_last_update: datetime) -> UpdateCheck:
        client_last_update = as_utc(client_last_update)
        last_checked = self.freshness.last_checked

        needs_update = client_last_update < last_checked
        updated_devices = []
        if needs_update:
            updated_devices = self.store.find_devices_updated_since(client_last_update)
            logger.debug(
                f'{len(updated_devices)} devices changed since {format_timestamp(client_last_update)}'
            )

        return UpdateCheck(
            needs_update=needs_update,
            last_update=last_checked,
            updated_devices=updated_devices,
            icon_map=self.store.icon_map(),
        )
