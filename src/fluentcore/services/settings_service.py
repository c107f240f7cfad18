"""Service for user and per-site settings kept in the synced namespace."""
import logging
from typing import Any, Dict, Mapping

from fluentcore.config import DEFAULT_USER_SETTINGS, SITE_SETTINGS, USER_SETTINGS
from fluentcore.services.storage_service import PersistentStore

logger = logging.getLogger(__name__)


class SettingsService:
    """Service for managing user preferences."""

    def __init__(self, store: PersistentStore):
        """Initialize the service with the persistent store."""
        self.store = store

    async def get_settings(self) -> Dict[str, Any]:
        """Get user settings merged over the defaults."""
        stored = await self.store.get(USER_SETTINGS, {})
        return {**DEFAULT_USER_SETTINGS, **(stored or {})}

    async def update_settings(self, updates: Mapping[str, Any]) -> Dict[str, Any]:
        current = await self.get_settings()
        updated = {**current, **updates}
        self.store.set(USER_SETTINGS, updated)
        logger.info("User settings updated: %s", sorted(updates))
        return updated

    async def get_site_settings(self, hostname: str) -> Dict[str, Any]:
        all_settings = await self.store.get(SITE_SETTINGS, {})
        return dict((all_settings or {}).get(hostname) or {"enabled": True})

    async def update_site_settings(self, hostname: str, updates: Mapping[str, Any]) -> Dict[str, Any]:
        all_settings = dict(await self.store.get(SITE_SETTINGS, {}) or {})
        site = {**(all_settings.get(hostname) or {"enabled": True}), **updates}
        all_settings[hostname] = site
        self.store.set(SITE_SETTINGS, all_settings)
        return site
