"""
Newsletter Registry

Maps newsletter slugs to upstream publication ids.

Newsletter ids in the dashboard are a name slug plus a random suffix
(`memorandum-lq3abc5`), so resolution matches on slug prefix; the longest
matching prefix wins. Defaults come from configuration
(BEEHIIV_PUB_* env vars) and cannot be overridden or removed; user-added
entries live in the snapshot store.
"""

import logging
from typing import Dict, List, Optional, Tuple

from backend.core.config import Settings
from backend.core.exceptions import UnknownNewsletter
from backend.models import NewsletterEntry
from backend.services.snapshot_store import SnapshotStore

# Configure module logger
logger = logging.getLogger(__name__)


class NewsletterConfigError(ValueError):
    """A registry change that is not allowed (e.g. overriding a default)."""


def mask_pub_id(pub_id: Optional[str]) -> str:
    """'***' plus the last 6 characters; '' when there is no id."""
    if not pub_id:
        return ''
    return '***' + pub_id[-6:]


def match_prefix(newsletter: str, prefixes: Dict[str, str]) -> Optional[str]:
    """Publication id of the longest prefix matching `newsletter`."""
    best: Optional[Tuple[int, str]] = None
    for prefix, pub_id in prefixes.items():
        if not pub_id:
            continue
        if newsletter == prefix or newsletter.startswith(prefix):
            if best is None or len(prefix) > best[0]:
                best = (len(prefix), pub_id)
    return best[1] if best else None


class NewsletterRegistry:
    """Configured defaults plus persisted user entries."""

    def __init__(self, settings: Settings, store: SnapshotStore) -> None:
        self.settings = settings
        self.store = store

    @property
    def defaults(self) -> Dict[str, Optional[str]]:
        return self.settings.default_publications

    async def _all(self) -> Dict[str, str]:
        merged = await self.store.load_newsletters()
        # defaults always win over stored entries with the same slug
        merged.update({slug: pub_id for slug, pub_id in self.defaults.items() if pub_id})
        return merged

    async def resolve(self, newsletter: Optional[str]) -> str:
        """
        Publication id for a newsletter id or slug.

        Raises:
            UnknownNewsletter: No configured prefix matches
        """
        pub_id = match_prefix(newsletter or '', await self._all())
        if pub_id is None:
            raise UnknownNewsletter(newsletter or '')
        return pub_id

    async def list_entries(self) -> List[NewsletterEntry]:
        """Defaults first (in configuration order), then user entries by slug."""
        entries = [
            NewsletterEntry(slug=slug, pubId=mask_pub_id(pub_id), hasPubId=bool(pub_id), isDefault=True)
            for slug, pub_id in self.defaults.items()
        ]
        stored = await self.store.load_newsletters()
        entries.extend(
            NewsletterEntry(slug=slug, pubId=mask_pub_id(pub_id), hasPubId=bool(pub_id), isDefault=False)
            for slug, pub_id in sorted(stored.items())
            if slug not in self.defaults
        )
        return entries

    async def add(self, slug: str, pub_id: str) -> NewsletterEntry:
        """
        Register a user newsletter.

        Raises:
            NewsletterConfigError: Missing fields, or the slug is a default
        """
        slug = (slug or '').strip()
        pub_id = (pub_id or '').strip()
        if not slug or not pub_id:
            raise NewsletterConfigError('slug and pubId are required')
        if slug in self.defaults:
            raise NewsletterConfigError(f'Cannot override default newsletter: {slug}')

        await self.store.save_newsletter(slug, pub_id)
        logger.info(f"Registered newsletter {slug}")
        return NewsletterEntry(slug=slug, pubId=mask_pub_id(pub_id), hasPubId=True, isDefault=False)

    async def remove(self, slug: str) -> bool:
        """
        Unregister a user newsletter; False if it was not registered.

        Raises:
            NewsletterConfigError: The slug is a default
        """
        if slug in self.defaults:
            raise NewsletterConfigError(f'Cannot remove default newsletter: {slug}')
        removed = await self.store.delete_newsletter(slug)
        if removed:
            logger.info(f"Removed newsletter {slug}")
        return removed
