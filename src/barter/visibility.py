"""Read-side exclusion sets applied to everything a viewer is shown."""
from __future__ import annotations

from typing import Optional, Set

from .database import Database


class VisibilityFilter:
    """Computes who and what a viewer must never see.

    Nothing is cached between calls; a block or rejection takes effect on the
    very next read.
    """

    def __init__(self, db: Database) -> None:
        self.db = db

    async def excluded_owners(self, viewer_id: str) -> Set[str]:
        blocked_by_me, blocked_me = await self.db.block_relations(viewer_id)
        return blocked_by_me | blocked_me

    async def excluded_items(self, viewer_id: str, lens_item_id: Optional[str] = None) -> Set[str]:
        return await self.db.rejected_item_ids(viewer_id, lens_item_id)

    async def is_hidden_from(self, viewer_id: str, owner_id: str) -> bool:
        return owner_id in await self.excluded_owners(viewer_id)
