"""Block list management."""
from __future__ import annotations

import logging
from typing import List

from .database import Database
from .errors import ValidationError
from .models import Block, to_iso, utcnow

_log = logging.getLogger(__name__)


class BlockService:
    def __init__(self, db: Database) -> None:
        self.db = db

    async def block_user(self, blocker_id: str, blocked_id: str) -> bool:
        """Block ``blocked_id``; returns ``False`` if the block already existed."""

        if blocker_id == blocked_id:
            raise ValidationError("Users cannot block themselves")
        created = await self.db.add_block(blocker_id, blocked_id, to_iso(utcnow()))
        if created:
            _log.info("User %s blocked %s", blocker_id, blocked_id)
        return created

    async def unblock_user(self, blocker_id: str, blocked_id: str) -> bool:
        return await self.db.remove_block(blocker_id, blocked_id)

    async def blocked_users(self, blocker_id: str) -> List[Block]:
        return await self.db.list_blocks_by(blocker_id)
