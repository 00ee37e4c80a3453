"""Post-trade reviews and the window during which they may be written."""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import List, Optional, Tuple

from .database import Database
from .errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from .models import TRADE_COMPLETED, Eligibility, Review, TradeConversation, utcnow


class ReviewWindow:
    def __init__(self, db: Database, *, window_days: int = 30, comment_limit: int = 140) -> None:
        self.db = db
        self.window_days = window_days
        self.comment_limit = comment_limit

    def days_left(self, conversation: TradeConversation, now: datetime) -> int:
        if conversation.status != TRADE_COMPLETED or conversation.completed_at is None:
            return 0
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        elapsed_days = max(0, (now - conversation.completed_at) // timedelta(days=1))
        return max(0, self.window_days - elapsed_days)

    async def is_eligible(
        self, conversation_id: str, reviewer_id: str, *, now: Optional[datetime] = None
    ) -> Eligibility:
        conversation = await self.db.get_conversation(conversation_id)
        if conversation is None:
            return Eligibility(can_review=False, days_left=0)

        days_left = self.days_left(conversation, now or utcnow())
        can_review = (
            days_left > 0
            and conversation.is_participant(reviewer_id)
            and await self.db.get_review(conversation_id, reviewer_id) is None
        )
        return Eligibility(can_review=can_review, days_left=days_left)

    def _clean_input(self, rating: int, comment: Optional[str]) -> Optional[str]:
        if isinstance(rating, bool) or not isinstance(rating, int) or not 1 <= rating <= 5:
            raise ValidationError("Rating must be a whole number from 1 to 5")
        if comment is None:
            return None
        comment = comment.strip()
        if len(comment) > self.comment_limit:
            raise ValidationError(f"Comments are limited to {self.comment_limit} characters")
        return comment or None

    async def submit_review(
        self,
        conversation_id: str,
        reviewer_id: str,
        rating: int,
        comment: Optional[str] = None,
        *,
        now: Optional[datetime] = None,
    ) -> Review:
        """Store a review after re-checking eligibility at write time."""

        comment = self._clean_input(rating, comment)
        now = now or utcnow()

        conversation = await self.db.get_conversation(conversation_id)
        if conversation is None:
            raise NotFoundError(f"Trade {conversation_id} not found")
        if not conversation.is_participant(reviewer_id):
            raise AuthorizationError("Only trade participants can leave a review")
        if conversation.status != TRADE_COMPLETED:
            raise ConflictError("Only completed trades can be reviewed")
        if self.days_left(conversation, now) <= 0:
            raise ConflictError(f"The {self.window_days} day review window has closed")

        review = Review(
            trade_conversation_id=conversation_id,
            reviewer_id=reviewer_id,
            reviewee_id=conversation.other_party(reviewer_id),
            rating=rating,
            comment=comment,
            created_at=now,
        )
        if not await self.db.add_review(review):
            raise ConflictError("You have already reviewed this trade")
        return review

    async def reviews_for_trade(self, conversation_id: str) -> List[Review]:
        return await self.db.list_reviews(conversation_id=conversation_id)

    async def reviews_for_user(self, reviewee_id: str) -> List[Review]:
        return await self.db.list_reviews(reviewee_id=reviewee_id)

    async def rating_summary(self, reviewee_id: str) -> Tuple[float, int]:
        return await self.db.rating_summary(reviewee_id)
