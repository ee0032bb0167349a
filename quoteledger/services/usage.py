"""Monthly agreement quotas per plan."""
import logging
from datetime import datetime
from typing import Dict, Optional

from sqlalchemy.orm import Session

from quoteledger.models.domain import MonthlyUsage, User
from quoteledger.models.enums import UserPlan
from quoteledger.utils.clock import utcnow

logger = logging.getLogger(__name__)

# None means unlimited
PLAN_LIMITS: Dict[UserPlan, Optional[int]] = {
    UserPlan.FREE: 3,
    UserPlan.SOLO: 20,
    UserPlan.BUSINESS: None,
}


def year_month(when: Optional[datetime] = None) -> str:
    when = when or utcnow()
    return f"{when.year:04d}-{when.month:02d}"


class UsageTracker:
    """Counts agreements created per contractor per calendar month."""

    def __init__(self, db: Session):
        self.db = db

    def get_or_create(self, user_id: str, when: Optional[datetime] = None) -> MonthlyUsage:
        period = year_month(when)
        usage = self.db.query(MonthlyUsage).filter(
            MonthlyUsage.user_id == user_id,
            MonthlyUsage.year_month == period
        ).first()
        if usage is None:
            usage = MonthlyUsage(user_id=user_id, year_month=period, created_count=0)
            self.db.add(usage)
            self.db.flush()
        return usage

    def limit_reached_message(self, user: User) -> Optional[str]:
        """None if the user may create another agreement this month."""
        limit = PLAN_LIMITS[user.plan]
        if limit is None:
            return None

        usage = self.get_or_create(user.id)
        if usage.created_count >= limit:
            logger.warning("Plan limit reached for user %s (%s, %d)", user.id, user.plan.value, limit)
            return (
                f"Plan limit reached. {user.plan.value} plan allows {limit} agreements per month. "
                "Please upgrade your plan to create more agreements."
            )
        return None

    def increment(self, user_id: str) -> None:
        usage = self.get_or_create(user_id)
        usage.created_count += 1

    def current(self, user: User) -> dict:
        usage = self.get_or_create(user.id)
        return {"count": usage.created_count, "limit": PLAN_LIMITS[user.plan], "plan": user.plan}
