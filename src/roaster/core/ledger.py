from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Literal

from sqlalchemy.orm import Session

from roaster.db.repositories import AccountRepository
from roaster.errors import QuotaExceededError
from roaster.types import QuotaStatus

logger = logging.getLogger(__name__)

UNLIMITED = -1
MONTHLY_LIMITS: dict[str, int] = {
    "free": 3,
    "plus": 100,
    "premium": UNLIMITED,
}

BonusCreditPolicy = Literal["after_quota", "before_quota"]


def months_between(earlier: datetime, later: datetime) -> int:
    return (later.year - earlier.year) * 12 + (later.month - earlier.month)


class UsageLedger:
    """Monthly tier quota plus non-expiring bonus credits for one account at a time.

    ``policy`` decides which allowance a chargeable operation draws from:
    ``after_quota`` spends bonus credits only once the month's tier quota is
    used up; ``before_quota`` spends bonus credits first and leaves the
    monthly counter untouched while any remain.
    """

    def __init__(self, session: Session, *, policy: BonusCreditPolicy = "after_quota"):
        self.accounts = AccountRepository(session)
        self.policy = policy

    def check_quota(self, account_id: int, *, now: datetime | None = None) -> QuotaStatus:
        now = now or datetime.now(UTC)
        account = self.accounts.require(account_id)

        if months_between(account.last_reset, now) >= 1:
            logger.info("Monthly usage rollover account_id=%s", account_id)
            self.accounts.reset_monthly(account_id, now)
            self.accounts.session.refresh(account)

        limit = MONTHLY_LIMITS.get(account.tier, MONTHLY_LIMITS["free"])
        used = account.monthly_usage
        unlimited = limit == UNLIMITED
        return QuotaStatus(
            allowed=unlimited or used < limit or account.bonus_credits > 0,
            remaining=UNLIMITED if unlimited else max(0, limit - used),
            used=used,
            limit=limit,
            tier=account.tier,
            bonus_credits=account.bonus_credits,
        )

    def require_quota(self, account_id: int, *, now: datetime | None = None) -> QuotaStatus:
        status = self.check_quota(account_id, now=now)
        if not status.allowed:
            raise QuotaExceededError(
                f"{status.tier} plan limit of {status.limit} reached for this month",
                quota=status.model_dump(),
            )
        return status

    def record_usage(self, account_id: int) -> None:
        account = self.accounts.require(account_id)
        limit = MONTHLY_LIMITS.get(account.tier, MONTHLY_LIMITS["free"])
        quota_left = limit == UNLIMITED or account.monthly_usage < limit

        if self.policy == "before_quota" and account.bonus_credits > 0:
            self.accounts.increment_usage(account_id, monthly=False, consume_bonus=True)
        elif not quota_left and account.bonus_credits > 0:
            self.accounts.increment_usage(account_id, monthly=True, consume_bonus=True)
        else:
            self.accounts.increment_usage(account_id, monthly=True, consume_bonus=False)
        logger.debug("Recorded usage account_id=%s policy=%s", account_id, self.policy)
