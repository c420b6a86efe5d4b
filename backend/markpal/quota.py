from __future__ import annotations
import calendar
import logging
from datetime import datetime
from typing import Dict, Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from .errors import InvalidRequestError, QuotaExceededError, TierRequiredError
from .models import AuthUser
from .settings import settings

logger = logging.getLogger(__name__)


TIER_LIMITS: Dict[str, int] = {
	"free": 5,
	"basic": 20,
	"pro": 50,
	"pro+": 999999,
}
DEFAULT_TIER = "free"


def tier_limit(tier: Optional[str]) -> int:
	return TIER_LIMITS.get((tier or DEFAULT_TIER).lower(), TIER_LIMITS[DEFAULT_TIER])


def add_month(when: datetime) -> datetime:
	month = when.month + 1
	year = when.year + (month - 1) // 12
	month = (month - 1) % 12 + 1
	day = min(when.day, calendar.monthrange(year, month)[1])
	return when.replace(year=year, month=month, day=day)


def _user(db: Session, username: str) -> AuthUser:
	row = db.get(AuthUser, username)
	if row is None:
		raise InvalidRequestError(f"Unknown user {username!r}")
	return row


def get_tier(db: Session, username: str) -> str:
	row = db.get(AuthUser, username)
	if row is None or not row.tier:
		return DEFAULT_TIER
	return row.tier


def get_remaining_quota(db: Session, username: str) -> int:
	row = db.get(AuthUser, username)
	return int(row.questions_left) if row is not None else 0


def decrement_quota(db: Session, username: str) -> int:
	"""Take one question from the user's allowance before marking starts.

	The conditional UPDATE makes concurrent requests from one user unable to
	spend the same question twice. Returns what is left afterwards.
	"""
	result = db.execute(
		update(AuthUser)
		.where(AuthUser.username == username, AuthUser.questions_left > 0)
		.values(questions_left=AuthUser.questions_left - 1)
	)
	db.commit()
	if not result.rowcount:
		raise QuotaExceededError()
	left = get_remaining_quota(db, username)
	logger.info("Quota decremented for %s (%d left)", username, left)
	return left


def refund_quota(db: Session, username: str) -> None:
	db.execute(
		update(AuthUser)
		.where(AuthUser.username == username)
		.values(questions_left=AuthUser.questions_left + 1)
	)
	db.commit()
	logger.info("Quota refunded for %s after a failed marking", username)


def require_tier(db: Session, username: str) -> str:
	tier = get_tier(db, username)
	if tier.lower() not in settings.extraction_tier_list:
		raise TierRequiredError()
	return tier


def apply_tier_change(db: Session, username: str, new_tier: str, *, now: Optional[datetime] = None) -> AuthUser:
	"""Move a user to ``new_tier``, crediting the difference in monthly allowance."""
	new_tier = (new_tier or "").strip().lower()
	if new_tier not in TIER_LIMITS:
		raise InvalidRequestError(f"Unknown tier {new_tier!r}")
	row = _user(db, username)
	old_tier = row.tier or DEFAULT_TIER
	left = max(0, int(row.questions_left or 0) + tier_limit(new_tier) - tier_limit(old_tier))
	row.tier = new_tier
	row.questions_left = left
	row.questions_reset_date = add_month(now or datetime.utcnow())
	db.add(row)
	db.commit()
	logger.info("Tier changed for %s: %s -> %s (%d questions left)", username, old_tier, new_tier, left)
	return row


def reset_monthly_quotas(db: Session, *, now: Optional[datetime] = None) -> int:
	"""Restore the monthly allowance of every user whose reset date has passed."""
	now = now or datetime.utcnow()
	rows = (
		db.query(AuthUser)
		.filter((AuthUser.questions_reset_date == None) | (AuthUser.questions_reset_date <= now))  # noqa: E711
		.all()
	)
	for row in rows:
		row.questions_left = tier_limit(row.tier)
		row.questions_reset_date = add_month(now)
		db.add(row)
	db.commit()
	if rows:
		logger.info("Monthly quota reset for %d user(s)", len(rows))
	return len(rows)
