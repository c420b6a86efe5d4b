from __future__ import annotations
import hmac
import logging
from typing import Literal, Optional

from fastapi import APIRouter, Depends, Header, HTTPException
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from ..db import get_db
from ..errors import InvalidRequestError
from ..models import AuthUser
from ..quota import DEFAULT_TIER, apply_tier_change, reset_monthly_quotas
from ..settings import settings

router = APIRouter(prefix="/subscription", tags=["subscription"])

logger = logging.getLogger(__name__)


class SubscriptionEvent(BaseModel):
	"""A tier change reported by the billing provider."""

	model_config = ConfigDict(populate_by_name=True)

	type: Literal["tier_changed", "subscription_cancelled"] = "tier_changed"
	username: Optional[str] = None
	customer_id: Optional[str] = Field(default=None, alias="customerId")
	tier: Optional[str] = None


def _check_secret(expected: Optional[str], provided: Optional[str]) -> None:
	# Unconfigured secrets reject everything
	if not expected or not provided or not hmac.compare_digest(expected, provided):
		raise HTTPException(status_code=401, detail="Unauthorized")


@router.post("/events")
async def subscription_event(
	event: SubscriptionEvent,
	x_webhook_secret: Optional[str] = Header(default=None),
	db: Session = Depends(get_db),
):
	_check_secret(settings.webhook_secret, x_webhook_secret)
	row: Optional[AuthUser] = None
	if event.username:
		row = db.get(AuthUser, event.username)
	elif event.customer_id:
		row = db.query(AuthUser).filter(AuthUser.billing_customer_id == event.customer_id).first()
	if row is None:
		raise HTTPException(status_code=404, detail="User not found")
	if event.type == "subscription_cancelled":
		new_tier = DEFAULT_TIER
	elif event.tier:
		new_tier = event.tier
	else:
		raise InvalidRequestError("tier is required for a tier_changed event")
	if event.customer_id and row.billing_customer_id != event.customer_id:
		row.billing_customer_id = event.customer_id
	row = apply_tier_change(db, row.username, new_tier)
	return {"success": True, "data": {"username": row.username, "tier": row.tier, "questionsLeft": row.questions_left}}


@router.post("/reset-monthly")
async def reset_monthly(authorization: Optional[str] = Header(default=None), db: Session = Depends(get_db)):
	token = authorization[7:] if authorization and authorization.startswith("Bearer ") else None
	_check_secret(settings.cron_secret, token)
	count = reset_monthly_quotas(db)
	return {"success": True, "data": {"usersReset": count}}
