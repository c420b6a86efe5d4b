from __future__ import annotations
import logging
from datetime import datetime, timedelta
from typing import Dict, Optional
from sqlalchemy import delete
from sqlalchemy.orm import Session

from .models import AuthSession
from .quota import reset_monthly_quotas

logger = logging.getLogger(__name__)


def purge_sessions_older_than_one_week(db: Session, *, now: Optional[datetime] = None) -> int:
	threshold = (now or datetime.utcnow()) - timedelta(days=7)
	# Sessions idle for a week are dropped; their tokens stop validating
	res = db.execute(delete(AuthSession).where(AuthSession.last_activity_at < threshold))
	db.commit()
	return res.rowcount or 0


def run_maintenance(db: Session, *, now: Optional[datetime] = None) -> Dict[str, int]:
	purged = purge_sessions_older_than_one_week(db, now=now)
	reset = reset_monthly_quotas(db, now=now)
	logger.info("Maintenance run: %d session(s) purged, %d quota(s) reset", purged, reset)
	return {"sessions_purged": purged, "quotas_reset": reset}
