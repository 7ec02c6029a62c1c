from __future__ import annotations
import logging
from datetime import datetime, timedelta
from sqlalchemy import update
from sqlalchemy.orm import Session

from .models import AiFeedback, FEEDBACK_FAILED, FEEDBACK_PENDING
from .settings import settings


logger = logging.getLogger(__name__)


def expire_stale_feedback(db: Session, *, now: datetime | None = None) -> int:
	# Rows still pending past the timeout will never be filled in (worker died or restarted)
	threshold = (now or datetime.utcnow()) - timedelta(minutes=settings.feedback_timeout_minutes)
	res = db.execute(
		update(AiFeedback)
		.where(AiFeedback.status == FEEDBACK_PENDING, AiFeedback.created_at < threshold)
		.values(status=FEEDBACK_FAILED, error="Grading timed out", updated_at=datetime.utcnow())
	)
	db.commit()
	expired = res.rowcount or 0
	if expired:
		logger.info("Expired %d stale pending feedback rows", expired)
	return expired
