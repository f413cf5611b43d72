from __future__ import annotations
import asyncio
import logging
from typing import Callable, Dict, Optional

from sqlalchemy.orm import Session

from .personalized import reset_stuck_regenerations
from .settings import settings
from .templates import reconcile_batch_statuses

logger = logging.getLogger(__name__)


def run_maintenance(db: Session) -> Dict[str, int]:
	# Repairs labels left stale between a moderation commit and its status refresh
	fixed = reconcile_batch_statuses(db)
	reset = reset_stuck_regenerations(db)
	return {"batch_statuses_fixed": fixed, "regenerations_reset": reset}


def run_maintenance_once(session_factory: Callable[[], Session]) -> Optional[Dict[str, int]]:
	db = session_factory()
	try:
		return run_maintenance(db)
	except Exception:
		db.rollback()
		logger.exception("Maintenance pass failed")
		return None
	finally:
		db.close()


async def maintenance_watcher(session_factory: Callable[[], Session], interval: Optional[float] = None) -> None:
	# Run once at startup, then every interval
	interval = interval or settings.reconcile_interval_seconds
	while True:
		run_maintenance_once(session_factory)
		await asyncio.sleep(interval)
