import asyncio
import logging
from typing import Optional

from fastapi import FastAPI

from .db import Base, engine, SessionLocal, ensure_schema
from .cleanup import run_maintenance
from .errors import install_error_handlers
from .settings import settings
from .routers import health
from .routers import auth
from .routers import marking
from .routers import extraction
from .routers import questions
from .routers import attempts
from .routers import subscription

logging.basicConfig(
	level=getattr(logging, settings.log_level.upper(), logging.INFO),
	format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="MarkPal API")
install_error_handlers(app)
app.include_router(health.router)
app.include_router(auth.router)
app.include_router(marking.router)
app.include_router(extraction.router)
app.include_router(questions.router)
app.include_router(attempts.router)
app.include_router(subscription.router)

_maintenance_task: Optional[asyncio.Task] = None


def _maintain_once() -> None:
	db = SessionLocal()
	try:
		run_maintenance(db)
	except Exception:
		db.rollback()
		logger.exception("Maintenance run failed")
	finally:
		db.close()


async def _maintenance_watcher(interval: int):
	# Run once at startup, then every interval
	while True:
		_maintain_once()
		await asyncio.sleep(interval)


@app.on_event("startup")
async def startup_event():
	global _maintenance_task
	# Initialize DB schema
	Base.metadata.create_all(bind=engine)
	# Apply additive migrations for older databases
	ensure_schema()
	interval = settings.maintenance_interval_seconds
	if interval > 0:
		_maintenance_task = asyncio.create_task(_maintenance_watcher(interval))


@app.on_event("shutdown")
async def shutdown_event():
	global _maintenance_task
	if _maintenance_task is not None:
		_maintenance_task.cancel()
		try:
			await _maintenance_task
		except asyncio.CancelledError:
			pass
		_maintenance_task = None
