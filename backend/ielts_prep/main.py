import asyncio
import logging

from fastapi import FastAPI

from .db import Base, engine, SessionLocal
from .cleanup import expire_stale_feedback
from .settings import settings
from .routers import health
from .routers import exams
from .routers import writing
from .routers import speaking
from .routers import vocabulary

logging.basicConfig(level=settings.log_level.upper(), format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger("ielts_prep")

app = FastAPI(title="IELTS Prep API")
app.include_router(health.router)
app.include_router(exams.router)
app.include_router(writing.router)
app.include_router(speaking.router)
app.include_router(vocabulary.router)

_cleanup_task: asyncio.Task | None = None


@app.get("/info")
def root():
	return {"status": "ok", "openai_configured": bool(settings.openai_api_key)}


def _run_cleanup() -> None:
	db = SessionLocal()
	try:
		expire_stale_feedback(db)
	except Exception:
		logger.exception("Feedback cleanup failed")
	finally:
		db.close()


async def _cleanup_watcher():
	while True:
		await asyncio.sleep(settings.cleanup_interval_seconds)
		_run_cleanup()


@app.on_event("startup")
async def startup_event():
	global _cleanup_task
	Base.metadata.create_all(bind=engine)
	# Rows left pending by a previous process will never complete
	_run_cleanup()
	_cleanup_task = asyncio.create_task(_cleanup_watcher())


@app.on_event("shutdown")
async def shutdown_event():
	if _cleanup_task is not None:
		_cleanup_task.cancel()
