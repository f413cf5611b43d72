import asyncio
import logging

from fastapi import FastAPI

from .db import Base, SessionLocal, engine, ensure_schema
from .maintenance import maintenance_watcher
from .settings import settings
from .routers import auth
from .routers import gemini
from .routers import quiz_sets
from .routers import quiz_templates

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

app = FastAPI(title="EngliQuest Admin API")
app.include_router(auth.router)
app.include_router(gemini.router)
app.include_router(quiz_templates.router)
app.include_router(quiz_sets.router)


@app.get("/info")
def info():
	return {
		"status": "ok",
		"gemini_configured": bool(settings.gemini_api_key),
		"fallback_configured": bool(settings.openrouter_api_key),
		"model": settings.gemini_model,
	}


@app.on_event("startup")
async def startup_event():
	# Initialize DB schema
	Base.metadata.create_all(bind=engine)
	# Apply lightweight dev migrations
	try:
		ensure_schema()
	except Exception:
		logger.exception("Schema migration failed")
	# Periodic batch status reconciliation and stuck regeneration sweep
	asyncio.create_task(maintenance_watcher(SessionLocal))
