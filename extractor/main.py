import asyncio
import os

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.orm import Session

from extractor.config import settings
from extractor.database import SessionLocal, get_db
from extractor.dependencies import build_pipeline
from extractor.logging_config import get_logger, setup_logging
from extractor.models import ConversationMessage, LocationConfig, UsageLog
from extractor.routers import extraction, tokens, webhook

setup_logging()

app = FastAPI(
    title="GHL Data Extractor",
    description="Extracts structured contact data from CRM conversations",
    version="0.1.0",
)

cors_origins = [origin.strip() for origin in settings.cors_allow_origins.split(",") if origin.strip()] or ["*"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(webhook.router)
app.include_router(extraction.router)
app.include_router(tokens.router)

app.state.pipeline = build_pipeline(settings)

sweep_logger = get_logger("token_sweep")
_token_sweep_task: asyncio.Task | None = None


def _is_token_sweep_enabled() -> bool:
    if os.environ.get("PYTEST_CURRENT_TEST"):
        return False
    return settings.token_sweep_enabled


def _run_token_sweep() -> dict:
    db = SessionLocal()
    try:
        return app.state.pipeline.token_manager.sweep(db)
    finally:
        db.close()


async def _token_sweep_loop() -> None:
    interval_seconds = max(settings.token_sweep_interval_seconds, 1.0)
    while True:
        try:
            report = await asyncio.to_thread(_run_token_sweep)
            if report["total"]:
                sweep_logger.info(
                    "Token sweep processed",
                    extra={"context": {"refreshed": report["refreshed"], "total": report["total"]}},
                )
            await asyncio.sleep(interval_seconds)
        except asyncio.CancelledError:
            break
        except Exception as exc:
            sweep_logger.error(
                "Token sweep loop failed",
                extra={"context": {"error": str(exc)}},
            )
            await asyncio.sleep(interval_seconds)


@app.on_event("startup")
async def start_token_sweep() -> None:
    global _token_sweep_task
    if not _is_token_sweep_enabled():
        return
    if _token_sweep_task is None or _token_sweep_task.done():
        _token_sweep_task = asyncio.create_task(_token_sweep_loop())
        sweep_logger.info("Token sweep started")


@app.on_event("shutdown")
async def stop_token_sweep() -> None:
    global _token_sweep_task
    if _token_sweep_task is None:
        return
    _token_sweep_task.cancel()
    try:
        await _token_sweep_task
    except asyncio.CancelledError:
        pass
    _token_sweep_task = None


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.get("/db-check")
def db_check(db: Session = Depends(get_db)):
    return {
        "status": "ok",
        "configurations": db.query(LocationConfig).count(),
        "messages": db.query(ConversationMessage).count(),
        "usage_logs": db.query(UsageLog).count(),
    }
