from __future__ import annotations

import logging
import os

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from together.db_init import init_db
from together.errors import CallableError
from together.routes import callables, calendar, couple, habits, moods, oauth, reminders, stars, stream, sync, users


def create_app() -> FastAPI:
    logging.basicConfig(
        level=os.getenv("TOGETHER_LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s - %(message)s",
    )
    app = FastAPI(title="Together API", version="0.1.0")

    app.include_router(callables.router)
    app.include_router(users.router)
    app.include_router(habits.router)
    app.include_router(stars.router)
    app.include_router(reminders.router)
    app.include_router(moods.router)
    app.include_router(couple.router)
    app.include_router(calendar.router)
    app.include_router(oauth.router)
    app.include_router(sync.router)
    app.include_router(stream.router)

    @app.on_event("startup")
    async def _startup():
        await init_db()

    @app.exception_handler(CallableError)
    async def _callable_error_handler(request: Request, exc: CallableError):
        return JSONResponse(status_code=exc.http_status, content=exc.to_payload())

    @app.exception_handler(Exception)
    async def _unhandled_exception_handler(request: Request, exc: Exception):
        logging.getLogger("together").exception("Unhandled exception: %s", exc)
        return JSONResponse(status_code=500, content={"detail": "Internal error"})

    @app.get("/health")
    async def health():
        return {"ok": True}

    return app


app = create_app()
