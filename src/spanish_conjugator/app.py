from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any

from fastapi import FastAPI

from .config import configure_logging
from .db import init_db
from .drill_routes import analytics_loader
from .drill_routes import router as drill_router
from .sync import router as sync_router

# Ensure the database schema exists even when lifespan hooks are not triggered (e.g. in tests).
init_db()


@asynccontextmanager
async def lifespan(_: FastAPI):
    configure_logging()
    init_db()
    yield
    analytics_loader.cancel_all()


app = FastAPI(title="Spanish Conjugator", lifespan=lifespan)
app.include_router(drill_router)
app.include_router(sync_router)


@app.get("/health")
async def health() -> dict[str, Any]:
    return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat(timespec="seconds")}


def main() -> None:
    import uvicorn

    uvicorn.run("spanish_conjugator.app:app", host="127.0.0.1", port=8000, reload=True)


if __name__ == "__main__":
    main()
