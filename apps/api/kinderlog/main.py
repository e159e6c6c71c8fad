from __future__ import annotations

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .config import CONFIG
from .db import initialize_db
from .routes import directory as directory_routes
from .routes import events as events_routes

initialize_db()

app = FastAPI(
    title="Kinderlog API",
    version="0.1.0",
    description="Daycare care-event log: group event recording and role-gated timelines",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CONFIG.cors_origins,
    allow_methods=["*"],
    allow_headers=["*"],
    allow_credentials=False,
)

app.include_router(events_routes.router)
app.include_router(directory_routes.router)


@app.get("/health")
async def health() -> dict:
    return {"status": "ok"}
