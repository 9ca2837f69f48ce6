# ---------------------------------------------------------
# collabhub/main.py
# CollabHub - Project Collaboration Backend
#
# Run: uvicorn collabhub.main:app --reload (from repo root)
#
# - FastAPI + SQLite
# - /auth        : Google sign-up / sign-in, JWT sessions
# - /projects    : projects, members, resources, join-by-code
# - /invitations : per-email invitations
# - /tasks       : tasks with deadlines, mirrored into Google Calendar
# - /calendar    : Google Calendar connection
# ---------------------------------------------------------

from __future__ import annotations

from typing import Dict

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from collabhub.config import CORS_ORIGINS, IS_DEV, IS_PROD
from collabhub.db import get_db_connection
from collabhub.errors import CollabHubError
from collabhub.migrate import apply_schema
from collabhub.routes_auth import router as auth_router
from collabhub.routes_calendar import router as calendar_router
from collabhub.routes_invitations import router as invitations_router
from collabhub.routes_projects import router as projects_router
from collabhub.routes_tasks import router as tasks_router


def init_db() -> None:
    with get_db_connection() as conn:
        apply_schema(conn)


app = FastAPI(title="CollabHub Backend", version="0.1")

# CORS configuration from config module
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS if IS_PROD else ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

init_db()


@app.exception_handler(CollabHubError)
async def handle_collabhub_error(request: Request, exc: CollabHubError) -> JSONResponse:
    if IS_DEV or exc.status_code >= 500:
        print(f"[API] {request.method} {request.url.path} -> {exc.status_code}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"message": exc.message})


@app.get("/health")
def health() -> Dict[str, str]:
    return {"status": "ok"}


app.include_router(auth_router)
app.include_router(projects_router)
app.include_router(invitations_router)
app.include_router(tasks_router)
app.include_router(calendar_router)
