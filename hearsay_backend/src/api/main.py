"""
FastAPI application entrypoint for the HearSay backend.

Reviews (bearer token required):
- POST /reviews/upsert, GET/DELETE /reviews/my, GET /reviews/my/list

Public:
- GET /reviews/recent, GET /reviews/{review_id}
- GET /artists/{artist_id}/top-songs

CORS is enabled for local development (http://localhost:5173, :3000) and can be
extended via environment variables.
"""

from __future__ import annotations

import logging
import os as _os
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from src.api.db import init_db
from src.api.errors import ReviewError
from src.api.routes_artists import router as artists_router
from src.api.routes_auth import router as auth_router
from src.api.routes_profile import router as profile_router
from src.api.routes_reviews import router as reviews_router

logger = logging.getLogger(__name__)

openapi_tags = [
    {"name": "Reviews", "description": "Create, read, delete and list song/album/artist reviews."},
    {"name": "Artists", "description": "Aggregated ratings per artist (public)."},
    {"name": "Auth", "description": "Local email/password accounts issuing bearer tokens."},
    {"name": "Profile", "description": "The authenticated user's profile."},
    {"name": "Health", "description": "Service health and basic runtime info."},
]


@asynccontextmanager
async def lifespan(_app: FastAPI):
    init_db()
    yield


app = FastAPI(
    title="HearSay Backend API",
    description=(
        "Ratings and reviews for songs, albums and artists.\n\n"
        "Authentication: Authorization: Bearer <JWT>; the token subject is the user id.\n\n"
        "Catalog metadata is fetched live from Spotify and never stored."
    ),
    version="1.0.0",
    openapi_tags=openapi_tags,
    lifespan=lifespan,
)

# CORS: credentials=true requires explicit origins (not '*') in browsers, so we include common local dev URLs.
# Add additional origins via CORS_ALLOW_ORIGINS or ALLOWED_ORIGINS, as comma-separated values.
cors_origins = [
    "http://localhost:5173",
    "http://127.0.0.1:5173",
    "http://localhost:3000",
    "http://127.0.0.1:3000",
]

_allow_origins_raw = _os.getenv("CORS_ALLOW_ORIGINS") or _os.getenv("ALLOWED_ORIGINS", "")
extra_origins = [o.strip() for o in _allow_origins_raw.split(",") if o.strip()]
cors_origins.extend(extra_origins)

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins if cors_origins else ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ReviewError)
async def review_error_handler(request: Request, exc: ReviewError) -> JSONResponse:
    """Render domain errors in the same shape as HTTPException details."""
    if exc.status_code >= 500:
        logger.error("review_error: path=%s code=%s message=%s", request.url.path, exc.code, exc.message)
    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.to_detail()}, headers=headers)


app.include_router(reviews_router)
app.include_router(artists_router)
app.include_router(auth_router)
app.include_router(profile_router)


@app.get(
    "/",
    summary="Health check",
    description="Simple health check endpoint.",
    tags=["Health"],
)
def health_check():
    """Return basic service health information."""
    return {"status": "ok"}
