#!/usr/bin/env python3
import hmac
import logging
import os
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from config.settings import API_TOKENS_ENV, DB_PATH_ENV, LOG_LEVEL_ENV
from db.resolved_tracks import ResolvedTrackStore, save_resolution
from engine.errors import MissingInputError, ResolutionError
from engine.json_utils import log_event, safe_json_dumps
from engine.resolver import TrackResolver
from metadata.types import CoreMeta

APP_NAME = "Track Resolver API"
CONFIRMED_NOTE = "track confirmed; not overwriting"


def _setup_logging():
    level_name = (os.environ.get(LOG_LEVEL_ENV) or "INFO").strip().upper()
    root = logging.getLogger("")
    root.setLevel(getattr(logging, level_name, logging.INFO))
    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(message)s"))
        root.addHandler(handler)


def _resolve_db_path():
    return os.environ.get(DB_PATH_ENV, os.path.join(os.getcwd(), "resolver.sqlite3"))


def _parse_api_tokens(raw):
    """Parse ``token:user,token:user`` into a token -> user id map."""
    tokens = {}
    for entry in (raw or "").split(","):
        token, sep, user_id = entry.strip().partition(":")
        if sep and token.strip() and user_id.strip():
            tokens[token.strip()] = user_id.strip()
    return tokens


def _authenticated_user(header_value, tokens):
    if not header_value or not header_value.startswith("Bearer "):
        return None
    presented = header_value[7:].strip()
    if not presented:
        return None
    for token, user_id in tokens.items():
        if hmac.compare_digest(presented.encode("utf-8"), token.encode("utf-8")):
            return user_id
    return None


class ResolveRequest(BaseModel):
    seed_url: Optional[str] = None
    query: Optional[str] = None
    title: Optional[str] = None
    artist: Optional[str] = None
    album: Optional[str] = None
    isrc: Optional[str] = None
    duration_ms: Optional[int] = None
    storefront: Optional[str] = None
    overwrite: bool = False
    skip_fanout: bool = False


class SafeJSONResponse(JSONResponse):
    def render(self, content):
        return safe_json_dumps(content, allow_nan=False, separators=(",", ":")).encode("utf-8")


_setup_logging()

app = FastAPI(
    title=APP_NAME,
    description="Resolve a track link or query into equivalent links on other streaming platforms.",
    default_response_class=SafeJSONResponse,
)


@app.on_event("startup")
async def startup():
    app.state.resolver = TrackResolver()
    app.state.store = ResolvedTrackStore(_resolve_db_path())
    app.state.store.ensure_schema()
    app.state.api_tokens = _parse_api_tokens(os.environ.get(API_TOKENS_ENV))


def _error_response(exc: ResolutionError, received_keys):
    content = exc.to_payload()
    content["received_keys"] = received_keys
    return SafeJSONResponse(status_code=exc.status_code, content=content)


def _structured_meta(payload: ResolveRequest):
    if payload.seed_url or payload.query:
        return None
    if not (payload.title or payload.artist):
        return None
    if not ((payload.title or "").strip() and (payload.artist or "").strip()):
        raise MissingInputError("title and artist are both required")
    return CoreMeta(
        title=payload.title,
        artist=payload.artist,
        album=payload.album,
        isrc=payload.isrc,
        duration_ms=payload.duration_ms,
    )


@app.get("/api/health")
async def health():
    return {"status": "ok"}


@app.post("/api/resolve")
async def resolve_track(payload: ResolveRequest, request: Request):
    received_keys = sorted(payload.model_dump(exclude_unset=True).keys())
    user_id = _authenticated_user(
        request.headers.get("authorization"),
        getattr(request.app.state, "api_tokens", {}),
    )
    try:
        meta = _structured_meta(payload)
        resolution = await request.app.state.resolver.resolve(
            seed_url=payload.seed_url,
            query=payload.query,
            meta=meta,
            storefront=payload.storefront,
            skip_fanout=payload.skip_fanout,
        )
        result = save_resolution(
            request.app.state.store,
            resolution,
            overwrite=payload.overwrite,
            user_id=user_id,
        )
    except ResolutionError as exc:
        log_event(logging.WARNING, "resolve_failed", error=exc.code, received_keys=received_keys)
        return _error_response(exc, received_keys)
    except Exception:
        logging.exception("Resolve request failed")
        return _error_response(
            ResolutionError("unexpected error while resolving track"),
            received_keys,
        )

    body = {
        "track_id": result.track_id,
        "core": resolution.core.to_dict(),
        "links": [hit.to_dict() for hit in result.links],
    }
    if result.skipped:
        body = {"note": CONFIRMED_NOTE, **body}
    return body


def _env_or_default(name, default):
    value = os.environ.get(name)
    return value if value else default


if __name__ == "__main__":
    import uvicorn

    host = _env_or_default("RESOLVER_HOST", "127.0.0.1")
    port = int(_env_or_default("RESOLVER_PORT", "8000"))
    uvicorn.run("api.main:app", host=host, port=port, reload=False)
