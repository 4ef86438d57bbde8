import logging
import sqlite3
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from voicestats.errors import STORE_UNAVAILABLE, VALIDATION_ERROR, ValidationError

from .routes import statistics

log = logging.getLogger("voicestats.web")

app = FastAPI(title="Voice Stats Dashboard API", version="0.1.0")
app.include_router(statistics.router)


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    return JSONResponse(status_code=400, content={"error": exc.to_dict()})


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    # FastAPI's own parameter coercion (e.g. limit=abc); same body as ValidationError
    first = (exc.errors() or [{}])[0]
    loc = first.get("loc") or ()
    field = str(loc[-1]) if loc else "request"
    value = first.get("input")
    if not isinstance(value, (str, int, float, bool)):
        value = None
    err = ValidationError(
        field,
        first.get("msg") or "invalid request parameter",
        value=value,
        code=VALIDATION_ERROR,
    )
    return JSONResponse(status_code=400, content={"error": err.to_dict()})


@app.exception_handler(sqlite3.Error)
async def store_error_handler(request: Request, exc: sqlite3.Error):
    log.exception("store error on %s %s", request.method, request.url.path, exc_info=exc)
    return JSONResponse(
        status_code=503,
        content={
            "error": {
                "code": STORE_UNAVAILABLE,
                "message": "statistics store is unavailable",
                "details": {},
            }
        },
    )


@app.get("/health")
def health():
    return {"ok": True, "service": "web", "time": datetime.now(timezone.utc).isoformat()}
