import logging
import time
import traceback
import uuid
from contextlib import asynccontextmanager
from pathlib import Path

from dotenv import load_dotenv

# .env from the project root wherever uvicorn is started from
_PROJ_ROOT = Path(__file__).resolve().parent.parent
load_dotenv(_PROJ_ROOT / ".env")

from fastapi import FastAPI, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from sqlmodel import Session

from coursepay.admin import admin_router
from coursepay.api.payments import router as payments_router
from coursepay.core.config import is_esewa_configured, is_khalti_configured, settings
from coursepay.core.database import engine, init_db, ping_db
from coursepay.core.rate_limit import limiter
from coursepay.logging import setup_logging
from coursepay.models import ErrorLog
from coursepay.payments.errors import PaymentError

setup_logging(level=logging.INFO)
log = logging.getLogger("coursepay")


def _cors_origins_list() -> list[str]:
    if not settings.cors_origins or settings.cors_origins.strip() == "*":
        return ["*"]
    return [o.strip() for o in settings.cors_origins.split(",") if o.strip()]


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    log.info(
        "Payment providers: esewa=%s khalti=%s strict_verification=%s",
        "yes" if is_esewa_configured() else "NO (ESEWA_SECRET_KEY)",
        "yes" if is_khalti_configured() else "NO (KHALTI_SECRET_KEY)",
        settings.payment_strict_verification,
    )
    yield


app = FastAPI(
    title="Coursepay API",
    description="eSewa / Khalti payment verification and course enrollment settlement",
    lifespan=lifespan,
)
app.state.limiter = limiter


def _error_response(request: Request, status_code: int, detail: str) -> JSONResponse:
    rid = getattr(request.state, "request_id", None)
    body = {"error": detail, "status_code": status_code}
    if rid:
        body["request_id"] = rid
    return JSONResponse(status_code=status_code, content=body)


def _rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    log.warning("Rate limit exceeded: path=%s detail=%s", request.url.path, exc.detail)
    return _error_response(request, 429, "Too many requests. Please wait a minute.")


app.add_exception_handler(RateLimitExceeded, _rate_limit_handler)


@app.exception_handler(PaymentError)
def payment_error_handler(request: Request, exc: PaymentError) -> JSONResponse:
    log.warning(
        "Payment error: path=%s code=%s status=%s message=%s",
        request.url.path,
        exc.code,
        exc.status_code,
        exc.message,
    )
    rid = getattr(request.state, "request_id", None)
    body = {"success": False, "error": exc.message, "code": exc.code, "status_code": exc.status_code}
    if rid:
        body["request_id"] = rid
    return JSONResponse(status_code=exc.status_code, content=body)


def _jsonable_errors(errs: list) -> list:
    # ctx may hold exception instances (e.g. ValueError from a validator)
    return jsonable_encoder([{k: v for k, v in e.items() if k != "ctx"} for e in errs])


@app.exception_handler(RequestValidationError)
def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errs = exc.errors()
    log.warning("Request validation error (422): path=%s method=%s detail=%s", request.url.path, request.method, errs)
    first = errs[0] if errs else {}
    rid = getattr(request.state, "request_id", None)
    body = {"error": first.get("msg") or "Invalid request.", "status_code": 422, "detail": _jsonable_errors(errs)}
    if rid:
        body["request_id"] = rid
    return JSONResponse(status_code=422, content=body)


@app.exception_handler(HTTPException)
def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    response = _error_response(request, exc.status_code, exc.detail if isinstance(exc.detail, str) else str(exc.detail))
    if exc.headers:
        response.headers.update(exc.headers)
    return response


@app.exception_handler(Exception)
def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    log.exception("Unhandled exception: path=%s %s", request.url.path, exc, exc_info=True)
    try:
        with Session(engine) as db:
            db.add(ErrorLog(
                endpoint=request.url.path,
                method=request.method,
                error_message=str(exc)[:2000],
                stack_trace=traceback.format_exc()[:10000],
            ))
            db.commit()
    except Exception as e:
        log.warning("ErrorLog write failed: %s", e)
    path = (request.url.path or "").strip()
    if path.startswith("/payments"):
        user_msg = "Payment could not be processed. Please try again or contact support."
    else:
        user_msg = "Unexpected server error."
    return JSONResponse(status_code=500, content={"error": user_msg})


@app.middleware("http")
async def request_id_and_latency(request: Request, call_next):
    request.state.request_id = str(uuid.uuid4())
    start = time.perf_counter()
    response = await call_next(request)
    latency_ms = (time.perf_counter() - start) * 1000
    response.headers["X-Request-ID"] = request.state.request_id
    log.info(
        "request_id=%s method=%s path=%s status=%s latency_ms=%.2f",
        request.state.request_id,
        request.method,
        request.url.path,
        response.status_code,
        latency_ms,
    )
    return response


app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins_list(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(payments_router)
app.include_router(admin_router)


@app.get("/health")
def health():
    return {
        "status": "ok",
        "database": "ok" if ping_db() else "error",
        "esewa_configured": is_esewa_configured(),
        "khalti_configured": is_khalti_configured(),
    }
