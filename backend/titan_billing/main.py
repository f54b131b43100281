import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from titan_billing.core.config import settings
from titan_billing.core.logging_config import setup_logging
from titan_billing.routes.errors import router as errors_router
from titan_billing.routes.payments import router as payments_router
from titan_billing.routes.users import router as users_router
from titan_billing.services.rate_limiter import RateLimiter, build_rate_limiter

setup_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)

_ERROR_CODE_BY_STATUS: dict[int, str] = {
    400: "VALIDATION_ERROR",
    401: "UNAUTHORIZED",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    409: "CONFLICT",
    422: "VALIDATION_ERROR",
    429: "RATE_LIMITED",
    500: "INTERNAL_ERROR",
}


def _error_code(status_code: int) -> str:
    return _ERROR_CODE_BY_STATUS.get(int(status_code), "HTTP_ERROR")


def _response_headers(request: Request, extra: dict[str, str] | None = None) -> dict[str, str] | None:
    headers = dict(getattr(request.state, "rate_limit_headers", None) or {})
    headers.update(extra or {})
    return headers or None


async def _sweep_rate_limits(limiter: RateLimiter, interval_seconds: int) -> None:
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            limiter.sweep()
        except Exception:
            logger.exception("Rate limit sweep failed")


@asynccontextmanager
async def lifespan(app: FastAPI):
    limiter = getattr(app.state, "rate_limiter", None)
    if limiter is None:
        limiter = build_rate_limiter()
        app.state.rate_limiter = limiter
    sweeper = asyncio.create_task(
        _sweep_rate_limits(limiter, max(1, settings.RATE_LIMIT_SWEEP_INTERVAL_SECONDS))
    )
    logger.info(
        "Startup config: ENV=%s stripe_configured=%s webhook_secret_configured=%s rate_limiting=%s",
        settings.ENV,
        bool(settings.STRIPE_SECRET_KEY),
        bool(settings.STRIPE_WEBHOOK_SECRET),
        settings.RATE_LIMIT_ENABLED,
    )
    try:
        yield
    finally:
        sweeper.cancel()
        try:
            await sweeper
        except asyncio.CancelledError:
            pass


app = FastAPI(title="Titan Billing API", lifespan=lifespan)


@app.exception_handler(HTTPException)
def http_exception_handler(request: Request, exc: HTTPException):
    detail = exc.detail
    message: str
    details: dict | None = None

    if isinstance(detail, str):
        message = detail
    elif isinstance(detail, dict):
        msg = detail.get("message")
        message = msg if isinstance(msg, str) and msg else "Request failed"
        det = detail.get("details")
        details = det if isinstance(det, dict) else None
    else:
        message = str(detail) if detail is not None else "Request failed"

    payload: dict = {"error": _error_code(exc.status_code), "message": message}
    if details:
        payload["details"] = details
    return JSONResponse(status_code=exc.status_code, content=payload, headers=_response_headers(request, exc.headers))


@app.exception_handler(RequestValidationError)
def validation_exception_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=422,
        content={
            "error": "VALIDATION_ERROR",
            "message": "Invalid request payload",
            "details": {"errors": jsonable_encoder(exc.errors())},
        },
        headers=_response_headers(request),
    )


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(payments_router)
app.include_router(errors_router)
app.include_router(users_router)


@app.get("/health")
def health_check():
    return {"status": "ok"}
