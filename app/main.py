import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from app.routers import billing_stripe_router, webhooks_router
from app.core.config import get_settings
from app.core.database import init_db
from app.core.errors import BillingError, UpstreamProviderError
from app.core.limiter import limiter

settings = get_settings()

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    missing = get_settings().missing_required()
    if missing:
        raise RuntimeError(f"Missing required configuration: {', '.join(missing)}")
    init_db()
    yield


app = FastAPI(
    title=settings.APP_NAME,
    description="Links users and organizations to Stripe and mirrors their subscription status.",
    version="1.0.0",
    lifespan=lifespan,
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


@app.exception_handler(BillingError)
async def billing_error_handler(request: Request, exc: BillingError):
    if isinstance(exc, UpstreamProviderError) and not exc.support:
        exc.support = get_settings().SUPPORT_EMAIL
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


# CORS configuration
origins = settings.CORS_ORIGINS

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(billing_stripe_router)
app.include_router(webhooks_router)


@app.get("/health")
def health():
    return {"status": "ok"}
