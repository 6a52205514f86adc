from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.api.endpoints import payment_links, payouts, transactions, users, webhooks
from app.api.endpoints import stripe as stripe_endpoints
from app.config import settings
from app.core.dependencies import get_notification_emitter
from app.core.exceptions import HandyPayError, UpstreamError
from app.core.logging import app_logger
from app.core.middleware import (
    RequestLoggingMiddleware,
    RequestTimeoutMiddleware,
    UserInjectionMiddleware,
)
from app.database import init_db


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_db()
    yield
    # Let in-flight push notifications finish before shutting down
    await get_notification_emitter().drain()


app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.VERSION,
    debug=settings.DEBUG,
    lifespan=lifespan,
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Add timeout middleware (runs innermost - bounds the handler itself)
app.add_middleware(RequestTimeoutMiddleware)

# Add user injection middleware (parses JWT and injects principal)
app.add_middleware(UserInjectionMiddleware)

# Add request logging middleware (runs outermost - uses injected principal for logging)
app.add_middleware(RequestLoggingMiddleware)


@app.exception_handler(HandyPayError)
async def handypay_error_handler(request: Request, exc: HandyPayError):
    if isinstance(exc, UpstreamError):
        app_logger.error(
            f"{request.method} {request.url.path} failed for user "
            f"{getattr(request.state, 'principal_id', None) or 'Anonymous'}: {exc.message}"
        )
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def request_validation_error_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    if errors:
        first = errors[0]
        field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = f"{field}: {first.get('msg')}" if field else first.get("msg")
    else:
        message = "Invalid request"
    return JSONResponse(status_code=400, content={"error": message})


app.include_router(payment_links.router, prefix="/payment-links", tags=["payment-links"])
app.include_router(webhooks.router, prefix="/webhooks", tags=["webhooks"])
app.include_router(transactions.router, prefix="/transactions", tags=["transactions"])
app.include_router(stripe_endpoints.router, prefix="/stripe", tags=["stripe"])
app.include_router(users.router, prefix="/users", tags=["users"])
app.include_router(payouts.router, prefix="/payouts", tags=["payouts"])


@app.get("/")
async def root():
    return {
        "name": settings.PROJECT_NAME,
        "version": settings.VERSION,
        "docs": "/docs",
        "redoc": "/redoc",
    }


@app.get("/health")
async def health_check():
    return {"status": "healthy"}
