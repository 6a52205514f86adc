import asyncio
import json
import time
from typing import Callable

import jwt
from fastapi import Request, Response
from fastapi.responses import JSONResponse
from sqlalchemy import select
from starlette.middleware.base import BaseHTTPMiddleware

from app.config import settings
from app.core.exceptions import RequestTimeoutError
from app.core.logging import request_logger, app_logger
from app.core.security import decode_access_token
from app.database import AsyncSessionLocal
from app.models.user import User


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Log every API request with method, path, status code, caller and
    duration. Request bodies are never logged (webhook payloads and
    customer details stay out of the log).
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if request.url.path in settings.LOG_EXCLUDED_PATHS:
            return await call_next(request)

        start_time = time.time()

        method = request.method
        path = request.url.path
        query_params = dict(request.query_params) if request.query_params else {}

        # Behind a proxy the first X-Forwarded-For hop is the client
        client_ip = request.headers.get("X-Forwarded-For", "").split(",")[0].strip()
        if not client_ip:
            client_ip = request.headers.get("X-Real-IP", "")
        if not client_ip and request.client:
            client_ip = request.client.host

        try:
            response = await call_next(request)
        except Exception as e:
            request_logger.error(
                f"{method} {path} - Status: 500 - IP: {client_ip} - "
                f"Query: {json.dumps(query_params)} - Error: {str(e)}"
            )
            raise

        # Set by UserInjectionMiddleware, which runs inside this one
        principal_id = getattr(request.state, "principal_id", None)
        duration_ms = int((time.time() - start_time) * 1000)

        try:
            request_logger.info(
                f"{method} {path} - Status: {response.status_code} - "
                f"IP: {client_ip} - UserID: {principal_id or 'Anonymous'} - "
                f"Query: {json.dumps(query_params)} - Duration: {duration_ms}ms"
            )
        except Exception as e:
            # Don't let logging errors break the API
            app_logger.warning(f"Error logging request: {e}")

        return response


class UserInjectionMiddleware(BaseHTTPMiddleware):
    """
    Decode the auth provider's bearer token and expose the caller.

    This middleware:
    - Sets request.state.principal_id to the token subject (user id)
    - Sets request.state.user to the matching User row, if one exists
    - Fails gracefully (both None) for missing or invalid tokens
    - Skips public paths, including the processor webhook
    """

    PUBLIC_PATHS = {
        "/",
        "/health",
        "/docs",
        "/redoc",
        "/openapi.json",
        "/webhooks/payments",
    }

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request.state.principal_id = None
        request.state.user = None

        if request.url.path in self.PUBLIC_PATHS:
            return await call_next(request)

        auth_header = request.headers.get("Authorization", "")
        if auth_header.startswith("Bearer "):
            token = auth_header.removeprefix("Bearer ")
            try:
                payload = decode_access_token(token)
            except jwt.PyJWTError:
                # Route dependencies decide whether auth is required
                payload = {}

            user_id = payload.get("sub")
            if user_id:
                request.state.principal_id = str(user_id)
                async with AsyncSessionLocal() as db:
                    result = await db.execute(select(User).where(User.id == str(user_id)))
                    request.state.user = result.scalar_one_or_none()

        return await call_next(request)


class RequestTimeoutMiddleware(BaseHTTPMiddleware):
    """Answer 408 instead of hanging when a request outlives the timeout."""

    def __init__(self, app, timeout_seconds: float = settings.REQUEST_TIMEOUT_SECONDS):
        super().__init__(app)
        self.timeout_seconds = timeout_seconds

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        try:
            return await asyncio.wait_for(call_next(request), timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            app_logger.error(
                f"{request.method} {request.url.path} timed out after {self.timeout_seconds}s"
            )
            error = RequestTimeoutError()
            return JSONResponse(status_code=error.status_code, content=error.to_dict())
