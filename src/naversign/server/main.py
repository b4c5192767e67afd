"""Signature server - HTTP surface over the signature engine."""

import asyncio
import functools
import json
import time
import traceback
from collections.abc import AsyncIterator, Callable
from concurrent.futures import ThreadPoolExecutor
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, TypeVar

import uvicorn
from starlette.applications import Starlette
from starlette.exceptions import HTTPException
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, PlainTextResponse, Response
from starlette.routing import Route

from naversign.common.errors import ErrorCode, error_response
from naversign.common.http import RequestIdMiddleware
from naversign.common.logging import REDACTED, get_logger, setup_logging
from naversign.common.metrics import (
    MetricsMiddleware,
    metrics_endpoint,
    record_signature,
    record_verification,
)
from naversign.common.settings import Settings, get_settings
from naversign.signing.engine import (
    SignatureMode,
    SignatureRequest,
    SignatureResult,
    VerificationRequest,
    current_timestamp_ms,
    generate,
    verify,
)
from naversign.signing.errors import HashComputationError, SignatureError

logger = get_logger(__name__)

T = TypeVar("T")


class RequestBodyError(SignatureError):
    """Request body is not a JSON object."""

    code = ErrorCode.INVALID_JSON
    status_code = 400
    message = "Invalid JSON body"


class InvalidModeError(SignatureError):
    """Requested signature mode is not known."""

    code = ErrorCode.INVALID_MODE
    status_code = 400
    message = "Unknown signature mode"


def isoformat(value: datetime) -> str:
    """Render a UTC datetime as ``2024-01-01T00:00:00.000Z``."""
    return value.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def readable_ms(timestamp_ms: int) -> str | None:
    """ISO rendering of epoch milliseconds, or None when out of range."""
    try:
        return isoformat(datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc))
    except (OverflowError, OSError, ValueError):
        return None


def _now() -> str:
    return isoformat(datetime.now(timezone.utc))


class SignatureServer:
    """HTTP server for signature generation and verification."""

    def __init__(self, settings: Settings):
        """Initialize server."""
        self._settings = settings
        self._executor: ThreadPoolExecutor | None = None

    async def startup(self) -> None:
        """Initialize components."""
        self._get_executor()
        logger.info(
            "Naver signature server ready",
            mode=self._settings.signature_mode.value,
            hash_workers=self._settings.hash_workers,
        )

    async def shutdown(self) -> None:
        """Clean up resources."""
        if self._executor is not None:
            self._executor.shutdown(wait=False, cancel_futures=True)
            self._executor = None
        logger.info("Naver signature server stopped")

    def _get_executor(self) -> ThreadPoolExecutor:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=self._settings.hash_workers,
                thread_name_prefix="naversign-hash",
            )
        return self._executor

    async def _run_hash(self, func: Callable[..., T], *args: Any) -> T:
        """
        Run a bcrypt computation on the bounded worker pool.

        On timeout the caller gets TimeoutError straight away. A hash that
        already started keeps its worker until it finishes, so at most
        ``hash_workers`` hashes ever run at once; queued ones are dropped.
        """
        loop = asyncio.get_running_loop()
        future = loop.run_in_executor(self._get_executor(), functools.partial(func, *args))
        timeout = self._settings.hash_timeout_seconds
        if timeout is None:
            return await future
        return await asyncio.wait_for(future, timeout)

    async def _read_body(self, request: Request) -> dict[str, Any]:
        try:
            body = await request.json()
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise RequestBodyError(details={"message": str(e)}) from e
        if not isinstance(body, dict):
            raise RequestBodyError(details={"message": "Body must be a JSON object"})
        return body

    def _resolve_mode(self, body: dict[str, Any]) -> SignatureMode:
        requested = body.get("mode")
        if requested is None or not self._settings.allow_mode_override:
            return self._settings.signature_mode
        try:
            return SignatureMode(requested)
        except ValueError as e:
            raise InvalidModeError(
                details={
                    "received": requested,
                    "available_modes": [m.value for m in SignatureMode],
                }
            ) from e

    def _failure_response(self, error: SignatureError, message: str) -> JSONResponse:
        details: dict[str, Any] = {"message": error.message}
        if self._settings.is_development:
            details["stack"] = "".join(
                traceback.format_exception(type(error), error, error.__traceback__)
            )
        return error_response(error.code, message, error.status_code, details)

    # === HTTP Handlers ===

    async def handle_root(self, _request: Request) -> JSONResponse:
        """GET / - liveness and identity."""
        return JSONResponse({
            "status": "OK",
            "message": "Naver SmartStore BCrypt Server is running",
            "signature_mode": self._settings.signature_mode.value,
            "current_timestamp_ms": current_timestamp_ms(),
            "timestamp": _now(),
        })

    async def handle_timestamp(self, _request: Request) -> JSONResponse:
        """GET /timestamp - server time for clients that need one to sign."""
        now = current_timestamp_ms()
        return JSONResponse({
            "timestamp_ms": now,
            "timestamp_readable": readable_ms(now),
            "note": "Use timestamp_ms value for Naver signature generation",
        })

    async def handle_debug(self, request: Request) -> JSONResponse:
        """POST /debug - echo the received body and headers."""
        raw = await request.body()
        body: Any
        try:
            body = json.loads(raw) if raw else {}
        except (json.JSONDecodeError, UnicodeDecodeError):
            body = raw.decode("utf-8", errors="replace")

        if isinstance(body, dict) and "client_secret" in body:
            body = {**body, "client_secret": REDACTED}

        keys = list(body) if isinstance(body, dict) else []
        logger.info("Debug request received", keys=keys)

        return JSONResponse({
            "received_body": body,
            "received_headers": dict(request.headers),
            "body_type": type(body).__name__,
            "keys_received": keys,
            "timestamp": _now(),
        })

    async def handle_generate(self, request: Request) -> Response:
        """POST /naver-signature"""
        mode_label = self._settings.signature_mode.value
        start = time.perf_counter()
        try:
            body = await self._read_body(request)
            mode = self._resolve_mode(body)
            mode_label = mode.value
            result = await self._run_hash(
                generate,
                SignatureRequest.from_mapping(body),
                self._settings.signing_options(mode),
            )
        except HashComputationError as e:
            record_signature(mode_label, "error")
            logger.error("Signature generation failed", mode=mode_label, error=e.message)
            return self._failure_response(e, "Failed to generate signature")
        except SignatureError as e:
            record_signature(mode_label, "rejected")
            logger.warning("Signature request rejected", mode=mode_label, code=e.code)
            return error_response(e.code, e.message, e.status_code, e.details)
        except TimeoutError:
            record_signature(mode_label, "timeout")
            logger.error("Signature generation timed out", mode=mode_label)
            return error_response(
                ErrorCode.HASH_TIMEOUT,
                "Signature computation timed out",
                status_code=503,
            )

        record_signature(mode_label, "success", time.perf_counter() - start)
        logger.info(
            "Signature generated",
            mode=mode_label,
            client_id=result.client_id,
            timestamp=result.timestamp,
        )

        if result.mode is SignatureMode.BASE64_WRAPPED:
            return PlainTextResponse(result.signature)
        return JSONResponse(self._signature_payload(result))

    def _signature_payload(self, result: SignatureResult) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "signature": result.signature,
            "client_id": result.client_id,
            "timestamp": result.timestamp,
        }
        if result.timestamp_ms is not None:
            payload["timestamp_ms"] = result.timestamp_ms
            payload["timestamp_readable"] = readable_ms(result.timestamp_ms)
        payload.update({
            "password_used": result.password,
            "generated_at": isoformat(result.generated_at),
            "method": result.mode.method_tag,
        })
        return payload

    async def handle_verify(self, request: Request) -> JSONResponse:
        """POST /verify-signature"""
        mode_label = self._settings.signature_mode.value
        start = time.perf_counter()
        try:
            body = await self._read_body(request)
            mode = self._resolve_mode(body)
            mode_label = mode.value
            result = await self._run_hash(
                verify,
                VerificationRequest.from_mapping(body),
                self._settings.signing_options(mode),
            )
        except HashComputationError as e:
            record_verification(mode_label, "error")
            logger.error("Signature verification failed", mode=mode_label, error=e.message)
            return self._failure_response(e, "Failed to verify signature")
        except SignatureError as e:
            record_verification(mode_label, "rejected")
            logger.warning("Verification request rejected", mode=mode_label, code=e.code)
            return error_response(e.code, e.message, e.status_code, e.details)
        except TimeoutError:
            record_verification(mode_label, "timeout")
            logger.error("Signature verification timed out", mode=mode_label)
            return error_response(
                ErrorCode.HASH_TIMEOUT,
                "Signature computation timed out",
                status_code=503,
            )

        record_verification(
            mode_label,
            "valid" if result.valid else "invalid",
            time.perf_counter() - start,
        )
        return JSONResponse({
            "valid": result.valid,
            "password_used": result.password,
            "verified_at": isoformat(result.verified_at),
            "mode": result.mode.value,
        })

    async def handle_health(self, _request: Request) -> JSONResponse:
        """Health check."""
        return JSONResponse({"status": "healthy"})

    async def handle_internal_error(self, _request: Request, exc: Exception) -> JSONResponse:
        """Uncaught exceptions."""
        logger.error("Unhandled error", error=str(exc), error_type=type(exc).__name__)
        details = None
        if self._settings.is_development:
            details = {
                "message": str(exc),
                "stack": "".join(traceback.format_exception(type(exc), exc, exc.__traceback__)),
            }
        return error_response(
            ErrorCode.INTERNAL_ERROR,
            "Internal server error",
            status_code=500,
            details=details,
        )


def available_endpoints(routes: list[Route]) -> list[str]:
    """Human-readable ``METHOD /path`` list for the 404 body."""
    endpoints = []
    for route in routes:
        for method in sorted((route.methods or set()) - {"HEAD"}):
            endpoints.append(f"{method} {route.path}")
    return endpoints


def create_app(settings: Settings | None = None) -> Starlette:
    """Create the Starlette application."""
    settings = settings or get_settings()
    server = SignatureServer(settings)

    @asynccontextmanager
    async def lifespan(_app: Starlette) -> AsyncIterator[None]:
        await server.startup()
        yield
        await server.shutdown()

    routes = [
        Route("/", server.handle_root, methods=["GET"]),
        Route("/timestamp", server.handle_timestamp, methods=["GET"]),
        Route("/naver-signature", server.handle_generate, methods=["POST"]),
        Route("/verify-signature", server.handle_verify, methods=["POST"]),
        Route("/health", server.handle_health, methods=["GET"]),
        Route("/metrics", metrics_endpoint, methods=["GET"]),
    ]
    if settings.debug_endpoint_enabled:
        routes.insert(2, Route("/debug", server.handle_debug, methods=["POST"]))

    endpoints = available_endpoints(routes)

    async def not_found(_request: Request, _exc: HTTPException) -> JSONResponse:
        return error_response(
            ErrorCode.NOT_FOUND,
            "Endpoint not found",
            status_code=404,
            details={"available_endpoints": endpoints},
        )

    app = Starlette(
        routes=routes,
        lifespan=lifespan,
        exception_handlers={
            404: not_found,
            405: not_found,
            500: server.handle_internal_error,
        },
    )

    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(
        MetricsMiddleware,
        exclude_paths=["/health", "/metrics"],
        known_paths=[route.path for route in routes],
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    return app


def main() -> None:
    """Entry point for the signature server."""
    settings = get_settings()
    setup_logging(settings.log_level, json_output=settings.log_json)
    app = create_app(settings)

    logger.info(
        "Starting Naver signature server",
        host=settings.host,
        port=settings.port,
        mode=settings.signature_mode.value,
    )
    uvicorn.run(
        app,
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
