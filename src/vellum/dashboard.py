"""Read-only HTTP API over the compliance ledger.

Single-project: a module-level ``_db`` is set at startup and injected via
``Depends(_get_db)``. Nothing here mutates the ledger; changes go through the
CLI or the MCP server.

Usage:
    vellum dashboard                    # Serves at localhost:8377
    vellum dashboard --port 9000        # Custom port
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from vellum.core import VellumDB, find_vellum_root
from vellum.errors import (
    DuplicateIdError,
    InvalidTransitionError,
    LockTimeoutError,
    NotFoundError,
    ValidationError,
    VellumError,
)
from vellum.gate import evaluate_safely
from vellum.reporting import filter_issues, render_report, report_data

if TYPE_CHECKING:
    from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)

DEFAULT_PORT = 8377

_db: VellumDB | None = None

_BOOL_TRUE_VALUES = frozenset({"true", "1", "yes", "on"})
_BOOL_FALSE_VALUES = frozenset({"false", "0", "no", "off"})

_STATUS_FOR_ERROR: dict[type[VellumError], int] = {
    NotFoundError: 404,
    ValidationError: 400,
    DuplicateIdError: 409,
    InvalidTransitionError: 409,
    LockTimeoutError: 503,
}


def _error_response(
    message: str,
    code: str,
    status_code: int,
    details: dict[str, Any] | None = None,
) -> JSONResponse:
    """Return a structured error response and log the error."""
    from fastapi.responses import JSONResponse

    logger.warning("API error [%s] %s: %s", status_code, code, message)
    return JSONResponse(
        {"error": {"message": message, "code": code, "details": details or {}}},
        status_code=status_code,
    )


def _vellum_error_response(exc: VellumError) -> JSONResponse:
    status_code = next((s for cls, s in _STATUS_FOR_ERROR.items() if isinstance(exc, cls)), 500)
    return _error_response(str(exc), exc.code, status_code, {"hint": exc.hint} if exc.hint else None)


def _get_bool_param(params: Mapping[str, str], name: str, default: bool) -> bool | JSONResponse:
    """Extract a boolean query param, returning *default* when absent."""
    raw = params.get(name)
    if raw is None:
        return default
    value = raw.strip().lower()
    if value in _BOOL_TRUE_VALUES:
        return True
    if value in _BOOL_FALSE_VALUES:
        return False
    return _error_response(
        f'Invalid value for {name}: "{raw}". Must be one of true/false, 1/0, yes/no, on/off.',
        "validation_error",
        400,
        {"param": name, "value": raw},
    )


def _get_db() -> VellumDB:
    from fastapi import HTTPException

    if _db is None:
        raise HTTPException(status_code=500, detail="Ledger not initialized")
    return _db


def create_app() -> Any:
    """Create the FastAPI application with the read-only API endpoints."""
    from fastapi import Depends, FastAPI, Request
    from fastapi.responses import JSONResponse, PlainTextResponse

    # Expose Request in module globals so PEP 563 deferred annotations resolve
    globals()["Request"] = Request

    app = FastAPI(title="Vellum", docs_url=None, redoc_url=None)

    # Handlers are async so ledger reads stay on the event loop thread.

    @app.get("/api/issues", response_model=None)
    async def api_issues(request: Request, db: VellumDB = Depends(_get_db)) -> JSONResponse:
        params = request.query_params
        blocking = _get_bool_param(params, "blocking_only", False)
        if isinstance(blocking, JSONResponse):
            return blocking
        try:
            issues = filter_issues(
                db,
                status=params.get("status"),
                severity=params.get("severity"),
                blocking=blocking,
                file_path=params.get("file"),
            )
        except VellumError as exc:
            return _vellum_error_response(exc)
        return JSONResponse([i.to_dict() for i in issues])

    @app.get("/api/issue/{issue_id}", response_model=None)
    async def api_issue_detail(issue_id: str, db: VellumDB = Depends(_get_db)) -> JSONResponse:
        try:
            issue = db.get_issue(issue_id)
            data: dict[str, Any] = dict(issue.to_dict())
            data["valid_transitions"] = db.valid_transitions(issue_id)
        except VellumError as exc:
            return _vellum_error_response(exc)
        return JSONResponse(data)

    @app.get("/api/gate", response_model=None)
    async def api_gate(request: Request, db: VellumDB = Depends(_get_db)) -> JSONResponse:
        strict = _get_bool_param(request.query_params, "strict", False)
        if isinstance(strict, JSONResponse):
            return strict
        result = evaluate_safely(db, strict=strict)
        return JSONResponse(result.to_dict())

    @app.get("/api/report", response_model=None)
    async def api_report(request: Request, db: VellumDB = Depends(_get_db)) -> JSONResponse | PlainTextResponse:
        try:
            if request.query_params.get("format") == "markdown":
                return PlainTextResponse(render_report(db), media_type="text/markdown")
            return JSONResponse(report_data(db))
        except VellumError as exc:
            return _vellum_error_response(exc)

    return app


def main(port: int = DEFAULT_PORT) -> None:
    """Serve the API for the project discovered from cwd."""
    import uvicorn

    global _db

    vellum_dir = find_vellum_root()
    from vellum.logging import setup_logging

    setup_logging(vellum_dir)
    _db = VellumDB.from_vellum_dir(vellum_dir)

    app = create_app()
    print(f"Vellum API: http://localhost:{port}/api/gate")
    uvicorn.run(app, host="127.0.0.1", port=port, log_level="warning")
