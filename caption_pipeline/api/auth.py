"""Authentication helpers for integration and worker routes."""

from __future__ import annotations

import secrets

import jwt
from fastapi import Request
from fastapi.responses import JSONResponse

from caption_pipeline.api.schemas import ErrorObject, ErrorResponse
from caption_pipeline.render.worker import verify_worker_token
from caption_pipeline.utils.logging_config import get_logger

logger = get_logger(__name__)


def _build_unauthorized_response(code: str = "invalid_api_key") -> JSONResponse:
    payload = ErrorResponse(
        error=ErrorObject(
            message="Invalid authentication credentials.",
            type="invalid_request_error",
            code=code,
        )
    ).model_dump()
    return JSONResponse(status_code=401, content=payload)


def _bearer_token(request: Request) -> str | None:
    authorization_header = request.headers.get("Authorization", "").strip()
    scheme, _, token = authorization_header.partition(" ")
    token = token.strip()
    if scheme.lower() != "bearer" or not token:
        return None
    return token


def require_integration_token(request: Request, expected_token: str) -> JSONResponse | None:
    """Validate the partner's bearer token.

    Auth is disabled (open mode) when ``expected_token`` is empty.

    Returns:
        ``None`` when authorized, otherwise a 401 JSON response.
    """
    if not expected_token:
        return None

    provided_token = _bearer_token(request)
    if provided_token is None or not secrets.compare_digest(provided_token, expected_token):
        return _build_unauthorized_response()
    return None


def require_worker_token(request: Request, job_id: str, secret: str) -> JSONResponse | None:
    """Validate a worker's job token and check it was issued for ``job_id``.

    Returns:
        ``None`` when authorized, otherwise a 401 JSON response.
    """
    token = _bearer_token(request)
    if token is None or not secret:
        return _build_unauthorized_response("invalid_worker_token")
    try:
        claims = verify_worker_token(token, secret, verify_exp=False)
    except jwt.InvalidTokenError as exc:
        logger.warning("Rejected worker token for job %s: %s", job_id, exc)
        return _build_unauthorized_response("invalid_worker_token")
    if claims.get("jobId") != job_id:
        logger.warning("Worker token issued for job %s used for job %s", claims.get("jobId"), job_id)
        return _build_unauthorized_response("invalid_worker_token")
    return None
