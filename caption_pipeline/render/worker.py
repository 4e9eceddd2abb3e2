"""Client for the remote rendering worker and its job tokens."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

import httpx
import jwt

from caption_pipeline.config import WorkerConfig
from caption_pipeline.errors import WorkerRejectedError, WorkerUnreachableError
from caption_pipeline.utils.logging_config import get_logger

logger = get_logger(__name__)

TOKEN_ALGORITHM = "HS256"


def sign_worker_token(
    job_id: str,
    upload_id: str,
    secret: str,
    *,
    ttl_sec: int = 600,
    now: datetime | None = None,
) -> str:
    """Sign a short-lived token identifying one job for the worker.

    Args:
        job_id: Render job id.
        upload_id: Upload id.
        secret: Shared worker secret.
        ttl_sec: Token lifetime (10 minutes by default).
        now: Issue time override for tests.

    Returns:
        Encoded HS256 JWT with ``jobId``, ``uploadId``, ``iat`` and ``exp``.
    """
    issued = now or datetime.now(timezone.utc)
    claims = {
        "jobId": job_id,
        "uploadId": upload_id,
        "iat": issued,
        "exp": issued + timedelta(seconds=ttl_sec),
    }
    return jwt.encode(claims, secret, algorithm=TOKEN_ALGORITHM)


def verify_worker_token(token: str, secret: str, *, verify_exp: bool = True) -> dict[str, Any]:
    """Decode a worker token, validating its signature and optionally expiry.

    Args:
        token: Encoded JWT.
        secret: Shared worker secret.
        verify_exp: Reject tokens past ``exp``. Completion hooks disable this
            since a render may outlive its dispatch token.

    Raises:
        jwt.InvalidTokenError: If the token is malformed, forged or (when
            checked) expired.
    """
    return jwt.decode(
        token,
        secret,
        algorithms=[TOKEN_ALGORITHM],
        options={"verify_exp": verify_exp},
    )


class WorkerClient:
    """Dispatches render payloads to ``POST {worker}/render``."""

    def __init__(self, config: WorkerConfig, http_client: httpx.Client) -> None:
        self.config = config
        self.http = http_client

    def dispatch(self, payload: dict[str, Any], *, job_id: str, upload_id: str) -> None:
        """Send a render payload.

        Raises:
            CaptionConfigurationError: If the worker is not configured.
            WorkerUnreachableError: On connection errors or timeouts.
            WorkerRejectedError: On a non-2xx response; ``reason`` holds the body.
        """
        self.config.require()
        token = sign_worker_token(
            job_id, upload_id, self.config.secret, ttl_sec=self.config.token_ttl_sec
        )
        url = f"{self.config.url.rstrip('/')}/render"
        try:
            response = self.http.post(
                url,
                json=payload,
                headers={"Authorization": f"Bearer {token}"},
                timeout=self.config.timeout_sec,
            )
        except httpx.RequestError as exc:
            logger.error("Worker unreachable: job=%s url=%s error=%s", job_id, url, exc)
            raise WorkerUnreachableError("Unable to reach worker") from exc

        if not response.is_success:
            reason = response.text
            logger.error(
                "Worker rejected render job: job=%s status=%d reason=%s",
                job_id,
                response.status_code,
                reason,
            )
            raise WorkerRejectedError("Worker rejected job", reason=reason)

        logger.info("Worker accepted render job %s", job_id)
