"""Signed, retried delivery of partner callbacks."""

from __future__ import annotations

import hashlib
import hmac
import json
import time
from collections.abc import Callable

import httpx

from caption_pipeline.integration.models import CallbackPayload
from caption_pipeline.utils.logging_config import get_logger

logger = get_logger(__name__)


def encode_payload(payload: CallbackPayload) -> bytes:
    """Serialize ``payload`` to the compact JSON body that is signed and sent."""
    return json.dumps(payload.to_wire(), separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def sign_payload(body: bytes, secret: str) -> str:
    """Return ``hex(HMAC-SHA256(secret, body))``."""
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


class CallbackSender:
    """POST callbacks with an ``X-Signature`` header and exponential backoff.

    Attempt ``n`` (zero based) that fails is followed by a ``2**n`` second
    sleep, except after the last attempt. Delivery is at least once: the
    partner must tolerate duplicates.
    """

    def __init__(
        self,
        http_client: httpx.Client,
        secret: str,
        *,
        timeout_sec: float = 30.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.http = http_client
        self.secret = secret
        self.timeout_sec = timeout_sec
        self.sleep = sleep

    def send(self, url: str, payload: CallbackPayload, max_retries: int = 3) -> bool:
        """Deliver ``payload`` to ``url``.

        Returns:
            ``True`` on the first 2xx response, ``False`` once ``max_retries``
            attempts have failed. Transport errors count as failed attempts.
        """
        body = encode_payload(payload)
        headers = {
            "Content-Type": "application/json",
            "X-Signature": sign_payload(body, self.secret),
        }

        for attempt in range(max_retries):
            try:
                response = self.http.post(
                    url, content=body, headers=headers, timeout=self.timeout_sec
                )
            except httpx.RequestError as exc:
                logger.error("Callback error attempt %d to %s: %s", attempt + 1, url, exc)
            else:
                if response.is_success:
                    logger.info("Callback success to %s", url)
                    return True
                logger.warning(
                    "Callback failed (%d) attempt %d to %s", response.status_code, attempt + 1, url
                )

            if attempt < max_retries - 1:
                self.sleep(2**attempt)

        return False
