"""Unit tests for signed partner callbacks."""

from __future__ import annotations

import hashlib
import hmac

import httpx

from caption_pipeline.integration import (
    CallbackPayload,
    CallbackSender,
    WorkflowStatus,
    encode_payload,
    sign_payload,
)


def _payload() -> CallbackPayload:
    return CallbackPayload(
        content_id="content-1",
        portal_id="portal-1",
        video_id="video-1",
        status=WorkflowStatus.RENDERING,
        render_job_id="job-1",
        progress=0,
    )


def _sender(handler, sleeps: list[float]) -> CallbackSender:
    client = httpx.Client(transport=httpx.MockTransport(handler))
    return CallbackSender(client, "shared-secret", timeout_sec=5, sleep=sleeps.append)


def test_encode_payload__compact_camel_case_without_nulls() -> None:
    assert encode_payload(_payload()) == (
        b'{"contentId":"content-1","portalId":"portal-1","videoId":"video-1",'
        b'"status":"rendering","renderJobId":"job-1","progress":0}'
    )


def test_send__retries_with_backoff_then_succeeds() -> None:
    """Two failures sleep 1s then 2s before the third attempt succeeds."""
    responses = iter([httpx.Response(500), httpx.Response(502), httpx.Response(204)])
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return next(responses)

    sleeps: list[float] = []
    delivered = _sender(handler, sleeps).send("https://partner.test/render", _payload())

    assert delivered is True
    assert sleeps == [1, 2]
    assert len(seen) == 3
    body = seen[-1].content
    expected = hmac.new(b"shared-secret", body, hashlib.sha256).hexdigest()
    assert seen[-1].headers["X-Signature"] == expected
    assert seen[-1].headers["Content-Type"] == "application/json"
    assert body == encode_payload(_payload())


def test_send__gives_up_without_trailing_sleep() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectTimeout("timed out", request=request)

    sleeps: list[float] = []
    delivered = _sender(handler, sleeps).send("https://partner.test/render", _payload(), max_retries=2)

    assert delivered is False
    assert sleeps == [1]


def test_sign_payload__matches_hmac_sha256() -> None:
    body = b'{"ok":true}'
    assert sign_payload(body, "k") == hmac.new(b"k", body, hashlib.sha256).hexdigest()
