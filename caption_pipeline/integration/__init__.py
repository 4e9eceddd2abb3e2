"""Integration partner workflow tracking and signed callbacks."""

from caption_pipeline.integration.callbacks import CallbackSender, encode_payload, sign_payload
from caption_pipeline.integration.models import (
    CallbackPayload,
    CaptionSetDocument,
    IntegrationVideo,
    WorkflowStatus,
)
from caption_pipeline.integration.service import IntegrationService

__all__ = [
    "CallbackPayload",
    "CallbackSender",
    "CaptionSetDocument",
    "IntegrationService",
    "IntegrationVideo",
    "WorkflowStatus",
    "encode_payload",
    "sign_payload",
]
