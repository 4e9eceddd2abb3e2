"""Registry of caption templates.

Each template pairs a style definition with the formatter that renders it.
New templates are added by registering a :class:`CaptionTemplateSpec` in
``CAPTION_TEMPLATES``.
"""

from __future__ import annotations

import hashlib
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Literal

from caption_pipeline.captions._ass import to_ass_karaoke, to_ass_minimal
from caption_pipeline.captions._srt import to_srt
from caption_pipeline.captions.styles import (
    TEMPLATE_STYLES,
    RenderStyle,
    TemplateStyle,
    resolve_style,
)
from caption_pipeline.errors import CaptionConfigurationError
from caption_pipeline.segments.models import Segment

CaptionFormat = Literal["ass", "srt"]


@dataclass
class CaptionTemplateSpec:
    """Metadata and formatter for a caption template.

    Attributes:
        format_func: Renders segments with a resolved style.
        caption_format: Subtitle format produced.
        style: Template style definition.
        content_type: MIME type used when storing the file.

    """

    format_func: Callable[[Sequence[Segment], RenderStyle], str]
    caption_format: CaptionFormat
    style: TemplateStyle
    content_type: str

    @property
    def file_extension(self) -> str:
        return f".{self.caption_format}"


CAPTION_TEMPLATES: dict[str, CaptionTemplateSpec] = {
    "karaoke": CaptionTemplateSpec(
        format_func=to_ass_karaoke,
        caption_format="ass",
        style=TEMPLATE_STYLES["karaoke"],
        content_type="text/x-ass",
    ),
    "minimal": CaptionTemplateSpec(
        format_func=to_ass_minimal,
        caption_format="ass",
        style=TEMPLATE_STYLES["minimal"],
        content_type="text/x-ass",
    ),
    "plain": CaptionTemplateSpec(
        format_func=to_srt,
        caption_format="srt",
        style=TEMPLATE_STYLES["plain"],
        content_type="text/plain",
    ),
}

# Names used by partner systems and older editors.
TEMPLATE_ALIASES: dict[str, str] = {
    "creator-kinetic": "karaoke",
    "modern": "minimal",
}


@dataclass(frozen=True)
class CaptionFile:
    """A rendered caption file."""

    content: str
    format: CaptionFormat
    content_type: str

    @property
    def sha256(self) -> str:
        return caption_hash(self.content)


def resolve_template_name(name: str) -> str:
    """Map a template name or alias to its registered name.

    Raises:
        CaptionConfigurationError: If the template is unknown.
    """
    key = name.strip().lower()
    key = TEMPLATE_ALIASES.get(key, key)
    if key not in CAPTION_TEMPLATES:
        supported = sorted(CAPTION_TEMPLATES)
        raise CaptionConfigurationError(
            f"Unsupported caption template: '{name}'. Supported templates are: {supported}",
            code="unknown_template",
        )
    return key


def get_template_spec(name: str) -> CaptionTemplateSpec:
    """Retrieve the template spec for ``name`` (aliases accepted)."""
    return CAPTION_TEMPLATES[resolve_template_name(name)]


def build_caption_file(
    template: str,
    segments: Sequence[Segment],
    style_overrides: Mapping[str, Any] | None = None,
) -> CaptionFile:
    """Render ``segments`` with ``template``.

    The output is a pure function of the inputs, so its hash identifies the
    rendered captions.

    Args:
        template: Template name or alias.
        segments: Canonical caption segments.
        style_overrides: ``customStyles`` mapping (canvas size, colors, layout).

    Returns:
        The caption file content and format.

    Raises:
        CaptionConfigurationError: If ``template`` is unknown.
    """
    spec = get_template_spec(template)
    style = resolve_style(spec.style, style_overrides)
    content = spec.format_func(segments, style)
    return CaptionFile(content=content, format=spec.caption_format, content_type=spec.content_type)


def caption_hash(content: str) -> str:
    """Return the SHA-256 hex digest of caption content."""
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


__all__ = [
    "CAPTION_TEMPLATES",
    "TEMPLATE_ALIASES",
    "CaptionFile",
    "CaptionTemplateSpec",
    "build_caption_file",
    "caption_hash",
    "get_template_spec",
    "resolve_template_name",
]
