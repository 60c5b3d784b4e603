"""Vision metadata extraction and its deterministic compression."""

import logging

from pydantic import BaseModel, ConfigDict, NonNegativeInt, ValidationError
from pydantic.alias_generators import to_camel

from ux_pipeline.ai.schema import RawVisionMetadata
from ux_pipeline.ai.vision_base import BaseVisionClient

_log = logging.getLogger(__name__)

MAX_ELEMENTS = 8
MAX_TEXT_FRAGMENTS = 5
MIN_TEXT_FRAGMENT_LENGTH = 3
MAX_TEXT_FRAGMENT_CHARS = 20
MAX_COLORS = 3
MAX_LABELS = 5

DEFAULT_ELEMENTS = "interface elements"
DEFAULT_TEXT_SUMMARY = "minimal text content"
DEFAULT_COLOR_PALETTE = "standard colors"
DEFAULT_LABELS_SUMMARY = "UI components"


class CompressedMetadata(BaseModel):
    """Compact summary of the vision output handed to the model stages."""

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    elements: str = DEFAULT_ELEMENTS
    text_summary: str = DEFAULT_TEXT_SUMMARY
    color_palette: str = DEFAULT_COLOR_PALETTE
    labels_summary: str = DEFAULT_LABELS_SUMMARY
    object_count: NonNegativeInt = 0
    text_count: NonNegativeInt = 0
    face_count: NonNegativeInt = 0


def _join_or_default(values: list[str], default: str) -> str:
    return ", ".join(values) or default


def compress_text(fragments: list[str]) -> str:
    """First five fragments, keep those longer than two chars, truncate each to 20 chars."""
    significant = [
        fragment[:MAX_TEXT_FRAGMENT_CHARS]
        for fragment in fragments[:MAX_TEXT_FRAGMENTS]
        if len(fragment) >= MIN_TEXT_FRAGMENT_LENGTH
    ]
    return _join_or_default(significant, DEFAULT_TEXT_SUMMARY)


def compress_metadata(raw: RawVisionMetadata) -> CompressedMetadata:
    """Pure function of the raw vision output: identical input gives identical output."""
    return CompressedMetadata(
        elements=_join_or_default([o.name for o in raw.objects[:MAX_ELEMENTS]], DEFAULT_ELEMENTS),
        text_summary=compress_text(raw.text),
        color_palette=_join_or_default([c.color for c in raw.colors[:MAX_COLORS]], DEFAULT_COLOR_PALETTE),
        labels_summary=_join_or_default([lb.name for lb in raw.labels[:MAX_LABELS]], DEFAULT_LABELS_SUMMARY),
        object_count=len(raw.objects),
        text_count=len(raw.text),
        face_count=raw.faces,
    )


class MetadataExtractor:
    """Calls the vision service once per run and compresses the result."""

    def __init__(self, client: BaseVisionClient) -> None:
        self._client = client

    @property
    def model_id(self) -> str:
        return self._client.get_model_card().name

    def extract(self, image_ref: str) -> CompressedMetadata:
        """
        Run exactly one vision call for image_ref.

        Raises ValueError when the service answers with data that does not match the vision contract;
        transport errors from the client propagate unchanged.
        """
        try:
            raw = self._client.extract_metadata(image_ref)
        except ValidationError as e:
            raise ValueError(f"unusable vision data: {e.error_count()} validation error(s)") from e
        compressed = compress_metadata(raw)
        _log.debug(
            "Metadata compressed from %s to %s characters",
            len(raw.model_dump_json()),
            len(compressed.model_dump_json()),
        )
        return compressed
