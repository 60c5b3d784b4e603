"""Abstract base and mock implementation for vision metadata clients."""

import time
from abc import ABC, abstractmethod

from ux_pipeline.ai.schema import ModelCard, RawVisionMetadata, VisionColor, VisionLabel, VisionObject


class BaseVisionClient(ABC):
    """Abstract base for the vision metadata service (objects, text, colors, labels, faces)."""

    @abstractmethod
    def get_model_card(self) -> ModelCard:
        """Return model identity (name, version)."""
        ...

    @abstractmethod
    def extract_metadata(self, image_ref: str) -> RawVisionMetadata:
        """Return raw vision metadata for the image at image_ref."""
        ...


class MockVisionClient(BaseVisionClient):
    """Placeholder client for testing and development."""

    def __init__(self, latency_seconds: float = 0.0) -> None:
        self._latency = latency_seconds

    def get_model_card(self) -> ModelCard:
        return ModelCard(name="mock-vision", version="1.0")

    def extract_metadata(self, image_ref: str) -> RawVisionMetadata:
        if self._latency:
            time.sleep(self._latency)
        return RawVisionMetadata(
            objects=[VisionObject(name=n) for n in ("Button", "Navigation bar", "Card", "Image")],
            text=["Sign up", "Welcome back", "Continue with email", "OK"],
            colors=[VisionColor(color=c) for c in ("#FFFFFF", "#1A73E8", "#202124", "#F1F3F4")],
            labels=[VisionLabel(name=n) for n in ("Web page", "Font", "Screenshot", "Brand")],
            faces=0,
        )
