"""AI module: data contracts and external vision/model client abstractions."""

from ux_pipeline.ai.schema import ModelCard, ModelRequest, ModelResponse, RawVisionMetadata
from ux_pipeline.ai.model_base import BaseStageModel, MockStageModel
from ux_pipeline.ai.vision_base import BaseVisionClient, MockVisionClient
from ux_pipeline.ai.factory import get_stage_model, get_vision_client

__all__ = [
    "BaseStageModel",
    "BaseVisionClient",
    "MockStageModel",
    "MockVisionClient",
    "ModelCard",
    "ModelRequest",
    "ModelResponse",
    "RawVisionMetadata",
    "get_stage_model",
    "get_vision_client",
]
