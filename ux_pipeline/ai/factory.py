"""Factories for vision clients and stage models. Remote clients are imported lazily."""

from ux_pipeline.ai.model_base import BaseStageModel
from ux_pipeline.ai.vision_base import BaseVisionClient


def get_vision_client(
    backend: str,
    *,
    endpoint: str | None = None,
    api_key: str | None = None,
) -> BaseVisionClient:
    """Return a vision metadata client by backend name."""
    if backend == "mock":
        from ux_pipeline.ai.vision_base import MockVisionClient

        return MockVisionClient()
    if backend == "remote":
        from ux_pipeline.ai.remote import RemoteVisionClient

        return RemoteVisionClient(endpoint=endpoint, api_key=api_key)
    raise ValueError(f"Unknown vision backend: {backend}")


def get_stage_model(
    backend: str,
    model_id: str,
    *,
    endpoint: str | None = None,
    api_key: str | None = None,
) -> BaseStageModel:
    """Return a stage model client for model_id by backend name."""
    if backend == "mock":
        from ux_pipeline.ai.model_base import MockStageModel

        return MockStageModel(model_id=model_id)
    if backend == "remote":
        from ux_pipeline.ai.remote import RemoteStageModel

        return RemoteStageModel(model_id, endpoint=endpoint, api_key=api_key)
    raise ValueError(f"Unknown model backend: {backend}")
