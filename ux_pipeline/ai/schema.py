"""Pydantic data contracts for the external vision and model services."""

from typing import Any

from pydantic import BaseModel, Field, NonNegativeInt


class ModelCard(BaseModel):
    """Metadata identifying an AI/vision model."""

    name: str
    version: str


class VisionObject(BaseModel):
    model_config = {"extra": "ignore"}

    name: str


class VisionColor(BaseModel):
    model_config = {"extra": "ignore"}

    color: str


class VisionLabel(BaseModel):
    model_config = {"extra": "ignore"}

    name: str


class RawVisionMetadata(BaseModel):
    """Response of the vision metadata service: {objects[], text[], colors[], labels[], faces}."""

    model_config = {"extra": "ignore"}

    objects: list[VisionObject] = Field(default_factory=list)
    text: list[str] = Field(default_factory=list)
    colors: list[VisionColor] = Field(default_factory=list)
    labels: list[VisionLabel] = Field(default_factory=list)
    faces: NonNegativeInt = 0


class ModelRequest(BaseModel):
    """One stage model invocation."""

    request_type: str
    model: str
    image_ref: str
    prompt: str
    max_tokens: int
    temperature: float


class ModelResponse(BaseModel):
    """Stage model reply: stage-specific analysis payload plus reported token usage."""

    analysis: Any = None
    token_usage: NonNegativeInt | None = Field(default=None, alias="tokenUsage")

    model_config = {"populate_by_name": True, "extra": "ignore"}
