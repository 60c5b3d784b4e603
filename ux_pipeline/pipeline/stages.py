"""Stage definitions: vision metadata, vision-informed UX analysis, and synthesis."""

import json
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping, NamedTuple

from ux_pipeline.ai.model_base import SYNTHESIS_REQUEST, UX_ANALYSIS_REQUEST, BaseStageModel
from ux_pipeline.ai.schema import ModelRequest
from ux_pipeline.pipeline.budget import BudgetGroup
from ux_pipeline.pipeline.errors import MetadataExtractionFailed, PipelineError, StageExecutionFailed
from ux_pipeline.pipeline.metadata import CompressedMetadata, MetadataExtractor
from ux_pipeline.pipeline.outputs import FinalOutput, MetadataOutput, Stage1Output
from ux_pipeline.pipeline.prompts import build_synthesis_prompt, build_ux_analysis_prompt

_log = logging.getLogger(__name__)

VISION_STAGE = "vision_metadata"
UX_ANALYSIS_STAGE = "ux_analysis"
SYNTHESIS_STAGE = "synthesis"

UX_ANALYSIS_MAX_TOKENS = 1500
UX_ANALYSIS_TEMPERATURE = 0.7
UX_ANALYSIS_MIN_TOKENS = 1500
SYNTHESIS_MAX_TOKENS = 2000
SYNTHESIS_RESERVE_TOKENS = 500
SYNTHESIS_TEMPERATURE = 0.4
SYNTHESIS_MIN_TOKENS = 3000

_FENCE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL)


@dataclass(frozen=True)
class StageContext:
    """Everything a stage may read: the image, earlier outputs, user context, and its token allowance."""

    image_ref: str
    prior_outputs: Mapping[str, Any]
    user_context: str
    model_id: str
    token_allowance: int


class StageOutcome(NamedTuple):
    output: Any
    tokens_consumed: int | None


@dataclass(frozen=True)
class StageSpec:
    """
    One named unit of pipeline work.

    min_tokens is the floor remaining(metered_model_id, budget_group) must reach before the stage runs.
    percent is the progress reported once the stage finishes. fallback, when set, produces a
    local substitute output under the degrade policy instead of failing the run.
    """

    name: str
    model_id: str
    budget_group: BudgetGroup
    min_tokens: int
    percent: int
    message: str
    execute: Callable[[StageContext], StageOutcome]
    failure: type[PipelineError] = StageExecutionFailed
    fallback: Callable[[BaseException], Any] | None = field(default=None)
    compressed: bool = False
    budget_model_id: str | None = None

    def __post_init__(self) -> None:
        if not 0 < self.percent < 100:
            raise ValueError(f"Stage '{self.name}' percent must be between 1 and 99, got {self.percent}")
        if self.min_tokens < 0:
            raise ValueError(f"Stage '{self.name}' min_tokens cannot be negative")

    @property
    def metered_model_id(self) -> str:
        """Model whose budget table entry governs this stage."""
        return self.budget_model_id or self.model_id


def parse_analysis_payload(analysis: Any) -> dict[str, Any]:
    """
    Accept a JSON object, or a string holding one (optionally inside a Markdown code fence).
    Raises ValueError for anything else.
    """
    if isinstance(analysis, dict):
        return analysis
    if isinstance(analysis, str):
        text = analysis.strip()
        match = _FENCE.match(text)
        if match:
            text = match.group(1)
        try:
            parsed = json.loads(text)
        except json.JSONDecodeError as e:
            raise ValueError(f"unparsable analysis content: {e.msg}") from e
        if isinstance(parsed, dict):
            return parsed
        raise ValueError(f"analysis JSON is a {type(parsed).__name__}, expected an object")
    raise ValueError(f"analysis is {type(analysis).__name__}, expected a JSON object")


def _find_output(prior_outputs: Mapping[str, Any], output_type: type) -> Any:
    for output in prior_outputs.values():
        if isinstance(output, output_type):
            return output
    return None


def _metadata_from(ctx: StageContext) -> CompressedMetadata:
    found = _find_output(ctx.prior_outputs, MetadataOutput)
    return found.metadata if found is not None else CompressedMetadata()


class VisionMetadataStage:
    """Stage wrapper around MetadataExtractor. The vision service consumes no model tokens."""

    def __init__(self, extractor: MetadataExtractor) -> None:
        self._extractor = extractor

    def __call__(self, ctx: StageContext) -> StageOutcome:
        return StageOutcome(MetadataOutput(metadata=self._extractor.extract(ctx.image_ref)), 0)

    @staticmethod
    def degrade(cause: BaseException) -> MetadataOutput:
        _log.warning("Vision metadata unavailable, continuing with defaults: %s", cause)
        return MetadataOutput(metadata=CompressedMetadata(), degraded=True, reason=str(cause) or type(cause).__name__)


class _ModelStage(ABC):
    """One external model call: build the request, parse the reply, report tokens."""

    request_type: str
    temperature: float

    def __init__(self, model: BaseStageModel) -> None:
        self._model = model

    @abstractmethod
    def max_tokens(self, allowance: int) -> int:
        ...

    @abstractmethod
    def build_prompt(self, ctx: StageContext) -> str:
        ...

    @abstractmethod
    def wrap(self, payload: dict[str, Any]) -> Any:
        ...

    def __call__(self, ctx: StageContext) -> StageOutcome:
        max_tokens = self.max_tokens(ctx.token_allowance)
        request = ModelRequest(
            request_type=self.request_type,
            model=ctx.model_id,
            image_ref=ctx.image_ref,
            prompt=self.build_prompt(ctx),
            max_tokens=max_tokens,
            temperature=self.temperature,
        )
        response = self._model.invoke(request)
        payload = parse_analysis_payload(response.analysis)
        tokens = response.token_usage
        if tokens is None:
            _log.warning("%s returned no token usage; charging the requested %s", ctx.model_id, max_tokens)
            tokens = max_tokens
        return StageOutcome(self.wrap(payload), tokens)


class UXAnalysisStage(_ModelStage):
    request_type = UX_ANALYSIS_REQUEST
    temperature = UX_ANALYSIS_TEMPERATURE

    def max_tokens(self, allowance: int) -> int:
        return min(UX_ANALYSIS_MAX_TOKENS, allowance)

    def build_prompt(self, ctx: StageContext) -> str:
        return build_ux_analysis_prompt(_metadata_from(ctx), ctx.user_context)

    def wrap(self, payload: dict[str, Any]) -> Stage1Output:
        return Stage1Output(payload=payload)


class SynthesisStage(_ModelStage):
    request_type = SYNTHESIS_REQUEST
    temperature = SYNTHESIS_TEMPERATURE

    def max_tokens(self, allowance: int) -> int:
        return min(allowance - SYNTHESIS_RESERVE_TOKENS, SYNTHESIS_MAX_TOKENS)

    def build_prompt(self, ctx: StageContext) -> str:
        stage1 = _find_output(ctx.prior_outputs, Stage1Output)
        return build_synthesis_prompt(
            _metadata_from(ctx),
            stage1.payload if stage1 is not None else {},
            ctx.user_context,
        )

    def wrap(self, payload: dict[str, Any]) -> FinalOutput:
        return FinalOutput(payload=payload)


def build_default_stages(
    extractor: MetadataExtractor,
    ux_model: BaseStageModel,
    ux_model_id: str,
    synthesis_model: BaseStageModel,
    synthesis_model_id: str,
) -> list[StageSpec]:
    """Vision metadata -> vision-informed UX analysis -> synthesis."""
    return [
        StageSpec(
            name=VISION_STAGE,
            model_id=extractor.model_id,
            budget_group=BudgetGroup.stage1,
            min_tokens=0,
            percent=20,
            message="Extracting visual metadata",
            execute=VisionMetadataStage(extractor),
            failure=MetadataExtractionFailed,
            fallback=VisionMetadataStage.degrade,
            compressed=True,
            budget_model_id=ux_model_id,
        ),
        StageSpec(
            name=UX_ANALYSIS_STAGE,
            model_id=ux_model_id,
            budget_group=BudgetGroup.stage2,
            min_tokens=UX_ANALYSIS_MIN_TOKENS,
            percent=50,
            message="Performing vision-informed UX analysis",
            execute=UXAnalysisStage(ux_model),
        ),
        StageSpec(
            name=SYNTHESIS_STAGE,
            model_id=synthesis_model_id,
            budget_group=BudgetGroup.stage3,
            min_tokens=SYNTHESIS_MIN_TOKENS,
            percent=80,
            message="Synthesizing final analysis",
            execute=SynthesisStage(synthesis_model),
        ),
    ]
