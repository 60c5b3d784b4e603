"""End-to-end wiring: stages -> consolidation -> persistence, for one image or a batch."""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Iterable, Mapping, Sequence

from ux_pipeline.ai.factory import get_stage_model, get_vision_client
from ux_pipeline.core.config import Settings
from ux_pipeline.pipeline.budget import TokenBudget
from ux_pipeline.pipeline.consolidation import ConsolidationSafety
from ux_pipeline.pipeline.errors import ConsolidationFailed, PersistenceFailed, PipelineError
from ux_pipeline.pipeline.metadata import MetadataExtractor
from ux_pipeline.pipeline.orchestrator import PipelineRun, StageOrchestrator
from ux_pipeline.pipeline.outputs import StageResult
from ux_pipeline.pipeline.policy import FallbackPolicy
from ux_pipeline.pipeline.progress import COMPLETE_STAGE, ProgressObserver, ProgressReporter
from ux_pipeline.pipeline.record import AnalysisRecord
from ux_pipeline.pipeline.recovery import RetryPolicy
from ux_pipeline.pipeline.stages import StageSpec, build_default_stages
from ux_pipeline.repository.analysis_repo import AnalysisRepository

_log = logging.getLogger(__name__)

INITIALIZING_STAGE = "initializing"
CONSOLIDATION_STAGE = "consolidation"
CONSOLIDATION_PERCENT = 90
DEFAULT_MAX_CONCURRENT_RUNS = 4


@dataclass(frozen=True)
class AnalysisRequest:
    image_ref: str
    image_id: str
    user_context: str = ""


@dataclass(frozen=True)
class PipelineOutcome:
    record: AnalysisRecord
    warnings: tuple[str, ...]
    fallbacks_applied: tuple[str, ...]
    history: tuple[StageResult, ...]
    degraded: bool
    token_usage: int


@dataclass(frozen=True)
class BatchItemResult:
    """Per-image result of run_many: exactly one of outcome or error is set."""

    image_id: str
    outcome: PipelineOutcome | None = None
    error: PipelineError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class AnalysisPipeline:
    """
    Owns the stage list, the budget table, the fallback policy and the write path.

    Stateless between runs: every run() builds its own PipelineRun (tracker, history,
    cancel signal) and its own ProgressReporter, so concurrent runs never share state.
    """

    def __init__(
        self,
        stages: Sequence[StageSpec],
        budgets: Mapping[str, TokenBudget],
        policy: FallbackPolicy = FallbackPolicy.hard_fail,
        repository: AnalysisRepository | None = None,
        max_concurrent_runs: int = DEFAULT_MAX_CONCURRENT_RUNS,
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        self._orchestrator = StageOrchestrator(stages, policy, retry_policy=retry_policy)
        missing = sorted({s.metered_model_id for s in stages} - set(budgets))
        if missing:
            raise ValueError(f"No token budget configured for model(s): {', '.join(missing)}")
        self._budgets = dict(budgets)
        self._budget_model_id = stages[0].metered_model_id
        self._consolidation = ConsolidationSafety(
            policy=policy,
            pipeline_label=" -> ".join(s.name for s in stages),
        )
        self._repository = repository
        self._max_concurrent_runs = max(1, max_concurrent_runs)

    @classmethod
    def from_settings(cls, settings: Settings, repository: AnalysisRepository | None = None) -> "AnalysisPipeline":
        """Build the default vision -> UX analysis -> synthesis pipeline from config."""
        endpoint, api_key = settings.analysis_endpoint, settings.api_key
        vision = get_vision_client(settings.vision_backend, endpoint=endpoint, api_key=api_key)
        ux_model = get_stage_model(settings.model_backend, settings.ux_analysis_model, endpoint=endpoint, api_key=api_key)
        synthesis_model = get_stage_model(
            settings.model_backend, settings.synthesis_model, endpoint=endpoint, api_key=api_key
        )
        stages = build_default_stages(
            MetadataExtractor(vision),
            ux_model,
            settings.ux_analysis_model,
            synthesis_model,
            settings.synthesis_model,
        )
        return cls(
            stages,
            settings.token_budgets,
            settings.fallback_policy,
            repository=repository,
            max_concurrent_runs=settings.max_concurrent_runs,
            retry_policy=RetryPolicy(
                max_retries=settings.stage_max_retries,
                backoff_base=settings.retry_backoff_seconds,
                backoff_cap=settings.retry_backoff_cap_seconds,
            ),
        )

    @property
    def policy(self) -> FallbackPolicy:
        return self._orchestrator.policy

    @property
    def stages(self) -> tuple[StageSpec, ...]:
        return self._orchestrator.stages

    @property
    def retry_policy(self) -> RetryPolicy:
        return self._orchestrator.retry_policy

    def run(
        self,
        image_ref: str,
        image_id: str,
        user_context: str = "",
        observers: Iterable[ProgressObserver] = (),
        cancel_event: threading.Event | None = None,
    ) -> PipelineOutcome:
        """
        Analyze one image and persist the consolidated record (when a repository is set).

        Raises a PipelineError subclass naming the failing stage. Progress reaches 100 only
        after the record has been written.
        """
        run = PipelineRun.start(
            image_ref,
            image_id,
            self._budgets,
            self._budget_model_id,
            user_context=user_context,
            cancel_event=cancel_event,
        )
        _log.info("Run %s: analyzing %s (%s policy)", run.run_id, image_id, self.policy.value)
        with ProgressReporter(observers) as reporter:
            reporter.publish(run.progress(INITIALIZING_STAGE, 0, "Starting analysis"))
            history = self._orchestrator.execute(run, reporter)
            try:
                result = self._consolidation.consolidate(history, image_id=image_id)
                for warning in result.warnings:
                    _log.warning("Run %s (%s): %s", run.run_id, image_id, warning)
                reporter.publish(run.progress(CONSOLIDATION_STAGE, CONSOLIDATION_PERCENT, "Consolidating results"))
                self._persist(image_id, result.record, run)
            except (ConsolidationFailed, PersistenceFailed) as e:
                _log.error("Run %s: %s", run.run_id, e)
                reporter.publish(run.progress(e.stage_name, reporter.last_percent, f"{e.stage_name} failed: {e.reason}"))
                raise
            reporter.publish(run.progress(COMPLETE_STAGE, 100, "Analysis complete"))

        _log.info("Run %s: completed %s using %s tokens", run.run_id, image_id, run.tracker.used)
        return PipelineOutcome(
            record=result.record,
            warnings=tuple(result.warnings),
            fallbacks_applied=tuple(result.fallbacks_applied),
            history=history,
            degraded=run.degraded,
            token_usage=run.tracker.used,
        )

    def _persist(self, image_id: str, record: AnalysisRecord, run: PipelineRun) -> None:
        if self._repository is None:
            return
        try:
            self._repository.upsert_analysis(image_id, record, user_context=run.user_context)
        except Exception as e:
            raise PersistenceFailed(image_id, e, run.history) from e

    def run_many(
        self,
        requests: Sequence[AnalysisRequest],
        max_workers: int | None = None,
        observers: Iterable[ProgressObserver] = (),
        cancel_event: threading.Event | None = None,
    ) -> list[BatchItemResult]:
        """
        Run independent analyses concurrently. A failure in one run is reported in its
        BatchItemResult and never affects the others. Results follow request order.
        """
        if not requests:
            return []
        observers = list(observers)
        workers = min(max_workers or self._max_concurrent_runs, len(requests))
        results: dict[int, BatchItemResult] = {}
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="analysis") as executor:
            futures = {
                executor.submit(
                    self.run,
                    req.image_ref,
                    req.image_id,
                    req.user_context,
                    observers,
                    cancel_event,
                ): index
                for index, req in enumerate(requests)
            }
            for future in as_completed(futures):
                index = futures[future]
                image_id = requests[index].image_id
                try:
                    results[index] = BatchItemResult(image_id=image_id, outcome=future.result())
                except PipelineError as e:
                    _log.warning("Analysis of %s failed at %s: %s", image_id, e.stage_name, e.reason)
                    results[index] = BatchItemResult(image_id=image_id, error=e)
        return [results[i] for i in range(len(requests))]
