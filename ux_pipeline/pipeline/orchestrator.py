"""Ordered stage execution with budget checks, an append-only audit trail, and progress events."""

import logging
import threading
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping, Sequence

from ux_pipeline.pipeline.budget import TokenBudget, TokenBudgetTracker
from ux_pipeline.pipeline.errors import PipelineCancelled, TokenBudgetExceeded
from ux_pipeline.pipeline.outputs import ErrorMarker, FallbackMarker, StageResult
from ux_pipeline.pipeline.policy import FallbackPolicy
from ux_pipeline.pipeline.progress import PipelineProgress, ProgressReporter
from ux_pipeline.pipeline.recovery import RetryPolicy, StageRetry
from ux_pipeline.pipeline.stages import StageContext, StageSpec

_log = logging.getLogger(__name__)

ERROR_MODEL_ID = "pipeline"


@dataclass
class PipelineRun:
    """
    State owned by exactly one pipeline invocation: its tracker, history, and cancel signal.

    Build a new PipelineRun per invocation (see PipelineRun.start); nothing here is shared
    between runs. History is append-only and exposed as a tuple.
    """

    image_ref: str
    image_id: str
    user_context: str
    tracker: TokenBudgetTracker
    budget_model_id: str
    cancel_event: threading.Event = field(default_factory=threading.Event)
    run_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    degraded: bool = False
    _history: list[StageResult] = field(default_factory=list, init=False, repr=False)
    _outputs: dict[str, Any] = field(default_factory=dict, init=False, repr=False)

    @classmethod
    def start(
        cls,
        image_ref: str,
        image_id: str,
        budgets: Mapping[str, TokenBudget],
        budget_model_id: str,
        user_context: str = "",
        cancel_event: threading.Event | None = None,
    ) -> "PipelineRun":
        return cls(
            image_ref=image_ref,
            image_id=image_id,
            user_context=user_context or "",
            tracker=TokenBudgetTracker(budgets),
            budget_model_id=budget_model_id,
            cancel_event=cancel_event or threading.Event(),
        )

    @property
    def history(self) -> tuple[StageResult, ...]:
        return tuple(self._history)

    @property
    def outputs(self) -> Mapping[str, Any]:
        """Outputs usable by later stages, keyed by stage name."""
        return dict(self._outputs)

    def append(self, result: StageResult, usable: bool = False) -> None:
        self._history.append(result)
        if usable:
            self._outputs[result.stage_name] = result.data

    def progress(self, stage: str, percent: int, message: str) -> PipelineProgress:
        return PipelineProgress(
            image_id=self.image_id,
            run_id=self.run_id,
            stage=stage,
            percent=percent,
            message=message,
            budget_used=self.tracker.used,
            budget_remaining=self.tracker.total_remaining(self.budget_model_id),
        )


class StageOrchestrator:
    """
    Runs a fixed, ordered list of stages for one PipelineRun at a time.

    Before each stage: honor cancellation, then check the token budget. After each stage,
    success or failure: append one StageResult and emit one progress event. Failures stop
    the run immediately and raise the stage's typed error carrying the partial history.
    The fallback policy is fixed at construction and applies to every stage alike.

    A stage's external call is retried under retry_policy when it fails with a transient
    transport error; the stage fails only once the retries are used up.
    """

    def __init__(
        self,
        stages: Sequence[StageSpec],
        policy: FallbackPolicy = FallbackPolicy.hard_fail,
        retry_policy: RetryPolicy | None = None,
        sleep: Callable[[float], None] | None = None,
    ) -> None:
        if not stages:
            raise ValueError("StageOrchestrator needs at least one stage")
        names = [s.name for s in stages]
        if len(set(names)) != len(names):
            raise ValueError(f"Stage names must be unique: {names}")
        percents = [s.percent for s in stages]
        if percents != sorted(percents):
            raise ValueError(f"Stage percents must be non-decreasing: {percents}")
        self._stages = tuple(stages)
        self._policy = policy
        self._retry_policy = retry_policy or RetryPolicy()
        self._sleep = sleep

    @property
    def stages(self) -> tuple[StageSpec, ...]:
        return self._stages

    @property
    def policy(self) -> FallbackPolicy:
        return self._policy

    @property
    def retry_policy(self) -> RetryPolicy:
        return self._retry_policy

    def execute(self, run: PipelineRun, reporter: ProgressReporter | None = None) -> tuple[StageResult, ...]:
        """Run every stage in order; return the history. Raises PipelineError subclasses."""
        reporter = reporter or ProgressReporter()
        for index, spec in enumerate(self._stages):
            if run.cancel_event.is_set():
                self._fail(run, reporter, spec, "PipelineCancelled", "run cancelled before stage started")
                raise PipelineCancelled(spec.name, run.history)

            if not self._check_budget(run, reporter, spec, self._stages[index:]):
                break

            self._run_stage(run, reporter, spec)
        return run.history

    def _check_budget(
        self,
        run: PipelineRun,
        reporter: ProgressReporter,
        spec: StageSpec,
        pending: Sequence[StageSpec],
    ) -> bool:
        """True when the stage may run. Under degrade, records the fallback and returns False."""
        tracker = run.tracker
        remaining = tracker.remaining(spec.metered_model_id, spec.budget_group)
        breach = tracker.breach
        if breach is not None:
            reason = (
                f"token budget exceeded: {breach.stage_name} used {breach.used} tokens "
                f"against the {breach.group.value} ceiling of {breach.ceiling}"
            )
        elif remaining < spec.min_tokens:
            reason = f"token budget exceeded ({remaining} remaining, {spec.min_tokens} required)"
        else:
            return True

        if self._policy is FallbackPolicy.degrade:
            skipped = tuple(s.name for s in pending)
            _log.warning("Run %s: %s before %s; degrading, skipped %s", run.run_id, reason, spec.name, skipped)
            run.degraded = True
            run.append(
                StageResult(
                    stage_name=spec.name,
                    model_id=spec.model_id,
                    success=False,
                    data=FallbackMarker(reason=reason, skipped_stages=skipped),
                )
            )
            reporter.publish(run.progress(spec.name, spec.percent, f"Skipped {spec.name}: {reason}"))
            return False

        self._fail(run, reporter, spec, "TokenBudgetExceeded", reason)
        raise TokenBudgetExceeded(spec.name, remaining, spec.min_tokens, run.history, detail=reason)

    def _run_stage(self, run: PipelineRun, reporter: ProgressReporter, spec: StageSpec) -> None:
        allowance = run.tracker.remaining(spec.metered_model_id, spec.budget_group)
        ctx = StageContext(
            image_ref=run.image_ref,
            prior_outputs=run.outputs,
            user_context=run.user_context,
            model_id=spec.model_id,
            token_allowance=allowance,
        )
        _log.info("Run %s: starting %s (%s, allowance %s)", run.run_id, spec.name, spec.model_id, allowance)
        retry = StageRetry(
            self._retry_policy,
            f"Run {run.run_id}: {spec.name}",
            cancel_event=run.cancel_event,
            sleep=self._sleep,
        )
        try:
            outcome = retry.call(spec.execute, ctx)
        except Exception as e:
            if spec.fallback is not None and self._policy is FallbackPolicy.degrade:
                run.degraded = True
                run.append(
                    StageResult(
                        stage_name=spec.name,
                        model_id=spec.model_id,
                        success=False,
                        data=spec.fallback(e),
                        compressed=spec.compressed,
                        retries=retry.retries,
                    ),
                    usable=True,
                )
                reporter.publish(run.progress(spec.name, spec.percent, f"{spec.message} (degraded)"))
                return
            _log.error(
                "Run %s: stage %s failed after %s retries: %s", run.run_id, spec.name, retry.retries, e, exc_info=True
            )
            self._fail(
                run,
                reporter,
                spec,
                spec.failure.__name__,
                str(e) or type(e).__name__,
                model_id=spec.model_id,
                retries=retry.retries,
            )
            raise spec.failure(spec.name, e, run.history) from e

        tokens = outcome.tokens_consumed or 0
        run.tracker.record(spec.name, spec.metered_model_id, spec.budget_group, tokens)
        run.append(
            StageResult(
                stage_name=spec.name,
                model_id=spec.model_id,
                success=True,
                token_usage=outcome.tokens_consumed,
                data=outcome.output,
                compressed=spec.compressed,
                retries=retry.retries,
            ),
            usable=True,
        )
        _log.info("Run %s: finished %s (%s tokens, %s used)", run.run_id, spec.name, tokens, run.tracker.used)
        reporter.publish(run.progress(spec.name, spec.percent, spec.message))

    def _fail(
        self,
        run: PipelineRun,
        reporter: ProgressReporter,
        spec: StageSpec,
        error_type: str,
        message: str,
        model_id: str = ERROR_MODEL_ID,
        retries: int = 0,
    ) -> None:
        """Append the error marker. Stage call failures carry the stage's model; run-level ones use ERROR_MODEL_ID."""
        run.append(
            StageResult(
                stage_name=spec.name,
                model_id=model_id,
                success=False,
                data=ErrorMarker(error_type=error_type, message=message),
                retries=retries,
            )
        )
        reporter.publish(run.progress(spec.name, reporter.last_percent, f"{spec.name} failed: {message}"))

