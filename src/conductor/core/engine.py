"""
Workflow engine.

Runs a validated stage list to completion:

- a stage starts only after every stage it depends on has succeeded and
  committed its result
- stages flagged ``parallel`` share a worker pool of ``worker_pool_size``
  when parallelism is enabled; all other stages run alone, in declaration
  order
- each stage invocation goes through the retry executor and its provider's
  circuit breaker, then the validator, the optional reviewer and the optional
  approval gate
- a required stage failure aborts the run: in-flight stages are cancelled,
  dependents are skipped with "dependency failed" and the rest are skipped
  as aborted. Optional stage failures only skip their own dependents
- a workflow timeout fails every stage not yet resolved

Stage failures are values on ``StageOutcome``. Only configuration problems
raise, and they raise before any stage runs.
"""

import asyncio
import string
import time
import uuid
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

from ..agents.base import Agent
from ..config.settings import ReviewFailurePolicy, Settings
from ..exceptions import (
    ConductorError,
    ConfigurationError,
    ProviderError,
    ReviewerError,
    ReviewRejectedExhausted,
    ValidationError,
)
from ..observability.logging import get_logger, set_stage_id, set_trace_id
from ..observability.metrics import get_metrics_collector
from ..observability.probe import clear_trace_metrics, probe
from .approval import ApprovalChannel, ApprovalGate
from .audit import create_run_snapshot, save_run_snapshot
from .circuit_breaker import CircuitBreakerRegistry
from .context import WorkflowContext
from .determinism import fingerprint
from .lifecycle import StageLifecycle
from .models import (
    FailureKind,
    FailureReason,
    StageDefinition,
    StageOutcome,
    StageStatus,
    TaskInput,
    TaskResult,
    WorkflowDefinition,
    WorkflowResult,
    check_dependencies,
)
from .orchestrator import Orchestrator
from .retry import RetryExecutor
from .review import ReviewVerdict, review_output
from .validators import resolve_validator

logger = get_logger(__name__)


class PromptTemplate(string.Template):
    """``${name}`` placeholders; braced names may contain dots and dashes."""

    braceidpattern = r"(?a:[_a-zA-Z][_a-zA-Z0-9.\-]*)"


def render_prompt(template: str, values: dict[str, Any]) -> str:
    """Substitute known placeholders and leave unknown ones untouched."""
    return PromptTemplate(template).safe_substitute(values)


def validate_stages(
    stages: list[StageDefinition],
    orchestrator: Orchestrator,
    approval_channel: ApprovalChannel | None = None,
) -> None:
    """
    Check a stage list before anything runs.

    Raises:
        ConfigurationError: empty workflow, unknown agent, provider or
            validator, or an approval stage without an approval channel
        DependencyError: duplicate id, or a dependency not declared earlier
    """
    if not stages:
        raise ConfigurationError("workflow has no stages")
    check_dependencies(stages)

    for stage in stages:
        orchestrator.check(stage.agent)
        if stage.reviewer is not None:
            orchestrator.check(stage.reviewer)
        if stage.validator is not None:
            resolve_validator(stage.validator)
        if stage.requires_approval and approval_channel is None:
            raise ConfigurationError(
                f"stage '{stage.id}' requires approval but no approval channel is configured"
            )


@dataclass
class _StageRun:
    stage: StageDefinition
    lifecycle: StageLifecycle
    attempts: int = 0
    regenerate_count: int = 0
    result: TaskResult | None = None
    failure: FailureReason | None = None
    review_text: str | None = None
    prompt: str = ""
    outcome: StageOutcome | None = None


class WorkflowEngine:
    def __init__(
        self,
        orchestrator: Orchestrator,
        settings: Settings | None = None,
        approval_channel: ApprovalChannel | None = None,
        retry_executor: RetryExecutor | None = None,
        breakers: CircuitBreakerRegistry | None = None,
    ):
        self.orchestrator = orchestrator
        self.settings = settings or orchestrator.settings
        self.approval_channel = approval_channel
        self.retry = retry_executor or RetryExecutor()
        self.breakers = breakers or CircuitBreakerRegistry(self.settings.circuit_breaker)

    def validate(self, stages: Iterable[StageDefinition]) -> None:
        validate_stages(list(stages), self.orchestrator, self.approval_channel)

    async def run(self, definition: WorkflowDefinition) -> WorkflowResult:
        """Execute a loaded definition with its variables and settings overrides."""
        return await self.execute(
            definition.stages,
            variables=definition.variables,
            name=definition.name,
            settings=self.settings.merged(definition.settings_overrides),
        )

    async def execute(
        self,
        stages: Iterable[StageDefinition],
        variables: dict[str, Any] | None = None,
        name: str = "workflow",
        settings: Settings | None = None,
    ) -> WorkflowResult:
        stages = list(stages)
        settings = settings or self.settings
        self.validate(stages)

        run_id = uuid.uuid4().hex[:16]
        set_trace_id(run_id)
        digest = fingerprint(stages)
        logger.info(f"Starting workflow '{name}'", stages=len(stages), fingerprint=digest[:12])

        run = _WorkflowRun(self, stages, settings, name, run_id, WorkflowContext(variables))
        start = time.monotonic()
        with probe("engine.workflow", run_id, workflow=name):
            error = await run.drive()
        elapsed = time.monotonic() - start

        outcomes = run.outcomes()
        success = error is None and all(o.succeeded or o.optional for o in outcomes.values())
        result = WorkflowResult(
            name=name,
            run_id=run_id,
            success=success,
            stages=outcomes,
            total_elapsed=elapsed,
            fingerprint=digest,
            error=error,
        )

        get_metrics_collector().record_workflow(elapsed, success, len(stages))
        log = logger.info if success else logger.warning
        log(
            f"Workflow '{name}' {'succeeded' if success else 'failed'}",
            ms=elapsed * 1000,
            failed=",".join(result.failed_stages) or None,
        )

        if settings.workflow.artifacts_dir:
            snapshot = create_run_snapshot(result, self.breakers.snapshots())
            save_run_snapshot(snapshot, settings.workflow.artifacts_dir)
        clear_trace_metrics(run_id)

        return result


class _WorkflowRun:
    """State of one ``execute`` call."""

    def __init__(
        self,
        engine: WorkflowEngine,
        stages: list[StageDefinition],
        settings: Settings,
        name: str,
        run_id: str,
        context: WorkflowContext,
    ):
        self.engine = engine
        self.settings = settings
        self.name = name
        self.run_id = run_id
        self.context = context
        self.runs: dict[str, _StageRun] = {
            s.id: _StageRun(stage=s, lifecycle=StageLifecycle(s.id)) for s in stages
        }
        self.abort_reason: str | None = None

    def outcomes(self) -> dict[str, StageOutcome]:
        return {sid: run.outcome for sid, run in self.runs.items()}

    # Scheduling

    async def drive(self) -> str | None:
        """Run until every stage is resolved. Returns the abort reason, if any."""
        timeout = self.settings.workflow.timeout
        deadline = time.monotonic() + timeout if timeout else None
        running: dict[asyncio.Task, _StageRun] = {}

        while True:
            if self.abort_reason is None:
                self._skip_blocked()
                self._dispatch(running)
            if not running:
                return self.abort_reason

            remaining = None if deadline is None else deadline - time.monotonic()
            done: set[asyncio.Task] = set()
            if remaining is None or remaining > 0:
                done, _ = await asyncio.wait(
                    running, timeout=remaining, return_when=asyncio.FIRST_COMPLETED
                )

            if not done:
                reason = f"workflow exceeded timeout of {timeout}s"
                logger.warning(reason, running=",".join(r.stage.id for r in running.values()))
                await self._cancel(running, FailureReason(FailureKind.TIMEOUT, reason))
                self._fail_unresolved(FailureReason(FailureKind.TIMEOUT, reason))
                return reason

            for task in done:
                stage_run = running.pop(task)
                await self._finish(stage_run)
                if stage_run.failure and not stage_run.stage.optional and self.abort_reason is None:
                    self.abort_reason = f"required stage '{stage_run.stage.id}' failed"

            if self.abort_reason is not None:
                await self._cancel(
                    running, FailureReason(FailureKind.ABORTED, f"cancelled: {self.abort_reason}")
                )
                self._skip_pending()
                return self.abort_reason

    def _can_parallel(self, stage: StageDefinition) -> bool:
        return stage.parallel and self.settings.workflow.parallel_enabled

    def _dispatch(self, running: dict[asyncio.Task, _StageRun]) -> None:
        if any(not self._can_parallel(r.stage) for r in running.values()):
            return

        pool_size = self.settings.workflow.worker_pool_size
        for stage_run in self.runs.values():
            if stage_run.lifecycle.state is not StageStatus.PENDING:
                continue
            # Blocked stages were skipped above, so resolved means succeeded
            if any(self.runs[dep].outcome is None for dep in stage_run.stage.depends_on):
                continue

            if self._can_parallel(stage_run.stage):
                if len(running) >= pool_size:
                    return
                self._start(stage_run, running)
            else:
                if not running:
                    self._start(stage_run, running)
                return

    def _start(self, stage_run: _StageRun, running: dict[asyncio.Task, _StageRun]) -> None:
        stage_run.lifecycle.transition(StageStatus.READY)
        stage_run.lifecycle.transition(StageStatus.EXECUTING)
        task = asyncio.create_task(self._run_stage(stage_run), name=f"stage:{stage_run.stage.id}")
        running[task] = stage_run

    def _blocking_dependency(self, stage: StageDefinition) -> str | None:
        for dep in stage.depends_on:
            outcome = self.runs[dep].outcome
            if outcome is not None and not outcome.succeeded:
                return dep
        return None

    def _skip_blocked(self) -> None:
        # Declaration order makes skips cascade in one pass
        for stage_run in self.runs.values():
            if stage_run.lifecycle.state is not StageStatus.PENDING:
                continue
            dep = self._blocking_dependency(stage_run.stage)
            if dep is not None:
                self._skip(
                    stage_run,
                    FailureReason(FailureKind.DEPENDENCY_FAILED, f"skipped: dependency '{dep}' failed"),
                )

    def _skip_pending(self) -> None:
        for stage_run in self.runs.values():
            if stage_run.lifecycle.state is not StageStatus.PENDING:
                continue
            dep = self._blocking_dependency(stage_run.stage)
            if dep is not None:
                reason = FailureReason(
                    FailureKind.DEPENDENCY_FAILED, f"skipped: dependency '{dep}' failed"
                )
            else:
                reason = FailureReason(FailureKind.ABORTED, f"skipped: {self.abort_reason}")
            self._skip(stage_run, reason)

    def _skip(self, stage_run: _StageRun, reason: FailureReason) -> None:
        stage_run.failure = reason
        stage_run.lifecycle.transition(StageStatus.SKIPPED)
        logger.info(f"Stage '{stage_run.stage.id}' {reason.message}")
        self._resolve(stage_run)

    def _fail_unresolved(self, reason: FailureReason) -> None:
        for stage_run in self.runs.values():
            if stage_run.outcome is None:
                stage_run.failure = reason
                stage_run.lifecycle.transition(StageStatus.FAILED)
                self._resolve(stage_run)

    async def _cancel(self, running: dict[asyncio.Task, _StageRun], reason: FailureReason) -> None:
        if not running:
            return
        for task in running:
            task.cancel()
        await asyncio.gather(*running, return_exceptions=True)

        for task, stage_run in list(running.items()):
            if task.cancelled():
                # Any partial result is discarded
                stage_run.result = None
                stage_run.failure = reason
                stage_run.lifecycle.transition(StageStatus.FAILED)
                self._resolve(stage_run)
            else:
                await self._finish(stage_run)
        running.clear()

    async def _finish(self, stage_run: _StageRun) -> None:
        if stage_run.result is not None and stage_run.failure is None:
            await self.context.commit(stage_run.stage.id, stage_run.result)
        self._resolve(stage_run)

    def _resolve(self, stage_run: _StageRun) -> None:
        lifecycle = stage_run.lifecycle
        status = lifecycle.state
        lifecycle.transition(StageStatus.RESOLVED)

        started_at = lifecycle.entered_at(StageStatus.EXECUTING)
        resolved_at = lifecycle.entered_at(StageStatus.RESOLVED)
        stage_run.outcome = StageOutcome(
            stage_id=stage_run.stage.id,
            status=status,
            result=stage_run.result if status is StageStatus.SUCCEEDED else None,
            failure=stage_run.failure,
            attempts=stage_run.attempts,
            regenerate_count=stage_run.regenerate_count,
            optional=stage_run.stage.optional,
            started_at=started_at,
            resolved_at=resolved_at,
        )
        duration = resolved_at - started_at if started_at else 0.0
        get_metrics_collector().record_stage(
            stage_run.stage.id, status.value, duration, stage_run.attempts
        )

    # Stage execution

    async def _run_stage(self, stage_run: _StageRun) -> None:
        stage = stage_run.stage
        set_stage_id(stage.id)
        logger.info(f"Stage '{stage.id}' started")
        try:
            with probe("engine.stage", self.run_id, stage=stage.id):
                stage_run.result = await self._execute(stage_run)
        except ConductorError as e:
            stage_run.failure = FailureReason.from_exception(e)
            stage_run.lifecycle.transition(StageStatus.FAILED)
            logger.warning(
                f"Stage '{stage.id}' failed: {stage_run.failure}", attempts=stage_run.attempts
            )
        except Exception as e:
            stage_run.failure = FailureReason.from_exception(e)
            stage_run.lifecycle.transition(StageStatus.FAILED)
            logger.exception(f"Stage '{stage.id}' crashed: {e}")
        else:
            stage_run.lifecycle.transition(StageStatus.SUCCEEDED)
            logger.info(
                f"Stage '{stage.id}' succeeded",
                attempts=stage_run.attempts,
                regenerated=stage_run.regenerate_count,
            )

    def _task_input(self, stage: StageDefinition, feedback: list[str]) -> TaskInput:
        values = self.context.template_values(stage.depends_on)
        values["feedback"] = "\n".join(feedback)
        return TaskInput(
            prompt=render_prompt(stage.prompt_template, values),
            context={
                **self.context.variables,
                "workflow": self.name,
                "run_id": self.run_id,
                "stage": stage.id,
            },
            upstream=self.context.results(stage.depends_on),
            feedback=tuple(feedback),
        )

    async def _execute(self, stage_run: _StageRun) -> TaskResult:
        stage = stage_run.stage
        engine = self.engine
        approval = self.settings.approval
        orchestrator = engine.orchestrator

        agent = orchestrator.resolve(stage.agent, hint=stage.id)
        breaker = engine.breakers.get(agent.provider_key)
        validator = resolve_validator(stage.validator) if stage.validator else None
        reviewer = orchestrator.resolve(stage.reviewer, hint=f"{stage.id}-review") if stage.reviewer else None
        review_consumes_retry = approval.review_failure_policy is ReviewFailurePolicy.CONSUME_RETRY
        feedback: list[str] = []

        async def attempt() -> TaskResult:
            stage_run.attempts += 1
            task = self._task_input(stage, feedback)
            result = await agent.execute(task)
            if not result.success:
                raise ProviderError(f"agent '{agent.identity}' reported failure", agent.provider_key)
            if validator is not None:
                validator(result.output)
            if reviewer is not None and review_consumes_retry:
                verdict = await self._consult_reviewer(reviewer, stage, result.output)
                stage_run.review_text = verdict.text
                if not verdict.approved:
                    feedback.append(verdict.text)
                    raise ValidationError(f"review rejected: {verdict.text}")
            # Memory keeps the task prompt; the provider prompt already folds memory in
            stage_run.prompt = task.prompt
            return result

        async def produce() -> TaskResult:
            return await engine.retry.run(stage.id, stage.retry_policy, breaker, attempt)

        result = await produce()

        if reviewer is not None and not review_consumes_retry:
            result = await self._review_loop(stage_run, reviewer, result, feedback, produce)

        if stage.requires_approval:
            gate = ApprovalGate(engine.approval_channel, approval)

            async def regenerate(fb: str) -> TaskResult:
                stage_run.lifecycle.transition(StageStatus.EXECUTING)
                stage_run.regenerate_count += 1
                if fb:
                    feedback.append(fb)
                new_result = await produce()
                if reviewer is not None and not review_consumes_retry:
                    new_result = await self._review_loop(stage_run, reviewer, new_result, feedback, produce)
                stage_run.lifecycle.transition(StageStatus.AWAITING_APPROVAL)
                return new_result

            stage_run.lifecycle.transition(StageStatus.AWAITING_APPROVAL)
            outcome = await gate.review(
                self.name,
                stage.id,
                stage.description,
                result,
                regenerate,
                review_text=stage_run.review_text,
                regenerate_count=stage_run.regenerate_count,
                sync_state=lambda: (stage_run.regenerate_count, stage_run.review_text),
            )
            result = outcome.result

        await orchestrator.record_exchange(agent, stage_run.prompt, result.output)
        return result

    async def _consult_reviewer(self, reviewer: Agent, stage, output: str) -> ReviewVerdict:
        """Single review call charged to the reviewer's own breaker."""
        review_breaker = self.engine.breakers.get(reviewer.provider_key)
        review_breaker.before_call()
        try:
            verdict = await review_output(reviewer, stage.id, stage.description, output)
        except ProviderError as e:
            review_breaker.record_failure()
            raise ReviewerError(str(e), provider=reviewer.provider_key) from e
        except Exception:
            review_breaker.record_failure()
            raise
        except BaseException:
            review_breaker.release_trial()
            raise
        review_breaker.record_success()
        return verdict

    async def _review_loop(self, stage_run, reviewer: Agent, result, feedback, produce) -> TaskResult:
        """Regenerate until the reviewer approves or the regenerate budget runs out."""
        stage = stage_run.stage
        max_regenerate = self.settings.approval.max_regenerate
        review_breaker = self.engine.breakers.get(reviewer.provider_key)

        while True:
            current = result

            async def review() -> ReviewVerdict:
                return await review_output(reviewer, stage.id, stage.description, current.output)

            verdict = await self.engine.retry.run(
                f"{stage.id}:review", stage.retry_policy, review_breaker, review
            )
            stage_run.review_text = verdict.text
            if verdict.approved:
                return result
            if stage_run.regenerate_count >= max_regenerate:
                raise ReviewRejectedExhausted(stage.id, stage_run.regenerate_count, verdict.text)

            stage_run.regenerate_count += 1
            feedback.append(verdict.text)
            logger.info(f"Reviewer rejected '{stage.id}', regenerating", count=stage_run.regenerate_count)
            result = await produce()
