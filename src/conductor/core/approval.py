"""
Human approval gate.

A stage that requires approval pauses after producing valid output and asks an
``ApprovalChannel`` for a decision:

- APPROVE finalizes the output
- REJECT regenerates the output with the rejection feedback added to the
  next prompt, then asks again
- VIEW re-sends the request with the full content instead of a preview

Each wait is bounded by the approval timeout. What a timeout means is set by
``ApprovalTimeoutPolicy`` and never implied.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable, Iterable
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Protocol

from ..config.settings import ApprovalConfig, ApprovalTimeoutPolicy
from ..exceptions import ApprovalRejectedExhausted, ApprovalTimeoutError
from ..observability.logging import get_logger
from ..observability.metrics import get_metrics_collector
from .models import TaskResult

logger = get_logger(__name__)

PREVIEW_LENGTH = 500


class DecisionKind(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"
    VIEW = "view"


@dataclass(frozen=True)
class ApprovalDecision:
    kind: DecisionKind
    feedback: str = ""

    @classmethod
    def approve(cls) -> "ApprovalDecision":
        return cls(DecisionKind.APPROVE)

    @classmethod
    def reject(cls, feedback: str = "") -> "ApprovalDecision":
        return cls(DecisionKind.REJECT, feedback)

    @classmethod
    def view(cls) -> "ApprovalDecision":
        return cls(DecisionKind.VIEW)


@dataclass(frozen=True)
class ApprovalRequest:
    workflow: str
    stage_id: str
    description: str
    content: str
    review: str | None = None
    regenerate_count: int = 0
    full_view: bool = False
    requested_at: float = field(default_factory=time.time)

    @property
    def preview(self) -> str:
        if self.full_view or len(self.content) <= PREVIEW_LENGTH:
            return self.content
        return self.content[:PREVIEW_LENGTH] + f"... [{len(self.content) - PREVIEW_LENGTH} more chars]"


class ApprovalChannel(Protocol):
    async def request(self, request: ApprovalRequest) -> ApprovalDecision: ...


class AutoApprovalChannel:
    """Approves everything immediately."""

    def __init__(self):
        self.requests: list[ApprovalRequest] = []

    async def request(self, request: ApprovalRequest) -> ApprovalDecision:
        self.requests.append(request)
        return ApprovalDecision.approve()


class ScriptedApprovalChannel:
    """
    Replays decisions in order. A ``None`` entry, or running out of decisions
    when ``hang_when_exhausted`` is set, never answers; use it to exercise
    timeouts.
    """

    def __init__(
        self,
        decisions: Iterable[ApprovalDecision | None] = (),
        delay: float = 0.0,
        hang_when_exhausted: bool = False,
    ):
        self.decisions = list(decisions)
        self.delay = delay
        self.hang_when_exhausted = hang_when_exhausted
        self.requests: list[ApprovalRequest] = []

    async def request(self, request: ApprovalRequest) -> ApprovalDecision:
        self.requests.append(request)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.decisions:
            decision = self.decisions.pop(0)
        elif self.hang_when_exhausted:
            decision = None
        else:
            decision = ApprovalDecision.approve()
        if decision is None:
            await asyncio.Event().wait()
        return decision


class ConsoleApprovalChannel:
    """
    Interactive prompt on stdin/stdout.

    Lines are read on one dedicated thread. A read abandoned by a timeout
    stays pending and its line answers the next request, so stdin never has
    two readers.
    """

    CHOICES = {
        "a": DecisionKind.APPROVE,
        "approve": DecisionKind.APPROVE,
        "r": DecisionKind.REJECT,
        "reject": DecisionKind.REJECT,
        "v": DecisionKind.VIEW,
        "view": DecisionKind.VIEW,
    }

    def __init__(self, input_fn: Callable[[str], str] = input, output_fn: Callable[[str], None] = print):
        self._input = input_fn
        self._output = output_fn
        self._reader = ThreadPoolExecutor(max_workers=1, thread_name_prefix="approval-input")
        self._pending: Future | None = None

    async def request(self, request: ApprovalRequest) -> ApprovalDecision:
        self._show(request)
        while True:
            answer = (await self._read("[A]pprove, [R]eject, [V]iew full content: ")).strip().lower()
            kind = self.CHOICES.get(answer)
            if kind is DecisionKind.REJECT:
                feedback = (await self._read("Feedback for regeneration: ")).strip()
                return ApprovalDecision.reject(feedback)
            if kind is not None:
                return ApprovalDecision(kind)
            self._output(f"Unrecognized choice: {answer!r}")

    async def _read(self, prompt: str) -> str:
        if self._pending is None:
            self._pending = self._reader.submit(self._input, prompt)
        line = await asyncio.shield(asyncio.wrap_future(self._pending))
        self._pending = None
        return line

    def _show(self, request: ApprovalRequest) -> None:
        self._output(f"\n=== Approval required: {request.workflow} / {request.stage_id} ===")
        if request.description:
            self._output(request.description)
        if request.regenerate_count:
            self._output(f"(regenerated {request.regenerate_count} time(s))")
        self._output("--- content ---")
        self._output(request.preview)
        if request.review:
            self._output("--- review ---")
            self._output(request.review)

    async def aclose(self) -> None:
        self._reader.shutdown(wait=False, cancel_futures=True)


@dataclass
class GateOutcome:
    result: TaskResult
    regenerate_count: int
    decisions: list[ApprovalDecision] = field(default_factory=list)


class ApprovalGate:
    def __init__(self, channel: ApprovalChannel, config: ApprovalConfig | None = None):
        self.channel = channel
        self.config = config or ApprovalConfig()

    async def review(
        self,
        workflow: str,
        stage_id: str,
        description: str,
        result: TaskResult,
        regenerate: Callable[[str], Awaitable[TaskResult]],
        review_text: str | None = None,
        regenerate_count: int = 0,
        sync_state: Callable[[], tuple[int, str | None]] | None = None,
    ) -> GateOutcome:
        """
        Loop until the output is approved.

        ``regenerate`` re-executes the stage with the given feedback and returns
        the new (validated) result. ``regenerate_count`` carries re-executions
        already spent on this stage; the total never exceeds ``max_regenerate``.
        ``sync_state`` returns the stage's current regenerate count and review
        text; it is read after each regeneration, which may review and
        regenerate again on its own.

        Raises:
            ApprovalTimeoutError: no decision in time under the FAIL policy
            ApprovalRejectedExhausted: rejected with no regenerations left
        """
        metrics = get_metrics_collector()
        decisions: list[ApprovalDecision] = []
        request = ApprovalRequest(
            workflow=workflow,
            stage_id=stage_id,
            description=description,
            content=result.output,
            review=review_text,
            regenerate_count=regenerate_count,
        )

        while True:
            decision = await self._await_decision(request)
            decisions.append(decision)
            metrics.record_approval(stage_id, decision.kind.value)
            logger.info(
                f"Approval decision for '{stage_id}': {decision.kind.value}",
                regenerate_count=regenerate_count,
            )

            if decision.kind is DecisionKind.APPROVE:
                return GateOutcome(result, regenerate_count, decisions)

            if decision.kind is DecisionKind.VIEW:
                request = replace(request, full_view=True, requested_at=time.time())
                continue

            if regenerate_count >= self.config.max_regenerate:
                raise ApprovalRejectedExhausted(stage_id, regenerate_count, decision.feedback)

            regenerate_count += 1
            result = await regenerate(decision.feedback)
            if sync_state is not None:
                regenerate_count, review_text = sync_state()
            request = replace(
                request,
                content=result.output,
                review=review_text,
                regenerate_count=regenerate_count,
                full_view=False,
                requested_at=time.time(),
            )

    async def _await_decision(self, request: ApprovalRequest) -> ApprovalDecision:
        try:
            return await asyncio.wait_for(self.channel.request(request), self.config.timeout)
        except TimeoutError:
            policy = self.config.on_timeout
            logger.warning(
                f"Approval for '{request.stage_id}' timed out after {self.config.timeout}s",
                policy=policy.value,
            )
            if policy is ApprovalTimeoutPolicy.AUTO_APPROVE:
                return ApprovalDecision.approve()
            if policy is ApprovalTimeoutPolicy.AUTO_REJECT:
                return ApprovalDecision.reject("")
            raise ApprovalTimeoutError(request.stage_id, self.config.timeout) from None
