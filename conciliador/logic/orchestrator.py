"""AI reconciliation orchestrator.

Drives ``AIExtractor`` across every survey and resend row:

  - Satisfaction rows fan out: every matched survey is extracted concurrently
    and the batch waits until all calls settle.
  - Resend rows run strictly in sequence, in input order, so the number of
    in-flight requests stays at one and progress can be reported row by row.

A failed item is logged and left out of the results; it never fails the
batch. The SDK is synchronous, so each call runs in an executor thread while
results are only written by the orchestrating coroutine.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from collections import Counter
from concurrent.futures import Executor
from typing import Any, Awaitable, Callable, Iterable, Mapping, Optional, Sequence

from pydantic import BaseModel, ValidationError

from conciliador.config_loader import AppConfig, get_config
from conciliador.errors import InvalidShapeError
from conciliador.llm_router import GenerativeClient
from conciliador.models import (
    NormalizedResendItem,
    ReconciliationResult,
    ResendGroup,
    SatisfactionResult,
)

from .ai_extractor import AIExtractor, ExtractionOutcome
from .local_reconciler import resolve_origin
from .records import RecordView, is_blank, safe_to_string
from .reference_index import ReferenceIndex, build_reference_index, lookup

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str], None]
Job = Callable[[], Awaitable[Any]]


# =============================================================================
# BATCH STRATEGIES
# =============================================================================

class BatchStrategy(ABC):
    """Runs a list of independent jobs and returns one settled value per job.

    A job that raises yields its exception in the result list instead of
    aborting the batch.
    """

    @abstractmethod
    async def run(self, jobs: Sequence[Job]) -> list[Any]:
        ...


class FanOutStrategy(BatchStrategy):
    """Start every job at once (optionally capped) and join on all of them."""

    def __init__(self, max_concurrency: Optional[int] = None):
        self.max_concurrency = max_concurrency

    async def run(self, jobs: Sequence[Job]) -> list[Any]:
        if not jobs:
            return []
        if self.max_concurrency:
            semaphore = asyncio.Semaphore(self.max_concurrency)

            async def _bounded(job: Job):
                async with semaphore:
                    return await job()

            coros = [_bounded(job) for job in jobs]
        else:
            coros = [job() for job in jobs]
        return list(await asyncio.gather(*coros, return_exceptions=True))


class SequentialStrategy(BatchStrategy):
    """Await each job before starting the next one."""

    async def run(self, jobs: Sequence[Job]) -> list[Any]:
        settled = []
        for job in jobs:
            try:
                settled.append(await job())
            except Exception as e:
                settled.append(e)
        return settled


# =============================================================================
# ORCHESTRATOR
# =============================================================================

def _coerce_shape(data: Any, model: type[BaseModel], chassi: str = "") -> BaseModel:
    # Some responses wrap the object in a one-element array
    if isinstance(data, list) and len(data) == 1:
        data = data[0]
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise InvalidShapeError(
            f"Result does not match {model.__name__}: {e}", chassi=chassi, text=str(data)
        )


class AIReconciler:
    """Reconciles the three datasets through per-row generative extraction."""

    def __init__(
        self,
        client: GenerativeClient,
        config: Optional[AppConfig] = None,
        progress: Optional[ProgressCallback] = None,
        executor: Optional[Executor] = None,
        satisfaction_strategy: Optional[BatchStrategy] = None,
        resend_strategy: Optional[BatchStrategy] = None,
    ):
        self.config = config or get_config()
        self.extractor = AIExtractor(client)
        self.progress = progress
        self._executor = executor
        self.satisfaction_strategy = satisfaction_strategy or FanOutStrategy(self.config.ai.max_concurrency)
        self.resend_strategy = resend_strategy or SequentialStrategy()
        self.outcomes: list[ExtractionOutcome] = []

    def _report(self, message: str) -> None:
        if self.progress is None:
            return
        try:
            self.progress(message)
        except Exception as e:
            logger.warning(f"Progress callback failed: {e}")

    async def _in_executor(self, fn: Callable, *args) -> Any:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, fn, *args)

    def _settle(self, settled: Iterable[Any], model: type[BaseModel]) -> list[Optional[BaseModel]]:
        """Turn settled job values into validated models (None on failure)."""
        validated = []
        for value in settled:
            if isinstance(value, BaseException):
                logger.error(f"AI extraction raised unexpectedly: {value!r}")
                self.outcomes.append(ExtractionOutcome(chassi="", status="error", error=str(value)))
                validated.append(None)
                continue

            outcome: ExtractionOutcome = value
            if not outcome.ok:
                self.outcomes.append(outcome)
                validated.append(None)
                continue

            try:
                validated.append(_coerce_shape(outcome.data, model, outcome.chassi))
                self.outcomes.append(outcome)
            except InvalidShapeError as e:
                logger.error(f"AI result for chassi {outcome.chassi} rejected: {e.message}")
                outcome.status = e.kind
                outcome.error = e.message
                self.outcomes.append(outcome)
                validated.append(None)
        return validated

    async def reconcile_satisfaction(
        self,
        surveys: Sequence[Mapping[str, Any]],
        index: ReferenceIndex,
    ) -> list[SatisfactionResult]:
        chassis_field = self.config.fields.survey.chassi

        pairs = []
        for survey in surveys:
            chassi = RecordView(survey).get(chassis_field)
            if is_blank(chassi):
                continue
            reference = lookup(index, chassi)
            if reference is not None:
                pairs.append((reference, survey, safe_to_string(chassi)))

        total = len(pairs)

        def _job(position: int, reference, survey, chassi: str) -> Job:
            async def run():
                self._report(f"Analisando satisfação {position} de {total}...")
                return await self._in_executor(
                    self.extractor.extract_satisfaction, reference, survey, chassi
                )
            return run

        jobs = [_job(i, *pair) for i, pair in enumerate(pairs, 1)]
        settled = await self.satisfaction_strategy.run(jobs)
        results = [r for r in self._settle(settled, SatisfactionResult) if r is not None]

        logger.info(f"AI satisfaction: {len(results)} of {total} matched surveys extracted")
        return results

    async def reconcile_resend(
        self,
        resends: Sequence[Mapping[str, Any]],
        index: ReferenceIndex,
    ) -> ResendGroup:
        chassis_field = self.config.fields.resend.chassi

        items = []
        for resend in resends:
            chassi = RecordView(resend).get(chassis_field)
            if is_blank(chassi):
                continue
            origin = resolve_origin(lookup(index, chassi), self.config)
            items.append((resend, origin, safe_to_string(chassi)))

        total = len(items)

        def _job(position: int, resend, origin: str, chassi: str) -> Job:
            async def run():
                self._report(f"Analisando reenvio {position} de {total}...")
                return await self._in_executor(
                    self.extractor.extract_resend, resend, origin, chassi
                )
            return run

        jobs = [_job(i, *item) for i, item in enumerate(items, 1)]
        settled = await self.resend_strategy.run(jobs)

        groups: ResendGroup = {}
        for (_, origin, _), normalized in zip(items, self._settle(settled, NormalizedResendItem)):
            if normalized is not None:
                groups.setdefault(origin, []).append(normalized)

        logger.info(
            f"AI resend: {sum(len(v) for v in groups.values())} of {total} rows extracted "
            f"into {len(groups)} origins"
        )
        return groups

    async def run(
        self,
        reference: Sequence[Mapping[str, Any]],
        surveys: Sequence[Mapping[str, Any]],
        resends: Sequence[Mapping[str, Any]],
    ) -> ReconciliationResult:
        self.outcomes = []
        index = build_reference_index(reference, self.config.fields.reference.chassi)

        satisfaction = await self.reconcile_satisfaction(surveys, index)
        resend_groups = await self.reconcile_resend(resends, index)

        counts = Counter(o.status for o in self.outcomes)
        logger.info(f"AI reconciliation finished: {dict(counts)}")
        return ReconciliationResult(
            satisfaction_results=satisfaction,
            resend_groups=resend_groups,
        )

    def summary(self) -> dict[str, int]:
        return dict(Counter(o.status for o in self.outcomes))
