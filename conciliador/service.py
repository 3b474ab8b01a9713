"""Processing service: holds the uploaded datasets and the last run's outcome.

Every run starts by clearing the previous results. A run that fails keeps no
partial results, only a single user-facing error message.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping, Optional

from conciliador.config_loader import AppConfig, get_config
from conciliador.errors import MissingInputError
from conciliador.llm_router import GenerativeClient, create_client
from conciliador.logic.local_reconciler import reconcile_resend, reconcile_satisfaction
from conciliador.logic.orchestrator import AIReconciler, ProgressCallback
from conciliador.logic.reference_index import build_reference_index
from conciliador.models import ReconciliationResult

logger = logging.getLogger(__name__)

SLOTS = ("reference", "survey", "resend")

SLOT_LABELS = {
    "reference": "Dados de Referência",
    "survey": "Pesquisas Respondidas",
    "resend": "Pesquisas para Reenvio",
}

LOCAL_ERROR_MESSAGE = (
    "Ocorreu um erro ao processar os arquivos. Verifique o formato e o conteúdo dos arquivos."
)
AI_ERROR_PREFIX = "Ocorreu um erro durante o processamento com IA. Detalhes: "


@dataclass
class RunState:
    mode: str = ""
    result: ReconciliationResult = field(default_factory=ReconciliationResult)
    error: Optional[str] = None
    status: str = ""
    is_loading: bool = False


def reconcile_locally(
    reference: list[Mapping[str, Any]],
    surveys: list[Mapping[str, Any]],
    resends: list[Mapping[str, Any]],
    config: Optional[AppConfig] = None,
) -> ReconciliationResult:
    config = config or get_config()
    index = build_reference_index(reference, config.fields.reference.chassi)
    return ReconciliationResult(
        satisfaction_results=reconcile_satisfaction(surveys, index, config),
        resend_groups=reconcile_resend(resends, index, config),
    )


class ReconciliationService:

    def __init__(
        self,
        config: Optional[AppConfig] = None,
        client_factory: Callable[..., GenerativeClient] = create_client,
    ):
        self.config = config or get_config()
        self.client_factory = client_factory
        self.datasets: dict[str, list[Mapping[str, Any]]] = {slot: [] for slot in SLOTS}
        self.state = RunState()

    # -- datasets ---------------------------------------------------------

    def set_dataset(self, slot: str, rows: list[Mapping[str, Any]]) -> None:
        if slot not in SLOTS:
            raise ValueError(f"Unknown dataset slot '{slot}'. Must be one of: {list(SLOTS)}")
        self.datasets[slot] = list(rows)
        logger.info(f"Dataset '{slot}' loaded with {len(rows)} rows")

    def missing_datasets(self) -> list[str]:
        return [slot for slot in SLOTS if not self.datasets[slot]]

    @property
    def can_process(self) -> bool:
        return not self.missing_datasets()

    # -- runs -------------------------------------------------------------

    def _set_status(self, state: RunState, progress: Optional[ProgressCallback]) -> ProgressCallback:
        def report(message: str) -> None:
            state.status = message
            if progress is not None:
                progress(message)
        return report

    async def process(
        self,
        use_ai: Optional[bool] = None,
        progress: Optional[ProgressCallback] = None,
    ) -> RunState:
        """Run one reconciliation and return its state.

        Each run owns a fresh ``RunState``; it is published as ``self.state``
        when the run starts, and an overlapping older run never writes to it.

        Raises:
            MissingInputError: one of the three datasets is empty; nothing runs.
        """
        missing = self.missing_datasets()
        if missing:
            raise MissingInputError(SLOT_LABELS[slot] for slot in missing)

        if use_ai is None:
            use_ai = self.config.reconcile.use_ai_default

        state = RunState(mode="ai" if use_ai else "local", is_loading=True)
        self.state = state
        report = self._set_status(state, progress)
        try:
            if use_ai:
                await self._process_with_ai(state, report)
            else:
                await self._process_locally(state, report)
        finally:
            state.is_loading = False
            state.status = ""
        return state

    async def _process_locally(self, state: RunState, report: ProgressCallback) -> None:
        report("Processando localmente...")
        # Lets a UI render its loading state before the synchronous join
        await asyncio.sleep(self.config.reconcile.local_delay_s)
        try:
            state.result = reconcile_locally(
                self.datasets["reference"],
                self.datasets["survey"],
                self.datasets["resend"],
                self.config,
            )
        except Exception as e:
            logger.exception(f"Local reconciliation failed: {e}")
            state.result = ReconciliationResult()
            state.error = LOCAL_ERROR_MESSAGE

    async def _process_with_ai(self, state: RunState, report: ProgressCallback) -> None:
        try:
            client = self.client_factory(self.config.ai)
            reconciler = AIReconciler(client, config=self.config, progress=report)
            state.result = await reconciler.run(
                self.datasets["reference"],
                self.datasets["survey"],
                self.datasets["resend"],
            )
        except Exception as e:
            logger.exception(f"AI reconciliation failed: {e}")
            state.result = ReconciliationResult()
            state.error = f"{AI_ERROR_PREFIX}{e}"
