"""AI-assisted field extraction for one reconciliation item.

Pipeline (single attempt, no retry):
    prompt → generative call (schema-constrained) → locate JSON span → json.loads

Failures are returned as an ``ExtractionOutcome`` with a status and logged;
they never raise. Shape validation against the result models is the caller's
job (see orchestrator).
"""

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Mapping, Optional

from pydantic import BaseModel

from conciliador.errors import (
    EmptyResponseError,
    ExtractionError,
    GenerationCallError,
    MalformedJsonError,
)
from conciliador.llm_router import GenerativeClient
from conciliador.models import NormalizedResendItem, SatisfactionResult

from .records import row_to_jsonable

logger = logging.getLogger(__name__)


# =============================================================================
# PROMPTS
# =============================================================================

SATISFACTION_PROMPT = """Analise os seguintes dados JSON e extraia as informações solicitadas.
Dados de Referência da Venda: {reference}
Dados da Pesquisa de Satisfação: {survey}

Com base nos dados, extraia EXATAMENTE no formato JSON:
- "chassi": O número do chassi.
- "cliente": O nome do cliente.
- "vendedor": O nome do vendedor.
- "origemVenda": A origem da venda.
- "satisfacao": O valor numérico da satisfação geral (ex: se for 90%, retorne 90).
"""

RESEND_PROMPT = """Analise os seguintes dados JSON e extraia as informações para uma pesquisa de reenvio.
Dados da Pesquisa para Reenvio: {resend}
Origem da venda (já identificada, apenas contexto): {origin}

Com base nos dados, extraia EXATAMENTE no formato JSON:
- "nomeCliente": O nome do cliente.
- "chassi": O número do chassi.
- "concessionaria": O nome da concessionária de venda.
- "dataPosse": A data da posse do veículo.
"""


def _dump(record: Mapping[str, Any]) -> str:
    return json.dumps(row_to_jsonable(record), ensure_ascii=False, default=str)


def build_satisfaction_prompt(reference: Mapping[str, Any], survey: Mapping[str, Any]) -> str:
    return SATISFACTION_PROMPT.format(reference=_dump(reference), survey=_dump(survey))


def build_resend_prompt(resend: Mapping[str, Any], origin: str) -> str:
    return RESEND_PROMPT.format(resend=_dump(resend), origin=origin)


# =============================================================================
# JSON LOCATION
# =============================================================================

_FENCED_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```", re.IGNORECASE)
_BARE_RE = re.compile(r"(\{[\s\S]*\}|\[[\s\S]*\])")


def locate_json_span(text: str) -> Optional[str]:
    """Return the JSON candidate inside ``text``.

    A fenced code block wins over a bare ``{...}``/``[...]`` span when both
    are present.
    """
    if not text:
        return None
    fenced = _FENCED_RE.search(text)
    if fenced and fenced.group(1).strip():
        return fenced.group(1).strip()
    bare = _BARE_RE.search(text)
    if bare:
        return bare.group(1).strip()
    return None


def extract_json_from_text(text: str, chassi: str = "") -> Any:
    """Parse the JSON payload of a model response.

    Raises:
        EmptyResponseError: ``text`` is empty.
        MalformedJsonError: no JSON span found, or it does not parse.
    """
    if not text or not text.strip():
        raise EmptyResponseError("Empty response text", chassi=chassi)

    span = locate_json_span(text)
    if span is None:
        raise MalformedJsonError("Response contains no recognizable JSON block", chassi=chassi, text=text)

    try:
        return json.loads(span)
    except json.JSONDecodeError as e:
        raise MalformedJsonError(f"Failed to parse extracted JSON: {e}", chassi=chassi, text=span)


# =============================================================================
# EXTRACTOR
# =============================================================================

@dataclass
class ExtractionOutcome:
    chassi: str
    status: str = "ok"      # ok, call_error, empty_response, malformed_json, invalid_shape, error
    data: Any = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == "ok" and self.data is not None


class AIExtractor:
    """Runs one schema-constrained extraction per call."""

    def __init__(self, client: GenerativeClient):
        self.client = client

    def extract(self, prompt: str, schema: type[BaseModel], chassi: str = "") -> ExtractionOutcome:
        result = self.client.generate(prompt, schema)

        try:
            if result.error:
                raise GenerationCallError(f"Generative call failed: {result.error}", chassi=chassi)
            data = extract_json_from_text(result.text, chassi=chassi)
        except GenerationCallError as e:
            logger.warning(f"AI call failed for chassi {chassi}: {e.message}")
            return ExtractionOutcome(chassi=chassi, status=e.kind, error=e.message)
        except EmptyResponseError as e:
            logger.warning(f"AI returned no text for chassi {chassi}: {e.message}")
            return ExtractionOutcome(chassi=chassi, status=e.kind, error=e.message)
        except ExtractionError as e:
            logger.error(f"Could not extract valid JSON for chassi {chassi}: {e.message} | text={e.text[:500]!r}")
            return ExtractionOutcome(chassi=chassi, status=e.kind, error=e.message)

        return ExtractionOutcome(chassi=chassi, data=data)

    def extract_satisfaction(
        self, reference: Mapping[str, Any], survey: Mapping[str, Any], chassi: str = ""
    ) -> ExtractionOutcome:
        return self.extract(build_satisfaction_prompt(reference, survey), SatisfactionResult, chassi)

    def extract_resend(
        self, resend: Mapping[str, Any], origin: str, chassi: str = ""
    ) -> ExtractionOutcome:
        return self.extract(build_resend_prompt(resend, origin), NormalizedResendItem, chassi)
