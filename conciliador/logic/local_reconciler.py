"""Local (exact column name) reconciliation.

Pure, synchronous joins of survey and resend rows against the reference
index. Inputs are never mutated; running twice on the same inputs yields
equal outputs.
"""

import logging
from typing import Any, Iterable, Mapping, Optional

from conciliador.config_loader import AppConfig, get_config
from conciliador.models import NormalizedResendItem, ResendGroup, SatisfactionResult

from .records import RecordView, coerce_number, is_blank, safe_to_string
from .reference_index import ReferenceIndex, lookup

logger = logging.getLogger(__name__)


def resolve_origin(
    reference: Optional[Mapping[str, Any]],
    config: Optional[AppConfig] = None,
) -> str:
    """Origin-of-sale label used to group resend items.

    Falls back to the unknown-origin sentinel when there is no matching
    reference or its origin column is missing/empty.
    """
    config = config or get_config()
    unknown = config.reconcile.unknown_origin
    if reference is None:
        return unknown

    origin = RecordView(reference).get(config.fields.reference.origem_venda)
    if origin is None:
        return unknown
    label = safe_to_string(origin, missing=unknown, date_format=config.reconcile.date_format)
    return label if label.strip() else unknown


def reconcile_satisfaction(
    surveys: Iterable[Mapping[str, Any]],
    index: ReferenceIndex,
    config: Optional[AppConfig] = None,
) -> list[SatisfactionResult]:
    """Join answered surveys to sales references; unmatched surveys are dropped."""
    config = config or get_config()
    ref_fields = config.fields.reference
    survey_fields = config.fields.survey
    missing = config.reconcile.missing_value
    date_format = config.reconcile.date_format

    results = []
    unmatched = 0
    for survey in surveys:
        view = RecordView(survey)
        chassi = view.get(survey_fields.chassi)
        if is_blank(chassi):
            continue

        reference = lookup(index, chassi)
        if reference is None:
            unmatched += 1
            continue

        ref = RecordView(reference)
        results.append(SatisfactionResult(
            chassi=safe_to_string(chassi, missing, date_format),
            cliente=safe_to_string(ref.get(ref_fields.cliente), missing, date_format),
            vendedor=safe_to_string(ref.get(ref_fields.vendedor), missing, date_format),
            origemVenda=safe_to_string(ref.get(ref_fields.origem_venda), missing, date_format),
            satisfacao=coerce_number(view.get(survey_fields.satisfacao_geral), default=0),
        ))

    logger.info(f"Local satisfaction: {len(results)} matched, {unmatched} unmatched")
    return results


def reconcile_resend(
    resends: Iterable[Mapping[str, Any]],
    index: ReferenceIndex,
    config: Optional[AppConfig] = None,
) -> ResendGroup:
    """Normalize resend rows and group them by origin of sale, keeping row order."""
    config = config or get_config()
    fields = config.fields.resend
    missing = config.reconcile.missing_value
    date_format = config.reconcile.date_format

    groups: ResendGroup = {}
    for item in resends:
        view = RecordView(item)
        chassi = view.get(fields.chassi)
        if is_blank(chassi):
            continue

        origin = resolve_origin(lookup(index, chassi), config)
        groups.setdefault(origin, []).append(NormalizedResendItem(
            chassi=safe_to_string(chassi, missing, date_format),
            nomeCliente=safe_to_string(view.get(fields.nome_cliente), missing, date_format),
            concessionaria=safe_to_string(view.get(fields.concessionaria), missing, date_format),
            dataPosse=safe_to_string(view.get(fields.data_posse), missing, date_format),
        ))

    logger.info(f"Local resend: {sum(len(v) for v in groups.values())} items in {len(groups)} origins")
    return groups
