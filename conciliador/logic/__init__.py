"""Reconciliation logic: key normalization, local joins and AI orchestration."""

from .aggregator import present_groups, sorted_origins
from .ai_extractor import AIExtractor, ExtractionOutcome, extract_json_from_text, locate_json_span
from .local_reconciler import reconcile_resend, reconcile_satisfaction, resolve_origin
from .orchestrator import AIReconciler, BatchStrategy, FanOutStrategy, SequentialStrategy
from .records import RecordView, coerce_number, get_property, safe_to_string
from .reference_index import ReferenceIndex, build_reference_index, normalize_chassis

__all__ = [
    'AIExtractor',
    'AIReconciler',
    'BatchStrategy',
    'ExtractionOutcome',
    'FanOutStrategy',
    'RecordView',
    'ReferenceIndex',
    'SequentialStrategy',
    'build_reference_index',
    'coerce_number',
    'extract_json_from_text',
    'get_property',
    'locate_json_span',
    'normalize_chassis',
    'present_groups',
    'reconcile_resend',
    'reconcile_satisfaction',
    'resolve_origin',
    'safe_to_string',
    'sorted_origins',
]
