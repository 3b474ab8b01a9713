"""AI orchestration: fan-out vs sequential batches, partial failure, progress."""

import asyncio
import json

import pytest

from conciliador.config_loader import AIConfig, AppConfig, ReconcileConfig
from conciliador.errors import InvalidShapeError
from conciliador.llm_router import LLMResult
from conciliador.logic.orchestrator import (
    AIReconciler,
    FanOutStrategy,
    SequentialStrategy,
    _coerce_shape,
)
from conciliador.logic.reference_index import build_reference_index
from conciliador.models import NormalizedResendItem, SatisfactionResult
from conciliador.tests.conftest import FakeClient, resend_json, satisfaction_json


def _run(coro):
    return asyncio.run(coro)


# =============================================================================
# BATCH STRATEGIES
# =============================================================================

class TestFanOutStrategy:
    def test_runs_jobs_concurrently_and_keeps_order(self):
        started = []

        def make(i):
            async def job():
                started.append(i)
                await asyncio.sleep(0.01 * (3 - i))
                return i
            return job

        results = _run(FanOutStrategy().run([make(i) for i in range(3)]))
        assert results == [0, 1, 2]
        assert started == [0, 1, 2]

    def test_exceptions_are_settled_not_raised(self):
        async def ok():
            return "ok"

        async def boom():
            raise RuntimeError("boom")

        results = _run(FanOutStrategy().run([ok, boom, ok]))
        assert results[0] == "ok" and results[2] == "ok"
        assert isinstance(results[1], RuntimeError)

    def test_max_concurrency_bounds_in_flight_jobs(self):
        state = {"in_flight": 0, "peak": 0}

        async def job():
            state["in_flight"] += 1
            state["peak"] = max(state["peak"], state["in_flight"])
            await asyncio.sleep(0.01)
            state["in_flight"] -= 1

        _run(FanOutStrategy(max_concurrency=2).run([job] * 6))
        assert state["peak"] == 2

    def test_empty(self):
        assert _run(FanOutStrategy().run([])) == []


class TestSequentialStrategy:
    def test_one_at_a_time_in_order(self):
        state = {"in_flight": 0, "peak": 0}
        order = []

        def make(i):
            async def job():
                state["in_flight"] += 1
                state["peak"] = max(state["peak"], state["in_flight"])
                await asyncio.sleep(0)
                order.append(i)
                state["in_flight"] -= 1
                return i
            return job

        assert _run(SequentialStrategy().run([make(i) for i in range(4)])) == [0, 1, 2, 3]
        assert order == [0, 1, 2, 3]
        assert state["peak"] == 1

    def test_failure_does_not_stop_the_sequence(self):
        async def boom():
            raise ValueError("bad row")

        async def ok():
            return 1

        results = _run(SequentialStrategy().run([boom, ok]))
        assert isinstance(results[0], ValueError)
        assert results[1] == 1


# =============================================================================
# AI RECONCILER
# =============================================================================

@pytest.fixture
def index(reference_rows):
    return build_reference_index(reference_rows)


class TestAISatisfaction:
    def test_only_matched_surveys_are_sent(self, config, index, survey_rows):
        client = FakeClient(default=satisfaction_json("X"))
        _run(AIReconciler(client, config).reconcile_satisfaction(survey_rows, index))
        assert len(client.prompts) == 2
        assert not any("ZZ9" in p for p in client.prompts)

    def test_results_are_validated_models(self, config, index, survey_rows):
        client = FakeClient({
            '"AB1"': satisfaction_json("AB1", "João", "Ana", "Loja1", 85),
            '"CD2"': satisfaction_json("CD2", "Maria", "Bruno", "Internet", "90"),
        })
        results = _run(AIReconciler(client, config).reconcile_satisfaction(survey_rows, index))
        assert sorted(r.chassi for r in results) == ["AB1", "CD2"]
        assert all(isinstance(r, SatisfactionResult) for r in results)
        assert {r.chassi: r.satisfacao for r in results} == {"AB1": 85, "CD2": 90}

    def test_malformed_response_drops_only_that_item(self, config, index, survey_rows):
        client = FakeClient({
            '"AB1"': "Desculpe, não consegui entender os dados.",
            '"CD2"': satisfaction_json("CD2"),
        })
        reconciler = AIReconciler(client, config)
        results = _run(reconciler.reconcile_satisfaction(survey_rows, index))
        assert [r.chassi for r in results] == ["CD2"]
        assert reconciler.summary() == {"malformed_json": 1, "ok": 1}

    def test_call_errors_and_bad_shapes_are_dropped(self, config, index, survey_rows):
        client = FakeClient({
            '"AB1"': LLMResult(text="", error="503 UNAVAILABLE"),
            '"CD2"': '{"chassi": "CD2"}',
        })
        reconciler = AIReconciler(client, config)
        assert _run(reconciler.reconcile_satisfaction(survey_rows, index)) == []
        assert reconciler.summary() == {"call_error": 1, "invalid_shape": 1}
        rejected = [o for o in reconciler.outcomes if o.status == "invalid_shape"]
        assert rejected[0].chassi == "CD2"
        assert "does not match SatisfactionResult" in rejected[0].error

    def test_coerce_shape_raises_invalid_shape(self):
        with pytest.raises(InvalidShapeError) as exc:
            _coerce_shape({"chassi": "CD2"}, SatisfactionResult, "CD2")
        assert exc.value.kind == "invalid_shape"
        assert exc.value.chassi == "CD2"

    def test_coerce_shape_unwraps_single_item_list(self):
        data = [json.loads(satisfaction_json("AB1"))]
        assert _coerce_shape(data, SatisfactionResult).chassi == "AB1"

    def test_client_exception_is_settled(self, config, index, survey_rows):
        def explode(prompt):
            raise ConnectionError("socket closed")

        client = FakeClient({'"AB1"': explode, '"CD2"': satisfaction_json("CD2")})
        results = _run(AIReconciler(client, config).reconcile_satisfaction(survey_rows, index))
        assert [r.chassi for r in results] == ["CD2"]

    def test_calls_run_concurrently(self, config, reference_rows):
        surveys = [{"CHASSI": r["CHASSI"]} for r in reference_rows]
        client = FakeClient(default=satisfaction_json("X"), delay_s=0.1)
        _run(AIReconciler(client, config).reconcile_satisfaction(surveys, build_reference_index(reference_rows)))
        assert client.max_in_flight > 1

    def test_configured_concurrency_cap(self, reference_rows):
        config = AppConfig(ai=AIConfig(max_concurrency=1), reconcile=ReconcileConfig(local_delay_s=0.0))
        surveys = [{"CHASSI": r["CHASSI"]} for r in reference_rows]
        client = FakeClient(default=satisfaction_json("X"), delay_s=0.02)
        _run(AIReconciler(client, config).reconcile_satisfaction(surveys, build_reference_index(reference_rows)))
        assert client.max_in_flight == 1

    def test_one_element_array_is_unwrapped(self, config, index):
        client = FakeClient(default="[" + satisfaction_json("AB1") + "]")
        results = _run(AIReconciler(client, config).reconcile_satisfaction([{"CHASSI": "AB1"}], index))
        assert [r.chassi for r in results] == ["AB1"]


class TestAIResend:
    def test_sequential_and_in_input_order(self, config, index, resend_rows):
        client = FakeClient(default=resend_json("X"), delay_s=0.01)
        _run(AIReconciler(client, config).reconcile_resend(resend_rows, index))
        assert client.max_in_flight == 1
        assert ['"AB1"' in client.prompts[0], '"EF3"' in client.prompts[1], '"CD2"' in client.prompts[2]] == [True] * 3

    def test_rows_without_chassis_are_not_sent(self, config, index, resend_rows):
        client = FakeClient(default=resend_json("X"))
        _run(AIReconciler(client, config).reconcile_resend(resend_rows, index))
        assert len(client.prompts) == 3

    def test_origin_is_resolved_locally(self, config, index, resend_rows):
        client = FakeClient({
            '"AB1"': resend_json("AB1", "João"),
            '"EF3"': resend_json("EF3", "Pedro"),
            '"CD2"': resend_json("CD2", "Maria"),
        })
        groups = _run(AIReconciler(client, config).reconcile_resend(resend_rows, index))
        assert {k: [i.nomeCliente for i in v] for k, v in groups.items()} == {
            "Loja1": ["João"],
            "Origem Desconhecida": ["Pedro"],
            "Internet": ["Maria"],
        }
        assert all(isinstance(i, NormalizedResendItem) for v in groups.values() for i in v)

    def test_failed_item_is_omitted_from_its_group(self, config, index):
        resends = [{"Chassi": "AB1", "Nome do cliente": "A"}, {"Chassi": "AB1", "Nome do cliente": "B"}]
        client = FakeClient({'"A"': "sem json", '"B"': resend_json("AB1", "B")})
        groups = _run(AIReconciler(client, config).reconcile_resend(resends, index))
        assert [i.nomeCliente for i in groups["Loja1"]] == ["B"]

    def test_all_failed_leaves_no_group(self, config, index):
        client = FakeClient(default="")
        assert _run(AIReconciler(client, config).reconcile_resend([{"Chassi": "AB1"}], index)) == {}


class TestProgressAndRun:
    def test_progress_messages(self, config, reference_rows, survey_rows, resend_rows):
        messages = []
        client = FakeClient({
            "Pesquisa de Satisfação": satisfaction_json("X"),
            "Reenvio": resend_json("X"),
        })
        _run(AIReconciler(client, config, progress=messages.append).run(reference_rows, survey_rows, resend_rows))
        assert sorted(m for m in messages if "satisfação" in m) == [
            "Analisando satisfação 1 de 2...",
            "Analisando satisfação 2 de 2...",
        ]
        assert [m for m in messages if "reenvio" in m] == [
            "Analisando reenvio 1 de 3...",
            "Analisando reenvio 2 de 3...",
            "Analisando reenvio 3 de 3...",
        ]

    def test_broken_progress_callback_is_ignored(self, config, reference_rows, survey_rows, resend_rows):
        def broken(message):
            raise RuntimeError("ui gone")

        client = FakeClient({"Pesquisa de Satisfação": satisfaction_json("X"), "Reenvio": resend_json("X")})
        result = _run(AIReconciler(client, config, progress=broken).run(reference_rows, survey_rows, resend_rows))
        assert len(result.satisfaction_results) == 2

    def test_run_with_partial_failure_completes(self, config, reference_rows, survey_rows, resend_rows):
        client = FakeClient({
            '"AB1", "SATISFACAO': "resposta sem json",
            "Pesquisa de Satisfação": satisfaction_json("CD2"),
            "Reenvio": resend_json("X"),
        })
        result = _run(AIReconciler(client, config).run(reference_rows, survey_rows, resend_rows))
        assert [r.chassi for r in result.satisfaction_results] == ["CD2"]
        assert sum(len(v) for v in result.resend_groups.values()) == 3
        assert result.has_results
