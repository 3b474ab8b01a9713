"""Shared fixtures for the reconciliation test suite.

The generative client is always faked: no test talks to Gemini.
"""

import json
import threading
import time
from typing import Callable, Optional, Union

import pytest
from pydantic import BaseModel

from conciliador.config_loader import AppConfig, ReconcileConfig
from conciliador.llm_router import GenerativeClient, LLMResult


# =============================================================================
# CONFIG FIXTURES
# =============================================================================

@pytest.fixture
def config():
    """Default config without the UI loading delay."""
    return AppConfig(reconcile=ReconcileConfig(local_delay_s=0.0))


# =============================================================================
# DATASET FIXTURES
# =============================================================================

@pytest.fixture
def reference_rows():
    return [
        {"CHASSI": "AB1", "CLIENTE": "João", "VENDEDOR": "Ana", "ORIGEM VENDA": "Loja1"},
        {"CHASSI": "CD2", "CLIENTE": "Maria", "VENDEDOR": "Bruno", "ORIGEM VENDA": "Internet"},
        {"CHASSI": "EF3", "CLIENTE": "Pedro", "VENDEDOR": "Carla"},
    ]


@pytest.fixture
def survey_rows():
    return [
        {"CHASSI": "AB1", "SATISFACAO GERAL": 85},
        {"chassi ": "CD2", "Satisfacao Geral": "90"},
        {"CHASSI": "ZZ9", "SATISFACAO GERAL": 40},
    ]


@pytest.fixture
def resend_rows():
    return [
        {"Chassi": "AB1", "Nome do cliente": "João", "Concessionaria de venda": "X", "Data da posse": "2024-01-01"},
        {"Chassi": "EF3", "Nome do cliente": "Pedro", "Concessionaria de venda": "Y", "Data da posse": "2024-02-01"},
        {"Chassi": "CD2", "Nome do cliente": "Maria", "Concessionaria de venda": "Z", "Data da posse": "2024-03-01"},
        {"Nome do cliente": "Sem Chassi"},
    ]


# =============================================================================
# FAKE GENERATIVE CLIENT
# =============================================================================

Response = Union[str, LLMResult, Callable[[str], Union[str, LLMResult]]]


class FakeClient(GenerativeClient):
    """Canned responses keyed by a substring of the prompt (usually a chassis).

    Tracks every prompt and the peak number of calls in flight at once.
    """

    model = "fake-model"

    def __init__(self, responses: Optional[dict[str, Response]] = None,
                 default: Response = "", delay_s: float = 0.0):
        self.responses = responses or {}
        self.default = default
        self.delay_s = delay_s
        self.prompts: list[str] = []
        self.schemas: list[type] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self._lock = threading.Lock()

    def generate(self, prompt: str, schema: type[BaseModel]) -> LLMResult:
        with self._lock:
            self.prompts.append(prompt)
            self.schemas.append(schema)
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay_s:
                time.sleep(self.delay_s)
            response = self.default
            for needle, canned in self.responses.items():
                if needle in prompt:
                    response = canned
                    break
            if callable(response):
                response = response(prompt)
            if isinstance(response, LLMResult):
                return response
            return LLMResult(text=response)
        finally:
            with self._lock:
                self.in_flight -= 1


def satisfaction_json(chassi, cliente="Cliente", vendedor="Vendedor", origem="Loja1", satisfacao=80) -> str:
    return json.dumps({
        "chassi": chassi, "cliente": cliente, "vendedor": vendedor,
        "origemVenda": origem, "satisfacao": satisfacao,
    })


def resend_json(chassi, nome="Cliente", concessionaria="X", data="01/01/2024") -> str:
    return json.dumps({
        "nomeCliente": nome, "chassi": chassi,
        "concessionaria": concessionaria, "dataPosse": data,
    })
