"""Gemini credential lookup for AI-mode reconciliation.

AI mode needs exactly one Google AI key. It is read from the environment,
``GEMINI_API_KEY`` first and then ``API_KEY`` (the name older deployments
of the tool exported), optionally seeded from a ``.env`` file at the project
root. ``/config/ai`` only ever sees the masked form and the variable it came
from, so an operator can tell which setting is live.
"""

import os
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel

load_dotenv(dotenv_path=os.path.join(os.path.dirname(__file__), "..", ".env"))

GEMINI_ENV_VARS = ("GEMINI_API_KEY", "API_KEY")


def mask_key(key: str) -> str:
    if len(key) > 8:
        return f"{key[:4]}...{key[-4:]}"
    return "***"


class CredentialStatus(BaseModel):
    configured: bool
    source: Optional[str] = None
    masked_key: Optional[str] = None


class GeminiCredentials:

    def __init__(self, env_vars: tuple[str, ...] = GEMINI_ENV_VARS):
        self.env_vars = tuple(env_vars)

    @property
    def primary_env_var(self) -> str:
        return self.env_vars[0]

    def resolve(self) -> tuple[Optional[str], Optional[str]]:
        """(env var name, key) for the first variable that is set."""
        for env_var in self.env_vars:
            value = os.getenv(env_var)
            if value:
                return env_var, value
        return None, None

    def get_key(self) -> Optional[str]:
        return self.resolve()[1]

    def status(self) -> CredentialStatus:
        source, key = self.resolve()
        if not key:
            return CredentialStatus(configured=False)
        return CredentialStatus(configured=True, source=source, masked_key=mask_key(key))


gemini_credentials = GeminiCredentials()
