"""Configuration loader for the reconciliation engine.

Column names, sentinel labels and AI settings are externalized to
``config.yaml`` and validated with pydantic. Secrets never live here; see
``api_keys``.
"""

from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field


# =============================================================================
# PYDANTIC MODELS FOR CONFIGURATION VALIDATION
# =============================================================================

class ReferenceFields(BaseModel):
    """Column names of the sales reference spreadsheet."""
    chassi: str = "CHASSI"
    cliente: str = "CLIENTE"
    vendedor: str = "VENDEDOR"
    origem_venda: str = "ORIGEM VENDA"


class SurveyFields(BaseModel):
    """Column names of the answered satisfaction survey spreadsheet."""
    chassi: str = "CHASSI"
    satisfacao_geral: str = "SATISFACAO GERAL"


class ResendFields(BaseModel):
    """Column names of the pending resend spreadsheet."""
    chassi: str = "Chassi"
    nome_cliente: str = "Nome do cliente"
    concessionaria: str = "Concessionaria de venda"
    data_posse: str = "Data da posse"


class FieldsConfig(BaseModel):
    reference: ReferenceFields = Field(default_factory=ReferenceFields)
    survey: SurveyFields = Field(default_factory=SurveyFields)
    resend: ResendFields = Field(default_factory=ResendFields)


class AIConfig(BaseModel):
    """Generative-AI call settings."""
    model: str = "gemini-2.5-flash"
    temperature: float = 0.0
    max_output_tokens: Optional[int] = None
    # None = every eligible satisfaction row is sent at once
    max_concurrency: Optional[int] = Field(default=None, ge=1)


class ReconcileConfig(BaseModel):
    unknown_origin: str = "Origem Desconhecida"
    missing_value: str = "N/A"
    date_format: str = "%d/%m/%Y"
    local_delay_s: float = Field(default=0.5, ge=0.0)
    use_ai_default: bool = True


class AppConfig(BaseModel):
    fields: FieldsConfig = Field(default_factory=FieldsConfig)
    ai: AIConfig = Field(default_factory=AIConfig)
    reconcile: ReconcileConfig = Field(default_factory=ReconcileConfig)


# =============================================================================
# LOADER
# =============================================================================

DEFAULT_CONFIG_PATH = Path(__file__).parent / "config.yaml"


def load_config(config_path: Optional[str] = None) -> AppConfig:
    """Load and validate configuration from YAML file.

    Args:
        config_path: Path to config file. Defaults to config.yaml next to this module.

    Returns:
        Validated AppConfig object (defaults when the file is missing or empty).
    """
    if config_path is None:
        config_path = DEFAULT_CONFIG_PATH

    if not Path(config_path).exists():
        return AppConfig()

    with open(config_path, 'r', encoding='utf-8') as f:
        raw = yaml.safe_load(f)

    if not raw:
        return AppConfig()

    return AppConfig(**raw)


_config: Optional[AppConfig] = None


def get_config() -> AppConfig:
    """Get the loaded configuration (singleton)."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reload_config(config_path: Optional[str] = None) -> AppConfig:
    """Force reload of configuration."""
    global _config
    _config = load_config(config_path)
    return _config
