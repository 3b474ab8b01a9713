"""Pydantic schemas for the reconciliation results and the HTTP API."""

from typing import Optional

from pydantic import BaseModel, Field, field_serializer


# ========================================
# Derived records
# ========================================

class SatisfactionResult(BaseModel):
    """One surveyed vehicle joined to its sales reference."""
    chassi: str = Field(..., description="Chassis number as it appears in the survey")
    cliente: str = Field(..., description="Customer name from the sales reference")
    vendedor: str = Field(..., description="Salesperson from the sales reference")
    origemVenda: str = Field(..., description="Origin of sale from the sales reference")
    satisfacao: float = Field(..., description="Overall satisfaction percentage (e.g. 90 for 90%)")

    @field_serializer("satisfacao")
    def _whole_score_as_int(self, value: float):
        return int(value) if float(value).is_integer() else value


class NormalizedResendItem(BaseModel):
    """A survey that can be resent, normalized for the worklist."""
    nomeCliente: str
    chassi: str
    concessionaria: str
    dataPosse: str


# origin label -> items in input row order
ResendGroup = dict[str, list[NormalizedResendItem]]


class OriginGroupView(BaseModel):
    """Read-side view of one resend group."""
    origem: str
    count: int
    items: list[NormalizedResendItem] = Field(default_factory=list)


class ReconciliationResult(BaseModel):
    satisfaction_results: list[SatisfactionResult] = Field(default_factory=list)
    resend_groups: ResendGroup = Field(default_factory=dict)

    @property
    def has_results(self) -> bool:
        return bool(self.satisfaction_results) or bool(self.resend_groups)


# ========================================
# API schemas
# ========================================

class ProcessRequest(BaseModel):
    use_ai: Optional[bool] = None  # None = config default


class UploadResponse(BaseModel):
    slot: str
    filename: str
    rows: int


class DatasetStatus(BaseModel):
    reference: int = 0
    survey: int = 0
    resend: int = 0
    can_process: bool = False
    missing: list[str] = Field(default_factory=list)


class ReconciliationResponse(BaseModel):
    mode: str
    satisfaction_results: list[SatisfactionResult] = Field(default_factory=list)
    resend_groups: list[OriginGroupView] = Field(default_factory=list)
    has_results: bool = False
    error: Optional[str] = None
