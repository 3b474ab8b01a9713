"""Error taxonomy for the reconciliation runs."""

from typing import Iterable


class ConciliadorError(Exception):
    """Base exception for all reconciliation errors."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class MissingInputError(ConciliadorError):
    """One or more of the three datasets has not been supplied yet."""

    def __init__(self, missing: Iterable[str]):
        self.missing = list(missing)
        super().__init__(
            "Por favor, carregue todos os três arquivos antes de processar. "
            f"Faltando: {', '.join(self.missing)}"
        )


class MissingCredentialError(ConciliadorError):
    """AI mode selected but no generative-AI credential is configured."""

    def __init__(self, env_var: str = "GEMINI_API_KEY"):
        self.env_var = env_var
        super().__init__(f"A chave de API do Google AI não foi configurada ({env_var}).")


# =============================================================================
# PER-ITEM EXTRACTION SIGNALS: logged, never escape a batch
# =============================================================================

class ExtractionError(ConciliadorError):
    """A single AI extraction failed; the item is dropped from results."""

    kind = "extraction_error"

    def __init__(self, message: str, chassi: str = "", text: str = ""):
        super().__init__(message)
        self.chassi = chassi
        self.text = text


class GenerationCallError(ExtractionError):
    """The generative call itself failed (transport, quota, server error)."""
    kind = "call_error"


class EmptyResponseError(ExtractionError):
    kind = "empty_response"


class MalformedJsonError(ExtractionError):
    kind = "malformed_json"


class InvalidShapeError(ExtractionError):
    kind = "invalid_shape"


# =============================================================================
# PARSER ERRORS: surfaced per upload slot
# =============================================================================

class UnreadableFileError(ConciliadorError):
    """The uploaded bytes could not be read at all."""

    def __init__(self, filename: str, reason: str = ""):
        self.filename = filename
        super().__init__(f"Failed to read file '{filename}'. {reason}".strip())


class UnparsableFileError(ConciliadorError):
    """The file was read but is not a valid spreadsheet."""

    def __init__(self, filename: str, reason: str = ""):
        self.filename = filename
        super().__init__(
            f"Could not parse '{filename}'. Please ensure it's a valid .xlsx or .csv file. {reason}".strip()
        )
