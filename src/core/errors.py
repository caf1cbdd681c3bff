"""
Error taxonomy for the extraction -> validation -> compilation pipeline.

Only the extraction orchestrator recovers from these; every other component
raises them straight to its caller.
"""
from __future__ import annotations


class CopilotError(Exception):
    """Base class for all pipeline errors."""


class ProviderError(CopilotError):
    """The LLM provider could not be reached, timed out, or answered non-2xx."""

    def __init__(self, message: str, *, provider: str | None = None, status_code: int | None = None):
        self.provider = provider
        self.status_code = status_code
        super().__init__(message)


class ParseError(CopilotError):
    """The provider answered, but the body is not the JSON shape we asked for."""

    def __init__(self, message: str, *, raw_output: str | None = None):
        self.raw_output = raw_output
        super().__init__(message)


class SchemaMismatchError(CopilotError):
    """The extracted intent references fields the dataset does not have."""

    def __init__(self, fields: list[str], schema_name: str):
        self.fields = fields
        self.schema_name = schema_name
        super().__init__(
            f"Intent references unknown field(s) {', '.join(repr(f) for f in fields)} "
            f"for dataset '{schema_name}'"
        )


class IntentValidationError(CopilotError):
    """An intent failed validation where that must never happen."""

    def __init__(self, errors: list[str]):
        self.errors = errors
        super().__init__("Intent failed validation: " + "; ".join(errors))


class CompileError(CopilotError):
    """Compiler was handed an intent it cannot render (caller misuse)."""
