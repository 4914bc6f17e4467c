"""
Error taxonomy for MockForge.

Every failure the generation pipeline can hit is one of the exceptions below.
Each carries a structured ``ErrorKind`` tag so the orchestrator and the batch
summary can dispatch on the kind of failure instead of its message text.
Classification of raw SDK / network errors into these types happens once, at
the Gemini client boundary (see ``mockforge.generation.client``).
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    """Structured failure tag reported per work unit."""

    CONFIGURATION = "configuration"
    TRANSPORT = "transport"
    QUOTA = "quota"
    CREDENTIAL_REJECTED = "credential_rejected"
    MALFORMED_RESPONSE = "malformed_response"
    SCHEMA_VIOLATION = "schema_violation"
    INCOMPLETE_DOCUMENT = "incomplete_document"
    CREDENTIALS_EXHAUSTED = "credentials_exhausted"
    RENDER = "render"
    UNEXPECTED = "unexpected"


class MockForgeError(Exception):
    """Base class for all MockForge errors."""

    kind: ErrorKind = ErrorKind.UNEXPECTED
    suggested_action: str = "Re-run with --verbose and inspect the log output"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ConfigurationError(MockForgeError):
    """Invalid or missing startup configuration. Fatal, never retried."""

    kind = ErrorKind.CONFIGURATION
    suggested_action = "Fix the command-line flags, .env file or input files"


class TransportError(MockForgeError):
    """Network, timeout or unclassified API failure."""

    kind = ErrorKind.TRANSPORT
    suggested_action = "Check network connectivity; the request is retried with backoff"

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        retriable: bool = True,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.retriable = retriable


class CredentialFailure(TransportError):
    """A transport failure attributable to the credential that made the call."""


class QuotaError(CredentialFailure):
    """The credential exhausted its rate or usage allowance for the current window."""

    kind = ErrorKind.QUOTA
    suggested_action = "Add more API keys or wait for the quota window to reset"


class CredentialRejected(CredentialFailure):
    """The API refused the credential itself (invalid key, no permission)."""

    kind = ErrorKind.CREDENTIAL_REJECTED
    suggested_action = "Verify the API key is valid and has Gemini API access"


class MalformedResponse(MockForgeError):
    """The response could not be parsed as JSON, even after boundary recovery."""

    kind = ErrorKind.MALFORMED_RESPONSE
    suggested_action = "Enable --save-debug to inspect the raw output, or raise --max-tokens"

    def __init__(
        self,
        message: str,
        *,
        original_error: Exception | None = None,
        raw_sample: str = "",
    ):
        super().__init__(message)
        self.original_error = original_error
        self.raw_sample = raw_sample


class SchemaViolation(MockForgeError):
    """Parsed JSON is missing a required structural field."""

    kind = ErrorKind.SCHEMA_VIOLATION
    suggested_action = "Tighten the prompt so the model follows the JSON structure"

    def __init__(self, field: str, message: str | None = None):
        super().__init__(message or f"Missing or invalid required field: {field}")
        self.field = field


class AllCredentialsExhausted(MockForgeError):
    """Every credential in the pool is excluded."""

    kind = ErrorKind.CREDENTIALS_EXHAUSTED
    suggested_action = "Add more API keys or retry after the quota window resets"


class RenderError(MockForgeError):
    """A renderer failed to write its artifact."""

    kind = ErrorKind.RENDER
    suggested_action = "Check the output directory is writable and the background image exists"


class IncompleteDocument(MockForgeError):
    """The continuation limit was reached before the document had enough items."""

    kind = ErrorKind.INCOMPLETE_DOCUMENT
    suggested_action = "Raise --max-continuations or --max-tokens, or lower --target-items"
