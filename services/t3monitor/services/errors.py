"""Exceptions raised while importing a single client.

All of them are caught at the per-client boundary in client_import and
turned into the client's error_message; none aborts an import pass.
"""


class ClientImportError(Exception):
    """Base exception for a failed client import."""

    kind = "import"


class TransportError(ClientImportError):
    """Client unreachable or answered with a non-OK status."""

    kind = "transport"


class EmptyResponseError(ClientImportError):
    """Client answered OK with an empty body."""

    kind = "empty_response"

    def __init__(self, client: str) -> None:
        self.client = client
        super().__init__(f"Empty response from client {client}")


class DecodeError(ClientImportError):
    """Payload is not JSON or lacks a required section."""

    kind = "decode"


class ReconciliationError(ClientImportError):
    """Store read/write failed while merging a report."""

    kind = "reconciliation"
