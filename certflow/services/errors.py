from __future__ import annotations


class CertflowError(Exception):
    """Base class for errors surfaced to users."""


class BatchError(CertflowError):
    """A phase-fatal error: the batch run stops and later phases are skipped."""

    phase = "batch"


class EventNotFoundError(BatchError):
    phase = "fetching"


class EmptyBatchError(BatchError):
    phase = "fetching"


class FetchError(BatchError):
    phase = "fetching"


class NoCertificatesProducedError(BatchError):
    phase = "processing"

    def __init__(self, message: str, failures: dict[int, str] | None = None):
        super().__init__(message)
        self.failures = failures or {}


class PersistError(BatchError):
    phase = "persisting"


class StoreError(CertflowError):
    """Raised by the certificate store when the database rejects an operation."""


class TransportError(CertflowError):
    """A templated-send call failed; ``reason`` classifies the failure."""

    def __init__(
        self,
        message: str,
        *,
        status: int | None = None,
        reason: str = "unknown",
        retryable: bool = False,
    ):
        super().__init__(message)
        self.status = status
        self.reason = reason
        self.retryable = retryable

    @classmethod
    def from_result(cls, result: dict) -> "TransportError":
        return cls(
            result.get("detail") or "send failed",
            status=result.get("status"),
            reason=result.get("reason") or "unknown",
            retryable=bool(result.get("retryable")),
        )

    def as_dict(self, email: str) -> dict:
        return {
            "email": email,
            "status": self.status,
            "reason": self.reason,
            "detail": str(self),
            "retryable": self.retryable,
        }
