from __future__ import annotations

from dataclasses import dataclass, field

from fastapi import HTTPException, status


@dataclass(frozen=True)
class PipelineError(Exception):
    code: str
    message: str
    details: dict = field(default_factory=dict)

    http_status = status.HTTP_400_BAD_REQUEST

    def __str__(self) -> str:
        return self.message

    def to_http(self) -> HTTPException:
        return HTTPException(
            status_code=self.http_status,
            detail={"code": self.code, "message": self.message, "details": self.details},
        )


class LoanNotFound(PipelineError):
    http_status = status.HTTP_404_NOT_FOUND

    @classmethod
    def for_id(cls, loan_id) -> LoanNotFound:
        return cls("loan_not_found", "Loan not found", {"loan_id": str(loan_id)})


class VersionConflict(PipelineError):
    """The stored version moved on; the caller must re-read before retrying."""

    http_status = status.HTTP_409_CONFLICT

    @classmethod
    def stale(cls, loan_id, expected_version: int, current_version: int | None) -> VersionConflict:
        return cls(
            "version_conflict",
            "Loan was modified by another request; reload and try again",
            {
                "loan_id": str(loan_id),
                "expected_version": expected_version,
                "current_version": current_version,
            },
        )


class RetriesExhausted(VersionConflict):
    @classmethod
    def after(cls, loan_id, attempts: int) -> RetriesExhausted:
        return cls(
            "retries_exhausted",
            "Loan is being updated concurrently; gave up after retrying",
            {"loan_id": str(loan_id), "attempts": attempts},
        )


class IllegalTransition(PipelineError):
    http_status = status.HTTP_422_UNPROCESSABLE_ENTITY

    @classmethod
    def between(cls, from_status: str, to_status: str, allowed: list[str]) -> IllegalTransition:
        return cls(
            "illegal_transition",
            f"Cannot move a loan from {from_status} to {to_status}",
            {"from_status": from_status, "to_status": to_status, "allowed": allowed},
        )


class GateBlocked(PipelineError):
    http_status = status.HTTP_422_UNPROCESSABLE_ENTITY

    @property
    def gate(self) -> str | None:
        return self.details.get("gate")

    @property
    def reason(self) -> str:
        return self.message


class InvalidGate(PipelineError):
    http_status = status.HTTP_400_BAD_REQUEST


class PipelineUnavailable(PipelineError):
    """Raised instead of returning partially aggregated numbers."""

    http_status = status.HTTP_503_SERVICE_UNAVAILABLE

    @classmethod
    def during(cls, operation: str) -> PipelineUnavailable:
        return cls(
            "pipeline_unavailable",
            "Loan records are temporarily unavailable",
            {"operation": operation},
        )


class WebhookSignatureInvalid(PipelineError):
    http_status = status.HTTP_400_BAD_REQUEST

    @classmethod
    def because(cls, reason: str) -> WebhookSignatureInvalid:
        return cls("invalid_signature", "Webhook signature verification failed", {"reason": reason})
