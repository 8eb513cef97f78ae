"""
Error taxonomy for the ingestion pipeline.

Every error carries the stage it was raised from and the target date (or
date range) so a failed run is actionable from its log line alone.
"""
from __future__ import annotations

from typing import Any, Dict, Optional


class IngestError(Exception):
    """
    Base class for ingestion failures.

    Attributes:
        message: Human-readable description
        stage: Pipeline step that failed (e.g. 'fetch_page', 'upsert_daily')
        target_date: ISO date or 'start..end' range the run was working on
    """

    def __init__(self, message: str, *, stage: str, target_date: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.stage = stage
        self.target_date = target_date

    def __str__(self) -> str:
        parts = [f"[{self.stage}]"]
        if self.target_date:
            parts.append(f"{self.target_date}:")
        parts.append(self.message)
        return " ".join(parts)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "stage": self.stage,
            "target_date": self.target_date,
        }


class UpstreamFetchError(IngestError):
    """Network, HTTP status or decoding failure talking to FiscalData."""

    def __init__(
        self,
        message: str,
        *,
        stage: str,
        target_date: Optional[str] = None,
        status_code: Optional[int] = None,
    ):
        super().__init__(message, stage=stage, target_date=target_date)
        self.status_code = status_code

    def __str__(self) -> str:
        text = super().__str__()
        if self.status_code:
            text += f" (HTTP {self.status_code})"
        return text

    def to_dict(self) -> Dict[str, Any]:
        out = super().to_dict()
        out["status_code"] = self.status_code
        return out


class NoDataError(IngestError):
    """
    The source has no rows for the requested date.

    A valid empty state (weekends, holidays, not yet published); callers log it
    and finish successfully.
    """


class PersistenceError(IngestError):
    """Database unreachable or a query failed."""


class PartialBackfillFailure(IngestError):
    """Some dates of a backfill range failed while the rest were stored."""

    def __init__(self, message: str, *, result, stage: str = "backfill", target_date: Optional[str] = None):
        super().__init__(message, stage=stage, target_date=target_date)
        self.result = result

    def to_dict(self) -> Dict[str, Any]:
        out = super().to_dict()
        out["failed_dates"] = list(self.result.failed_dates)
        out["processed"] = self.result.processed
        out["attempted"] = self.result.attempted
        return out


class RunLockedError(IngestError):
    """Another ingestion run holds the lock."""
