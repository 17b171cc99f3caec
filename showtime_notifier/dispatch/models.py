"""Reporting structures for dispatch runs."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from ..delivery.models import DeliveryKind


@dataclass
class DeliveryFailure:
    """A destination whose delivery failed during a batch.

    Attributes:
        destination: Recipient id or guild id
        error_type: Exception class name
        message: Exception message
    """

    destination: str
    error_type: str
    message: str


@dataclass
class BatchReport:
    """
    Outcome of one batch run.

    Attributes:
        kind: Digest or broadcast
        started_at: UTC timestamp when the batch began
        finished_at: UTC timestamp when the batch completed
        considered: Destinations looked at
        skipped: Destinations with nothing to deliver (no eligible entries,
            no matches, delivery disabled or no channel)
        success_count: Destinations whose delivery was accepted
        matched_items: Items delivered, summed over destinations
        entries_recorded: Entries whose lifecycle counters were bumped
        bookkeeping_errors: Successful deliveries whose bookkeeping failed
        failures: One record per failed destination
        run_id: Correlation id shared by every log record of the batch
    """

    kind: DeliveryKind
    started_at: datetime
    finished_at: Optional[datetime] = None
    considered: int = 0
    skipped: int = 0
    success_count: int = 0
    matched_items: int = 0
    entries_recorded: int = 0
    bookkeeping_errors: int = 0
    failures: List[DeliveryFailure] = field(default_factory=list)
    run_id: Optional[str] = None

    @property
    def failure_count(self) -> int:
        return len(self.failures)

    @property
    def had_errors(self) -> bool:
        return bool(self.failures) or self.bookkeeping_errors > 0

    @property
    def duration_seconds(self) -> float:
        if self.finished_at is None:
            return 0.0
        return (self.finished_at - self.started_at).total_seconds()

    def add_failure(self, destination: str, error: BaseException) -> None:
        self.failures.append(
            DeliveryFailure(
                destination=destination,
                error_type=type(error).__name__,
                message=str(error),
            )
        )
