"""
Raw metrics supplied by the host service's collaborators.

Rates follow one convention throughout: success rate, payment punctuality,
delivery timeliness, escrow success, quiz average and documentation
readiness are percentages (0-100); dispute rate is a fraction (0-1).
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from trustalloc.core.exceptions import MetricsUnavailableError


def parse_timestamp(value: str) -> datetime:
    """
    Parse an ISO-8601 timestamp from a collaborator as an aware datetime.

    A trailing "Z" means UTC; a value without an offset is taken as UTC.

    Raises:
        MetricsUnavailableError: If the value is not an ISO-8601 timestamp
    """
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except (TypeError, ValueError) as e:
        raise MetricsUnavailableError(f"Malformed timestamp from collaborator: {value!r}") from e
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class KycStatus(str, Enum):
    """KYC review state reported by the identity store."""

    APPROVED = "APPROVED"
    IN_PROGRESS = "IN_PROGRESS"
    PENDING = "PENDING"
    REJECTED = "REJECTED"
    NOT_STARTED = "NOT_STARTED"

    @classmethod
    def from_string(cls, value: str | None) -> KycStatus:
        if not value:
            return cls.NOT_STARTED
        try:
            return cls(value.upper())
        except ValueError:
            return cls.NOT_STARTED


@dataclass
class KycRecord:
    """KYC status of an entity."""

    status: KycStatus = KycStatus.NOT_STARTED
    document_type: str | None = None
    document_number: str | None = None

    @property
    def documents_complete(self) -> bool:
        return bool(self.document_type and self.document_number)

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "document_type": self.document_type,
            "document_number": self.document_number,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> KycRecord:
        return cls(
            status=KycStatus.from_string(data.get("status")),
            document_type=data.get("document_type") or data.get("documentType"),
            document_number=data.get("document_number") or data.get("documentNumber"),
        )


@dataclass
class BehaviorMetrics:
    """Transaction, payment, delivery and escrow history of an entity."""

    total_transactions: int = 0
    successful_transactions: int = 0
    payment_punctuality: float = 0.0
    delivery_timeliness: float = 0.0
    dispute_rate: float = 0.0
    escrow_success_rate: float = 0.0
    total_escrows: int = 0
    total_payments: int = 0
    total_deliveries: int = 0

    @property
    def success_rate(self) -> float:
        """Share of successful transactions, as a percentage."""
        if self.total_transactions <= 0:
            return 0.0
        return 100.0 * self.successful_transactions / self.total_transactions

    def to_dict(self) -> dict[str, Any]:
        return dict(self.__dict__)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BehaviorMetrics:
        def pick(snake: str, camel: str, default: Any) -> Any:
            value = data.get(snake, data.get(camel))
            return default if value is None else value

        return cls(
            total_transactions=int(pick("total_transactions", "totalTransactions", 0)),
            successful_transactions=int(
                pick("successful_transactions", "successfulTransactions", 0)
            ),
            payment_punctuality=float(pick("payment_punctuality", "paymentPunctuality", 0.0)),
            delivery_timeliness=float(pick("delivery_timeliness", "deliveryTimeliness", 0.0)),
            dispute_rate=float(pick("dispute_rate", "disputeRate", 0.0)),
            escrow_success_rate=float(pick("escrow_success_rate", "escrowSuccessRate", 0.0)),
            total_escrows=int(pick("total_escrows", "totalEscrows", 0)),
            total_payments=int(pick("total_payments", "totalPayments", 0)),
            total_deliveries=int(pick("total_deliveries", "totalDeliveries", 0)),
        )


@dataclass
class ReadinessMetrics:
    """Learning and documentation readiness of an entity."""

    courses_completed: int = 0
    certifications_earned: int = 0
    quiz_average_score: float | None = None
    documentation_readiness: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return dict(self.__dict__)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ReadinessMetrics:
        quiz = data.get("quiz_average_score", data.get("quizAverageScore"))
        return cls(
            courses_completed=int(data.get("courses_completed", data.get("coursesCompleted", 0)) or 0),
            certifications_earned=int(
                data.get("certifications_earned", data.get("certificationsEarned", 0)) or 0
            ),
            quiz_average_score=float(quiz) if quiz is not None else None,
            documentation_readiness=float(
                data.get("documentation_readiness", data.get("documentationReadiness", 0.0)) or 0.0
            ),
        )
