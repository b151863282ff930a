"""At-most-once notification dispatch for ledger milestones"""

import logging
from datetime import datetime
from typing import Dict, Protocol
from sqlalchemy.orm import Session

from emi_engine.domain.exceptions import TransientCollaboratorError
from emi_engine.domain.models import (
    DeliveryResult,
    DeliveryStatus,
    NotificationChannel,
    NotificationType,
    PenaltyLedgerEntry,
)
from emi_engine.domain.notifications import build_substitutions
from emi_engine.domain.penalty import log_notification
from emi_engine.infrastructure.database.repositories import LedgerRepository
from emi_engine.infrastructure.observability.metrics import notification_counter

logger = logging.getLogger(__name__)


class NotificationSink(Protocol):
    async def send(self, user_id: str, template_type: str, substitutions: Dict[str, str]) -> DeliveryResult:
        ...


class NotificationDispatcher:
    """
    Log-then-send dispatcher.

    The attempt is committed as `queued` before the sink is called, so a crash
    or a repeated run finds the record and never notifies the same milestone
    twice. Sink failures are logged and marked `failed`, never retried.
    """

    def __init__(self, db: Session, sink: NotificationSink, channel: NotificationChannel = NotificationChannel.PUSH):
        self.db = db
        self.sink = sink
        self.channel = channel
        self.ledger_repo = LedgerRepository(db)

    async def dispatch(
        self,
        entry: PenaltyLedgerEntry,
        notification_type: NotificationType,
        now: datetime,
    ) -> bool:
        """
        Send a milestone notification unless one is already logged.

        Returns True if the sink accepted it. Persistence errors propagate to
        the caller; sink errors do not.
        """
        if entry.has_notification(notification_type):
            return False

        record = log_notification(entry, notification_type, self.channel, now)
        self.ledger_repo.save(entry)
        self.db.commit()

        substitutions = build_substitutions(notification_type, entry)
        try:
            result = await self.sink.send(entry.user_id, notification_type.value, substitutions)
            record.status = DeliveryStatus.DELIVERED if result.delivered else DeliveryStatus.SENT
        except TransientCollaboratorError as e:
            record.status = DeliveryStatus.FAILED
            logger.warning(
                f"Notification {notification_type.value} failed: {e}",
                extra={"ledger_entry_id": str(entry.id), "user_id": entry.user_id},
            )

        notification_counter.labels(
            type=notification_type.value,
            outcome="failed" if record.status == DeliveryStatus.FAILED else "sent",
        ).inc()

        self.ledger_repo.save(entry)
        self.db.commit()
        return record.status != DeliveryStatus.FAILED
