"""Follow-up dispatcher - delivers due executions.

Each cycle claims a bounded batch of due PENDING executions, sends the
frozen message, and records exactly one terminal status per execution.
Failed sends are never retried: a late "your appointment is tomorrow" is
worse than none, so failures are left for operators to see.
"""

import logging
import uuid as uuid_module
from dataclasses import dataclass
from datetime import timedelta

from app.core.structured_logging import build_log_context
from app.db.enums import ExecutionStatus, TargetType
from app.db.models import FollowUpExecution
from app.services.follow_up_adapters import (
    Clock,
    FollowUpStore,
    TargetResolver,
    utcnow,
)
from app.services.message_sender import MessageSender

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 50
DEFAULT_CLAIM_TIMEOUT = timedelta(minutes=15)

ADDRESS_NOT_FOUND_ERROR = "Phone number not found"


@dataclass
class DispatchReport:
    """Counts for one dispatcher cycle."""
    claimed: int = 0
    sent: int = 0
    failed: int = 0
    reclaimed: int = 0
    # claimed but the terminal write was refused (claim reclaimed meanwhile)
    lost: int = 0

    @property
    def processed(self) -> int:
        return self.sent + self.failed


class FollowUpDispatcher:
    """Polling dispatcher. Safe to run as several concurrent instances."""

    def __init__(
        self,
        store: FollowUpStore,
        resolver: TargetResolver,
        sender: MessageSender,
        clock: Clock = utcnow,
        batch_size: int = DEFAULT_BATCH_SIZE,
        claim_timeout: timedelta = DEFAULT_CLAIM_TIMEOUT,
    ) -> None:
        self.store = store
        self.resolver = resolver
        self.sender = sender
        self.clock = clock
        self.batch_size = batch_size
        self.claim_timeout = claim_timeout

    async def run_cycle(self) -> DispatchReport:
        """Reclaim stale claims, then claim and deliver one batch."""
        report = DispatchReport()
        now = self.clock()

        report.reclaimed = self.store.reclaim_stale(
            older_than=now - self.claim_timeout, now=now
        )
        if report.reclaimed:
            logger.warning(
                "Reclaimed %s follow-up executions stuck in PROCESSING", report.reclaimed
            )

        claim_token = uuid_module.uuid4()
        executions = self.store.claim_due(now, self.batch_size, claim_token)
        report.claimed = len(executions)
        if executions:
            logger.info("Processing %s due follow-up executions", len(executions))

        for execution in executions:
            status = await self._process(execution, claim_token)
            if status == ExecutionStatus.SENT:
                report.sent += 1
            elif status == ExecutionStatus.FAILED:
                report.failed += 1
            else:
                report.lost += 1

        return report

    def _fail(
        self, execution: FollowUpExecution, claim_token: uuid_module.UUID, error: str
    ) -> ExecutionStatus | None:
        if self.store.mark_failed(execution, claim_token, error, self.clock()):
            return ExecutionStatus.FAILED
        return None

    async def _process(
        self, execution: FollowUpExecution, claim_token: uuid_module.UUID
    ) -> ExecutionStatus | None:
        """
        Deliver one claimed execution.

        Returns the terminal status recorded, or None if the claim was lost
        before the transition could be written.
        """
        execution_id = execution.id
        log_extra = build_log_context(
            org_id=str(execution.clinic_id),
            execution_id=str(execution_id),
            rule_id=str(execution.rule_id),
            route="follow_up_dispatcher",
        )
        try:
            contact = self.resolver.resolve(
                execution.clinic_id, TargetType(execution.target_type), execution.target_id
            )
            if contact is None or not contact.address:
                logger.warning(
                    "Follow-up execution %s failed: no delivery address",
                    execution_id,
                    extra=log_extra,
                )
                return self._fail(execution, claim_token, ADDRESS_NOT_FOUND_ERROR)

            result = await self.sender.send(
                execution.clinic_id, contact.address, contact.channel, execution.message
            )
        except Exception as e:
            logger.error(
                "Follow-up execution %s failed: %s",
                execution_id,
                type(e).__name__,
                extra=log_extra,
            )
            return self._fail(execution, claim_token, str(e) or type(e).__name__)

        if result.success:
            if not self.store.mark_sent(execution, claim_token, self.clock()):
                return None
            logger.info("Follow-up execution %s sent", execution_id, extra=log_extra)
            return ExecutionStatus.SENT

        logger.error(
            "Follow-up execution %s failed: delivery error", execution_id, extra=log_extra
        )
        return self._fail(execution, claim_token, result.error or "Unknown error")


def build_dispatcher(db) -> FollowUpDispatcher:
    """Dispatcher wired to a session and the configured transport."""
    from app.core.config import settings
    from app.services.follow_up_adapters import SqlAlchemyFollowUpStore, SqlAlchemyTargetResolver
    from app.services.message_sender import get_message_sender

    return FollowUpDispatcher(
        store=SqlAlchemyFollowUpStore(db),
        resolver=SqlAlchemyTargetResolver(db),
        sender=get_message_sender(db),
        batch_size=settings.FOLLOW_UP_BATCH_SIZE,
        claim_timeout=timedelta(minutes=settings.FOLLOW_UP_CLAIM_TIMEOUT_MINUTES),
    )
