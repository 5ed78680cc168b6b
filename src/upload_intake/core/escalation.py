"""Strike -> timeout -> ban escalation."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from ..config.constants import AUDIT_BANNED, AUDIT_TIMED_OUT
from .base import IdentityState

if TYPE_CHECKING:
    from .audit import AuditLog
    from .ledger import IdentityLedger, IdentityRecord

LOG = logging.getLogger(__name__)


class EscalationController:
    """
    Convert accumulated strikes into timeouts and timeouts into bans.

    ``escalate`` mutates the record in place. A banned identity's ledger row
    is deleted here; the caller must not persist the record afterwards.
    """

    def __init__(
        self,
        ledger: IdentityLedger,
        audit: AuditLog,
        *,
        strike_threshold: int,
        timeout_threshold: int,
        permanent_bans: bool = False,
    ) -> None:
        if strike_threshold < 1 or timeout_threshold < 1:
            msg = "Escalation thresholds must be at least 1"
            raise ValueError(msg)
        self.ledger = ledger
        self.audit = audit
        self.strike_threshold = strike_threshold
        self.timeout_threshold = timeout_threshold
        self.permanent_bans = permanent_bans

    def escalate(self, fingerprint: str, record: IdentityRecord) -> IdentityState:
        """Apply any transition the record's counters now call for."""
        if record.strikes < self.strike_threshold:
            return IdentityState.ACTIVE

        record.timeouts += 1
        record.strikes = 0
        self.audit.record(fingerprint, AUDIT_TIMED_OUT)
        LOG.info("Identity %s timed out (%d/%d)", fingerprint, record.timeouts, self.timeout_threshold)

        if record.timeouts < self.timeout_threshold:
            return IdentityState.TIMED_OUT

        if self.permanent_bans:
            self.ledger.ban(fingerprint)
        else:
            self.ledger.delete(fingerprint)
        self.audit.record(fingerprint, AUDIT_BANNED)
        LOG.warning("Identity %s banned", fingerprint)
        return IdentityState.BANNED
