"""Incremental sync planner - decides the transaction fetch window per account.

Decision table (time since the last successful transaction sync of the
account through this connection):

    no prior sync      -> backfill sized by account type   (initial_backfill)
    < 1 hour           -> skip                             (recently_synced)
    1 hour - 7 days    -> [last sync - 1 day, now]          (incremental)
    7 - 30 days        -> [last sync - 7 days, now]         (moderate_gap)
    > 30 days          -> backfill sized by account type   (long_gap_backfill)

This is the only place that decides how much history is fetched.
"""

from dataclasses import dataclass
from datetime import date, datetime, timedelta

from ledgersync.config import Settings
from ledgersync.utils.dates import parse_timestamp

# Rough provider volume figures used for cost logging only
ESTIMATED_TRANSACTIONS_PER_DAY = 50
TRANSACTIONS_PER_API_CALL = 500

RECENT_SYNC_THRESHOLD = timedelta(hours=1)
INCREMENTAL_LIMIT = timedelta(days=7)
MODERATE_GAP_LIMIT = timedelta(days=30)


@dataclass
class SyncWindow:
    start_date: date | None
    end_date: date | None
    reason: str
    skip: bool = False

    @property
    def days(self) -> int:
        if self.skip or self.start_date is None:
            return 0
        return (self.end_date - self.start_date).days


class SyncPlanner:
    def __init__(self, settings: Settings):
        self.settings = settings

    def backfill_days(self, account_type: str | None) -> int:
        """Backfill length for an account type.

        Matching is by substring so provider-flavoured types ("business_checking",
        "credit_card") land on the right bucket.
        """
        kind = (account_type or "").lower()
        s = self.settings
        if "checking" in kind or "current" in kind or "operating" in kind:
            return s.backfill_days_checking
        if "saving" in kind:
            return s.backfill_days_savings
        if "credit" in kind:
            return s.backfill_days_credit
        if "loan" in kind or "mortgage" in kind:
            return s.backfill_days_loan
        if "invest" in kind:
            return s.backfill_days_investment
        return s.backfill_days_default

    def plan_window(
        self,
        account_type: str | None,
        last_synced_at,
        now: datetime,
        force: bool = False,
        override: tuple[date, date] | None = None,
    ) -> SyncWindow:
        """Plan the next transaction fetch for one account on one connection.

        ``last_synced_at`` is the connection's own last transaction sync for
        the account (its account link), not another connection's.

        ``override`` is a caller-supplied (start, end) pair and bypasses the table.
        """
        today = now.date()
        if override is not None:
            start, end = override
            return SyncWindow(start_date=start, end_date=end, reason="override")

        last_sync = parse_timestamp(last_synced_at)
        if last_sync is None:
            return self._backfill(account_type, today, "initial_backfill")

        elapsed = now - last_sync
        if elapsed < RECENT_SYNC_THRESHOLD:
            if force:
                return SyncWindow(
                    start_date=(last_sync - timedelta(days=1)).date(), end_date=today, reason="forced"
                )
            return SyncWindow(start_date=None, end_date=None, reason="recently_synced", skip=True)

        if elapsed <= INCREMENTAL_LIMIT:
            return SyncWindow(start_date=(last_sync - timedelta(days=1)).date(), end_date=today, reason="incremental")

        if elapsed <= MODERATE_GAP_LIMIT:
            return SyncWindow(start_date=(last_sync - timedelta(days=7)).date(), end_date=today, reason="moderate_gap")

        return self._backfill(account_type, today, "long_gap_backfill")

    def _backfill(self, account_type: str | None, today: date, reason: str) -> SyncWindow:
        days = self.backfill_days(account_type)
        return SyncWindow(start_date=today - timedelta(days=days), end_date=today, reason=reason)

    @staticmethod
    def estimate_cost(window: SyncWindow) -> dict:
        """Estimate provider load for a window (transactions, API calls)."""
        estimated = window.days * ESTIMATED_TRANSACTIONS_PER_DAY
        return {
            "days": window.days,
            "estimated_transactions": estimated,
            "estimated_api_calls": max(1, -(-estimated // TRANSACTIONS_PER_API_CALL)) if not window.skip else 0,
        }
