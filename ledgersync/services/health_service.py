"""Connection health tracker.

score = w30 * success_rate(30d) + w7 * success_rate(7d)
        - penalty * min(consecutive_failures, cap)

clamped to [0, 1]. A completed job counts as a success, a partial job as half
a success and a failed job as none. The weights, penalty and cap come from
settings.

This is the only component that forces a connection into ``error``.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta

from ledgersync.config import Settings
from ledgersync.database import Database
from ledgersync.logging_config import get_logger
from ledgersync.utils.dates import parse_timestamp, utc_now


logger = get_logger("health")

JOB_OUTCOME_WEIGHT = {"completed": 1.0, "partial": 0.5, "failed": 0.0}

BANDS = (
    (0.90, "excellent"),
    (0.75, "good"),
    (0.50, "fair"),
    (0.25, "poor"),
)

MAX_BACKOFF_EXPONENT = 4


@dataclass(frozen=True)
class HealthPolicy:
    weight_30d: float = 0.30
    weight_7d: float = 0.70
    failure_penalty: float = 0.05
    failure_penalty_cap: int = 5
    error_threshold: int = 3
    sync_interval_hours: int = 24

    @classmethod
    def from_settings(cls, settings: Settings) -> "HealthPolicy":
        return cls(
            weight_30d=settings.health_weight_30d,
            weight_7d=settings.health_weight_7d,
            failure_penalty=settings.health_failure_penalty,
            failure_penalty_cap=settings.health_failure_penalty_cap,
            error_threshold=settings.health_error_threshold,
            sync_interval_hours=settings.sync_interval_hours,
        )


def health_band(score: float) -> str:
    for threshold, band in BANDS:
        if score >= threshold:
            return band
    return "critical"


def success_rate(jobs: list[dict]) -> float:
    """Weighted success rate of finished jobs; no history counts as healthy."""
    if not jobs:
        return 1.0
    return sum(JOB_OUTCOME_WEIGHT.get(job["status"], 0.0) for job in jobs) / len(jobs)


def compute_score(rate_30d: float, rate_7d: float, consecutive_failures: int, policy: HealthPolicy) -> float:
    score = (
        policy.weight_30d * rate_30d
        + policy.weight_7d * rate_7d
        - policy.failure_penalty * min(consecutive_failures, policy.failure_penalty_cap)
    )
    return round(min(1.0, max(0.0, score)), 4)


class HealthService:
    def __init__(self, db: Database, policy: HealthPolicy):
        self.db = db
        self.policy = policy

    def score(self, connection: dict, now: datetime | None = None) -> float:
        now = now or utc_now()
        jobs = self.db.get_finished_sync_jobs_since(
            connection["tenant_id"], connection["id"], (now - timedelta(days=30)).isoformat()
        )
        week_ago = now - timedelta(days=7)
        recent = [job for job in jobs if _started_after(job, week_ago)]
        return compute_score(
            success_rate(jobs),
            success_rate(recent),
            connection.get("consecutive_failures") or 0,
            self.policy,
        )

    def next_sync_at(self, consecutive_failures: int, now: datetime) -> datetime:
        """Next scheduled attempt, backing off exponentially while failing."""
        factor = 2 ** min(consecutive_failures, MAX_BACKOFF_EXPONENT)
        return now + timedelta(hours=self.policy.sync_interval_hours * factor)

    def record_job_outcome(self, connection: dict, job_status: str, auth_failed: bool = False) -> dict:
        """Update failure counter, status, score and schedule after a finished job.

        Returns the updated connection.
        """
        now = utc_now()
        tenant_id = connection["tenant_id"]
        failures = connection.get("consecutive_failures") or 0
        status = connection.get("status")

        data = {"last_sync_at": now.isoformat(), "updated_at": now.isoformat()}

        if job_status == "failed":
            failures += 1
            if auth_failed or failures >= self.policy.error_threshold:
                status = "error"
                logger.warning(
                    f"Connection {connection['id']} forced to error "
                    f"({'authentication failed' if auth_failed else f'{failures} consecutive failures'})"
                )
        else:
            failures = 0
            data["last_successful_sync_at"] = now.isoformat()
            if status == "pending_setup":
                status = "active"

        data["consecutive_failures"] = failures
        data["status"] = status
        data["health_score"] = self.score({**connection, "consecutive_failures": failures}, now)
        data["next_sync_at"] = self.next_sync_at(failures, now).isoformat()

        updated = self.db.update_connection(tenant_id, connection["id"], data)
        logger.info(
            f"Connection {connection['id']} health {data['health_score']:.2f} "
            f"({health_band(data['health_score'])}), failures={failures}, status={status}"
        )
        return updated or {**connection, **data}

    def reset_health(self, connection: dict) -> dict:
        """Clear failures and return the connection to active (after re-authorization)."""
        now = utc_now()
        data = {
            "status": "active",
            "consecutive_failures": 0,
            "last_error": None,
            "next_sync_at": now.isoformat(),
            "updated_at": now.isoformat(),
        }
        data["health_score"] = self.score({**connection, "consecutive_failures": 0}, now)
        logger.info(f"Reset health for connection {connection['id']}")
        return self.db.update_connection(connection["tenant_id"], connection["id"], data) or {**connection, **data}

    def get_connection_health(self, connection: dict) -> dict:
        score = self.score(connection)
        return {
            "connection_id": connection["id"],
            "score": score,
            "band": health_band(score),
            "status": connection.get("status"),
            "consecutive_failures": connection.get("consecutive_failures") or 0,
        }


def _started_after(job: dict, moment: datetime) -> bool:
    started = parse_timestamp(job.get("started_at"))
    return started is not None and started >= moment
