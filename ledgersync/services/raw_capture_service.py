"""Raw capture store - persists provider responses verbatim.

One row per (connection, provider, external id); a later fetch of the same
logical entity overwrites the payload with the freshest response. The
payload is stored as an opaque JSON document and never inspected here.
"""

from ledgersync.database import Database
from ledgersync.logging_config import get_logger
from ledgersync.providers.base import RawRecord


logger = get_logger("raw_capture")


class RawCaptureService:
    def __init__(self, db: Database):
        self.db = db

    def store(self, record: RawRecord) -> dict:
        """Upsert a raw record keyed by (connection, provider, external id)."""
        row = {
            "tenant_id": record.tenant_id,
            "connection_id": record.connection_id,
            "provider_id": record.provider_id,
            "record_type": record.record_type,
            "external_id": record.external_id,
            "payload": record.payload,
            "fetched_at": record.fetched_at.isoformat(),
            "status_code": record.metadata.status_code,
            "duration_ms": record.metadata.duration_ms,
            "endpoint": record.metadata.endpoint,
            "request_params": record.metadata.request_params,
        }
        stored = self.db.upsert_raw_record(row)
        logger.info(
            f"Captured raw {record.record_type} for connection {record.connection_id} "
            f"({record.external_id}, {record.metadata.duration_ms}ms)"
        )
        return stored
