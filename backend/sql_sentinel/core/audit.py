"""
Query Audit Logging
"""
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional
import enum

import structlog

logger = structlog.get_logger()

# SQL text is cut to this length in log lines; sinks receive it in full
LOG_SQL_LENGTH = 200


class QueryStatus(str, enum.Enum):
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    BLOCKED = "BLOCKED"


@dataclass(frozen=True)
class QueryAuditRecord:
    """One execution attempt, successful or not."""
    user_id: Optional[int]
    connection_id: Optional[int]
    sql_text: str
    status: QueryStatus
    error_message: Optional[str] = None
    execution_time_ms: int = 0
    rows_affected: int = 0
    created_at: datetime = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        data["created_at"] = self.created_at.isoformat() if self.created_at else None
        return data


AuditSink = Callable[[QueryAuditRecord], None]


class AuditEmitter:
    """
    Builds audit records and hands them to every registered sink.

    Persisting records is up to the sinks; the emitter only logs them.
    """

    def __init__(self, sinks: Optional[List[AuditSink]] = None):
        self._sinks: List[AuditSink] = list(sinks or [])

    def add_sink(self, sink: AuditSink) -> None:
        self._sinks.append(sink)

    def emit(
        self,
        user_id: Optional[int],
        connection_id: Optional[int],
        sql_text: str,
        status: QueryStatus,
        error_message: Optional[str] = None,
        execution_time_ms: int = 0,
        rows_affected: int = 0
    ) -> QueryAuditRecord:
        """Record one query attempt."""
        record = QueryAuditRecord(
            user_id=user_id,
            connection_id=connection_id,
            sql_text=sql_text,
            status=status,
            error_message=error_message,
            execution_time_ms=execution_time_ms,
            rows_affected=rows_affected,
            created_at=datetime.now(timezone.utc)
        )

        log_method = logger.info if status == QueryStatus.SUCCESS else logger.warning
        log_method(
            "query_audit",
            user_id=user_id,
            connection_id=connection_id,
            status=status.value,
            sql=sql_text[:LOG_SQL_LENGTH],
            error=error_message,
            duration_ms=execution_time_ms,
            rows_affected=rows_affected
        )

        for sink in self._sinks:
            try:
                sink(record)
            except Exception as e:
                logger.error("audit_sink_failed", sink=repr(sink), error=str(e))

        return record
