"""
SQL Gatekeeper - decides whether a SQL string may run for a role

Checks run in a fixed order and stop at the first failure:
statement stacking, forbidden keywords (non-admins), table allow-list,
operation permission (primary, then JOIN, then CTE). A passing SELECT is
then wrapped in the target engine's row-limit idiom.
"""
from dataclasses import dataclass
from typing import Iterable, Optional
import re

import structlog

from sql_sentinel.config import settings
from sql_sentinel.core.rbac import PolicyStore
from sql_sentinel.models import ConnectionType, Operation, Role
from sql_sentinel.connections.connectors import ConnectorRegistry, build_default_registry
from sql_sentinel.security.sql_classifier import (
    classify,
    extract_identifiers,
    extract_table_references,
    find_forbidden_keyword,
    has_row_limit,
    split_statements
)

logger = structlog.get_logger()

TRAILING_SEMICOLON = re.compile(r';\s*$')

MODIFIER_ERRORS = {
    Operation.JOIN: "You do not have permission to use JOIN operations",
    Operation.CTE: "You do not have permission to use Common Table Expressions (CTE)",
}


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of one validation. Equal inputs give equal results."""
    valid: bool
    error: Optional[str] = None
    sanitized_sql: Optional[str] = None
    max_rows: int = 0

    @classmethod
    def reject(cls, error: str) -> "ValidationResult":
        return cls(valid=False, error=error)


class Gatekeeper:
    """Validates SQL against role policy and rewrites it with a row limit."""

    def __init__(
        self,
        policy_store: PolicyStore,
        registry: Optional[ConnectorRegistry] = None,
        default_max_rows: Optional[int] = None
    ):
        self.policy_store = policy_store
        self.registry = registry or build_default_registry()
        self.default_max_rows = default_max_rows or settings.DEFAULT_MAX_ROWS

    def validate(
        self,
        sql: str,
        role: Role,
        accessible_tables: Optional[Iterable[str]] = None,
        engine: ConnectionType = ConnectionType.POSTGRESQL,
        known_tables: Optional[Iterable[str]] = None
    ) -> ValidationResult:
        """
        Validate a SQL string for a role.

        Args:
            sql: Candidate SQL text
            role: Caller's role
            accessible_tables: Table allow-list; None skips the table check
            engine: Target engine, selects the row-limit idiom
            known_tables: Tables of the target schema; any token naming one
                counts as a reference for the allow-list check
        """
        if not sql or not sql.strip():
            return ValidationResult.reject("SQL query is required")

        # 1. Statement stacking
        if len(split_statements(sql)) > 1:
            return self._blocked(role, "Security Violation: Multiple SQL statements detected.")

        # 2. Forbidden keywords anywhere in the text
        if role != Role.ADMIN:
            keyword = find_forbidden_keyword(sql)
            if keyword:
                return self._blocked(role, f"Security Violation: Forbidden keyword '{keyword}' detected.")

        # 3. Table allow-list
        if accessible_tables is not None:
            table = self._first_disallowed_table(sql, accessible_tables, known_tables)
            if table:
                return self._blocked(
                    role, f"Access Denied: You do not have permission to query table '{table}'."
                )

        # 4. Operation policy
        classification = classify(sql)
        permission = self.policy_store.is_allowed(role, classification.operation)
        if not permission.allowed:
            return self._blocked(
                role, f"You do not have permission to run {classification.operation.value} queries"
            )

        for modifier in (Operation.JOIN, Operation.CTE):
            if modifier in classification.modifiers and not self.policy_store.is_allowed(role, modifier).allowed:
                return self._blocked(role, MODIFIER_ERRORS[modifier])

        # 5. Row limit
        max_rows = permission.max_rows if permission.max_rows > 0 else self.default_max_rows
        sanitized_sql = TRAILING_SEMICOLON.sub('', sql.strip())
        if classification.operation == Operation.SELECT and not has_row_limit(sanitized_sql):
            connector = self.registry.get(ConnectionType.parse(engine))
            sanitized_sql = connector.limit_rows(sanitized_sql, max_rows)

        return ValidationResult(valid=True, sanitized_sql=sanitized_sql, max_rows=max_rows)

    @staticmethod
    def _first_disallowed_table(
        sql: str,
        accessible_tables: Iterable[str],
        known_tables: Optional[Iterable[str]]
    ) -> Optional[str]:
        allowed = {table.lower() for table in accessible_tables}
        referenced = extract_table_references(sql)

        if known_tables is not None:
            known = {table.lower() for table in known_tables}
            for token in extract_identifiers(sql):
                if token in known and token not in referenced:
                    referenced.append(token)

        for table in referenced:
            if table not in allowed:
                return table
        return None

    @staticmethod
    def _blocked(role: Role, error: str) -> ValidationResult:
        logger.info("query_blocked", role=role.value, reason=error)
        return ValidationResult.reject(error)
