"""
Core Package
"""
from sql_sentinel.core.audit import AuditEmitter, QueryAuditRecord, QueryStatus
from sql_sentinel.core.crypto import CredentialCipher, encrypt_value, decrypt_value
from sql_sentinel.core.deadline import Deadline
from sql_sentinel.core.rbac import PolicyStore, OperationPermission, RolePermissionSummary, initialize_rbac

__all__ = [
    "AuditEmitter", "QueryAuditRecord", "QueryStatus",
    "CredentialCipher", "encrypt_value", "decrypt_value",
    "Deadline",
    "PolicyStore", "OperationPermission", "RolePermissionSummary", "initialize_rbac"
]
