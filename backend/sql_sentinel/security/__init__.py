"""
Security Package - SQL classification and validation
"""
from sql_sentinel.security.sql_classifier import Classification, classify, find_forbidden_keyword
from sql_sentinel.security.gatekeeper import Gatekeeper, ValidationResult

__all__ = [
    "Classification",
    "classify",
    "find_forbidden_keyword",
    "Gatekeeper",
    "ValidationResult",
]
