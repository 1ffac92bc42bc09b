# bizbase/core/exceptions.py
"""Exception types raised by the business-object engine."""

from typing import Optional


class BusinessObjectError(Exception):
    """Base class for all engine errors."""

    pass


class QueryValidationError(BusinessObjectError, ValueError):
    """A caller or programmer mistake detected before any statement executes."""

    pass


class SecurityViolationError(BusinessObjectError):
    """The caller tried to read or write a row outside its tenant scope."""

    def __init__(self, message: str = "Security violation"):
        super().__init__(message)


class ReferentialIntegrityError(BusinessObjectError):
    """A delete was blocked because live rows still reference the target."""

    def __init__(self, table_name: str, related_table: str, count: int):
        self.table_name = table_name
        self.related_table = related_table
        self.count = count
        super().__init__(f"{table_name} is tied to {count} number of {related_table}")


class BusinessObjectNotFoundError(BusinessObjectError):
    """No business object is registered under the name, or the target row is missing."""

    def __init__(self, name: str, message: Optional[str] = None):
        self.name = name
        super().__init__(message or f"Business object {name} not found.")
