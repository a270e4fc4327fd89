"""
Fleet Engine Errors
"""
from typing import Any, Optional


class FleetError(Exception):
    """Base class for fleet engine errors"""


class InvalidReport(FleetError, ValueError):
    """Position report rejected at the ingestion boundary"""

    def __init__(self, message: str, field: Optional[str] = None, value: Any = None):
        super().__init__(message)
        self.field = field
        self.value = value


class StaleReport(InvalidReport):
    """Report older than the vessel's most recent report"""


class NotFound(FleetError, KeyError):
    """Unknown vessel or alert id"""

    def __str__(self):
        return str(self.args[0]) if self.args else "not found"


class InvariantViolation(FleetError, AssertionError):
    """Internal state that validation should have made impossible"""


class InvalidTransition(InvariantViolation):
    """Connection lifecycle move that the state machine does not allow"""
