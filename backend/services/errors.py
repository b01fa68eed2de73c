"""
Domain errors for shift monitoring and alert handling.

Each error carries the HTTP status the API layer reports it with; the core
services never import FastAPI.
"""

from typing import List, Optional


class DutyHoursError(Exception):
    """Base class for all expected shift/alert failures."""
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


# =============================================================================
# 400 - rejected input, no state change
# =============================================================================

class InvalidInputError(DutyHoursError):
    status_code = 400


class UnknownThresholdError(InvalidInputError):
    pass


class InvalidResponseError(InvalidInputError):
    def __init__(self, threshold: int, response: str, valid: List[str]):
        if valid:
            message = f"Invalid response '{response}' for {threshold}HR alert. Valid: {', '.join(valid)}"
        else:
            message = f"{threshold}HR alert is informational and takes no response"
        super().__init__(message)
        self.threshold = threshold
        self.response = response
        self.valid = valid


# =============================================================================
# 404
# =============================================================================

class NotFoundError(DutyHoursError):
    status_code = 404


class ShiftNotFoundError(NotFoundError):
    def __init__(self, shift_id: int):
        super().__init__(f"Shift {shift_id} not found")
        self.shift_id = shift_id


class StaffNotFoundError(NotFoundError):
    def __init__(self, staff_id: int):
        super().__init__(f"Staff {staff_id} not found")
        self.staff_id = staff_id


# =============================================================================
# 409 - request conflicts with current state, no state change
# =============================================================================

class ConflictError(DutyHoursError):
    status_code = 409


class ShiftTerminalError(ConflictError):
    def __init__(self, shift_id: int, status: str, action: Optional[str] = None):
        detail = f" - cannot {action}" if action else ""
        super().__init__(f"Shift {shift_id} is already {status}{detail}")
        self.shift_id = shift_id
        self.status = status


class AlertNotSentError(ConflictError):
    def __init__(self, shift_id: int, threshold: int):
        super().__init__(f"{threshold}HR alert has not been sent for shift {shift_id}")
        self.shift_id = shift_id
        self.threshold = threshold


class AlertAlreadyAnsweredError(ConflictError):
    def __init__(self, shift_id: int, threshold: int, response: str):
        super().__init__(
            f"{threshold}HR alert for shift {shift_id} already answered with {response}"
        )
        self.shift_id = shift_id
        self.threshold = threshold
        self.response = response


class StaffConflictError(ConflictError):
    def __init__(self, busy_staff: List[str]):
        super().__init__(f"Staff already on duty: {', '.join(busy_staff)}")
        self.busy_staff = busy_staff


class ShiftDeleteError(ConflictError):
    def __init__(self, shift_id: int, status: str):
        super().__init__(
            f"Cannot delete shift {shift_id} while {status} - complete or cancel it first"
        )
        self.shift_id = shift_id
        self.status = status
