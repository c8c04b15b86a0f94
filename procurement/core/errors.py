"""
Domain errors carrying an HTTP status code.

Services raise these; the handlers registered in ``procurement.main`` render
them as ``{"statusCode": ..., "message": ...}``.
"""
from fastapi import status


class ProcurementError(Exception):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str, status_code: int = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self) -> dict:
        return {"statusCode": self.status_code, "message": self.message}


class ValidationError(ProcurementError):
    status_code = status.HTTP_400_BAD_REQUEST


class ForbiddenError(ProcurementError):
    status_code = status.HTTP_403_FORBIDDEN


class NotFoundError(ProcurementError):
    status_code = status.HTTP_404_NOT_FOUND


class ConflictError(ProcurementError):
    status_code = status.HTTP_409_CONFLICT


def parse_positive_id(value, label: str = "id") -> int:
    """Parse a path/body id, raising ValidationError unless it is a positive integer."""
    if isinstance(value, bool):
        raise ValidationError(f"Invalid {label}")
    try:
        parsed = int(str(value).strip())
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid {label}")
    if parsed <= 0:
        raise ValidationError(f"Invalid {label}")
    return parsed
