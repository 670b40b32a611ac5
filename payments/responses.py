from dataclasses import dataclass
from typing import Any, Optional

from rest_framework import status
from rest_framework.response import Response


@dataclass
class ServiceResult:
    """The {success, message, data, error} envelope every payment endpoint returns."""

    success: bool
    message: Optional[str] = None
    data: Any = None
    error: Any = None

    @classmethod
    def ok(cls, message=None, data=None):
        return cls(success=True, message=message, data=data)

    @classmethod
    def fail(cls, message, error=None, data=None):
        return cls(success=False, message=message, error=error, data=data)

    def as_dict(self):
        body = {"success": self.success}
        for key in ("message", "data", "error"):
            value = getattr(self, key)
            if value is not None:
                body[key] = value
        return body

    def to_response(self, status_code=status.HTTP_200_OK):
        return Response(self.as_dict(), status=status_code)
