"""
Result objects returned across service boundaries.

Tracking code must never raise into the booking flow, so operations that
can fail for expected reasons (bad input, platform rejection) return a
Result instead.
"""

from dataclasses import dataclass
from typing import Any, Dict, Generic, Optional, TypeVar

T = TypeVar('T')


@dataclass
class Result(Generic[T]):
    """
    Either data from a successful call, or an error message with a
    machine-readable code.

        result = backup_service.upload_manual_conversion(payload)
        if result.is_failure:
            logger.error("Upload failed", code=result.error_code)
    """

    success: bool
    data: Optional[T] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None

    @classmethod
    def success(cls, data: T, metadata: Optional[Dict[str, Any]] = None) -> 'Result[T]':
        return cls(success=True, data=data, metadata=metadata)

    @classmethod
    def failure(cls, error: str, code: Optional[str] = None,
                metadata: Optional[Dict[str, Any]] = None) -> 'Result[T]':
        """
        Args:
            error: Human-readable reason
            code: Upper-case code such as VALIDATION_ERROR or NETWORK_ERROR
            metadata: Structured details (validation issues, error payload)
        """
        return cls(success=False, error=error, error_code=code, metadata=metadata)

    @property
    def is_success(self) -> bool:
        return self.success

    @property
    def is_failure(self) -> bool:
        return not self.success

    def to_dict(self) -> Dict[str, Any]:
        """JSON body for API responses"""
        if self.is_success:
            body = {'success': True}
            if isinstance(self.data, dict):
                body.update(self.data)
            elif self.data is not None:
                body['data'] = self.data
            return body
        return {
            'success': False,
            'error': self.error,
            'code': self.error_code,
            'details': self.metadata,
        }

    def __bool__(self) -> bool:
        return self.is_success
