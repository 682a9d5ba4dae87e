from enum import Enum
from typing import Dict, Optional


class ErrCode(str, Enum):
    BAD_VALUE = "bad_value"
    DISABLED_FEATURE = "disabled_feature"
    NOT_FOUND = "not_found"
    UNKNOWN = "unknown"


class ApiError(Exception):
    """A caller-facing error. Never sent to the room the hook posts into."""

    def __init__(self, message: str, errcode: ErrCode = ErrCode.UNKNOWN, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        self.errcode = errcode
        self.status = status or (404 if errcode == ErrCode.NOT_FOUND else 400)

    def json(self) -> Dict[str, str]:
        return {"error": self.message, "errcode": self.errcode.value}
