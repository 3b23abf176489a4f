"""
Custom Exceptions for eepdesk
=============================

Use these instead of generic Exception so callers can tell a rejected
request (ApiError) from a dead session (SessionExpiredError) or a request
that never reached the server (NetworkError).

Usage:
    from eepdesk.exceptions import ApiError, SessionExpiredError

    try:
        await api.delete_task(task_id)
    except SessionExpiredError:
        # tokens are already cleared, user was sent to the login route
        raise
    except ApiError as e:
        console.print(f"[red]{e.message}[/red]")
"""

from typing import Any, Callable, Dict, Optional, Tuple


class EepDeskError(Exception):
    """Base exception for all eepdesk errors"""

    def __init__(
        self,
        message: str,
        code: str = "INTERNAL_ERROR",
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "details": self.details
        }


# ============================================
# Remote API Errors
# ============================================

class ApiError(EepDeskError):
    """Non-2xx response from the API"""

    def __init__(self, message: str, status: int, data: Any = None):
        super().__init__(message, code="API_ERROR", details={"status": status})
        self.status = status
        self.data = data


class SessionExpiredError(ApiError):
    """The session could not be renewed; the user must log in again"""

    def __init__(self, message: str = "Session expired. Please log in again.", data: Any = None):
        super().__init__(message, 401, data)
        self.code = "SESSION_EXPIRED"


class NetworkError(EepDeskError):
    """Request never reached the server or the response was unreadable"""

    def __init__(self, message: str, endpoint: str = ""):
        super().__init__(message, code="NETWORK_ERROR", details={"endpoint": endpoint})


# ============================================
# Local Errors
# ============================================

class ConfigurationError(EepDeskError):
    """Invalid or missing configuration"""

    def __init__(self, message: str, field: Optional[str] = None):
        details = {"field": field} if field else {}
        super().__init__(message, code="CONFIG_ERROR", details=details)


class PermissionDeniedError(EepDeskError):
    """The signed-in user's role does not allow the action"""

    def __init__(self, module: str, action: str):
        super().__init__(
            f"You do not have permission to {action} in {module}.",
            code="PERMISSION_DENIED",
            details={"module": module, "action": action},
        )
        self.module = module
        self.action = action


# ============================================
# Error message extraction
# ============================================

def _join(value: Any) -> str:
    if isinstance(value, (list, tuple)):
        return ", ".join(str(item) for item in value)
    return str(value)


def _detail_rule(data: Dict[str, Any]) -> Optional[str]:
    detail = data.get("detail")
    return str(detail) if detail else None


def _message_rule(data: Dict[str, Any]) -> Optional[str]:
    message = data.get("message")
    return _join(message) if message else None


def _field_errors_rule(data: Dict[str, Any]) -> Optional[str]:
    joined = "; ".join(f"{field}: {_join(errors)}" for field, errors in data.items())
    return joined or None


ERROR_MESSAGE_RULES: Tuple[Callable[[Dict[str, Any]], Optional[str]], ...] = (
    _detail_rule,
    _message_rule,
    _field_errors_rule,
)


def extract_error_message(status: int, data: Any) -> str:
    """
    Best-effort human message for an error response.

    Rules are tried in order and the first non-empty result wins:
    `detail`, then `message` (lists joined), then every field rendered as
    "field: message" joined by "; ".
    """
    if isinstance(data, dict):
        for rule in ERROR_MESSAGE_RULES:
            message = rule(data)
            if message:
                return message
    return f"API request failed with status {status}."
