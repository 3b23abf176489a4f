"""
Data types shared by the API layer, the controllers and the CLI.

Rows coming back from list endpoints stay plain camelCase dicts; only the
types the client itself reasons about (users, roles, pages) are modelled.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Generic, List, Mapping, Optional, TypeVar

from eepdesk.logging_config import get_logger
from eepdesk.permissions import PermissionSet

logger = get_logger(__name__)

T = TypeVar("T")


# ==================== Domain enumerations ====================

class Gender(str, Enum):
    MALE = "Male"
    FEMALE = "Female"
    OTHER = "Other"


class StudentStatus(str, Enum):
    PENDING_QUALIFICATION = "Pending Qualification"
    ACTIVE = "Active"
    INACTIVE = "Inactive"


class SponsorshipStatus(str, Enum):
    SPONSORED = "Sponsored"
    UNSPONSORED = "Unsponsored"


class TransactionType(str, Enum):
    INCOME = "Income"
    EXPENSE = "Expense"


class FilingStatus(str, Enum):
    PENDING = "Pending"
    SUBMITTED = "Submitted"


class TaskStatus(str, Enum):
    TO_DO = "To Do"
    IN_PROGRESS = "In Progress"
    DONE = "Done"


class TaskPriority(str, Enum):
    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"


class PassFailStatus(str, Enum):
    PASS = "Pass"
    FAIL = "Fail"


class AuditAction(str, Enum):
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


class UserStatus(str, Enum):
    ACTIVE = "Active"
    INACTIVE = "Inactive"


TRANSACTION_CATEGORIES = sorted([
    "Donation", "Grant", "School Fees", "Utilities", "Salaries",
    "Rent", "Supplies", "Hot Lunches", "Gifts", "Transportation",
    "Other Income", "Other Expense",
])


# ==================== Users and roles ====================

@dataclass
class User:
    """The signed-in user, as returned by /user/me/"""
    id: int
    username: str
    email: str = ""
    is_admin: bool = False
    role: str = ""
    permissions: Dict[str, PermissionSet] = field(default_factory=dict)
    profile_photo: Optional[str] = None

    @classmethod
    def from_api(cls, data: Mapping[str, Any]) -> "User":
        """Build from a camelCase payload"""
        is_admin = bool(data.get("isAdmin", False))
        role = data.get("role") or ""
        if is_admin and not role:
            role = "Administrator"

        raw_permissions = data.get("permissions")
        if raw_permissions is None:
            logger.warning("User permissions not provided by backend. Access will be restricted.")
            raw_permissions = {}

        return cls(
            id=data.get("id", 0),
            username=data.get("username", ""),
            email=data.get("email", ""),
            is_admin=is_admin,
            role=role,
            permissions={name: PermissionSet.from_dict(grants) for name, grants in raw_permissions.items()},
            profile_photo=data.get("profilePhoto"),
        )


@dataclass
class Role:
    """A group with per-module permissions"""
    id: int
    name: str
    permissions: Dict[str, PermissionSet] = field(default_factory=dict)

    @classmethod
    def from_api(cls, data: Mapping[str, Any]) -> "Role":
        return cls(
            id=data.get("id", 0),
            name=data.get("name", ""),
            permissions={
                name: PermissionSet.from_dict(grants)
                for name, grants in (data.get("permissions") or {}).items()
            },
        )


# ==================== Pagination ====================

@dataclass
class PaginatedResponse(Generic[T]):
    """One page of a list endpoint"""
    count: int = 0
    next: Optional[str] = None
    previous: Optional[str] = None
    results: List[T] = field(default_factory=list)

    @classmethod
    def from_payload(cls, payload: Any) -> "PaginatedResponse":
        """Accept an envelope, or a bare list (some endpoints are unpaginated)"""
        if isinstance(payload, list):
            return cls(count=len(payload), results=list(payload))
        if not isinstance(payload, dict):
            return cls()
        return cls(
            count=int(payload.get("count", 0) or 0),
            next=payload.get("next"),
            previous=payload.get("previous"),
            results=list(payload.get("results") or []),
        )

    def total_pages(self, page_size: int) -> int:
        if self.count <= 0:
            return 1
        return -(-self.count // page_size)
