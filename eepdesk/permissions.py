"""
Role-based permission resolution

Every screen asks one question: what may the signed-in user do in this
module? Admins may do everything; everybody else gets exactly what their
role grants for the module, and nothing for a module their role does not
mention.
"""

from dataclasses import dataclass, asdict
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, Mapping, Optional, Union

from eepdesk.logging_config import get_logger

if TYPE_CHECKING:
    from eepdesk.models import User

logger = get_logger(__name__)


class AppModule(str, Enum):
    """Application areas that carry their own permissions"""
    STUDENTS = "students"
    SPONSORS = "sponsors"
    TRANSACTIONS = "transactions"
    ACADEMICS = "academics"
    TASKS = "tasks"
    FILINGS = "filings"
    REPORTS = "reports"
    AUDIT = "audit"
    USERS = "users"

    @property
    def label(self) -> str:
        return MODULE_LABELS[self]


MODULE_LABELS: Dict[AppModule, str] = {
    AppModule.STUDENTS: "Students",
    AppModule.SPONSORS: "Sponsors",
    AppModule.TRANSACTIONS: "Transactions",
    AppModule.ACADEMICS: "Academics",
    AppModule.TASKS: "Tasks",
    AppModule.FILINGS: "Filings",
    AppModule.REPORTS: "Reports",
    AppModule.AUDIT: "Audit Log",
    AppModule.USERS: "User Management",
}


@dataclass(frozen=True)
class PermissionSet:
    """CRUD grants for one module, as stored on a role"""
    create: bool = False
    read: bool = False
    update: bool = False
    delete: bool = False

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "PermissionSet":
        data = data or {}
        return cls(
            create=bool(data.get("create", False)),
            read=bool(data.get("read", False)),
            update=bool(data.get("update", False)),
            delete=bool(data.get("delete", False)),
        )

    def to_dict(self) -> Dict[str, bool]:
        return asdict(self)


@dataclass(frozen=True)
class ModulePermissions:
    """What the current user may do in one module"""
    can_create: bool = False
    can_read: bool = False
    can_update: bool = False
    can_delete: bool = False

    @classmethod
    def from_permission_set(cls, permission_set: PermissionSet) -> "ModulePermissions":
        return cls(
            can_create=permission_set.create,
            can_read=permission_set.read,
            can_update=permission_set.update,
            can_delete=permission_set.delete,
        )


NO_PERMISSIONS = ModulePermissions()
ALL_PERMISSIONS = ModulePermissions(can_create=True, can_read=True, can_update=True, can_delete=True)


def permissions_for(user: Optional["User"], module: Union[AppModule, str]) -> ModulePermissions:
    """
    Resolve CRUD permissions for `module`.

    - no user: nothing
    - admin: everything, for any module name
    - otherwise: the role's grants for the module, nothing if absent
    """
    if user is None:
        return NO_PERMISSIONS

    if user.is_admin:
        return ALL_PERMISSIONS

    key = module.value if isinstance(module, AppModule) else str(module)
    if not isinstance(module, AppModule) and key not in AppModule._value2member_map_:
        logger.warning(f"Permission check for unknown module '{key}'")

    permission_set = user.permissions.get(key)
    if permission_set is None:
        return NO_PERMISSIONS
    return ModulePermissions.from_permission_set(permission_set)
