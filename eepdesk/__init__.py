"""
eepdesk - admin console core for a student sponsorship program

Table controls, an API client with silent token refresh, role-based
permissions and list controllers, plus a rich/prompt-toolkit CLI.
"""

__version__ = "1.0.0"

from eepdesk.case_converter import convert_keys_to_camel, convert_keys_to_snake
from eepdesk.exceptions import ApiError, EepDeskError, NetworkError, SessionExpiredError
from eepdesk.permissions import AppModule, ModulePermissions, permissions_for
from eepdesk.table_controls import SortConfig, SortOrder, TableControls

__all__ = [
    "__version__",
    "convert_keys_to_camel",
    "convert_keys_to_snake",
    "ApiError",
    "EepDeskError",
    "NetworkError",
    "SessionExpiredError",
    "AppModule",
    "ModulePermissions",
    "permissions_for",
    "SortConfig",
    "SortOrder",
    "TableControls",
]
