"""
Unit Tests for permission resolution and the user model
"""
import pytest

from eepdesk.models import PaginatedResponse, Role, User
from eepdesk.permissions import (
    ALL_PERMISSIONS,
    NO_PERMISSIONS,
    AppModule,
    ModulePermissions,
    PermissionSet,
    permissions_for,
)

from conftest import make_user


class TestPermissionsFor:
    """Test the resolver"""

    def test_no_user_gets_nothing(self):
        assert permissions_for(None, AppModule.STUDENTS) == NO_PERMISSIONS

    def test_viewer_with_empty_module_map_fails_closed(self):
        user = make_user("Viewer", tasks={})

        assert permissions_for(user, "tasks") == ModulePermissions(False, False, False, False)

    def test_module_missing_from_role_fails_closed(self):
        user = make_user("Viewer", students={"read": True})

        assert permissions_for(user, AppModule.FILINGS) == NO_PERMISSIONS

    def test_admin_without_permissions_gets_everything(self):
        user = User(id=1, username="root", is_admin=True)

        assert permissions_for(user, AppModule.USERS) == ALL_PERMISSIONS
        assert permissions_for(user, "nonexistent-module") == ALL_PERMISSIONS

    def test_role_grants_are_mapped(self):
        user = make_user("Manager", students={"create": True, "read": True, "update": True})

        grants = permissions_for(user, AppModule.STUDENTS)

        assert grants.can_create and grants.can_read and grants.can_update
        assert grants.can_delete is False

    def test_enum_and_string_lookups_agree(self):
        user = make_user("Accountant", transactions={"read": True})

        assert permissions_for(user, AppModule.TRANSACTIONS) == permissions_for(user, "transactions")

    def test_unknown_module_name_for_non_admin(self):
        user = make_user("Manager", students={"read": True})

        assert permissions_for(user, "studnets") == NO_PERMISSIONS


class TestPermissionSet:
    """Test permission set parsing"""

    def test_missing_actions_default_false(self):
        assert PermissionSet.from_dict({"read": True}) == PermissionSet(read=True)

    def test_none_is_empty(self):
        assert PermissionSet.from_dict(None) == PermissionSet()

    def test_to_dict(self):
        assert PermissionSet(create=True).to_dict() == {
            "create": True, "read": False, "update": False, "delete": False,
        }


class TestAppModule:
    """Test module identifiers"""

    def test_every_module_has_a_label(self):
        for module in AppModule:
            assert module.label

    def test_lookup_by_value(self):
        assert AppModule("audit") is AppModule.AUDIT
        with pytest.raises(ValueError):
            AppModule("nonexistent-module")


class TestUserFromApi:
    """Test building the signed-in user"""

    def test_admin_without_role_is_administrator(self):
        user = User.from_api({"id": 1, "username": "mockadmin", "isAdmin": True})

        assert user.role == "Administrator"
        assert user.is_admin is True

    def test_missing_permissions_restrict_access(self):
        user = User.from_api({"id": 2, "username": "sam", "role": "Manager"})

        assert user.permissions == {}
        assert permissions_for(user, AppModule.STUDENTS) == NO_PERMISSIONS

    def test_permissions_parsed(self):
        user = User.from_api({
            "id": 3,
            "username": "ali",
            "role": "Accountant",
            "permissions": {"transactions": {"create": True, "read": True}},
            "profilePhoto": "http://testserver/media/ali.jpg",
        })

        assert user.permissions["transactions"] == PermissionSet(create=True, read=True)
        assert user.profile_photo == "http://testserver/media/ali.jpg"

    def test_role_from_api(self):
        role = Role.from_api({"id": 1, "name": "Manager", "permissions": {"tasks": {"read": True}}})

        assert role.name == "Manager"
        assert role.permissions == {"tasks": PermissionSet(read=True)}


class TestPaginatedResponse:
    """Test page envelope parsing"""

    def test_envelope(self):
        page = PaginatedResponse.from_payload({
            "count": 35, "next": "http://x/?page=2", "previous": None, "results": [{"id": 1}],
        })

        assert page.count == 35
        assert page.next == "http://x/?page=2"
        assert page.results == [{"id": 1}]
        assert page.total_pages(15) == 3

    def test_bare_list(self):
        page = PaginatedResponse.from_payload([{"id": 1}, {"id": 2}])

        assert page.count == 2
        assert page.next is None

    def test_unexpected_payload_is_empty(self):
        page = PaginatedResponse.from_payload(None)

        assert page.count == 0
        assert page.results == []
        assert page.total_pages(15) == 1
