"""
List page controllers
=====================

One controller per remote list screen. A controller owns the TableControls
for the screen, fetches the page the controls describe, and gates every
mutation on the signed-in user's permissions for its module.

Usage:
    students = StudentsController(api, user_provider=lambda: auth.user)
    await students.fetch()
    await students.filter("student_status", "Active")
    await students.sort("age")
    students.page.results
"""

from typing import Any, Callable, Dict, Mapping, Optional, Set, Tuple, Type

from eepdesk.api import EepDeskApi
from eepdesk.exceptions import ApiError, EepDeskError, PermissionDeniedError
from eepdesk.logging_config import get_logger
from eepdesk.models import PaginatedResponse, TaskStatus, User, UserStatus
from eepdesk.optimistic import apply_optimistic
from eepdesk.permissions import AppModule, ModulePermissions, permissions_for
from eepdesk.table_controls import SortOrder, TableControls

logger = get_logger(__name__)

UserProvider = Callable[[], Optional[User]]


class ListController:
    """
    Fetch/sort/filter/search/page/mutate for one paginated resource.

    Subclasses set the class attributes and implement `_list`, plus whichever
    of `_create`, `_update`, `_delete` the resource supports.
    """

    module: AppModule
    initial_sort: Tuple[str, SortOrder] = ("id", SortOrder.ASC)
    filter_names: Tuple[str, ...] = ()
    id_field = "id"
    read_only = False

    def __init__(
        self,
        api: EepDeskApi,
        user_provider: Optional[UserProvider] = None,
        initial_filters: Optional[Mapping[str, Any]] = None,
    ):
        self.api = api
        self.user_provider = user_provider or (lambda: None)
        self.fixed_filters: Dict[str, str] = {}
        self.controls = TableControls(self.initial_sort, initial_filters)
        self.page: PaginatedResponse = PaginatedResponse()
        self.loading = False
        self.error: Optional[EepDeskError] = None
        self._sequence = 0

    # ==================== Permissions ====================

    @property
    def permissions(self) -> ModulePermissions:
        return permissions_for(self.user_provider(), self.module)

    def _require(self, action: str) -> None:
        allowed = {
            "create": self.permissions.can_create,
            "read": self.permissions.can_read,
            "update": self.permissions.can_update,
            "delete": self.permissions.can_delete,
        }[action]
        if (self.read_only and action != "read") or not allowed:
            raise PermissionDeniedError(self.module.label, action)

    # ==================== Fetching ====================

    @property
    def rows(self):
        return self.page.results

    @property
    def total_pages(self) -> int:
        return self.controls.total_pages(self.page.count)

    async def fetch(self) -> PaginatedResponse:
        """
        Load the page for the current controls.

        Only the response to the latest fetch is kept; an earlier one that
        arrives late is dropped.
        """
        self._sequence += 1
        sequence = self._sequence
        self.loading = True

        try:
            page = await self._list(self.controls.api_query_string)
        except EepDeskError as e:
            if sequence != self._sequence:
                logger.debug(f"Ignoring failure of superseded fetch #{sequence}: {e.message}")
                return self.page
            self.error = e
            raise
        finally:
            if sequence == self._sequence:
                self.loading = False

        if sequence != self._sequence:
            logger.debug(f"Discarding stale response for fetch #{sequence}")
            return self.page

        self.page = page
        self.error = None
        self._after_fetch()
        return page

    async def _refetch(self) -> PaginatedResponse:
        """
        Reload after a mutation.

        Rows leaving the last page can take the page with it (the server
        answers 404); step back towards the new last page until one loads.
        """
        last_page = self.controls.total_pages(self.page.count - 1)
        while True:
            try:
                return await self.fetch()
            except ApiError as e:
                current = self.controls.current_page
                if e.status != 404 or current <= 1:
                    raise
            logger.debug(f"Page {current} no longer exists after the change")
            self.controls.set_current_page(min(current - 1, last_page))

    def _after_fetch(self) -> None:
        pass

    # ==================== Table controls ====================

    def _restore_fixed_filters(self) -> None:
        for name, value in self.fixed_filters.items():
            if self.controls.filters.get(name) != value:
                self.controls.handle_filter_change(name, value)

    async def sort(self, key: str) -> PaginatedResponse:
        self.controls.handle_sort(key)
        return await self.fetch()

    async def search(self, term: Optional[str]) -> PaginatedResponse:
        self.controls.set_search_term(term)
        self.controls.set_current_page(1)
        return await self.fetch()

    async def filter(self, name: str, value: Any) -> PaginatedResponse:
        if self.filter_names and name not in self.filter_names:
            raise ValueError(f"Unknown filter '{name}'. Available: {', '.join(self.filter_names)}")
        if name in self.fixed_filters:
            raise ValueError(f"Filter '{name}' cannot be changed here")
        self.controls.handle_filter_change(name, value)
        return await self.fetch()

    async def apply_filters(self, values: Mapping[str, Any]) -> PaginatedResponse:
        self.controls.apply_filters(values)
        self._restore_fixed_filters()
        return await self.fetch()

    async def clear_filters(self) -> PaginatedResponse:
        self.controls.clear_filters()
        self._restore_fixed_filters()
        return await self.fetch()

    async def go_to_page(self, page: int) -> PaginatedResponse:
        self.controls.set_current_page(min(max(1, int(page)), self.total_pages))
        return await self.fetch()

    async def next_page(self) -> PaginatedResponse:
        return await self.go_to_page(self.controls.current_page + 1)

    async def previous_page(self) -> PaginatedResponse:
        return await self.go_to_page(self.controls.current_page - 1)

    # ==================== Mutations ====================

    async def create(self, payload: Mapping[str, Any]) -> Any:
        self._require("create")
        created = await self._create(dict(payload))
        await self._refetch()
        return created

    async def update(self, item_id: Any, changes: Mapping[str, Any]) -> Any:
        self._require("update")
        updated = await self._update(item_id, dict(changes))
        await self._refetch()
        return updated

    async def delete(self, item_id: Any) -> None:
        self._require("delete")
        await self._delete(item_id)
        await self._refetch()

    async def quick_update(self, item_id: Any, changes: Mapping[str, Any]) -> Any:
        """Show `changes` at once; undo them if the server rejects the update"""
        self._require("update")
        update = apply_optimistic(self.page.results, lambda row: row.get(self.id_field) == item_id, changes)
        try:
            saved = await self._update(item_id, dict(changes))
        except EepDeskError:
            update.rollback()
            raise
        update.commit(saved if isinstance(saved, dict) else None)
        return saved

    # ==================== Resource hooks ====================

    async def _list(self, query_string: str) -> PaginatedResponse:
        raise NotImplementedError

    async def _create(self, payload: Dict[str, Any]) -> Any:
        raise PermissionDeniedError(self.module.label, "create")

    async def _update(self, item_id: Any, changes: Dict[str, Any]) -> Any:
        raise PermissionDeniedError(self.module.label, "update")

    async def _delete(self, item_id: Any) -> None:
        raise PermissionDeniedError(self.module.label, "delete")


class StudentsController(ListController):
    module = AppModule.STUDENTS
    initial_sort = ("firstName", SortOrder.ASC)
    filter_names = ("student_status", "sponsorship_status", "gender", "sponsor")
    id_field = "studentId"

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.selected_ids: Set[str] = set()

    def _after_fetch(self) -> None:
        # Selection never reaches beyond the rows on screen
        on_page = {row.get(self.id_field) for row in self.page.results}
        self.selected_ids &= on_page

    def select(self, student_id: str, selected: bool = True) -> None:
        if selected:
            self.selected_ids.add(student_id)
        else:
            self.selected_ids.discard(student_id)

    def select_all(self, selected: bool = True) -> None:
        if selected:
            self.selected_ids = {row.get(self.id_field) for row in self.page.results}
        else:
            self.selected_ids = set()

    async def bulk_update(self, updates: Mapping[str, Any]) -> Dict[str, Any]:
        """Apply `updates` to every selected student"""
        self._require("update")
        if not self.selected_ids:
            raise ValueError("No students selected")
        result = await self.api.bulk_update_students(sorted(self.selected_ids), updates)
        self.selected_ids = set()
        await self._refetch()
        return result

    async def _list(self, query_string: str) -> PaginatedResponse:
        return await self.api.get_students(query_string)

    async def _create(self, payload: Dict[str, Any]) -> Any:
        return await self.api.add_student(payload)

    async def _update(self, item_id: Any, changes: Dict[str, Any]) -> Any:
        return await self.api.update_student(item_id, changes)

    async def _delete(self, item_id: Any) -> None:
        await self.api.delete_student(item_id)


class SponsorStudentsController(StudentsController):
    """Students of one sponsor; the sponsor filter is pinned"""

    filter_names = ("student_status", "sponsorship_status", "gender")

    def __init__(self, api: EepDeskApi, sponsor_id: Any, *args, **kwargs):
        super().__init__(api, *args, **kwargs)
        self.sponsor_id = str(sponsor_id)
        self.fixed_filters = {"sponsor": self.sponsor_id}
        self._restore_fixed_filters()


class TransactionsController(ListController):
    module = AppModule.TRANSACTIONS
    initial_sort = ("date", SortOrder.DESC)
    filter_names = ("type", "category")

    async def _list(self, query_string: str) -> PaginatedResponse:
        return await self.api.get_transactions(query_string)

    async def _create(self, payload: Dict[str, Any]) -> Any:
        return await self.api.add_transaction(payload)

    async def _update(self, item_id: Any, changes: Dict[str, Any]) -> Any:
        return await self.api.update_transaction(item_id, changes)

    async def _delete(self, item_id: Any) -> None:
        await self.api.delete_transaction(item_id)


class TasksController(ListController):
    module = AppModule.TASKS
    initial_sort = ("dueDate", SortOrder.ASC)
    filter_names = ("status", "priority")

    async def quick_status_change(self, task_id: Any, status: str) -> Any:
        return await self.quick_update(task_id, {"status": TaskStatus(status).value})

    async def _list(self, query_string: str) -> PaginatedResponse:
        return await self.api.get_tasks(query_string)

    async def _create(self, payload: Dict[str, Any]) -> Any:
        return await self.api.add_task(payload)

    async def _update(self, item_id: Any, changes: Dict[str, Any]) -> Any:
        return await self.api.update_task(item_id, changes)

    async def _delete(self, item_id: Any) -> None:
        await self.api.delete_task(item_id)


class FilingsController(ListController):
    module = AppModule.FILINGS
    initial_sort = ("dueDate", SortOrder.ASC)
    filter_names = ("status",)

    async def _list(self, query_string: str) -> PaginatedResponse:
        return await self.api.get_filings(query_string)

    async def _create(self, payload: Dict[str, Any]) -> Any:
        return await self.api.add_filing(payload)

    async def _update(self, item_id: Any, changes: Dict[str, Any]) -> Any:
        return await self.api.update_filing(item_id, changes)

    async def _delete(self, item_id: Any) -> None:
        await self.api.delete_filing(item_id)


class AcademicsController(ListController):
    module = AppModule.ACADEMICS
    initial_sort = ("reportPeriod", SortOrder.DESC)
    filter_names = ("year", "grade", "status")

    async def _list(self, query_string: str) -> PaginatedResponse:
        return await self.api.get_all_academic_reports(query_string)

    async def _create(self, payload: Dict[str, Any]) -> Any:
        student_id = payload.pop("studentId", None) or payload.pop("student", None)
        if not student_id:
            raise ValueError("An academic report needs a studentId")
        return await self.api.add_academic_report(student_id, payload)

    async def _update(self, item_id: Any, changes: Dict[str, Any]) -> Any:
        changes.pop("studentId", None)
        return await self.api.update_academic_report(item_id, changes)

    async def _delete(self, item_id: Any) -> None:
        await self.api.delete_academic_report(item_id)


class SponsorsController(ListController):
    module = AppModule.SPONSORS
    initial_sort = ("name", SortOrder.ASC)

    async def _list(self, query_string: str) -> PaginatedResponse:
        return await self.api.get_sponsors(query_string)

    async def _create(self, payload: Dict[str, Any]) -> Any:
        return await self.api.add_sponsor(payload)

    async def _update(self, item_id: Any, changes: Dict[str, Any]) -> Any:
        return await self.api.update_sponsor(item_id, changes)

    async def _delete(self, item_id: Any) -> None:
        await self.api.delete_sponsor(item_id)


class AuditLogController(ListController):
    module = AppModule.AUDIT
    initial_sort = ("timestamp", SortOrder.DESC)
    filter_names = ("action", "object_type")
    read_only = True

    async def _list(self, query_string: str) -> PaginatedResponse:
        return await self.api.get_audit_logs(query_string)


class UsersController(ListController):
    module = AppModule.USERS
    initial_sort = ("username", SortOrder.ASC)

    async def change_role(self, user_id: int, role: str) -> Any:
        return await self.quick_update(user_id, {"role": role})

    async def change_status(self, user_id: int, status: str) -> Any:
        return await self.quick_update(user_id, {"status": UserStatus(status).value})

    async def _list(self, query_string: str) -> PaginatedResponse:
        return await self.api.get_users(query_string)

    async def _create(self, payload: Dict[str, Any]) -> Any:
        # Users are invited, not created directly
        return await self.api.invite_user(payload["email"], payload.get("role", "Viewer"))

    async def _update(self, item_id: Any, changes: Dict[str, Any]) -> Any:
        return await self.api.update_user(item_id, changes)

    async def _delete(self, item_id: Any) -> None:
        await self.api.delete_user(item_id)


CONTROLLERS: Dict[AppModule, Type[ListController]] = {
    AppModule.STUDENTS: StudentsController,
    AppModule.SPONSORS: SponsorsController,
    AppModule.TRANSACTIONS: TransactionsController,
    AppModule.ACADEMICS: AcademicsController,
    AppModule.TASKS: TasksController,
    AppModule.FILINGS: FilingsController,
    AppModule.AUDIT: AuditLogController,
    AppModule.USERS: UsersController,
}
