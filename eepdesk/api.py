"""
Endpoint layer - one method per REST resource the dashboard uses.

Payloads go in camelCase; the ApiClient converts them for the wire. List
methods take the query string produced by TableControls.
"""

import json
from datetime import date
from typing import Any, Dict, List, Mapping, Optional, Tuple
from urllib.parse import urlencode

from eepdesk.api_client import TOKEN_ENDPOINT, ApiClient
from eepdesk.case_converter import convert_keys_to_snake
from eepdesk.models import TRANSACTION_CATEGORIES, PaginatedResponse, Role, User
from eepdesk.permissions import PermissionSet

# (filename, content, content_type) as accepted by httpx `files=`
Upload = Tuple[str, bytes, str]


def _with_query(endpoint: str, query_string: str = "") -> str:
    return f"{endpoint}?{query_string}" if query_string else endpoint


def _form_fields(payload: Mapping[str, Any], keep_nulls: bool = False) -> Dict[str, str]:
    """
    Flatten a payload into multipart form fields.

    Nested objects are sent as JSON strings. None is dropped on create and
    sent as an empty string on update, which the server reads as null.
    """
    fields: Dict[str, str] = {}
    for key, value in convert_keys_to_snake(dict(payload)).items():
        if value is None:
            if keep_nulls:
                fields[key] = ""
            continue
        if isinstance(value, (dict, list)):
            fields[key] = json.dumps(value)
        elif isinstance(value, bool):
            fields[key] = "true" if value else "false"
        else:
            fields[key] = str(value)
    return fields


def _prepare_student(payload: Mapping[str, Any]) -> Dict[str, Any]:
    data = dict(payload)
    # Nullable date: an empty form value means "no date"
    if data.get("outOfProgramDate") == "":
        data["outOfProgramDate"] = None
    return data


def _prepare_transaction(payload: Mapping[str, Any]) -> Dict[str, Any]:
    data = dict(payload)
    if "studentId" in data:
        data["student"] = data.pop("studentId")
    return data


class EepDeskApi:
    """Resource methods over an ApiClient"""

    def __init__(self, client: ApiClient):
        self.client = client

    # ==================== Auth ====================

    async def login(self, username: str, password: str) -> Dict[str, str]:
        response = await self.client.request(
            TOKEN_ENDPOINT, method="POST", json={"username": username, "password": password}
        )
        return {"accessToken": response["access"], "refreshToken": response["refresh"]}

    async def signup(self, username: str, email: str, password: str) -> Dict[str, Any]:
        return await self.client.request("/register/", method="POST", json={
            "username": username, "email": email, "password": password, "password2": password,
        })

    async def get_current_user(self) -> User:
        return User.from_api(await self.client.request("/user/me/"))

    async def update_user_profile(self, fields: Mapping[str, Any], photo: Optional[Upload] = None) -> User:
        files = {"profile_photo": photo} if photo else None
        data = await self.client.request("/user/me/", method="PATCH", data=_form_fields(fields), files=files)
        return User.from_api(data)

    async def change_password(self, payload: Mapping[str, Any]) -> Dict[str, Any]:
        return await self.client.request("/user/change-password/", method="POST", json=dict(payload))

    async def request_password_reset(self, email: str) -> Dict[str, Any]:
        return await self.client.request("/users/request-password-reset/", method="POST", json={"email": email})

    async def confirm_password_reset(self, payload: Mapping[str, Any]) -> Dict[str, Any]:
        return await self.client.request("/users/password-reset-confirm/", method="POST", json=dict(payload))

    # ==================== Users, groups and roles ====================

    async def get_users(self, query_string: str = "") -> PaginatedResponse:
        return PaginatedResponse.from_payload(await self.client.request(_with_query("/users/", query_string)))

    async def invite_user(self, email: str, role: str) -> Dict[str, Any]:
        return await self.client.request("/users/invite/", method="POST", json={"email": email, "role": role})

    async def update_user(self, user_id: int, changes: Mapping[str, Any]) -> Dict[str, Any]:
        return await self.client.request(f"/users/{user_id}/", method="PATCH", json=dict(changes))

    async def delete_user(self, user_id: int) -> None:
        await self.client.request(f"/users/{user_id}/", method="DELETE")

    async def get_groups(self) -> List[Dict[str, Any]]:
        return await self.client.request("/groups/")

    async def add_group(self, name: str) -> Dict[str, Any]:
        return await self.client.request("/groups/", method="POST", json={"name": name})

    async def update_group(self, group_id: int, name: str) -> Dict[str, Any]:
        return await self.client.request(f"/groups/{group_id}/", method="PATCH", json={"name": name})

    async def delete_group(self, group_id: int) -> None:
        await self.client.request(f"/groups/{group_id}/", method="DELETE")

    async def get_role_permissions(self) -> List[Role]:
        return [Role.from_api(item) for item in await self.client.request("/roles/")]

    async def update_role_permissions(self, role_name: str, permissions: Mapping[str, PermissionSet]) -> Role:
        payload = {"permissions": {module: grants.to_dict() for module, grants in permissions.items()}}
        return Role.from_api(await self.client.request(f"/roles/{role_name}/", method="PATCH", json=payload))

    # ==================== Dashboard ====================

    async def get_dashboard_stats(self, start: Optional[str] = None, end: Optional[str] = None) -> Dict[str, Any]:
        params = {"start_date": start, "end_date": end} if start and end else {}
        return await self.client.request(_with_query("/dashboard/stats/", urlencode(params)))

    async def get_recent_transactions(self) -> List[Dict[str, Any]]:
        return await self.client.request("/dashboard/recent-transactions/")

    # ==================== Paginated lists ====================

    async def _page(self, endpoint: str, query_string: str) -> PaginatedResponse:
        return PaginatedResponse.from_payload(await self.client.request(_with_query(endpoint, query_string)))

    async def get_students(self, query_string: str = "") -> PaginatedResponse:
        return await self._page("/students/", query_string)

    async def get_transactions(self, query_string: str = "") -> PaginatedResponse:
        return await self._page("/transactions/", query_string)

    async def get_all_academic_reports(self, query_string: str = "") -> PaginatedResponse:
        return await self._page("/academic-reports/", query_string)

    async def get_filings(self, query_string: str = "") -> PaginatedResponse:
        return await self._page("/filings/", query_string)

    async def get_tasks(self, query_string: str = "") -> PaginatedResponse:
        return await self._page("/tasks/", query_string)

    async def get_audit_logs(self, query_string: str = "") -> PaginatedResponse:
        return await self._page("/audit-logs/", query_string)

    async def get_sponsors(self, query_string: str = "") -> PaginatedResponse:
        return await self._page("/sponsors/", query_string)

    # ==================== Lookups and filter options ====================

    async def get_student_lookup(self) -> List[Dict[str, Any]]:
        return await self.client.request("/students/lookup/")

    async def get_sponsor_lookup(self) -> List[Dict[str, Any]]:
        return await self.client.request("/sponsors/lookup/")

    async def get_transaction_filter_options(self) -> Dict[str, List[str]]:
        # Fixed list; the server has no endpoint for it
        return {"categories": list(TRANSACTION_CATEGORIES)}

    async def get_academic_filter_options(self) -> Dict[str, List[str]]:
        current_year = date.today().year
        return {
            "years": [str(current_year - i) for i in range(5)],
            "grades": [str(i + 1) for i in range(12)],
        }

    # ==================== Students ====================

    async def get_students_by_ids(self, student_ids: List[str]) -> List[Dict[str, Any]]:
        return await self.client.request("/students/bulk_details/", method="POST", json={"studentIds": student_ids})

    async def get_all_students_for_report(self, filters: Optional[Mapping[str, str]] = None) -> List[Dict[str, Any]]:
        return await self.client.request(_with_query("/students/all/", urlencode(dict(filters or {}))))

    async def get_student_by_id(self, student_id: str) -> Dict[str, Any]:
        return await self.client.request(f"/students/{student_id}/")

    async def add_student(self, student: Mapping[str, Any], photo: Optional[Upload] = None) -> Dict[str, Any]:
        fields = _form_fields(_prepare_student(student))
        files = {"profile_photo": photo} if photo else None
        return await self.client.request("/students/", method="POST", data=fields, files=files)

    async def update_student(self, student_id: str, changes: Mapping[str, Any],
                             photo: Optional[Upload] = None) -> Dict[str, Any]:
        payload = {key: value for key, value in _prepare_student(changes).items() if key != "studentId"}
        fields = _form_fields(payload, keep_nulls=True)
        files = {"profile_photo": photo} if photo else None
        return await self.client.request(f"/students/{student_id}/", method="PATCH", data=fields, files=files)

    async def delete_student(self, student_id: str) -> None:
        await self.client.request(f"/students/{student_id}/", method="DELETE")

    async def add_bulk_students(self, students: List[Mapping[str, Any]]) -> Dict[str, Any]:
        return await self.client.request("/students/bulk_import/", method="POST", json=[dict(s) for s in students])

    async def bulk_update_students(self, student_ids: List[str], updates: Mapping[str, Any]) -> Dict[str, Any]:
        return await self.client.request("/students/bulk_update/", method="POST", json={
            "studentIds": list(student_ids), "updates": dict(updates),
        })

    # ==================== Academic reports ====================

    async def add_academic_report(self, student_id: str, report: Mapping[str, Any]) -> Dict[str, Any]:
        return await self.client.request(f"/students/{student_id}/academic-reports/", method="POST", json=dict(report))

    async def update_academic_report(self, report_id: str, changes: Mapping[str, Any]) -> Dict[str, Any]:
        return await self.client.request(f"/academic-reports/{report_id}/", method="PATCH", json=dict(changes))

    async def delete_academic_report(self, report_id: str) -> None:
        await self.client.request(f"/academic-reports/{report_id}/", method="DELETE")

    # ==================== Follow-up records ====================

    async def add_follow_up_record(self, student_id: str, record: Mapping[str, Any]) -> Dict[str, Any]:
        return await self.client.request(f"/students/{student_id}/follow-up-records/", method="POST", json=dict(record))

    async def update_follow_up_record(self, record_id: str, changes: Mapping[str, Any]) -> Dict[str, Any]:
        return await self.client.request(f"/follow-up-records/{record_id}/", method="PATCH", json=dict(changes))

    # ==================== Transactions ====================

    async def get_transactions_for_report(self, start: str, end: str) -> List[Dict[str, Any]]:
        return await self.client.request(_with_query("/transactions/all/", urlencode({"start": start, "end": end})))

    async def add_transaction(self, transaction: Mapping[str, Any]) -> Dict[str, Any]:
        return await self.client.request("/transactions/", method="POST", json=_prepare_transaction(transaction))

    async def update_transaction(self, transaction_id: str, changes: Mapping[str, Any]) -> Dict[str, Any]:
        payload = {key: value for key, value in _prepare_transaction(changes).items() if key != "id"}
        return await self.client.request(f"/transactions/{transaction_id}/", method="PATCH", json=payload)

    async def delete_transaction(self, transaction_id: str) -> None:
        await self.client.request(f"/transactions/{transaction_id}/", method="DELETE")

    # ==================== Filings ====================

    async def add_filing(self, filing: Mapping[str, Any], attachment: Optional[Upload] = None) -> Dict[str, Any]:
        files = {"attached_file": attachment} if attachment else None
        return await self.client.request("/filings/", method="POST", data=_form_fields(filing), files=files)

    async def update_filing(self, filing_id: str, changes: Mapping[str, Any],
                            attachment: Optional[Upload] = None) -> Dict[str, Any]:
        payload = {key: value for key, value in changes.items() if key not in ("id", "attachedFile")}
        files = {"attached_file": attachment} if attachment else None
        return await self.client.request(f"/filings/{filing_id}/", method="PATCH",
                                         data=_form_fields(payload), files=files)

    async def delete_filing(self, filing_id: str) -> None:
        await self.client.request(f"/filings/{filing_id}/", method="DELETE")

    # ==================== Tasks ====================

    async def add_task(self, task: Mapping[str, Any]) -> Dict[str, Any]:
        return await self.client.request("/tasks/", method="POST", json=dict(task))

    async def update_task(self, task_id: str, changes: Mapping[str, Any]) -> Dict[str, Any]:
        payload = {key: value for key, value in changes.items() if key != "id"}
        return await self.client.request(f"/tasks/{task_id}/", method="PATCH", json=payload)

    async def delete_task(self, task_id: str) -> None:
        await self.client.request(f"/tasks/{task_id}/", method="DELETE")

    # ==================== Sponsors ====================

    async def get_sponsor_by_id(self, sponsor_id: str) -> Dict[str, Any]:
        return await self.client.request(f"/sponsors/{sponsor_id}/")

    async def add_sponsor(self, sponsor: Mapping[str, Any]) -> Dict[str, Any]:
        return await self.client.request("/sponsors/", method="POST", json=dict(sponsor))

    async def update_sponsor(self, sponsor_id: str, changes: Mapping[str, Any]) -> Dict[str, Any]:
        payload = {key: value for key, value in changes.items() if key not in ("id", "sponsoredStudentCount")}
        return await self.client.request(f"/sponsors/{sponsor_id}/", method="PATCH", json=payload)

    async def delete_sponsor(self, sponsor_id: str) -> None:
        await self.client.request(f"/sponsors/{sponsor_id}/", method="DELETE")
