"""
Mock Backend for Development and Testing
========================================
An in-process stand-in for the sponsorship program REST API. It plugs into
httpx as a transport, so the real ApiClient (token refresh included) runs
against it unchanged.

Usage:
    backend = MockBackend(data_file="~/.eepdesk/mock_data.json")
    client = ApiClient(config, token_store, transport=MockBackendTransport(backend))

Accounts (password "password"):
    mockadmin       Administrator, every permission
    manager_sam     Manager
    accountant_ali  Accountant
    viewer_jane     Viewer, inactive (cannot log in)

Behaves like the Django REST backend where the client can tell: snake_case
JSON, pages of 15 with absolute next/previous links, `ordering` with `-` and
`__` traversal, `search`, exact filters, 401/403/404 bodies with `detail`,
multipart forms, relative media URLs and an audit trail for every change.
"""

import asyncio
import json
import re
import time
import uuid
from collections import Counter
from copy import deepcopy
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.parser import BytesParser
from email.policy import HTTP
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Pattern, Tuple
from urllib.parse import parse_qsl

import aiofiles
import httpx
from jose import JWTError, jwt

from eepdesk.logging_config import get_logger
from eepdesk.permissions import AppModule
from eepdesk.table_controls import PAGE_SIZE

logger = get_logger(__name__)

MOCK_PASSWORD = "password"
DEFAULT_SECRET = "eepdesk-mock-secret"
ALGORITHM = "HS256"
ACCESS_TOKEN_LIFETIME = 5 * 60
REFRESH_TOKEN_LIFETIME = 24 * 60 * 60

METHOD_ACTIONS = {"GET": "read", "POST": "create", "PUT": "update", "PATCH": "update", "DELETE": "delete"}

FIRST_NAMES = ["Liam", "Olivia", "Noah", "Emma", "Oliver", "Ava", "Elijah", "Charlotte", "William", "Sophia"]
LAST_NAMES = ["Smith", "Johnson", "Williams", "Brown", "Jones", "Garcia", "Miller", "Davis", "Rodriguez", "Martinez"]

SPONSORS = [
    (1, "Global Outreach Inc.", "contact@globaloutreach.org", "2019-03-01"),
    (2, "Hope Foundation", "info@hopefoundation.org", "2020-06-15"),
    (3, "John & Jane Doe", "doe.family@example.com", "2021-09-10"),
]

TASK_TITLES = [
    "Collect term report cards", "Call sponsor about renewal", "Order school uniforms",
    "Schedule home visits", "Update student photos", "Prepare quarterly newsletter",
    "Pay school fees", "Review follow-up forms", "Plan graduation event",
    "Audit petty cash", "Renew NGO registration", "Send thank-you letters",
]

FILINGS = [
    ("Annual Return", "NGO Bureau", "2024-03-31", "2024-03-20", "Submitted"),
    ("Tax Exemption Renewal", "Revenue Authority", "2024-06-30", None, "Pending"),
    ("Audited Accounts", "NGO Bureau", "2024-07-31", None, "Pending"),
    ("PAYE Return", "Revenue Authority", "2024-05-15", "2024-05-10", "Submitted"),
    ("Workplan Submission", "District Office", "2024-09-01", None, "Pending"),
    ("Child Protection Policy", "Ministry of Gender", "2024-10-15", None, "Pending"),
]


# ============================================
# Seed data
# ============================================

def _full_permissions() -> Dict[str, Dict[str, bool]]:
    return {
        module.value: {"create": True, "read": True, "update": True, "delete": True}
        for module in AppModule
    }


def seed_data() -> Dict[str, Any]:
    """Fresh mock dataset (snake_case, as the server stores it)"""
    students = []
    for i in range(35):
        sponsored = i % 3 != 0
        sponsor_id = SPONSORS[i % len(SPONSORS)][0] if sponsored else None
        students.append({
            "student_id": f"EEP-{101 + i}",
            "first_name": FIRST_NAMES[i % 10],
            "last_name": LAST_NAMES[i % 10],
            "date_of_birth": f"{2010 + i % 10}-{i % 12 + 1:02d}-{i % 28 + 1:02d}",
            "gender": "Male" if i % 2 == 0 else "Female",
            "profile_photo": f"/media/students/EEP-{101 + i}.jpg",
            "school": "Hope Academy",
            "current_grade": str(i % 5 + 3),
            "eep_enroll_date": "2020-01-15",
            "out_of_program_date": None,
            "student_status": "Inactive" if i % 5 == 0 else "Active",
            "sponsorship_status": "Sponsored" if sponsored else "Unsponsored",
            "sponsor": sponsor_id,
        })

    transactions = []
    for i in range(40):
        income = i % 2 == 0
        transactions.append({
            "id": f"txn_{1000 + i}",
            "date": f"2024-{i // 5 + 1:02d}-{i % 28 + 1:02d}",
            "description": "Monthly Sponsorship Donation" if income else "School Fee Payment",
            "location": "Kampala",
            "amount": "50.00" if income else "-25.00",
            "type": "Income" if income else "Expense",
            "category": "Donation" if income else "School Fees",
            "student": f"EEP-{101 + i % 10}",
        })

    tasks = [
        {
            "id": f"task_{i + 1}",
            "title": title,
            "description": None,
            "due_date": f"2024-{i % 6 + 7:02d}-{i * 3 % 28 + 1:02d}",
            "priority": ["High", "Medium", "Low"][i % 3],
            "status": ["To Do", "In Progress", "Done"][i % 3],
        }
        for i, title in enumerate(TASK_TITLES)
    ]

    filings = [
        {
            "id": f"filing_{i + 1}",
            "document_name": name,
            "authority": authority,
            "due_date": due,
            "submission_date": submitted,
            "status": status,
            "attached_file": f"/media/filings/filing_{i + 1}.pdf" if submitted else None,
        }
        for i, (name, authority, due, submitted, status) in enumerate(FILINGS)
    ]

    academic_reports = []
    for i in range(20):
        average = 55 + i * 7 % 40
        academic_reports.append({
            "id": f"report_{i + 1}",
            "student": f"EEP-{101 + i % 10}",
            "report_period": f"{2022 + i % 3} Term {i % 3 + 1}",
            "grade_level": str(i % 5 + 3),
            "subjects_and_grades": "Math: B, English: A, Science: C",
            "overall_average": average,
            "pass_fail_status": "Pass" if average >= 60 else "Fail",
            "teacher_comments": None,
        })

    groups = [{"id": 1, "name": "Manager"}, {"id": 2, "name": "Viewer"}, {"id": 3, "name": "Accountant"}]
    roles = [
        {
            "id": group["id"],
            "name": group["name"],
            "permissions": {
                "students": {"create": group["name"] == "Manager", "read": True,
                             "update": group["name"] == "Manager", "delete": False},
                "transactions": {"create": group["name"] != "Viewer", "read": True,
                                 "update": group["name"] != "Viewer", "delete": False},
            },
        }
        for group in groups
    ]

    users = [
        {"id": 1, "username": "mockadmin", "email": "admin@example.com", "is_admin": True,
         "role": "Administrator", "status": "Active", "last_login": None,
         "profile_photo": "/media/profiles/mockadmin.jpg"},
        {"id": 2, "username": "manager_sam", "email": "sam@example.com", "is_admin": False,
         "role": "Manager", "status": "Active", "last_login": "2024-06-14T10:00:00Z", "profile_photo": None},
        {"id": 3, "username": "viewer_jane", "email": "jane@example.com", "is_admin": False,
         "role": "Viewer", "status": "Inactive", "last_login": "2024-05-20T12:30:00Z", "profile_photo": None},
        {"id": 4, "username": "accountant_ali", "email": "ali@example.com", "is_admin": False,
         "role": "Accountant", "status": "Active", "last_login": None, "profile_photo": None},
    ]

    return {
        "students": students,
        "sponsors": [
            {"id": sid, "name": name, "email": email, "sponsorship_start_date": start}
            for sid, name, email, start in SPONSORS
        ],
        "transactions": transactions,
        "tasks": tasks,
        "filings": filings,
        "academic_reports": academic_reports,
        "follow_up_records": [],
        "audit_logs": [],
        "users": users,
        "passwords": {user["username"]: MOCK_PASSWORD for user in users},
        "groups": groups,
        "roles": roles,
    }


# ============================================
# Resources
# ============================================

@dataclass(frozen=True)
class Resource:
    """A REST collection served under /<name>/"""
    name: str
    module: AppModule
    content_type: str
    id_field: str = "id"
    id_prefix: str = ""
    search_fields: Tuple[str, ...] = ()
    # query param -> (field, lookup); lookup is "exact" or "icontains"
    filters: Dict[str, Tuple[str, str]] = field(default_factory=dict)
    repr_fields: Tuple[str, ...] = ("id",)
    read_only: bool = False

    @property
    def key(self) -> str:
        return self.name.replace("-", "_")

    def describe(self, row: Dict[str, Any]) -> str:
        return " ".join(str(row.get(name, "")) for name in self.repr_fields).strip()


def _exact(*names: str) -> Dict[str, Tuple[str, str]]:
    return {name: (name, "exact") for name in names}


RESOURCES: Dict[str, Resource] = {
    resource.name: resource
    for resource in (
        Resource("students", AppModule.STUDENTS, "student", id_field="student_id",
                 search_fields=("student_id", "first_name", "last_name", "school"),
                 filters=_exact("student_status", "sponsorship_status", "gender", "sponsor"),
                 repr_fields=("first_name", "last_name")),
        Resource("sponsors", AppModule.SPONSORS, "sponsor",
                 search_fields=("name", "email"), repr_fields=("name",)),
        Resource("transactions", AppModule.TRANSACTIONS, "transaction", id_prefix="txn_",
                 search_fields=("description", "category", "location", "student"),
                 filters=_exact("type", "category", "student"), repr_fields=("description", "amount")),
        Resource("tasks", AppModule.TASKS, "task", id_prefix="task_",
                 search_fields=("title", "description"), filters=_exact("status", "priority"),
                 repr_fields=("title",)),
        Resource("filings", AppModule.FILINGS, "government filing", id_prefix="filing_",
                 search_fields=("document_name", "authority"), filters=_exact("status"),
                 repr_fields=("document_name",)),
        Resource("academic-reports", AppModule.ACADEMICS, "academic report", id_prefix="report_",
                 search_fields=("student", "report_period", "teacher_comments"),
                 filters={
                     "year": ("report_period", "icontains"),
                     "grade": ("grade_level", "exact"),
                     "status": ("pass_fail_status", "exact"),
                     "student": ("student", "exact"),
                 },
                 repr_fields=("student", "report_period")),
        Resource("follow-up-records", AppModule.STUDENTS, "follow up record", id_prefix="followup_",
                 filters=_exact("student"), repr_fields=("student", "date_of_follow_up")),
        Resource("audit-logs", AppModule.AUDIT, "log entry",
                 search_fields=("user_identifier", "object_repr", "object_id"),
                 filters={"action": ("action", "exact"), "object_type": ("content_type", "exact")},
                 read_only=True),
    )
}

# Foreign keys that `__` lookups follow: field -> (collection, key field)
RELATIONS: Dict[str, Tuple[str, str]] = {
    "student": ("students", "student_id"),
    "sponsor": ("sponsors", "id"),
}

_NUMBER = re.compile(r"^-?\d+(\.\d+)?$")


class MockHTTPError(Exception):
    """Short-circuits a handler with an error response"""

    def __init__(self, status: int, payload: Any):
        super().__init__(f"{status}: {payload}")
        self.status = status
        self.payload = payload


def _not_found() -> MockHTTPError:
    return MockHTTPError(404, {"detail": "Not found."})


# ============================================
# Request parsing
# ============================================

def _coerce_form_value(value: str) -> Any:
    """Form fields are strings; undo the client's encoding of null, bools and objects"""
    if value == "":
        return None
    if value in ("true", "false"):
        return value == "true"
    if value[:1] in ("{", "["):
        try:
            return json.loads(value)
        except ValueError:
            return value
    return value


def parse_multipart(content_type: str, body: bytes) -> Tuple[Dict[str, Any], Dict[str, Tuple[str, bytes]]]:
    """Split a multipart/form-data body into (fields, files)"""
    raw = b"Content-Type: " + content_type.encode("latin-1") + b"\r\n\r\n" + body
    message = BytesParser(policy=HTTP).parsebytes(raw)

    fields: Dict[str, Any] = {}
    files: Dict[str, Tuple[str, bytes]] = {}
    for part in message.iter_parts():
        name = part.get_param("name", header="content-disposition")
        if not name:
            continue
        payload = part.get_payload(decode=True) or b""
        filename = part.get_filename()
        if filename:
            files[name] = (filename, payload)
        else:
            fields[name] = _coerce_form_value(payload.decode("utf-8"))
    return fields, files


@dataclass
class MockRequest:
    """A parsed request as the handlers see it"""
    method: str
    url: httpx.URL
    path: str
    params: Dict[str, str]
    body: Any = None
    files: Dict[str, Tuple[str, bytes]] = field(default_factory=dict)
    user: Optional[Dict[str, Any]] = None
    args: Dict[str, str] = field(default_factory=dict)

    def body_dict(self) -> Dict[str, Any]:
        if not isinstance(self.body, dict):
            raise MockHTTPError(400, {"detail": "Expected an object."})
        return dict(self.body)


@dataclass
class Route:
    method: str
    pattern: Pattern
    handler: Callable
    authenticated: bool = True
    module: Optional[AppModule] = None
    action: Optional[str] = None


# ============================================
# Backend
# ============================================

class MockBackend:
    """
    Stateful mock API. Data lives in memory and, when `data_file` is given,
    is written back after every change.
    """

    def __init__(
        self,
        data_file: Optional[str] = None,
        secret: str = DEFAULT_SECRET,
        clock: Callable[[], float] = time.time,
        access_lifetime: int = ACCESS_TOKEN_LIFETIME,
        refresh_lifetime: int = REFRESH_TOKEN_LIFETIME,
    ):
        self.data_file = Path(data_file).expanduser() if data_file else None
        self.secret = secret
        self.clock = clock
        self.access_lifetime = access_lifetime
        self.refresh_lifetime = refresh_lifetime
        self.data: Dict[str, Any] = {}
        self._loaded = False
        self._lock = asyncio.Lock()
        self.routes = self._build_routes()

    # ==================== Persistence ====================

    async def load(self) -> None:
        if self._loaded:
            return
        if self.data_file and self.data_file.exists():
            async with aiofiles.open(self.data_file, "r") as f:
                self.data = json.loads(await f.read())
            logger.debug(f"Loaded mock data from {self.data_file}")
        else:
            self.data = seed_data()
        self._loaded = True

    async def save(self) -> None:
        if not self.data_file:
            return
        self.data_file.parent.mkdir(parents=True, exist_ok=True)
        async with aiofiles.open(self.data_file, "w") as f:
            await f.write(json.dumps(self.data, indent=2))

    async def reset(self) -> None:
        """Back to the seed data"""
        self.data = seed_data()
        self._loaded = True
        await self.save()

    # ==================== Tokens ====================

    def _now(self) -> datetime:
        return datetime.fromtimestamp(self.clock(), tz=timezone.utc)

    def issue_token(self, user: Dict[str, Any], token_type: str = "access") -> str:
        lifetime = self.access_lifetime if token_type == "access" else self.refresh_lifetime
        now = int(self.clock())
        claims = {
            "token_type": token_type,
            "user_id": user["id"],
            "iat": now,
            "exp": now + lifetime,
            "jti": uuid.uuid4().hex,
        }
        return jwt.encode(claims, self.secret, algorithm=ALGORITHM)

    def verify_token(self, token: str, token_type: str = "access") -> Dict[str, Any]:
        """Return the user the token belongs to, or raise a 401"""
        invalid = MockHTTPError(401, {
            "detail": "Given token not valid for any token type",
            "code": "token_not_valid",
        })
        try:
            # Expiry is checked against the injectable clock below
            claims = jwt.decode(token, self.secret, algorithms=[ALGORITHM], options={"verify_exp": False})
        except JWTError:
            raise invalid
        if claims.get("token_type") != token_type or claims.get("exp", 0) <= self.clock():
            raise invalid

        user = self._find(self.data["users"], "id", claims.get("user_id"))
        if user is None or user.get("status") != "Active":
            raise invalid
        return user

    # ==================== Dispatch ====================

    async def handle(self, method: str, url: httpx.URL, path: str, headers: httpx.Headers,
                     body: bytes) -> Tuple[int, Any]:
        """Serve one request; returns (status, JSON payload or None)"""
        async with self._lock:
            await self.load()
            try:
                request = self._parse(method, url, path, headers, body)
                route, args = self._match(method, path)
                request.args = args
                if route.authenticated:
                    request.user = self._authenticate(headers)
                    if route.module is not None:
                        self._authorize(request.user, route.module, route.action or METHOD_ACTIONS[method])
                status, payload = route.handler(request)
            except MockHTTPError as e:
                return e.status, e.payload

            if method != "GET" and status < 400:
                await self.save()
            return status, payload

    def _parse(self, method: str, url: httpx.URL, path: str, headers: httpx.Headers, body: bytes) -> MockRequest:
        params = dict(parse_qsl(url.query.decode("ascii"), keep_blank_values=True))
        request = MockRequest(method=method, url=url, path=path, params=params)

        content_type = headers.get("content-type", "")
        if not body:
            return request
        if content_type.startswith("application/json"):
            try:
                request.body = json.loads(body)
            except ValueError:
                raise MockHTTPError(400, {"detail": "JSON parse error."})
        elif content_type.startswith("multipart/form-data"):
            request.body, request.files = parse_multipart(content_type, body)
        elif content_type.startswith("application/x-www-form-urlencoded"):
            request.body = {
                key: _coerce_form_value(value)
                for key, value in parse_qsl(body.decode("utf-8"), keep_blank_values=True)
            }
        return request

    def _match(self, method: str, path: str) -> Tuple[Route, Dict[str, str]]:
        path_matched = False
        for route in self.routes:
            match = route.pattern.fullmatch(path)
            if not match:
                continue
            path_matched = True
            if route.method == method:
                return route, match.groupdict()
        if path_matched:
            raise MockHTTPError(405, {"detail": f'Method "{method}" not allowed.'})
        raise _not_found()

    def _authenticate(self, headers: httpx.Headers) -> Dict[str, Any]:
        authorization = headers.get("authorization", "")
        if not authorization.startswith("Bearer "):
            raise MockHTTPError(401, {"detail": "Authentication credentials were not provided."})
        return self.verify_token(authorization[len("Bearer "):])

    def permissions_of(self, user: Dict[str, Any]) -> Dict[str, Dict[str, bool]]:
        if user.get("is_admin"):
            return _full_permissions()
        role = self._find(self.data["roles"], "name", user.get("role"))
        return deepcopy(role["permissions"]) if role else {}

    def _authorize(self, user: Dict[str, Any], module: AppModule, action: str) -> None:
        grants = self.permissions_of(user).get(module.value, {})
        if not grants.get(action, False):
            raise MockHTTPError(403, {"detail": "You do not have permission to perform this action."})

    def _build_routes(self) -> List[Route]:
        resources = "|".join(re.escape(name) for name in RESOURCES)

        def route(method, pattern, handler, **kwargs) -> Route:
            return Route(method, re.compile(pattern), handler, **kwargs)

        return [
            # Auth
            route("POST", r"/token/", self._token_obtain, authenticated=False),
            route("POST", r"/token/refresh/", self._token_refresh, authenticated=False),
            route("POST", r"/register/", self._register, authenticated=False),
            route("POST", r"/users/request-password-reset/", self._request_password_reset, authenticated=False),
            route("POST", r"/users/password-reset-confirm/", self._confirm_password_reset, authenticated=False),
            route("GET", r"/user/me/", self._me),
            route("PATCH", r"/user/me/", self._update_me),
            route("POST", r"/user/change-password/", self._change_password),

            # Users, groups, roles
            route("GET", r"/users/", self._list_users, module=AppModule.USERS),
            route("POST", r"/users/invite/", self._invite_user, module=AppModule.USERS),
            route("PATCH", r"/users/(?P<pk>\d+)/", self._update_user, module=AppModule.USERS),
            route("DELETE", r"/users/(?P<pk>\d+)/", self._delete_user, module=AppModule.USERS),
            route("GET", r"/groups/", self._list_groups, module=AppModule.USERS),
            route("POST", r"/groups/", self._create_group, module=AppModule.USERS),
            route("PATCH", r"/groups/(?P<pk>\d+)/", self._update_group, module=AppModule.USERS),
            route("DELETE", r"/groups/(?P<pk>\d+)/", self._delete_group, module=AppModule.USERS),
            route("GET", r"/roles/", self._list_roles, module=AppModule.USERS),
            route("PATCH", r"/roles/(?P<name>[^/]+)/", self._update_role, module=AppModule.USERS),

            # Dashboard and lookups
            route("GET", r"/dashboard/stats/", self._dashboard_stats),
            route("GET", r"/dashboard/recent-transactions/", self._recent_transactions),
            route("GET", r"/students/lookup/", self._student_lookup),
            route("GET", r"/sponsors/lookup/", self._sponsor_lookup),

            # Students
            route("GET", r"/students/all/", self._all_students, module=AppModule.STUDENTS),
            route("POST", r"/students/bulk_details/", self._students_by_ids,
                  module=AppModule.STUDENTS, action="read"),
            route("POST", r"/students/bulk_import/", self._bulk_import_students, module=AppModule.STUDENTS),
            route("POST", r"/students/bulk_update/", self._bulk_update_students,
                  module=AppModule.STUDENTS, action="update"),
            route("POST", r"/students/(?P<pk>[^/]+)/academic-reports/", self._add_student_report,
                  module=AppModule.ACADEMICS),
            route("POST", r"/students/(?P<pk>[^/]+)/follow-up-records/", self._add_follow_up,
                  module=AppModule.STUDENTS, action="update"),

            # Transactions
            route("GET", r"/transactions/all/", self._transactions_for_report, module=AppModule.TRANSACTIONS),

            # Generic collections
            route("GET", rf"/(?P<resource>{resources})/", self._list),
            route("POST", rf"/(?P<resource>{resources})/", self._create),
            route("GET", rf"/(?P<resource>{resources})/(?P<pk>[^/]+)/", self._retrieve),
            route("PATCH", rf"/(?P<resource>{resources})/(?P<pk>[^/]+)/", self._update),
            route("PUT", rf"/(?P<resource>{resources})/(?P<pk>[^/]+)/", self._update),
            route("DELETE", rf"/(?P<resource>{resources})/(?P<pk>[^/]+)/", self._destroy),
        ]

    # ==================== Helpers ====================

    @staticmethod
    def _find(rows: List[Dict[str, Any]], key: str, value: Any) -> Optional[Dict[str, Any]]:
        for row in rows:
            if str(row.get(key)) == str(value):
                return row
        return None

    @staticmethod
    def _next_int_id(rows: List[Dict[str, Any]], key: str = "id") -> int:
        return max((int(row[key]) for row in rows if str(row.get(key, "")).isdigit()), default=0) + 1

    def _new_id(self, resource: Resource) -> Any:
        rows = self.data[resource.key]
        if resource.name == "students":
            numbers = [int(row["student_id"].split("-")[-1]) for row in rows
                       if str(row.get("student_id", "")).split("-")[-1].isdigit()]
            return f"EEP-{max(numbers, default=100) + 1}"
        if resource.id_prefix:
            return f"{resource.id_prefix}{uuid.uuid4().hex[:8]}"
        return self._next_int_id(rows, resource.id_field)

    def _resolve(self, row: Dict[str, Any], path: str) -> Any:
        """Value at a Django-style `a__b` path, following RELATIONS"""
        value: Any = row
        for part in path.split("__"):
            if not isinstance(value, dict):
                return None
            raw = value.get(part)
            if part in RELATIONS and not isinstance(raw, dict) and part != path:
                collection, key = RELATIONS[part]
                raw = self._find(self.data[collection], key, raw)
            value = raw
        return value

    @staticmethod
    def _sort_value(value: Any) -> Tuple:
        if value is None:
            return (1, 0, "")
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return (0, 0, float(value))
        text = str(value)
        if _NUMBER.match(text):
            return (0, 0, float(text))
        return (0, 1, text.lower())

    def _order(self, rows: List[Dict[str, Any]], ordering: str) -> List[Dict[str, Any]]:
        # Stable sorts applied from the last field to the first
        for term in reversed([t for t in ordering.split(",") if t]):
            descending = term.startswith("-")
            path = term.lstrip("-")
            rows = sorted(rows, key=lambda row: self._sort_value(self._resolve(row, path)), reverse=descending)
        return rows

    @staticmethod
    def _search(rows: List[Dict[str, Any]], term: str, fields: Tuple[str, ...]) -> List[Dict[str, Any]]:
        needle = term.lower()
        return [
            row for row in rows
            if any(needle in str(row.get(name) or "").lower() for name in fields)
        ]

    @staticmethod
    def _filter(rows: List[Dict[str, Any]], params: Dict[str, str],
                filters: Dict[str, Tuple[str, str]]) -> List[Dict[str, Any]]:
        for param, (name, lookup) in filters.items():
            value = params.get(param)
            if value in (None, ""):
                continue
            if lookup == "icontains":
                rows = [row for row in rows if value.lower() in str(row.get(name) or "").lower()]
            else:
                rows = [row for row in rows if str(row.get(name)) == value]
        return rows

    def _paginate(self, request: MockRequest, rows: List[Any]) -> Dict[str, Any]:
        try:
            page = int(request.params.get("page") or 1)
        except ValueError:
            raise MockHTTPError(404, {"detail": "Invalid page."})
        last_page = max(1, -(-len(rows) // PAGE_SIZE))
        if page < 1 or page > last_page:
            raise MockHTTPError(404, {"detail": "Invalid page."})

        start = (page - 1) * PAGE_SIZE
        next_url = str(request.url.copy_set_param("page", page + 1)) if page < last_page else None
        if page == 1:
            previous_url = None
        elif page == 2:
            previous_url = str(request.url.copy_remove_param("page"))
        else:
            previous_url = str(request.url.copy_set_param("page", page - 1))

        return {"count": len(rows), "next": next_url, "previous": previous_url,
                "results": rows[start:start + PAGE_SIZE]}

    def _query(self, request: MockRequest, resource: Resource, rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        rows = self._filter(rows, request.params, resource.filters)
        if request.params.get("search"):
            rows = self._search(rows, request.params["search"], resource.search_fields)
        if request.params.get("ordering"):
            rows = self._order(rows, request.params["ordering"])
        return rows

    def _serialize(self, resource: Resource, row: Dict[str, Any]) -> Dict[str, Any]:
        out = dict(row)
        if resource.name == "students":
            sponsor = self._find(self.data["sponsors"], "id", row.get("sponsor"))
            out["sponsor_name"] = sponsor["name"] if sponsor else None
            out["academic_reports"] = [r for r in self.data["academic_reports"] if r["student"] == row["student_id"]]
            out["follow_up_records"] = [r for r in self.data["follow_up_records"]
                                        if r["student"] == row["student_id"]]
        elif resource.name == "sponsors":
            out["sponsored_student_count"] = sum(
                1 for s in self.data["students"] if str(s.get("sponsor")) == str(row["id"])
            )
        elif resource.name in ("academic-reports", "follow-up-records", "transactions"):
            student = self._find(self.data["students"], "student_id", row.get("student"))
            out["student_name"] = f"{student['first_name']} {student['last_name']}" if student else None
        return out

    def _audit(self, user: Dict[str, Any], action: str, resource: Resource, row: Dict[str, Any],
               changes: Optional[Dict[str, Any]] = None) -> None:
        logs = self.data["audit_logs"]
        logs.append({
            "id": self._next_int_id(logs),
            "timestamp": self._now().isoformat(),
            "user_identifier": user["username"],
            "action": action,
            "content_type": resource.content_type,
            "object_id": str(row.get(resource.id_field)),
            "object_repr": resource.describe(row),
            "changes": changes,
        })

    def _store_files(self, request: MockRequest, folder: str, fields: Dict[str, Any]) -> None:
        for name, (filename, _content) in request.files.items():
            fields[name] = f"/media/{folder}/{filename}"

    def _resource(self, request: MockRequest, action: str) -> Resource:
        resource = RESOURCES[request.args["resource"]]
        if resource.read_only and action != "read":
            raise MockHTTPError(405, {"detail": f'Method "{request.method}" not allowed.'})
        self._authorize(request.user, resource.module, action)
        return resource

    def _get_row(self, resource: Resource, pk: str) -> Dict[str, Any]:
        row = self._find(self.data[resource.key], resource.id_field, pk)
        if row is None:
            raise _not_found()
        return row

    # ==================== Auth handlers ====================

    def _user_payload(self, user: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "id": user["id"],
            "username": user["username"],
            "email": user["email"],
            "is_admin": user.get("is_admin", False),
            "role": user.get("role"),
            "permissions": self.permissions_of(user),
            "profile_photo": user.get("profile_photo"),
        }

    def _token_obtain(self, request: MockRequest) -> Tuple[int, Any]:
        body = request.body_dict()
        user = self._find(self.data["users"], "username", body.get("username"))
        password = self.data["passwords"].get(body.get("username") or "")
        if user is None or user.get("status") != "Active" or password != body.get("password"):
            raise MockHTTPError(401, {"detail": "No active account found with the given credentials"})
        user["last_login"] = self._now().isoformat()
        return 200, {"access": self.issue_token(user), "refresh": self.issue_token(user, "refresh")}

    def _token_refresh(self, request: MockRequest) -> Tuple[int, Any]:
        refresh = request.body_dict().get("refresh")
        if not refresh:
            raise MockHTTPError(400, {"refresh": ["This field is required."]})
        user = self.verify_token(refresh, token_type="refresh")
        return 200, {"access": self.issue_token(user)}

    def _register(self, request: MockRequest) -> Tuple[int, Any]:
        body = request.body_dict()
        errors: Dict[str, List[str]] = {}
        for name in ("username", "email", "password"):
            if not body.get(name):
                errors[name] = ["This field is required."]
        if body.get("password") != body.get("password2"):
            errors.setdefault("password", []).append("Password fields didn't match.")
        if self._find(self.data["users"], "username", body.get("username")):
            errors["username"] = ["A user with that username already exists."]
        if errors:
            raise MockHTTPError(400, errors)

        user = {
            "id": self._next_int_id(self.data["users"]),
            "username": body["username"],
            "email": body["email"],
            "is_admin": False,
            "role": "Viewer",
            "status": "Active",
            "last_login": None,
            "profile_photo": None,
        }
        self.data["users"].append(user)
        self.data["passwords"][user["username"]] = body["password"]
        return 201, {"username": user["username"], "email": user["email"]}

    def _request_password_reset(self, request: MockRequest) -> Tuple[int, Any]:
        return 200, {"message": "If an account with that email exists, a password reset link has been sent."}

    def _confirm_password_reset(self, request: MockRequest) -> Tuple[int, Any]:
        body = request.body_dict()
        if not body.get("password") and not body.get("new_password"):
            raise MockHTTPError(400, {"password": ["This field is required."]})
        return 200, {"message": "Password has been reset successfully."}

    def _me(self, request: MockRequest) -> Tuple[int, Any]:
        return 200, self._user_payload(request.user)

    def _update_me(self, request: MockRequest) -> Tuple[int, Any]:
        body = request.body_dict() if request.body is not None else {}
        user = request.user
        for name in ("username", "email"):
            if body.get(name):
                user[name] = body[name]
        self._store_files(request, "profiles", user)
        return 200, self._user_payload(user)

    def _change_password(self, request: MockRequest) -> Tuple[int, Any]:
        body = request.body_dict()
        username = request.user["username"]
        if self.data["passwords"].get(username) != body.get("old_password"):
            raise MockHTTPError(400, {"old_password": ["Wrong password."]})
        if not body.get("new_password"):
            raise MockHTTPError(400, {"new_password": ["This field is required."]})
        self.data["passwords"][username] = body["new_password"]
        return 200, {"message": "Password updated successfully."}

    # ==================== Users, groups, roles ====================

    @staticmethod
    def _public_user(user: Dict[str, Any]) -> Dict[str, Any]:
        return {key: user.get(key) for key in ("id", "username", "email", "role", "status", "last_login")}

    def _list_users(self, request: MockRequest) -> Tuple[int, Any]:
        users = [self._public_user(user) for user in self.data["users"]]
        if request.params.get("search"):
            users = self._search(users, request.params["search"], ("username", "email", "role"))
        if request.params.get("ordering"):
            users = self._order(users, request.params["ordering"])
        return 200, self._paginate(request, users)

    def _invite_user(self, request: MockRequest) -> Tuple[int, Any]:
        body = request.body_dict()
        email = body.get("email") or ""
        if "@" not in email:
            raise MockHTTPError(400, {"email": ["Enter a valid email address."]})
        if self._find(self.data["users"], "email", email):
            raise MockHTTPError(400, {"email": ["A user with this email already exists."]})
        user = {
            "id": self._next_int_id(self.data["users"]),
            "username": email.split("@")[0],
            "email": email,
            "is_admin": False,
            "role": body.get("role") or "Viewer",
            "status": "Active",
            "last_login": None,
            "profile_photo": None,
        }
        self.data["users"].append(user)
        return 201, {"message": f"Invitation sent to {email}."}

    def _update_user(self, request: MockRequest) -> Tuple[int, Any]:
        user = self._find(self.data["users"], "id", request.args["pk"])
        if user is None:
            raise _not_found()
        body = request.body_dict()
        if "role" in body:
            if body["role"] != "Administrator" and not self._find(self.data["roles"], "name", body["role"]):
                raise MockHTTPError(400, {"role": [f"Unknown role \"{body['role']}\"."]})
            user["role"] = body["role"]
        if "status" in body:
            if body["status"] not in ("Active", "Inactive"):
                raise MockHTTPError(400, {"status": [f"\"{body['status']}\" is not a valid choice."]})
            user["status"] = body["status"]
        return 200, self._public_user(user)

    def _delete_user(self, request: MockRequest) -> Tuple[int, Any]:
        user = self._find(self.data["users"], "id", request.args["pk"])
        if user is None:
            raise _not_found()
        if user["id"] == request.user["id"]:
            raise MockHTTPError(400, {"detail": "You cannot delete your own account."})
        self.data["users"].remove(user)
        return 204, None

    def _list_groups(self, request: MockRequest) -> Tuple[int, Any]:
        return 200, deepcopy(self.data["groups"])

    def _create_group(self, request: MockRequest) -> Tuple[int, Any]:
        name = (request.body_dict().get("name") or "").strip()
        if not name:
            raise MockHTTPError(400, {"name": ["This field is required."]})
        if self._find(self.data["groups"], "name", name):
            raise MockHTTPError(400, {"name": ["group with this name already exists."]})
        group = {"id": self._next_int_id(self.data["groups"]), "name": name}
        self.data["groups"].append(group)
        self.data["roles"].append({**group, "permissions": {}})
        return 201, group

    def _update_group(self, request: MockRequest) -> Tuple[int, Any]:
        group = self._find(self.data["groups"], "id", request.args["pk"])
        if group is None:
            raise _not_found()
        name = request.body_dict().get("name")
        role = self._find(self.data["roles"], "id", group["id"])
        if name:
            for user in self.data["users"]:
                if user.get("role") == group["name"]:
                    user["role"] = name
            group["name"] = name
            if role:
                role["name"] = name
        return 200, group

    def _delete_group(self, request: MockRequest) -> Tuple[int, Any]:
        group = self._find(self.data["groups"], "id", request.args["pk"])
        if group is None:
            raise _not_found()
        self.data["groups"].remove(group)
        self.data["roles"] = [role for role in self.data["roles"] if role["id"] != group["id"]]
        return 204, None

    def _list_roles(self, request: MockRequest) -> Tuple[int, Any]:
        return 200, deepcopy(self.data["roles"])

    def _update_role(self, request: MockRequest) -> Tuple[int, Any]:
        role = self._find(self.data["roles"], "name", request.args["name"])
        if role is None:
            raise _not_found()
        permissions = request.body_dict().get("permissions")
        if not isinstance(permissions, dict):
            raise MockHTTPError(400, {"permissions": ["Expected a dictionary of items."]})
        unknown = [name for name in permissions if name not in AppModule._value2member_map_]
        if unknown:
            raise MockHTTPError(400, {"permissions": [f"Unknown module: {', '.join(unknown)}"]})
        role["permissions"] = {
            module: {action: bool(grants.get(action, False)) for action in ("create", "read", "update", "delete")}
            for module, grants in permissions.items()
        }
        return 200, deepcopy(role)

    # ==================== Dashboard and lookups ====================

    def _dashboard_stats(self, request: MockRequest) -> Tuple[int, Any]:
        start = request.params.get("start_date")
        end = request.params.get("end_date")
        transactions = [
            t for t in self.data["transactions"]
            if (not start or t["date"] >= start) and (not end or t["date"] <= end)
        ]
        students = self.data["students"]

        monthly: Dict[str, Dict[str, float]] = {}
        for t in transactions:
            month = monthly.setdefault(t["date"][:7], {"income": 0.0, "expense": 0.0})
            amount = float(t["amount"])
            if t["type"] == "Income":
                month["income"] += amount
            else:
                month["expense"] += abs(amount)

        return 200, {
            "stats": {
                "total_students": len(students),
                "active_students": sum(1 for s in students if s["student_status"] == "Active"),
                "net_balance": round(sum(float(t["amount"]) for t in transactions), 2),
                "upcoming_filings": sum(1 for f in self.data["filings"] if f["status"] == "Pending"),
            },
            "student_status_distribution": dict(Counter(s["student_status"] for s in students)),
            "sponsorship_status_distribution": dict(Counter(s["sponsorship_status"] for s in students)),
            "monthly_breakdown": [{"month": key, **value} for key, value in sorted(monthly.items())],
        }

    def _recent_transactions(self, request: MockRequest) -> Tuple[int, Any]:
        resource = RESOURCES["transactions"]
        latest = self._order(self.data["transactions"], "-date")[:5]
        return 200, [self._serialize(resource, row) for row in latest]

    def _student_lookup(self, request: MockRequest) -> Tuple[int, Any]:
        return 200, [
            {key: s[key] for key in ("student_id", "first_name", "last_name")}
            for s in self.data["students"]
        ]

    def _sponsor_lookup(self, request: MockRequest) -> Tuple[int, Any]:
        return 200, [{"id": s["id"], "name": s["name"]} for s in self.data["sponsors"]]

    # ==================== Students ====================

    def _all_students(self, request: MockRequest) -> Tuple[int, Any]:
        resource = RESOURCES["students"]
        rows = self._query(request, resource, self.data["students"])
        return 200, [self._serialize(resource, row) for row in rows]

    def _students_by_ids(self, request: MockRequest) -> Tuple[int, Any]:
        resource = RESOURCES["students"]
        wanted = set(request.body_dict().get("student_ids") or [])
        return 200, [self._serialize(resource, row) for row in self.data["students"] if row["student_id"] in wanted]

    def _bulk_import_students(self, request: MockRequest) -> Tuple[int, Any]:
        if not isinstance(request.body, list):
            raise MockHTTPError(400, {"detail": "Expected a list of students."})
        resource = RESOURCES["students"]
        created = updated = skipped = 0
        errors: List[str] = []
        for index, item in enumerate(request.body, start=1):
            if not isinstance(item, dict) or not item.get("first_name") or not item.get("last_name"):
                skipped += 1
                errors.append(f"Row {index}: first_name and last_name are required.")
                continue
            existing = self._find(self.data["students"], "student_id", item.get("student_id"))
            if existing is not None:
                existing.update({k: v for k, v in item.items() if k != "student_id"})
                updated += 1
                continue
            row = {"student_status": "Pending Qualification", "sponsorship_status": "Unsponsored",
                   "sponsor": None, "profile_photo": None, **item}
            row["student_id"] = item.get("student_id") or self._new_id(resource)
            self.data["students"].append(row)
            self._audit(request.user, "CREATE", resource, row)
            created += 1
        return 200, {"created_count": created, "updated_count": updated, "skipped_count": skipped,
                     "errors": errors}

    def _bulk_update_students(self, request: MockRequest) -> Tuple[int, Any]:
        body = request.body_dict()
        updates = body.get("updates") or {}
        allowed = {"student_status", "sponsorship_status"}
        if not updates or set(updates) - allowed:
            raise MockHTTPError(400, {"updates": ["Only student_status and sponsorship_status can be bulk updated."]})
        resource = RESOURCES["students"]
        count = 0
        for student_id in body.get("student_ids") or []:
            row = self._find(self.data["students"], "student_id", student_id)
            if row is None:
                continue
            changes = {k: {"old": row.get(k), "new": v} for k, v in updates.items() if row.get(k) != v}
            row.update(updates)
            if changes:
                self._audit(request.user, "UPDATE", resource, row, changes)
            count += 1
        return 200, {"updated_count": count}

    def _add_student_report(self, request: MockRequest) -> Tuple[int, Any]:
        self._get_row(RESOURCES["students"], request.args["pk"])
        resource = RESOURCES["academic-reports"]
        row = {**request.body_dict(), "student": request.args["pk"]}
        row["id"] = self._new_id(resource)
        self.data[resource.key].append(row)
        self._audit(request.user, "CREATE", resource, row)
        return 201, self._serialize(resource, row)

    def _add_follow_up(self, request: MockRequest) -> Tuple[int, Any]:
        self._get_row(RESOURCES["students"], request.args["pk"])
        resource = RESOURCES["follow-up-records"]
        row = {**request.body_dict(), "student": request.args["pk"]}
        row["id"] = self._new_id(resource)
        self.data[resource.key].append(row)
        self._audit(request.user, "CREATE", resource, row)
        return 201, self._serialize(resource, row)

    def _transactions_for_report(self, request: MockRequest) -> Tuple[int, Any]:
        resource = RESOURCES["transactions"]
        start = request.params.get("start")
        end = request.params.get("end")
        rows = [
            t for t in self.data["transactions"]
            if (not start or t["date"] >= start) and (not end or t["date"] <= end)
        ]
        return 200, [self._serialize(resource, row) for row in self._order(rows, "date")]

    # ==================== Generic collections ====================

    def _list(self, request: MockRequest) -> Tuple[int, Any]:
        resource = self._resource(request, "read")
        rows = self._query(request, resource, self.data[resource.key])
        page = self._paginate(request, rows)
        page["results"] = [self._serialize(resource, row) for row in page["results"]]
        return 200, page

    def _retrieve(self, request: MockRequest) -> Tuple[int, Any]:
        resource = self._resource(request, "read")
        return 200, self._serialize(resource, self._get_row(resource, request.args["pk"]))

    def _create(self, request: MockRequest) -> Tuple[int, Any]:
        resource = self._resource(request, "create")
        row = request.body_dict()
        self._store_files(request, resource.name, row)
        if resource.name == "students" and not row.get("first_name"):
            raise MockHTTPError(400, {"first_name": ["This field is required."]})
        if resource.name != "students" or not row.get(resource.id_field):
            row[resource.id_field] = self._new_id(resource)
        elif self._find(self.data[resource.key], resource.id_field, row[resource.id_field]):
            raise MockHTTPError(400, {resource.id_field: ["student with this student id already exists."]})
        self.data[resource.key].append(row)
        self._audit(request.user, "CREATE", resource, row)
        return 201, self._serialize(resource, row)

    def _update(self, request: MockRequest) -> Tuple[int, Any]:
        resource = self._resource(request, "update")
        row = self._get_row(resource, request.args["pk"])
        changes_in = request.body_dict() if request.body is not None else {}
        self._store_files(request, resource.name, changes_in)
        changes_in.pop(resource.id_field, None)
        changes = {
            name: {"old": row.get(name), "new": value}
            for name, value in changes_in.items() if row.get(name) != value
        }
        row.update(changes_in)
        if changes:
            self._audit(request.user, "UPDATE", resource, row, changes)
        return 200, self._serialize(resource, row)

    def _destroy(self, request: MockRequest) -> Tuple[int, Any]:
        resource = self._resource(request, "delete")
        row = self._get_row(resource, request.args["pk"])
        self.data[resource.key].remove(row)
        self._audit(request.user, "DELETE", resource, row)
        return 204, None


class MockBackendTransport(httpx.AsyncBaseTransport):
    """
    httpx transport answering from a MockBackend.

    `base_path` is the path part of the configured API URL ("/api"); it is
    stripped before routing.
    """

    def __init__(self, backend: MockBackend, base_path: str = "/api", latency: float = 0.0):
        self.backend = backend
        self.base_path = base_path.rstrip("/")
        self.latency = latency

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        if self.latency:
            await asyncio.sleep(self.latency)

        body = await request.aread()
        path = request.url.path
        if self.base_path and path.startswith(self.base_path):
            path = path[len(self.base_path):] or "/"

        status, payload = await self.backend.handle(request.method, request.url, path, request.headers, body)
        logger.debug(f"mock {request.method} {path} -> {status}")

        if payload is None:
            return httpx.Response(status, request=request)
        return httpx.Response(status, json=payload, request=request)
