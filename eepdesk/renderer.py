"""
Terminal rendering for eepdesk (rich)
"""

from datetime import date
from typing import Any, Dict, List, Mapping, Optional, Tuple

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from eepdesk.controllers import ListController
from eepdesk.debug_events import DebugEvent
from eepdesk.models import User
from eepdesk.permissions import AppModule, permissions_for
from eepdesk.table_controls import SortOrder

# (row key, column title) per list screen
COLUMNS: Dict[AppModule, List[Tuple[str, str]]] = {
    AppModule.STUDENTS: [
        ("studentId", "ID"), ("firstName", "First Name"), ("lastName", "Last Name"),
        ("age", "Age"), ("gender", "Gender"), ("currentGrade", "Grade"),
        ("studentStatus", "Status"), ("sponsorshipStatus", "Sponsorship"), ("sponsorName", "Sponsor"),
    ],
    AppModule.SPONSORS: [
        ("id", "ID"), ("name", "Name"), ("email", "Email"),
        ("sponsorshipStartDate", "Since"), ("sponsoredStudentCount", "Students"),
    ],
    AppModule.TRANSACTIONS: [
        ("id", "ID"), ("date", "Date"), ("description", "Description"), ("category", "Category"),
        ("type", "Type"), ("amount", "Amount"), ("studentName", "Student"),
    ],
    AppModule.ACADEMICS: [
        ("id", "ID"), ("studentName", "Student"), ("reportPeriod", "Period"), ("gradeLevel", "Grade"),
        ("overallAverage", "Average"), ("passFailStatus", "Result"),
    ],
    AppModule.TASKS: [
        ("id", "ID"), ("title", "Title"), ("dueDate", "Due"), ("priority", "Priority"), ("status", "Status"),
    ],
    AppModule.FILINGS: [
        ("id", "ID"), ("documentName", "Document"), ("authority", "Authority"), ("dueDate", "Due"),
        ("submissionDate", "Submitted"), ("status", "Status"),
    ],
    AppModule.AUDIT: [
        ("timestamp", "When"), ("userIdentifier", "User"), ("action", "Action"),
        ("contentType", "Object Type"), ("objectRepr", "Object"),
    ],
    AppModule.USERS: [
        ("id", "ID"), ("username", "Username"), ("email", "Email"), ("role", "Role"),
        ("status", "Status"), ("lastLogin", "Last Login"),
    ],
}

STATUS_STYLES = {
    "Active": "green", "Sponsored": "green", "Done": "green", "Submitted": "green", "Pass": "green",
    "Income": "green", "Inactive": "dim", "Unsponsored": "yellow", "Pending": "yellow",
    "In Progress": "yellow", "Pending Qualification": "yellow", "High": "red", "Fail": "red",
    "Expense": "red", "DELETE": "red", "CREATE": "green", "UPDATE": "cyan",
}


def _age(date_of_birth: Optional[str]) -> str:
    if not date_of_birth:
        return ""
    try:
        year, month, day = (int(part) for part in date_of_birth[:10].split("-"))
    except ValueError:
        return ""
    today = date.today()
    return str(today.year - year - ((today.month, today.day) < (month, day)))


def format_cell(key: str, row: Mapping[str, Any]) -> str:
    if key == "age":
        return _age(row.get("dateOfBirth"))
    value = row.get(key)
    if value is None or value == "":
        return "[dim]-[/dim]"
    text = escape(str(value))
    style = STATUS_STYLES.get(text)
    return f"[{style}]{text}[/{style}]" if style else text


class TableRenderer:
    """Renders list pages, users and debug events"""

    def __init__(self, console: Optional[Console] = None):
        self.console = console or Console()

    def render_page(self, controller: ListController):
        controls = controller.controls
        sort = controls.sort_config
        arrow = "↑" if sort.order == SortOrder.ASC else "↓"

        table = Table(title=controller.module.label, show_header=True, header_style="bold cyan")
        for key, title in COLUMNS[controller.module]:
            table.add_column(f"{title} {arrow}" if key == sort.key else title)

        selected = getattr(controller, "selected_ids", set())
        for row in controller.rows:
            cells = [format_cell(key, row) for key, _ in COLUMNS[controller.module]]
            style = "on grey15" if row.get(controller.id_field) in selected else None
            table.add_row(*cells, style=style)

        self.console.print(table)

        if not controller.rows:
            self.console.print("[dim]No records match the current filters.[/dim]")

        details = [f"Page {controls.current_page} of {controller.total_pages}",
                   f"{controller.page.count} records"]
        if controls.search_term:
            details.append(f"search: \"{controls.search_term}\"")
        self.console.print(f"[dim]{' · '.join(details)}[/dim]")

        if controls.filters:
            active = ", ".join(f"{name}={value}" for name, value in controls.filters.items())
            self.console.print(f"[dim]Filters:[/dim] [cyan]{active}[/cyan]")

    def render_user(self, user: Optional[User], server_url: str = ""):
        if user is None:
            self.console.print("[yellow]Not logged in[/yellow]")
            return

        lines = [
            f"[bold]{user.username}[/bold] ({user.email})",
            f"Role: [cyan]{user.role or '-'}[/cyan]",
        ]
        if server_url:
            lines.append(f"Server: [dim]{server_url}[/dim]")
        self.console.print(Panel("\n".join(lines), title="[green]Signed in[/green]", border_style="green"))

        table = Table(title="Permissions", show_header=True, header_style="bold cyan")
        table.add_column("Module", style="green")
        for action in ("Create", "Read", "Update", "Delete"):
            table.add_column(action, justify="center")

        for module in AppModule:
            grants = permissions_for(user, module)
            marks = ["[green]✓[/green]" if allowed else "[dim]·[/dim]"
                     for allowed in (grants.can_create, grants.can_read, grants.can_update, grants.can_delete)]
            table.add_row(module.label, *marks)
        self.console.print(table)

    def render_events(self, events: List[DebugEvent], limit: int = 20):
        table = Table(title="Recent API calls", show_header=True, header_style="bold cyan")
        table.add_column("Time", style="dim")
        table.add_column("Event")
        table.add_column("ms", justify="right", style="dim")

        for event in events[:limit]:
            message = f"[red]{event.message}[/red]" if event.is_error else event.message
            duration = f"{event.duration_ms:.0f}" if event.duration_ms is not None else ""
            table.add_row(event.timestamp.strftime("%H:%M:%S"), message, duration)
        self.console.print(table)

    def render_error(self, message: str, details: Optional[str] = None):
        self.console.print(Panel(
            f"[bold red]{message}[/bold red]" + (f"\n\n[dim]{details}[/dim]" if details else ""),
            title="[red]Error[/red]",
            border_style="red",
        ))

    def render_warning(self, message: str):
        self.console.print(f"[yellow]⚠  {message}[/yellow]")

    def render_success(self, message: str):
        self.console.print(f"[green]✓ {message}[/green]")

    def render_info(self, message: str):
        self.console.print(f"[blue]{message}[/blue]")
