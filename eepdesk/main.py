#!/usr/bin/env python3
"""
eepdesk - Main Entry Point

Usage:
    eepdesk login                          # Sign in (prompts for credentials)
    eepdesk status                         # Who am I, what may I do
    eepdesk list students --filter gender=Female --sort age
    eepdesk browse tasks                   # Interactive table browser
    eepdesk export transactions --start 2024-01-01 --end 2024-03-31 -o q1.csv
    eepdesk --mock login                   # Work offline against the mock backend
"""

import argparse
import asyncio
import json
import sys
from datetime import date
from typing import Dict, List

from rich.console import Console
from rich.prompt import Prompt

from eepdesk import __version__
from eepdesk.app import EepDeskApp
from eepdesk.browser import TableBrowser
from eepdesk.config import DeskConfig
from eepdesk.controllers import CONTROLLERS, ListController, SponsorStudentsController
from eepdesk.exceptions import ApiError, EepDeskError, NetworkError, PermissionDeniedError
from eepdesk.exports import (
    FINANCIAL_HEADERS,
    STUDENT_ROSTER_HEADERS,
    FinancialSummary,
    export_financial_csv_with_summary,
    export_rows_to_csv,
    financial_rows,
    student_roster_rows,
)
from eepdesk.logging_config import setup_logging
from eepdesk.permissions import AppModule
from eepdesk.renderer import COLUMNS
from eepdesk.table_controls import SortOrder

LIST_MODULES = [module.value for module in CONTROLLERS]


def create_parser() -> argparse.ArgumentParser:
    """Create argument parser for CLI"""
    parser = argparse.ArgumentParser(
        prog="eepdesk",
        description="eepdesk - admin console for the student sponsorship program",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  eepdesk login                                   Sign in
  eepdesk logout                                  Sign out
  eepdesk status                                  Show user and permissions
  eepdesk list students --search liam             Search students
  eepdesk list tasks --filter status="To Do"      Filter tasks
  eepdesk list transactions --sort amount --desc  Largest first
  eepdesk browse students                         Interactive browser
  eepdesk export students -o roster.csv           Student roster
  eepdesk delete tasks task_3                     Delete a task

Modules:
  students, sponsors, transactions, academics, tasks, filings, audit, users
        """
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    login_parser = subparsers.add_parser("login", help="Sign in")
    login_parser.add_argument("--username", "-u", help="Username (prompted if omitted)")

    subparsers.add_parser("logout", help="Sign out and forget the session")
    subparsers.add_parser("status", help="Show the signed-in user and permissions")
    subparsers.add_parser("whoami", help="Alias for status")

    list_parser = subparsers.add_parser("list", help="Show one page of a module")
    list_parser.add_argument("module", choices=LIST_MODULES)
    list_parser.add_argument("--page", type=int, default=1, help="Page number (default: 1)")
    list_parser.add_argument("--sort", help="Column to sort by (e.g. firstName, age, dueDate)")
    list_parser.add_argument("--desc", action="store_true", help="Sort descending")
    list_parser.add_argument("--search", help="Free-text search")
    list_parser.add_argument("--filter", action="append", default=[], metavar="NAME=VALUE",
                             help="Filter (repeatable)")
    list_parser.add_argument("--json", action="store_true", help="Print the page as JSON")

    browse_parser = subparsers.add_parser("browse", help="Interactive table browser")
    browse_parser.add_argument("module", choices=LIST_MODULES)
    browse_parser.add_argument("--sponsor", help="students: only this sponsor's students")

    export_parser = subparsers.add_parser("export", help="Export a module to CSV")
    export_parser.add_argument("module", choices=LIST_MODULES)
    export_parser.add_argument("--output", "-o", help="Output file (default: <module>_<date>.csv)")
    export_parser.add_argument("--filter", action="append", default=[], metavar="NAME=VALUE")
    export_parser.add_argument("--start", help="transactions: first date (YYYY-MM-DD)")
    export_parser.add_argument("--end", help="transactions: last date (YYYY-MM-DD)")

    delete_parser = subparsers.add_parser("delete", help="Delete one record")
    delete_parser.add_argument("module", choices=LIST_MODULES)
    delete_parser.add_argument("id", help="Record id")

    # Global options
    parser.add_argument(
        "--server-url",
        type=str,
        help="API base URL (default: http://127.0.0.1:8000/api)"
    )
    parser.add_argument(
        "--mock",
        action="store_true",
        help="Use the built-in mock backend instead of a server"
    )
    parser.add_argument(
        "--config",
        type=str,
        help="Path to config file"
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose output"
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}"
    )

    return parser


def parse_filters(values: List[str]) -> Dict[str, str]:
    filters: Dict[str, str] = {}
    for item in values:
        name, sep, value = item.partition("=")
        if not sep or not name:
            raise ValueError(f"Filters look like NAME=VALUE, got {item!r}")
        filters[name.strip()] = value.strip()
    return filters


def _configure_controller(controller: ListController, args: argparse.Namespace) -> None:
    filters = parse_filters(args.filter)
    unknown = [name for name in filters if controller.filter_names and name not in controller.filter_names]
    if unknown:
        raise ValueError(f"Unknown filter(s): {', '.join(unknown)}. "
                         f"Available: {', '.join(controller.filter_names) or 'none'}")
    controller.controls.apply_filters(filters)

    if getattr(args, "sort", None):
        controller.controls.set_sort(args.sort, SortOrder.DESC if args.desc else SortOrder.ASC)
    if getattr(args, "search", None):
        controller.controls.set_search_term(args.search)
    if getattr(args, "page", None):
        controller.controls.set_current_page(args.page)


async def _require_session(app: EepDeskApp) -> bool:
    if await app.auth.init_session() is not None:
        return True
    app.console.print("\n[red]✗ Authentication required[/red]")
    app.console.print("\nPlease login first:")
    app.console.print("  [cyan]eepdesk login[/cyan]")
    return False


async def _fetch_all(controller: ListController) -> List[dict]:
    rows: List[dict] = []
    controller.controls.set_current_page(1)
    await controller.fetch()
    rows.extend(controller.rows)
    while controller.controls.current_page < controller.total_pages:
        await controller.next_page()
        rows.extend(controller.rows)
    return rows


# ==================== Commands ====================

async def cmd_login(app: EepDeskApp, args: argparse.Namespace) -> int:
    console = app.console
    if app.config.use_mock_backend:
        console.print("[dim]Mock backend: try mockadmin / password[/dim]")
    username = args.username or Prompt.ask("Username", console=console)
    password = Prompt.ask("Password", password=True, console=console)

    with console.status("[bold cyan]Signing in...[/bold cyan]", spinner="dots"):
        user = await app.auth.login(username, password)

    console.print("\n[green]✓ Login successful![/green]")
    console.print(f"Welcome, [bold]{user.username}[/bold]!")
    return 0


async def cmd_logout(app: EepDeskApp, args: argparse.Namespace) -> int:
    app.auth.logout()
    app.console.print("[green]✓ Logged out[/green]")
    return 0


async def cmd_status(app: EepDeskApp, args: argparse.Namespace) -> int:
    if not await _require_session(app):
        return 1
    app.renderer.render_user(app.auth.user, app.config.api_base_url)
    return 0


async def cmd_list(app: EepDeskApp, args: argparse.Namespace) -> int:
    if not await _require_session(app):
        return 1
    controller = app.controller_for(args.module)
    if not controller.permissions.can_read:
        raise PermissionDeniedError(controller.module.label, "read")

    _configure_controller(controller, args)
    page = await controller.fetch()

    if args.json:
        print(json.dumps({
            "count": page.count,
            "page": controller.controls.current_page,
            "totalPages": controller.total_pages,
            "query": controller.controls.api_query_string,
            "results": page.results,
        }, indent=2, default=str))
    else:
        app.renderer.render_page(controller)
    return 0


async def cmd_browse(app: EepDeskApp, args: argparse.Namespace) -> int:
    if not await _require_session(app):
        return 1
    module = AppModule(args.module)
    if module == AppModule.STUDENTS and args.sponsor:
        controller: ListController = SponsorStudentsController(
            app.api, args.sponsor, user_provider=lambda: app.auth.user
        )
    else:
        controller = app.controller_for(module)
    if not controller.permissions.can_read:
        raise PermissionDeniedError(controller.module.label, "read")

    await TableBrowser(app, controller).run()
    return 0


async def cmd_export(app: EepDeskApp, args: argparse.Namespace) -> int:
    if not await _require_session(app):
        return 1
    module = AppModule(args.module)
    output = args.output or f"{module.value}_{date.today().isoformat()}.csv"
    filters = parse_filters(args.filter)

    if module == AppModule.TRANSACTIONS and (args.start or args.end):
        if not (args.start and args.end):
            raise ValueError("Both --start and --end are needed for a financial report")
        if not app.auth.permissions(AppModule.REPORTS).can_read:
            raise PermissionDeniedError(AppModule.REPORTS.label, "read")
        transactions = await app.api.get_transactions_for_report(args.start, args.end)
        if not transactions:
            app.renderer.render_warning("No transactions found in the selected date range.")
            return 0
        summary = FinancialSummary.from_transactions(transactions, args.start, args.end)
        count = export_financial_csv_with_summary(
            financial_rows(transactions), FINANCIAL_HEADERS, summary.lines(), output
        )
    elif module == AppModule.STUDENTS:
        if not app.auth.permissions(AppModule.REPORTS).can_read:
            raise PermissionDeniedError(AppModule.REPORTS.label, "read")
        students = await app.api.get_all_students_for_report(filters)
        count = export_rows_to_csv(student_roster_rows(students), STUDENT_ROSTER_HEADERS, output)
    else:
        controller = app.controller_for(module)
        if not controller.permissions.can_read:
            raise PermissionDeniedError(controller.module.label, "read")
        controller.controls.apply_filters(filters)
        rows = await _fetch_all(controller)
        count = export_rows_to_csv(rows, dict(COLUMNS[module]), output)

    app.renderer.render_success(f"Exported {count} rows to {output}")
    return 0


async def cmd_delete(app: EepDeskApp, args: argparse.Namespace) -> int:
    if not await _require_session(app):
        return 1
    controller = app.controller_for(args.module)
    if not controller.permissions.can_delete or controller.read_only:
        raise PermissionDeniedError(controller.module.label, "delete")
    await controller.delete(args.id)
    app.renderer.render_success(f"Deleted {args.id}")
    return 0


COMMANDS = {
    "login": cmd_login,
    "logout": cmd_logout,
    "status": cmd_status,
    "whoami": cmd_status,
    "list": cmd_list,
    "browse": cmd_browse,
    "export": cmd_export,
    "delete": cmd_delete,
}


async def run_command(args: argparse.Namespace, config: DeskConfig, console: Console) -> int:
    async with EepDeskApp(config, console) as app:
        try:
            return await COMMANDS[args.command](app, args)
        except PermissionDeniedError as e:
            app.renderer.render_error(e.message)
        except ApiError as e:
            app.renderer.render_error(e.message, f"HTTP {e.status}")
        except NetworkError as e:
            app.renderer.render_error(e.message, "Is the server running? Try --mock to work offline.")
        except EepDeskError as e:
            app.renderer.render_error(e.message)
        except ValueError as e:
            app.renderer.render_error(str(e))
        return 1


def main():
    """Main entry point"""
    parser = create_parser()
    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(0)

    console = Console()

    try:
        config = DeskConfig.load_default(args.config)
    except EepDeskError as e:
        console.print(f"[red]Configuration error: {e.message}[/red]")
        sys.exit(1)

    if args.server_url:
        config.api_base_url = args.server_url
    if args.mock:
        config.use_mock_backend = True
    if args.verbose:
        config.verbose = True

    logger = setup_logging(config)

    try:
        code = asyncio.run(run_command(args, config, console))
    except KeyboardInterrupt:
        print("\n\nGoodbye!")
        sys.exit(0)
    except Exception as e:
        logger.log_error_with_context(e, "command", command=args.command)
        if args.verbose:
            import traceback
            traceback.print_exc()
        else:
            print(f"\n❌ Error: {e}")
        sys.exit(1)

    sys.exit(code)


if __name__ == "__main__":
    main()
