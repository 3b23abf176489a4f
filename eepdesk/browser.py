"""
Interactive list browser (prompt-toolkit REPL)

    sort <column>            toggle sort on a column
    filter <name> <value>    set a filter ("all" removes it)
    clear                    remove every filter
    search <text>            free-text search (empty clears)
    page <n> / next / prev   paging
    refresh                  reload the current page
    select <id|all|none>     students: choose rows for a bulk update
    bulk <field> <value>     students: update every selected row
    status <id> <status>     tasks: quick status change
    delete <id>              delete a row (asks first)
    events                   recent API calls
    quit                     leave the browser
"""

import shlex
from typing import List

from prompt_toolkit import PromptSession
from prompt_toolkit.auto_suggest import AutoSuggestFromHistory
from prompt_toolkit.completion import WordCompleter
from prompt_toolkit.formatted_text import HTML
from prompt_toolkit.history import FileHistory
from prompt_toolkit.styles import Style
from rich.prompt import Confirm

from eepdesk.app import EepDeskApp
from eepdesk.controllers import ListController, StudentsController, TasksController
from eepdesk.exceptions import ApiError, EepDeskError, SessionExpiredError
from eepdesk.logging_config import get_logger
from eepdesk.renderer import COLUMNS

logger = get_logger(__name__)

COMMANDS = ["sort", "filter", "clear", "search", "page", "next", "prev", "refresh",
            "select", "bulk", "status", "delete", "events", "help", "quit"]


class TableBrowser:
    """REPL over one ListController"""

    def __init__(self, app: EepDeskApp, controller: ListController):
        self.app = app
        self.controller = controller
        self.console = app.console
        self.renderer = app.renderer
        self._running = True

        self.prompt_style = Style.from_dict({
            'prompt': '#00D9FF bold',
            'module': '#4ADE80',
            'page': '#888888',
        })

    def _completer(self) -> WordCompleter:
        words: List[str] = list(COMMANDS)
        words += [key for key, _ in COLUMNS[self.controller.module]]
        words += list(self.controller.filter_names)
        return WordCompleter(words, ignore_case=True)

    def _get_prompt_text(self) -> HTML:
        controls = self.controller.controls
        return HTML(
            f'<module>{self.controller.module.value}</module> '
            f'<page>[{controls.current_page}/{self.controller.total_pages}]</page> '
            f'<prompt>❯</prompt> '
        )

    async def run(self):
        await self.controller.fetch()
        self.renderer.render_page(self.controller)

        session = PromptSession(
            history=FileHistory(self.app.config.history_file),
            auto_suggest=AutoSuggestFromHistory(),
            completer=self._completer(),
            style=self.prompt_style,
            enable_history_search=True,
        )

        while self._running:
            try:
                line = await session.prompt_async(self._get_prompt_text())
            except KeyboardInterrupt:
                self.console.print("[yellow]Use quit to exit or Ctrl+D[/yellow]")
                continue
            except EOFError:
                break

            if not line.strip():
                continue

            try:
                redraw = await self.handle(line)
            except SessionExpiredError as e:
                self.renderer.render_error(e.message)
                break
            except (EepDeskError, ValueError) as e:
                message = e.message if isinstance(e, EepDeskError) else str(e)
                self.renderer.render_error(message)
                continue

            if redraw:
                self.renderer.render_page(self.controller)

    async def handle(self, line: str) -> bool:
        """Run one command; returns True when the page should be redrawn"""
        try:
            parts = shlex.split(line)
        except ValueError as e:
            raise ValueError(f"Could not parse command: {e}")
        command, args = parts[0].lower(), parts[1:]
        controller = self.controller

        if command in ("quit", "exit", "q"):
            self._running = False
            return False
        if command == "help":
            self.console.print(__doc__)
            return False
        if command == "events":
            self.renderer.render_events(self.app.events.events)
            self.app.events.mark_all_as_read()
            return False

        if command == "sort":
            self._need(args, 1, "sort <column>")
            await controller.sort(args[0])
        elif command == "filter":
            self._need(args, 2, "filter <name> <value>")
            await controller.filter(args[0], " ".join(args[1:]))
        elif command == "clear":
            await controller.clear_filters()
        elif command == "search":
            await controller.search(" ".join(args))
        elif command == "page":
            self._need(args, 1, "page <n>")
            await controller.go_to_page(int(args[0]))
        elif command == "next":
            await controller.next_page()
        elif command in ("prev", "previous"):
            await controller.previous_page()
        elif command == "refresh":
            await controller.fetch()
        elif command == "select" and isinstance(controller, StudentsController):
            self._need(args, 1, "select <id|all|none>")
            if args[0] in ("all", "none"):
                controller.select_all(args[0] == "all")
            else:
                controller.select(args[0], args[0] not in controller.selected_ids)
        elif command == "bulk" and isinstance(controller, StudentsController):
            self._need(args, 2, "bulk <field> <value>")
            result = await controller.bulk_update({args[0]: " ".join(args[1:])})
            self.renderer.render_success(f"Updated {result.get('updatedCount', 0)} students")
        elif command == "status" and isinstance(controller, TasksController):
            self._need(args, 2, "status <task id> <status>")
            await controller.quick_status_change(args[0], " ".join(args[1:]))
        elif command == "delete":
            self._need(args, 1, "delete <id>")
            if not Confirm.ask(f"Delete {args[0]}?", console=self.console, default=False):
                return False
            try:
                await controller.delete(self._coerce_id(args[0]))
            except ApiError as e:
                self.renderer.render_error(f"Could not delete {args[0]}", e.message)
                return False
            self.renderer.render_success(f"Deleted {args[0]}")
        else:
            self.renderer.render_warning(f"Unknown command: {command} (try help)")
            return False

        return True

    @staticmethod
    def _need(args: List[str], count: int, usage: str) -> None:
        if len(args) < count:
            raise ValueError(f"Usage: {usage}")

    @staticmethod
    def _coerce_id(value: str):
        return int(value) if value.isdigit() else value
