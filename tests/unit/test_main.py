"""
Unit Tests for the command line
Tests for: argument parsing, filters, commands against the mock backend
"""
import csv
import io
import json

import pytest
from rich.console import Console

from eepdesk.app import EepDeskApp
from eepdesk.api_client import LOGIN_ROUTE
from eepdesk.config import DeskConfig
from eepdesk.controllers import TasksController
from eepdesk.main import create_parser, parse_filters, run_command
from eepdesk.mock_backend import MOCK_PASSWORD
from eepdesk.permissions import AppModule
from eepdesk.table_controls import PAGE_SIZE


@pytest.fixture
def mock_config(tmp_path):
    return DeskConfig(config_dir=str(tmp_path), use_mock_backend=True)


def make_console():
    return Console(file=io.StringIO(), width=120)


async def sign_in(config, username="mockadmin"):
    async with EepDeskApp(config, make_console()) as app:
        await app.auth.login(username, MOCK_PASSWORD)


async def run(config, *argv):
    console = make_console()
    code = await run_command(create_parser().parse_args(list(argv)), config, console)
    return code, console.file.getvalue()


class TestParser:
    """Test argument parsing"""

    def test_list_arguments(self):
        args = create_parser().parse_args([
            "list", "tasks", "--sort", "dueDate", "--desc", "--filter", "status=To Do", "--filter", "priority=High",
        ])

        assert args.command == "list"
        assert args.module == "tasks"
        assert args.desc is True
        assert args.filter == ["status=To Do", "priority=High"]
        assert args.page == 1

    def test_reports_has_no_list_view(self):
        with pytest.raises(SystemExit):
            create_parser().parse_args(["list", "reports"])

    def test_parse_filters(self):
        assert parse_filters(["status = To Do", "priority=High", "search="]) == {
            "status": "To Do", "priority": "High", "search": "",
        }

    @pytest.mark.parametrize("bad", ["status", "=High"])
    def test_parse_filters_rejects_malformed(self, bad):
        with pytest.raises(ValueError):
            parse_filters([bad])


class TestApp:
    """Test application wiring"""

    @pytest.mark.asyncio
    async def test_controller_for(self, mock_config):
        async with EepDeskApp(mock_config, make_console()) as app:
            controller = app.controller_for("tasks")

            assert isinstance(controller, TasksController)
            assert controller.controls.page_size == PAGE_SIZE
            with pytest.raises(ValueError):
                app.controller_for(AppModule.REPORTS)

    @pytest.mark.asyncio
    async def test_navigation_history(self, mock_config):
        async with EepDeskApp(mock_config, make_console()) as app:
            assert app.login_required is True

            await app.auth.login("mockadmin", MOCK_PASSWORD)
            assert app.login_required is False

            app.auth.logout()
            assert app.route == LOGIN_ROUTE
            assert app.route_history[-1] == LOGIN_ROUTE
            assert app.login_required is True


class TestCommands:
    """Test commands end to end against the mock backend"""

    @pytest.mark.asyncio
    async def test_list_requires_session(self, mock_config):
        code, output = await run(mock_config, "list", "students")

        assert code == 1
        assert "Authentication required" in output

    @pytest.mark.asyncio
    async def test_list_json(self, mock_config, capsys):
        await sign_in(mock_config)

        code, _ = await run(mock_config, "list", "students", "--json", "--filter", "gender=Female", "--sort", "age")

        assert code == 0
        page = json.loads(capsys.readouterr().out)
        assert page["query"] == "page=1&ordering=-date_of_birth&gender=Female"
        assert page["count"] == 17
        assert page["totalPages"] == 2
        assert {row["gender"] for row in page["results"]} == {"Female"}
        assert "studentId" in page["results"][0]

    @pytest.mark.asyncio
    async def test_list_table(self, mock_config):
        await sign_in(mock_config)

        code, output = await run(mock_config, "list", "tasks", "--filter", "status=To Do")

        assert code == 0
        assert "Tasks" in output
        assert "4 records" in output
        assert "status=To Do" in output

    @pytest.mark.asyncio
    async def test_unknown_filter(self, mock_config):
        await sign_in(mock_config)

        code, output = await run(mock_config, "list", "tasks", "--filter", "colour=red")

        assert code == 1
        assert "Unknown filter(s): colour" in output

    @pytest.mark.asyncio
    async def test_permission_denied(self, mock_config):
        await sign_in(mock_config, "accountant_ali")

        code, output = await run(mock_config, "list", "tasks")

        assert code == 1
        assert "You do not have permission to read in Tasks." in output

    @pytest.mark.asyncio
    async def test_status(self, mock_config):
        await sign_in(mock_config, "manager_sam")

        code, output = await run(mock_config, "status")

        assert code == 0
        assert "manager_sam" in output

    @pytest.mark.asyncio
    async def test_delete(self, mock_config, capsys):
        await sign_in(mock_config)

        code, output = await run(mock_config, "delete", "tasks", "task_3")
        assert code == 0
        assert "Deleted task_3" in output

        await run(mock_config, "list", "tasks", "--json")
        assert json.loads(capsys.readouterr().out)["count"] == 11

    @pytest.mark.asyncio
    async def test_delete_audit_log_refused(self, mock_config):
        await sign_in(mock_config)

        code, output = await run(mock_config, "delete", "audit", "1")

        assert code == 1
        assert "permission to delete" in output

    @pytest.mark.asyncio
    async def test_logout(self, mock_config):
        await sign_in(mock_config)

        code, _ = await run(mock_config, "logout")
        assert code == 0

        code, output = await run(mock_config, "status")
        assert code == 1
        assert "Authentication required" in output


class TestExportCommand:
    """Test CSV exports from the command line"""

    @pytest.mark.asyncio
    async def test_financial_report(self, mock_config, tmp_path):
        await sign_in(mock_config)
        output = tmp_path / "january.csv"

        code, text = await run(mock_config, "export", "transactions",
                               "--start", "2024-01-01", "--end", "2024-01-31", "-o", str(output))

        assert code == 0
        assert "Exported 5 rows" in text
        with open(output, newline="", encoding="utf-8") as f:
            rows = list(csv.reader(f))
        assert rows[0] == ["Financial Summary"]
        assert rows[2] == ["Total Income: $150.00"]
        assert rows[3] == ["Total Expenses: $50.00"]
        assert rows[4] == ["Net Balance: $100.00"]
        assert len(rows) == 7 + 5

    @pytest.mark.asyncio
    async def test_financial_report_needs_both_dates(self, mock_config, tmp_path):
        await sign_in(mock_config)

        code, output = await run(mock_config, "export", "transactions", "--start", "2024-01-01",
                                 "-o", str(tmp_path / "x.csv"))

        assert code == 1
        assert "Both --start and --end" in output

    @pytest.mark.asyncio
    async def test_roster_needs_reports_permission(self, mock_config, tmp_path):
        await sign_in(mock_config, "manager_sam")

        code, output = await run(mock_config, "export", "students", "-o", str(tmp_path / "roster.csv"))

        assert code == 1
        assert "Reports" in output
        assert not (tmp_path / "roster.csv").exists()

    @pytest.mark.asyncio
    async def test_module_export_walks_every_page(self, mock_config, tmp_path):
        await sign_in(mock_config)
        output = tmp_path / "transactions.csv"

        code, text = await run(mock_config, "export", "transactions", "-o", str(output))

        assert code == 0
        assert "Exported 40 rows" in text
        with open(output, newline="", encoding="utf-8") as f:
            assert len(list(csv.reader(f))) == 41
