"""
Unit Tests for the interactive table browser
Tests for: command handling against the mock backend
"""
import io
from unittest.mock import patch

import pytest
from rich.console import Console

from eepdesk.app import EepDeskApp
from eepdesk.browser import TableBrowser
from eepdesk.config import DeskConfig
from eepdesk.mock_backend import MOCK_PASSWORD
from eepdesk.table_controls import SortOrder


@pytest.fixture
def mock_config(tmp_path):
    return DeskConfig(config_dir=str(tmp_path), use_mock_backend=True)


async def open_browser(config, module):
    app = EepDeskApp(config, Console(file=io.StringIO(), width=120))
    await app.auth.login("mockadmin", MOCK_PASSWORD)
    controller = app.controller_for(module)
    await controller.fetch()
    return app, TableBrowser(app, controller)


def output_of(app):
    return app.console.file.getvalue()


class TestListCommands:
    """Test sorting, filtering and paging commands"""

    @pytest.mark.asyncio
    async def test_sort_toggles(self, mock_config):
        app, browser = await open_browser(mock_config, "tasks")

        assert await browser.handle("sort priority") is True
        assert browser.controller.controls.sort_config.key == "priority"
        assert browser.controller.controls.sort_config.order == SortOrder.ASC

        await browser.handle("sort priority")
        assert browser.controller.controls.sort_config.order == SortOrder.DESC
        await app.aclose()

    @pytest.mark.asyncio
    async def test_filter_with_spaces_and_clear(self, mock_config):
        app, browser = await open_browser(mock_config, "tasks")

        await browser.handle("filter status To Do")
        assert browser.controller.page.count == 4
        assert {row["status"] for row in browser.controller.rows} == {"To Do"}

        await browser.handle("clear")
        assert browser.controller.controls.filters == {}
        assert browser.controller.page.count == 12
        await app.aclose()

    @pytest.mark.asyncio
    async def test_search_and_paging(self, mock_config):
        app, browser = await open_browser(mock_config, "students")

        await browser.handle("next")
        assert browser.controller.controls.current_page == 2

        await browser.handle("search liam")
        assert browser.controller.controls.current_page == 1
        assert browser.controller.page.count == 11

        await browser.handle("page 9")
        assert browser.controller.controls.current_page == 1
        await app.aclose()

    @pytest.mark.asyncio
    async def test_usage_errors(self, mock_config):
        app, browser = await open_browser(mock_config, "tasks")

        with pytest.raises(ValueError, match="Usage: page <n>"):
            await browser.handle("page")
        with pytest.raises(ValueError):
            await browser.handle("page two")
        with pytest.raises(ValueError):
            await browser.handle("filter colour red")
        await app.aclose()

    @pytest.mark.asyncio
    async def test_unknown_command_and_quit(self, mock_config):
        app, browser = await open_browser(mock_config, "tasks")

        assert await browser.handle("dance") is False
        assert "Unknown command: dance" in output_of(app)

        assert await browser.handle("quit") is False
        assert browser._running is False
        await app.aclose()


class TestRowCommands:
    """Test commands that change records"""

    @pytest.mark.asyncio
    async def test_quick_status_change(self, mock_config):
        app, browser = await open_browser(mock_config, "tasks")

        await browser.handle("status task_1 Done")

        row = next(row for row in browser.controller.rows if row["id"] == "task_1")
        assert row["status"] == "Done"
        assert app.backend.data["tasks"][0]["status"] == "Done"
        await app.aclose()

    @pytest.mark.asyncio
    async def test_select_all_and_bulk_update(self, mock_config):
        app, browser = await open_browser(mock_config, "students")

        await browser.handle("select all")
        assert len(browser.controller.selected_ids) == 15

        await browser.handle("bulk student_status Inactive")

        assert "Updated 15 students" in output_of(app)
        assert browser.controller.selected_ids == set()
        await app.aclose()

    @pytest.mark.asyncio
    async def test_delete_asks_first(self, mock_config):
        app, browser = await open_browser(mock_config, "tasks")

        with patch("eepdesk.browser.Confirm.ask", return_value=False):
            assert await browser.handle("delete task_2") is False
        assert len(app.backend.data["tasks"]) == 12

        with patch("eepdesk.browser.Confirm.ask", return_value=True):
            assert await browser.handle("delete task_2") is True
        assert len(app.backend.data["tasks"]) == 11
        assert "Deleted task_2" in output_of(app)
        await app.aclose()

    @pytest.mark.asyncio
    async def test_delete_missing_row_reported(self, mock_config):
        app, browser = await open_browser(mock_config, "tasks")

        with patch("eepdesk.browser.Confirm.ask", return_value=True):
            assert await browser.handle("delete task_99") is False

        assert "Could not delete task_99" in output_of(app)
        await app.aclose()

    @pytest.mark.asyncio
    async def test_events_marked_read(self, mock_config):
        app, browser = await open_browser(mock_config, "tasks")

        await browser.handle("events")

        assert app.events.unread_error_count == 0
        assert app.events.events
        await app.aclose()
