"""
Tests for single and comprehensive route runs
"""

from unittest.mock import AsyncMock

import pytest

from designscout.core.exceptions import ConnectionClosedError
from designscout.core.models import Platform, RouteSettings, RouteType
from designscout.core.route_executor import RouteExecutor
from designscout.core.site_config import MOBBIN

LANDING = "https://mobbin.com/apps/bank-of-america-ios-42"

FLOWS_CELL = MOBBIN.profile_for(RouteType.FLOWS).cell_selector
SEARCH_RESULTS = "https://mobbin.com/search?q=banking"


@pytest.fixture
def executor(engine, session_manager):
    routes = RouteExecutor(engine, session_manager=session_manager)
    routes.capture.modal_timeout = 0.01
    routes.capture.url_timeout = 0.01
    return routes


class TestExecuteRoute:
    @pytest.mark.asyncio
    async def test_banking_apps_on_ios(self, executor, site, banking):
        """Clicking the app suggestion captures its page, then related apps"""
        result = await executor.execute_route("apps", "banking", "ios", max_results=5)

        assert result.success
        assert result.errors == []
        assert result.route_type == RouteType.APPS
        assert result.platform == Platform.IOS
        assert result.strategy.startswith("click-suggestion")
        assert [u.url for u in result.captured_urls] == [
            LANDING,
            "https://mobbin.com/apps/chase-ios-1",
            "https://mobbin.com/apps/wells-fargo-ios-2",
            "https://mobbin.com/apps/capital-one-ios-3",
            "https://mobbin.com/apps/revolut-ios-4",
        ]
        assert [u.relevance_score for u in result.captured_urls] == [0.95, 0.9, 0.85, 0.8, 0.75]
        assert result.captured_urls[0].metadata["source"] == "suggestion_click"
        assert all(u.keyword == "banking" for u in result.captured_urls)
        urls = [u.url for u in result.captured_urls]
        assert len(urls) <= 5
        assert len(set(urls)) == len(urls)
        assert all(u.type == RouteType.APPS for u in result.captured_urls)
        assert site.typed == "banking"

    @pytest.mark.asyncio
    async def test_wrapper_methods(self, executor, site, banking):
        result = await executor.execute_apps_route("banking", max_results=1)
        assert [u.url for u in result.captured_urls] == [LANDING]

    @pytest.mark.asyncio
    async def test_discovery_failure_is_contained(self, executor, site, banking):
        site.fail_discovery_for.add("banking")

        result = await executor.execute_route("apps", "banking", "ios")

        assert not result.success
        assert result.captured_urls == []
        assert "Execution context was destroyed" in result.errors[0]

    @pytest.mark.asyncio
    async def test_no_suggestions_falls_back_to_text_search(self, executor, site):
        site.enter_url = SEARCH_RESULTS
        site.candidates[FLOWS_CELL] = [
            {"href": "https://mobbin.com/flows/aa11-bb22", "text": "Open account"},
            {"href": "https://mobbin.com/flows/cc33-dd44", "text": "Transfer money"},
        ]

        result = await executor.execute_flows_route("banking", platform="web", max_results=2)

        assert result.success
        assert result.strategy.startswith("text-search")
        assert [u.url for u in result.captured_urls] == [
            "https://mobbin.com/flows/aa11-bb22",
            "https://mobbin.com/flows/cc33-dd44",
        ]
        assert all(u.platform == Platform.WEB for u in result.captured_urls)

    @pytest.mark.asyncio
    async def test_missing_search_surface_browses_category(self, executor, site):
        site.failing_selectors.update({"text=Search on iOS...", 'button:has-text("Search on")'})

        result = await executor.execute_screens_route("banking", max_results=1)

        assert result.strategy.startswith("fallback-browse")
        assert "https://mobbin.com/discover/screens/ios/latest" in [a.get("url") for _, a in site.calls]
        # Nothing to capture on the browse page is a shortfall, not a failure
        assert result.success
        assert result.warnings

    @pytest.mark.asyncio
    async def test_failed_click_retries_as_text_search(self, executor, site, banking):
        executor.suggestions.execute_suggestion_strategy = AsyncMock(side_effect=[False, True])

        result = await executor.execute_route("apps", "banking", max_results=1)

        assert result.success
        assert result.strategy.startswith("text-search - Clicking suggestion failed")
        assert executor.suggestions.execute_suggestion_strategy.await_count == 2

    @pytest.mark.asyncio
    async def test_no_workable_strategy_fails_route(self, executor, site, banking):
        executor.suggestions.execute_suggestion_strategy = AsyncMock(return_value=False)

        result = await executor.execute_route("apps", "banking")

        assert not result.success
        assert "Failed to execute suggestion strategy" in result.errors[0]

    @pytest.mark.asyncio
    async def test_lost_browser_is_reported_in_result(self, executor, site):
        site.tool_errors["playwright_navigate"] = ConnectionClosedError("MCP connection closed")

        result = await executor.execute_route("apps", "banking")

        assert not result.success
        assert "MCP connection closed" in result.errors[0]

    @pytest.mark.asyncio
    async def test_result_serializes(self, executor, site, banking):
        data = (await executor.execute_route("apps", "banking", max_results=1)).to_dict()
        assert data["route_type"] == "apps"
        assert data["captured_urls"][0]["url"] == LANDING


class TestExecuteComprehensive:
    @pytest.mark.asyncio
    async def test_failed_keyword_does_not_stop_siblings(self, executor, site, session_manager, banking):
        site.fail_discovery_for.add("broken")

        report = await executor.execute_comprehensive(
            ["broken", "banking"],
            {"apps": RouteSettings(enabled=True, max_results=2), "flows": RouteSettings(enabled=False)},
        )

        assert [(r.keyword, r.success) for r in report.results] == [("broken", False), ("banking", True)]
        assert report.total_captured_urls == 2
        assert report.summary == (
            "Comprehensive search completed: 2 URLs captured from 2 keywords. "
            "1 successful routes, 1 failed routes."
        )
        assert session_manager.completed_sessions == 1
        assert not session_manager.is_locked

    @pytest.mark.asyncio
    async def test_routes_run_in_category_order(self, executor, site, banking):
        report = await executor.execute_comprehensive(
            ["banking"],
            {
                RouteType.SCREENS: RouteSettings(enabled=True, max_results=1),
                RouteType.APPS: RouteSettings(enabled=True, max_results=1),
            },
        )

        assert [r.route_type for r in report.results] == [RouteType.APPS, RouteType.SCREENS]
