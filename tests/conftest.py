"""
pytest configuration for design-scout tests
"""

import json
from typing import Any, Dict, List, Optional

import pytest

from designscout.core.browser import BrowserEngine
from designscout.core.browser.dom_queries import query_name
from designscout.core.config import ScoutConfig
from designscout.core.exceptions import ToolError
from designscout.core.session_manager import BrowserSessionManager, reset_session_manager
from designscout.core.site_config import SiteSelectors

BASE_URL = "https://mobbin.com"
SELECTORS = SiteSelectors()


def text_result(payload: Any) -> Dict[str, Any]:
    text = payload if isinstance(payload, str) else json.dumps(payload)
    return {"content": [{"type": "text", "text": text}], "isError": False}


class FakeSite:
    """
    Stands in for the automation server: keeps a current URL and history,
    answers the named page queries and follows clicks on known selectors.
    """

    def __init__(self, config: ScoutConfig):
        self.config = config
        self.url = "about:blank"
        self.history: List[str] = []
        self.calls: List[tuple] = []
        self.typed: Optional[str] = None

        # selectors reported as absent by the selector probe
        self.missing = {SELECTORS.login_link}
        self.suggestions: List[Dict[str, Any]] = []
        self.candidates: Dict[str, List[Dict[str, Any]]] = {}
        self.click_map: Dict[str, str] = {}
        self.failing_selectors = set()
        self.dead_candidates = set()  # hrefs whose click does nothing
        self.headings: Dict[str, str] = {}
        self.tool_errors: Dict[str, Exception] = {}
        self.query_errors: Dict[str, Exception] = {}
        self.fail_discovery_for = set()
        self.modal_patterns = ("/flows/", "/screens/")
        self.enter_url: Optional[str] = None

    # helpers for assertions
    def tool_names(self) -> List[str]:
        return [name for name, _ in self.calls]

    def keys_pressed(self) -> List[str]:
        return [args["key"] for name, args in self.calls if name == "playwright_press_key"]

    def _go(self, url: str):
        self.history.append(self.url)
        self.url = url

    def _candidate_items(self, script: str):
        for cell, items in self.candidates.items():
            if json.dumps(cell) in script:
                return [
                    {
                        "href": item["href"],
                        "text": item.get("text", ""),
                        "index": i,
                        "selector": f"{cell} >> nth={i}",
                    }
                    for i, item in enumerate(items)
                ]
        return []

    def _follow_candidate(self, selector: str) -> bool:
        for cell, items in self.candidates.items():
            for i, item in enumerate(items):
                if selector == f"{cell} >> nth={i}":
                    if item["href"] not in self.dead_candidates:
                        self._go(item["href"])
                    return True
        return False

    async def call_tool(self, name: str, arguments: Optional[Dict[str, Any]] = None) -> Any:
        arguments = arguments or {}
        self.calls.append((name, arguments))
        if name in self.tool_errors:
            raise self.tool_errors[name]

        if name == "playwright_navigate":
            self._go(arguments["url"])
            return text_result(f"Navigated to {arguments['url']}")

        if name == "playwright_click":
            selector = arguments["selector"]
            if selector in self.failing_selectors:
                raise ToolError(name, f"No element matches selector {selector}")
            if selector in self.click_map:
                self._go(self.click_map[selector])
            else:
                self._follow_candidate(selector)
            return text_result(f"Clicked element: {selector}")

        if name == "playwright_fill":
            if arguments["selector"] in self.failing_selectors:
                raise ToolError(name, f"No element matches selector {arguments['selector']}")
            if arguments["selector"] == SELECTORS.search_input:
                self.typed = arguments["value"]
            return text_result(f"Filled {arguments['selector']}")

        if name == "playwright_press_key":
            key = arguments["key"]
            if key == "Escape" and any(p in self.url for p in self.modal_patterns) and self.history:
                self.url = self.history.pop()
            elif key == "Enter" and self.enter_url:
                self._go(self.enter_url)
            return text_result(f"Pressed key: {key}")

        if name == "playwright_evaluate":
            return self._evaluate(arguments["script"])

        return text_result(f"{name} ok")

    def _evaluate(self, script: str):
        query = query_name(script)
        if query in self.query_errors:
            raise self.query_errors[query]

        if query == "selector_probe":
            found = not any(json.dumps(sel) in script for sel in self.missing)
            return text_result({"found": found, "visible": found, "count": int(found)})
        if query == "discover_suggestions":
            if self.typed in self.fail_discovery_for:
                raise ToolError("playwright_evaluate", "Execution context was destroyed")
            return text_result(self.suggestions)
        if query == "result_candidates":
            return text_result(self._candidate_items(script))
        if query == "page_info":
            return text_result(
                {"url": self.url, "title": "Mobbin", "heading": self.headings.get(self.url, ""), "description": ""}
            )
        if query == "current_url":
            return text_result({"url": self.url})
        if query == "history_back":
            if self.history:
                self.url = self.history.pop()
            return text_result({"ok": True})
        if query == "focus_element":
            return text_result({"focused": True})
        return text_result("undefined")


@pytest.fixture
def fast_config(tmp_path):
    """Config with every delay switched off"""
    return ScoutConfig(
        suggestion_settle_seconds=0,
        step_settle_seconds=0,
        keyword_delay_seconds=0,
        retry_base_delay=0,
        requests_per_minute=100000,
        screenshot_dir=tmp_path / "screenshots",
    )


@pytest.fixture
def site(fast_config):
    return FakeSite(fast_config)


@pytest.fixture
def engine(site, fast_config):
    browser = BrowserEngine(site, fast_config)
    browser.poll_interval = 0
    return browser


@pytest.fixture
def session_manager():
    return BrowserSessionManager()


@pytest.fixture(autouse=True)
def fresh_default_session_manager():
    """Each test gets its own process-wide session manager"""
    reset_session_manager()
    yield
    reset_session_manager()


def pytest_configure(config):
    """Configure pytest"""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line("markers", "integration: marks tests as integration tests")


LANDING = "https://mobbin.com/apps/bank-of-america-ios-42"


@pytest.fixture
def banking(site):
    """Autocomplete offers an app for "banking"; that app's page lists related apps"""
    site.suggestions = [
        {"text": 'Search for "banking"', "label": "", "index": 0, "selector": '[role="option"] >> nth=0'},
        {"text": "Bank of America", "label": "App", "index": 1, "selector": '[role="option"] >> nth=1'},
        {"text": "Onboarding", "label": "Flow", "index": 2, "selector": '[role="option"] >> nth=2'},
    ]
    site.click_map['[role="option"] >> nth=1'] = LANDING
    site.headings[LANDING] = "Bank of America"
    site.candidates['a[href*="/apps/"]'] = [
        {"href": LANDING, "text": "Bank of America"},
        {"href": "https://mobbin.com/brand/bank-of-america", "text": "Brand"},
        {"href": "https://mobbin.com/apps/chase-ios-1", "text": "Chase"},
        {"href": "https://mobbin.com/apps/wells-fargo-ios-2", "text": "Wells Fargo"},
        {"href": "https://mobbin.com/apps/capital-one-ios-3", "text": "Capital One"},
        {"href": "https://mobbin.com/apps/revolut-ios-4", "text": "Revolut"},
        {"href": "https://mobbin.com/apps/monzo-ios-5", "text": "Monzo"},
    ]
    return site
