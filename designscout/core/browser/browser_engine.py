"""
Browser automation engine on top of the Playwright automation server
Typed wrappers around the server's tools, with pacing and retries
"""
import asyncio
import logging
import re
import time
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional, Pattern, Union

from ..config import ScoutConfig
from ..exceptions import (
    FATAL_ERRORS,
    RequestTimeoutError,
    StepTimeoutError,
    ToolError,
)
from ..mcp.client import MCPClient
from ..mcp.protocol import extract_json_payload, result_texts
from ..rate_limiter import TokenBucket
from . import dom_queries

logger = logging.getLogger(__name__)


class ErrorCategory(str, Enum):
    TIMEOUT = "timeout"
    NETWORK = "network"
    ELEMENT_NOT_FOUND = "element_not_found"
    NAVIGATION = "navigation"
    PERMISSION = "permission"
    RATE_LIMIT = "rate_limit"
    UNKNOWN = "unknown"


RETRYABLE = {ErrorCategory.RATE_LIMIT, ErrorCategory.NETWORK}


def categorize_error(error: BaseException) -> ErrorCategory:
    """Map a tool failure onto a coarse category"""
    if isinstance(error, (RequestTimeoutError, asyncio.TimeoutError)):
        return ErrorCategory.TIMEOUT

    message = str(error).lower()
    if "rate limit" in message or "too many requests" in message or "429" in message:
        return ErrorCategory.RATE_LIMIT
    if "timeout" in message or "timed out" in message:
        return ErrorCategory.TIMEOUT
    if "net::" in message or "econnreset" in message or "network" in message:
        return ErrorCategory.NETWORK
    if "no element" in message or "not found" in message or "waiting for selector" in message or "locator" in message:
        return ErrorCategory.ELEMENT_NOT_FOUND
    if "navigation" in message or "navigate" in message:
        return ErrorCategory.NAVIGATION
    if "permission" in message or "denied" in message or "forbidden" in message:
        return ErrorCategory.PERMISSION
    return ErrorCategory.UNKNOWN


class BrowserEngine:
    """
    Browser operations for one automation-server session.

    The engine remembers the last URL it navigated to so callers still have
    a location when the page refuses to report one.
    """

    def __init__(
        self,
        client: MCPClient,
        config: Optional[ScoutConfig] = None,
        rate_limiter: Optional[TokenBucket] = None,
    ):
        self.client = client
        self.config = config or client.config
        self.rate_limiter = rate_limiter or TokenBucket.per_minute(self.config.requests_per_minute)
        self.url = ""
        self.poll_interval = 0.25

    # ------------------------------------------------------------------
    # Tool plumbing
    # ------------------------------------------------------------------

    async def call_tool(self, name: str, arguments: Optional[Dict[str, Any]] = None) -> Any:
        """Call a tool, retrying rate-limit and network failures with backoff"""
        attempt = 0
        while True:
            await self.rate_limiter.wait_for_tokens()
            try:
                return await self.client.call_tool(name, arguments or {})
            except FATAL_ERRORS:
                raise
            except (ToolError, RequestTimeoutError) as e:
                category = categorize_error(e)
                if category not in RETRYABLE or attempt >= self.config.tool_max_retries:
                    logger.debug(f"{name} failed ({category.value}): {e}")
                    raise
                delay = self.config.retry_base_delay * (2 ** attempt)
                attempt += 1
                logger.warning(f"⚠️ {name} hit {category.value}, retry {attempt} in {delay:.1f}s")
                await asyncio.sleep(delay)

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    async def navigate(self, url: str, timeout_ms: int = 30000) -> Any:
        result = await self.call_tool(
            "playwright_navigate",
            {
                "url": url,
                "browserType": "chromium",
                "width": self.config.viewport_width,
                "height": self.config.viewport_height,
                "headless": self.config.headless and not self.config.debug,
                "timeout": timeout_ms,
            },
        )
        self.url = url
        logger.debug(f"Navigated to {url}")
        return result

    async def click(self, selector: str) -> Any:
        return await self.call_tool("playwright_click", {"selector": selector})

    async def fill(self, selector: str, value: str) -> Any:
        return await self.call_tool("playwright_fill", {"selector": selector, "value": value})

    async def press_key(self, key: str, selector: Optional[str] = None) -> Any:
        args = {"key": key}
        if selector:
            args["selector"] = selector
        return await self.call_tool("playwright_press_key", args)

    async def evaluate(self, script: str) -> Optional[Any]:
        """Run a script and return its JSON payload, or None when there is none"""
        result = await self.call_tool("playwright_evaluate", {"script": script})
        payload = extract_json_payload(result)
        if payload is None:
            name = dom_queries.query_name(script) or "script"
            logger.debug(f"No JSON payload from {name}: {result_texts(result)[:1]}")
        return payload

    async def screenshot(self, name: str, full_page: bool = True) -> Optional[Path]:
        """Save a screenshot; failures are logged, never raised"""
        try:
            await self.call_tool(
                "playwright_screenshot",
                {
                    "name": name,
                    "width": self.config.viewport_width,
                    "height": self.config.viewport_height,
                    "storeBase64": False,
                    "fullPage": full_page,
                    "downloadsDir": str(self.config.screenshot_dir),
                },
            )
            return self.config.screenshot_dir / f"{name}.png"
        except FATAL_ERRORS:
            raise
        except Exception as e:
            logger.warning(f"Screenshot {name} failed: {e}")
            return None

    async def get_visible_text(self) -> str:
        result = await self.call_tool("playwright_get_visible_text", {})
        return "\n".join(result_texts(result))

    async def close(self):
        try:
            await self.call_tool("playwright_close", {})
        except FATAL_ERRORS:
            logger.debug("Browser already gone while closing")
        except ToolError as e:
            logger.warning(f"Closing browser failed: {e}")
        self.url = ""

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def is_visible(self, selector: str) -> bool:
        payload = await self.evaluate(dom_queries.selector_probe(selector))
        return isinstance(payload, dict) and bool(payload.get("visible") or payload.get("found"))

    async def wait_for(self, selector: str, timeout: float = 5.0) -> bool:
        """Poll until the selector matches, raising StepTimeoutError otherwise"""
        deadline = time.monotonic() + timeout
        while True:
            if await self.is_visible(selector):
                return True
            if time.monotonic() >= deadline:
                raise StepTimeoutError(f"Timed out after {timeout:g}s waiting for {selector}")
            await asyncio.sleep(self.poll_interval)

    async def get_current_url(self) -> str:
        payload = await self.evaluate(dom_queries.current_url())
        if isinstance(payload, dict) and isinstance(payload.get("url"), str) and payload["url"]:
            self.url = payload["url"]
        return self.url

    async def wait_for_url(
        self, pattern: Union[str, Pattern], timeout: float = 5.0, different_from: Optional[str] = None
    ) -> str:
        """Poll the current URL until it matches pattern (and has left different_from)"""
        regex = re.compile(pattern) if isinstance(pattern, str) else pattern
        deadline = time.monotonic() + timeout
        while True:
            url = await self.get_current_url()
            if regex.search(url or "") and url != different_from:
                return url
            if time.monotonic() >= deadline:
                raise StepTimeoutError(f"URL did not match {regex.pattern} within {timeout:g}s (at {url})")
            await asyncio.sleep(self.poll_interval)

    async def page_info(self) -> Dict[str, str]:
        payload = await self.evaluate(dom_queries.page_info())
        return payload if isinstance(payload, dict) else {}

    async def go_back(self, fallback_url: Optional[str] = None):
        """History back, re-navigating to fallback_url if the page did not move"""
        before = self.url
        try:
            await self.evaluate(dom_queries.history_back())
            await asyncio.sleep(self.poll_interval)
            after = await self.get_current_url()
            if after and after != before:
                return
        except ToolError as e:
            logger.debug(f"history.back failed: {e}")
        if fallback_url:
            await self.navigate(fallback_url)
