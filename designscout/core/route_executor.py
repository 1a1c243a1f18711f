"""
Route Executor

One route is one (category, keyword) search: open the search surface, type
the keyword, pick a suggestion strategy, land on results and capture URLs.
Every route is failure isolated; errors end up in the result, not raised.
"""

import asyncio
import logging
import time
from typing import Any, Dict, List, Optional, Sequence

from .auth import AuthenticationManager
from .browser.browser_engine import BrowserEngine
from .exceptions import FATAL_ERRORS, ScoutError, StrategyExecutionError
from .models import (
    CapturedURL,
    ComprehensiveRouteReport,
    Platform,
    RouteExecutionResult,
    RouteSettings,
    RouteType,
    Strategy,
    StrategyDecision,
)
from .session_manager import BrowserSessionManager, get_session_manager
from .site_config import SiteProfile
from .suggestions import SuggestionDecisionEngine
from .url_capture import URLCaptureManager
from .workflow import StepAction, WorkflowExecutor, WorkflowStep, render_steps

logger = logging.getLogger(__name__)


class RouteExecutor:
    """
    Runs apps / flows / screens searches against the site.

    Usage:
        executor = RouteExecutor(engine)
        result = await executor.execute_route("apps", "banking", platform="ios", max_results=5)
    """

    def __init__(
        self,
        engine: BrowserEngine,
        site: Optional[SiteProfile] = None,
        session_manager: Optional[BrowserSessionManager] = None,
        auth: Optional[AuthenticationManager] = None,
    ):
        self.engine = engine
        self.config = engine.config
        self.site = site or SiteProfile(base_url=engine.config.base_url)
        self.session_manager = session_manager
        self.workflows = WorkflowExecutor(engine)
        self.suggestions = SuggestionDecisionEngine(engine, self.site)
        self.capture = URLCaptureManager(engine, self.site)
        self.auth = auth or AuthenticationManager(engine, self.site, executor=self.workflows)

    # ------------------------------------------------------------------
    # Single routes
    # ------------------------------------------------------------------

    async def execute_route(
        self,
        route: Any,
        keyword: str,
        platform: Any = Platform.IOS,
        max_results: Optional[int] = None,
        debug: bool = False,
    ) -> RouteExecutionResult:
        """Run one route; never raises for page or protocol trouble"""
        route = RouteType.parse(route)
        platform = Platform(platform)
        max_results = self.config.default_max_results if max_results is None else max_results
        started = time.monotonic()
        result = RouteExecutionResult(route_type=route, keyword=keyword, platform=platform)

        logger.info(f"🚀 {route.value} route for '{keyword}' on {platform.value}")
        try:
            surface = await self._open_search(keyword, platform, debug)

            suggestions = []
            if surface:
                suggestions = await self.suggestions.discover_suggestions(keyword)

            decision = self.suggestions.select_best_suggestion(
                suggestions, route, keyword, search_surface_available=surface
            )
            logger.info(f"🧭 {decision.strategy.value}: {decision.reasoning}")
            decision = await self._execute_strategy(decision, platform, debug)
            result.strategy = f"{decision.strategy.value} - {decision.reasoning}"

            await self._wait_for_results(debug)
            result.captured_urls = await self._capture(route, keyword, platform, max_results, decision, result)
            result.success = True
        except Exception as e:
            logger.error(f"❌ {route.value} route failed for '{keyword}': {e}")
            result.errors.append(str(e))
            result.captured_urls = []
            result.strategy = result.strategy or "failed"
            result.success = False
        finally:
            result.execution_time = time.monotonic() - started

        logger.info(
            f"🏁 {route.value} route for '{keyword}': {len(result.captured_urls)} URLs "
            f"in {result.execution_time:.1f}s"
        )
        return result

    async def execute_apps_route(self, keyword: str, platform: Any = Platform.IOS, max_results: Optional[int] = None, debug: bool = False):
        return await self.execute_route(RouteType.APPS, keyword, platform, max_results, debug)

    async def execute_flows_route(self, keyword: str, platform: Any = Platform.IOS, max_results: Optional[int] = None, debug: bool = False):
        return await self.execute_route(RouteType.FLOWS, keyword, platform, max_results, debug)

    async def execute_screens_route(self, keyword: str, platform: Any = Platform.IOS, max_results: Optional[int] = None, debug: bool = False):
        return await self.execute_route(RouteType.SCREENS, keyword, platform, max_results, debug)

    # ------------------------------------------------------------------
    # Comprehensive
    # ------------------------------------------------------------------

    async def execute_comprehensive(
        self,
        keywords: Sequence[str],
        route_config: Dict[Any, RouteSettings],
        debug: bool = False,
    ) -> ComprehensiveRouteReport:
        """Every enabled route for every keyword, sequentially, holding the browser session"""
        settings = {RouteType.parse(k): v for k, v in route_config.items()}
        manager = self.session_manager or get_session_manager()
        results: List[RouteExecutionResult] = []
        started = time.monotonic()

        async with manager.session("comprehensive-routes"):
            for i, keyword in enumerate(keywords):
                logger.info(f"🔑 Keyword {i + 1}/{len(keywords)}: '{keyword}'")
                for route in RouteType:
                    config = settings.get(route)
                    if config is None or not config.enabled:
                        continue
                    results.append(
                        await self.execute_route(route, keyword, config.platform, config.max_results, debug)
                    )
                if i < len(keywords) - 1 and self.config.keyword_delay_seconds:
                    logger.info(f"Waiting {self.config.keyword_delay_seconds:g}s before next keyword...")
                    await asyncio.sleep(self.config.keyword_delay_seconds)

        total_urls = sum(len(r.captured_urls) for r in results)
        succeeded = sum(1 for r in results if r.success)
        summary = (
            f"Comprehensive search completed: {total_urls} URLs captured from {len(keywords)} keywords. "
            f"{succeeded} successful routes, {len(results) - succeeded} failed routes."
        )
        logger.info(f"📊 {summary}")
        return ComprehensiveRouteReport(
            results=results,
            total_captured_urls=total_urls,
            total_execution_time=time.monotonic() - started,
            summary=summary,
        )

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    async def _open_search(self, keyword: str, platform: Platform, debug: bool) -> bool:
        """Open the search surface and type the keyword; False if there is no surface"""
        steps = self.site.open_search_steps(platform)
        await self.workflows.run(steps[:2], name="open-home", debug=debug)
        await self.auth.ensure_authenticated(navigate=False, debug=debug)

        try:
            await self.workflows.run(steps[2:], name="open-search", debug=debug)
        except FATAL_ERRORS:
            raise
        except ScoutError as e:
            logger.warning(f"Search surface not available: {e}")
            return False

        await self.workflows.run(
            render_steps(self.site.type_keyword_steps(), keyword=keyword), name="type-keyword", debug=debug
        )
        return True

    async def _execute_strategy(self, decision: StrategyDecision, platform: Platform, debug: bool) -> StrategyDecision:
        if await self.suggestions.execute_suggestion_strategy(decision, debug, platform):
            return decision

        if decision.strategy == Strategy.CLICK_SUGGESTION:
            fallback = StrategyDecision(
                strategy=Strategy.TEXT_SEARCH,
                reasoning=f"Clicking suggestion failed; searching the text instead ({decision.reasoning})",
                route=decision.route,
            )
            logger.warning("Suggestion click failed, falling back to text search")
            if await self.suggestions.execute_suggestion_strategy(fallback, debug, platform):
                return fallback

        raise StrategyExecutionError(f"Failed to execute suggestion strategy {decision.strategy.value}")

    async def _wait_for_results(self, debug: bool):
        await self.workflows.run(
            [
                WorkflowStep(StepAction.WAIT_FOR, selector="body", description="Wait for results page", timeout_ms=8000),
                WorkflowStep(
                    StepAction.WAIT,
                    value=self.config.step_settle_seconds,
                    description="Let results render",
                    timeout_ms=int(self.config.step_settle_seconds * 1000) + 5000,
                ),
            ],
            name="wait-results",
            debug=debug,
        )

    async def _capture(
        self,
        route: RouteType,
        keyword: str,
        platform: Platform,
        max_results: int,
        decision: StrategyDecision,
        result: RouteExecutionResult,
    ) -> List[CapturedURL]:
        captured: List[CapturedURL] = []

        # An app suggestion usually lands straight on that app's page
        if route == RouteType.APPS and decision.strategy == Strategy.CLICK_SUGGESTION and max_results > 0:
            landing = await self.capture.capture_current_page(route, keyword, platform, decision.suggestion)
            if landing is not None:
                captured.append(landing)

        remaining = max_results - len(captured)
        if remaining > 0:
            outcome = await self.capture.capture(
                route,
                keyword,
                platform,
                remaining,
                start_position=len(captured),
                exclude_urls=[c.url for c in captured],
            )
            captured.extend(outcome.urls)
            result.warnings.extend(str(w) for w in outcome.warnings)
        return captured
