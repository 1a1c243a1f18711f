"""
Progressive Search Engine

Runs a whole search strategy as a sequence of phases inside one exclusive
browser session, reporting each phase to subscribers as it starts and ends.

Phases, in order:
    authentication -> analysis -> apps_ios? -> apps_web? -> flows? -> screens? -> curation

Category phases only run when the strategy asks for them. The first phase
that fails ends the run; the session is always released.
"""

import asyncio
import inspect
import logging
import time
from dataclasses import replace
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from pydantic import ValidationError

from .auth import AuthenticationManager
from .browser.browser_engine import BrowserEngine
from .models import (
    CapturedURL,
    ComprehensiveResults,
    ComprehensiveStrategy,
    PhaseStatus,
    Platform,
    RouteType,
    SearchPhase,
)
from .route_executor import RouteExecutor
from .session_manager import BrowserSessionManager, get_session_manager
from .site_config import SiteProfile

logger = logging.getLogger(__name__)

PhaseCallback = Callable[[SearchPhase], Union[None, Awaitable[None]]]

PRIORITY_THRESHOLD = 0.5

PHASE_MESSAGES = {
    "authentication": "🔐 Checking authentication status...",
    "analysis": "🧠 Understanding your needs...",
    "apps_ios": "📱 Searching for relevant iOS apps...",
    "apps_web": "💻 Searching web applications...",
    "flows": "🔄 Searching for flows...",
    "screens": "🎨 Searching for screens...",
    "curation": "✨ Curating links to help you...",
}


class PhaseFailed(Exception):
    """Raised inside the engine to end a run at a failed phase"""

    def __init__(self, phase: str, errors: List[str]):
        self.phase = phase
        self.errors = errors
        super().__init__(f"Phase {phase} failed: {'; '.join(errors) or 'unknown error'}")


def curate(*buckets: List[CapturedURL]) -> List[CapturedURL]:
    """Merge buckets, keep the first record per URL, order by relevance (stable)"""
    seen = set()
    merged = []
    for bucket in buckets:
        for record in bucket:
            if record.url in seen:
                continue
            seen.add(record.url)
            merged.append(record)
    return sorted(merged, key=lambda r: r.relevance_score, reverse=True)


def summary_text(results: ComprehensiveResults) -> str:
    s = results.summary
    return (
        f"Found {s.get('total', 0)} relevant resources: {s.get('app_pages', 0)} app pages, "
        f"{s.get('web_apps', 0)} web apps, {s.get('flow_collections', 0)} flow collections, "
        f"and {s.get('screen_patterns', 0)} screen patterns."
    )


class ProgressiveSearchEngine:
    """
    Usage:
        engine = ProgressiveSearchEngine(browser)
        engine.subscribe(lambda phase: print(phase.phase, phase.status.value))
        results = await engine.run(ComprehensiveStrategy(keywords=["banking"]))
    """

    def __init__(
        self,
        browser: BrowserEngine,
        site: Optional[SiteProfile] = None,
        session_manager: Optional[BrowserSessionManager] = None,
        route_executor: Optional[RouteExecutor] = None,
    ):
        self.browser = browser
        self.config = browser.config
        self.site = site or SiteProfile(base_url=browser.config.base_url)
        self.session_manager = session_manager
        if route_executor is None:
            self.auth = AuthenticationManager(browser, self.site)
            route_executor = RouteExecutor(browser, self.site, session_manager=session_manager, auth=self.auth)
        else:
            self.auth = route_executor.auth
        self.routes = route_executor
        self._subscribers: List[PhaseCallback] = []

    # ------------------------------------------------------------------
    # Observers
    # ------------------------------------------------------------------

    def subscribe(self, callback: PhaseCallback) -> Callable[[], None]:
        """Register a phase listener; returns a function that removes it"""
        self._subscribers.append(callback)

        def unsubscribe():
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    async def _emit(self, phase: SearchPhase, extra: Optional[PhaseCallback]):
        snapshot = replace(phase, results=list(phase.results), errors=list(phase.errors))
        for callback in self._subscribers + ([extra] if extra else []):
            try:
                outcome = callback(snapshot)
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception as e:
                logger.error(f"Phase subscriber failed: {e}")

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    async def run(
        self,
        strategy: Union[ComprehensiveStrategy, Dict[str, Any]],
        debug: bool = False,
        on_phase: Optional[PhaseCallback] = None,
    ) -> ComprehensiveResults:
        """Execute a strategy; failures are reported in the result, never raised"""
        results = ComprehensiveResults()
        started = time.monotonic()

        try:
            if not isinstance(strategy, ComprehensiveStrategy):
                strategy = ComprehensiveStrategy.model_validate(strategy)
        except ValidationError as e:
            results.error = f"Invalid strategy: {e}"
            logger.error(f"❌ {results.error}")
            return results

        manager = self.session_manager or get_session_manager()
        token = await manager.acquire("progressive-search")
        self.auth.reset()
        try:
            await self._phase("authentication", results, on_phase, lambda: self._authenticate(results, debug))
            await self._phase("analysis", results, on_phase, lambda: self._analyze(strategy))

            needs = strategy.content_type_needs
            priority = strategy.platform_priority
            if needs.needs_comprehensive_apps and priority.ios_apps > PRIORITY_THRESHOLD:
                await self._phase(
                    "apps_ios", results, on_phase,
                    lambda: self._search(RouteType.APPS, Platform.IOS, strategy, results.app_pages, debug),
                )
            if needs.needs_comprehensive_apps and priority.web_apps > PRIORITY_THRESHOLD:
                await self._phase(
                    "apps_web", results, on_phase,
                    lambda: self._search(RouteType.APPS, Platform.WEB, strategy, results.web_apps, debug),
                )
            category_platform = Platform.WEB if strategy.platform == "web" else Platform.IOS
            if needs.needs_cross_app_flows:
                await self._phase(
                    "flows", results, on_phase,
                    lambda: self._search(RouteType.FLOWS, category_platform, strategy, results.flow_collections, debug),
                )
            if needs.needs_specific_screens:
                await self._phase(
                    "screens", results, on_phase,
                    lambda: self._search(RouteType.SCREENS, category_platform, strategy, results.screen_patterns, debug),
                )
            await self._phase("curation", results, on_phase, lambda: self._curate(results))
            results.success = True
        except PhaseFailed as e:
            results.error = str(e)
            logger.error(f"❌ Progressive search stopped: {e}")
        except Exception as e:
            results.error = f"Unexpected failure: {e}"
            logger.exception("❌ Progressive search crashed")
        finally:
            manager.release(token)
            results.total_duration = time.monotonic() - started

        if results.success:
            logger.info(f"📊 {summary_text(results)} ({results.total_duration:.1f}s)")
        return results

    async def _phase(
        self,
        name: str,
        results: ComprehensiveResults,
        on_phase: Optional[PhaseCallback],
        action: Callable[[], Awaitable[List[CapturedURL]]],
    ):
        phase = SearchPhase(phase=name, message=PHASE_MESSAGES[name], status=PhaseStatus.RUNNING)
        logger.info(phase.message)
        await self._emit(phase, on_phase)

        started = time.monotonic()
        try:
            phase.results = await action()
            phase.status = PhaseStatus.COMPLETED
        except PhaseFailed as e:
            phase.status = PhaseStatus.FAILED
            phase.errors = e.errors
        except Exception as e:
            phase.status = PhaseStatus.FAILED
            phase.errors = [str(e)]
        phase.duration = time.monotonic() - started

        results.phases.append(phase)
        await self._emit(phase, on_phase)
        if phase.status == PhaseStatus.FAILED:
            raise PhaseFailed(name, phase.errors)

    # ------------------------------------------------------------------
    # Phase actions
    # ------------------------------------------------------------------

    async def _authenticate(self, results: ComprehensiveResults, debug: bool) -> List[CapturedURL]:
        results.authenticated = await self.auth.ensure_authenticated(navigate=True, debug=debug)
        return []

    async def _analyze(self, strategy: ComprehensiveStrategy) -> List[CapturedURL]:
        needs = strategy.content_type_needs
        logger.info(
            f"Strategy: keywords={strategy.keywords} platform={strategy.platform} "
            f"primary={strategy.primary_path} apps={needs.needs_comprehensive_apps} "
            f"flows={needs.needs_cross_app_flows} screens={needs.needs_specific_screens} "
            f"max={strategy.max_results_per_keyword}"
        )
        return []

    async def _search(
        self,
        route: RouteType,
        platform: Platform,
        strategy: ComprehensiveStrategy,
        bucket: List[CapturedURL],
        debug: bool,
    ) -> List[CapturedURL]:
        found: List[CapturedURL] = []
        errors: List[str] = []
        succeeded = 0

        for i, keyword in enumerate(strategy.keywords):
            outcome = await self.routes.execute_route(
                route, keyword, platform, strategy.max_results_per_keyword, debug
            )
            if outcome.success:
                succeeded += 1
                found.extend(outcome.captured_urls)
            else:
                errors.extend(f"{keyword}: {err}" for err in outcome.errors)
            if i < len(strategy.keywords) - 1 and self.config.keyword_delay_seconds:
                await asyncio.sleep(self.config.keyword_delay_seconds)

        if succeeded == 0:
            raise PhaseFailed(f"{route.value}/{platform.value}", errors)

        bucket.extend(found)
        return found

    async def _curate(self, results: ComprehensiveResults) -> List[CapturedURL]:
        results.curated = curate(
            results.app_pages, results.web_apps, results.flow_collections, results.screen_patterns
        )
        results.summary = {
            "app_pages": len(results.app_pages),
            "web_apps": len(results.web_apps),
            "flow_collections": len(results.flow_collections),
            "screen_patterns": len(results.screen_patterns),
            "total": len(results.curated),
        }
        return results.curated
