"""
URL Capture Manager

Opens result cells one by one, records the URL each one leads to and returns
the browser to the results page. Shortfalls and per-result failures are
reported as warnings; the caller always gets whatever was captured.
"""

import asyncio
import logging
from typing import Any, Dict, Iterable, List, Optional, Set

from .browser import dom_queries
from .browser.browser_engine import BrowserEngine
from .exceptions import FATAL_ERRORS, ScoutError
from .models import CapturedURL, CaptureResult, Platform, RouteType, Suggestion
from .site_config import MOBBIN, CapturePattern, CaptureProfile, SiteProfile

logger = logging.getLogger(__name__)


def relevance_for_position(position: int) -> float:
    """Earlier results rank higher: 0.95, 0.90, ... floored at 0.5"""
    return round(max(0.5, 0.95 - 0.05 * position), 4)


class URLCaptureManager:
    """Capture clean result links for one route at a time"""

    def __init__(self, engine: BrowserEngine, site: SiteProfile = MOBBIN):
        self.engine = engine
        self.site = site
        self.modal_timeout = 3.0
        self.url_timeout = 5.0
        self.settle = engine.config.step_settle_seconds / 2

    async def capture(
        self,
        route: Any,
        keyword: str,
        platform: Platform = Platform.IOS,
        max_results: int = 5,
        start_position: int = 0,
        exclude_urls: Iterable[str] = (),
    ) -> CaptureResult:
        """Capture up to max_results unique URLs from the current results page"""
        profile = self.site.profile_for(route)
        platform = Platform(platform)
        result = CaptureResult()
        if max_results <= 0:
            return result

        results_url = await self.engine.get_current_url()
        seen: Set[str] = {profile.canonical(u) for u in exclude_urls}
        candidates = await self._candidates(profile, seen)
        logger.info(f"🎯 {len(candidates)} {profile.route.value} candidates for '{keyword}' (want {max_results})")

        for candidate in candidates:
            if len(result.urls) >= max_results:
                break
            try:
                url = await self._open(profile, candidate, results_url)
                canonical = profile.canonical(url)
                if canonical in seen:
                    result.warn(f"Candidate {candidate['index'] + 1} led to already captured {canonical}")
                else:
                    info = await self.engine.page_info()
                    position = start_position + len(result.urls)
                    result.urls.append(
                        self._record(profile, canonical, info, candidate, keyword, platform, position)
                    )
                    seen.add(canonical)
                    logger.info(f"✅ Captured {profile.route.value} #{position + 1}: {canonical}")
            except FATAL_ERRORS:
                raise
            except ScoutError as e:
                logger.warning(f"Candidate {candidate['index'] + 1} failed: {e}")
                result.warn(f"Candidate {candidate['index'] + 1} ({candidate.get('href')}) failed: {e}")
            finally:
                await self._recover(profile, results_url, result)

        if len(result.urls) < max_results:
            result.warn(
                f"Captured {len(result.urls)} of {max_results} {profile.route.value} for '{keyword}'"
            )
        return result

    async def capture_current_page(
        self,
        route: Any,
        keyword: str,
        platform: Platform = Platform.IOS,
        suggestion: Optional[Suggestion] = None,
    ) -> Optional[CapturedURL]:
        """Record the page a suggestion click landed on, if it is a result page"""
        profile = self.site.profile_for(route)
        url = await self.engine.get_current_url()
        if not profile.url_pattern.search(url or ""):
            return None

        info = await self.engine.page_info()
        candidate = {"index": 0, "text": suggestion.text if suggestion else "", "href": url}
        record = self._record(profile, profile.canonical(url), info, candidate, keyword, Platform(platform), 0)
        record.metadata["source"] = "suggestion_click"
        if suggestion:
            record.metadata["suggestion_text"] = suggestion.text
            record.metadata["suggestion_confidence"] = suggestion.confidence
        logger.info(f"✅ Captured landing page: {record.url}")
        return record

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    async def _candidates(self, profile: CaptureProfile, seen: Set[str]) -> List[Dict[str, Any]]:
        payload = await self.engine.evaluate(dom_queries.result_candidates(profile.cell_selector))
        if not isinstance(payload, list):
            return []

        candidates = []
        hrefs: Set[str] = set(seen)
        for item in payload:
            if not isinstance(item, dict) or not item.get("selector"):
                continue
            href = str(item.get("href") or "")
            if not profile.accepts(href):
                continue
            key = profile.canonical(href)
            if key in hrefs:
                continue
            hrefs.add(key)
            candidates.append({**item, "index": len(candidates), "href": href})
        return candidates

    async def _open(self, profile: CaptureProfile, candidate: Dict[str, Any], results_url: str) -> str:
        await self.engine.click(candidate["selector"])
        if profile.pattern == CapturePattern.MODAL:
            try:
                await self.engine.wait_for(self.site.selectors.dialog, timeout=self.modal_timeout)
            except ScoutError as e:
                if isinstance(e, FATAL_ERRORS):
                    raise
                logger.debug(f"No dialog element after click: {e}")
        return await self.engine.wait_for_url(
            profile.url_pattern, timeout=self.url_timeout, different_from=results_url
        )

    async def _recover(self, profile: CaptureProfile, results_url: str, result: CaptureResult):
        try:
            if profile.pattern == CapturePattern.MODAL:
                await self._dismiss_modal(profile, results_url)
            else:
                current = await self.engine.get_current_url()
                if current != results_url:
                    await self.engine.go_back(fallback_url=results_url)
        except FATAL_ERRORS:
            raise
        except ScoutError as e:
            logger.warning(f"Could not return to results page: {e}")
            result.warn(f"Recovery to {results_url} failed: {e}")

    async def _dismiss_modal(self, profile: CaptureProfile, results_url: str):
        for _ in range(2):
            if not await self._modal_open(profile):
                return
            await self.engine.press_key("Escape")
            await asyncio.sleep(self.settle)

        for selector in self.site.selectors.modal_close_buttons:
            if not await self._modal_open(profile):
                return
            try:
                await self.engine.click(selector)
                await asyncio.sleep(self.settle)
            except FATAL_ERRORS:
                raise
            except ScoutError:
                continue

        if await self._modal_open(profile) and results_url:
            logger.warning("Modal would not close, reloading results page")
            await self.engine.navigate(results_url)

    async def _modal_open(self, profile: CaptureProfile) -> bool:
        url = await self.engine.get_current_url()
        return bool(profile.url_pattern.search(url or ""))

    def _record(
        self,
        profile: CaptureProfile,
        url: str,
        info: Dict[str, Any],
        candidate: Dict[str, Any],
        keyword: str,
        platform: Platform,
        position: int,
    ) -> CapturedURL:
        title = (
            str(info.get("heading") or "").strip()
            or str(candidate.get("text") or "").strip()
            or str(info.get("title") or "").strip()
            or f"Unknown {profile.route.value[:-1].title()}"
        )
        return CapturedURL(
            url=url,
            title=title,
            description=str(info.get("description") or ""),
            type=profile.route,
            keyword=keyword,
            platform=platform,
            relevance_score=relevance_for_position(position),
            metadata={
                "position": position + 1,
                "source": profile.source,
                "candidate_index": candidate.get("index"),
            },
        )
