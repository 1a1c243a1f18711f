"""
Suggestion Decision Engine

Reads the site's autocomplete rows, classifies them, picks a strategy for the
requested route and carries it out.
"""

import asyncio
import logging
import re
from typing import Any, Dict, List, Optional, Sequence, Tuple

from .browser import dom_queries
from .browser.browser_engine import BrowserEngine
from .exceptions import FATAL_ERRORS, ScoutError
from .models import (
    Platform,
    RouteType,
    Strategy,
    StrategyDecision,
    Suggestion,
    SuggestionType,
)
from .site_config import MOBBIN, SiteProfile

logger = logging.getLogger(__name__)

EXACT_LABEL_CONFIDENCE = 0.9
HINT_CONFIDENCE = 0.75
GENERAL_CONFIDENCE = 0.5
KEYWORD_BONUS = 0.05

# Checked in this order; the first match decides the type
CLASSIFICATION_RULES: Tuple[Tuple[SuggestionType, Tuple[str, ...], Tuple[str, ...]], ...] = (
    (
        SuggestionType.TEXT_SEARCH,
        ("text in screenshot", "press enter to search"),
        ("search for", "text in", "press enter"),
    ),
    (
        SuggestionType.UI_ELEMENT,
        ("ui element", "ui elements"),
        ("button", "component", "modal", "dropdown", "tab bar"),
    ),
    (
        SuggestionType.FLOW,
        ("flow", "flows", "search in flows"),
        ("onboarding", "signup", "sign up", "registration", "checkout", "flow"),
    ),
    (
        SuggestionType.SCREEN,
        ("screen", "screens", "search in screens"),
        ("screen", "login", "dashboard", "settings", "profile page"),
    ),
    (
        SuggestionType.APP,
        ("app", "apps", "site", "sites"),
        ("bank", "chase", "wells", "america", "finance", "credit", "paypal", "venmo", "wallet"),
    ),
)


def _contains_word(haystack: str, phrase: str) -> bool:
    return re.search(r"(?<![\w-])" + re.escape(phrase) + r"(?![\w-])", haystack) is not None


def classify_suggestion(record: Dict[str, Any], keyword: str) -> Optional[Suggestion]:
    """Turn one raw row record into a typed Suggestion (None when unusable)"""
    text = str(record.get("text") or "").strip()
    if not text:
        return None
    label = str(record.get("label") or "").strip()
    lower_text = text.lower()
    lower_label = label.lower()

    kind, confidence = SuggestionType.GENERAL, GENERAL_CONFIDENCE
    for rule_type, labels, hints in CLASSIFICATION_RULES:
        if lower_label and any(_contains_word(lower_label, word) for word in labels):
            kind, confidence = rule_type, EXACT_LABEL_CONFIDENCE
            break
        if any(hint in lower_text for hint in hints):
            kind, confidence = rule_type, HINT_CONFIDENCE
            break

    if keyword and keyword.strip().lower() in lower_text:
        confidence = min(1.0, confidence + KEYWORD_BONUS)

    try:
        index = int(record.get("index", 0))
    except (TypeError, ValueError):
        index = 0

    return Suggestion(
        text=text,
        type=kind,
        selector=str(record.get("selector") or ""),
        confidence=round(confidence, 4),
        index=index,
        source=str(record.get("source") or ""),
        label=label,
    )


def _best(suggestions: Sequence[Suggestion]) -> Suggestion:
    # max() keeps the first of equal elements, so ties go to DOM order
    return max(suggestions, key=lambda s: s.confidence)


def select_best_suggestion(
    suggestions: Sequence[Suggestion],
    target_route: Any,
    keyword: str = "",
    search_surface_available: bool = True,
) -> StrategyDecision:
    """Decide how to get from the autocomplete list to results for a route"""
    route = RouteType.parse(target_route)

    if not search_surface_available:
        return StrategyDecision(
            strategy=Strategy.FALLBACK_BROWSE,
            reasoning=f"Search surface unavailable; browsing {route.value} directly",
            route=route,
        )

    if not suggestions:
        return StrategyDecision(
            strategy=Strategy.TEXT_SEARCH,
            reasoning=f'No suggestions for "{keyword}"; searching the text directly',
            route=route,
        )

    wanted = route.suggestion_type
    matching = [s for s in suggestions if s.type == wanted]
    if matching:
        best = _best(matching)
        return StrategyDecision(
            strategy=Strategy.CLICK_SUGGESTION,
            suggestion=best,
            reasoning=f'Found {wanted.value} suggestion: "{best.text}" with confidence {best.confidence}',
            route=route,
        )

    best = _best(suggestions)
    return StrategyDecision(
        strategy=Strategy.CLICK_SUGGESTION,
        suggestion=best,
        reasoning=(
            f'No {wanted.value} suggestion; using best available "{best.text}" '
            f"({best.type.value}, confidence {best.confidence})"
        ),
        route=route,
    )


class SuggestionDecisionEngine:
    """Discovery and execution half of suggestion handling"""

    def __init__(self, engine: BrowserEngine, site: SiteProfile = MOBBIN):
        self.engine = engine
        self.site = site
        self.config = engine.config

    async def discover_suggestions(self, keyword: str) -> List[Suggestion]:
        """Read and classify the visible autocomplete rows"""
        if self.config.suggestion_settle_seconds:
            await asyncio.sleep(self.config.suggestion_settle_seconds)

        payload = await self.engine.evaluate(dom_queries.discover_suggestions())
        if isinstance(payload, dict):
            payload = payload.get("items") or payload.get("suggestions")
        if not isinstance(payload, list):
            logger.warning(f"Suggestion query for '{keyword}' returned no usable payload")
            return []

        suggestions = []
        for record in payload[: dom_queries.MAX_SUGGESTIONS]:
            if not isinstance(record, dict):
                continue
            suggestion = classify_suggestion(record, keyword)
            if suggestion is not None:
                suggestions.append(suggestion)

        logger.info(f"💡 {len(suggestions)} suggestions for '{keyword}'")
        for s in suggestions:
            logger.debug(f"   {s.index + 1}. {s.text!r} ({s.type.value}, {s.confidence})")
        return suggestions

    def select_best_suggestion(
        self,
        suggestions: Sequence[Suggestion],
        target_route: Any,
        keyword: str = "",
        search_surface_available: bool = True,
    ) -> StrategyDecision:
        return select_best_suggestion(suggestions, target_route, keyword, search_surface_available)

    async def execute_suggestion_strategy(
        self,
        decision: StrategyDecision,
        debug: bool = False,
        platform: Platform = Platform.IOS,
    ) -> bool:
        """Carry out a decision; False means it could not be done"""
        try:
            if decision.strategy == Strategy.CLICK_SUGGESTION and decision.suggestion:
                ok = await self._click_suggestion(decision.suggestion)
            elif decision.strategy == Strategy.FALLBACK_BROWSE:
                await self.engine.navigate(self.site.browse_url(decision.route, platform))
                ok = True
            else:
                await self.engine.press_key("Enter", self.site.selectors.search_input)
                ok = True
        except FATAL_ERRORS:
            raise
        except ScoutError as e:
            logger.warning(f"Strategy {decision.strategy.value} failed: {e}")
            ok = False

        if debug:
            await self.engine.screenshot(f"strategy-{decision.strategy.value}-{decision.route.value}")
        return ok

    async def _click_suggestion(self, suggestion: Suggestion) -> bool:
        if suggestion.selector:
            try:
                await self.engine.click(suggestion.selector)
                logger.info(f"👆 Clicked suggestion '{suggestion.text}'")
                return True
            except FATAL_ERRORS:
                raise
            except ScoutError as e:
                logger.warning(f"Clicking suggestion '{suggestion.text}' failed, trying keyboard: {e}")

        input_selector = self.site.selectors.search_input
        await self.engine.evaluate(dom_queries.focus_element(input_selector))
        for _ in range(suggestion.index + 1):
            await self.engine.press_key("ArrowDown", input_selector)
        await self.engine.press_key("Enter", input_selector)
        logger.info(f"⌨️ Selected suggestion '{suggestion.text}' with the keyboard")
        return True
