"""
Data model shared by the search components
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from .exceptions import CaptureWarning


class RouteType(str, Enum):
    APPS = "apps"
    FLOWS = "flows"
    SCREENS = "screens"

    @classmethod
    def parse(cls, value: str) -> "RouteType":
        """Accept singular and plural spellings ("app", "apps", ...)"""
        text = str(value.value if isinstance(value, Enum) else value).strip().lower()
        if not text.endswith("s"):
            text += "s"
        return cls(text)

    @property
    def suggestion_type(self) -> "SuggestionType":
        return SuggestionType(self.value[:-1])


class Platform(str, Enum):
    IOS = "ios"
    WEB = "web"
    ANDROID = "android"


class SuggestionType(str, Enum):
    APP = "app"
    FLOW = "flow"
    SCREEN = "screen"
    UI_ELEMENT = "ui-element"
    TEXT_SEARCH = "text-search"
    GENERAL = "general"


class Strategy(str, Enum):
    CLICK_SUGGESTION = "click-suggestion"
    TEXT_SEARCH = "text-search"
    FALLBACK_BROWSE = "fallback-browse"


class PhaseStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


def _plain(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: _plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    if isinstance(value, BaseException):
        return str(value)
    return value


@dataclass
class Suggestion:
    """One classified autocomplete row"""
    text: str
    type: SuggestionType
    selector: str
    confidence: float
    index: int
    source: str = ""
    label: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return _plain(asdict(self))


@dataclass
class StrategyDecision:
    strategy: Strategy
    reasoning: str
    route: RouteType
    suggestion: Optional[Suggestion] = None

    def to_dict(self) -> Dict[str, Any]:
        return _plain(asdict(self))


@dataclass
class CapturedURL:
    """A captured result link with its provenance"""
    url: str
    title: str
    type: RouteType
    keyword: str
    platform: Platform
    relevance_score: float
    description: str = ""
    captured_at: datetime = field(default_factory=datetime.now)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return _plain(asdict(self))


@dataclass
class CaptureResult:
    urls: List[CapturedURL] = field(default_factory=list)
    warnings: List[CaptureWarning] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.urls)

    def warn(self, message: str):
        self.warnings.append(CaptureWarning(message))


@dataclass
class RouteExecutionResult:
    route_type: RouteType
    keyword: str
    platform: Platform
    captured_urls: List[CapturedURL] = field(default_factory=list)
    execution_time: float = 0.0  # seconds
    success: bool = False
    errors: List[str] = field(default_factory=list)
    strategy: str = ""
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        data = _plain(asdict(self))
        data["captured_urls"] = [u.to_dict() for u in self.captured_urls]
        return data


@dataclass
class ComprehensiveRouteReport:
    results: List[RouteExecutionResult] = field(default_factory=list)
    total_captured_urls: int = 0
    total_execution_time: float = 0.0
    summary: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "results": [r.to_dict() for r in self.results],
            "total_captured_urls": self.total_captured_urls,
            "total_execution_time": self.total_execution_time,
            "summary": self.summary,
        }


@dataclass
class RouteSettings:
    """Per-route switch used by comprehensive route runs"""
    enabled: bool = False
    platform: Platform = Platform.IOS
    max_results: int = 5


@dataclass
class SearchPhase:
    """One progress event of a progressive run"""
    phase: str
    message: str
    status: PhaseStatus
    results: List[CapturedURL] = field(default_factory=list)
    duration: float = 0.0
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        data = _plain(asdict(self))
        data["results"] = [u.to_dict() for u in self.results]
        return data


class ContentTypeNeeds(BaseModel):
    needs_comprehensive_apps: bool = True
    needs_cross_app_flows: bool = False
    needs_specific_screens: bool = False


class PlatformPriority(BaseModel):
    ios_apps: float = Field(default=1.0, ge=0.0, le=1.0)
    web_apps: float = Field(default=0.0, ge=0.0, le=1.0)


class ComprehensiveStrategy(BaseModel):
    """What a progressive run should search for"""

    keywords: List[str]
    platform: str = "ios"
    primary_path: str = "apps"
    content_type_needs: ContentTypeNeeds = Field(default_factory=ContentTypeNeeds)
    platform_priority: PlatformPriority = Field(default_factory=PlatformPriority)
    max_results_per_keyword: int = Field(default=5, ge=1)

    @field_validator("keywords")
    @classmethod
    def _keywords_not_blank(cls, value):
        cleaned = [k.strip() for k in value if k and k.strip()]
        if not cleaned:
            raise ValueError("at least one keyword is required")
        return cleaned

    @field_validator("platform")
    @classmethod
    def _known_platform(cls, value):
        value = value.lower()
        if value not in ("ios", "web", "both"):
            raise ValueError(f"platform must be ios, web or both, not {value!r}")
        return value


@dataclass
class ComprehensiveResults:
    app_pages: List[CapturedURL] = field(default_factory=list)
    web_apps: List[CapturedURL] = field(default_factory=list)
    flow_collections: List[CapturedURL] = field(default_factory=list)
    screen_patterns: List[CapturedURL] = field(default_factory=list)
    curated: List[CapturedURL] = field(default_factory=list)
    summary: Dict[str, int] = field(default_factory=dict)
    total_duration: float = 0.0
    phases: List[SearchPhase] = field(default_factory=list)
    authenticated: bool = False
    success: bool = False
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "app_pages": [u.to_dict() for u in self.app_pages],
            "web_apps": [u.to_dict() for u in self.web_apps],
            "flow_collections": [u.to_dict() for u in self.flow_collections],
            "screen_patterns": [u.to_dict() for u in self.screen_patterns],
            "curated": [u.to_dict() for u in self.curated],
            "summary": dict(self.summary),
            "total_duration": self.total_duration,
            "phases": [p.to_dict() for p in self.phases],
            "authenticated": self.authenticated,
            "success": self.success,
            "error": self.error,
        }
