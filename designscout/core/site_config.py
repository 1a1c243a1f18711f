"""
Site profile for Mobbin: selectors, capture profiles and workflow templates
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Pattern, Tuple

from .models import Platform, RouteType
from .workflow import StepAction, WorkflowStep


class CapturePattern(str, Enum):
    NAVIGATE = "navigate"  # result opens a new page; come back afterwards
    MODAL = "modal"  # result opens a dialog whose URL changes; dismiss afterwards


@dataclass(frozen=True)
class CaptureProfile:
    """How to find, open and close the results of one route"""
    route: RouteType
    pattern: CapturePattern
    cell_selector: str
    url_pattern: Pattern
    exclude_patterns: Tuple[Pattern, ...] = ()
    source: str = ""

    def accepts(self, href: str) -> bool:
        """Whether a candidate href can be a result of this route"""
        if not href or any(p.search(href) for p in self.exclude_patterns):
            return False
        return True

    def canonical(self, url: str) -> str:
        """Cut a URL right after the part the route pattern identifies"""
        match = self.url_pattern.search(url or "")
        return url[: match.end()] if match else url


def _patterns(*raw: str) -> Tuple[Pattern, ...]:
    return tuple(re.compile(p) for p in raw)


@dataclass
class SiteSelectors:
    # Authentication
    login_link: str = 'a:has-text("Log in"), button:has-text("Log in")'
    see_other_options: str = 'button:has-text("See other options"), a:has-text("See other options")'
    email_input: str = 'input[name="email"]'
    password_input: str = 'input[type="password"], input[name="password"]'
    submit_button: str = 'form button[type="submit"]'
    logged_in_indicator: str = 'button:has-text("Sign out"), [data-testid="user-menu"], .user-avatar, .profile-menu'
    post_login_indicator: str = (
        'button:has-text("Search on iOS"), input[placeholder*="search" i], [data-testid="user-menu"]'
    )

    # Search surface
    search_buttons: Dict[Platform, str] = field(
        default_factory=lambda: {
            Platform.IOS: "text=Search on iOS...",
            Platform.WEB: "text=Search on Web...",
            Platform.ANDROID: "text=Search on Android...",
        }
    )
    search_input: str = 'input[type="text"]'

    # Results
    dialog: str = '[role="dialog"], .modal'
    modal_close_buttons: Tuple[str, ...] = (
        '[data-testid="close-modal"]',
        ".modal-close",
        ".close-button",
        '[aria-label="Close"]',
    )


@dataclass
class SiteProfile:
    """Everything site specific the search components need"""
    name: str = "Mobbin"
    base_url: str = "https://mobbin.com"
    selectors: SiteSelectors = field(default_factory=SiteSelectors)
    capture_profiles: Dict[RouteType, CaptureProfile] = field(default_factory=dict)

    def __post_init__(self):
        self.base_url = self.base_url.rstrip("/")
        if not self.capture_profiles:
            self.capture_profiles = default_capture_profiles()

    def profile_for(self, route: RouteType) -> CaptureProfile:
        return self.capture_profiles[RouteType.parse(route)]

    def browse_url(self, route: RouteType, platform: Platform = Platform.IOS) -> str:
        """Category browse page, used when no search strategy works"""
        route = RouteType.parse(route)
        platform = Platform(platform)
        return f"{self.base_url}/discover/{route.value}/{platform.value}/latest"

    # ------------------------------------------------------------------
    # Workflow templates
    # ------------------------------------------------------------------

    def open_search_steps(self, platform: Platform) -> List[WorkflowStep]:
        platform = Platform(platform)
        return [
            WorkflowStep(StepAction.NAVIGATE, value=self.base_url, description="Navigate to homepage", timeout_ms=30000),
            WorkflowStep(StepAction.WAIT_FOR, selector="body", description="Wait for homepage", timeout_ms=5000),
            WorkflowStep(
                StepAction.CLICK,
                selector=(self.selectors.search_buttons[platform], 'button:has-text("Search on")'),
                description=f"Open {platform.value} search",
                timeout_ms=5000,
                retries=1,
            ),
            WorkflowStep(
                StepAction.WAIT_FOR,
                selector=self.selectors.search_input,
                description="Wait for search input",
                timeout_ms=5000,
            ),
        ]

    def type_keyword_steps(self) -> List[WorkflowStep]:
        return [
            WorkflowStep(
                StepAction.FILL,
                selector=self.selectors.search_input,
                value="{{keyword}}",
                description="Type keyword",
            ),
        ]

    def login_steps(self) -> List[WorkflowStep]:
        s = self.selectors
        return [
            WorkflowStep(StepAction.CLICK, selector=s.login_link, description="Click Log in", timeout_ms=5000),
            WorkflowStep(StepAction.WAIT_FOR, selector=s.see_other_options, description="Wait for login options", timeout_ms=5000),
            WorkflowStep(StepAction.CLICK, selector=s.see_other_options, description="Click See other options"),
            WorkflowStep(StepAction.FILL, selector=s.email_input, value="{{email}}", description="Enter email"),
            WorkflowStep(StepAction.CLICK, selector=s.submit_button, description="Continue with email"),
            WorkflowStep(
                StepAction.FILL,
                selector=s.password_input,
                value="{{password}}",
                description="Enter password",
                timeout_ms=10000,
            ),
            WorkflowStep(StepAction.CLICK, selector=s.submit_button, description="Submit password"),
            WorkflowStep(
                StepAction.WAIT_FOR,
                selector=s.post_login_indicator,
                description="Wait for logged-in page",
                timeout_ms=10000,
            ),
        ]


def default_capture_profiles() -> Dict[RouteType, CaptureProfile]:
    non_app = _patterns(r"/apps/", r"/brand", r"/profile")
    return {
        RouteType.APPS: CaptureProfile(
            route=RouteType.APPS,
            pattern=CapturePattern.NAVIGATE,
            cell_selector='a[href*="/apps/"]',
            url_pattern=re.compile(r"/apps/[^/?#]+"),
            exclude_patterns=_patterns(r"/brand", r"/profile", r"/users/", r"/collections"),
            source="apps_page_navigation",
        ),
        RouteType.FLOWS: CaptureProfile(
            route=RouteType.FLOWS,
            pattern=CapturePattern.MODAL,
            cell_selector='div[data-sentry-component="FlowCell"] a',
            url_pattern=re.compile(r"/flows/[a-f0-9-]+"),
            exclude_patterns=non_app,
            source="flows_page_modal",
        ),
        RouteType.SCREENS: CaptureProfile(
            route=RouteType.SCREENS,
            pattern=CapturePattern.MODAL,
            cell_selector='div[data-sentry-component="ScreenCell"] a',
            url_pattern=re.compile(r"/screens/[a-f0-9-]+"),
            exclude_patterns=non_app,
            source="screens_page_modal",
        ),
    }


MOBBIN = SiteProfile()
