"""
Authentication against the target site

Login is best effort: without credentials, or when login fails, searches
continue unauthenticated.
"""

import logging
from typing import Optional

from .browser.browser_engine import BrowserEngine
from .config import ScoutConfig
from .exceptions import FATAL_ERRORS, ScoutError
from .site_config import MOBBIN, SiteProfile
from .workflow import WorkflowExecutor, render_steps

logger = logging.getLogger(__name__)


class AuthenticationManager:
    """Detects the login state and runs the login workflow once per session"""

    def __init__(
        self,
        engine: BrowserEngine,
        site: SiteProfile = MOBBIN,
        config: Optional[ScoutConfig] = None,
        executor: Optional[WorkflowExecutor] = None,
    ):
        self.engine = engine
        self.site = site
        self.config = config or engine.config
        self.executor = executor or WorkflowExecutor(engine)
        self.authenticated = False
        self.login_attempted = False

    def reset(self):
        self.authenticated = False
        self.login_attempted = False

    async def check_status(self) -> Optional[bool]:
        """
        True when logged in, False when a login link is showing, None when
        the page shows neither indicator.
        """
        selectors = self.site.selectors
        if await self.engine.is_visible(selectors.login_link):
            return False
        if await self.engine.is_visible(selectors.logged_in_indicator):
            return True
        return None

    async def ensure_authenticated(self, navigate: bool = True, debug: bool = False) -> bool:
        """Make sure the session is logged in if possible; returns the final state"""
        if self.authenticated:
            logger.debug("Already authenticated in this session")
            return True

        if navigate:
            await self.engine.navigate(self.site.base_url)

        status = await self.check_status()
        if status is None:
            status = self.config.assume_logged_in_without_login_button
            logger.info(f"🔍 No login indicators found; treating page as {'logged in' if status else 'logged out'}")

        if status:
            logger.info("✅ Already logged in")
            self.authenticated = True
            return True

        if not self.config.has_credentials:
            logger.info("🔓 No credentials configured, continuing unauthenticated")
            return False

        if self.login_attempted:
            logger.info("Login already failed in this session, continuing unauthenticated")
            return False

        self.login_attempted = True
        logger.info("🔑 Logging in...")
        steps = render_steps(
            self.site.login_steps(), email=self.config.email, password=self.config.password
        )
        try:
            await self.executor.run(steps, name="login", debug=debug)
        except FATAL_ERRORS:
            raise
        except ScoutError as e:
            logger.warning(f"⚠️ Login failed, continuing unauthenticated: {e}")
            return False

        self.authenticated = True
        logger.info("🎉 Logged in")
        return True
