"""Desktop user agents for request and browser-context rotation.

The pool is fixed at import time. Rotation avoids handing out any of the last
few strings again so consecutive requests to one storefront differ.
"""

import logging
import random
from collections import deque
from dataclasses import dataclass
from typing import Deque, List, Optional

logger = logging.getLogger(__name__)

_WEBKIT = "AppleWebKit/537.36 (KHTML, like Gecko)"
_CHROMIUM_VERSIONS = range(118, 125)

_OS_TOKENS = {
    "windows": "Windows NT 10.0; Win64; x64",
    "mac": "Macintosh; Intel Mac OS X 10_15_7",
    "linux": "X11; Linux x86_64",
}

# (browser, platforms, template, versions)
_FAMILIES = (
    ("chrome", ("windows", "mac", "linux"),
     "Mozilla/5.0 ({os}) " + _WEBKIT + " Chrome/{v}.0.0.0 Safari/537.36", _CHROMIUM_VERSIONS),
    ("edge", ("windows",),
     "Mozilla/5.0 ({os}) " + _WEBKIT + " Chrome/{v}.0.0.0 Safari/537.36 Edg/{v}.0.0.0", _CHROMIUM_VERSIONS),
    ("firefox", ("windows",),
     "Mozilla/5.0 ({os}; rv:{v}.0) Gecko/20100101 Firefox/{v}.0", range(118, 125)),
    ("safari", ("mac",),
     "Mozilla/5.0 ({os}) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/{v}.0 Safari/605.1.15", range(16, 18)),
)


@dataclass
class UserAgentInfo:
    user_agent: str
    browser: str  # chrome, edge, firefox, safari
    platform: str  # windows, mac, linux


def build_user_agents() -> List[UserAgentInfo]:
    return [
        UserAgentInfo(template.format(os=_OS_TOKENS[platform], v=version), browser, platform)
        for browser, platforms, template, versions in _FAMILIES
        for platform in platforms
        for version in versions
    ]


class UserAgentPool:
    """Fixed pool of realistic user agents with recent-use avoidance."""

    def __init__(self, recent_size: int = 5, rng: Optional[random.Random] = None):
        self._rng = rng or random.Random()
        self._agents = build_user_agents()
        self._recent: Deque[str] = deque(maxlen=recent_size)
        logger.debug(f"User agent pool ready with {len(self._agents)} agents")

    def __len__(self) -> int:
        return len(self._agents)

    def get_random(self, browser: Optional[str] = None) -> str:
        """
        Pick a user agent that was not handed out recently.

        Args:
            browser: Restrict to one family, e.g. 'chrome' to match a Chromium context
        """
        candidates = [a for a in self._agents if browser in (None, a.browser)] or self._agents
        fresh = [a for a in candidates if a.user_agent not in self._recent] or candidates
        choice = self._rng.choice(fresh).user_agent
        self._recent.append(choice)
        return choice


user_agent_pool = UserAgentPool()
