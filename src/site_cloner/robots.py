from __future__ import annotations

import logging
from urllib.parse import urlparse

from .errors import FetchError
from .http_client import HttpClient

logger = logging.getLogger(__name__)


class RobotsRules:
    """Very small robots.txt parser.

    Honors the ``*`` group and any group naming our user agent, with
    Allow/Disallow prefix matching (longest prefix wins, Allow first).
    """

    def __init__(self, raw_text: str, *, user_agent: str = "*") -> None:
        self._allow: list[str] = []
        self._disallow: list[str] = []

        agent_token = user_agent.split("/", 1)[0].strip().lower()
        active = False
        in_agent_list = False
        for line in raw_text.splitlines():
            if "#" in line:
                line = line.split("#", 1)[0]
            line = line.strip()
            if not line:
                continue

            key, _, value = line.partition(":")
            key = key.strip().lower()
            value = value.strip()

            if key == "user-agent":
                name = value.lower()
                matched = name == "*" or (bool(agent_token) and name == agent_token)
                # Consecutive User-agent lines share one group.
                active = (active and in_agent_list) or matched
                in_agent_list = True
                continue
            in_agent_list = False

            if not active:
                continue

            if key == "disallow" and value:
                self._disallow.append(value)
            elif key == "allow" and value:
                self._allow.append(value)

        self._allow.sort(key=len, reverse=True)
        self._disallow.sort(key=len, reverse=True)

    def can_fetch(self, url: str) -> bool:
        path = urlparse(url).path or "/"
        for allow_prefix in self._allow:
            if path.startswith(allow_prefix):
                return True
        for disallow_prefix in self._disallow:
            if path.startswith(disallow_prefix):
                return False
        return True


def fetch_robots(http: HttpClient, base_url: str, *, user_agent: str = "*") -> RobotsRules | None:
    parsed = urlparse(base_url)
    if not parsed.netloc:
        return None
    robots_url = f"{parsed.scheme or 'http'}://{parsed.netloc}/robots.txt"
    try:
        res = http.get(robots_url)
    except FetchError as e:
        logger.warning("Could not fetch %s: %s", robots_url, e)
        return None
    if res.status_code >= 400:
        logger.debug("No robots.txt at %s (HTTP %s)", robots_url, res.status_code)
        return None
    return RobotsRules(res.body.decode("utf-8", errors="replace"), user_agent=user_agent)
