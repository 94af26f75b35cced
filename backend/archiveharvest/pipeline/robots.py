"""Robots policy parsing and the pre-harvest seed gate.

Resolution follows the longest-match rule: among every allow and disallow
pattern matching a path, the longest pattern decides, and ``allow`` wins a tie.
Patterns are prefix matches and may contain ``*`` wildcards; a trailing ``$``
anchors the pattern to the end of the path.
"""
from __future__ import annotations

import logging
import math
import re
from collections.abc import Iterable
from dataclasses import dataclass, field
from urllib.parse import urlsplit, urlunsplit

from archiveharvest.pipeline.fetcher import CachedFetcher, FetchError

logger = logging.getLogger(__name__)

_comment_re = re.compile(r"#.*")


class RobotsDisallowedError(Exception):
    def __init__(self, url: str, *, robots_url: str, user_agent: str) -> None:
        super().__init__(f"robots.txt at {robots_url} blocks {urlsplit(url).path or '/'} for user-agent {user_agent}")
        self.url = url
        self.robots_url = robots_url
        self.user_agent = user_agent


@dataclass
class AgentRules:
    allow: list[str] = field(default_factory=list)
    disallow: list[str] = field(default_factory=list)


@dataclass
class RobotsPolicy:
    rules: dict[str, AgentRules]

    def rules_for(self, user_agent: str) -> AgentRules | None:
        """Pick the rule group for ``user_agent``, falling back to ``*``."""
        lower = user_agent.strip().lower()
        product = lower.split("/", 1)[0].strip()
        for key in (lower, product):
            if key and key in self.rules:
                return self.rules[key]
        return self.rules.get("*")

    def is_allowed(self, path: str, user_agent: str) -> bool:
        rules = self.rules_for(user_agent)
        if rules is None:
            return True
        return is_path_allowed(path or "/", rules)


def parse_robots(content: str) -> RobotsPolicy:
    rules: dict[str, AgentRules] = {}
    current_agents: list[str] = []
    in_rules = False
    for raw_line in content.splitlines():
        line = _comment_re.sub("", raw_line).strip()
        if not line:
            current_agents = []
            in_rules = False
            continue
        directive, sep, value = line.partition(":")
        if not sep:
            continue
        directive = directive.strip().lower()
        value = value.strip()
        if directive == "user-agent":
            agent = value.lower()
            # Consecutive User-agent lines share the rules that follow them.
            if in_rules:
                current_agents = []
                in_rules = False
            current_agents.append(agent)
            rules.setdefault(agent, AgentRules())
        elif directive in ("allow", "disallow"):
            in_rules = True
            for agent in current_agents or ["*"]:
                group = rules.setdefault(agent, AgentRules())
                (group.allow if directive == "allow" else group.disallow).append(value)
    return RobotsPolicy(rules=rules)


def pattern_matches(path: str, pattern: str) -> bool:
    if not pattern:
        return False
    if pattern in ("*", "/*"):
        return True
    anchored = pattern.endswith("$")
    if anchored:
        pattern = pattern[:-1]
    regex = ".*".join(re.escape(segment) for segment in pattern.split("*"))
    if anchored:
        regex += r"\Z"
    return re.match(regex, path) is not None


def _match_length(pattern: str) -> float:
    return math.inf if pattern == "*" else float(len(pattern))


def is_path_allowed(path: str, rules: AgentRules) -> bool:
    decision: tuple[bool, float] | None = None
    for pattern in rules.disallow:
        if pattern_matches(path, pattern):
            length = _match_length(pattern)
            if decision is None or length > decision[1]:
                decision = (False, length)
    for pattern in rules.allow:
        if pattern_matches(path, pattern):
            length = _match_length(pattern)
            if decision is None or length >= decision[1]:
                decision = (True, length)
    return True if decision is None else decision[0]


def robots_url_for(url: str) -> str:
    parts = urlsplit(url)
    return urlunsplit((parts.scheme, parts.netloc, "/robots.txt", "", ""))


async def load_robots_policy(fetcher: CachedFetcher, robots_url: str) -> RobotsPolicy | None:
    """Fetch and parse a robots file. ``None`` means no usable policy (fail open)."""
    try:
        body = await fetcher.fetch(robots_url, use_cache=False)
    except FetchError as e:
        logger.warning("Could not check robots.txt (%s): %s; treating all paths as allowed", robots_url, e)
        return None
    return parse_robots(body.decode("utf-8", errors="replace"))


async def ensure_seeds_allowed(
    fetcher: CachedFetcher, seed_urls: Iterable[str]
) -> dict[str, RobotsPolicy | None]:
    """Consult each seed origin's policy once; raise before any page fetch if a seed is blocked.

    Returns the policies keyed by robots URL, in first-seen seed order. An
    origin whose policy could not be fetched maps to ``None`` (fail open).
    """
    by_origin: dict[str, list[str]] = {}
    for url in seed_urls:
        by_origin.setdefault(robots_url_for(url), []).append(url)

    policies: dict[str, RobotsPolicy | None] = {}
    for robots_url in by_origin:
        policies[robots_url] = await load_robots_policy(fetcher, robots_url)

    for robots_url, urls in by_origin.items():
        policy = policies[robots_url]
        if policy is None:
            continue
        for url in urls:
            parts = urlsplit(url)
            path = parts.path or "/"
            if parts.query:
                path = f"{path}?{parts.query}"
            if not policy.is_allowed(path, fetcher.user_agent):
                raise RobotsDisallowedError(url, robots_url=robots_url, user_agent=fetcher.user_agent)
        logger.info("robots.txt at %s allows all %d seeds", robots_url, len(urls))
    return policies
