"""
Sites: the public hosts records are published under.

A site's prefix (host, plus path when the site lives below the root) is the
first part of every address it owns:

    Site(slug="blog", host="example.com", path="/blog").prefix
    -> "example.com/blog"

Sites also carry the site-supplied parts of the publish workflow: url rules,
publish modifiers, and webhooks.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

# (address, page data, context) -> url; raise to reject
PublishRule = Callable[..., Any]
# (address, page data, meta so far) -> mapping merged into publish meta
PublishModifier = Callable[..., Any]


def normalize_path(path: Optional[str]) -> str:
    """"blog/" -> "/blog"; empty and "/" -> ""."""
    if not path:
        return ""
    if not path.startswith("/"):
        path = "/" + path
    return path.rstrip("/")


@dataclass
class Site:
    """One public site.

    Attributes:
        slug: Short site identifier
        host: Public host name
        path: Optional path the site lives under
        protocol: Public protocol
        port: Public port, if non-standard
        publish_rules: Url rules tried in order when publishing a page
        publish_modifiers: Hooks adding fields to published pages
        webhooks: Event name -> webhook urls
    """

    slug: str
    host: str
    path: str = ""
    protocol: str = "http"
    port: Optional[int] = None
    publish_rules: List[PublishRule] = field(default_factory=list)
    publish_modifiers: List[PublishModifier] = field(default_factory=list)
    webhooks: Dict[str, List[str]] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.host:
            raise ValueError(f"Missing host in site config: {self.slug}")
        self.path = normalize_path(self.path)

    @property
    def prefix(self) -> str:
        return f"{self.host}{self.path}" if len(self.path) > 1 else self.host

    @classmethod
    def from_spec(cls, spec: str) -> Site:
        """Parse "slug=host[/path]"."""
        slug, _, location = spec.partition("=")
        host, _, path = location.partition("/")
        return cls(slug=slug.strip(), host=host.strip(), path=path.strip())


class SiteRegistry:
    """Sites known to this process, looked up by slug or address prefix."""

    def __init__(self, sites: Iterable[Site] = ()) -> None:
        self._sites: Dict[str, Site] = {}
        for site in sites:
            self.add(site)

    def add(self, site: Site) -> None:
        if site.slug in self._sites:
            raise ValueError(f"Site '{site.slug}' is already configured")
        self._sites[site.slug] = site
        logger.debug(f"Configured site: {site.slug} ({site.prefix})")

    def get(self, slug: str) -> Optional[Site]:
        return self._sites.get(slug)

    def from_prefix(self, prefix: str) -> Optional[Site]:
        """Site owning prefix: exact match first, then the longest enclosing prefix."""
        best: Optional[Site] = None
        for site in self._sites.values():
            if site.prefix == prefix:
                return site
            if prefix.startswith(site.prefix + "/") and (
                best is None or len(site.prefix) > len(best.prefix)
            ):
                best = site
        return best

    def __iter__(self):
        return iter(list(self._sites.values()))

    def __len__(self) -> int:
        return len(self._sites)
