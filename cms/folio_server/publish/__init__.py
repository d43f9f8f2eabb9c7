"""
Publishing for Folio.

- PageService: page lifecycle and the publish orchestrator
- UriService: public url pointers
- Site / SiteRegistry: public hosts and their publish rules
"""

from .pages import PageService, map_layout_to_page_data
from .sites import Site, SiteRegistry
from .uris import UriService
from .urls import PublishTarget, RuleRejected, resolve_publish_url

__all__ = [
    "PageService",
    "map_layout_to_page_data",
    "Site",
    "SiteRegistry",
    "UriService",
    "PublishTarget",
    "RuleRejected",
    "resolve_publish_url",
]
