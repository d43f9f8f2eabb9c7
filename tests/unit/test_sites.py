"""
Unit tests for site configuration.

Tests cover:
- Prefix construction and path normalization
- Parsing site specs
- Prefix lookup
"""

import pytest

from cms.folio_server.publish import Site, SiteRegistry
from cms.folio_server.publish.sites import normalize_path


class TestSite:
    """Tests for Site."""

    def test_prefix(self):
        """Prefix is host plus path."""
        assert Site(slug="www", host="example.com").prefix == "example.com"
        assert Site(slug="blog", host="example.com", path="blog/").prefix == "example.com/blog"

    def test_normalize_path(self):
        """Paths gain a leading slash and lose trailing ones."""
        assert normalize_path("blog/") == "/blog"
        assert normalize_path("/") == ""
        assert normalize_path(None) == ""

    def test_missing_host(self):
        """Sites need a host."""
        with pytest.raises(ValueError, match="Missing host"):
            Site(slug="www", host="")

    def test_from_spec(self):
        """slug=host/path specs are parsed."""
        site = Site.from_spec("blog=example.com/blog")

        assert site.slug == "blog"
        assert site.host == "example.com"
        assert site.path == "/blog"


class TestSiteRegistry:
    """Tests for SiteRegistry."""

    def test_from_prefix_prefers_longest(self):
        """Nested sites win over their parent host."""
        www = Site(slug="www", host="example.com")
        blog = Site(slug="blog", host="example.com", path="/blog")
        registry = SiteRegistry([www, blog])

        assert registry.from_prefix("example.com") is www
        assert registry.from_prefix("example.com/blog") is blog
        assert registry.from_prefix("example.com/blog/2024") is blog
        assert registry.from_prefix("example.com/shop") is www
        assert registry.from_prefix("other.com") is None

    def test_duplicate_slug(self):
        """Slugs are unique."""
        registry = SiteRegistry([Site(slug="www", host="example.com")])

        with pytest.raises(ValueError, match="already configured"):
            registry.add(Site(slug="www", host="example.org"))

        assert len(registry) == 1
        assert registry.get("www").host == "example.com"
