"""Unit tests for declared cookie manifest lookup."""

import json

import httpx
import pytest

from consentkeeper.config import ManifestConfig
from consentkeeper.cookies.domains import domains_related, manifest_host, normalize_domain
from consentkeeper.cookies.manifest import ManifestLoader

MANIFEST = {
    "domain": "example.com",
    "last_updated": "2024-05-01",
    "cookies": [
        {"name": "_fbp", "category": "advertising", "vendor": "Meta", "cross_site": True},
        {"name": "sid", "category": "essential", "vendor": "Example", "essential": True},
    ],
}


class TestManifestLoader:
    """Test bundled and website-provided manifests."""

    def setup_method(self):
        """Set up test fixtures."""
        self.requested = []

    def _client(self, routes):
        def handler(request: httpx.Request) -> httpx.Response:
            self.requested.append(str(request.url))
            if request.url.path in routes:
                return routes[request.url.path]
            return httpx.Response(404)

        return httpx.AsyncClient(transport=httpx.MockTransport(handler))

    @pytest.mark.asyncio
    async def test_bundled_manifest(self, tmp_path):
        (tmp_path / "example.com.json").write_text(json.dumps(MANIFEST))
        loader = ManifestLoader(ManifestConfig(bundled_dir=tmp_path), client=self._client({}))

        manifest = await loader.load("https://www.example.com/news")

        assert manifest.source == "bundled"
        assert manifest.find("_fbp").vendor == "Meta"
        assert manifest.vendor_count == 2
        assert manifest.essential_count == 1
        assert manifest.cross_site_count == 1
        assert self.requested == []

    @pytest.mark.asyncio
    async def test_website_provided_manifest(self):
        client = self._client({"/cookies.json": httpx.Response(200, json=MANIFEST)})
        loader = ManifestLoader(ManifestConfig(), client=client)

        manifest = await loader.load("https://example.com/")

        assert manifest.source == "website_provided"
        assert self.requested == [
            "https://example.com/.well-known/cookies.json",
            "https://example.com/cookies.json",
        ]

    @pytest.mark.asyncio
    async def test_results_are_cached_per_host(self):
        loader = ManifestLoader(ManifestConfig(), client=self._client({}))

        assert await loader.load("https://example.com/a") is None
        assert await loader.load("https://www.example.com/b") is None
        assert len(self.requested) == 2

    @pytest.mark.asyncio
    async def test_malformed_manifest_is_ignored(self):
        client = self._client({
            "/.well-known/cookies.json": httpx.Response(200, json={"domain": "example.com"}),
            "/cookies.json": httpx.Response(200, text="<html>not json</html>"),
        })
        loader = ManifestLoader(ManifestConfig(), client=client)

        assert await loader.load("https://example.com/") is None

    @pytest.mark.asyncio
    async def test_disabled(self):
        loader = ManifestLoader(ManifestConfig(enabled=False), client=self._client({}))
        assert await loader.load("https://example.com/") is None
        assert self.requested == []


class TestDomains:

    def test_normalize(self):
        assert normalize_domain(".Example.COM") == "example.com"
        assert normalize_domain(None) == ""

    def test_related_on_label_boundary(self):
        assert domains_related("ads.example.com", ".example.com")
        assert domains_related("example.com", "shop.example.com")
        assert not domains_related("badexample.com", "example.com")
        assert not domains_related("", "example.com")

    def test_manifest_host(self):
        assert manifest_host("www.example.com") == "example.com"
        assert manifest_host("uk.example.com") == "example.com"
        assert manifest_host("shop.example.com") == "shop.example.com"
