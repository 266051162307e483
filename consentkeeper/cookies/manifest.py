"""Declared cookie manifest lookup.

A manifest is a JSON document in which a site lists the cookies it sets
together with their category, vendor and purpose. It is looked up in a
bundled directory first (``<host>.json``) and then on the site itself at
the configured well-known paths. Manifests are consumed read-only and are
not verified.
"""

import json
import logging
from typing import Dict, Optional
from urllib.parse import urlparse

import aiofiles
import httpx
from pydantic import ValidationError

from ..config import ManifestConfig
from .domains import manifest_host
from .models import CookieManifest

logger = logging.getLogger(__name__)


class ManifestLoader:
    """Finds and caches the declared manifest for a page's host."""

    def __init__(
        self,
        config: Optional[ManifestConfig] = None,
        client: Optional[httpx.AsyncClient] = None
    ):
        self.config = config or ManifestConfig()
        self.client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout=self.config.timeout_s),
            follow_redirects=True
        )
        self._cache: Dict[str, Optional[CookieManifest]] = {}

    def _parse(self, data: object, origin: str) -> Optional[CookieManifest]:
        if not isinstance(data, dict) or not data.get('domain') or not isinstance(data.get('cookies'), list):
            logger.debug(f"Ignoring manifest from {origin}: missing domain or cookies list")
            return None
        try:
            manifest = CookieManifest.model_validate(data)
        except ValidationError as e:
            logger.warning(f"Invalid cookie manifest from {origin}: {e}")
            return None
        return manifest

    async def _load_bundled(self, host: str) -> Optional[CookieManifest]:
        if self.config.bundled_dir is None:
            return None

        path = self.config.bundled_dir / f"{host}.json"
        if not path.exists():
            return None

        try:
            async with aiofiles.open(path, 'r') as f:
                data = json.loads(await f.read())
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Failed to read bundled manifest {path}: {e}")
            return None

        manifest = self._parse(data, str(path))
        if manifest is not None:
            manifest.source = "bundled"
        return manifest

    async def _load_remote(self, origin: str) -> Optional[CookieManifest]:
        for path in self.config.well_known_paths:
            url = f"{origin}{path}"
            try:
                response = await self.client.get(
                    url,
                    headers={"Accept": "application/json", "Cache-Control": "no-cache"}
                )
                if response.status_code != 200:
                    continue
                manifest = self._parse(response.json(), url)
            except (httpx.HTTPError, ValueError) as e:
                logger.debug(f"No manifest at {url}: {e}")
                continue

            if manifest is not None:
                manifest.source = "website_provided"
                return manifest
        return None

    async def load(self, page_url: str) -> Optional[CookieManifest]:
        """Return the manifest covering ``page_url``, or None.

        Results, including misses, are cached per host.
        """
        if not self.config.enabled:
            return None

        parsed = urlparse(page_url)
        if not parsed.hostname:
            return None

        host = manifest_host(parsed.hostname)
        if host in self._cache:
            return self._cache[host]

        manifest = await self._load_bundled(host)
        if manifest is None and parsed.scheme in ("http", "https"):
            manifest = await self._load_remote(f"{parsed.scheme}://{parsed.netloc}")

        if manifest is not None:
            logger.info(
                f"Cookie manifest found for {host} ({manifest.source}): "
                f"{len(manifest.cookies)} cookies declared, last updated {manifest.last_updated}"
            )
        else:
            logger.info(f"No cookie manifest for {host}, using local classification")

        self._cache[host] = manifest
        return manifest

    async def aclose(self) -> None:
        await self.client.aclose()
