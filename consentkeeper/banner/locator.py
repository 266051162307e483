"""Consent prompt locator.

Finds the single most likely consent prompt in a page snapshot. Strategies
run in priority order and the first hit wins:

1. Known platform containers (visible match is enough).
2. Generic containers whose id, class, role or test id carry privacy terms.
3. The same generic containers inside shadow roots.
4. Positioned ``div``/``section``/``aside`` elements.
5. ``div``/``section``/``aside`` elements stacked above page overlays.

Strategies 2 to 5 only accept candidates passing :meth:`PromptLocator.is_plausible`.
"""

import logging
from typing import Iterable, Optional, Sequence

from . import keywords as kw
from .dom import PageNode, PageSnapshot
from .matcher import contains_any

logger = logging.getLogger(__name__)

POSITIONED = ("fixed", "sticky", "absolute")


class PromptLocator:
    """Heuristic search for the consent prompt of a page."""

    def __init__(
        self,
        platform_selectors: Sequence[str] = kw.PLATFORM_CONTAINER_SELECTORS,
        generic_selectors: Sequence[str] = kw.GENERIC_CONTAINER_SELECTORS,
        container_keywords: Sequence[str] = kw.CONTAINER_KEYWORDS,
        control_keywords: Sequence[str] = kw.ACCEPT_KEYWORDS + kw.REJECT_KEYWORDS + kw.MANAGE_KEYWORDS,
        exclude_keywords: Sequence[str] = kw.EXCLUDE_KEYWORDS
    ):
        self.platform_selectors = platform_selectors
        self.generic_selectors = generic_selectors
        self.container_keywords = container_keywords
        self.control_keywords = control_keywords
        self.exclude_keywords = exclude_keywords

    def locate(self, snapshot: PageSnapshot) -> Optional[PageNode]:
        """Return the most likely consent prompt or None."""
        for selector in self.platform_selectors:
            node = snapshot.select_one(selector)
            if node is not None and node.is_visible():
                logger.debug(f"Platform container found: {selector}")
                return node

        for selector in self.generic_selectors:
            node = self._first_plausible(snapshot.select(selector), snapshot)
            if node is not None:
                logger.debug(f"Generic container found: {selector}")
                return node

        for host in snapshot.root.iter_shadow_hosts():
            for selector in self.generic_selectors:
                node = self._first_plausible(host.select_in_shadow(selector), snapshot)
                if node is not None:
                    logger.debug(f"Shadow root container found under <{host.tag}>")
                    return node

        sections = snapshot.select(kw.POSITIONED_CONTAINER_SELECTOR)

        node = self._first_plausible((n for n in sections if n.position in POSITIONED), snapshot)
        if node is not None:
            logger.debug(f"Positioned container found: {node!r}")
            return node

        node = self._first_plausible(
            (n for n in sections if (n.z_index or 0) > kw.OVERLAY_Z_INDEX), snapshot
        )
        if node is not None:
            logger.debug(f"Overlay container found: {node!r}")
        return node

    def _first_plausible(self, nodes: Iterable[PageNode], snapshot: PageSnapshot) -> Optional[PageNode]:
        for node in nodes:
            if self.is_plausible(node, snapshot):
                return node
        return None

    def is_plausible(self, node: PageNode, snapshot: PageSnapshot) -> bool:
        """Whether ``node`` looks like a consent prompt."""
        if not node.is_visible():
            return False
        if node.width < kw.MIN_BANNER_WIDTH or node.height < kw.MIN_BANNER_HEIGHT:
            return False

        positioned = node.position in POSITIONED
        large = node.width > snapshot.viewport_width * kw.MIN_VIEWPORT_SHARE
        stacked = (node.z_index or 0) > kw.MIN_PLAUSIBLE_Z_INDEX
        if not (positioned or large or stacked):
            return False

        text = node.text_content.lower()
        if not (contains_any(text, self.container_keywords)
                or contains_any(node.markup_text, self.container_keywords)):
            return False
        if len(text) < kw.MIN_TEXT_LENGTH:
            return False
        if contains_any(text, self.exclude_keywords):
            return False

        controls = node.select(kw.INTERACTIVE_SELECTOR)
        if not controls:
            return False

        for control in controls:
            control_text = control.text_content.lower().strip()
            if contains_any(control_text, self.exclude_keywords):
                continue
            if contains_any(control_text, self.control_keywords):
                return True
        return False


_default_locator = PromptLocator()


def locate_prompt(snapshot: PageSnapshot) -> Optional[PageNode]:
    """Locate the consent prompt with the default keyword tables."""
    return _default_locator.locate(snapshot)
