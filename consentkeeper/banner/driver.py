"""Page drivers.

The resolver works against the abstract :class:`PageDriver`; the Playwright
driver captures the live DOM into a :class:`PageSnapshot` and maps node
references back to elements when a control has to be invoked.
"""

import itertools
import logging
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Dict, List, Optional

from playwright.async_api import Error as PlaywrightError, Page

from ..cookies.models import CookieRecord
from ..errors import DriverError
from .dom import PageNode, PageSnapshot

logger = logging.getLogger(__name__)

MutationCallback = Callable[[], Any]
Unsubscribe = Callable[[], Awaitable[None]]


class PageDriver(ABC):
    """Operations the resolver and the page session need from a page."""

    @property
    @abstractmethod
    def url(self) -> str:
        pass

    @abstractmethod
    async def snapshot(self) -> PageSnapshot:
        """Capture the rendered element tree.

        Raises:
            DriverError: If the page could not be captured
        """
        pass

    @abstractmethod
    async def invoke(self, node: PageNode) -> bool:
        """Activate a control as a user would: focus, click and pointer events."""
        pass

    @abstractmethod
    async def toggle(self, node: PageNode) -> bool:
        """Flip a toggle-like control with a single click."""
        pass

    @abstractmethod
    async def force_hide(self, node: PageNode) -> bool:
        pass

    @abstractmethod
    async def inject_style(self, css: str, style_id: str) -> None:
        pass

    @abstractmethod
    async def observe_mutations(self, callback: MutationCallback) -> Unsubscribe:
        """Call ``callback`` on every structural change of the document."""
        pass

    @abstractmethod
    async def read_tcf_data(self) -> Optional[Dict[str, Any]]:
        """Return ``{gdprApplies, vendorCount}`` when the page exposes the IAB TCF API."""
        pass

    @abstractmethod
    async def cookies(self) -> List[CookieRecord]:
        """Cookies currently visible to the page."""
        pass


CAPTURE_SCRIPT = """
(maxNodes) => {
    const registry = [];
    window.__ckNodes = registry;
    const SKIP = new Set(['SCRIPT', 'STYLE', 'NOSCRIPT', 'TEMPLATE']);

    const capture = (el) => {
        if (registry.length >= maxNodes) return null;
        const ref = registry.length;
        registry.push(el);

        const style = window.getComputedStyle(el);
        const rect = el.getBoundingClientRect();
        const attrs = {};
        for (const attr of el.attributes) {
            attrs[attr.name] = attr.value.slice(0, 500);
        }

        const children = [];
        for (const child of el.childNodes) {
            if (child.nodeType === Node.TEXT_NODE) {
                if (child.textContent) children.push(child.textContent);
            } else if (child.nodeType === Node.ELEMENT_NODE && !SKIP.has(child.tagName)) {
                const captured = capture(child);
                if (captured) children.push(captured);
            }
        }

        const shadow = [];
        if (el.shadowRoot) {
            for (const child of el.shadowRoot.children) {
                if (SKIP.has(child.tagName)) continue;
                const captured = capture(child);
                if (captured) shadow.push(captured);
            }
        }

        return {
            ref,
            tag: el.tagName.toLowerCase(),
            attrs,
            children,
            shadow,
            width: rect.width,
            height: rect.height,
            display: style.display,
            visibility: style.visibility,
            opacity: style.opacity,
            position: style.position,
            zIndex: style.zIndex,
            checked: typeof el.checked === 'boolean' ? el.checked : null,
        };
    };

    return {
        url: window.location.href,
        viewportWidth: window.innerWidth,
        viewportHeight: window.innerHeight,
        root: capture(document.documentElement),
    };
}
"""

INVOKE_SCRIPT = """
(ref) => {
    const el = (window.__ckNodes || [])[ref];
    if (!el || !el.isConnected) return false;
    const init = { bubbles: true, cancelable: true, view: window };

    if (typeof el.focus === 'function') el.focus();
    el.click();
    el.dispatchEvent(new MouseEvent('click', { ...init, detail: 1 }));
    el.dispatchEvent(new PointerEvent('pointerdown', init));
    el.dispatchEvent(new PointerEvent('pointerup', init));
    el.dispatchEvent(new MouseEvent('mousedown', init));
    el.dispatchEvent(new MouseEvent('mouseup', init));
    return true;
}
"""

TOGGLE_SCRIPT = """
(ref) => {
    const el = (window.__ckNodes || [])[ref];
    if (!el || !el.isConnected) return false;
    el.click();
    return true;
}
"""

HIDE_SCRIPT = """
(ref) => {
    const el = (window.__ckNodes || [])[ref];
    if (!el) return false;
    el.style.setProperty('display', 'none', 'important');
    el.style.setProperty('visibility', 'hidden', 'important');
    el.style.setProperty('opacity', '0', 'important');
    return true;
}
"""

STYLE_SCRIPT = """
([css, styleId]) => {
    let style = document.getElementById(styleId);
    if (!style) {
        style = document.createElement('style');
        style.id = styleId;
        (document.head || document.documentElement).appendChild(style);
    }
    style.textContent = css;
}
"""

OBSERVE_SCRIPT = """
(bridge) => {
    if (window.__ckObserver) window.__ckObserver.disconnect();
    window.__ckObserver = new MutationObserver(() => window[bridge]());
    window.__ckObserver.observe(document.body || document.documentElement, {
        childList: true,
        subtree: true,
    });
}
"""

DISCONNECT_SCRIPT = """
() => {
    if (window.__ckObserver) {
        window.__ckObserver.disconnect();
        window.__ckObserver = null;
    }
}
"""

TCF_SCRIPT = """
(timeoutMs) => new Promise((resolve) => {
    if (typeof window.__tcfapi !== 'function') return resolve(null);
    const timer = setTimeout(() => resolve(null), timeoutMs);
    try {
        window.__tcfapi('getTCData', 2, (tcData, success) => {
            clearTimeout(timer);
            if (!success || !tcData) return resolve(null);
            const consents = tcData.vendor && tcData.vendor.consents;
            resolve({
                gdprApplies: tcData.gdprApplies,
                vendorCount: consents ? Object.keys(consents).length : 0,
            });
        });
    } catch (e) {
        clearTimeout(timer);
        resolve(null);
    }
})
"""

_bridge_ids = itertools.count()


class PlaywrightPageDriver(PageDriver):
    """PageDriver over a Playwright page."""

    def __init__(
        self,
        page: Page,
        partition_id: str = "default",
        max_nodes: int = 20000,
        tcf_timeout_ms: int = 2000
    ):
        """Initialize driver.

        Args:
            page: Playwright page
            partition_id: Storage partition of the page's browser context
            max_nodes: Upper bound on captured elements per snapshot
            tcf_timeout_ms: How long to wait for the TCF API callback
        """
        self.page = page
        self.partition_id = partition_id
        self.max_nodes = max_nodes
        self.tcf_timeout_ms = tcf_timeout_ms
        self._bridge_name = f"__ckMutation{next(_bridge_ids)}"
        self._bridge_installed = False
        self._mutation_callback: Optional[MutationCallback] = None

    @property
    def url(self) -> str:
        return self.page.url

    async def snapshot(self) -> PageSnapshot:
        try:
            data = await self.page.evaluate(CAPTURE_SCRIPT, self.max_nodes)
        except PlaywrightError as e:
            raise DriverError(f"Failed to capture {self.page.url}: {e}") from e

        if not data or not data.get("root"):
            raise DriverError(f"Empty document at {self.page.url}")
        return PageSnapshot.from_dict(data)

    async def _run_on_node(self, script: str, node: PageNode, action: str) -> bool:
        try:
            return bool(await self.page.evaluate(script, node.ref))
        except PlaywrightError as e:
            logger.warning(f"Failed to {action} {node!r}: {e}")
            return False

    async def invoke(self, node: PageNode) -> bool:
        return await self._run_on_node(INVOKE_SCRIPT, node, "invoke")

    async def toggle(self, node: PageNode) -> bool:
        return await self._run_on_node(TOGGLE_SCRIPT, node, "toggle")

    async def force_hide(self, node: PageNode) -> bool:
        return await self._run_on_node(HIDE_SCRIPT, node, "hide")

    async def inject_style(self, css: str, style_id: str) -> None:
        try:
            await self.page.evaluate(STYLE_SCRIPT, [css, style_id])
        except PlaywrightError as e:
            logger.warning(f"Failed to inject style {style_id}: {e}")

    def _on_mutation(self) -> None:
        if self._mutation_callback is not None:
            self._mutation_callback()

    async def observe_mutations(self, callback: MutationCallback) -> Unsubscribe:
        self._mutation_callback = callback
        try:
            if not self._bridge_installed:
                await self.page.expose_function(self._bridge_name, self._on_mutation)
                self._bridge_installed = True
            await self.page.evaluate(OBSERVE_SCRIPT, self._bridge_name)
        except PlaywrightError as e:
            logger.warning(f"Mutation observation unavailable on {self.page.url}: {e}")

        async def unsubscribe() -> None:
            self._mutation_callback = None
            try:
                await self.page.evaluate(DISCONNECT_SCRIPT)
            except PlaywrightError as e:
                logger.debug(f"Observer disconnect failed: {e}")

        return unsubscribe

    async def read_tcf_data(self) -> Optional[Dict[str, Any]]:
        try:
            return await self.page.evaluate(TCF_SCRIPT, self.tcf_timeout_ms)
        except PlaywrightError as e:
            logger.debug(f"TCF lookup failed: {e}")
            return None

    async def cookies(self) -> List[CookieRecord]:
        try:
            raw_cookies = await self.page.context.cookies(self.page.url)
        except PlaywrightError as e:
            logger.warning(f"Failed to read cookies for {self.page.url}: {e}")
            return []
        return [CookieRecord.from_playwright_cookie(c, self.partition_id) for c in raw_cookies]
