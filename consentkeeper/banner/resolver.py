"""Consent prompt resolver.

Drives one page from ``SEARCHING`` to a terminal state:

    IDLE -> SEARCHING -> {PLATFORM_HANDLED | MULTISTEP_HANDLED | CLICKED | SUPPRESSED} -> DONE

Each detection tick locates the prompt and tries, in order, the platform's own
accept control, the manage/toggle/save flow, a keyword-matched accept control,
a plain dismiss control and finally CSS suppression. Ticks come from a capped
exponential retry schedule and from debounced DOM mutations; a hard timeout
ends both. The ``acted`` flag is set before any resolving action so a tick
from the other source can never fire a second one.
"""

import asyncio
import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Set, TYPE_CHECKING, Union

from ..config import DetectionConfig
from ..cookies.domains import hostname_of
from ..cookies.models import ActivityAction, CookieCategory, Preferences
from ..cookies.policy import allows_everything, category_allowed
from ..errors import ConsentKeeperError, DriverError
from ..service.preferences import PreferenceStore
from . import keywords as kw
from .dom import PageNode, PageSnapshot
from .driver import PageDriver, Unsubscribe
from .locator import PromptLocator
from .matcher import find_control
from .platforms import PlatformProfile, detect_platform, find_accept_control

if TYPE_CHECKING:
    from ..service.client import ServiceClient

logger = logging.getLogger(__name__)

HIDE_STYLE_ID = "consentkeeper-hide-style"

_CSS_IDENT = re.compile(r"^-?[A-Za-z_][\w-]*$")


class ResolverState(str, Enum):
    IDLE = "idle"
    SEARCHING = "searching"
    PLATFORM_HANDLED = "platform_handled"
    MULTISTEP_HANDLED = "multistep_handled"
    CLICKED = "clicked"
    SUPPRESSED = "suppressed"
    DONE = "done"


TERMINAL_STATES = frozenset({
    ResolverState.PLATFORM_HANDLED,
    ResolverState.MULTISTEP_HANDLED,
    ResolverState.CLICKED,
    ResolverState.SUPPRESSED,
})


class ResolutionMethod(str, Enum):
    PLATFORM_SPECIFIC = "platform_specific"
    MULTI_STEP = "multi_step"
    ACCEPT_ALL = "accept_all"
    DISMISS = "dismiss"
    CSS_HIDE = "css_hide"
    DETECTED_ONLY = "detected_only"
    NOT_NEEDED = "not_needed"


@dataclass
class ResolutionResult:
    """Outcome of resolving the consent prompt of one page."""

    state: ResolverState = ResolverState.IDLE
    method: Optional[ResolutionMethod] = None
    platform: Optional[str] = None
    button_text: Optional[str] = None
    selector: Optional[str] = None
    toggles_modified: int = 0
    attempts: int = 0
    mutation_checks: int = 0
    skipped: Optional[str] = None

    @property
    def handled(self) -> bool:
        return self.state in TERMINAL_STATES

    def to_dict(self) -> Dict[str, Any]:
        return {
            'state': self.state.value,
            'method': self.method.value if self.method else None,
            'platform': self.platform,
            'button_text': self.button_text,
            'selector': self.selector,
            'toggles_modified': self.toggles_modified,
            'attempts': self.attempts,
            'mutation_checks': self.mutation_checks,
            'skipped': self.skipped,
        }


def classify_toggle(label: str) -> Optional[CookieCategory]:
    """Infer which category a consent toggle controls from its label."""
    lowered = label.lower()
    for category, terms in kw.TOGGLE_CATEGORY_KEYWORDS:
        if any(term in lowered for term in terms):
            return CookieCategory(category)
    return None


def toggle_label(toggle: PageNode, snapshot: PageSnapshot) -> str:
    label = toggle.closest("label")
    if label is None and toggle.id and '"' not in toggle.id:
        label = snapshot.select_one(f'label[for="{toggle.id}"]')
    if label is None:
        label = toggle.parent
    return label.text_content if label is not None else ""


def suppression_css(node: PageNode) -> str:
    """Stylesheet forcing the prompt and known overlays invisible."""
    rules = []
    compound = ""
    if node.id and _CSS_IDENT.match(node.id):
        compound += f"#{node.id}"
    if node.classes and _CSS_IDENT.match(node.classes[0]):
        compound += f".{node.classes[0]}"
    if compound:
        rules.append(
            f"{compound} {{ display: none !important; visibility: hidden !important; "
            f"opacity: 0 !important; }}"
        )
    rules.append(f"{', '.join(kw.OVERLAY_SELECTORS)} {{ display: none !important; }}")
    rules.append("body { overflow: auto !important; }")
    return "\n".join(rules)


class BannerResolver:
    """Finds and resolves the consent prompt of one page load."""

    def __init__(
        self,
        driver: PageDriver,
        client: "ServiceClient",
        preference_store: PreferenceStore,
        preferences: Preferences,
        config: Optional[DetectionConfig] = None,
        locator: Optional[PromptLocator] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    ):
        """Initialize resolver.

        Args:
            driver: Driver for the page being processed
            client: Background service client for activity and banner counts
            preference_store: Shared state holding site cooldowns
            preferences: User preferences for this page load
            config: Detection timings
            locator: Prompt locator; default keyword tables when omitted
            sleep: Awaitable used for fixed waits, replaceable in tests
        """
        self.driver = driver
        self.client = client
        self.preference_store = preference_store
        self.preferences = preferences
        self.config = config or DetectionConfig()
        self.locator = locator or PromptLocator()
        self._sleep = sleep

        self.state = ResolverState.IDLE
        self.acted = False
        self.result = ResolutionResult()

        self._checking = False
        self._multi_step_tried = False
        self._stop_event = asyncio.Event()
        self._unsubscribe: Optional[Unsubscribe] = None
        self._debounce: Optional[asyncio.TimerHandle] = None
        self._pending_checks: Set[asyncio.Task] = set()

    @property
    def hostname(self) -> str:
        return hostname_of(self.driver.url)

    @property
    def stopped(self) -> bool:
        return self._stop_event.is_set()

    # Scheduling

    async def run(self) -> ResolutionResult:
        """Detect and resolve the prompt until handled, exhausted or timed out."""
        if not self.preferences.enabled:
            self.result.skipped = "disabled"
            return self.result

        if await self.preference_store.is_on_cooldown(self.hostname, self.config.site_cooldown_s):
            logger.info(f"{self.hostname} is on cooldown, skipping prompt detection")
            self.result.skipped = "cooldown"
            return self.result

        self.state = ResolverState.SEARCHING
        self.result.state = ResolverState.SEARCHING
        await self._sleep(self.config.initial_delay_s)

        try:
            await asyncio.wait_for(self._detect(), timeout=self.config.observer_timeout_s)
        except asyncio.TimeoutError:
            logger.info(f"Prompt detection on {self.hostname} timed out after {self.config.observer_timeout_s}s")
        finally:
            await self._teardown()

        return self.result

    async def _detect(self) -> None:
        self._unsubscribe = await self.driver.observe_mutations(self._on_mutation)

        while not self.acted and not self.stopped:
            self.result.attempts += 1
            await self.check()
            if self.acted or self.stopped:
                break
            if self.result.attempts >= self.config.max_attempts:
                logger.info(f"No consent prompt handled on {self.hostname} after {self.result.attempts} attempts")
                break

            delay = self.config.retry_delay(self.result.attempts)
            logger.debug(f"Attempt {self.result.attempts}/{self.config.max_attempts}, retrying in {delay:.2f}s")
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
            except asyncio.TimeoutError:
                pass

        if self._pending_checks:
            await asyncio.gather(*self._pending_checks, return_exceptions=True)

    def _on_mutation(self) -> None:
        if self.acted or self.stopped:
            return
        if self._debounce is not None:
            self._debounce.cancel()
        loop = asyncio.get_running_loop()
        self._debounce = loop.call_later(self.config.debounce_s, self._debounced_check)

    def _debounced_check(self) -> None:
        self._debounce = None
        if self.acted or self.stopped:
            return
        self.result.mutation_checks += 1
        task = asyncio.ensure_future(self.check())
        self._pending_checks.add(task)
        task.add_done_callback(self._pending_checks.discard)

    async def _cancel_observation(self) -> None:
        if self._debounce is not None:
            self._debounce.cancel()
            self._debounce = None
        if self._unsubscribe is not None:
            unsubscribe, self._unsubscribe = self._unsubscribe, None
            await unsubscribe()

    async def _teardown(self) -> None:
        self._stop_event.set()
        await self._cancel_observation()
        current = asyncio.current_task()
        for task in list(self._pending_checks):
            if task is not current:
                task.cancel()

    # Detection tick

    async def check(self) -> Optional[ResolutionResult]:
        """Run one detection tick; a no-op once the prompt has been handled.

        Returns:
            The result when this tick ended detection, None otherwise
        """
        if self.acted or self.stopped or self._checking:
            return None

        self._checking = True
        try:
            return await self._check()
        except DriverError as e:
            logger.debug(f"Detection tick on {self.hostname} failed: {e}")
            self._abandon_action()
            return None
        except ConsentKeeperError as e:
            logger.error(f"Detection tick on {self.hostname} failed: {e}")
            self._abandon_action()
            return None
        finally:
            self._checking = False

    async def _check(self) -> Optional[ResolutionResult]:
        snapshot = await self.driver.snapshot()
        banner = self.locator.locate(snapshot)
        if banner is None:
            return None

        logger.info(f"Consent prompt detected on {self.hostname}: {banner!r}")

        profile = detect_platform(snapshot)
        if profile is not None:
            result = await self._try_platform(snapshot, profile)
            if result is not None:
                return result

        if not self._multi_step_tried:
            outcome = await self._try_multi_step(banner)
            if isinstance(outcome, ResolutionResult):
                return outcome
            if outcome is not None:
                # The flow changed the page; continue against the fresh snapshot
                snapshot = outcome
                banner = self.locator.locate(snapshot)
                if banner is None:
                    return None

        if allows_everything(self.preferences):
            logger.info("Preferences allow every category, leaving the prompt alone")
            return await self._exit(ResolutionMethod.NOT_NEEDED)

        if self.preferences.safe_mode:
            logger.info("Safe mode, prompt detected but not answered")
            return await self._exit(ResolutionMethod.DETECTED_ONLY, log=True)

        banner_controls = banner.select(kw.INTERACTIVE_SELECTOR)
        accept = (find_control(banner_controls, kw.ACCEPT_KEYWORDS)
                  or find_control(snapshot.select(kw.INTERACTIVE_SELECTOR), kw.ACCEPT_KEYWORDS))
        if accept is not None:
            result = await self._click(accept, ResolutionMethod.ACCEPT_ALL)
            if result is not None:
                return result

        dismiss = find_control(banner_controls, kw.DISMISS_KEYWORDS)
        if dismiss is not None:
            result = await self._click(dismiss, ResolutionMethod.DISMISS)
            if result is not None:
                return result

        return await self._suppress(banner)

    async def _try_platform(self, snapshot: PageSnapshot, profile: PlatformProfile) -> Optional[ResolutionResult]:
        found = find_accept_control(snapshot, profile)
        if found is None:
            logger.debug(f"No accept control for {profile.platform.value}, using generic detection")
            return None

        selector, control = found
        self._begin_action()
        if not await self.driver.invoke(control):
            logger.info(f"{profile.platform.value} accept control could not be clicked, using generic detection")
            self._abandon_action()
            return None
        return await self._finish(
            ResolverState.PLATFORM_HANDLED,
            ResolutionMethod.PLATFORM_SPECIFIC,
            platform=profile.platform.value,
            selector=selector,
            button_text=control.text_content.strip()[:50],
        )

    async def _try_multi_step(self, banner: PageNode) -> Union[ResolutionResult, PageSnapshot, None]:
        """Open the settings, align toggles with preferences and save.

        Returns:
            ResolutionResult when saved, the latest snapshot when the flow ran
            without finding a save control, None when there is no manage control
        """
        manage = find_control(banner.select(kw.MANAGE_CONTROL_SELECTOR), kw.MANAGE_KEYWORDS)
        if manage is None:
            return None

        self._multi_step_tried = True
        logger.info(f"Multi-step consent dialog on {self.hostname}")
        if not await self.driver.invoke(manage):
            logger.info("Manage control could not be clicked, skipping the settings flow")
            return None
        await self._sleep(self.config.settle_delay_s)

        snapshot = await self.driver.snapshot()
        modified = 0
        for toggle in snapshot.select(kw.TOGGLE_SELECTOR):
            category = classify_toggle(toggle_label(toggle, snapshot))
            if category is None:
                continue
            wanted = category_allowed(category, self.preferences)
            if toggle.is_checked != wanted:
                await self.driver.toggle(toggle)
                logger.debug(f"Toggle {category.value}: {wanted}")
                modified += 1
                await self._sleep(self.config.toggle_delay_s)

        await self._sleep(self.config.save_delay_s)
        snapshot = await self.driver.snapshot()
        save = find_control(snapshot.select(kw.SAVE_CONTROL_SELECTOR), kw.SAVE_KEYWORDS)
        if save is None:
            logger.info("No save control after opening consent settings, falling back")
            return snapshot

        self._begin_action()
        if not await self.driver.invoke(save):
            logger.info("Save control could not be clicked, falling back")
            self._abandon_action()
            return snapshot
        return await self._finish(
            ResolverState.MULTISTEP_HANDLED,
            ResolutionMethod.MULTI_STEP,
            button_text=save.text_content.strip()[:50],
            toggles_modified=modified,
        )

    async def _click(self, control: PageNode, method: ResolutionMethod) -> Optional[ResolutionResult]:
        self._begin_action()
        button_text = control.text_content.strip()[:50]
        logger.info(f"Clicking {button_text!r} ({method.value})")
        if not await self.driver.invoke(control):
            logger.info(f"Could not click {button_text!r}")
            self._abandon_action()
            return None
        return await self._finish(ResolverState.CLICKED, method, button_text=button_text)

    async def _suppress(self, banner: PageNode) -> ResolutionResult:
        self._begin_action()
        logger.info(f"Hiding consent prompt {banner!r} with CSS")
        await self.driver.force_hide(banner)
        await self.driver.inject_style(suppression_css(banner), HIDE_STYLE_ID)
        return await self._finish(ResolverState.SUPPRESSED, ResolutionMethod.CSS_HIDE)

    # Transitions

    def _begin_action(self) -> None:
        self.acted = True
        if self._debounce is not None:
            self._debounce.cancel()
            self._debounce = None

    def _abandon_action(self) -> None:
        """Clear ``acted`` when a resolving action did not land."""
        if self.state not in TERMINAL_STATES and self.state != ResolverState.DONE:
            self.acted = False

    async def _finish(self, state: ResolverState, method: ResolutionMethod, **details: Any) -> ResolutionResult:
        self.state = state
        self.result.state = state
        self.result.method = method
        for name, value in details.items():
            setattr(self.result, name, value)

        await self._cancel_observation()
        try:
            await self.preference_store.set_cooldown(self.hostname)
        except ConsentKeeperError as e:
            logger.error(f"Failed to record cooldown for {self.hostname}: {e}")
        await self.client.log_action(
            ActivityAction.BANNER_HANDLED,
            domain=self.hostname,
            url=self.driver.url,
            **self._log_details(),
        )
        await self.client.increment_banner_count()

        self.state = ResolverState.DONE
        self._stop_event.set()
        logger.info(f"Consent prompt on {self.hostname} resolved via {method.value}")
        return self.result

    async def _exit(self, method: ResolutionMethod, log: bool = False) -> ResolutionResult:
        """Stop detection without a resolving action."""
        self.result.method = method
        self._stop_event.set()
        await self._cancel_observation()
        if log:
            await self.client.log_action(
                ActivityAction.BANNER_HANDLED,
                domain=self.hostname,
                url=self.driver.url,
                **self._log_details(),
            )
        return self.result

    def _log_details(self) -> Dict[str, Any]:
        details: Dict[str, Any] = {'method': self.result.method.value}
        if self.result.platform:
            details['platform'] = self.result.platform
            details['selector'] = self.result.selector
            details['button_type'] = 'accept'
        if self.result.button_text:
            details['button_text'] = self.result.button_text
        if self.result.method == ResolutionMethod.MULTI_STEP:
            details['steps'] = ['manage', 'toggle', 'save']
            details['toggles_modified'] = self.result.toggles_modified
        return details
