"""Consent prompt detection and resolution.

Pure locator and matcher logic over page snapshots, platform profiles, the
resolver state machine and the page drivers it acts through.
"""

from .dom import PageNode, PageSnapshot, SelectorError
from .driver import PageDriver, PlaywrightPageDriver
from .locator import PromptLocator, locate_prompt
from .matcher import find_control, normalize
from .platforms import ConsentPlatform, PlatformProfile, detect_platform
from .resolver import BannerResolver, ResolutionMethod, ResolutionResult, ResolverState

__all__ = [
    # Page model
    'PageNode',
    'PageSnapshot',
    'SelectorError',

    # Drivers
    'PageDriver',
    'PlaywrightPageDriver',

    # Detection
    'PromptLocator',
    'locate_prompt',
    'find_control',
    'normalize',
    'ConsentPlatform',
    'PlatformProfile',
    'detect_platform',

    # Resolution
    'BannerResolver',
    'ResolutionMethod',
    'ResolutionResult',
    'ResolverState',
]
