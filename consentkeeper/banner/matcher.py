"""Keyword matching of consent controls.

``find_control`` is a pure function over the supplied controls and keyword
table. Passes run from strictest to loosest so that an exact "Accept all"
wins over a longer label that merely mentions accepting.
"""

import logging
import re
from typing import Iterable, List, Optional, Sequence

from .dom import PageNode
from .keywords import EXCLUDE_KEYWORDS

logger = logging.getLogger(__name__)

# Text longer than this multiple of the keyword is treated as prose, not a label
CONTAINS_LENGTH_FACTOR = 4
SHORT_TEXT_LIMIT = 25

_WHITESPACE = re.compile(r"\s+")
_NON_WORD = re.compile(r"[^\w\s]")


def normalize(text: str) -> str:
    """Lower-case, collapse whitespace and strip punctuation."""
    return _NON_WORD.sub("", _WHITESPACE.sub(" ", text.lower())).strip()


def _has_excluded(text: str, exclude: Sequence[str]) -> bool:
    return any(keyword in text for keyword in exclude)


def find_control(
    controls: Iterable[PageNode],
    keywords: Sequence[str],
    exclude: Sequence[str] = EXCLUDE_KEYWORDS
) -> Optional[PageNode]:
    """Find the control that best matches one of ``keywords``.

    Args:
        controls: Candidate controls in document order
        keywords: Keyword table to match against
        exclude: Controls whose text contains any of these are never chosen

    Returns:
        The first control matched by the strictest pass, or None
    """
    visible: List[PageNode] = [c for c in controls if c.is_visible()]
    labelled = [(c, normalize(c.text_content), normalize(c.aria_label)) for c in visible]
    norm_keywords = [k for k in (normalize(k) for k in keywords) if k]

    # Pass 1: exact text or accessible label
    for control, text, aria in labelled:
        if _has_excluded(text, exclude):
            continue
        for keyword in norm_keywords:
            if text == keyword or aria == keyword:
                logger.debug(f"Exact match: {text!r} matches {keyword!r}")
                return control

    # Pass 2: text starts with a keyword
    for control, text, aria in labelled:
        if _has_excluded(text, exclude):
            continue
        for keyword in norm_keywords:
            if text.startswith(keyword):
                logger.debug(f"Prefix match: {text!r} starts with {keyword!r}")
                return control

    # Pass 3: short text containing a keyword, or an accessible label containing it
    for control, text, aria in labelled:
        if _has_excluded(text, exclude) or _has_excluded(aria, exclude):
            continue
        for keyword in norm_keywords:
            if keyword in text and len(text) < len(keyword) * CONTAINS_LENGTH_FACTOR:
                logger.debug(f"Contains match: {text!r} contains {keyword!r}")
                return control
            if keyword in aria:
                logger.debug(f"Label match: aria-label contains {keyword!r}")
                return control

    # Pass 4: every word of the keyword somewhere in a short label
    for control, text, aria in labelled:
        if not text or len(text) >= SHORT_TEXT_LIMIT or _has_excluded(text, exclude):
            continue
        for keyword in norm_keywords:
            if all(word in text for word in keyword.split(" ")):
                logger.debug(f"Word match: {text!r} ~ {keyword!r}")
                return control

    return None


def contains_any(text: str, keywords: Sequence[str]) -> bool:
    lowered = text.lower()
    return any(keyword in lowered for keyword in keywords)
