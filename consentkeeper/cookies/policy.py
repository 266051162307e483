"""Category deletion policy.

Maps a cookie category and the user's preferences to a keep/delete decision.
``essential`` and ``unknown`` are never deleted automatically. ``social``
follows the personalization preference.
"""

from typing import Optional

from .models import CookieCategory, Preferences
from .patterns import ESSENTIAL_GUARD_TERMS


def category_allowed(category: CookieCategory, preferences: Preferences) -> bool:
    """Whether the user allows cookies of this category.

    Used for consent-dialog toggles as well as deletion.
    """
    if category == CookieCategory.ESSENTIAL:
        return True
    if category == CookieCategory.ANALYTICS:
        return preferences.allow_analytics
    if category == CookieCategory.ADVERTISING:
        return preferences.allow_advertising
    if category in (CookieCategory.PERSONALIZATION, CookieCategory.SOCIAL):
        return preferences.allow_personalization
    return False


def is_guarded_name(name: str) -> bool:
    lowered = name.lower()
    return any(term in lowered for term in ESSENTIAL_GUARD_TERMS)


def should_delete(
    category: CookieCategory,
    preferences: Preferences,
    name: Optional[str] = None
) -> bool:
    """Decide whether a classified cookie is deleted automatically.

    Args:
        category: Classified category
        preferences: Current user preferences
        name: Cookie name; names with session/csrf/auth terms are always kept

    Returns:
        True if the cookie should be deleted
    """
    if category in (CookieCategory.ESSENTIAL, CookieCategory.UNKNOWN):
        return False
    if name is not None and is_guarded_name(name):
        return False
    return not category_allowed(category, preferences)


def allows_everything(preferences: Preferences) -> bool:
    return (
        preferences.allow_analytics
        and preferences.allow_advertising
        and preferences.allow_personalization
    )
