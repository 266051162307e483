"""Cookie classification, enforcement and review.

This package classifies cookies through declared manifests, naming
conventions, tracker domains, token shapes and a pattern library, escalates
unresolved cookies to an external classifier, deletes disallowed cookies
across storage partitions and keeps uncertain ones in a review queue.
"""

from .models import (
    ClassificationResult,
    ClassificationSource,
    ConfidenceLevel,
    CookieCategory,
    CookieManifest,
    CookieRecord,
    Preferences,
    ReviewItem,
    ReviewStatus,
)
from .classification import CookieClassifier, classify_cookie
from .policy import category_allowed, should_delete
from .store import CookieStore, MemoryCookieStore, PlaywrightCookieStore
from .enforcement import DeletionOutcome, DeletionResult, EnforcementEngine
from .escalation import ExternalClassifier
from .manifest import ManifestLoader
from .review import ReviewCandidate, ReviewQueue
from .pipeline import ClassificationPipeline, CleanupReport

__all__ = [
    # Models
    'ClassificationResult',
    'ClassificationSource',
    'ConfidenceLevel',
    'CookieCategory',
    'CookieManifest',
    'CookieRecord',
    'Preferences',
    'ReviewItem',
    'ReviewStatus',

    # Classification
    'CookieClassifier',
    'classify_cookie',
    'category_allowed',
    'should_delete',
    'ExternalClassifier',
    'ManifestLoader',
    'ClassificationPipeline',
    'CleanupReport',

    # Enforcement
    'CookieStore',
    'MemoryCookieStore',
    'PlaywrightCookieStore',
    'DeletionOutcome',
    'DeletionResult',
    'EnforcementEngine',

    # Review
    'ReviewCandidate',
    'ReviewQueue',
]
