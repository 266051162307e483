"""Escalation of unresolved cookies to an external text classifier.

The classifier is reached through an OpenAI-compatible chat completions
endpoint. Every call returns a ClassificationResult: rate limits are retried
after a fixed delay, and any other failure degrades to a conservative
low-confidence personalization result instead of raising.
"""

import asyncio
import json
import logging
import math
import re
from typing import Any, Dict, Optional

import httpx

from ..config import ClassifierConfig
from ..errors import ClassifierError, ClassifierRateLimited
from .models import (
    PRIMARY_CATEGORIES, ClassificationResult, ClassificationSource, CookieCategory,
    parse_category,
)

logger = logging.getLogger(__name__)

FALLBACK_CATEGORY = CookieCategory.PERSONALIZATION
FALLBACK_CONFIDENCE = 0.3
DEFAULT_CONFIDENCE = 0.5

_CODE_FENCE = re.compile(r"```(?:json)?\s*", re.IGNORECASE)

PROMPT_TEMPLATE = """You are a cookie classification expert. Analyze this cookie and provide ONLY a JSON response.

Cookie name: "{name}"
Domain: "{domain}"
Value: "{value}"

Classify into ONE of these categories:
- essential        (required for login, session, security, site operation)
- analytics        (site measurement, performance, behavior tracking)
- personalization  (preferences, customization, A/B testing, UX tailoring)
- advertising      (ads, retargeting, cross-site tracking, campaign IDs)

Respond ONLY with valid JSON in this exact format:
{{"category":"<category>","confidence":<0.0-1.0>,"reasoning":"<brief explanation>"}}"""

READINESS_PROMPT = (
    'Classify this cookie: "_ga". Respond with JSON only: '
    '{"category":"analytics","confidence":0.95,"reasoning":"Google Analytics tracking"}'
)


def build_prompt(name: str, domain: str, value: Optional[str], sample_chars: int = 100) -> str:
    sample = value[:sample_chars] if value else "N/A"
    return PROMPT_TEMPLATE.format(name=name, domain=domain, value=sample)


def strip_code_fences(content: str) -> str:
    return _CODE_FENCE.sub("", content).replace("```", "").strip()


def parse_classifier_response(content: str) -> ClassificationResult:
    """Parse and validate the classifier's JSON answer.

    Invalid categories become personalization and invalid confidences
    become 0.5; both corrections are logged.

    Raises:
        ValueError: If the content is not a JSON object.
    """
    data = json.loads(strip_code_fences(content))
    if not isinstance(data, dict):
        raise ValueError(f"Classifier returned {type(data).__name__}, expected object")

    raw_category = data.get('category')
    category = parse_category(raw_category)
    if category not in PRIMARY_CATEGORIES:
        logger.warning(f"Invalid category from classifier: {raw_category!r}, defaulting to personalization")
        category = CookieCategory.PERSONALIZATION

    raw_confidence = data.get('confidence')
    try:
        confidence = float(raw_confidence)
    except (TypeError, ValueError):
        confidence = float('nan')
    if not math.isfinite(confidence) or not 0.0 <= confidence <= 1.0:
        logger.warning(f"Invalid confidence from classifier: {raw_confidence!r}, defaulting to {DEFAULT_CONFIDENCE}")
        confidence = DEFAULT_CONFIDENCE

    reasoning = data.get('reasoning')
    return ClassificationResult(
        category=category,
        source=ClassificationSource.EXTERNAL_CLASSIFIER,
        confidence=confidence,
        reasoning=str(reasoning) if reasoning else "Classified by external model",
    )


def fallback_result(reason: str) -> ClassificationResult:
    return ClassificationResult(
        category=FALLBACK_CATEGORY,
        source=ClassificationSource.EXTERNAL_CLASSIFIER,
        confidence=FALLBACK_CONFIDENCE,
        reasoning=reason,
    )


class ExternalClassifier:
    """Client for the external cookie classifier."""

    def __init__(
        self,
        config: Optional[ClassifierConfig] = None,
        client: Optional[httpx.AsyncClient] = None
    ):
        """Initialize classifier client.

        Args:
            config: Endpoint, model and retry settings
            client: HTTP client to use; one is created when omitted
        """
        self.config = config or ClassifierConfig()
        self.client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout=self.config.timeout_s, connect=10.0),
            limits=httpx.Limits(max_connections=5, max_keepalive_connections=2)
        )
        self.initialized = False
        self.initializing = False
        self._init_lock = asyncio.Lock()

    def status(self) -> Dict[str, bool]:
        return {'initialized': self.initialized, 'initializing': self.initializing}

    async def initialize(self) -> bool:
        """Check the endpoint once; later calls reuse the outcome on success."""
        async with self._init_lock:
            if self.initialized:
                return True

            if not self.config.resolved_api_key():
                logger.warning("No classifier API key configured, external classification unavailable")
                return False

            self.initializing = True
            try:
                await self._complete(READINESS_PROMPT)
                self.initialized = True
                logger.info(f"External classifier initialized (model {self.config.model})")
            except (ClassifierError, httpx.HTTPError, KeyError, IndexError, TypeError, ValueError) as e:
                logger.error(f"External classifier initialization failed: {e}")
                self.initialized = False
            finally:
                self.initializing = False

            return self.initialized

    async def _complete(self, prompt: str) -> str:
        headers = {
            "Authorization": f"Bearer {self.config.resolved_api_key() or ''}",
            "Content-Type": "application/json",
        }
        payload: Dict[str, Any] = {
            "model": self.config.model,
            "messages": [{"role": "user", "content": prompt}],
            "temperature": self.config.temperature,
            "max_tokens": self.config.max_tokens,
        }

        response = await self.client.post(self.config.api_url, json=payload, headers=headers)
        if response.status_code == 429:
            raise ClassifierRateLimited("Classifier rate limited", status_code=429)
        if response.status_code >= 400:
            raise ClassifierError(
                f"Classifier returned HTTP {response.status_code}: {response.text[:200]}",
                status_code=response.status_code
            )

        data = response.json()
        return data['choices'][0]['message']['content'].strip()

    async def classify(self, name: str, domain: str, value: Optional[str] = None) -> ClassificationResult:
        """Classify one cookie; never raises.

        Args:
            name: Cookie name
            domain: Cookie or page domain
            value: Cookie value; only a prefix is sent

        Returns:
            Validated result, or a low-confidence fallback
        """
        if not self.initialized and not await self.initialize():
            return fallback_result("External classifier not available")

        prompt = build_prompt(name, domain, value, self.config.value_sample_chars)

        for attempt in range(self.config.max_retries + 1):
            try:
                content = await self._complete(prompt)
                result = parse_classifier_response(content)
                logger.info(
                    f"Classifier: {name} -> {result.category.value} "
                    f"({round(result.confidence * 100)}%): {result.reasoning}"
                )
                return result
            except ClassifierRateLimited:
                if attempt < self.config.max_retries:
                    logger.warning(
                        f"Classifier rate limited, retrying in {self.config.rate_limit_delay_s}s "
                        f"({attempt + 1}/{self.config.max_retries})"
                    )
                    await asyncio.sleep(self.config.rate_limit_delay_s)
                    continue
                logger.error(f"Classifier still rate limited for {name}, giving up")
                return fallback_result("External classifier rate limited")
            except (ClassifierError, httpx.HTTPError, KeyError, IndexError, TypeError, ValueError) as e:
                logger.error(f"Classification error for {name}: {e}")
                return fallback_result(f"External classifier failed: {e}")

        return fallback_result("External classifier failed")

    async def aclose(self) -> None:
        await self.client.aclose()
