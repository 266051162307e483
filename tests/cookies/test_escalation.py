"""Unit tests for escalation to the external classifier."""

import json

import httpx
import pytest

from consentkeeper.config import ClassifierConfig
from consentkeeper.cookies.escalation import (
    ExternalClassifier, build_prompt, parse_classifier_response, strip_code_fences,
)
from consentkeeper.cookies.models import ClassificationSource, CookieCategory


def completion(content: str) -> dict:
    return {"choices": [{"message": {"role": "assistant", "content": content}}]}


class TestResponseParsing:
    """Test validation of classifier answers."""

    def test_plain_json(self):
        result = parse_classifier_response(
            '{"category":"advertising","confidence":0.91,"reasoning":"Retargeting id"}'
        )

        assert result.category == CookieCategory.ADVERTISING
        assert result.confidence == pytest.approx(0.91)
        assert result.source == ClassificationSource.EXTERNAL_CLASSIFIER

    def test_code_fences_are_stripped(self):
        content = '```json\n{"category":"analytics","confidence":0.7,"reasoning":"x"}\n```'

        assert strip_code_fences(content).startswith("{")
        assert parse_classifier_response(content).category == CookieCategory.ANALYTICS

    def test_invalid_category_becomes_personalization(self):
        result = parse_classifier_response('{"category":"social","confidence":0.9}')
        assert result.category == CookieCategory.PERSONALIZATION

    def test_alias_category(self):
        result = parse_classifier_response('{"category":"advertisement","confidence":0.9}')
        assert result.category == CookieCategory.ADVERTISING

    @pytest.mark.parametrize("confidence", ['"high"', "1.5", "-0.2", "null"])
    def test_invalid_confidence_becomes_half(self, confidence):
        result = parse_classifier_response(f'{{"category":"analytics","confidence":{confidence}}}')
        assert result.confidence == 0.5

    def test_non_object_is_rejected(self):
        with pytest.raises(ValueError):
            parse_classifier_response('["analytics"]')

    def test_prompt_samples_value(self):
        prompt = build_prompt("xk_9f2", "example.com", "v" * 500, sample_chars=100)

        assert '"xk_9f2"' in prompt
        assert "v" * 100 + '"' in prompt
        assert "v" * 101 not in prompt
        assert 'Value: "N/A"' in build_prompt("xk_9f2", "example.com", None)


class TestExternalClassifier:
    """Test the HTTP client with a mock transport."""

    def setup_method(self):
        """Set up test fixtures."""
        self.config = ClassifierConfig(api_key="sk-test", rate_limit_delay_s=0, max_retries=1)
        self.requests = []

    def _classifier(self, responses):
        responses = list(responses)

        def handler(request: httpx.Request) -> httpx.Response:
            self.requests.append(json.loads(request.content))
            return responses.pop(0)

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        return ExternalClassifier(self.config, client=client)

    @pytest.mark.asyncio
    async def test_classify_after_initialization(self):
        classifier = self._classifier([
            httpx.Response(200, json=completion('{"category":"analytics","confidence":0.95}')),
            httpx.Response(200, json=completion('{"category":"analytics","confidence":0.6,"reasoning":"visit counter"}')),
        ])

        result = await classifier.classify("xk_9f2", "example.com", "abc")

        assert classifier.status() == {"initialized": True, "initializing": False}
        assert result.category == CookieCategory.ANALYTICS
        assert result.confidence == pytest.approx(0.6)
        assert len(self.requests) == 2
        assert self.requests[1]["model"] == self.config.model
        await classifier.aclose()

    @pytest.mark.asyncio
    async def test_rate_limit_is_retried(self):
        classifier = self._classifier([
            httpx.Response(200, json=completion("{}")),
            httpx.Response(429, text="slow down"),
            httpx.Response(200, json=completion('{"category":"advertising","confidence":0.9}')),
        ])

        result = await classifier.classify("xk_9f2", "example.com")

        assert result.category == CookieCategory.ADVERTISING
        assert len(self.requests) == 3

    @pytest.mark.asyncio
    async def test_persistent_rate_limit_falls_back(self):
        classifier = self._classifier([
            httpx.Response(200, json=completion("{}")),
            httpx.Response(429),
            httpx.Response(429),
        ])

        result = await classifier.classify("xk_9f2", "example.com")

        assert result.category == CookieCategory.PERSONALIZATION
        assert result.confidence == pytest.approx(0.3)

    @pytest.mark.asyncio
    async def test_server_error_falls_back(self):
        classifier = self._classifier([
            httpx.Response(200, json=completion("{}")),
            httpx.Response(500, text="internal error"),
        ])

        result = await classifier.classify("xk_9f2", "example.com")

        assert result.confidence == pytest.approx(0.3)
        assert "failed" in result.reasoning

    @pytest.mark.asyncio
    async def test_unparseable_answer_falls_back(self):
        classifier = self._classifier([
            httpx.Response(200, json=completion("{}")),
            httpx.Response(200, json=completion("I think it is analytics")),
        ])

        result = await classifier.classify("xk_9f2", "example.com")
        assert result.category == CookieCategory.PERSONALIZATION

    @pytest.mark.asyncio
    async def test_no_api_key(self, monkeypatch):
        monkeypatch.delenv("CONSENTKEEPER_CLASSIFIER_API_KEY", raising=False)
        self.config = ClassifierConfig(api_key=None)
        classifier = self._classifier([])

        result = await classifier.classify("xk_9f2", "example.com")

        assert result.reasoning == "External classifier not available"
        assert self.requests == []
        assert classifier.status()["initialized"] is False

    @pytest.mark.asyncio
    async def test_failed_readiness_check_is_retried_later(self):
        classifier = self._classifier([
            httpx.Response(401, text="bad key"),
            httpx.Response(200, json=completion("{}")),
        ])

        assert await classifier.initialize() is False
        assert await classifier.initialize() is True
        assert await classifier.initialize() is True
        assert len(self.requests) == 2
