"""
Tests for mapping provider errors onto retryable and non-retryable errors.
"""

import httpx
import openai
import pytest

from frontlink.utils.errors import (
    PermanentServiceError,
    TransientServiceError,
    classify_http_status,
    classify_openai_error,
)

REQUEST = httpx.Request("POST", "https://api.openai.com/v1/embeddings")


@pytest.mark.parametrize("status", [408, 409, 429, 500, 503, 529])
def test_retryable_statuses(status):
    assert isinstance(classify_http_status(status, "boom"), TransientServiceError)


@pytest.mark.parametrize("status", [400, 401, 403, 404, 422])
def test_non_retryable_statuses(status):
    assert isinstance(classify_http_status(status, "boom"), PermanentServiceError)


def test_exhausted_quota_is_permanent():
    error = classify_http_status(429, "quota", provider="openai", code="insufficient_quota")
    assert isinstance(error, PermanentServiceError)
    assert error.status_code == 429
    assert error.provider == "openai"


def test_classify_openai_rate_limit():
    error = openai.RateLimitError(
        "Rate limit reached", response=httpx.Response(429, request=REQUEST), body=None
    )
    assert isinstance(classify_openai_error(error), TransientServiceError)


def test_classify_openai_quota():
    error = openai.RateLimitError(
        "You exceeded your current quota",
        response=httpx.Response(429, request=REQUEST),
        body={"code": "insufficient_quota", "message": "You exceeded your current quota"},
    )
    assert isinstance(classify_openai_error(error), PermanentServiceError)


def test_classify_openai_bad_request():
    error = openai.BadRequestError(
        "Invalid input", response=httpx.Response(400, request=REQUEST), body=None
    )
    assert isinstance(classify_openai_error(error), PermanentServiceError)


def test_classify_openai_connection_error():
    error = openai.APIConnectionError(request=REQUEST)
    assert isinstance(classify_openai_error(error), TransientServiceError)
