import random

import httpx
import pytest

from overlay.services.content_filter import contains_blocked_content
from overlay.services.liveness import HttpLivenessCheck
from overlay.services.poll_content import MAX_OPTIONS, RandomPollContentProvider
from overlay.services.poll_engine import validate_poll


def _liveness(handler, **kwargs):
    return HttpLivenessCheck(
        url="https://platform.test/public/v1/channels",
        token="tok",
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


@pytest.mark.asyncio
async def test_liveness_reads_livestream_flag_with_bearer_token():
    seen = {}

    def handler(request):
        seen["auth"] = request.headers.get("Authorization")
        return httpx.Response(200, json={"data": [{"livestream": {"is_live": True}}]})

    assert await _liveness(handler).is_session_live() is True
    assert seen["auth"] == "Bearer tok"


@pytest.mark.asyncio
async def test_liveness_falls_back_to_channel_flag():
    def handler(request):
        return httpx.Response(200, json={"data": [{"livestream": None, "is_live": True}]})

    assert await _liveness(handler).is_session_live() is True


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(200, json={"data": []}),
        httpx.Response(200, json={"data": [{"livestream": {"is_live": False}}]}),
        httpx.Response(401, json={"error": "unauthorized"}),
        httpx.Response(200, text="not json"),
    ],
)
async def test_liveness_reports_offline_on_anything_unexpected(response):
    assert await _liveness(lambda request: response).is_session_live() is False


@pytest.mark.asyncio
async def test_liveness_without_url_is_offline():
    assert await HttpLivenessCheck(url="").is_session_live() is False


@pytest.mark.asyncio
async def test_random_content_is_always_a_valid_poll():
    provider = RandomPollContentProvider(rng=random.Random(7))
    for _ in range(50):
        content = await provider.generate_poll_content()
        assert 2 <= len(content.options) <= MAX_OPTIONS
        assert len(set(content.options)) == len(content.options)
        validate_poll(content.question, content.options)


@pytest.mark.asyncio
async def test_mood_polls_cover_every_mood_group():
    provider = RandomPollContentProvider(rng=random.Random(3), mood_weight=1.0)
    content = await provider.generate_poll_content()
    assert len(content.options) == MAX_OPTIONS


@pytest.mark.parametrize(
    "text,blocked",
    [
        ("What a classic", False),
        ("Best snack?", False),
        ("F U C K", False),
        ("fuck this", True),
        ("FVCK", True),
        ("r3tard", True),
        ("pedo-bear", True),
    ],
)
def test_content_filter_is_word_level(text, blocked):
    assert contains_blocked_content(text) is blocked
