"""
Tests for services/twitter_api.py.

All HTTP is mocked: a MagicMock stands in for httpx.Client, and time.sleep
is patched out so retry tests run instantly.
"""

import sys
import os
from datetime import datetime
from unittest.mock import MagicMock, patch

import httpx
import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from models.schemas import TweetEntities
from services.twitter_api import (
    MAX_RETRIES,
    check_tag_compliance,
    fetch_tweet_by_id,
    fetch_tweet_by_url,
    parse_tweet_id,
    parse_username,
)

RAW_TWEET = {
    "id": "1790000000000000001",
    "text": "New drop from @acme #launch https://t.co/x",
    "viewCount": 150000,
    "likeCount": 1200,
    "retweetCount": 80,
    "replyCount": 45,
    "createdAt": "2026-03-10T12:30:00.000Z",
    "author": {"userName": "alice"},
    "entities": {
        "hashtags": [{"text": "launch"}],
        "user_mentions": [{"screen_name": "acme"}],
        "urls": [{"expanded_url": "https://acme.com/promo"}],
    },
}


def _response(status_code, payload=None):
    response = MagicMock()
    response.status_code = status_code
    response.json.return_value = payload
    response.text = str(payload)
    return response


@pytest.fixture
def api_key():
    with patch("services.twitter_api.config.TWITTER_API_KEY", "test-key"):
        yield


@pytest.fixture
def no_sleep():
    with patch("services.twitter_api.time.sleep") as mock_sleep:
        yield mock_sleep


# ===========================================================================
# URL parsing
# ===========================================================================

class TestParseTweetUrl:

    @pytest.mark.parametrize("url,expected", [
        ("https://twitter.com/alice/status/123456789", "123456789"),
        ("https://x.com/alice/status/123456789?s=20", "123456789"),
        ("https://www.x.com/alice/status/42/photo/1", "42"),
        ("https://example.com/alice/status/123", None),
        ("https://x.com/alice", None),
        ("not a url", None),
        ("", None),
    ])
    def test_tweet_id(self, url, expected):
        assert parse_tweet_id(url) == expected

    def test_username(self):
        assert parse_username("https://x.com/alice/status/1") == "alice"
        assert parse_username("https://example.com/alice/status/1") is None


# ===========================================================================
# Fetch
# ===========================================================================

class TestFetchTweet:

    def test_parses_response(self, api_key):
        client = MagicMock()
        client.get.return_value = _response(200, {"tweets": [RAW_TWEET]})

        tweet = fetch_tweet_by_id("1790000000000000001", client=client)

        assert tweet.views == 150_000
        assert tweet.likes == 1_200
        assert tweet.retweets == 80
        assert tweet.replies == 45
        assert tweet.author_username == "alice"
        assert tweet.created_at == datetime(2026, 3, 10, 12, 30)
        assert tweet.entities.hashtags == ["launch"]
        assert tweet.entities.mentions == ["acme"]

        _, kwargs = client.get.call_args
        assert kwargs["params"] == {"tweet_ids": "1790000000000000001"}
        assert kwargs["headers"] == {"X-API-Key": "test-key"}

    def test_alternate_field_names(self, api_key):
        raw = {
            "id_str": "1",
            "full_text": "hello",
            "views": {"count": "2500"},
            "favorite_count": 7,
            "created_at": "Wed Oct 10 20:19:24 +0000 2018",
            "user": {"screen_name": "bob"},
        }
        client = MagicMock()
        client.get.return_value = _response(200, {"data": [raw]})

        tweet = fetch_tweet_by_id("1", client=client)

        assert tweet.text == "hello"
        assert tweet.views == 2_500
        assert tweet.likes == 7
        assert tweet.author_username == "bob"
        assert tweet.created_at == datetime(2018, 10, 10, 20, 19, 24)

    def test_missing_api_key_returns_none(self):
        client = MagicMock()
        with patch("services.twitter_api.config.TWITTER_API_KEY", ""):
            assert fetch_tweet_by_id("1", client=client) is None
        client.get.assert_not_called()

    def test_not_found_returns_none(self, api_key):
        client = MagicMock()
        client.get.return_value = _response(200, {"tweets": []})
        assert fetch_tweet_by_id("1", client=client) is None

    def test_client_error_not_retried(self, api_key, no_sleep):
        client = MagicMock()
        client.get.return_value = _response(404, {"error": "nope"})

        assert fetch_tweet_by_id("1", client=client) is None
        assert client.get.call_count == 1

    def test_rate_limit_retried_then_succeeds(self, api_key, no_sleep):
        client = MagicMock()
        client.get.side_effect = [
            _response(429),
            _response(200, {"tweets": [RAW_TWEET]}),
        ]

        tweet = fetch_tweet_by_id("1", client=client)

        assert tweet is not None
        assert client.get.call_count == 2
        no_sleep.assert_called_once()

    def test_server_errors_exhaust_retries(self, api_key, no_sleep):
        client = MagicMock()
        client.get.return_value = _response(503)

        assert fetch_tweet_by_id("1", client=client) is None
        assert client.get.call_count == MAX_RETRIES

    def test_network_error_retried(self, api_key, no_sleep):
        client = MagicMock()
        client.get.side_effect = [
            httpx.ConnectError("boom"),
            _response(200, {"tweets": [RAW_TWEET]}),
        ]

        assert fetch_tweet_by_id("1", client=client) is not None

    def test_invalid_json_returns_none(self, api_key):
        response = _response(200)
        response.json.side_effect = ValueError("bad json")
        client = MagicMock()
        client.get.return_value = response

        assert fetch_tweet_by_id("1", client=client) is None

    def test_by_url_fills_username_from_url(self, api_key):
        raw = dict(RAW_TWEET, author={})
        client = MagicMock()
        client.get.return_value = _response(200, {"tweets": [raw]})

        tweet = fetch_tweet_by_url("https://x.com/carol/status/1790000000000000001", client=client)

        assert tweet.author_username == "carol"

    def test_by_url_rejects_non_tweet_url(self, api_key):
        client = MagicMock()
        assert fetch_tweet_by_url("https://example.com/x", client=client) is None
        client.get.assert_not_called()


# ===========================================================================
# Tag compliance
# ===========================================================================

class TestTagCompliance:

    ENTITIES = TweetEntities(
        hashtags=["Launch"],
        mentions=["acme"],
        urls=["https://acme.com/promo"],
    )

    def test_all_kinds_found(self):
        result = check_tag_compliance(
            "check it out", self.ENTITIES, ["@ACME", "#launch", "acme.com"]
        )
        assert result.compliant is True
        assert result.found == ["@ACME", "#launch", "acme.com"]
        assert result.missing == []

    def test_text_fallback(self):
        result = check_tag_compliance("big thanks to @other", TweetEntities(), ["@other"])
        assert result.found == ["@other"]

    def test_one_found_is_enough(self):
        result = check_tag_compliance("#launch", TweetEntities(), ["#launch", "@acme"])
        assert result.compliant is True
        assert result.missing == ["@acme"]

    def test_none_found(self):
        result = check_tag_compliance("nothing here", TweetEntities(), ["#launch", "@acme"])
        assert result.compliant is False
        assert result.found == []

    def test_plain_keyword(self):
        result = check_tag_compliance("Sponsored by ACME", TweetEntities(), ["acme"])
        assert result.compliant is True
