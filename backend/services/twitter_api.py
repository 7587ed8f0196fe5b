"""
twitterapi.io client: the external metrics source for clips.

API details:
  Endpoint:   GET https://api.twitterapi.io/twitter/tweets?tweet_ids=<id>
  Auth:       X-API-Key: <TWITTER_API_KEY>
  Response:   {"tweets": [...]} (older responses use "data")

Field names vary between API versions, so every metric is read from its
first non-empty alternative (viewCount / views.count, likeCount /
favorite_count, ...).

Failure contract: fetch functions never raise. Any failure (missing API key,
non-retryable HTTP error, retries exhausted, tweet not found) is logged and
returned as None, which callers treat as "fetch failed".
"""

import logging
import re
import time
from datetime import datetime, timezone
from typing import Any, Optional
from urllib.parse import urlparse

import httpx

import config
from models.schemas import TagCompliance, TweetData, TweetEntities

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------
MAX_RETRIES = 3            # Retry count for network/rate-limit errors
RETRY_BACKOFF_BASE = 2.0   # Linear backoff base (2s, 4s, 6s)
REQUEST_TIMEOUT = 30.0     # HTTP timeout per request in seconds

TWITTER_HOST_RE = re.compile(r"^(www\.)?(twitter\.com|x\.com)$", re.IGNORECASE)
STATUS_PATH_RE = re.compile(r"^/([^/]+)/status/(\d+)")


# ===========================================================================
# URL parsing
# ===========================================================================

def parse_tweet_id(url: str) -> Optional[str]:
    """
    Extract the tweet id from a Twitter/X status URL.

      https://twitter.com/user/status/123456789        → "123456789"
      https://x.com/user/status/123456789?s=20         → "123456789"
      https://example.com/user/status/123              → None
    """
    match = _match_status_url(url)
    return match.group(2) if match else None


def parse_username(url: str) -> Optional[str]:
    match = _match_status_url(url)
    return match.group(1) if match else None


def _match_status_url(url: str) -> Optional[re.Match]:
    try:
        parsed = urlparse(url)
    except (ValueError, TypeError):
        return None
    if not parsed.hostname or not TWITTER_HOST_RE.match(parsed.hostname):
        return None
    return STATUS_PATH_RE.match(parsed.path)


# ===========================================================================
# Fetch
# ===========================================================================

def fetch_tweet_by_id(
    tweet_id: str,
    client: Optional[httpx.Client] = None,
) -> Optional[TweetData]:
    """
    Fetch current metrics and text for one tweet.

    Args:
        tweet_id: Numeric tweet id as a string
        client:   Optional shared httpx.Client (one is created otherwise)

    Returns:
        TweetData, or None if the fetch failed for any reason.
    """
    if not config.TWITTER_API_KEY:
        logger.error("TWITTER_API_KEY not set: cannot fetch tweet metrics")
        return None

    url = f"{config.TWITTER_API_BASE_URL}/twitter/tweets"
    params = {"tweet_ids": tweet_id}
    headers = {"X-API-Key": config.TWITTER_API_KEY}

    if client is None:
        with httpx.Client(timeout=REQUEST_TIMEOUT) as own_client:
            data = _get_with_retry(own_client, url, params, headers, tweet_id)
    else:
        data = _get_with_retry(client, url, params, headers, tweet_id)

    if data is None:
        return None

    tweets = data.get("tweets") or data.get("data") or []
    if not tweets:
        logger.warning(f"Tweet {tweet_id} not found in API response")
        return None

    return _parse_tweet(tweets[0], tweet_id)


def fetch_tweet_by_url(url: str, client: Optional[httpx.Client] = None) -> Optional[TweetData]:
    """Fetch by status URL; fills author_username from the URL if the API omits it."""
    tweet_id = parse_tweet_id(url)
    if not tweet_id:
        return None

    tweet = fetch_tweet_by_id(tweet_id, client=client)
    if tweet is not None and not tweet.author_username:
        tweet.author_username = parse_username(url) or ""
    return tweet


def _get_with_retry(
    client: httpx.Client,
    url: str,
    params: dict,
    headers: dict,
    tweet_id: str,
) -> Optional[dict]:
    """
    GET with retry logic.

    Retries on:
      - 429 (rate limit): waits RETRY_BACKOFF_BASE * attempt seconds
      - 5xx server errors: same backoff
      - Network errors: same backoff
    Other 4xx responses are not retried.
    """
    for attempt in range(1, MAX_RETRIES + 1):
        try:
            response = client.get(url, params=params, headers=headers)

            # --- Success ---
            if response.status_code == 200:
                return response.json()

            # --- Rate limited (429) or server error (5xx): retryable ---
            if response.status_code == 429 or response.status_code >= 500:
                wait_time = RETRY_BACKOFF_BASE * attempt
                logger.warning(
                    f"Twitter API returned {response.status_code} for tweet {tweet_id}, "
                    f"attempt {attempt}/{MAX_RETRIES}, waiting {wait_time}s..."
                )
                if attempt < MAX_RETRIES:
                    time.sleep(wait_time)
                continue

            # --- Client error (4xx, not 429): not retryable ---
            logger.error(
                f"Twitter API error {response.status_code} for tweet {tweet_id}: "
                f"{response.text[:300]}"
            )
            return None

        except httpx.RequestError as e:
            wait_time = RETRY_BACKOFF_BASE * attempt
            logger.warning(
                f"Network error fetching tweet {tweet_id}, "
                f"attempt {attempt}/{MAX_RETRIES}: {e}"
            )
            if attempt < MAX_RETRIES:
                time.sleep(wait_time)

        except ValueError as e:
            logger.error(f"Invalid JSON from Twitter API for tweet {tweet_id}: {e}")
            return None

    logger.error(f"All {MAX_RETRIES} retries exhausted for tweet {tweet_id}")
    return None


# ===========================================================================
# Response parsing
# ===========================================================================

def _parse_tweet(raw: dict, tweet_id: str) -> TweetData:
    author = raw.get("author") or {}
    user = raw.get("user") or {}
    views_obj = raw.get("views") if isinstance(raw.get("views"), dict) else {}
    entities = raw.get("entities") or {}

    view_count = _safe_int(_first(raw.get("viewCount"), views_obj.get("count")))

    return TweetData(
        id=str(raw.get("id") or tweet_id),
        text=raw.get("text") or raw.get("full_text") or "",
        author_username=author.get("userName") or user.get("screen_name") or "",
        views=view_count,
        likes=_safe_int(_first(raw.get("likeCount"), raw.get("favorite_count"))),
        retweets=_safe_int(_first(raw.get("retweetCount"), raw.get("retweet_count"))),
        replies=_safe_int(_first(raw.get("replyCount"), raw.get("reply_count"))),
        impressions=_safe_int(_first(raw.get("viewCount"), raw.get("impressionCount"))),
        created_at=_parse_twitter_datetime(raw.get("createdAt") or raw.get("created_at")),
        entities=TweetEntities(
            hashtags=[
                h.get("text") or h.get("tag") or ""
                for h in entities.get("hashtags") or []
            ],
            mentions=[
                m.get("screen_name") or m.get("username") or ""
                for m in entities.get("user_mentions") or entities.get("mentions") or []
            ],
            urls=[
                u.get("expanded_url") or u.get("url") or ""
                for u in entities.get("urls") or []
            ],
        ),
    )


def _first(*values: Any) -> Any:
    for value in values:
        if value:
            return value
    return None


def _safe_int(value: Any, default: int = 0) -> int:
    if value is None:
        return default
    try:
        return int(value)
    except (ValueError, TypeError):
        return default


def _parse_twitter_datetime(value: Any) -> Optional[datetime]:
    """
    Parse either ISO 8601 or the classic Twitter format
    ('Wed Oct 10 20:19:24 +0000 2018'). Returns naive UTC.
    """
    if not value:
        return None
    for parser in (
        lambda v: datetime.fromisoformat(v.replace("Z", "+00:00")),
        lambda v: datetime.strptime(v, "%a %b %d %H:%M:%S %z %Y"),
    ):
        try:
            parsed = parser(str(value))
        except ValueError:
            continue
        if parsed.tzinfo is not None:
            parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
        return parsed
    logger.debug(f"Could not parse tweet datetime: {value!r}")
    return None


# ===========================================================================
# Tag compliance
# ===========================================================================

def check_tag_compliance(
    text: str,
    entities: TweetEntities,
    required_tags: list[str],
) -> TagCompliance:
    """
    Check a tweet against the campaign's required tags.

    Tag kinds:
      @name    → matches a mention (case-insensitive) or appears in the text
      #name    → matches a hashtag or appears in the text
      a.domain → contained in an expanded URL or appears in the text
      other    → plain case-insensitive substring of the text

    compliant is True when at least one required tag is found.
    """
    found: list[str] = []
    missing: list[str] = []
    lower_text = (text or "").lower()

    for tag in required_tags:
        lower_tag = tag.lower()

        if tag.startswith("@"):
            name = lower_tag[1:]
            is_found = any(m.lower() == name for m in entities.mentions)
        elif tag.startswith("#"):
            name = lower_tag[1:]
            is_found = any(h.lower() == name for h in entities.hashtags)
        elif "." in tag:
            is_found = any(lower_tag in u.lower() for u in entities.urls)
        else:
            is_found = False

        if is_found or lower_tag in lower_text:
            found.append(tag)
        else:
            missing.append(tag)

    return TagCompliance(compliant=len(found) > 0, found=found, missing=missing)
