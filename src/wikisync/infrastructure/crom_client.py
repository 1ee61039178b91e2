import asyncio
import json
import time
from datetime import datetime, timezone
from typing import Any

import aiohttp
from aiohttp import ContentTypeError
from src.config.logger_config import logger

from src.wikisync.application.rate_limiter import RateLimiter
from src.wikisync.domain.errors import RateLimitedError, SyncError, TransientError
from src.wikisync.domain.models import (
    AlternateTitle,
    Attribution,
    PageBatch,
    PageSummary,
    Revision,
    VoteBatch,
    VoteEvent,
)
from src.wikisync.domain.rules import estimate_page_query_cost, estimate_vote_query_cost
from src.wikisync.infrastructure.api_call_log import ApiCallLog

DEFAULT_API_URL = "https://apiv2.crom.avn.sh/graphql"
DEFAULT_BASE_URL = "http://scp-wiki-cn.wikidot.com"

PAGE_COUNT_QUERY = """
query GetTotalPageCount($filter: PageQueryFilter) {
  aggregatePages(filter: $filter) {
    _count
  }
}
"""

PAGES_QUERY = """
query FetchPages($filter: PageQueryFilter, $first: Int, $after: ID) {
  pages(filter: $filter, first: $first, after: $after) {
    edges {
      node {
        url
        ... on WikidotPage {
          wikidotId
          title
          rating
          voteCount
          category
          tags
          createdAt
          revisionCount
          commentCount
          source
          createdBy {
            ... on WikidotUser {
              displayName
              wikidotId
            }
          }
          alternateTitles {
            title
          }
          attributions {
            type
            date
            order
            user {
              ... on UserWikidotNameReference {
                wikidotUser {
                  displayName
                  wikidotId
                }
              }
            }
          }
          revisions(first: 5) {
            edges {
              node {
                wikidotId
                timestamp
                type
                comment
                user {
                  ... on WikidotUser {
                    displayName
                    wikidotId
                  }
                }
              }
            }
          }
        }
      }
      cursor
    }
    pageInfo {
      hasNextPage
      endCursor
    }
  }
}
"""

VOTES_QUERY = """
query FetchPageVotes($pageUrl: URL!, $first: Int, $after: ID) {
  wikidotPage(url: $pageUrl) {
    fuzzyVoteRecords(first: $first, after: $after) {
      edges {
        node {
          userWikidotId
          direction
          timestamp
          user {
            ... on WikidotUser {
              displayName
              wikidotId
            }
          }
        }
        cursor
      }
      pageInfo {
        hasNextPage
        endCursor
      }
    }
  }
}
"""

FIRST_VOTE_QUERY = """
query GetFirstVote($pageUrl: URL!) {
  wikidotPage(url: $pageUrl) {
    fuzzyVoteRecords(first: 1) {
      edges {
        node {
          userWikidotId
        }
      }
    }
  }
}
"""


class CromClient:
    """GraphQL client for the page listing and per-page vote history.

    One attempt per call. Failures are raised as ``RateLimitedError`` or
    ``TransientError``; retry and backoff belong to the caller's error policy.
    """

    def __init__(
        self,
        api_url: str = DEFAULT_API_URL,
        base_url: str = DEFAULT_BASE_URL,
        rate_limiter: RateLimiter | None = None,
        call_log: ApiCallLog | None = None,
        run_id: str | None = None,
        timeout_seconds: float = 45.0,
    ) -> None:
        self.api_url = api_url
        self.base_url = base_url
        self.rate_limiter = rate_limiter
        self.call_log = call_log
        self.run_id = run_id
        self.timeout_seconds = timeout_seconds

    def _page_filter(self) -> dict[str, Any]:
        return {"onWikidotPage": {"url": {"startsWith": self.base_url}}}

    async def fetch_total_page_count(self, session: aiohttp.ClientSession) -> int | None:
        data = await self._post(
            session,
            PAGE_COUNT_QUERY,
            {"filter": self._page_filter()},
            operation="fetch_total_page_count",
            cost=1,
        )
        count = (data.get("aggregatePages") or {}).get("_count")
        return int(count) if count is not None else None

    async def fetch_pages(
        self,
        session: aiohttp.ClientSession,
        cursor: str | None,
        batch_size: int,
    ) -> PageBatch:
        variables: dict[str, Any] = {"filter": self._page_filter(), "first": batch_size}
        if cursor:
            variables["after"] = cursor
        data = await self._post(
            session,
            PAGES_QUERY,
            variables,
            operation="fetch_pages",
            cost=estimate_page_query_cost(batch_size),
        )
        connection = data.get("pages") or {}
        items: list[PageSummary] = []
        for edge in connection.get("edges") or ():
            node = (edge or {}).get("node") or {}
            if not node.get("url"):
                continue
            items.append(parse_page_node(node))
        page_info = connection.get("pageInfo") or {}
        return PageBatch(
            items=tuple(items),
            next_cursor=page_info.get("endCursor"),
            has_more=bool(page_info.get("hasNextPage")),
        )

    async def fetch_votes(
        self,
        session: aiohttp.ClientSession,
        page_url: str,
        cursor: str | None,
        first: int,
    ) -> VoteBatch:
        variables: dict[str, Any] = {"pageUrl": page_url, "first": first}
        if cursor:
            variables["after"] = cursor
        data = await self._post(
            session,
            VOTES_QUERY,
            variables,
            operation="fetch_votes",
            cost=estimate_vote_query_cost(first),
            page_url=page_url,
        )
        page = data.get("wikidotPage")
        if not page:
            return VoteBatch(items=(), next_cursor=None, has_more=False)
        connection = page.get("fuzzyVoteRecords") or {}
        items = tuple(
            parse_vote_node(page_url, (edge or {}).get("node") or {})
            for edge in connection.get("edges") or ()
            if (edge or {}).get("node")
        )
        page_info = connection.get("pageInfo") or {}
        return VoteBatch(
            items=items,
            next_cursor=page_info.get("endCursor"),
            has_more=bool(page_info.get("hasNextPage")),
        )

    async def fetch_first_voter(self, session: aiohttp.ClientSession, page_url: str) -> int | None:
        data = await self._post(
            session,
            FIRST_VOTE_QUERY,
            {"pageUrl": page_url},
            operation="fetch_first_voter",
            cost=1,
            page_url=page_url,
        )
        page = data.get("wikidotPage") or {}
        edges = (page.get("fuzzyVoteRecords") or {}).get("edges") or []
        if not edges:
            return None
        return _opt_int(((edges[0] or {}).get("node") or {}).get("userWikidotId"))

    async def _throttle(self, cost: int) -> None:
        if self.rate_limiter is None:
            return
        delay = self.rate_limiter.reserve(cost)
        if delay > 0:
            await asyncio.sleep(delay)

    async def _post(
        self,
        session: aiohttp.ClientSession,
        query: str,
        variables: dict[str, Any],
        *,
        operation: str,
        cost: int,
        page_url: str | None = None,
    ) -> dict[str, Any]:
        await self._throttle(cost)
        timeout = aiohttp.ClientTimeout(total=self.timeout_seconds, connect=10)
        started_at = datetime.now(timezone.utc).isoformat()
        started = time.monotonic()
        status: int | None = None

        async def record(outcome: str, error: BaseException | None = None) -> None:
            await self._log_call(
                {
                    "run_id": self.run_id,
                    "operation": operation,
                    "page_url": page_url,
                    "request": {"api_url": self.api_url, "variables": variables, "cost": cost},
                    "http": {"status": status},
                    "outcome": outcome,
                    "error": (
                        {"type": type(error).__name__, "message": str(error)} if error is not None else None
                    ),
                    "timing": {
                        "started_at": started_at,
                        "elapsed_ms": round((time.monotonic() - started) * 1000, 1),
                    },
                }
            )

        try:
            async with session.post(
                self.api_url,
                json={"query": query, "variables": variables},
                timeout=timeout,
            ) as resp:
                status = resp.status
                if resp.status == 429:
                    raise RateLimitedError(f"{operation}: HTTP 429")
                if resp.status >= 500:
                    raise TransientError(f"{operation}: HTTP {resp.status}")
                if resp.status != 200:
                    body = await resp.text()
                    raise TransientError(f"{operation}: HTTP {resp.status}: {body[:200]}")
                try:
                    payload = await resp.json()
                except (ContentTypeError, json.JSONDecodeError, ValueError) as exc:
                    raise TransientError(f"{operation}: invalid JSON ({exc})") from exc
        except SyncError as exc:
            await record("rate_limited" if isinstance(exc, RateLimitedError) else "retryable_error", exc)
            raise
        # ClientError 涵蓋連線重置 (ClientOSError)、斷線與 payload 錯誤
        except (aiohttp.ClientError, OSError, asyncio.TimeoutError) as exc:
            await record("retryable_error", exc)
            raise TransientError(f"{operation}: {type(exc).__name__}: {exc}") from exc

        if not isinstance(payload, dict):
            error = TransientError(f"{operation}: unexpected payload type {type(payload).__name__}")
            await record("retryable_error", error)
            raise error

        errors = payload.get("errors")
        if errors:
            message = "; ".join(str((e or {}).get("message", e)) for e in errors)
            lowered = message.lower()
            if "rate limit" in lowered or "429" in lowered:
                error = RateLimitedError(f"{operation}: {message}")
                await record("rate_limited", error)
            else:
                error = TransientError(f"{operation}: {message}")
                await record("retryable_error", error)
            raise error

        data = payload.get("data")
        if data is None:
            error = TransientError(f"{operation}: response has no data")
            await record("retryable_error", error)
            raise error

        await record("success")
        return data

    async def _log_call(self, event: dict[str, Any]) -> None:
        if self.call_log is None:
            return
        try:
            await self.call_log.write_event(event)
        except Exception as exc:
            logger.warning("Failed to log API call: {}", exc)


def _opt_int(value: Any) -> int | None:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _user_ref(user: Any) -> tuple[int | None, str | None]:
    if not isinstance(user, dict):
        return None, None
    nested = user.get("wikidotUser")
    if isinstance(nested, dict):
        user = nested
    return _opt_int(user.get("wikidotId")), user.get("displayName")


def parse_page_node(node: dict[str, Any]) -> PageSummary:
    url = str(node["url"])
    title = str(node.get("title") or "")
    created_by_id, created_by_name = _user_ref(node.get("createdBy"))

    revisions = []
    for edge in (node.get("revisions") or {}).get("edges") or ():
        rev = (edge or {}).get("node")
        if not rev:
            continue
        user_id, user_name = _user_ref(rev.get("user"))
        revisions.append(
            Revision(
                page_url=url,
                page_title=title,
                revision_id=_opt_int(rev.get("wikidotId")),
                timestamp=rev.get("timestamp"),
                user_id=user_id,
                user_name=user_name,
                comment=rev.get("comment"),
                revision_type=rev.get("type"),
            )
        )

    attributions = []
    for item in node.get("attributions") or ():
        if not item:
            continue
        user_id, user_name = _user_ref(item.get("user"))
        attributions.append(
            Attribution(
                page_url=url,
                page_title=title,
                user_id=user_id,
                user_name=user_name,
                attribution_type=item.get("type"),
                date=item.get("date"),
                order=_opt_int(item.get("order")),
            )
        )

    alternate_titles = tuple(
        AlternateTitle(page_url=url, page_title=title, title=str(item.get("title")))
        for item in node.get("alternateTitles") or ()
        if item and item.get("title")
    )

    source = node.get("source")
    return PageSummary(
        url=url,
        wikidot_id=_opt_int(node.get("wikidotId")),
        title=title,
        rating=int(node.get("rating") or 0),
        vote_count=int(node.get("voteCount") or 0),
        tags=tuple(node.get("tags") or ()),
        created_at=node.get("createdAt"),
        revision_count=int(node.get("revisionCount") or 0),
        category=node.get("category"),
        comment_count=int(node.get("commentCount") or 0),
        created_by_id=created_by_id,
        created_by_name=created_by_name,
        source_length=len(source) if isinstance(source, str) else 0,
        revisions=tuple(revisions),
        attributions=tuple(attributions),
        alternate_titles=alternate_titles,
    )


def parse_vote_node(page_url: str, node: dict[str, Any]) -> VoteEvent:
    user_id, user_name = _user_ref(node.get("user"))
    voter_id = _opt_int(node.get("userWikidotId"))
    return VoteEvent(
        page_url=page_url,
        voter_id=voter_id if voter_id is not None else user_id,
        timestamp=str(node.get("timestamp") or ""),
        direction=int(node.get("direction") or 0),
        voter_name=user_name,
    )
