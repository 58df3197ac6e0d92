"""Upstream Aha! client layering the response cache and rate limiter over httpx."""

import asyncio
import json
from typing import Any, Dict, List, Optional, Set

import httpx

from aha_smt.cache import TTLCache, get_cache_key
from aha_smt.fetcher.errors import AhaAPIError, AhaGraphQLError
from aha_smt.fetcher.http_client import AsyncHTTPClient
from aha_smt.fetcher.rate_limiter import RateLimiter
from aha_smt.fetcher.retry_handler import RetryPolicy
from aha_smt.models.config import AhaConfig
from aha_smt.models.data_models import FeaturesPage, Pagination
from aha_smt.monitoring.logger import StructuredLogger


FEATURE_LIST_FIELDS = (
    "id,reference_num,name,score,work_units,original_estimate,workflow_status,"
    "assigned_to_user,tags,position,created_at"
)
FEATURE_DETAIL_FIELDS = (
    "id,reference_num,name,score,work_units,original_estimate,workflow_status,"
    "assigned_to_user,tags,team_location,position,created_at,updated_at,"
    "description,requirements,release"
)
RELEASE_FIELDS = "id,reference_num,name,start_date,release_date,status,progress,parking_lot"
PAGE_SIZE = 200

ITERATION_STATUSES = {10: "planning", 20: "started", 30: "complete"}
ITERATION_PAGE_SIZE = 50

ITERATION_FIELDS = """
  id name referenceNum status startDate endDate
  capacity { value units }
  records {
    ... on Feature {
      id referenceNum name
      originalEstimate { value units }
      workflowStatus { id name color position internalMeaning }
      assignedToUser { id name email }
      tags { name }
      createdAt
    }
  }
"""

ITERATIONS_QUERY = """
query($projectId: ID!, $page: Int!, $per: Int!) {
  iterations(filters: { projectId: $projectId }, page: $page, per: $per) {
    nodes { %s }
    isLastPage
  }
}
""" % ITERATION_FIELDS

PRODUCT_FEATURES_QUERY = """
query($projectId: ID!, $page: Int!, $per: Int!) {
  features(filters: { projectId: $projectId }, page: $page, per: $per) {
    nodes {
      id referenceNum name
      workDone { value }
      originalEstimate { value }
      score
      workflowStatus { id name position color internalMeaning }
      workflowKind { id name }
      assignedToUser { id name email }
      tags { name }
      teamLocation
      position
      createdAt
    }
    isLastPage
  }
}
"""

TEAM_LOCATIONS_QUERY = """
query($projectId: ID!, $page: Int!, $per: Int!) {
  features(filters: { projectId: $projectId }, page: $page, per: $per) {
    nodes { teamLocation }
    isLastPage
  }
}
"""


def _value(measure: Optional[Dict[str, Any]]) -> Any:
    return measure.get("value") if measure else None


def _map_workflow_status(status: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not status:
        return None
    color = status.get("color")
    # Iteration records carry the color as an RGB integer
    if isinstance(color, int):
        color = f"#{color:06x}"
    return {
        "id": status["id"],
        "name": status["name"],
        "color": color,
        "position": status.get("position"),
        "internal_meaning": status.get("internalMeaning"),
    }


def _map_feature_node(node: Dict[str, Any]) -> Dict[str, Any]:
    """Convert a GraphQL feature node to the REST v1 field names."""
    return {
        "id": node["id"],
        "reference_num": node.get("referenceNum"),
        "name": node.get("name"),
        "work_units": _value(node.get("workDone")),
        "original_estimate": _value(node.get("originalEstimate")),
        "score": node.get("score"),
        "workflow_status": _map_workflow_status(node.get("workflowStatus")),
        "workflow_kind": node.get("workflowKind"),
        "assigned_to_user": node.get("assignedToUser"),
        "tags": [t["name"] for t in node.get("tags") or []],
        "team_location": node.get("teamLocation"),
        "position": node.get("position", 0),
        "created_at": node.get("createdAt"),
    }


def _map_iteration(node: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": node["id"],
        "name": node.get("name"),
        "reference_num": node.get("referenceNum"),
        "status": ITERATION_STATUSES.get(node.get("status"), "planning"),
        "start_date": node.get("startDate"),
        "end_date": node.get("endDate"),
        "capacity": _value(node.get("capacity")),
        "feature_count": len(node.get("records") or []),
    }


class AhaClient:
    """
    Fetch orchestration for the Aha! REST and GraphQL APIs.

    Responsibilities:
    - Serve GET requests from the TTL cache, bypassing limiter and network on a hit
    - Serve stale entries immediately and refresh them once in the background
    - Collapse identical concurrent GETs into a single upstream call
    - Acquire a rate-limit token before every upstream call, retries included
    - Invalidate cached reads under a resource prefix after each write
    """

    def __init__(
        self,
        config: AhaConfig,
        http_client: AsyncHTTPClient,
        cache: Optional[TTLCache] = None,
        rate_limiter: Optional[RateLimiter] = None,
        retry_policy: Optional[RetryPolicy] = None,
        logger: Optional[StructuredLogger] = None,
        sleeper=asyncio.sleep,
    ):
        """
        Initialize client with its acceleration components.

        Args:
            config: Upstream configuration (base URLs, default TTL, limits)
            http_client: Entered AsyncHTTPClient used for network I/O
            cache: Response cache (built from config if omitted)
            rate_limiter: Outbound limiter (built from config if omitted)
            retry_policy: Retry policy (built from config if omitted)
            logger: Optional structured logger for telemetry
            sleeper: Async sleep used for retry backoff
        """
        self.config = config
        self.http_client = http_client
        self.logger = logger
        self.cache = cache or TTLCache(
            default_ttl=config.cache_ttl_seconds,
            stale_multiplier=config.cache_stale_multiplier,
            logger=logger,
        )
        self.rate_limiter = rate_limiter or RateLimiter.from_config(config, logger=logger)
        self.retry_policy = retry_policy or RetryPolicy(
            max_retries=config.max_retries,
            base_delay=config.retry_base_delay,
            max_delay=config.retry_max_delay,
            jitter_max=config.retry_jitter_max,
            retryable_status_codes=config.retryable_status_codes,
        )
        self._sleep = sleeper
        self._inflight: Dict[str, asyncio.Task] = {}
        # Bumped on every invalidation; responses requested before a bump are not cached
        self._generation = 0
        self._pending_refreshes: Set[str] = set()
        self._background: Set[asyncio.Task] = set()

    # --- Core fetch orchestration ---

    async def fetch(
        self,
        path: str,
        params: Optional[Dict[str, str]] = None,
        method: str = "GET",
        body: Any = None,
        no_cache: bool = False,
        cache_ttl: Optional[float] = None,
    ) -> Any:
        """
        Call a REST endpoint under the API base URL.

        Args:
            path: Resource path, e.g. ``/releases/123/features``
            params: Query parameters
            method: HTTP method
            body: JSON body for writes
            no_cache: Skip the cache for this GET
            cache_ttl: TTL override in seconds for the cached response

        Returns:
            Decoded JSON payload

        Raises:
            AhaAPIError: On a non-2xx response after retries
            httpx.TransportError: On network failure after retries
        """
        url = f"{self.config.api_base_url}{path}"
        cacheable = method == "GET" and not no_cache
        if not cacheable:
            return await self._request(method, url, params, body)

        cache_key = get_cache_key(url, params)
        cached = self.cache.get_stale(cache_key)
        if cached is not None:
            if cached.is_stale:
                self._schedule_refresh(cache_key, url, params, cache_ttl)
            return cached.value

        return await self._dedupe(
            cache_key,
            lambda: self._fetch_and_store(cache_key, "GET", url, params, None, cache_ttl),
        )

    async def fetch_all_pages(
        self,
        path: str,
        data_key: str,
        params: Optional[Dict[str, str]] = None,
        cache_ttl: Optional[float] = None,
    ) -> List[Any]:
        """
        Walk every page of a list endpoint and concatenate ``data_key`` items.

        Pages are cached individually, so a later single-page read of the
        same request shares the entry.
        """
        items: List[Any] = []
        page = 1

        while True:
            page_params = {**(params or {}), "per_page": str(PAGE_SIZE), "page": str(page)}
            response = await self.fetch(path, params=page_params, cache_ttl=cache_ttl)
            items.extend(response.get(data_key) or [])

            pagination = response.get("pagination")
            if not pagination or pagination["current_page"] >= pagination["total_pages"]:
                break
            page += 1

        return items

    async def graphql(
        self,
        query: str,
        variables: Optional[Dict[str, Any]] = None,
        cache_ttl: Optional[float] = None,
    ) -> Any:
        """
        Run a cached GraphQL query against the v2 API.

        Raises:
            AhaGraphQLError: If the response carries errors or no data
        """
        cache_key = get_cache_key(
            f"graphql:{query}:{json.dumps(variables or {}, sort_keys=True)}"
        )
        # Stale GraphQL data is served as-is until its retention window ends
        cached = self.cache.get_stale(cache_key)
        if cached is not None:
            return cached.value

        async def run() -> Any:
            generation = self._generation
            payload = await self._request(
                "POST",
                self.config.graphql_url,
                None,
                {"query": query, "variables": variables},
            )
            if not payload:
                raise AhaGraphQLError("returned no data")
            if payload.get("errors"):
                raise AhaGraphQLError(payload["errors"][0].get("message", "unknown error"))
            if not payload.get("data"):
                raise AhaGraphQLError("returned no data")
            if generation == self._generation:
                self.cache.set(cache_key, payload["data"], cache_ttl)
            return payload["data"]

        return await self._dedupe(cache_key, run)

    def invalidate(self, pattern: str) -> int:
        """
        Evict cached reads whose key contains ``pattern``.

        Reads already in flight still answer their callers but do not
        store their (possibly pre-write) payload, and later reads of a
        matching key start a new upstream request.
        """
        self._generation += 1
        for key in [k for k in self._inflight if pattern in k]:
            del self._inflight[key]
        return self.cache.invalidate(pattern)

    def reset(self) -> None:
        """Drop cached data and refill the rate limiter (test isolation hook)."""
        self._generation += 1
        self._inflight.clear()
        self.cache.clear()
        self.rate_limiter.reset()

    async def aclose(self) -> None:
        """Wait for background refreshes to settle."""
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)

    # --- Resource methods ---

    async def get_current_user(self) -> Dict[str, Any]:
        response = await self.fetch("/me", cache_ttl=300)
        return response["user"]

    async def list_products(self) -> List[Dict[str, Any]]:
        return await self.fetch_all_pages(
            "/products",
            "products",
            {"fields": "id,reference_prefix,name,product_line,workspace_type"},
            cache_ttl=300,
        )

    async def list_releases_in_product(self, product_id: str) -> List[Dict[str, Any]]:
        return await self.fetch_all_pages(
            f"/products/{product_id}/releases",
            "releases",
            {"fields": RELEASE_FIELDS},
            cache_ttl=120,
        )

    async def get_release(self, release_id: str) -> Dict[str, Any]:
        response = await self.fetch(
            f"/releases/{release_id}",
            params={"fields": RELEASE_FIELDS},
            cache_ttl=120,
        )
        return response["release"]

    async def list_features_page(
        self,
        release_id: str,
        page: int = 1,
        per_page: int = PAGE_SIZE,
    ) -> FeaturesPage:
        """Fetch a single page of release features for paginated views."""
        data = await self.fetch(
            f"/releases/{release_id}/features",
            params={
                "fields": FEATURE_LIST_FIELDS,
                "per_page": str(per_page),
                "page": str(page),
            },
        )
        pagination = data.get("pagination") or {}
        return FeaturesPage(
            features=data.get("features") or [],
            pagination=Pagination(
                total_records=pagination.get("total_records", 0),
                total_pages=pagination.get("total_pages", 1),
                current_page=pagination.get("current_page", page),
                per_page=pagination.get("per_page", per_page),
            ),
        )

    async def list_features_in_release(self, release_id: str) -> List[Dict[str, Any]]:
        # Lean field set; descriptions are fetched per feature via get_feature.
        return await self.fetch_all_pages(
            f"/releases/{release_id}/features",
            "features",
            {"fields": FEATURE_LIST_FIELDS},
        )

    async def list_features_for_epic(self, epic_ref: str) -> List[Dict[str, Any]]:
        return await self.fetch_all_pages(
            f"/epics/{epic_ref}/features",
            "features",
            {"fields": FEATURE_LIST_FIELDS},
        )

    async def get_feature(self, feature_id: str) -> Dict[str, Any]:
        response = await self.fetch(
            f"/features/{feature_id}",
            params={"fields": FEATURE_DETAIL_FIELDS},
        )
        return response["feature"]

    async def update_feature_score(self, feature_id: str, score: float) -> Dict[str, Any]:
        response = await self.fetch(
            f"/features/{feature_id}",
            method="PUT",
            body={"feature": {"score": score}},
        )
        self.invalidate(f"/features/{feature_id}")
        self.invalidate("/releases/")
        return response["feature"]

    async def update_feature_work_units(self, feature_id: str, work_units: float) -> Dict[str, Any]:
        response = await self.fetch(
            f"/features/{feature_id}",
            method="PUT",
            body={"feature": {"work_units": work_units}},
        )
        self.invalidate(f"/features/{feature_id}")
        self.invalidate("/products/")
        return response["feature"]

    async def update_feature_estimate(self, feature_id: str, estimate: float) -> Dict[str, Any]:
        response = await self.fetch(
            f"/features/{feature_id}",
            method="PUT",
            body={"feature": {"original_estimate": estimate}},
        )
        self.invalidate(f"/features/{feature_id}")
        self.invalidate("/products/")
        return response["feature"]

    async def list_feature_votes(self, feature_id: str) -> List[Dict[str, Any]]:
        response = await self.fetch(f"/features/{feature_id}/votes", cache_ttl=30)
        return response.get("votes") or []

    async def create_feature_vote(self, feature_id: str, user_id: str) -> Dict[str, Any]:
        response = await self.fetch(
            f"/features/{feature_id}/votes",
            method="POST",
            body={"vote": {"user_id": user_id}},
        )
        self.invalidate(f"/features/{feature_id}")
        return response["vote"]

    async def delete_feature_vote(self, feature_id: str, vote_id: str) -> None:
        await self.fetch(f"/features/{feature_id}/votes/{vote_id}", method="DELETE")
        self.invalidate(f"/features/{feature_id}")

    async def list_teams(self) -> List[Dict[str, Any]]:
        return await self.fetch_all_pages(
            "/project_teams",
            "project_teams",
            {"fields": "id,name,team_members"},
            cache_ttl=600,
        )

    async def list_users_in_product(self, product_id: str) -> List[Dict[str, Any]]:
        project_users = await self.fetch_all_pages(
            f"/products/{product_id}/users",
            "project_users",
            {"fields": "id,name,email,avatar_url"},
            cache_ttl=300,
        )
        # Unwrap project_user records, dropping ones without a user id
        users = [pu.get("user") for pu in project_users]
        return [u for u in users if u and u.get("id")]

    # --- GraphQL-backed resources ---

    async def list_iterations(self, team_product_id: str) -> List[Dict[str, Any]]:
        """List a team's iterations (sprints) with their feature counts."""
        return [_map_iteration(node) for node in await self._iteration_nodes(team_product_id)]

    async def get_iteration(self, team_product_id: str, reference_num: str) -> Optional[Dict[str, Any]]:
        for iteration in await self.list_iterations(team_product_id):
            if iteration["reference_num"] == reference_num:
                return iteration
        return None

    async def list_features_in_iteration(self, team_product_id: str, iteration_ref: str) -> List[Dict[str, Any]]:
        """Features scheduled in an iteration, read from the cached iteration listing."""
        for node in await self._iteration_nodes(team_product_id):
            if node.get("referenceNum") == iteration_ref:
                return [_map_feature_node(record) for record in node.get("records") or []]
        return []

    async def list_features_in_product(
        self,
        product_id: str,
        team_location: Optional[str] = None,
        tag: Optional[str] = None,
        exclude_workflow_kinds: Optional[List[str]] = None,
    ) -> List[Dict[str, Any]]:
        """
        List every feature in a product via GraphQL, optionally filtered.

        Args:
            product_id: Product (project) id
            team_location: Keep only features at this team location
            tag: Keep only features carrying this tag (case-insensitive)
            exclude_workflow_kinds: Drop features of these workflow kinds

        Returns:
            Features in REST field naming, de-duplicated by id
        """
        nodes = await self._graphql_pages(
            PRODUCT_FEATURES_QUERY, "features", {"projectId": product_id}, per_page=100
        )
        # The upstream occasionally repeats a feature across pages
        features = list({node["id"]: _map_feature_node(node) for node in nodes}.values())

        if team_location:
            features = [f for f in features if f["team_location"] == team_location]
        if exclude_workflow_kinds:
            features = [
                f for f in features
                if not f["workflow_kind"] or f["workflow_kind"]["name"] not in exclude_workflow_kinds
            ]
        if tag:
            features = [f for f in features if tag.lower() in (t.lower() for t in f["tags"])]
        return features

    async def list_team_locations(self, product_id: str) -> List[str]:
        """Distinct team locations used by a product's features, sorted case-insensitively."""
        nodes = await self._graphql_pages(
            TEAM_LOCATIONS_QUERY, "features", {"projectId": product_id}, per_page=PAGE_SIZE
        )
        locations = {node["teamLocation"] for node in nodes if node.get("teamLocation")}
        return sorted(locations, key=str.casefold)

    async def _iteration_nodes(self, team_product_id: str) -> List[Dict[str, Any]]:
        return await self._graphql_pages(
            ITERATIONS_QUERY,
            "iterations",
            {"projectId": team_product_id},
            per_page=ITERATION_PAGE_SIZE,
            cache_ttl=120,
        )

    async def _graphql_pages(
        self,
        query: str,
        connection: str,
        variables: Dict[str, Any],
        per_page: int,
        cache_ttl: Optional[float] = None,
    ) -> List[Dict[str, Any]]:
        """Collect ``connection.nodes`` across pages until ``isLastPage``."""
        nodes: List[Dict[str, Any]] = []
        page = 1
        while True:
            data = await self.graphql(query, {**variables, "page": page, "per": per_page}, cache_ttl)
            result = data.get(connection) or {}
            nodes.extend(result.get("nodes") or [])
            if result.get("isLastPage", True):
                break
            page += 1
        return nodes

    # --- Internals ---

    async def _dedupe(self, cache_key: str, factory) -> Any:
        """Share one in-flight task between identical concurrent requests."""
        task = self._inflight.get(cache_key)
        if task is None:
            task = asyncio.ensure_future(factory())
            self._inflight[cache_key] = task
            task.add_done_callback(lambda done: self._forget_inflight(cache_key, done))
        return await asyncio.shield(task)

    def _forget_inflight(self, cache_key: str, task: asyncio.Task) -> None:
        # An invalidation may already have replaced this entry with a newer request
        if self._inflight.get(cache_key) is task:
            del self._inflight[cache_key]

    async def _fetch_and_store(
        self,
        cache_key: str,
        method: str,
        url: str,
        params: Optional[Dict[str, str]],
        body: Any,
        cache_ttl: Optional[float],
    ) -> Any:
        generation = self._generation
        data = await self._request(method, url, params, body)
        if generation == self._generation:
            self.cache.set(cache_key, data, cache_ttl)
        return data

    def _schedule_refresh(
        self,
        cache_key: str,
        url: str,
        params: Optional[Dict[str, str]],
        cache_ttl: Optional[float],
    ) -> None:
        if cache_key in self._pending_refreshes:
            return
        self._pending_refreshes.add(cache_key)
        task = asyncio.ensure_future(self._refresh(cache_key, url, params, cache_ttl))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _refresh(
        self,
        cache_key: str,
        url: str,
        params: Optional[Dict[str, str]],
        cache_ttl: Optional[float],
    ) -> None:
        try:
            await self._fetch_and_store(cache_key, "GET", url, params, None, cache_ttl)
        except (AhaAPIError, httpx.HTTPError, ValueError) as e:
            # Stale data was already served; the next read retries.
            if self.logger:
                self.logger.refresh_failed(cache_key, str(e))
        finally:
            self._pending_refreshes.discard(cache_key)

    async def _request(
        self,
        method: str,
        url: str,
        params: Optional[Dict[str, str]],
        body: Any,
    ) -> Any:
        """
        Perform one rate-limited upstream call with retries.

        Every attempt takes a limiter token, so retries count against the
        upstream budget like any other call.
        """
        attempt = 0
        while True:
            await self.rate_limiter.acquire()
            if self.logger:
                self.logger.fetch_start(method, url)
            start = asyncio.get_running_loop().time()

            try:
                response = await self.http_client.request(method, url, params=params, json=body)
            except httpx.TimeoutException:
                if self.logger:
                    self.logger.fetch_error(method, url, None, "timeout", attempt)
                if not (
                    self.retry_policy.is_retryable(is_timeout=True)
                    and self.retry_policy.should_retry(attempt)
                ):
                    raise
                await self._sleep(self.retry_policy.backoff(attempt))
                attempt += 1
                continue

            if response.is_success:
                if self.logger:
                    elapsed = asyncio.get_running_loop().time() - start
                    self.logger.fetch_success(method, url, elapsed * 1000)
                if response.status_code == 204 or not response.content:
                    return None
                return response.json()

            if self.logger:
                self.logger.fetch_error(method, url, response.status_code, response.text, attempt)
            if (
                self.retry_policy.is_retryable(response.status_code)
                and self.retry_policy.should_retry(attempt)
            ):
                await self._sleep(self.retry_policy.backoff(attempt))
                attempt += 1
                continue

            raise AhaAPIError(response.status_code, response.text, url=url)
