"""
Monday.com API client for the job record store.
Handles GraphQL queries, column mutations and file uploads.
Every call goes through the Retrying Mutation Client; this module only turns
one HTTP exchange into either data or a classified MondayAPIError.
"""

import json
from dataclasses import dataclass
from datetime import date, datetime, tzinfo
from typing import Any

import httpx

from app.config import settings
from app.infrastructure.observability.logging import get_logger
from app.models.domain.job_domain import (
    Job,
    JobKind,
    column_map,
    column_text,
    linked_item_ids,
    parse_date,
)
from app.services.infrastructure.retry_client import (
    RETRYABLE_MESSAGE_MARKERS,
    RetryingMutationClient,
    retry_client,
)
from app.services.monday.columns import DC_COLUMNS, DC_COLUMNS_TO_FETCH, FREELANCER_COLUMNS

logger = get_logger(__name__)

ITEMS_PAGE_LIMIT = 500
RELATED_JOBS_LIMIT = 5


class MondayAPIError(Exception):
    """Custom exception for Monday.com API errors."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        error_code: str | None = None,
        retryable: bool | None = None,
        response_data: dict | None = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.error_code = error_code
        self.retryable = retryable
        self.response_data = response_data or {}


@dataclass
class FreelancerRecord:
    id: str
    name: str
    email: str
    notifications_paused_until: date | None = None
    muted_job_ids_raw: str = ""


@dataclass
class RelatedJob:
    id: str
    name: str
    kind: JobKind
    date: str
    time: str | None = None


JOB_COLUMNS_FRAGMENT = """
    id
    name
    column_values(ids: %s) {
        id
        text
        value
        ... on MirrorValue { display_value }
    }
""" % json.dumps(DC_COLUMNS_TO_FETCH)


class MondayClient:
    """
    Service for Monday.com board operations.

    Point reads, batch reads, single/multi-column writes and file uploads,
    with error classification feeding the retry client.
    """

    def __init__(self, retry: RetryingMutationClient | None = None):
        self._retry = retry or retry_client
        self._client = self._create_client()

    def _create_client(self) -> httpx.AsyncClient:
        timeout = httpx.Timeout(settings.REQUEST_TIMEOUT_SECONDS)
        limits = httpx.Limits(max_keepalive_connections=10, max_connections=20)
        return httpx.AsyncClient(timeout=timeout, limits=limits)

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    def _get_auth_headers(self) -> dict:
        token = settings.MONDAY_API_TOKEN
        if not token:
            raise MondayAPIError("MONDAY_API_TOKEN not configured", retryable=False)
        return {"Authorization": token, "API-Version": settings.MONDAY_API_VERSION}

    def _handle_api_response(self, response: httpx.Response, operation: str) -> dict:
        """
        Turn one HTTP response into data or a classified error.

        Monday reports some failures (rate limits, complexity budget) with
        HTTP 200 and an `errors` payload, so both layers are checked.
        """
        if not response.is_success:
            retryable = response.status_code in settings.RETRY_STATUS_CODES
            logger.warning(
                f"Monday API {operation} HTTP error",
                status_code=response.status_code,
                retryable=retryable,
            )
            raise MondayAPIError(
                f"Monday API error: HTTP {response.status_code}",
                status_code=response.status_code,
                retryable=retryable,
            )

        try:
            data = response.json()
        except ValueError as e:
            logger.error(f"Failed to parse Monday API {operation} response", error=str(e))
            raise MondayAPIError(f"Invalid response format: {e}", retryable=False) from e

        errors = data.get("errors") or (
            [{"message": data["error_message"], "extensions": {"code": data.get("error_code")}}]
            if data.get("error_message")
            else None
        )
        if errors:
            message = json.dumps(errors)[:500]
            error_code = str((errors[0].get("extensions") or {}).get("code") or "")
            retryable = any(m in message.lower() for m in RETRYABLE_MESSAGE_MARKERS) or (
                error_code in {"ComplexityException", "RATE_LIMIT_EXCEEDED", "maxConcurrencyExceeded"}
            )
            logger.warning(
                f"Monday API {operation} returned errors",
                error_code=error_code,
                retryable=retryable,
            )
            raise MondayAPIError(
                f"Monday API query error: {message}",
                status_code=response.status_code,
                error_code=error_code,
                retryable=retryable,
                response_data=data,
            )

        return data.get("data") or {}

    async def _post_query(self, query: str, variables: dict | None, operation: str) -> dict:
        response = await self._client.post(
            settings.MONDAY_API_URL,
            json={"query": query, "variables": variables or {}},
            headers={**self._get_auth_headers(), "Content-Type": "application/json"},
        )
        return self._handle_api_response(response, operation)

    async def query(
        self,
        query: str,
        variables: dict | None = None,
        *,
        operation: str = "query",
        idempotent: bool = True,
        **log_context,
    ) -> dict:
        """Run a GraphQL query or mutation through the retry client."""
        return await self._retry.execute(
            lambda: self._post_query(query, variables, operation),
            operation_name=f"monday.{operation}",
            idempotent=idempotent,
            **log_context,
        )

    # =================================================================
    # JOB READS
    # =================================================================

    async def get_job(self, job_id: str, tz: tzinfo) -> Job | None:
        """Point read of a single job; None if the item does not exist."""
        query = "query ($itemIds: [ID!]!) { items(ids: $itemIds) { %s } }" % JOB_COLUMNS_FRAGMENT
        data = await self.query(query, {"itemIds": [job_id]}, operation="get_job", job_id=job_id)
        items = data.get("items") or []
        if not items:
            logger.info("Job not found", job_id=job_id)
            return None
        return Job(items[0], tz)

    async def _list_board_items(self, board_id: str, fragment: str, operation: str) -> list[dict]:
        """Walk every page of a board's items."""
        first_query = (
            "query ($boardId: [ID!]!) { boards(ids: $boardId) { items_page(limit: %d) "
            "{ cursor items { %s } } } }" % (ITEMS_PAGE_LIMIT, fragment)
        )
        data = await self.query(first_query, {"boardId": [board_id]}, operation=operation)
        boards = data.get("boards") or []
        page = (boards[0] or {}).get("items_page") if boards else None
        items = list((page or {}).get("items") or [])
        cursor = (page or {}).get("cursor")

        next_query = (
            "query ($cursor: String!) { next_items_page(limit: %d, cursor: $cursor) "
            "{ cursor items { %s } } }" % (ITEMS_PAGE_LIMIT, fragment)
        )
        while cursor:
            data = await self.query(next_query, {"cursor": cursor}, operation=f"{operation}_page")
            page = data.get("next_items_page") or {}
            items.extend(page.get("items") or [])
            cursor = page.get("cursor")

        return items

    async def list_jobs(self, tz: tzinfo) -> list[Job]:
        """Batch read of the deliveries board."""
        board_id = settings.MONDAY_BOARD_ID_DELIVERIES
        if not board_id:
            raise MondayAPIError("MONDAY_BOARD_ID_DELIVERIES not configured", retryable=False)
        items = await self._list_board_items(board_id, JOB_COLUMNS_FRAGMENT, "list_jobs")
        return [Job(item, tz) for item in items]

    async def list_related_upcoming_jobs(
        self,
        exclude_job_id: str,
        venue_id: str | None,
        hh_ref: str | None,
        today: date,
        tz: tzinfo,
    ) -> list[RelatedJob]:
        """Upcoming jobs at the same venue or on the same HireHop job."""
        if not venue_id and not hh_ref:
            return []

        related = []
        for job in await self.list_jobs(tz):
            if job.id == exclude_job_id or not job.scheduled_date or job.scheduled_date < today:
                continue
            same_venue = bool(venue_id) and venue_id in linked_item_ids(job.venue_link_raw)
            same_hh_job = bool(hh_ref) and job.hh_ref == hh_ref
            if same_venue or same_hh_job:
                related.append(
                    RelatedJob(
                        id=job.id,
                        name=job.display_name(),
                        kind=job.kind,
                        date=job.scheduled_date_text,
                        time=job.scheduled_time_text or None,
                    )
                )
        return related[:RELATED_JOBS_LIMIT]

    # =================================================================
    # FREELANCER READS
    # =================================================================

    async def find_freelancer(self, email: str) -> FreelancerRecord | None:
        """Find a freelancer by email (case-insensitive)."""
        board_id = settings.MONDAY_BOARD_ID_FREELANCERS
        if not board_id:
            raise MondayAPIError("MONDAY_BOARD_ID_FREELANCERS not configured", retryable=False)

        fragment = "id name column_values(ids: %s) { id text value }" % json.dumps(
            list(FREELANCER_COLUMNS.values())
        )
        items = await self._list_board_items(board_id, fragment, "find_freelancer")

        normalized = email.strip().lower()
        for item in items:
            columns = column_map(item)
            if column_text(columns, FREELANCER_COLUMNS["email"]).lower() != normalized:
                continue
            return FreelancerRecord(
                id=str(item.get("id")),
                name=item.get("name") or email,
                email=normalized,
                notifications_paused_until=parse_date(
                    column_text(columns, FREELANCER_COLUMNS["notifications_paused_until"])
                ),
                muted_job_ids_raw=column_text(columns, FREELANCER_COLUMNS["muted_job_ids"]),
            )
        return None

    # =================================================================
    # WRITES
    # =================================================================

    async def change_simple_column_value(
        self, board_id: str, item_id: str, column_id: str, value: str
    ) -> None:
        """Single-field overwrite with a plain string value."""
        mutation = """
            mutation ($boardId: ID!, $itemId: ID!, $columnId: String!, $value: String!) {
                change_simple_column_value(
                    board_id: $boardId, item_id: $itemId, column_id: $columnId, value: $value
                ) { id }
            }
        """
        await self.query(
            mutation,
            {"boardId": board_id, "itemId": item_id, "columnId": column_id, "value": value},
            operation="change_simple_column_value",
            item_id=item_id,
            column_id=column_id,
        )

    async def change_column_value(
        self, board_id: str, item_id: str, column_id: str, value: dict
    ) -> None:
        """Single-field overwrite with a JSON value (status, date, hour columns)."""
        mutation = """
            mutation ($boardId: ID!, $itemId: ID!, $columnId: String!, $value: JSON!) {
                change_column_value(
                    board_id: $boardId, item_id: $itemId, column_id: $columnId, value: $value
                ) { id }
            }
        """
        await self.query(
            mutation,
            {
                "boardId": board_id,
                "itemId": item_id,
                "columnId": column_id,
                "value": json.dumps(value),
            },
            operation="change_column_value",
            item_id=item_id,
            column_id=column_id,
        )

    async def change_multiple_column_values(
        self, board_id: str, item_id: str, column_values: dict[str, Any]
    ) -> None:
        """Multi-field overwrite in a single mutation."""
        mutation = """
            mutation ($boardId: ID!, $itemId: ID!, $columnValues: JSON!) {
                change_multiple_column_values(
                    board_id: $boardId, item_id: $itemId, column_values: $columnValues
                ) { id }
            }
        """
        await self.query(
            mutation,
            {"boardId": board_id, "itemId": item_id, "columnValues": json.dumps(column_values)},
            operation="change_multiple_column_values",
            item_id=item_id,
        )

    async def create_update(self, item_id: str, body: str) -> str:
        """Post an update (comment) on an item. Create semantics: never retried."""
        mutation = """
            mutation ($itemId: ID!, $body: String!) {
                create_update(item_id: $itemId, body: $body) { id }
            }
        """
        data = await self.query(
            mutation,
            {"itemId": item_id, "body": body},
            operation="create_update",
            idempotent=False,
            item_id=item_id,
        )
        return str((data.get("create_update") or {}).get("id", ""))

    async def _post_file(
        self, mutation: str, variables: dict, content: bytes, filename: str, mime_type: str
    ) -> dict:
        # Fresh multipart body per call; a consumed stream cannot be re-sent
        response = await self._client.post(
            f"{settings.MONDAY_API_URL.rstrip('/')}/file",
            data={"query": mutation, "variables": json.dumps(variables)},
            files={"variables[file]": (filename, content, mime_type)},
            headers=self._get_auth_headers(),
        )
        return self._handle_api_response(response, "upload_file")

    async def upload_file_to_column(
        self, item_id: str, column_id: str, content: bytes, filename: str, mime_type: str
    ) -> str:
        """Attach a file to a file column; the payload is rebuilt on every attempt."""
        mutation = """
            mutation ($itemId: ID!, $columnId: String!, $file: File!) {
                add_file_to_column(item_id: $itemId, column_id: $columnId, file: $file) { id }
            }
        """
        variables = {"itemId": item_id, "columnId": column_id}
        data = await self._retry.execute(
            lambda: self._post_file(mutation, variables, content, filename, mime_type),
            operation_name="monday.add_file_to_column",
            item_id=item_id,
            column_id=column_id,
            filename=filename,
        )
        asset = data.get("add_file_to_column") or {}
        if not asset.get("id"):
            raise MondayAPIError("File upload returned no asset id", retryable=False)
        return str(asset["id"])

    async def upload_file_to_update(
        self, update_id: str, content: bytes, filename: str, mime_type: str
    ) -> str:
        mutation = """
            mutation ($updateId: ID!, $file: File!) {
                add_file_to_update(update_id: $updateId, file: $file) { id }
            }
        """
        data = await self._retry.execute(
            lambda: self._post_file(mutation, {"updateId": update_id}, content, filename, mime_type),
            operation_name="monday.add_file_to_update",
            update_id=update_id,
            filename=filename,
        )
        asset = data.get("add_file_to_update") or {}
        if not asset.get("id"):
            raise MondayAPIError("File upload returned no asset id", retryable=False)
        return str(asset["id"])

    # =================================================================
    # JOB-SPECIFIC WRITES
    # =================================================================

    async def set_escalation_level(self, job_id: str, level: int) -> None:
        await self.change_simple_column_value(
            settings.MONDAY_BOARD_ID_DELIVERIES,
            job_id,
            DC_COLUMNS["completion_reminder_level"],
            str(level),
        )

    async def mark_job_completed(
        self, job_id: str, notes: str, completed_at: datetime, status_label: str
    ) -> None:
        """Notes, completion date/time and status in one multi-field write."""
        await self.change_multiple_column_values(
            settings.MONDAY_BOARD_ID_DELIVERIES,
            job_id,
            {
                DC_COLUMNS["completion_notes"]: notes,
                DC_COLUMNS["completed_at_date"]: {"date": completed_at.strftime("%Y-%m-%d")},
                DC_COLUMNS["completed_at_time"]: {
                    "hour": completed_at.hour,
                    "minute": completed_at.minute,
                },
                DC_COLUMNS["status"]: {"label": status_label},
            },
        )


# Singleton instance for application use
monday_client = MondayClient()
