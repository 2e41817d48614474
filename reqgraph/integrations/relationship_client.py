"""
Relationship API client — the HTTP side of the drag-drop reconciler.

Every outbound call to the relationships endpoints goes through this class.
It has the same create / delete / move signatures as RelationshipService,
so a DragDropReconciler can run against either one.

Error responses ({"success": false, "error", "code"}) are translated back
into the exception taxonomy by ``code``. Network failures and malformed
responses become PersistenceError. Calls are never retried here.

Testability: pass a mock `session` to RelationshipApiClient() in tests
instead of letting it create a real requests.Session internally.
"""

from __future__ import annotations

import logging
from typing import Any

import requests

from reqgraph.core.exceptions import (
    CycleError,
    DuplicateError,
    NotFoundError,
    PersistenceError,
    RelationshipError,
    ValidationError,
)
from reqgraph.utils.errors import E

logger = logging.getLogger(__name__)

_DEFAULT_TIMEOUT = 30
_RELATIONSHIPS_PATH = "/api/v1/requirements/relationships"


class RelationshipApiClient:
    """Thin client over /api/v1/requirements/relationships.

    Usage:
        client = RelationshipApiClient("http://localhost:5000", user_id="u-42")
        client.create_relationship(parent_id, child_id)
        tree = client.get_tree(project_id=1)
    """

    def __init__(
        self,
        base_url: str,
        *,
        user_id: str | None = None,
        session: requests.Session | None = None,
        timeout: int = _DEFAULT_TIMEOUT,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.user_id = user_id
        self.timeout = timeout
        # Inject custom session for testing; create real one lazily otherwise.
        self._session: requests.Session | None = session

    # ── HTTP session ─────────────────────────────────────────────────────────

    @property
    def session(self) -> requests.Session:
        """Return (or lazily create) the requests.Session."""
        if self._session is None:
            self._session = requests.Session()
        return self._session

    def _headers(self) -> dict:
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        if self.user_id:
            headers["X-User-Id"] = str(self.user_id)
        return headers

    # ── Core request dispatcher ──────────────────────────────────────────────

    def _request(
        self,
        method: str,
        path: str = "",
        *,
        json_body: dict | None = None,
        params: dict | None = None,
    ) -> Any:
        url = f"{self.base_url}{_RELATIONSHIPS_PATH}{path}"
        kwargs: dict[str, Any] = {"headers": self._headers(), "timeout": self.timeout}
        if json_body is not None:
            kwargs["json"] = json_body
        if params:
            kwargs["params"] = params

        try:
            resp = self.session.request(method, url, **kwargs)
        except requests.Timeout as exc:
            logger.warning("Relationship API timed out method=%s url=%s", method, url)
            raise PersistenceError(f"Request timed out after {self.timeout}s") from exc
        except requests.RequestException as exc:
            logger.warning("Relationship API network error method=%s url=%s error=%s", method, url, exc)
            raise PersistenceError(f"Relationship API unreachable: {exc}") from exc

        try:
            body = resp.json() if resp.content else {}
        except ValueError:
            body = None

        if resp.ok:
            if body is None:
                raise PersistenceError(f"Invalid JSON from relationship API (HTTP {resp.status_code})")
            return body

        logger.info(
            "Relationship API error method=%s url=%s status=%d", method, url, resp.status_code,
        )
        raise self._to_exception(resp.status_code, body or {}, json_body or params or {})

    @staticmethod
    def _to_exception(status_code: int, body: dict, request_data: dict) -> RelationshipError:
        """Rebuild the server-side exception from an error response body."""
        code = body.get("code")
        message = body.get("error") or f"HTTP {status_code}"
        ancestor = request_data.get("ancestorId") or request_data.get("newAncestorId")
        descendant = request_data.get("descendantId")

        if code in (E.VALIDATION_INVALID, E.VALIDATION_REQUIRED):
            return ValidationError(message, details=body.get("details"))
        if code == E.NOT_FOUND:
            err = NotFoundError(resource="Resource")
            err.args = (message,)
            return err
        if code == E.CONFLICT_DUPLICATE:
            err = DuplicateError(ancestor, descendant)
            err.args = (message,)
            return err
        if code == E.CONFLICT_CYCLE:
            err = CycleError(ancestor, descendant)
            err.args = (message,)
            return err
        if status_code == 400:
            return ValidationError(message, details=body.get("details"))
        if status_code == 404:
            err = NotFoundError(resource="Resource")
            err.args = (message,)
            return err
        return PersistenceError(message)

    # ── Mutations ────────────────────────────────────────────────────────────

    def create_relationship(self, ancestor_id: str, descendant_id: str) -> dict:
        return self._request(
            "POST", json_body={"ancestorId": ancestor_id, "descendantId": descendant_id},
        )

    def delete_relationship(self, ancestor_id: str, descendant_id: str) -> dict:
        return self._request(
            "DELETE", json_body={"ancestorId": ancestor_id, "descendantId": descendant_id},
        )

    def move_relationship(
        self,
        old_ancestor_id: str | None,
        new_ancestor_id: str,
        descendant_id: str,
    ) -> dict:
        return self._request(
            "POST",
            "/move",
            json_body={
                "oldAncestorId": old_ancestor_id,
                "newAncestorId": new_ancestor_id,
                "descendantId": descendant_id,
            },
        )

    # ── Queries ──────────────────────────────────────────────────────────────

    def get_ancestors(self, requirement_id: str, max_depth: int | None = None) -> list[dict]:
        params = {"requirementId": requirement_id, "type": "ancestors"}
        if max_depth is not None:
            params["maxDepth"] = max_depth
        return self._request("GET", params=params)["data"]

    def get_descendants(self, requirement_id: str, max_depth: int | None = None) -> list[dict]:
        params = {"requirementId": requirement_id, "type": "descendants"}
        if max_depth is not None:
            params["maxDepth"] = max_depth
        return self._request("GET", params=params)["data"]

    def get_direct_links(self, requirement_id: str) -> list[dict]:
        return self._request("GET", params={"requirementId": requirement_id})["data"]

    def check_relationships(self, requirement_id: str) -> dict:
        return self._request("GET", params={"requirementId": requirement_id, "type": "check"})

    def get_tree(self, project_id: int) -> list[dict]:
        return self._request("GET", params={"type": "tree", "projectId": project_id})["data"]

    def preview_delete(self, ancestor_id: str, descendant_id: str) -> list[dict]:
        return self._request(
            "GET",
            "/preview-delete",
            params={"ancestorId": ancestor_id, "descendantId": descendant_id},
        )["data"]
