"""REST API layer for the custody engine.

CustodyApi turns one HTTP request (method, path, query, actor header, body)
into a ``(status, body)`` pair.  It is framework-free: the HTTP server in
:mod:`aumos_custody.api.server` only moves bytes.

The caller is identified by the ``X-Actor`` header in ``kind:id`` form
(``user:42``, ``manager:7``, ``admin:1``).  A missing or malformed header
answers 401.  Administrators are denied every document-level route with 403.

Routes
------
GET    /health
POST   /documents                         register a document
GET    /documents                         documents readable by the actor
GET    /documents/{id}                    read check
POST   /documents/{id}/manager            one-way manager assignment
POST   /access-grants                     delegate access
GET    /access-grants                     active grants visible to the actor
GET    /access-grants/mine                the actor's own active grants
DELETE /access-grants/{id}                revoke a grant directly
POST   /revocation-requests               open a request
GET    /revocation-requests               list requests
GET    /revocation-requests/{id}          view a request
PATCH  /revocation-requests/{id}/approve  approve
PATCH  /revocation-requests/{id}/deny     deny
DELETE /revocation-requests/{id}          cancel

Errors are returned as ``{"error": kind, "message": text}``.
"""
from __future__ import annotations

import json
import logging
import re
from typing import Callable, Mapping

from aumos_custody.convenience import CustodyEngine
from aumos_custody.errors import BadRequestError, CustodyError, ForbiddenError, UnauthenticatedError
from aumos_custody.identity.actor import Actor
from aumos_custody.pagination import MAX_LIMIT

logger = logging.getLogger(__name__)

ACTOR_HEADER = "X-Actor"

Response = tuple[int, dict[str, object] | None]


class _Request:
    """Parsed request data handed to route handlers."""

    def __init__(
        self,
        params: dict[str, str],
        query: Mapping[str, str],
        body: dict[str, object],
        actor_header: str | None,
    ) -> None:
        self.params = params
        self.query = query
        self.body = body
        self._actor_header = actor_header

    def actor(self) -> Actor:
        if not self._actor_header:
            raise UnauthenticatedError(f"Missing {ACTOR_HEADER} header.")
        try:
            return Actor.parse(self._actor_header)
        except BadRequestError as exc:
            raise UnauthenticatedError(exc.message) from None

    def subject_actor(self) -> Actor:
        """The caller, hard-denied when it is an administrator."""
        actor = self.actor()
        if actor.is_admin:
            raise ForbiddenError("Admins do not have document-level access.")
        return actor

    # ------------------------------------------------------------------
    # Field helpers
    # ------------------------------------------------------------------

    def body_str(self, key: str, *, required: bool = True) -> str | None:
        value = self.body.get(key)
        if value is None:
            if required:
                raise BadRequestError(f"{key} is required.")
            return None
        if not isinstance(value, str) or not value:
            raise BadRequestError(f"{key} must be a non-empty string.")
        return value

    def body_int(self, key: str, *, required: bool = True) -> int | None:
        value = self.body.get(key)
        if value is None:
            if required:
                raise BadRequestError(f"{key} is required.")
            return None
        if isinstance(value, bool) or not isinstance(value, int):
            raise BadRequestError(f"{key} must be an integer.")
        return value

    def body_bool(self, key: str, default: bool = False) -> bool:
        value = self.body.get(key, default)
        if not isinstance(value, bool):
            raise BadRequestError(f"{key} must be a boolean.")
        return value

    def query_int(self, key: str) -> int | None:
        raw = self.query.get(key)
        if raw is None or raw == "":
            return None
        try:
            return int(raw)
        except ValueError:
            raise BadRequestError(f"{key} must be an integer.") from None

    def query_bool(self, key: str) -> bool:
        raw = self.query.get(key, "false").lower()
        if raw not in ("true", "false", "1", "0"):
            raise BadRequestError(f"{key} must be true or false.")
        return raw in ("true", "1")

    def param_int(self, key: str) -> int:
        return int(self.params[key])


class CustodyApi:
    """Maps REST requests onto a :class:`CustodyEngine`.

    Parameters
    ----------
    engine:
        The wired custody engine.
    default_page_size:
        ``limit`` used when a list request does not supply one.
    max_page_size:
        Largest accepted ``limit``.
    """

    def __init__(
        self,
        engine: CustodyEngine,
        default_page_size: int = 20,
        max_page_size: int = MAX_LIMIT,
    ) -> None:
        self._engine = engine
        self._default_page_size = default_page_size
        self._max_page_size = max_page_size
        self._routes: list[tuple[str, re.Pattern[str], Callable[[_Request], Response]]] = [
            ("GET", re.compile(r"^/health$"), self._health),
            ("POST", re.compile(r"^/documents$"), self._register_document),
            ("GET", re.compile(r"^/documents$"), self._list_documents),
            ("GET", re.compile(r"^/documents/(?P<id>[^/]+)$"), self._get_document),
            ("POST", re.compile(r"^/documents/(?P<id>[^/]+)/manager$"), self._assign_manager),
            ("POST", re.compile(r"^/access-grants$"), self._create_grant),
            ("GET", re.compile(r"^/access-grants$"), self._list_grants),
            ("GET", re.compile(r"^/access-grants/mine$"), self._my_grants),
            ("DELETE", re.compile(r"^/access-grants/(?P<id>\d+)$"), self._revoke_grant),
            ("POST", re.compile(r"^/revocation-requests$"), self._create_request),
            ("GET", re.compile(r"^/revocation-requests$"), self._list_requests),
            ("GET", re.compile(r"^/revocation-requests/(?P<id>\d+)$"), self._get_request),
            ("PATCH", re.compile(r"^/revocation-requests/(?P<id>\d+)/approve$"), self._approve_request),
            ("PATCH", re.compile(r"^/revocation-requests/(?P<id>\d+)/deny$"), self._deny_request),
            ("DELETE", re.compile(r"^/revocation-requests/(?P<id>\d+)$"), self._cancel_request),
        ]

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def handle(
        self,
        method: str,
        path: str,
        query: Mapping[str, str] | None = None,
        actor_header: str | None = None,
        body: bytes | None = None,
    ) -> Response:
        """Dispatch one request and return ``(status, json_body_or_None)``."""
        path = path.rstrip("/") or "/"
        handler = None
        params: dict[str, str] = {}
        path_known = False
        for route_method, pattern, route_handler in self._routes:
            match = pattern.match(path)
            if match is None:
                continue
            path_known = True
            if route_method == method:
                handler = route_handler
                params = match.groupdict()
                break

        if handler is None:
            if path_known:
                return 405, {"error": "method_not_allowed", "message": f"{method} not allowed on {path}."}
            return 404, {"error": "not_found", "message": "Route not found."}

        try:
            request = _Request(params, query or {}, _parse_body(body), actor_header)
            return handler(request)
        except CustodyError as exc:
            if exc.status_code >= 500:
                logger.error("%s %s failed: %s", method, path, exc.message)
            return exc.status_code, {"error": exc.kind, "message": exc.message}
        except Exception:
            logger.exception("Unhandled error on %s %s", method, path)
            return 500, {"error": "internal_error", "message": "Internal server error."}

    def _page_args(self, request: _Request) -> tuple[int | None, int]:
        limit = request.query_int("limit")
        if limit is None:
            limit = self._default_page_size
        if limit < 1 or limit > self._max_page_size:
            raise BadRequestError(f"limit must be between 1 and {self._max_page_size}.")
        return request.query_int("page"), limit

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    def _health(self, request: _Request) -> Response:
        return 200, {"status": "ok"}

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    def _register_document(self, request: _Request) -> Response:
        actor = request.subject_actor()
        document = self._engine.registry.register(
            actor,
            request.body_str("documentId", required=False),
            origin_manager_id=request.body_int("originManagerId", required=False),
        )
        return 201, document.to_dict()

    def _list_documents(self, request: _Request) -> Response:
        actor = request.subject_actor()
        page, limit = self._page_args(request)
        return 200, self._engine.documents.list_documents(actor, page, limit).to_dict()

    def _get_document(self, request: _Request) -> Response:
        actor = request.actor()
        document = self._engine.documents.get_document(request.params["id"], actor)
        return 200, document.to_dict()

    def _assign_manager(self, request: _Request) -> Response:
        actor = request.subject_actor()
        document = self._engine.registry.assign_manager(
            request.params["id"], request.body_int("managerId"), actor
        )
        return 200, document.to_dict()

    # ------------------------------------------------------------------
    # Access grants
    # ------------------------------------------------------------------

    def _create_grant(self, request: _Request) -> Response:
        actor = request.subject_actor()
        subject = Actor.parse(f"{request.body_str('subjectType')}:{request.body_int('subjectId')}")
        grant = self._engine.access_control.create_grant(
            request.body_str("documentId"),
            subject,
            request.body_str("grantType"),
            actor,
        )
        return 201, grant.to_dict()

    def _list_grants(self, request: _Request) -> Response:
        actor = request.subject_actor()
        page, limit = self._page_args(request)
        result = self._engine.access_control.list_grants(
            actor,
            document_id=request.query.get("documentId") or None,
            subject_type=request.query.get("subjectType") or None,
            subject_id=request.query_int("subjectId"),
            page=page,
            limit=limit,
        )
        return 200, result.to_dict()

    def _my_grants(self, request: _Request) -> Response:
        actor = request.subject_actor()
        page, limit = self._page_args(request)
        return 200, self._engine.access_control.my_grants(actor, page, limit).to_dict()

    def _revoke_grant(self, request: _Request) -> Response:
        actor = request.subject_actor()
        self._engine.access_control.revoke_grant(
            request.param_int("id"), actor, cascade=request.query_bool("cascade")
        )
        return 204, None

    # ------------------------------------------------------------------
    # Revocation requests
    # ------------------------------------------------------------------

    def _create_request(self, request: _Request) -> Response:
        actor = request.subject_actor()
        target = None
        target_type = request.body_str("targetSubjectType", required=False)
        target_id = request.body_int("targetSubjectId", required=False)
        if (target_type is None) != (target_id is None):
            raise BadRequestError("targetSubjectType and targetSubjectId must be supplied together.")
        if target_type is not None:
            target = Actor.parse(f"{target_type}:{target_id}")
        created = self._engine.workflow.create_request(
            request.body_str("documentId"),
            request.body_str("requestType"),
            request.body_bool("cascadeToSecondaryManagers"),
            actor,
            target,
        )
        return 201, created.to_dict()

    def _list_requests(self, request: _Request) -> Response:
        actor = request.subject_actor()
        page, limit = self._page_args(request)
        result = self._engine.workflow.list_requests(
            actor,
            document_id=request.query.get("documentId") or None,
            status=request.query.get("status") or None,
            request_type=request.query.get("requestType") or None,
            page=page,
            limit=limit,
        )
        return 200, result.to_dict()

    def _get_request(self, request: _Request) -> Response:
        actor = request.subject_actor()
        return 200, self._engine.workflow.get_request(request.param_int("id"), actor).to_dict()

    def _approve_request(self, request: _Request) -> Response:
        actor = request.subject_actor()
        updated = self._engine.workflow.approve_request(
            request.param_int("id"), request.body_str("reviewNotes", required=False), actor
        )
        return 200, updated.to_dict()

    def _deny_request(self, request: _Request) -> Response:
        actor = request.subject_actor()
        updated = self._engine.workflow.deny_request(
            request.param_int("id"), request.body_str("reviewNotes", required=False), actor
        )
        return 200, updated.to_dict()

    def _cancel_request(self, request: _Request) -> Response:
        actor = request.subject_actor()
        self._engine.workflow.cancel_request(request.param_int("id"), actor)
        return 204, None


def _parse_body(raw: bytes | None) -> dict[str, object]:
    if not raw:
        return {}
    try:
        data = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError):
        raise BadRequestError("Request body must be valid JSON.") from None
    if not isinstance(data, dict):
        raise BadRequestError("Request body must be a JSON object.")
    return data
