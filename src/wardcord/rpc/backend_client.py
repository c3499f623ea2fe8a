"""
Thin typed client for the moderation backend (oRPC RPC protocol over HTTP).

Each procedure is a POST to ``{base_url}/{path}`` with body ``{"json": input}``;
the result comes back as ``{"json": output}``. Wire records are parsed here,
once, into :mod:`wardcord.datatypes.violation_datatypes` types.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

import httpx

from wardcord.datatypes.discord_datatypes import GuildID, InternalUserID, UserID
from wardcord.datatypes.violation_datatypes import (
    Violation,
    ViolationDraft,
    ViolationParseError,
    parse_violation,
    parse_violation_list,
    utcnow,
)
from wardcord.util.logger import get_logger

logger = get_logger("backend_client")

ISSUE_PATH = "moderation/violations/issue"
LIST_PATH = "moderation/violations/list"
EXPIRE_PATH = "moderation/violations/expire"
USERS_GET_PATH = "users/get"
SUSPENSIONS_CREATE_PATH = "moderation/suspensions/create"


class BackendError(Exception):
    """Transport, HTTP status or protocol failure talking to the backend."""

    def __init__(self, path: str, message: str, status: Optional[int] = None) -> None:
        super().__init__(f"{path}: {message}")
        self.path = path
        self.status = status


@dataclass(frozen=True, slots=True)
class BackendUser:
    id: InternalUserID
    discord_id: Optional[UserID]


def expires_in_days(expires_at: Optional[datetime], now: Optional[datetime] = None) -> Optional[int]:
    """Whole days (rounded up) until ``expires_at``; None for permanent."""
    if expires_at is None:
        return None
    seconds = (expires_at - (now or utcnow())).total_seconds()
    return max(1, math.ceil(seconds / 86400))


def draft_to_wire(draft: ViolationDraft, now: Optional[datetime] = None) -> Dict[str, Any]:
    """Build the ``moderation/violations/issue`` input for ``draft``."""
    payload: Dict[str, Any] = {
        "userId": draft.user_id.to_int(),
        "guildId": str(draft.guild_id),
        "type": draft.type.value,
        "severity": draft.severity.value,
        "reason": draft.reason,
        "issuedBy": draft.issued_by.to_int() if draft.issued_by is not None else 0,
        "restrictions": sorted(r.value for r in (draft.restrictions or ())),
    }
    if draft.policy_violated is not None:
        payload["policyViolated"] = draft.policy_violated.value
    if draft.content_snapshot:
        payload["contentSnapshot"] = draft.content_snapshot
    if draft.context:
        payload["context"] = draft.context
    if draft.evidence:
        payload["evidence"] = draft.evidence
    days = expires_in_days(draft.expires_at, now)
    if days is not None:
        payload["expiresInDays"] = days
    if draft.actions_applied:
        payload["actionsApplied"] = [action.to_wire() for action in draft.actions_applied]
    return payload


class BackendClient:
    """Async client holding one pooled :class:`httpx.AsyncClient`.

    Args:
        base_url: Root of the oRPC router, e.g. ``http://localhost:3000/rpc``.
        timeout: Per-call timeout in seconds.
        transport: Optional httpx transport, used by tests.
    """

    def __init__(self, base_url: str, timeout: float = 10.0, transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=httpx.Timeout(self.timeout),
                headers={"Content-Type": "application/json", "Accept": "application/json"},
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
        self._client = None

    async def call(self, path: str, payload: Dict[str, Any]) -> Any:
        """Invoke one procedure and return the unwrapped ``json`` output.

        Raises:
            BackendError: On timeout, connection failure, non-2xx status or a
                response that is not an oRPC envelope.
        """
        client = self._get_client()
        try:
            response = await client.post(f"/{path}", json={"json": payload})
        except httpx.TimeoutException as exc:
            raise BackendError(path, f"timed out after {self.timeout}s") from exc
        except httpx.HTTPError as exc:
            raise BackendError(path, f"transport error: {exc}") from exc

        try:
            body = response.json()
        except ValueError:
            body = None

        if response.is_error:
            detail = ""
            if isinstance(body, dict) and isinstance(body.get("json"), dict):
                detail = str(body["json"].get("message") or body["json"].get("code") or "")
            raise BackendError(path, f"HTTP {response.status_code} {detail}".strip(), status=response.status_code)

        if not isinstance(body, dict) or "json" not in body:
            raise BackendError(path, "response is not an RPC envelope", status=response.status_code)
        return body["json"]

    # --------------------------
    # Violations
    # --------------------------
    async def issue_violation(self, draft: ViolationDraft) -> Violation:
        output = await self.call(ISSUE_PATH, draft_to_wire(draft))
        record = output.get("violation") if isinstance(output, dict) else None
        if record is None:
            raise BackendError(ISSUE_PATH, "response has no violation")
        try:
            return parse_violation(record)
        except ViolationParseError as exc:
            raise BackendError(ISSUE_PATH, f"malformed violation: {exc}") from exc

    async def list_violations(
        self,
        user_id: InternalUserID,
        guild_id: GuildID,
        include_expired: bool = True,
        limit: Optional[int] = None,
    ) -> List[Violation]:
        payload: Dict[str, Any] = {
            "userId": user_id.to_int(),
            "guildId": str(guild_id),
            "includeExpired": include_expired,
        }
        if limit is not None:
            payload["limit"] = limit
        output = await self.call(LIST_PATH, payload)
        records = output.get("violations") if isinstance(output, dict) else None
        return parse_violation_list(records or [])

    async def expire_violation(self, violation_id: int, expired_by: Optional[InternalUserID] = None) -> None:
        await self.call(
            EXPIRE_PATH,
            {"violationId": violation_id, "expiredBy": expired_by.to_int() if expired_by is not None else 0},
        )

    # --------------------------
    # Users and suspensions
    # --------------------------
    @staticmethod
    def _parse_user(output: Any) -> Optional[BackendUser]:
        if not isinstance(output, dict) or output.get("id") is None:
            return None
        discord_id = output.get("discordId")
        try:
            return BackendUser(
                id=InternalUserID(output["id"]),
                discord_id=UserID(discord_id) if discord_id else None,
            )
        except ValueError as exc:
            logger.warning("[BACKEND] Malformed user record %r: %s", output, exc)
            return None

    async def get_user_by_id(self, user_id: InternalUserID) -> Optional[BackendUser]:
        return self._parse_user(await self.call(USERS_GET_PATH, {"id": user_id.to_int()}))

    async def get_user_by_discord_id(self, discord_id: UserID) -> Optional[BackendUser]:
        return self._parse_user(await self.call(USERS_GET_PATH, {"discordId": str(discord_id)}))

    async def create_suspension(
        self,
        user_id: InternalUserID,
        guild_id: GuildID,
        reason: str,
        issued_by: Optional[InternalUserID] = None,
    ) -> None:
        await self.call(
            SUSPENSIONS_CREATE_PATH,
            {
                "userId": user_id.to_int(),
                "guildId": str(guild_id),
                "reason": reason,
                "issuedBy": issued_by.to_int() if issued_by is not None else 0,
            },
        )
