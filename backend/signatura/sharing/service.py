"""Consent and sharing: time-boxed, permissioned share grants for credentials.

Grant lifecycle::

    pending --approve--> approved --revoke--> revoked
       \\--deny--> denied

``denied`` and ``revoked`` are terminal. Expiry is not a state: a grant past
``expires_at`` simply stops being valid. Every content access must pass
``check_permission``.
"""

import logging
import uuid
from datetime import datetime, timedelta

from pydantic import EmailStr, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from signatura.clock import as_utc, utcnow
from signatura.config import settings
from signatura.credentials.signing import create_verification_token, verify_token
from signatura.errors import NotFoundError, StateTransitionError, ValidationError
from signatura.schemas import ACTION_PERMISSIONS, Permissions
from signatura.store import Store, VersionConflict
from signatura.wallet.service import WalletService

from .schemas import (
    ACTION_LOG_NAMES,
    CONTENT_ACTIONS,
    AccessAction,
    AccessLogEntry,
    AuditShareRecord,
    AuditTrail,
    ShareGrant,
    ShareRequestResult,
    ShareStats,
    ShareStatus,
)

logger = logging.getLogger(__name__)

DEFAULT_EXPIRY_DAYS = 7
ACCESS_LOG_LIMIT = 100
MAX_UPDATE_ATTEMPTS = 5

TRANSITIONS = {
    ShareStatus.PENDING: {ShareStatus.APPROVED, ShareStatus.DENIED},
    ShareStatus.APPROVED: {ShareStatus.REVOKED},
    ShareStatus.DENIED: set(),
    ShareStatus.REVOKED: set(),
}

_email_adapter = TypeAdapter(EmailStr)


def ensure_transition(current: ShareStatus, target: ShareStatus) -> None:
    if target not in TRANSITIONS[current]:
        raise StateTransitionError(f"Cannot move share from {current.value} to {target.value}")


def is_share_valid(grant: ShareGrant, now: datetime | None = None) -> bool:
    now = now or utcnow()
    return (
        grant.status == ShareStatus.APPROVED
        and now <= as_utc(grant.expires_at)
        and verify_token(grant.verification_token, now).is_valid
    )


def check_permission(grant: ShareGrant, action: str, now: datetime | None = None) -> bool:
    """The only authorization check for view/print/download/share."""
    field = ACTION_PERMISSIONS.get(action)
    if field is None:
        return False
    return is_share_valid(grant, now) and getattr(grant.permissions, field)


def _token_hint(token: str) -> str:
    return token[:8] + "..."


class ShareManager:
    def __init__(self, store: Store, wallet: WalletService | None = None, share_origin: str | None = None):
        self.store = store
        self.wallet = wallet
        self.share_origin = (share_origin or settings.share_origin).rstrip("/")

    @staticmethod
    def _key(grant_id: str) -> str:
        return f"grant:{grant_id}"

    @staticmethod
    def _token_key(token: str) -> str:
        return f"share-token:{token}"

    @staticmethod
    def _log_key(grant_id: str) -> str:
        return f"access-log:{grant_id}"

    @staticmethod
    def _dump(grant: ShareGrant) -> dict:
        return grant.to_json_dict(exclude={"access_log"})

    def share_url(self, grant: ShareGrant) -> str:
        return f"{self.share_origin}/shared/{grant.verification_token.token}"

    async def _append_log(self, grant_id: str, entry: AccessLogEntry) -> None:
        await self.store.append(self._log_key(grant_id), entry.to_json_dict(), limit=ACCESS_LOG_LIMIT)

    async def _load(self, value: dict) -> ShareGrant:
        grant = ShareGrant.model_validate(value)
        grant.access_log = [
            AccessLogEntry.model_validate(e) for e in await self.store.entries(self._log_key(grant.id))
        ]
        return grant

    # -- creation ----------------------------------------------------------

    async def create_share_request(
        self,
        credential_id: str,
        owner_public_key: str,
        verifier_email: str,
        permissions=None,
        *,
        owner_id: str | None = None,
        expires_in_days: float = DEFAULT_EXPIRY_DAYS,
        expires_at: datetime | None = None,
        require_otp: bool = False,
    ) -> ShareRequestResult:
        if not credential_id:
            raise ValidationError("credential_id is required")
        if not owner_public_key:
            raise ValidationError("owner_public_key is required")
        try:
            verifier_email = _email_adapter.validate_python(verifier_email)
            permissions = Permissions.model_validate(permissions or {})
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid share request: {e.errors()[0]['msg']}") from e

        if owner_id is not None and self.wallet is not None:
            # Raises NotFoundError when the owner does not hold the credential.
            await self.wallet.get_credential(owner_id, credential_id)

        now = utcnow()
        expires_at = expires_at or now + timedelta(days=expires_in_days)
        token = create_verification_token(credential_id, owner_public_key, verifier_email, expires_at=expires_at)
        grant = ShareGrant(
            id=str(uuid.uuid4()),
            credential_id=credential_id,
            owner_id=owner_id,
            owner_public_key=owner_public_key,
            verifier_email=verifier_email,
            permissions=permissions,
            require_otp=require_otp,
            created_at=now,
            expires_at=expires_at,
            verification_token=token,
        )

        await self.store.put(self._token_key(token.token), {"grantId": grant.id}, expected_version=0)
        await self.store.put(self._key(grant.id), self._dump(grant), expected_version=0)
        await self._append_log(grant.id, AccessLogEntry(action=AccessAction.CREATED, timestamp=now))
        if owner_id is not None and self.wallet is not None:
            await self.wallet.link_share(owner_id, credential_id, grant.id)

        logger.info(
            "Share %s created for credential %s (token %s)", grant.id, credential_id, _token_hint(token.token)
        )
        return ShareRequestResult(grant=await self.get_share(grant.id), share_url=self.share_url(grant))

    # -- lookups -----------------------------------------------------------

    async def get_share(self, grant_id: str) -> ShareGrant:
        record = await self.store.get(self._key(grant_id))
        if record is None:
            raise NotFoundError(f"Share {grant_id} not found")
        return await self._load(record.value)

    async def get_share_by_token(self, token: str) -> ShareGrant:
        index = await self.store.get(self._token_key(token)) if token else None
        if index is None:
            raise NotFoundError("Share not found or expired")
        return await self.get_share(index.value["grantId"])

    async def get_all_shares(self, owner_id: str | None = None) -> list[ShareGrant]:
        grants = [await self._load(r.value) for r in await self.store.scan("grant:")]
        if owner_id is not None:
            grants = [g for g in grants if g.owner_id == owner_id]
        grants.sort(key=lambda g: g.created_at)
        return grants

    async def get_shares_by_credential(self, credential_id: str) -> list[ShareGrant]:
        return [g for g in await self.get_all_shares() if g.credential_id == credential_id]

    async def get_pending_shares(self, owner_id: str | None = None) -> list[ShareGrant]:
        return [g for g in await self.get_all_shares(owner_id) if g.status == ShareStatus.PENDING]

    async def get_active_shares(self, owner_id: str | None = None) -> list[ShareGrant]:
        now = utcnow()
        return [g for g in await self.get_all_shares(owner_id) if is_share_valid(g, now)]

    async def get_expired_shares(self, owner_id: str | None = None) -> list[ShareGrant]:
        now = utcnow()
        return [g for g in await self.get_all_shares(owner_id) if now > as_utc(g.expires_at)]

    # -- state machine -----------------------------------------------------

    async def _modify(self, grant_id: str, mutate) -> ShareGrant:
        """Conditional read-modify-write of a grant record.

        ``mutate`` validates the current state and applies the change. On a
        version conflict the record is re-read, so a concurrent transition is
        seen by the next validation and rejected there.
        """
        key = self._key(grant_id)
        for _ in range(MAX_UPDATE_ATTEMPTS):
            record = await self.store.get(key)
            if record is None:
                raise NotFoundError(f"Share {grant_id} not found")
            grant = ShareGrant.model_validate(record.value)
            mutate(grant)
            try:
                await self.store.put(key, self._dump(grant), expected_version=record.version)
            except VersionConflict:
                continue
            return grant
        raise StateTransitionError(f"Share {grant_id} is being modified concurrently")

    async def _transition(self, grant_id: str, target: ShareStatus, reason: str | None = None) -> ShareGrant:
        now = utcnow()

        def apply(grant: ShareGrant):
            ensure_transition(grant.status, target)
            grant.status = target
            setattr(grant, f"{target.value}_at", now)
            if reason is not None:
                grant.status_reason = reason

        await self._modify(grant_id, apply)
        await self._append_log(grant_id, AccessLogEntry(action=AccessAction(target.value), timestamp=now, reason=reason))
        logger.info("Share %s %s", grant_id, target.value)
        return await self.get_share(grant_id)

    async def approve_share(self, grant_id: str) -> ShareGrant:
        return await self._transition(grant_id, ShareStatus.APPROVED)

    async def deny_share(self, grant_id: str, reason: str | None = None) -> ShareGrant:
        return await self._transition(grant_id, ShareStatus.DENIED, reason)

    async def revoke_share(self, grant_id: str, reason: str | None = "Revoked by owner") -> ShareGrant:
        return await self._transition(grant_id, ShareStatus.REVOKED, reason)

    async def update_share_expiry(self, grant_id: str, days_from_now: float) -> ShareGrant:
        if days_from_now <= 0:
            raise ValidationError("days_from_now must be positive")
        now = utcnow()
        expires_at = now + timedelta(days=days_from_now)

        def apply(grant: ShareGrant):
            if grant.status not in (ShareStatus.PENDING, ShareStatus.APPROVED):
                raise StateTransitionError(f"Cannot extend a {grant.status.value} share")
            grant.expires_at = expires_at
            grant.verification_token.expires_at = expires_at

        await self._modify(grant_id, apply)
        await self._append_log(grant_id, AccessLogEntry(action=AccessAction.EXPIRY_UPDATED, timestamp=now))
        return await self.get_share(grant_id)

    # -- access log --------------------------------------------------------

    async def log_credential_access(
        self, grant_id: str, action, reason: str | None = None, user_agent: str | None = None
    ) -> AccessLogEntry:
        if await self.store.get(self._key(grant_id)) is None:
            raise NotFoundError(f"Share {grant_id} not found")
        if action in ACTION_LOG_NAMES:
            action = ACTION_LOG_NAMES[action]
        try:
            action = AccessAction(action)
        except ValueError as e:
            raise ValidationError(f"Unknown access action {action!r}") from e
        entry = AccessLogEntry(action=action, timestamp=utcnow(), reason=reason, user_agent=user_agent)
        await self._append_log(grant_id, entry)
        return entry

    # -- reporting ---------------------------------------------------------

    async def export_audit_trail(self, credential_id: str) -> AuditTrail:
        records = []
        for grant in await self.get_shares_by_credential(credential_id):
            accesses = [e for e in grant.access_log if e.action in CONTENT_ACTIONS]
            records.append(
                AuditShareRecord(
                    share_id=grant.id,
                    verifier_email=grant.verifier_email,
                    status=grant.status,
                    created_at=grant.created_at,
                    approved_at=grant.approved_at,
                    denied_at=grant.denied_at,
                    revoked_at=grant.revoked_at,
                    expires_at=grant.expires_at,
                    permissions=grant.permissions,
                    access_count=len(accesses),
                    last_accessed_at=max((e.timestamp for e in accesses), default=None),
                )
            )
        return AuditTrail(
            credential_id=credential_id, exported_at=utcnow(), total_shares=len(records), shares=records
        )

    async def get_share_stats(self, owner_id: str | None = None) -> ShareStats:
        grants = await self.get_all_shares(owner_id)
        now = utcnow()

        def count(status: ShareStatus) -> int:
            return sum(1 for g in grants if g.status == status)

        return ShareStats(
            total=len(grants),
            pending=count(ShareStatus.PENDING),
            approved=count(ShareStatus.APPROVED),
            denied=count(ShareStatus.DENIED),
            revoked=count(ShareStatus.REVOKED),
            expired=sum(1 for g in grants if now > as_utc(g.expires_at)),
            active=sum(1 for g in grants if is_share_valid(g, now)),
        )
