from fastapi import APIRouter, Depends, Header

from signatura.auth.dependencies import get_current_owner
from signatura.dependencies import get_resolver, get_share_manager
from signatura.errors import NotFoundError

from .resolution import ShareResolver
from .schemas import (
    AuditTrail,
    OtpRequest,
    OtpVerifyRequest,
    ShareCreateRequest,
    ShareDecision,
    SharedDocumentView,
    ShareExpiryUpdate,
    ShareGrant,
    ShareRequestResult,
    ShareSession,
    ShareStats,
)
from .service import ShareManager

router = APIRouter(prefix="/shares", tags=["sharing"])
public_router = APIRouter(prefix="/shared", tags=["shared"])


async def _owned_share(grant_id: str, owner_id: str, shares: ShareManager) -> ShareGrant:
    grant = await shares.get_share(grant_id)
    if grant.owner_id != owner_id:
        raise NotFoundError(f"Share {grant_id} not found")
    return grant


@router.post("", response_model=ShareRequestResult, status_code=201)
async def create_share(
    body: ShareCreateRequest,
    owner_id: str = Depends(get_current_owner),
    shares: ShareManager = Depends(get_share_manager),
):
    return await shares.create_share_request(
        body.credential_id,
        body.owner_public_key,
        body.verifier_email,
        body.permissions,
        owner_id=owner_id,
        expires_in_days=body.expires_in_days,
        require_otp=body.require_otp,
    )


@router.get("", response_model=list[ShareGrant])
async def list_shares(
    status: str | None = None,
    owner_id: str = Depends(get_current_owner),
    shares: ShareManager = Depends(get_share_manager),
):
    if status == "pending":
        return await shares.get_pending_shares(owner_id)
    if status == "active":
        return await shares.get_active_shares(owner_id)
    if status == "expired":
        return await shares.get_expired_shares(owner_id)
    grants = await shares.get_all_shares(owner_id)
    if status:
        grants = [g for g in grants if g.status.value == status]
    return grants


@router.get("/stats", response_model=ShareStats)
async def share_stats(
    owner_id: str = Depends(get_current_owner),
    shares: ShareManager = Depends(get_share_manager),
):
    return await shares.get_share_stats(owner_id)


@router.get("/audit/{credential_id}", response_model=AuditTrail)
async def audit_trail(
    credential_id: str,
    owner_id: str = Depends(get_current_owner),
    shares: ShareManager = Depends(get_share_manager),
):
    trail = await shares.export_audit_trail(credential_id)
    owned = {g.id for g in await shares.get_all_shares(owner_id)}
    trail.shares = [s for s in trail.shares if s.share_id in owned]
    trail.total_shares = len(trail.shares)
    return trail


@router.get("/{grant_id}", response_model=ShareGrant)
async def get_share(
    grant_id: str,
    owner_id: str = Depends(get_current_owner),
    shares: ShareManager = Depends(get_share_manager),
):
    return await _owned_share(grant_id, owner_id, shares)


@router.post("/{grant_id}/approve", response_model=ShareGrant)
async def approve(
    grant_id: str,
    owner_id: str = Depends(get_current_owner),
    shares: ShareManager = Depends(get_share_manager),
):
    await _owned_share(grant_id, owner_id, shares)
    return await shares.approve_share(grant_id)


@router.post("/{grant_id}/deny", response_model=ShareGrant)
async def deny(
    grant_id: str,
    body: ShareDecision | None = None,
    owner_id: str = Depends(get_current_owner),
    shares: ShareManager = Depends(get_share_manager),
):
    await _owned_share(grant_id, owner_id, shares)
    return await shares.deny_share(grant_id, body.reason if body else None)


@router.post("/{grant_id}/revoke", response_model=ShareGrant)
async def revoke(
    grant_id: str,
    body: ShareDecision | None = None,
    owner_id: str = Depends(get_current_owner),
    shares: ShareManager = Depends(get_share_manager),
):
    await _owned_share(grant_id, owner_id, shares)
    if body and body.reason:
        return await shares.revoke_share(grant_id, body.reason)
    return await shares.revoke_share(grant_id)


@router.put("/{grant_id}/expiry", response_model=ShareGrant)
async def update_expiry(
    grant_id: str,
    body: ShareExpiryUpdate,
    owner_id: str = Depends(get_current_owner),
    shares: ShareManager = Depends(get_share_manager),
):
    await _owned_share(grant_id, owner_id, shares)
    return await shares.update_share_expiry(grant_id, body.days_from_now)


# -- public share links ------------------------------------------------------


@public_router.get("/{share_token}", response_model=SharedDocumentView)
async def describe_share(share_token: str, resolver: ShareResolver = Depends(get_resolver)):
    """Public endpoint, no auth required."""
    return await resolver.describe(share_token)


@public_router.post("/{share_token}/otp")
async def send_otp(share_token: str, body: OtpRequest, resolver: ShareResolver = Depends(get_resolver)):
    expires_at = await resolver.request_otp(share_token, body.email)
    return {"sent": True, "expiresAt": expires_at}


@public_router.post("/{share_token}/otp/verify", response_model=ShareSession)
async def verify_otp(share_token: str, body: OtpVerifyRequest, resolver: ShareResolver = Depends(get_resolver)):
    return await resolver.verify_otp(share_token, body.email, body.code)


@public_router.get("/{share_token}/{action}", response_model=SharedDocumentView)
async def access_share(
    share_token: str,
    action: str,
    x_share_session: str | None = Header(default=None),
    user_agent: str | None = Header(default=None),
    resolver: ShareResolver = Depends(get_resolver),
):
    return await resolver.access(share_token, action, session_token=x_share_session, user_agent=user_agent)
