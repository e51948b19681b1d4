"""Public share links: token -> grant -> document, with optional OTP step-up.

A missing token and an expired one produce the same message, so the public
endpoint cannot be used to find out whether a token ever existed.
"""

import logging

from signatura.auth.service import create_share_session, decode_share_session
from signatura.clock import as_utc, utcnow
from signatura.credentials.issuance import RevocationRegistry
from signatura.credentials.signing import validate_signed_document
from signatura.errors import ExpiredError, NotFoundError, PermissionDeniedError, ValidationError
from signatura.wallet.service import WalletService

from .otp import OtpService
from .schemas import ShareGrant, SharedDocumentView, SharedGrantSummary, ShareSession
from .service import ShareManager, check_permission

logger = logging.getLogger(__name__)

NOT_ACCESSIBLE = "Share not found or expired"


def _summary(grant: ShareGrant) -> SharedGrantSummary:
    return SharedGrantSummary(
        id=grant.id,
        credential_id=grant.credential_id,
        verifier_email=grant.verifier_email,
        status=grant.status,
        permissions=grant.permissions,
        expires_at=grant.expires_at,
        require_otp=grant.require_otp,
    )


class ShareResolver:
    def __init__(
        self,
        shares: ShareManager,
        wallet: WalletService,
        otp: OtpService,
        revocations: RevocationRegistry | None = None,
    ):
        self.shares = shares
        self.wallet = wallet
        self.otp = otp
        self.revocations = revocations or wallet.revocations

    async def resolve(self, share_token: str) -> ShareGrant:
        try:
            grant = await self.shares.get_share_by_token(share_token)
        except NotFoundError:
            raise NotFoundError(NOT_ACCESSIBLE) from None
        if utcnow() > as_utc(grant.expires_at):
            raise ExpiredError(NOT_ACCESSIBLE)
        return grant

    async def describe(self, share_token: str) -> SharedDocumentView:
        """Landing data for a share link: grant summary only, no content."""
        return SharedDocumentView(grant=_summary(await self.resolve(share_token)))

    @staticmethod
    def _check_recipient(grant: ShareGrant, email: str) -> None:
        if email.strip().lower() != grant.verifier_email.lower():
            raise PermissionDeniedError("Email does not match the share recipient")

    async def request_otp(self, share_token: str, email: str):
        grant = await self.resolve(share_token)
        if not grant.require_otp:
            raise ValidationError("This share does not require a one-time code")
        self._check_recipient(grant, email)
        return await self.otp.send_code(grant.id, email, grant.credential_id)

    async def verify_otp(self, share_token: str, email: str, code: str) -> ShareSession:
        grant = await self.resolve(share_token)
        self._check_recipient(grant, email)
        await self.otp.verify_code(grant.id, email, code)
        token, expires_at = create_share_session(grant.id, email.lower(), not_after=as_utc(grant.expires_at))
        logger.info("OTP verified for share %s", grant.id)
        return ShareSession(access_token=token, expires_at=expires_at)

    async def access(
        self,
        share_token: str,
        action: str,
        session_token: str | None = None,
        user_agent: str | None = None,
    ) -> SharedDocumentView:
        """Serve the shared document for ``action`` and record the access.

        OTP success only unlocks the link; the grant permissions are checked
        independently on every call.
        """
        grant = await self.resolve(share_token)

        if grant.require_otp:
            session = decode_share_session(session_token)
            if session is None or session.get("grant") != grant.id:
                raise PermissionDeniedError("One-time code verification required")

        if not check_permission(grant, action):
            logger.warning("Share %s refused %r (status %s)", grant.id, action, grant.status.value)
            raise PermissionDeniedError(f"Action {action!r} is not permitted for this share")

        if grant.owner_id is None:
            raise NotFoundError("Shared document is no longer available")
        try:
            entry = await self.wallet.get_credential(grant.owner_id, grant.credential_id)
        except NotFoundError:
            raise NotFoundError("Shared document is no longer available")

        verification = validate_signed_document(entry.signed_document)
        verification.revoked = await self.revocations.is_revoked(
            grant.credential_id, entry.signed_document.issuer.public_key
        )
        if verification.revoked:
            verification.message = "Credential has been revoked by its issuer"

        await self.shares.log_credential_access(grant.id, action, user_agent=user_agent)
        return SharedDocumentView(grant=_summary(grant), document=entry.signed_document, verification=verification)
