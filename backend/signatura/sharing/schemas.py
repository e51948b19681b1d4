from datetime import datetime
from enum import Enum

from pydantic import EmailStr, Field

from signatura.credentials.schemas import DocumentValidation, SignedDocument, VerificationToken
from signatura.schemas import CamelModel, Permissions


class ShareStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    DENIED = "denied"
    REVOKED = "revoked"


class AccessAction(str, Enum):
    CREATED = "created"
    APPROVED = "approved"
    DENIED = "denied"
    REVOKED = "revoked"
    EXPIRY_UPDATED = "expiry_updated"
    VIEWED = "viewed"
    PRINTED = "printed"
    DOWNLOADED = "downloaded"
    SHARED = "shared"


# Actions that count as somebody touching the document content.
CONTENT_ACTIONS = {AccessAction.VIEWED, AccessAction.PRINTED, AccessAction.DOWNLOADED, AccessAction.SHARED}

ACTION_LOG_NAMES = {
    "view": AccessAction.VIEWED,
    "print": AccessAction.PRINTED,
    "download": AccessAction.DOWNLOADED,
    "share": AccessAction.SHARED,
}


class AccessLogEntry(CamelModel):
    action: AccessAction
    timestamp: datetime
    reason: str | None = None
    user_agent: str | None = None


class ShareGrant(CamelModel):
    id: str
    credential_id: str
    owner_id: str | None = None
    owner_public_key: str
    verifier_email: str
    status: ShareStatus = ShareStatus.PENDING
    permissions: Permissions = Field(default_factory=Permissions)
    require_otp: bool = False
    created_at: datetime
    expires_at: datetime
    approved_at: datetime | None = None
    denied_at: datetime | None = None
    revoked_at: datetime | None = None
    status_reason: str | None = None
    verification_token: VerificationToken
    # Loaded from the append-only log, never stored on the grant record.
    access_log: list[AccessLogEntry] = Field(default_factory=list)


class ShareRequestResult(CamelModel):
    grant: ShareGrant
    share_url: str


class ShareStats(CamelModel):
    total: int
    pending: int
    approved: int
    denied: int
    revoked: int
    expired: int
    active: int


class AuditShareRecord(CamelModel):
    share_id: str
    verifier_email: str
    status: ShareStatus
    created_at: datetime
    approved_at: datetime | None = None
    denied_at: datetime | None = None
    revoked_at: datetime | None = None
    expires_at: datetime
    permissions: Permissions
    access_count: int
    last_accessed_at: datetime | None = None


class AuditTrail(CamelModel):
    credential_id: str
    exported_at: datetime
    total_shares: int
    shares: list[AuditShareRecord]


class ShareCreateRequest(CamelModel):
    credential_id: str
    owner_public_key: str
    verifier_email: EmailStr
    permissions: Permissions = Field(default_factory=Permissions)
    expires_in_days: float = Field(default=7, gt=0)
    require_otp: bool = False


class ShareDecision(CamelModel):
    reason: str | None = None


class ShareExpiryUpdate(CamelModel):
    days_from_now: float = Field(gt=0)


class SharedGrantSummary(CamelModel):
    id: str
    credential_id: str
    verifier_email: str
    status: ShareStatus
    permissions: Permissions
    expires_at: datetime
    require_otp: bool


class SharedDocumentView(CamelModel):
    grant: SharedGrantSummary
    document: SignedDocument | None = None
    verification: DocumentValidation | None = None


class OtpRequest(CamelModel):
    email: EmailStr


class OtpVerifyRequest(CamelModel):
    email: EmailStr
    code: str = Field(min_length=6, max_length=6)


class ShareSession(CamelModel):
    access_token: str
    token_type: str = "bearer"
    expires_at: datetime
