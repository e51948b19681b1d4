from datetime import datetime
from enum import Enum

from pydantic import Field

from signatura.credentials.schemas import Credential, Revocation, SignedDocument
from signatura.schemas import CamelModel, Permissions


class Visibility(str, Enum):
    PRIVATE = "private"
    SHARED = "shared"
    PUBLIC = "public"


class VerificationStatus(str, Enum):
    PENDING = "pending"
    VERIFIED = "verified"
    INVALID = "invalid"


class WalletEntry(CamelModel):
    owner_id: str
    credential_id: str
    signed_document: SignedDocument
    added_to_wallet: datetime
    permissions: Permissions = Field(default_factory=Permissions)
    visibility: Visibility = Visibility.PRIVATE
    shared_with: list[str] = Field(default_factory=list)
    verification_status: VerificationStatus = VerificationStatus.PENDING
    last_verified_at: datetime | None = None
    # Filled from the revocation registry on read, never persisted.
    revocation: Revocation | None = None

    @property
    def credential(self) -> Credential:
        return self.signed_document.document_data


class WalletStats(CamelModel):
    total: int
    verified: int
    invalid: int
    pending: int
    revoked: int
    by_type: dict[str, int]
    expiring_in_30_days: int


class WalletExport(CamelModel):
    owner_id: str
    exported_at: datetime
    entries: list[WalletEntry]


class PermissionsPatch(CamelModel):
    can_view: bool | None = None
    can_print: bool | None = None
    can_share: bool | None = None
    can_download: bool | None = None


class VisibilityUpdate(CamelModel):
    visibility: Visibility
