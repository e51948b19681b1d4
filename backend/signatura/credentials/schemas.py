from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import EmailStr, Field

from signatura.schemas import CamelModel


class CredentialStatus(str, Enum):
    ISSUED = "issued"
    REVOKED = "revoked"


class KeyPair(CamelModel):
    public_key: str  # base64, 32 bytes
    secret_key: str  # base64, 32-byte seed or 64-byte seed+public


class CredentialTemplate(CamelModel):
    """Issuer-defined credential type; ``fields`` must be present in ``data``."""

    id: str
    issuer_public_key: str
    issuer_id: str | None = None
    issuer_email: str | None = None
    name: str = Field(min_length=1)
    description: str | None = None
    fields: list[str] = Field(default_factory=list)
    created_at: datetime


class CredentialRequest(CamelModel):
    """Issuer input for a single credential."""

    credential_type: str = Field(min_length=1)
    recipient_email: EmailStr
    recipient_name: str | None = None
    template_id: str | None = None
    data: dict[str, Any] = Field(default_factory=dict)
    expires_at: datetime | None = None


class Credential(CamelModel):
    id: str
    credential_type: str
    recipient_email: str
    recipient_name: str | None = None
    template_id: str | None = None
    data: dict[str, Any] = Field(default_factory=dict)
    issued_at: datetime
    expires_at: datetime | None = None
    status: CredentialStatus = CredentialStatus.ISSUED


class IssuerSignature(CamelModel):
    public_key: str
    signature: str


class SignatureResult(CamelModel):
    signature: str
    document_hash: str
    signed_at: datetime


class SignedDocument(CamelModel):
    document_id: str
    document_data: Credential
    issuer: IssuerSignature
    document_hash: str
    signed_at: datetime
    version: str = "1.0"
    is_valid: bool = True


class DocumentValidation(CamelModel):
    is_valid: bool
    hash_matches: bool
    document_id: str | None = None
    issuer_public_key: str | None = None
    signed_at: datetime | None = None
    revoked: bool = False
    message: str


class VerificationToken(CamelModel):
    document_id: str
    owner_public_key: str
    verifier_email: str
    issued_at: datetime
    expires_at: datetime
    token: str


class TokenStatus(CamelModel):
    is_valid: bool
    is_expired: bool
    expires_in_minutes: int


class OwnershipProof(CamelModel):
    document_id: str
    owner_id: str
    timestamp: datetime
    nonce: str
    signature: str


class Revocation(CamelModel):
    credential_id: str
    issuer_public_key: str
    reason: str | None = None
    revoked_at: datetime
    status: CredentialStatus = CredentialStatus.REVOKED


class RevocationStatement(CamelModel):
    """Issuer-signed request to revoke one credential."""

    credential_id: str
    issuer_public_key: str
    reason: str | None = None
    revoked_at: datetime
    signature: str


class BatchFailure(CamelModel):
    index: int
    email: str | None = None
    error: str


class BatchSummary(CamelModel):
    total: int
    successful: int
    failed: int


class BatchResult(CamelModel):
    issued: list[SignedDocument]
    failed: list[BatchFailure]
    summary: BatchSummary


class OwnershipProofCheck(CamelModel):
    proof: OwnershipProof
    public_key: str


class QrPayload(CamelModel):
    document_id: str
    document_hash: str
    verification_url: str
