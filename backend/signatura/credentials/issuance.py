"""Credential issuance, batch issuance and the revocation overlay."""

import logging
import uuid
from datetime import datetime

from pydantic import ValidationError as PydanticValidationError

from signatura.clock import utcnow
from signatura.errors import (
    NotFoundError,
    PermissionDeniedError,
    SigningError,
    StateTransitionError,
    ValidationError,
)
from signatura.store import Store, VersionConflict

from .schemas import (
    BatchFailure,
    BatchResult,
    BatchSummary,
    Credential,
    CredentialRequest,
    CredentialTemplate,
    QrPayload,
    Revocation,
    RevocationStatement,
    SignedDocument,
)
from .signing import create_signed_document, public_key_from_secret, sign_document, verify_signature

logger = logging.getLogger(__name__)


def _parse_request(data) -> CredentialRequest:
    if isinstance(data, CredentialRequest):
        return data
    try:
        return CredentialRequest.model_validate(data)
    except PydanticValidationError as e:
        fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in e.errors())
        raise ValidationError(f"Invalid credential data: {fields}") from e


def create_credential_template(
    issuer_public_key: str,
    name: str,
    fields: list[str] | None = None,
    description: str | None = None,
    issuer_id: str | None = None,
    issuer_email: str | None = None,
) -> CredentialTemplate:
    try:
        return CredentialTemplate(
            id=str(uuid.uuid4()),
            issuer_public_key=issuer_public_key,
            issuer_id=issuer_id,
            issuer_email=issuer_email,
            name=name,
            description=description,
            fields=fields or [],
            created_at=utcnow(),
        )
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid credential template: {e.errors()[0]['msg']}") from e


def _check_template(request: CredentialRequest, template: CredentialTemplate | None, issuer_public_key: str) -> None:
    if template is None:
        if request.template_id is not None:
            raise ValidationError(f"Unknown credential template {request.template_id}")
        return
    if request.template_id not in (None, template.id):
        raise ValidationError(f"Credential names template {request.template_id}, not {template.id}")
    if template.issuer_public_key != issuer_public_key:
        raise ValidationError(f"Template {template.id} belongs to another issuer")
    missing = [name for name in template.fields if name not in request.data]
    if missing:
        raise ValidationError(f"Missing template fields: {', '.join(missing)}")


def issue_credential(
    data,
    issuer_secret_key: str,
    issuer_public_key: str,
    template: CredentialTemplate | None = None,
) -> SignedDocument:
    """Build a Credential from issuer input and sign it.

    A credential naming a ``templateId`` needs that template, and must carry
    every field the template lists.
    """
    request = _parse_request(data)
    if public_key_from_secret(issuer_secret_key) != issuer_public_key:
        raise SigningError("Issuer secret key does not match the issuer public key")
    _check_template(request, template, issuer_public_key)

    credential = Credential(
        id=str(uuid.uuid4()),
        credential_type=request.credential_type,
        recipient_email=request.recipient_email,
        recipient_name=request.recipient_name,
        template_id=template.id if template else None,
        data=request.data,
        issued_at=utcnow(),
        expires_at=request.expires_at,
    )
    signed = create_signed_document(credential, issuer_secret_key, issuer_public_key)
    logger.info("Issued %s credential %s", credential.credential_type, credential.id)
    return signed


def batch_issue_credentials(
    items: list,
    issuer_secret_key: str,
    issuer_public_key: str,
    template: CredentialTemplate | None = None,
) -> BatchResult:
    """Issue each item on its own; one bad item never affects the others."""
    issued: list[SignedDocument] = []
    failed: list[BatchFailure] = []

    for index, item in enumerate(items):
        try:
            issued.append(issue_credential(item, issuer_secret_key, issuer_public_key, template))
        except (ValidationError, SigningError) as e:
            if isinstance(item, dict):
                email = item.get("recipientEmail", item.get("recipient_email"))
            else:
                email = getattr(item, "recipient_email", None)
            failed.append(BatchFailure(index=index, email=None if email is None else str(email), error=e.message))
            logger.warning("Batch item %d failed: %s", index, e.message)

    return BatchResult(
        issued=issued,
        failed=failed,
        summary=BatchSummary(total=len(items), successful=len(issued), failed=len(failed)),
    )


def revoke_credential(
    credential_id: str,
    reason: str | None = None,
    revoked_at: datetime | None = None,
    *,
    issuer_public_key: str,
) -> Revocation:
    """Build a revocation marker. The signed document itself is never touched."""
    if not credential_id:
        raise ValidationError("credential_id is required")
    if not issuer_public_key:
        raise ValidationError("issuer_public_key is required")
    return Revocation(
        credential_id=credential_id,
        issuer_public_key=issuer_public_key,
        reason=reason,
        revoked_at=revoked_at or utcnow(),
    )


def sign_revocation(
    signed_doc: SignedDocument,
    issuer_secret_key: str,
    reason: str | None = None,
) -> RevocationStatement:
    """Revocation request signed with the key that issued ``signed_doc``."""
    if public_key_from_secret(issuer_secret_key) != signed_doc.issuer.public_key:
        raise SigningError("Only the issuer of a credential can revoke it")
    statement = {
        "credentialId": signed_doc.document_id,
        "issuerPublicKey": signed_doc.issuer.public_key,
        "reason": reason,
        "revokedAt": utcnow(),
    }
    result = sign_document(statement, issuer_secret_key)
    return RevocationStatement(**statement, signature=result.signature)


def verify_revocation(statement: RevocationStatement) -> Revocation:
    """Turn an issuer-signed statement into a revocation, or refuse it."""
    payload = statement.to_json_dict(exclude={"signature"})
    if not verify_signature(payload, statement.signature, statement.issuer_public_key):
        raise PermissionDeniedError("Revocation is not signed by the credential issuer")
    return revoke_credential(
        statement.credential_id,
        statement.reason,
        statement.revoked_at,
        issuer_public_key=statement.issuer_public_key,
    )


def credential_qr_payload(signed_doc: SignedDocument, origin: str) -> QrPayload:
    """Data handed to the QR renderer; never contains the credential body."""
    return QrPayload(
        document_id=signed_doc.document_id,
        document_hash=signed_doc.document_hash,
        verification_url=f"{origin.rstrip('/')}/verify?hash={signed_doc.document_hash}",
    )


class RevocationRegistry:
    """Revocation side-table keyed by credential id and issuer key.

    A revocation only applies to documents signed by the issuer that
    recorded it.
    """

    def __init__(self, store: Store):
        self.store = store

    @staticmethod
    def _key(credential_id: str, issuer_public_key: str) -> str:
        return f"revocation:{credential_id}:{issuer_public_key}"

    async def record(self, revocation: Revocation) -> Revocation:
        key = self._key(revocation.credential_id, revocation.issuer_public_key)
        try:
            await self.store.put(key, revocation.to_json_dict(), expected_version=0)
        except VersionConflict:
            raise StateTransitionError(f"Credential {revocation.credential_id} is already revoked")
        logger.info("Credential %s revoked", revocation.credential_id)
        return revocation

    async def get(self, credential_id: str, issuer_public_key: str) -> Revocation | None:
        record = await self.store.get(self._key(credential_id, issuer_public_key))
        return Revocation.model_validate(record.value) if record else None

    async def require(self, credential_id: str, issuer_public_key: str) -> Revocation:
        revocation = await self.get(credential_id, issuer_public_key)
        if revocation is None:
            raise NotFoundError(f"No revocation for credential {credential_id}")
        return revocation

    async def is_revoked(self, credential_id: str, issuer_public_key: str) -> bool:
        return await self.get(credential_id, issuer_public_key) is not None
