from typing import Any

from fastapi import APIRouter, Body, Depends, Query

from signatura.config import settings
from signatura.dependencies import get_revocations

from .issuance import RevocationRegistry, credential_qr_payload, verify_revocation
from .schemas import (
    DocumentValidation,
    OwnershipProofCheck,
    QrPayload,
    Revocation,
    RevocationStatement,
    SignedDocument,
)
from .signing import validate_signed_document, verify_ownership_proof

router = APIRouter(prefix="/credentials", tags=["credentials"])


@router.post("/verify", response_model=DocumentValidation)
async def verify(
    signed_doc: dict[str, Any] = Body(...),
    revocations: RevocationRegistry = Depends(get_revocations),
):
    """Public endpoint: checks signature, hash and revocation of a signed document."""
    result = validate_signed_document(signed_doc)
    if result.document_id and await revocations.is_revoked(result.document_id, result.issuer_public_key):
        result.revoked = True
        result.message = "Credential has been revoked by its issuer"
    return result


@router.post("/revocations", response_model=Revocation, status_code=201)
async def revoke(
    statement: RevocationStatement,
    revocations: RevocationRegistry = Depends(get_revocations),
):
    """Record an issuer-signed revocation. The signature is the authorization."""
    return await revocations.record(verify_revocation(statement))


@router.get("/revocations/{credential_id}", response_model=Revocation)
async def get_revocation(
    credential_id: str,
    issuer_public_key: str = Query(alias="issuerPublicKey"),
    revocations: RevocationRegistry = Depends(get_revocations),
):
    return await revocations.require(credential_id, issuer_public_key)


@router.post("/ownership-proofs/verify")
async def verify_proof(body: OwnershipProofCheck):
    return {"valid": verify_ownership_proof(body.proof, body.public_key)}


@router.post("/qr-payload", response_model=QrPayload)
async def qr_payload(signed_doc: SignedDocument):
    return credential_qr_payload(signed_doc, settings.share_origin)
