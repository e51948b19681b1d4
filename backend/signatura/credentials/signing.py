"""Ed25519 credential signing and verification over canonical JSON.

Every signature and hash in the system is computed over the same bytes:
the payload serialized to JSON with sorted keys, no whitespace and UTF-8
encoding. Field construction order therefore never affects verification.
"""

import base64
import binascii
import hashlib
import json
import logging
import secrets
from datetime import datetime, timedelta

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)
from pydantic import ValidationError as PydanticValidationError
from pydantic_core import to_jsonable_python

from signatura.clock import as_utc, utcnow
from signatura.errors import SigningError

from .schemas import (
    Credential,
    DocumentValidation,
    IssuerSignature,
    KeyPair,
    OwnershipProof,
    SignatureResult,
    SignedDocument,
    TokenStatus,
    VerificationToken,
)

logger = logging.getLogger(__name__)

DOCUMENT_VERSION = "1.0"
TOKEN_BYTES = 32


def canonicalize(payload) -> bytes:
    """Serialize ``payload`` (dict or pydantic model) into canonical JSON bytes."""
    return json.dumps(
        to_jsonable_python(payload, by_alias=True),
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
    ).encode("utf-8")


def _b64encode(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def _b64url_encode(data: bytes) -> str:
    """URL-safe base64 without padding, so tokens can sit in a URL path."""
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def _load_private_key(secret_key: str) -> Ed25519PrivateKey:
    try:
        raw = base64.b64decode(secret_key, validate=True)
    except (binascii.Error, ValueError, TypeError) as e:
        raise SigningError("Secret key is not valid base64") from e
    # NaCl-style secret keys carry the public key in the second half.
    if len(raw) == 64:
        raw = raw[:32]
    if len(raw) != 32:
        raise SigningError(f"Secret key must be 32 or 64 bytes, got {len(raw)}")
    return Ed25519PrivateKey.from_private_bytes(raw)


def _load_public_key(public_key: str) -> Ed25519PublicKey:
    raw = base64.b64decode(public_key, validate=True)
    return Ed25519PublicKey.from_public_bytes(raw)


def _public_bytes(private_key: Ed25519PrivateKey) -> bytes:
    return private_key.public_key().public_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PublicFormat.Raw,
    )


def generate_key_pair() -> KeyPair:
    private_key = Ed25519PrivateKey.generate()
    seed = private_key.private_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PrivateFormat.Raw,
        encryption_algorithm=serialization.NoEncryption(),
    )
    return KeyPair(public_key=_b64encode(_public_bytes(private_key)), secret_key=_b64encode(seed))


def public_key_from_secret(secret_key: str) -> str:
    return _b64encode(_public_bytes(_load_private_key(secret_key)))


def hash_document(payload) -> str:
    """SHA-256 hex digest of the canonical serialization."""
    return hashlib.sha256(canonicalize(payload)).hexdigest()


def sign_document(payload, secret_key: str) -> SignatureResult:
    private_key = _load_private_key(secret_key)
    try:
        message = canonicalize(payload)
    except (TypeError, ValueError) as e:
        raise SigningError(f"Payload cannot be serialized: {e}") from e
    signature = private_key.sign(message)
    return SignatureResult(
        signature=_b64encode(signature),
        document_hash=hashlib.sha256(message).hexdigest(),
        signed_at=utcnow(),
    )


def verify_signature(payload, signature: str, public_key: str) -> bool:
    """Check ``signature`` over ``payload``. Never raises."""
    try:
        message = canonicalize(payload)
        _load_public_key(public_key).verify(base64.b64decode(signature, validate=True), message)
        return True
    except (InvalidSignature, binascii.Error, TypeError, ValueError) as e:
        logger.debug("Signature verification failed: %s", type(e).__name__)
        return False


def create_signed_document(credential: Credential, secret_key: str, public_key: str) -> SignedDocument:
    result = sign_document(credential, secret_key)
    return SignedDocument(
        document_id=credential.id,
        document_data=credential,
        issuer=IssuerSignature(public_key=public_key, signature=result.signature),
        document_hash=result.document_hash,
        signed_at=result.signed_at,
        version=DOCUMENT_VERSION,
        is_valid=True,
    )


def validate_signed_document(signed_doc) -> DocumentValidation:
    """Re-check issuer signature and content hash of a SignedDocument (model or dict)."""
    try:
        if not isinstance(signed_doc, SignedDocument):
            signed_doc = SignedDocument.model_validate(signed_doc)
    except PydanticValidationError:
        return DocumentValidation(is_valid=False, hash_matches=False, message="Malformed signed document")

    signature_ok = verify_signature(
        signed_doc.document_data, signed_doc.issuer.signature, signed_doc.issuer.public_key
    )
    hash_ok = hash_document(signed_doc.document_data) == signed_doc.document_hash
    valid = signature_ok and hash_ok
    if valid:
        message = "Document is authentic"
    elif not signature_ok:
        message = "Document signature is invalid"
    else:
        message = "Document hash does not match its contents"
    return DocumentValidation(
        is_valid=valid,
        hash_matches=hash_ok,
        document_id=signed_doc.document_id,
        issuer_public_key=signed_doc.issuer.public_key,
        signed_at=signed_doc.signed_at,
        message=message,
    )


def create_ownership_proof(document_id: str, owner_id: str, secret_key: str) -> OwnershipProof:
    """Owner-signed statement "I hold document_id", with a fresh nonce."""
    proof_data = {
        "documentId": document_id,
        "ownerId": owner_id,
        "timestamp": utcnow(),
        "nonce": _b64encode(secrets.token_bytes(16)),
    }
    result = sign_document(proof_data, secret_key)
    return OwnershipProof(**proof_data, signature=result.signature)


def verify_ownership_proof(proof: OwnershipProof, public_key: str) -> bool:
    proof_data = proof.to_json_dict(exclude={"signature"})
    return verify_signature(proof_data, proof.signature, public_key)


def create_verification_token(
    document_id: str,
    owner_public_key: str,
    verifier_email: str,
    expires_in_days: float = 7,
    *,
    expires_at: datetime | None = None,
) -> VerificationToken:
    issued_at = utcnow()
    return VerificationToken(
        document_id=document_id,
        owner_public_key=owner_public_key,
        verifier_email=verifier_email,
        issued_at=issued_at,
        expires_at=expires_at or issued_at + timedelta(days=expires_in_days),
        token=_b64url_encode(secrets.token_bytes(TOKEN_BYTES)),
    )


def verify_token(token: VerificationToken, now: datetime | None = None) -> TokenStatus:
    now = now or utcnow()
    expires_at = as_utc(token.expires_at)
    remaining = (expires_at - now).total_seconds()
    return TokenStatus(
        is_valid=now < expires_at,
        is_expired=now >= expires_at,
        expires_in_minutes=max(0, int(remaining // 60)),
    )
