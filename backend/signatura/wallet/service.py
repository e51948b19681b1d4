"""Owner wallet: ingestion with signature check, queries, per-entry settings."""

import logging
from datetime import timedelta

from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from signatura.clock import as_utc, utcnow
from signatura.credentials.issuance import RevocationRegistry
from signatura.credentials.schemas import SignedDocument
from signatura.credentials.signing import validate_signed_document
from signatura.errors import NotFoundError, StateTransitionError, ValidationError
from signatura.schemas import Permissions
from signatura.store import Store, VersionConflict

from .schemas import VerificationStatus, Visibility, WalletEntry, WalletExport, WalletStats

logger = logging.getLogger(__name__)

EXPIRING_WINDOW = timedelta(days=30)
MAX_UPDATE_ATTEMPTS = 5

_PERMISSION_NAMES = {name: name for name in Permissions.model_fields}
_PERMISSION_NAMES.update({to_camel(name): name for name in Permissions.model_fields})


def _merge_permissions(current: Permissions, patch: dict) -> Permissions:
    merged = current.model_dump()
    for key, value in patch.items():
        name = _PERMISSION_NAMES.get(key)
        if name is None:
            raise ValidationError(f"Unknown permission {key!r}")
        if not isinstance(value, bool):
            raise ValidationError(f"Permission {key!r} must be true or false")
        merged[name] = value
    return Permissions(**merged)


def _searchable_values(value):
    if isinstance(value, dict):
        for item in value.values():
            yield from _searchable_values(item)
    elif isinstance(value, (list, tuple)):
        for item in value:
            yield from _searchable_values(item)
    elif value is not None:
        yield str(value)


class WalletService:
    def __init__(self, store: Store, revocations: RevocationRegistry | None = None):
        self.store = store
        self.revocations = revocations or RevocationRegistry(store)

    @staticmethod
    def _key(owner_id: str, credential_id: str) -> str:
        return f"wallet:{owner_id}:{credential_id}"

    @staticmethod
    def _audit_key(owner_id: str) -> str:
        return f"wallet-audit:{owner_id}"

    @staticmethod
    def _dump(entry: WalletEntry) -> dict:
        return entry.to_json_dict(exclude={"revocation"})

    async def _overlay(self, entry: WalletEntry) -> WalletEntry:
        issuer = entry.signed_document.issuer.public_key
        entry.revocation = await self.revocations.get(entry.credential_id, issuer)
        return entry

    async def _audit(self, owner_id: str, action: str, credential_id: str | None = None, **extra) -> None:
        await self.store.append(
            self._audit_key(owner_id),
            {"action": action, "credentialId": credential_id, "timestamp": utcnow().isoformat(), **extra},
        )

    async def _update(self, owner_id: str, credential_id: str, mutate) -> WalletEntry:
        """Read-modify-write one entry, retrying when a concurrent writer wins."""
        key = self._key(owner_id, credential_id)
        for _ in range(MAX_UPDATE_ATTEMPTS):
            record = await self.store.get(key)
            if record is None:
                raise NotFoundError(f"Credential {credential_id} not found in wallet")
            entry = WalletEntry.model_validate(record.value)
            mutate(entry)
            try:
                await self.store.put(key, self._dump(entry), expected_version=record.version)
            except VersionConflict:
                logger.info("Retrying wallet update for %s after concurrent write", credential_id)
                continue
            return await self._overlay(entry)
        raise StateTransitionError(f"Credential {credential_id} is being modified concurrently, try again")

    # -- ingestion ---------------------------------------------------------

    async def add_credential_to_wallet(self, signed_doc, owner_id: str) -> WalletEntry:
        """Store a signed credential for ``owner_id`` after checking its issuer signature.

        The verification status is decided here, once. A duplicate ingestion
        returns the entry already in the wallet untouched.
        """
        if not isinstance(signed_doc, SignedDocument):
            try:
                signed_doc = SignedDocument.model_validate(signed_doc)
            except PydanticValidationError as e:
                raise ValidationError("Malformed signed document") from e

        key = self._key(owner_id, signed_doc.document_id)
        existing = await self.store.get(key)
        if existing is not None:
            logger.info("Credential %s already in wallet of %s", signed_doc.document_id, owner_id)
            return await self._overlay(WalletEntry.model_validate(existing.value))

        validation = validate_signed_document(signed_doc)
        now = utcnow()
        entry = WalletEntry(
            owner_id=owner_id,
            credential_id=signed_doc.document_id,
            signed_document=signed_doc,
            added_to_wallet=now,
            verification_status=VerificationStatus.VERIFIED if validation.is_valid else VerificationStatus.INVALID,
            last_verified_at=now,
        )
        try:
            await self.store.put(key, self._dump(entry), expected_version=0)
        except VersionConflict:
            record = await self.store.get(key)
            return await self._overlay(WalletEntry.model_validate(record.value))

        if not validation.is_valid:
            logger.warning(
                "Credential %s failed verification on ingestion: %s", entry.credential_id, validation.message
            )
        await self._audit(owner_id, "added", entry.credential_id, verificationStatus=entry.verification_status.value)
        return await self._overlay(entry)

    async def reverify_credential(self, owner_id: str, credential_id: str) -> WalletEntry:
        """Explicitly re-run signature verification and record the outcome."""
        validation = None

        def apply(entry: WalletEntry):
            nonlocal validation
            validation = validate_signed_document(entry.signed_document)
            entry.verification_status = (
                VerificationStatus.VERIFIED if validation.is_valid else VerificationStatus.INVALID
            )
            entry.last_verified_at = utcnow()

        entry = await self._update(owner_id, credential_id, apply)
        await self._audit(owner_id, "reverified", credential_id, verificationStatus=entry.verification_status.value)
        return entry

    # -- queries -----------------------------------------------------------

    async def get_credential(self, owner_id: str, credential_id: str) -> WalletEntry:
        record = await self.store.get(self._key(owner_id, credential_id))
        if record is None:
            raise NotFoundError(f"Credential {credential_id} not found in wallet")
        return await self._overlay(WalletEntry.model_validate(record.value))

    async def get_credentials(self, owner_id: str) -> list[WalletEntry]:
        records = await self.store.scan(f"wallet:{owner_id}:")
        entries = [WalletEntry.model_validate(r.value) for r in records]
        entries.sort(key=lambda e: e.added_to_wallet)
        return [await self._overlay(e) for e in entries]

    async def get_credentials_by_type(self, owner_id: str, credential_type: str) -> list[WalletEntry]:
        return [e for e in await self.get_credentials(owner_id) if e.credential.credential_type == credential_type]

    async def get_verified_credentials(self, owner_id: str) -> list[WalletEntry]:
        return [
            e for e in await self.get_credentials(owner_id)
            if e.verification_status == VerificationStatus.VERIFIED
        ]

    async def search_credentials(self, owner_id: str, query: str) -> list[WalletEntry]:
        """Case-insensitive substring match over name, type and data values."""
        needle = (query or "").strip().lower()
        entries = await self.get_credentials(owner_id)
        if not needle:
            return entries

        def matches(entry: WalletEntry) -> bool:
            credential = entry.credential
            haystack = [credential.recipient_name or "", credential.credential_type]
            haystack.extend(_searchable_values(credential.data))
            return any(needle in text.lower() for text in haystack)

        return [e for e in entries if matches(e)]

    async def get_wallet_stats(self, owner_id: str) -> WalletStats:
        entries = await self.get_credentials(owner_id)
        now = utcnow()
        by_type: dict[str, int] = {}
        expiring = 0
        for entry in entries:
            credential = entry.credential
            by_type[credential.credential_type] = by_type.get(credential.credential_type, 0) + 1
            if credential.expires_at is not None and now <= as_utc(credential.expires_at) <= now + EXPIRING_WINDOW:
                expiring += 1
        return WalletStats(
            total=len(entries),
            verified=sum(1 for e in entries if e.verification_status == VerificationStatus.VERIFIED),
            invalid=sum(1 for e in entries if e.verification_status == VerificationStatus.INVALID),
            pending=sum(1 for e in entries if e.verification_status == VerificationStatus.PENDING),
            revoked=sum(1 for e in entries if e.revocation is not None),
            by_type=by_type,
            expiring_in_30_days=expiring,
        )

    async def get_audit_log(self, owner_id: str) -> list[dict]:
        return await self.store.entries(self._audit_key(owner_id))

    # -- owner settings ----------------------------------------------------

    async def update_credential_permissions(self, owner_id: str, credential_id: str, patch: dict) -> WalletEntry:
        """Merge ``patch`` into the entry's display permissions.

        These flags only govern the owner's own view of the credential. Access
        by third parties is decided solely by share grants.
        """
        def apply(entry: WalletEntry):
            entry.permissions = _merge_permissions(entry.permissions, patch)

        return await self._update(owner_id, credential_id, apply)

    async def set_credential_visibility(self, owner_id: str, credential_id: str, visibility) -> WalletEntry:
        try:
            visibility = Visibility(visibility)
        except ValueError as e:
            raise ValidationError(f"Unknown visibility {visibility!r}") from e

        def apply(entry: WalletEntry):
            entry.visibility = visibility

        return await self._update(owner_id, credential_id, apply)

    async def link_share(self, owner_id: str, credential_id: str, grant_id: str) -> WalletEntry:
        def apply(entry: WalletEntry):
            if grant_id not in entry.shared_with:
                entry.shared_with.append(grant_id)
            if entry.visibility == Visibility.PRIVATE:
                entry.visibility = Visibility.SHARED

        return await self._update(owner_id, credential_id, apply)

    async def delete_credential(self, owner_id: str, credential_id: str) -> None:
        if not await self.store.delete(self._key(owner_id, credential_id)):
            raise NotFoundError(f"Credential {credential_id} not found in wallet")
        await self._audit(owner_id, "deleted", credential_id)

    async def clear_wallet(self, owner_id: str) -> int:
        """Delete every entry of the wallet. Confirmation happens at the caller."""
        removed = 0
        for record in await self.store.scan(f"wallet:{owner_id}:"):
            if await self.store.delete(record.key):
                removed += 1
        await self._audit(owner_id, "cleared", removed=removed)
        logger.info("Cleared %d credentials from wallet of %s", removed, owner_id)
        return removed

    # -- backup ------------------------------------------------------------

    async def export_wallet(self, owner_id: str) -> WalletExport:
        return WalletExport(owner_id=owner_id, exported_at=utcnow(), entries=await self.get_credentials(owner_id))

    async def import_wallet(self, owner_id: str, backup) -> list[WalletEntry]:
        """Restore a backup. Every document goes through the ingestion check again."""
        if not isinstance(backup, WalletExport):
            try:
                backup = WalletExport.model_validate(backup)
            except PydanticValidationError as e:
                raise ValidationError("Malformed wallet backup") from e

        imported = []
        for item in backup.entries:
            entry = await self.add_credential_to_wallet(item.signed_document, owner_id)
            if entry.permissions != item.permissions or entry.visibility != item.visibility:
                entry = await self.update_credential_permissions(
                    owner_id, entry.credential_id, item.permissions.model_dump()
                )
                entry = await self.set_credential_visibility(owner_id, entry.credential_id, item.visibility)
            imported.append(entry)
        await self._audit(owner_id, "imported", count=len(imported))
        return imported
