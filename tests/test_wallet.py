from datetime import timedelta

import pytest

from signatura.clock import utcnow
from signatura.credentials.issuance import RevocationRegistry, issue_credential, sign_revocation, verify_revocation
from signatura.errors import NotFoundError, StateTransitionError, ValidationError
from signatura.store import MemoryStore, VersionConflict
from signatura.wallet.schemas import VerificationStatus, Visibility
from signatura.wallet.service import WalletService

OWNER = "owner-1"


def _issue(keys, credential_type="diploma", **fields):
    data = {
        "credentialType": credential_type,
        "recipientEmail": "a@b.com",
        "recipientName": fields.pop("name", "Ada Lovelace"),
        "data": fields.pop("data", {}),
        **fields,
    }
    return issue_credential(data, keys.secret_key, keys.public_key)


def _tampered(signed):
    doc = signed.to_json_dict()
    doc["documentData"]["data"]["degree"] = "PhD"
    return doc


@pytest.mark.anyio
async def test_add_valid_credential_is_verified(wallet, diploma) -> None:
    entry = await wallet.add_credential_to_wallet(diploma, OWNER)

    assert entry.verification_status == VerificationStatus.VERIFIED
    assert entry.credential_id == diploma.document_id
    assert entry.visibility == Visibility.PRIVATE
    assert entry.permissions.can_view is True
    assert entry.permissions.can_download is False
    assert entry.last_verified_at is not None

    audit = await wallet.get_audit_log(OWNER)
    assert [a["action"] for a in audit] == ["added"]


@pytest.mark.anyio
async def test_tampered_credential_is_stored_as_invalid(wallet, diploma) -> None:
    entry = await wallet.add_credential_to_wallet(_tampered(diploma), OWNER)
    assert entry.verification_status == VerificationStatus.INVALID

    stored = await wallet.get_credential(OWNER, diploma.document_id)
    assert stored.verification_status == VerificationStatus.INVALID


@pytest.mark.anyio
async def test_malformed_document_is_rejected(wallet) -> None:
    with pytest.raises(ValidationError):
        await wallet.add_credential_to_wallet({"documentId": "x"}, OWNER)


@pytest.mark.anyio
async def test_duplicate_ingestion_returns_existing_entry(wallet, diploma) -> None:
    first = await wallet.add_credential_to_wallet(diploma, OWNER)
    await wallet.set_credential_visibility(OWNER, diploma.document_id, "public")

    second = await wallet.add_credential_to_wallet(diploma, OWNER)

    assert second.added_to_wallet == first.added_to_wallet
    assert second.visibility == Visibility.PUBLIC
    assert len(await wallet.get_credentials(OWNER)) == 1


@pytest.mark.anyio
async def test_wallets_are_isolated_per_owner(wallet, diploma) -> None:
    await wallet.add_credential_to_wallet(diploma, OWNER)
    assert await wallet.get_credentials("someone-else") == []
    with pytest.raises(NotFoundError):
        await wallet.get_credential("someone-else", diploma.document_id)


@pytest.mark.anyio
async def test_queries(wallet, issuer_keys) -> None:
    diploma = _issue(issuer_keys, "diploma", data={"degree": "BS", "university": {"name": "Cambridge"}})
    license_ = _issue(issuer_keys, "license", name="Grace Hopper", data={"class": "B"})
    forged = _issue(issuer_keys, "diploma", data={"degree": "MS"})

    await wallet.add_credential_to_wallet(diploma, OWNER)
    await wallet.add_credential_to_wallet(license_, OWNER)
    await wallet.add_credential_to_wallet(_tampered(forged), OWNER)

    assert [e.credential_id for e in await wallet.get_credentials(OWNER)] == [
        diploma.document_id,
        license_.document_id,
        forged.document_id,
    ]
    assert {e.credential_id for e in await wallet.get_credentials_by_type(OWNER, "diploma")} == {
        diploma.document_id,
        forged.document_id,
    }
    assert [e.credential_id for e in await wallet.get_verified_credentials(OWNER)] == [
        diploma.document_id,
        license_.document_id,
    ]


@pytest.mark.anyio
async def test_search_matches_name_type_and_nested_data(wallet, issuer_keys) -> None:
    diploma = _issue(issuer_keys, "diploma", data={"degree": "BS", "university": {"name": "Cambridge"}})
    license_ = _issue(issuer_keys, "license", name="Grace Hopper", data={"endorsements": ["Motorcycle"]})
    await wallet.add_credential_to_wallet(diploma, OWNER)
    await wallet.add_credential_to_wallet(license_, OWNER)

    async def ids(query):
        return {e.credential_id for e in await wallet.search_credentials(OWNER, query)}

    assert await ids("cambridge") == {diploma.document_id}
    assert await ids("HOPPER") == {license_.document_id}
    assert await ids("licen") == {license_.document_id}
    assert await ids("motorcycle") == {license_.document_id}
    assert await ids("") == {diploma.document_id, license_.document_id}
    assert await ids("nothing matches") == set()


@pytest.mark.anyio
async def test_update_permissions_merges_patch(wallet, diploma) -> None:
    await wallet.add_credential_to_wallet(diploma, OWNER)

    entry = await wallet.update_credential_permissions(OWNER, diploma.document_id, {"canDownload": True})
    assert entry.permissions.can_download is True
    assert entry.permissions.can_view is True

    entry = await wallet.update_credential_permissions(OWNER, diploma.document_id, {"can_print": False})
    assert entry.permissions.can_download is True
    assert entry.permissions.can_print is False


@pytest.mark.anyio
@pytest.mark.parametrize("patch", [{"canFly": True}, {"canView": "yes"}])
async def test_update_permissions_rejects_bad_patch(wallet, diploma, patch) -> None:
    await wallet.add_credential_to_wallet(diploma, OWNER)
    with pytest.raises(ValidationError):
        await wallet.update_credential_permissions(OWNER, diploma.document_id, patch)


@pytest.mark.anyio
async def test_settings_on_missing_entry_raise_not_found(wallet) -> None:
    with pytest.raises(NotFoundError):
        await wallet.update_credential_permissions(OWNER, "missing", {"canView": False})
    with pytest.raises(NotFoundError):
        await wallet.set_credential_visibility(OWNER, "missing", "public")


class ContendedStore(MemoryStore):
    """Every conditional wallet write loses to a competing writer."""

    async def put(self, key, value, *, expected_version=None):
        if key.startswith("wallet:") and expected_version not in (None, 0):
            raise VersionConflict(key)
        return await super().put(key, value, expected_version=expected_version)


@pytest.mark.anyio
async def test_update_gives_up_with_state_error_under_contention(diploma) -> None:
    wallet = WalletService(ContendedStore())
    await wallet.add_credential_to_wallet(diploma, OWNER)

    with pytest.raises(StateTransitionError) as exc:
        await wallet.update_credential_permissions(OWNER, diploma.document_id, {"canDownload": True})

    assert exc.value.status_code == 409
    entry = await wallet.get_credential(OWNER, diploma.document_id)
    assert entry.permissions.can_download is False


@pytest.mark.anyio
async def test_set_visibility(wallet, diploma) -> None:
    await wallet.add_credential_to_wallet(diploma, OWNER)

    entry = await wallet.set_credential_visibility(OWNER, diploma.document_id, Visibility.PUBLIC)
    assert entry.visibility == Visibility.PUBLIC

    with pytest.raises(ValidationError):
        await wallet.set_credential_visibility(OWNER, diploma.document_id, "everyone")


@pytest.mark.anyio
async def test_reverify_records_outcome(wallet, diploma) -> None:
    first = await wallet.add_credential_to_wallet(diploma, OWNER)

    entry = await wallet.reverify_credential(OWNER, diploma.document_id)

    assert entry.verification_status == VerificationStatus.VERIFIED
    assert entry.last_verified_at >= first.last_verified_at
    assert [a["action"] for a in await wallet.get_audit_log(OWNER)] == ["added", "reverified"]


@pytest.mark.anyio
async def test_wallet_stats(store, wallet, issuer_keys) -> None:
    soon = utcnow() + timedelta(days=10)
    later = utcnow() + timedelta(days=90)
    expiring = _issue(issuer_keys, "license", expiresAt=soon)
    lasting = _issue(issuer_keys, "license", expiresAt=later)
    diploma = _issue(issuer_keys, "diploma")
    forged = _issue(issuer_keys, "diploma")

    for signed in (expiring, lasting, diploma):
        await wallet.add_credential_to_wallet(signed, OWNER)
    await wallet.add_credential_to_wallet(_tampered(forged), OWNER)
    await RevocationRegistry(store).record(verify_revocation(sign_revocation(diploma, issuer_keys.secret_key)))

    stats = await wallet.get_wallet_stats(OWNER)

    assert stats.total == 4
    assert stats.verified == 3
    assert stats.invalid == 1
    assert stats.pending == 0
    assert stats.revoked == 1
    assert stats.by_type == {"license": 2, "diploma": 2}
    assert stats.expiring_in_30_days == 1


@pytest.mark.anyio
async def test_revocation_is_overlaid_on_read(store, wallet, diploma, issuer_keys) -> None:
    await wallet.add_credential_to_wallet(diploma, OWNER)
    statement = sign_revocation(diploma, issuer_keys.secret_key, reason="fraud")
    await RevocationRegistry(store).record(verify_revocation(statement))

    entry = await wallet.get_credential(OWNER, diploma.document_id)

    assert entry.revocation is not None
    assert entry.revocation.reason == "fraud"
    # The stored signed document is unchanged.
    assert entry.verification_status == VerificationStatus.VERIFIED
    assert entry.signed_document == diploma


@pytest.mark.anyio
async def test_delete_and_clear(wallet, issuer_keys) -> None:
    docs = [_issue(issuer_keys) for _ in range(3)]
    for signed in docs:
        await wallet.add_credential_to_wallet(signed, OWNER)

    await wallet.delete_credential(OWNER, docs[0].document_id)
    with pytest.raises(NotFoundError):
        await wallet.delete_credential(OWNER, docs[0].document_id)
    assert len(await wallet.get_credentials(OWNER)) == 2

    assert await wallet.clear_wallet(OWNER) == 2
    assert await wallet.get_credentials(OWNER) == []
    assert [a["action"] for a in await wallet.get_audit_log(OWNER)][-2:] == ["deleted", "cleared"]


@pytest.mark.anyio
async def test_link_share_marks_entry_shared(wallet, diploma) -> None:
    await wallet.add_credential_to_wallet(diploma, OWNER)

    await wallet.link_share(OWNER, diploma.document_id, "grant-1")
    entry = await wallet.link_share(OWNER, diploma.document_id, "grant-1")

    assert entry.shared_with == ["grant-1"]
    assert entry.visibility == Visibility.SHARED


@pytest.mark.anyio
async def test_export_then_import_reverifies(wallet, issuer_keys) -> None:
    good = _issue(issuer_keys)
    await wallet.add_credential_to_wallet(good, OWNER)
    await wallet.update_credential_permissions(OWNER, good.document_id, {"canDownload": True})

    backup = (await wallet.export_wallet(OWNER)).to_json_dict()
    assert backup["ownerId"] == OWNER
    assert len(backup["entries"]) == 1

    forged = _issue(issuer_keys)
    forged_entry = dict(backup["entries"][0])
    forged_entry["credentialId"] = forged.document_id
    forged_entry["signedDocument"] = _tampered(forged)
    forged_entry["verificationStatus"] = "verified"
    backup["entries"].append(forged_entry)

    imported = await wallet.import_wallet("owner-2", backup)

    assert [e.verification_status for e in imported] == [VerificationStatus.VERIFIED, VerificationStatus.INVALID]
    restored = await wallet.get_credential("owner-2", good.document_id)
    assert restored.permissions.can_download is True
    assert restored.owner_id == "owner-2"


@pytest.mark.anyio
async def test_import_rejects_malformed_backup(wallet) -> None:
    with pytest.raises(ValidationError):
        await wallet.import_wallet(OWNER, {"entries": "nope"})
