from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException

from signatura.auth.dependencies import get_current_owner
from signatura.dependencies import get_wallet

from .schemas import (
    PermissionsPatch,
    VerificationStatus,
    VisibilityUpdate,
    WalletEntry,
    WalletExport,
    WalletStats,
)
from .service import WalletService

router = APIRouter(prefix="/wallet", tags=["wallet"])


@router.post("/credentials", response_model=WalletEntry, status_code=201)
async def add_credential(
    signed_doc: dict[str, Any] = Body(...),
    owner_id: str = Depends(get_current_owner),
    wallet: WalletService = Depends(get_wallet),
):
    return await wallet.add_credential_to_wallet(signed_doc, owner_id)


@router.get("/credentials", response_model=list[WalletEntry])
async def list_credentials(
    type: str | None = None,
    q: str | None = None,
    verified: bool = False,
    owner_id: str = Depends(get_current_owner),
    wallet: WalletService = Depends(get_wallet),
):
    if type:
        entries = await wallet.get_credentials_by_type(owner_id, type)
    elif verified:
        entries = await wallet.get_verified_credentials(owner_id)
    else:
        entries = await wallet.get_credentials(owner_id)
    if verified:
        entries = [e for e in entries if e.verification_status == VerificationStatus.VERIFIED]
    if q:
        matched = {e.credential_id for e in await wallet.search_credentials(owner_id, q)}
        entries = [e for e in entries if e.credential_id in matched]
    return entries


@router.get("/stats", response_model=WalletStats)
async def stats(
    owner_id: str = Depends(get_current_owner),
    wallet: WalletService = Depends(get_wallet),
):
    return await wallet.get_wallet_stats(owner_id)


@router.get("/export", response_model=WalletExport)
async def export_wallet(
    owner_id: str = Depends(get_current_owner),
    wallet: WalletService = Depends(get_wallet),
):
    return await wallet.export_wallet(owner_id)


@router.post("/import", response_model=list[WalletEntry])
async def import_wallet(
    backup: dict[str, Any] = Body(...),
    owner_id: str = Depends(get_current_owner),
    wallet: WalletService = Depends(get_wallet),
):
    return await wallet.import_wallet(owner_id, backup)


@router.get("/credentials/{credential_id}", response_model=WalletEntry)
async def get_credential(
    credential_id: str,
    owner_id: str = Depends(get_current_owner),
    wallet: WalletService = Depends(get_wallet),
):
    return await wallet.get_credential(owner_id, credential_id)


@router.patch("/credentials/{credential_id}/permissions", response_model=WalletEntry)
async def update_permissions(
    credential_id: str,
    body: PermissionsPatch,
    owner_id: str = Depends(get_current_owner),
    wallet: WalletService = Depends(get_wallet),
):
    return await wallet.update_credential_permissions(owner_id, credential_id, body.model_dump(exclude_none=True))


@router.put("/credentials/{credential_id}/visibility", response_model=WalletEntry)
async def set_visibility(
    credential_id: str,
    body: VisibilityUpdate,
    owner_id: str = Depends(get_current_owner),
    wallet: WalletService = Depends(get_wallet),
):
    return await wallet.set_credential_visibility(owner_id, credential_id, body.visibility)


@router.post("/credentials/{credential_id}/reverify", response_model=WalletEntry)
async def reverify(
    credential_id: str,
    owner_id: str = Depends(get_current_owner),
    wallet: WalletService = Depends(get_wallet),
):
    return await wallet.reverify_credential(owner_id, credential_id)


@router.delete("/credentials/{credential_id}", status_code=204)
async def delete_credential(
    credential_id: str,
    owner_id: str = Depends(get_current_owner),
    wallet: WalletService = Depends(get_wallet),
):
    await wallet.delete_credential(owner_id, credential_id)


@router.delete("")
async def clear_wallet(
    confirm: bool = False,
    owner_id: str = Depends(get_current_owner),
    wallet: WalletService = Depends(get_wallet),
):
    if not confirm:
        raise HTTPException(status_code=400, detail="Pass confirm=true to clear the wallet")
    return {"removed": await wallet.clear_wallet(owner_id)}
