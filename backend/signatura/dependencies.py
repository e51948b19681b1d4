from fastapi import Depends

from signatura.credentials.issuance import RevocationRegistry
from signatura.sharing.otp import OtpSender, OtpService, get_otp_sender
from signatura.sharing.resolution import ShareResolver
from signatura.sharing.service import ShareManager
from signatura.store import Store, get_store
from signatura.wallet.service import WalletService


def get_revocations(store: Store = Depends(get_store)) -> RevocationRegistry:
    return RevocationRegistry(store)


def get_wallet(
    store: Store = Depends(get_store),
    revocations: RevocationRegistry = Depends(get_revocations),
) -> WalletService:
    return WalletService(store, revocations)


def get_share_manager(
    store: Store = Depends(get_store),
    wallet: WalletService = Depends(get_wallet),
) -> ShareManager:
    return ShareManager(store, wallet)


def get_resolver(
    store: Store = Depends(get_store),
    shares: ShareManager = Depends(get_share_manager),
    wallet: WalletService = Depends(get_wallet),
    sender: OtpSender = Depends(get_otp_sender),
) -> ShareResolver:
    return ShareResolver(shares, wallet, OtpService(store, sender))
