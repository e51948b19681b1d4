import os

os.environ.setdefault("SIG_STORAGE_BACKEND", "memory")

import pytest  # noqa: E402

from signatura.credentials.issuance import issue_credential  # noqa: E402
from signatura.credentials.signing import generate_key_pair  # noqa: E402
from signatura.sharing.otp import LogOtpSender, OtpService  # noqa: E402
from signatura.sharing.resolution import ShareResolver  # noqa: E402
from signatura.sharing.service import ShareManager  # noqa: E402
from signatura.store import MemoryStore  # noqa: E402
from signatura.wallet.service import WalletService  # noqa: E402

DIPLOMA_REQUEST = {
    "credentialType": "diploma",
    "recipientEmail": "a@b.com",
    "recipientName": "A B",
    "data": {"degree": "BS"},
}


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def issuer_keys():
    return generate_key_pair()


@pytest.fixture
def owner_keys():
    return generate_key_pair()


@pytest.fixture
def diploma(issuer_keys):
    return issue_credential(DIPLOMA_REQUEST, issuer_keys.secret_key, issuer_keys.public_key)


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def wallet(store):
    return WalletService(store)


@pytest.fixture
def shares(store, wallet):
    return ShareManager(store, wallet, share_origin="https://signatura.example.com")


@pytest.fixture
def sender():
    return LogOtpSender()


@pytest.fixture
def resolver(store, shares, wallet, sender):
    return ShareResolver(shares, wallet, OtpService(store, sender))


@pytest.fixture
def diploma_request():
    return dict(DIPLOMA_REQUEST)
