"""Seed demo data for an owner: an issuer keypair, signed credentials and a share."""
import asyncio
import sys

sys.path.insert(0, ".")
from signatura.auth.service import create_access_token
from signatura.config import settings
from signatura.credentials.issuance import batch_issue_credentials
from signatura.credentials.signing import generate_key_pair
from signatura.database import init_models
from signatura.sharing.service import ShareManager
from signatura.store import get_store
from signatura.wallet.service import WalletService


async def seed(owner_id: str, owner_email: str):
    if settings.storage_backend == "sql":
        await init_models()
    store = get_store()
    wallet = WalletService(store)
    shares = ShareManager(store, wallet)

    issuer = generate_key_pair()
    owner = generate_key_pair()

    result = batch_issue_credentials(
        [
            {
                "credentialType": "diploma",
                "recipientEmail": owner_email,
                "recipientName": "Demo Owner",
                "data": {"degree": "BS Computer Science", "university": "State University"},
            },
            {
                "credentialType": "certificate",
                "recipientEmail": owner_email,
                "recipientName": "Demo Owner",
                "data": {"course": "Applied Cryptography", "grade": "A"},
            },
            {
                "credentialType": "license",
                "recipientEmail": owner_email,
                "recipientName": "Demo Owner",
                "data": {"licenseClass": "B", "region": "NCR"},
            },
        ],
        issuer.secret_key,
        issuer.public_key,
    )

    for signed in result.issued:
        entry = await wallet.add_credential_to_wallet(signed, owner_id)
        print(f"  - {entry.credential.credential_type}: {entry.credential_id} ({entry.verification_status.value})")

    first = result.issued[0]
    share = await shares.create_share_request(
        first.document_id,
        owner.public_key,
        "verifier@example.com",
        {"canView": True, "canDownload": False},
        owner_id=owner_id,
    )
    await shares.approve_share(share.grant.id)

    print(f"Seeded {result.summary.successful} credentials for owner {owner_id}")
    print(f"Issuer public key: {issuer.public_key}")
    print(f"Share link: {share.share_url}")
    print(f"Owner token: {create_access_token(owner_id)}")


if __name__ == "__main__":
    if len(sys.argv) < 3:
        print("Usage: python seed_demo.py <owner_id> <owner_email>")
        sys.exit(1)
    asyncio.run(seed(sys.argv[1], sys.argv[2]))
