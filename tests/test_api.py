import pytest
from fastapi.testclient import TestClient

from signatura.auth.service import create_access_token
from signatura.clock import utcnow
from signatura.credentials.issuance import sign_revocation
from signatura.credentials.schemas import RevocationStatement
from signatura.credentials.signing import create_ownership_proof, sign_document
from signatura.main import app
from signatura.sharing.otp import get_otp_sender
from signatura.store import get_store

OWNER = "owner-1"
VERIFIER = "v@example.com"


@pytest.fixture
def client(store, sender):
    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_otp_sender] = lambda: sender
    yield TestClient(app)
    app.dependency_overrides.clear()


def _auth(owner_id=OWNER):
    return {"Authorization": f"Bearer {create_access_token(owner_id)}"}


def _add(client, signed):
    resp = client.post("/wallet/credentials", json=signed.to_json_dict(), headers=_auth())
    assert resp.status_code == 201, resp.text
    return resp.json()


def _share(client, signed, owner_keys, **extra):
    body = {
        "credentialId": signed.document_id,
        "ownerPublicKey": owner_keys.public_key,
        "verifierEmail": VERIFIER,
        "permissions": {"canView": True, "canDownload": False},
        **extra,
    }
    resp = client.post("/shares", json=body, headers=_auth())
    assert resp.status_code == 201, resp.text
    return resp.json()


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_owner_endpoints_require_auth(client):
    assert client.get("/wallet/credentials").status_code in (401, 403)
    resp = client.get("/wallet/credentials", headers={"Authorization": "Bearer not-a-jwt"})
    assert resp.status_code == 401


def test_wallet_endpoints(client, diploma):
    entry = _add(client, diploma)
    assert entry["verificationStatus"] == "verified"
    assert entry["credentialId"] == diploma.document_id

    assert len(client.get("/wallet/credentials", headers=_auth()).json()) == 1
    assert client.get("/wallet/credentials", params={"type": "license"}, headers=_auth()).json() == []
    assert len(client.get("/wallet/credentials", params={"q": "bs"}, headers=_auth()).json()) == 1
    assert client.get("/wallet/credentials", headers=_auth("owner-2")).json() == []

    stats = client.get("/wallet/stats", headers=_auth()).json()
    assert stats["total"] == 1
    assert stats["byType"] == {"diploma": 1}

    resp = client.patch(
        f"/wallet/credentials/{diploma.document_id}/permissions",
        json={"canDownload": True},
        headers=_auth(),
    )
    assert resp.json()["permissions"]["canDownload"] is True

    resp = client.get("/wallet/credentials/missing", headers=_auth())
    assert resp.status_code == 404
    assert "not found" in resp.json()["detail"]

    assert client.delete("/wallet", headers=_auth()).status_code == 400
    assert client.delete("/wallet", params={"confirm": "true"}, headers=_auth()).json() == {"removed": 1}


def test_share_lifecycle(client, diploma, owner_keys):
    _add(client, diploma)
    created = _share(client, diploma, owner_keys)
    grant = created["grant"]
    token = grant["verificationToken"]["token"]
    assert grant["status"] == "pending"
    assert created["shareUrl"].endswith(f"/shared/{token}")

    assert client.get(f"/shared/{token}").json()["grant"]["status"] == "pending"
    assert client.get(f"/shared/{token}/view").status_code == 403

    resp = client.post(f"/shares/{grant['id']}/approve", headers=_auth())
    assert resp.json()["status"] == "approved"
    assert client.post(f"/shares/{grant['id']}/approve", headers=_auth()).status_code == 409

    view = client.get(f"/shared/{token}/view", headers={"User-Agent": "verifier-browser"})
    assert view.status_code == 200
    assert view.json()["document"]["documentId"] == diploma.document_id
    assert view.json()["verification"]["isValid"] is True
    assert client.get(f"/shared/{token}/download").status_code == 403

    missing = client.get("/shared/no-such-token")
    assert missing.status_code == 404
    assert missing.json() == {"detail": "Share not found or expired"}

    # Other owners cannot see or act on the grant.
    assert client.get(f"/shares/{grant['id']}", headers=_auth("owner-2")).status_code == 404
    assert client.post(f"/shares/{grant['id']}/revoke", headers=_auth("owner-2")).status_code == 404

    trail = client.get(f"/shares/audit/{diploma.document_id}", headers=_auth()).json()
    assert trail["totalShares"] == 1
    assert trail["shares"][0]["accessCount"] == 1

    resp = client.post(f"/shares/{grant['id']}/revoke", json={"reason": "done"}, headers=_auth())
    assert resp.json()["statusReason"] == "done"
    assert client.get(f"/shared/{token}/view").status_code == 403

    stats = client.get("/shares/stats", headers=_auth()).json()
    assert stats["revoked"] == 1
    assert [g["id"] for g in client.get("/shares", params={"status": "revoked"}, headers=_auth()).json()] == [
        grant["id"]
    ]


def test_share_request_validation(client, diploma, owner_keys):
    _add(client, diploma)
    body = {
        "credentialId": diploma.document_id,
        "ownerPublicKey": owner_keys.public_key,
        "verifierEmail": "not-an-email",
    }
    assert client.post("/shares", json=body, headers=_auth()).status_code == 422

    body.update(verifierEmail=VERIFIER, credentialId="missing")
    assert client.post("/shares", json=body, headers=_auth()).status_code == 404


def test_otp_over_http(client, sender, diploma, owner_keys):
    _add(client, diploma)
    grant = _share(client, diploma, owner_keys, requireOtp=True)["grant"]
    token = grant["verificationToken"]["token"]
    client.post(f"/shares/{grant['id']}/approve", headers=_auth())

    assert client.get(f"/shared/{token}/view").status_code == 403
    assert client.post(f"/shared/{token}/otp", json={"email": VERIFIER}).json()["sent"] is True
    code = sender.outbox[-1][2]

    bad = client.post(f"/shared/{token}/otp/verify", json={"email": VERIFIER, "code": "12345"})
    assert bad.status_code == 422

    session = client.post(f"/shared/{token}/otp/verify", json={"email": VERIFIER, "code": code})
    assert session.status_code == 200
    headers = {"X-Share-Session": session.json()["accessToken"]}
    assert client.get(f"/shared/{token}/view", headers=headers).status_code == 200


def test_public_verification_and_revocation(client, diploma, issuer_keys):
    doc = diploma.to_json_dict()
    result = client.post("/credentials/verify", json=doc).json()
    assert result["isValid"] is True
    assert result["revoked"] is False

    tampered = diploma.to_json_dict()
    tampered["documentData"]["recipientEmail"] = "mallory@example.com"
    assert client.post("/credentials/verify", json=tampered).json()["isValid"] is False

    url = f"/credentials/revocations/{diploma.document_id}"
    issuer = {"issuerPublicKey": diploma.issuer.public_key}
    assert client.get(url, params=issuer).status_code == 404

    statement = sign_revocation(diploma, issuer_keys.secret_key, reason="fraud").to_json_dict()
    resp = client.post("/credentials/revocations", json=statement)
    assert resp.status_code == 201
    assert resp.json()["issuerPublicKey"] == diploma.issuer.public_key
    assert client.post("/credentials/revocations", json=statement).status_code == 409

    result = client.post("/credentials/verify", json=doc).json()
    assert result["revoked"] is True
    assert client.get(url, params=issuer).json()["reason"] == "fraud"


def test_non_issuer_cannot_revoke_over_http(client, diploma, owner_keys):
    payload = {
        "credentialId": diploma.document_id,
        "issuerPublicKey": diploma.issuer.public_key,
        "reason": "not mine",
        "revokedAt": utcnow(),
    }
    forged = RevocationStatement(**payload, signature=sign_document(payload, owner_keys.secret_key).signature)

    # Owner credentials do not stand in for the issuer's signature.
    resp = client.post("/credentials/revocations", json=forged.to_json_dict(), headers=_auth())
    assert resp.status_code == 403

    unsigned = {k: v for k, v in forged.to_json_dict().items() if k != "signature"}
    assert client.post("/credentials/revocations", json=unsigned, headers=_auth()).status_code == 422

    assert client.post("/credentials/verify", json=diploma.to_json_dict()).json()["revoked"] is False
    params = {"issuerPublicKey": diploma.issuer.public_key}
    assert client.get(f"/credentials/revocations/{diploma.document_id}", params=params).status_code == 404



def test_ownership_proof_and_qr(client, diploma, owner_keys):
    proof = create_ownership_proof(diploma.document_id, OWNER, owner_keys.secret_key)
    resp = client.post(
        "/credentials/ownership-proofs/verify",
        json={"proof": proof.to_json_dict(), "publicKey": owner_keys.public_key},
    )
    assert resp.json() == {"valid": True}

    qr = client.post("/credentials/qr-payload", json=diploma.to_json_dict()).json()
    assert qr["documentHash"] == diploma.document_hash
    assert qr["verificationUrl"].endswith(f"/verify?hash={diploma.document_hash}")
