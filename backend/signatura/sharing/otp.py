"""One-time codes for OTP-protected share links."""

import hashlib
import hmac
import logging
import secrets
from abc import ABC, abstractmethod
from datetime import datetime, timedelta

import httpx

from signatura.clock import as_utc, utcnow
from signatura.config import settings
from signatura.errors import InvalidOtpError, TooManyAttemptsError
from signatura.store import Store, VersionConflict

logger = logging.getLogger(__name__)

OTP_DIGITS = 6


class OtpSender(ABC):
    @abstractmethod
    async def send(self, email: str, document_id: str, code: str) -> None: ...


class LogOtpSender(OtpSender):
    """Development sender: keeps codes in memory instead of emailing them."""

    def __init__(self):
        self.outbox: list[tuple[str, str, str]] = []

    async def send(self, email, document_id, code):
        self.outbox.append((email, document_id, code))
        logger.info("OTP issued for %s (document %s); email delivery not configured", email, document_id)


class WebhookOtpSender(OtpSender):
    """Hands the code to an external mailer over HTTP."""

    def __init__(self, url: str, timeout: float = 10):
        self.url = url
        self.timeout = timeout

    async def send(self, email, document_id, code):
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            resp = await client.post(self.url, json={"email": email, "documentId": document_id, "code": code})
            resp.raise_for_status()
        logger.info("OTP for document %s sent to %s", document_id, email)


_sender: OtpSender | None = None


def get_otp_sender() -> OtpSender:
    global _sender

    if _sender is None:
        _sender = WebhookOtpSender(settings.otp_webhook_url) if settings.otp_webhook_url else LogOtpSender()
    return _sender


def _hash_code(grant_id: str, email: str, code: str) -> str:
    return hashlib.sha256(f"{grant_id}:{email}:{code}".encode("utf-8")).hexdigest()


class OtpService:
    """Codes are stored hashed and are single-use.

    Failed attempts are appended to a per share+email log, so concurrent
    guesses are all counted. Once ``max_attempts`` failures fall inside the
    code TTL the share is locked for that email, also across re-sent codes.
    The lock lifts as failures age out of the window, and a correct code
    clears the log.
    """

    def __init__(
        self,
        store: Store,
        sender: OtpSender,
        ttl_minutes: int | None = None,
        max_attempts: int | None = None,
    ):
        self.store = store
        self.sender = sender
        self.ttl = timedelta(minutes=ttl_minutes or settings.otp_ttl_minutes)
        self.max_attempts = max_attempts or settings.otp_max_attempts

    @staticmethod
    def _key(grant_id: str, email: str) -> str:
        return f"otp:{grant_id}:{email.lower()}"

    @staticmethod
    def _attempts_key(grant_id: str, email: str) -> str:
        return f"otp-attempts:{grant_id}:{email.lower()}"

    async def failed_attempts(self, grant_id: str, email: str) -> int:
        """Failures logged within the last TTL."""
        since = utcnow() - self.ttl
        entries = await self.store.entries(self._attempts_key(grant_id, email))
        return sum(1 for e in entries if as_utc(datetime.fromisoformat(e["timestamp"])) > since)

    async def send_code(self, grant_id: str, email: str, document_id: str) -> datetime:
        """Issue a fresh code, replacing any earlier one."""
        if await self.failed_attempts(grant_id, email) >= self.max_attempts:
            raise TooManyAttemptsError("Too many failed attempts, try again later")

        code = f"{secrets.randbelow(10 ** OTP_DIGITS):0{OTP_DIGITS}d}"
        expires_at = utcnow() + self.ttl
        await self.store.put(
            self._key(grant_id, email),
            {
                "codeHash": _hash_code(grant_id, email.lower(), code),
                "expiresAt": expires_at.isoformat(),
                "used": False,
            },
        )
        await self.sender.send(email, document_id, code)
        return expires_at

    async def verify_code(self, grant_id: str, email: str, code: str) -> None:
        """Consume a code. Raises ``InvalidOtpError`` or ``TooManyAttemptsError``."""
        if await self.failed_attempts(grant_id, email) >= self.max_attempts:
            raise TooManyAttemptsError("Too many failed attempts, try again later")

        key = self._key(grant_id, email)
        record = await self.store.get(key)
        if record is None or record.value["used"]:
            raise InvalidOtpError("Invalid or expired code")
        if utcnow() > as_utc(datetime.fromisoformat(record.value["expiresAt"])):
            raise InvalidOtpError("Invalid or expired code")

        if not hmac.compare_digest(_hash_code(grant_id, email.lower(), code or ""), record.value["codeHash"]):
            await self.store.append(
                self._attempts_key(grant_id, email),
                {"timestamp": utcnow().isoformat()},
                limit=self.max_attempts,
            )
            failures = await self.failed_attempts(grant_id, email)
            logger.warning("OTP mismatch for share %s (%d/%d)", grant_id, failures, self.max_attempts)
            if failures >= self.max_attempts:
                raise TooManyAttemptsError("Too many failed attempts, try again later")
            raise InvalidOtpError("Invalid or expired code")

        try:
            await self.store.put(key, {**record.value, "used": True}, expected_version=record.version)
        except VersionConflict:
            # Someone else consumed or replaced the code first.
            raise InvalidOtpError("Invalid or expired code")
        await self.store.clear_entries(self._attempts_key(grant_id, email))
