"""
Paid-access sessions

A session is issued once a payment settles and is bound to (resource, payer)
with an HMAC-SHA256 signature. The same bearer value `token.signature` is
carried either in the resource-scoped cookie or in the X-Payment-Session
header.
"""

import hashlib
import hmac
import logging
import re
import time
import uuid
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Mapping, Optional

from .cache import CacheManager, session_key
from .monitoring import sessions_issued_total, session_validations_total

logger = logging.getLogger(__name__)

SESSION_HEADER = 'X-Payment-Session'
SESSION_COOKIE_PREFIX = 'x402_session_'
LEGACY_COOKIE_PREFIX = 'x402_paid_'
DEFAULT_SESSION_TTL = 1800


def _cookie_safe(resource_id: str) -> str:
    return re.sub(r'[^A-Za-z0-9_\-]', '_', str(resource_id))


def session_cookie_name(resource_id: str) -> str:
    return f"{SESSION_COOKIE_PREFIX}{_cookie_safe(resource_id)}"


def legacy_cookie_name(resource_id: str) -> str:
    return f"{LEGACY_COOKIE_PREFIX}{_cookie_safe(resource_id)}"


@dataclass
class Session:
    """Server-side record of paid access"""
    token: str
    resource: str
    payer: str
    signature: str
    proof: Dict[str, Any] = field(default_factory=dict)
    created_at: float = field(default_factory=time.time)
    ttl: int = DEFAULT_SESSION_TTL

    @property
    def bearer(self) -> str:
        """Value presented back by the client"""
        return f"{self.token}.{self.signature}"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Optional['Session']:
        try:
            return cls(
                token=str(data['token']),
                resource=str(data['resource']),
                payer=str(data['payer']),
                signature=str(data['signature']),
                proof=dict(data.get('proof') or {}),
                created_at=float(data.get('created_at') or 0),
                ttl=int(data.get('ttl') or DEFAULT_SESSION_TTL),
            )
        except (KeyError, TypeError, ValueError):
            return None


@dataclass(frozen=True)
class CookieSpec:
    """Framework-neutral Set-Cookie instruction"""
    name: str
    value: str
    max_age: int
    path: str = '/'
    secure: bool = False
    httponly: bool = True
    samesite: str = 'strict'

    @property
    def is_deletion(self) -> bool:
        return self.max_age <= 0


class SessionManager:
    """Issue, validate and refresh paid-access sessions"""

    def __init__(self, cache: CacheManager, secret: str, ttl: int = DEFAULT_SESSION_TTL):
        if not secret:
            raise ValueError("Session secret must not be empty")
        self.cache = cache
        self._secret = secret.encode('utf-8')
        self.ttl = ttl

    def compute_signature(self, token: str, resource: str, payer: str) -> str:
        message = f"{token}|{resource}|{payer}".encode('utf-8')
        return hmac.new(self._secret, message, hashlib.sha256).hexdigest()

    async def issue(self, resource: str, payer: str, proof: Optional[Dict[str, Any]] = None) -> Session:
        """Create and persist a session for a verified payer"""
        token = str(uuid.uuid4())
        session = Session(
            token=token,
            resource=str(resource),
            payer=payer,
            signature=self.compute_signature(token, str(resource), payer),
            proof=dict(proof or {}),
            ttl=self.ttl,
        )

        stored = await self.cache.set(session_key(session.resource, token), session.to_dict(), ttl=self.ttl)
        if not stored:
            # The client still gets the bearer; it just won't validate later
            logger.error(f"Session for resource {resource} could not be persisted")

        sessions_issued_total.inc()
        logger.info(f"Issued session for resource {resource} payer {payer}")
        return session

    async def validate(self, resource: str, presented: Optional[str]) -> Optional[Session]:
        """
        Resolve a presented bearer value to an active session

        A record whose signature does not match is deleted, so a tampered
        or cross-resource value cannot be retried against it.
        """
        if not presented:
            return None

        token, sep, signature = presented.strip().partition('.')
        if not sep or not token or not signature:
            session_validations_total.labels(result='malformed').inc()
            return None

        resource = str(resource)
        key = session_key(resource, token)
        record = await self.cache.get(key)
        if record is None:
            session_validations_total.labels(result='missing').inc()
            return None

        session = Session.from_dict(record)
        if session is None:
            logger.warning(f"Discarding unreadable session record for resource {resource}")
            await self.cache.delete(key)
            session_validations_total.labels(result='invalid').inc()
            return None

        expected = self.compute_signature(token, resource, session.payer)
        if (
            session.resource != resource
            or not hmac.compare_digest(expected, session.signature)
            or not hmac.compare_digest(expected, signature)
        ):
            logger.warning(f"Session signature mismatch for resource {resource}, invalidating")
            await self.cache.delete(key)
            session_validations_total.labels(result='invalid').inc()
            return None

        session_validations_total.labels(result='valid').inc()
        return session

    async def refresh(self, session: Session) -> bool:
        """Re-persist with a fresh TTL"""
        session.ttl = self.ttl
        return await self.cache.set(session_key(session.resource, session.token), session.to_dict(), ttl=self.ttl)

    async def revoke(self, session: Session) -> bool:
        return await self.cache.delete(session_key(session.resource, session.token))

    @staticmethod
    def presented_value(
        resource: str,
        headers: Mapping[str, str],
        cookies: Mapping[str, str]
    ) -> Optional[str]:
        """Bearer value from the session header, else the session cookie"""
        value = None
        for name, header_value in headers.items():
            if name.lower() == SESSION_HEADER.lower():
                value = header_value
                break
        if value:
            value = value.strip()
            if value.lower().startswith('bearer '):
                value = value[7:].strip()
            return value or None
        return cookies.get(session_cookie_name(resource)) or None

    def session_cookie(self, resource: str, path: str, session: Session, secure: bool) -> CookieSpec:
        return CookieSpec(
            name=session_cookie_name(resource),
            value=session.bearer,
            max_age=self.ttl,
            path=path or '/',
            secure=secure,
        )

    @staticmethod
    def legacy_cookie_deletions(resource: str, path: str) -> List[CookieSpec]:
        """Clear the pre-session boolean cookie at both the resource path and root"""
        name = legacy_cookie_name(resource)
        paths = [path or '/']
        if '/' not in paths:
            paths.append('/')
        return [CookieSpec(name=name, value='', max_age=0, path=p) for p in paths]
