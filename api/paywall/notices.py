"""
One-shot failure notices for browser clients

A browser that fails to pay is redirected back to the resource. The reason
travels in a short-lived store entry referenced by a cookie, and is shown
once on the next paywall render.
"""

import logging
import secrets
from dataclasses import dataclass
from typing import Optional

from .cache import CacheManager, notice_key
from .security import sanitize_public_message
from .sessions import CookieSpec

logger = logging.getLogger(__name__)

NOTICE_COOKIE = 'x402_paywall_notice'
DEFAULT_NOTICE_TTL = 300


@dataclass(frozen=True)
class Notice:
    resource: str
    message: str
    status: int
    reference: Optional[str] = None


class NoticeQueue:
    """Push/pop paywall notices keyed by an opaque cookie value"""

    def __init__(self, cache: CacheManager, ttl: int = DEFAULT_NOTICE_TTL):
        self.cache = cache
        self.ttl = ttl

    async def push(
        self,
        resource: str,
        message: str,
        status: int,
        reference: Optional[str] = None
    ) -> Optional[str]:
        notice_id = secrets.token_urlsafe(16)
        stored = await self.cache.set(notice_key(notice_id), {
            'resource': str(resource),
            'message': sanitize_public_message(message),
            'status': status,
            'reference': reference,
        }, ttl=self.ttl)
        if not stored:
            logger.warning(f"Could not queue paywall notice for resource {resource}")
            return None
        return notice_id

    async def pop(self, resource: str, notice_id: Optional[str]) -> Optional[Notice]:
        """Consume a notice; notices for other resources are discarded"""
        if not notice_id:
            return None
        data = await self.cache.pop(notice_key(notice_id))
        if not isinstance(data, dict) or data.get('resource') != str(resource):
            return None
        return Notice(
            resource=data['resource'],
            message=sanitize_public_message(data.get('message')),
            status=int(data.get('status') or 402),
            reference=data.get('reference'),
        )

    def cookie(self, notice_id: str, path: str, secure: bool) -> CookieSpec:
        return CookieSpec(name=NOTICE_COOKIE, value=notice_id, max_age=self.ttl, path=path or '/', secure=secure)

    @staticmethod
    def clear_cookie(path: str) -> CookieSpec:
        return CookieSpec(name=NOTICE_COOKIE, value='', max_age=0, path=path or '/')
