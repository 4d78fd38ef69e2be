#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
x402 Facilitator Client
Async wrapper for a facilitator's /verify and /settle endpoints

The client never raises into the paywall: every outcome comes back as a
FacilitatorResult carrying either the settlement or a classified PaymentError.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from .errors import PaymentError, PaymentErrorKind
from .payloads import PaymentPayload, PaymentRequirements, X402_VERSION
from .monitoring import facilitator_request_duration

logger = logging.getLogger(__name__)

MESSAGE_FIELDS = ('invalidReason', 'errorReason', 'error', 'message', 'detail')


@dataclass
class FacilitatorResult:
    """Outcome of a verify+settle round trip"""
    verified: bool
    settlement: Optional[Dict[str, Any]] = None
    payer: Optional[str] = None
    error: Optional[PaymentError] = None

    @classmethod
    def failure(cls, error: PaymentError, payer: Optional[str] = None) -> 'FacilitatorResult':
        return cls(verified=False, settlement=None, payer=payer, error=error)


class FacilitatorClient:
    """
    Client for an x402 facilitator service

    verify_and_settle() is the only entry point the paywall uses. Requests are
    bounded by `timeout` seconds in total so a hung facilitator cannot hold a
    request open.
    """

    def __init__(
        self,
        facilitator_url: str,
        timeout: float = 20.0,
        client: Optional[httpx.AsyncClient] = None
    ):
        """
        Args:
            facilitator_url: Base URL of the facilitator
            timeout: Overall timeout for verify+settle in seconds
            client: Pre-built httpx client (tests inject a MockTransport)
        """
        self.facilitator_url = facilitator_url.rstrip('/')
        self.timeout = timeout
        self.client = client or httpx.AsyncClient(timeout=timeout)

        logger.info(f"Initialized facilitator client: {self.facilitator_url}")

    async def close(self):
        """Close HTTP client"""
        await self.client.aclose()

    async def verify_and_settle(
        self,
        requirements: PaymentRequirements,
        payment: PaymentPayload
    ) -> FacilitatorResult:
        """
        Verify the payment with the facilitator and settle it on-chain

        Args:
            requirements: Requirements the payment must satisfy
            payment: Decoded X-PAYMENT payload

        Returns:
            FacilitatorResult
        """
        body = {
            'x402Version': X402_VERSION,
            'paymentPayload': payment.to_dict(),
            'paymentRequirements': requirements.to_dict(),
        }

        start_time = time.time()
        outcome = 'error'
        try:
            result = await asyncio.wait_for(self._verify_and_settle(body), timeout=self.timeout)
            outcome = 'verified' if result.verified else 'rejected'
            return result

        except asyncio.TimeoutError:
            logger.error(f"Facilitator timed out after {self.timeout}s")
            return FacilitatorResult.failure(PaymentError(
                kind=PaymentErrorKind.FACILITATOR_ERROR,
                message="Payment facilitator timed out",
                code='facilitator_timeout',
                facilitator_message=f"No response within {self.timeout}s",
            ))

        except httpx.HTTPStatusError as e:
            logger.error(f"Facilitator returned HTTP {e.response.status_code} for {e.request.url}")
            return FacilitatorResult.failure(self._classify_status(e.response))

        except httpx.HTTPError as e:
            logger.error(f"Facilitator transport error: {e}")
            return FacilitatorResult.failure(PaymentError(
                kind=PaymentErrorKind.FACILITATOR_ERROR,
                message="Payment facilitator unreachable",
                status_code=self._nested_status_code(e, default=502),
                facilitator_message=str(e) or type(e).__name__,
            ))

        except ValueError as e:
            logger.error(f"Facilitator returned an unreadable response: {e}")
            return FacilitatorResult.failure(PaymentError(
                kind=PaymentErrorKind.FACILITATOR_ERROR,
                message="Payment facilitator returned an invalid response",
                facilitator_message=str(e),
            ))

        finally:
            facilitator_request_duration.labels(outcome=outcome).observe(time.time() - start_time)

    async def _verify_and_settle(self, body: Dict[str, Any]) -> FacilitatorResult:
        verification = await self._post('/verify', body)

        if not verification.get('isValid'):
            reason = verification.get('invalidReason')
            logger.warning(f"Facilitator rejected payment: {reason or 'no reason given'}")
            if not reason:
                return FacilitatorResult(verified=False, payer=verification.get('payer'))
            return FacilitatorResult.failure(PaymentError(
                kind=PaymentErrorKind.PAYMENT_REQUIRED,
                message="Payment verification failed",
                code=str(reason),
                facilitator_message=str(reason),
            ), payer=verification.get('payer'))

        settlement = await self._post('/settle', body)

        if not settlement.get('success'):
            reason = settlement.get('errorReason')
            logger.warning(f"Facilitator settlement failed: {reason or 'no reason given'}")
            if not reason:
                return FacilitatorResult(verified=False, settlement=settlement, payer=settlement.get('payer'))
            return FacilitatorResult.failure(PaymentError(
                kind=PaymentErrorKind.PAYMENT_REQUIRED,
                message="Payment settlement failed",
                code=str(reason),
                facilitator_message=str(reason),
            ), payer=settlement.get('payer'))

        return FacilitatorResult(
            verified=True,
            settlement=settlement,
            payer=settlement.get('payer') or verification.get('payer'),
        )

    async def _post(self, path: str, body: Dict[str, Any]) -> Dict[str, Any]:
        response = await self.client.post(f"{self.facilitator_url}{path}", json=body)
        response.raise_for_status()
        data = response.json()
        if not isinstance(data, dict):
            raise ValueError(f"Expected JSON object from {path}")
        return data

    @staticmethod
    def _response_message(response: httpx.Response) -> Optional[str]:
        try:
            data = response.json()
        except ValueError:
            return response.text[:500] or None
        if isinstance(data, dict):
            for field in MESSAGE_FIELDS:
                if data.get(field):
                    return str(data[field])
        return None

    def _classify_status(self, response: httpx.Response) -> PaymentError:
        """Map a non-2xx facilitator response onto the error taxonomy"""
        status = response.status_code
        message = self._response_message(response)

        if status == 402:
            return PaymentError(
                kind=PaymentErrorKind.PAYMENT_REQUIRED,
                message="Payment required",
                status_code=402,
                code=message if message and ' ' not in message else None,
                facilitator_message=message,
            )

        if status in (400, 422):
            return PaymentError(
                kind=PaymentErrorKind.VALIDATION_ERROR,
                message="Payment payload rejected by facilitator",
                status_code=400,
                facilitator_message=message,
            )

        return PaymentError(
            kind=PaymentErrorKind.FACILITATOR_ERROR,
            message="Payment facilitator error",
            status_code=status if status >= 400 else 502,
            facilitator_message=message or f"HTTP {status}",
        )

    @staticmethod
    def _nested_status_code(exception: BaseException, default: int = 502) -> int:
        """Walk the exception chain looking for an upstream HTTP status"""
        current: Optional[BaseException] = exception
        while current is not None:
            if isinstance(current, httpx.HTTPStatusError):
                return current.response.status_code
            current = current.__cause__ or current.__context__
        return default
