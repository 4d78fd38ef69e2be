#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
x402 Payment Orchestrator
Per-request paywall state machine: session -> requirements -> verify/settle -> grant
"""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .addresses import normalize_address, EVM_FAMILY
from .database import PaymentLogEntry, PaymentLogRepository
from .errors import (
    AmountError,
    PaymentError,
    PaymentErrorKind,
    PaywallConfigurationError,
    PUBLIC_MESSAGES,
    support_reference,
)
from .facilitator import FacilitatorClient, FacilitatorResult
from .models import PAYMENT_STATUS_FAILED, PAYMENT_STATUS_VERIFIED
from .monitoring import (
    payment_failures_total,
    payment_requirements_sent_total,
    ignored_payment_headers_total,
)
from .notices import NoticeQueue, NOTICE_COOKIE
from .payloads import (
    PaymentPayload,
    PaymentRequirements,
    X402_VERSION,
    X_PAYMENT_HEADER,
    X_PAYMENT_RESPONSE_HEADER,
    encode_payment_response,
    try_decode_payment_header,
)
from .proofs import SettlementProof, extract_settlement_proof
from .resources import (
    PaywallConfig,
    ResourceMetadata,
    build_paywall_config,
    build_payment_requirements,
)
from .security import sanitize_public_message
from .sessions import CookieSpec, Session, SessionManager, SESSION_HEADER
from .config import PaywallSettings
from .tokens import TokenRegistry

logger = logging.getLogger(__name__)

UNAVAILABLE_MESSAGE = "This resource is temporarily unavailable."
MAX_FACILITATOR_MESSAGE_LENGTH = 1000


class DecisionAction(str, Enum):
    ALLOW = "allow"                        # serve the resource
    PAYMENT_REQUIRED = "payment_required"  # 402 JSON
    PAYWALL = "paywall"                    # 402 HTML notice
    GRANTED = "granted"                    # 200 JSON after payment
    REDIRECT = "redirect"                  # 303 back to the resource
    ERROR = "error"                        # JSON error envelope


@dataclass(frozen=True)
class PaywallRequest:
    """Framework-neutral view of an inbound request"""
    method: str
    url: str
    path: str
    headers: Mapping[str, str]
    cookies: Mapping[str, str]
    is_secure: bool = False

    @classmethod
    def build(
        cls,
        method: str,
        url: str,
        path: str,
        headers: Mapping[str, str],
        cookies: Optional[Mapping[str, str]] = None,
        is_secure: bool = False
    ) -> 'PaywallRequest':
        return cls(
            method=method.upper(),
            url=url,
            path=path,
            headers={k.lower(): v for k, v in headers.items()},
            cookies=dict(cookies or {}),
            is_secure=is_secure,
        )

    def header(self, name: str) -> Optional[str]:
        return self.headers.get(name.lower())

    @property
    def resource_url(self) -> str:
        return self.url.split('?', 1)[0].split('#', 1)[0]


@dataclass
class PaywallDecision:
    """What the HTTP layer should do with the request"""
    action: DecisionAction
    status: int = 200
    body: Optional[Dict[str, Any]] = None
    headers: Dict[str, str] = field(default_factory=dict)
    cookies: List[CookieSpec] = field(default_factory=list)
    location: Optional[str] = None
    session: Optional[Session] = None


class PaymentOrchestrator:
    """
    Decides the outcome of a request for a gated resource

    Every attempt that reaches the facilitator stage ends with exactly one
    payment log row. Undecodable X-PAYMENT headers are treated as absent and
    are not logged.
    """

    def __init__(
        self,
        settings: PaywallSettings,
        registry: TokenRegistry,
        facilitator: FacilitatorClient,
        sessions: SessionManager,
        notices: NoticeQueue,
        repository: PaymentLogRepository
    ):
        self.settings = settings
        self.registry = registry
        self.facilitator = facilitator
        self.sessions = sessions
        self.notices = notices
        self.repository = repository

    # ===== CONTENT NEGOTIATION =====

    def is_machine_client(self, request: PaywallRequest) -> bool:
        accept = (request.header('accept') or '').lower()
        if 'application/json' in accept:
            return True
        if (request.header('x-requested-with') or '').lower() == 'xmlhttprequest':
            return True
        prefix = self.settings.rest_prefix
        return bool(prefix) and request.path.startswith(prefix)

    # ===== ENTRY POINT =====

    async def handle(self, request: PaywallRequest, metadata: ResourceMetadata) -> PaywallDecision:
        machine = self.is_machine_client(request)

        try:
            config = build_paywall_config(metadata, self.settings, self.registry, request.resource_url)
        except (AmountError, PaywallConfigurationError) as e:
            kind = getattr(e, 'kind', None)
            payment_failures_total.labels(kind=kind.value if kind else 'configuration').inc()
            logger.error(f"Paywall misconfigured for resource {metadata.resource_id}: {e}")
            return self._unavailable()

        requirements = build_payment_requirements(
            config,
            timeout=self.settings.requirements_timeout,
            mime_type='application/json' if machine else 'text/html',
        )

        presented = SessionManager.presented_value(config.resource_id, request.headers, request.cookies)
        if presented:
            session = await self.sessions.validate(config.resource_id, presented)
            if session is not None:
                return await self._allow(request, config, session)

        header_value = request.header(X_PAYMENT_HEADER)
        payment = try_decode_payment_header(header_value)
        if payment is None:
            if header_value:
                ignored_payment_headers_total.inc()
            return await self._payment_required(request, config, requirements, machine)

        return await self._process_payment(request, config, requirements, payment, machine)

    # ===== SESSION PATH =====

    async def _allow(self, request: PaywallRequest, config: PaywallConfig, session: Session) -> PaywallDecision:
        await self.sessions.refresh(session)
        path = self._cookie_path(request)
        cookies = [self.sessions.session_cookie(config.resource_id, path, session, request.is_secure)]
        cookies.extend(self.sessions.legacy_cookie_deletions(config.resource_id, path))
        return PaywallDecision(
            action=DecisionAction.ALLOW,
            headers={SESSION_HEADER: session.bearer},
            cookies=cookies,
            session=session,
        )

    # ===== 402 =====

    async def _payment_required(
        self,
        request: PaywallRequest,
        config: PaywallConfig,
        requirements: PaymentRequirements,
        machine: bool
    ) -> PaywallDecision:
        payment_requirements_sent_total.labels(network=config.network).inc()
        body: Dict[str, Any] = {
            'x402Version': X402_VERSION,
            'error': f"{X_PAYMENT_HEADER} header is required",
            'accepts': [requirements.to_dict()],
        }

        if machine:
            return PaywallDecision(action=DecisionAction.PAYMENT_REQUIRED, status=402, body=body)

        cookies = []
        notice = None
        notice_id = request.cookies.get(NOTICE_COOKIE)
        if notice_id:
            notice = await self.notices.pop(config.resource_id, notice_id)
            cookies.append(self.notices.clear_cookie(self._cookie_path(request)))

        body.update({
            'title': config.title,
            'amount': config.amount_display,
            'token': self._token_symbol(config),
            'network': config.network,
            'resource': config.resource_url,
            'notice': {
                'message': notice.message,
                'status': notice.status,
                'reference': notice.reference,
            } if notice else None,
        })
        return PaywallDecision(action=DecisionAction.PAYWALL, status=402, body=body, cookies=cookies)

    # ===== PAYMENT PATH =====

    def _precheck(self, payment: PaymentPayload, requirements: PaymentRequirements) -> Optional[PaymentError]:
        if payment.network != requirements.network:
            return PaymentError(
                kind=PaymentErrorKind.VALIDATION_ERROR,
                message="Payment network does not match the requested network.",
                code='network_mismatch',
                details={'expected': requirements.network, 'received': payment.network},
            )

        if payment.family == EVM_FAMILY:
            valid_before = payment.evm().authorization.valid_before
            try:
                expires = int(valid_before)
            except (TypeError, ValueError):
                return PaymentError(
                    kind=PaymentErrorKind.VALIDATION_ERROR,
                    message="Payment authorization has no valid expiry.",
                    code='invalid_valid_before',
                )
            if expires <= int(time.time()) + self.settings.valid_before_buffer:
                return PaymentError(
                    kind=PaymentErrorKind.VALIDATION_ERROR,
                    message="Payment authorization expires too soon.",
                    code='authorization_expiring',
                )

        return None

    async def _process_payment(
        self,
        request: PaywallRequest,
        config: PaywallConfig,
        requirements: PaymentRequirements,
        payment: PaymentPayload,
        machine: bool
    ) -> PaywallDecision:
        result: Optional[FacilitatorResult] = None
        proof: Optional[SettlementProof] = None
        payer: Optional[str] = None
        try:
            error = self._precheck(payment, requirements)
            if error is None:
                result = await self.facilitator.verify_and_settle(requirements, payment)
                error, proof, payer = self._confirm_settlement(result, payment, config)
        except Exception as e:
            logger.exception(f"Unexpected error processing payment for resource {config.resource_id}: {e}")
            error = PaymentError(
                kind=PaymentErrorKind.UNEXPECTED_ERROR,
                message=PUBLIC_MESSAGES[PaymentErrorKind.UNEXPECTED_ERROR],
                facilitator_message=f"{type(e).__name__}: {e}",
            )

        if error is not None:
            return await self._fail(request, config, payment, error, machine, result)

        return await self._grant(request, config, payment, result, proof, payer, machine)

    def _confirm_settlement(
        self,
        result: FacilitatorResult,
        payment: PaymentPayload,
        config: PaywallConfig
    ) -> Tuple[Optional[PaymentError], Optional[SettlementProof], Optional[str]]:
        """Error for an unusable settlement, else its proof and payer"""
        if result.error is not None:
            return result.error, None, None

        if not result.verified:
            return PaymentError(
                kind=PaymentErrorKind.PAYMENT_NOT_VERIFIED,
                message=PUBLIC_MESSAGES[PaymentErrorKind.PAYMENT_NOT_VERIFIED],
            ), None, None

        proof = extract_settlement_proof(result.settlement)
        if proof is None:
            logger.warning(f"Settlement for resource {config.resource_id} has no usable proof")
            return PaymentError(
                kind=PaymentErrorKind.PROOF_CONFIRMATION_FAILED,
                message=PUBLIC_MESSAGES[PaymentErrorKind.PROOF_CONFIRMATION_FAILED],
            ), None, None

        payer = self._resolve_payer(result, payment, config.network)
        if payer is None:
            return PaymentError(
                kind=PaymentErrorKind.PAYER_UNRESOLVABLE,
                message=PUBLIC_MESSAGES[PaymentErrorKind.PAYER_UNRESOLVABLE],
            ), None, None

        return None, proof, payer

    def _resolve_payer(self, result: FacilitatorResult, payment: PaymentPayload, network: str) -> Optional[str]:
        """Settlement payer first, then the payload signer"""
        settlement = result.settlement or {}
        settled_payer = normalize_address(result.payer or settlement.get('payer'), network)
        signer = payment.signer()

        if settled_payer and signer and settled_payer != signer:
            logger.warning(
                f"Settlement payer {settled_payer} differs from authorization signer {signer}; "
                f"using settlement payer"
            )

        return settled_payer or signer

    @staticmethod
    def _raw_payer(
        result: Optional[FacilitatorResult],
        payment: PaymentPayload,
        payer: Optional[str],
        network: str
    ) -> Optional[str]:
        """The payer address as the facilitator or signer presented it"""
        if payer is None:
            return None
        settlement = (result.settlement if result else None) or {}
        candidates = (result.payer if result else None, settlement.get('payer'), payment.raw_signer())
        for candidate in candidates:
            if isinstance(candidate, str) and normalize_address(candidate, network) == payer:
                return candidate
        return payer

    async def _grant(
        self,
        request: PaywallRequest,
        config: PaywallConfig,
        payment: PaymentPayload,
        result: FacilitatorResult,
        proof: SettlementProof,
        payer: str,
        machine: bool
    ) -> PaywallDecision:
        settlement = result.settlement or {}
        transaction = proof.transaction or settlement.get('transaction')

        try:
            await self.repository.log_payment(PaymentLogEntry(
                resource_id=config.resource_id,
                amount=config.amount_atomic,
                token_address=config.token_address,
                network=config.network,
                payment_status=PAYMENT_STATUS_VERIFIED,
                user_address=self._raw_payer(result, payment, payer, config.network),
                transaction_hash=transaction,
                payer_identifier=payer,
                settlement_proof=proof.to_dict(),
                facilitator_signature=proof.signature,
                facilitator_reference=proof.reference,
                status_code=200,
            ))
        except Exception as e:
            # Settlement already happened on-chain; access is not withheld for a bookkeeping failure
            logger.error(f"Failed to record verified payment for resource {config.resource_id}: {e}")

        headers = {
            X_PAYMENT_RESPONSE_HEADER: encode_payment_response({
                'success': True,
                'transaction': transaction,
                'network': settlement.get('network') or config.network,
                'payer': payer,
            }),
        }

        logger.info(f"Payment granted for resource {config.resource_id} payer {payer} tx {transaction}")

        session: Optional[Session] = None
        try:
            session = await self.sessions.issue(config.resource_id, payer, proof.to_dict())
        except Exception as e:
            logger.error(f"Failed to issue session for resource {config.resource_id} payer {payer}: {e}")

        if session is None:
            # Paid but sessionless: serve this request directly
            if machine:
                return PaywallDecision(
                    action=DecisionAction.GRANTED,
                    status=200,
                    body={'success': True, 'session': None, 'transaction': transaction, 'payer': payer},
                    headers=headers,
                )
            return PaywallDecision(action=DecisionAction.ALLOW, headers=headers)

        path = self._cookie_path(request)
        cookies = [self.sessions.session_cookie(config.resource_id, path, session, request.is_secure)]
        cookies.extend(self.sessions.legacy_cookie_deletions(config.resource_id, path))
        headers[SESSION_HEADER] = session.bearer

        if machine:
            return PaywallDecision(
                action=DecisionAction.GRANTED,
                status=200,
                body={
                    'success': True,
                    'session': session.bearer,
                    'expires_in': session.ttl,
                    'transaction': transaction,
                    'payer': payer,
                },
                headers=headers,
                cookies=cookies,
                session=session,
            )

        return PaywallDecision(
            action=DecisionAction.REDIRECT,
            status=303,
            headers=headers,
            cookies=cookies,
            location=request.path,
            session=session,
        )

    # ===== FAILURES =====

    async def _fail(
        self,
        request: PaywallRequest,
        config: PaywallConfig,
        payment: PaymentPayload,
        error: PaymentError,
        machine: bool,
        result: Optional[FacilitatorResult] = None
    ) -> PaywallDecision:
        payment_failures_total.labels(kind=error.kind.value).inc()
        settlement = (result.settlement if result else None) or None
        payer = payment.signer() or normalize_address(result.payer if result else None, config.network)

        log_id = None
        try:
            log_id = await self.repository.log_payment(PaymentLogEntry(
                resource_id=config.resource_id,
                amount=config.amount_atomic,
                token_address=config.token_address,
                network=config.network,
                payment_status=PAYMENT_STATUS_FAILED,
                user_address=self._raw_payer(result, payment, payer, config.network),
                transaction_hash=settlement.get('transaction') if settlement else None,
                payer_identifier=payer,
                settlement_proof=settlement,
                status_code=error.status_code,
                error_code=error.code,
                facilitator_message=(error.facilitator_message or '')[:MAX_FACILITATOR_MESSAGE_LENGTH] or None,
            ))
        except Exception as e:
            logger.error(f"Failed to record failed payment for resource {config.resource_id}: {e}")

        reference = support_reference(log_id)
        message = sanitize_public_message(error.public_message)
        if error.kind == PaymentErrorKind.UNEXPECTED_ERROR and reference:
            message = f"{message} Reference: {reference}"

        logger.warning(
            f"Payment failed for resource {config.resource_id}: {error.kind.value} "
            f"(status {error.status_code}, code {error.code}, reference {reference})"
        )

        if machine:
            error_body: Dict[str, Any] = {'message': message, 'status': error.status_code}
            if error.code:
                error_body['code'] = error.code
            if reference:
                error_body['reference'] = reference
            if error.details:
                error_body['details'] = error.details
            return PaywallDecision(
                action=DecisionAction.ERROR,
                status=error.status_code,
                body={'success': False, 'error': error_body},
            )

        cookies = []
        notice_id = await self.notices.push(config.resource_id, message, error.status_code, reference)
        if notice_id:
            cookies.append(self.notices.cookie(notice_id, self._cookie_path(request), request.is_secure))
        return PaywallDecision(
            action=DecisionAction.REDIRECT,
            status=303,
            cookies=cookies,
            location=request.path,
        )

    def _unavailable(self) -> PaywallDecision:
        return PaywallDecision(
            action=DecisionAction.ERROR,
            status=503,
            body={'success': False, 'error': {'message': UNAVAILABLE_MESSAGE, 'status': 503}},
        )

    def _token_symbol(self, config: PaywallConfig) -> str:
        token = self.registry.get_token(config.network, config.token_address)
        return token.symbol if token else (config.token_name or 'tokens')

    @staticmethod
    def _cookie_path(request: PaywallRequest) -> str:
        return request.path or '/'
