#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
x402 Paywall Middleware
Starlette adapter that turns PaywallDecisions into HTTP responses
"""

import html
import json
import logging
from typing import Optional

from fastapi import Request
from fastapi.responses import JSONResponse, HTMLResponse, RedirectResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from .config import PaywallSettings
from .orchestrator import DecisionAction, PaywallDecision, PaywallRequest, PaymentOrchestrator
from .resources import ResourceStore
from .security import add_security_headers

logger = logging.getLogger(__name__)

SKIP_PATHS = ('/health', '/ready', '/metrics', '/docs', '/redoc', '/openapi.json')


class PaywallMiddleware(BaseHTTPMiddleware):
    """
    Gate configured resource paths behind an x402 payment

    The orchestrator and resource store are read from app.state, where the
    application lifespan puts them. Unlike ordinary middleware errors, any
    failure here fails closed: a gated path is never served unpaid.
    """

    def __init__(self, app, settings: PaywallSettings):
        super().__init__(app)
        self.settings = settings
        logger.info(f"Paywall middleware initialized (enabled={settings.enabled})")

    async def dispatch(self, request: Request, call_next) -> Response:
        if not self.settings.enabled or self._should_skip_payment_check(request):
            return await call_next(request)

        store: Optional[ResourceStore] = getattr(request.app.state, 'resource_store', None)
        metadata = store.match_path(request.url.path) if store else None
        if metadata is None:
            return await call_next(request)

        orchestrator: Optional[PaymentOrchestrator] = getattr(request.app.state, 'orchestrator', None)
        if orchestrator is None:
            logger.error("Paywall orchestrator not initialized; refusing gated request")
            return self._unavailable()

        try:
            decision = await orchestrator.handle(self._to_paywall_request(request), metadata)
        except Exception as e:
            logger.error(f"Unexpected error in paywall middleware: {e}", exc_info=True)
            return self._unavailable()

        if decision.action == DecisionAction.ALLOW:
            response = await call_next(request)
        else:
            response = self._render(decision)

        for name, value in decision.headers.items():
            response.headers[name] = value
        self._apply_cookies(response, decision)
        return response

    @staticmethod
    def _should_skip_payment_check(request: Request) -> bool:
        # CORS preflight
        if request.method == 'OPTIONS':
            return True
        return request.url.path in SKIP_PATHS

    @staticmethod
    def _to_paywall_request(request: Request) -> PaywallRequest:
        forwarded_proto = request.headers.get('x-forwarded-proto', '').split(',')[0].strip().lower()
        return PaywallRequest.build(
            method=request.method,
            url=str(request.url),
            path=request.url.path,
            headers=dict(request.headers),
            cookies=request.cookies,
            is_secure=request.url.scheme == 'https' or forwarded_proto == 'https',
        )

    def _render(self, decision: PaywallDecision) -> Response:
        if decision.action == DecisionAction.REDIRECT:
            response = RedirectResponse(url=decision.location or '/', status_code=decision.status)
        elif decision.action == DecisionAction.PAYWALL:
            response = HTMLResponse(content=render_paywall_page(decision.body or {}), status_code=decision.status)
        else:
            response = JSONResponse(content=decision.body or {}, status_code=decision.status)
        add_security_headers(response)
        return response

    @staticmethod
    def _apply_cookies(response: Response, decision: PaywallDecision) -> None:
        for cookie in decision.cookies:
            if cookie.is_deletion:
                response.delete_cookie(
                    cookie.name,
                    path=cookie.path,
                    secure=cookie.secure,
                    httponly=cookie.httponly,
                    samesite=cookie.samesite,
                )
            else:
                response.set_cookie(
                    cookie.name,
                    cookie.value,
                    max_age=cookie.max_age,
                    path=cookie.path,
                    secure=cookie.secure,
                    httponly=cookie.httponly,
                    samesite=cookie.samesite,
                )

    @staticmethod
    def _unavailable() -> Response:
        return JSONResponse(
            status_code=503,
            content={'success': False, 'error': {'message': 'This resource is temporarily unavailable.', 'status': 503}},
        )


def render_paywall_page(body: dict) -> str:
    """Minimal HTML paywall; the x402 requirements are embedded for wallet scripts"""
    title = html.escape(str(body.get('title') or 'Protected resource'))
    amount = html.escape(str(body.get('amount') or ''))
    network = html.escape(str(body.get('network') or ''))
    token = html.escape(str(body.get('token') or 'tokens'))

    notice_html = ''
    notice = body.get('notice')
    if notice:
        reference = notice.get('reference')
        notice_html = (
            f'<p class="x402-notice" role="alert">{html.escape(notice.get("message") or "")}'
            + (f' <small>({html.escape(reference)})</small>' if reference else '')
            + '</p>'
        )

    requirements = {k: body[k] for k in ('x402Version', 'error', 'accepts') if k in body}
    requirements_json = json.dumps(requirements).replace('<', '\\u003c').replace('>', '\\u003e')

    return (
        '<!DOCTYPE html><html><head><meta charset="utf-8">'
        f'<title>Payment required: {title}</title></head><body>'
        f'<h1>{title}</h1>'
        f'{notice_html}'
        f'<p>This content requires a payment of {amount} {token} on {network}.</p>'
        f'<script type="application/json" id="x402-requirements">{requirements_json}</script>'
        '</body></html>'
    )
