#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
x402 Paywall Routes
Informational and admin endpoints for gated resources
"""

import logging
from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel
from slowapi import Limiter
from slowapi.util import get_remote_address

from .amounts import atomic_to_decimal
from .errors import AmountError, PaywallConfigurationError
from .resources import build_paywall_config, build_payment_requirements, enabled_families
from .payloads import X402_VERSION
from .security import verify_admin_key

logger = logging.getLogger(__name__)

limiter = Limiter(key_func=get_remote_address)

router = APIRouter(prefix="/paywall", tags=["x402 Paywall"])


class PaymentLogResponse(BaseModel):
    id: int
    resource_id: str
    user_address: Optional[str] = None
    amount: str
    token_address: str
    network: str
    transaction_hash: Optional[str] = None
    payment_status: str
    facilitator_reference: Optional[str] = None
    status_code: Optional[int] = None
    error_code: Optional[str] = None
    created_at: Optional[str] = None


class PaidStatusResponse(BaseModel):
    resource_id: str
    address: str
    network: str
    paid: bool


def _resource_or_404(request: Request, resource_id: str):
    metadata = request.app.state.resource_store.get(resource_id)
    if metadata is None:
        raise HTTPException(status_code=404, detail="Unknown resource")
    return metadata


@router.get("/supported-tokens")
@limiter.limit("30/minute")
async def get_supported_tokens(request: Request):
    """Networks and tokens accepted by this paywall"""
    settings = request.app.state.settings
    return {
        "families": enabled_families(settings),
        "networks": request.app.state.token_registry.to_dict(enabled_families(settings)),
    }


@router.get("/resources/{resource_id}/requirements")
@limiter.limit("30/minute")
async def get_resource_requirements(request: Request, resource_id: str):
    """Preview the 402 payment requirements for a resource"""
    metadata = _resource_or_404(request, resource_id)
    settings = request.app.state.settings
    resource_url = str(request.base_url).rstrip('/') + metadata.path

    try:
        config = build_paywall_config(metadata, settings, request.app.state.token_registry, resource_url)
    except (AmountError, PaywallConfigurationError) as e:
        logger.error(f"Paywall misconfigured for resource {resource_id}: {e}")
        raise HTTPException(status_code=503, detail="Resource is temporarily unavailable")

    requirements = build_payment_requirements(config, timeout=settings.requirements_timeout)
    return {
        "x402Version": X402_VERSION,
        "accepts": [requirements.to_dict()],
        "amount_display": config.amount_display,
    }


@router.get("/resources/{resource_id}/logs", response_model=List[PaymentLogResponse])
@limiter.limit("15/minute")
async def get_resource_logs(
    request: Request,
    resource_id: str,
    limit: int = Query(50, ge=1, le=500),
    _: bool = Depends(verify_admin_key)
):
    """Recent payment attempts for a resource (admin only)"""
    _resource_or_404(request, resource_id)
    rows = await request.app.state.payment_repository.get_payment_logs(resource_id, limit=limit)
    return [PaymentLogResponse(**row.to_dict()) for row in rows]


@router.get("/resources/{resource_id}/paid", response_model=PaidStatusResponse)
@limiter.limit("30/minute")
async def get_paid_status(
    request: Request,
    resource_id: str,
    address: str = Query(..., min_length=1, max_length=128),
    _: bool = Depends(verify_admin_key)
):
    """Whether an address holds a verified payment for a resource (admin only)"""
    metadata = _resource_or_404(request, resource_id)
    paid = await request.app.state.payment_repository.has_user_paid(resource_id, address, metadata.network)
    return PaidStatusResponse(resource_id=resource_id, address=address, network=metadata.network, paid=paid)


@router.get("/format-amount")
@limiter.limit("60/minute")
async def format_amount(
    request: Request,
    atomic: str = Query(..., pattern=r'^[0-9]{1,78}$'),
    decimals: int = Query(6, ge=0, le=36)
):
    """Render an atomic amount for display"""
    return {"atomic": atomic, "decimals": decimals, "display": atomic_to_decimal(atomic, decimals)}
