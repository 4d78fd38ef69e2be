"""
Prometheus Monitoring for the x402 Paywall
Payment, session and facilitator metrics
"""

import logging
from prometheus_client import (
    Counter,
    Histogram,
    Info,
    generate_latest,
    CONTENT_TYPE_LATEST
)

logger = logging.getLogger(__name__)

# =============================================================================
# PAYMENT METRICS
# =============================================================================

payment_attempts_total = Counter(
    'x402_paywall_payment_attempts_total',
    'Payment attempts recorded in the payment log',
    ['network', 'status']
)

payment_failures_total = Counter(
    'x402_paywall_payment_failures_total',
    'Failed payment attempts by classification',
    ['kind']
)

payment_requirements_sent_total = Counter(
    'x402_paywall_payment_requirements_sent_total',
    'Number of 402 payment requirement responses',
    ['network']
)

ignored_payment_headers_total = Counter(
    'x402_paywall_ignored_payment_headers_total',
    'X-PAYMENT headers that could not be decoded'
)

# =============================================================================
# SESSION METRICS
# =============================================================================

sessions_issued_total = Counter(
    'x402_paywall_sessions_issued_total',
    'Access sessions issued after verified payment'
)

session_validations_total = Counter(
    'x402_paywall_session_validations_total',
    'Session validation outcomes',
    ['result']
)

# =============================================================================
# FACILITATOR METRICS
# =============================================================================

facilitator_request_duration = Histogram(
    'x402_paywall_facilitator_duration_seconds',
    'Time spent in facilitator verify+settle',
    ['outcome'],
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 20.0, 30.0]
)

system_info = Info(
    'x402_paywall',
    'Paywall service information'
)


def get_metrics():
    """Get current Prometheus metrics in text format"""
    return generate_latest()


def get_metrics_content_type():
    """Get content type for Prometheus metrics"""
    return CONTENT_TYPE_LATEST
