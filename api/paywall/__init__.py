"""
x402 Paywall Module
HTTP 402 pay-per-access gating with facilitator settlement and paid sessions
"""

from .config import PaywallSettings, get_paywall_config
from .middleware import PaywallMiddleware
from .orchestrator import PaymentOrchestrator, PaywallRequest, PaywallDecision, DecisionAction
from .routes import router
from .sessions import SessionManager, Session

__all__ = [
    "PaywallSettings",
    "get_paywall_config",
    "PaywallMiddleware",
    "PaymentOrchestrator",
    "PaywallRequest",
    "PaywallDecision",
    "DecisionAction",
    "router",
    "SessionManager",
    "Session",
]
