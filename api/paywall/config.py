"""
x402 Paywall Configuration

Loads configuration from environment variables for the paywall gateway.
"""

import os
import logging
from typing import Optional
from dataclasses import dataclass

logger = logging.getLogger(__name__)

DEFAULT_FACILITATOR_URL = 'https://facilitator.x402.org'
DEFAULT_SESSION_SECRET = 'dev_paywall_session_secret_change_in_production'


@dataclass(frozen=True)
class PaywallSettings:
    """x402 Paywall Configuration"""

    # Feature flags
    enabled: bool

    # Facilitator
    facilitator_url: str
    facilitator_timeout: float
    valid_before_buffer: int

    # Network families
    enable_evm: bool
    enable_svm: bool

    # Sessions
    session_secret: str
    session_ttl: int
    notice_ttl: int

    # 402 requirements
    requirements_timeout: int

    # Content negotiation
    rest_prefix: str

    # Admin
    admin_key: Optional[str]

    # Resource metadata
    resources_json: Optional[str]
    resources_file: Optional[str]

    # Storage
    redis_url: str
    redis_password: Optional[str]


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ('1', 'true', 'yes', 'on')


def load_paywall_config() -> PaywallSettings:
    """Load paywall configuration from environment variables"""

    return PaywallSettings(
        enabled=_env_flag('PAYWALL_ENABLED', 'true'),

        facilitator_url=os.getenv('PAYWALL_FACILITATOR_URL', DEFAULT_FACILITATOR_URL).rstrip('/'),
        facilitator_timeout=float(os.getenv('PAYWALL_FACILITATOR_TIMEOUT', '20')),
        # Seconds of headroom required on an EVM authorization's validBefore
        valid_before_buffer=int(os.getenv('PAYWALL_VALID_BEFORE_BUFFER', '6')),

        enable_evm=_env_flag('PAYWALL_ENABLE_EVM', 'true'),
        enable_svm=_env_flag('PAYWALL_ENABLE_SVM', 'true'),

        session_secret=os.getenv('PAYWALL_SESSION_SECRET', DEFAULT_SESSION_SECRET),
        session_ttl=int(os.getenv('PAYWALL_SESSION_TTL', '1800')),
        notice_ttl=int(os.getenv('PAYWALL_NOTICE_TTL', '300')),

        requirements_timeout=int(os.getenv('PAYWALL_REQUIREMENTS_TIMEOUT', '300')),

        rest_prefix=os.getenv('PAYWALL_REST_PREFIX', '/api/'),

        admin_key=os.getenv('PAYWALL_ADMIN_KEY') or None,

        resources_json=os.getenv('PAYWALL_RESOURCES') or None,
        resources_file=os.getenv('PAYWALL_RESOURCES_FILE') or None,

        redis_url=os.getenv('REDIS_URL', 'redis://localhost:6379/0'),
        redis_password=os.getenv('REDIS_PASSWORD') or None,
    )


def is_development_environment() -> bool:
    """Check if running in development mode"""
    return os.getenv('ENVIRONMENT', 'production').lower() in ['development', 'dev', 'local', 'test']


def validate_production_config(config: PaywallSettings) -> None:
    """Refuse to start in production with default or missing secrets"""
    if is_development_environment():
        return

    insecure = []
    if config.session_secret == DEFAULT_SESSION_SECRET or len(config.session_secret) < 32:
        insecure.append("PAYWALL_SESSION_SECRET")
    if not config.admin_key:
        insecure.append("PAYWALL_ADMIN_KEY")

    if insecure:
        error_msg = f"SECURITY ERROR: insecure paywall configuration in production: {', '.join(insecure)}"
        logger.critical(error_msg)
        raise RuntimeError(error_msg)

    logger.info("Production paywall configuration validated")


# Global config instance
paywall_config: Optional[PaywallSettings] = None


def get_paywall_config() -> PaywallSettings:
    """Get the process-wide paywall configuration"""
    global paywall_config
    if paywall_config is None:
        paywall_config = load_paywall_config()
    return paywall_config


def reload_paywall_config() -> PaywallSettings:
    """Reload configuration from environment (useful for testing)"""
    global paywall_config
    paywall_config = load_paywall_config()
    return paywall_config
