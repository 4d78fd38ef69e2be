"""
Gated resource metadata and per-request paywall configuration
"""

import json
import logging
import uuid
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Protocol

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .addresses import network_family, normalize_address, EVM_FAMILY, SVM_FAMILY
from .amounts import normalize_atomic_amount, atomic_to_decimal, AMOUNT_FORMAT_ATOMIC, AMOUNT_FORMAT_DECIMAL
from .config import PaywallSettings
from .errors import PaywallConfigurationError
from .payloads import PaymentRequirements, SUPPORTED_SCHEME
from .tokens import TokenRegistry, DEFAULT_EIP712_NAME, DEFAULT_EIP712_VERSION

logger = logging.getLogger(__name__)


class ResourceMetadata(BaseModel):
    """Stored paywall settings for one resource"""
    model_config = ConfigDict(frozen=True)

    resource_id: str = Field(min_length=1)
    path: str
    title: str = ''
    recipient_address: str
    amount: str
    amount_format: Optional[str] = None
    token_address: Optional[str] = None
    network: str = 'base-mainnet'
    token_decimals: Optional[int] = None
    token_name: Optional[str] = None
    token_version: Optional[str] = None

    @field_validator('resource_id', 'amount', mode='before')
    @classmethod
    def _coerce_str(cls, v):
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            return str(v)
        return v

    @field_validator('path')
    @classmethod
    def _normalize_path(cls, v: str) -> str:
        v = '/' + v.strip().lstrip('/')
        return v.rstrip('/') or '/'

    @field_validator('amount_format')
    @classmethod
    def _check_format(cls, v):
        if v is not None and v not in (AMOUNT_FORMAT_DECIMAL, AMOUNT_FORMAT_ATOMIC):
            raise ValueError(f"amount_format must be '{AMOUNT_FORMAT_DECIMAL}' or '{AMOUNT_FORMAT_ATOMIC}'")
        return v


@dataclass(frozen=True)
class PaywallConfig:
    """Fully resolved payment terms for one resource"""
    resource_id: str
    resource_url: str
    title: str
    recipient_address: str
    amount_atomic: str
    amount_display: str
    token_address: str
    network: str
    token_decimals: int
    token_name: Optional[str] = None
    token_version: Optional[str] = None

    @property
    def family(self) -> str:
        return network_family(self.network)


class ResourceStore(Protocol):
    def get(self, resource_id: str) -> Optional[ResourceMetadata]: ...

    def match_path(self, path: str) -> Optional[ResourceMetadata]: ...

    def all(self) -> List[ResourceMetadata]: ...


class StaticResourceStore:
    """In-memory resource store loaded once at startup"""

    def __init__(self, resources: Iterable[ResourceMetadata] = ()):
        self._by_id: Dict[str, ResourceMetadata] = {}
        self._by_path: Dict[str, ResourceMetadata] = {}
        for resource in resources:
            if resource.resource_id in self._by_id:
                raise ValueError(f"Duplicate resource id: {resource.resource_id}")
            self._by_id[resource.resource_id] = resource
            self._by_path[resource.path] = resource

    @classmethod
    def from_json(cls, raw: str) -> 'StaticResourceStore':
        data = json.loads(raw)
        if isinstance(data, dict):
            data = data.get('resources', [])
        if not isinstance(data, list):
            raise ValueError("Resource metadata must be a JSON list")
        try:
            return cls(ResourceMetadata.model_validate(item) for item in data)
        except ValidationError as e:
            raise ValueError(f"Invalid resource metadata: {e}") from e

    @classmethod
    def from_settings(cls, settings: PaywallSettings) -> 'StaticResourceStore':
        """Load from PAYWALL_RESOURCES_FILE, else PAYWALL_RESOURCES, else empty"""
        if settings.resources_file:
            with open(settings.resources_file, encoding='utf-8') as f:
                store = cls.from_json(f.read())
            logger.info(f"Loaded {len(store.all())} gated resources from {settings.resources_file}")
            return store
        if settings.resources_json:
            store = cls.from_json(settings.resources_json)
            logger.info(f"Loaded {len(store.all())} gated resources from environment")
            return store
        logger.warning("No gated resources configured")
        return cls()

    def get(self, resource_id: str) -> Optional[ResourceMetadata]:
        return self._by_id.get(str(resource_id))

    def match_path(self, path: str) -> Optional[ResourceMetadata]:
        normalized = '/' + (path or '').strip().lstrip('/')
        return self._by_path.get(normalized.rstrip('/') or '/')

    def all(self) -> List[ResourceMetadata]:
        return list(self._by_id.values())


def enabled_families(settings: PaywallSettings) -> List[str]:
    families = []
    if settings.enable_evm:
        families.append(EVM_FAMILY)
    if settings.enable_svm:
        families.append(SVM_FAMILY)
    return families


def build_paywall_config(
    metadata: ResourceMetadata,
    settings: PaywallSettings,
    registry: TokenRegistry,
    resource_url: str
) -> PaywallConfig:
    """
    Resolve stored metadata into charge-ready terms

    Raises:
        AmountError: the configured amount cannot be charged
        PaywallConfigurationError: network disabled, bad recipient or no token
    """
    network = metadata.network
    family = network_family(network)

    if family not in enabled_families(settings):
        raise PaywallConfigurationError(f"Network family '{family}' is disabled for resource {metadata.resource_id}")

    recipient = normalize_address(metadata.recipient_address, network)
    if recipient is None:
        raise PaywallConfigurationError(
            f"Invalid recipient address for resource {metadata.resource_id} on {network}"
        )

    token = (
        registry.get_token(network, metadata.token_address)
        if metadata.token_address else registry.default_token(network)
    )
    token_address = metadata.token_address or (token.address if token else None)
    if not token_address:
        raise PaywallConfigurationError(f"No token configured for resource {metadata.resource_id} on {network}")

    decimals = metadata.token_decimals
    if decimals is None:
        decimals = token.decimals if token else 6

    amount_atomic = normalize_atomic_amount(metadata.amount, decimals, metadata.amount_format)

    token_name = metadata.token_name or (token.token_name if token else None)
    token_version = metadata.token_version or (token.token_version if token else None)
    if family == EVM_FAMILY:
        token_name = token_name or DEFAULT_EIP712_NAME
        token_version = token_version or DEFAULT_EIP712_VERSION

    return PaywallConfig(
        resource_id=metadata.resource_id,
        resource_url=resource_url,
        title=metadata.title or metadata.resource_id,
        recipient_address=recipient,
        amount_atomic=amount_atomic,
        amount_display=atomic_to_decimal(amount_atomic, decimals),
        token_address=token_address.strip(),
        network=network,
        token_decimals=decimals,
        token_name=token_name,
        token_version=token_version,
    )


def build_payment_requirements(
    config: PaywallConfig,
    timeout: int = 300,
    mime_type: str = 'text/html'
) -> PaymentRequirements:
    """The x402 `accepts` entry for a resource"""
    extra = None
    if config.family == EVM_FAMILY:
        extra = {'name': config.token_name, 'version': config.token_version}

    return PaymentRequirements(
        scheme=SUPPORTED_SCHEME,
        network=config.network,
        amount=config.amount_atomic,
        resource=config.resource_url,
        description=f"Access to: {config.title}",
        pay_to=config.recipient_address,
        asset=config.token_address,
        timeout=timeout,
        mime_type=mime_type,
        extra=extra,
        id=f"resource-{config.resource_id}-{uuid.uuid4().hex[:13]}",
    )
