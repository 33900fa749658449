"""
Payment and AI platform settings blobs.

Both are stored in the config store and merged over these defaults on read, so
a blob saved by an older release still yields every field. Stored field names
follow the dashboard's wire format, hence the aliases.
"""

from typing import Dict, List, Literal
from pydantic import BaseModel, ConfigDict, Field

SECRET_MASK = "********"


class GatewayConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    enabled: bool = False
    public_key: str = Field("", alias="publicKey")
    secret_key: str = Field("", alias="secretKey")


class CreditPackage(BaseModel):
    """Express credit bundle sold outside the plan allotment."""
    model_config = ConfigDict(populate_by_name=True)

    id: str
    name: str = Field(alias="nome")
    credits: int = Field(alias="quantidade")
    price: float = Field(alias="preco")
    is_active: bool = Field(True, alias="ativo")


def _default_gateways() -> Dict[str, GatewayConfig]:
    return {
        "stripe": GatewayConfig(),
        "mercadoPago": GatewayConfig(),
        "asaas": GatewayConfig(),
    }


class PaymentSettings(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    gateways: Dict[str, GatewayConfig] = Field(default_factory=_default_gateways)
    packages: List[CreditPackage] = Field(default_factory=list)


class AIPlatformConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    enabled: bool = False
    api_key: str = Field("", alias="apiKey")
    cost_per_million_tokens: float = Field(0.0, alias="costPerMillionTokens")
    max_tokens: int = Field(0, alias="maxTokens")


class AIModelCapabilities(BaseModel):
    vision: bool = False
    audio: bool = False


class AIModelConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    name: str = Field(alias="nome")
    platform: Literal["gemini", "openai", "claude"] = Field(alias="plataforma")
    max_context: int = Field(0, alias="contexto_maximo")
    capabilities: AIModelCapabilities = Field(default_factory=AIModelCapabilities, alias="capacidades")
    is_active: bool = Field(True, alias="ativo")
    token_cost: float = Field(0.0, alias="custo_token")


def _default_platforms() -> Dict[str, AIPlatformConfig]:
    return {
        "gemini": AIPlatformConfig(enabled=True),
        "openai": AIPlatformConfig(),
        "claude": AIPlatformConfig(),
    }


class MultiAISettings(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    platforms: Dict[str, AIPlatformConfig] = Field(default_factory=_default_platforms)
    models: List[AIModelConfig] = Field(default_factory=list)
