"""
Configuration schema validation using Pydantic
"""

from decimal import Decimal
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator
from web3 import Web3


class TokenConfig(BaseModel):
    """Token address and precision on one chain"""

    model_config = {"extra": "forbid"}

    address: str
    decimals: int = Field(ge=0, le=36, default=18)

    @field_validator("address")
    @classmethod
    def validate_address(cls, v):
        if not Web3.is_address(v):
            raise ValueError(f"Invalid token address: {v}")
        return Web3.to_checksum_address(v)


class FlashLoanProviderConfig(BaseModel):
    """Flash-loan source available on a chain"""

    model_config = {"extra": "forbid"}

    kind: Literal["balancer", "aave_v3"]
    address: Optional[str] = None
    fee_bps: Optional[float] = Field(ge=0, le=100, default=None)
    max_loan: Dict[str, Decimal] = Field(
        default_factory=dict, description="Lendable amount per token symbol"
    )


class ChainConfig(BaseModel):
    """Per-chain connection, venue and token configuration"""

    model_config = {"extra": "forbid"}

    chain_id: int = Field(gt=0)
    name: str
    rpc_url_env: str
    native_token: str = "WETH"
    preferred: bool = False
    executor_contract: str
    block_time_seconds: float = Field(gt=0, le=60, default=12.0)
    relay_url: Optional[str] = Field(
        default=None, description="Overrides relay.url for this chain"
    )
    venues: Dict[str, str] = Field(description="Venue name to router address")
    tokens: Dict[str, TokenConfig]
    flash_loan_providers: List[FlashLoanProviderConfig] = Field(default_factory=list)

    @field_validator("venues")
    @classmethod
    def validate_venues(cls, v):
        if not v:
            raise ValueError("venues cannot be empty")
        for name, router in v.items():
            if not Web3.is_address(router):
                raise ValueError(f"Invalid router address for {name}: {router}")
        return {name: Web3.to_checksum_address(router) for name, router in v.items()}

    @model_validator(mode="after")
    def validate_native_token(self):
        if self.native_token not in self.tokens:
            raise ValueError(
                f"native_token {self.native_token} missing from tokens of {self.name}"
            )
        return self


class PairConfig(BaseModel):
    """Two-venue round trip candidate"""

    model_config = {"extra": "forbid"}

    chain_id: int
    token_in: str
    token_out: str
    venues: List[str] = Field(min_length=2, max_length=2)
    amounts: List[Decimal] = Field(min_length=1)
    gas_units: int = Field(gt=0, default=400_000)

    @field_validator("amounts")
    @classmethod
    def validate_amounts(cls, v):
        for amount in v:
            if amount <= 0:
                raise ValueError(f"Trade amount must be positive: {amount}")
        return v


class TriangleConfig(BaseModel):
    """Fixed three-hop cycle X -> Y -> Z -> X"""

    model_config = {"extra": "forbid"}

    chain_id: int
    path: List[str] = Field(min_length=3, max_length=3)
    venues: List[str] = Field(min_length=3, max_length=3)
    amounts: List[Decimal] = Field(min_length=1)
    gas_units: int = Field(gt=0, default=400_000)

    @model_validator(mode="after")
    def validate_distinct_tokens(self):
        if len(set(self.path)) != 3:
            raise ValueError(f"Triangle path must have three distinct tokens: {self.path}")
        return self


class CrossChainConfig(BaseModel):
    """Token tracked on two chains against a quote token"""

    model_config = {"extra": "forbid"}

    token: str
    quote_token: str
    chains: List[int] = Field(min_length=2, max_length=2)
    venues: Dict[int, str]
    amount: Decimal = Field(gt=0, default=Decimal("1"))
    gas_units: int = Field(gt=0, default=400_000)

    @model_validator(mode="after")
    def validate_venue_per_chain(self):
        missing = [c for c in self.chains if c not in self.venues]
        if missing:
            raise ValueError(f"No venue configured for chains {missing}")
        return self


class BridgeConfig(BaseModel):
    """Bridge route with fee in quote-token units"""

    model_config = {"extra": "forbid"}

    name: str
    from_chain: int
    to_chain: int
    fee: Decimal = Field(ge=0, default=Decimal("0.005"))
    transit_seconds: int = Field(gt=0, default=180)


class FeaturesConfig(BaseModel):
    model_config = {"extra": "forbid"}

    enable_triangular: bool = True
    enable_cross_chain: bool = False


class RiskConfig(BaseModel):
    """Circuit breaker and cooldown configuration"""

    model_config = {"extra": "forbid"}

    cooldown_ms: int = Field(ge=0, default=15_000)
    loss_threshold: Decimal = Field(gt=0, default=Decimal("10"))
    max_opportunity_age_seconds: float = Field(gt=0, default=15.0)
    max_bridge_seconds: int = Field(gt=0, default=300)
    state_file: Optional[str] = None


class ExecutionParametersConfig(BaseModel):
    """Execution parameters; safety bounds are enforced by ParameterValidator"""

    model_config = {"extra": "forbid"}

    min_profit_threshold: Decimal = Decimal("0.01")
    slippage_tolerance_bps: float = 100.0
    max_trade_size: Decimal = Decimal("10")
    max_fee_per_gas_gwei: float = 20.0
    max_priority_fee_per_gas_gwei: float = 2.0
    urgency: str = "medium"
    risk_level: str = "balanced"
    gas_limit: int = Field(gt=21_000, default=800_000)


class OptimizerConfig(BaseModel):
    """Threshold optimizer configuration"""

    model_config = {"extra": "forbid"}

    window_size: int = Field(ge=1, le=10_000, default=100)
    recompute_interval_seconds: float = Field(gt=0, default=30.0)
    reference_trade_size: Decimal = Field(gt=0, default=Decimal("1"))
    reference_gas_units: int = Field(gt=0, default=500_000)
    sigma_multiplier: float = Field(ge=0, le=10, default=1.0)
    competition_breakpoints_gwei: List[float] = Field(
        min_length=3, max_length=3, default_factory=lambda: [20.0, 50.0, 100.0]
    )

    @field_validator("competition_breakpoints_gwei")
    @classmethod
    def validate_breakpoints(cls, v):
        if sorted(v) != list(v):
            raise ValueError("competition_breakpoints_gwei must be ascending")
        return v


class PriceGuardConfig(BaseModel):
    """Quote deviation tiers and dynamic slippage estimation"""

    model_config = {"extra": "forbid"}

    enabled: bool = True
    deviation_tiers_bps: List[float] = Field(
        min_length=4,
        max_length=4,
        default_factory=lambda: [50.0, 200.0, 500.0, 1000.0],
        description="low / medium / high / critical deviation from the reference price",
    )
    min_sources: int = Field(ge=1, le=10, default=2)
    history_size: int = Field(ge=2, le=1000, default=30)
    base_slippage_bps: float = Field(ge=0, default=10.0)
    volatility_multiplier: float = Field(ge=0, le=10, default=2.0)
    min_slippage_bps: float = Field(ge=0, default=5.0)
    max_slippage_bps: float = Field(gt=0, le=2000, default=300.0)

    @field_validator("deviation_tiers_bps")
    @classmethod
    def validate_tiers(cls, v):
        if any(t <= 0 for t in v) or sorted(v) != list(v):
            raise ValueError("deviation_tiers_bps must be positive and ascending")
        return v

    @model_validator(mode="after")
    def validate_slippage_range(self):
        if self.min_slippage_bps > self.max_slippage_bps:
            raise ValueError("min_slippage_bps must not exceed max_slippage_bps")
        return self


class SchedulerConfig(BaseModel):
    model_config = {"extra": "forbid"}

    scan_interval_seconds: float = Field(gt=0, default=5.0)
    block_poll_interval_seconds: float = Field(gt=0, default=2.0)
    max_concurrent_quotes: int = Field(ge=1, le=64, default=8)


class RelayConfig(BaseModel):
    """Private relay endpoint configuration"""

    model_config = {"extra": "forbid"}

    url: str = "https://relay.flashbots.net"
    auth_key_env: str = "FLASHBOTS_AUTH_KEY"
    grace_blocks: int = Field(ge=0, le=5, default=1)
    max_submit_retries: int = Field(ge=0, le=10, default=2)
    request_timeout_seconds: float = Field(gt=0, default=10.0)


class SignerConfig(BaseModel):
    model_config = {"extra": "forbid"}

    private_key_env: str = "PRIVATE_KEY"


class ObservabilityConfig(BaseModel):
    """Logging, audit and metrics configuration"""

    model_config = {"extra": "forbid"}

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    audit_log: Optional[str] = None
    metrics_enabled: bool = False
    metrics_port: int = Field(ge=1024, le=65535, default=8000)


class BotConfig(BaseModel):
    """Complete pipeline configuration"""

    model_config = {"extra": "forbid"}

    chains: List[ChainConfig] = Field(min_length=1)
    pairs: List[PairConfig] = Field(default_factory=list)
    triangles: List[TriangleConfig] = Field(default_factory=list)
    cross_chain: List[CrossChainConfig] = Field(default_factory=list)
    bridges: List[BridgeConfig] = Field(default_factory=list)
    features: FeaturesConfig = Field(default_factory=FeaturesConfig)
    risk: RiskConfig = Field(default_factory=RiskConfig)
    execution: ExecutionParametersConfig = Field(
        default_factory=ExecutionParametersConfig
    )
    optimizer: OptimizerConfig = Field(default_factory=OptimizerConfig)
    price_guard: PriceGuardConfig = Field(default_factory=PriceGuardConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    relay: RelayConfig = Field(default_factory=RelayConfig)
    signer: SignerConfig = Field(default_factory=SignerConfig)
    observability: ObservabilityConfig = Field(default_factory=ObservabilityConfig)

    def chain(self, chain_id: int) -> ChainConfig:
        for chain in self.chains:
            if chain.chain_id == chain_id:
                return chain
        raise KeyError(chain_id)

    @model_validator(mode="after")
    def validate_references(self):
        chains = {c.chain_id: c for c in self.chains}
        if len(chains) != len(self.chains):
            raise ValueError("Duplicate chain_id in chains")

        def check(chain_id, tokens, venues, where):
            chain = chains.get(chain_id)
            if chain is None:
                raise ValueError(f"{where}: unknown chain_id {chain_id}")
            for token in tokens:
                if token not in chain.tokens:
                    raise ValueError(f"{where}: unknown token {token} on {chain.name}")
            for venue in venues:
                if venue not in chain.venues:
                    raise ValueError(f"{where}: unknown venue {venue} on {chain.name}")

        for pair in self.pairs:
            check(pair.chain_id, [pair.token_in, pair.token_out], pair.venues, "pairs")
        for triangle in self.triangles:
            check(triangle.chain_id, triangle.path, triangle.venues, "triangles")
        for entry in self.cross_chain:
            for chain_id in entry.chains:
                check(
                    chain_id,
                    [entry.token, entry.quote_token],
                    [entry.venues[chain_id]],
                    "cross_chain",
                )
        for bridge in self.bridges:
            if bridge.from_chain not in chains or bridge.to_chain not in chains:
                raise ValueError(f"bridges: {bridge.name} references unknown chain")
        return self


def validate_bot_config(config_dict: Dict) -> BotConfig:
    """
    Validate a configuration dictionary

    Args:
        config_dict: Dictionary representation of the configuration

    Returns:
        Validated BotConfig object

    Raises:
        pydantic.ValidationError: If configuration is invalid
    """
    return BotConfig(**config_dict)
