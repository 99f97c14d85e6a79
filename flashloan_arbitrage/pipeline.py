"""
Wiring of pipeline components from a validated configuration.
"""

import logging
from typing import Dict, Optional

from .audit import AuditLog
from .bundle import BundleBuilder, BundleSubmitter
from .config_schema import BotConfig
from .flash_loans import providers_from_config
from .interfaces import ChainReader, RelayClient, Signer, SystemTimeProvider, TimeProvider
from .metrics import ArbitrageMetrics
from .orchestrator import Orchestrator
from .parameter_validator import ExecutionParameters, ParameterValidator
from .price_guard import PriceGuard
from .risk_governor import RiskGovernor
from .scanner import OpportunityScanner
from .threshold_optimizer import ThresholdOptimizer

logger = logging.getLogger(__name__)


def execution_parameters(config: BotConfig) -> ExecutionParameters:
    """Execution parameters as configured, before validation."""
    execution = config.execution
    return ExecutionParameters(
        min_profit_threshold=execution.min_profit_threshold,
        slippage_tolerance_bps=execution.slippage_tolerance_bps,
        max_trade_size=execution.max_trade_size,
        max_fee_per_gas_gwei=execution.max_fee_per_gas_gwei,
        max_priority_fee_per_gas_gwei=execution.max_priority_fee_per_gas_gwei,
        urgency=execution.urgency,
        cooldown_period_ms=config.risk.cooldown_ms,
        risk_level=execution.risk_level,
    )


def build_orchestrator(
    config: BotConfig,
    readers: Dict[int, ChainReader],
    signer: Signer,
    relays: Dict[int, RelayClient],
    time_provider: Optional[TimeProvider] = None,
    metrics: Optional[ArbitrageMetrics] = None,
    audit: Optional[AuditLog] = None,
) -> Orchestrator:
    """
    Assemble the full pipeline.

    Args:
        config: Validated configuration
        readers: ChainReader per chain id
        signer: Execution signer
        relays: RelayClient per chain id that executes bundles
        time_provider: Clock shared by every component
        metrics: Optional Prometheus metrics
        audit: Optional audit sink; defaults to the configured audit log path

    Returns:
        Ready-to-run Orchestrator
    """
    time_provider = time_provider or SystemTimeProvider()
    validator = ParameterValidator()
    params = validator.resolve(execution_parameters(config))

    flash_loans = providers_from_config(config.chains)
    chains = {chain.chain_id: chain for chain in config.chains}

    optimizer = ThresholdOptimizer(
        window_size=config.optimizer.window_size,
        reference_trade_size=config.optimizer.reference_trade_size,
        reference_gas_units=config.optimizer.reference_gas_units,
        sigma_multiplier=config.optimizer.sigma_multiplier,
        competition_breakpoints_gwei=config.optimizer.competition_breakpoints_gwei,
    )
    governor = RiskGovernor(
        loss_threshold=config.risk.loss_threshold,
        cooldown_seconds=params.cooldown_period_ms / 1000.0,
        time_provider=time_provider,
        signer=signer.address(),
    )
    if config.risk.state_file:
        governor.load_state(config.risk.state_file)

    scanner = OpportunityScanner(
        config,
        readers,
        flash_loans,
        time_provider=time_provider,
        max_concurrent_quotes=config.scheduler.max_concurrent_quotes,
        price_guard=PriceGuard(config.price_guard) if config.price_guard.enabled else None,
    )
    builder = BundleBuilder(
        chains,
        readers,
        signer,
        flash_loans,
        params,
        gas_limit=config.execution.gas_limit,
    )
    submitters = {
        chain_id: BundleSubmitter(
            relay,
            grace_blocks=config.relay.grace_blocks,
            block_time_seconds=chains[chain_id].block_time_seconds,
            max_submit_retries=config.relay.max_submit_retries,
        )
        for chain_id, relay in relays.items()
    }
    audit = audit or AuditLog(config.observability.audit_log, time_provider=time_provider)

    return Orchestrator(
        config=config,
        readers=readers,
        scanner=scanner,
        optimizer=optimizer,
        validator=validator,
        governor=governor,
        builder=builder,
        submitters=submitters,
        params=params,
        audit=audit,
        metrics=metrics,
        time_provider=time_provider,
    )
