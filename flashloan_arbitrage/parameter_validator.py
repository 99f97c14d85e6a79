"""
Hard safety bounds for execution parameters and filter thresholds.

Every parameter set that can influence execution passes through
ParameterValidator first. Out-of-range values are reported as errors and
clamped into range; values that cannot be clamped (non-numeric or
non-finite) make the set non-derivable and callers fall back to
create_safe_parameters().
"""

import logging
from dataclasses import dataclass, field, replace
from decimal import Decimal, InvalidOperation
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Union

from .constants import URGENCY_MULTIPLIERS, RiskLevel, Urgency
from .types import ThresholdSet

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Bound:
    """Inclusive safety range and recommended value for one field."""

    min: Decimal
    max: Decimal
    recommended: Decimal


def _bound(lo: str, hi: str, rec: str) -> Bound:
    return Bound(Decimal(lo), Decimal(hi), Decimal(rec))


PARAMETER_BOUNDS: Mapping[str, Bound] = MappingProxyType(
    {
        "min_profit_threshold": _bound("0.0001", "10", "0.01"),
        "slippage_tolerance_bps": _bound("5", "2000", "100"),
        "max_trade_size": _bound("0.01", "1000", "10"),
        "max_fee_per_gas_gwei": _bound("1", "100", "20"),
        "max_priority_fee_per_gas_gwei": _bound("1", "10", "2"),
        "cooldown_period_ms": _bound("1000", "300000", "5000"),
        "min_spread_bps": _bound("5", "1000", "30"),
        "gas_buffer_multiplier": _bound("1.0", "3.0", "1.2"),
        "slippage_buffer_bps": _bound("5", "2000", "100"),
    }
)

# ThresholdSet field -> bounds table key
THRESHOLD_FIELDS = {
    "min_profit": "min_profit_threshold",
    "min_spread_bps": "min_spread_bps",
    "gas_buffer_multiplier": "gas_buffer_multiplier",
    "slippage_buffer_bps": "slippage_buffer_bps",
}


@dataclass(frozen=True)
class ExecutionParameters:
    """Tunable execution parameters."""

    min_profit_threshold: Decimal
    slippage_tolerance_bps: float
    max_trade_size: Decimal
    max_fee_per_gas_gwei: float
    max_priority_fee_per_gas_gwei: float
    urgency: str
    cooldown_period_ms: int
    risk_level: str

    @property
    def priority_fee_multiplier(self) -> float:
        return URGENCY_MULTIPLIERS[Urgency(self.urgency)]


@dataclass
class ValidationResult:
    is_valid: bool
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    adjusted: Optional[Union[ExecutionParameters, ThresholdSet]] = None


Numeric = Union[int, float, Decimal]


class ParameterValidator:
    """Validates parameter sets against a static bounds table."""

    def __init__(self, bounds: Optional[Mapping[str, Bound]] = None):
        self.bounds = bounds if bounds is not None else PARAMETER_BOUNDS

    # === FIELD CHECKS ===

    def _check_field(
        self, name: str, value: Any, errors: List[str], warnings: List[str]
    ) -> Optional[Numeric]:
        """Check one numeric field; return the (possibly clamped) value or None."""
        bound = self.bounds[name]

        if isinstance(value, bool) or not isinstance(value, (int, float, Decimal)):
            errors.append(f"{name} must be numeric, got {value!r}")
            return None
        try:
            as_decimal = Decimal(str(value))
        except InvalidOperation:
            errors.append(f"{name} is not a valid number: {value!r}")
            return None
        if not as_decimal.is_finite():
            errors.append(f"{name} must be finite, got {value!r}")
            return None

        if as_decimal < bound.min:
            errors.append(f"{name} {value} is below minimum {bound.min}")
            warnings.append(f"{name} adjusted to minimum {bound.min}")
            return _as_type(value, bound.min)
        if as_decimal > bound.max:
            errors.append(f"{name} {value} is above maximum {bound.max}")
            warnings.append(f"{name} adjusted to maximum {bound.max}")
            return _as_type(value, bound.max)
        if as_decimal < bound.recommended:
            warnings.append(
                f"{name} {value} is below recommended {bound.recommended}"
            )
        return value

    # === EXECUTION PARAMETERS ===

    def validate(self, params: ExecutionParameters) -> ValidationResult:
        """
        Validate an execution parameter set.

        Args:
            params: Parameters to check

        Returns:
            ValidationResult with errors, warnings and, when derivable, the
            clamped parameter set in ``adjusted``
        """
        errors: List[str] = []
        warnings: List[str] = []
        adjusted: Dict[str, Any] = {}
        derivable = True

        for name in (
            "min_profit_threshold",
            "slippage_tolerance_bps",
            "max_trade_size",
            "max_fee_per_gas_gwei",
            "max_priority_fee_per_gas_gwei",
            "cooldown_period_ms",
        ):
            checked = self._check_field(name, getattr(params, name), errors, warnings)
            if checked is None:
                derivable = False
            else:
                adjusted[name] = checked

        if derivable:
            if adjusted["slippage_tolerance_bps"] > 500:
                warnings.append("High slippage tolerance may result in poor execution")
            if adjusted["max_trade_size"] > 50:
                warnings.append("Large trade size increases risk exposure")
            if adjusted["cooldown_period_ms"] < 2000:
                warnings.append("Short cooldown may lead to excessive trading")

        urgency_values = {u.value for u in Urgency}
        if params.urgency not in urgency_values:
            errors.append(f"Invalid urgency level: {params.urgency!r}")
            adjusted["urgency"] = Urgency.MEDIUM.value

        risk_values = {r.value for r in RiskLevel}
        if params.risk_level not in risk_values:
            errors.append(f"Invalid risk level: {params.risk_level!r}")
            adjusted["risk_level"] = RiskLevel.BALANCED.value

        if derivable:
            candidate = replace(params, **adjusted)
            candidate = self._cross_field_checks(candidate, warnings)
        else:
            candidate = None

        return ValidationResult(
            is_valid=not errors, errors=errors, warnings=warnings, adjusted=candidate
        )

    def _cross_field_checks(
        self, params: ExecutionParameters, warnings: List[str]
    ) -> ExecutionParameters:
        if params.max_fee_per_gas_gwei < params.max_priority_fee_per_gas_gwei:
            warnings.append(
                "max_fee_per_gas below max_priority_fee_per_gas, raising max fee"
            )
            params = replace(
                params, max_fee_per_gas_gwei=params.max_priority_fee_per_gas_gwei
            )

        if params.max_trade_size > 0:
            ratio = Decimal(str(params.min_profit_threshold)) / Decimal(
                str(params.max_trade_size)
            )
            if ratio < Decimal("0.001"):
                warnings.append(
                    "Profit threshold very low relative to trade size, may not cover costs"
                )
            elif ratio > Decimal("0.1"):
                warnings.append(
                    "Profit threshold very high relative to trade size, may miss opportunities"
                )

        if params.max_fee_per_gas_gwei > 0:
            priority_ratio = (
                params.max_priority_fee_per_gas_gwei / params.max_fee_per_gas_gwei
            )
            if priority_ratio > 0.5:
                warnings.append("High priority fee ratio may be inefficient")

        if params.risk_level == RiskLevel.CONSERVATIVE.value:
            if params.slippage_tolerance_bps > 200:
                warnings.append(
                    "Conservative risk level with high slippage tolerance is inconsistent"
                )
            if params.max_trade_size > 5:
                warnings.append(
                    "Conservative risk level with large trade size is inconsistent"
                )
        elif params.risk_level == RiskLevel.AGGRESSIVE.value:
            if params.slippage_tolerance_bps < 50:
                warnings.append("Aggressive risk level with low slippage may miss trades")
            if params.cooldown_period_ms > 10000:
                warnings.append(
                    "Aggressive risk level with long cooldown may miss opportunities"
                )

        return params

    def resolve(self, params: ExecutionParameters) -> ExecutionParameters:
        """Return a parameter set that is safe to use, clamping or falling back."""
        result = self.validate(params)
        _log_result("execution parameters", result)
        if result.is_valid:
            return result.adjusted or params
        if result.adjusted is not None:
            return result.adjusted
        logger.error("Execution parameters not derivable, using safe defaults")
        return self.create_safe_parameters()

    def create_safe_parameters(self) -> ExecutionParameters:
        """Return the all-recommended configuration."""
        rec = {name: bound.recommended for name, bound in self.bounds.items()}
        return ExecutionParameters(
            min_profit_threshold=rec["min_profit_threshold"],
            slippage_tolerance_bps=float(rec["slippage_tolerance_bps"]),
            max_trade_size=rec["max_trade_size"],
            max_fee_per_gas_gwei=float(rec["max_fee_per_gas_gwei"]),
            max_priority_fee_per_gas_gwei=float(rec["max_priority_fee_per_gas_gwei"]),
            urgency=Urgency.MEDIUM.value,
            cooldown_period_ms=int(rec["cooldown_period_ms"]),
            risk_level=RiskLevel.BALANCED.value,
        )

    # === THRESHOLDS ===

    def validate_thresholds(self, thresholds: ThresholdSet) -> ValidationResult:
        errors: List[str] = []
        warnings: List[str] = []
        adjusted: Dict[str, Any] = {}
        derivable = True

        for attr, bound_name in THRESHOLD_FIELDS.items():
            checked = self._check_field(
                bound_name, getattr(thresholds, attr), errors, warnings
            )
            if checked is None:
                derivable = False
            else:
                adjusted[attr] = checked

        return ValidationResult(
            is_valid=not errors,
            errors=errors,
            warnings=warnings,
            adjusted=replace(thresholds, **adjusted) if derivable else None,
        )

    def resolve_thresholds(self, thresholds: ThresholdSet) -> ThresholdSet:
        """Return a ThresholdSet with every field inside its bounds."""
        result = self.validate_thresholds(thresholds)
        for error in result.errors:
            logger.warning(f"Threshold adjusted: {error}")
        if result.adjusted is not None:
            return result.adjusted
        logger.error("Proposed thresholds not derivable, using safe thresholds")
        return self.safe_thresholds()

    def safe_thresholds(self) -> ThresholdSet:
        return ThresholdSet(
            min_profit=self.bounds["min_profit_threshold"].recommended,
            min_spread_bps=float(self.bounds["min_spread_bps"].recommended),
            gas_buffer_multiplier=float(self.bounds["gas_buffer_multiplier"].recommended),
            slippage_buffer_bps=float(self.bounds["slippage_buffer_bps"].recommended),
        )


def _as_type(original: Numeric, value: Decimal) -> Numeric:
    """Return a bound value in the same numeric type as the original field."""
    if isinstance(original, Decimal):
        return value
    if isinstance(original, int):
        return int(value)
    return float(value)


def _log_result(label: str, result: ValidationResult) -> None:
    for error in result.errors:
        logger.error(f"Invalid {label}: {error}")
    for warning in result.warnings:
        logger.warning(f"{label}: {warning}")
