"""
Structured audit events for scan cycles and execution attempts.

Every event goes to the ``flashloan_arbitrage.audit`` logger and, when a
path is configured, is appended to a JSON Lines file. Repeated gate
denials for the same opportunity and reason are suppressed within a
short window.
"""

import logging
import threading
from dataclasses import asdict, dataclass, field
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Union

from .interfaces import SystemTimeProvider, TimeProvider
from .types import Opportunity
from .utils import safe_json_dump, timestamp_to_iso

logger = logging.getLogger("flashloan_arbitrage.audit")


@dataclass
class AuditRecord:
    timestamp: float
    event: str
    opportunity_id: Optional[str] = None
    kind: Optional[str] = None
    net_profit: Optional[Decimal] = None
    gas_used: Optional[int] = None
    outcome: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["timestamp_readable"] = timestamp_to_iso(self.timestamp)
        extra = data.pop("extra")
        data.update(extra)
        return data


class AuditLog:
    """
    Append-only audit event sink.

    Args:
        path: Optional JSON Lines file; events are only logged when None
        time_provider: Clock for event timestamps
        suppression_window: Seconds during which identical gate denials are dropped
    """

    def __init__(
        self,
        path: Optional[Union[str, Path]] = None,
        time_provider: Optional[TimeProvider] = None,
        suppression_window: float = 2.0,
    ):
        self.path = Path(path) if path else None
        if self.path is not None:
            self.path.parent.mkdir(parents=True, exist_ok=True)
        self.time_provider = time_provider or SystemTimeProvider()
        self.suppression_window = suppression_window

        self._lock = threading.Lock()
        self._last_denials: Dict[Tuple[str, str], float] = {}
        self.suppressed = 0

    def emit(self, record: AuditRecord) -> None:
        line = safe_json_dump(record.to_dict())
        logger.info(f"AUDIT: {line}")
        if self.path is not None:
            with self._lock:
                with open(self.path, "a") as f:
                    f.write(line)
                    f.write("\n")

    def _record(self, event: str, opportunity: Optional[Opportunity] = None, **kwargs) -> AuditRecord:
        extra = {k: v for k, v in kwargs.items() if k not in ("gas_used", "outcome")}
        return AuditRecord(
            timestamp=self.time_provider.current_timestamp(),
            event=event,
            opportunity_id=opportunity.id if opportunity else None,
            kind=opportunity.kind.value if opportunity else None,
            net_profit=opportunity.net_profit if opportunity else None,
            gas_used=kwargs.get("gas_used"),
            outcome=kwargs.get("outcome"),
            extra=extra,
        )

    def scan_cycle(
        self,
        key: str,
        found: int,
        errors: int,
        best: Optional[Opportunity] = None,
        duration_ms: Optional[float] = None,
        price_rejections: int = 0,
    ) -> None:
        self.emit(
            self._record(
                "scan_cycle",
                best,
                scan_key=key,
                found=found,
                errors=errors,
                duration_ms=duration_ms,
                price_rejections=price_rejections,
                outcome="candidates" if found else "none",
            )
        )

    def gate_denied(self, opportunity: Opportunity, reason: str) -> None:
        now = self.time_provider.current_timestamp()
        key = (opportunity.id, reason)
        with self._lock:
            last = self._last_denials.get(key)
            if last is not None and now - last <= self.suppression_window:
                self.suppressed += 1
                return
            self._last_denials = {
                k: t for k, t in self._last_denials.items()
                if now - t <= self.suppression_window
            }
            self._last_denials[key] = now
        self.emit(self._record("gate_denied", opportunity, outcome=reason))

    def execution(
        self,
        opportunity: Opportunity,
        outcome: str,
        gas_used: Optional[int] = None,
        pnl: Optional[Decimal] = None,
        target_block: Optional[int] = None,
    ) -> None:
        self.emit(
            self._record(
                "execution",
                opportunity,
                outcome=outcome,
                gas_used=gas_used,
                realized_pnl=pnl,
                target_block=target_block,
            )
        )

    def error(self, where: str, error: BaseException) -> None:
        self.emit(
            self._record(
                "error", None, where=where, error=repr(error), outcome="error"
            )
        )
