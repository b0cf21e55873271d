from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Generic, TypeVar

T = TypeVar("T")


class SignalSide(str, Enum):
    BUY = "BUY"
    SELL = "SELL"
    HOLD = "HOLD"
    NEUTRAL = "NEUTRAL"

    @property
    def actionable(self) -> bool:
        return self in {SignalSide.BUY, SignalSide.SELL}

    @property
    def order_side(self) -> str:
        if not self.actionable:
            raise ValueError(f"{self.value} has no order side")
        return self.value.lower()

    @property
    def exit_side(self) -> str:
        return "sell" if self.order_side == "buy" else "buy"


class CycleState(str, Enum):
    IDLE = "IDLE"
    FETCHING_SIGNAL = "FETCHING_SIGNAL"
    EVALUATING = "EVALUATING"
    REJECTED = "REJECTED"
    RECONCILING = "RECONCILING"
    ENTERING = "ENTERING"
    PROTECTING = "PROTECTING"
    SKIPPED_PROTECTION = "SKIPPED_PROTECTION"
    DONE = "DONE"


@dataclass(slots=True, frozen=True)
class Signal:
    side: SignalSide
    confidence: float
    price_target: float | None
    stop_loss: float | None
    pair_used: str
    raw: dict[str, Any] = field(default_factory=dict, compare=False)


@dataclass(slots=True, frozen=True)
class SignalEnvelope:
    signal: Signal
    received_at: datetime


@dataclass(slots=True)
class Ticker:
    symbol: str
    last: float


@dataclass(slots=True)
class Instrument:
    symbol: str
    tick_size: float | None
    contract_value: float | None
    tradeable: bool = True


@dataclass(slots=True)
class Position:
    symbol: str
    side: str
    size: float
    unrealized_pnl: float | None = None

    @property
    def closing_side(self) -> str:
        side = self.side.strip().lower()
        if side == "long":
            return "sell"
        if side == "short":
            return "buy"
        raise ValueError(f"unknown position side {self.side!r} on {self.symbol}")


@dataclass(slots=True)
class OrderRequest:
    role: str
    order_type: str
    symbol: str
    side: str
    size: float
    limit_price: float | None = None
    stop_price: float | None = None
    reduce_only: bool = False

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "orderType": self.order_type,
            "symbol": self.symbol,
            "side": self.side,
            "size": self.size,
        }
        if self.limit_price is not None:
            payload["limitPrice"] = self.limit_price
        if self.stop_price is not None:
            payload["stopPrice"] = self.stop_price
        payload["reduceOnly"] = "true" if self.reduce_only else "false"
        return payload

    def describe(self) -> str:
        parts = [f"{self.role}:{self.order_type}", self.side, f"{self.size:g}", self.symbol]
        if self.limit_price is not None:
            parts.append(f"limit={self.limit_price:g}")
        if self.stop_price is not None:
            parts.append(f"stop={self.stop_price:g}")
        if self.reduce_only:
            parts.append("reduceOnly")
        return " ".join(parts)


@dataclass(slots=True)
class OrderResult:
    request: OrderRequest
    status: str
    order_id: str | None = None
    dry_run: bool = False
    raw: dict[str, Any] = field(default_factory=dict)

    @property
    def placed(self) -> bool:
        return self.status.strip().lower() == "placed"


@dataclass(slots=True)
class StageResult(Generic[T]):
    """Outcome of one pipeline stage: a value on success or an abort reason."""

    ok: bool
    value: T | None = None
    reason: str | None = None
    message: str = ""

    @classmethod
    def success(cls, value: T | None = None) -> "StageResult[T]":
        return cls(ok=True, value=value)

    @classmethod
    def abort(cls, reason: str, message: str = "") -> "StageResult[T]":
        return cls(ok=False, reason=reason, message=message)


@dataclass(slots=True)
class CycleReport:
    trigger: str
    dry_run: bool
    started_at: datetime
    state: CycleState = CycleState.IDLE
    trail: list[CycleState] = field(default_factory=lambda: [CycleState.IDLE])
    reason_codes: list[str] = field(default_factory=list)
    symbol: str | None = None
    signal: Signal | None = None
    orders: list[OrderRequest] = field(default_factory=list)
    results: list[OrderResult] = field(default_factory=list)
    error: str | None = None
    finished_at: datetime | None = None

    def advance(self, state: CycleState) -> None:
        self.state = state
        self.trail.append(state)

    def add_reason(self, code: str) -> None:
        if code not in self.reason_codes:
            self.reason_codes.append(code)

    def to_dict(self) -> dict[str, Any]:
        signal = None
        if self.signal is not None:
            signal = {
                "side": self.signal.side.value,
                "confidence": self.signal.confidence,
                "price_target": self.signal.price_target,
                "stop_loss": self.signal.stop_loss,
                "pair_used": self.signal.pair_used,
            }
        return {
            "trigger": self.trigger,
            "dry_run": self.dry_run,
            "state": self.state.value,
            "trail": [item.value for item in self.trail],
            "reason_codes": list(self.reason_codes),
            "symbol": self.symbol,
            "signal": signal,
            "orders": [asdict(order) for order in self.orders],
            "results": [
                {
                    "role": result.request.role,
                    "status": result.status,
                    "order_id": result.order_id,
                    "dry_run": result.dry_run,
                }
                for result in self.results
            ],
            "error": self.error,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
        }
