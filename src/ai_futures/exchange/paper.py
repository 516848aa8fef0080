"""Paper exchange with persistent local state.

Behaves like the OKX gateway closely enough for the execution core: isolated
margin per position side, attached and standalone trigger orders, and the
same rejection codes for margin shortfalls and missing positions.
"""

from __future__ import annotations

import json
import threading
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any

from ai_futures.config import Settings
from ai_futures.errors import MarginInsufficientError, PositionNotFoundError
from ai_futures.exchange.base import effective_triggers
from ai_futures.exchange.okx import format_decimal
from ai_futures.types import (
    AccountSnapshot,
    AlgoKind,
    AlgoOrder,
    OrderSide,
    PosSide,
    PositionSnapshot,
)
from ai_futures.utils.logging import get_logger

MARGIN_INSUFFICIENT_CODE = "51008"
POSITION_MISSING_CODE = "51000"


@dataclass(slots=True)
class _PaperPosition:
    instrument: str
    pos_side: str
    size: float
    entry_price: float
    margin: float
    leverage: float


@dataclass(slots=True)
class _PaperAlgo:
    algo_id: str
    instrument: str
    pos_side: str
    size: float
    trigger_price: float
    kind: str


@dataclass(slots=True)
class _PaperState:
    cash: float
    initial_equity: float
    sequence: int = 0
    positions: dict[str, _PaperPosition] = field(default_factory=dict)
    leverage: dict[str, float] = field(default_factory=dict)
    algos: list[_PaperAlgo] = field(default_factory=list)
    marks: dict[str, float] = field(default_factory=dict)


def _key(instrument: str, pos_side: str) -> str:
    return f"{instrument}:{pos_side}"


class PaperExchange:
    """Simulated OKX account implementing ``ExchangeGateway`` and ``AccountReader``."""

    def __init__(
        self,
        settings: Settings,
        *,
        state_file: Path | None = None,
        slippage_bps: float = 2.0,
    ) -> None:
        self._settings = settings
        self._slippage_bps = slippage_bps
        self._state_file = state_file or settings.journal_dir / "paper_state.json"
        self._lock = threading.RLock()
        self._logger = get_logger("ai_futures.exchange.paper")
        self._state = self._load_state(settings.paper_initial_equity)

    # ==================== market ====================

    def set_mark_price(self, instrument: str, price: float) -> list[str]:
        """Record a mark price and fire any trigger orders it crosses.

        Returns the ids of triggered algo orders.
        """
        if price <= 0:
            raise ValueError("mark_price_must_be_positive")
        with self._lock:
            self._state.marks[instrument] = float(price)
            fired: list[str] = []
            for algo in list(self._state.algos):
                if algo.instrument != instrument or algo.algo_id in fired:
                    continue
                if not _crossed(algo, price):
                    continue
                position = self._state.positions.get(_key(instrument, algo.pos_side))
                if position is None:
                    continue
                self._reduce(position, min(algo.size, position.size), algo.trigger_price)
                fired.append(algo.algo_id)
                self._state.algos = [
                    pending for pending in self._state.algos if pending.algo_id != algo.algo_id
                ]
                self._logger.info(
                    "paper_trigger_fired",
                    instrument=instrument,
                    pos_side=algo.pos_side,
                    kind=algo.kind,
                    trigger_price=algo.trigger_price,
                )
            self._drop_orphan_algos()
            self._persist()
            return fired

    # ==================== reads ====================

    def get_account(self) -> AccountSnapshot:
        with self._lock:
            equity = self._state.cash
            for position in self._state.positions.values():
                equity += position.margin + self._upl(position)
            return AccountSnapshot(total_equity=equity, available_equity=self._state.cash)

    def get_positions(self, instruments: list[str]) -> list[PositionSnapshot]:
        with self._lock:
            return [
                self._snapshot(position)
                for position in self._state.positions.values()
                if position.instrument in instruments
            ]

    def get_position(self, instrument: str) -> PositionSnapshot | None:
        with self._lock:
            for pos_side in ("long", "short"):
                position = self._state.positions.get(_key(instrument, pos_side))
                if position is not None:
                    return self._snapshot(position)
            return None

    def pending_conditional_orders(self, instrument: str) -> list[AlgoOrder]:
        with self._lock:
            return [
                AlgoOrder(
                    algo_id=algo.algo_id,
                    instrument=algo.instrument,
                    pos_side=algo.pos_side,  # type: ignore[arg-type]
                    trigger_price=algo.trigger_price,
                    kind=algo.kind,  # type: ignore[arg-type]
                )
                for algo in self._state.algos
                if algo.instrument == instrument
            ]

    # ==================== writes ====================

    def set_leverage(self, instrument: str, leverage: float, pos_side: PosSide) -> None:
        if leverage < 1:
            raise ValueError("leverage_must_be_at_least_1")
        with self._lock:
            self._state.leverage[_key(instrument, pos_side)] = float(leverage)
            self._persist()

    def place_market_order(
        self,
        instrument: str,
        *,
        side: OrderSide,
        pos_side: PosSide,
        size: float,
        reduce_only: bool,
        stop_loss: float | None = None,
        take_profit: float | None = None,
    ) -> str:
        if size <= 0:
            raise ValueError("size_must_be_positive")
        with self._lock:
            mark = self._mark(instrument)
            key = _key(instrument, pos_side)
            position = self._state.positions.get(key)
            opening = (side == "buy") == (pos_side == "long")

            if reduce_only or not opening:
                if position is None:
                    raise PositionNotFoundError(
                        POSITION_MISSING_CODE,
                        "position does not exist",
                        operation="place_order",
                    )
                self._reduce(position, min(size, position.size), self._fill(mark, side))
                self._drop_orphan_algos()
            else:
                self._open(instrument, pos_side, size, self._fill(mark, side))
                for kind, trigger in (("SL", stop_loss), ("TP", take_profit)):
                    if trigger is not None and trigger > 0:
                        self._add_algo(instrument, pos_side, size, trigger, kind)

            order_id = self._next_id("ord")
            self._persist()
            return order_id

    def place_conditional_order(
        self,
        instrument: str,
        *,
        pos_side: PosSide,
        size: float,
        trigger_price: float,
        kind: AlgoKind,
    ) -> str:
        with self._lock:
            if _key(instrument, pos_side) not in self._state.positions:
                raise PositionNotFoundError(
                    POSITION_MISSING_CODE,
                    "position does not exist",
                    operation=f"place_{kind.lower()}_algo",
                )
            algo_id = self._add_algo(instrument, pos_side, size, trigger_price, kind)
            self._persist()
            return algo_id

    def cancel_conditional_orders(self, instrument: str, algo_ids: list[str]) -> None:
        with self._lock:
            wanted = set(algo_ids)
            self._state.algos = [
                algo
                for algo in self._state.algos
                if not (algo.instrument == instrument and algo.algo_id in wanted)
            ]
            self._persist()

    def close_position(self, instrument: str, pos_side: PosSide) -> None:
        with self._lock:
            position = self._state.positions.get(_key(instrument, pos_side))
            if position is None:
                raise PositionNotFoundError(
                    POSITION_MISSING_CODE,
                    f"{pos_side} position does not exist",
                    operation=f"close_{pos_side}",
                )
            exit_side: OrderSide = "sell" if pos_side == "long" else "buy"
            self._reduce(position, position.size, self._fill(self._mark(instrument), exit_side))
            self._drop_orphan_algos()
            self._persist()

    # ==================== internals ====================

    def _open(self, instrument: str, pos_side: str, size: float, price: float) -> None:
        key = _key(instrument, pos_side)
        leverage = self._state.leverage.get(key, 1.0)
        notional = size * self._settings.contract_value(instrument) * price
        margin = notional / leverage
        fee = notional * self._settings.taker_fee_rate
        if margin + fee > self._state.cash:
            raise MarginInsufficientError(
                MARGIN_INSUFFICIENT_CODE,
                "Insufficient USDT margin in account",
                operation="place_order",
            )
        self._state.cash -= margin + fee
        position = self._state.positions.get(key)
        if position is None:
            self._state.positions[key] = _PaperPosition(
                instrument=instrument,
                pos_side=pos_side,
                size=size,
                entry_price=price,
                margin=margin,
                leverage=leverage,
            )
            return
        total = position.size + size
        position.entry_price = (position.entry_price * position.size + price * size) / total
        position.size = total
        position.margin += margin
        position.leverage = leverage

    def _reduce(self, position: _PaperPosition, size: float, price: float) -> None:
        contract_value = self._settings.contract_value(position.instrument)
        direction = 1.0 if position.pos_side == "long" else -1.0
        pnl = (price - position.entry_price) * size * contract_value * direction
        fee = size * contract_value * price * self._settings.taker_fee_rate
        released = position.margin * (size / position.size)
        self._state.cash += released + pnl - fee
        position.size = round(position.size - size, 8)
        position.margin -= released
        if position.size <= 0:
            del self._state.positions[_key(position.instrument, position.pos_side)]

    def _add_algo(
        self,
        instrument: str,
        pos_side: str,
        size: float,
        trigger_price: float,
        kind: str,
    ) -> str:
        algo_id = self._next_id("algo")
        self._state.algos.append(
            _PaperAlgo(
                algo_id=algo_id,
                instrument=instrument,
                pos_side=pos_side,
                size=size,
                trigger_price=float(trigger_price),
                kind=kind,
            )
        )
        return algo_id

    def _drop_orphan_algos(self) -> None:
        self._state.algos = [
            algo
            for algo in self._state.algos
            if _key(algo.instrument, algo.pos_side) in self._state.positions
        ]

    def _snapshot(self, position: _PaperPosition) -> PositionSnapshot:
        stop, take = effective_triggers(
            position.pos_side,
            (
                (algo.kind, algo.trigger_price)
                for algo in self._state.algos
                if algo.instrument == position.instrument and algo.pos_side == position.pos_side
            ),
        )
        return PositionSnapshot(
            instrument=position.instrument,
            side=position.pos_side,  # type: ignore[arg-type]
            size_contracts=position.size,
            entry_price=position.entry_price,
            margin=position.margin,
            current_stop_loss=stop,
            current_take_profit=take,
            leverage=position.leverage,
            unrealized_pnl=self._upl(position),
        )

    def _upl(self, position: _PaperPosition) -> float:
        mark = self._state.marks.get(position.instrument, position.entry_price)
        direction = 1.0 if position.pos_side == "long" else -1.0
        contract_value = self._settings.contract_value(position.instrument)
        return (mark - position.entry_price) * position.size * contract_value * direction

    def _mark(self, instrument: str) -> float:
        mark = self._state.marks.get(instrument)
        if mark is None:
            raise RuntimeError(f"no_mark_price: {instrument}")
        return mark

    def _fill(self, mark: float, side: str) -> float:
        slip = self._slippage_bps / 10_000.0
        return mark * (1.0 + slip) if side == "buy" else mark * (1.0 - slip)

    def _next_id(self, prefix: str) -> str:
        self._state.sequence += 1
        return f"paper-{prefix}-{self._state.sequence}"

    def _load_state(self, initial_equity: float) -> _PaperState:
        if not self._state_file.exists():
            return _PaperState(cash=initial_equity, initial_equity=initial_equity)

        raw = json.loads(self._state_file.read_text(encoding="utf-8"))
        positions = {
            key: _PaperPosition(**payload)
            for key, payload in (raw.get("positions") or {}).items()
            if isinstance(payload, dict)
        }
        algos = [
            _PaperAlgo(**payload)
            for payload in raw.get("algos") or []
            if isinstance(payload, dict)
        ]
        return _PaperState(
            cash=float(raw.get("cash", initial_equity)),
            initial_equity=float(raw.get("initial_equity", initial_equity)),
            sequence=int(raw.get("sequence", 0)),
            positions=positions,
            leverage={k: float(v) for k, v in (raw.get("leverage") or {}).items()},
            algos=algos,
            marks={k: float(v) for k, v in (raw.get("marks") or {}).items()},
        )

    def _persist(self) -> None:
        payload: dict[str, Any] = asdict(self._state)
        self._state_file.parent.mkdir(parents=True, exist_ok=True)
        serialized = json.dumps(payload, ensure_ascii=True, indent=2)
        self._state_file.write_text(serialized, encoding="utf-8")

    def describe(self) -> dict[str, Any]:
        """Human-readable state summary for the CLI."""
        with self._lock:
            account = self.get_account()
            return {
                "total_equity": format_decimal(round(account.total_equity, 4)),
                "available_equity": format_decimal(round(account.available_equity, 4)),
                "positions": len(self._state.positions),
                "pending_algos": len(self._state.algos),
            }


def _crossed(algo: _PaperAlgo, price: float) -> bool:
    if algo.pos_side == "long":
        return price <= algo.trigger_price if algo.kind == "SL" else price >= algo.trigger_price
    return price >= algo.trigger_price if algo.kind == "SL" else price <= algo.trigger_price
