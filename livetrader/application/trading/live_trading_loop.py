"""
Live trading control loop.

Periodically polls the signal store for eligible signals and, for each
one, runs: fresh account read -> risk evaluation -> order execution ->
portfolio reconciliation -> mark signal EXECUTED.

Scheduling uses one APScheduler ``BackgroundScheduler`` per loop
instance with an ``IntervalTrigger`` (``max_instances=1``,
``coalesce=True``), so ticks never overlap. Within a tick, signals of
one account are processed sequentially (confidence desc, then creation
time asc); independent accounts run in parallel on a thread pool.

``stop()`` removes the job and shuts the scheduler down without waiting.
A signal already being processed always runs to completion; the rest
of the tick is skipped.

Usage:
    loop = LiveTradingControlLoop(...)
    job = loop.start(limits)   # begin ticking
    loop.status()              # is_active, queue_depth, ...
    loop.stop()                # idempotent
"""

import logging
import threading
from collections import OrderedDict
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, Optional
from uuid import UUID

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from livetrader.application.trading.execute_order import (
    OrderExecutionPipeline,
    idempotency_key,
)
from livetrader.application.trading.expire_signals import SignalExpirySweeper
from livetrader.application.trading.reconcile_portfolio import PortfolioReconciler
from livetrader.domain.trading.entities import (
    ZERO,
    Direction,
    ExecutionFailure,
    ExecutionResult,
    LoopState,
    RiskLimits,
    RiskRejection,
    Signal,
    SignalStatus,
    Trade,
)
from livetrader.domain.trading.errors import (
    CallTimeoutError,
    InvalidConfigError,
    InvariantViolationError,
)
from livetrader.domain.trading.ports import (
    AccountRepository,
    Clock,
    SignalRepository,
    TradeRepository,
)
from livetrader.domain.trading.risk_evaluator import RiskEvaluator
from livetrader.shared.timeouts import call_with_timeout

logger = logging.getLogger(__name__)

MIN_START_CONFIDENCE = Decimal("60")
_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


class OutcomeStatus(Enum):
    """What happened to one signal during a tick."""

    EXECUTED = "executed"
    REJECTED = "rejected"
    FAILED = "failed"
    SKIPPED = "skipped"
    ERROR = "error"
    HALTED = "halted"


@dataclass(frozen=True)
class SignalOutcome:
    """Result of processing a single signal."""

    signal_id: UUID
    account_id: str
    status: OutcomeStatus
    reason: Optional[str] = None
    detail: str = ""
    trade_id: Optional[UUID] = None


@dataclass
class TickReport:
    """Summary of one control-loop tick."""

    started_at: datetime
    finished_at: Optional[datetime] = None
    expired: int = 0
    eligible: int = 0
    outcomes: list[SignalOutcome] = field(default_factory=list)
    halted_accounts: list[str] = field(default_factory=list)
    interrupted: bool = False

    def count(self, status: OutcomeStatus) -> int:
        return sum(1 for o in self.outcomes if o.status is status)


@dataclass(frozen=True)
class LoopStatus:
    """Snapshot of the control loop for UI/API consumers."""

    is_active: bool
    queue_depth: int
    state: LoopState
    ticks: int = 0
    last_tick_at: Optional[datetime] = None
    halted_accounts: tuple[str, ...] = ()
    limits: Optional[RiskLimits] = None


class LiveTradingControlLoop:
    """Orchestrates signal polling, sizing, execution and reconciliation.

    Each instance owns its own state and scheduler; instances (for
    example one per account) are fully independent.
    """

    def __init__(
        self,
        signal_repo: SignalRepository,
        account_repo: AccountRepository,
        trade_repo: TradeRepository,
        pipeline: OrderExecutionPipeline,
        reconciler: PortfolioReconciler,
        clock: Clock,
        evaluator: Optional[RiskEvaluator] = None,
        expiry_sweeper: Optional[SignalExpirySweeper] = None,
        poll_interval_seconds: float = 30.0,
        call_timeout_seconds: Optional[float] = 10.0,
        max_workers: int = 4,
        account_id: Optional[str] = None,
        scheduler_factory: Callable[..., Any] = BackgroundScheduler,
    ) -> None:
        self._signal_repo = signal_repo
        self._account_repo = account_repo
        self._trade_repo = trade_repo
        self._pipeline = pipeline
        self._reconciler = reconciler
        self._clock = clock
        self._evaluator = evaluator or RiskEvaluator(fee_rate=pipeline.fee_rate)
        self._sweeper = expiry_sweeper
        self._poll_interval = poll_interval_seconds
        self._call_timeout = call_timeout_seconds
        self._max_workers = max(1, max_workers)
        self._account_id = account_id
        self._scheduler_factory = scheduler_factory

        self._lock = threading.Lock()
        self._tick_lock = threading.Lock()
        self._state = LoopState.STOPPED
        self._limits: Optional[RiskLimits] = None
        self._scheduler: Optional[Any] = None
        self._job: Optional[Any] = None
        self._stop_generation = 0
        self._pending = 0
        self._halted: set[str] = set()
        self._ticks = 0
        self._last_tick_at: Optional[datetime] = None
        self._last_report: Optional[TickReport] = None

    @property
    def state(self) -> LoopState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state is LoopState.RUNNING

    @property
    def limits(self) -> Optional[RiskLimits]:
        return self._limits

    @property
    def last_report(self) -> Optional[TickReport]:
        return self._last_report

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @staticmethod
    def validate_limits(limits: RiskLimits) -> None:
        """Reject configurations the loop must not run with.

        Raises:
            InvalidConfigError: If any limit is out of range.
        """
        if not limits.allowed_symbols:
            raise InvalidConfigError("no trading symbols configured")
        if limits.min_confidence < MIN_START_CONFIDENCE:
            raise InvalidConfigError(
                f"minimum confidence must be at least {MIN_START_CONFIDENCE}"
            )
        if limits.min_confidence > 100:
            raise InvalidConfigError("minimum confidence cannot exceed 100")
        if limits.max_positions < 0:
            raise InvalidConfigError("max positions cannot be negative")
        if not Decimal("0") < limits.risk_per_trade_percent <= Decimal("100"):
            raise InvalidConfigError("risk per trade must be within (0, 100]")
        if limits.max_daily_loss_percent <= 0:
            raise InvalidConfigError("max daily loss must be positive")
        if limits.max_position_value <= 0:
            raise InvalidConfigError("max position value must be positive")

    def start(self, limits: RiskLimits) -> Any:
        """Validate ``limits`` and begin periodic ticking.

        The first tick runs immediately, then every poll interval.

        Returns:
            The scheduled job handle (cancelled by ``stop``).

        Raises:
            InvalidConfigError: On invalid limits, or if already running
                (changing limits requires stop and restart).
        """
        self.validate_limits(limits)

        with self._lock:
            if self._state is LoopState.RUNNING:
                raise InvalidConfigError(
                    "live trading already running; stop it before changing limits"
                )
            scheduler = self._scheduler_factory(
                timezone="UTC",
                job_defaults={"coalesce": True, "max_instances": 1},
            )
            job = scheduler.add_job(
                self._scheduled_tick,
                IntervalTrigger(seconds=self._poll_interval),
                id="live_trading_tick",
                name="Live trading tick",
                next_run_time=datetime.now(timezone.utc),
            )
            self._limits = limits
            self._halted.clear()
            self._state = LoopState.RUNNING
            self._scheduler = scheduler
            self._job = job
            scheduler.start()

        logger.info(
            "Live trading started: symbols=%s min_confidence=%s max_positions=%d "
            "risk_per_trade=%s%% interval=%.0fs",
            sorted(limits.allowed_symbols),
            limits.min_confidence,
            limits.max_positions,
            limits.risk_per_trade_percent,
            self._poll_interval,
        )
        return job

    def stop(self) -> None:
        """Stop ticking. Idempotent.

        A signal that is mid-execution completes; no further signal or
        tick is started afterwards.
        """
        with self._lock:
            self._stop_generation += 1
            if self._state is LoopState.STOPPED and self._scheduler is None:
                return
            self._state = LoopState.STOPPED
            job, scheduler = self._job, self._scheduler
            self._job = None
            self._scheduler = None

        if job is not None:
            try:
                job.remove()
            except JobLookupError:
                pass
        if scheduler is not None:
            scheduler.shutdown(wait=False)
        logger.info("Live trading stopped.")

    def status(self) -> LoopStatus:
        """Return the current loop status."""
        with self._lock:
            return LoopStatus(
                is_active=self._state is LoopState.RUNNING,
                queue_depth=self._pending,
                state=self._state,
                ticks=self._ticks,
                last_tick_at=self._last_tick_at,
                halted_accounts=tuple(sorted(self._halted)),
                limits=self._limits,
            )

    # ------------------------------------------------------------------
    # Ticks
    # ------------------------------------------------------------------

    def run_tick(self, limits: Optional[RiskLimits] = None) -> TickReport:
        """Run one tick synchronously.

        Args:
            limits: Limits to use; defaults to those passed to ``start``.

        Returns:
            The tick report.

        Raises:
            InvalidConfigError: If no limits are available or they are invalid.
            InvariantViolationError: If reconciliation broke an account's
                balance invariant. Other accounts finish first; the broken
                account stays halted until the next ``start``.
        """
        effective = limits or self._limits
        if effective is None:
            raise InvalidConfigError("no risk limits configured")
        self.validate_limits(effective)
        with self._lock:
            generation = self._stop_generation
        return self._run_tick(effective, generation)

    def _scheduled_tick(self) -> None:
        with self._lock:
            if self._state is not LoopState.RUNNING or self._limits is None:
                return
            limits, generation = self._limits, self._stop_generation
        try:
            self._run_tick(limits, generation)
        except InvariantViolationError:
            logger.critical(
                "Live trading halted accounts %s after an invariant violation",
                sorted(self._halted),
                exc_info=True,
            )
        except Exception:
            logger.exception("Live trading tick failed.")

    def _stop_requested(self, generation: int) -> bool:
        return self._stop_generation != generation

    def _run_tick(self, limits: RiskLimits, generation: int) -> TickReport:
        with self._tick_lock:
            now = self._clock.now()
            report = TickReport(started_at=now)
            report.expired = self._sweep()

            signals = call_with_timeout(
                "signals.list_active_eligible",
                self._signal_repo.list_active_eligible,
                limits,
                now,
                self._account_id,
                timeout=self._call_timeout,
            )
            groups = self._group_by_account(signals)
            report.eligible = sum(len(g) for g in groups.values())
            with self._lock:
                self._pending = report.eligible

            logger.info(
                "Tick: %d eligible signals across %d accounts (%d expired)",
                report.eligible,
                len(groups),
                report.expired,
            )

            violations: list[InvariantViolationError] = []
            try:
                if len(groups) <= 1 or self._max_workers == 1:
                    for account_id, group in groups.items():
                        self._collect(
                            report,
                            violations,
                            self._process_account(account_id, group, limits, generation),
                        )
                else:
                    workers = min(self._max_workers, len(groups))
                    with ThreadPoolExecutor(
                        max_workers=workers, thread_name_prefix="live-account"
                    ) as pool:
                        futures = [
                            pool.submit(
                                self._process_account, account_id, group, limits, generation
                            )
                            for account_id, group in groups.items()
                        ]
                        for future in as_completed(futures):
                            self._collect(report, violations, future.result())
            finally:
                with self._lock:
                    self._pending = 0
                    self._ticks += 1
                    self._last_tick_at = now
                report.finished_at = self._clock.now()
                report.interrupted = self._stop_requested(generation)
                self._last_report = report

            logger.info(
                "Tick done: executed=%d rejected=%d failed=%d skipped=%d errors=%d",
                report.count(OutcomeStatus.EXECUTED),
                report.count(OutcomeStatus.REJECTED),
                report.count(OutcomeStatus.FAILED),
                report.count(OutcomeStatus.SKIPPED),
                report.count(OutcomeStatus.ERROR),
            )

            if violations:
                raise violations[0]
            return report

    @staticmethod
    def _collect(
        report: TickReport,
        violations: list[InvariantViolationError],
        result: tuple[list[SignalOutcome], Optional[InvariantViolationError]],
    ) -> None:
        outcomes, violation = result
        report.outcomes.extend(outcomes)
        if violation is not None:
            violations.append(violation)
            if outcomes:
                report.halted_accounts.append(outcomes[-1].account_id)

    def _sweep(self) -> int:
        try:
            if self._sweeper is not None:
                return self._sweeper.sweep()
            return self._signal_repo.expire_due(self._clock.now())
        except Exception:
            logger.exception("Expiry sweep failed during tick.")
            return 0

    def _group_by_account(self, signals: list[Signal]) -> "OrderedDict[str, list[Signal]]":
        ordered = sorted(
            signals,
            key=lambda s: (-s.confidence, s.created_at or _EPOCH, str(s.id)),
        )
        groups: "OrderedDict[str, list[Signal]]" = OrderedDict()
        for signal in ordered:
            if signal.account_id in self._halted:
                continue
            groups.setdefault(signal.account_id, []).append(signal)
        return groups

    def _process_account(
        self,
        account_id: str,
        signals: list[Signal],
        limits: RiskLimits,
        generation: int,
    ) -> tuple[list[SignalOutcome], Optional[InvariantViolationError]]:
        outcomes: list[SignalOutcome] = []
        for index, signal in enumerate(signals):
            if self._stop_requested(generation):
                logger.info(
                    "Stop requested; leaving %d signals of account %s for later",
                    len(signals) - index,
                    account_id,
                )
                break
            try:
                outcomes.append(self._process_signal(signal, limits))
            except InvariantViolationError as exc:
                with self._lock:
                    self._halted.add(account_id)
                logger.critical(
                    "Halting account %s: %s", account_id, exc.message
                )
                outcomes.append(
                    SignalOutcome(
                        signal_id=signal.id,
                        account_id=account_id,
                        status=OutcomeStatus.HALTED,
                        reason=exc.code,
                        detail=exc.message,
                    )
                )
                return outcomes, exc
            finally:
                with self._lock:
                    self._pending = max(0, self._pending - 1)
        return outcomes, None

    def _process_signal(self, signal: Signal, limits: RiskLimits) -> SignalOutcome:
        try:
            return self._execute_signal(signal, limits)
        except InvariantViolationError:
            raise
        except CallTimeoutError as exc:
            logger.warning("Signal %s: %s", signal.id, exc.message)
            return self._outcome(signal, OutcomeStatus.FAILED, "TIMEOUT", exc.message)
        except Exception as exc:
            logger.exception("Signal %s processing error", signal.id)
            return self._outcome(signal, OutcomeStatus.ERROR, type(exc).__name__, str(exc))

    def _execute_signal(self, signal: Signal, limits: RiskLimits) -> SignalOutcome:
        if self._trade_repo.has_fill_for_signal(signal.id):
            self._mark_executed(signal)
            return self._outcome(signal, OutcomeStatus.EXECUTED, "ALREADY_FILLED")

        account = call_with_timeout(
            "accounts.get",
            self._account_repo.get,
            signal.account_id,
            timeout=self._call_timeout,
        )
        if account is None:
            logger.warning("Signal %s: no portfolio for account %s", signal.id, signal.account_id)
            return self._outcome(signal, OutcomeStatus.SKIPPED, "PORTFOLIO_NOT_FOUND")

        position: Optional[Trade] = None
        if signal.direction is Direction.SELL:
            position = self._trade_repo.find_open_position(signal.account_id, signal.symbol)
            if position is None:
                logger.info("Signal %s: no open %s position to sell", signal.id, signal.symbol)
                return self._outcome(signal, OutcomeStatus.SKIPPED, "NO_OPEN_POSITION")

        decision = self._evaluator.evaluate(
            signal,
            account,
            limits,
            position_quantity=position.quantity if position else None,
            closes_trade_id=position.id if position else None,
            as_of=self._clock.now().date(),
        )
        if isinstance(decision, RiskRejection):
            logger.info(
                "Signal %s rejected (%s): %s",
                signal.id,
                decision.reason.value,
                decision.detail,
            )
            return self._outcome(
                signal, OutcomeStatus.REJECTED, decision.reason.value, decision.detail
            )

        attempt = self._trade_repo.count_for_signal(signal.id) + 1
        result = self._pipeline.execute(decision, idempotency_key(signal.id, attempt))
        if isinstance(result, ExecutionFailure):
            return self._outcome(
                signal,
                OutcomeStatus.FAILED,
                result.reason.value,
                result.detail,
                trade_id=result.trade_id,
            )

        # A closing SELL holds the position's CLOSING claim from the pipeline.
        try:
            reconciled = self._reconciler.reconcile(
                signal.account_id,
                result,
                decision.side,
                entry_price=position.entry_price if position else None,
            )
        except Exception:
            if position is not None:
                self._trade_repo.release_close(position.id)
            raise
        if position is not None:
            self._close_position(position, result, reconciled.realized_pnl or ZERO)
            self._reconciler.refresh_sharpe_ratio(
                signal.account_id, self._trade_repo.list_closed(signal.account_id)
            )

        self._mark_executed(signal)
        return self._outcome(signal, OutcomeStatus.EXECUTED, trade_id=result.trade_id)

    def _close_position(
        self, position: Trade, result: ExecutionResult, realized_pnl: Decimal
    ) -> None:
        closed_at = self._clock.now()
        self._trade_repo.close(
            position.closed(
                exit_price=result.executed_price,
                realized_pnl=realized_pnl,
                fees=result.commission,
                closed_at=closed_at,
            )
        )
        sell_leg = self._trade_repo.get_by_id(result.trade_id)
        if sell_leg is not None and sell_leg.is_open:
            self._trade_repo.close(
                sell_leg.closed(
                    exit_price=result.executed_price,
                    realized_pnl=ZERO,
                    fees=ZERO,
                    closed_at=closed_at,
                )
            )

    def _mark_executed(self, signal: Signal) -> None:
        try:
            changed = call_with_timeout(
                "signals.set_status",
                self._signal_repo.set_status,
                signal.id,
                SignalStatus.EXECUTED,
                timeout=self._call_timeout,
            )
        except CallTimeoutError:
            logger.error(
                "Signal %s filled but not marked EXECUTED; it will be re-marked next tick",
                signal.id,
            )
            return
        if not changed:
            logger.warning("Signal %s was no longer ACTIVE when marking EXECUTED", signal.id)

    @staticmethod
    def _outcome(
        signal: Signal,
        status: OutcomeStatus,
        reason: Optional[str] = None,
        detail: str = "",
        trade_id: Optional[UUID] = None,
    ) -> SignalOutcome:
        return SignalOutcome(
            signal_id=signal.id,
            account_id=signal.account_id,
            status=status,
            reason=reason,
            detail=detail,
            trade_id=trade_id,
        )
