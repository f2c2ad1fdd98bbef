"""
Adapter: Signal store.

Implements SignalRepository port.
Reads and writes the ``signals`` table through SQLAlchemy Core.
"""

import logging
from dataclasses import replace
from datetime import datetime, timezone
from typing import Optional
from uuid import UUID

from sqlalchemy import and_, insert, or_, select, update
from sqlalchemy.engine import Engine

from livetrader.domain.trading.entities import (
    Direction,
    RiskLimits,
    Signal,
    SignalStatus,
)
from livetrader.domain.trading.ports import SignalRepository
from livetrader.infrastructure.trading.tables import signals, to_utc

logger = logging.getLogger(__name__)


def _row_to_signal(row) -> Signal:
    return Signal(
        id=UUID(row.id),
        account_id=row.account_id,
        symbol=row.symbol,
        direction=Direction(row.direction),
        price=row.price,
        confidence=row.confidence,
        timeframe=row.timeframe,
        stop_loss=row.stop_loss,
        take_profit=row.take_profit,
        expires_at=to_utc(row.expires_at),
        status=SignalStatus(row.status),
        created_at=to_utc(row.created_at),
        updated_at=to_utc(row.updated_at),
    )


class SignalRepositoryAdapter(SignalRepository):
    """SQL adapter for the signals table."""

    def __init__(self, engine: Engine) -> None:
        self._engine = engine

    def save(self, signal: Signal) -> Signal:
        created = to_utc(signal.created_at) or datetime.now(timezone.utc)
        updated = to_utc(signal.updated_at) or created
        signal = replace(signal, created_at=created, updated_at=updated)
        with self._engine.begin() as conn:
            conn.execute(
                insert(signals).values(
                    id=str(signal.id),
                    account_id=signal.account_id,
                    symbol=signal.symbol,
                    direction=signal.direction.value,
                    price=signal.price,
                    confidence=signal.confidence,
                    timeframe=signal.timeframe,
                    stop_loss=signal.stop_loss,
                    take_profit=signal.take_profit,
                    status=signal.status.value,
                    expires_at=to_utc(signal.expires_at),
                    created_at=created,
                    updated_at=updated,
                )
            )
        logger.debug("Saved signal %s (%s %s)", signal.id, signal.direction.value, signal.symbol)
        return signal

    def get_by_id(self, signal_id: UUID) -> Optional[Signal]:
        with self._engine.connect() as conn:
            row = conn.execute(
                select(signals).where(signals.c.id == str(signal_id))
            ).fetchone()
        return _row_to_signal(row) if row else None

    def list_active_eligible(
        self,
        limits: RiskLimits,
        now: datetime,
        account_id: Optional[str] = None,
    ) -> list[Signal]:
        """Return ACTIVE, unexpired signals for allowed symbols above min confidence.

        Confidence is compared after loading because decimal columns are
        stored as text.
        """
        if not limits.allowed_symbols:
            return []

        query = select(signals).where(
            and_(
                signals.c.status == SignalStatus.ACTIVE.value,
                signals.c.symbol.in_(sorted(limits.allowed_symbols)),
                or_(signals.c.expires_at.is_(None), signals.c.expires_at > to_utc(now)),
            )
        )
        if account_id is not None:
            query = query.where(signals.c.account_id == account_id)

        with self._engine.connect() as conn:
            rows = conn.execute(query).fetchall()

        return [
            signal
            for signal in (_row_to_signal(r) for r in rows)
            if signal.confidence >= limits.min_confidence
        ]

    def set_status(self, signal_id: UUID, status: SignalStatus) -> bool:
        if not SignalStatus.ACTIVE.can_transition_to(status):
            return False
        with self._engine.begin() as conn:
            result = conn.execute(
                update(signals)
                .where(
                    and_(
                        signals.c.id == str(signal_id),
                        signals.c.status == SignalStatus.ACTIVE.value,
                    )
                )
                .values(status=status.value, updated_at=datetime.now(timezone.utc))
            )
        return result.rowcount == 1

    def expire_due(self, now: datetime) -> int:
        moment = to_utc(now)
        with self._engine.begin() as conn:
            result = conn.execute(
                update(signals)
                .where(
                    and_(
                        signals.c.status == SignalStatus.ACTIVE.value,
                        signals.c.expires_at.is_not(None),
                        signals.c.expires_at <= moment,
                    )
                )
                .values(status=SignalStatus.EXPIRED.value, updated_at=moment)
            )
        return result.rowcount or 0
