"""
Corporate action processing: SPLIT, MERGER and DELIST.

Each action rewrites historical rewards (and, for SPLIT and DELIST, price
history), appends a ledger marker entry and records the action, all in one
unit of work. Existing ledger amounts are never touched.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional
from uuid import uuid4

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from .db import SessionFactory, UnitOfWork
from .errors import UnsupportedActionError, ValidationError
from .models import Account, CorporateActionResult, CorporateActionType, EntryType, normalize_symbol
from .prices import DEFAULT_TIMEZONE, PriceStore
from .tables import CorporateActionRecord, LedgerEntry, Reward, as_utc, utcnow

DELISTED_NOTE = "DELISTED"

MARKER_ENTRY_TYPES = {
    CorporateActionType.SPLIT: EntryType.DEBIT,
    CorporateActionType.MERGER: EntryType.DEBIT,
    CorporateActionType.DELIST: EntryType.CREDIT,
}


@dataclass(frozen=True)
class CorporateActionCommand:
    action_type: CorporateActionType
    symbol: str
    ratio: Optional[Decimal] = None
    new_symbol: Optional[str] = None
    effective_date: Optional[datetime] = None

    @property
    def parameter(self) -> dict:
        return {
            "ratio": str(self.ratio) if self.ratio is not None else None,
            "new_symbol": self.new_symbol,
        }


def parse_action_type(value: Any) -> CorporateActionType:
    if isinstance(value, CorporateActionType):
        return value
    try:
        return CorporateActionType(str(value).strip().upper())
    except ValueError:
        raise UnsupportedActionError(f"Unsupported corporate action type: {value!r}")


def parse_ratio(value: Any) -> Decimal:
    if value is None:
        raise ValidationError("ratio is required")
    try:
        ratio = value if isinstance(value, Decimal) else Decimal(str(value))
    except (ArithmeticError, ValueError):
        raise ValidationError(f"ratio must be numeric, got {value!r}")
    if not ratio.is_finite() or ratio <= 0:
        raise ValidationError(f"invalid ratio {value!r}, must be greater than zero")
    return ratio


def build_command(
    action_type: Any,
    symbol: str,
    ratio: Any = None,
    new_symbol: Optional[str] = None,
    effective_date: Optional[datetime] = None,
) -> CorporateActionCommand:
    """Validate a corporate action request without touching the database."""
    action = parse_action_type(action_type)
    symbol = normalize_symbol(symbol, "symbol")

    if action == CorporateActionType.SPLIT:
        return CorporateActionCommand(action, symbol, ratio=parse_ratio(ratio), effective_date=effective_date)

    if action == CorporateActionType.MERGER:
        ratio = parse_ratio(ratio)
        if not (new_symbol or "").strip():
            raise ValidationError("new_symbol is required for MERGER")
        return CorporateActionCommand(
            action, symbol, ratio=ratio,
            new_symbol=normalize_symbol(new_symbol, "new_symbol"),
            effective_date=effective_date,
        )

    return CorporateActionCommand(action, symbol, effective_date=effective_date)


class CorporateActionService:
    def __init__(
        self,
        session_factory: SessionFactory,
        logger: Optional[logging.Logger] = None,
        tz_name: str = DEFAULT_TIMEZONE,
    ):
        self.session_factory = session_factory
        self.logger = logger or logging.getLogger(__name__)
        self.tz_name = tz_name
        self.handlers = {
            CorporateActionType.SPLIT: self._apply_split,
            CorporateActionType.MERGER: self._apply_merger,
            CorporateActionType.DELIST: self._apply_delist,
        }

    def apply(
        self,
        action_type: Any,
        symbol: str,
        ratio: Any = None,
        new_symbol: Optional[str] = None,
        effective_date: Optional[datetime] = None,
    ) -> CorporateActionResult:
        command = build_command(action_type, symbol, ratio, new_symbol, effective_date)
        effective_at = as_utc(command.effective_date) if command.effective_date else utcnow()

        with UnitOfWork(self.session_factory) as session:
            rewards_updated, prices_updated = self.handlers[command.action_type](session, command)
            self._append_marker(session, command)
            session.add(CorporateActionRecord(
                stock_symbol=command.symbol,
                action_type=command.action_type.value,
                parameter=command.parameter,
                effective_date=effective_at,
            ))

        self.logger.info(
            "Applied %s on %s (ratio=%s, new_symbol=%s)",
            command.action_type.value, command.symbol, command.ratio, command.new_symbol,
        )
        return CorporateActionResult(
            action_type=command.action_type,
            symbol=command.symbol,
            ratio=command.ratio,
            new_symbol=command.new_symbol,
            effective_date=effective_at,
            rewards_updated=rewards_updated,
            prices_updated=prices_updated,
        )

    def _apply_split(self, session: Session, command: CorporateActionCommand) -> tuple[int, int]:
        rewards = self._rewards_for(session, command.symbol)
        for reward in rewards:
            reward.quantity = reward.quantity * command.ratio
        session.flush()
        self.logger.info("Updated %d reward records for %s", len(rewards), command.symbol)

        prices_updated = PriceStore(session, self.tz_name).rescale(command.symbol, command.ratio)
        self.logger.info("Updated %d price records for %s", prices_updated, command.symbol)
        return len(rewards), prices_updated

    def _apply_merger(self, session: Session, command: CorporateActionCommand) -> tuple[int, int]:
        # Old-symbol price history stays as it is; new_symbol gets prices through normal ingestion.
        rewards = self._rewards_for(session, command.symbol)
        for reward in rewards:
            reward.stock_symbol = command.new_symbol
            reward.quantity = reward.quantity * command.ratio
        session.flush()
        self.logger.info(
            "Updated %d reward records for merger %s -> %s",
            len(rewards), command.symbol, command.new_symbol,
        )
        return len(rewards), 0

    def _apply_delist(self, session: Session, command: CorporateActionCommand) -> tuple[int, int]:
        # Overwrites any existing note.
        result = session.execute(
            update(Reward)
            .where(Reward.stock_symbol == command.symbol)
            .values(notes=DELISTED_NOTE)
            .execution_options(synchronize_session=False)
        )
        self.logger.info("Marked %d reward records as DELISTED for %s", result.rowcount, command.symbol)

        prices_removed = PriceStore(session, self.tz_name).purge(command.symbol)
        self.logger.info("Removed %d price records for %s", prices_removed, command.symbol)
        return result.rowcount, prices_removed

    def _append_marker(self, session: Session, command: CorporateActionCommand) -> None:
        session.add(LedgerEntry(
            tx_id=uuid4(),
            account=Account.corporate_action(command.action_type).code,
            entry_type=MARKER_ENTRY_TYPES[command.action_type].value,
            stock_symbol=command.symbol,
        ))

    @staticmethod
    def _rewards_for(session: Session, symbol: str) -> list[Reward]:
        return list(session.scalars(select(Reward).where(Reward.stock_symbol == symbol)))
