import logging
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Optional
from uuid import UUID, uuid4

from sqlalchemy.exc import IntegrityError

from .db import SessionFactory, UnitOfWork
from .errors import DuplicateRequestError, PriceNotFoundError, ValidationError
from .models import Account, EntryType, Posting, RewardResult, ensure_balanced, normalize_symbol
from .prices import DEFAULT_TIMEZONE, PriceStore
from .tables import LedgerEntry, Reward, utcnow

BROKERAGE_RATE = Decimal("0.0002")
STT_RATE = Decimal("0.001")
GST_RATE = Decimal("0.18")

FOUR_PLACES = Decimal("0.0001")


def format_inr(amount: Decimal) -> str:
    return str(amount.quantize(FOUR_PLACES, rounding=ROUND_HALF_UP))


@dataclass(frozen=True)
class CostBreakdown:
    price: Decimal
    quantity: Decimal
    cost: Decimal
    brokerage: Decimal
    stt: Decimal
    gst: Decimal

    @property
    def total_fees(self) -> Decimal:
        return self.brokerage + self.stt + self.gst

    @property
    def total_cash_outflow(self) -> Decimal:
        return self.cost + self.total_fees


def compute_costs(price: Decimal, quantity: Decimal) -> CostBreakdown:
    cost = price * quantity
    brokerage = cost * BROKERAGE_RATE
    return CostBreakdown(
        price=price,
        quantity=quantity,
        cost=cost,
        brokerage=brokerage,
        stt=cost * STT_RATE,
        gst=brokerage * GST_RATE,
    )


def parse_quantity(value: Any) -> Decimal:
    if value is None or isinstance(value, bool):
        raise ValidationError("quantity is required")
    try:
        quantity = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError(f"quantity must be numeric, got {value!r}")
    if not quantity.is_finite():
        raise ValidationError(f"quantity must be finite, got {value!r}")
    if quantity <= 0:
        raise ValidationError("quantity must be greater than zero")
    return quantity


def parse_user_id(value: Any) -> UUID:
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except (TypeError, ValueError):
        raise ValidationError(f"user_id must be a UUID, got {value!r}")


def is_unique_violation(exc: IntegrityError) -> bool:
    message = str(exc.orig).lower()
    return "unique" in message or "duplicate" in message


class RewardLedgerService:
    """Records rewards together with their balanced ledger postings."""

    def __init__(
        self,
        session_factory: SessionFactory,
        logger: Optional[logging.Logger] = None,
        tz_name: str = DEFAULT_TIMEZONE,
    ):
        self.session_factory = session_factory
        self.logger = logger or logging.getLogger(__name__)
        self.tz_name = tz_name

    def record_reward(
        self,
        user_id: Any,
        stock_symbol: str,
        quantity: Any,
        idempotency_key: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> RewardResult:
        user_id = parse_user_id(user_id)
        stock_symbol = normalize_symbol(stock_symbol)
        quantity = parse_quantity(quantity)
        idempotency_key = (idempotency_key or "").strip() or None

        costs = compute_costs(self._current_price(stock_symbol), quantity)
        tx_id = uuid4()

        with UnitOfWork(self.session_factory) as session:
            reward = Reward(
                user_id=user_id,
                stock_symbol=stock_symbol,
                quantity=quantity,
                rewarded_at=utcnow(),
                idempotency_key=idempotency_key,
                notes=notes,
            )
            session.add(reward)
            try:
                session.flush()
            except IntegrityError as e:
                if idempotency_key and is_unique_violation(e):
                    self.logger.info("Duplicate reward for idempotency key %s, already processed", idempotency_key)
                    raise DuplicateRequestError(idempotency_key) from e
                raise

            self._post_ledger_entries(session, tx_id, reward.id, self._build_postings(stock_symbol, costs))

        self.logger.info(
            "Reward recorded: reward_id=%s user=%s stock=%s qty=%s tx_id=%s",
            reward.id, user_id, stock_symbol, quantity, tx_id,
        )
        return RewardResult(
            reward_id=reward.id,
            tx_id=tx_id,
            stock_symbol=stock_symbol,
            quantity=quantity,
            estimated_cost_inr=format_inr(costs.total_cash_outflow),
        )

    def _current_price(self, symbol: str) -> Decimal:
        with self.session_factory() as session:
            try:
                return PriceStore(session, self.tz_name).latest_price(symbol)
            except PriceNotFoundError:
                self.logger.warning("No price available for %s, recording reward at zero cost", symbol)
                return Decimal("0")

    def _build_postings(self, symbol: str, costs: CostBreakdown) -> list[Posting]:
        postings = [
            Posting(
                account=Account.stock(symbol),
                entry_type=EntryType.DEBIT,
                amount=costs.cost if costs.cost != 0 else None,
                stock_symbol=symbol,
                stock_quantity=costs.quantity,
            ),
            Posting(
                account=Account.cash(),
                entry_type=EntryType.CREDIT,
                amount=costs.total_cash_outflow,
                stock_symbol=symbol,
            ),
            Posting(
                account=Account.fees(),
                entry_type=EntryType.DEBIT,
                amount=costs.total_fees,
            ),
        ]
        ensure_balanced(postings)
        return postings

    def _post_ledger_entries(self, session, tx_id: UUID, reward_id: UUID, postings: list[Posting]) -> None:
        for posting in postings:
            session.add(LedgerEntry(
                tx_id=tx_id,
                account=posting.account.code,
                entry_type=posting.entry_type.value,
                amount_inr=posting.amount,
                stock_symbol=posting.stock_symbol,
                stock_quantity=posting.stock_quantity,
                ref_id=reward_id,
            ))
        session.flush()
