"""
Balance ledger service.

Customer balances are integer cents changed only through conditional
UPDATE statements. A debit succeeds only when the customer exists, is not
blocked and holds at least the amount, all checked in the same statement
that subtracts it. When nothing changed, the row is re-read to report why.
"""

from decimal import Decimal

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..exceptions import CustomerNotFound, IntegrityViolation, InvalidAmount
from ..models import Customer
from ..schemas import DebitFailure, DebitFailureReason, DebitResult, DebitSuccess
from ..utils.input_parsers import MAX_AMOUNT, from_cents, quantize_cents
from ..utils.logging import get_logger

logger = get_logger(__name__)


def amount_to_cents(amount: Decimal) -> int:
    """
    Validate a ledger amount and convert it to cents.

    Raises:
        InvalidAmount: If the amount is not positive, above MAX_AMOUNT or has
            sub-cent digits
    """
    amount = Decimal(amount)
    if amount <= 0 or amount > MAX_AMOUNT or quantize_cents(amount) != amount:
        raise InvalidAmount(amount)
    return int(amount * 100)


class BalanceLedgerService:
    """Atomic debit and credit of customer balances."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self.session_factory = session_factory

    async def debit(self, customer_ref: int, amount: Decimal) -> DebitResult:
        """
        Subtract an amount from a customer's balance.

        Blocked is reported before Insufficient, so a blocked customer with
        too little balance gets the blocked message.

        Args:
            customer_ref: Customer primary key
            amount: Positive amount with at most two decimals

        Returns:
            DebitSuccess with the new balance, or DebitFailure with a reason

        Raises:
            InvalidAmount: If amount is not positive, above MAX_AMOUNT or sub-cent
            IntegrityViolation: If the stored balance ends up negative
        """
        cents = amount_to_cents(amount)

        async with self.session_factory() as session:
            result = await session.execute(
                update(Customer)
                .where(
                    Customer.id == customer_ref,
                    Customer.is_blocked.is_(False),
                    Customer.balance_cents >= cents,
                )
                .values(balance_cents=Customer.balance_cents - cents)
                .execution_options(synchronize_session=False)
            )

            if (result.rowcount or 0) == 1:
                balance_result = await session.execute(
                    select(Customer.balance_cents).where(Customer.id == customer_ref)
                )
                new_balance_cents = balance_result.scalar_one()
                await session.commit()

                if new_balance_cents < 0:
                    raise IntegrityViolation(
                        "customer", customer_ref, "balance below zero after debit"
                    )

                logger.info(
                    "Balance debited",
                    extra={
                        "customer_ref": customer_ref,
                        "amount_cents": cents,
                        "balance_cents": new_balance_cents,
                    },
                )
                return DebitSuccess(
                    new_balance=from_cents(new_balance_cents), customer_ref=customer_ref
                )

            await session.rollback()
            row = (
                await session.execute(
                    select(Customer.is_blocked, Customer.balance_cents).where(
                        Customer.id == customer_ref
                    )
                )
            ).one_or_none()

        if row is None:
            reason = DebitFailureReason.NOT_FOUND
            current_balance = None
        else:
            is_blocked, balance_cents = row
            reason = (
                DebitFailureReason.BLOCKED if is_blocked else DebitFailureReason.INSUFFICIENT
            )
            current_balance = from_cents(balance_cents)

        logger.info(
            "Balance debit refused",
            extra={
                "customer_ref": customer_ref,
                "amount_cents": cents,
                "reason": reason.value,
            },
        )
        return DebitFailure(reason=reason, current_balance=current_balance)

    async def credit(self, customer_ref: int, amount: Decimal) -> Decimal:
        """
        Add an amount to a customer's balance.

        Args:
            customer_ref: Customer primary key
            amount: Positive amount with at most two decimals

        Returns:
            The new balance

        Raises:
            InvalidAmount: If amount is not positive, above MAX_AMOUNT or sub-cent
            CustomerNotFound: If the customer does not exist
        """
        cents = amount_to_cents(amount)

        async with self.session_factory() as session:
            result = await session.execute(
                update(Customer)
                .where(Customer.id == customer_ref)
                .values(balance_cents=Customer.balance_cents + cents)
                .execution_options(synchronize_session=False)
            )
            if (result.rowcount or 0) != 1:
                await session.rollback()
                raise CustomerNotFound(customer_ref)

            balance_result = await session.execute(
                select(Customer.balance_cents).where(Customer.id == customer_ref)
            )
            new_balance_cents = balance_result.scalar_one()
            await session.commit()

        logger.info(
            "Balance credited",
            extra={
                "customer_ref": customer_ref,
                "amount_cents": cents,
                "balance_cents": new_balance_cents,
            },
        )
        return from_cents(new_balance_cents)

    async def get_balance(self, customer_ref: int) -> Decimal:
        """
        Read a customer's current balance.

        Raises:
            CustomerNotFound: If the customer does not exist
        """
        async with self.session_factory() as session:
            result = await session.execute(
                select(Customer.balance_cents).where(Customer.id == customer_ref)
            )
            cents = result.scalar_one_or_none()
        if cents is None:
            raise CustomerNotFound(customer_ref)
        return from_cents(cents)
