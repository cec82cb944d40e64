"""
Order number generation.

Order numbers look like ``RC202610180042``: a fixed prefix, the UTC date and
a zero-padded per-day sequence. The sequence comes from an atomic
upsert-and-increment on ``order_number_sequences`` executed by the database,
never from counting existing orders, so concurrent requests in one or many
processes cannot receive the same value.
"""

from datetime import date, datetime, timezone
from typing import Callable, Optional

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.logging import get_logger
from storefront.database.models.order_sequence import OrderNumberSequence
from storefront.services.orders.errors import OrderNumberExhaustedError
from storefront.services.orders.repository import OrderRepository

logger = get_logger(__name__)

SEQUENCE_WIDTH = 4
MAX_SEQUENCE = 10**SEQUENCE_WIDTH - 1

_UPSERT_DIALECTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


def format_order_number(prefix: str, day: date, sequence: int) -> str:
    """Render an order number from its parts."""
    return f"{prefix}{day:%Y%m%d}{sequence:0{SEQUENCE_WIDTH}d}"


class OrderNumberGenerator:
    """
    Produces unique, human-readable order numbers.

    Attributes:
        prefix: Fixed order number prefix
        max_attempts: Bounded retries when a value is already taken
    """

    def __init__(
        self,
        prefix: str = "RC",
        max_attempts: int = 5,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.prefix = prefix
        self.max_attempts = max_attempts
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def next_sequence(self, session: AsyncSession, day: date) -> int:
        """
        Atomically advance and return the counter for ``day``.

        The first call for a date inserts the row with value 1; later calls
        increment it in place.
        """
        dialect_name = session.get_bind().dialect.name
        insert = _UPSERT_DIALECTS.get(dialect_name)
        if insert is None:
            raise OrderNumberExhaustedError(
                "Order number counter is not supported on this database",
                dialect=dialect_name,
            )

        stmt = insert(OrderNumberSequence).values(sequence_date=day, last_value=1)
        stmt = stmt.on_conflict_do_update(
            index_elements=[OrderNumberSequence.sequence_date],
            set_={"last_value": OrderNumberSequence.last_value + 1},
        ).returning(OrderNumberSequence.last_value)

        result = await session.execute(stmt)
        return int(result.scalar_one())

    async def generate(self, session: AsyncSession) -> str:
        """
        Generate an order number inside the caller's atomic unit.

        A collision with an existing order cannot happen while the counter
        is the only source of numbers, but it is still checked; a taken value
        is skipped and the next one tried.

        Raises:
            OrderNumberExhaustedError: If no free number was found within
                ``max_attempts`` or the day's sequence space is used up
        """
        day = self._clock().astimezone(timezone.utc).date()
        repository = OrderRepository(session)

        for attempt in range(1, self.max_attempts + 1):
            sequence = await self.next_sequence(session, day)
            if sequence > MAX_SEQUENCE:
                raise OrderNumberExhaustedError(
                    "Daily order number sequence exhausted",
                    day=day.isoformat(),
                )

            candidate = format_order_number(self.prefix, day, sequence)
            if not await repository.order_number_exists(candidate):
                return candidate

            logger.warning(
                "Order number collision, retrying",
                order_number=candidate,
                attempt=attempt,
            )

        raise OrderNumberExhaustedError(
            "Could not generate a unique order number",
            attempts=self.max_attempts,
            day=day.isoformat(),
        )
