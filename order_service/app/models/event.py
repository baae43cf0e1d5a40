from sqlalchemy import BigInteger, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from .base import OrderServiceBase


class EventRecord(OrderServiceBase):
    """
    Row of the shared events table.

    Order events live under ``#order_<email>`` partitions and product events
    under ``#product_<code>``. Rows are never updated in place; a write with an
    existing (pk, sk) replaces the row with identical content.
    """

    __tablename__ = "events"
    __table_args__ = (Index("email_index", "email", "sk"),)

    pk: Mapped[str] = mapped_column(String(320), primary_key=True)
    sk: Mapped[str] = mapped_column(String(200), primary_key=True)

    email: Mapped[str] = mapped_column(String(255), nullable=False)
    event_type: Mapped[str] = mapped_column(String(50), nullable=False)
    order_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    product_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    request_id: Mapped[str | None] = mapped_column(String(100), nullable=True)

    # Serialized JSON body, opaque to the store
    payload: Mapped[str] = mapped_column(Text, nullable=False)

    # Epoch milliseconds of the originating mutation
    created_at: Mapped[int] = mapped_column(BigInteger, nullable=False)
    # Absolute epoch seconds; NULL never expires
    ttl: Mapped[int | None] = mapped_column(BigInteger, nullable=True, index=True)
