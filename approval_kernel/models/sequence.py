"""Counter rows backing SequenceService."""

from sqlalchemy import BigInteger, String
from sqlalchemy.orm import Mapped, mapped_column

from approval_kernel.db.base import Base


class SequenceCounter(Base):
    """
    Named monotonic counter.

    Row-level locking on this table serializes allocations.
    """

    __tablename__ = "sequence_counters"

    name: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)

    current_value: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
