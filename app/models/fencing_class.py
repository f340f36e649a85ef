"""
Club and bookable class models.

Key design decisions:
- `price` is an integer in the smallest currency unit; 0 means a free class
- The managing party of a class is its coach, falling back to the club owner
- Only classes with status 'open' accept new checkouts
"""

from sqlalchemy import Column, Integer, String, ForeignKey, CheckConstraint
from sqlalchemy.orm import relationship

from app.db.base import Base, TimestampMixin


class Club(Base, TimestampMixin):
    __tablename__ = "clubs"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    owner_id = Column(Integer, ForeignKey("users.id"), nullable=True)

    classes = relationship("FencingClass", back_populates="club", lazy="raise")

    def __repr__(self) -> str:
        return f"<Club(id={self.id}, name={self.name})>"


class FencingClass(Base, TimestampMixin):
    __tablename__ = "fencing_classes"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(255), nullable=False)
    price = Column(Integer, nullable=False, default=0)
    status = Column(String(20), nullable=False, default="open")  # open, closed, cancelled
    coach_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    club_id = Column(Integer, ForeignKey("clubs.id"), nullable=True, index=True)

    club = relationship("Club", back_populates="classes", lazy="selectin")

    __table_args__ = (
        CheckConstraint("price >= 0", name="check_class_price_non_negative"),
        CheckConstraint("status IN ('open', 'closed', 'cancelled')", name="check_class_status"),
    )

    def __repr__(self) -> str:
        return f"<FencingClass(id={self.id}, title={self.title}, price={self.price}, status={self.status})>"
