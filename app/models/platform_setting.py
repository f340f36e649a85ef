"""
Platform fee configuration row. Admin CRUD lives elsewhere; payments only
read the row with code 'default'.
"""

from sqlalchemy import Column, Integer, String, Float

from app.db.base import Base, TimestampMixin


class PlatformSetting(Base, TimestampMixin):
    __tablename__ = "platform_settings"

    id = Column(Integer, primary_key=True, index=True)
    code = Column(String(50), nullable=False, unique=True)
    class_fee_rate = Column(Float, nullable=False, default=0.1)
    lesson_fee_rate = Column(Float, nullable=False, default=0.1)
    market_fee_rate = Column(Float, nullable=False, default=0.05)
