from datetime import datetime, timezone

from sqlalchemy import Column, Integer, String, DateTime, JSON

from app.data.database import Base


class AnonymousCartModel(Base):
    __tablename__ = "anonymous_carts"

    id = Column(Integer, primary_key=True)
    session_id = Column(String, nullable=False, unique=True, index=True)

    # lista {product_id, quantity, added_at}, patrz AnonymousCartEntry
    cart_data = Column(JSON, nullable=False, default=list)
    version = Column(Integer, nullable=False, default=1)

    last_accessed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
