from sqlalchemy import Column, Integer, String, DateTime, Numeric, Boolean

from app.data.database import Base


class DiscountCodeModel(Base):
    __tablename__ = "discount_codes"

    id = Column(Integer, primary_key=True)
    code = Column(String, nullable=False, unique=True, index=True)
    description = Column(String, nullable=False, default="")

    kind = Column(String, nullable=False, default="percentage")  # percentage, fixed
    value = Column(Numeric(10, 2), nullable=False)
    min_order_amount = Column(Numeric(10, 2), nullable=False, default=0)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    usage_limit_per_user = Column(Integer, nullable=True)

    # exclusive kod wylacza automatyczne promocje
    exclusive = Column(Boolean, nullable=False, default=False)
    is_active = Column(Boolean, nullable=False, default=True)
