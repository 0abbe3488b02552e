from sqlalchemy import Column, Integer, String, Numeric, Boolean
from sqlalchemy.orm import relationship

from app.data.database import Base


class StoreModel(Base):
    __tablename__ = "stores"

    id = Column(Integer, primary_key=True)
    name = Column(String, nullable=False)

    #null = uzyj globalnej oplaty z system_settings
    delivery_fee = Column(Numeric(8, 2), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)

    products = relationship("ProductModel", back_populates="store")
