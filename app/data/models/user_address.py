from sqlalchemy import Column, Integer, ForeignKey, String, Boolean, Text

from app.data.database import Base


class UserAddressModel(Base):
    __tablename__ = "user_addresses"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    label = Column(String, nullable=False, default="Checkout Address")
    street_address = Column(String, nullable=False)
    city = Column(String, nullable=False)
    state = Column(String, nullable=False)
    zip_code = Column(String, nullable=False)
    delivery_instructions = Column(Text, nullable=True)

    is_default = Column(Boolean, nullable=False, default=False)
    is_active = Column(Boolean, nullable=False, default=True)

    def one_line(self) -> str:
        return f"{self.street_address}, {self.city}, {self.state} {self.zip_code}"
