from sqlalchemy import Column, String, JSON

from app.data.database import Base


class SystemSettingModel(Base):
    __tablename__ = "system_settings"

    key = Column(String, primary_key=True)
    value = Column(JSON, nullable=True)
