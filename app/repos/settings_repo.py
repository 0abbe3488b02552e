# app/repos/settings_repo.py
from sqlalchemy.orm import Session

from app.data.models.system_setting import SystemSettingModel


class SettingsRepo:
    def __init__(self, db: Session):
        self.db = db

    def get(self, key: str, default=None):
        row = self.db.get(SystemSettingModel, key)
        if row is None or row.value is None:
            return default
        return row.value

    def set(self, key: str, value) -> None:
        row = self.db.get(SystemSettingModel, key)
        if row is None:
            self.db.add(SystemSettingModel(key=key, value=value))
        else:
            row.value = value
        self.db.flush()
