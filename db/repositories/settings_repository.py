from db.models.settings import Settings
from sqlalchemy.orm import Session
from typing import Optional
import os


class SettingsRepository:
    def __init__(self, db: Session):
        self.db = db

    def get_setting(self, key: str, default: Optional[str] = None) -> Optional[str]:
        """Get a setting value, preferring environment variable over database"""
        env_value = os.getenv(key)
        if env_value is not None:
            return env_value

        setting = self.db.query(Settings).filter(Settings.key == key).first()
        if setting and setting.value is not None:
            return setting.value
        return default

    def is_verification_configured(self) -> bool:
        """Check if at least one block-explorer API key is available"""
        return any(
            self.get_setting(key) for key in ["BASESCAN_API_KEY", "BASESCAN_SEPOLIA_API_KEY"]
        )
