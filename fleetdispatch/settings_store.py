from typing import Dict, Iterable, Optional

from sqlmodel import Session, select

from .db import Database
from .models import Setting

SMS_FORWARD_NUMBER = "sms_forward_number"
TELEGRAM_BOT_TOKEN = "telegram_bot_token"
TELEGRAM_CHAT_ID = "telegram_chat_id"


class SettingsStore:
    """Flat key/value settings shared by every device."""

    def __init__(self, db: Database):
        self.db = db

    def get(self, key: str) -> Optional[str]:
        return self.get_many([key]).get(key)

    def get_many(self, keys: Iterable[str]) -> Dict[str, Optional[str]]:
        keys = list(keys)

        def work(session: Session) -> Dict[str, Optional[str]]:
            rows = session.exec(select(Setting).where(Setting.setting_key.in_(keys))).all()
            found = {r.setting_key: r.setting_value for r in rows}
            return {k: found.get(k) for k in keys}

        return self.db.run(work)

    def set(self, key: str, value: Optional[str]) -> None:
        self.set_many({key: value})

    def set_many(self, values: Dict[str, Optional[str]]) -> None:
        """Write several settings in one transaction."""

        def work(session: Session) -> None:
            for key, value in values.items():
                session.merge(Setting(setting_key=key, setting_value=value))

        self.db.run(work)
