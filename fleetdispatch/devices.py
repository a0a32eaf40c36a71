import json
import logging
from datetime import datetime
from typing import Any, List, Optional

from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlmodel import Session, select

from .db import Database
from .errors import NotFound, ValidationError
from .liveness import is_online
from .models import Device, FormSubmission, SmsLog, utcnow
from .schemas import DeviceOut

log = logging.getLogger("fleet.devices")

# overwritten on every registration call
MUTABLE_FIELDS = ("device_name", "os_version", "phone_number", "battery_level", "last_seen")


class DeviceRegistry:
    """Device check-ins, the device listing and passive telemetry."""

    def __init__(self, db: Database):
        self.db = db

    def register(
        self,
        device_id: str,
        device_name: Optional[str] = None,
        os_version: Optional[str] = None,
        phone_number: Optional[str] = None,
        battery_level: Optional[int] = None,
    ) -> bool:
        """Upsert a device and advance its heartbeat. Returns True when the device is new."""
        if not isinstance(device_id, str) or not device_id.strip():
            raise ValidationError("device_id is required")
        now = utcnow()
        insert = pg_insert if self.db.dialect == "postgresql" else sqlite_insert

        def work(session: Session) -> bool:
            stmt = insert(Device.__table__).values(
                device_id=device_id,
                device_name=device_name,
                os_version=os_version,
                phone_number=phone_number,
                battery_level=battery_level,
                last_seen=now,
                created_at=now,
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=["device_id"],
                set_={name: stmt.excluded[name] for name in MUTABLE_FIELDS},
            )
            session.exec(stmt)
            # created_at only takes our timestamp when this call inserted the row
            created_at = session.exec(select(Device.created_at).where(Device.device_id == device_id)).one()
            return created_at == now

        created = self.db.run(work)
        log.info("%s device %s", "registered" if created else "heartbeat from", device_id)
        return created

    def list_devices(self, now: Optional[datetime] = None) -> List[DeviceOut]:
        """All devices, oldest first, with liveness evaluated against ``now``."""
        now = now or utcnow()

        def work(session: Session) -> List[Device]:
            return session.exec(select(Device).order_by(Device.created_at.asc(), Device.id.asc())).all()

        return [
            DeviceOut(
                device_id=d.device_id,
                device_name=d.device_name,
                os_version=d.os_version,
                phone_number=d.phone_number,
                battery_level=d.battery_level,
                is_online=is_online(d.last_seen, now),
                last_seen=d.last_seen,
                created_at=d.created_at,
            )
            for d in self.db.run(work)
        ]

    def log_sms(self, device_id: str, sender: str, message_body: str) -> int:
        if not sender or message_body is None:
            raise ValidationError("sender and message_body are required")

        def work(session: Session) -> int:
            row = SmsLog(device_id=device_id, sender=sender, message_body=message_body)
            session.add(row)
            session.flush()
            return row.id

        return self.db.run(work)

    def list_sms(self, device_id: str, limit: int = 200) -> List[SmsLog]:
        def work(session: Session) -> List[SmsLog]:
            stmt = (
                select(SmsLog)
                .where(SmsLog.device_id == device_id)
                .order_by(SmsLog.received_at.desc(), SmsLog.id.desc())
                .limit(limit)
            )
            return session.exec(stmt).all()

        return self.db.run(work)

    def delete_sms(self, sms_id: int) -> None:
        def work(session: Session) -> None:
            row = session.get(SmsLog, sms_id)
            if row is None:
                raise NotFound("SMS not found.")
            session.delete(row)

        self.db.run(work)
        log.info("deleted sms %s", sms_id)

    def submit_form(self, device_id: str, custom_data: Any) -> int:
        if custom_data is None:
            raise ValidationError("custom_data is required")
        # strings are stored as sent; anything structured as JSON text
        data = custom_data if isinstance(custom_data, str) else json.dumps(custom_data)

        def work(session: Session) -> int:
            row = FormSubmission(device_id=device_id, custom_data=data)
            session.add(row)
            session.flush()
            return row.id

        return self.db.run(work)
