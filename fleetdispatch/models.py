from typing import Optional
from datetime import datetime, timezone
from dateutil import parser as dtparser
from sqlalchemy import Column, Index, String, Text
from sqlalchemy.types import TypeDecorator
from sqlmodel import SQLModel, Field

PENDING = "pending"
SENT = "sent"
EXECUTED = "executed"
COMMAND_STATUSES = (PENDING, SENT, EXECUTED)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UTCDateTime(TypeDecorator):
    """Timestamps kept as ISO-8601 UTC text.

    Older deployments wrote ISO strings (``...Z``) and ``CURRENT_TIMESTAMP``
    values into the same columns, so reads go through dateutil and naive
    values are taken as UTC.
    """

    impl = String(40)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if isinstance(value, str):
            value = dtparser.isoparse(value)
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc).isoformat(timespec="microseconds")

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if isinstance(value, datetime):
            ts = value
        else:
            ts = dtparser.isoparse(str(value))
        if ts.tzinfo is None:
            ts = ts.replace(tzinfo=timezone.utc)
        return ts


class Device(SQLModel, table=True):
    __tablename__ = "devices"

    id: Optional[int] = Field(default=None, primary_key=True)
    device_id: str = Field(sa_column=Column(String, unique=True, index=True, nullable=False))
    device_name: Optional[str] = None
    os_version: Optional[str] = None
    phone_number: Optional[str] = None
    battery_level: Optional[int] = None
    last_seen: datetime = Field(default_factory=utcnow, sa_column=Column(UTCDateTime, nullable=False))
    created_at: datetime = Field(default_factory=utcnow, sa_column=Column(UTCDateTime, nullable=False))


class Command(SQLModel, table=True):
    __tablename__ = "commands"
    __table_args__ = (
        Index("ix_commands_device_status", "device_id", "status"),
        # ids are never handed out twice, even after a device cascade delete
        {"sqlite_autoincrement": True},
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    device_id: str = Field(sa_column=Column(String, nullable=False))
    command_type: str = Field(sa_column=Column(String, nullable=False))
    command_data: str = Field(sa_column=Column(Text, nullable=False))  # JSON text, verbatim
    status: str = Field(default=PENDING, sa_column=Column(String, nullable=False, default=PENDING))  # pending|sent|executed
    created_at: datetime = Field(default_factory=utcnow, sa_column=Column(UTCDateTime, nullable=False))


class SmsLog(SQLModel, table=True):
    __tablename__ = "sms_logs"

    id: Optional[int] = Field(default=None, primary_key=True)
    device_id: str = Field(index=True)
    sender: str
    message_body: str = Field(sa_column=Column(Text, nullable=False))
    received_at: datetime = Field(default_factory=utcnow, sa_column=Column(UTCDateTime, nullable=False))


class FormSubmission(SQLModel, table=True):
    __tablename__ = "form_submissions"

    id: Optional[int] = Field(default=None, primary_key=True)
    device_id: str = Field(index=True)
    custom_data: str = Field(sa_column=Column(Text, nullable=False))
    submitted_at: datetime = Field(default_factory=utcnow, sa_column=Column(UTCDateTime, nullable=False))


class Setting(SQLModel, table=True):
    __tablename__ = "global_settings"

    setting_key: str = Field(primary_key=True)
    setting_value: Optional[str] = None


# rows removed by a device-wide delete
DEVICE_SCOPED = (Command, SmsLog, FormSubmission, Device)
