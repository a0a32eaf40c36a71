from datetime import datetime
from pydantic import BaseModel
from typing import Any

class RegisterRequest(BaseModel):
    device_id: str
    device_name: str | None = None
    os_version: str | None = None
    phone_number: str | None = None
    battery_level: int | None = None

class DeviceOut(BaseModel):
    device_id: str
    device_name: str | None
    os_version: str | None
    phone_number: str | None
    battery_level: int | None
    is_online: bool
    last_seen: datetime | None
    created_at: datetime

class CommandRequest(BaseModel):
    device_id: str
    command_type: str
    command_data: Any = None

class CommandOut(BaseModel):
    id: int
    device_id: str
    command_type: str
    command_data: Any
    status: str
    created_at: datetime

class SmsRequest(BaseModel):
    sender: str
    message_body: str

class SmsOut(BaseModel):
    id: int
    device_id: str
    sender: str
    message_body: str
    received_at: datetime

class FormRequest(BaseModel):
    custom_data: Any

class SmsForwardConfig(BaseModel):
    forward_number: str | None = None

class TelegramConfig(BaseModel):
    telegram_bot_token: str | None = None
    telegram_chat_id: str | None = None
