"""
Command Queue

Operators enqueue commands for a single device; that device's polling agent
claims everything pending in one atomic step and later reports each command
as executed.

    pending --claim--> sent --report--> executed

All coordination happens inside storage transactions: the engine keeps no
in-process state besides the Database it was given.
"""

import json
import logging
from typing import Any, List, Optional

from sqlalchemy import delete
from sqlmodel import Session, select

from .db import Database
from .errors import DeserializationError, NotFound, ValidationError
from .models import COMMAND_STATUSES, DEVICE_SCOPED, EXECUTED, PENDING, SENT, Command
from .schemas import CommandOut

log = logging.getLogger("fleet.queue")


def _require(value: Any, name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{name} is required")
    return value


def _decode(row: Command) -> CommandOut:
    # one corrupt payload must not block delivery of the rest of the batch
    try:
        data = json.loads(row.command_data)
    except (TypeError, ValueError) as exc:
        err = DeserializationError(row.id, row.command_data, str(exc))
        log.warning("%s; delivering raw text", err)
        data = err.raw
    return CommandOut(
        id=row.id,
        device_id=row.device_id,
        command_type=row.command_type,
        command_data=data,
        status=row.status,
        created_at=row.created_at,
    )


class CommandQueue:
    """Lifecycle operations on queued device commands"""

    def __init__(self, db: Database):
        self.db = db

    def enqueue(self, device_id: str, command_type: str, payload: Any, timeout: Optional[float] = None) -> int:
        """
        Queue a command for a device

        Args:
            device_id: Target device. It does not have to be registered yet.
            command_type: Free-form tag interpreted by the agent
            payload: Any JSON-serializable value, stored and returned verbatim
            timeout: Optional deadline in seconds for the storage call

        Returns:
            The new command id
        """
        _require(device_id, "device_id")
        _require(command_type, "command_type")
        try:
            data = json.dumps(payload, allow_nan=False)
        except (TypeError, ValueError) as exc:
            raise ValidationError(f"command_data is not JSON serializable: {exc}") from exc

        def work(session: Session) -> int:
            cmd = Command(device_id=device_id, command_type=command_type, command_data=data, status=PENDING)
            session.add(cmd)
            session.flush()
            return cmd.id

        command_id = self.db.run(work, timeout)
        log.info("queued command %s (%s) for %s", command_id, command_type, device_id)
        return command_id

    def claim_pending(self, device_id: str, timeout: Optional[float] = None) -> List[CommandOut]:
        """
        Hand every pending command of a device to its agent

        Pending rows are selected oldest first (ties broken by id), locked,
        flipped to 'sent' and returned in the same transaction, so concurrent
        polls of one device never receive the same command twice. Commands
        queued after the select wait for the next poll.
        """
        _require(device_id, "device_id")

        def work(session: Session) -> List[CommandOut]:
            rows = session.exec(
                select(Command)
                .where(Command.device_id == device_id, Command.status == PENDING)
                .order_by(Command.created_at.asc(), Command.id.asc())
                .with_for_update(skip_locked=True)
            ).all()
            for row in rows:
                row.status = SENT
                session.add(row)
            return [_decode(row) for row in rows]

        claimed = self.db.run(work, timeout)
        if claimed:
            log.info("device %s claimed %d command(s): %s", device_id, len(claimed), [c.id for c in claimed])
        return claimed

    def mark_executed(self, command_id: int, timeout: Optional[float] = None) -> None:
        """Mark a command executed. Repeated reports are accepted; unknown ids raise NotFound."""

        def work(session: Session) -> None:
            cmd = session.get(Command, command_id, with_for_update=True)
            if cmd is None:
                raise NotFound(f"Command {command_id} not found.")
            if cmd.status != EXECUTED:
                cmd.status = EXECUTED
                session.add(cmd)

        self.db.run(work, timeout)
        log.info("command %s executed", command_id)

    def delete_device_data(self, device_id: str, timeout: Optional[float] = None) -> bool:
        """
        Remove a device with all of its commands, SMS logs and form submissions

        Everything goes in one transaction. Returns False when there was
        nothing to remove.
        """
        _require(device_id, "device_id")

        def work(session: Session) -> int:
            removed = 0
            for model in DEVICE_SCOPED:
                result = session.exec(delete(model).where(model.device_id == device_id))
                removed += result.rowcount
            return removed

        removed = self.db.run(work, timeout)
        log.info("deleted device %s (%d row(s))", device_id, removed)
        return removed > 0

    def get_command(self, command_id: int) -> CommandOut:
        def work(session: Session) -> CommandOut:
            cmd = session.get(Command, command_id)
            if cmd is None:
                raise NotFound(f"Command {command_id} not found.")
            return _decode(cmd)

        return self.db.run(work)

    def list_commands(
        self, device_id: Optional[str] = None, status: Optional[str] = None, limit: int = 200
    ) -> List[CommandOut]:
        """Operator view of the queue. Unlike claim_pending this changes nothing."""
        if status is not None and status not in COMMAND_STATUSES:
            raise ValidationError(f"status must be one of {', '.join(COMMAND_STATUSES)}")

        def work(session: Session) -> List[CommandOut]:
            stmt = select(Command)
            if device_id:
                stmt = stmt.where(Command.device_id == device_id)
            if status:
                stmt = stmt.where(Command.status == status)
            stmt = stmt.order_by(Command.created_at.asc(), Command.id.asc()).limit(limit)
            return [_decode(row) for row in session.exec(stmt).all()]

        return self.db.run(work)
