"""Command Queue: cola de comandos por actuador con ciclo de vida.

Los dispositivos no aceptan conexiones entrantes: hacen poll. Este
módulo es el ÚNICO que cambia ``actuator_commands.state``.

ESTADOS:
    pending ──poll──▶ dispatched ──ack──▶ acknowledged
       │                   └──sweep──▶ expired
       └──enqueue nuevo──▶ superseded

CONCURRENCIA:
- Cada transición es un UPDATE ... WHERE state = <origen> (compare-and-swap).
  Si dos transiciones compiten, la primera que commitea gana y la otra
  afecta 0 filas.
- enqueue serializa por actuador: su primera escritura es sobre la fila
  del actuador, que queda bloqueada hasta el commit.
- poll reclama con un único UPDATE que estampa un dispatch_token; solo
  se devuelven las filas con ese token, así que un comando se entrega a
  un solo poll.

Todas las operaciones corren en la transacción del caller (Session) y
no commitean. Tampoco reintentan: un timeout sale como
TransientStoreError y reintenta el cliente.
"""

from __future__ import annotations

import logging
import re
import uuid
from functools import partial
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, List, Optional, Union

from sqlalchemy import insert, select, update
from sqlalchemy.orm import Session

from common.clock import as_utc, utc_now
from common.config import get_settings
from common.schema import actuator_commands, actuators

from ..errors import (
    CommandNotFound,
    PreconditionFailed,
    UnknownActuator,
    ValidationError,
    translate_store_errors,
)
from ..ingest.reconciler import ActuatorStatus
from ..metrics import COMMAND_TRANSITIONS_TOTAL, POLL_BATCH_SIZE, count_on_commit, on_commit
from ..registry import DeviceRegistry, resolve_actuator
from .command_log import CommandLog
from .states import (
    Command,
    CommandAction,
    CommandState,
    TriggeredBy,
    required_source,
)

logger = logging.getLogger(__name__)

_PUMP_BINDING_RE = re.compile(r"^pump_(\d+)$")


def pump_binding(pump_id: Union[int, str]) -> str:
    """pump_id del API → binding del actuador (1 → "pump_1")."""
    if isinstance(pump_id, bool):
        raise ValidationError("pump_id must be an integer or a binding name")
    if isinstance(pump_id, int):
        if pump_id < 1:
            raise ValidationError("pump_id must be >= 1")
        return f"pump_{pump_id}"
    if isinstance(pump_id, str) and pump_id.strip():
        value = pump_id.strip()
        return f"pump_{value}" if value.isdigit() else value
    raise ValidationError("pump_id must be an integer or a binding name")


def pump_label(binding: Optional[str]) -> Union[int, str, None]:
    """Inverso de pump_binding: "pump_2" → 2, otros bindings tal cual."""
    if binding is None:
        return None
    match = _PUMP_BINDING_RE.match(binding)
    return int(match.group(1)) if match else binding


@dataclass
class EnqueueResult:
    command: Command
    superseded_ids: List[int] = field(default_factory=list)


@dataclass
class AckResult:
    command_id: int
    state: CommandState
    changed: bool


_COMMAND_COLUMNS = (
    actuator_commands.c.id,
    actuator_commands.c.actuator_id,
    actuator_commands.c.device_id,
    actuators.c.binding,
    actuator_commands.c.action,
    actuator_commands.c.duration_minutes,
    actuator_commands.c.state,
    actuator_commands.c.triggered_by,
    actuator_commands.c.created_at,
    actuator_commands.c.dispatched_at,
    actuator_commands.c.acknowledged_at,
    actuator_commands.c.expired_at,
    actuator_commands.c.superseded_at,
    actuator_commands.c.superseded_by,
)


def _select_commands():
    return select(*_COMMAND_COLUMNS).select_from(
        actuator_commands.join(actuators, actuators.c.id == actuator_commands.c.actuator_id)
    )


def _row_to_command(row: Any) -> Command:
    return Command(
        id=int(row.id),
        actuator_id=int(row.actuator_id),
        device_id=row.device_id,
        binding=row.binding,
        action=CommandAction(row.action),
        duration_minutes=row.duration_minutes,
        state=CommandState(row.state),
        triggered_by=TriggeredBy(row.triggered_by),
        created_at=as_utc(row.created_at),
        dispatched_at=as_utc(row.dispatched_at),
        acknowledged_at=as_utc(row.acknowledged_at),
        expired_at=as_utc(row.expired_at),
        superseded_at=as_utc(row.superseded_at),
        superseded_by=row.superseded_by,
    )


def _parse_action(action: Any) -> CommandAction:
    try:
        return CommandAction(action)
    except ValueError as e:
        raise ValidationError("action must be 'start' or 'stop'") from e


def _parse_triggered_by(triggered_by: Any) -> TriggeredBy:
    try:
        return TriggeredBy(triggered_by)
    except ValueError as e:
        raise ValidationError("triggered_by must be manual, scheduled or system") from e


class CommandQueue:
    def __init__(
        self,
        db: Session,
        *,
        registry: Optional[DeviceRegistry] = None,
        command_log: Optional[CommandLog] = None,
        ack_deadline_seconds: Optional[float] = None,
        log_mode: Optional[str] = None,
        default_duration_minutes: Optional[int] = None,
    ) -> None:
        settings = get_settings()
        self._db = db
        self._registry = registry or DeviceRegistry(db)
        self._log = command_log or CommandLog(db)
        self._ack_deadline = timedelta(
            seconds=(
                ack_deadline_seconds
                if ack_deadline_seconds is not None
                else settings.command_ack_deadline_seconds
            )
        )
        self._log_mode = log_mode or settings.command_log_mode
        self._default_duration = (
            default_duration_minutes
            if default_duration_minutes is not None
            else settings.default_pump_duration_minutes
        )

    # ------------------------------------------------------------------
    # enqueue
    # ------------------------------------------------------------------

    def enqueue(
        self,
        actuator_id: int,
        action: Union[str, CommandAction],
        duration_minutes: Optional[int] = None,
        triggered_by: Union[str, TriggeredBy] = TriggeredBy.MANUAL,
        now: Optional[datetime] = None,
    ) -> EnqueueResult:
        """Crea un comando pending y reemplaza el pending previo del actuador.

        Garantiza a lo sumo un pending por actuador. Con log_mode="enqueue"
        el ActuatorLog se escribe aquí mismo (log optimista: el comando
        queda registrado como emitido aunque el dispositivo nunca lo confirme).

        Raises:
            ValidationError: acción/duración/origen inválidos
            UnknownActuator: el actuador no existe
        """
        action = _parse_action(action)
        triggered_by = _parse_triggered_by(triggered_by)
        duration_minutes = self._normalize_duration(action, duration_minutes)
        now = as_utc(now) or utc_now()

        with translate_store_errors("enqueue"):
            # PASO 1: bloquear la fila del actuador (serializa enqueues concurrentes)
            locked = self._db.execute(
                update(actuators).where(actuators.c.id == actuator_id).values(updated_at=now)
            )
            if locked.rowcount == 0:
                raise UnknownActuator(f"Actuator {actuator_id} not found")

            device_id = self._db.execute(
                select(actuators.c.device_id).where(actuators.c.id == actuator_id)
            ).scalar_one()

            # PASO 2: reemplazar el pending anterior (si lo hay). Cada candidato
            # es un CAS propio: un poll que lo despachó entre el SELECT y el
            # UPDATE gana, y ese comando no cuenta como superseded.
            candidates = [
                int(r[0])
                for r in self._db.execute(
                    select(actuator_commands.c.id)
                    .where(actuator_commands.c.actuator_id == actuator_id)
                    .where(actuator_commands.c.state == CommandState.PENDING.value)
                ).all()
            ]
            superseded_ids = []
            for candidate in candidates:
                swapped = self._db.execute(
                    update(actuator_commands)
                    .where(actuator_commands.c.id == candidate)
                    .where(
                        actuator_commands.c.state
                        == required_source(CommandState.SUPERSEDED).value
                    )
                    .values(state=CommandState.SUPERSEDED.value, superseded_at=now)
                )
                if swapped.rowcount == 1:
                    superseded_ids.append(candidate)
                else:
                    logger.info(
                        "COMMAND_SUPERSEDE_LOST id=%s actuator=%s (already dispatched)",
                        candidate, actuator_id,
                    )

            # PASO 3: insertar el nuevo pending
            inserted = self._db.execute(
                insert(actuator_commands).values(
                    actuator_id=actuator_id,
                    device_id=device_id,
                    action=action.value,
                    duration_minutes=duration_minutes,
                    state=CommandState.PENDING.value,
                    triggered_by=triggered_by.value,
                    created_at=now,
                )
            )
            command_id = int(inserted.inserted_primary_key[0])

            if superseded_ids:
                self._db.execute(
                    update(actuator_commands)
                    .where(actuator_commands.c.id.in_(superseded_ids))
                    .where(actuator_commands.c.state == CommandState.SUPERSEDED.value)
                    .where(actuator_commands.c.superseded_by.is_(None))
                    .values(superseded_by=command_id)
                )

        if self._log_mode == "enqueue":
            self._log.record(
                actuator_id=actuator_id,
                command_id=command_id,
                action=action.value,
                duration_minutes=duration_minutes,
                triggered_by=triggered_by.value,
                timestamp=now,
            )

        count_on_commit(self._db, COMMAND_TRANSITIONS_TOTAL.labels(to=CommandState.PENDING.value))
        if superseded_ids:
            count_on_commit(
                self._db,
                COMMAND_TRANSITIONS_TOTAL.labels(to=CommandState.SUPERSEDED.value),
                len(superseded_ids),
            )
            logger.info(
                "COMMAND_SUPERSEDED actuator=%s old=%s new=%s",
                actuator_id, superseded_ids, command_id,
            )

        logger.info(
            "COMMAND_ENQUEUED id=%s actuator=%s device=%s action=%s duration=%s by=%s",
            command_id, actuator_id, device_id, action.value, duration_minutes,
            triggered_by.value,
        )
        return EnqueueResult(command=self.get(command_id), superseded_ids=superseded_ids)

    def enqueue_for_device(
        self,
        device_id: str,
        pump_id: Union[int, str],
        action: Union[str, CommandAction],
        duration_minutes: Optional[int] = None,
        triggered_by: Union[str, TriggeredBy] = TriggeredBy.MANUAL,
        *,
        account_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> EnqueueResult:
        """Resuelve (device_id, pump_id) → actuador y encola."""
        bindings = self._registry.resolve_device_for_account(device_id, account_id)
        binding = pump_binding(pump_id)
        actuator = resolve_actuator(bindings, binding)
        if actuator is None:
            raise UnknownActuator(f"Device {device_id} has no actuator {binding}")
        return self.enqueue(
            actuator.actuator_id,
            action,
            duration_minutes=duration_minutes,
            triggered_by=triggered_by,
            now=now,
        )

    def _normalize_duration(
        self, action: CommandAction, duration_minutes: Optional[int]
    ) -> Optional[int]:
        if duration_minutes is None:
            return self._default_duration if action == CommandAction.START else None
        if isinstance(duration_minutes, bool) or not isinstance(duration_minutes, int):
            raise ValidationError("duration_minutes must be an integer")
        if duration_minutes <= 0:
            raise ValidationError("duration_minutes must be positive")
        return duration_minutes

    # ------------------------------------------------------------------
    # poll
    # ------------------------------------------------------------------

    def poll(self, device_id: str, now: Optional[datetime] = None) -> List[Command]:
        """Entrega (y marca dispatched) todos los pending del dispositivo.

        Un poll repetido o concurrente nunca devuelve un comando ya
        entregado.
        """
        self._registry.resolve_device(device_id)
        now = as_utc(now) or utc_now()
        token = str(uuid.uuid4())

        with translate_store_errors("poll"):
            claimed = self._db.execute(
                update(actuator_commands)
                .where(actuator_commands.c.device_id == device_id)
                .where(
                    actuator_commands.c.state
                    == required_source(CommandState.DISPATCHED).value
                )
                .values(
                    state=CommandState.DISPATCHED.value,
                    dispatched_at=now,
                    dispatch_token=token,
                )
            )
            if claimed.rowcount == 0:
                on_commit(self._db, partial(POLL_BATCH_SIZE.observe, 0))
                return []

            rows = self._db.execute(
                _select_commands()
                .where(actuator_commands.c.dispatch_token == token)
                .order_by(actuator_commands.c.created_at, actuator_commands.c.id)
            ).all()

        commands = [_row_to_command(r) for r in rows]
        count_on_commit(
            self._db, COMMAND_TRANSITIONS_TOTAL.labels(to=CommandState.DISPATCHED.value), len(commands)
        )
        on_commit(self._db, partial(POLL_BATCH_SIZE.observe, len(commands)))
        logger.info(
            "COMMANDS_DISPATCHED device=%s count=%d ids=%s",
            device_id, len(commands), [c.id for c in commands],
        )
        return commands

    # ------------------------------------------------------------------
    # acknowledge
    # ------------------------------------------------------------------

    def acknowledge(
        self,
        command_id: int,
        now: Optional[datetime] = None,
        *,
        device_id: Optional[str] = None,
    ) -> AckResult:
        """dispatched → acknowledged.

        Un ack repetido (o sobre un comando que ya no está dispatched) es
        un no-op: el dispositivo puede reenviar acks sin consecuencias.

        Raises:
            CommandNotFound: id inexistente o de otro dispositivo
        """
        now = as_utc(now) or utc_now()
        try:
            self._transition(
                command_id,
                CommandState.ACKNOWLEDGED,
                device_id=device_id,
                acknowledged_at=now,
            )
        except PreconditionFailed as e:
            current = self.get(command_id, device_id=device_id)
            logger.info(
                "COMMAND_ACK_NOOP id=%s state=%s reason=%s", command_id, current.state.value, e
            )
            return AckResult(command_id=command_id, state=current.state, changed=False)

        command = self.get(command_id)
        self._apply_to_actuator(command, now)

        if self._log_mode == "ack":
            self._log.record(
                actuator_id=command.actuator_id,
                command_id=command.id,
                action=command.action.value,
                duration_minutes=command.duration_minutes,
                triggered_by=command.triggered_by.value,
                timestamp=now,
            )

        logger.info(
            "COMMAND_ACKNOWLEDGED id=%s device=%s action=%s",
            command.id, command.device_id, command.action.value,
        )
        return AckResult(command_id=command_id, state=CommandState.ACKNOWLEDGED, changed=True)

    def _apply_to_actuator(self, command: Command, now: datetime) -> None:
        """El ack confirma ejecución: reflejarla en el estado del actuador."""
        if command.action == CommandAction.START:
            values = {"status": ActuatorStatus.ACTIVE.value, "last_activated": now, "updated_at": now}
        else:
            values = {"status": ActuatorStatus.INACTIVE.value, "updated_at": now}
        with translate_store_errors("ack_actuator_status"):
            self._db.execute(
                update(actuators).where(actuators.c.id == command.actuator_id).values(**values)
            )

    def _transition(
        self,
        command_id: int,
        target: CommandState,
        *,
        device_id: Optional[str] = None,
        **values: Any,
    ) -> None:
        """CAS de un único comando hacia ``target``.

        Raises:
            CommandNotFound: el comando no existe (o no es del dispositivo)
            PreconditionFailed: el comando no está en el estado de origen
        """
        source = required_source(target)
        stmt = (
            update(actuator_commands)
            .where(actuator_commands.c.id == command_id)
            .where(actuator_commands.c.state == source.value)
        )
        if device_id is not None:
            stmt = stmt.where(actuator_commands.c.device_id == device_id)

        with translate_store_errors(f"transition_{target.value}"):
            result = self._db.execute(stmt.values(state=target.value, **values))

        if result.rowcount == 0:
            current = self.get(command_id, device_id=device_id)
            raise PreconditionFailed(
                f"Command {command_id} is {current.state.value}, expected {source.value}"
            )
        count_on_commit(self._db, COMMAND_TRANSITIONS_TOTAL.labels(to=target.value))

    # ------------------------------------------------------------------
    # expire
    # ------------------------------------------------------------------

    def expire(self, now: Optional[datetime] = None) -> int:
        """dispatched sin ack más allá del deadline → expired.

        No reintenta: volver a emitir es un enqueue explícito del operador.
        """
        now = as_utc(now) or utc_now()
        cutoff = now - self._ack_deadline

        with translate_store_errors("expire"):
            result = self._db.execute(
                update(actuator_commands)
                .where(
                    actuator_commands.c.state == required_source(CommandState.EXPIRED).value
                )
                .where(actuator_commands.c.dispatched_at < cutoff)
                .values(state=CommandState.EXPIRED.value, expired_at=now)
            )

        expired = int(result.rowcount or 0)
        if expired:
            count_on_commit(
                self._db, COMMAND_TRANSITIONS_TOTAL.labels(to=CommandState.EXPIRED.value), expired
            )
            logger.warning(
                "COMMANDS_EXPIRED count=%d deadline=%.0fs cutoff=%s",
                expired, self._ack_deadline.total_seconds(), cutoff.isoformat(),
            )
        return expired

    # ------------------------------------------------------------------
    # lecturas
    # ------------------------------------------------------------------

    def get(self, command_id: int, *, device_id: Optional[str] = None) -> Command:
        stmt = _select_commands().where(actuator_commands.c.id == command_id)
        if device_id is not None:
            stmt = stmt.where(actuator_commands.c.device_id == device_id)
        with translate_store_errors("get_command"):
            row = self._db.execute(stmt).first()
        if row is None:
            raise CommandNotFound(command_id)
        return _row_to_command(row)

    def pending_for_actuator(self, actuator_id: int) -> List[Command]:
        with translate_store_errors("pending_for_actuator"):
            rows = self._db.execute(
                _select_commands()
                .where(actuator_commands.c.actuator_id == actuator_id)
                .where(actuator_commands.c.state == CommandState.PENDING.value)
            ).all()
        return [_row_to_command(r) for r in rows]
