from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, StrictBool, StrictFloat


class SensorDataIn(BaseModel):
    # Formato del firmware ESP32: sensores por canal físico, bombas por nombre
    device_id: str = Field(..., min_length=1, max_length=64)
    sensors: Dict[str, StrictFloat] = Field(..., min_length=1)
    actuators: Optional[Dict[str, StrictBool]] = None
    timestamp: Optional[datetime] = None


class SensorDataResult(BaseModel):
    success: bool = True
    stored_count: int
    skipped: List[str] = Field(default_factory=list)
    actuators_updated: List[str] = Field(default_factory=list)
    actuators_skipped: List[str] = Field(default_factory=list)


class PumpCommandIn(BaseModel):
    device_id: str = Field(..., min_length=1, max_length=64)
    pump_id: Union[int, str]
    action: Literal["start", "stop"]
    duration_minutes: Optional[int] = Field(default=None, gt=0)
    triggered_by: Literal["manual", "scheduled", "system"] = "manual"


class CommandOut(BaseModel):
    id: int
    pump_id: Union[int, str, None]
    action: str
    duration_minutes: Optional[int] = None
    state: str
    triggered_by: str
    created_at: datetime


class PumpCommandResult(BaseModel):
    success: bool = True
    command: CommandOut
    superseded: List[int] = Field(default_factory=list)


class PolledCommand(BaseModel):
    # Lo mínimo que necesita el firmware para ejecutar
    id: int
    pump_id: Union[int, str, None]
    action: str
    duration_minutes: Optional[int] = None


class PolledCommands(BaseModel):
    commands: List[PolledCommand] = Field(default_factory=list)


class AckIn(BaseModel):
    # Obligatorio: el ack solo aplica a comandos del propio dispositivo
    device_id: str = Field(..., min_length=1, max_length=64)


class AckResult(BaseModel):
    success: bool = True
    command_id: int
    state: str
    changed: bool


class CommandDetail(CommandOut):
    device_id: str
    actuator_id: int
    dispatched_at: Optional[datetime] = None
    acknowledged_at: Optional[datetime] = None
    expired_at: Optional[datetime] = None
    superseded_at: Optional[datetime] = None
    superseded_by: Optional[int] = None


class ActuatorLogOut(BaseModel):
    id: int
    actuator_id: int
    command_id: Optional[int] = None
    action: str
    duration_minutes: Optional[int] = None
    volume_ml: Optional[float] = None
    triggered_by: Optional[str] = None
    timestamp: datetime


class ErrorDetail(BaseModel):
    code: str
    message: str


class ErrorBody(BaseModel):
    success: bool = False
    error: ErrorDetail
