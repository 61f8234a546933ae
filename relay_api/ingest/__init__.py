"""Ingesta de telemetría y reconciliación de estado de actuadores."""

from .reconciler import ActuatorStateReconciler, ActuatorStatus, ReconcileResult
from .telemetry import IngestResult, TelemetryIngestor

__all__ = [
    "ActuatorStateReconciler",
    "ActuatorStatus",
    "IngestResult",
    "ReconcileResult",
    "TelemetryIngestor",
]
