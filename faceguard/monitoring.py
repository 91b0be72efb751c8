"""Monitoring utilities for camera, scanning and geofence health."""

from __future__ import annotations

import datetime as _dt
import logging
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from django.conf import settings

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

logger = logging.getLogger(__name__)


@dataclass
class _HealthState:
    """Mutable snapshot of the latest monitoring information."""

    camera_running: bool = False
    consumer_count: int = 0
    models_ready: bool = False
    last_model_error: Optional[str] = None
    last_camera_error: Optional[str] = None
    last_guard_status: Optional[str] = None
    stage_durations: Dict[str, float] = field(default_factory=dict)


_STATE = _HealthState()
_STATE_LOCK = threading.Lock()
_ALERTS: deque[Dict[str, Any]] = deque()

_THRESHOLD_SETTING_NAMES: Dict[str, str] = {
    "model_load": "FACEGUARD_MODEL_LOAD_ALERT_SECONDS",
    "scan": "FACEGUARD_SCAN_ALERT_SECONDS",
}

_DEFAULT_THRESHOLDS: Dict[str, float] = {
    "model_load": 4.0,
    "scan": 1.5,
}


def _max_alert_history() -> int:
    value = getattr(settings, "FACEGUARD_HEALTH_ALERT_HISTORY", 50)
    try:
        numeric = int(value)
    except (TypeError, ValueError):  # pragma: no cover - defensive
        numeric = 50
    return max(1, numeric)


def _now_timestamp() -> float:
    return time.time()


def _format_timestamp(ts: Optional[float]) -> Optional[str]:
    if ts is None:
        return None
    return _dt.datetime.fromtimestamp(ts, tz=_dt.timezone.utc).isoformat()


def _append_alert(
    event_type: str, severity: str, message: str, data: Optional[Dict[str, Any]] = None
) -> None:
    payload = {
        "timestamp": _format_timestamp(_now_timestamp()),
        "type": event_type,
        "severity": severity,
        "message": message,
        "data": data or {},
    }
    with _STATE_LOCK:
        _ALERTS.append(payload)
        max_alerts = _max_alert_history()
        while len(_ALERTS) > max_alerts:
            _ALERTS.popleft()


def _build_metrics() -> None:
    global REGISTRY
    global MODEL_LOAD_COUNTER
    global MODEL_LOAD_LATENCY
    global CAMERA_START_COUNTER
    global CAMERA_RUNNING_GAUGE
    global ACTIVE_CONSUMERS_GAUGE
    global FRAME_DROP_COUNTER
    global SCAN_OUTCOME_COUNTER
    global STAGE_DURATION_HISTOGRAM
    global SPOOF_COUNTER
    global GUARD_STATUS_COUNTER
    global ENROLLMENT_COUNTER
    global STORE_WRITE_FAILURE_COUNTER

    REGISTRY = CollectorRegistry(auto_describe=True)

    MODEL_LOAD_COUNTER = Counter(
        "faceguard_model_load",
        "Face model load attempts",
        labelnames=("status",),
        registry=REGISTRY,
    )
    MODEL_LOAD_LATENCY = Histogram(
        "faceguard_model_load_latency_seconds",
        "Face model load latency in seconds",
        buckets=(0.5, 1.0, 2.0, 4.0, 8.0, 16.0, 32.0),
        registry=REGISTRY,
    )
    CAMERA_START_COUNTER = Counter(
        "faceguard_camera_start",
        "Camera start attempts",
        labelnames=("status",),
        registry=REGISTRY,
    )
    CAMERA_RUNNING_GAUGE = Gauge(
        "faceguard_camera_running",
        "1 when the shared camera is actively capturing",
        registry=REGISTRY,
    )
    ACTIVE_CONSUMERS_GAUGE = Gauge(
        "faceguard_camera_consumers",
        "Number of active frame consumers",
        registry=REGISTRY,
    )
    FRAME_DROP_COUNTER = Counter(
        "faceguard_frame_drop",
        "Count of times the camera returned no frame",
        registry=REGISTRY,
    )
    SCAN_OUTCOME_COUNTER = Counter(
        "faceguard_scan_outcome",
        "Scan poll outcomes",
        labelnames=("outcome",),
        registry=REGISTRY,
    )
    STAGE_DURATION_HISTOGRAM = Histogram(
        "faceguard_stage_duration_seconds",
        "Duration of recognition stages",
        labelnames=("stage",),
        buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
        registry=REGISTRY,
    )
    SPOOF_COUNTER = Counter(
        "faceguard_gps_spoof_detected",
        "Location samples flagged as spoofed",
        registry=REGISTRY,
    )
    GUARD_STATUS_COUNTER = Counter(
        "faceguard_location_guard_status",
        "Location guard evaluations by resulting status",
        labelnames=("status",),
        registry=REGISTRY,
    )
    ENROLLMENT_COUNTER = Counter(
        "faceguard_enrollment",
        "Enrollment attempts by result",
        labelnames=("result",),
        registry=REGISTRY,
    )
    STORE_WRITE_FAILURE_COUNTER = Counter(
        "faceguard_store_write_failure",
        "Failed writes to attendance or worker stores",
        labelnames=("operation",),
        registry=REGISTRY,
    )


_build_metrics()


def reset_for_tests() -> None:
    """Reset in-memory state and metrics (intended for test suites)."""

    global _STATE
    with _STATE_LOCK:
        _STATE = _HealthState()
        _ALERTS.clear()
    _build_metrics()


def get_threshold(key: str) -> float:
    """Fetch the configured alert threshold for the supplied key."""

    if key not in _THRESHOLD_SETTING_NAMES:
        raise KeyError(f"Unknown threshold key: {key}")
    default = _DEFAULT_THRESHOLDS[key]
    value = getattr(settings, _THRESHOLD_SETTING_NAMES[key], default)
    try:
        return float(value)
    except (TypeError, ValueError):  # pragma: no cover - defensive
        return default


def _metric_value(name: str, labels: Optional[Dict[str, str]] = None) -> Optional[float]:
    labels = labels or {}
    sample = REGISTRY.get_sample_value(name, labels)
    if sample is None and name.endswith("_total"):
        sample = REGISTRY.get_sample_value(name.replace("_total", ""), labels)
    return sample


def record_model_load(success: bool, latency: Optional[float], error: Optional[str] = None) -> None:
    """Record a face model load attempt."""

    status = "success" if success else "failure"
    MODEL_LOAD_COUNTER.labels(status=status).inc()
    if latency is not None:
        MODEL_LOAD_LATENCY.observe(latency)
    with _STATE_LOCK:
        _STATE.models_ready = success
        _STATE.last_model_error = None if success else error

    log_extra = {"event": "model_load", "status": status, "latency_seconds": latency}
    if not success:
        message = "Face models unavailable"
        logger.error(message, extra={**log_extra, "error": error})
        _append_alert("model_load_failure", "error", message, {"error": error or "unknown"})
        return

    logger.info("Face models loaded", extra=log_extra)
    threshold = get_threshold("model_load")
    if latency is not None and latency > threshold:
        message = f"Model load latency {latency:.3f}s exceeded threshold {threshold:.3f}s"
        logger.warning(message, extra={**log_extra, "threshold": threshold})
        _append_alert("model_load_latency", "warning", message, {"latency": latency})


def record_camera_start(success: bool, error: Optional[str] = None) -> None:
    status = "success" if success else "failure"
    CAMERA_START_COUNTER.labels(status=status).inc()
    CAMERA_RUNNING_GAUGE.set(1 if success else 0)
    with _STATE_LOCK:
        _STATE.camera_running = success
        _STATE.last_camera_error = None if success else error
    if success:
        logger.info("Camera started", extra={"event": "camera_start", "status": status})
    else:
        message = "Failed to start camera"
        logger.error(message, extra={"event": "camera_start", "status": status, "error": error})
        _append_alert("camera_start_failure", "error", message, {"error": error or "unknown"})


def record_camera_stop() -> None:
    CAMERA_RUNNING_GAUGE.set(0)
    with _STATE_LOCK:
        _STATE.camera_running = False
    logger.info("Camera stopped", extra={"event": "camera_stop"})


def update_consumer_count(count: int) -> None:
    """Persist the active consumer count in metrics and in-memory state."""

    ACTIVE_CONSUMERS_GAUGE.set(count)
    with _STATE_LOCK:
        _STATE.consumer_count = count


def record_frame_drop() -> None:
    FRAME_DROP_COUNTER.inc()
    logger.debug("Camera returned no frame", extra={"event": "frame_drop"})


def record_scan_outcome(outcome: str) -> None:
    SCAN_OUTCOME_COUNTER.labels(outcome=outcome).inc()


def observe_stage_duration(
    stage: str, duration: float, *, threshold_key: Optional[str] = None
) -> None:
    """Record stage durations and emit alerts for slow executions."""

    STAGE_DURATION_HISTOGRAM.labels(stage=stage).observe(max(0.0, duration))
    with _STATE_LOCK:
        _STATE.stage_durations[stage] = duration
    if threshold_key:
        threshold = get_threshold(threshold_key)
        if duration > threshold:
            logger.warning(
                "Recognition stage '%s' exceeded threshold",
                stage,
                extra={
                    "event": "stage_duration",
                    "stage": stage,
                    "duration_seconds": duration,
                    "threshold": threshold,
                },
            )
            _append_alert(
                "stage_duration",
                "warning",
                f"Stage '{stage}' duration {duration:.3f}s exceeded {threshold:.3f}s",
                {"stage": stage, "duration": duration, "threshold": threshold},
            )


def record_guard_status(status: str) -> None:
    GUARD_STATUS_COUNTER.labels(status=status).inc()
    with _STATE_LOCK:
        _STATE.last_guard_status = status


def record_spoof_detected(reason: Optional[str], confidence: float) -> None:
    """Count a spoofed location sample and raise an alert."""

    SPOOF_COUNTER.inc()
    message = reason or "GPS spoofing detected"
    logger.warning(
        message,
        extra={"event": "gps_spoof", "severity": "warning", "confidence": confidence},
    )
    _append_alert("gps_spoof", "warning", message, {"confidence": confidence})


def record_enrollment(result: str) -> None:
    ENROLLMENT_COUNTER.labels(result=result).inc()


def record_store_write_failure(operation: str, error: Optional[str] = None) -> None:
    STORE_WRITE_FAILURE_COUNTER.labels(operation=operation).inc()
    _append_alert(
        "store_write_failure",
        "error",
        f"Store write '{operation}' failed",
        {"operation": operation, "error": error or "unknown"},
    )


def get_health_snapshot() -> Dict[str, Any]:
    """Return a serialisable snapshot of scanner health and alert history."""

    with _STATE_LOCK:
        camera = {
            "running": _STATE.camera_running,
            "consumers": _STATE.consumer_count,
            "last_error": _STATE.last_camera_error,
        }
        models = {"ready": _STATE.models_ready, "last_error": _STATE.last_model_error}
        stages = {
            stage: {"last_duration": duration} for stage, duration in _STATE.stage_durations.items()
        }
        guard_status = _STATE.last_guard_status
        alerts = list(_ALERTS)
    metrics = {
        "spoof_total": _metric_value("faceguard_gps_spoof_detected_total") or 0,
        "frame_drop_total": _metric_value("faceguard_frame_drop_total") or 0,
        "enrollment": {
            "registered": _metric_value("faceguard_enrollment_total", {"result": "registered"})
            or 0,
            "duplicate": _metric_value("faceguard_enrollment_total", {"result": "duplicate"})
            or 0,
        },
    }
    return {
        "camera": camera,
        "models": models,
        "guard_status": guard_status,
        "stages": stages,
        "alerts": alerts,
        "metrics": metrics,
    }


def export_metrics() -> bytes:
    """Serialise the Prometheus metrics registry."""

    return generate_latest(REGISTRY)


def prometheus_content_type() -> str:
    return CONTENT_TYPE_LATEST


__all__ = [
    "export_metrics",
    "get_health_snapshot",
    "get_threshold",
    "observe_stage_duration",
    "prometheus_content_type",
    "record_camera_start",
    "record_camera_stop",
    "record_enrollment",
    "record_frame_drop",
    "record_guard_status",
    "record_model_load",
    "record_scan_outcome",
    "record_spoof_detected",
    "record_store_write_failure",
    "reset_for_tests",
    "update_consumer_count",
]
