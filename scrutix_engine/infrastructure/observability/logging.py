"""Structured JSON logging for audit runs"""

import logging
import sys
from datetime import datetime
from typing import Any, Dict
from pythonjsonlogger import jsonlogger

from scrutix_engine.config import settings


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """Custom JSON formatter with timestamp and service metadata"""

    def add_fields(self, log_record: Dict[str, Any], record: logging.LogRecord, message_dict: Dict[str, Any]) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record["timestamp"] = datetime.utcnow().isoformat()
        log_record["level"] = record.levelname
        log_record["service"] = settings.service_name


def setup_logging(level: str | None = None) -> None:
    """Configure structured JSON logging"""
    logger = logging.getLogger()
    logger.setLevel(level or settings.log_level)

    # Remove existing handlers
    logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    formatter = CustomJsonFormatter(
        "%(timestamp)s %(level)s %(name)s %(message)s"
    )
    handler.setFormatter(formatter)
    logger.addHandler(handler)


def log_analysis_completed(
    analysis_id: str,
    client_id: str | None,
    status: str,
    anomaly_count: int,
    potential_savings: float,
    error_count: int,
    duration_ms: float,
) -> None:
    """Log structured analysis outcome"""
    logging.info(
        "Analysis completed",
        extra={
            "analysis_id": analysis_id,
            "client_id": client_id,
            "step": "analysis_complete",
            "status": status,
            "anomaly_count": anomaly_count,
            "potential_savings": potential_savings,
            "error_count": error_count,
            "duration_ms": duration_ms,
        },
    )


def log_detector_failure(analysis_id: str, detector_id: str, error: Exception) -> None:
    logging.error(
        "Detector failed",
        extra={
            "analysis_id": analysis_id,
            "step": "detector",
            "detector_id": detector_id,
            "error_type": type(error).__name__,
            "error": str(error),
        },
    )


def log_ai_batch_failure(module: str, batch_index: int, error: Exception) -> None:
    logging.warning(
        "AI batch failed",
        extra={
            "step": "ai_batch",
            "module": module,
            "batch_index": batch_index,
            "error_type": type(error).__name__,
            "error": str(error),
        },
    )
