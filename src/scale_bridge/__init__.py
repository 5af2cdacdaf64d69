"""Scale Bridge - BLE kitchen scale reader."""

__version__ = "0.1.0"

from .bridge import ScaleBridge
from .classifier import ReadingClassifier
from .config import AppConfig, load_config
from .connection import ScaleConnection
from .logs import NdjsonLogger
from .models import ConnectionState, ConnectionStatus, FailureReason, Reading, UnitKind

__all__ = [
    "ScaleBridge",
    "ReadingClassifier",
    "AppConfig",
    "load_config",
    "ScaleConnection",
    "NdjsonLogger",
    "ConnectionState",
    "ConnectionStatus",
    "FailureReason",
    "Reading",
    "UnitKind",
]
