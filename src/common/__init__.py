"""Common utilities for the addon repository mirror."""

from .logger import setup_logger, get_logger
from .config import RegistryConfig, load_config, load_typed_config, parse_registry_config
from .context import ContextError, DeadlineExceeded, OperationCancelled, OperationContext
from .locks import ReadWriteLock

__all__ = [
    "ContextError",
    "DeadlineExceeded",
    "OperationCancelled",
    "OperationContext",
    "ReadWriteLock",
    "RegistryConfig",
    "get_logger",
    "load_config",
    "load_typed_config",
    "parse_registry_config",
    "setup_logger",
]
