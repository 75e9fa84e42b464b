"""Messaging transports.

``create_transport()`` resolves a transport reference:

- ``"file"``: the built-in file mailbox
- ``"package.module:ClassName"``: a class importable from the environment
- ``"path/to/plugin.py"`` or ``"path/to/plugin.py:ClassName"``: a plugin
  file; without a class name the module's ``Transport`` attribute is used
"""

from __future__ import annotations

import importlib
import importlib.util
import logging
from pathlib import Path
from typing import Any

from termbridge.errors import TransportInitError
from termbridge.transport.base import (
    MessageHandler,
    SetupResult,
    Transport,
    init_tips,
    validate_transport,
)
from termbridge.transport.file import FileTransport

logger = logging.getLogger(__name__)

BUILTIN_TRANSPORTS: dict[str, type] = {
    "file": FileTransport,
}

DEFAULT_PLUGIN_CLASS = "Transport"


def create_transport(ref: str, options: dict[str, Any] | None = None) -> Transport:
    """Instantiate and validate the transport named by ``ref``.

    Raises:
        TransportInitError: unknown name, unloadable plugin or an object that
            does not implement the transport methods.
    """
    options = options or {}

    if ref in BUILTIN_TRANSPORTS:
        cls = BUILTIN_TRANSPORTS[ref]
    else:
        path_part, _, class_name = ref.partition(":")
        if path_part.endswith(".py"):
            cls = _load_from_file(Path(path_part), class_name or DEFAULT_PLUGIN_CLASS)
        elif class_name:
            cls = _load_from_module(path_part, class_name)
        else:
            raise TransportInitError(f"Unknown transport type: {ref}")

    try:
        transport = cls(**options)
    except Exception as e:
        raise TransportInitError(f"Failed to create transport {ref!r}: {e}") from e

    logger.debug("Created transport %s from %r", type(transport).__name__, ref)
    return validate_transport(transport)


def _load_from_module(module_name: str, class_name: str) -> type:
    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise TransportInitError(f"Cannot import transport module {module_name!r}: {e}") from e
    return _get_class(module, class_name, module_name)


def _load_from_file(path: Path, class_name: str) -> type:
    path = path.expanduser().resolve()
    if not path.is_file():
        raise TransportInitError(f"Custom transport file not found: {path}")

    module_name = f"termbridge_plugin_{path.stem}"
    spec = importlib.util.spec_from_file_location(module_name, path)
    if spec is None or spec.loader is None:
        raise TransportInitError(f"Cannot load transport plugin: {path}")
    module = importlib.util.module_from_spec(spec)
    try:
        spec.loader.exec_module(module)
    except Exception as e:
        raise TransportInitError(f"Failed to load custom transport {path}: {e}") from e
    return _get_class(module, class_name, str(path))


def _get_class(module: Any, class_name: str, origin: str) -> type:
    cls = getattr(module, class_name, None)
    if not isinstance(cls, type):
        raise TransportInitError(f"{origin} has no transport class {class_name!r}")
    return cls


__all__ = [
    "BUILTIN_TRANSPORTS",
    "FileTransport",
    "MessageHandler",
    "SetupResult",
    "Transport",
    "create_transport",
    "init_tips",
    "validate_transport",
]
