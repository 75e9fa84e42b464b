"""Transport contract: the messaging side of a bridge.

A transport carries transcript batches out and commands in. Concrete
transports (the built-in file mailbox, third-party plugins) are checked at
the boundary with ``validate_transport()`` instead of trusted to match.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Protocol, runtime_checkable

from termbridge.errors import TransportInitError

logger = logging.getLogger(__name__)

MessageHandler = Callable[[str, str], None]

REQUIRED_METHODS = ("init", "setup", "send_message", "on_message", "cleanup")


@dataclass(frozen=True)
class SetupResult:
    """Context a transport bound for one session."""

    context_id: str
    display_name: str


@runtime_checkable
class Transport(Protocol):
    """Protocol for messaging transports."""

    async def init(self) -> None: ...

    async def setup(self, instance_name: str) -> SetupResult:
        """Bind a context for ``instance_name`` and start receiving."""
        ...

    async def send_message(self, context_id: str, text: str) -> None: ...

    def on_message(self, handler: MessageHandler) -> None:
        """Register the handler called with ``(context_id, text)``."""
        ...

    async def cleanup(self) -> None: ...


def validate_transport(obj: Any) -> Transport:
    """Check ``obj`` provides every transport method.

    Raises:
        TransportInitError: naming the missing members.
    """
    missing = [name for name in REQUIRED_METHODS if not callable(getattr(obj, name, None))]
    if missing:
        raise TransportInitError(
            f"{type(obj).__name__} is not a transport, missing: {', '.join(missing)}"
        )
    return obj


def init_tips(transport: Any) -> list[str]:
    """The transport's optional ``get_init_tips()``, or an empty list."""
    getter = getattr(transport, "get_init_tips", None)
    if not callable(getter):
        return []
    try:
        return [str(tip) for tip in getter()]
    except Exception:
        logger.warning("get_init_tips() failed for %s", type(transport).__name__, exc_info=True)
        return []


def coerce_setup_result(value: Any) -> SetupResult:
    """Accept a SetupResult, a ``(context_id, display_name)`` tuple or a dict."""
    if isinstance(value, SetupResult):
        return value
    if isinstance(value, tuple) and len(value) == 2:
        return SetupResult(context_id=str(value[0]), display_name=str(value[1]))
    if isinstance(value, dict) and "context_id" in value:
        return SetupResult(
            context_id=str(value["context_id"]),
            display_name=str(value.get("display_name", value["context_id"])),
        )
    raise TransportInitError(f"setup() returned an unusable context: {value!r}")
