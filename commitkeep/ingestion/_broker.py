"""Broker resolution for the ingestion Dramatiq actor.

Decorating the actor binds it to whatever broker is global at import time.
``dramatiq.get_broker()`` falls back to a RabbitMQ broker when none was set,
which fails without the RabbitMQ client installed; local and test runs may
use a ``StubBroker`` instead.
"""

from __future__ import annotations

import os
import sys
import threading

import dramatiq
from dramatiq.brokers.stub import StubBroker

_TRUTHY = frozenset({"1", "true", "yes"})
_BROKER_LOCK = threading.Lock()


def stub_broker_allowed() -> bool:
    """Return True for test runs or when ``COMMITKEEP_ALLOW_STUB_BROKER`` is set."""
    flag = os.environ.get("COMMITKEEP_ALLOW_STUB_BROKER", "").strip().lower()
    return flag in _TRUTHY or "pytest" in sys.modules


def ensure_broker_configured() -> dramatiq.Broker:
    """Return the global broker, installing a ``StubBroker`` where allowed.

    Safe to call from several Dramatiq worker threads at once.

    Raises
    ------
    RuntimeError
        If no usable broker exists and a stub broker is not allowed.

    """
    with _BROKER_LOCK:
        try:
            return dramatiq.get_broker()
        except ImportError as exc:
            if not stub_broker_allowed():
                msg = (
                    "No Dramatiq broker configured. Set "
                    "COMMITKEEP_ALLOW_STUB_BROKER=1 for local runs or install "
                    "and configure a real broker."
                )
                raise RuntimeError(msg) from exc
            broker = StubBroker()
            dramatiq.set_broker(broker)
            return broker
