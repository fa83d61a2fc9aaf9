# src/edcprobe/engine/context.py
"""Explicit context handed to every step.

Replaces module-level globals: a step reaches settings, state, the HTTP
client, diagnostics and the event bus only through this object, so tests
can build one around a mocked transport and a temporary directory.
"""

from __future__ import annotations

from dataclasses import dataclass

import httpx

from edcprobe.client.http import AuthenticatedClient
from edcprobe.core.config import HarnessSettings
from edcprobe.core.diagnostics import DiagnosticsSink
from edcprobe.core.events import EventBus, EventBusProtocol
from edcprobe.core.state import StateStore, TestState


@dataclass
class HarnessContext:
    settings: HarnessSettings
    store: StateStore
    client: AuthenticatedClient
    sink: DiagnosticsSink
    bus: EventBusProtocol

    @classmethod
    def build(
        cls,
        settings: HarnessSettings,
        *,
        echo: bool = True,
        bus: EventBusProtocol | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> HarnessContext:
        store = StateStore(settings.state_path)
        sink = DiagnosticsSink(settings.diagnostics_path, echo=echo)
        client = AuthenticatedClient(settings, store, sink, transport=transport)
        return cls(settings=settings, store=store, client=client, sink=sink, bus=bus or EventBus())

    @property
    def state(self) -> TestState:
        """Fresh read of the persisted state."""
        return self.store.load()

    def close(self) -> None:
        self.client.close()

    def __enter__(self) -> HarnessContext:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
