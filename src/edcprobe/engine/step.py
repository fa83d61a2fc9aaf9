"""Base class for suite steps."""

from __future__ import annotations

from typing import TYPE_CHECKING, ClassVar

if TYPE_CHECKING:
    from edcprobe.engine.context import HarnessContext


class Step:
    """One idempotent, resumable unit of the suite.

    Subclasses set ``name`` and ``title`` and implement ``run``. A step must:

    - check its prerequisites with ``require`` before touching the backend
    - look up existing entities before creating them, so re-running is safe
    - persist every identifier it obtains through ``ctx.store.update`` at once
    - return True only if every assertion it makes held

    Raising is reserved for bugs and missing prerequisites; backend failures
    are reported through ``ctx.sink`` and reflected in the return value.
    """

    name: ClassVar[str]
    title: ClassVar[str]

    def run(self, ctx: HarnessContext) -> bool:
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"
