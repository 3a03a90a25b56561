"""
Primary write, then best-effort side effects.

Handlers commit the primary record first and then hand a list of
SideEffect closures to run_side_effects(). Each one runs independently;
a failure is logged and recorded, and never propagates to the caller.
"""
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

logger = logging.getLogger(__name__)


@dataclass
class SideEffect:
    name: str
    run: Callable[[], Awaitable[Any]]


async def run_side_effects(effects: list[SideEffect], **log_extra: Any) -> list[str]:
    """Run each side effect in order. Returns the names of those that failed."""
    failed: list[str] = []
    for effect in effects:
        try:
            await effect.run()
        except Exception as e:
            failed.append(effect.name)
            logger.warning(
                "Side effect %s failed: %s", effect.name, str(e),
                exc_info=True, extra=log_extra,
            )
    return failed
