"""Linear stage runner for multi-command operations.

Reversioning (validate, extract, patch, repack) and image promotion
(pull, tag, push) are modelled as a fixed sequence of stages. Each stage is
an async handler that receives the state produced by the previous one. The
first failing handler stops the run, and its error is tagged with the name of
the stage that could not be reached, so callers can inspect where an
operation broke down without parsing messages.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import Generic, TypeVar

from relman.core.errors import ReleaseError
from relman.core.result import Err, Ok, Result

S = TypeVar("S")

StageHandler = Callable[[S], Awaitable[Result[S, ReleaseError]]]

DONE = "done"


@dataclass(frozen=True, slots=True)
class Stage(Generic[S]):
    """A named transition; `name` is the state reached when `handler` succeeds."""

    name: str
    handler: StageHandler[S]


async def run_stages(
    *,
    initial_state: S,
    stages: Sequence[Stage[S]],
    on_reached: Callable[[str, S], None] | None = None,
) -> Result[S, ReleaseError]:
    """Run stages in order, stopping at the first failure.

    Args:
        initial_state: State handed to the first stage.
        stages: Transitions to apply, in order.
        on_reached: Optional callback invoked after each successful stage
            (and once more with `DONE` at the end).

    Returns:
        Ok(final state) or Err(ReleaseError) with `stage` set to the stage
        whose handler failed.
    """
    current = initial_state
    seen: set[str] = set()

    for stage in stages:
        if stage.name in seen:
            return Err(
                ReleaseError(
                    kind="validation",
                    message=f"stage listed twice: {stage.name}",
                    stage=stage.name,
                )
            )
        seen.add(stage.name)

        outcome = await stage.handler(current)
        if isinstance(outcome, Err):
            return Err(outcome.error.at_stage(stage.name))

        current = outcome.value
        if on_reached is not None:
            on_reached(stage.name, current)

    if on_reached is not None:
        on_reached(DONE, current)
    return Ok(current)
