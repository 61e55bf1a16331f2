"""Promote container images across registries without rebuilding them.

Promotion pulls the full source reference, tags it under the full target
reference and pushes that. The three docker calls run in order as stages
`pulled -> tagged -> pushed`; the first failure stops the rest and is
reported with the stage name and docker's stderr.
"""

from __future__ import annotations

from dataclasses import dataclass

from relman.core.config import RegistryConfig
from relman.core.errors import ReleaseError
from relman.core.result import Err, Ok, Result
from relman.core.stages import Stage, run_stages
from relman.output.console import ConsoleProtocol
from relman.platform.process import CommandRunner
from relman.platform.process import run as run_process
from relman.release.model import Registry, RegistryImage

__all__ = ["PromoteRequest", "RegistryPromoter", "PULLED", "TAGGED", "PUSHED"]

PULLED = "pulled"
TAGGED = "tagged"
PUSHED = "pushed"


@dataclass(frozen=True, slots=True)
class PromoteRequest:
    name: str
    source_tag: str
    target_tag: str
    target: Registry = Registry.GCR
    source: Registry = Registry.GCR


@dataclass(frozen=True, slots=True)
class Promotion:
    source: RegistryImage
    target: RegistryImage


class RegistryPromoter:
    """Copies an image from the build registry to a release registry/tag."""

    def __init__(
        self,
        registries: RegistryConfig,
        *,
        console: ConsoleProtocol,
        runner: CommandRunner = run_process,
    ) -> None:
        self._registries = registries
        self._console = console
        self._run = runner

    def plan(self, request: PromoteRequest) -> Result[Promotion, ReleaseError]:
        """Resolve references, failing before any docker call on bad input."""
        source_registry = request.source.resolve(self._registries)
        target_registry = request.target.resolve(self._registries)
        for label, value in (
            ("image name", request.name),
            ("source tag", request.source_tag),
            ("target tag", request.target_tag),
            ("source registry", source_registry),
            ("target registry", target_registry),
        ):
            if not value.strip():
                return Err(ReleaseError(kind="validation", message=f"{label} cannot be empty"))

        source = RegistryImage(registry=source_registry, name=request.name, tag=request.source_tag)
        target = source.retag(registry=target_registry, tag=request.target_tag)
        return Ok(Promotion(source=source, target=target))

    async def promote(self, request: PromoteRequest) -> Result[RegistryImage, ReleaseError]:
        """Promote one image; returns the pushed target image."""
        planned = self.plan(request)
        if isinstance(planned, Err):
            return planned
        promotion = planned.value

        self._console.header("Promoting docker image")
        self._console.step(f"source: {promotion.source}")
        self._console.step(f"target: {promotion.target}")

        outcome = await run_stages(
            initial_state=promotion,
            stages=[
                Stage(PULLED, self._pull),
                Stage(TAGGED, self._tag),
                Stage(PUSHED, self._push),
            ],
        )
        if isinstance(outcome, Err):
            return Err(outcome.error.with_context(promotion.target.reference))

        self._console.success(f"promoted {promotion.target}")
        return Ok(promotion.target)

    async def _docker(self, step: str, args: list[str]) -> Result[None, ReleaseError]:
        result = await self._run(["docker", *args])
        if isinstance(result, Err):
            return Err(ReleaseError.from_process(f"docker {step} failed", result.error))
        return Ok(None)

    async def _pull(self, promotion: Promotion) -> Result[Promotion, ReleaseError]:
        self._console.step(f"pulling {promotion.source}")
        result = await self._docker("pull", ["pull", promotion.source.reference])
        return result.map(lambda _: promotion)

    async def _tag(self, promotion: Promotion) -> Result[Promotion, ReleaseError]:
        self._console.step(f"tagging {promotion.source} -> {promotion.target}")
        result = await self._docker(
            "tag", ["tag", promotion.source.reference, promotion.target.reference]
        )
        return result.map(lambda _: promotion)

    async def _push(self, promotion: Promotion) -> Result[Promotion, ReleaseError]:
        self._console.step(f"pushing {promotion.target}")
        result = await self._docker("push", ["push", promotion.target.reference])
        return result.map(lambda _: promotion)
