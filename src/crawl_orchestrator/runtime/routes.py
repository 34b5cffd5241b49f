"""Pipeline steps, routes and hint-based route resolution."""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from crawl_orchestrator.domain.failures import RouteNotFoundError
from crawl_orchestrator.domain.model import ProcessingTask
from crawl_orchestrator.domain.pipeline import PipelineResult


if TYPE_CHECKING:
    from crawl_orchestrator.runtime.processing import ProcessingContext


@runtime_checkable
class PipelineStep(Protocol):
    """One stage of a route.

    Steps read the processing context and may enqueue discovered URLs
    through ``ctx.enqueue``; they never touch scheduler state directly.
    Returning ``None`` means continue.
    """

    name: str

    def execute(self, ctx: ProcessingContext) -> PipelineResult | None:  # pragma: no cover - Protocol only
        """Run the step."""


@dataclass(slots=True, frozen=True)
class FunctionStep:
    """Adapt a plain callable into a named pipeline step."""

    name: str
    fn: Callable[[ProcessingContext], PipelineResult | None]

    def execute(self, ctx: ProcessingContext) -> PipelineResult | None:
        return self.fn(ctx)


@dataclass(slots=True, frozen=True)
class ProcessingRoute:
    id: str
    steps: tuple[PipelineStep, ...]

    def __post_init__(self) -> None:
        if not self.steps:
            raise ValueError(f"Route {self.id!r} has no steps")


class RouteRegistry:
    """Resolve a task to its route by hint, falling back to the default route."""

    def __init__(self, routes: Iterable[ProcessingRoute], default_route_id: str | None = None) -> None:
        self._routes: dict[str, ProcessingRoute] = {}
        for route in routes:
            if route.id in self._routes:
                raise ValueError(f"Duplicate route id: {route.id}")
            self._routes[route.id] = route
        if default_route_id is not None and default_route_id not in self._routes:
            raise RouteNotFoundError(f"Default route {default_route_id!r} is not registered")
        self.default_route_id = default_route_id

    @classmethod
    def single(cls, route_id: str, *steps: PipelineStep) -> RouteRegistry:
        return cls([ProcessingRoute(route_id, tuple(steps))], default_route_id=route_id)

    def by_id(self, route_id: str) -> ProcessingRoute:
        try:
            return self._routes[route_id]
        except KeyError:
            raise RouteNotFoundError(f"No route registered with id {route_id!r}") from None

    def resolve(self, task: ProcessingTask) -> ProcessingRoute:
        if task.hint is not None and task.hint in self._routes:
            return self._routes[task.hint]
        if self.default_route_id is None:
            raise RouteNotFoundError(f"No route for hint {task.hint!r} and no default route")
        return self._routes[self.default_route_id]

    def route_ids(self) -> list[str]:
        return list(self._routes)
