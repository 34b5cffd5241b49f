from __future__ import annotations

import pytest

from crawl_orchestrator.domain.failures import RouteNotFoundError
from crawl_orchestrator.domain.model import ProcessingTask
from crawl_orchestrator.runtime.routes import FunctionStep, PipelineStep, ProcessingRoute, RouteRegistry


NOOP = FunctionStep("noop", lambda ctx: None)


def _task(hint: str | None = None) -> ProcessingTask:
    return ProcessingTask(id="t", url="https://example.com/", hint=hint)


@pytest.mark.unit
def test_resolve_by_hint_then_default() -> None:
    registry = RouteRegistry(
        [ProcessingRoute("default", (NOOP,)), ProcessingRoute("sitemap", (NOOP,))],
        default_route_id="default",
    )

    assert isinstance(NOOP, PipelineStep)
    assert registry.resolve(_task("sitemap")).id == "sitemap"
    assert registry.resolve(_task()).id == "default"
    assert registry.resolve(_task("unknown")).id == "default"
    assert registry.route_ids() == ["default", "sitemap"]


@pytest.mark.unit
def test_resolve_without_default_raises() -> None:
    registry = RouteRegistry([ProcessingRoute("only", (NOOP,))])

    assert registry.resolve(_task("only")).id == "only"
    with pytest.raises(RouteNotFoundError):
        registry.resolve(_task("other"))


@pytest.mark.unit
def test_registry_validation() -> None:
    with pytest.raises(ValueError, match="Duplicate"):
        RouteRegistry([ProcessingRoute("a", (NOOP,)), ProcessingRoute("a", (NOOP,))])
    with pytest.raises(RouteNotFoundError):
        RouteRegistry([ProcessingRoute("a", (NOOP,))], default_route_id="b")
    with pytest.raises(ValueError, match="no steps"):
        ProcessingRoute("empty", ())
    with pytest.raises(RouteNotFoundError):
        RouteRegistry.single("a", NOOP).by_id("b")
