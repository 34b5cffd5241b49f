from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor

import pytest

from crawl_orchestrator.domain.model import ProcessingTask
from crawl_orchestrator.state.frontier import FifoFrontier, Frontier, PriorityFrontier


def _task(task_id: str, priority: int = 0) -> ProcessingTask:
    return ProcessingTask(id=task_id, url=f"https://example.com/{task_id}", priority=priority)


@pytest.mark.unit
def test_fifo_frontier_polls_in_offer_order() -> None:
    frontier = FifoFrontier()
    for task_id in ("a", "b", "c"):
        frontier.offer(_task(task_id))

    assert isinstance(frontier, Frontier)
    assert [task.id for task in frontier.snapshot().tasks] == ["a", "b", "c"]
    assert [frontier.poll().id for _ in range(3)] == ["a", "b", "c"]
    assert frontier.poll() is None
    assert frontier.size() == 0


@pytest.mark.unit
def test_priority_frontier_orders_by_priority_then_insertion() -> None:
    frontier = PriorityFrontier(
        [_task("low", 0), _task("high-1", 5), _task("mid", 1), _task("high-2", 5), _task("low-2", 0)]
    )

    assert [task.id for task in frontier.snapshot().tasks] == ["high-1", "high-2", "mid", "low", "low-2"]
    polled = [frontier.poll().id for _ in range(5)]

    assert polled == ["high-1", "high-2", "mid", "low", "low-2"]
    assert frontier.poll() is None


@pytest.mark.unit
@pytest.mark.parametrize("frontier_cls", [FifoFrontier, PriorityFrontier])
def test_concurrent_offers_and_polls_keep_counts(frontier_cls) -> None:
    frontier = frontier_cls()

    with ThreadPoolExecutor(max_workers=8) as pool:
        list(pool.map(lambda i: frontier.offer(_task(str(i), i % 3)), range(500)))
        polled = list(pool.map(lambda _i: frontier.poll(), range(300)))

    assert all(task is not None for task in polled)
    assert len({task.id for task in polled}) == 300
    assert frontier.size() == 200
    assert len(frontier) == 200
