"""
Thread-pool fan-out

Independent units of work (layers during an optimizer step, backward
traversals of separate graphs, forward passes of separate batches) are
mapped over a ThreadPoolExecutor. numpy releases the GIL inside its kernels,
so threads are enough and every worker shares the same tensors by reference.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Iterable, List, Optional, TypeVar

T = TypeVar("T")
R = TypeVar("R")

logger = logging.getLogger(__name__)


def parallel_for(
    fn: Callable[[T], R],
    items: Iterable[T],
    max_workers: Optional[int] = None,
    run_sequentially: bool = False,
) -> List[R]:
    """
    Apply ``fn`` to every item and return the results in input order.

    Args:
        fn: Work function, called once per item
        items: Items to process
        max_workers: Pool size; None lets the executor decide
        run_sequentially: If True, run in the calling thread (debugging, determinism checks)

    The first exception raised by ``fn`` propagates to the caller.
    """
    items = list(items)
    if run_sequentially or len(items) <= 1:
        return [fn(item) for item in items]

    logger.debug("Dispatching %d work items (max_workers=%s)", len(items), max_workers)
    with ThreadPoolExecutor(max_workers=max_workers) as executor:
        return list(executor.map(fn, items))
