"""
Middleware Pipeline

Ordered chain of transformation steps applied to a request before it is
sent, or to a response payload after it is received.

    value ──> step 1 ──> step 2 ──> ... ──> result

Steps run sequentially. The first step that raises stops the chain and the
exception propagates to the caller unchanged.
"""

import inspect
from collections.abc import Awaitable, Callable, Iterable
from typing import Any, Protocol, Union, runtime_checkable

from layered_cache.core.config.constants import Stage
from layered_cache.core.logging.logger import get_logger, log_stage

logger = get_logger(__name__)


@runtime_checkable
class Middleware(Protocol):
    """A pipeline step: returns the (possibly replaced) value."""

    async def transform(self, value: Any) -> Any:
        ...


Step = Union[Middleware, Callable[[Any], Union[Any, Awaitable[Any]]]]


def _step_name(step: Step) -> str:
    return getattr(step, "__name__", type(step).__name__)


class Pipeline:
    """
    Sequential middleware chain.

    Usage:
        def add_auth(request: httpx.Request) -> httpx.Request:
            request.headers["Authorization"] = f"Bearer {token}"
            return request

        pipeline = Pipeline([add_auth]).use(SigningMiddleware(secret))
        request = await pipeline.run(request)

    Steps may be Middleware objects or plain callables, sync or async.
    """

    def __init__(self, steps: Iterable[Step] = (), name: str = "pipeline"):
        self.name = name
        self._steps: list[Step] = list(steps)

    def use(self, step: Step) -> "Pipeline":
        """Append a step. Returns self for chaining."""
        self._steps.append(step)
        return self

    async def run(self, value: Any) -> Any:
        """Pass ``value`` through every step in order."""
        for step in self._steps:
            try:
                result = step.transform(value) if isinstance(step, Middleware) else step(value)
                if inspect.isawaitable(result):
                    result = await result
            except Exception as e:
                log_stage(
                    logger,
                    Stage.CLIENT,
                    "Pipeline step failed",
                    level="debug",
                    pipeline=self.name,
                    step=_step_name(step),
                    error_type=type(e).__name__,
                )
                raise
            value = result
        return value

    @property
    def steps(self) -> list[Step]:
        return list(self._steps)

    def __len__(self) -> int:
        return len(self._steps)
