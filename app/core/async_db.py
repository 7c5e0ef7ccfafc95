"""Async helper wrappers for sync repositories."""
from __future__ import annotations

from functools import partial
from typing import Any, Callable, TypeVar

import anyio

T = TypeVar("T")


class AsyncDBProxy:
    """Proxy that runs sync repository calls in a thread pool."""

    def __init__(self, repo: Any):
        self._repo = repo

    @property
    def sync(self) -> Any:
        """Expose underlying sync repository (use sparingly)."""
        return self._repo

    async def run(self, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Run a sync callable in a worker thread."""
        return await anyio.to_thread.run_sync(partial(func, *args, **kwargs))

    def __getattr__(self, name: str):
        attr = getattr(self._repo, name)
        if not callable(attr):
            return attr

        async def _call(*args: Any, **kwargs: Any):
            return await anyio.to_thread.run_sync(partial(attr, *args, **kwargs))

        return _call


def as_async(repo: Any) -> AsyncDBProxy:
    if isinstance(repo, AsyncDBProxy):
        return repo
    return AsyncDBProxy(repo)
