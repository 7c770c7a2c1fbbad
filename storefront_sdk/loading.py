# storefront_sdk/loading.py
"""
Explicit load state for remote listings.

A listing is only fetched when the caller asks for it (filter changed, page
changed, manual refresh). Nothing refetches behind the caller's back.
"""
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Generic, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class LoadState(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    LOADED = "loaded"
    FAILED = "failed"


class CollectionLoader(Generic[T]):
    """Idle -> Loading -> Loaded | Failed, driven by ``request``."""

    def __init__(self, fetch: Callable[..., Awaitable[T]]):
        self._fetch = fetch
        self.state = LoadState.IDLE
        self.data: Optional[T] = None
        self.error: Optional[BaseException] = None
        self.params: Dict[str, Any] = {}

    @property
    def is_loading(self) -> bool:
        return self.state is LoadState.LOADING

    async def request(self, **params) -> T:
        if self.state is LoadState.LOADING:
            raise RuntimeError("a load is already in flight")
        self.params = dict(params)
        self.state = LoadState.LOADING
        self.error = None
        try:
            data = await self._fetch(**params)
        except Exception as e:
            self.state = LoadState.FAILED
            self.error = e
            logger.error("load failed (%s): %s", params, e)
            raise
        self.data = data
        self.state = LoadState.LOADED
        return data

    async def reload(self) -> T:
        return await self.request(**self.params)

    def update(self, **changes) -> Dict[str, Any]:
        """Merge ``changes`` into the last parameters; call ``request(**result)`` to fetch."""
        params = dict(self.params)
        for k, v in changes.items():
            if v is None:
                params.pop(k, None)
            else:
                params[k] = v
        return params
