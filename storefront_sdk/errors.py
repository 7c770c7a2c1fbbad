# storefront_sdk/errors.py
from enum import Enum
from typing import Any, Dict, List, Optional


class StorefrontError(Exception):
    """Base class for every error raised by the storefront SDK."""


# ---------------------------
# Pricing
# ---------------------------
class MalformedPriceInput(StorefrontError, ValueError):
    pass


class InvalidQuantity(StorefrontError, ValueError):
    pass


# ---------------------------
# Staged editing
# ---------------------------
class UnknownItem(StorefrontError, KeyError):
    def __init__(self, item_id: Any):
        super().__init__(item_id)
        self.item_id = item_id

    def __str__(self) -> str:
        return f"no item with id {self.item_id} in the collection"


class CommitInProgress(StorefrontError, RuntimeError):
    pass


class RemoteError(StorefrontError):
    """A collection endpoint answered non-2xx, or could not be reached (status None)."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status = status

    def __str__(self) -> str:
        if self.status is None:
            return self.message
        return f"HTTP {self.status}: {self.message}"


class CommitStep(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    DEFAULT = "default"
    REORDER = "reorder"


class CommitStepFailed(StorefrontError):
    """A commit step failed before anything reached the server."""

    def __init__(
        self,
        step: CommitStep,
        cause: BaseException,
        errors: Optional[List[BaseException]] = None,
        id_map: Optional[Dict[Any, Any]] = None,
        message: Optional[str] = None,
    ):
        super().__init__(message or f"{step.value} step failed: {cause}")
        self.step = step
        self.cause = cause
        self.errors = errors or [cause]
        self.id_map = dict(id_map or {})


class PartialCommit(CommitStepFailed):
    """Some remote calls succeeded before ``step`` failed; reload before trusting local state."""

    def __init__(
        self,
        step: CommitStep,
        cause: BaseException,
        errors: Optional[List[BaseException]] = None,
        id_map: Optional[Dict[Any, Any]] = None,
        completed: int = 0,
    ):
        super().__init__(
            step, cause, errors, id_map,
            message=f"{step.value} step failed after {completed} successful call(s): {cause}",
        )
        self.completed = completed
