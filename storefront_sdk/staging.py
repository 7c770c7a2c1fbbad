# storefront_sdk/staging.py
"""
Local-first editing of a remote collection.

The editor keeps an optimistic copy of the collection (``items``) that the
console renders, and records every create/update/delete/default/reorder in
staging maps. Nothing reaches the server until ``commit()``, which replays
the staged work in a fixed order:

    creates -> updates -> deletes -> default flag -> reorder

Creates come first so that later steps can translate temporary ids into the
ids the server issued. The reorder call is always sent, and its response
becomes the new local state.
"""
import asyncio
import itertools
import logging
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Dict, Generic, Hashable, List, Optional, Sequence, Set, Tuple, TypeVar, Union

from .errors import CommitInProgress, CommitStep, CommitStepFailed, PartialCommit, RemoteError, UnknownItem
from .loading import LoadState
from .models import CollectionItem, ItemId, ServerId, TempId

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=CollectionItem)


class CollectionRemote(ABC, Generic[T]):
    """The REST contract the editor commits against."""

    @abstractmethod
    async def list(self) -> List[T]:
        ...

    @abstractmethod
    async def create(self, payload: Dict[str, Any]) -> T:
        ...

    @abstractmethod
    async def update(self, item_id: str, payload: Dict[str, Any]) -> T:
        ...

    @abstractmethod
    async def delete(self, item_id: str) -> None:
        ...

    @abstractmethod
    async def reorder(self, entries: List[Dict[str, Any]]) -> List[T]:
        ...


class StagedCollectionEditor(Generic[T]):
    def __init__(
        self,
        remote: CollectionRemote[T],
        *,
        sort_field: str = "sort_order",
        default_field: Optional[str] = "is_default",
        natural_key: Optional[Callable[[T], Hashable]] = None,
        concurrent: bool = True,
    ):
        self.remote = remote
        self.sort_field = sort_field
        self.default_field = default_field
        self.natural_key = natural_key
        self.concurrent = concurrent

        self.state = LoadState.IDLE
        self.items: List[T] = []
        self._snapshot: List[T] = []

        self.created: Dict[TempId, Dict[str, Any]] = {}
        self.updated: Dict[ServerId, Dict[str, Any]] = {}
        self.deleted: Set[ServerId] = set()
        self.default_id: Optional[ItemId] = None

        self._seq = itertools.count(1)
        self._committing = False

        model = getattr(remote, "model", None)
        if model is not None:
            self._check_fields(model)

    # ---------------------------
    # Introspection
    # ---------------------------
    @property
    def has_changes(self) -> bool:
        if self.created or self.updated or self.deleted or self.default_id is not None:
            return True
        return [i.id for i in self.items] != [i.id for i in self._snapshot]

    @property
    def committing(self) -> bool:
        return self._committing

    def get(self, item_id: ItemId) -> T:
        return self.items[self._index(item_id)]

    def _index(self, item_id: ItemId) -> int:
        for i, item in enumerate(self.items):
            if item.id == item_id:
                return i
        raise UnknownItem(item_id)

    def _check_fields(self, model):
        for field in (self.sort_field, self.default_field):
            if field is not None and field not in model.model_fields:
                raise ValueError(f"{model.__name__} has no field {field!r}")

    def _check_idle(self):
        if self._committing:
            raise CommitInProgress("staged changes are locked while a commit is running")

    def _clear_staging(self):
        self.created = {}
        self.updated = {}
        self.deleted = set()
        self.default_id = None

    def _replace(self, items: Sequence[T]):
        self.items = [i.model_copy(deep=True) for i in items]
        self._snapshot = [i.model_copy(deep=True) for i in items]
        self._clear_staging()

    # ---------------------------
    # Load / cancel
    # ---------------------------
    async def load(self) -> List[T]:
        self._check_idle()
        self.state = LoadState.LOADING
        try:
            fetched = await self.remote.list()
            if fetched:
                self._check_fields(type(fetched[0]))
        except Exception:
            self.state = LoadState.FAILED
            raise
        fetched = sorted(fetched, key=lambda i: (getattr(i, self.sort_field), str(i.id)))
        if self.natural_key is not None:
            fetched = self._dedupe(fetched)
        self._replace(fetched)
        self.state = LoadState.LOADED
        logger.info("loaded %d item(s)", len(self.items))
        return self.items

    def _dedupe(self, items: List[T]) -> List[T]:
        seen = set()
        unique = []
        for item in items:
            key = self.natural_key(item)
            if key in seen:
                continue
            seen.add(key)
            unique.append(item)
        if len(unique) != len(items):
            logger.warning("dropped %d duplicate item(s) on load", len(items) - len(unique))
        return unique

    def cancel(self) -> List[T]:
        self._check_idle()
        self.items = [i.model_copy(deep=True) for i in self._snapshot]
        self._clear_staging()
        return self.items

    # ---------------------------
    # Staging
    # ---------------------------
    def _merge(self, item: T, patch: Dict[str, Any]) -> T:
        data = item.model_dump(exclude={"id"})
        data.update(patch)
        data["id"] = item.id
        return type(item).model_validate(data)

    def stage_create(self, data: Union[T, Dict[str, Any]]) -> TempId:
        self._check_idle()
        fields = data.model_dump(exclude={"id"}) if isinstance(data, CollectionItem) else dict(data)
        fields.pop("id", None)
        fields[self.sort_field] = len(self.items)
        temp_id = TempId(next(self._seq))
        model = type(data) if isinstance(data, CollectionItem) else self._model()
        self._check_fields(model)
        item = model.model_validate({**fields, "id": temp_id})
        self.items.append(item)
        self.created[temp_id] = item.payload()
        return temp_id

    def _model(self):
        if self.items:
            return type(self.items[0])
        if self._snapshot:
            return type(self._snapshot[0])
        model = getattr(self.remote, "model", None)
        if model is None:
            raise TypeError("pass a model instance to stage_create on an empty collection")
        return model

    def stage_update(self, item_id: ItemId, patch: Dict[str, Any]):
        self._check_idle()
        index = self._index(item_id)
        patch = {k: v for k, v in patch.items() if k != "id"}
        # a raised default flag is staged through stage_set_default
        make_default = self.default_field is not None and bool(patch.get(self.default_field))
        if make_default:
            del patch[self.default_field]
        item = self._merge(self.items[index], patch)
        self.items[index] = item
        if isinstance(item_id, TempId):
            # never persisted: fold the edit into the pending create
            self.created[item_id] = item.payload()
        elif patch:
            sent = item.payload()
            pending = self.updated.setdefault(item_id, {})
            pending.update({k: sent[k] for k in patch if k in sent})
        if make_default:
            self.stage_set_default(item_id)

    def stage_delete(self, item_id: ItemId):
        self._check_idle()
        index = self._index(item_id)
        del self.items[index]
        if isinstance(item_id, TempId):
            self.created.pop(item_id, None)
        else:
            self.deleted.add(item_id)
            self.updated.pop(item_id, None)
        if self.default_id == item_id:
            self.default_id = None

    def stage_set_default(self, item_id: ItemId):
        self._check_idle()
        if self.default_field is None:
            raise ValueError("this collection has no default flag")
        self._index(item_id)
        self.items = [
            item.model_copy(update={self.default_field: item.id == item_id})
            for item in self.items
        ]
        self.default_id = item_id

    def stage_reorder(self, new_order: Sequence[ItemId]):
        self._check_idle()
        by_id = {item.id: item for item in self.items}
        if len(new_order) != len(self.items) or set(new_order) != set(by_id):
            raise ValueError("new order must list every item exactly once")
        self.items = [
            by_id[item_id].model_copy(update={self.sort_field: position})
            for position, item_id in enumerate(new_order)
        ]

    def stage_move(self, item_id: ItemId, new_index: int):
        order = [item.id for item in self.items]
        old_index = self._index(item_id)
        new_index = max(0, min(len(order) - 1, new_index))
        order.insert(new_index, order.pop(old_index))
        self.stage_reorder(order)

    # ---------------------------
    # Commit
    # ---------------------------
    async def commit(self) -> List[T]:
        if self._committing:
            raise CommitInProgress("a commit is already running")
        self._committing = True
        try:
            return await _Commit(self).run()
        finally:
            self._committing = False


class _Commit:
    """One pass of replaying an editor's staged work against its remote."""

    def __init__(self, editor: StagedCollectionEditor):
        self.editor = editor
        self.remote = editor.remote
        self.id_map: Dict[TempId, ServerId] = {}
        self.landed: Dict[CommitStep, List[Any]] = {}
        self.completed = 0

    def resolve(self, item_id: ItemId) -> Optional[ServerId]:
        if isinstance(item_id, TempId):
            return self.id_map.get(item_id)
        return item_id

    async def _step(self, step: CommitStep, calls: List[Tuple[Any, Callable[[], Awaitable[Any]]]]) -> List[Tuple[Any, Any]]:
        if calls:
            logger.info("commit %s: %d call(s)", step.value, len(calls))
        results: List[Tuple[Any, Any]] = []
        errors: List[BaseException] = []
        if self.editor.concurrent:
            outcomes = await asyncio.gather(*(call() for _, call in calls), return_exceptions=True)
            for (key, _), outcome in zip(calls, outcomes):
                if isinstance(outcome, BaseException):
                    if not isinstance(outcome, Exception):
                        raise outcome
                    errors.append(outcome)
                else:
                    results.append((key, outcome))
        else:
            for key, call in calls:
                try:
                    results.append((key, await call()))
                except Exception as e:
                    errors.append(e)
                    break
        # creates that landed still count towards the id map
        if step is CommitStep.CREATE:
            for temp_id, created in results:
                self.id_map[temp_id] = created.id
        self.landed.setdefault(step, []).extend(key for key, _ in results)
        self.completed += len(results)
        if errors:
            self.fail(step, errors)
        return results

    def fail(self, step: CommitStep, errors: List[BaseException]):
        cause = errors[0]
        if not isinstance(cause, RemoteError):
            logger.exception("commit %s failed with an unexpected error", step.value, exc_info=cause)
        else:
            logger.error("commit %s failed: %s", step.value, cause)
        self.settle()
        if self.completed:
            raise PartialCommit(step, cause, errors, self.id_map, completed=self.completed) from cause
        raise CommitStepFailed(step, cause, errors, self.id_map) from cause

    def settle(self):
        """
        Fold the calls that already reached the server back into the editor.

        Landed creates leave ``created`` and their items take the server id,
        landed updates and deletes leave their staging maps. Running
        ``commit()`` again then only replays what is still outstanding.
        """
        editor = self.editor
        for temp_id, real in self.id_map.items():
            editor.created.pop(temp_id, None)
            editor.items = [i.model_copy(update={"id": real}) if i.id == temp_id else i for i in editor.items]
            if editor.default_id == temp_id:
                editor.default_id = real
            editor._snapshot.append(editor.get(real).model_copy(deep=True))
        for real in self.landed.get(CommitStep.UPDATE, []):
            editor.updated.pop(real, None)
        for real in self.landed.get(CommitStep.DELETE, []):
            editor.deleted.discard(real)
            editor._snapshot = [i for i in editor._snapshot if i.id != real]

    async def run(self):
        editor = self.editor
        remote = self.remote

        await self._step(CommitStep.CREATE, [
            (temp_id, lambda p=payload: remote.create(p))
            for temp_id, payload in editor.created.items()
        ])

        updates = []
        for item_id, patch in editor.updated.items():
            real = self.resolve(item_id)
            if real is not None:
                updates.append((real, lambda r=real, p=patch: remote.update(r.value, p)))
        await self._step(CommitStep.UPDATE, updates)

        deletes = []
        for item_id in editor.deleted:
            real = self.resolve(item_id)
            if real is not None:
                deletes.append((real, lambda r=real: remote.delete(r.value)))
        await self._step(CommitStep.DELETE, deletes)

        target = editor.default_id
        if target is not None and target not in editor.deleted:
            real = self.resolve(target)
            try:
                item = editor.get(target)
            except UnknownItem:
                item = None
            if real is not None and item is not None:
                body = item.payload()
                body[editor.default_field] = True
                await self._step(CommitStep.DEFAULT, [(real, lambda: remote.update(real.value, body))])

        entries = []
        for position, item in enumerate(editor.items):
            real = self.resolve(item.id)
            if real is None:
                continue
            entry = {"id": real.value, "sort_order": position}
            if editor.default_field is not None:
                entry["is_default"] = bool(getattr(item, editor.default_field))
            entries.append(entry)
        results = await self._step(CommitStep.REORDER, [(None, lambda: remote.reorder(entries))])
        fresh = results[0][1]

        editor._replace(fresh)
        logger.info("commit finished: %d remote call(s), %d item(s)", self.completed, len(editor.items))
        return editor.items
