# tests/test_staging.py
import asyncio
import itertools
import logging
from collections import Counter

import pytest

from storefront_sdk.errors import (
    CommitInProgress, CommitStep, CommitStepFailed, PartialCommit, RemoteError, UnknownItem
)
from storefront_sdk.loading import LoadState
from storefront_sdk.models import Address, Media, Option, ServerId, TempId, address_natural_key
from storefront_sdk.staging import CollectionRemote, StagedCollectionEditor


class RecordingRemote(CollectionRemote):
    """In-memory collection that records every call and can fail on the n-th call of a method."""

    def __init__(self, model=Address, sort_field="sort_order", default_field="is_default"):
        self.model = model
        self.sort_field = sort_field
        self.default_field = default_field
        self.records = {}
        self.calls = []
        self.counts = Counter()
        self.failures = {}
        self.gate = None
        self._ids = itertools.count(1)

    def seed(self, **fields):
        item_id = f"srv-{next(self._ids)}"
        self.records[item_id] = {"id": item_id, **fields}
        return ServerId(item_id)

    def fail_on(self, method, nth=1, status=500):
        self.failures[(method, nth)] = RemoteError(f"{method} #{nth} rejected", status=status)

    def _enter(self, method, *args):
        self.calls.append((method, *args))
        self.counts[method] += 1
        error = self.failures.get((method, self.counts[method]))
        if error is not None:
            raise error

    def _ordered(self):
        rows = sorted(self.records.values(), key=lambda r: (r.get(self.sort_field, 0), r["id"]))
        return [self.model.model_validate(r) for r in rows]

    @property
    def methods(self):
        return [c[0] for c in self.calls]

    async def list(self):
        self._enter("list")
        return self._ordered()

    async def create(self, payload):
        self._enter("create", payload)
        item_id = f"srv-{next(self._ids)}"
        self.records[item_id] = {**payload, "id": item_id}
        return self.model.model_validate(self.records[item_id])

    async def update(self, item_id, payload):
        self._enter("update", item_id, payload)
        if item_id not in self.records:
            raise RemoteError("not found", status=404)
        self.records[item_id].update(payload)
        return self.model.model_validate(self.records[item_id])

    async def delete(self, item_id):
        self._enter("delete", item_id)
        if self.records.pop(item_id, None) is None:
            raise RemoteError("not found", status=404)

    async def reorder(self, entries):
        self._enter("reorder", entries)
        if self.gate is not None:
            await self.gate.wait()
        for entry in entries:
            record = self.records[entry["id"]]
            record[self.sort_field] = entry["sort_order"]
            if "is_default" in entry:
                record[self.default_field] = entry["is_default"]
        return self._ordered()


def address(name, line1=None, sort_order=0, **extra):
    return {
        "name": name,
        "line1": line1 or f"{name} Street 1",
        "city": "Springfield",
        "region": "IL",
        "postal_code": "62701",
        "sort_order": sort_order,
        **extra,
    }


def loaded_editor(*names, **editor_kwargs):
    remote = RecordingRemote()
    ids = [remote.seed(**address(n, sort_order=i)) for i, n in enumerate(names)]
    editor = StagedCollectionEditor(remote, **editor_kwargs)
    asyncio.run(editor.load())
    remote.calls.clear()
    remote.counts.clear()
    return remote, editor, ids


def ids_of(items):
    return [i.id for i in items]


# ---------------------------
# Load / cancel / introspection
# ---------------------------
def test_load_sorts_and_drops_duplicates(caplog):
    remote = RecordingRemote()
    main = remote.seed(**address("Home", "1 Main St", sort_order=1))
    elm = remote.seed(**address("Office", "9 Elm St", sort_order=0))
    remote.seed(**address("Home again", "1 Main St", sort_order=2))
    editor = StagedCollectionEditor(remote, natural_key=address_natural_key)

    assert editor.state is LoadState.IDLE
    with caplog.at_level(logging.WARNING):
        asyncio.run(editor.load())

    assert editor.state is LoadState.LOADED
    assert ids_of(editor.items) == [elm, main]
    assert "duplicate" in caplog.text


def test_load_keeps_duplicates_without_natural_key():
    remote = RecordingRemote()
    remote.seed(**address("Home", "1 Main St"))
    remote.seed(**address("Home again", "1 Main St"))
    editor = StagedCollectionEditor(remote)
    asyncio.run(editor.load())
    assert len(editor.items) == 2


def test_failed_load_sets_failed_state():
    remote = RecordingRemote()
    remote.fail_on("list")
    editor = StagedCollectionEditor(remote)
    with pytest.raises(RemoteError):
        asyncio.run(editor.load())
    assert editor.state is LoadState.FAILED


def test_has_changes_tracks_staging_and_order():
    remote, editor, (a, b, c) = loaded_editor("A", "B", "C")
    assert not editor.has_changes

    editor.stage_reorder([a, b, c])
    assert not editor.has_changes

    editor.stage_move(c, 0)
    assert editor.has_changes

    editor.cancel()
    assert not editor.has_changes
    editor.stage_update(a, {"city": "Shelbyville"})
    assert editor.has_changes


def test_cancel_restores_snapshot_and_clears_staging():
    remote, editor, (a, b) = loaded_editor("A", "B")
    temp = editor.stage_create(address("New"))
    editor.stage_update(a, {"name": "Renamed"})
    editor.stage_delete(b)
    editor.stage_set_default(temp)

    editor.cancel()

    assert ids_of(editor.items) == [a, b]
    assert editor.get(a).name == "A"
    assert editor.created == {}
    assert editor.updated == {}
    assert editor.deleted == set()
    assert editor.default_id is None
    assert remote.calls == []


def test_unknown_item_raises():
    remote, editor, (a,) = loaded_editor("A")
    with pytest.raises(UnknownItem):
        editor.stage_update(ServerId("nope"), {"name": "x"})
    with pytest.raises(UnknownItem):
        editor.stage_delete(TempId(42))
    with pytest.raises(UnknownItem):
        editor.stage_set_default(ServerId("nope"))


# ---------------------------
# Staging rules
# ---------------------------
def test_stage_create_appends_with_temp_id():
    remote, editor, (a,) = loaded_editor("A")
    temp = editor.stage_create(address("New", sort_order=17))
    assert isinstance(temp, TempId)
    assert editor.items[-1].id == temp
    assert editor.items[-1].sort_order == 1
    assert editor.created[temp]["name"] == "New"
    assert "id" not in editor.created[temp]


def test_stage_create_on_empty_collection_uses_remote_model():
    remote = RecordingRemote()
    editor = StagedCollectionEditor(remote)
    asyncio.run(editor.load())
    temp = editor.stage_create(address("First"))
    assert isinstance(editor.get(temp), Address)


def test_create_then_delete_sends_nothing_for_it():
    remote, editor, (a,) = loaded_editor("A")
    temp = editor.stage_create(address("Throwaway"))
    editor.stage_delete(temp)
    assert editor.created == {}

    asyncio.run(editor.commit())

    assert remote.methods == ["reorder"]
    assert [e["id"] for e in remote.calls[0][1]] == [a.value]


def test_update_of_temp_folds_into_create():
    remote, editor, _ = loaded_editor("A")
    temp = editor.stage_create(address("New"))
    editor.stage_update(temp, {"line2": "Apt 4"})
    assert editor.updated == {}

    asyncio.run(editor.commit())

    assert remote.methods == ["create", "reorder"]
    assert remote.calls[0][1]["line2"] == "Apt 4"


def test_updates_accumulate_per_item():
    remote, editor, (a,) = loaded_editor("A")
    editor.stage_update(a, {"name": "First"})
    editor.stage_update(a, {"city": "Capital City"})
    editor.stage_update(a, {"name": "Second"})
    assert editor.updated == {a: {"name": "Second", "city": "Capital City"}}

    asyncio.run(editor.commit())

    assert remote.methods == ["update", "reorder"]
    assert remote.calls[0][1:] == (a.value, {"name": "Second", "city": "Capital City"})


def test_update_then_delete_only_deletes():
    remote, editor, (a, b) = loaded_editor("A", "B")
    editor.stage_update(a, {"name": "Doomed"})
    editor.stage_delete(a)
    assert a not in editor.updated

    items = asyncio.run(editor.commit())

    assert remote.methods == ["delete", "reorder"]
    assert remote.calls[0] == ("delete", a.value)
    assert ids_of(items) == [b]


def test_reorder_every_permutation_is_dense():
    remote, editor, ids = loaded_editor("A", "B", "C", "D")
    for order in itertools.permutations(ids):
        editor.stage_reorder(order)
        assert ids_of(editor.items) == list(order)
        assert [i.sort_order for i in editor.items] == [0, 1, 2, 3]


@pytest.mark.parametrize("bad", [
    lambda ids: ids[:-1],
    lambda ids: ids + [ids[0]],
    lambda ids: [ids[0], ids[0], ids[1]],
    lambda ids: ids[:-1] + [ServerId("stranger")],
])
def test_reorder_rejects_non_permutations(bad):
    remote, editor, ids = loaded_editor("A", "B", "C")
    with pytest.raises(ValueError):
        editor.stage_reorder(bad(list(ids)))
    assert ids_of(editor.items) == ids


def test_stage_move_clamps_index():
    remote, editor, (a, b, c) = loaded_editor("A", "B", "C")
    editor.stage_move(c, 0)
    assert ids_of(editor.items) == [c, a, b]
    editor.stage_move(a, 99)
    assert ids_of(editor.items) == [c, b, a]


def test_set_default_twice_last_wins():
    remote, editor, (a, b, c) = loaded_editor("A", "B", "C")
    editor.stage_set_default(a)
    editor.stage_set_default(c)
    assert [i.is_default for i in editor.items] == [False, False, True]

    items = asyncio.run(editor.commit())

    assert remote.methods == ["update", "reorder"]
    method, target, body = remote.calls[0]
    assert target == c.value
    assert body["is_default"] is True
    assert body["name"] == "C"
    assert [i.is_default for i in items] == [False, False, True]


def test_default_on_deleted_item_is_dropped():
    remote, editor, (a, b) = loaded_editor("A", "B")
    editor.stage_set_default(b)
    editor.stage_delete(b)
    assert editor.default_id is None

    asyncio.run(editor.commit())
    assert remote.methods == ["delete", "reorder"]


def test_default_on_new_item_resolves_to_server_id():
    remote, editor, (a,) = loaded_editor("A")
    temp = editor.stage_create(address("New"))
    editor.stage_set_default(temp)

    items = asyncio.run(editor.commit())

    assert remote.methods == ["create", "update", "reorder"]
    new_id = remote.calls[1][1]
    assert new_id.startswith("srv-")
    entries = remote.calls[2][1]
    assert entries == [
        {"id": a.value, "sort_order": 0, "is_default": False},
        {"id": new_id, "sort_order": 1, "is_default": True},
    ]
    assert items[1].id == ServerId(new_id)
    assert items[1].is_default is True


def test_collection_without_default_flag():
    remote = RecordingRemote(model=Media, sort_field="sort")
    first = remote.seed(url="https://cdn.example/1.png", sort=0)
    second = remote.seed(url="https://cdn.example/2.png", sort=1)
    editor = StagedCollectionEditor(remote, sort_field="sort", default_field=None)
    asyncio.run(editor.load())

    with pytest.raises(ValueError):
        editor.stage_set_default(first)

    editor.stage_reorder([second, first])
    items = asyncio.run(editor.commit())

    entries = remote.calls[-1][1]
    assert entries == [{"id": second.value, "sort_order": 0}, {"id": first.value, "sort_order": 1}]
    assert ids_of(items) == [second, first]
    assert [m.sort for m in items] == [0, 1]


# ---------------------------
# Commit
# ---------------------------
def test_commit_without_changes_round_trips_the_order():
    remote, editor, ids = loaded_editor("A", "B", "C")
    before = [i.model_dump() for i in editor.items]

    items = asyncio.run(editor.commit())

    assert remote.methods == ["reorder"]
    assert [i.model_dump() for i in items] == before
    assert not editor.has_changes


def test_commit_runs_steps_in_order():
    remote, editor, (a, b, c) = loaded_editor("A", "B", "C")
    editor.stage_create(address("D"))
    editor.stage_update(a, {"name": "A2"})
    editor.stage_delete(b)
    editor.stage_set_default(c)

    items = asyncio.run(editor.commit())

    assert remote.methods == ["create", "update", "delete", "update", "reorder"]
    assert remote.calls[1][1] == a.value
    assert remote.calls[3][1] == c.value
    assert [i.name for i in items] == ["A2", "C", "D"]
    assert [i.sort_order for i in items] == [0, 1, 2]
    assert all(i.is_persisted for i in items)
    assert editor.created == {} and editor.updated == {} and editor.deleted == set()


def test_commit_replaces_snapshot():
    remote, editor, (a, b) = loaded_editor("A", "B")
    editor.stage_reorder([b, a])
    asyncio.run(editor.commit())

    editor.stage_update(a, {"name": "Changed"})
    editor.cancel()
    assert ids_of(editor.items) == [b, a]


def test_failure_before_any_success_is_a_step_failure():
    remote, editor, _ = loaded_editor("A")
    temp = editor.stage_create(address("New"))
    remote.fail_on("create")

    with pytest.raises(CommitStepFailed) as excinfo:
        asyncio.run(editor.commit())

    err = excinfo.value
    assert not isinstance(err, PartialCommit)
    assert err.step is CommitStep.CREATE
    assert isinstance(err.cause, RemoteError)
    assert err.cause.status == 500
    assert err.id_map == {}
    # staged work survives for a retry
    assert temp in editor.created
    assert not editor.committing

    remote.calls.clear()
    asyncio.run(editor.commit())
    assert remote.methods == ["create", "reorder"]
    assert editor.created == {}


def test_failure_after_a_success_is_partial():
    remote, editor, (a,) = loaded_editor("A")
    temp = editor.stage_create(address("New"))
    editor.stage_update(a, {"name": "A2"})
    remote.fail_on("update")

    with pytest.raises(PartialCommit) as excinfo:
        asyncio.run(editor.commit())

    err = excinfo.value
    assert err.step is CommitStep.UPDATE
    assert err.completed == 1
    assert set(err.id_map) == {temp}
    assert "delete" not in remote.methods
    assert "reorder" not in remote.methods


def test_concurrent_creates_report_every_landed_id():
    remote, editor, _ = loaded_editor("A")
    temps = [editor.stage_create(address(n)) for n in ("X", "Y", "Z")]
    remote.fail_on("create", nth=2)

    with pytest.raises(PartialCommit) as excinfo:
        asyncio.run(editor.commit())

    err = excinfo.value
    assert err.step is CommitStep.CREATE
    assert remote.counts["create"] == 3
    assert set(err.id_map) == {temps[0], temps[2]}
    assert len(err.errors) == 1


def test_sequential_commit_stops_at_first_error():
    remote, editor, _ = loaded_editor("A", concurrent=False)
    temps = [editor.stage_create(address(n)) for n in ("X", "Y", "Z")]
    remote.fail_on("create", nth=2)

    with pytest.raises(PartialCommit) as excinfo:
        asyncio.run(editor.commit())

    assert remote.counts["create"] == 2
    assert set(excinfo.value.id_map) == {temps[0]}


def test_reorder_failure_is_reported():
    remote, editor, _ = loaded_editor("A", "B")
    remote.fail_on("reorder", status=503)
    with pytest.raises(CommitStepFailed) as excinfo:
        asyncio.run(editor.commit())
    assert excinfo.value.step is CommitStep.REORDER
    assert excinfo.value.cause.status == 503


def test_second_commit_while_running_is_rejected():
    async def scenario():
        remote = RecordingRemote()
        remote.seed(**address("A"))
        editor = StagedCollectionEditor(remote)
        await editor.load()

        remote.gate = asyncio.Event()
        first = asyncio.create_task(editor.commit())
        await asyncio.sleep(0)
        assert editor.committing
        with pytest.raises(CommitInProgress):
            await editor.commit()

        remote.gate.set()
        await first
        assert not editor.committing
        assert remote.counts["reorder"] == 1

    asyncio.run(scenario())


def test_staged_changes_are_locked_while_committing():
    async def scenario():
        remote = RecordingRemote()
        a = remote.seed(**address("A"))
        editor = StagedCollectionEditor(remote)
        await editor.load()

        remote.gate = asyncio.Event()
        running = asyncio.create_task(editor.commit())
        await asyncio.sleep(0)

        for mutate in (
            lambda: editor.stage_create(address("Late")),
            lambda: editor.stage_update(a, {"name": "Late"}),
            lambda: editor.stage_delete(a),
            lambda: editor.stage_set_default(a),
            lambda: editor.stage_reorder([a]),
            lambda: editor.stage_move(a, 0),
            editor.cancel,
        ):
            with pytest.raises(CommitInProgress):
                mutate()
        with pytest.raises(CommitInProgress):
            await editor.load()

        remote.gate.set()
        await running
        assert [i.name for i in editor.items] == ["A"]
        assert remote.counts["create"] == 0

    asyncio.run(scenario())


def test_retry_after_partial_commit_sends_each_create_once():
    remote, editor, (a,) = loaded_editor("A")
    temp = editor.stage_create(address("New"))
    editor.stage_set_default(temp)
    editor.stage_update(a, {"name": "A2"})
    remote.fail_on("update")

    with pytest.raises(PartialCommit) as excinfo:
        asyncio.run(editor.commit())

    real = excinfo.value.id_map[temp]
    assert editor.created == {}
    assert editor.items[1].id == real
    assert editor.default_id == real
    assert a in editor.updated

    items = asyncio.run(editor.commit())

    assert remote.counts["create"] == 1
    assert sorted(r["name"] for r in remote.records.values()) == ["A2", "New"]
    assert [(i.name, i.is_default) for i in items] == [("A2", False), ("New", True)]


def test_retry_after_partial_commit_skips_landed_deletes():
    remote, editor, (a, b) = loaded_editor("A", "B")
    editor.stage_delete(a)
    editor.stage_update(b, {"name": "B2"})
    remote.fail_on("reorder")

    with pytest.raises(PartialCommit) as excinfo:
        asyncio.run(editor.commit())
    assert excinfo.value.step is CommitStep.REORDER
    assert editor.deleted == set()
    assert editor.updated == {}

    items = asyncio.run(editor.commit())

    assert remote.counts["delete"] == 1
    assert remote.counts["update"] == 1
    assert [i.name for i in items] == ["B2"]


def test_model_without_default_field_is_rejected_early():
    with pytest.raises(ValueError):
        StagedCollectionEditor(RecordingRemote(model=Option))

    remote = RecordingRemote(model=Option)
    editor = StagedCollectionEditor(remote, default_field=None)
    with pytest.raises(ValueError):
        editor.stage_create(Media(url="https://cdn.example/x.png"))


def test_update_raising_default_flag_keeps_one_default():
    remote = RecordingRemote()
    a = remote.seed(**address("A", is_default=True))
    b = remote.seed(**address("B", sort_order=1))
    editor = StagedCollectionEditor(remote)
    asyncio.run(editor.load())

    editor.stage_update(b, {"name": "B2", "is_default": True})

    assert [i.is_default for i in editor.items] == [False, True]
    assert editor.default_id == b
    assert editor.updated == {b: {"name": "B2"}}

    editor.stage_update(a, {"is_default": False})
    assert editor.updated[a] == {"is_default": False}
