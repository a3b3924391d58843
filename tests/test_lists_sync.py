"""Tests for list diffing, confirmation and membership reconciliation."""

import pytest

from conftest import lists_index_page, make_items, no_sleep
from javdb_sync.errors import NotAuthenticatedOrStructureChanged, UserCancelled
from javdb_sync.lists_sync import ListChangeSummary, ListReconciler, diff_lists
from javdb_sync.models import (
    Checkpoint,
    CollectionType,
    JobState,
    ListEntity,
    ListKind,
    RecordStatus,
    SyncedRecord,
    SyncMode,
)

USER = "user@example.com"
FAVORITES = [("F", "Fav", 0)]


def entity(list_id, name=None, kind=ListKind.OWNED, count=1):
    return ListEntity(id=list_id, name=name or f"List {list_id}", kind=kind,
                      source_url=f"https://javdb.test/lists/{list_id}", item_count=count)


@pytest.fixture
def make_reconciler(fetcher, extractor, store, checkpoints, settings, progress):
    def build(is_cancelled=None):
        return ListReconciler(fetcher, extractor, store, checkpoints, settings,
                              progress=progress, is_cancelled=is_cancelled, sleep=no_sleep)
    return build


class TestDiff:

    def test_three_way_diff_by_id(self):
        diff = diff_lists([entity("A"), entity("B")], [entity("B"), entity("C")])

        assert [e.id for e in diff.to_add] == ["C"]
        assert [e.id for e in diff.to_update] == ["B"]
        assert [e.id for e in diff.to_delete] == ["A"]

    def test_summary_samples_at_most_five_names(self):
        remote = [entity(str(i), name=f"n{i}") for i in range(8)]

        summary = ListChangeSummary.from_diff(diff_lists([], remote))

        assert summary.add_count == 8
        assert summary.add_samples == ["n0", "n1", "n2", "n3", "n4"]
        assert summary.delete_count == 0


class TestReconcile:

    def test_lists_replaced_and_orphans_cleared(self, site, store, make_reconciler, checkpoints):
        store.lists_replace_all([entity("A"), entity("B")])
        store.upsert(SyncedRecord(identity="OLD-001", title="t", status=RecordStatus.VIEWED,
                                  list_memberships={"A"}))
        site.lists([("B", "Bee", 2), ("C", "Sea", 1)], favorited=FAVORITES)
        site.list_items("B", [make_items("abc", 0, 2)])
        site.list_items("C", [make_items("abc", 1, 1)])
        asked = []

        result = make_reconciler().run(SyncMode.FULL, USER, confirm=lambda s: asked.append(s) or True)

        assert result.state is JobState.COMPLETED
        assert [e.id for e in store.lists_get_all()] == ["B", "C", "F"]
        assert store.get("OLD-001").list_memberships == set()
        assert store.get("ABC-000").list_memberships == {"B"}
        assert store.get("ABC-001").list_memberships == {"B", "C"}
        assert asked[0].add_count == 2 and asked[0].delete_count == 1
        assert checkpoints.peek() is None

    def test_new_records_are_untracked_and_existing_keep_status(self, site, store, make_reconciler):
        store.upsert(SyncedRecord(identity="ABC-001", title="t", status=RecordStatus.WANT, url_identity="abc001"))
        site.lists([("B", "Bee", 2)], favorited=FAVORITES)
        site.list_items("B", [make_items("abc", 0, 2)])

        result = make_reconciler().run(SyncMode.FULL, USER, confirm=lambda s: True)

        assert store.get("ABC-000").status is RecordStatus.UNTRACKED
        assert store.get("ABC-001").status is RecordStatus.WANT
        assert (result.created, result.updated, result.synced) == (1, 1, 2)

    def test_declined_changes_leave_everything_untouched(self, site, store, make_reconciler, fetcher):
        store.lists_replace_all([entity("A")])
        site.lists([("B", "Bee", 2)], favorited=FAVORITES)
        site.list_items("B", [make_items("abc", 0, 2)])

        result = make_reconciler().run(SyncMode.FULL, USER, confirm=lambda s: False)

        assert result.state is JobState.DECLINED
        assert not result.success
        assert [e.id for e in store.lists_get_all()] == ["A"]
        assert fetcher.detail_calls() == []

    def test_without_a_confirm_callback_changes_are_declined(self, site, store, make_reconciler, fetcher):
        store.lists_replace_all([entity("A")])
        site.lists([("B", "Bee", 2)], favorited=FAVORITES)
        site.list_items("B", [make_items("abc", 0, 2)])

        result = make_reconciler().run(SyncMode.FULL, USER)

        assert result.state is JobState.DECLINED
        assert [e.id for e in store.lists_get_all()] == ["A"]
        assert fetcher.detail_calls() == []

    def test_no_confirmation_when_only_updates(self, site, store, make_reconciler):
        store.lists_replace_all([entity("B"), entity("F", kind=ListKind.FAVORITED, count=0)])
        site.lists([("B", "Bee", 1)], favorited=FAVORITES)
        site.list_items("B", [make_items("abc", 0, 1)])

        def confirm(_summary):
            raise AssertionError("should not ask")

        result = make_reconciler().run(SyncMode.FULL, USER, confirm=confirm)

        assert result.success

    def test_empty_list_is_skipped(self, site, fetcher, settings, make_reconciler):
        site.lists([("E", "Empty", 0)], favorited=FAVORITES)

        result = make_reconciler().run(SyncMode.FULL, USER, confirm=lambda s: True)

        assert result.success
        assert settings.url('list_detail', page=1, list_id="E") not in fetcher.calls

    def test_list_page_redirected_away_counts_one_error(self, site, fetcher, settings, make_reconciler):
        site.lists([("B", "Bee", 40)], favorited=FAVORITES)
        fetcher.add(settings.url('list_detail', page=1, list_id="B"), "<html>login</html>",
                    final_url="https://javdb.test/login")

        result = make_reconciler().run(SyncMode.FULL, USER, confirm=lambda s: True)

        assert result.success
        assert result.errored == 1
        assert settings.url('list_detail', page=2, list_id="B") not in fetcher.calls

    def test_duplicate_list_ids_are_kept_once(self, site, fetcher, settings, make_reconciler):
        site.lists([("B", "Bee", 0)], favorited=[("B", "Bee", 0), ("F", "Fav", 0)])

        lists = make_reconciler().enumerate_lists()

        assert [(e.id, e.kind) for e in lists] == [("B", ListKind.OWNED), ("F", ListKind.FAVORITED)]

    def test_empty_first_index_page_means_not_logged_in(self, fetcher, settings, make_reconciler):
        fetcher.add(settings.url('owned_lists', page=1), lists_index_page([]))

        with pytest.raises(NotAuthenticatedOrStructureChanged):
            make_reconciler().run(SyncMode.FULL, USER, confirm=lambda s: True)


class TestResume:

    def test_resume_continues_inside_the_saved_list(self, site, fetcher, settings, store, make_reconciler):
        store.lists_replace_all([entity("A", count=2), entity("B", count=3)])
        site.lists([("A", "Aye", 2), ("B", "Bee", 3)], favorited=FAVORITES)
        site.list_items("A", [make_items("abc", 0, 2)])
        site.list_items("B", [make_items("xyz", 0, 3)])
        store.upsert(SyncedRecord(identity="ABC-000", title="t", status=RecordStatus.UNTRACKED,
                                  list_memberships={"A"}))
        store.upsert(SyncedRecord(identity="XYZ-000", title="t", status=RecordStatus.UNTRACKED,
                                  list_memberships={"B"}))
        checkpoint = Checkpoint(CollectionType.LISTS, USER, SyncMode.FULL, current_page=1,
                                current_item_index=1, current_list_id="B", current_list_index=1, total_lists=2,
                                list_memberships={"ABC-000": ["A"], "ABC-001": ["A"], "XYZ-000": ["B"]})

        result = make_reconciler().run(SyncMode.FULL, USER, checkpoint=checkpoint,
                                       confirm=lambda s: pytest.fail("resuming never asks"))

        assert result.success
        assert fetcher.detail_calls() == [
            settings.url('video_detail', url_id="xyz001"),
            settings.url('video_detail', url_id="xyz002"),
        ]
        assert store.get("ABC-000").list_memberships == {"A"}
        assert store.get("XYZ-000").list_memberships == {"B"}
        assert store.get("XYZ-002").list_memberships == {"B"}

    def test_resume_drops_memberships_not_seen_before_the_interruption(self, site, store, make_reconciler):
        store.lists_replace_all([entity("A", count=1), entity("B", count=1)])
        site.lists([("A", "Aye", 1), ("B", "Bee", 1)], favorited=FAVORITES)
        site.list_items("A", [make_items("abc", 0, 1)])
        site.list_items("B", [make_items("xyz", 0, 1)])
        store.upsert(SyncedRecord(identity="ABC-000", title="t", status=RecordStatus.UNTRACKED,
                                  list_memberships={"A"}))
        store.upsert(SyncedRecord(identity="ABC-009", title="t", status=RecordStatus.UNTRACKED,
                                  list_memberships={"A"}))
        checkpoint = Checkpoint(CollectionType.LISTS, USER, SyncMode.FULL, current_page=1,
                                current_item_index=0, current_list_id="B", current_list_index=1, total_lists=3,
                                list_memberships={"ABC-000": ["A"]})

        result = make_reconciler().run(SyncMode.FULL, USER, checkpoint=checkpoint)

        assert result.success
        assert store.get("ABC-000").list_memberships == {"A"}
        assert store.get("ABC-009").list_memberships == set()
        assert store.get("XYZ-000").list_memberships == {"B"}

    def test_checkpoint_without_memberships_restarts(self, site, fetcher, store, make_reconciler):
        store.lists_replace_all([entity("A", count=1), entity("F", kind=ListKind.FAVORITED, count=0)])
        site.lists([("A", "Aye", 1)], favorited=FAVORITES)
        site.list_items("A", [make_items("abc", 0, 1)])
        checkpoint = Checkpoint(CollectionType.LISTS, USER, SyncMode.FULL, current_page=1,
                                current_item_index=1, current_list_id="A", current_list_index=0)

        result = make_reconciler().run(SyncMode.FULL, USER, checkpoint=checkpoint)

        assert result.success
        assert len(fetcher.detail_calls()) == 1

    def test_missing_checkpoint_list_restarts_from_the_beginning(self, site, fetcher, store, make_reconciler):
        store.lists_replace_all([entity("A", count=1)])
        site.lists([("A", "Aye", 1)], favorited=FAVORITES)
        site.list_items("A", [make_items("abc", 0, 1)])
        checkpoint = Checkpoint(CollectionType.LISTS, USER, SyncMode.FULL, current_page=3,
                                current_item_index=5, current_list_id="GONE", current_list_index=4)
        asked = []

        result = make_reconciler().run(SyncMode.FULL, USER, checkpoint=checkpoint,
                                       confirm=lambda s: asked.append(s) or True)

        assert result.success
        assert len(fetcher.detail_calls()) == 1
        assert asked[0].add_count == 1

    def test_stale_checkpoint_still_needs_confirmation(self, site, store, checkpoints, make_reconciler):
        store.lists_replace_all([entity("A", count=1)])
        site.lists([("B", "Bee", 1)], favorited=FAVORITES)
        site.list_items("B", [make_items("abc", 0, 1)])
        checkpoint = Checkpoint(CollectionType.LISTS, USER, SyncMode.FULL, current_list_id="GONE",
                                current_list_index=0, list_memberships={})
        checkpoints.save(checkpoint)

        result = make_reconciler().run(SyncMode.FULL, USER, checkpoint=checkpoint, confirm=lambda s: False)

        assert result.state is JobState.DECLINED
        assert [e.id for e in store.lists_get_all()] == ["A"]
        assert checkpoints.peek() is None

    def test_cancel_mid_list_saves_list_position(self, site, fetcher, checkpoints, make_reconciler):
        site.lists([("A", "Aye", 3)], favorited=FAVORITES)
        site.list_items("A", [make_items("abc", 0, 3)])

        with pytest.raises(UserCancelled):
            make_reconciler(is_cancelled=lambda: len(fetcher.detail_calls()) >= 2).run(
                SyncMode.FULL, USER, confirm=lambda s: True)

        saved = checkpoints.load(CollectionType.LISTS, USER)
        assert (saved.current_list_id, saved.current_list_index, saved.total_lists) == ("A", 0, 2)
        assert (saved.current_page, saved.current_item_index) == (1, 2)
        assert saved.list_memberships == {"ABC-000": ["A"], "ABC-001": ["A"]}

    def test_cancel_during_cleanup_leaves_no_checkpoint(self, site, fetcher, store, checkpoints, make_reconciler):
        store.lists_replace_all([entity("A", count=1), entity("F", kind=ListKind.FAVORITED, count=0)])
        site.lists([("A", "Aye", 1)], favorited=FAVORITES)
        site.list_items("A", [make_items("abc", 0, 1)])
        checkpoint = Checkpoint(CollectionType.LISTS, USER, SyncMode.FULL, current_list_id="A",
                                current_list_index=0, total_lists=2, list_memberships={})
        checkpoints.save(checkpoint)

        with pytest.raises(UserCancelled):
            make_reconciler(is_cancelled=lambda: len(fetcher.detail_calls()) >= 1).run(
                SyncMode.FULL, USER, checkpoint=checkpoint)

        assert len(fetcher.detail_calls()) == 1
        assert checkpoints.peek() is None
