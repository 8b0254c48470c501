"""Tests for merge ordering and deduplication."""

from hypothesis import given, strategies as st

from nippo_feed.engine.merge import dedupe, merge
from nippo_feed.timeline.base import Alert, MeetingSummary, Post


def post(id, ts, **kw):
    return Post(id=id, partition_id="g1", author_id="u1", timestamp_ms=ts, **kw)


def alert(id, ts):
    return Alert(id=id, partition_id="g1", timestamp_ms=ts, user_id="u2")


def summary(id, ts):
    return MeetingSummary(id=id, partition_id="g1", created_at_ms=ts)


class TestMergeOrder:
    def test_newest_first(self):
        merged = merge([post("a", 1), post("b", 3)], [post("c", 2)])
        assert [i.id for i in merged] == ["b", "c", "a"]

    def test_unknown_timestamps_last(self):
        merged = merge([post("x", None), post("y", 5)], [post("z", None)])
        assert [i.id for i in merged] == ["y", "x", "z"]

    def test_kind_priority_breaks_ties(self):
        merged = merge([alert("a1", 100), summary("s1", 100)], [post("p1", 100)])
        assert [i.kind for i in merged] == ["post", "meeting_summary", "alert"]

    def test_id_breaks_remaining_ties(self):
        merged = merge([post("b", 7), post("a", 7)])
        assert [i.id for i in merged] == ["a", "b"]


class TestDedupe:
    def test_first_occurrence_wins(self):
        first = post("a", 1, message="original")
        merged = merge([first], [post("a", 1, message="refetched")])
        assert len(merged) == 1
        assert merged[0].message == "original"

    def test_ids_unique_across_kinds(self):
        merged = merge([post("same", 1)], [alert("same", 2)])
        assert len(merged) == 1
        assert merged[0].kind == "post"

    def test_dedupe_reports_dropped(self):
        unique, dropped = dedupe([post("a", 1), post("a", 2), post("b", 3), post("a", 4)])
        assert [i.id for i in unique] == ["a", "b"]
        assert dropped == ["a", "a"]


_items = st.builds(
    lambda kind, id, ts: {"post": post, "alert": alert, "summary": summary}[kind](id, ts),
    st.sampled_from(["post", "alert", "summary"]),
    st.sampled_from([f"id{n}" for n in range(8)]),
    st.one_of(st.none(), st.integers(min_value=0, max_value=20)),
)


class TestMergeProperties:
    @given(st.lists(_items, max_size=15), st.lists(_items, max_size=15))
    def test_idempotent(self, a, b):
        once = merge(a, b)
        assert merge(once, b) == once

    @given(st.lists(_items, max_size=15), st.lists(_items, max_size=15))
    def test_ids_unique_and_time_ordered(self, a, b):
        merged = merge(a, b)
        ids = [i.id for i in merged]
        assert len(ids) == len(set(ids))
        known = [i.timestamp_ms for i in merged if i.timestamp_ms is not None]
        assert known == sorted(known, reverse=True)
        seen_unknown = False
        for item in merged:
            if item.timestamp_ms is None:
                seen_unknown = True
            else:
                assert not seen_unknown
