"""End-to-end tests for partitioning, dispatching, and collecting party frames."""

import threading

import polars as pl
import pytest
from polars.testing import assert_frame_equal

from partyframe import (
    ClusterLifecycleError,
    EvaluationError,
    Operation,
    PartyFrame,
    collect,
    create_cluster,
    dispatch,
    partition,
    party_frame,
    pull,
)
from partyframe.dask import cluster_assign_each, cluster_assign_expr, cluster_rm

GROUP_SIZES = {"a": 80, "b": 70, "c": 60, "d": 40, "e": 30, "f": 15, "g": 5}


def _add_z(df, offset):
    return df.with_columns(z=pl.col("x") + offset)


def _sorted(df, *cols):
    return df.sort(list(cols) or df.columns)


class TestRoundTrip:
    def test_block_preserves_order(self, cluster, plain_data):
        frame = partition(plain_data, cluster=cluster)
        assert_frame_equal(frame.collect(), plain_data)

    def test_round_robin_same_rows(self, cluster, plain_data):
        frame = partition(plain_data, cluster=cluster, method="round_robin")
        assert_frame_equal(_sorted(frame.collect(), "x"), plain_data)

    def test_grouped_same_rows(self, cluster, grouped_data):
        frame = partition(grouped_data, by="g", cluster=cluster)
        assert_frame_equal(_sorted(frame.collect(), "x"), grouped_data)

    def test_pandas_input(self, cluster):
        pd = pytest.importorskip("pandas")
        frame = partition(pd.DataFrame({"a": [1, 2, 3]}), cluster=cluster)
        assert frame.collect()["a"].to_list() == [1, 2, 3]

    def test_row_conservation(self, cluster, plain_data):
        frame = partition(plain_data, cluster=cluster, n_shards=5)
        assert frame.n_rows == plain_data.height
        assert sum(frame.shard_rows) == plain_data.height
        assert max(frame.shard_rows) - min(frame.shard_rows) <= 1

    def test_collect_is_repeatable(self, cluster, plain_data):
        frame = partition(plain_data, cluster=cluster)
        assert_frame_equal(frame.collect(), frame.collect())
        assert_frame_equal(collect(frame), frame.collect())

    def test_deterministic(self, cluster, grouped_data):
        first = partition(grouped_data, by="g", cluster=cluster, n_shards=5).with_columns(w=pl.col("y") * 2)
        second = partition(grouped_data, by="g", cluster=cluster, n_shards=5).with_columns(w=pl.col("y") * 2)
        assert first.shard_rows == second.shard_rows
        assert_frame_equal(first.collect(), second.collect())

    def test_rows_keep_source_order_within_shards(self, cluster, grouped_data):
        frame = partition(grouped_data, by="g", cluster=cluster, n_shards=3)
        for xs in frame.shard_values(lambda df: df["x"].to_list()):
            assert xs == sorted(xs)


class TestEmpty:
    def test_empty_dataset(self, cluster):
        data = pl.DataFrame({"x": pl.Series([], dtype=pl.Int64)})
        frame = partition(data, cluster=cluster)
        assert frame.n_shards == 0
        assert frame.n_rows == 0
        assert frame.collect().height == 0
        assert "[empty]" in repr(frame)

    def test_dispatch_on_empty_frame(self, cluster):
        frame = partition(pl.DataFrame({"x": pl.Series([], dtype=pl.Int64)}), cluster=cluster)
        assert frame.filter(pl.col("x") > 1).n_shards == 0
        assert frame.head().height == 0
        assert pull(frame, "x").to_list() == []

    def test_more_shards_than_rows(self, cluster):
        frame = partition(pl.DataFrame({"x": [1, 2, 3]}), cluster=cluster, n_shards=10)
        assert frame.n_shards == 3
        assert frame.collect()["x"].to_list() == [1, 2, 3]


class TestGroupedScenario:
    def test_each_group_on_its_own_shard(self, cluster, grouped_data):
        frame = partition(grouped_data, by="g", cluster=cluster, n_shards=7)
        assert frame.n_shards == 7
        assert sorted(frame.shard_rows, reverse=True) == list(GROUP_SIZES.values())
        assert [s.node for s in frame.shards] == [0, 1, 2, 3, 0, 1, 2]
        keys_per_shard = frame.shard_values(lambda df: sorted(set(df["g"].to_list())))
        assert all(len(keys) == 1 for keys in keys_per_shard)

    def test_locality_with_fewer_shards(self, cluster, grouped_data):
        frame = partition(grouped_data, by="g", cluster=cluster)
        keys_per_shard = frame.shard_values(lambda df: set(df["g"].to_list()))
        seen = set()
        for keys in keys_per_shard:
            assert not keys & seen
            seen |= keys
        assert seen == set(GROUP_SIZES)

    def test_group_counts(self, cluster, grouped_data):
        frame = partition(grouped_data, by="g", cluster=cluster, n_shards=7)
        counts = frame.group_by("g").agg(n=pl.len()).collect()
        assert dict(zip(counts["g"].to_list(), counts["n"].to_list(), strict=True)) == GROUP_SIZES
        assert counts["n"].sum() == 300

    def test_summarise_uses_partition_keys(self, cluster, grouped_data):
        frame = partition(grouped_data, by="g", cluster=cluster)
        assert frame.group_keys == ("g",)
        result = frame.summarise(total=pl.col("x").sum())
        assert result.group_keys == ()
        expected = grouped_data.group_by("g").agg(total=pl.col("x").sum())
        assert_frame_equal(_sorted(result.collect(), "g"), _sorted(expected, "g"))


class TestDispatch:
    def test_callable(self, cluster, plain_data):
        frame = partition(plain_data, cluster=cluster).dispatch(Operation(_add_z, 100))
        assert frame.collect()["z"].to_list() == [x + 100 for x in range(plain_data.height)]

    def test_bare_callable(self, cluster, plain_data):
        frame = dispatch(partition(plain_data, cluster=cluster), lambda df: df.select("x"))
        assert frame.collect().columns == ["x"]

    def test_string_expression(self, cluster, plain_data):
        frame = partition(plain_data, cluster=cluster)
        result = frame.dispatch(Operation("df.filter(pl.col('x') < cutoff)", cutoff=10))
        assert result.collect()["x"].to_list() == list(range(10))
        assert result.n_rows == 10

    def test_row_counts_refreshed(self, cluster, plain_data):
        frame = partition(plain_data, cluster=cluster)
        result = frame.filter(pl.col("x") % 2 == 0)
        assert result.n_rows == (plain_data.height + 1) // 2
        assert result.n_rows == result.collect().height

    def test_old_frame_stays_valid(self, cluster, plain_data):
        frame = partition(plain_data, cluster=cluster)
        result = frame.select("x")
        assert {s.name for s in frame.shards}.isdisjoint({s.name for s in result.shards})
        assert_frame_equal(frame.collect(), plain_data)
        assert result.collect().columns == ["x"]

    def test_shards_may_become_non_frames(self, cluster, plain_data):
        frame = partition(plain_data, cluster=cluster)
        heights = frame.dispatch(lambda df: df.height)
        assert heights.shard_rows == (1, 1, 1, 1)
        assert heights.collect()["value"].sum() == plain_data.height

    def test_failure_on_one_node(self, cluster, plain_data):
        frame = partition(plain_data, cluster=cluster)
        cluster_assign_each(cluster, "fail", [False, False, True, False])
        try:
            with pytest.raises(EvaluationError) as excinfo:
                frame.dispatch("(1 / 0) if fail else df")
        finally:
            cluster_rm(cluster, "fail")
        assert excinfo.value.node_index == 2
        assert excinfo.value.error_type == "ZeroDivisionError"
        assert_frame_equal(frame.collect(), plain_data)

    def test_missing_column_error(self, cluster, plain_data):
        frame = partition(plain_data, cluster=cluster)
        with pytest.raises(EvaluationError) as excinfo:
            frame.select("nope")
        assert excinfo.value.node_index == 0
        assert "ColumnNotFoundError" in excinfo.value.error_type

    def test_concurrent_dispatch(self, cluster, plain_data):
        frame = partition(plain_data, cluster=cluster, n_shards=8)
        results = [None] * 6
        errors = []

        def run(i):
            try:
                results[i] = frame.with_columns(w=pl.col("x") * i).collect()
            except Exception as exc:
                errors.append(exc)

        threads = [threading.Thread(target=run, args=(i,)) for i in range(6)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        for i, result in enumerate(results):
            assert result["w"].to_list() == [x * i for x in range(plain_data.height)]

    def test_many_shards_on_one_node(self, cluster, plain_data):
        frame = partition(plain_data, cluster=cluster, n_shards=5, node_assignment=lambda s, n: 0)
        assert {s.node for s in frame.shards} == {0}
        result = frame.with_columns(z=pl.col("x") + 1)
        assert_frame_equal(result.collect(), plain_data.with_columns(z=pl.col("x") + 1))


class TestVerbs:
    def test_filter_and_mutate(self, cluster, plain_data):
        frame = partition(plain_data, cluster=cluster)
        result = frame.filter(pl.col("k") > 4).mutate(k2=pl.col("k") * 2)
        expected = plain_data.filter(pl.col("k") > 4).with_columns(k2=pl.col("k") * 2)
        assert_frame_equal(result.collect(), expected)

    def test_rename_moves_group_keys(self, cluster, grouped_data):
        frame = partition(grouped_data, by="g", cluster=cluster).rename({"g": "group"})
        assert frame.group_keys == ("group",)
        assert frame.partition_keys == ("group",)
        assert "group" in frame.collect().columns

    def test_sort_within_shards(self, cluster, plain_data):
        frame = partition(plain_data, cluster=cluster).sort("y", descending=True)
        for ys in frame.shard_values(lambda df: df["y"].to_list()):
            assert ys == sorted(ys, reverse=True)

    def test_unique(self, cluster):
        data = pl.DataFrame({"k": [1, 1, 2, 2, 3, 3, 3, 4]})
        frame = partition(data, by="k", cluster=cluster).unique()
        assert sorted(frame.collect()["k"].to_list()) == [1, 2, 3, 4]

    def test_ungrouped_agg_one_row_per_shard(self, cluster, plain_data):
        frame = partition(plain_data, cluster=cluster)
        result = frame.agg(n=pl.len())
        assert result.shard_rows == (1, 1, 1, 1)
        assert result.collect()["n"].sum() == plain_data.height

    def test_group_by_warns_when_groups_can_span_shards(self, cluster, plain_data):
        frame = partition(plain_data, cluster=cluster)
        with pytest.warns(UserWarning, match="groups may span shards"):
            frame.group_by("k")

    def test_group_by_subset_of_partition_keys_warns(self, cluster, grouped_data):
        data = grouped_data.with_columns(h=pl.col("x") % 2)
        frame = partition(data, by=["g", "h"], cluster=cluster)
        with pytest.warns(UserWarning):
            frame.group_by("g")

    def test_group_by_superset_is_silent(self, cluster, grouped_data, recwarn):
        frame = partition(grouped_data.with_columns(h=pl.col("x") % 2), by="g", cluster=cluster)
        grouped = frame.group_by(["g", "h"])
        assert grouped.group_keys == ("g", "h")
        assert not [w for w in recwarn if issubclass(w.category, UserWarning)]

    def test_ungroup(self, cluster, grouped_data):
        frame = partition(grouped_data, by="g", cluster=cluster).ungroup()
        assert frame.group_keys == ()
        assert frame.partition_keys == ("g",)

    def test_head(self, cluster, plain_data):
        frame = partition(plain_data, cluster=cluster)
        assert_frame_equal(frame.head(30), plain_data.head(30))
        assert frame.head(0).height == 0
        assert frame.head(10_000).height == plain_data.height
        with pytest.raises(ValueError):
            frame.head(-1)

    def test_pull(self, cluster, plain_data):
        frame = partition(plain_data, cluster=cluster)
        series = frame.pull("y")
        assert isinstance(series, pl.Series)
        assert series.name == "y"
        assert series.to_list() == plain_data["y"].to_list()
        assert pull(frame, "x").to_list() == plain_data["x"].to_list()


class TestNamedBindings:
    def test_compute_and_reattach(self, cluster, plain_data):
        frame = partition(plain_data, cluster=cluster)
        computed = frame.compute("stash")
        assert [s.name for s in computed.shards] == ["stash"] * 4

        again = party_frame("stash", cluster=cluster)
        assert again.partition_keys is None
        assert_frame_equal(again.collect(), plain_data)
        cluster_rm(cluster, "stash")

    def test_compute_requires_one_shard_per_node(self, cluster, plain_data):
        frame = partition(plain_data, cluster=cluster, n_shards=8)
        with pytest.raises(ValueError, match="more than one shard"):
            frame.compute("stash")

    def test_virtual_source(self, cluster):
        cluster_assign_expr(cluster, "base", "pl.DataFrame({'v': [1, 2, 3]})")
        try:
            frame = party_frame("base", cluster=cluster, group_keys=["v"])
            assert frame.n_shards == 4
            assert frame.shard_rows == (3, 3, 3, 3)
            assert frame.group_keys == ("v",)
            assert frame.collect()["v"].to_list() == [1, 2, 3] * 4
        finally:
            cluster_rm(cluster, "base")

    def test_party_frame_missing_binding(self, cluster):
        with pytest.raises(EvaluationError, match="NameError"):
            party_frame("does_not_exist", cluster=cluster)

    def test_release(self, cluster, plain_data):
        frame = partition(plain_data, cluster=cluster)
        frame.release()
        with pytest.raises(EvaluationError, match="NameError"):
            frame.collect()


class TestDescription:
    def test_repr(self, cluster, grouped_data):
        frame = partition(grouped_data, by="g", cluster=cluster, n_shards=7)
        assert repr(frame).split("\n") == [
            "Source: party frame [300 rows]",
            "Groups: g",
            "Shards: 7 [5--80 rows]",
            "Nodes: 4",
        ]

    def test_summary(self, cluster, plain_data):
        frame = partition(plain_data, cluster=cluster)
        text = frame.summary()
        assert "Party Frame" in text
        assert "4 shards on 4 nodes" in text
        for shard in frame.shards:
            assert shard.name in text
        assert frame.shards[0].name in frame.shard_table()

    def test_replace(self, cluster, plain_data):
        frame = partition(plain_data, cluster=cluster)
        copy = frame.replace(group_keys=["k"])
        assert isinstance(copy, PartyFrame)
        assert copy.shards == frame.shards
        assert copy.group_keys == ("k",)
        assert frame.group_keys == ()


def test_closed_cluster(dask_client, plain_data):
    cl = create_cluster(2, client=dask_client)
    frame = partition(plain_data, cluster=cl)
    cl.close()
    with pytest.raises(ClusterLifecycleError):
        frame.collect()
    with pytest.raises(ClusterLifecycleError):
        frame.filter(pl.col("x") > 0)
