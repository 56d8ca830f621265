"""
Tests for bucket tables and query strategies.
"""

import pytest
import numpy as np

from itqlsh import (
    ITQLSHIndex,
    ITQConfig,
    ProbeSequence,
    TopKScanner,
    TableModeError,
    NotTrainedError,
)
from itqlsh.core.buckets import multi_probe_codes
from itqlsh.core.training import orthogonality_error
from itqlsh.utils.metrics import compute_ground_truth


class TestBuckets:
    """Test insertion into bucket tables."""

    def test_every_vector_stored_once(self, trained_index, clustered_data):
        vectors, _ = clustered_data
        buckets = trained_index.buckets()

        stored = sorted(i for ids in buckets.values() for i in ids)
        assert stored == list(range(len(vectors)))

    def test_vectors_stored_under_own_code(self, trained_index, clustered_data):
        vectors, _ = clustered_data
        buckets = trained_index.buckets()
        for i in range(0, len(vectors), 97):
            assert i in buckets[trained_index.hash_code(0, vectors[i])]

    def test_buckets_view_is_read_only(self, trained_index):
        buckets = trained_index.buckets()
        with pytest.raises(TypeError):
            buckets[12345] = [0]

    def test_insert_appends_in_order(self, identity_index):
        index, points = identity_index
        index.insert(7, points[0])
        assert list(index.buckets()[0b0111]) == [0, 7]

    def test_insert_into_every_table(self, clustered_data):
        vectors, _ = clustered_data
        index = ITQLSHIndex(ITQConfig(dimension=16, n_bits=6, n_tables=3,
                                      n_train_samples=300, n_iterations=5))
        index.build(vectors)

        for table in range(3):
            assert index.bucket_index.n_entries(table) == len(vectors)

    def test_batch_insert_requires_training(self, clustered_data):
        vectors, _ = clustered_data
        index = ITQLSHIndex(ITQConfig(dimension=16, n_bits=6))
        with pytest.raises(NotTrainedError):
            index.batch_insert(vectors)

    def test_stats(self, trained_index, clustered_data):
        vectors, _ = clustered_data
        stats = trained_index.get_stats()

        assert stats['is_trained']
        assert stats['n_bucket_tables'] == 1
        assert stats['buckets']['tables'][0]['n_entries'] == len(vectors)
        assert stats['config']['n_bits'] == 8
        assert len(stats['final_quantization_loss']) == 1


class TestExactQuery:
    """Test probing the query's own bucket."""

    def test_finds_itself(self):
        rng = np.random.RandomState(5)
        vectors = rng.randn(64, 8).astype(np.float32)
        index = ITQLSHIndex(ITQConfig(dimension=8, n_bits=4, n_train_samples=16))
        index.build(vectors)

        for i in range(len(vectors)):
            topk = index.query(vectors[i], TopKScanner(vectors, k=1))
            assert topk[0][1] == i
            assert topk[0][0] == pytest.approx(0.0, abs=1e-6)

    def test_unit_vectors_with_full_sample(self):
        rng = np.random.RandomState(21)
        vectors = rng.randn(16, 8)
        vectors = (vectors / np.linalg.norm(vectors, axis=1, keepdims=True)).astype(np.float32)

        index = ITQLSHIndex(ITQConfig(dimension=8, n_bits=4, n_train_samples=16))
        index.train(vectors)
        index.batch_insert(vectors)

        assert orthogonality_error(index.rotation()) < 1e-4
        for i in range(len(vectors)):
            topk = index.query(vectors[i], TopKScanner(vectors, k=1))
            assert topk[0][1] == i

    def test_candidates_fed_through_scanner_call(self, identity_index, recording_scanner):
        index, _ = identity_index
        calls = []

        class CountingScanner(type(recording_scanner)):
            def __call__(self, candidate_id):
                calls.append(candidate_id)
                super().__call__(candidate_id)

        scanner = CountingScanner()
        index.query(np.array([-1, 1, 1, 1], dtype=np.float32), scanner)

        assert calls == [0]
        assert scanner.seen == [0]

    def test_probes_one_bucket(self, trained_index, clustered_data):
        vectors, queries = clustered_data
        code = trained_index.hash_code(0, queries[0])
        trained_index.query(queries[0], TopKScanner(vectors))

        stats = trained_index.last_query_stats
        assert stats.buckets_probed == 1
        assert stats.candidates == len(trained_index.buckets().get(code, []))

    def test_empty_bucket(self, identity_index, recording_scanner):
        index, _ = identity_index
        index.query(np.array([1, 1, 1, 1], dtype=np.float32), recording_scanner)
        assert recording_scanner.seen == []
        assert index.last_query_stats.candidates == 0

    def test_multi_table_query(self, clustered_data):
        vectors, queries = clustered_data
        index = ITQLSHIndex(ITQConfig(dimension=16, n_bits=6, n_tables=2,
                                      n_train_samples=300, n_iterations=5))
        index.build(vectors)

        scanner = TopKScanner(vectors, k=5)
        index.query(queries[0], scanner)

        expected = set()
        for table in range(2):
            code = index.hash_code(table, queries[0])
            expected.update(index.bucket_index.get(table, code))

        assert index.last_query_stats.buckets_probed == 2
        assert scanner.n_scanned == len(expected)


class TestHammingRanking:
    """Test Hamming-ranked multi-probe."""

    def test_probe_order(self, identity_index, recording_scanner):
        index, _ = identity_index
        query = np.array([-1, 1, 1, -1], dtype=np.float32)
        assert index.hash_code(0, query) == 0b0110

        index.query_ranking(query, recording_scanner, max_buckets=3)

        # 0100 and 0111 are at distance 1 (ascending code breaks the tie), 0000 at 2
        assert recording_scanner.seen == [1, 0, 2]

    def test_budget_limits_buckets(self, identity_index, recording_scanner):
        index, _ = identity_index
        query = np.array([-1, 1, 1, -1], dtype=np.float32)

        index.query_ranking(query, recording_scanner, max_buckets=2)

        assert recording_scanner.seen == [1, 0]
        assert index.last_query_stats.buckets_probed == 2

    def test_rank_by_hamming(self, identity_index):
        index, _ = identity_index
        ranked = index.searcher.rank_by_hamming(0b0110)
        assert ranked.tolist() == [0b0100, 0b0111, 0b0000]

    def test_full_budget_is_exhaustive(self, trained_index, clustered_data):
        vectors, queries = clustered_data
        n_buckets = len(trained_index.buckets())
        gt_ids, _ = compute_ground_truth(vectors, queries, k=10)

        for i, query in enumerate(queries[:5]):
            scanner = TopKScanner(vectors, k=10)
            topk = trained_index.query_ranking(query, scanner, max_buckets=n_buckets)

            assert scanner.n_scanned == len(vectors)
            assert {j for _, j in topk} == set(gt_ids[i].tolist())

    def test_invalid_budget(self, trained_index, clustered_data):
        vectors, queries = clustered_data
        with pytest.raises(ValueError):
            trained_index.query_ranking(queries[0], TopKScanner(vectors), max_buckets=0)


class TestLossRanking:
    """Test loss-ranked multi-probe over populated buckets."""

    def test_probe_order(self, identity_index, recording_scanner):
        index, _ = identity_index
        query = np.array([-0.5, 1, 2, -0.1], dtype=np.float32)

        index.query_ranking_by_loss(query, recording_scanner, max_buckets=3)

        # 0111 costs 0.1, 0100 costs 2.0, 0000 costs 3.0
        assert recording_scanner.seen == [0, 1, 2]

    def test_rank_by_loss_is_sorted(self, trained_index, clustered_data):
        _, queries = clustered_data
        for query in queries[:5]:
            signature = trained_index.hash_floats(0, query)
            codes, losses = trained_index.searcher.rank_by_loss(signature >= 0, signature)

            assert len(codes) == len(trained_index.buckets())
            assert np.all(np.diff(losses) >= 0)

    def test_probes_are_ranking_prefix(self, trained_index, clustered_data, recording_scanner):
        _, queries = clustered_data
        query = queries[3]
        signature = trained_index.hash_floats(0, query)
        ranked, _ = trained_index.searcher.rank_by_loss(signature >= 0, signature)
        buckets = trained_index.buckets()

        trained_index.query_ranking_by_loss(query, recording_scanner, max_buckets=5)

        expected = [i for code in ranked[:5] for i in buckets[int(code)]]
        assert recording_scanner.seen == expected


class TestLossMultiProbe:
    """Test the generated multi-probe sequence query."""

    def test_probe_order(self, identity_index, recording_scanner):
        index, _ = identity_index
        query = np.array([-0.5, 1, 2, -0.1], dtype=np.float32)

        # Own bucket 0110 is empty; first alternative 0111 holds id 0
        index.query_by_loss(query, recording_scanner, max_buckets=2)

        assert recording_scanner.seen == [0]
        assert index.last_query_stats.buckets_probed == 2

    def test_budget_of_one_is_exact_query(self, trained_index, clustered_data):
        vectors, queries = clustered_data
        for query in queries[:5]:
            exact = trained_index.query(query, TopKScanner(vectors))
            probed = trained_index.query_by_loss(query, TopKScanner(vectors), max_buckets=1)
            assert exact == probed

    def test_stops_when_sequence_exhausted(self, identity_index, recording_scanner):
        index, _ = identity_index
        query = np.array([-0.5, 1, 2, -0.1], dtype=np.float32)

        index.query_by_loss(query, recording_scanner, max_buckets=100)

        assert index.last_query_stats.buckets_probed == 16
        assert sorted(recording_scanner.seen) == [0, 1, 2]

    def test_more_buckets_more_candidates(self, trained_index, clustered_data):
        vectors, queries = clustered_data
        previous = -1
        for budget in (1, 4, 16, 64):
            scanner = TopKScanner(vectors)
            trained_index.query_by_loss(queries[0], scanner, max_buckets=budget)
            assert scanner.n_scanned >= previous
            previous = scanner.n_scanned

    def test_calibrated_requires_statistics(self, trained_index, clustered_data):
        vectors, queries = clustered_data
        with pytest.raises(RuntimeError):
            trained_index.query_by_loss(
                queries[0], TopKScanner(vectors), max_buckets=4, calibrated=True
            )

    def test_calibrated_query(self, trained_index, clustered_data):
        vectors, queries = clustered_data
        trained_index.set_calibration(vectors)

        scanner = TopKScanner(vectors)
        trained_index.query_by_loss(queries[0], scanner, max_buckets=8, calibrated=True)

        assert trained_index.last_query_stats.buckets_probed == 8
        assert trained_index.get_stats()['calibrated']

    def test_calibrated_query_passes_bit_losses(self, clustered_data, small_config):
        vectors, queries = clustered_data
        received = []

        def factory(bits, signature, bit_losses=None):
            received.append(bit_losses)
            return ProbeSequence(bits, signature, bit_losses=bit_losses)

        index = ITQLSHIndex(small_config, probe_factory=factory).build(vectors)
        stats = index.set_calibration(vectors)

        index.query_by_loss(queries[0], TopKScanner(vectors), max_buckets=4, calibrated=True)
        index.query_by_loss(queries[0], TopKScanner(vectors), max_buckets=4)

        signature = index.hash_floats(0, queries[0])
        np.testing.assert_allclose(received[0], stats.normalize(signature))
        assert received[1] is None


class TestTableMode:
    """Multi-probe strategies need a single hash table."""

    @pytest.fixture
    def two_table_index(self, clustered_data):
        vectors, _ = clustered_data
        index = ITQLSHIndex(ITQConfig(dimension=16, n_bits=6, n_tables=2,
                                      n_train_samples=300, n_iterations=5))
        return index.build(vectors)

    @pytest.mark.parametrize("method", [
        'query_ranking', 'query_ranking_by_loss', 'query_by_loss'
    ])
    def test_budgeted_strategies(self, two_table_index, clustered_data, method):
        vectors, queries = clustered_data
        with pytest.raises(TableModeError):
            getattr(two_table_index, method)(queries[0], TopKScanner(vectors), max_buckets=4)

    def test_rehash_query(self, two_table_index, clustered_data):
        vectors, queries = clustered_data
        with pytest.raises(TableModeError):
            two_table_index.query_rehash(queries[0], TopKScanner(vectors))

    def test_rebuild(self, two_table_index, clustered_data):
        vectors, _ = clustered_data
        with pytest.raises(TableModeError):
            two_table_index.rebuild_multi_probe(vectors, 4)

    def test_bucket_access(self, two_table_index):
        with pytest.raises(TableModeError):
            two_table_index.buckets()

    def test_table_mode_error_is_runtime_error(self, two_table_index):
        with pytest.raises(RuntimeError):
            two_table_index.buckets()


class TestMultiProbeRebuild:
    """Test rebuilding into virtual multi-probe tables."""

    def test_single_table_is_noop(self, trained_index, clustered_data):
        vectors, _ = clustered_data
        before = trained_index.bucket_index.tables

        trained_index.rebuild_multi_probe(vectors, 1)

        assert trained_index.bucket_index.tables is before
        assert trained_index.n_bucket_tables == 1

    def test_single_table_is_noop_with_several_hash_tables(self, clustered_data):
        vectors, _ = clustered_data
        index = ITQLSHIndex(ITQConfig(dimension=16, n_bits=6, n_tables=2,
                                      n_train_samples=300, n_iterations=5))
        index.build(vectors)
        before = index.bucket_index.tables

        assert index.rebuild_multi_probe(vectors, 1) is index
        assert index.bucket_index.tables is before

    def test_single_table_is_noop_before_training(self):
        index = ITQLSHIndex(ITQConfig(dimension=8, n_bits=4))

        index.rebuild_multi_probe(np.zeros((5, 8), dtype=np.float32), 1)

        assert index.n_bucket_tables == 1
        assert not index.is_trained

    def test_insert_after_rebuild_fills_every_table(self, trained_index, clustered_data):
        vectors, queries = clustered_data
        trained_index.rebuild_multi_probe(vectors, 3)
        new_id = len(vectors)

        trained_index.insert(new_id, queries[0])

        for table in range(3):
            assert trained_index.bucket_index.n_entries(table) == len(vectors) + 1

        expected = multi_probe_codes(trained_index.hasher, queries[0], 3, ProbeSequence)
        for table, code in enumerate(expected):
            assert new_id in trained_index.bucket_index.get(table, code)

        scanner = TopKScanner(np.vstack([vectors, queries[:1]]), k=1)
        assert trained_index.query_rehash(queries[0], scanner)[0][1] == new_id

    def test_rebuild_with_two_argument_factory(self, clustered_data, small_config):
        vectors, _ = clustered_data
        calls = []

        def factory(bits, signature):
            calls.append(len(bits))
            return ProbeSequence(bits, signature)

        index = ITQLSHIndex(small_config, probe_factory=factory).build(vectors)
        index.rebuild_multi_probe(vectors, 2)

        assert len(calls) == len(vectors)
        assert index.bucket_index.n_entries(1) == len(vectors)

    def test_table_layout(self, trained_index, clustered_data):
        vectors, _ = clustered_data
        original = dict(trained_index.buckets())

        trained_index.rebuild_multi_probe(vectors, 4)

        assert trained_index.n_bucket_tables == 4
        assert trained_index.bucket_index.tables[0] == original
        for table in range(4):
            assert trained_index.bucket_index.n_entries(table) == len(vectors)

    def test_point_codes_follow_probe_sequence(self, trained_index, clustered_data):
        vectors, _ = clustered_data
        trained_index.rebuild_multi_probe(vectors, 4)

        for i in (0, 17, 999):
            signature = trained_index.hash_floats(0, vectors[i])
            sequence = trained_index.searcher.probe_factory(signature >= 0, signature)
            expected = [sequence.code] + [sequence.pop() for _ in range(3)]

            for table, code in enumerate(expected):
                assert i in trained_index.bucket_index.get(table, code)

    def test_rehash_query_finds_itself(self, trained_index, clustered_data):
        vectors, _ = clustered_data
        trained_index.rebuild_multi_probe(vectors, 4)

        for i in (3, 500, 1500):
            topk = trained_index.query_rehash(vectors[i], TopKScanner(vectors, k=1))
            assert topk[0][1] == i
            assert trained_index.last_query_stats.buckets_probed == 4

    def test_table_count_limits(self, trained_index, clustered_data):
        vectors, _ = clustered_data
        with pytest.raises(ValueError):
            trained_index.rebuild_multi_probe(vectors, 0)
        with pytest.raises(ValueError):
            trained_index.rebuild_multi_probe(vectors, 2 ** 8 + 1)

    def test_all_codes(self, identity_index):
        index, points = identity_index
        index.rebuild_multi_probe(points, 16)

        for table in range(16):
            assert index.bucket_index.n_entries(table) == 3
        for i, point in enumerate(points):
            codes = [code for table in range(16)
                     for code, ids in index.bucket_index.items(table) if i in ids]
            assert sorted(codes) == list(range(16))


class TestBatchQuery:
    """Test running a strategy over many queries."""

    def test_batch_matches_single(self, trained_index, clustered_data):
        vectors, queries = clustered_data
        results = trained_index.batch_query(
            queries, lambda: TopKScanner(vectors, k=5),
            method='query_ranking', max_buckets=8
        )

        assert len(results) == len(queries)
        for query, result in zip(queries, results):
            single = trained_index.query_ranking(query, TopKScanner(vectors, k=5), max_buckets=8)
            assert result == single

    def test_unknown_method(self, trained_index, clustered_data):
        vectors, queries = clustered_data
        with pytest.raises(ValueError):
            trained_index.batch_query(queries, lambda: TopKScanner(vectors), method='nope')
