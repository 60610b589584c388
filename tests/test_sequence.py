"""Tests for run identifiers"""

import threading

from flakeguard.infrastructure.sequence import next_sequence_id


class TestNextSequenceId:
    """Tests for next_sequence_id"""

    def test_prefix(self):
        """Test ids carry the requested prefix"""
        assert next_sequence_id("retry").startswith("retry-")
        assert next_sequence_id().startswith("run-")

    def test_ids_increase(self):
        """Test ids are monotonically increasing across prefixes"""
        first = int(next_sequence_id("wait").rsplit("-", 1)[1])
        second = int(next_sequence_id("retry").rsplit("-", 1)[1])
        assert second > first

    def test_unique_across_threads(self):
        """Test concurrent callers never receive the same id"""
        ids = []
        lock = threading.Lock()

        def worker():
            for _ in range(200):
                value = next_sequence_id("t")
                with lock:
                    ids.append(value)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(ids) == 1600
        assert len(set(ids)) == 1600
