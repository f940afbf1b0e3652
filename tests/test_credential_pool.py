"""
Tests for CredentialPool partitioning and rotation.
"""
import threading

import pytest

from longvideo.services.credential_pool import CredentialPool, mask_key


class TestPartitioning:

    def test_keys_split_into_disjoint_groups(self, api_keys):
        pool = CredentialPool(api_keys, group_count=3)

        assert pool.group_count == 3
        assert [g.keys for g in pool.groups] == [api_keys[0:2], api_keys[2:4], api_keys[4:6]]
        all_keys = [k for g in pool.groups for k in g.keys]
        assert sorted(all_keys) == sorted(api_keys)

    def test_uneven_split_uses_ceil_chunks(self):
        pool = CredentialPool([f"k{i}" for i in range(7)], group_count=3)

        assert [g.size for g in pool.groups] == [3, 3, 1]

    def test_fewer_keys_than_groups(self):
        """With two keys only two groups exist; batch binding wraps over them."""
        pool = CredentialPool(["k1", "k2"], group_count=3)

        assert pool.group_count == 2
        assert pool.group_for_batch(2).index == 0
        assert pool.group_for_batch(3).index == 1

    def test_empty_pool_rejected(self):
        with pytest.raises(ValueError):
            CredentialPool([])
        with pytest.raises(ValueError):
            CredentialPool(["", ""])


class TestRotation:

    def test_group_round_robin(self, pool):
        keys = [pool.next_key(group_index=1) for _ in range(4)]

        assert keys == ["test-key-3", "test-key-4", "test-key-3", "test-key-4"]

    def test_image_cursor_is_independent(self, pool):
        assert pool.next_key(group_index=0) == "test-key-1"
        assert pool.next_key(group_index=0, image=True) == "test-key-1"
        assert pool.next_key(group_index=0) == "test-key-2"
        assert pool.next_key(group_index=0, image=True) == "test-key-2"

    def test_groups_rotate_independently(self, pool):
        pool.next_key(group_index=0)
        assert pool.next_key(group_index=2) == "test-key-5"

    def test_pool_wide_rotation_without_group(self, pool, api_keys):
        keys = [pool.next_key() for _ in range(len(api_keys) + 1)]

        assert keys[:len(api_keys)] == api_keys
        assert keys[-1] == api_keys[0]

    def test_independent_pools_do_not_share_cursors(self, api_keys):
        first = CredentialPool(api_keys)
        second = CredentialPool(api_keys)
        first.next_key(group_index=0)

        assert second.next_key(group_index=0) == "test-key-1"

    def test_concurrent_rotation_is_balanced(self, pool):
        """Every key of a group is handed out equally under contention."""
        counts = {}
        lock = threading.Lock()

        def worker():
            for _ in range(100):
                key = pool.next_key(group_index=2)
                with lock:
                    counts[key] = counts.get(key, 0) + 1

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert counts == {"test-key-5": 400, "test-key-6": 400}


class TestMaskKey:

    def test_masks_long_keys(self):
        assert mask_key("sk-abcdef123456") == "sk-abc..."

    def test_short_and_empty(self):
        assert mask_key("abc") == "***"
        assert mask_key("") == "<empty>"
