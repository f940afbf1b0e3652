"""
Credential Pool - partitions upstream API keys into disjoint groups.

Each batch is bound to one group for its lifetime (group = batch index mod
group count). Inside a group keys rotate round-robin, with an image cursor
kept separately from the general cursor because image endpoints are rate
limited on their own budget upstream.
"""
import math
import logging
import threading
from typing import List, Optional, Sequence

logger = logging.getLogger(__name__)

DEFAULT_GROUP_COUNT = 3


def mask_key(key: str) -> str:
    """Log-safe key representation."""
    if not key:
        return "<empty>"
    return f"{key[:6]}..." if len(key) > 6 else "***"


class _Cursor:
    """Atomic increment-and-wrap counter."""

    def __init__(self):
        self._value = 0
        self._lock = threading.Lock()

    def next(self, size: int) -> int:
        with self._lock:
            index = self._value % size
            self._value = (index + 1) % size
            return index


class CredentialGroup:
    """A disjoint subset of keys with its own rotation cursors."""

    def __init__(self, index: int, keys: Sequence[str]):
        if not keys:
            raise ValueError("Credential group must contain at least one key")
        self.index = index
        self.keys: List[str] = list(keys)
        self._general = _Cursor()
        self._image = _Cursor()

    @property
    def size(self) -> int:
        return len(self.keys)

    def next_key(self) -> str:
        return self.keys[self._general.next(self.size)]

    def next_image_key(self) -> str:
        return self.keys[self._image.next(self.size)]

    def __repr__(self) -> str:
        return f"CredentialGroup(index={self.index}, size={self.size})"


class CredentialPool:
    """
    Owns every upstream credential.

    Keys are sliced into at most group_count contiguous chunks of
    ceil(N / group_count). With fewer keys than groups, fewer groups exist and
    batch binding wraps over the groups that do.
    """

    def __init__(self, keys: Sequence[str], group_count: int = DEFAULT_GROUP_COUNT):
        keys = [k for k in keys if k]
        if not keys:
            raise ValueError("CredentialPool requires at least one API key")
        if group_count <= 0:
            raise ValueError("group_count must be positive")

        self.keys: List[str] = keys
        chunk = math.ceil(len(keys) / group_count)
        self.groups: List[CredentialGroup] = [
            CredentialGroup(i, keys[start:start + chunk])
            for i, start in enumerate(range(0, len(keys), chunk))
        ]

        self._general = _Cursor()
        self._image = _Cursor()

        logger.info(
            f"[POOL] {len(keys)} keys in {len(self.groups)} groups "
            f"(sizes: {[g.size for g in self.groups]})"
        )

    @property
    def group_count(self) -> int:
        return len(self.groups)

    def group_for_batch(self, batch_index: int) -> CredentialGroup:
        return self.groups[batch_index % len(self.groups)]

    def group(self, group_index: int) -> CredentialGroup:
        return self.groups[group_index % len(self.groups)]

    def next_key_in_group(self, group_index: int) -> str:
        key = self.group(group_index).next_key()
        logger.debug(f"[POOL] group {group_index} -> {mask_key(key)}")
        return key

    def next_image_key_in_group(self, group_index: int) -> str:
        key = self.group(group_index).next_image_key()
        logger.debug(f"[POOL] group {group_index} (image) -> {mask_key(key)}")
        return key

    def next_key(self, group_index: Optional[int] = None, image: bool = False) -> str:
        """
        Next key for a call.

        With a group index the call is scoped to that group; without one
        (analysis, merge, manual regenerate) it rotates over the whole pool.
        """
        if group_index is not None:
            if image:
                return self.next_image_key_in_group(group_index)
            return self.next_key_in_group(group_index)

        cursor = self._image if image else self._general
        return self.keys[cursor.next(len(self.keys))]

    def __len__(self) -> int:
        return len(self.keys)
