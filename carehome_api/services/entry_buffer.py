# carehome_api/services/entry_buffer.py
"""
Client-side working copy of a month's entries.

Mutations are applied locally first, then sent. On success the row the
server returned replaces the local one; on failure only the affected row is
put back exactly as it was before the mutation, so unrelated local edits
survive.
"""
from __future__ import annotations

from copy import deepcopy
from typing import Callable, Dict, Iterable, List, Optional, Tuple

Key = Tuple[int, int]  # (site_id, day)

_ABSENT = object()


def _key(row: Dict) -> Key:
    return int(row["site_id"]), int(row["day"])


class EntryBuffer:
    def __init__(self, rows: Iterable[Dict] = ()):
        self._rows: Dict[Key, Dict] = {}
        for row in rows:
            self._rows[_key(row)] = dict(row)

    def rows(self) -> List[Dict]:
        return [self._rows[k] for k in sorted(self._rows, key=lambda k: (k[1], k[0]))]

    def get(self, site_id: int, day: int) -> Optional[Dict]:
        return self._rows.get((site_id, day))

    def _key_for_id(self, entry_id: int) -> Key:
        for k, row in self._rows.items():
            if row.get("id") == entry_id:
                return k
        raise KeyError(entry_id)

    def _restore(self, key: Key, snapshot) -> None:
        if snapshot is _ABSENT:
            self._rows.pop(key, None)
        else:
            self._rows[key] = snapshot

    def apply_upsert(self, row: Dict, send: Callable[[], Dict]) -> Dict:
        """Show `row` immediately, then merge the canonical row returned by `send`."""
        key = _key(row)
        snapshot = deepcopy(self._rows[key]) if key in self._rows else _ABSENT
        merged = dict(self._rows.get(key) or {})
        merged.update(row)
        merged["pending"] = True
        self._rows[key] = merged
        try:
            canonical = send()
        except Exception:
            self._restore(key, snapshot)
            raise
        self._rows.pop(key, None)
        self._rows[_key(canonical)] = dict(canonical)
        return canonical

    def apply_delete(self, entry_id: int, send: Callable[[], object]) -> None:
        key = self._key_for_id(entry_id)
        snapshot = deepcopy(self._rows[key])
        del self._rows[key]
        try:
            send()
        except Exception:
            self._restore(key, snapshot)
            raise
