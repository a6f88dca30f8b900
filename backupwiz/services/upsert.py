"""
Natural-key upsert into destination entity tables.

Rows are matched on (tenant_id, natural key). Missing rows are inserted;
existing rows are only touched when at least one incoming value differs, so
``updated_at`` moves only on real changes.
"""

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Sequence, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from backupwiz.core.utils import values_differ

LOOKUP_CHUNK = 500


@dataclass
class UpsertCounts:
    inserted: int = 0
    updated: int = 0
    unchanged: int = 0

    @property
    def written(self) -> int:
        return self.inserted + self.updated

    @property
    def seen(self) -> int:
        return self.inserted + self.updated + self.unchanged

    def __iadd__(self, other: "UpsertCounts") -> "UpsertCounts":
        self.inserted += other.inserted
        self.updated += other.updated
        self.unchanged += other.unchanged
        return self


async def load_existing(
    session: AsyncSession,
    model,
    tenant_id: int,
    key_attr: str,
    keys: Sequence[Any],
) -> Dict[Any, Any]:
    column = getattr(model, key_attr)
    existing: Dict[Any, Any] = {}
    unique_keys = list(dict.fromkeys(keys))
    for start in range(0, len(unique_keys), LOOKUP_CHUNK):
        chunk = unique_keys[start:start + LOOKUP_CHUNK]
        result = await session.execute(
            select(model).where(model.tenant_id == tenant_id, column.in_(chunk))
        )
        for obj in result.scalars():
            existing[getattr(obj, key_attr)] = obj
    return existing


async def upsert_rows(
    session: AsyncSession,
    model,
    tenant_id: int,
    key_attr: str,
    rows: Sequence[Mapping[str, Any]],
) -> Tuple[UpsertCounts, Dict[Any, Any]]:
    """Upsert ``rows`` in order and flush. Returns counts and the key -> ORM object map."""
    counts = UpsertCounts()
    if not rows:
        return counts, {}

    existing = await load_existing(session, model, tenant_id, key_attr, [row[key_attr] for row in rows])
    for row in rows:
        key = row[key_attr]
        obj = existing.get(key)
        if obj is None:
            obj = model(tenant_id=tenant_id, **row)
            session.add(obj)
            existing[key] = obj
            counts.inserted += 1
            continue

        changed = {name: value for name, value in row.items() if values_differ(getattr(obj, name), value)}
        if changed:
            for name, value in changed.items():
                setattr(obj, name, value)
            counts.updated += 1
        else:
            counts.unchanged += 1

    await session.flush()
    return counts, existing
