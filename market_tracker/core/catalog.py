import json
import math
from typing import Iterator, List, Sequence
from pydantic import BaseModel, TypeAdapter
from market_tracker.config import settings

class Item(BaseModel):
    """A tradeable item. Defined outside the pipeline and never mutated by it."""
    id: int
    name: str
    asset: str

class ItemCatalog:
    def __init__(self, items: Sequence[Item]):
        ordered = sorted(items, key=lambda item: item.id)
        ids = [item.id for item in ordered]
        if len(set(ids)) != len(ids):
            raise ValueError("Item catalog contains duplicate ids")
        self._items = tuple(ordered)

    @classmethod
    def generate(cls, count: int) -> "ItemCatalog":
        return cls([
            Item(id=i, name=f"Item {i}", asset=f"/assets/game/items/{i}.webp")
            for i in range(count)
        ])

    @classmethod
    def from_file(cls, path: str) -> "ItemCatalog":
        with open(path, "r", encoding="utf-8") as f:
            raw = json.load(f)
        return cls(TypeAdapter(List[Item]).validate_python(raw))

    @classmethod
    def from_settings(cls) -> "ItemCatalog":
        if settings.ITEM_CATALOG_PATH:
            return cls.from_file(settings.ITEM_CATALOG_PATH)
        return cls.generate(settings.ITEM_COUNT)

    def __iter__(self) -> Iterator[Item]:
        return iter(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def batches(self, count: int) -> List[List[Item]]:
        """Contiguous, disjoint partitions covering every item exactly once"""
        if count <= 0:
            raise ValueError("Batch count must be positive")
        size = max(1, math.ceil(len(self._items) / count))
        return [list(self._items[i * size:(i + 1) * size]) for i in range(count)]

    def batch(self, index: int, count: int) -> List[Item]:
        if not 0 <= index < count:
            raise ValueError(f"Batch index {index} out of range for {count} batches")
        return self.batches(count)[index]
