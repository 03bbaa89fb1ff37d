from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Iterable, Optional


@dataclass(frozen=True)
class GenerationContext:
    """
    What has already been generated for a session.

    Threaded by value through every batch call: the generator receives
    the previous context and hands back a new one, nothing is mutated.
    """

    generated_ids: FrozenSet[str] = field(default_factory=frozenset)
    last_batch_index: int = -1

    @classmethod
    def empty(cls) -> "GenerationContext":
        return cls()

    def advance(self, batch_index: int, new_ids: Iterable[str]) -> "GenerationContext":
        return GenerationContext(
            generated_ids=self.generated_ids | frozenset(new_ids),
            last_batch_index=batch_index,
        )

    def contains(self, question_id: str) -> bool:
        return question_id in self.generated_ids

    def to_dict(self) -> Dict[str, Any]:
        return {
            "generated_ids": sorted(self.generated_ids),
            "last_batch_index": self.last_batch_index,
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "GenerationContext":
        if not data:
            return cls.empty()
        # Older rows stored camelCase keys
        ids = data.get("generated_ids", data.get("generatedIds", []))
        last = data.get("last_batch_index", data.get("lastBatchIndex", -1))
        return cls(generated_ids=frozenset(ids or []), last_batch_index=int(last))
