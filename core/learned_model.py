"""
learned_model.py
-----------------
Mutable state of the adaptive categorizer.

Token statistics, per-category document counts and running amount
statistics. Counts only grow (until an explicit reset) and
total_examples always equals the sum of category document counts.

The dict form (`to_dict` / `from_dict`) is the persisted schema. Readers
ignore unknown keys and derive missing optional ones, so new fields can be
added without invalidating older files.
"""

import math
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable


SCHEMA_VERSION = 1


@dataclass
class AmountStats:
    """
    Running amount statistics updated with Welford's online algorithm.

    m2 is the sum of squared deviations from the running mean; stddev is
    the sample standard deviation (m2 / (count - 1)).
    """

    mean: float = 0.0
    stddev: float = 0.0
    count: int = 0
    m2: float = 0.0

    def update(self, amount: float) -> None:
        self.count += 1
        delta = amount - self.mean
        self.mean += delta / self.count
        self.m2 += delta * (amount - self.mean)
        self.stddev = math.sqrt(self.m2 / (self.count - 1)) if self.count > 1 else 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {"mean": self.mean, "stddev": self.stddev, "count": self.count, "m2": self.m2}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AmountStats":
        count = int(data["count"])
        stddev = float(data["stddev"])
        # Older records carry only (mean, stddev, count)
        m2 = float(data.get("m2", stddev * stddev * max(count - 1, 0)))
        return cls(mean=float(data["mean"]), stddev=stddev, count=count, m2=m2)


@dataclass
class LearnedModel:
    """Everything the categorizer has learned from confirmed examples."""

    category_token_counts: Dict[str, Dict[str, int]] = field(default_factory=dict)
    category_doc_counts: Dict[str, int] = field(default_factory=dict)
    document_frequency: Dict[str, int] = field(default_factory=dict)   # token -> #categories containing it
    vocabulary: set[str] = field(default_factory=set)
    total_examples: int = 0
    category_amount_stats: Dict[str, AmountStats] = field(default_factory=dict)

    # -------------------------------------------------------------------------
    # UPDATES
    # -------------------------------------------------------------------------

    def record_example(self, category: str, tokens: list[str], amount: float) -> set[str]:
        """
        Adds one labeled example. Document frequency is NOT refreshed here.

        Returns:
            The set of tokens touched by this example.
        """
        self.category_doc_counts[category] = self.category_doc_counts.get(category, 0) + 1
        self.total_examples += 1

        counts = self.category_token_counts.setdefault(category, {})
        for token in tokens:
            counts[token] = counts.get(token, 0) + 1
            self.vocabulary.add(token)

        self.category_amount_stats.setdefault(category, AmountStats()).update(amount)
        return set(tokens)

    def refresh_document_frequency(self, tokens: Iterable[str] | None = None) -> None:
        """Recomputes category counts for the given tokens (all vocabulary if None)."""
        for token in (self.vocabulary if tokens is None else tokens):
            self.document_frequency[token] = sum(
                1 for counts in self.category_token_counts.values() if token in counts
            )

    # -------------------------------------------------------------------------
    # QUERIES
    # -------------------------------------------------------------------------

    @property
    def categories(self) -> list[str]:
        return list(self.category_doc_counts)

    def token_total(self, category: str) -> int:
        return sum(self.category_token_counts.get(category, {}).values())

    def top_tokens(self, category: str, limit: int) -> list[str]:
        """Most frequent tokens of a category; ties broken alphabetically."""
        counts = self.category_token_counts.get(category, {})
        ranked = sorted(counts.items(), key=lambda item: (-item[1], item[0]))
        return [token for token, _ in ranked[:limit]]

    # -------------------------------------------------------------------------
    # SERIALIZATION
    # -------------------------------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        """Detached, JSON-serializable snapshot."""
        return {
            "schema_version": SCHEMA_VERSION,
            "category_token_counts": {cat: dict(counts) for cat, counts in self.category_token_counts.items()},
            "category_doc_counts": dict(self.category_doc_counts),
            "total_examples": self.total_examples,
            "document_frequency": dict(self.document_frequency),
            "vocabulary": sorted(self.vocabulary),
            "category_amount_stats": {
                cat: stats.to_dict() for cat, stats in self.category_amount_stats.items()
            },
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LearnedModel":
        """
        Rebuilds a model from its persisted form.

        Raises:
            KeyError / TypeError / ValueError / AttributeError on malformed input.
        """
        token_counts = {
            str(cat): {str(tok): int(n) for tok, n in counts.items()}
            for cat, counts in data["category_token_counts"].items()
        }
        doc_counts = {str(cat): int(n) for cat, n in data["category_doc_counts"].items()}

        vocabulary = set(data.get("vocabulary") or [])
        if not vocabulary:
            vocabulary = {tok for counts in token_counts.values() for tok in counts}

        model = cls(
            category_token_counts=token_counts,
            category_doc_counts=doc_counts,
            document_frequency={str(tok): int(n) for tok, n in (data.get("document_frequency") or {}).items()},
            vocabulary=vocabulary,
            total_examples=int(data.get("total_examples", sum(doc_counts.values()))),
            category_amount_stats={
                str(cat): AmountStats.from_dict(stats)
                for cat, stats in (data.get("category_amount_stats") or {}).items()
            },
        )

        if not model.document_frequency and model.vocabulary:
            model.refresh_document_frequency()

        return model
