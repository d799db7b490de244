"""
deductibility.py
-----------------
Category -> deductibility lookup layer.

Loads the deductibility_rules table from config.yaml and indexes it by
category label. The categorizer attaches the result to every prediction.
Any object exposing `suggest(category)` can be used in its place.

Rule updates happen in config.yaml. No code changes required.
"""

from typing import Dict, Optional, Tuple

from config.config_loader import get_deductibility_rules


UNKNOWN_CATEGORY_NOTE = "Unknown category. Consult a tax professional."


class DeductibilityLookup:
    """
    Fast lookup from category -> (is_deductible, percentage, note).

    Built once at init from the config rule table. Thread-safe for reads.
    """

    def __init__(self):
        self._index: Dict[str, Dict] = {}
        self._load_rules()

    def _load_rules(self) -> None:
        """Builds the lookup index from config."""
        for entry in get_deductibility_rules():
            # Last entry wins on duplicate categories
            self._index[entry["category"]] = entry

    def lookup(self, category: str) -> Optional[Dict]:
        """Full rule for a category, or None if the category is not in the table."""
        return self._index.get(category)

    def suggest(self, category: str) -> Tuple[bool, float, str]:
        """
        Returns:
            (is_deductible, percentage, note). Unknown categories are
            reported as not deductible.
        """
        rule = self.lookup(category)
        if rule is None:
            return False, 0.0, UNKNOWN_CATEGORY_NOTE
        return bool(rule["is_deductible"]), float(rule["percentage"]), str(rule.get("note", ""))

    def __len__(self) -> int:
        return len(self._index)

    def __repr__(self) -> str:
        return f"DeductibilityLookup(categories={len(self)})"
