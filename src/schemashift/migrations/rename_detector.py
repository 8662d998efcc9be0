"""
Rename Detector

Heuristic matcher that pairs removed and added tables/columns which are
most likely renames of one another, so they are not migrated as a
data-losing drop followed by a create.
"""

import logging
from dataclasses import dataclass

from .schema import ColumnDefinition, TableDefinition, normalize_type

logger = logging.getLogger(__name__)

# Types that can be renamed across without a meaningful data change
TYPE_FAMILIES: dict[str, frozenset[str]] = {
    "integer": frozenset({"tinyint", "smallint", "mediumint", "int", "bigint"}),
    "text": frozenset({"varchar", "char", "text", "tinytext", "mediumtext", "longtext"}),
    "float": frozenset({"float", "double", "decimal"}),
    "date": frozenset({"date", "datetime", "timestamp"}),
}


@dataclass
class ColumnRename:
    """A proposed column rename within one table."""

    table: str
    from_name: str
    to_name: str
    confidence: float


@dataclass
class TableRename:
    """A proposed table rename."""

    from_name: str
    to_name: str
    confidence: float


def levenshtein_distance(a: str, b: str) -> int:
    """Classic edit distance using a rolling row."""
    if len(a) < len(b):
        a, b = b, a
    previous = list(range(len(b) + 1))
    for i, char_a in enumerate(a, start=1):
        current = [i]
        for j, char_b in enumerate(b, start=1):
            cost = 0 if char_a == char_b else 1
            current.append(
                min(
                    previous[j] + 1,  # deletion
                    current[j - 1] + 1,  # insertion
                    previous[j - 1] + cost,  # substitution
                )
            )
        previous = current
    return previous[-1]


def name_similarity(a: str, b: str) -> float:
    """Case-insensitive normalized Levenshtein similarity in [0, 1]."""
    a, b = a.lower(), b.lower()
    max_length = max(len(a), len(b))
    if max_length == 0:
        return 1.0
    return 1.0 - levenshtein_distance(a, b) / max_length


class RenameDetector:
    """
    Scores removed/added pairs and greedily selects the best matches.

    Selection sorts candidates by confidence and takes each one whose
    source and destination are still unused. This approximates a
    bipartite matching; it is not an optimal assignment.
    """

    SIMILARITY_THRESHOLD = 0.6
    HIGH_CONFIDENCE_THRESHOLD = 0.8

    def detect_column_renames(
        self,
        table: str,
        removed_columns: list[ColumnDefinition],
        added_columns: list[ColumnDefinition],
        excluded: set[tuple[str, str]] | None = None,
    ) -> list[ColumnRename]:
        """
        Detect likely column renames within a single table.

        Args:
            table: Table the columns belong to
            removed_columns: Columns present only in the current schema
            added_columns: Columns present only in the desired schema
            excluded: (from, to) pairs that must not be proposed again

        Returns:
            Non-conflicting renames, highest confidence first
        """
        excluded = excluded or set()
        candidates: list[ColumnRename] = []

        for removed in removed_columns:
            for added in added_columns:
                if (removed.name, added.name) in excluded:
                    continue
                confidence = self.column_confidence(removed, added)
                if confidence >= self.SIMILARITY_THRESHOLD:
                    candidates.append(
                        ColumnRename(table, removed.name, added.name, confidence)
                    )

        candidates.sort(key=lambda candidate: candidate.confidence, reverse=True)

        renames: list[ColumnRename] = []
        used_from: set[str] = set()
        used_to: set[str] = set()
        for candidate in candidates:
            if candidate.from_name in used_from or candidate.to_name in used_to:
                continue
            renames.append(candidate)
            used_from.add(candidate.from_name)
            used_to.add(candidate.to_name)
            logger.debug(
                f"Column rename candidate {table}.{candidate.from_name} -> "
                f"{candidate.to_name} ({candidate.confidence:.2f})"
            )

        return renames

    def detect_table_renames(
        self,
        removed_tables: list[TableDefinition],
        added_tables: list[TableDefinition],
        excluded: set[tuple[str, str]] | None = None,
    ) -> list[TableRename]:
        """
        Detect likely table renames.

        Every (removed, added) pair is scored before any is claimed, so a
        weaker match listed first cannot take a target from a stronger one.

        Args:
            removed_tables: Tables present only in the current schema
            added_tables: Tables present only in the desired schema
            excluded: (from, to) pairs that must not be proposed again

        Returns:
            Non-conflicting renames, highest confidence first
        """
        excluded = excluded or set()
        candidates: list[TableRename] = []

        for removed in removed_tables:
            for added in added_tables:
                if (removed.name, added.name) in excluded:
                    continue
                confidence = self.table_confidence(removed, added)
                if confidence >= self.SIMILARITY_THRESHOLD:
                    candidates.append(TableRename(removed.name, added.name, confidence))

        candidates.sort(key=lambda candidate: candidate.confidence, reverse=True)

        renames: list[TableRename] = []
        used_from: set[str] = set()
        used_to: set[str] = set()
        for candidate in candidates:
            if candidate.from_name in used_from or candidate.to_name in used_to:
                continue
            renames.append(candidate)
            used_from.add(candidate.from_name)
            used_to.add(candidate.to_name)
            logger.debug(
                f"Table rename candidate {candidate.from_name} -> {candidate.to_name} "
                f"({candidate.confidence:.2f})"
            )

        return renames

    def column_confidence(
        self, removed: ColumnDefinition, added: ColumnDefinition
    ) -> float:
        """Weighted score of name, type and constraint similarity."""
        score = 0.5 * name_similarity(removed.name, added.name)
        if self.types_compatible(removed.type, added.type):
            score += 0.3
        if self.constraints_match(removed, added):
            score += 0.2
        return round(score, 2)

    def table_confidence(self, removed: TableDefinition, added: TableDefinition) -> float:
        """
        Weighted score: 0.6 * name similarity + 0.4 * column overlap.

        Tables with identical, non-empty column sets have their score
        raised to SIMILARITY_THRESHOLD when the formula falls below it, so
        they are always candidates however different their names are. The
        returned value is then the threshold, not the formula's result.
        """
        structural = self.structural_similarity(removed, added)
        score = round(0.6 * name_similarity(removed.name, added.name) + 0.4 * structural, 2)
        if structural == 1.0 and removed.columns and added.columns:
            score = max(score, self.SIMILARITY_THRESHOLD)
        return score

    @staticmethod
    def structural_similarity(removed: TableDefinition, added: TableDefinition) -> float:
        removed_names = {name.lower() for name in removed.column_names}
        added_names = {name.lower() for name in added.column_names}
        largest = max(len(removed_names), len(added_names))
        if largest == 0:
            return 1.0
        return len(removed_names & added_names) / largest

    @staticmethod
    def types_compatible(type_a: str, type_b: str) -> bool:
        normalized_a = normalize_type(type_a)
        normalized_b = normalize_type(type_b)
        if normalized_a == normalized_b:
            return True
        return any(
            normalized_a in family and normalized_b in family
            for family in TYPE_FAMILIES.values()
        )

    @staticmethod
    def constraints_match(removed: ColumnDefinition, added: ColumnDefinition) -> bool:
        return (
            removed.nullable == added.nullable
            and removed.unique == added.unique
            and removed.primary == added.primary
        )

    def is_high_confidence(self, confidence: float) -> bool:
        return confidence >= self.HIGH_CONFIDENCE_THRESHOLD
