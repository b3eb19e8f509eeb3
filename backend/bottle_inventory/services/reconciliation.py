"""Inventory reconciliation against spreadsheet rows.

Per row:
1. Skip empty rows and header/footer marker rows
2. Derive the bottle size from the name cell ("a-30mL Freeze" -> 30)
3. Exact lookup on the raw (name, strength, size) key
4. Otherwise fuzzy name match among entries whose normalized strength and
   size are equal; 100 wins immediately, else the best score >= threshold
5. No candidate -> count 0 (not found, not an error)
"""

import logging
import re
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ContextManager, Dict, Iterable, List, Mapping, NamedTuple, Optional, Protocol, Sequence

from ..config import Settings, get_settings
from .normalization import normalize_name, normalize_size, normalize_strength
from .sheets import CellUpdate, SpreadsheetTransport, column_letter
from .similarity import name_similarity

logger = logging.getLogger(__name__)


class InventoryKey(NamedTuple):
    """Composite key of a stored bottle group, values as stored."""
    name: str
    strength: str
    size: str


InventoryCountIndex = Dict[InventoryKey, int]


class MatchKind(str, Enum):
    EXACT = "exact"
    FUZZY = "fuzzy"
    NONE = "none"


@dataclass
class MatchResult:
    """Outcome of resolving one spreadsheet row against the count index."""
    count: int
    match_kind: MatchKind
    matched_key: Optional[InventoryKey] = None
    similarity_score: Optional[int] = None  # Only for fuzzy matches

    @classmethod
    def not_found(cls) -> "MatchResult":
        return cls(count=0, match_kind=MatchKind.NONE)


@dataclass
class SheetRow:
    """One spreadsheet row (1-based row number as shown in the sheet)."""
    row_number: int
    name: str
    strength: str
    quantity: str = ""


@dataclass
class RowResolution:
    row: SheetRow
    size: str
    match: MatchResult


@dataclass
class ReconcileConfig:
    """Explicit reconciliation settings, passed in rather than read globally."""
    similarity_threshold: int = 90
    sheet_name: str = "Sheet1"
    name_column: int = 0
    strength_column: int = 1
    quantity_column: int = 2
    default_size: str = "30"
    default_strength: str = "0mg"
    skip_markers: List[str] = field(default_factory=lambda: ["osuna", "rsv house"])

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "ReconcileConfig":
        settings = settings or get_settings()
        return cls(
            similarity_threshold=settings.similarity_threshold,
            sheet_name=settings.sheet_name,
            name_column=settings.sheet_name_column,
            strength_column=settings.sheet_strength_column,
            quantity_column=settings.sheet_quantity_column,
            default_size=settings.default_bottle_size,
            default_strength=settings.default_strength,
            skip_markers=list(settings.sheet_skip_markers),
        )

    @property
    def read_range(self) -> str:
        """A1 range covering the name, strength and quantity columns."""
        last = max(self.name_column, self.strength_column, self.quantity_column)
        return f"{self.sheet_name}!A:{column_letter(last)}"


# Sheet names carry the size as "a-30mL"; bare "30ml" is the fallback
SIZE_TAG_PATTERN = re.compile(r"\b[a-z]-(\d+)\s*ml", re.IGNORECASE)
SIZE_PATTERN = re.compile(r"(\d+)\s*ml", re.IGNORECASE)


def _field(record: Any, *names: str) -> str:
    for name in names:
        value = record.get(name) if isinstance(record, Mapping) else getattr(record, name, None)
        if value is not None:
            return str(value)
    return ""


def build_count_index(records: Iterable[Any]) -> InventoryCountIndex:
    """
    Group stored bottles by (name, strength, size) and count them.

    Records may be mappings or objects exposing name / nicotine_strength /
    bottle_size. The counts always sum to the number of records.
    """
    counts: Counter = Counter()
    for record in records:
        key = InventoryKey(
            name=_field(record, "name"),
            strength=_field(record, "nicotine_strength", "mg"),
            size=_field(record, "bottle_size", "bottleSize"),
        )
        counts[key] += 1
    return dict(counts)


class InventoryReconciler:
    """Resolves spreadsheet rows to inventory counts."""

    def __init__(self, config: Optional[ReconcileConfig] = None):
        self.config = config or ReconcileConfig.from_settings()
        self.skip_markers = [m.lower() for m in self.config.skip_markers if m.strip()]

    def should_skip(self, name: str) -> bool:
        """Empty names and header/footer marker rows are not products."""
        if not name or not name.strip():
            return True
        lowered = name.lower()
        return any(marker in lowered for marker in self.skip_markers)

    def derive_size(self, name: str) -> str:
        """Bottle size embedded in a sheet product name, or the configured default."""
        match = SIZE_TAG_PATTERN.search(name) or SIZE_PATTERN.search(name)
        return match.group(1) if match else self.config.default_size

    def find_count(self, index: InventoryCountIndex, name: str, strength: str, size: str) -> MatchResult:
        """
        Find the inventory count for one product.

        Args:
            index: counts keyed by stored (name, strength, size)
            name: product name as written in the sheet
            strength: strength cell as written in the sheet
            size: bottle size derived from the name

        Returns:
            MatchResult; count 0 with MatchKind.NONE when nothing qualifies
        """
        exact_key = InventoryKey(name, strength, size)
        if exact_key in index:
            return MatchResult(count=index[exact_key], match_kind=MatchKind.EXACT, matched_key=exact_key)

        wanted_name = normalize_name(name)
        wanted_strength = normalize_strength(strength)
        wanted_size = normalize_size(size)

        best: Optional[MatchResult] = None
        for key, count in index.items():
            # Strength and size are hard gates, only the name is fuzzy
            if normalize_strength(key.strength) != wanted_strength:
                continue
            if normalize_size(key.size) != wanted_size:
                continue

            score = name_similarity(normalize_name(key.name), wanted_name)
            if score == 100:
                return MatchResult(count=count, match_kind=MatchKind.FUZZY, matched_key=key, similarity_score=score)
            if score >= self.config.similarity_threshold and (best is None or score > best.similarity_score):
                best = MatchResult(count=count, match_kind=MatchKind.FUZZY, matched_key=key, similarity_score=score)

        if best is not None:
            logger.debug(f"Fuzzy match '{name}' -> '{best.matched_key.name}' ({best.similarity_score}%)")
            return best

        return MatchResult.not_found()

    def parse_rows(self, rows: Sequence[Sequence[Any]]) -> List[SheetRow]:
        """Turn raw row tuples into product rows, dropping skipped rows."""
        parsed = []
        for i, cells in enumerate(rows):
            if not cells:
                continue
            name = self._cell(cells, self.config.name_column)
            if self.should_skip(name):
                continue
            strength = self._cell(cells, self.config.strength_column) or self.config.default_strength
            parsed.append(SheetRow(
                row_number=i + 1,
                name=name,
                strength=strength,
                quantity=self._cell(cells, self.config.quantity_column),
            ))
        return parsed

    def resolve_rows(self, index: InventoryCountIndex, rows: Sequence[Sequence[Any]]) -> List[RowResolution]:
        """Resolve every product row of a sheet against the count index."""
        resolutions = []
        for row in self.parse_rows(rows):
            size = self.derive_size(row.name)
            match = self.find_count(index, row.name, row.strength, size)
            if match.match_kind == MatchKind.NONE:
                logger.debug(f"Not found: '{row.name}' {row.strength} {size}ml")
            resolutions.append(RowResolution(row=row, size=size, match=match))
        return resolutions

    def quantity_address(self, row_number: int) -> str:
        """A1 address of a row's quantity cell, e.g. 'Sheet1!C5'."""
        return f"{self.config.sheet_name}!{column_letter(self.config.quantity_column)}{row_number}"

    @staticmethod
    def _cell(cells: Sequence[Any], index: int) -> str:
        if index >= len(cells) or cells[index] is None:
            return ""
        return str(cells[index]).strip()


class ReconciliationError(Exception):
    """A reconciliation run failed at one stage ("inventory" or "write")."""

    def __init__(self, stage: str, message: str):
        super().__init__(f"{stage}: {message}")
        self.stage = stage
        self.message = message


class ReconcileStatus(str, Enum):
    OK = "ok"
    NO_DATA = "no_data"


@dataclass
class ReconcileSummary:
    """Result of one reconciliation run."""
    status: ReconcileStatus
    matched_count: int = 0
    not_found_count: int = 0
    rows_written: int = 0
    results: List[RowResolution] = field(default_factory=list)
    detail: str = ""


class RecordSession(Protocol):
    def list_records(self, owner_scope: Optional[str] = None) -> Sequence[Any]: ...


class RecordStore(Protocol):
    def session(self) -> ContextManager[RecordSession]: ...


class InventorySyncService:
    """
    Writes current inventory counts into a spreadsheet.

    One run: snapshot the owner's bottles, read the sheet, resolve every
    product row, and batch-write the counts into the quantity column.
    """

    def __init__(
        self,
        store: RecordStore,
        transport: SpreadsheetTransport,
        config: Optional[ReconcileConfig] = None,
    ):
        self.store = store
        self.transport = transport
        self.config = config or ReconcileConfig.from_settings()
        self.reconciler = InventoryReconciler(self.config)

    def reconcile(self, owner_scope: Optional[str], sheet_id: str) -> ReconcileSummary:
        """
        Run one reconciliation for an owner scope against a sheet.

        Args:
            owner_scope: owner whose bottles are counted (None counts all)
            sheet_id: spreadsheet identifier understood by the transport

        Returns:
            ReconcileSummary; status NO_DATA when the sheet is unreadable or empty

        Raises:
            ReconciliationError: if the store cannot be queried or the write fails
        """
        try:
            with self.store.session() as session:
                records = list(session.list_records(owner_scope))
        except Exception as e:
            logger.warning(f"Reconciliation failed at stage 'inventory': {e}")
            raise ReconciliationError("inventory", str(e)) from e

        index = build_count_index(records)
        logger.info(f"Built count index: {len(index)} groups from {len(records)} bottles")

        try:
            rows = self.transport.read_range(sheet_id, self.config.read_range)
        except Exception as e:
            logger.warning(f"Could not read sheet '{sheet_id}': {e}")
            return ReconcileSummary(status=ReconcileStatus.NO_DATA, detail=f"Sheet unreadable: {e}")

        if not rows:
            logger.info(f"No data found in sheet '{sheet_id}'")
            return ReconcileSummary(status=ReconcileStatus.NO_DATA, detail="No data found in sheet")

        resolutions = self.reconciler.resolve_rows(index, rows)
        updates = [
            CellUpdate(self.reconciler.quantity_address(r.row.row_number), str(r.match.count))
            for r in resolutions
        ]

        rows_written = 0
        if updates:
            try:
                rows_written = self.transport.batch_write(sheet_id, updates)
            except Exception as e:
                logger.warning(f"Reconciliation failed at stage 'write': {e}")
                raise ReconciliationError("write", str(e)) from e

        matched = sum(1 for r in resolutions if r.match.count > 0)
        summary = ReconcileSummary(
            status=ReconcileStatus.OK,
            matched_count=matched,
            not_found_count=len(resolutions) - matched,
            rows_written=rows_written,
            results=resolutions,
        )
        logger.info(
            f"Reconciled sheet '{sheet_id}': {summary.matched_count} matched, "
            f"{summary.not_found_count} not found, {summary.rows_written} written"
        )
        return summary
