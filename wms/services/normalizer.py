"""Row normalization for spreadsheet and CSV uploads."""
import re
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Callable, Dict, Mapping, Optional, Sequence, Tuple

CanonicalRow = Dict[str, Any]

_HEADER_SEPARATORS = re.compile(r"[\s\-/.]+")

DATE_FORMATS = ("%Y-%m-%d", "%d-%m-%Y", "%d/%m/%Y", "%m/%d/%Y", "%Y/%m/%d", "%d.%m.%Y")


def fold_header(name: Any) -> str:
    """
    Fold a column header to a comparable form.

    "HSN/SAC" -> "hsn_sac", " Order ID " -> "order_id", "WSN" -> "wsn".
    """
    folded = _HEADER_SEPARATORS.sub("_", str(name).strip().lower())
    return folded.strip("_")


def clean_value(value: Any) -> Any:
    """
    Convert a raw cell to its stored form.

    Blank strings become None, strings are trimmed, integral floats lose
    their ".0" (spreadsheets store every number as a float) and dates are
    rendered as ISO strings.
    """
    if value is None:
        return None
    if isinstance(value, str):
        value = value.strip()
        return value or None
    if isinstance(value, bool):
        return str(value).lower()
    if isinstance(value, float):
        return str(int(value)) if value.is_integer() else str(value)
    if isinstance(value, datetime):
        if value.time() == datetime.min.time():
            return value.date().isoformat()
        return value.isoformat(sep=" ")
    if isinstance(value, date):
        return value.isoformat()
    return str(value)


def parse_date(value: Any) -> Optional[date]:
    """Parse a cleaned cell into a date, returning None when it is not one."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    try:
        return datetime.fromisoformat(text).date()
    except ValueError:
        pass
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    return None


@dataclass(frozen=True)
class FieldSpec:
    """One logical column and the headers it may arrive under."""

    name: str
    aliases: Tuple[str, ...] = ()
    coerce: Optional[Callable[[Any], Any]] = None
    default: Optional[Callable[[], Any]] = None
    lookup: Tuple[str, ...] = field(init=False, repr=False)

    def __post_init__(self):
        keys = []
        for candidate in (self.name,) + tuple(self.aliases):
            folded = fold_header(candidate)
            if folded not in keys:
                keys.append(folded)
        object.__setattr__(self, "lookup", tuple(keys))


class RowNormalizer:
    """Maps raw records with loosely named columns onto canonical rows."""

    def __init__(self, fields: Sequence[FieldSpec], natural_key: str = "wsn"):
        self.fields = tuple(fields)
        self.natural_key = natural_key
        try:
            self.key_field = next(f for f in self.fields if f.name == natural_key)
        except StopIteration:
            raise ValueError(f"Natural key '{natural_key}' is not among the fields")

    def normalize(
        self, raw: Mapping[str, Any], batch_tag: Optional[str]
    ) -> Optional[CanonicalRow]:
        """
        Normalize one raw record.

        Args:
            raw: Column name to raw cell value
            batch_tag: Batch id stamped on the row (None for hand-entered rows)

        Returns:
            Canonical row, or None when the natural key is missing or blank
        """
        folded = self._fold(raw)
        key = self._extract(folded, self.key_field)
        if key is None:
            return None

        row: CanonicalRow = {self.natural_key: str(key)}
        for spec in self.fields:
            if spec.name == self.natural_key:
                continue
            row[spec.name] = self._extract(folded, spec)
        row["batch_id"] = batch_tag
        return row

    def key_of(self, raw: Mapping[str, Any]) -> Optional[str]:
        """Natural key of a raw record, or None when it is missing or blank."""
        key = self._extract(self._fold(raw), self.key_field)
        return None if key is None else str(key)

    @staticmethod
    def _fold(raw: Mapping[str, Any]) -> Dict[str, Any]:
        folded: Dict[str, Any] = {}
        for header, value in raw.items():
            if header is None:
                continue
            name = fold_header(header)
            if clean_value(folded.get(name)) is None:
                folded[name] = value
        return folded

    @staticmethod
    def _extract(folded: Mapping[str, Any], spec: FieldSpec) -> Any:
        value = None
        for key in spec.lookup:
            value = clean_value(folded.get(key))
            if value is not None:
                break

        if value is not None and spec.coerce is not None:
            value = spec.coerce(value)
        if value is None and spec.default is not None:
            value = spec.default()
        return value
