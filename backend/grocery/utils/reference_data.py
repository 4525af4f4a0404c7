"""Reference data loader — price table and pantry inventory from flat JSON files.

The files live at different depths depending on how the pipeline is launched
(worker container, repo checkout, test tmp dir), so lookup tries the
configured data directory, then the working directory and every parent of it
up to the filesystem root (each one directly and in its ``data/`` folder), and
finally the sample files shipped in ``backend/data``.

Loading never raises for a missing or malformed file: callers get an empty
table and decide whether that is acceptable. The one exception is
``load_inventory(required=True)``, because an empty pantry and a missing
pantry file would otherwise look the same.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import structlog
from pydantic import ValidationError

from grocery.errors import ReferenceDataMissing
from grocery.models.contracts import InventoryRecord
from grocery.pipeline.pricing import PriceTable

log = structlog.get_logger("reference_data")

BUNDLED_DATA_DIR = Path(__file__).resolve().parents[2] / "data"


def _candidate_paths(filename: str, base_dir: str | Path | None) -> list[Path]:
    candidates: list[Path] = []
    if base_dir:
        candidates.append(Path(base_dir) / filename)
    cwd = Path.cwd()
    for directory in (cwd, *cwd.parents):
        candidates.append(directory / filename)
        candidates.append(directory / "data" / filename)
    candidates.append(BUNDLED_DATA_DIR / filename)
    return candidates


def resolve_reference_path(filename: str, base_dir: str | Path | None = None) -> Path | None:
    """Return the first existing ``filename`` along the lookup chain, or None."""
    for path in _candidate_paths(filename, base_dir):
        if path.is_file():
            return path
    return None


def _strip_trailing_commas(text: str) -> str:
    """Remove commas that directly precede ``}`` or ``]`` (outside string literals)."""
    out: list[str] = []
    in_string = False
    escape_next = False
    pending_comma: list[str] | None = None  # comma + whitespace held back
    for ch in text:
        if pending_comma is not None:
            if ch in " \t\r\n":
                pending_comma.append(ch)
                continue
            if ch in "}]":
                out.extend(pending_comma[1:])  # keep whitespace, drop comma
            else:
                out.extend(pending_comma)
            pending_comma = None
        if escape_next:
            escape_next = False
        elif in_string:
            if ch == "\\":
                escape_next = True
            elif ch == '"':
                in_string = False
        elif ch == '"':
            in_string = True
        elif ch == ",":
            pending_comma = [ch]
            continue
        out.append(ch)
    if pending_comma is not None:
        out.extend(pending_comma)
    return "".join(out)


def load_json_table(path: str | Path | None) -> dict[str, Any]:
    """Read a JSON object from ``path``; ``{}`` if absent, unreadable or not an object."""
    if path is None:
        return {}
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        log.warning("reference_file_not_found", path=str(path))
        return {}
    except OSError as exc:
        log.warning("reference_file_unreadable", path=str(path), error=str(exc))
        return {}

    try:
        data = json.loads(_strip_trailing_commas(text))
    except json.JSONDecodeError as exc:
        log.warning("reference_file_malformed", path=str(path), error=str(exc))
        return {}

    if not isinstance(data, dict):
        log.warning("reference_file_not_object", path=str(path), type=type(data).__name__)
        return {}
    return data


def load_price_table(path: str | Path | None) -> PriceTable:
    """Load ``{"product": price, ...}``. Non-numeric prices are skipped."""
    prices: dict[str, float] = {}
    for name, value in load_json_table(path).items():
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            log.warning("price_entry_skipped", product=name, value=repr(value)[:40])
            continue
        prices[name] = float(value)
    table = PriceTable(prices)
    log.info("price_table_loaded", path=str(path) if path else None, entries=len(table))
    return table


def _lower_keys(raw: dict[str, Any]) -> dict[str, Any]:
    return {str(k).lower(): v for k, v in raw.items()}


def load_inventory(
    path: str | Path | None,
    *,
    required: bool = False,
    filename: str = "inventory.json",
    searched: list[Path] | None = None,
) -> list[InventoryRecord]:
    """Load ``{"items": [{"name", "quantity", "expiry"?}, ...]}``.

    Keys are matched case-insensitively. Records without a usable name are
    skipped. With ``required=True`` an absent file raises
    ReferenceDataMissing instead of returning ``[]``.
    """
    if path is None or not Path(path).is_file():
        if required:
            raise ReferenceDataMissing(filename, searched or ([Path(path)] if path else []))
        log.warning("inventory_file_not_found", path=str(path) if path else None)
        return []

    raw_items = _lower_keys(load_json_table(path)).get("items")
    if not isinstance(raw_items, list):
        log.warning("inventory_items_missing", path=str(path))
        return []

    records: list[InventoryRecord] = []
    for raw in raw_items:
        if not isinstance(raw, dict):
            continue
        fields = _lower_keys(raw)
        if not isinstance(fields.get("name"), str) or not fields["name"].strip():
            log.warning("inventory_record_skipped", reason="missing name", keys=list(raw))
            continue
        try:
            records.append(
                InventoryRecord(
                    name=fields["name"].strip(),
                    quantity=fields.get("quantity") or 0,
                    expiry=fields.get("expiry"),
                )
            )
        except ValidationError as exc:
            log.warning("inventory_record_skipped", name=fields["name"], error=str(exc)[:200])

    log.info("inventory_loaded", path=str(path), records=len(records))
    return records


def require_inventory(filename: str, base_dir: str | Path | None = None) -> list[InventoryRecord]:
    """Resolve and load the inventory file, raising ReferenceDataMissing if absent."""
    path = resolve_reference_path(filename, base_dir)
    if path is None:
        raise ReferenceDataMissing(filename, _candidate_paths(filename, base_dir)[:3])
    return load_inventory(path, required=True, filename=filename)


def load_prices(filename: str, base_dir: str | Path | None = None) -> PriceTable:
    """Resolve and load the price table, degrading to an empty table if absent."""
    path = resolve_reference_path(filename, base_dir)
    if path is None:
        log.warning("price_file_not_found", filename=filename, base_dir=str(base_dir or ""))
        return PriceTable()
    return load_price_table(path)
