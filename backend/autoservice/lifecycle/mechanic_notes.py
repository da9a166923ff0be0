"""Codec for the ``mechanic_notes`` column.

The column holds a JSON array of ``{"note": str, "cost": number | null}``
items. Rows written before the structured format hold free text; those are
read back as one note without a cost. Every function here is total: malformed
input never raises.
"""
import json
from decimal import Decimal, InvalidOperation

from pydantic import BaseModel

NOTES_SEPARATOR = "; "


class MechanicNoteItem(BaseModel):
    note: str
    cost: Decimal | None = None

    model_config = {"frozen": True}


def _coerce_cost(value) -> Decimal | None:
    # bool is an int subclass; JSON true/false is never a cost.
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return Decimal(value)
    if isinstance(value, Decimal) and value.is_finite():
        return value
    return None


def _json_cost(cost: Decimal | None) -> str:
    # Decimal text is a valid JSON number and keeps every digit.
    if cost is None or not cost.is_finite():
        return "null"
    return str(cost)


def _json_item(note: str, cost: Decimal | None) -> str:
    return '{"note": %s, "cost": %s}' % (json.dumps(note, ensure_ascii=False), _json_cost(cost))


def parse_mechanic_notes(raw: str | None) -> list[MechanicNoteItem]:
    """Decode the stored column value into note items."""
    if raw is None or not raw.strip():
        return []

    try:
        parsed = json.loads(raw, parse_float=Decimal)
    except (ValueError, InvalidOperation, RecursionError):
        parsed = None
    else:
        if isinstance(parsed, list):
            items = []
            for entry in parsed:
                if not isinstance(entry, dict):
                    continue
                note = entry.get("note")
                if not isinstance(note, str) or not note.strip():
                    continue
                items.append(MechanicNoteItem(note=note, cost=_coerce_cost(entry.get("cost"))))
            return items

    # Legacy free-text value (or JSON that is not a list of notes).
    return [MechanicNoteItem(note=raw)]


def serialize_mechanic_notes(items: list[MechanicNoteItem] | None) -> str | None:
    """Encode note items for storage; ``None`` when no non-empty note remains."""
    cleaned = [_json_item(item.note.strip(), item.cost) for item in items or [] if item.note.strip()]
    if not cleaned:
        return None
    return "[" + ", ".join(cleaned) + "]"


def mechanic_notes_total(items: list[MechanicNoteItem]) -> Decimal:
    """Sum of item costs; an item without a cost counts as zero."""
    return sum((item.cost or Decimal("0") for item in items), Decimal("0"))


def summarize_mechanic_notes(items: list[MechanicNoteItem]) -> str | None:
    texts = [item.note.strip() for item in items if item.note.strip()]
    return NOTES_SEPARATOR.join(texts) if texts else None


def has_content(items: list[MechanicNoteItem] | None) -> bool:
    return any(item.note.strip() for item in items or [])
