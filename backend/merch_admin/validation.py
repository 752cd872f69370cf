from __future__ import annotations
from datetime import datetime
from merch_admin.time_utils import parse_iso_datetime

from dataclasses import dataclass
from typing import Any

from sqlalchemy import Boolean, Integer, String, Text, DateTime
from sqlalchemy.orm import DeclarativeMeta


# Maximum price: $9,999,999.99 (999,999,999 cents)
MAX_PRICE_CENTS = 999_999_999

# Largest quantity accepted on a single line / variant / stand assignment
MAX_QUANTITY = 1_000_000


class ValidationError(ValueError):
    """400-level input problem."""


class ConflictError(ValueError):
    """409-level business rule conflict (e.g., duplicate category name)."""


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: what clients are allowed to set (security boundary)
    - required_on_create: fields required for POST
    """
    writable_fields: set[str]
    required_on_create: set[str] = None  # type: ignore


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def coerce_int(name: str, value: Any) -> int:
    """Strict integer parsing: rejects bools, floats, decimals and scientific notation."""
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{name} must be an integer")
        if 'e' in stripped.lower():
            raise ValidationError(f"{name} must be a plain integer (scientific notation not allowed)")
        if '.' in stripped:
            raise ValidationError(f"{name} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{name} must be an integer")
    if isinstance(value, float):
        raise ValidationError(f"{name} must be an integer, not a decimal")
    raise ValidationError(f"{name} must be an integer")


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    if isinstance(coltype, Integer):
        return coerce_int(col.key, value)

    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        # fallback: truthiness
        return bool(value)

    # Datetimes (accept ISO-8601 strings; normalize to UTC)
    if isinstance(coltype, DateTime):
        if isinstance(value, datetime):
            return value
        if isinstance(value, str):
            try:
                dt = parse_iso_datetime(value)
            except ValueError:
                raise ValidationError(f"{col.key} must be an ISO-8601 datetime")
            if dt is None:
                raise ValidationError(f"{col.key} must be an ISO-8601 datetime")
            return dt
        raise ValidationError(f"{col.key} must be a datetime")

    if isinstance(coltype, (String, Text)):
        return str(value).strip()

    return value


def validate_payload(
    *,
    model: DeclarativeMeta,
    payload: dict,
    policy: ModelValidationPolicy,
    partial: bool,
) -> dict:
    """
    Validates + normalizes incoming JSON against:
    - SQLAlchemy column metadata (nullable, type, String length)
    - a policy allowlist (writable_fields)
    - required_on_create (if partial=False)
    Returns a cleaned patch dict with only writable fields.

    partial=False: create semantics (enforce required_on_create)
    partial=True: patch semantics (validate only provided keys)
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    required = policy.required_on_create or set()
    if not partial:
        missing = sorted(f for f in required if f not in payload)
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    cols = _columns_by_key(model)

    for k in payload.keys():
        if k not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {k}")
        if k not in cols:
            raise ValidationError(f"Unknown field: {k}")

    patch: dict = {}

    for k, raw in payload.items():
        col = cols[k]

        if raw is None:
            if not col.nullable:
                raise ValidationError(f"{k} cannot be null")
            patch[k] = None
            continue

        val = _coerce_value(col, raw)

        if isinstance(col.type, (String, Text)) and not col.nullable:
            if isinstance(val, str) and val == "":
                raise ValidationError(f"{k} cannot be blank")

        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationError(f"{k} exceeds max length {col.type.length}")

        patch[k] = val

    return patch


def split_payload(payload: Any, nested_keys: set[str]) -> tuple[dict, dict]:
    """Separate nested collections (variants, images, items) from the column fields."""
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    fields = {k: v for k, v in payload.items() if k not in nested_keys}
    nested = {k: payload[k] for k in nested_keys if k in payload}
    return fields, nested


# =============================================================================
# Business rules
# =============================================================================

def enforce_rules_price(name: str, price: Any) -> int:
    price = coerce_int(name, price)
    if price < 0:
        raise ValidationError(f"{name} must be >= 0")
    if price > MAX_PRICE_CENTS:
        raise ValidationError(f"{name} cannot exceed {MAX_PRICE_CENTS} (${MAX_PRICE_CENTS / 100:,.2f})")
    return price


def enforce_rules_quantity(name: str, quantity: Any, *, allow_zero: bool = True) -> int:
    quantity = coerce_int(name, quantity)
    if quantity < 0 or (quantity == 0 and not allow_zero):
        raise ValidationError(f"{name} must be {'>= 0' if allow_zero else '> 0'}")
    if quantity > MAX_QUANTITY:
        raise ValidationError(f"{name} cannot exceed {MAX_QUANTITY}")
    return quantity


def enforce_rules_product(patch: dict) -> None:
    if "low_stock_threshold" in patch and patch["low_stock_threshold"] is not None:
        if patch["low_stock_threshold"] < 0:
            raise ValidationError("low_stock_threshold must be >= 0")


def parse_variants(raw: Any) -> list[dict]:
    """
    Validate a product's variant list: [{size, quantity, price_cents}, ...].

    Sizes must be non-empty and unique within the product.
    """
    if not isinstance(raw, list):
        raise ValidationError("variants must be a list")

    variants = []
    seen: set[str] = set()
    for index, entry in enumerate(raw):
        if not isinstance(entry, dict):
            raise ValidationError(f"variants[{index}] must be an object")
        size = str(entry.get("size") or "").strip()
        if not size:
            raise ValidationError(f"variants[{index}].size is required")
        if len(size) > 50:
            raise ValidationError(f"variants[{index}].size exceeds max length 50")
        if size in seen:
            raise ValidationError(f"Duplicate variant size: {size}")
        seen.add(size)

        variants.append({
            "size": size,
            "quantity": enforce_rules_quantity(f"variants[{index}].quantity", entry.get("quantity", 0)),
            "price_cents": enforce_rules_price(f"variants[{index}].price_cents", entry.get("price_cents", 0)),
        })
    return variants


def parse_images(raw: Any) -> list[dict]:
    """[{image_url, is_primary?}, ...] or a plain list of URLs. Order is kept as sort_order."""
    if not isinstance(raw, list):
        raise ValidationError("images must be a list")

    images = []
    for index, entry in enumerate(raw):
        if isinstance(entry, str):
            entry = {"image_url": entry}
        if not isinstance(entry, dict):
            raise ValidationError(f"images[{index}] must be an object or URL")
        url = str(entry.get("image_url") or "").strip()
        if not url:
            raise ValidationError(f"images[{index}].image_url is required")
        images.append({
            "image_url": url,
            "storage_path": (str(entry["storage_path"]).strip() or None) if entry.get("storage_path") else None,
            "is_primary": bool(entry.get("is_primary", index == 0)),
            "sort_order": index,
        })
    return images


def parse_order_items(raw: Any) -> list[dict]:
    """[{product_variant_id, quantity, unit_price_cents?}, ...]; at least one line."""
    if not isinstance(raw, list) or not raw:
        raise ValidationError("items must be a non-empty list")

    items = []
    for index, entry in enumerate(raw):
        if not isinstance(entry, dict):
            raise ValidationError(f"items[{index}] must be an object")
        if entry.get("product_variant_id") is None:
            raise ValidationError(f"items[{index}].product_variant_id is required")
        unit_price = entry.get("unit_price_cents")
        items.append({
            "product_variant_id": coerce_int(f"items[{index}].product_variant_id", entry["product_variant_id"]),
            "quantity": enforce_rules_quantity(f"items[{index}].quantity", entry.get("quantity"), allow_zero=False),
            "unit_price_cents": (
                enforce_rules_price(f"items[{index}].unit_price_cents", unit_price)
                if unit_price is not None else None
            ),
        })
    return items


def parse_stock_assignments(raw: Any) -> list[dict]:
    """
    Desired stand stock: [{product_variant_id, quantity}, ...].

    A variant may appear once. Zero-quantity rows are dropped (they mean
    "nothing assigned"); negatives are rejected.
    """
    if not isinstance(raw, list):
        raise ValidationError("assignments must be a list")

    assignments = []
    seen: set[int] = set()
    for index, entry in enumerate(raw):
        if not isinstance(entry, dict):
            raise ValidationError(f"assignments[{index}] must be an object")
        if entry.get("product_variant_id") is None:
            raise ValidationError(f"assignments[{index}].product_variant_id is required")
        variant_id = coerce_int(f"assignments[{index}].product_variant_id", entry["product_variant_id"])
        if variant_id in seen:
            raise ValidationError(f"Duplicate assignment for variant {variant_id}")
        seen.add(variant_id)

        quantity = enforce_rules_quantity(f"assignments[{index}].quantity", entry.get("quantity", 0))
        if quantity == 0:
            continue
        assignments.append({"product_variant_id": variant_id, "quantity": quantity})
    return assignments


def parse_bool_arg(value: str | None) -> bool | None:
    """Query-string boolean: "true"/"1"/"yes" -> True, "false"/"0"/"no" -> False, missing -> None."""
    if value is None or value == "":
        return None
    lowered = value.strip().lower()
    if lowered in {"1", "true", "yes"}:
        return True
    if lowered in {"0", "false", "no"}:
        return False
    raise ValidationError(f"Invalid boolean value: {value}")


def coerce_bool(name: str, value) -> bool:
    """JSON body boolean: a real bool, or one of the parse_bool_arg strings."""
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        parsed = parse_bool_arg(value)
        if parsed is not None:
            return parsed
    raise ValidationError(f"{name} must be a boolean")
