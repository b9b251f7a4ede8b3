from __future__ import annotations

import re
from decimal import Decimal, InvalidOperation

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class ValidationError(Exception):
    def __init__(self, errors: list[dict], message: str = "Invalid data"):
        super().__init__(message)
        self.errors = errors
        self.message = message

    def to_payload(self) -> dict:
        return {
            "ok": False,
            "error": "VALIDATION_ERROR",
            "message": self.message,
            "errors": list(self.errors),
        }


class FieldErrors:
    """Collects field-level problems for one request body."""

    def __init__(self):
        self.items: list[dict] = []

    def add(self, field: str, message: str) -> None:
        self.items.append({"field": field, "message": message})

    def __bool__(self) -> bool:
        return bool(self.items)

    def raise_if_any(self) -> None:
        if self.items:
            raise ValidationError(self.items)


def json_body(request_obj) -> dict:
    payload = request_obj.get_json(silent=True)
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ValidationError([{"field": "body", "message": "must be a JSON object"}])
    return payload


def clean_str(
    data: dict,
    field: str,
    errors: FieldErrors,
    *,
    required: bool = True,
    min_len: int = 1,
    max_len: int | None = None,
) -> str | None:
    raw = data.get(field)
    if raw is None or (isinstance(raw, str) and not raw.strip()):
        if required:
            errors.add(field, "is required")
        return None
    if not isinstance(raw, (str, int, float)) or isinstance(raw, bool):
        errors.add(field, "must be a string")
        return None
    value = str(raw).strip()
    if len(value) < min_len:
        errors.add(field, f"must be at least {min_len} characters")
        return None
    if max_len is not None and len(value) > max_len:
        errors.add(field, f"must be at most {max_len} characters")
        return None
    return value


def clean_money(data: dict, field: str, errors: FieldErrors, *, required: bool = True) -> Decimal | None:
    raw = data.get(field)
    if raw is None or (isinstance(raw, str) and not raw.strip()):
        if required:
            errors.add(field, "is required")
        return None
    if isinstance(raw, bool):
        errors.add(field, "must be a number")
        return None
    try:
        value = Decimal(str(raw).strip().replace(",", "."))
    except (InvalidOperation, ValueError):
        errors.add(field, "must be a number")
        return None
    if not value.is_finite() or value < 0:
        errors.add(field, "must be zero or greater")
        return None
    return value.quantize(Decimal("0.01"))


def clean_int(
    data: dict,
    field: str,
    errors: FieldErrors,
    *,
    required: bool = True,
    minimum: int | None = None,
) -> int | None:
    raw = data.get(field)
    if raw is None or (isinstance(raw, str) and not raw.strip()):
        if required:
            errors.add(field, "is required")
        return None
    if isinstance(raw, bool):
        errors.add(field, "must be an integer")
        return None
    try:
        value = int(str(raw).strip())
    except ValueError:
        errors.add(field, "must be an integer")
        return None
    if minimum is not None and value < minimum:
        errors.add(field, f"must be at least {minimum}")
        return None
    return value


def clean_bool(data: dict, field: str, errors: FieldErrors, *, required: bool = True) -> bool | None:
    raw = data.get(field)
    if raw is None:
        if required:
            errors.add(field, "is required")
        return None
    if isinstance(raw, bool):
        return raw
    text = str(raw).strip().lower()
    if text in ("1", "true", "yes", "on"):
        return True
    if text in ("0", "false", "no", "off"):
        return False
    errors.add(field, "must be a boolean")
    return None


def clean_email(data: dict, field: str, errors: FieldErrors, *, required: bool = True) -> str | None:
    value = clean_str(data, field, errors, required=required, max_len=255)
    if value is None:
        return None
    if not _EMAIL_RE.match(value):
        errors.add(field, "must be a valid email")
        return None
    return value.lower()


def clean_cpf(data: dict, field: str, errors: FieldErrors) -> str | None:
    value = clean_str(data, field, errors)
    if value is None:
        return None
    digits = re.sub(r"\D", "", value)
    if len(digits) != 11:
        errors.add(field, "must contain 11 digits")
        return None
    return digits


def clean_phone(data: dict, field: str, errors: FieldErrors, *, required: bool = False) -> str | None:
    value = clean_str(data, field, errors, required=required)
    if value is None:
        return None
    digits = re.sub(r"\D", "", value)
    if len(digits) < 10 or len(digits) > 13:
        errors.add(field, "must contain 10 to 13 digits")
        return None
    return digits


def query_int(args, name: str, default: int, *, minimum: int = 0, maximum: int | None = None) -> int:
    raw = (args.get(name) or "").strip()
    try:
        value = int(raw) if raw else int(default)
    except ValueError:
        value = int(default)
    if value < minimum:
        value = minimum
    if maximum is not None and value > maximum:
        value = maximum
    return value
