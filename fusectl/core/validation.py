"""Record validation backed by JSON Schemas shipped in fusectl.schemas."""

from __future__ import annotations

import dataclasses
import datetime as dt
import json
from importlib import resources
from typing import Any, Protocol

from jsonschema import validators

from fusectl.core.model import UserInfo, Violation


class Validator(Protocol):
    def validate(self, record: Any) -> list[Violation]:
        """Return every violated rule; an empty list means the record is valid."""


def load_schema_validator(name: str) -> Any:
    schema_text = resources.files("fusectl.schemas").joinpath(name).read_text(encoding="utf-8")
    schema = json.loads(schema_text)
    validator_cls = validators.validator_for(schema)
    validator_cls.check_schema(schema)
    return validator_cls(schema)


def _field_of(error: Any) -> str:
    path = ".".join(str(p) for p in error.absolute_path)
    if path:
        return path
    if error.validator == "required" and isinstance(error.instance, dict):
        missing = [name for name in error.validator_value if name not in error.instance]
        if missing:
            return missing[0]
    return "<record>"


class UserInfoValidator:
    """Checks a UserInfo record against userinfo.schema.json plus the cross-field rules."""

    def __init__(self) -> None:
        self._schema_validator = load_schema_validator("userinfo.schema.json")
        self._order = [f.name for f in dataclasses.fields(UserInfo)]

    def validate(self, record: UserInfo) -> list[Violation]:
        doc = dataclasses.asdict(record)
        birthday = doc.pop("birthday")

        violations = [
            Violation(field=_field_of(error), message=error.message, value=error.instance)
            for error in self._schema_validator.iter_errors(doc)
        ]

        # The "integer" schema type admits whole floats such as 70.0; every
        # byte field must be a real int before it can be packed.
        reported = {v.field for v in violations}
        for name, value in doc.items():
            if name not in reported and not _is_int(value):
                violations.append(Violation(field=name, message=f"{value!r} is not an integer", value=value))

        if not isinstance(birthday, dt.date):
            violations.append(Violation(field="birthday", message="must be a date", value=birthday))

        resting, maximum = record.resting_hr, record.max_hr
        if _is_int(resting) and _is_int(maximum) and resting >= maximum:
            violations.append(
                Violation(
                    field="resting_hr",
                    message=f"{resting} must be less than max_hr ({maximum})",
                    value=resting,
                )
            )

        return sorted(violations, key=lambda v: self._rank(v.field))

    def _rank(self, field: str) -> int:
        try:
            return self._order.index(field)
        except ValueError:
            return len(self._order)


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)
