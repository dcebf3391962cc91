"""JSON helpers for dataclasses that carry an open-ended map of extra keys."""

from __future__ import annotations

import dataclasses
import functools
import json
import secrets
from typing import Any

_BASE32_ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZ234567"

# ceil(log32(2**128)) characters give at least 128 bits of randomness.
_RAND_TEXT_LENGTH = 26

_SIMPLE_TYPES = (bool, int, float, str)
_SIMPLE_TYPES_BY_NAME = {t.__name__: t for t in _SIMPLE_TYPES}


def rand_text() -> str:
    """Return a random 26-character string over the base32 alphabet."""
    return "".join(
        _BASE32_ALPHABET[byte % 32] for byte in secrets.token_bytes(_RAND_TEXT_LENGTH)
    )


@dataclasses.dataclass(frozen=True)
class _FieldInfo:
    attr: str
    name: str
    omit_empty: bool


@functools.lru_cache(maxsize=None)
def _field_infos(cls: type) -> tuple[_FieldInfo, ...]:
    if not (isinstance(cls, type) and dataclasses.is_dataclass(cls)):
        raise TypeError(f"{cls!r} is not a dataclass type")
    infos = []
    for f in dataclasses.fields(cls):
        if f.name.startswith("_"):
            continue
        tag = f.metadata.get("json", "")
        if tag == "-":
            continue
        name, _, options = tag.partition(",")
        infos.append(
            _FieldInfo(
                attr=f.name,
                name=name or f.name,
                omit_empty="omitempty" in options.split(","),
            )
        )
    return tuple(infos)


def json_names(cls: type) -> frozenset[str]:
    """Return the set of JSON object keys that instances of ``cls`` marshal into.

    Fields whose names start with an underscore, and fields tagged with
    ``metadata={"json": "-"}``, are not marshalled.
    """
    if not isinstance(cls, type):
        cls = type(cls)
    return frozenset(info.name for info in _field_infos(cls))


def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, (bool, int, float, str, bytes, list, tuple, dict, set, frozenset)):
        return not value
    return False


def _struct_dict(obj: Any, skip: str | None = None) -> dict[str, Any]:
    result = {}
    for info in _field_infos(type(obj)):
        if info.attr == skip:
            continue
        value = getattr(obj, info.attr)
        if info.omit_empty and _is_empty(value):
            continue
        result[info.name] = value
    return result


def _default(value: Any) -> Any:
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return _struct_dict(value)
    if isinstance(value, (set, frozenset)):
        return list(value)
    raise TypeError(f"value of type {type(value).__name__} is not JSON serializable")


def _dumps(value: Any, *, sort_keys: bool = False) -> str:
    return json.dumps(
        value,
        separators=(",", ":"),
        ensure_ascii=False,
        sort_keys=sort_keys,
        default=_default,
    )


def _check_map_field(cls: type, map_field: str) -> None:
    if map_field not in {f.name for f in dataclasses.fields(cls)}:
        raise ValueError(f"{cls.__name__} has no field {map_field!r}")


def marshal_struct_with_map(obj: Any, map_field: str) -> str:
    """Marshal a dataclass to JSON, inlining the mapping in ``map_field``.

    The keys of the mapping become keys of the resulting object, after the
    struct's own fields. A key that duplicates a field's JSON name is an error.
    """
    if obj is None:
        return "null"
    cls = type(obj)
    _field_infos(cls)
    _check_map_field(cls, map_field)
    extra = getattr(obj, map_field)
    if extra is None:
        extra = {}
    if not isinstance(extra, dict):
        raise TypeError(f"field {map_field!r} must hold a dict, not {type(extra).__name__}")

    names = json_names(cls)
    for key in extra:
        if key in names:
            raise ValueError(f"map key {json.dumps(key)} duplicates struct field")

    struct_text = _dumps(_struct_dict(obj, skip=map_field))
    if not extra:
        return struct_text
    map_text = _dumps(extra, sort_keys=True)
    if struct_text == "{}":
        return map_text
    return struct_text[:-1] + "," + map_text[1:]


def _simple_type(annotation: Any) -> type | None:
    """Return the simple type a field annotation names, if it names one."""
    if isinstance(annotation, str):
        return _SIMPLE_TYPES_BY_NAME.get(annotation.strip())
    if annotation in _SIMPLE_TYPES:
        return annotation
    return None


def _field_types(cls: type) -> dict[str, type | None]:
    return {f.name: _simple_type(f.type) for f in dataclasses.fields(cls)}


def _matches(hint: Any, value: Any) -> bool:
    if hint is bool:
        return isinstance(value, bool)
    if hint is int:
        return isinstance(value, int) and not isinstance(value, bool)
    if hint is float:
        return isinstance(value, (int, float)) and not isinstance(value, bool)
    if hint is str:
        return isinstance(value, str)
    return True


def unmarshal_struct_with_map(data: str | bytes, cls: type, map_field: str) -> Any:
    """Build a ``cls`` from JSON, the inverse of :func:`marshal_struct_with_map`.

    Keys that are not JSON names of the struct's fields are collected into
    ``map_field``.
    """
    infos = _field_infos(cls)
    _check_map_field(cls, map_field)
    try:
        decoded = json.loads(data)
    except json.JSONDecodeError as exc:
        raise ValueError(f"invalid JSON: {exc}") from exc
    if decoded is None:
        decoded = {}
    if not isinstance(decoded, dict):
        raise ValueError(
            f"cannot unmarshal JSON {type(decoded).__name__} into {cls.__name__}"
        )

    hints = _field_types(cls)
    init_fields = {f.name for f in dataclasses.fields(cls) if f.init}
    values: dict[str, Any] = {}
    for info in infos:
        if info.name not in decoded:
            continue
        value = decoded[info.name]
        hint = hints.get(info.attr)
        if hint is not None:
            if value is None:
                continue
            if not _matches(hint, value):
                raise ValueError(
                    f"cannot unmarshal {type(value).__name__} into field "
                    f"{cls.__name__}.{info.name} of type {hint.__name__}"
                )
        values[info.attr] = value

    names = json_names(cls)
    extra = {key: value for key, value in decoded.items() if key not in names}
    if extra:
        values[map_field] = extra

    try:
        obj = cls(**{k: v for k, v in values.items() if k in init_fields})
    except TypeError as exc:
        raise ValueError(f"cannot construct {cls.__name__}: {exc}") from exc
    for attr, value in values.items():
        if attr not in init_fields:
            setattr(obj, attr, value)
    return obj