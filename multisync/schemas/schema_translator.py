"""
Translate JSON Schema fragments into runtime output validators
"""
import json
import logging
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any, Dict, FrozenSet, Optional, Tuple

from multisync.core.errors import OutputShapeError

logger = logging.getLogger(__name__)


class Shape:
    """Base class of the closed set of output shapes"""

    def validate(self, value: Any, path: str = "$") -> Any:
        raise NotImplementedError


@dataclass(frozen=True)
class AnyShape(Shape):
    def validate(self, value: Any, path: str = "$") -> Any:
        return value


@dataclass(frozen=True)
class StringShape(Shape):
    enum: Optional[Tuple[str, ...]] = None

    def validate(self, value: Any, path: str = "$") -> Any:
        if not isinstance(value, str):
            raise OutputShapeError(f"expected string, got {type(value).__name__}", path)
        if self.enum is not None and value not in self.enum:
            allowed = ", ".join(repr(item) for item in self.enum)
            raise OutputShapeError(f"expected one of {allowed}, got {value!r}", path)
        return value


@dataclass(frozen=True)
class NumberShape(Shape):
    def validate(self, value: Any, path: str = "$") -> Any:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise OutputShapeError(f"expected number, got {type(value).__name__}", path)
        return value


@dataclass(frozen=True)
class BooleanShape(Shape):
    def validate(self, value: Any, path: str = "$") -> Any:
        if not isinstance(value, bool):
            raise OutputShapeError(f"expected boolean, got {type(value).__name__}", path)
        return value


@dataclass(frozen=True)
class ArrayShape(Shape):
    items: Shape = field(default_factory=AnyShape)

    def validate(self, value: Any, path: str = "$") -> Any:
        if not isinstance(value, list):
            raise OutputShapeError(f"expected array, got {type(value).__name__}", path)
        return [self.items.validate(item, f"{path}[{index}]")
                for index, item in enumerate(value)]


@dataclass(frozen=True)
class ObjectShape(Shape):
    """Object with per-field shapes.

    Fields not listed in ``required`` are optional. Unknown keys are
    dropped, or rejected when ``strict`` is set.
    """
    fields: Tuple[Tuple[str, Shape], ...] = ()
    required: FrozenSet[str] = frozenset()
    strict: bool = False

    def validate(self, value: Any, path: str = "$") -> Any:
        if not isinstance(value, dict):
            raise OutputShapeError(f"expected object, got {type(value).__name__}", path)

        known = dict(self.fields)
        if self.strict:
            unknown = sorted(key for key in value if key not in known)
            if unknown:
                raise OutputShapeError(f"unrecognized keys: {', '.join(unknown)}", path)

        result: Dict[str, Any] = {}
        for name, shape in self.fields:
            if name not in value:
                if name in self.required:
                    raise OutputShapeError("required field missing", f"{path}.{name}")
                continue
            result[name] = shape.validate(value[name], f"{path}.{name}")
        return result


def _build(schema: Any) -> Shape:
    if not isinstance(schema, dict) or not schema:
        return AnyShape()

    schema_type = schema.get("type")
    if schema_type == "string":
        enum = schema.get("enum")
        if isinstance(enum, list):
            return StringShape(enum=tuple(enum))
        return StringShape()
    if schema_type in ("number", "integer"):
        return NumberShape()
    if schema_type == "boolean":
        return BooleanShape()
    if schema_type == "array":
        return ArrayShape(items=_build(schema.get("items") or {}))
    if schema_type == "object" or schema.get("properties"):
        required = frozenset(schema.get("required") or [])
        fields = tuple(
            (name, _build(sub_schema))
            for name, sub_schema in (schema.get("properties") or {}).items()
        )
        return ObjectShape(
            fields=fields,
            required=required,
            strict=schema.get("additionalProperties") is False,
        )

    logger.debug(f"Schema type {schema_type!r} not recognized, accepting any value")
    return AnyShape()


@lru_cache(maxsize=256)
def _translate_cached(canonical: str) -> Shape:
    return _build(json.loads(canonical))


def translate(schema: Optional[Dict[str, Any]]) -> Shape:
    """Translate a JSON-Schema-like document into a Shape.

    Never raises: unrecognized schemas degrade to AnyShape.
    """
    if not schema:
        return AnyShape()
    try:
        canonical = json.dumps(schema, sort_keys=True)
    except (TypeError, ValueError):
        return _build(schema)
    return _translate_cached(canonical)
