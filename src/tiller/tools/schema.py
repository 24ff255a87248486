"""Adapter from JSON-schema parameter descriptions to pydantic validation.

Tool parameters are declared as plain JSON-schema dicts so the same value
can be sent to the backend as the tool declaration. Only the subset the
built-in tools use is supported: ``object`` with ``properties`` and
``required``, scalar types, ``array`` with ``items``, nested objects and
``enum``.
"""

from __future__ import annotations

from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, create_model


class ToolValidationError(Exception):
    """Model-supplied arguments do not match the tool's parameter schema."""


class _Args(BaseModel):
    model_config = ConfigDict(extra="allow")


_SCALARS: dict[str, Any] = {
    "string": str,
    "integer": int,
    "number": float,
    "boolean": bool,
    "null": type(None),
}


def _python_type(schema: dict[str, Any], name: str) -> Any:
    if "enum" in schema:
        return Literal[tuple(schema["enum"])]
    kind = schema.get("type", "string")
    if kind == "array":
        return list[_python_type(schema.get("items", {}), name)]  # type: ignore[misc]
    if kind == "object":
        if "properties" in schema:
            return build_model(schema, name=f"{name}_obj")
        return dict[str, Any]
    if kind == "number":
        return float | int
    if kind not in _SCALARS:
        return Any
    return _SCALARS[kind]


def build_model(schema: dict[str, Any], name: str = "Arguments") -> type[BaseModel]:
    """Create a pydantic model equivalent to an ``object`` schema."""
    required = set(schema.get("required", []))
    fields: dict[str, Any] = {}
    for prop, prop_schema in schema.get("properties", {}).items():
        annotation = _python_type(prop_schema, f"{name}_{prop}")
        description = prop_schema.get("description")
        if prop in required:
            fields[prop] = (annotation, Field(..., description=description))
        else:
            fields[prop] = (Optional[annotation], Field(None, description=description))
    return create_model(name, __base__=_Args, **fields)


def validate_arguments(model: type[BaseModel], arguments: Any) -> dict[str, Any]:
    """Validate ``arguments`` and return them with absent optionals dropped."""
    if not isinstance(arguments, dict):
        raise ToolValidationError(f"Arguments must be an object, got {type(arguments).__name__}")
    try:
        parsed = model.model_validate(arguments)
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or '<root>'}: {err['msg']}" for err in e.errors()
        )
        raise ToolValidationError(f"Invalid arguments: {problems}") from e
    return parsed.model_dump(exclude_unset=True)
