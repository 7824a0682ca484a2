"""Validation of the caller-supplied template context.

The context handed to a template may only recurse to primitive leaves
(``bool``, ``int``, ``float``, ``str``) through records, containers and
mappings with primitive keys.  Anything else (callables, file handles,
``bytes``, arbitrary objects) is rejected up front so templates can never
reach into live Python objects.
"""

from __future__ import annotations

import dataclasses
import logging
from collections.abc import Mapping
from typing import Any, Dict

from pydantic import BaseModel

from kube_templates.errors import InvalidContextError

logger = logging.getLogger(__name__)

_PRIMITIVES = (bool, int, float, str)
_CONTAINERS = (list, tuple, set, frozenset)


def validate_context(value: Any) -> Dict[str, Any]:
    """Validate *value* and return it as a dict of top-level fields.

    ``None`` becomes an empty dict.  Records (dataclasses and pydantic
    models) are flattened to their public fields; nested values are passed
    through untouched.

    Raises:
        InvalidContextError: The top level is not a record, or some nested
            value is not allowed.
    """
    if value is None:
        return {}

    if isinstance(value, Mapping):
        fields = dict(value)
        _check_keys(fields)
    elif _is_dataclass_instance(value) or isinstance(value, BaseModel):
        fields = _record_fields(value)
    else:
        raise InvalidContextError(_kind(value))

    for item in fields.values():
        _check_value(item)

    logger.debug("Validated template context with fields %s", sorted(map(str, fields)))
    return fields


def _check_value(value: Any) -> None:
    if value is None or isinstance(value, _PRIMITIVES):
        return
    if isinstance(value, _CONTAINERS):
        for item in value:
            _check_value(item)
        return
    if isinstance(value, Mapping):
        _check_keys(value)
        for item in value.values():
            _check_value(item)
        return
    if _is_dataclass_instance(value) or isinstance(value, BaseModel):
        for item in _record_fields(value).values():
            _check_value(item)
        return
    raise InvalidContextError(_kind(value))


def _check_keys(mapping: Mapping) -> None:
    for key in mapping:
        if not isinstance(key, _PRIMITIVES):
            raise InvalidContextError(_kind(key))


def _record_fields(value: Any) -> Dict[str, Any]:
    if isinstance(value, BaseModel):
        names = type(value).model_fields
    else:
        names = [f.name for f in dataclasses.fields(value)]
    return {name: getattr(value, name) for name in names if not name.startswith("_")}


def _is_dataclass_instance(value: Any) -> bool:
    return dataclasses.is_dataclass(value) and not isinstance(value, type)


def _kind(value: Any) -> str:
    return type(value).__name__
