"""
Input Record Validation

Every public operation receives a plain record of named fields. This module
provides:
1. An ordered presence check that tells an absent field apart from an empty
   collection
2. A pydantic base class for per-operation request records
3. A decorator that validates and parses a record argument before the call
"""

import inspect
import functools
from typing import Any, Callable, ClassVar, Dict, Iterable, Mapping, Optional, Tuple, Type, TypeVar, cast

from pydantic import BaseModel, Extra

from codeassess.common.exceptions import EmptyCollection, MissingField, ValidationError

# Type variables
R = TypeVar('R', bound='RequestRecord')
F = TypeVar('F', bound=Callable)


def empty_message(item_name: str) -> str:
    """Message for a present but empty list of ``item_name`` values."""
    return f"0 {item_name} found"


def check_fields(
    data: Optional[Mapping[str, Any]],
    required: Iterable[str],
    non_empty: Optional[Mapping[str, str]] = None
) -> Optional[ValidationError]:
    """
    Check required fields in their declared order.

    A field is absent when its key is missing or bound to None; falsy values
    such as 0 or "" are present. A field listed in ``non_empty`` must also
    hold at least one element.

    Args:
        data: Input record
        required: Field names in check order
        non_empty: Mapping of collection field name to its empty message

    Returns:
        The first failure as a MissingField or EmptyCollection, or None
    """
    data = data or {}
    non_empty = non_empty or {}

    for field in required:
        value = data.get(field)
        if value is None:
            return MissingField(field)
        if field in non_empty and hasattr(value, "__len__") and len(value) == 0:
            return EmptyCollection(non_empty[field], field)

    return None


def validate_fields(
    data: Optional[Mapping[str, Any]],
    required: Iterable[str],
    non_empty: Optional[Mapping[str, str]] = None
) -> Mapping[str, Any]:
    """
    Raise the first failure reported by check_fields.

    Returns:
        The record itself, for chaining
    """
    failure = check_fields(data, required, non_empty)
    if failure is not None:
        raise failure
    return data


class RequestRecord(BaseModel):
    """
    Base class for operation input records.

    Subclasses declare ``required_fields`` in check order and
    ``non_empty_fields`` for collections that must hold elements.
    """

    required_fields: ClassVar[Tuple[str, ...]] = ()
    non_empty_fields: ClassVar[Dict[str, str]] = {}

    class Config:
        extra = Extra.ignore
        arbitrary_types_allowed = True

    @classmethod
    def parse(cls: Type[R], data: Optional[Mapping[str, Any]]) -> R:
        """Check the raw record, then build the typed request."""
        if isinstance(data, cls):
            return data
        validate_fields(data, cls.required_fields, cls.non_empty_fields)
        return cls(**dict(data or {}))


def validate_args(model: Type[RequestRecord], arg_name: str = "data"):
    """
    Decorator for validating a record argument of a coroutine.

    The raw mapping is checked against the model's declared fields and
    replaced with the parsed request record before the call.

    Args:
        model: Request record class to validate against
        arg_name: Name of the argument to validate

    Returns:
        Decorated coroutine function
    """
    def decorator(func: F) -> F:
        sig = inspect.signature(func)
        param_names = list(sig.parameters.keys())
        if arg_name not in param_names:
            raise ValueError(f"{func.__name__} has no argument named {arg_name}")
        arg_index = param_names.index(arg_name)

        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            if arg_name in kwargs:
                kwargs[arg_name] = model.parse(kwargs[arg_name])
            elif arg_index < len(args):
                args = list(args)
                args[arg_index] = model.parse(args[arg_index])
                args = tuple(args)
            else:
                kwargs[arg_name] = model.parse(None)
            return await func(*args, **kwargs)

        return cast(F, wrapper)

    return decorator
