# pyright: standard

import msgspec

from chatrecon.exceptions import MalformedPartError


def to_json(obj: object) -> bytes:
    """Encode an object to JSON bytes using msgspec."""
    return msgspec.json.encode(obj)


def from_json[T](type_spec: type[T], data: bytes | str) -> T:
    """
    Decode JSON data (bytes or str) into the specified type.

    Validation failures raised while building parts surface as MalformedPartError.
    """
    try:
        return msgspec.json.decode(data, type=type_spec)
    except msgspec.ValidationError as e:
        raise MalformedPartError(str(e)) from e


def convert[T](obj: object, type_spec: type[T]) -> T:
    """Convert builtins (e.g. a parsed JSON payload) to the specified type using msgspec."""
    try:
        return msgspec.convert(obj, type_spec)
    except msgspec.ValidationError as e:
        raise MalformedPartError(str(e)) from e
