"""DynamoDB type conversion utilities.

DynamoDB stores numbers as Decimal and rejects Python floats, while the
pydantic models work with int/float. Persisted export history passes through
these helpers in both directions.
"""

from decimal import Decimal
from typing import Any


def to_dynamodb(obj: Any) -> Any:
    """Recursively convert floats/ints to Decimal for storage.

    Floats go through ``str`` to avoid binary precision noise; bools are left
    alone since they are ints in Python but booleans in DynamoDB.
    """
    if isinstance(obj, bool) or obj is None:
        return obj
    if isinstance(obj, float):
        return Decimal(str(round(obj, 6)))
    if isinstance(obj, int):
        return Decimal(obj)
    if isinstance(obj, dict):
        return {key: to_dynamodb(value) for key, value in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [to_dynamodb(item) for item in obj]
    return obj


def from_dynamodb(obj: Any) -> Any:
    """Recursively convert Decimal values back to int (whole) or float."""
    if isinstance(obj, Decimal):
        return int(obj) if obj % 1 == 0 else float(obj)
    if isinstance(obj, dict):
        return {key: from_dynamodb(value) for key, value in obj.items()}
    if isinstance(obj, list):
        return [from_dynamodb(item) for item in obj]
    return obj
