"""Utility helpers for the form submission pipeline."""

from .dynamodb_utils import from_dynamodb, to_dynamodb
from .number_utils import format_file_size, median, percentage, round_half_up

__all__ = [
    "to_dynamodb",
    "from_dynamodb",
    "format_file_size",
    "median",
    "percentage",
    "round_half_up",
]
