"""Part storage backends."""

from .part_storage import (
    PartStorage,
    FileSystemPartStorage,
    InMemoryPartStorage,
    validate_identifier,
)

__all__ = [
    "PartStorage",
    "FileSystemPartStorage",
    "InMemoryPartStorage",
    "validate_identifier",
]
