"""File storage backed by a single relational database table.

Files are stored as BLOB rows keyed by name, with optional compression,
optional password-based encryption and integrity checks on every read and
write. Any database SQLAlchemy can talk to may be used.

Core Components:
    - RelaTableStorage: list/get/put/move/copy/delete over one table
    - DatabaseResource: lazy handle on a stored file
    - BinaryStreamProvider: how content is staged on its way into the table
    - BlobExtractor: how content is staged on its way out of the table

Quick Start:

    >>> from sqlalchemy import MetaData, create_engine
    >>> from relatable_storage import RelaTableStorage, define_table
    >>> engine = create_engine("sqlite:///files.db")
    >>> metadata = MetaData()
    >>> _ = define_table(metadata, "files")
    >>> metadata.create_all(engine)
    >>> storage = RelaTableStorage(engine, "files", password="secret")
    >>> storage.put(b"Hello, world!", "greeting.txt").content_length
    13
    >>> storage.get("greeting.txt").read()
    b'Hello, world!'

Exception Handling:

    >>> from relatable_storage import NotFoundError
    >>> try:
    ...     storage.get("missing.txt")
    ... except NotFoundError:
    ...     print("File not found")
    File not found

Supported Operations:
    - list() - Files matching glob patterns
    - get() - Metadata of one file
    - put() - Store or replace a file
    - move() - Rename a file
    - copy() - Duplicate a file under a new identity
    - delete() - Remove a file

"""

from .codec import BlobStoreParameters
from .database import Database, define_table
from .factory import resolve_storage
from .interfaces import (
    DEFAULT_CHUNK_SIZE,
    AlreadyExistsError,
    Compression,
    CopyOption,
    CorruptionError,
    InconsistentUpdateError,
    InvalidOperationError,
    NotFoundError,
    OpenOption,
    PreconditionFailedError,
    StorageError,
    StorageIOError,
    StorageOperations,
    UnsupportedOptionError,
)
from .pipe import PipeWriterError
from .read import BlobAccessor, BlobExtractor
from .resources import (
    BytesResource,
    FileResource,
    Resource,
    ResourceLike,
    StreamResource,
    as_resource,
)
from .storage import DatabaseResource, RelaTableStorage
from .write import BinaryStreamProvider

__all__ = [
    "DEFAULT_CHUNK_SIZE",
    "AlreadyExistsError",
    "BinaryStreamProvider",
    "BlobAccessor",
    "BlobExtractor",
    "BlobStoreParameters",
    "BytesResource",
    "Compression",
    "CopyOption",
    "CorruptionError",
    "Database",
    "DatabaseResource",
    "FileResource",
    "InconsistentUpdateError",
    "InvalidOperationError",
    "NotFoundError",
    "OpenOption",
    "PipeWriterError",
    "PreconditionFailedError",
    "RelaTableStorage",
    "Resource",
    "ResourceLike",
    "StorageError",
    "StorageIOError",
    "StorageOperations",
    "StreamResource",
    "UnsupportedOptionError",
    "as_resource",
    "define_table",
    "resolve_storage",
]
