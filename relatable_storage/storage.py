"""Storage engine keeping files as BLOBs in a single relational table.

Each stored file is one row: a unique ``filename``, a permanent ``uuid``, the
plaintext ``content_length``, the ``last_modified`` time, the ``compressed``
and ``encrypted`` flags and the encoded ``contents``. See
:func:`relatable_storage.database.define_table` for the table layout.

Operations:
    - ``list``: glob matching on file names, translated to ``LIKE``
    - ``get``: metadata of one file
    - ``put``: insert, or replace in place with ``TRUNCATE_EXISTING``
    - ``move``: rename, optionally replacing the destination
    - ``copy``: duplicate into a row with a new identity
    - ``delete``: remove the row

Writes stream the encoded content into the database and count the plaintext
on the way. The row is first written with the declared length, then the
counted length is checked against it and stored. Nothing is rolled back
unless the caller runs the operation inside :meth:`RelaTableStorage.transaction`.

Example:

    >>> from sqlalchemy import MetaData, create_engine
    >>> from relatable_storage import define_table
    >>> engine = create_engine("sqlite://")
    >>> metadata = MetaData()
    >>> _ = define_table(metadata, "files")
    >>> metadata.create_all(engine)
    >>> storage = RelaTableStorage(engine, "files", compression=Compression.HIGH)
    >>> storage.put(b"qwertyuiop", "test.txt").content_length
    10
    >>> storage.get("test.txt").read()
    b'qwertyuiop'
    >>> [resource.filename for resource in storage.list("*.txt")]
    ['test.txt']

See Also:
    - BinaryStreamProvider: how content is staged for writing
    - BlobExtractor: how content is staged for reading

"""

from __future__ import annotations

import io
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, BinaryIO
from uuid import UUID, uuid4

from sqlalchemy import BigInteger, Boolean, DateTime, LargeBinary, String

from .codec import BlobStoreParameters
from .database import Database, as_utc
from .interfaces import (
    Compression,
    CopyOption,
    CorruptionError,
    InconsistentUpdateError,
    InvalidOperationError,
    NotFoundError,
    OpenOption,
    PreconditionFailedError,
    StorageOperations,
    UnsupportedOptionError,
)
from .patterns import build_filename_filter
from .read import BlobExtractor
from .resources import as_resource
from .translation import translate_errors
from .utils import CountingReader
from .uuid_utils import from_base64url, to_base64url, to_urn
from .write import BinaryStreamProvider

if TYPE_CHECKING:
    from contextlib import AbstractContextManager

    from sqlalchemy.engine import Connection, Engine, Row

    from .resources import ResourceLike

logger = logging.getLogger(__name__)

UNKNOWN_LENGTH = -1

_METADATA_COLUMNS = "uuid, filename, content_length, last_modified"
_METADATA_TYPES = {
    "uuid": String(),
    "filename": String(),
    "content_length": BigInteger(),
    "last_modified": DateTime(timezone=True),
}
_CONTENT_TYPES = {
    "compressed": Boolean(),
    "encrypted": Boolean(),
    "contents": LargeBinary(),
}
# Columns duplicated by copy; uuid and filename are assigned per copy.
_COPIED_COLUMNS = ("content_length", "last_modified", "compressed", "encrypted", "contents")


@dataclass(frozen=True)
class DatabaseResource:
    """Handle on a stored file.

    Metadata reflects the row when the handle was created. Content is read
    through the storage by file name, so it always reflects the current row.
    """

    filename: str
    content_length: int
    last_modified: datetime
    uuid: UUID
    _storage: RelaTableStorage = field(compare=False, repr=False)

    @property
    def uri(self) -> str:
        """Stable identity of the stored object (``urn:uuid:...``)."""
        return to_urn(self.uuid)

    @property
    def description(self) -> str:
        return f"{self.filename} [{self.uri}]"

    def exists(self) -> bool:
        """Return whether a file with this name is currently stored."""
        return self._storage.exists(self.filename)

    def open(self) -> BinaryIO:
        """Return a stream of the decoded content.

        Raises:
            NotFoundError: If the file no longer exists.

        """
        return self._storage.open(self.filename)

    def read(self) -> bytes:
        """Return the decoded content."""
        with self.open() as stream:
            return stream.read()

    def as_dict(self) -> dict[str, Any]:
        return {
            "filename": self.filename,
            "content_length": self.content_length,
            "last_modified": self.last_modified.isoformat(),
            "uuid": str(self.uuid),
            "uri": self.uri,
        }


@dataclass(frozen=True)
class _StoredBlob:
    contents: bytes = field(repr=False)
    compressed: bool
    encrypted: bool
    password: str | bytes | None = field(default=None, repr=False)

    def binary_stream(self) -> BinaryIO:
        return io.BytesIO(self.contents)

    def read_bytes(self) -> bytes:
        return self.contents


class RelaTableStorage(StorageOperations):
    """Storage of files as rows of one database table."""

    def __init__(
        self,
        database: Database | Engine,
        table: str,
        blob_extractor: BlobExtractor | None = None,
        *,
        schema: str | None = None,
        compression: Compression = Compression.NONE,
        password: str | bytes | None = None,
        stream_provider: BinaryStreamProvider | None = None,
        always_quote: bool = False,
    ) -> None:
        """Create a storage over ``table``.

        Args:
            database: Database collaborator, or an engine to wrap in one.
            table: Table name; must follow :func:`define_table`'s layout.
            blob_extractor: Read strategy, ``BlobExtractor.direct()`` by default.
            schema: Optional schema qualifying ``table``.
            compression: Compression level for new content.
            password: Encrypts new content and decrypts encrypted content.
            stream_provider: Write strategy, ``BinaryStreamProvider.pipe()``
                by default.
            always_quote: Quote ``schema`` and ``table`` even when the
                dialect does not require it.

        Raises:
            ValueError: If ``table``, ``schema`` or ``password`` is empty.

        """
        if not table:
            message = "Table name must not be empty"
            raise ValueError(message)
        if schema is not None and not schema:
            message = "Schema name must not be empty"
            raise ValueError(message)
        if password is not None and not password:
            message = "Password must not be empty"
            raise ValueError(message)

        self._database = database if isinstance(database, Database) else Database(database)
        self._parameters = BlobStoreParameters(compression, password)
        self._blob_extractor = blob_extractor or BlobExtractor.direct()
        self._stream_provider = stream_provider or BinaryStreamProvider.pipe()

        quoted = self._database.quote_identifier(table, always=always_quote)
        if schema is not None:
            quoted = f"{self._database.quote_identifier(schema, always=always_quote)}.{quoted}"
        self._table = quoted

    @property
    def database(self) -> Database:
        return self._database

    @property
    def table(self) -> str:
        """Qualified and quoted table name used in statements."""
        return self._table

    @property
    def compression(self) -> Compression:
        return self._parameters.compression

    @property
    def blob_extractor(self) -> BlobExtractor:
        return self._blob_extractor

    @property
    def stream_provider(self) -> BinaryStreamProvider:
        return self._stream_provider

    def transaction(self) -> AbstractContextManager[Connection]:
        """Context manager running the enclosed operations in one transaction."""
        return self._database.transaction()

    def list(self, *patterns: str) -> list[DatabaseResource]:
        clause, params = build_filename_filter(patterns)
        sql = f"SELECT {_METADATA_COLUMNS} FROM {self._table}{clause}"
        with translate_errors():
            rows = self._database.query(sql, params, columns=_METADATA_TYPES)
        return [self._resource(row) for row in rows]

    def get(self, filename: str) -> DatabaseResource:
        row = self._metadata(filename)
        if row is None:
            logger.debug("No stored file named %s", filename)
            raise NotFoundError(filename)
        return self._resource(row)

    def exists(self, filename: str) -> bool:
        """Return whether ``filename`` is stored."""
        return self._metadata(filename) is not None

    def open(self, filename: str) -> BinaryIO:
        """Return a stream of the decoded content of ``filename``.

        Raises:
            NotFoundError: If ``filename`` does not exist.
            InvalidOperationError: If the content is encrypted and no password
                was configured.

        """
        sql = f"SELECT compressed, encrypted, contents FROM {self._table} WHERE filename = :filename"
        with translate_errors(filename=filename):
            rows = self._database.query(sql, {"filename": filename}, columns=_CONTENT_TYPES)
            if not rows:
                logger.debug("No stored file named %s", filename)
                raise NotFoundError(filename)
            row = rows[0]
            blob = _StoredBlob(
                contents=row.contents,
                compressed=bool(row.compressed),
                encrypted=bool(row.encrypted),
                password=self._parameters.password,
            )
            if blob.encrypted and blob.password is None:
                raise InvalidOperationError.password_required(filename)
            return self._blob_extractor.input_stream(blob)

    def put(
        self,
        resource: ResourceLike,
        filename: str,
        *options: OpenOption,
    ) -> DatabaseResource:
        replace = _replace_requested(options)
        source = as_resource(resource)
        declared = source.content_length
        last_modified = as_utc(source.last_modified) or datetime.now(timezone.utc)

        with translate_errors(filename=filename):
            uuid_token = self._uuid_of(filename) if replace else None
            with source.open() as plaintext:
                counter = CountingReader(plaintext)
                with self._stream_provider.content_stream(counter, self._parameters) as contents:
                    if uuid_token is None:
                        uuid_token = to_base64url(uuid4())
                        self._insert(uuid_token, filename, declared, last_modified, contents)
                    else:
                        self._overwrite(uuid_token, filename, declared, last_modified, contents)

            actual = counter.count
            if declared is not None and declared != actual:
                raise CorruptionError.inconsistent_length(filename, expected=declared, actual=actual)

            count = self._database.update(
                f"UPDATE {self._table} SET content_length = :content_length WHERE uuid = :uuid",
                {"content_length": actual, "uuid": uuid_token},
            )
            _expect_single_row(count, filename)

        return self.get(filename)

    def move(
        self,
        old_filename: str,
        new_filename: str,
        *options: CopyOption,
    ) -> DatabaseResource:
        if CopyOption.ATOMIC_MOVE in options and not self._database.in_transaction():
            raise PreconditionFailedError.transaction_required()
        if old_filename == new_filename:
            return self.get(old_filename)

        rename = f"UPDATE {self._table} SET filename = :new_filename WHERE filename = :old_filename"
        params = {"new_filename": new_filename, "old_filename": old_filename}
        with translate_errors(filename=new_filename):
            if CopyOption.REPLACE_EXISTING in options:
                # Two statements; only atomic inside a caller transaction.
                if self._metadata(old_filename) is None:
                    logger.debug("No stored file named %s", old_filename)
                    raise NotFoundError(old_filename)
                self._database.update(
                    f"DELETE FROM {self._table} WHERE filename = :filename",
                    {"filename": new_filename},
                )
            count = self._database.update(rename, params)

        if count == 0:
            logger.debug("No stored file named %s", old_filename)
            raise NotFoundError(old_filename)
        return self.get(new_filename)

    def copy(
        self,
        source_filename: str,
        dest_filename: str,
        *options: CopyOption,
    ) -> DatabaseResource:
        if CopyOption.ATOMIC_MOVE in options:
            raise UnsupportedOptionError(CopyOption.ATOMIC_MOVE)

        with translate_errors(filename=dest_filename):
            dest_uuid = None
            if CopyOption.REPLACE_EXISTING in options:
                dest_uuid = self._uuid_of(dest_filename)

            if dest_uuid is None:
                columns = ", ".join(_COPIED_COLUMNS)
                count = self._database.update(
                    f"INSERT INTO {self._table} (uuid, filename, {columns}) "
                    f"SELECT :uuid, :dest_filename, {columns} FROM {self._table} "
                    "WHERE filename = :source_filename",
                    {
                        "uuid": to_base64url(uuid4()),
                        "dest_filename": dest_filename,
                        "source_filename": source_filename,
                    },
                )
                if count == 0:
                    logger.debug("No stored file named %s", source_filename)
                    raise NotFoundError(source_filename)
            elif source_filename != dest_filename:
                if self._metadata(source_filename) is None:
                    raise NotFoundError(source_filename)
                assignments = ", ".join(
                    f"{column} = (SELECT source_row.{column} FROM {self._table} source_row "
                    "WHERE source_row.filename = :source_filename)"
                    for column in _COPIED_COLUMNS
                )
                count = self._database.update(
                    f"UPDATE {self._table} SET {assignments} WHERE uuid = :uuid",
                    {"uuid": dest_uuid, "source_filename": source_filename},
                )
                _expect_single_row(count, dest_filename)

        return self.get(dest_filename)

    def delete(self, filename: str) -> None:
        with translate_errors(filename=filename):
            count = self._database.update(
                f"DELETE FROM {self._table} WHERE filename = :filename",
                {"filename": filename},
            )
        if count == 0:
            logger.debug("No stored file named %s", filename)
            raise NotFoundError(filename)

    def _metadata(self, filename: str) -> Row | None:
        sql = f"SELECT {_METADATA_COLUMNS} FROM {self._table} WHERE filename = :filename"
        with translate_errors(filename=filename):
            rows = self._database.query(sql, {"filename": filename}, columns=_METADATA_TYPES)
        return rows[0] if rows else None

    def _uuid_of(self, filename: str) -> str | None:
        row = self._metadata(filename)
        return None if row is None else row.uuid

    def _content_params(
        self,
        declared: int | None,
        last_modified: datetime,
    ) -> dict[str, Any]:
        return {
            "content_length": UNKNOWN_LENGTH if declared is None else declared,
            "last_modified": last_modified,
            "compressed": self._parameters.compressed,
            "encrypted": self._parameters.encryption_required,
        }

    def _insert(
        self,
        uuid_token: str,
        filename: str,
        declared: int | None,
        last_modified: datetime,
        contents: BinaryIO,
    ) -> None:
        params = self._content_params(declared, last_modified)
        params.update(uuid=uuid_token, filename=filename)
        self._database.update(
            f"INSERT INTO {self._table} "
            "(uuid, filename, content_length, last_modified, compressed, encrypted, contents) "
            "VALUES (:uuid, :filename, :content_length, :last_modified, :compressed, :encrypted, :contents)",
            params,
            blobs={"contents": contents},
        )

    def _overwrite(
        self,
        uuid_token: str,
        filename: str,
        declared: int | None,
        last_modified: datetime,
        contents: BinaryIO,
    ) -> None:
        params = self._content_params(declared, last_modified)
        params.update(uuid=uuid_token)
        count = self._database.update(
            f"UPDATE {self._table} SET content_length = :content_length, "
            "last_modified = :last_modified, compressed = :compressed, "
            "encrypted = :encrypted, contents = :contents WHERE uuid = :uuid",
            params,
            blobs={"contents": contents},
        )
        _expect_single_row(count, filename)

    def _resource(self, row: Row) -> DatabaseResource:
        return DatabaseResource(
            filename=row.filename,
            content_length=row.content_length,
            last_modified=as_utc(row.last_modified),
            uuid=from_base64url(row.uuid),
            _storage=self,
        )


def _replace_requested(options: tuple[OpenOption, ...]) -> bool:
    replace = False
    for option in options:
        if option in (OpenOption.APPEND, OpenOption.DELETE_ON_CLOSE):
            raise UnsupportedOptionError(option)
        if option is OpenOption.READ:
            raise InvalidOperationError.read_option_not_allowed()
        if option is OpenOption.TRUNCATE_EXISTING:
            replace = True
    return replace


def _expect_single_row(count: int, filename: str) -> None:
    if count != 1:
        raise InconsistentUpdateError(filename, expected=1, actual=count)
