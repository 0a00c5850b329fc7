"""URI-based construction of a configured storage.

A storage URI is a SQLAlchemy database URL whose query string also carries
the storage settings. Those settings are removed before the URL is handed to
:func:`sqlalchemy.create_engine`; every other query parameter is left for the
driver.

Storage parameters:
    - ``table`` (required): table holding the files
    - ``schema``: schema qualifying the table
    - ``compression``: ``none``, ``low``, ``medium`` or ``high``
    - ``stream_provider``: ``pipe``, ``memory`` or ``file``
    - ``pipe_size``: pipe capacity in bytes for the ``pipe`` provider
    - ``blob_extractor``: ``direct``, ``memory`` or ``file``
    - ``buffer_compression``: compression of buffered copies when reading
    - ``temp_dir``: directory for temporary files
    - ``always_quote``: quote the schema and table names unconditionally

Example:
    >>> from relatable_storage.factory import resolve_storage
    >>> storage = resolve_storage("sqlite:///files.db?table=files&compression=high")
    >>> storage = resolve_storage(
    ...     "postgresql://user@db/app?table=blobs&schema=store&stream_provider=file",
    ...     password="secret",
    ... )

"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from sqlalchemy.engine import make_url

from .database import Database
from .interfaces import Compression
from .pipe import DEFAULT_PIPE_SIZE
from .read import BlobExtractor, ExtractorKind
from .storage import RelaTableStorage
from .write import BinaryStreamProvider, ProviderKind

if TYPE_CHECKING:
    from sqlalchemy.engine import URL

STORAGE_PARAMETERS = (
    "table",
    "schema",
    "compression",
    "stream_provider",
    "pipe_size",
    "blob_extractor",
    "buffer_compression",
    "temp_dir",
    "always_quote",
)

_TRUE_VALUES = frozenset({"1", "true", "yes", "on"})
_FALSE_VALUES = frozenset({"0", "false", "no", "off"})


def parse_storage_url(uri: str | URL) -> tuple[URL, dict[str, str]]:
    """Split a storage URI into the database URL and the storage parameters.

    Returns:
        Tuple of (url, params) where ``url`` no longer carries any storage
        parameter.

    """
    url = make_url(uri)
    params: dict[str, str] = {}
    for key in STORAGE_PARAMETERS:
        if key in url.query:
            value = url.query[key]
            # Repeated keys come back as tuples; the first one wins.
            params[key] = value[0] if isinstance(value, tuple) else value
    return url.difference_update_query(STORAGE_PARAMETERS), params


def _choice(name: str, value: str, enum_type: Any) -> Any:
    try:
        return enum_type[value.upper()]
    except KeyError:
        choices = ", ".join(member.name.lower() for member in enum_type)
        message = f"Invalid {name}: '{value}' (expected one of: {choices})"
        raise ValueError(message) from None


def _flag(name: str, value: str) -> bool:
    lowered = value.lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    message = f"Invalid {name}: '{value}' (expected true or false)"
    raise ValueError(message)


def _pipe_size(value: str) -> int:
    try:
        size = int(value)
    except ValueError:
        message = f"Invalid pipe_size: '{value}'"
        raise ValueError(message) from None
    if size <= 0:
        message = f"Invalid pipe_size: '{value}' (must be positive)"
        raise ValueError(message)
    return size


def _stream_provider(params: dict[str, str]) -> BinaryStreamProvider:
    kind = _choice("stream_provider", params.get("stream_provider", "pipe"), ProviderKind)
    if kind is ProviderKind.MEMORY:
        return BinaryStreamProvider.memory()
    if kind is ProviderKind.FILE:
        return BinaryStreamProvider.file(params.get("temp_dir"))
    return BinaryStreamProvider.pipe(_pipe_size(params.get("pipe_size", str(DEFAULT_PIPE_SIZE))))


def _blob_extractor(params: dict[str, str]) -> BlobExtractor:
    kind = _choice("blob_extractor", params.get("blob_extractor", "direct"), ExtractorKind)
    compression = _choice(
        "buffer_compression",
        params.get("buffer_compression", "none"),
        Compression,
    )
    if kind is ExtractorKind.MEMORY:
        return BlobExtractor.memory(compression)
    if kind is ExtractorKind.FILE:
        return BlobExtractor.file(params.get("temp_dir"), compression)
    return BlobExtractor.direct()


def resolve_storage(
    uri: str | URL,
    *,
    password: str | bytes | None = None,
    **engine_kwargs: Any,
) -> RelaTableStorage:
    """Create a storage from a storage URI.

    Args:
        uri: SQLAlchemy database URL with storage parameters.
        password: Encryption password. Kept out of the URI so it does not
            end up in logs.
        engine_kwargs: Passed through to :func:`sqlalchemy.create_engine`.

    Raises:
        ValueError: If ``table`` is missing or a parameter value is invalid.

    """
    url, params = parse_storage_url(uri)
    table = params.get("table")
    if not table:
        message = f"Storage URI must name a table: '{url.render_as_string(hide_password=True)}'"
        raise ValueError(message)

    compression = _choice("compression", params.get("compression", "none"), Compression)
    stream_provider = _stream_provider(params)
    blob_extractor = _blob_extractor(params)
    always_quote = _flag("always_quote", params.get("always_quote", "false"))

    database = Database.from_url(url, **engine_kwargs)
    return RelaTableStorage(
        database,
        table,
        blob_extractor,
        schema=params.get("schema"),
        compression=compression,
        password=password,
        stream_provider=stream_provider,
        always_quote=always_quote,
    )
