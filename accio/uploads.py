"""Upload naming and multipart streaming to disk."""

import logging
import os
import posixpath
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import BinaryIO, Callable, Iterator, List, Optional, Tuple

from werkzeug.exceptions import ClientDisconnected, HTTPException
from werkzeug.sansio.multipart import Data, Epilogue, Field, File, MultipartDecoder, NeedData

from .errors import InvalidUploadRequest, UploadCapacityExceeded, UploadIOFailure
from .paths import contains_parent_traversal, normalize_relative_path

MAX_FILENAME_LENGTH = 255
MAX_NAME_ATTEMPTS = 10_000
READ_CHUNK_SIZE = 64 * 1024

logger = logging.getLogger("accio.uploads")


def sanitize_upload_filename(filename: Optional[str]) -> str:
    """Reduce a client-supplied filename to a single safe path component."""

    normalized = normalize_relative_path(filename or "")
    if not normalized or contains_parent_traversal(normalized):
        raise InvalidUploadRequest("Invalid file name")

    sanitized = posixpath.basename(normalized).replace("/", "_").replace("\\", "_")
    if sanitized in {"", ".", ".."}:
        raise InvalidUploadRequest("Invalid file name")
    if "\x00" in sanitized or len(sanitized.encode("utf-8")) > MAX_FILENAME_LENGTH:
        raise InvalidUploadRequest("Invalid file name")
    return sanitized


def _truncate_utf8(text: str, max_bytes: int) -> str:
    return text.encode("utf-8")[:max(max_bytes, 0)].decode("utf-8", "ignore")


def candidate_names(sanitized: str) -> Iterator[str]:
    """Yield ``name.ext``, ``name_1.ext``, ``name_2.ext``, ...

    The stem is shortened so every candidate stays within
    ``MAX_FILENAME_LENGTH`` bytes.
    """

    yield sanitized
    template = Path(sanitized)
    stem, extension = template.stem, template.suffix
    for counter in range(1, MAX_NAME_ATTEMPTS):
        suffix = f"_{counter}{extension}"
        if len(suffix.encode("utf-8")) >= MAX_FILENAME_LENGTH:
            suffix = f"_{counter}"
        yield _truncate_utf8(stem, MAX_FILENAME_LENGTH - len(suffix.encode("utf-8"))) + suffix


def open_upload_destination(uploads_dir: Path, sanitized: str) -> Tuple[Path, BinaryIO]:
    """Create the first free destination for *sanitized* and open it for writing.

    Each candidate is created with ``O_EXCL`` so concurrent uploads of the
    same name never share or overwrite a file.
    """

    flags = os.O_WRONLY | os.O_CREAT | os.O_EXCL | getattr(os, "O_BINARY", 0)
    for name in candidate_names(sanitized):
        destination = uploads_dir / name
        try:
            fd = os.open(destination, flags, 0o644)
        except FileExistsError:
            continue
        except OSError as error:
            logger.error("upload_create_failed path=%s error=%s", destination, error)
            raise UploadIOFailure()
        return destination, os.fdopen(fd, "wb")

    logger.error("upload_name_exhausted name=%s", sanitized)
    raise UploadIOFailure()


def _chunk_iter(read: Callable[[int], bytes], size: int) -> Iterator[Optional[bytes]]:
    while True:
        try:
            data = read(size)
        except ClientDisconnected:
            raise InvalidUploadRequest("Invalid multipart payload")
        if not data:
            break
        yield data
    yield None


def _remove_quietly(paths: List[Path]) -> None:
    for path in paths:
        try:
            path.unlink()
        except FileNotFoundError:
            pass
        except OSError as error:
            logger.warning("upload_rollback_failed path=%s error=%s", path, error)


def receive_multipart_upload(stream: BinaryIO, boundary: Optional[str], uploads_dir: Path) -> List[str]:
    """Stream every file part of a multipart body into *uploads_dir*.

    Returns the saved names in the order the parts arrived. Files created by
    this call are removed again when the payload turns out to be invalid; a
    disk write failure leaves the partial file in place.
    """

    if not boundary:
        raise InvalidUploadRequest("Invalid multipart payload")

    created: List[Path] = []
    saved: List[str] = []
    current: Optional[BinaryIO] = None
    finished = False
    try:
        decoder = MultipartDecoder(boundary.encode("latin-1"))
        for chunk in _chunk_iter(stream.read, READ_CHUNK_SIZE):
            decoder.receive_data(chunk)
            event = decoder.next_event()
            while not isinstance(event, (Epilogue, NeedData)):
                if isinstance(event, File):
                    sanitized = sanitize_upload_filename(event.filename)
                    destination, current = open_upload_destination(uploads_dir, sanitized)
                    created.append(destination)
                elif isinstance(event, Field):
                    current = None
                elif isinstance(event, Data) and current is not None:
                    try:
                        current.write(event.data)
                        if not event.more_data:
                            current.close()
                            saved.append(created[-1].name)
                            logger.info("upload_saved name=%s", created[-1].name)
                            current = None
                    except OSError as error:
                        logger.error("upload_write_failed path=%s error=%s", created[-1], error)
                        raise UploadIOFailure()
                event = decoder.next_event()
            if isinstance(event, Epilogue):
                finished = True
                break
    except ValueError:
        _close_quietly(current)
        _remove_quietly(created)
        raise InvalidUploadRequest("Invalid multipart payload")
    except (InvalidUploadRequest, HTTPException):
        _close_quietly(current)
        _remove_quietly(created)
        raise
    except UploadIOFailure:
        _close_quietly(current)
        raise

    if not finished or current is not None:
        _close_quietly(current)
        _remove_quietly(created)
        raise InvalidUploadRequest("Invalid multipart payload")

    if not saved:
        raise InvalidUploadRequest("No files provided")
    return saved


def _close_quietly(handle: Optional[BinaryIO]) -> None:
    if handle is None:
        return
    try:
        handle.close()
    except OSError as error:
        logger.warning("upload_close_failed error=%s", error)


class UploadConcurrencyLimiter:
    """Track active uploads and enforce a configurable concurrency cap."""

    def __init__(self, limit: int) -> None:
        self._limit = max(1, int(limit))
        self._active = 0
        self._lock = threading.Lock()

    def acquire(self) -> bool:
        with self._lock:
            if self._active >= self._limit:
                return False
            self._active += 1
            return True

    def release(self) -> None:
        with self._lock:
            if self._active > 0:
                self._active -= 1

    def available_slots(self) -> int:
        with self._lock:
            return max(self._limit - self._active, 0)

    @contextmanager
    def slot(self) -> Iterator[None]:
        if not self.acquire():
            raise UploadCapacityExceeded()
        try:
            yield
        finally:
            self.release()
