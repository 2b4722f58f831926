import logging
import mimetypes
from pathlib import Path
from typing import Iterator, Optional

from flask import Response
from werkzeug.datastructures import Range

from .errors import FileStreamError
from .paths import url_encode

CHUNK_SIZE_BYTES = 64 * 1024

logger = logging.getLogger("accio.lifecycle")


def _ascii_filename(filename: str) -> str:
    return "".join(
        "_" if char in {'"', "\\"} or not 32 <= ord(char) < 127 else char
        for char in filename
    )


def build_content_disposition(filename: str) -> str:
    return (
        f'attachment; filename="{_ascii_filename(filename)}"; '
        f"filename*=UTF-8''{url_encode(filename)}"
    )


def iter_file_chunks(
    path: Path, start: int, length: int, chunk_size: int = CHUNK_SIZE_BYTES
) -> Iterator[bytes]:
    """Yield *length* bytes of *path* beginning at *start*.

    A read error or a file that shrank underneath us raises
    ``FileStreamError`` so the transport drops the connection instead of
    ending a short body cleanly.
    """

    remaining = length
    try:
        with open(path, "rb") as handle:
            handle.seek(start)
            while remaining > 0:
                chunk = handle.read(min(chunk_size, remaining))
                if not chunk:
                    raise FileStreamError(f"unexpected end of file at offset {start + length - remaining}")
                remaining -= len(chunk)
                yield chunk
    except FileStreamError:
        logger.error("file_stream_truncated path=%s", path)
        raise
    except OSError as error:
        logger.error("file_stream_failed path=%s error=%s", path, error)
        raise FileStreamError(str(error)) from error


def build_file_response(path: Path, byte_range: Optional[Range] = None) -> Response:
    """Build a streaming download response for the regular file at *path*.

    Raises ``OSError`` when the file cannot be inspected.
    """

    size = path.stat().st_size
    mimetype = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
    start, length, status = 0, size, 200

    # Multi-range and non-byte requests are answered with the whole file.
    if byte_range is not None and byte_range.units == "bytes" and len(byte_range.ranges) == 1:
        bounds = byte_range.range_for_length(size)
        if bounds is None:
            response = Response(status=416, mimetype="text/plain")
            response.headers["Content-Range"] = f"bytes */{size}"
            return response
        start, stop = bounds
        length = stop - start
        status = 206

    response = Response(
        iter_file_chunks(path, start, length),
        status=status,
        mimetype=mimetype,
        direct_passthrough=True,
    )
    response.headers["Content-Length"] = str(length)
    response.headers["Accept-Ranges"] = "bytes"
    response.headers["Content-Disposition"] = build_content_disposition(path.name)
    if status == 206:
        response.headers["Content-Range"] = f"bytes {start}-{start + length - 1}/{size}"
    return response
