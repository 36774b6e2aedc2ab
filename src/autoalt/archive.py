"""Archive extraction: pull image entries out of an uploaded ZIP."""

import io
import posixpath
import zipfile
import zlib
from pathlib import Path
from typing import BinaryIO, Iterator, Union

from autoalt.models import ImageAsset, load_asset

SUPPORTED_EXTENSIONS = {".jpg", ".jpeg", ".png", ".gif", ".webp", ".avif"}

ArchiveSource = Union[str, Path, bytes, bytearray, BinaryIO]


class CorruptArchiveError(RuntimeError):
    """The archive could not be opened or one of its entries is unreadable."""


def is_supported_entry(entry_path: str) -> bool:
    """True for image entries worth extracting (skips folders and macOS metadata)."""
    if entry_path.endswith("/"):
        return False
    parts = entry_path.split("/")
    if "__MACOSX" in parts or parts[-1].startswith("._"):
        return False
    return posixpath.splitext(parts[-1])[1].lower() in SUPPORTED_EXTENSIONS


def _open_zip(source: ArchiveSource) -> zipfile.ZipFile:
    if isinstance(source, (bytes, bytearray)):
        source = io.BytesIO(bytes(source))
    try:
        return zipfile.ZipFile(source)
    except (zipfile.BadZipFile, zipfile.LargeZipFile, EOFError, ValueError) as e:
        raise CorruptArchiveError(f"Cannot open archive: {e}") from e


def iter_archive_images(source: ArchiveSource) -> Iterator[tuple[str, bytes]]:
    """
    Yield (entry_path, raw_bytes) for every supported image entry, at any depth.

    Entries are read lazily in archive order. Unsupported extensions are skipped;
    an unreadable archive or entry raises CorruptArchiveError.
    """
    with _open_zip(source) as archive:
        for info in archive.infolist():
            if info.is_dir() or not is_supported_entry(info.filename):
                continue
            try:
                data = archive.read(info)
            except (zipfile.BadZipFile, zlib.error, EOFError, NotImplementedError, RuntimeError) as e:
                # RuntimeError: encrypted entry; NotImplementedError: unknown compression
                raise CorruptArchiveError(f"Cannot read {info.filename}: {e}") from e
            yield info.filename, data


def extract_assets(source: ArchiveSource) -> list[ImageAsset]:
    """Materialize every supported entry as an ImageAsset, in archive order."""
    return [load_asset(entry_path, data) for entry_path, data in iter_archive_images(source)]
