"""Data classes shared across the dedup, classification and composition stages."""

import io
import posixpath
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from PIL import Image, UnidentifiedImageError

from autoalt.vocabulary import DEFAULT_DESCRIPTOR, DESCRIPTORS, ENVIRONMENTS


@dataclass(frozen=True)
class ImageAsset:
    """One image entry pulled out of the uploaded archive."""

    entry_path: str
    data: bytes = field(repr=False)
    width: int = 0
    height: int = 0

    @property
    def name(self) -> str:
        return posixpath.basename(self.entry_path)

    @property
    def byte_size(self) -> int:
        return len(self.data)

    @property
    def area(self) -> int:
        return self.width * self.height


def load_asset(entry_path: str, data: bytes) -> ImageAsset:
    """Build an ImageAsset, reading only the image header for its dimensions."""
    width, height = 0, 0
    try:
        with Image.open(io.BytesIO(data)) as img:
            width, height = img.size
    except (UnidentifiedImageError, OSError, ValueError, Image.DecompressionBombError):
        pass
    return ImageAsset(entry_path=entry_path, data=data, width=width, height=height)


@dataclass
class DuplicateGroup:
    representative: ImageAsset
    members: list[ImageAsset] = field(default_factory=list)
    fingerprint: Optional[object] = None

    @property
    def member_paths(self) -> list[str]:
        return [asset.entry_path for asset in self.members]


@dataclass(frozen=True)
class ClassificationResult:
    descriptor: str = DEFAULT_DESCRIPTOR
    environment: str = ""

    def __post_init__(self):
        if self.descriptor not in DESCRIPTORS:
            raise ValueError(f"Descriptor outside the canonical vocabulary: {self.descriptor!r}")
        if self.environment and self.environment not in ENVIRONMENTS:
            raise ValueError(f"Environment outside the canonical vocabulary: {self.environment!r}")


@dataclass(frozen=True)
class VehicleSubject:
    year: str
    model: str
    make: str = ""
    trim: str = ""
    color: str = ""

    def as_dict(self) -> dict[str, str]:
        return {
            "year": str(self.year or ""),
            "make": self.make or "",
            "model": self.model or "",
            "trim": self.trim or "",
            "color": self.color or "",
        }


class ProcessingState(str, Enum):
    """Per-record lifecycle. ``hashing`` is entered once the duplicate group is settled."""

    QUEUED = "queued"
    HASHING = "hashing"
    CLASSIFYING = "classifying"
    DONE = "done"
    ERROR = "error"


@dataclass
class ImageRecord:
    image_id: str
    filename: str
    members: list[str] = field(default_factory=list)
    state: ProcessingState = ProcessingState.QUEUED
    descriptor: str = ""
    environment: str = ""
    alt_text: str = ""
    error: str = ""


class ClassifierError(RuntimeError):
    """A backend could not produce a label for one image."""
