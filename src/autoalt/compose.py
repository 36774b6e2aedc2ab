"""Alt text composition: vehicle subject + descriptor + environment, within 125 chars."""

import re

from autoalt.models import ClassificationResult, VehicleSubject

MAX_ALT_LENGTH = 125
FAILED_ALT_TEXT = "Analysis failed"

MAKE_CASING = {
    "acura": "Acura",
    "honda": "Honda",
    "bmw": "BMW",
    "gmc": "GMC",
    "mini": "MINI",
    "vw": "VW",
    "mclaren": "McLaren",
    "mercedes-benz": "Mercedes-Benz",
    "mercedes-amg": "Mercedes-AMG",
    "rolls-royce": "Rolls-Royce",
    "alfa romeo": "Alfa Romeo",
    "land rover": "Land Rover",
}

UPPERCASE_MODELS = {
    # Acura
    "MDX", "RDX", "TLX", "ILX", "NSX", "ZDX", "ADX", "RLX", "TSX", "RSX", "CDX", "CL", "EL",
    # Honda
    "CR-V", "HR-V", "ZR-V", "CR-Z",
}

_WHITESPACE = re.compile(r"\s+")


def _clean(value: object) -> str:
    return _WHITESPACE.sub(" ", str(value or "").replace(",", " ")).strip()


def _capitalize_words(text: str) -> str:
    # Only all-lowercase words are touched so "M340i" or "xDrive" survive as typed.
    return " ".join(word[:1].upper() + word[1:] if word.islower() else word for word in text.split(" "))


def normalize_make(make: str) -> str:
    cleaned = _clean(make)
    if not cleaned:
        return ""
    return MAKE_CASING.get(cleaned.lower()) or _capitalize_words(cleaned)


def normalize_model(model: str) -> str:
    cleaned = _clean(model)
    if not cleaned:
        return ""
    return " ".join(
        word.upper() if word.upper() in UPPERCASE_MODELS else _capitalize_words(word) for word in cleaned.split(" ")
    )


def subject_phrase(
    subject: VehicleSubject, include_trim: bool = True, include_color: bool = True
) -> str:
    """Subject phrase such as ``2025 Acura MDX Type S in Apex Blue Pearl``."""
    parts = [
        _clean(subject.year),
        normalize_make(subject.make),
        normalize_model(subject.model),
        _capitalize_words(_clean(subject.trim)) if include_trim else "",
        f"in {_clean(subject.color)}" if include_color and _clean(subject.color) else "",
    ]
    return " ".join(part for part in parts if part)


def _truncate_words(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    cut = text[: limit + 1].rfind(" ")
    if cut <= 0:
        return text[:limit].rstrip()
    return text[:cut].rstrip()


def compose_alt_text(
    subject: VehicleSubject, result: ClassificationResult, max_length: int = MAX_ALT_LENGTH
) -> str:
    """
    Build the alt text for one image.

    Over budget, the environment goes first, then the color, then the trim; a
    still-too-long string is cut at the last word boundary. The result never
    contains a comma and is at most *max_length* characters.
    """
    attempts = (
        (True, True, True),
        (True, True, False),
        (True, False, False),
        (False, False, False),
    )
    text = ""
    for include_trim, include_color, include_env in attempts:
        pieces = [
            subject_phrase(subject, include_trim=include_trim, include_color=include_color),
            result.descriptor,
            result.environment if include_env else "",
        ]
        text = _clean(" ".join(piece for piece in pieces if piece))
        if len(text) <= max_length:
            return text
    return _truncate_words(text, max_length)
