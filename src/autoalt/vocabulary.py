"""Closed descriptor and environment vocabularies plus keyword mapping onto them."""

import re
from typing import Iterable, Optional

DEFAULT_DESCRIPTOR = "front view"
GENERIC_INTERIOR = "interior detail"

EXTERIOR_VIEWS = (
    "front view",
    "rear view",
    "profile view",
    "top view",
    "three-quarter front view",
    "three-quarter rear view",
)

EXTERIOR_DETAILS = (
    "detail of wheel",
    "detail of brake caliper",
    "detail of headlight",
    "detail of taillight",
    "detail of fog light",
    "detail of grille",
    "detail of grille with emblem",
    "detail of badge",
    "detail of side mirror",
    "detail of spoiler",
    "detail of sunroof",
    "detail of door handle",
    "detail of exhaust tip",
    "detail of rear diffuser",
)

INTERIOR_DESCRIPTORS = (
    "detail of gear shifter",
    "detail of paddle shifter",
    "detail of steering wheel",
    "detail of infotainment screen",
    "detail of instrument cluster",
    "detail of climate controls",
    "detail of center console",
    "detail of seat stitching",
    "detail of dashboard",
    GENERIC_INTERIOR,
)

EXTERIOR_DESCRIPTORS = EXTERIOR_VIEWS + EXTERIOR_DETAILS
DESCRIPTORS = frozenset(EXTERIOR_DESCRIPTORS + INTERIOR_DESCRIPTORS)

ENVIRONMENTS = frozenset(
    {
        "at night",
        "under a blue sky",
        "in the snow",
        "in the rain",
        "in a tunnel",
        "in the desert",
        "on a mountain road",
        "in a showroom",
        "in a parking lot",
        "on the highway",
        "on a city street",
    }
)

# Ordered: the first descriptor whose keyword appears wins, so specific parts
# precede the views that share words with them ("rear diffuser" before "rear").
DESCRIPTOR_KEYWORDS: list[tuple[str, tuple[str, ...]]] = [
    ("detail of paddle shifter", ("paddle shifter", "paddle shifters", "paddles", "paddle")),
    (
        "detail of gear shifter",
        ("gear shifter", "gear selector", "gear lever", "gear stick", "gearshift", "shift knob", "shifter", "gear"),
    ),
    ("detail of steering wheel", ("steering wheel", "steering")),
    ("detail of infotainment screen", ("infotainment", "touchscreen", "touch screen", "navigation screen", "screen")),
    ("detail of instrument cluster", ("instrument cluster", "gauge cluster", "speedometer", "gauges", "gauge")),
    ("detail of climate controls", ("climate controls", "climate control", "climate", "hvac", "air vents")),
    ("detail of center console", ("center console", "centre console", "console", "cup holder", "cupholder")),
    ("detail of seat stitching", ("stitching", "stitched", "upholstery", "leather", "seats", "seat")),
    ("detail of dashboard", ("dashboard", "dash", "cockpit")),
    (GENERIC_INTERIOR, ("interior", "cabin")),
    ("detail of brake caliper", ("brake caliper", "calipers", "caliper", "brakes", "brake")),
    ("detail of fog light", ("fog lights", "fog light", "foglight", "fog lamp", "fog")),
    ("detail of headlight", ("headlights", "headlight", "headlamps", "headlamp")),
    ("detail of taillight", ("taillights", "taillight", "tail lights", "tail light", "tail lamp")),
    ("detail of grille with emblem", ("grille with emblem", "grille emblem")),
    ("detail of grille", ("grille", "grill")),
    ("detail of badge", ("badge", "emblem", "logo")),
    ("detail of side mirror", ("side mirror", "mirrors", "mirror")),
    ("detail of spoiler", ("spoiler", "rear wing")),
    ("detail of sunroof", ("sunroof", "moonroof", "panoramic roof")),
    ("detail of door handle", ("door handle", "handle")),
    ("detail of exhaust tip", ("exhaust tips", "exhaust tip", "exhaust", "tailpipe", "tail pipe")),
    ("detail of rear diffuser", ("rear diffuser", "diffuser")),
    ("detail of wheel", ("wheels", "wheel", "rims", "rim", "tires", "tire", "tyre")),
    (
        "three-quarter front view",
        ("three quarter front", "front three quarter", "front quarter", "3/4 front", "front 3/4", "34 front", "front 34"),
    ),
    (
        "three-quarter rear view",
        ("three quarter rear", "rear three quarter", "rear quarter", "3/4 rear", "rear 3/4", "34 rear", "rear 34"),
    ),
    ("top view", ("top view", "top down view", "overhead", "aerial", "birds eye", "from above")),
    ("rear view", ("rear", "back", "behind")),
    ("profile view", ("profile", "side view", "side")),
    ("front view", ("front",)),
]

ENVIRONMENT_KEYWORDS: list[tuple[str, tuple[str, ...]]] = [
    ("at night", ("night", "nighttime", "evening", "dusk")),
    ("in a tunnel", ("tunnel",)),
    ("in the snow", ("snow", "snowy", "winter")),
    ("in the rain", ("rain", "rainy")),
    ("in the desert", ("desert", "dunes", "sand")),
    ("on a mountain road", ("mountain", "mountains")),
    ("in a showroom", ("showroom", "garage", "indoors", "studio", "dealership")),
    ("in a parking lot", ("parking lot", "parking")),
    ("on the highway", ("highway", "freeway", "road")),
    ("on a city street", ("city", "street", "downtown")),
    ("under a blue sky", ("blue sky", "sky")),
]

_SEPARATORS = re.compile(r"[_\-.,;:/\\'\"()\[\]]+")
_PATTERN_CACHE: dict[str, re.Pattern] = {}


def _normalize_text(text: str) -> str:
    lowered = _SEPARATORS.sub(" ", (text or "").lower())
    return " ".join(lowered.split())


def _keyword_pattern(keyword: str) -> re.Pattern:
    pattern = _PATTERN_CACHE.get(keyword)
    if pattern is None:
        pattern = re.compile(rf"(?<![a-z0-9]){re.escape(keyword)}(?![a-z0-9])")
        _PATTERN_CACHE[keyword] = pattern
    return pattern


def _first_match(
    text: str,
    table: list[tuple[str, tuple[str, ...]]],
    allowed: Optional[Iterable[str]] = None,
) -> Optional[str]:
    normalized = _normalize_text(text)
    if not normalized:
        return None
    allowed_set = set(allowed) if allowed is not None else None
    for label, keywords in table:
        if allowed_set is not None and label not in allowed_set:
            continue
        if any(_keyword_pattern(keyword).search(normalized) for keyword in keywords):
            return label
    return None


def descriptor_from_text(text: str, allowed: Optional[Iterable[str]] = None) -> Optional[str]:
    """Map free text (caption, filename, model answer) to a canonical descriptor."""
    return _first_match(text, DESCRIPTOR_KEYWORDS, allowed)


def environment_from_text(text: str) -> str:
    """Map free text to an environment phrase, or "" when nothing is unambiguous."""
    return _first_match(text, ENVIRONMENT_KEYWORDS) or ""


def is_interior_text(text: str) -> bool:
    """True when the text mentions any interior cue."""
    return _first_match(text, DESCRIPTOR_KEYWORDS, INTERIOR_DESCRIPTORS) is not None


def is_interior_descriptor(descriptor: str) -> bool:
    return descriptor in INTERIOR_DESCRIPTORS
