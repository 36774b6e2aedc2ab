"""Dependency-light pixel classifier: statistics, interior gate, ordered rules, environment."""

from typing import Optional

from autoalt.config import DEFAULT_INTERIOR_GATE
from autoalt.models import ClassificationResult
from autoalt.pixel_stats import ImageStats, compute_stats, decode_rgb
from autoalt.rules import classify_stats, interior_votes
from autoalt.vocabulary import DEFAULT_DESCRIPTOR, is_interior_descriptor

SAFE_DEFAULT = ClassificationResult(DEFAULT_DESCRIPTOR)


def infer_environment(stats: ImageStats) -> str:
    """Coarse scene cue for exterior shots; "" when nothing is clear-cut."""
    if stats.mean_brightness < 60 and stats.dark_ratio > 0.55 and stats.top_blue_ratio < 0.10:
        return "at night"
    if stats.top_blue_ratio > 0.35 and stats.bottom_blue_ratio < stats.top_blue_ratio / 2:
        return "under a blue sky"
    if stats.bottom_brightness > 200 and stats.bottom_saturation < 0.12:
        return "in the snow"
    return ""


def classify_pixels(
    data: bytes, filename: Optional[str] = None, interior_gate: int = DEFAULT_INTERIOR_GATE
) -> ClassificationResult:
    """
    Classify one image from its raw bytes.

    Never raises: undecodable or empty images get the safe default descriptor.
    """
    try:
        stats = compute_stats(decode_rgb(data))
        descriptor, _rule = classify_stats(stats, filename, interior_gate)
        environment = "" if is_interior_descriptor(descriptor) else infer_environment(stats)
        return ClassificationResult(descriptor, environment)
    except Exception:
        # Decoder and numeric failures alike: least specific label, batch continues.
        return SAFE_DEFAULT


def explain(
    data: bytes, filename: Optional[str] = None, interior_gate: int = DEFAULT_INTERIOR_GATE
) -> dict:
    """Statistics, interior votes and the rule that fired, for threshold tuning."""
    stats = compute_stats(decode_rgb(data))
    descriptor, rule = classify_stats(stats, filename, interior_gate)
    centroid = stats.centroid()
    return {
        "size": [stats.width, stats.height],
        "dark_ratio": round(stats.dark_ratio, 4),
        "bright_ratio": round(stats.bright_ratio, 4),
        "gray_ratio": round(stats.gray_ratio, 4),
        "avg_saturation": round(stats.avg_saturation, 4),
        "edge_density": round(stats.edge_density, 3),
        "thirds": [round(stats.top_third), round(stats.mid_third), round(stats.bot_third)],
        "bright_centroid": [round(centroid.cx, 1), round(centroid.cy, 1), round(centroid.spread, 1)],
        "interior_votes": interior_votes(stats),
        "interior": interior_votes(stats) >= interior_gate,
        "rule": rule,
        "descriptor": descriptor,
        "environment": "" if is_interior_descriptor(descriptor) else infer_environment(stats),
    }
