"""
Ordered detector rules over ImageStats.

Each rule is a pure function ``(stats) -> Optional[str]`` returning a canonical
descriptor or None. evaluate() walks a rule list in priority order and returns
the first hit, so the decision table can be read, reordered and unit-tested one
rule at a time.
"""

from typing import Callable, NamedTuple, Optional, Sequence

from autoalt.vocabulary import (
    EXTERIOR_DESCRIPTORS,
    GENERIC_INTERIOR,
    INTERIOR_DESCRIPTORS,
    descriptor_from_text,
)

INTERIOR_DARK_RATIO = 0.30
INTERIOR_MAX_SATURATION = 0.22
INTERIOR_EDGE_DENSITY = 22
INTERIOR_GRAY_RATIO = 0.28


class Rule(NamedTuple):
    name: str
    detect: Callable[[object], Optional[str]]


def evaluate(rules: Sequence[Rule], stats, default: str) -> tuple[str, str]:
    """Return (descriptor, rule name) for the first matching rule, else the default."""
    for rule in rules:
        descriptor = rule.detect(stats)
        if descriptor:
            return descriptor, rule.name
    return default, "default"


def interior_votes(stats) -> int:
    """Count the four interior cues: dark, desaturated, busy, grayish."""
    return (
        int(stats.dark_ratio > INTERIOR_DARK_RATIO)
        + int(stats.avg_saturation < INTERIOR_MAX_SATURATION)
        + int(stats.edge_density > INTERIOR_EDGE_DENSITY)
        + int(stats.gray_ratio > INTERIOR_GRAY_RATIO)
    )


def _third_area(stats) -> float:
    return stats.width * (stats.height / 3) * 255


# ---------------------------------------------------------------------------
# Interior rules
# ---------------------------------------------------------------------------


def gear_shifter(stats) -> Optional[str]:
    c = stats.centroid()
    w, h = stats.width, stats.height
    low_center = w * 0.33 < c.cx < w * 0.67 and h * 0.45 < c.cy < h * 0.75
    if stats.bright_count > stats.total * 0.008 and low_center and c.spread < stats.min_side * 0.16:
        return "detail of gear shifter"
    return None


def paddle_shifter(stats) -> Optional[str]:
    c = stats.centroid()
    w, h = stats.width, stats.height
    sideish = c.cx < w * 0.25 or c.cx > w * 0.75
    if (
        stats.bright_count > stats.total * 0.006
        and sideish
        and c.vy > c.vx * 1.2
        and h * 0.25 < c.cy < h * 0.7
    ):
        return "detail of paddle shifter"
    return None


def steering_wheel(stats) -> Optional[str]:
    ring = stats.ring_score(
        stats.width / 2, stats.height / 2, stats.min_side * 0.20, stats.min_side * 0.38
    )
    if ring > 0.09:
        return "detail of steering wheel"
    return None


def infotainment_screen(stats) -> Optional[str]:
    if stats.mid_third / _third_area(stats) > 0.55 and stats.avg_saturation < 0.25:
        return "detail of infotainment screen"
    return None


def instrument_cluster(stats) -> Optional[str]:
    upper = stats.top_third / _third_area(stats)
    if not (
        upper > 0.5
        and stats.bright_count > stats.total * 0.006
        and stats.centroid().cy < stats.height * 0.45
    ):
        return None
    left_peak, right_peak = stats.column_peaks
    if left_peak > 0 and right_peak > 0 and left_peak != right_peak:
        return "detail of instrument cluster"
    return None


def climate_controls(stats) -> Optional[str]:
    if stats.bot_third > stats.mid_third * 1.05 and stats.edge_density > 26:
        return "detail of climate controls"
    return None


def center_console(stats) -> Optional[str]:
    if stats.edge_density > 24 and stats.centroid().cy > stats.height * 0.45:
        return "detail of center console"
    return None


def seat_stitching(stats) -> Optional[str]:
    if stats.edge_density > 23 and stats.avg_saturation > 0.25:
        return "detail of seat stitching"
    return None


def dashboard(stats) -> Optional[str]:
    if stats.top_third < stats.mid_third > stats.bot_third:
        return "detail of dashboard"
    return None


INTERIOR_RULES = [
    Rule("gear_shifter", gear_shifter),
    Rule("paddle_shifter", paddle_shifter),
    Rule("steering_wheel", steering_wheel),
    Rule("infotainment_screen", infotainment_screen),
    Rule("instrument_cluster", instrument_cluster),
    Rule("climate_controls", climate_controls),
    Rule("center_console", center_console),
    Rule("seat_stitching", seat_stitching),
    Rule("dashboard", dashboard),
]


# ---------------------------------------------------------------------------
# Exterior rules
# ---------------------------------------------------------------------------


def _top_view_likely(stats) -> bool:
    return stats.top_third > stats.bot_third * 1.18


def _side_diff(stats) -> float:
    return abs(stats.left_sum - stats.right_sum) / (stats.total * 255)


def _front_ish(stats) -> bool:
    wide = stats.width >= stats.height * 1.15
    return stats.twin_lights or (stats.bright_ratio > 0.08 and wide)


def _grille_like(stats) -> bool:
    return (
        stats.center_columns / stats.total > 30
        and stats.edge_density > 26
        and not _top_view_likely(stats)
    )


def _compact_badge(stats) -> bool:
    c = stats.centroid()
    w, h = stats.width, stats.height
    return (
        stats.bright_count > stats.total * 0.006
        and c.spread < stats.min_side * 0.12
        and c.cy > h * 0.35
        and w * 0.35 < c.cx < w * 0.65
    )


def wheel_or_caliper(stats) -> Optional[str]:
    w, h, m = stats.width, stats.height, stats.min_side
    for x, y in ((w * 0.2, h * 0.75), (w * 0.8, h * 0.75), (w * 0.2, h * 0.25), (w * 0.8, h * 0.25)):
        if stats.ring_score(x, y, m * 0.08, m * 0.18) > 0.13:
            if stats.bright_near(x, y, m * 0.22) > stats.total * 0.004 and stats.avg_saturation > 0.28:
                return "detail of brake caliper"
            return "detail of wheel"
    return None


def grille_with_emblem(stats) -> Optional[str]:
    if _grille_like(stats) and _compact_badge(stats):
        return "detail of grille with emblem"
    return None


def grille(stats) -> Optional[str]:
    if not _grille_like(stats):
        return None
    # A grille framed by a headlight pair is a whole front, not a close-up.
    return "front view" if _front_ish(stats) else "detail of grille"


def badge(stats) -> Optional[str]:
    if _compact_badge(stats):
        return "detail of badge"
    return None


def door_handle(stats) -> Optional[str]:
    w, h = stats.width, stats.height
    edge_bright = stats.bright_in(None, w * 0.18, h * 0.35, h * 0.6) + stats.bright_in(
        w * 0.82, None, h * 0.35, h * 0.6
    )
    if edge_bright > 0 and _side_diff(stats) > 0.03:
        return "detail of door handle"
    return None


def side_mirror(stats) -> Optional[str]:
    if stats.bright_count <= stats.total * 0.004:
        return None
    w, h = stats.width, stats.height
    outer = stats.bright_in(None, w * 0.12, h * 0.3, h * 0.7) + stats.bright_in(
        w * 0.88, None, h * 0.3, h * 0.7
    )
    if outer > 0:
        return "detail of side mirror"
    return None


def spoiler(stats) -> Optional[str]:
    if (
        stats.top_band > stats.mid_third * 0.25
        and stats.edge_density > 22
        and not _top_view_likely(stats)
    ):
        return "detail of spoiler"
    return None


def sunroof(stats) -> Optional[str]:
    if (
        stats.top_third < stats.mid_third * 0.8
        and stats.top_third < stats.bot_third * 0.8
        and stats.gray_ratio > 0.25
    ):
        return "detail of sunroof"
    return None


def fog_light(stats) -> Optional[str]:
    w, h = stats.width, stats.height
    low_corners = stats.bright_in(None, w * 0.2, h * 0.8, None) + stats.bright_in(
        w * 0.8, None, h * 0.8, None
    )
    if low_corners > stats.total * 0.003 and _front_ish(stats):
        return "detail of fog light"
    return None


def head_or_taillight(stats) -> Optional[str]:
    w, h = stats.width, stats.height
    lower_sides = stats.bright_in(None, w * 0.25, h * 0.55, None) + stats.bright_in(
        w * 0.75, None, h * 0.55, None
    )
    if lower_sides > stats.total * 0.004:
        return "detail of headlight" if _front_ish(stats) else "detail of taillight"
    return None


def rear_diffuser(stats) -> Optional[str]:
    if (
        stats.bottom_band_edges() > 18
        and stats.bot_third < stats.mid_third * 0.95
        and not _top_view_likely(stats)
    ):
        return "detail of rear diffuser"
    return None


def exhaust_tip(stats) -> Optional[str]:
    w, h, m = stats.width, stats.height, stats.min_side
    for x, y in ((w * 0.12, h * 0.88), (w * 0.88, h * 0.88)):
        ring = stats.ring_score(x, y, m * 0.04, m * 0.09)
        if ring > 0.11 and stats.bright_near(x, y, m * 0.12) > stats.total * 0.002:
            return "detail of exhaust tip"
    return None


def top_view(stats) -> Optional[str]:
    return "top view" if _top_view_likely(stats) else None


def profile_view(stats) -> Optional[str]:
    return "profile view" if _side_diff(stats) > 0.05 else None


def front_view(stats) -> Optional[str]:
    return "front view" if _front_ish(stats) else None


EXTERIOR_PART_RULES = [
    Rule("wheel_or_caliper", wheel_or_caliper),
    Rule("grille_with_emblem", grille_with_emblem),
    Rule("grille", grille),
    Rule("badge", badge),
    Rule("door_handle", door_handle),
    Rule("side_mirror", side_mirror),
    Rule("spoiler", spoiler),
    Rule("sunroof", sunroof),
    Rule("fog_light", fog_light),
    Rule("head_or_taillight", head_or_taillight),
    Rule("rear_diffuser", rear_diffuser),
    Rule("exhaust_tip", exhaust_tip),
]

EXTERIOR_VIEW_RULES = [
    Rule("top_view", top_view),
    Rule("profile_view", profile_view),
    Rule("front_view", front_view),
]

EXTERIOR_DEFAULT = "rear view"


# ---------------------------------------------------------------------------
# Filename hint
# ---------------------------------------------------------------------------


def filename_hint_rule(filename: Optional[str], allowed: Sequence[str]) -> Rule:
    """Low-priority rule that reads a descriptor out of the file name."""
    hint = descriptor_from_text(filename, allowed=allowed) if filename else None

    def detect(_stats) -> Optional[str]:
        return hint

    return Rule("filename_hint", detect)


def interior_rules(filename: Optional[str] = None) -> list[Rule]:
    return INTERIOR_RULES + [filename_hint_rule(filename, INTERIOR_DESCRIPTORS)]


def exterior_rules(filename: Optional[str] = None) -> list[Rule]:
    return EXTERIOR_PART_RULES + [filename_hint_rule(filename, EXTERIOR_DESCRIPTORS)] + EXTERIOR_VIEW_RULES


def classify_stats(stats, filename: Optional[str] = None, interior_gate: int = 2) -> tuple[str, str]:
    """Run the interior gate, then the matching rule list. Returns (descriptor, rule name)."""
    if interior_votes(stats) >= interior_gate:
        return evaluate(interior_rules(filename), stats, GENERIC_INTERIOR)
    return evaluate(exterior_rules(filename), stats, EXTERIOR_DEFAULT)

