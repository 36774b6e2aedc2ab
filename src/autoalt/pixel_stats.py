"""
Pixel statistics for the heuristic classifier.

Everything is computed once per image on a working copy whose longest side is
256 px, so the thresholds in rules.py do not depend on the upload resolution.
"""

import io
import math
from dataclasses import dataclass, field
from typing import NamedTuple, Optional

import cv2
import numpy as np
from PIL import Image, ImageOps

WORKING_SIZE = 256

DARK_LEVEL = 55  # mean channel below this is "dark"
BRIGHT_LEVEL = 200  # mean channel above this is "bright"
GRAY_TOLERANCE = 12  # |r-g| and |g-b| below this is "grayish"
RING_CONTRAST = 25  # luminance jump that counts as a ring hit

# Rec. 709 luma
LUMA_WEIGHTS = np.array([0.2126, 0.7152, 0.0722], dtype=np.float32)


class Centroid(NamedTuple):
    cx: float
    cy: float
    spread: float
    vx: float
    vy: float


def decode_rgb(data: bytes, max_side: int = WORKING_SIZE) -> np.ndarray:
    """Decode image bytes to an RGB uint8 array scaled to a *max_side* longest edge."""
    with Image.open(io.BytesIO(data)) as img:
        img = ImageOps.exif_transpose(img)
        src_w, src_h = img.size
        if src_w <= 0 or src_h <= 0:
            raise ValueError("Image has no pixels")
        rgb = img.convert("RGB")

    scale = min(max_side / src_w, max_side / src_h)
    w = max(1, int(math.floor(src_w * scale)))
    h = max(1, int(math.floor(src_h * scale)))
    if (w, h) != (src_w, src_h):
        rgb = rgb.resize((w, h), Image.Resampling.BILINEAR)
    return np.asarray(rgb, dtype=np.uint8)


@dataclass
class ImageStats:
    """Aggregates over one working-size image plus the arrays the rules probe."""

    width: int
    height: int
    dark_ratio: float
    bright_ratio: float
    gray_ratio: float
    avg_saturation: float
    edge_density: float
    top_third: float
    mid_third: float
    bot_third: float
    top_band: float
    left_sum: float
    right_sum: float
    center_columns: float
    column_peaks: tuple[float, float]
    twin_lights: bool
    mean_brightness: float
    top_blue_ratio: float
    bottom_blue_ratio: float
    bottom_brightness: float
    bottom_saturation: float
    lum: np.ndarray = field(repr=False)
    bright_x: np.ndarray = field(repr=False)
    bright_y: np.ndarray = field(repr=False)
    _centroid: Optional[Centroid] = field(default=None, repr=False)

    @property
    def total(self) -> int:
        return self.width * self.height

    @property
    def bright_count(self) -> int:
        return int(self.bright_x.size)

    @property
    def min_side(self) -> int:
        return min(self.width, self.height)

    def centroid(self) -> Centroid:
        """Centroid and spread of the bright pixels; image center when there are none."""
        if self._centroid is None:
            if self.bright_x.size == 0:
                self._centroid = Centroid(self.width / 2, self.height / 2, 9999.0, 0.0, 0.0)
            else:
                xs = self.bright_x.astype(np.float64)
                ys = self.bright_y.astype(np.float64)
                cx, cy = float(xs.mean()), float(ys.mean())
                vx = float(((xs - cx) ** 2).mean())
                vy = float(((ys - cy) ** 2).mean())
                self._centroid = Centroid(cx, cy, math.sqrt(vx + vy), vx, vy)
        return self._centroid

    def ring_score(self, cx: float, cy: float, r_min: float, r_max: float) -> float:
        """
        Share of pixels in the annulus around (cx, cy) with a sharp luminance jump.

        A pixel is a hit when it differs by more than RING_CONTRAST from the mean
        of its right and lower neighbours. Returns 0.0 for an empty annulus.
        """
        y0 = max(1, int(math.floor(cy - r_max)))
        y1 = min(self.height - 1, int(math.ceil(cy + r_max)))
        x0 = max(1, int(math.floor(cx - r_max)))
        x1 = min(self.width - 1, int(math.ceil(cx + r_max)))
        if y1 <= y0 or x1 <= x0:
            return 0.0

        yy, xx = np.mgrid[y0:y1, x0:x1]
        rr = np.hypot(xx - cx, yy - cy)
        in_ring = (rr >= r_min) & (rr <= r_max)
        samples = int(in_ring.sum())
        if samples == 0:
            return 0.0

        lum = self.lum
        center = lum[y0:y1, x0:x1]
        neighbours = (lum[y0:y1, x0 + 1 : x1 + 1] + lum[y0 + 1 : y1 + 1, x0:x1]) / 2
        hits = (np.abs(center - neighbours) > RING_CONTRAST) & in_ring
        return float(hits.sum()) / samples

    def bright_near(self, x: float, y: float, radius: float) -> int:
        """Number of bright pixels strictly closer than *radius* to (x, y)."""
        if self.bright_x.size == 0:
            return 0
        dist = np.hypot(self.bright_x - x, self.bright_y - y)
        return int((dist < radius).sum())

    def bright_in(
        self,
        x_min: Optional[float] = None,
        x_max: Optional[float] = None,
        y_min: Optional[float] = None,
        y_max: Optional[float] = None,
    ) -> int:
        """Number of bright pixels strictly inside the given open bounds."""
        mask = np.ones(self.bright_x.shape, dtype=bool)
        if x_min is not None:
            mask &= self.bright_x > x_min
        if x_max is not None:
            mask &= self.bright_x < x_max
        if y_min is not None:
            mask &= self.bright_y > y_min
        if y_max is not None:
            mask &= self.bright_y < y_max
        return int(mask.sum())

    def bottom_band_edges(self) -> float:
        """Mean horizontal luminance step across the bottom-center band."""
        y0 = int(math.floor(self.height * 0.8))
        y1 = self.height - 1
        x0 = int(math.floor(self.width * 0.3))
        x1 = int(math.floor(self.width * 0.7))
        if y1 <= y0 or x1 <= x0:
            return 0.0
        band = self.lum[y0:y1, x0 : x1 + 1]
        return float(np.abs(band[:, :-1] - band[:, 1:]).mean())


def _blue_ratio(rgb: np.ndarray) -> float:
    if rgb.size == 0:
        return 0.0
    r = rgb[..., 0].astype(np.int16)
    g = rgb[..., 1].astype(np.int16)
    b = rgb[..., 2].astype(np.int16)
    return float(((b > r + 20) & (b > g + 5)).mean())


def _lower_bright_peaks(bright_x: np.ndarray, bright_y: np.ndarray, w: int, h: int) -> bool:
    """Two well-separated bright columns in the lower half (a headlight pair)."""
    n = bright_x.size
    if n == 0:
        return False
    lower = bright_x[bright_y > h * 0.5]
    counts = np.bincount(lower, minlength=w)[:w]
    split = int(math.ceil(w / 2))
    left, right = counts[:split], counts[split:]
    if left.size == 0 or right.size == 0:
        return False
    left_x = int(np.argmax(left))
    right_x = split + int(np.argmax(right))
    left_v, right_v = int(left.max()), int(right.max())
    return left_v > n * 0.02 and right_v > n * 0.02 and abs(left_x - right_x) > w * 0.25


def compute_stats(rgb: np.ndarray) -> ImageStats:
    """Compute every statistic the rules need in one vectorized pass over *rgb*."""
    if rgb.ndim != 3 or rgb.shape[0] == 0 or rgb.shape[1] == 0:
        raise ValueError(f"Expected a non-empty HxWx3 array, got shape {rgb.shape}")

    h, w = rgb.shape[:2]
    total = h * w
    pixels = rgb[..., :3].astype(np.float32)
    r, g, b = pixels[..., 0], pixels[..., 1], pixels[..., 2]

    bri = pixels.mean(axis=2)
    lum = pixels @ LUMA_WEIGHTS

    ch_max = pixels.max(axis=2)
    ch_min = pixels.min(axis=2)
    sat = np.divide(ch_max - ch_min, ch_max, out=np.zeros_like(ch_max), where=ch_max > 0)

    dark = bri < DARK_LEVEL
    bright = bri > BRIGHT_LEVEL
    gray = (np.abs(r - g) < GRAY_TOLERANCE) & (np.abs(g - b) < GRAY_TOLERANCE)
    bright_y, bright_x = np.nonzero(bright)

    gx = cv2.Sobel(lum, cv2.CV_32F, 1, 0, ksize=3)
    gy = cv2.Sobel(lum, cv2.CV_32F, 0, 1, ksize=3)
    magnitude = cv2.magnitude(gx, gy)
    # Interior pixels only, normalized by the full pixel count.
    edge_density = float(magnitude[1:-1, 1:-1].sum()) / total

    row_bright = bri.sum(axis=1)
    col_bright = bri.sum(axis=0)
    t1, t2 = h // 3, (2 * h) // 3
    half = w // 2

    left_half = col_bright[: int(math.ceil(w / 2))]
    right_half = col_bright[int(math.ceil(w / 2)) :]
    column_peaks = (
        float(left_half.max()) if left_half.size else 0.0,
        float(right_half.max()) if right_half.size else 0.0,
    )

    bottom = slice(t2, h)
    return ImageStats(
        width=w,
        height=h,
        dark_ratio=float(dark.mean()),
        bright_ratio=float(bright.mean()),
        gray_ratio=float(gray.mean()),
        avg_saturation=float(sat.mean()),
        edge_density=edge_density,
        top_third=float(row_bright[:t1].sum()),
        mid_third=float(row_bright[t1:t2].sum()),
        bot_third=float(row_bright[t2:].sum()),
        top_band=float(row_bright[: max(2, int(h * 0.06))].sum()),
        left_sum=float(col_bright[:half].sum()),
        right_sum=float(col_bright[half:].sum()),
        center_columns=float(col_bright[int(w * 0.35) : int(w * 0.65)].sum()),
        column_peaks=column_peaks,
        twin_lights=_lower_bright_peaks(bright_x, bright_y, w, h),
        mean_brightness=float(bri.mean()),
        top_blue_ratio=_blue_ratio(rgb[:t1]),
        bottom_blue_ratio=_blue_ratio(rgb[bottom]),
        bottom_brightness=float(bri[bottom].mean()) if t2 < h else 0.0,
        bottom_saturation=float(sat[bottom].mean()) if t2 < h else 0.0,
        lum=lum,
        bright_x=bright_x,
        bright_y=bright_y,
    )
