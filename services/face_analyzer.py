"""Heuristic face region analysis.

Splits a captured frame into fixed facial sub-regions (fractions of the frame,
centered on the capture oval) and measures each one: skin-tone coverage,
brightness, brightness variance, share of dark pixels and a cheap edge score.
From those numbers it derives which parts of a face appear present and
unobstructed. There is no trained model involved; the thresholds live in
FaceValidationThresholds.
"""

import logging
from typing import Dict, Mapping, Optional

import numpy as np

from models.face import (
    FaceAnalysis,
    FaceValidationThresholds,
    RegionBox,
    RegionStats,
    SkinDistribution,
)
from models.frame import CapturedFrame

logger = logging.getLogger(__name__)


def skin_mask(rgb: np.ndarray) -> np.ndarray:
    """Boolean mask of pixels matching one of the three skin-tone heuristics.

    Args:
        rgb: Array of shape (n, 3) or (h, w, 3).

    Returns:
        Boolean array with the leading shape of `rgb`.
    """
    # Signed ints so channel differences do not wrap around
    channels = rgb.astype(np.int16)
    r, g, b = channels[..., 0], channels[..., 1], channels[..., 2]

    # Light to medium skin tones
    light_medium = (
        (r > 95) & (g > 40) & (b > 20) & (r > g) & (r > b) & (np.abs(r - g) > 15)
    )
    # Medium to dark skin tones
    medium_dark = (r > 60) & (g > 40) & (b > 20) & (r >= g) & (r >= b) & (r - b > 10)
    # Very light skin tones
    very_light = (r > 180) & (g > 140) & (b > 110) & (r > g) & (g > b)

    not_saturated = (r < 255) & (g < 245) & (b < 230)
    return (light_medium | medium_dark | very_light) & not_saturated


def region_stats(
    pixels: np.ndarray,
    dark_pixel_brightness: float = 50,
    edge_lag: int = 4,
) -> RegionStats:
    """Measure one block of RGBA pixels.

    Brightness is the mean of R, G and B. The edge score compares each pixel
    with the one `edge_lag` positions earlier in row-major order and averages
    the absolute brightness differences over the whole block.
    """
    flat = pixels.reshape(-1, pixels.shape[-1])[:, :3]
    pixel_count = flat.shape[0]
    if pixel_count == 0:
        return RegionStats()

    brightness = flat.astype(np.float64).sum(axis=1) / 3.0
    avg_brightness = float(brightness.mean())
    variance = float(np.mean((brightness - avg_brightness) ** 2))
    dark_ratio = float(np.count_nonzero(brightness < dark_pixel_brightness)) / pixel_count

    if pixel_count > edge_lag:
        edge_sum = float(np.abs(brightness[edge_lag:] - brightness[:-edge_lag]).sum())
    else:
        edge_sum = 0.0
    edge_strength = edge_sum / pixel_count

    skin_ratio = float(np.count_nonzero(skin_mask(flat))) / pixel_count
    clarity = float(np.sqrt(variance) * (edge_strength / 10.0))

    return RegionStats(
        skin_ratio=skin_ratio,
        avg_brightness=avg_brightness,
        variance=variance,
        dark_ratio=dark_ratio,
        edge_strength=edge_strength,
        clarity=clarity,
    )


def crop_region(frame: CapturedFrame, box: RegionBox) -> np.ndarray:
    """Pixel block for a fractional box, floored and clipped to the frame."""
    x = int(np.floor(frame.width * box.x))
    y = int(np.floor(frame.height * box.y))
    w = int(np.floor(frame.width * box.w))
    h = int(np.floor(frame.height * box.h))
    return frame.pixels[max(y, 0) : max(y + h, 0), max(x, 0) : max(x + w, 0)]


class FaceRegionAnalyzer:
    """Turns a captured frame into a FaceAnalysis."""

    def __init__(self, thresholds: Optional[FaceValidationThresholds] = None):
        self.thresholds = thresholds or FaceValidationThresholds()

    def measure(self, frame: CapturedFrame) -> Dict[str, RegionStats]:
        t = self.thresholds
        return {
            name: region_stats(
                crop_region(frame, box),
                dark_pixel_brightness=t.dark_pixel_brightness,
                edge_lag=t.edge_lag,
            )
            for name, box in t.regions.named().items()
        }

    def analyze(self, frame: CapturedFrame) -> FaceAnalysis:
        stats = self.measure(frame)
        analysis = self.summarize(stats)
        logger.debug(
            "[FACE] %dx%d frame: distribution=%s clarity=%.1f brightness=%.1f",
            frame.width,
            frame.height,
            analysis.skin_distribution.value,
            analysis.overall_clarity,
            analysis.brightness,
        )
        return analysis

    def summarize(self, stats: Mapping[str, RegionStats]) -> FaceAnalysis:
        """Derive presence, obstruction and framing signals from region stats."""
        t = self.thresholds
        empty = RegionStats()
        forehead = stats.get("forehead", empty)
        left_eye = stats.get("left_eye", empty)
        right_eye = stats.get("right_eye", empty)
        nose = stats.get("nose", empty)
        mouth = stats.get("mouth", empty)
        lips = stats.get("lips", empty)
        chin = stats.get("chin", empty)
        left_cheek = stats.get("left_cheek", empty)
        right_cheek = stats.get("right_cheek", empty)
        top = stats.get("top", empty)
        center = stats.get("center_face", empty)

        has_forehead_region = forehead.skin_ratio > t.forehead_min_skin
        has_left_eye = (
            left_eye.variance > t.eye_min_variance
            and left_eye.clarity > t.eye_min_clarity
        )
        has_right_eye = (
            right_eye.variance > t.eye_min_variance
            and right_eye.clarity > t.eye_min_clarity
        )
        has_eye_region = has_left_eye and has_right_eye
        has_nose_region = (
            nose.skin_ratio > t.nose_min_skin
            and nose.variance > t.nose_min_variance
            and nose.clarity > t.nose_min_clarity
        )
        has_mouth_region = (
            mouth.skin_ratio > t.mouth_min_skin
            and mouth.dark_ratio < t.mouth_max_dark
            and mouth.clarity > t.mouth_min_clarity
        )
        has_lips = lips.variance > t.lips_min_variance and lips.clarity > t.lips_min_clarity
        has_cheeks = (
            left_cheek.skin_ratio > t.cheek_min_skin
            and right_cheek.skin_ratio > t.cheek_min_skin
        )
        has_chin_visible = (
            chin.skin_ratio > t.chin_min_skin and chin.clarity > t.chin_min_clarity
        )

        # Any sign of a covering over the lower face counts as a mask
        is_masked = (
            mouth.skin_ratio < t.mask_mouth_max_skin
            or mouth.dark_ratio > t.mask_mouth_min_dark
            or nose.skin_ratio < t.mask_nose_max_skin
            or (
                mouth.variance < t.mask_mouth_low_variance
                and mouth.skin_ratio < t.mask_mouth_low_variance_skin
            )
            or not has_lips
            or lips.variance < t.mask_lips_min_variance
        )

        has_hat = top.dark_ratio > t.hat_top_min_dark or (
            top.variance < t.hat_top_max_variance
            and top.avg_brightness < t.hat_top_max_brightness
        )

        face_centeredness = center.skin_ratio
        face_size = min(center.skin_ratio / t.full_face_skin_ratio, 1.0)

        eyes_clarity = (left_eye.clarity + right_eye.clarity) / 2
        nose_clarity = nose.clarity
        mouth_clarity = mouth.clarity
        overall_clarity = (eyes_clarity + nose_clarity + mouth_clarity) / 3
        is_blurred = (
            overall_clarity < t.min_overall_clarity
            or eyes_clarity < t.min_eyes_clarity
            or nose_clarity < t.min_nose_clarity
            or mouth_clarity < t.min_mouth_clarity
        )

        cheek_symmetry = (
            abs(left_cheek.skin_ratio - right_cheek.skin_ratio) < t.max_cheek_asymmetry
        )
        eye_symmetry = (
            abs(left_eye.variance - right_eye.variance) < t.max_eye_variance_asymmetry
        )

        is_face_like = (
            has_forehead_region
            and has_cheeks
            and has_chin_visible
            and has_eye_region
            and cheek_symmetry
            and eye_symmetry
            and not is_masked
            and face_centeredness > t.min_centeredness
        )

        present_regions = sum(
            [
                has_forehead_region,
                has_eye_region,
                has_nose_region,
                has_mouth_region,
                has_cheeks,
                has_chin_visible,
            ]
        )

        if is_face_like and present_regions >= t.min_face_regions:
            skin_distribution = SkinDistribution.FACE_LIKE
        elif present_regions >= t.random_skin_min_regions:
            skin_distribution = SkinDistribution.RANDOM
        else:
            skin_distribution = SkinDistribution.NONE

        has_face_structure = (
            skin_distribution is SkinDistribution.FACE_LIKE
            and not is_masked
            and not has_hat
            and face_centeredness > t.min_centeredness
        )

        return FaceAnalysis(
            regions=dict(stats),
            has_forehead_region=has_forehead_region,
            has_left_eye=has_left_eye,
            has_right_eye=has_right_eye,
            has_eye_region=has_eye_region,
            has_nose_region=has_nose_region,
            has_mouth_region=has_mouth_region,
            has_lips=has_lips,
            has_cheeks=has_cheeks,
            has_chin_visible=has_chin_visible,
            is_masked=is_masked,
            has_hat=has_hat,
            is_blurred=is_blurred,
            has_face_structure=has_face_structure,
            skin_distribution=skin_distribution,
            brightness=(forehead.avg_brightness + nose.avg_brightness + mouth.avg_brightness)
            / 3,
            face_centeredness=face_centeredness,
            face_size=face_size,
            eyes_clarity=eyes_clarity,
            nose_clarity=nose_clarity,
            mouth_clarity=mouth_clarity,
            overall_clarity=overall_clarity,
        )
