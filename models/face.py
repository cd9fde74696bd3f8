"""Value types for the face presence check.

Everything here is plain data: region boxes and thresholds that configure the
analyzer and the validation pipeline, the per-region statistics the analyzer
produces, the aggregated FaceAnalysis, and the terminal ValidationResult.
"""

from enum import Enum
from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class RegionBox(BaseModel):
    """Fractional bounding box (x, y, width, height) of the frame."""

    model_config = ConfigDict(frozen=True)

    x: float
    y: float
    w: float
    h: float


class FaceRegions(BaseModel):
    """Fixed facial sub-regions, centered on the capture oval."""

    model_config = ConfigDict(frozen=True)

    forehead: RegionBox = RegionBox(x=0.35, y=0.15, w=0.30, h=0.12)
    left_eye: RegionBox = RegionBox(x=0.30, y=0.30, w=0.15, h=0.10)
    right_eye: RegionBox = RegionBox(x=0.55, y=0.30, w=0.15, h=0.10)
    nose: RegionBox = RegionBox(x=0.42, y=0.42, w=0.16, h=0.18)
    mouth: RegionBox = RegionBox(x=0.38, y=0.60, w=0.24, h=0.12)
    lips: RegionBox = RegionBox(x=0.40, y=0.58, w=0.20, h=0.08)
    chin: RegionBox = RegionBox(x=0.38, y=0.72, w=0.24, h=0.10)
    left_cheek: RegionBox = RegionBox(x=0.22, y=0.45, w=0.15, h=0.18)
    right_cheek: RegionBox = RegionBox(x=0.63, y=0.45, w=0.15, h=0.18)
    top: RegionBox = RegionBox(x=0.30, y=0.02, w=0.40, h=0.10)
    center_face: RegionBox = RegionBox(x=0.35, y=0.35, w=0.30, h=0.35)

    def named(self) -> Dict[str, RegionBox]:
        return {name: getattr(self, name) for name in type(self).model_fields}


class FaceValidationThresholds(BaseModel):
    """Every constant the analyzer and the pipeline compare against."""

    model_config = ConfigDict(frozen=True)

    regions: FaceRegions = Field(default_factory=FaceRegions)

    # Pixel classification
    dark_pixel_brightness: float = 50
    edge_lag: int = 4

    # Region presence
    forehead_min_skin: float = 0.15
    eye_min_variance: float = 250
    eye_min_clarity: float = 15
    nose_min_skin: float = 0.20
    nose_min_variance: float = 120
    nose_min_clarity: float = 20
    mouth_min_skin: float = 0.18
    mouth_max_dark: float = 0.50
    mouth_min_clarity: float = 18
    lips_min_variance: float = 200
    lips_min_clarity: float = 15
    cheek_min_skin: float = 0.18
    chin_min_skin: float = 0.15
    chin_min_clarity: float = 12

    # Obstructions
    mask_mouth_max_skin: float = 0.15
    mask_mouth_min_dark: float = 0.45
    mask_nose_max_skin: float = 0.15
    mask_mouth_low_variance: float = 350
    mask_mouth_low_variance_skin: float = 0.20
    mask_lips_min_variance: float = 180
    hat_top_min_dark: float = 0.50
    hat_top_max_variance: float = 600
    hat_top_max_brightness: float = 80

    # Framing
    full_face_skin_ratio: float = 0.30
    min_centeredness: float = 0.20
    min_face_size: float = 0.55

    # Blur
    min_overall_clarity: float = 18
    min_eyes_clarity: float = 15
    min_nose_clarity: float = 18
    min_mouth_clarity: float = 16

    # Lighting
    min_brightness: float = 50
    max_brightness: float = 220

    # Structure
    max_cheek_asymmetry: float = 0.35
    max_eye_variance_asymmetry: float = 1200
    min_face_regions: int = 4
    random_skin_min_regions: int = 2


class RegionStats(BaseModel):
    model_config = ConfigDict(frozen=True)

    skin_ratio: float = 0.0
    avg_brightness: float = 0.0
    variance: float = 0.0
    dark_ratio: float = 0.0
    edge_strength: float = 0.0
    clarity: float = 0.0


class SkinDistribution(str, Enum):
    FACE_LIKE = "face_like"
    RANDOM = "random"
    NONE = "none"


class FaceAnalysis(BaseModel):
    """Aggregated view of one frame, as consumed by the validation gates."""

    model_config = ConfigDict(frozen=True)

    regions: Dict[str, RegionStats] = Field(default_factory=dict)

    has_forehead_region: bool
    has_left_eye: bool
    has_right_eye: bool
    has_eye_region: bool
    has_nose_region: bool
    has_mouth_region: bool
    has_lips: bool
    has_cheeks: bool
    has_chin_visible: bool
    is_masked: bool
    has_hat: bool
    is_blurred: bool
    has_face_structure: bool
    skin_distribution: SkinDistribution

    brightness: float
    face_centeredness: float
    face_size: float
    eyes_clarity: float
    nose_clarity: float
    mouth_clarity: float
    overall_clarity: float


class FaceRejection(str, Enum):
    BLURRED = "blurred"
    NOT_CLEAR = "not_clear"
    TOO_DARK = "too_dark"
    TOO_BRIGHT = "too_bright"
    NOT_CENTERED = "not_centered"
    TOO_FAR = "too_far"
    NO_FACE_RANDOM_SKIN = "no_face_random_skin"
    NO_FACE_NO_SKIN = "no_face_no_skin"
    EYES_NOT_VISIBLE = "eyes_not_visible"
    EYES_NOT_CLEAR = "eyes_not_clear"
    FOREHEAD_NOT_VISIBLE = "forehead_not_visible"
    NOSE_NOT_VISIBLE = "nose_not_visible"
    NOSE_NOT_CLEAR = "nose_not_clear"
    MOUTH_NOT_VISIBLE = "mouth_not_visible"
    LIPS_NOT_VISIBLE = "lips_not_visible"
    MOUTH_NOT_CLEAR = "mouth_not_clear"
    MASK_DETECTED = "mask_detected"
    CHIN_NOT_VISIBLE = "chin_not_visible"
    HEADWEAR_DETECTED = "headwear_detected"
    FULL_FACE_NOT_DETECTED = "full_face_not_detected"
    VALIDATION_ERROR = "validation_error"

    @property
    def message(self) -> str:
        return REJECTION_MESSAGES[self]


REJECTION_MESSAGES: Dict[FaceRejection, str] = {
    FaceRejection.BLURRED: "Image is blurred. Hold still and keep the camera steady.",
    FaceRejection.NOT_CLEAR: "Image not clear enough. Ensure good focus and lighting.",
    FaceRejection.TOO_DARK: "Too dark! Move to a well-lit area with bright lighting.",
    FaceRejection.TOO_BRIGHT: "Too bright! Reduce direct lighting or move to softer light.",
    FaceRejection.NOT_CENTERED: "Center your face in the oval guide.",
    FaceRejection.TOO_FAR: "Move closer - your face needs to be larger in frame.",
    FaceRejection.NO_FACE_RANDOM_SKIN: (
        "No face detected. Please position your FACE in the frame (not hands)."
    ),
    FaceRejection.NO_FACE_NO_SKIN: "No face detected. Position your face clearly in the oval.",
    FaceRejection.EYES_NOT_VISIBLE: (
        "Both eyes must be clearly visible. Look directly at camera."
    ),
    FaceRejection.EYES_NOT_CLEAR: (
        "Eyes not clear enough. Ensure proper focus and remove sunglasses."
    ),
    FaceRejection.FOREHEAD_NOT_VISIBLE: (
        "Forehead must be visible. Remove hat or push back hair."
    ),
    FaceRejection.NOSE_NOT_VISIBLE: (
        "Nose is not clearly visible. Remove any face covering."
    ),
    FaceRejection.NOSE_NOT_CLEAR: (
        "Nose area not clear. Ensure nothing is covering your nose."
    ),
    FaceRejection.MOUTH_NOT_VISIBLE: (
        "Mouth is not visible. Remove any face covering or mask."
    ),
    FaceRejection.LIPS_NOT_VISIBLE: (
        "Lips must be clearly visible. Remove mask or face covering."
    ),
    FaceRejection.MOUTH_NOT_CLEAR: (
        "Mouth area not clear. Ensure proper lighting and no obstruction."
    ),
    FaceRejection.MASK_DETECTED: (
        "Face mask or covering detected! Remove all face coverings."
    ),
    FaceRejection.CHIN_NOT_VISIBLE: (
        "Chin must be visible. Adjust camera angle or remove scarf."
    ),
    FaceRejection.HEADWEAR_DETECTED: (
        "Remove any hat, cap, or head covering for verification."
    ),
    FaceRejection.FULL_FACE_NOT_DETECTED: (
        "Full face not properly detected. Ensure entire face is visible."
    ),
    FaceRejection.VALIDATION_ERROR: (
        "Could not validate face. Please ensure your face is clearly visible."
    ),
}


class ValidationResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    valid: bool
    error_reason: Optional[FaceRejection] = None

    @property
    def message(self) -> Optional[str]:
        return self.error_reason.message if self.error_reason else None

    @classmethod
    def accepted(cls) -> "ValidationResult":
        return cls(valid=True)

    @classmethod
    def rejected(cls, reason: FaceRejection) -> "ValidationResult":
        return cls(valid=False, error_reason=reason)
