"""Ordered accept/reject gates for a captured selfie.

Gates run fail-fast in a fixed order and report only the first failure.
Several gates look at overlapping signals (clarity is checked as a whole and
per feature, the mask flag is built from the same mouth/nose/lips numbers as
the visibility gates), so the order decides which message the user sees.
"""

import logging
from typing import Callable, List, Optional, Tuple

from core.settings import AUTO_CAPTURE_FRAMES
from models.face import (
    FaceAnalysis,
    FaceRejection,
    FaceValidationThresholds,
    SkinDistribution,
    ValidationResult,
)
from models.frame import CapturedFrame
from services.face_analyzer import FaceRegionAnalyzer

logger = logging.getLogger(__name__)

Gate = Callable[[FaceAnalysis], Optional[FaceRejection]]


class FaceValidationPipeline:
    def __init__(
        self,
        thresholds: Optional[FaceValidationThresholds] = None,
        analyzer: Optional[FaceRegionAnalyzer] = None,
    ):
        self.thresholds = thresholds or FaceValidationThresholds()
        self.analyzer = analyzer or FaceRegionAnalyzer(self.thresholds)
        self.gates: List[Tuple[str, Gate]] = [
            ("blur", self._blur),
            ("clarity", self._clarity),
            ("lighting", self._lighting),
            ("centering", self._centering),
            ("size", self._size),
            ("structure", self._structure),
            ("eyes", self._eyes),
            ("eyes_clarity", self._eyes_clarity),
            ("forehead", self._forehead),
            ("nose", self._nose),
            ("nose_clarity", self._nose_clarity),
            ("mouth", self._mouth),
            ("lips", self._lips),
            ("mouth_clarity", self._mouth_clarity),
            ("mask", self._mask),
            ("chin", self._chin),
            ("headwear", self._headwear),
            ("full_face", self._full_face),
        ]

    def validate(self, analysis: FaceAnalysis) -> ValidationResult:
        for name, gate in self.gates:
            reason = gate(analysis)
            if reason is not None:
                logger.info(f"[FACE] Rejected at gate '{name}': {reason.value}")
                return ValidationResult.rejected(reason)
        return ValidationResult.accepted()

    def validate_frame(self, frame: CapturedFrame) -> ValidationResult:
        """Analyze and validate one frame. Analysis errors reject the frame."""
        try:
            analysis = self.analyzer.analyze(frame)
        except (ValueError, IndexError) as e:
            logger.error(f"[FACE] Face validation error: {e}")
            return ValidationResult.rejected(FaceRejection.VALIDATION_ERROR)
        return self.validate(analysis)

    # --- Gates, in order ---

    def _blur(self, a: FaceAnalysis) -> Optional[FaceRejection]:
        if a.is_blurred:
            return FaceRejection.BLURRED
        return None

    def _clarity(self, a: FaceAnalysis) -> Optional[FaceRejection]:
        if a.overall_clarity < self.thresholds.min_overall_clarity:
            return FaceRejection.NOT_CLEAR
        return None

    def _lighting(self, a: FaceAnalysis) -> Optional[FaceRejection]:
        if a.brightness < self.thresholds.min_brightness:
            return FaceRejection.TOO_DARK
        if a.brightness > self.thresholds.max_brightness:
            return FaceRejection.TOO_BRIGHT
        return None

    def _centering(self, a: FaceAnalysis) -> Optional[FaceRejection]:
        if a.face_centeredness < self.thresholds.min_centeredness:
            return FaceRejection.NOT_CENTERED
        return None

    def _size(self, a: FaceAnalysis) -> Optional[FaceRejection]:
        if a.face_size < self.thresholds.min_face_size:
            return FaceRejection.TOO_FAR
        return None

    def _structure(self, a: FaceAnalysis) -> Optional[FaceRejection]:
        # A face-like layout without structure (headwear) is left to later gates
        if a.has_face_structure:
            return None
        if a.skin_distribution is SkinDistribution.RANDOM:
            return FaceRejection.NO_FACE_RANDOM_SKIN
        if a.skin_distribution is SkinDistribution.NONE:
            return FaceRejection.NO_FACE_NO_SKIN
        return None

    def _eyes(self, a: FaceAnalysis) -> Optional[FaceRejection]:
        if not a.has_left_eye or not a.has_right_eye:
            return FaceRejection.EYES_NOT_VISIBLE
        return None

    def _eyes_clarity(self, a: FaceAnalysis) -> Optional[FaceRejection]:
        if a.eyes_clarity < self.thresholds.min_eyes_clarity:
            return FaceRejection.EYES_NOT_CLEAR
        return None

    def _forehead(self, a: FaceAnalysis) -> Optional[FaceRejection]:
        if not a.has_forehead_region:
            return FaceRejection.FOREHEAD_NOT_VISIBLE
        return None

    def _nose(self, a: FaceAnalysis) -> Optional[FaceRejection]:
        if not a.has_nose_region:
            return FaceRejection.NOSE_NOT_VISIBLE
        return None

    def _nose_clarity(self, a: FaceAnalysis) -> Optional[FaceRejection]:
        if a.nose_clarity < self.thresholds.min_nose_clarity:
            return FaceRejection.NOSE_NOT_CLEAR
        return None

    def _mouth(self, a: FaceAnalysis) -> Optional[FaceRejection]:
        if not a.has_mouth_region:
            return FaceRejection.MOUTH_NOT_VISIBLE
        return None

    def _lips(self, a: FaceAnalysis) -> Optional[FaceRejection]:
        if not a.has_lips:
            return FaceRejection.LIPS_NOT_VISIBLE
        return None

    def _mouth_clarity(self, a: FaceAnalysis) -> Optional[FaceRejection]:
        if a.mouth_clarity < self.thresholds.min_mouth_clarity:
            return FaceRejection.MOUTH_NOT_CLEAR
        return None

    def _mask(self, a: FaceAnalysis) -> Optional[FaceRejection]:
        if a.is_masked:
            return FaceRejection.MASK_DETECTED
        return None

    def _chin(self, a: FaceAnalysis) -> Optional[FaceRejection]:
        if not a.has_chin_visible:
            return FaceRejection.CHIN_NOT_VISIBLE
        return None

    def _headwear(self, a: FaceAnalysis) -> Optional[FaceRejection]:
        if a.has_hat:
            return FaceRejection.HEADWEAR_DETECTED
        return None

    def _full_face(self, a: FaceAnalysis) -> Optional[FaceRejection]:
        if a.skin_distribution is not SkinDistribution.FACE_LIKE:
            return FaceRejection.FULL_FACE_NOT_DETECTED
        return None


class AutoCaptureGate:
    """Counts consecutive valid preview frames before allowing a capture.

    Any rejected frame resets the streak.
    """

    def __init__(
        self, pipeline: FaceValidationPipeline, frames_needed: int = AUTO_CAPTURE_FRAMES
    ):
        if frames_needed < 1:
            raise ValueError("frames_needed must be at least 1")
        self.pipeline = pipeline
        self.frames_needed = frames_needed
        self.streak = 0
        self.last_result: Optional[ValidationResult] = None

    @property
    def remaining(self) -> int:
        return max(self.frames_needed - self.streak, 0)

    def observe(self, frame: CapturedFrame) -> bool:
        """Validate a preview frame; True once the streak reaches frames_needed."""
        result = self.pipeline.validate_frame(frame)
        self.last_result = result
        if result.valid:
            self.streak += 1
        else:
            self.streak = 0
        return self.streak >= self.frames_needed

    def reset(self) -> None:
        self.streak = 0
        self.last_result = None
