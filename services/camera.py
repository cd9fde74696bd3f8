from typing import Optional, Protocol

from models.frame import CapturedFrame


class FrameSource(Protocol):
    async def capture_frame(self) -> CapturedFrame:
        """Capture the current frame of the imaging device into a pixel buffer."""
        ...


class UploadedFrameSource:
    """Frame source backed by a photo the client already captured and uploaded."""

    def __init__(self, data: bytes, photo_ref: Optional[str] = None):
        self.data = data
        self.photo_ref = photo_ref

    async def capture_frame(self) -> CapturedFrame:
        return CapturedFrame.from_image_bytes(self.data, source_ref=self.photo_ref)
