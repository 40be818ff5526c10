"""Deterministic frame sampling for uploaded media.

Videos are sampled at evenly spaced frame indices spanning the whole clip
(first frame at t=0, last frame at the final decodable frame). Stills are
returned as a single frame, passed through when the backend accepts the
format and re-encoded as PNG otherwise.

Uses opencv-python for video I/O. The upload only exists in memory, so it
is spooled to a private temporary directory that is removed on every exit
path together with the decoder handle.
"""

import logging
import mimetypes
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

import cv2
import numpy as np

from vizprompts.errors import EmptyMediaError, UnsupportedMediaError
from vizprompts.schemas.media import Frame, MediaAsset, MediaInfo

logger = logging.getLogger(__name__)

# Still formats the inference backends accept as-is
PASSTHROUGH_IMAGE_TYPES = {"image/png", "image/jpeg", "image/webp"}

_FALLBACK_SUFFIX = {"video": ".mp4", "image": ".img"}


def compute_sample_indices(frame_count: int, target_count: int) -> list[int]:
    """Compute evenly spaced frame indices from first to last frame.

    Args:
        frame_count: Number of decodable frames in the video.
        target_count: Requested number of frames.

    Returns:
        Strictly increasing list of min(frame_count, target_count) indices.
        Index 0 and index frame_count - 1 are always included when more
        than one frame is requested.
    """
    if frame_count <= 0 or target_count <= 0:
        return []
    if frame_count <= target_count:
        return list(range(frame_count))
    if target_count == 1:
        return [0]

    step = (frame_count - 1) / (target_count - 1)
    # Round half up; step > 1 here so indices stay strictly increasing
    return [int(i * step + 0.5) for i in range(target_count)]


def _resize_to_width(image: np.ndarray, width: int) -> np.ndarray:
    """Downscale to the given width keeping aspect ratio. Never upscales."""
    height, current_width = image.shape[:2]
    if width <= 0 or current_width <= width:
        return image
    new_height = max(1, round(height * width / current_width))
    return cv2.resize(image, (width, new_height), interpolation=cv2.INTER_AREA)


def _encode_png(image: np.ndarray) -> bytes:
    ok, buf = cv2.imencode(".png", image)
    if not ok:
        raise UnsupportedMediaError("Failed to encode frame as PNG")
    return buf.tobytes()


def _suffix_for(asset: MediaAsset) -> str:
    suffix = Path(asset.filename).suffix
    if suffix:
        return suffix.lower()
    return mimetypes.guess_extension(asset.mime_type) or _FALLBACK_SUFFIX[asset.category]


@contextmanager
def _spooled(asset: MediaAsset) -> Iterator[str]:
    """Write the upload to a private temp file for the OpenCV decoder."""
    with tempfile.TemporaryDirectory(prefix="vizprompts_") as tmp_dir:
        path = Path(tmp_dir) / f"source{_suffix_for(asset)}"
        path.write_bytes(asset.data)
        yield str(path)


class FrameSampler:
    """Produce an ordered, fixed-size sequence of frames from a MediaAsset."""

    def __init__(self, frame_width: int = 640):
        self.frame_width = frame_width

    def sample(self, asset: MediaAsset, target_count: int) -> list[Frame]:
        """Sample frames from an asset.

        Args:
            asset: Validated upload.
            target_count: Maximum number of frames for videos (ignored for stills).

        Returns:
            Frames in capture order.

        Raises:
            UnsupportedMediaError: Category or container cannot be decoded.
            EmptyMediaError: Zero frames could be produced.
        """
        if asset.category == "image":
            frames = [self._sample_image(asset)]
        elif asset.category == "video":
            frames = self._sample_video(asset, target_count)
        else:
            raise UnsupportedMediaError(f"Unsupported media category: {asset.category}")

        if not frames:
            raise EmptyMediaError("Could not extract frames or process the media.")
        return frames

    def read_info(self, asset: MediaAsset) -> MediaInfo:
        """Read resolution, frame count and duration without sampling.

        Raises:
            UnsupportedMediaError: The asset cannot be decoded.
        """
        if asset.category == "image":
            image = cv2.imdecode(np.frombuffer(asset.data, dtype=np.uint8), cv2.IMREAD_COLOR)
            if image is None:
                image = self._first_frame_via_capture(asset)
            if image is None:
                raise UnsupportedMediaError(
                    f"Cannot decode image {asset.filename} ({asset.mime_type})"
                )
            height, width = image.shape[:2]
            return MediaInfo(category="image", width=width, height=height)

        with _spooled(asset) as path:
            cap = cv2.VideoCapture(path)
            try:
                if not cap.isOpened():
                    raise UnsupportedMediaError(
                        f"Failed to load video {asset.filename}. "
                        "The file may be corrupt or in an unsupported format."
                    )
                width = int(cap.get(cv2.CAP_PROP_FRAME_WIDTH))
                height = int(cap.get(cv2.CAP_PROP_FRAME_HEIGHT))
                fps = cap.get(cv2.CAP_PROP_FPS) or 0.0
                frame_count = int(cap.get(cv2.CAP_PROP_FRAME_COUNT))
                if frame_count <= 0:
                    frame_count = self._count_frames(cap)
            finally:
                cap.release()

        if width <= 0 or height <= 0 or frame_count <= 0:
            raise UnsupportedMediaError(f"No decodable frames in video {asset.filename}")

        duration = frame_count / fps if fps > 0 else 0.0
        logger.info(
            f"Media info for {asset.filename}: {width}x{height}, {frame_count} frames, {duration:.2f}s"
        )
        return MediaInfo(
            category="video",
            width=width,
            height=height,
            frame_count=frame_count,
            fps=fps,
            duration=duration,
        )

    # ------------------------------------------------------------------
    # Stills
    # ------------------------------------------------------------------

    def _sample_image(self, asset: MediaAsset) -> Frame:
        image = cv2.imdecode(np.frombuffer(asset.data, dtype=np.uint8), cv2.IMREAD_COLOR)

        if image is not None and asset.mime_type in PASSTHROUGH_IMAGE_TYPES:
            logger.info(f"Image {asset.filename} ({asset.mime_type}) passed through unchanged")
            return Frame(data=asset.data, mime_type=asset.mime_type, index=0)

        if image is None:
            # imdecode has no GIF support in most builds; the video backend does
            image = self._first_frame_via_capture(asset)
        if image is None:
            raise UnsupportedMediaError(
                f"Cannot decode image {asset.filename} ({asset.mime_type})"
            )

        logger.info(f"Image {asset.filename} ({asset.mime_type}) re-encoded as PNG")
        return Frame(data=_encode_png(image), mime_type="image/png", index=0)

    def _first_frame_via_capture(self, asset: MediaAsset):
        with _spooled(asset) as path:
            cap = cv2.VideoCapture(path)
            try:
                if not cap.isOpened():
                    return None
                ret, image = cap.read()
                return image if ret else None
            finally:
                cap.release()

    # ------------------------------------------------------------------
    # Video
    # ------------------------------------------------------------------

    def _sample_video(self, asset: MediaAsset, target_count: int) -> list[Frame]:
        with _spooled(asset) as path:
            return self._read_frames(path, asset.filename, target_count)

    def _read_frames(self, video_path: str, label: str, target_count: int) -> list[Frame]:
        cap = cv2.VideoCapture(video_path)
        try:
            if not cap.isOpened():
                raise UnsupportedMediaError(
                    f"Failed to load video {label}. The file may be corrupt or in an unsupported format."
                )

            fps = cap.get(cv2.CAP_PROP_FPS) or 0.0
            frame_count = int(cap.get(cv2.CAP_PROP_FRAME_COUNT))
            if frame_count <= 0:
                logger.warning(f"Could not read frame count from {label}, counting frames")
                frame_count = self._count_frames(cap)
                cap.release()
                cap = cv2.VideoCapture(video_path)

            indices = compute_sample_indices(frame_count, target_count)
            logger.info(
                f"Frame sampling: {len(indices)}/{target_count} frames from {label} "
                f"({frame_count} frames @ {fps:.2f}fps)"
            )

            frames = self._grab_indices(cap, indices, fps)
        finally:
            cap.release()

        logger.info(f"Extracted {len(frames)}/{len(indices)} frames from {label}")
        return frames

    @staticmethod
    def _count_frames(cap) -> int:
        count = 0
        while cap.grab():
            count += 1
        return count

    def _grab_indices(self, cap, indices: list[int], fps: float) -> list[Frame]:
        """Sequentially grab frames, decoding only the target indices."""
        if not indices:
            return []

        target_set = set(indices)
        last_target = indices[-1]
        frames: list[Frame] = []
        frame_index = 0

        while frame_index <= last_target:
            if not cap.grab():
                break

            if frame_index in target_set:
                ret, image = cap.retrieve()
                if ret and image is not None:
                    image = _resize_to_width(image, self.frame_width)
                    frames.append(
                        Frame(
                            data=_encode_png(image),
                            mime_type="image/png",
                            index=len(frames),
                            timestamp=frame_index / fps if fps > 0 else 0.0,
                        )
                    )

            frame_index += 1

        return frames
