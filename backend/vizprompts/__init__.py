"""VizPrompts - turn videos and images into text-to-video prompts.

This module provides startup validation functions to ensure required
dependencies are available before any media is sampled.
Call validate_dependencies() during application startup.
"""

import logging

__version__ = "0.1.0"

logger = logging.getLogger(__name__)


def validate_dependencies() -> None:
    """Validate that OpenCV can decode video containers.

    Raises:
        RuntimeError: If OpenCV is missing or was built without FFmpeg.
    """
    try:
        import cv2
    except ImportError as e:
        raise RuntimeError(
            "OpenCV is not installed. Install it with: pip install opencv-python"
        ) from e

    if not cv2.videoio_registry.hasBackend(cv2.CAP_FFMPEG):
        raise RuntimeError(
            "OpenCV was built without the FFmpeg video backend, so uploaded videos "
            "cannot be decoded. Install the opencv-python wheel from PyPI or rebuild "
            "OpenCV with FFmpeg support."
        )
    logger.info(f"OpenCV {cv2.__version__} validated with FFmpeg backend")
