"""Shared fixtures: scripted gateway, in-memory history and synthetic media."""

import json
from pathlib import Path
from typing import Optional, Union

import cv2
import numpy as np
import pytest

from vizprompts.config import DEFAULT_SCENE_FIELDS, PipelineConfig, Settings, StorageConfig
from vizprompts.orchestrator.pipeline import PromptPipeline
from vizprompts.schemas.analysis import AnalysisRequest, HistoryItem
from vizprompts.services.history import HistorySink
from vizprompts.services.inference import InferenceGateway


class FakeGateway(InferenceGateway):
    """Gateway returning scripted responses in order.

    Each scripted item is either raw text or an exception instance to raise.
    Every request is kept in `requests` for assertions.
    """

    model_id = "fake-model"

    def __init__(self, responses: Optional[list[Union[str, Exception]]] = None):
        self.responses = list(responses or [])
        self.requests: list[AnalysisRequest] = []

    def push(self, *responses: Union[str, Exception]) -> None:
        self.responses.extend(responses)

    async def infer(self, request: AnalysisRequest) -> str:
        self.requests.append(request)
        if not self.responses:
            raise AssertionError("FakeGateway called more times than scripted")
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


class MemoryHistorySink(HistorySink):
    def __init__(self):
        self.items: list[HistoryItem] = []

    async def record(self, item: HistoryItem) -> None:
        self.items.append(item)


def make_scene(number: int, label: str = "scene", fields=DEFAULT_SCENE_FIELDS) -> dict:
    scene = {"scene_number": number}
    for name in fields:
        scene[name] = f"{label} {number} {name.replace('_', ' ')}"
    return scene


def analysis_json(scene_count: int = 2, master_prompt: str = "A rainy night chase, then a quiet dawn.") -> str:
    return json.dumps(
        {
            "scene_analysis": [make_scene(n) for n in range(1, scene_count + 1)],
            "master_prompt": master_prompt,
        }
    )


def scenes_json(scene_count: int = 1, label: str = "edited") -> str:
    return json.dumps([make_scene(n, label) for n in range(1, scene_count + 1)])


def write_video(path: Path, frame_count: int, fps: float = 10.0, size: tuple[int, int] = (64, 48)) -> Path:
    """Write an MJPG AVI whose frames differ in brightness."""
    width, height = size
    writer = cv2.VideoWriter(str(path), cv2.VideoWriter_fourcc(*"MJPG"), fps, (width, height))
    assert writer.isOpened(), "OpenCV cannot write MJPG video"
    try:
        for i in range(frame_count):
            frame = np.full((height, width, 3), (i * 7) % 256, dtype=np.uint8)
            cv2.putText(frame, str(i), (2, height - 4), cv2.FONT_HERSHEY_SIMPLEX, 0.5, (255, 255, 255), 1)
            writer.write(frame)
    finally:
        writer.release()
    return path


def encode_image(extension: str, size: tuple[int, int] = (32, 24)) -> bytes:
    width, height = size
    image = np.zeros((height, width, 3), dtype=np.uint8)
    image[:, : width // 2] = (0, 128, 255)
    ok, buf = cv2.imencode(extension, image)
    assert ok
    return buf.tobytes()


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        pipeline=PipelineConfig(retry_base_delay=0, restructure_debounce_seconds=0.05),
        storage=StorageConfig(database_url=f"sqlite+aiosqlite:///{tmp_path / 'history.db'}"),
    )


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def history() -> MemoryHistorySink:
    return MemoryHistorySink()


@pytest.fixture
def pipeline(gateway, settings, history) -> PromptPipeline:
    return PromptPipeline(gateway, settings, history=history)


@pytest.fixture
def ten_second_video(tmp_path) -> bytes:
    return write_video(tmp_path / "clip.avi", frame_count=100, fps=10.0).read_bytes()
