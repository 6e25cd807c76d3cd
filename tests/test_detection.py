import asyncio
import random
import zipfile

import httpx
import pytest

from attendance_kiosk.exceptions import DetectionUnavailable
from attendance_kiosk.schemas.attendance import BoundingBox, DetectionMethod
from attendance_kiosk.services.detection import (
    AllSourcesFailed,
    Loaded,
    ModelDetector,
    ModelFetcher,
    SimulatedDetector,
    create_provider,
    load_model,
)


class FakeFaceModel:
    def __init__(self, *results):
        self.results = list(results)

    def detect(self, frame):
        result = self.results.pop(0)
        if isinstance(result, Exception):
            raise result
        return result


def box(x=10.0):
    return BoundingBox(x=x, y=20.0, width=100.0, height=120.0)


async def test_simulated_true_rate_converges_to_seventy_percent():
    detector = SimulatedDetector(0.7, rng=random.Random(20261018))
    samples = [await detector.sample(None) for _ in range(10_000)]
    rate = sum(sample.present for sample in samples) / len(samples)
    assert abs(rate - 0.70) <= 0.02


async def test_simulated_sample_shape():
    sample = await SimulatedDetector(1.0).sample(None)
    assert sample.present is True
    assert sample.confidence == 1.0
    assert sample.box is None
    assert SimulatedDetector.method == DetectionMethod.SIMULATED


def test_simulated_rejects_bad_probability():
    with pytest.raises(ValueError):
        SimulatedDetector(1.5)


async def test_model_detector_without_model_is_unavailable():
    with pytest.raises(DetectionUnavailable):
        await ModelDetector(None).sample("frame")


async def test_model_detector_needs_a_frame():
    with pytest.raises(DetectionUnavailable):
        await ModelDetector(FakeFaceModel([])).sample(None)


async def test_model_detector_reports_best_face_above_threshold():
    model = FakeFaceModel([(box(1.0), 0.62), (box(2.0), 0.91), (box(3.0), 0.3)])
    sample = await ModelDetector(model, min_confidence=0.5).sample("frame")

    assert sample.present is True
    assert sample.confidence == pytest.approx(0.91)
    assert sample.box == box(2.0)


async def test_model_detector_ignores_faces_below_threshold():
    model = FakeFaceModel([(box(), 0.49)])
    sample = await ModelDetector(model, min_confidence=0.5).sample("frame")
    assert sample.present is False
    assert sample.box is None


async def test_model_detector_wraps_inference_errors_and_recovers():
    model = FakeFaceModel(RuntimeError("onnx session died"), [(box(), 0.8)])
    detector = ModelDetector(model)

    with pytest.raises(DetectionUnavailable, match="onnx session died"):
        await detector.sample("frame")
    assert detector._failures == 1

    sample = await detector.sample("frame")
    assert sample.present is True
    assert detector._failures == 0


async def test_load_model_falls_through_to_second_source():
    loaded_model = FakeFaceModel()
    attempts = []

    async def fetch(source):
        attempts.append(source)
        if source == "a":
            raise ConnectionError("raw.githubusercontent.com unreachable")
        return loaded_model

    result = await load_model(["a", "b"], fetch, timeout=1.0)

    assert attempts == ["a", "b"]
    assert isinstance(result, Loaded)
    assert result.source == "b"
    assert result.model is loaded_model
    assert create_provider(result).method == DetectionMethod.MODEL


async def test_load_model_reports_all_sources_failed():
    async def fetch(source):
        raise OSError(f"{source} unreachable")

    result = await load_model(["a", "b"], fetch, timeout=1.0)

    assert isinstance(result, AllSourcesFailed)
    assert len(result.errors) == 2
    assert create_provider(result).method == DetectionMethod.SIMULATED


async def test_load_model_bounds_each_attempt():
    async def fetch(source):
        if source == "slow":
            await asyncio.sleep(60)
        return FakeFaceModel()

    result = await load_model(["slow", "fast"], fetch, timeout=0.05)

    assert isinstance(result, Loaded)
    assert result.source == "fast"


async def test_fetcher_missing_local_file(tmp_path):
    async with httpx.AsyncClient() as client:
        fetcher = ModelFetcher(client, tmp_path)
        with pytest.raises(FileNotFoundError):
            await fetcher.resolve(str(tmp_path / "nope.onnx"))


async def test_fetcher_downloads_once_and_unpacks_detector(tmp_path):
    bundle = tmp_path / "bundle.zip"
    with zipfile.ZipFile(bundle, "w") as archive:
        archive.writestr("buffalo_s/w600k_mbf.onnx", b"recognition")
        archive.writestr("buffalo_s/det_500m.onnx", b"detector")
    payload = bundle.read_bytes()

    requests = []

    def handler(request):
        requests.append(request.url)
        return httpx.Response(200, content=payload)

    cache_dir = tmp_path / "cache"
    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        fetcher = ModelFetcher(client, cache_dir)
        url = "https://models.example/v0.7/buffalo_s.zip"

        path = await fetcher.resolve(url)
        again = await fetcher.resolve(url)

    assert path == again == cache_dir / "det_500m.onnx"
    assert path.read_bytes() == b"detector"
    assert len(requests) == 1


async def test_fetcher_http_error(tmp_path):
    transport = httpx.MockTransport(lambda request: httpx.Response(404))
    async with httpx.AsyncClient(transport=transport) as client:
        fetcher = ModelFetcher(client, tmp_path)
        with pytest.raises(httpx.HTTPStatusError):
            await fetcher.resolve("https://models.example/missing.onnx")
    assert not (tmp_path / "missing.onnx").exists()
