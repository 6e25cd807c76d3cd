"""
Face presence detection.

Two interchangeable providers produce a PresenceSample per video frame:

- ModelDetector runs an ONNX face detector (insightface SCRFD) on the frame.
- SimulatedDetector draws presence at random; it is the observable fallback
  used whenever the model is unavailable.

Model loading walks an ordered list of sources and returns a tagged result
(Loaded / AllSourcesFailed) that `create_provider` turns into a provider.
"""
import asyncio
import random
import shutil
import zipfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Awaitable, Callable, List, Optional, Protocol, Sequence, Tuple, Union
from urllib.parse import urlparse

import httpx

from attendance_kiosk.exceptions import DetectionUnavailable
from attendance_kiosk.schemas.attendance import BoundingBox, DetectionMethod, PresenceSample
from attendance_kiosk.utils.logging import get_logger

logger = get_logger(__name__)

Detection = Tuple[BoundingBox, float]


class FaceModel(Protocol):
    def detect(self, frame: Any) -> List[Detection]: ...


class DetectionProvider(Protocol):
    method: DetectionMethod

    async def sample(self, frame: Any) -> PresenceSample: ...


class ModelDetector:
    method = DetectionMethod.MODEL

    def __init__(self, model: Optional[FaceModel], min_confidence: float = 0.5):
        self.model = model
        self.min_confidence = min_confidence
        self._failures = 0

    @property
    def loaded(self) -> bool:
        return self.model is not None

    async def sample(self, frame: Any) -> PresenceSample:
        if self.model is None:
            self._failures += 1
            raise DetectionUnavailable("Face detection model is not loaded")
        if frame is None:
            self._failures += 1
            raise DetectionUnavailable("Video frame is not ready")

        try:
            # Inference is CPU bound, keep it off the loop
            detections = await asyncio.to_thread(self.model.detect, frame)
        except Exception as exc:
            self._failures += 1
            raise DetectionUnavailable(f"Face inference failed: {exc}") from exc

        if self._failures:
            logger.info(f"Face detector recovered after {self._failures} failed samples")
            self._failures = 0

        faces = [face for face in detections if face[1] >= self.min_confidence]
        if not faces:
            return PresenceSample(present=False, confidence=0.0)

        box, score = max(faces, key=lambda face: face[1])
        return PresenceSample(present=True, confidence=min(1.0, float(score)), box=box)


class SimulatedDetector:
    method = DetectionMethod.SIMULATED

    def __init__(self, probability: float = 0.7, rng: Optional[random.Random] = None):
        if not 0.0 <= probability <= 1.0:
            raise ValueError("probability must be between 0.0 and 1.0")
        self.probability = probability
        self._rng = rng or random.Random()

    async def sample(self, frame: Any = None) -> PresenceSample:
        return PresenceSample(
            present=self._rng.random() < self.probability,
            confidence=1.0,
            box=None,
        )


# --- Model loading ---
@dataclass(frozen=True)
class Loaded:
    source: str
    model: FaceModel


@dataclass(frozen=True)
class AllSourcesFailed:
    errors: List[str] = field(default_factory=list)


LoadResult = Union[Loaded, AllSourcesFailed]
ModelFetch = Callable[[str], Awaitable[FaceModel]]


async def load_model(sources: Sequence[str], fetch: ModelFetch, timeout: float) -> LoadResult:
    """Try each source in order; the first one that loads within `timeout` wins."""
    errors: List[str] = []
    for source in sources:
        logger.info(f"Loading face detector from {source}")
        try:
            model = await asyncio.wait_for(fetch(source), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Timed out after {timeout}s loading face detector from {source}")
            errors.append(f"{source}: timed out")
            continue
        except Exception as exc:
            logger.warning(f"Failed to load face detector from {source}: {exc}")
            errors.append(f"{source}: {exc}")
            continue

        logger.info(f"Face detector ready (source: {source})")
        return Loaded(source=source, model=model)

    logger.error(f"Face detector unavailable, every source failed: {'; '.join(errors)}")
    return AllSourcesFailed(errors=errors)


def create_provider(
    result: LoadResult,
    min_confidence: float = 0.5,
    simulated_probability: float = 0.7,
    rng: Optional[random.Random] = None,
) -> DetectionProvider:
    if isinstance(result, Loaded):
        return ModelDetector(result.model, min_confidence=min_confidence)
    return SimulatedDetector(simulated_probability, rng=rng)


class ScrfdFaceModel:
    """Adapts an insightface SCRFD detector to the FaceModel protocol."""

    def __init__(self, detector: Any, input_size: int = 640):
        self._detector = detector
        self._input_size = (input_size, input_size)

    def detect(self, frame: Any) -> List[Detection]:
        bboxes, _ = self._detector.detect(frame, input_size=self._input_size)
        faces = []
        for x1, y1, x2, y2, score in bboxes:
            box = BoundingBox(
                x=float(x1), y=float(y1), width=float(x2 - x1), height=float(y2 - y1)
            )
            faces.append((box, float(score)))
        return faces


class ModelFetcher:
    """
    Resolves a model source to a ready FaceModel.

    Remote sources are downloaded once into `cache_dir`; zip archives (the
    insightface model packs) are unpacked to their `det_*.onnx` detector.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        cache_dir: Union[str, Path],
        input_size: int = 640,
        min_confidence: float = 0.5,
    ):
        self.client = client
        self.cache_dir = Path(cache_dir)
        self.input_size = input_size
        self.min_confidence = min_confidence

    async def __call__(self, source: str) -> FaceModel:
        path = await self.resolve(source)
        return await asyncio.to_thread(self._build, path)

    async def resolve(self, source: str) -> Path:
        if source.startswith(("http://", "https://")):
            target = self.cache_dir / Path(urlparse(source).path).name
            if not target.exists():
                await self._download(source, target)
        else:
            target = Path(source)
            if not target.exists():
                raise FileNotFoundError(f"Model file not found: {target}")

        if target.suffix == ".zip":
            target = await asyncio.to_thread(self._extract_detector, target)
        return target

    async def _download(self, url: str, target: Path) -> None:
        target.parent.mkdir(parents=True, exist_ok=True)
        partial = target.with_name(target.name + ".part")
        async with self.client.stream("GET", url, follow_redirects=True) as response:
            response.raise_for_status()
            with open(partial, "wb") as model_file:
                async for chunk in response.aiter_bytes():
                    model_file.write(chunk)
        partial.replace(target)
        logger.info(f"Downloaded {url} -> {target}")

    @staticmethod
    def _extract_detector(archive: Path) -> Path:
        with zipfile.ZipFile(archive) as bundle:
            names = [
                name
                for name in bundle.namelist()
                if Path(name).name.startswith("det_") and name.endswith(".onnx")
            ]
            if not names:
                raise ValueError(f"No face detector inside {archive.name}")
            target = archive.parent / Path(names[0]).name
            if not target.exists():
                with bundle.open(names[0]) as src, open(target, "wb") as dst:
                    shutil.copyfileobj(src, dst)
        return target

    def _build(self, path: Path) -> FaceModel:
        # Heavy imports, only paid once a source has resolved to a file
        import onnxruntime as ort
        from insightface.model_zoo import get_model

        providers = ["CPUExecutionProvider"]
        ctx_id = -1  # -1 = CPU
        if "CUDAExecutionProvider" in ort.get_available_providers():
            providers = ["CUDAExecutionProvider", "CPUExecutionProvider"]
            ctx_id = 0

        detector = get_model(str(path), providers=providers)
        if detector is None:
            raise ValueError(f"{path.name} is not a recognised face detector")
        detector.prepare(
            ctx_id=ctx_id,
            input_size=(self.input_size, self.input_size),
            det_thresh=self.min_confidence,
        )
        logger.info(f"Face detector built from {path.name} ({providers[0]})")
        return ScrfdFaceModel(detector, self.input_size)
