"""
File-system model registry.

Layout::

    {models_dir}/
        {timeframe}/
            active.json                 ← {"version": "..."}
            {version}/
                manifest.json           ← ModelManifest
                model/                  ← artifacts written by save_model()

One version per timeframe is active at a time; the forecast service always
loads the active one. Loaded models are read-only and may be shared across
concurrent forecasts.
"""

import json
import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path

from forecasting.entities import Timeframe
from forecasting.errors import ModelNotFoundError
from forecasting.models.base import BasePredictionModel, ModelFamily
from forecasting.models.ensemble import EnsemblePredictor
from forecasting.models.families import create_model
from forecasting.ports import ModelLoader

logger = logging.getLogger(__name__)

_MANIFEST = "manifest.json"
_ACTIVE = "active.json"
_ARTIFACTS = "model"


@dataclass
class ModelManifest:
    """Metadata stored next to every persisted model version."""

    version: str
    timeframe: str
    family: str
    model_name: str
    horizon: int
    feature_names: list[str]
    trained_at: str
    training_start: str | None = None
    training_end: str | None = None
    num_symbols: int = 0
    top_symbols: list[str] = field(default_factory=list)
    metrics: dict[str, float] = field(default_factory=dict)

    @property
    def feature_count(self) -> int:
        return len(self.feature_names)

    @property
    def accuracy_avg(self) -> float:
        """Directional accuracy on the validation split."""
        return float(self.metrics.get("directional_accuracy", 0.0))

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "ModelManifest":
        return cls(**data)


class ModelRegistry(ModelLoader):
    """Persist and load trained models, one directory per version."""

    def __init__(self, models_dir: Path | str | None = None) -> None:
        if models_dir is None:
            from forecasting.config import config
            models_dir = config.paths.models_dir
        self._root = Path(models_dir)

    @property
    def root(self) -> Path:
        return self._root

    def save(
        self,
        model: BasePredictionModel,
        timeframe: Timeframe | str,
        *,
        training_start: str | None = None,
        training_end: str | None = None,
        symbols: list[str] | None = None,
        activate: bool = True,
        version: str | None = None,
    ) -> ModelManifest:
        """Persist a fitted model and write its manifest."""
        tf = Timeframe(timeframe)
        now = datetime.now(timezone.utc)
        version = version or self._next_version(tf, now)
        version_dir = self._root / tf.value / version

        model.timeframe = tf
        model.save_model(version_dir / _ARTIFACTS)

        symbols = list(symbols or [])
        manifest = ModelManifest(
            version=version,
            timeframe=tf.value,
            family=model.family.value,
            model_name=model.name,
            horizon=model.horizon,
            feature_names=model.feature_names,
            trained_at=now.isoformat(),
            training_start=training_start,
            training_end=training_end,
            num_symbols=len(symbols),
            top_symbols=symbols[:20],
            metrics=model.get_metrics().to_dict(),
        )
        with open(version_dir / _MANIFEST, "w") as f:
            json.dump(manifest.to_dict(), f, indent=2)

        logger.info(
            "Saved %s model %s for %s (%d features)",
            model.name, version, tf.value, manifest.feature_count,
        )
        if activate:
            self.activate(tf, version)
        return manifest

    def load(
        self, timeframe: Timeframe | str, version: str | None = None
    ) -> BasePredictionModel:
        """Load the active (or a specific) model version for a timeframe."""
        tf = Timeframe(timeframe)
        version = version or self.active_version(tf)
        if version is None:
            raise ModelNotFoundError(tf.value)

        manifest = self.get_manifest(tf, version)
        family = ModelFamily(manifest.family)
        if family == ModelFamily.ENSEMBLE:
            model: BasePredictionModel = EnsemblePredictor()
        else:
            model = create_model(family, horizon=manifest.horizon)
        model.load_model(self._root / tf.value / version / _ARTIFACTS)
        model.timeframe = tf

        logger.info("Loaded %s model %s for %s", model.name, version, tf.value)
        return model

    def get_manifest(self, timeframe: Timeframe | str, version: str) -> ModelManifest:
        tf = Timeframe(timeframe)
        path = self._root / tf.value / version / _MANIFEST
        if not path.exists():
            raise ModelNotFoundError(tf.value, version)
        with open(path, "r") as f:
            return ModelManifest.from_dict(json.load(f))

    def list_versions(self, timeframe: Timeframe | str) -> list[ModelManifest]:
        """All stored versions for a timeframe, oldest first."""
        tf = Timeframe(timeframe)
        tf_dir = self._root / tf.value
        if not tf_dir.is_dir():
            return []
        manifests = [
            self.get_manifest(tf, d.name)
            for d in sorted(tf_dir.iterdir())
            if d.is_dir() and (d / _MANIFEST).exists()
        ]
        return sorted(manifests, key=lambda m: (m.trained_at, m.version))

    def activate(self, timeframe: Timeframe | str, version: str) -> None:
        """Mark ``version`` as the active model for its timeframe."""
        tf = Timeframe(timeframe)
        if not (self._root / tf.value / version / _MANIFEST).exists():
            raise ModelNotFoundError(tf.value, version)
        with open(self._root / tf.value / _ACTIVE, "w") as f:
            json.dump({"version": version}, f)
        logger.info("Activated model %s for %s", version, tf.value)

    def active_version(self, timeframe: Timeframe | str) -> str | None:
        tf = Timeframe(timeframe)
        path = self._root / tf.value / _ACTIVE
        if not path.exists():
            return None
        with open(path, "r") as f:
            return json.load(f).get("version")

    def _next_version(self, tf: Timeframe, now: datetime) -> str:
        base = now.strftime("v%Y%m%d%H%M%S")
        version, n = base, 1
        while (self._root / tf.value / version).exists():
            n += 1
            version = f"{base}_{n}"
        return version
