"""
donorsignal.models._registry
============================
In-process store of trained prediction models.

The registry is the only shared mutable state in the engine.  Writes
(registration and status transitions) are serialized by a re-entrant lock;
reads take a snapshot of the underlying dict and never block.  Models are
frozen dataclasses, so a status change swaps in a new object and a reader
holding the old one keeps a consistent view.
"""

from __future__ import annotations

import dataclasses
import logging
import threading
from collections import Counter
from typing import Dict, List, Optional

from donorsignal.enums import ModelStatus, PredictionType
from donorsignal.exceptions import ModelNotFoundError
from donorsignal.schemas import PredictionModel

logger = logging.getLogger(__name__)


class ModelRegistry:
    """Thread-safe registry of :class:`~donorsignal.schemas.PredictionModel`.

    One instance is created by the host application and handed to every
    component that needs it.

    Examples
    --------
    >>> registry = ModelRegistry()
    >>> registry.get("missing") is None
    True
    >>> registry.active_by_type("churn_risk")
    []
    """

    def __init__(self) -> None:
        self._models: Dict[str, PredictionModel] = {}
        self._registered_by_type: Counter = Counter()
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def register(self, model: PredictionModel, supersede: bool = False) -> PredictionModel:
        """Store ``model`` under a fresh version number.

        Parameters
        ----------
        model : PredictionModel
        supersede : bool, default=False
            Retire every other active model of the same type in the same
            critical section.

        Returns
        -------
        model : PredictionModel
            The stored instance, with ``version`` set to ``"{n}.0.0"`` where
            ``n`` counts registrations of that type.
        """
        with self._lock:
            self._registered_by_type[model.type] += 1
            stored = dataclasses.replace(
                model, version=f"{self._registered_by_type[model.type]}.0.0"
            )
            models = dict(self._models)
            if supersede:
                for other in models.values():
                    if other.type == model.type and other.status == ModelStatus.ACTIVE:
                        models[other.id] = dataclasses.replace(other, status=ModelStatus.RETIRED)
                        logger.info("Model %s superseded by %s", other.id, stored.id)
            models[stored.id] = stored
            self._models = models

        logger.info(
            "Registered model %s (%s, %s, v%s)",
            stored.id,
            stored.type.value,
            stored.algorithm.value,
            stored.version,
        )
        return stored

    def set_status(self, model_id: str, status) -> PredictionModel:
        """Transition a model to ``status``.

        Raises
        ------
        ModelNotFoundError
            If ``model_id`` is not registered.
        """
        status = ModelStatus(status)
        with self._lock:
            current = self._models.get(model_id)
            if current is None:
                raise ModelNotFoundError(model_id)
            if current.status == status:
                return current
            updated = dataclasses.replace(current, status=status)
            models = dict(self._models)
            models[model_id] = updated
            self._models = models

        logger.info("Model %s status %s -> %s", model_id, current.status.value, status.value)
        return updated

    def retire(self, model_id: str) -> PredictionModel:
        return self.set_status(model_id, ModelStatus.RETIRED)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, model_id: str) -> Optional[PredictionModel]:
        return self._models.get(model_id)

    def all(self) -> List[PredictionModel]:
        return list(self._models.values())

    def active(self) -> List[PredictionModel]:
        return [m for m in self._models.values() if m.status == ModelStatus.ACTIVE]

    def active_by_type(self, prediction_type) -> List[PredictionModel]:
        """Active models of ``prediction_type``, most recently trained first."""
        prediction_type = PredictionType(prediction_type)
        models = [
            m
            for m in self._models.values()
            if m.type == prediction_type and m.status == ModelStatus.ACTIVE
        ]
        return sorted(models, key=lambda m: m.last_trained_at, reverse=True)

    def __len__(self) -> int:
        return len(self._models)

    def __contains__(self, model_id) -> bool:
        return model_id in self._models
