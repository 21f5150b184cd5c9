"""Affinity model training module.

This module builds and fits the per-tenant purchase-affinity pipeline: the
three integer-coded features (user, product, category) are one-hot encoded as
separate named feature groups and fed to a factorization machine classifier
that learns pairwise interactions between them. It also handles turning a
fitted pipeline into a storable blob and back.
"""

import io
import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

import joblib
import numpy as np
import pandas as pd
from sklearn.compose import ColumnTransformer
from sklearn.pipeline import Pipeline
from sklearn.preprocessing import OneHotEncoder

from tenantrec.config import Settings
from tenantrec.exceptions import ModelLoadError, TrainingError
from tenantrec.recommender.data_loader import (
    CATEGORY_COL,
    FEATURE_COLUMNS,
    LABEL_COL,
    PRODUCT_COL,
    USER_COL,
)
from tenantrec.recommender.fm import FactorizationMachineClassifier

# Configure module logger
logger = logging.getLogger(__name__)

# Model configuration constants
DEFAULT_N_FACTORS = 8
DEFAULT_N_EPOCHS = 200
DEFAULT_LEARNING_RATE = 0.1
DEFAULT_REG = 0.001
DEFAULT_RANDOM_STATE = 42

# Named feature groups fed to the classifier
USER_FEATURES = "user"
PRODUCT_FEATURES = "product"
CATEGORY_FEATURES = "category"

PredictionFunction = Callable[[pd.DataFrame], np.ndarray]


@dataclass(frozen=True)
class TrainerConfig:
    """Hyper-parameters for the affinity model."""

    n_factors: int = DEFAULT_N_FACTORS
    n_epochs: int = DEFAULT_N_EPOCHS
    learning_rate: float = DEFAULT_LEARNING_RATE
    reg: float = DEFAULT_REG
    random_state: int = DEFAULT_RANDOM_STATE

    @classmethod
    def from_settings(cls, settings: Settings) -> "TrainerConfig":
        return cls(
            n_factors=settings.fm_factors,
            n_epochs=settings.fm_epochs,
            learning_rate=settings.fm_learning_rate,
            reg=settings.fm_reg,
            random_state=settings.random_state,
        )


def build_pipeline(config: Optional[TrainerConfig] = None) -> Pipeline:
    """Create the unfitted encoding + classification pipeline.

    Args:
        config: Hyper-parameters. Defaults to :class:`TrainerConfig()`.

    Returns:
        Pipeline with a ``features`` ColumnTransformer (one one-hot group per
        feature) followed by a ``classifier`` factorization machine.
    """
    config = config or TrainerConfig()

    features = ColumnTransformer(
        transformers=[
            (USER_FEATURES, OneHotEncoder(handle_unknown="ignore"), [USER_COL]),
            (PRODUCT_FEATURES, OneHotEncoder(handle_unknown="ignore"), [PRODUCT_COL]),
            (CATEGORY_FEATURES, OneHotEncoder(handle_unknown="ignore"), [CATEGORY_COL]),
        ],
        sparse_threshold=1.0,
    )

    classifier = FactorizationMachineClassifier(
        n_factors=config.n_factors,
        n_epochs=config.n_epochs,
        learning_rate=config.learning_rate,
        reg=config.reg,
        random_state=config.random_state,
    )

    return Pipeline([("features", features), ("classifier", classifier)])


def train_model(
    dataset: Optional[pd.DataFrame],
    config: Optional[TrainerConfig] = None,
) -> Pipeline:
    """Fit the affinity pipeline on a labelled training set.

    Callers are expected to check for cold start before calling; an empty
    dataset here is a programming error.

    Args:
        dataset: DataFrame with user_id, product_id, category_id and label
            columns, as produced by ``load_training_data``.
        config: Hyper-parameters for the classifier.

    Returns:
        The fitted pipeline.

    Raises:
        TrainingError: If the dataset is None, has zero rows, lacks required
            columns, or fitting fails.
    """
    if dataset is None:
        raise TrainingError("Training data cannot be None.")
    if len(dataset) == 0:
        raise TrainingError("Cannot train model with empty training data.")

    missing = set(FEATURE_COLUMNS + [LABEL_COL]) - set(dataset.columns)
    if missing:
        raise TrainingError(f"Training data missing required columns: {sorted(missing)}")

    config = config or TrainerConfig()
    pipeline = build_pipeline(config)

    logger.info(
        "Training affinity model",
        extra={
            "num_rows": len(dataset),
            "n_factors": config.n_factors,
            "n_epochs": config.n_epochs,
            "random_state": config.random_state,
        },
    )

    start_time = time.time()
    try:
        pipeline.fit(dataset[FEATURE_COLUMNS], dataset[LABEL_COL].astype(bool))
    except Exception as e:
        logger.error(f"Model fit failed: {e}", exc_info=True)
        raise TrainingError(f"Model fit failed: {e}", error=e) from e

    loss_curve = getattr(pipeline.named_steps["classifier"], "loss_curve_", None)
    logger.info(
        "Model training completed",
        extra={
            "train_time_ms": round((time.time() - start_time) * 1000, 2),
            "final_loss": loss_curve[-1] if loss_curve else None,
        },
    )
    return pipeline


def make_prediction_function(model: Pipeline) -> PredictionFunction:
    """Wrap a fitted pipeline as a batch scoring function.

    The returned callable takes a DataFrame with the three feature columns
    and returns one raw affinity score per row.
    """

    def predict(candidates: pd.DataFrame) -> np.ndarray:
        if len(candidates) == 0:
            return np.empty(0, dtype=np.float64)
        return np.asarray(model.decision_function(candidates[FEATURE_COLUMNS]))

    return predict


def serialize_model(model: Pipeline) -> bytes:
    """Serialize a fitted pipeline to bytes with joblib."""
    buffer = io.BytesIO()
    joblib.dump(model, buffer)
    return buffer.getvalue()


def deserialize_model(blob: bytes, tenant_id=None) -> Pipeline:
    """Load a pipeline previously produced by :func:`serialize_model`.

    Raises:
        ModelLoadError: If the blob is corrupt or is not a fitted pipeline.
    """
    try:
        model = joblib.load(io.BytesIO(blob))
    except Exception as e:
        raise ModelLoadError(tenant_id, e) from e

    if not isinstance(model, Pipeline) or "classifier" not in model.named_steps:
        raise ModelLoadError(
            tenant_id, TypeError(f"Unexpected model type: {type(model).__name__}")
        )
    return model
