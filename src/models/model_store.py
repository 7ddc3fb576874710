"""
Conditioning Model Store.

Persists the trained conditioning model as a single versioned JSON blob
under a named key in a SQLite key-value table. Loading validates the
blob field by field; anything malformed is logged and treated as absent.
"""

import json
import logging
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

import numpy as np

from src.features.conditioning_features import FEATURE_DIM
from src.models.conditioning_model import LogitModel, default_logit_model
from src.regime.regime_labeler import NUM_STATES

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1
DEFAULT_MODEL_KEY = "markov_logit_model"


class ModelValidationError(ValueError):
    """Persisted model blob failed validation."""


def _matrix(payload: Dict[str, Any], name: str, shape: tuple) -> np.ndarray:
    if name not in payload:
        raise ModelValidationError(f"missing field '{name}'")
    try:
        arr = np.asarray(payload[name], dtype=float)
    except (TypeError, ValueError) as e:
        raise ModelValidationError(f"field '{name}' is not numeric: {e}")
    if arr.shape != shape:
        raise ModelValidationError(f"field '{name}' has shape {arr.shape}, expected {shape}")
    if not np.all(np.isfinite(arr)):
        raise ModelValidationError(f"field '{name}' contains non-finite values")
    return arr


def _positive_scalar(payload: Dict[str, Any], name: str) -> float:
    value = payload.get(name)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ModelValidationError(f"field '{name}' must be a number")
    value = float(value)
    if not np.isfinite(value) or value <= 0:
        raise ModelValidationError(f"field '{name}' must be finite and > 0")
    return value


def _metrics(payload: Dict[str, Any]) -> Dict[str, float]:
    metrics = payload.get("metrics")
    if metrics is None:
        return {}
    if not isinstance(metrics, dict):
        raise ModelValidationError("field 'metrics' must be an object")
    result = {}
    for name, value in metrics.items():
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ModelValidationError(f"metric '{name}' must be a number")
        if not np.isfinite(value):
            raise ModelValidationError(f"metric '{name}' is not finite")
        result[str(name)] = float(value)
    return result


def model_from_payload(payload: Any) -> LogitModel:
    """
    Validate a decoded blob and build the model.

    Raises:
        ModelValidationError: On any malformed field
    """
    if not isinstance(payload, dict):
        raise ModelValidationError("blob is not an object")

    version = payload.get("schema_version")
    if version != SCHEMA_VERSION:
        raise ModelValidationError(f"unsupported schema_version {version!r}")

    weights = _matrix(payload, "weights", (NUM_STATES, FEATURE_DIM))
    bias = _matrix(payload, "bias", (NUM_STATES,))
    mean = _matrix(payload, "feature_mean", (FEATURE_DIM,))
    std = _matrix(payload, "feature_std", (FEATURE_DIM,))
    if np.any(std <= 0):
        raise ModelValidationError("field 'feature_std' must be > 0")
    temperature = _positive_scalar(payload, "temperature")

    n_samples = payload.get("n_samples", 0)
    if isinstance(n_samples, bool) or not isinstance(n_samples, int) or n_samples < 0:
        raise ModelValidationError("field 'n_samples' must be a non-negative integer")

    trained_at = None
    if payload.get("trained_at"):
        try:
            trained_at = datetime.fromisoformat(payload["trained_at"])
        except (TypeError, ValueError):
            raise ModelValidationError("field 'trained_at' is not an ISO timestamp")

    return LogitModel(
        weights=weights,
        bias=bias,
        temperature=temperature,
        feature_mean=mean,
        feature_std=std,
        n_samples=n_samples,
        trained_at=trained_at,
        metrics=_metrics(payload),
    )


def model_to_payload(model: LogitModel) -> Dict[str, Any]:
    payload = model.to_dict()
    payload["schema_version"] = SCHEMA_VERSION
    return payload


class ConditioningModelStore:
    """
    SQLite-backed persistence for the conditioning model.

    Usage:
        store = ConditioningModelStore("data/regime_store.db")

        store.save(result.model)
        model = store.load_or_default()
    """

    SCHEMA = """
    CREATE TABLE IF NOT EXISTS kv_store (
        key TEXT PRIMARY KEY,
        value TEXT NOT NULL,
        updated_at TEXT DEFAULT CURRENT_TIMESTAMP
    );
    """

    def __init__(self, db_path: str = "data/regime_store.db", key: str = DEFAULT_MODEL_KEY):
        """
        Initialize the store.

        Args:
            db_path: Path to SQLite database file
            key: Key the model blob is stored under
        """
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._key = key

        self._init_database()
        logger.debug(f"ConditioningModelStore using {self._db_path} (key={self._key})")

    @property
    def key(self) -> str:
        return self._key

    def _init_database(self) -> None:
        """Initialize database schema."""
        with sqlite3.connect(self._db_path) as conn:
            conn.executescript(self.SCHEMA)
            conn.commit()

    def _get_connection(self) -> sqlite3.Connection:
        """Get database connection."""
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _read_raw(self) -> Optional[str]:
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT value FROM kv_store WHERE key = ?", (self._key,)
            ).fetchone()
        return row["value"] if row is not None else None

    def write_raw(self, value: str) -> None:
        """Store an arbitrary string under the model key."""
        with self._get_connection() as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO kv_store (key, value, updated_at)
                VALUES (?, ?, ?)
                """,
                (self._key, value, datetime.utcnow().isoformat()),
            )
            conn.commit()

    def save(self, model: LogitModel) -> bool:
        """
        Persist a model.

        Args:
            model: Model to store

        Returns:
            True on success, False if the model is malformed or the write failed
        """
        if not model.is_well_formed():
            logger.warning("Refusing to save malformed conditioning model")
            return False
        try:
            self.write_raw(json.dumps(model_to_payload(model)))
        except (sqlite3.Error, TypeError, ValueError) as e:
            logger.error(f"Failed to save conditioning model: {e}")
            return False
        logger.info(f"Conditioning model saved under '{self._key}'")
        return True

    def load(self) -> Optional[LogitModel]:
        """
        Load the stored model.

        Returns:
            LogitModel if present and valid, None otherwise
        """
        try:
            raw = self._read_raw()
        except sqlite3.Error as e:
            logger.warning(f"Could not read conditioning model: {e}")
            return None
        if raw is None:
            return None

        try:
            model = model_from_payload(json.loads(raw))
        except json.JSONDecodeError as e:
            logger.warning(f"Stored conditioning model is not valid JSON: {e}")
            return None
        except ModelValidationError as e:
            logger.warning(f"Stored conditioning model failed validation: {e}")
            return None

        logger.info(f"Loaded conditioning model ({model.n_samples} samples)")
        return model

    def load_or_default(self) -> LogitModel:
        """Stored model, or the untrained default."""
        model = self.load()
        return model if model is not None else default_logit_model()

    def has_model(self) -> bool:
        """Check if a blob exists under the key (valid or not)."""
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT COUNT(*) as count FROM kv_store WHERE key = ?", (self._key,)
            ).fetchone()
            return row["count"] > 0

    def clear(self) -> None:
        """Remove the stored model."""
        with self._get_connection() as conn:
            conn.execute("DELETE FROM kv_store WHERE key = ?", (self._key,))
            conn.commit()
        logger.info(f"Conditioning model '{self._key}' cleared")

    def keys(self) -> List[str]:
        with self._get_connection() as conn:
            rows = conn.execute("SELECT key FROM kv_store ORDER BY key").fetchall()
        return [row["key"] for row in rows]
