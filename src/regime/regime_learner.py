"""
Regime Learner.

Unsupervised cross-check of the rule-based state labels:
- Clusters a standardized feature space with deterministic k-means
- Maps clusters to canonical states from centroid heuristics
- Reconciles learned and rule labels per row using distance confidence
- Removes isolated one-bar flips with a majority filter

The clustering is fully deterministic: farthest-point initialization and a
farthest-point reseed for clusters that empty out, so identical input
always yields identical labels.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from sklearn.preprocessing import StandardScaler

from config.settings import RegimeConfig
from src.features.observation import htf_bias
from .regime_labeler import MarketState, NUM_STATES

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FeatureDescriptor:
    """One dimension of the clustering feature space."""
    key: str
    column: str
    post: Optional[Callable[[float], float]] = None


def _rsi_centered(value: float) -> float:
    return (value - 50.0) / 50.0


FEATURE_DESCRIPTORS: List[FeatureDescriptor] = [
    FeatureDescriptor("ret1", "ret1"),
    FeatureDescriptor("ret4", "ret4"),
    FeatureDescriptor("ret12", "ret12"),
    FeatureDescriptor("ema_fast", "ema_trend_fast"),
    FeatureDescriptor("ema_slow", "ema_trend_slow"),
    FeatureDescriptor("ema_htf", "ema_trend_htf"),
    FeatureDescriptor("rsi", "rsi", _rsi_centered),
    FeatureDescriptor("atr_norm", "atr_norm"),
    FeatureDescriptor("vol14", "realized_vol14"),
    FeatureDescriptor("volume_norm", "volume_norm"),
]

_FEATURE_INDEX = {d.key: i for i, d in enumerate(FEATURE_DESCRIPTORS)}


@dataclass
class KMeansResult:
    """Output of a k-means run."""
    centroids: np.ndarray
    assignments: np.ndarray
    distances: np.ndarray
    iterations: int = 0


@dataclass
class ClusterProfile:
    """Heuristic description of one cluster."""
    idx: int
    count: int
    centroid: List[float]
    means: List[float]
    trend_score: float
    long_score: float
    reversal_score: float
    base_score: float
    rsi: float
    state: Optional[MarketState] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "idx": self.idx,
            "count": self.count,
            "centroid": self.centroid,
            "means": dict(zip([d.key for d in FEATURE_DESCRIPTORS], self.means)),
            "trend_score": self.trend_score,
            "long_score": self.long_score,
            "reversal_score": self.reversal_score,
            "base_score": self.base_score,
            "rsi": self.rsi,
            "state": self.state.name if self.state is not None else None,
        }


@dataclass
class RegimeInferenceResult:
    """Canonical states and the evidence behind them."""
    states: np.ndarray
    rule_states: np.ndarray
    learned_states: List[Optional[MarketState]]
    confidence: np.ndarray
    clusters: List[ClusterProfile] = field(default_factory=list)

    @property
    def agreement(self) -> float:
        """Fraction of clustered rows where learned and rule labels agree."""
        pairs = [
            (learned, rule)
            for learned, rule in zip(self.learned_states, self.rule_states)
            if learned is not None
        ]
        if not pairs:
            return 0.0
        return sum(1 for learned, rule in pairs if int(learned) == int(rule)) / len(pairs)


# === Feature space ===

def build_feature_rows(df: pd.DataFrame) -> Tuple[np.ndarray, np.ndarray]:
    """
    Build clustering feature vectors.

    Rows with any non-finite feature are dropped.

    Returns:
        Tuple of (row indices kept, feature matrix of shape (n_kept, dims))
    """
    dims = len(FEATURE_DESCRIPTORS)
    if df.empty:
        return np.zeros(0, dtype=int), np.zeros((0, dims))

    columns = []
    for descriptor in FEATURE_DESCRIPTORS:
        if descriptor.column in df.columns:
            values = pd.to_numeric(df[descriptor.column], errors="coerce").to_numpy(dtype=float)
        else:
            values = np.full(len(df), np.nan)
        if descriptor.post is not None:
            values = np.array([descriptor.post(v) for v in values])
        columns.append(values)

    matrix = np.column_stack(columns)
    keep = np.isfinite(matrix).all(axis=1)
    return np.flatnonzero(keep), matrix[keep]


def standardize(data: np.ndarray) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Standardize each column to zero mean and unit std.

    Constant columns keep a scale of 1.

    Returns:
        Tuple of (standardized data, means, stds)
    """
    if data.size == 0:
        return data.copy(), np.zeros(data.shape[1]), np.ones(data.shape[1])
    scaler = StandardScaler().fit(data)
    return scaler.transform(data), scaler.mean_, scaler.scale_


# === Clustering ===

def _squared_distances(data: np.ndarray, centroids: np.ndarray) -> np.ndarray:
    """Squared Euclidean distance of every point to every centroid."""
    diff = data[:, None, :] - centroids[None, :, :]
    return np.sum(diff * diff, axis=2)


def _farthest_point(data: np.ndarray, centroids: np.ndarray) -> int:
    """Index of the point maximizing its minimum distance to centroids (first wins ties)."""
    min_dist = _squared_distances(data, centroids).min(axis=1)
    return int(np.argmax(min_dist))


def init_centroids(data: np.ndarray, k: int) -> np.ndarray:
    """
    Farthest-point initialization.

    Seeds with the middle point, then repeatedly adds the point farthest
    from all chosen centroids.
    """
    if len(data) == 0 or k <= 0:
        return np.zeros((0, data.shape[1] if data.ndim == 2 else 0))
    centroids = [data[len(data) // 2].copy()]
    while len(centroids) < k:
        idx = _farthest_point(data, np.array(centroids))
        centroids.append(data[idx].copy())
    return np.array(centroids)


def kmeans(data: np.ndarray, k: int, max_iter: int = 60) -> KMeansResult:
    """
    Deterministic k-means.

    Args:
        data: Standardized points (n, dims)
        k: Number of clusters (capped at n)
        max_iter: Iteration cap

    Returns:
        KMeansResult with final centroids, assignments and distances
    """
    n = len(data)
    if n == 0 or k <= 0:
        return KMeansResult(
            centroids=np.zeros((0, data.shape[1] if data.ndim == 2 else 0)),
            assignments=np.zeros(0, dtype=int),
            distances=np.zeros(0),
        )

    k = min(k, n)
    centroids = init_centroids(data, k)
    assignments = np.full(n, -1, dtype=int)
    distances = np.zeros(n)
    iteration = 0

    for iteration in range(max_iter):
        sq = _squared_distances(data, centroids)
        best = np.argmin(sq, axis=1)
        moved = bool(np.any(best != assignments))
        assignments = best
        distances = np.sqrt(np.maximum(sq[np.arange(n), best], 0.0))

        if not moved and iteration > 1:
            break

        reseeded: List[int] = []
        for c in range(k):
            members = assignments == c
            if members.any():
                centroids[c] = data[members].mean(axis=0)
                continue
            # Empty cluster: take the point worst served by its own centroid
            worst = distances.copy()
            if reseeded:
                worst[reseeded] = -np.inf
            idx = int(np.argmax(worst))
            reseeded.append(idx)
            centroids[c] = data[idx].copy()
            logger.debug(f"Reseeded empty cluster {c} with point {idx}")

    return KMeansResult(
        centroids=centroids,
        assignments=assignments,
        distances=distances,
        iterations=iteration + 1,
    )


def distance_confidence(distances: np.ndarray, decay: float = 3.0) -> np.ndarray:
    """
    Map distances to confidence in [0, 1].

    The nearest point scores 1, the farthest exp(-decay). Equal distances
    all score 1.
    """
    if len(distances) == 0:
        return np.zeros(0)
    finite = np.where(np.isfinite(distances), distances, 0.0)
    d_min, d_max = finite.min(), finite.max()
    if d_max == d_min:
        conf = np.ones(len(distances))
    else:
        scaled = (finite - d_min) / (d_max - d_min)
        conf = np.clip(np.exp(-scaled * decay), 0.0, 1.0)
    return np.where(np.isfinite(distances), conf, 0.0)


# === Cluster profiles ===

def compute_cluster_profiles(
    original: np.ndarray,
    assignments: np.ndarray,
    centroids: np.ndarray,
) -> List[ClusterProfile]:
    """Score every cluster from the original-scale means of its members."""
    profiles = []
    dims = original.shape[1]
    for c in range(len(centroids)):
        members = assignments == c
        count = int(members.sum())
        means = original[members].mean(axis=0) if count else np.zeros(dims)

        def m(key: str) -> float:
            return float(means[_FEATURE_INDEX[key]])

        trend = m("ret4") + 0.5 * m("ret1") + m("ema_fast") + 0.5 * m("ema_slow")
        long_bias = m("ema_slow") + 0.5 * m("ema_htf") + m("ret12")
        reversal = m("ema_fast") - m("ema_slow") + m("ret4")
        base = -abs(m("ret1")) - abs(m("ret4")) - abs(m("ema_fast"))

        profiles.append(ClusterProfile(
            idx=c,
            count=count,
            centroid=[float(v) for v in centroids[c]],
            means=[float(v) for v in means],
            trend_score=trend,
            long_score=long_bias,
            reversal_score=reversal,
            base_score=base,
            rsi=m("rsi") * 50.0 + 50.0,
        ))
    return profiles


def assign_states_from_clusters(
    profiles: List[ClusterProfile],
    fallback: Optional[MarketState] = None,
) -> Dict[int, MarketState]:
    """
    Map clusters to canonical states.

    Highest trend score -> UP, lowest -> DOWN, highest remaining reversal
    score -> REVERSAL, the rest -> BASE. A lone cluster takes `fallback`.
    """
    mapping: Dict[int, MarketState] = {}
    if not profiles:
        return mapping

    if len(profiles) == 1:
        mapping[profiles[0].idx] = fallback if fallback is not None else MarketState.BASE
        profiles[0].state = mapping[profiles[0].idx]
        return mapping

    by_trend = sorted(profiles, key=lambda p: p.trend_score)
    mapping[by_trend[0].idx] = MarketState.DOWN
    mapping[by_trend[-1].idx] = MarketState.UP

    remaining = [p for p in profiles if p.idx not in mapping]
    if remaining:
        reversal = max(remaining, key=lambda p: p.reversal_score)
        mapping[reversal.idx] = MarketState.REVERSAL

    for profile in profiles:
        mapping.setdefault(profile.idx, MarketState.BASE)
        profile.state = mapping[profile.idx]

    return mapping


# === Reconciliation ===

def reconcile_state(
    rule: MarketState,
    learned: Optional[MarketState],
    confidence: float,
    gate: float,
    htf: Optional[str] = None,
) -> MarketState:
    """
    Decide between the rule and learned label for one row.

    Args:
        rule: Rule-based label
        learned: Cluster label (None if the row was not clustered)
        confidence: Cluster confidence in [0, 1]
        gate: Confidence gate
        htf: Higher-timeframe bias ("U", "D" or None)

    Returns:
        Reconciled state
    """
    if learned is None:
        return rule
    if learned == rule:
        return learned
    if confidence >= gate + 0.2:
        return learned
    if confidence <= gate * 0.5:
        return rule
    if htf == "U" and learned == MarketState.DOWN:
        return MarketState.REVERSAL if confidence > gate else rule
    if htf == "D" and learned == MarketState.UP:
        return MarketState.BASE if confidence > gate else rule
    return learned if confidence >= gate else rule


def smooth_states(states: Sequence[int], passes: int) -> np.ndarray:
    """Overwrite isolated one-bar flips whose neighbours agree."""
    current = np.asarray(states, dtype=int).copy()
    for _ in range(max(0, passes)):
        if len(current) < 3:
            break
        prev, mid, nxt = current[:-2], current[1:-1], current[2:]
        flip = (prev == nxt) & (mid != prev)
        if not flip.any():
            break
        updated = current.copy()
        updated[1:-1][flip] = prev[flip]
        current = updated
    return current


class RegimeLearner:
    """
    Learns canonical states by clustering and reconciling with rule labels.

    Usage:
        learner = RegimeLearner(RegimeConfig(confidence_gate=0.45))
        result = learner.infer(rows_df, rule_states)
        states = result.states
    """

    def __init__(self, config: Optional[RegimeConfig] = None):
        """
        Initialize the learner.

        Args:
            config: Regime reconciliation configuration
        """
        self.config = config or RegimeConfig()

    def infer(self, df: pd.DataFrame, rule_states: Sequence[int]) -> RegimeInferenceResult:
        """
        Infer canonical states for every row.

        Args:
            df: Observation rows with derived regime fields
            rule_states: Rule labels aligned with df

        Returns:
            RegimeInferenceResult
        """
        rules = np.asarray(rule_states, dtype=int)
        n = len(rules)
        row_idx, original = build_feature_rows(df.iloc[:n]) if n else (np.zeros(0, dtype=int), None)

        if n == 0 or len(row_idx) == 0:
            logger.debug("No clusterable rows, using rule states")
            return RegimeInferenceResult(
                states=rules.copy(),
                rule_states=rules,
                learned_states=[None] * n,
                confidence=np.zeros(n),
                clusters=[],
            )

        standardized, _, _ = standardize(original)
        distinct = len(np.unique(rules))
        k = min(NUM_STATES, distinct or NUM_STATES)
        result = kmeans(standardized, k, max_iter=self.config.max_iterations)
        confidence = distance_confidence(result.distances, self.config.confidence_decay)

        profiles = compute_cluster_profiles(original, result.assignments, result.centroids)
        majority = MarketState(int(np.bincount(rules[row_idx], minlength=NUM_STATES).argmax()))
        mapping = assign_states_from_clusters(profiles, fallback=majority)

        learned: List[Optional[MarketState]] = [None] * n
        learned_conf = np.zeros(n)
        for point, cluster in enumerate(result.assignments):
            row = int(row_idx[point])
            learned[row] = mapping.get(int(cluster))
            learned_conf[row] = confidence[point]

        htf = df["htf_state"].tolist()[:n] if "htf_state" in df.columns else [None] * n
        gate = self.config.confidence_gate
        combined = np.array([
            int(reconcile_state(
                MarketState(int(rules[i])),
                learned[i],
                float(learned_conf[i]),
                gate,
                htf_bias(htf[i]),
            ))
            for i in range(n)
        ], dtype=int)

        smoothed = smooth_states(combined, self.config.smooth_passes)

        logger.debug(
            f"Regime learner: k={len(profiles)}, clustered={len(row_idx)}/{n}, "
            f"iterations={result.iterations}"
        )

        return RegimeInferenceResult(
            states=smoothed,
            rule_states=rules,
            learned_states=learned,
            confidence=learned_conf,
            clusters=profiles,
        )
