"""
Learning Insights Analytics

Canonical student record model, rule-based tagging and the filter/aggregation
engine that feeds the dashboard.

Every view here is a pure function of (dataset, filter): nothing is cached or
mutated, so re-running a projection always gives identical results.
"""

import pandas as pd
import numpy as np
from enum import Enum
from typing import Dict, List, Any, Optional, Sequence, Tuple
from dataclasses import dataclass, asdict, field, fields

from config import (
    ALL,
    FAILING_SCORE,
    HIGH_USAGE_MINUTES,
    LOW_USAGE_MINUTES,
    HIGH_GAIN_POINTS,
    SCATTER_POINT_LIMIT,
    TASK_TIER_BOUNDS,
    TASK_TIER_LABELS,
    CORRELATION_FACTORS,
    TAG_PRIORITY,
)


class Tag(str, Enum):
    """Behavioral risk/opportunity category for one student."""
    INEFFECTIVE_LEARNING = "IneffectiveLearning"
    HIGH_POTENTIAL = "HighPotential"
    NEEDS_ATTENTION = "NeedsAttention"
    STABLE = "Stable"


class Provenance(str, Enum):
    """Whether a dataset is illustrative sample data or a user upload."""
    SAMPLE = "Sample"
    UPLOADED = "Uploaded"


class EmptyDatasetError(ValueError):
    """Raised when no input row survives field resolution."""

    def __init__(self, dropped: int = 0):
        self.dropped = dropped
        super().__init__(
            f"Input produced zero usable records ({dropped} rows dropped: "
            f"every row is missing a pre-score or post-score)"
        )


# ==================== CLASSIFICATION ====================

def classify(pre_score: float, post_score: float, usage_minutes: float) -> Tag:
    """
    Tag a student from their scores and time on task.

    Rules are evaluated in order, first match wins:
    1. post < 60                              -> NeedsAttention
    2. usage > 60 min and improvement <= 0    -> IneffectiveLearning
    3. usage < 30 min and improvement >= 10   -> HighPotential
    4. otherwise                              -> Stable
    """
    improvement = post_score - pre_score

    if post_score < FAILING_SCORE:
        return Tag.NEEDS_ATTENTION
    if usage_minutes > HIGH_USAGE_MINUTES and improvement <= 0:
        return Tag.INEFFECTIVE_LEARNING
    if usage_minutes < LOW_USAGE_MINUTES and improvement >= HIGH_GAIN_POINTS:
        return Tag.HIGH_POTENTIAL
    return Tag.STABLE


# ==================== DATA MODEL ====================

@dataclass(frozen=True)
class StudentRecord:
    """One normalized student. improvement and tag are derived on construction."""
    school: str
    grade: str
    subject: str
    pre_score: float
    post_score: float
    usage_minutes: int
    tasks_completed: int
    practice_quiz_count: int
    display_name: str
    improvement: float = field(init=False)
    tag: Tag = field(init=False)

    def __post_init__(self):
        object.__setattr__(self, 'improvement', self.post_score - self.pre_score)
        object.__setattr__(self, 'tag', classify(self.pre_score, self.post_score, self.usage_minutes))


@dataclass(frozen=True)
class Dataset:
    """Ordered, immutable snapshot of student records."""
    records: Tuple[StudentRecord, ...]
    provenance: Provenance
    dropped_rows: int = 0

    def __len__(self) -> int:
        return len(self.records)


@dataclass(frozen=True)
class FilterState:
    """Active school/subject selection. "All" disables that filter."""
    school: str = ALL
    subject: str = ALL

    def matches(self, record: StudentRecord) -> bool:
        return (
            (self.school == ALL or record.school == self.school)
            and (self.subject == ALL or record.subject == self.subject)
        )


@dataclass(frozen=True)
class KPI:
    total_students: int
    avg_improvement: float
    high_potential_count: int
    ineffective_learning_count: int
    needs_attention_count: int
    stable_count: int


@dataclass(frozen=True)
class BarPoint:
    school: str
    avg_improvement: float


@dataclass(frozen=True)
class ScatterPoint:
    x: int            # usage minutes
    y: float          # improvement
    label: str
    school: str
    tag: Tag


@dataclass(frozen=True)
class TierPoint:
    tier: str
    avg_improvement: float
    count: int


@dataclass(frozen=True)
class DerivedView:
    filtered_records: Tuple[StudentRecord, ...]
    kpi: KPI
    bar_series: Tuple[BarPoint, ...]
    scatter_series: Tuple[ScatterPoint, ...]


# ==================== HELPERS ====================

def _safe_mean(values) -> float:
    """Mean of values, 0.0 when there are none."""
    if len(values) == 0:
        return 0.0
    return float(np.mean(values))


def records_to_frame(records: Sequence[StudentRecord]) -> pd.DataFrame:
    """Flatten records into a DataFrame (tags as plain strings)."""
    columns = [f.name for f in fields(StudentRecord)]
    if not records:
        return pd.DataFrame(columns=columns)

    df = pd.DataFrame([asdict(r) for r in records], columns=columns)
    df['tag'] = df['tag'].map(lambda t: Tag(t).value)
    return df


# ==================== PROJECTION ====================

def project(dataset: Dataset, filter_state: FilterState = FilterState()) -> DerivedView:
    """
    Compute the dashboard view for a dataset under the active filter.

    Returns filtered records (input order), KPIs, one bar per school present
    in the filtered records (first-appearance order) and up to 100 scatter
    points. A filter that matches nothing gives an empty view with zero KPIs.
    """
    filtered = tuple(r for r in dataset.records if filter_state.matches(r))

    tag_counts = {tag: 0 for tag in Tag}
    for record in filtered:
        tag_counts[record.tag] += 1

    kpi = KPI(
        total_students=len(filtered),
        avg_improvement=_safe_mean([r.improvement for r in filtered]),
        high_potential_count=tag_counts[Tag.HIGH_POTENTIAL],
        ineffective_learning_count=tag_counts[Tag.INEFFECTIVE_LEARNING],
        needs_attention_count=tag_counts[Tag.NEEDS_ATTENTION],
        stable_count=tag_counts[Tag.STABLE],
    )

    bar_series = []
    if filtered:
        df = records_to_frame(filtered)
        for school, group in df.groupby('school', sort=False):
            bar_series.append(BarPoint(
                school=school,
                avg_improvement=_safe_mean(group['improvement'].to_numpy(dtype=float))
            ))

    scatter_series = tuple(
        ScatterPoint(
            x=r.usage_minutes,
            y=r.improvement,
            label=r.display_name,
            school=r.school,
            tag=r.tag
        )
        for r in filtered[:SCATTER_POINT_LIMIT]
    )

    return DerivedView(
        filtered_records=filtered,
        kpi=kpi,
        bar_series=tuple(bar_series),
        scatter_series=scatter_series
    )


def filter_options(dataset: Dataset) -> Tuple[List[str], List[str]]:
    """Selectable schools and subjects, each prefixed with "All"."""
    schools = list(dict.fromkeys(r.school for r in dataset.records))
    subjects = list(dict.fromkeys(r.subject for r in dataset.records))
    return [ALL] + schools, [ALL] + subjects


# ==================== SUPPLEMENTARY ANALYSIS ====================

def correlation_matrix(records: Sequence[StudentRecord]) -> pd.DataFrame:
    """
    Pearson correlation between the learning factors.

    Coefficients that are undefined (constant column, fewer than two records)
    are reported as 0.0; the diagonal is always 1.0.
    """
    attrs = [attr for attr, _ in CORRELATION_FACTORS]
    labels = [label for _, label in CORRELATION_FACTORS]

    if len(records) < 2:
        matrix = pd.DataFrame(np.zeros((len(attrs), len(attrs))), index=labels, columns=labels)
    else:
        df = records_to_frame(records)[attrs].astype(float)
        matrix = df.corr().fillna(0.0)
        matrix.index = labels
        matrix.columns = labels

    values = matrix.to_numpy(copy=True)
    np.fill_diagonal(values, 1.0)
    return pd.DataFrame(values, index=labels, columns=labels)


def task_completion_tiers(records: Sequence[StudentRecord]) -> List[TierPoint]:
    """Average improvement for low/mid/high task completion, always three tiers."""
    low_bound, high_bound = TASK_TIER_BOUNDS
    buckets: Dict[str, List[float]] = {label: [] for label in TASK_TIER_LABELS}

    for r in records:
        if r.tasks_completed < low_bound:
            buckets[TASK_TIER_LABELS[0]].append(r.improvement)
        elif r.tasks_completed < high_bound:
            buckets[TASK_TIER_LABELS[1]].append(r.improvement)
        else:
            buckets[TASK_TIER_LABELS[2]].append(r.improvement)

    return [
        TierPoint(tier=label, avg_improvement=_safe_mean(values), count=len(values))
        for label, values in buckets.items()
    ]


def priority_list(records: Sequence[StudentRecord], limit: Optional[int] = None) -> List[StudentRecord]:
    """
    Students ordered for follow-up: NeedsAttention first, then
    IneffectiveLearning, HighPotential, Stable; lowest post score first
    within a tag.
    """
    ordered = sorted(
        records,
        key=lambda r: (TAG_PRIORITY.index(r.tag.value), r.post_score)
    )
    if limit is not None:
        return ordered[:limit]
    return ordered


def view_to_dict(view: DerivedView) -> Dict[str, Any]:
    """JSON-safe representation of a derived view."""
    data = asdict(view)
    for record in data['filtered_records']:
        record['tag'] = Tag(record['tag']).value
    for point in data['scatter_series']:
        point['tag'] = Tag(point['tag']).value
    return data
