#!/usr/bin/env python3
"""
Premium Collection KPI Engine

This module derives every metric the collections dashboard needs from flat
premium-collection records (one row per branch/product/month): portfolio
totals, collection rates, prediction gaps, risk tiers, region -> branch ->
product drill-down trees, heat-map matrices and short-horizon forecasts.

Source data is generated synthetically in-process from a seeded numpy
Generator, so every run with the same seed produces the same dataset.

Usage:
    python collection_engine.py --seed 42
    python collection_engine.py --region Mumbai --channel SBI --horizon 3 --verbose

Version: 1.0.0
"""

import argparse
import logging
import sys
from dataclasses import astuple, dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd
from dateutil.relativedelta import relativedelta

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


# =============================================================================
# SECTION 1: CONFIGURATION
# =============================================================================

class Config:
    """Configuration parameters for the collection KPI engine."""

    # Synthetic portfolio shape
    BRANCH_COUNT: int = 58
    BRANCHES_PER_REGION: int = 19  # Last region absorbs the remainder
    REGIONS: List[str] = ['Chennai', 'Mumbai', 'Delhi']
    CHANNELS: List[str] = ['SBI', 'RETAIL']  # Alternates by branch index
    PRODUCTS: List[str] = ['ULIP-A', 'ULIP-B', 'Term-A', 'Term-B', 'Endowment-A', 'Endowment-B']
    MONTHS: List[str] = ['Feb25', 'Mar25', 'Apr25', 'May25', 'Jun25', 'Jul25']
    CURRENT_PERIOD: str = 'Jul25'  # Not yet closed - no actual collections
    PERIOD_FORMAT: str = '%b%y'  # 'Jul25' -> July 2025
    DEFAULT_SEED: int = 42

    # Amount and rate draws
    DUE_AMOUNT_RANGE: Tuple[float, float] = (10000.0, 60000.0)
    BASE_COLLECTION_RATE: float = 0.92
    COLLECTION_RATE_SPREAD: float = 0.08  # Base rate drawn from 92-100%
    PREDICTION_ACCURACY_FLOOR: float = 0.95
    PREDICTION_ACCURACY_SPREAD: float = 0.10  # Prediction drawn at 95-105% of expected

    # Additive collection rate adjustments
    REGION_RATE_ADJUSTMENT: Dict[str, float] = {
        'Mumbai': 0.02,
        'Delhi': -0.01,
    }
    CHANNEL_RATE_ADJUSTMENT: Dict[str, float] = {
        'SBI': 0.01,
    }
    # Keyed by product family (the part before the '-')
    PRODUCT_RATE_ADJUSTMENT: Dict[str, float] = {
        'ULIP': 0.015,
        'Term': 0.02,
        'Endowment': -0.005,
    }

    # Risk tiers on current-period gap percentage
    HIGH_RISK_GAP_PCT: float = 15.0  # gap% > 15 -> High
    MEDIUM_RISK_GAP_PCT: float = 5.0  # 5 < gap% <= 15 -> Medium, else Low

    # Trend and forecast
    TREND_WINDOW: int = 3
    BASE_CONFIDENCE: float = 95.0
    CONFIDENCE_DECAY: float = 5.0  # Confidence points lost per forecast step
    DEFAULT_HORIZON: int = 3

    # Prediction variance tolerance (absolute %)
    VARIANCE_TOLERANCE_PCT: float = 5.0

    # Dimensions and hierarchy
    DIMENSIONS: List[str] = ['branch', 'region', 'channel', 'product', 'due_month']
    DIMENSION_ALIASES: Dict[str, str] = {'month': 'due_month'}
    DRILL_LEVELS: List[str] = ['region', 'branch', 'product']
    RANKING_METRICS: List[str] = ['collection_rate', 'portfolio', 'current_gap', 'gap_percent']
    HEAT_METRICS: List[str] = ['collection_rate', 'portfolio', 'gap_percent']


RECORD_COLUMNS: List[str] = [
    'branch', 'region', 'channel', 'product', 'due_month',
    'due_amount', 'actual_collection', 'predicted_collection',
]
MONETARY_COLUMNS: List[str] = ['due_amount', 'actual_collection', 'predicted_collection']


# =============================================================================
# SECTION 2: ERRORS AND DATA MODEL
# =============================================================================

class CollectionEngineError(Exception):
    """Base class for collection engine errors."""


class EmptyDatasetError(CollectionEngineError):
    """Raised when a record store is built from zero records."""


class InvalidPeriodToken(CollectionEngineError):
    """A query referenced a period the data cannot answer for."""


class UnresolvedDrillPath(CollectionEngineError):
    """A breadcrumb segment no longer resolves against the drill tree."""


@dataclass(frozen=True)
class TransactionRecord:
    """One branch x product x month premium-collection cell."""
    branch: str
    region: str
    channel: str
    product: str
    due_month: str
    due_amount: float
    actual_collection: float
    predicted_collection: float


class PeriodScope(Enum):
    """Which records an aggregation admits."""
    ALL = 'all'
    HISTORICAL = 'historical'
    CURRENT = 'current'


@dataclass
class AggregateRow:
    """Sums for one group produced by aggregate()."""
    due_sum: float
    actual_sum: float
    predicted_sum: float
    record_count: int


@dataclass
class DimensionSummary:
    """Portfolio and performance for one member of a dimension."""
    portfolio: float
    collection_rate: float
    current_gap: float
    branch_count: int
    region: Optional[str] = None
    channel: Optional[str] = None


@dataclass
class PortfolioSummary:
    """Portfolio and volume KPIs over the whole store."""
    total: float
    branch_count: int
    region_count: int
    product_count: int
    channel_count: int
    avg: float
    median: float
    min_amount: float
    max_amount: float


class RiskTier(Enum):
    LOW = 'Low'
    MEDIUM = 'Medium'
    HIGH = 'High'


@dataclass
class RiskBucket:
    """Count and full due-amount exposure of one risk tier."""
    tier: RiskTier
    count: int = 0
    amount: float = 0.0


@dataclass(frozen=True)
class DrillLeaf:
    """Drill-down node with nothing below it."""
    name: str
    value: float
    collection_rate: float
    historical_due: float = 0.0
    collected: float = 0.0
    level: str = ''


@dataclass(frozen=True)
class DrillBranch:
    """Drill-down node with a non-empty, ordered set of children."""
    name: str
    value: float
    collection_rate: float
    children: Tuple[Union['DrillBranch', DrillLeaf], ...]
    historical_due: float = 0.0
    collected: float = 0.0
    level: str = ''

    def __post_init__(self):
        if not self.children:
            raise ValueError(f"DrillBranch '{self.name}' needs at least one child; use DrillLeaf")


DrillNode = Union[DrillBranch, DrillLeaf]


@dataclass(frozen=True)
class HeatCell:
    row: str
    col: str
    value: float


@dataclass
class HeatMatrix:
    """Dense row x col grid with intensity scaling over positive values."""
    rows: List[str]
    cols: List[str]
    matrix: List[List[float]]
    min_value: float
    max_value: float

    def intensity(self, value: float) -> float:
        """
        Scale a cell value to 0-1 for colouring.

        Zero and negative values have no intensity, so a favourable negative
        gap_percent cell renders the same as a missing ("no data") cell.
        When every positive value is the same, that value maps to full
        intensity.
        """
        if value <= 0:
            return 0.0
        if self.max_value == self.min_value:
            return 1.0
        return (value - self.min_value) / (self.max_value - self.min_value)

    def cell(self, row: str, col: str) -> float:
        return self.matrix[self.rows.index(row)][self.cols.index(col)]

    @property
    def cell_count(self) -> int:
        return len(self.rows) * len(self.cols)

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame(self.matrix, index=self.rows, columns=self.cols)


class TrendDirection(Enum):
    IMPROVING = 'improving'
    DECLINING = 'declining'
    STABLE = 'stable'


@dataclass
class TrendResult:
    slope: float
    direction: TrendDirection
    points_used: int


@dataclass
class ForecastPoint:
    """A series point carrying either an observed or a projected value."""
    period: str
    actual: Optional[float] = None
    forecast: Optional[float] = None
    confidence: Optional[float] = None

    def __post_init__(self):
        if (self.actual is None) == (self.forecast is None):
            raise ValueError(f"ForecastPoint '{self.period}' must carry exactly one of actual or forecast")

    @property
    def is_historical(self) -> bool:
        return self.actual is not None


@dataclass
class RankedMember:
    rank: int
    key: str
    portfolio: float
    collection_rate: float
    current_gap: float
    gap_percent: float


@dataclass
class VarianceReport:
    """Predicted vs actual collections for one dimension member."""
    key: str
    actual: float
    predicted: float
    variance: float
    variance_pct: float
    within_tolerance: bool


# =============================================================================
# SECTION 3: HELPER FUNCTIONS
# =============================================================================

def safe_divide(numerator: float, denominator: float, default: float = 0.0) -> float:
    """
    Safe division with default value for zero denominator.

    Args:
        numerator: Numerator value
        denominator: Denominator value
        default: Default value if denominator is zero

    Returns:
        float: Result of division or default
    """
    if pd.isna(denominator) or denominator == 0:
        return default
    if pd.isna(numerator):
        return default
    result = numerator / denominator
    if np.isinf(result) or np.isnan(result):
        return default
    return float(result)


def parse_period(token: str) -> Optional[datetime]:
    """
    Parse a period token such as 'Jul25' into the first day of that month.

    Args:
        token: Period token

    Returns:
        datetime or None: Parsed month, None if the token is not in PERIOD_FORMAT
    """
    try:
        return datetime.strptime(str(token), Config.PERIOD_FORMAT)
    except ValueError:
        return None


def next_period(token: str, steps: int = 1) -> str:
    """
    Return the period token `steps` months after `token`.

    Tokens outside PERIOD_FORMAT get a positional suffix instead ('P9+2').
    """
    parsed = parse_period(token)
    if parsed is None:
        return f"{token}+{steps}"
    return (parsed + relativedelta(months=steps)).strftime(Config.PERIOD_FORMAT)


def order_periods(tokens: Iterable[str]) -> List[str]:
    """
    Order distinct period tokens chronologically.

    Falls back to first-seen order when any token cannot be parsed.
    """
    distinct = list(dict.fromkeys(tokens))
    parsed = [parse_period(t) for t in distinct]
    if any(p is None for p in parsed):
        return distinct
    return [t for _, t in sorted(zip(parsed, distinct), key=lambda pair: pair[0])]


def normalize_dimension(dimension: str) -> str:
    """Map a dimension name (or alias) to its record column, raising on unknown names."""
    name = Config.DIMENSION_ALIASES.get(dimension, dimension)
    if name not in Config.DIMENSIONS:
        raise ValueError(f"Unknown dimension '{dimension}'. Valid: {Config.DIMENSIONS}")
    return name


def records_to_frame(records: Any) -> pd.DataFrame:
    """
    Convert records into a DataFrame the caller owns.

    Always a copy, so changing it never reaches a RecordStore.
    """
    return _records_frame(records).copy()


def _records_frame(records: Any) -> pd.DataFrame:
    """
    Convert records into the engine's tabular form without copying.

    Internal only; a RecordStore's own frame comes back as is.

    Args:
        records: RecordStore, DataFrame with RECORD_COLUMNS, or a sequence of TransactionRecord

    Returns:
        pd.DataFrame: One row per record, columns in RECORD_COLUMNS order
    """
    if isinstance(records, RecordStore):
        return records._frame
    if isinstance(records, pd.DataFrame):
        return records
    rows = [astuple(r) for r in records]
    frame = pd.DataFrame(rows, columns=RECORD_COLUMNS)
    for col in MONETARY_COLUMNS:
        frame[col] = frame[col].astype(float)
    return frame


def _resolve_current_period(records: Any, current_period: Optional[str]) -> str:
    if current_period is not None:
        return current_period
    if isinstance(records, RecordStore):
        return records.current_period
    return Config.CURRENT_PERIOD


def _scope_frame(records: Any, period: PeriodScope = PeriodScope.ALL,
                 current_period: Optional[str] = None) -> pd.DataFrame:
    """Filter records to the requested period scope before any grouping."""
    current = _resolve_current_period(records, current_period)
    df = _records_frame(records)
    if period is PeriodScope.HISTORICAL:
        return df[df['due_month'] != current]
    if period is PeriodScope.CURRENT:
        return df[df['due_month'] == current]
    return df


# =============================================================================
# SECTION 4: SYNTHETIC DATA GENERATION
# =============================================================================

def _product_adjustment(product: str) -> float:
    family = product.split('-')[0]
    return Config.PRODUCT_RATE_ADJUSTMENT.get(family, 0.0)


def generate_synthetic_records(seed: Optional[int] = None,
                               rng: Optional[np.random.Generator] = None) -> List[TransactionRecord]:
    """
    Generate the synthetic premium-collection dataset.

    Every branch gets one record per month per product. Collection rates start
    from a random 92-100% base and are shifted by region, channel and product
    family. The current period carries a target and prediction but no actual
    collection.

    Args:
        seed: Seed for a fresh Generator (Config.DEFAULT_SEED if both seed and rng are None)
        rng: Pre-built Generator; takes precedence over seed

    Returns:
        List[TransactionRecord]: Records in branch -> month -> product order
    """
    if rng is None:
        rng = np.random.default_rng(Config.DEFAULT_SEED if seed is None else seed)

    branches = [f"Branch-{i + 1:02d}" for i in range(Config.BRANCH_COUNT)]
    last_region = len(Config.REGIONS) - 1
    records: List[TransactionRecord] = []

    for branch_index, branch in enumerate(branches):
        region = Config.REGIONS[min(branch_index // Config.BRANCHES_PER_REGION, last_region)]
        channel = Config.CHANNELS[branch_index % len(Config.CHANNELS)]

        for month in Config.MONTHS:
            for product in Config.PRODUCTS:
                due_amount = float(round(rng.uniform(*Config.DUE_AMOUNT_RANGE)))

                collection_rate = Config.BASE_COLLECTION_RATE + rng.uniform(0, Config.COLLECTION_RATE_SPREAD)
                collection_rate += Config.REGION_RATE_ADJUSTMENT.get(region, 0.0)
                collection_rate += Config.CHANNEL_RATE_ADJUSTMENT.get(channel, 0.0)
                collection_rate += _product_adjustment(product)

                actual_collection = 0.0
                if month != Config.CURRENT_PERIOD:
                    actual_collection = float(round(due_amount * collection_rate))

                accuracy = Config.PREDICTION_ACCURACY_FLOOR + rng.uniform(0, Config.PREDICTION_ACCURACY_SPREAD)
                predicted_collection = float(round(due_amount * collection_rate * accuracy))

                records.append(TransactionRecord(
                    branch=branch,
                    region=region,
                    channel=channel,
                    product=product,
                    due_month=month,
                    due_amount=due_amount,
                    actual_collection=actual_collection,
                    predicted_collection=predicted_collection,
                ))

    logger.info(f"Generated {len(records)} synthetic records for {len(branches)} branches")
    return records


def build_synthetic_store(seed: Optional[int] = None) -> 'RecordStore':
    """Generate the synthetic dataset and wrap it in a RecordStore."""
    return RecordStore(generate_synthetic_records(seed=seed), current_period=Config.CURRENT_PERIOD)


# =============================================================================
# SECTION 5: RECORD STORE AND FILTERS
# =============================================================================

def validate_records(df: pd.DataFrame, current_period: str) -> None:
    """
    Check the record invariants, raising ValueError on the first violation.

    Args:
        df: Records as a DataFrame
        current_period: Designated current period token
    """
    missing_cols = [c for c in RECORD_COLUMNS if c not in df.columns]
    if missing_cols:
        raise ValueError(f"Missing required columns: {missing_cols}")

    non_positive_due = df[df['due_amount'] <= 0]
    if len(non_positive_due) > 0:
        raise ValueError(f"due_amount must be positive; {len(non_positive_due)} rows violate this")

    for col in ['actual_collection', 'predicted_collection']:
        negative = df[df[col] < 0]
        if len(negative) > 0:
            raise ValueError(f"{col} must be non-negative; {len(negative)} rows violate this")

    observed_current = df[(df['due_month'] == current_period) & (df['actual_collection'] != 0)]
    if len(observed_current) > 0:
        raise ValueError(
            f"Current period {current_period} cannot have actual collections; "
            f"{len(observed_current)} rows violate this"
        )

    duplicates = df[df.duplicated(subset=['branch', 'product', 'due_month'], keep=False)]
    if len(duplicates) > 0:
        cells = duplicates[['branch', 'product', 'due_month']].drop_duplicates().values.tolist()
        raise ValueError(f"Duplicate branch/product/month cells: {cells[:5]}")

    for attribute in ['region', 'channel']:
        per_branch = df.groupby('branch', sort=False)[attribute].nunique()
        unstable = per_branch[per_branch > 1].index.tolist()
        if unstable:
            raise ValueError(f"Branches mapped to more than one {attribute}: {unstable[:5]}")


class RecordStore:
    """
    Immutable, ordered snapshot of transaction records.

    The store validates its records once at construction and exposes no
    mutation API; refreshed data means building a new store.
    """

    def __init__(self, records: Iterable[TransactionRecord],
                 current_period: Optional[str] = None, validate: bool = True):
        self._records: Tuple[TransactionRecord, ...] = tuple(records)
        if not self._records:
            raise EmptyDatasetError("Cannot build a record store from zero records")

        self._current_period = current_period or Config.CURRENT_PERIOD
        self._frame = _records_frame(self._records)
        if validate:
            validate_records(self._frame, self._current_period)

        logger.debug(f"Record store built with {len(self._records)} records, "
                     f"current period {self._current_period}")

    @property
    def records(self) -> Tuple[TransactionRecord, ...]:
        return self._records

    @property
    def current_period(self) -> str:
        return self._current_period

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self):
        return iter(self._records)

    def to_frame(self) -> pd.DataFrame:
        """Return a copy of the records as a DataFrame."""
        return self._frame.copy()

    def members(self, dimension: str) -> List[str]:
        """Distinct members of a dimension in first-seen order."""
        column = normalize_dimension(dimension)
        return list(pd.unique(self._frame[column]))

    def periods(self) -> List[str]:
        """All period tokens in chronological order."""
        return order_periods(self._frame['due_month'])

    def historical_periods(self) -> List[str]:
        return [p for p in self.periods() if p != self._current_period]

    def filtered(self, record_filter: 'RecordFilter') -> 'RecordStore':
        """
        Build a new store holding only the records that pass the filter.

        Raises:
            EmptyDatasetError: If no record passes
        """
        return RecordStore(record_filter.apply(self._records), current_period=self._current_period,
                           validate=False)


@dataclass(frozen=True)
class RecordFilter:
    """Caller-side filter predicates: dimension members and an inclusive period range."""
    region: Optional[str] = None
    channel: Optional[str] = None
    product: Optional[str] = None
    branch: Optional[str] = None
    start_period: Optional[str] = None
    end_period: Optional[str] = None

    def _in_period_range(self, token: str) -> bool:
        if self.start_period is None and self.end_period is None:
            return True
        when = parse_period(token)
        if when is None:
            return token in (self.start_period, self.end_period)
        if self.start_period is not None:
            start = parse_period(self.start_period)
            if start is not None and when < start:
                return False
        if self.end_period is not None:
            end = parse_period(self.end_period)
            if end is not None and when > end:
                return False
        return True

    def matches(self, record: TransactionRecord) -> bool:
        return (
            (self.region is None or record.region == self.region) and
            (self.channel is None or record.channel == self.channel) and
            (self.product is None or record.product == self.product) and
            (self.branch is None or record.branch == self.branch) and
            self._in_period_range(record.due_month)
        )

    def apply(self, records: Iterable[TransactionRecord]) -> List[TransactionRecord]:
        kept = [r for r in records if self.matches(r)]
        logger.debug(f"Filter [{self.describe()}] kept {len(kept)} records")
        return kept

    def describe(self) -> str:
        """Human readable list of the active filters, 'None' when nothing is set."""
        parts = []
        for name in ['region', 'channel', 'product', 'branch']:
            value = getattr(self, name)
            if value is not None:
                parts.append(f"{name}={value}")
        if self.start_period is not None or self.end_period is not None:
            parts.append(f"period={self.start_period or 'start'}-{self.end_period or 'end'}")
        return ', '.join(parts) or 'None'

    @property
    def is_empty(self) -> bool:
        return self.describe() == 'None'


# =============================================================================
# SECTION 6: AGGREGATION ENGINE
# =============================================================================

def aggregate(records: Any, group_keys: Union[str, Sequence[str]],
              period: PeriodScope = PeriodScope.ALL,
              current_period: Optional[str] = None) -> Dict[Tuple[Any, ...], AggregateRow]:
    """
    Group records by one or more dimensions and sum the monetary columns.

    Period filtering happens before grouping. Groups come back in the order
    their key first appears in the input, not sorted.

    Args:
        records: RecordStore, DataFrame or sequence of TransactionRecord
        group_keys: Dimension name or names ('month' is accepted for 'due_month')
        period: Which records to admit
        current_period: Current period token (defaults to the store's or Config's)

    Returns:
        Dict[Tuple, AggregateRow]: Group key tuple -> sums and record count
    """
    if isinstance(group_keys, str):
        group_keys = [group_keys]
    keys = [normalize_dimension(k) for k in group_keys]
    if not keys:
        raise ValueError("aggregate() needs at least one group key")

    df = _scope_frame(records, period, current_period)
    if len(df) == 0:
        return {}

    grouped = df.groupby(keys, sort=False).agg(
        due_sum=('due_amount', 'sum'),
        actual_sum=('actual_collection', 'sum'),
        predicted_sum=('predicted_collection', 'sum'),
        record_count=('due_amount', 'size'),
    )

    result: Dict[Tuple[Any, ...], AggregateRow] = {}
    for key, row in grouped.iterrows():
        group_key = key if isinstance(key, tuple) else (key,)
        result[group_key] = AggregateRow(
            due_sum=float(row['due_sum']),
            actual_sum=float(row['actual_sum']),
            predicted_sum=float(row['predicted_sum']),
            record_count=int(row['record_count']),
        )

    logger.debug(f"Aggregated {len(df)} records into {len(result)} groups by {keys} ({period.value})")
    return result


def total(records: Any, period: PeriodScope = PeriodScope.ALL,
          current_period: Optional[str] = None) -> AggregateRow:
    """Sums over every admitted record, as a single AggregateRow."""
    df = _scope_frame(records, period, current_period)
    return AggregateRow(
        due_sum=float(df['due_amount'].sum()),
        actual_sum=float(df['actual_collection'].sum()),
        predicted_sum=float(df['predicted_collection'].sum()),
        record_count=int(len(df)),
    )


# =============================================================================
# SECTION 7: RATE & GAP CALCULATIONS
# =============================================================================

def collection_rate(due_sum: float, actual_sum: float) -> float:
    """
    Percentage of the due amount actually collected.

    An empty group (due_sum of 0) yields 0. Callers should read that as
    "no data", not as 0% performance.
    """
    if due_sum <= 0:
        return 0.0
    return actual_sum / due_sum * 100


def prediction_gap(target: float, prediction: float) -> float:
    return target - prediction


def prediction_gap_percent(target: float, prediction: float) -> float:
    """Gap as a percentage of target; 0 when the target is 0."""
    if target <= 0:
        return 0.0
    return prediction_gap(target, prediction) / target * 100


def prediction_accuracy(records: Any, current_period: Optional[str] = None) -> float:
    """
    Mean min/max agreement between actual and predicted collections.

    Only historical records with both actual and predicted collections above
    zero take part; records with a zero on either side are left out of the
    average entirely.

    Args:
        records: RecordStore, DataFrame or sequence of TransactionRecord
        current_period: Current period token

    Returns:
        float: Accuracy as a percentage, 0 when no record qualifies
    """
    df = _scope_frame(records, PeriodScope.HISTORICAL, current_period)
    qualifying = df[(df['actual_collection'] > 0) & (df['predicted_collection'] > 0)]
    if len(qualifying) == 0:
        return 0.0

    actual = qualifying['actual_collection'].to_numpy(dtype=float)
    predicted = qualifying['predicted_collection'].to_numpy(dtype=float)
    ratios = np.minimum(actual, predicted) / np.maximum(actual, predicted)
    return float(ratios.mean() * 100)


# =============================================================================
# SECTION 8: RISK CLASSIFICATION
# =============================================================================

def classify_gap_percent(gap_percent: float) -> RiskTier:
    """
    Map a shortfall percentage to a risk tier.

    Negative gaps (prediction above target) are favourable and stay Low.
    """
    if gap_percent > Config.HIGH_RISK_GAP_PCT:
        return RiskTier.HIGH
    if gap_percent > Config.MEDIUM_RISK_GAP_PCT:
        return RiskTier.MEDIUM
    return RiskTier.LOW


def classify_records(records: Any, current_period: Optional[str] = None) -> pd.DataFrame:
    """
    Attach gap, gap percentage and risk tier to every current-period record.

    Args:
        records: RecordStore, DataFrame or sequence of TransactionRecord
        current_period: Current period token

    Returns:
        pd.DataFrame: Current-period records with 'gap', 'gap_percent' and 'risk_tier' columns
    """
    current = _scope_frame(records, PeriodScope.CURRENT, current_period).copy()

    current['gap'] = [
        prediction_gap(due, predicted)
        for due, predicted in zip(current['due_amount'], current['predicted_collection'])
    ]
    current['gap_percent'] = [
        prediction_gap_percent(due, predicted)
        for due, predicted in zip(current['due_amount'], current['predicted_collection'])
    ]
    current['risk_tier'] = [classify_gap_percent(pct).value for pct in current['gap_percent']]
    return current.reset_index(drop=True)


def risk_analysis(records: Any, current_period: Optional[str] = None) -> Dict[RiskTier, RiskBucket]:
    """
    Bucket current-period records into Low / Medium / High risk.

    The amount of each bucket is the full due amount of its records (total
    exposure), not the shortfall.

    Returns:
        Dict[RiskTier, RiskBucket]: All three tiers, Low first
    """
    buckets = {tier: RiskBucket(tier=tier) for tier in RiskTier}
    classified = classify_records(records, current_period)

    for tier_value, due_amount in zip(classified['risk_tier'], classified['due_amount']):
        bucket = buckets[RiskTier(tier_value)]
        bucket.count += 1
        bucket.amount += float(due_amount)

    logger.debug(
        "Risk buckets: " + ', '.join(f"{t.value}={b.count}" for t, b in buckets.items())
    )
    return buckets


# =============================================================================
# SECTION 9: HIERARCHY BUILDER
# =============================================================================

def _build_level(df: pd.DataFrame, levels: Sequence[str], current_period: str) -> List[DrillNode]:
    level = levels[0]
    totals = aggregate(df, [level], PeriodScope.ALL, current_period)
    historical = aggregate(df, [level], PeriodScope.HISTORICAL, current_period)

    nodes: List[DrillNode] = []
    for (name,), agg in totals.items():
        hist = historical.get((name,), AggregateRow(0.0, 0.0, 0.0, 0))
        rate = collection_rate(hist.due_sum, hist.actual_sum)

        children: List[DrillNode] = []
        if len(levels) > 1:
            children = _build_level(df[df[level] == name], levels[1:], current_period)

        if children:
            nodes.append(DrillBranch(
                name=name, value=agg.due_sum, collection_rate=rate, children=tuple(children),
                historical_due=hist.due_sum, collected=hist.actual_sum, level=level,
            ))
        else:
            nodes.append(DrillLeaf(
                name=name, value=agg.due_sum, collection_rate=rate,
                historical_due=hist.due_sum, collected=hist.actual_sum, level=level,
            ))
    return nodes


def build_drill_tree(records: Any, root_level: str = 'region',
                     current_period: Optional[str] = None) -> List[DrillNode]:
    """
    Build the region -> branch -> product drill-down tree.

    Each node's value is the due sum of its subtree over all periods; its
    collection rate is the node's own historical aggregate rate.

    Args:
        records: RecordStore, DataFrame or sequence of TransactionRecord
        root_level: Level to start from; deeper levels keep the canonical order
        current_period: Current period token

    Returns:
        List[DrillNode]: Root-level nodes in first-seen order
    """
    if root_level not in Config.DRILL_LEVELS:
        raise ValueError(f"Unknown drill level '{root_level}'. Valid: {Config.DRILL_LEVELS}")
    levels = Config.DRILL_LEVELS[Config.DRILL_LEVELS.index(root_level):]
    current = _resolve_current_period(records, current_period)

    df = _records_frame(records)
    if len(df) == 0:
        return []
    tree = _build_level(df, levels, current)
    logger.debug(f"Built drill tree from '{root_level}' with {len(tree)} root nodes")
    return tree


def _descend(nodes: Sequence[DrillNode], name: str) -> List[DrillNode]:
    for node in nodes:
        if node.name == name:
            if isinstance(node, DrillBranch):
                return list(node.children)
            raise UnresolvedDrillPath(f"'{name}' has no children")
    raise UnresolvedDrillPath(f"'{name}' not found")


def resolve_drill_path(tree: Sequence[DrillNode], path: Sequence[str]) -> Tuple[List[DrillNode], List[str]]:
    """
    Walk the tree from the root along a path of node names.

    Descent stops at the first segment that does not resolve, leaving the
    view at the deepest resolvable level.

    Returns:
        Tuple[List[DrillNode], List[str]]: Nodes at the reached level and the resolved path prefix
    """
    current = list(tree)
    resolved: List[str] = []
    for name in path:
        try:
            current = _descend(current, name)
        except UnresolvedDrillPath as e:
            logger.warning(f"Drill path {list(path)} stopped at level {len(resolved)}: {e}")
            break
        resolved.append(name)
    return current, resolved


def navigate(tree: Sequence[DrillNode], path: Sequence[str]) -> List[DrillNode]:
    """Nodes shown after following `path` from the root."""
    nodes, _ = resolve_drill_path(tree, path)
    return nodes


def level_summary(nodes: Sequence[DrillNode]) -> Dict[str, float]:
    """Item count, total value and summed-ratio collection rate of a set of sibling nodes."""
    historical_due = sum(n.historical_due for n in nodes)
    collected = sum(n.collected for n in nodes)
    return {
        'count': len(nodes),
        'total_value': float(sum(n.value for n in nodes)),
        'collection_rate': collection_rate(historical_due, collected),
    }


class DrillNavigator:
    """Level / breadcrumb state for browsing a drill-down tree."""

    def __init__(self, tree: Sequence[DrillNode], levels: Optional[Sequence[str]] = None):
        self.tree: Tuple[DrillNode, ...] = tuple(tree)
        self.levels: Tuple[str, ...] = tuple(levels or Config.DRILL_LEVELS)
        self.reset()

    def reset(self) -> None:
        self.level = 0
        self.path: List[str] = []
        self.current: List[DrillNode] = list(self.tree)

    @property
    def level_name(self) -> str:
        if self.level < len(self.levels):
            return self.levels[self.level]
        return 'Unknown'

    def drill_down(self, name: str) -> bool:
        """
        Open the named node at the current level.

        Returns:
            bool: False (and no state change) when the node is missing or a leaf
        """
        for node in self.current:
            if node.name == name and isinstance(node, DrillBranch):
                self.level += 1
                self.path.append(name)
                self.current = list(node.children)
                return True
        return False

    def go_to(self, index: int) -> None:
        """
        Jump to a breadcrumb; -1 is the root.

        The recorded path is re-resolved against the tree and clamped to the
        deepest level that still resolves.
        """
        if index < 0:
            self.reset()
            return
        nodes, resolved = resolve_drill_path(self.tree, self.path[:index + 1])
        self.level = len(resolved)
        self.path = resolved
        self.current = nodes

    def summary(self) -> Dict[str, float]:
        return level_summary(self.current)


def build_heat_matrix(cells: Iterable[Union[HeatCell, Tuple[str, str, float]]]) -> HeatMatrix:
    """
    Materialise (row, col, value) triples into a dense matrix.

    Row and column labels are sorted. Pairs absent from the input are 0. When
    a pair appears more than once the first value wins. min/max cover only
    strictly positive values.

    Args:
        cells: HeatCell objects or (row, col, value) tuples

    Returns:
        HeatMatrix: Dense matrix with scaling bounds
    """
    values: Dict[Tuple[str, str], float] = {}
    for cell in cells:
        if not isinstance(cell, HeatCell):
            cell = HeatCell(*cell)
        key = (cell.row, cell.col)
        if key in values:
            logger.debug(f"Duplicate heat cell {key} ignored")
            continue
        values[key] = float(cell.value)

    rows = sorted({row for row, _ in values})
    cols = sorted({col for _, col in values})
    matrix = [[values.get((row, col), 0.0) for col in cols] for row in rows]

    positives = [v for v in values.values() if v > 0]
    min_value = min(positives) if positives else 0.0
    max_value = max(positives) if positives else 0.0

    return HeatMatrix(rows=rows, cols=cols, matrix=matrix, min_value=min_value, max_value=max_value)


def heat_cells(records: Any, row_dimension: str, col_dimension: str,
               metric: str = 'collection_rate',
               current_period: Optional[str] = None) -> List[HeatCell]:
    """
    Derive heat-map triples for two dimensions from aggregates.

    Args:
        records: RecordStore, DataFrame or sequence of TransactionRecord
        row_dimension: Dimension for matrix rows
        col_dimension: Dimension for matrix columns
        metric: 'collection_rate' (historical), 'portfolio' (all periods) or
            'gap_percent' (current period)
        current_period: Current period token

    Returns:
        List[HeatCell]: One cell per populated (row, col) combination
    """
    if metric not in Config.HEAT_METRICS:
        raise ValueError(f"Unknown heat metric '{metric}'. Valid: {Config.HEAT_METRICS}")

    keys = [row_dimension, col_dimension]
    if metric == 'collection_rate':
        groups = aggregate(records, keys, PeriodScope.HISTORICAL, current_period)
        return [HeatCell(r, c, collection_rate(a.due_sum, a.actual_sum)) for (r, c), a in groups.items()]
    if metric == 'portfolio':
        groups = aggregate(records, keys, PeriodScope.ALL, current_period)
        return [HeatCell(r, c, a.due_sum) for (r, c), a in groups.items()]

    groups = aggregate(records, keys, PeriodScope.CURRENT, current_period)
    return [HeatCell(r, c, prediction_gap_percent(a.due_sum, a.predicted_sum)) for (r, c), a in groups.items()]


# =============================================================================
# SECTION 10: TREND AND FORECAST
# =============================================================================

def compute_trend(values: Sequence[float], window: int = Config.TREND_WINDOW) -> TrendResult:
    """
    Short trend over the last `window` points: (last - first) / points used.

    With a full window this is (last - first) / 3. Fewer than two points give
    a stable, zero trend.
    """
    recent = [float(v) for v in list(values)[-window:]]
    if len(recent) < 2:
        return TrendResult(slope=0.0, direction=TrendDirection.STABLE, points_used=len(recent))

    slope = (recent[-1] - recent[0]) / len(recent)
    if slope > 0:
        direction = TrendDirection.IMPROVING
    elif slope < 0:
        direction = TrendDirection.DECLINING
    else:
        direction = TrendDirection.STABLE
    return TrendResult(slope=slope, direction=direction, points_used=len(recent))


def build_forecast(series: Sequence[Tuple[str, float]], horizon: int = Config.DEFAULT_HORIZON,
                   decay: float = Config.CONFIDENCE_DECAY,
                   base_confidence: float = Config.BASE_CONFIDENCE,
                   lower: Optional[float] = 0.0,
                   upper: Optional[float] = None) -> List[ForecastPoint]:
    """
    Extend a historical series with projected points.

    This is a bounded linear projection, not a fitted model: each step adds
    the recent trend slope to the last observed value, clipped to
    [lower, upper]. The confidence label starts at base_confidence, drops by
    `decay` per step and never goes below zero. It is a presentation aid with
    no statistical meaning.

    Args:
        series: (period, value) pairs in period order
        horizon: Number of periods to project
        decay: Confidence points lost per step
        base_confidence: Confidence before the first step
        lower: Lower clip bound (None for unbounded)
        upper: Upper clip bound (None for unbounded)

    Returns:
        List[ForecastPoint]: Historical points followed by forecast points
    """
    if horizon < 0:
        raise ValueError(f"Forecast horizon must be non-negative, got {horizon}")

    points = [ForecastPoint(period=period, actual=float(value)) for period, value in series]
    if not points:
        if horizon > 0:
            logger.warning("No historical points to project from; returning empty forecast")
        return points

    trend = compute_trend([p.actual for p in points])
    last_period = points[-1].period
    last_value = points[-1].actual

    for step in range(1, horizon + 1):
        projected = last_value + trend.slope * step
        if lower is not None:
            projected = max(projected, lower)
        if upper is not None:
            projected = min(projected, upper)
        confidence = max(base_confidence - decay * step, 0.0)
        points.append(ForecastPoint(
            period=next_period(last_period, step),
            forecast=projected,
            confidence=confidence,
        ))

    logger.debug(f"Forecast {horizon} periods from {last_period} with slope {trend.slope:.4f}")
    return points


def monthly_collection_series(records: Any, current_period: Optional[str] = None) -> List[Tuple[str, float]]:
    """Collection rate per historical period, in chronological order."""
    current = _resolve_current_period(records, current_period)
    groups = aggregate(records, ['due_month'], PeriodScope.HISTORICAL, current)
    periods = order_periods(key[0] for key in groups)
    return [
        (period, collection_rate(groups[(period,)].due_sum, groups[(period,)].actual_sum))
        for period in periods
    ]


# =============================================================================
# SECTION 11: RANKING, COMPARISON AND VARIANCE
# =============================================================================

def dimension_summary(records: Any, dimension: str, member: str,
                      current_period: Optional[str] = None) -> DimensionSummary:
    """
    Portfolio, collection rate, current gap and branch count for one member.

    An unknown member yields a zero-valued summary so callers can render
    "no data".
    """
    column = normalize_dimension(dimension)
    current = _resolve_current_period(records, current_period)
    df = _records_frame(records)
    subset = df[df[column] == member]

    if len(subset) == 0:
        logger.warning(f"No records for {column}='{member}'; returning empty summary")
        return DimensionSummary(portfolio=0.0, collection_rate=0.0, current_gap=0.0, branch_count=0)

    historical = total(subset, PeriodScope.HISTORICAL, current)
    in_period = total(subset, PeriodScope.CURRENT, current)

    summary = DimensionSummary(
        portfolio=float(subset['due_amount'].sum()),
        collection_rate=collection_rate(historical.due_sum, historical.actual_sum),
        current_gap=prediction_gap(in_period.due_sum, in_period.predicted_sum),
        branch_count=int(subset['branch'].nunique()),
    )
    if column == 'branch':
        summary.region = subset['region'].iloc[0]
        summary.channel = subset['channel'].iloc[0]
    return summary


def rank_members(records: Any, dimension: str, metric: str = 'collection_rate',
                 descending: bool = True, limit: Optional[int] = None,
                 current_period: Optional[str] = None) -> List[RankedMember]:
    """
    Rank the members of a dimension by a metric.

    Ties keep first-seen order.

    Args:
        records: RecordStore, DataFrame or sequence of TransactionRecord
        dimension: Dimension to rank
        metric: One of Config.RANKING_METRICS
        descending: Highest first when True
        limit: Keep only the top N
        current_period: Current period token

    Returns:
        List[RankedMember]: Ranked members, rank starting at 1
    """
    if metric not in Config.RANKING_METRICS:
        raise ValueError(f"Unknown ranking metric '{metric}'. Valid: {Config.RANKING_METRICS}")

    column = normalize_dimension(dimension)
    current = _resolve_current_period(records, current_period)
    totals = aggregate(records, [column], PeriodScope.ALL, current)
    historical = aggregate(records, [column], PeriodScope.HISTORICAL, current)
    in_period = aggregate(records, [column], PeriodScope.CURRENT, current)
    empty = AggregateRow(0.0, 0.0, 0.0, 0)

    entries = []
    for key, agg in totals.items():
        hist = historical.get(key, empty)
        cur = in_period.get(key, empty)
        entries.append({
            'key': key[0],
            'portfolio': agg.due_sum,
            'collection_rate': collection_rate(hist.due_sum, hist.actual_sum),
            'current_gap': prediction_gap(cur.due_sum, cur.predicted_sum),
            'gap_percent': prediction_gap_percent(cur.due_sum, cur.predicted_sum),
        })

    ordered = sorted(entries, key=lambda e: e[metric], reverse=descending)
    if limit is not None:
        ordered = ordered[:limit]

    return [RankedMember(rank=i + 1, **entry) for i, entry in enumerate(ordered)]


def compare_members(records: Any, dimension: str, first: str, second: str,
                    current_period: Optional[str] = None) -> List[Dict[str, Any]]:
    """
    Side-by-side 0-100 scores for two members of a dimension.

    Metrics: collection rate, prediction accuracy, current-period achievement
    (predicted share of target, capped at 100) and portfolio share.

    Returns:
        List[Dict]: One row per metric with the two members' scores and 'full_mark'
    """
    column = normalize_dimension(dimension)
    current = _resolve_current_period(records, current_period)
    df = _records_frame(records)
    portfolio_total = float(df['due_amount'].sum())

    scores: Dict[str, Dict[str, float]] = {}
    for member in (first, second):
        subset = df[df[column] == member]
        historical = total(subset, PeriodScope.HISTORICAL, current)
        in_period = total(subset, PeriodScope.CURRENT, current)
        scores[member] = {
            'Collection Rate': collection_rate(historical.due_sum, historical.actual_sum),
            'Prediction Accuracy': prediction_accuracy(subset, current),
            'Target Achievement': min(safe_divide(in_period.predicted_sum, in_period.due_sum) * 100, 100.0),
            'Portfolio Share': safe_divide(float(subset['due_amount'].sum()), portfolio_total) * 100,
        }

    return [
        {'metric': metric, first: scores[first][metric], second: scores[second][metric], 'full_mark': 100.0}
        for metric in scores[first]
    ]


def prediction_variance(records: Any, dimension: str = 'branch',
                        tolerance_pct: float = Config.VARIANCE_TOLERANCE_PCT,
                        current_period: Optional[str] = None) -> List[VarianceReport]:
    """
    Predicted minus actual collections per member over historical periods.

    Args:
        records: RecordStore, DataFrame or sequence of TransactionRecord
        dimension: Dimension to break down by
        tolerance_pct: Absolute variance % still considered on target
        current_period: Current period token

    Returns:
        List[VarianceReport]: Worst absolute variance first
    """
    column = normalize_dimension(dimension)
    groups = aggregate(records, [column], PeriodScope.HISTORICAL, current_period)

    reports = []
    for (key,), agg in groups.items():
        variance = agg.predicted_sum - agg.actual_sum
        variance_pct = safe_divide(variance, agg.actual_sum) * 100
        reports.append(VarianceReport(
            key=key,
            actual=agg.actual_sum,
            predicted=agg.predicted_sum,
            variance=variance,
            variance_pct=variance_pct,
            within_tolerance=abs(variance_pct) <= tolerance_pct,
        ))

    return sorted(reports, key=lambda r: abs(r.variance), reverse=True)


# =============================================================================
# SECTION 12: KPI CALCULATOR
# =============================================================================

class CollectionKPICalculator:
    """
    Query surface over one record store snapshot.

    refresh() builds a complete new store before swapping it in, so a caller
    still holding the previous snapshot keeps a consistent view.
    """

    def __init__(self, store: RecordStore):
        self.store = store

    def refresh(self, records: Iterable[TransactionRecord], current_period: Optional[str] = None) -> RecordStore:
        """Replace the snapshot with a store built from `records`; returns the old one."""
        new_store = RecordStore(records, current_period=current_period or self.store.current_period)
        old_store, self.store = self.store, new_store
        logger.info(f"Record store refreshed: {len(old_store)} -> {len(new_store)} records")
        return old_store

    # Portfolio & volume
    def get_portfolio_summary(self) -> PortfolioSummary:
        df = _records_frame(self.store)
        amounts = df['due_amount'].to_numpy(dtype=float)
        return PortfolioSummary(
            total=float(amounts.sum()),
            branch_count=int(df['branch'].nunique()),
            region_count=int(df['region'].nunique()),
            product_count=int(df['product'].nunique()),
            channel_count=int(df['channel'].nunique()),
            avg=float(amounts.mean()),
            median=float(np.median(amounts)),
            min_amount=float(amounts.min()),
            max_amount=float(amounts.max()),
        )

    # Dimension summaries
    def get_regional(self, region: str) -> DimensionSummary:
        return dimension_summary(self.store, 'region', region)

    def get_channel(self, channel: str) -> DimensionSummary:
        return dimension_summary(self.store, 'channel', channel)

    def get_product(self, product: str) -> DimensionSummary:
        return dimension_summary(self.store, 'product', product)

    def get_branch(self, branch: str) -> DimensionSummary:
        return dimension_summary(self.store, 'branch', branch)

    # Current period
    def get_current_period_target(self) -> float:
        return total(self.store, PeriodScope.CURRENT).due_sum

    def get_current_period_prediction(self) -> float:
        return total(self.store, PeriodScope.CURRENT).predicted_sum

    def get_prediction_gap(self) -> float:
        return prediction_gap(self.get_current_period_target(), self.get_current_period_prediction())

    def get_prediction_gap_percent(self) -> float:
        return prediction_gap_percent(self.get_current_period_target(), self.get_current_period_prediction())

    # Collection performance
    def get_overall_collection_rate(self) -> float:
        historical = total(self.store, PeriodScope.HISTORICAL)
        return collection_rate(historical.due_sum, historical.actual_sum)

    def get_total_collections(self) -> float:
        return total(self.store, PeriodScope.HISTORICAL).actual_sum

    def get_prediction_accuracy(self) -> float:
        return prediction_accuracy(self.store)

    def _check_historical_period(self, period: str) -> None:
        if period == self.store.current_period:
            raise InvalidPeriodToken(f"{period} is the current period and has no observed collections")
        if period not in self.store.periods():
            raise InvalidPeriodToken(f"{period} is not present in the data")

    def get_monthly_performance(self, period: str) -> float:
        """Collection rate for one historical period; 0 (no data) for unknown or current periods."""
        try:
            self._check_historical_period(period)
        except InvalidPeriodToken as e:
            logger.warning(f"{e}; reporting no data")
            return 0.0
        df = _records_frame(self.store)
        month = total(df[df['due_month'] == period], PeriodScope.ALL)
        return collection_rate(month.due_sum, month.actual_sum)

    def get_monthly_series(self) -> List[Tuple[str, float]]:
        return monthly_collection_series(self.store)

    # Risk
    def get_risk_analysis(self) -> Dict[str, RiskBucket]:
        buckets = risk_analysis(self.store)
        return {tier.value.lower(): bucket for tier, bucket in buckets.items()}

    # Hierarchy
    def build_drill_tree(self, root_level: str = 'region') -> List[DrillNode]:
        return build_drill_tree(self.store, root_level)

    def navigate(self, tree: Sequence[DrillNode], path: Sequence[str]) -> List[DrillNode]:
        return navigate(tree, path)

    def build_heat_matrix(self, triples: Iterable[Union[HeatCell, Tuple[str, str, float]]]) -> HeatMatrix:
        return build_heat_matrix(triples)

    def get_heat_matrix(self, row_dimension: str = 'branch', col_dimension: str = 'product',
                        metric: str = 'collection_rate') -> HeatMatrix:
        return build_heat_matrix(heat_cells(self.store, row_dimension, col_dimension, metric))

    # Trend & forecast
    def build_forecast(self, series: Sequence[Tuple[str, float]],
                       horizon: int = Config.DEFAULT_HORIZON) -> List[ForecastPoint]:
        return build_forecast(series, horizon)

    def get_collection_rate_forecast(self, horizon: int = Config.DEFAULT_HORIZON) -> List[ForecastPoint]:
        """Monthly collection rate history projected forward, clipped to 0-100%."""
        return build_forecast(self.get_monthly_series(), horizon, lower=0.0, upper=100.0)

    # Rankings, comparison, variance
    def get_rankings(self, dimension: str, metric: str = 'collection_rate',
                     descending: bool = True, limit: Optional[int] = None) -> List[RankedMember]:
        return rank_members(self.store, dimension, metric, descending, limit)

    def compare(self, dimension: str, first: str, second: str) -> List[Dict[str, Any]]:
        return compare_members(self.store, dimension, first, second)

    def get_prediction_variance(self, dimension: str = 'branch') -> List[VarianceReport]:
        return prediction_variance(self.store, dimension)


# =============================================================================
# SECTION 13: MAIN ORCHESTRATION
# =============================================================================

def run_kpi_summary(seed: int = Config.DEFAULT_SEED, record_filter: Optional[RecordFilter] = None,
                    horizon: int = Config.DEFAULT_HORIZON) -> Dict[str, Any]:
    """
    Build the synthetic store, apply filters and log the headline KPIs.

    Args:
        seed: Generator seed
        record_filter: Optional caller-side filter
        horizon: Forecast horizon in periods

    Returns:
        Dict[str, Any]: Headline KPI values
    """
    logger.info("=" * 60)
    logger.info("Starting Collection KPI Summary")
    logger.info("=" * 60)

    start_time = datetime.now()

    try:
        logger.info("\n[Step 1/4] Generating records...")
        store = build_synthetic_store(seed)
        if record_filter is not None and not record_filter.is_empty:
            logger.info(f"Applying filters: {record_filter.describe()}")
            store = store.filtered(record_filter)
            logger.info(f"{len(store)} records after filtering")

        calculator = CollectionKPICalculator(store)

        logger.info("\n[Step 2/4] Portfolio and collection KPIs...")
        portfolio = calculator.get_portfolio_summary()
        kpis: Dict[str, Any] = {
            'total_portfolio': portfolio.total,
            'branches': portfolio.branch_count,
            'overall_collection_rate': calculator.get_overall_collection_rate(),
            'total_collections': calculator.get_total_collections(),
            'prediction_accuracy': calculator.get_prediction_accuracy(),
            'current_target': calculator.get_current_period_target(),
            'current_prediction': calculator.get_current_period_prediction(),
            'prediction_gap_percent': calculator.get_prediction_gap_percent(),
        }
        logger.info(f"  Portfolio: {portfolio.total:,.0f} across {portfolio.branch_count} branches")
        logger.info(f"  Collection rate: {kpis['overall_collection_rate']:.2f}%")
        logger.info(f"  Prediction accuracy: {kpis['prediction_accuracy']:.2f}%")
        logger.info(f"  Current target {kpis['current_target']:,.0f}, "
                    f"prediction {kpis['current_prediction']:,.0f} "
                    f"(gap {kpis['prediction_gap_percent']:.2f}%)")

        logger.info("\n[Step 3/4] Risk analysis...")
        risk = calculator.get_risk_analysis()
        for name, bucket in risk.items():
            logger.info(f"  {bucket.tier.value}: {bucket.count} records, {bucket.amount:,.0f} exposure")
        kpis['risk'] = {name: (bucket.count, bucket.amount) for name, bucket in risk.items()}

        logger.info("\n[Step 4/4] Collection rate forecast...")
        forecast = calculator.get_collection_rate_forecast(horizon)
        for point in forecast:
            if point.is_historical:
                logger.info(f"  {point.period}: {point.actual:.2f}% (actual)")
            else:
                logger.info(f"  {point.period}: {point.forecast:.2f}% "
                            f"(forecast, confidence {point.confidence:.0f})")
        kpis['forecast'] = forecast

        elapsed = (datetime.now() - start_time).total_seconds()
        logger.info(f"\nSummary complete in {elapsed:.2f} seconds")
        return kpis

    except EmptyDatasetError as e:
        logger.error(f"No data to report: {e}")
        sys.exit(1)
    except ValueError as e:
        logger.error(f"Invalid input: {e}")
        sys.exit(1)


def main():
    """Main entry point for CLI."""
    parser = argparse.ArgumentParser(
        description='Premium Collection KPI Engine - headline KPIs over synthetic collection data',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python collection_engine.py --seed 42
  python collection_engine.py --region Mumbai --start-period Mar25 --end-period Jul25 --horizon 6
        """
    )

    parser.add_argument('--seed', '-s', type=int, default=Config.DEFAULT_SEED,
                        help=f'Random seed for the synthetic data (default: {Config.DEFAULT_SEED})')
    parser.add_argument('--region', default=None, help='Only include this region')
    parser.add_argument('--channel', default=None, help='Only include this channel')
    parser.add_argument('--product', default=None, help='Only include this product')
    parser.add_argument('--branch', default=None, help='Only include this branch')
    parser.add_argument('--start-period', default=None, help='First period to include (e.g. Mar25)')
    parser.add_argument('--end-period', default=None, help='Last period to include (e.g. Jul25)')
    parser.add_argument('--horizon', '-n', type=int, default=Config.DEFAULT_HORIZON,
                        help=f'Forecast horizon in months (default: {Config.DEFAULT_HORIZON})')
    parser.add_argument('--verbose', '-v', action='store_true', help='Enable verbose logging')

    args = parser.parse_args()

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    record_filter = RecordFilter(
        region=args.region,
        channel=args.channel,
        product=args.product,
        branch=args.branch,
        start_period=args.start_period,
        end_period=args.end_period,
    )
    run_kpi_summary(seed=args.seed, record_filter=record_filter, horizon=args.horizon)


if __name__ == '__main__':
    main()
