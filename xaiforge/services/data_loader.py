"""
Tabular data loading.

Turns an uploaded CSV into a typed, in-memory dataset restricted to the
selected feature and target columns, together with the per-feature training
statistics that prediction and explanation rely on later.
"""
import csv
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from xaiforge.core.exceptions import DatasetParsingError, NotFoundError

logger = logging.getLogger(__name__)

NUMERIC = "numeric"
CATEGORICAL = "categorical"


@dataclass
class FeatureProfile:
    """Column kind plus the statistics observed on the training rows."""
    name: str
    kind: str
    mean: Optional[float] = None
    std: Optional[float] = None
    minimum: Optional[float] = None
    maximum: Optional[float] = None
    categories: List[str] = field(default_factory=list)
    frequencies: List[float] = field(default_factory=list)

    @property
    def is_numeric(self) -> bool:
        return self.kind == NUMERIC

    @property
    def value_range(self) -> float:
        """Observed spread: max - min for numeric columns, 1 for indicators."""
        if not self.is_numeric:
            return 1.0
        if self.minimum is None or self.maximum is None:
            return 0.0
        return float(self.maximum - self.minimum)

    @property
    def has_variance(self) -> bool:
        if self.is_numeric:
            return bool(self.std) and self.value_range > 0.0
        return len(self.categories) > 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "kind": self.kind,
            "mean": self.mean,
            "std": self.std,
            "minimum": self.minimum,
            "maximum": self.maximum,
            "categories": list(self.categories),
            "frequencies": list(self.frequencies),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FeatureProfile":
        return cls(
            name=data["name"],
            kind=data["kind"],
            mean=data.get("mean"),
            std=data.get("std"),
            minimum=data.get("minimum"),
            maximum=data.get("maximum"),
            categories=list(data.get("categories", [])),
            frequencies=list(data.get("frequencies", [])),
        )


@dataclass
class TabularDataset:
    """Typed training data for one target and an ordered feature list."""
    features: pd.DataFrame
    target: Optional[pd.Series]
    target_name: str
    target_kind: Optional[str]
    profiles: List[FeatureProfile]
    dropped_rows: int = 0

    def __len__(self) -> int:
        return len(self.features)

    @property
    def feature_names(self) -> List[str]:
        return [profile.name for profile in self.profiles]

    @property
    def numeric_features(self) -> List[str]:
        return [p.name for p in self.profiles if p.is_numeric]

    @property
    def categorical_features(self) -> List[str]:
        return [p.name for p in self.profiles if not p.is_numeric]


def infer_kind(series: pd.Series) -> str:
    """
    Numeric when every raw value parses as a finite number, categorical otherwise.

    Values are inspected as the strings found in the file, so ``true``/``false``
    columns stay categorical with exactly those spellings.
    """
    if len(series) == 0:
        return CATEGORICAL
    parsed = pd.to_numeric(series, errors="coerce")
    if parsed.isna().any() or not np.isfinite(parsed.to_numpy(dtype=float)).all():
        return CATEGORICAL
    return NUMERIC


def profile_column(name: str, series: pd.Series, kind: str) -> FeatureProfile:
    """Compute the statistics kept for a feature column."""
    if kind == NUMERIC:
        values = series.to_numpy(dtype=float)
        if values.size == 0:
            return FeatureProfile(name=name, kind=kind)
        return FeatureProfile(
            name=name,
            kind=kind,
            mean=float(np.mean(values)),
            std=float(np.std(values)),
            minimum=float(np.min(values)),
            maximum=float(np.max(values)),
        )

    counts = series.value_counts()
    # Stable order: most frequent first, ties by category name
    ordered = sorted(counts.items(), key=lambda item: (-item[1], str(item[0])))
    total = float(sum(count for _, count in ordered)) or 1.0
    return FeatureProfile(
        name=name,
        kind=kind,
        categories=[str(value) for value, _ in ordered],
        frequencies=[count / total for _, count in ordered],
    )


def _validate_header(headers: List[str]) -> None:
    if any(not name for name in headers):
        raise DatasetParsingError("The header row contains an empty column name")
    if len(set(headers)) != len(headers):
        raise DatasetParsingError("The header row contains duplicate column names")
    if all(_looks_numeric(name) for name in headers):
        raise DatasetParsingError("The file has no header row")


def _looks_numeric(value: str) -> bool:
    try:
        float(value)
        return True
    except ValueError:
        return False


def inspect_csv(path: Union[str, Path]) -> Tuple[List[str], int]:
    """
    Read the header row and count data rows, validating the file structure.

    Returns:
        Ordered header names and the number of non-blank data rows.

    Raises:
        DatasetParsingError: empty file, missing header row or ragged rows.
        NotFoundError: the file no longer exists.
    """
    path = Path(path)
    try:
        with open(path, newline="", encoding="utf-8-sig") as handle:
            reader = csv.reader(handle)
            header = next(reader, None)
            if header is None or not any(cell.strip() for cell in header):
                raise DatasetParsingError("The file is empty")

            headers = [cell.strip() for cell in header]
            _validate_header(headers)

            row_count = 0
            for line_number, row in enumerate(reader, start=2):
                if not row or (len(row) == 1 and not row[0].strip()):
                    continue
                if len(row) != len(headers):
                    raise DatasetParsingError(
                        f"Row {line_number} has {len(row)} fields, expected {len(headers)}"
                    )
                row_count += 1
    except FileNotFoundError:
        logger.error(f"Dataset file missing: {path}")
        raise NotFoundError("The dataset file is no longer available")
    except (UnicodeDecodeError, csv.Error) as e:
        logger.warning(f"Could not parse {path}: {e}")
        raise DatasetParsingError("The file is not a readable CSV document")

    return headers, row_count


def load_dataset(path: Union[str, Path],
                 headers: Sequence[str],
                 target: str,
                 features: Sequence[str]) -> TabularDataset:
    """
    Load the selected columns of a CSV into a typed dataset.

    Args:
        path: Location of the CSV file
        headers: Header list recorded when the dataset was registered
        target: Target column name
        features: Ordered feature column names

    Returns:
        TabularDataset with rows containing missing values removed
    """
    path = Path(path)
    file_headers, _ = inspect_csv(path)
    if list(headers) != file_headers:
        raise DatasetParsingError("The file's header row does not match the registered dataset")

    columns = list(features) + [target]
    try:
        frame = pd.read_csv(path, dtype=str, skipinitialspace=True, encoding="utf-8-sig")
    except pd.errors.EmptyDataError:
        raise DatasetParsingError("The file is empty")
    except (pd.errors.ParserError, ValueError) as e:
        logger.warning(f"pandas failed to parse {path}: {e}")
        raise DatasetParsingError("The file could not be parsed as CSV")

    frame.columns = [str(column).strip() for column in frame.columns]
    # Raw strings, stripped; blank cells count as missing
    frame = frame[columns].apply(lambda column: column.str.strip()).replace("", np.nan)
    initial_rows = len(frame)
    frame = frame.dropna(how="any").reset_index(drop=True)
    dropped = initial_rows - len(frame)
    if dropped:
        logger.info(f"Removed {dropped} rows with missing values ({dropped / initial_rows * 100:.1f}%)")

    profiles = []
    typed_columns = {}
    for name in features:
        kind = infer_kind(frame[name])
        if kind == NUMERIC:
            typed_columns[name] = pd.to_numeric(frame[name]).astype(float)
        else:
            typed_columns[name] = frame[name].astype(str)
        profiles.append(profile_column(name, typed_columns[name], kind))

    target_series = frame[target]
    target_kind = infer_kind(target_series)
    if target_kind == NUMERIC:
        # plain numpy dtype so integer labels stay int64
        target_series = pd.Series(pd.to_numeric(target_series.to_numpy(dtype=object)), index=frame.index)
    else:
        target_series = target_series.astype(str)

    feature_frame = pd.DataFrame(typed_columns, columns=list(features))
    logger.info(
        f"Loaded dataset: {len(feature_frame)} rows, {len(features)} features, "
        f"target '{target}' ({target_kind})"
    )
    return TabularDataset(
        features=feature_frame,
        target=target_series.rename(target),
        target_name=target,
        target_kind=target_kind,
        profiles=profiles,
        dropped_rows=dropped,
    )
