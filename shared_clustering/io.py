"""Loading matches from tables and writing the clustered result.

The clustering core works on in-memory ``ClusterableMatch`` objects; this
module is the boundary to tabular data. Input tables carry one row per match
with its shared match list as ``;``-separated test guids. Output is a pandas
table in tree order, one row per clustered match.
"""

import logging
from pathlib import Path
from typing import Dict, List, Optional, Protocol

import pandas as pd

from shared_clustering.models import ClusterableMatch, ClusteringResult, Match
from shared_clustering.pipeline import correlated_clusters

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS = ("test_guid", "shared_centimorgans")
SHARED_MATCH_SEPARATOR = ";"

OUTPUT_COLUMNS = [
    "index",
    "test_guid",
    "name",
    "shared_centimorgans",
    "shared_segments",
    "longest_block",
    "common_ancestors",
    "cluster_number",
    "correlated_clusters",
    "note",
]


class CorrelationWriter(Protocol):
    """Receiver of a finished clustering result."""

    def write(self, result: ClusteringResult) -> None: ...


def detect_file_format(path: str) -> str:
    """Detect the input format from the file extension.

    Returns:
        'csv', 'json' or 'unsupported'

    """
    suffix = Path(path).suffix.lower()
    if suffix == ".csv":
        return "csv"
    if suffix == ".json":
        return "json"
    return "unsupported"


def read_matches_file(path: str) -> pd.DataFrame:
    """Read a match table from CSV or JSON.

    Args:
        path: Path to the input file

    Returns:
        DataFrame with one row per match

    Raises:
        FileNotFoundError: If the file does not exist
        ValueError: If the format is unsupported

    """
    if not Path(path).exists():
        raise FileNotFoundError(f"Matches file not found: {path}")

    fmt = detect_file_format(path)
    if fmt == "csv":
        df = pd.read_csv(path, dtype={"test_guid": str, "name": str, "shared_matches": str, "note": str})
    elif fmt == "json":
        df = pd.read_json(path, orient="records", dtype={"test_guid": str})
    else:
        raise ValueError(f"Unsupported file format for: {path}")

    logger.info(f"Loaded {len(df)} rows, {len(df.columns)} columns from {path}")
    return df


def _split_guids(value) -> List[str]:
    if isinstance(value, (list, tuple)):
        return [str(guid).strip() for guid in value if str(guid).strip()]
    if value is None or pd.isna(value):
        return []
    return [guid.strip() for guid in str(value).split(SHARED_MATCH_SEPARATOR) if guid.strip()]


def _text(row: pd.Series, column: str) -> str:
    value = row.get(column)
    return "" if value is None or pd.isna(value) else str(value)


def _number(row: pd.Series, column: str, default: float = 0.0) -> float:
    value = row.get(column)
    return default if value is None or pd.isna(value) else float(value)


def load_clusterable_matches(df: pd.DataFrame) -> List[ClusterableMatch]:
    """Turn a match table into clusterable matches.

    Matches are sorted by shared cM, strongest first, and given dense indexes in
    that order. Each match's coordinates are the indexes of the tests on its
    shared match list plus its own index; guids not present in the table are
    dropped.

    Args:
        df: Table with ``test_guid`` and ``shared_centimorgans`` columns and
            optional ``name``, ``shared_segments``, ``longest_block``,
            ``common_ancestors``, ``note`` and ``shared_matches`` columns

    Returns:
        Clusterable matches in index order

    Raises:
        ValueError: If a required column is missing or a test guid repeats

    """
    missing = [column for column in REQUIRED_COLUMNS if column not in df.columns]
    if missing:
        raise ValueError(f"Missing required columns: {missing}")

    duplicated = df["test_guid"][df["test_guid"].duplicated()]
    if not duplicated.empty:
        raise ValueError(f"Duplicate test_guid values: {sorted(duplicated.astype(str).unique())[:5]}")

    ordered = df.sort_values("shared_centimorgans", ascending=False, kind="mergesort").reset_index(drop=True)
    index_by_guid: Dict[str, int] = {str(guid): index for index, guid in enumerate(ordered["test_guid"])}

    matches = []
    dropped = 0
    for index, row in ordered.iterrows():
        ancestors = tuple(_split_guids(row.get("common_ancestors")))
        match = Match(
            test_guid=str(row["test_guid"]),
            name=_text(row, "name"),
            shared_centimorgans=_number(row, "shared_centimorgans"),
            shared_segments=int(_number(row, "shared_segments")),
            longest_block=_number(row, "longest_block"),
            has_common_ancestors=bool(ancestors),
            common_ancestors=ancestors,
            note=_text(row, "note"),
        )
        shared = _split_guids(row.get("shared_matches"))
        coords = {index_by_guid[guid] for guid in shared if guid in index_by_guid}
        dropped += sum(1 for guid in shared if guid not in index_by_guid)
        coords.add(index)
        matches.append(ClusterableMatch(index, match, frozenset(coords)))

    if dropped:
        logger.info(f"Dropped {dropped} shared match references to tests not in the table")
    logger.info(f"Prepared {len(matches)} clusterable matches")
    return matches


class DataFrameCorrelationWriter:
    """Collect the clustered result as a pandas table, optionally saved as CSV.

    Args:
        output_path: CSV path to write, or None to keep the table in memory
        min_cluster_size: Minimum direct correlations for a correlated cluster

    """

    def __init__(self, output_path: Optional[str] = None, min_cluster_size: int = 3):
        self.output_path = output_path
        self.min_cluster_size = min_cluster_size
        self.table: Optional[pd.DataFrame] = None

    def to_frame(self, result: ClusteringResult) -> pd.DataFrame:
        correlated = correlated_clusters(result, self.min_cluster_size)
        rows = []
        for index in result.ordered_leaf_indexes():
            match = result.matches_by_index[index].match
            rows.append(
                {
                    "index": index,
                    "test_guid": match.test_guid,
                    "name": match.name,
                    "shared_centimorgans": match.shared_centimorgans,
                    "shared_segments": match.shared_segments,
                    "longest_block": match.longest_block,
                    "common_ancestors": SHARED_MATCH_SEPARATOR.join(match.common_ancestors),
                    "cluster_number": result.index_cluster_numbers.get(index),
                    "correlated_clusters": ", ".join(str(number) for number in correlated.get(index, [])),
                    "note": match.note,
                }
            )
        df = pd.DataFrame(rows, columns=OUTPUT_COLUMNS)
        df["cluster_number"] = df["cluster_number"].astype("Int64")
        return df

    def write(self, result: ClusteringResult) -> None:
        self.table = self.to_frame(result)
        if result.is_empty:
            logger.warning("Clustering produced no tree; writing an empty table")

        if self.output_path:
            Path(self.output_path).parent.mkdir(parents=True, exist_ok=True)
            self.table.to_csv(self.output_path, index=False)
            logger.info(f"Wrote {len(self.table)} clustered matches to {self.output_path}")
