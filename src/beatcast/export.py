"""
Timeline export.

Writes the assembled timeline to disk as a flat table, one row per event,
for offline inspection or for replaying into other tools. The format is
chosen from the file suffix:

    - ``.csv``: comma-separated, payload fields as a JSON string
    - ``.parquet``: Apache Parquet (requires pyarrow)
    - ``.jsonl``: one wire envelope per line
"""

import json
import logging
from dataclasses import asdict
from pathlib import Path
from typing import List, Sequence, Union

import pandas as pd

from beatcast.events import category_of
from beatcast.timeline import TimelineEvent

logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())

EXPORT_COLUMNS = ["timestamp", "type", "category", "data"]
EXPORT_SUFFIXES = (".csv", ".parquet", ".jsonl")


def timeline_to_frame(timeline: Sequence[TimelineEvent]) -> pd.DataFrame:
    """Flatten a timeline into a DataFrame with ``EXPORT_COLUMNS``."""
    rows: List[dict] = []
    for event in timeline:
        rows.append(
            {
                "timestamp": event.timestamp,
                "type": event.event_type.value,
                "category": category_of(event.event_type).value,
                "data": json.dumps(asdict(event.payload), separators=(",", ":")),
            }
        )
    if not rows:
        return pd.DataFrame(columns=EXPORT_COLUMNS)
    return pd.DataFrame(rows, columns=EXPORT_COLUMNS)


def export_timeline(timeline: Sequence[TimelineEvent], path: Union[str, Path]) -> Path:
    """Write the timeline to ``path``.

    Raises:
        ValueError: If the suffix is not one of ``EXPORT_SUFFIXES``.
    """
    path = Path(path)
    suffix = path.suffix.lower()
    if suffix not in EXPORT_SUFFIXES:
        raise ValueError(
            f"Unsupported export format '{path.suffix}'; use one of {', '.join(EXPORT_SUFFIXES)}"
        )
    path.parent.mkdir(parents=True, exist_ok=True)

    if suffix == ".jsonl":
        with open(path, "wb") as f:
            for event in timeline:
                f.write(event.data)
                f.write(b"\n")
    else:
        df = timeline_to_frame(timeline)
        if suffix == ".csv":
            df.to_csv(path, index=False)
        else:
            df.to_parquet(path, index=False)

    logger.info("Wrote timeline to %s (%d events)", path, len(timeline))
    return path
