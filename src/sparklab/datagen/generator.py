"""Synthetic customer-interaction data for the batch and streaming jobs.

Realism features, all seeded through one ``numpy.random.Generator``:
  1. Zipf-distributed customer IDs (a few heavy customers, a long tail)
  2. Weighted interaction types (browse-heavy, ~18% purchases)
  3. Log-normal purchase amounts, zero for non-purchases
  4. Customer-consistent loyalty membership
  5. Dirty rows: messy emails, suspected duplicates, missing customer IDs
  6. A churn label drawn from a logistic function of behaviour

Files are written in event-time order: file 0 holds the earliest slice of
the time range, file N-1 the latest, and modification times increase with
the file index. A file stream source therefore replays them in the same
order an upstream producer would have delivered them, which keeps a
watermark from discarding rows as late.
"""

from __future__ import annotations

import json
import logging
import os
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path

import numpy as np
import pyarrow as pa
import pyarrow.compute as pc
import pyarrow.csv as pacsv
import pyarrow.parquet as pq

from sparklab.config.schema import FileFormatType, SparkLabConfig

logger = logging.getLogger(__name__)

# =============================================================================
# Constants matching the Spark event schema
# =============================================================================

EVENT_COLUMNS = [
    "event_id",
    "event_timestamp",
    "customer_id",
    "interaction_type",
    "channel",
    "product_category",
    "transaction_amount",
    "page_views",
    "time_on_site_seconds",
    "satisfaction_score",
    "loyalty_member",
    "email_raw",
    "data_quality_flag",
    "churned",
]

REFERRAL_COLUMNS = ["src", "dst"]

INTERACTION_TYPES = ["purchase", "browse", "support", "login", "abandoned_cart"]
INTERACTION_WEIGHTS = [0.18, 0.35, 0.12, 0.20, 0.15]

CHANNELS = ["web", "mobile_app", "store", "call_center"]
CHANNEL_WEIGHTS = [0.45, 0.35, 0.15, 0.05]

PRODUCT_CATEGORIES = ["electronics", "clothing", "home_garden", "books", "sports"]
EMAIL_DOMAINS = ["gmail.com", "yahoo.com", "outlook.com", "icloud.com"]

DATA_QUALITY_FLAGS = ["clean", "duplicate_suspected", "incomplete_data", "format_inconsistent"]

ARROW_EVENT_SCHEMA = pa.schema(
    [
        ("event_id", pa.string()),
        ("event_timestamp", pa.timestamp("s", tz="UTC")),
        ("customer_id", pa.int64()),
        ("interaction_type", pa.string()),
        ("channel", pa.string()),
        ("product_category", pa.string()),
        ("transaction_amount", pa.float64()),
        ("page_views", pa.int32()),
        ("time_on_site_seconds", pa.int32()),
        ("satisfaction_score", pa.int32()),
        ("loyalty_member", pa.bool_()),
        ("email_raw", pa.string()),
        ("data_quality_flag", pa.string()),
        ("churned", pa.int32()),
    ]
)

ARROW_REFERRAL_SCHEMA = pa.schema([("src", pa.int64()), ("dst", pa.int64())])


@dataclass
class GenerationResult:
    """Outcome of a generator run."""

    event_files: list[Path] = field(default_factory=list)
    referral_files: list[Path] = field(default_factory=list)
    rows: int = 0
    edges: int = 0
    elapsed_seconds: float = 0.0


# =============================================================================
# Column generators
# =============================================================================


def zipf_customer_ids(rows: int, rng: np.random.Generator, customers: int) -> np.ndarray:
    """Power-law customer activity, folded into ``1..customers``."""
    raw = rng.zipf(1.3, size=rows)
    return ((raw - 1) % customers) + 1


def sorted_timestamps(
    rows: int, rng: np.random.Generator, start: datetime, end: datetime
) -> np.ndarray:
    """Uniform UTC timestamps (second precision) within [start, end), ascending."""
    lo = start.replace(tzinfo=timezone.utc).timestamp()
    hi = end.replace(tzinfo=timezone.utc).timestamp()
    values = rng.uniform(lo, hi, size=rows).astype(np.int64)
    values.sort()
    return values.astype("datetime64[s]")


def transaction_amounts(interaction_types: np.ndarray, rng: np.random.Generator) -> np.ndarray:
    """Log-normal amounts for purchases, zero for everything else."""
    amounts = np.round(rng.lognormal(mean=4.0, sigma=0.9, size=len(interaction_types)), 2)
    return np.where(interaction_types == "purchase", amounts, 0.0)


def emails(customer_ids: np.ndarray, rng: np.random.Generator, dirty_ratio: float) -> list[str]:
    """One address per customer, with a fraction of rows made messy."""
    domains = np.array(EMAIL_DOMAINS)[customer_ids % len(EMAIL_DOMAINS)]
    out = [f"user{cid}@{dom}" for cid, dom in zip(customer_ids, domains, strict=True)]
    n_dirty = int(len(out) * dirty_ratio)
    if n_dirty:
        for idx, mode in zip(
            rng.choice(len(out), size=n_dirty, replace=False),
            rng.integers(0, 3, size=n_dirty),
            strict=True,
        ):
            if mode == 0:
                out[idx] = out[idx].upper()
            elif mode == 1:
                out[idx] = f"  {out[idx]}  "
            else:
                out[idx] = out[idx].replace("@", ".duplicate@")
    return out


def churn_labels(
    satisfaction: np.ndarray,
    page_views: np.ndarray,
    loyalty: np.ndarray,
    rng: np.random.Generator,
) -> np.ndarray:
    """Draw 0/1 churn from a logistic function of behaviour.

    ``satisfaction`` uses -1 for missing scores, treated as neutral (3).
    """
    sat = np.where(satisfaction < 0, 3, satisfaction)
    logit = -0.8 + 0.9 * (3 - sat) - 0.12 * page_views - 0.7 * loyalty.astype(float)
    prob = 1.0 / (1.0 + np.exp(-logit))
    return (rng.random(len(prob)) < prob).astype(np.int32)


def generate_events(
    rows: int,
    rng: np.random.Generator,
    customers: int,
    start: datetime,
    end: datetime,
    dirty_ratio: float,
) -> pa.Table:
    """Build one Arrow table of *rows* events in ascending event time."""
    customer_ids = zipf_customer_ids(rows, rng, customers)
    interaction = rng.choice(INTERACTION_TYPES, size=rows, p=INTERACTION_WEIGHTS)
    channel = rng.choice(CHANNELS, size=rows, p=CHANNEL_WEIGHTS)
    category = rng.choice(PRODUCT_CATEGORIES, size=rows)
    page_views = rng.poisson(4, size=rows).astype(np.int32)
    time_on_site = (page_views * rng.integers(20, 120, size=rows)).astype(np.int32)

    # Loyalty is a property of the customer, not of the event
    loyalty_lookup = np.random.default_rng(customers).random(customers + 1) < 0.6
    loyalty = loyalty_lookup[customer_ids]

    satisfaction = rng.integers(1, 6, size=rows).astype(np.int32)
    # Satisfaction is only collected for support contacts and purchases
    surveyed = np.isin(interaction, ["support", "purchase"])
    satisfaction_or_missing = np.where(surveyed, satisfaction, -1)

    quality = np.full(rows, "clean", dtype=object)
    n_dirty = int(rows * dirty_ratio)
    if n_dirty:
        dirty_idx = rng.choice(rows, size=n_dirty, replace=False)
        quality[dirty_idx] = rng.choice(DATA_QUALITY_FLAGS[1:], size=n_dirty)

    customer_col = pa.array(customer_ids, type=pa.int64(), mask=quality == "incomplete_data")

    return pa.table(
        {
            "event_id": [str(uuid.UUID(bytes=rng.bytes(16), version=4)) for _ in range(rows)],
            "event_timestamp": pa.array(
                sorted_timestamps(rows, rng, start, end), type=pa.timestamp("s", tz="UTC")
            ),
            "customer_id": customer_col,
            "interaction_type": interaction.tolist(),
            "channel": channel.tolist(),
            "product_category": category.tolist(),
            "transaction_amount": transaction_amounts(interaction, rng),
            "page_views": page_views,
            "time_on_site_seconds": time_on_site,
            "satisfaction_score": pa.array(satisfaction, type=pa.int32(), mask=~surveyed),
            "loyalty_member": loyalty,
            "email_raw": emails(customer_ids, rng, dirty_ratio),
            "data_quality_flag": quality.tolist(),
            "churned": churn_labels(satisfaction_or_missing, page_views, loyalty, rng),
        },
        schema=ARROW_EVENT_SCHEMA,
    )


def generate_referrals(edges: int, rng: np.random.Generator, customers: int) -> pa.Table:
    """Directed referral edges between customers, unique and without self loops."""
    if edges == 0 or customers < 2:
        return ARROW_REFERRAL_SCHEMA.empty_table()
    src = zipf_customer_ids(edges, rng, customers)
    dst = rng.integers(1, customers + 1, size=edges)
    keep = src != dst
    pairs = np.unique(np.stack([src[keep], dst[keep]], axis=1), axis=0)
    return pa.table(
        {"src": pairs[:, 0].astype(np.int64), "dst": pairs[:, 1].astype(np.int64)},
        schema=ARROW_REFERRAL_SCHEMA,
    )


# =============================================================================
# Writers
# =============================================================================


def _iso_timestamps(table: pa.Table) -> pa.Table:
    """Render timestamp columns as ISO-8601 text, the form Spark's readers expect."""
    for i, fld in enumerate(table.schema):
        if pa.types.is_timestamp(fld.type):
            text = pc.strftime(table.column(i), format="%Y-%m-%dT%H:%M:%S")
            table = table.set_column(i, fld.name, text)
    return table


def _write_csv(table: pa.Table, path: Path) -> None:
    pacsv.write_csv(_iso_timestamps(table), path)


def _write_json_lines(table: pa.Table, path: Path) -> None:
    with open(path, "w") as f:
        for record in _iso_timestamps(table).to_pylist():
            f.write(json.dumps(record) + "\n")


_WRITERS: dict[FileFormatType, Callable[[pa.Table, Path], None]] = {
    FileFormatType.CSV: _write_csv,
    FileFormatType.JSON: _write_json_lines,
    FileFormatType.PARQUET: lambda t, p: pq.write_table(t, p, compression="snappy"),
}


def write_table(table: pa.Table, path: Path, fmt: FileFormatType) -> Path:
    """Write *table* to *path* in *fmt*, creating parent directories."""
    path.parent.mkdir(parents=True, exist_ok=True)
    # Write then rename so a file stream source never sees a half-written file
    tmp = path.with_name(f".{path.name}.tmp")
    _WRITERS[fmt](table, tmp)
    os.replace(tmp, path)
    return path


class DataGenerator:
    """Writes the event landing zone and referral edges for a config."""

    def __init__(self, config: SparkLabConfig):
        self.config = config
        self.datagen = config.datagen
        self.fmt = config.data.input_format

    def _file_name(self, prefix: str, index: int) -> str:
        ext = "json" if self.fmt == FileFormatType.JSON else self.fmt.value
        return f"{prefix}-{index:05d}.{ext}"

    def generate(
        self,
        overwrite: bool = False,
        progress_callback: Callable[[int, int], None] | None = None,
    ) -> GenerationResult:
        """Generate all files.

        Args:
            overwrite: Remove existing landing-zone files first
            progress_callback: Called with (files_done, files_total)

        Raises:
            FileExistsError: If the landing zone already has files and
                ``overwrite`` is False
        """
        started = time.time()
        events_dir = self.config.get_events_path()
        referrals_dir = self.config.get_referrals_path()

        for d in (events_dir, referrals_dir):
            existing = list(d.glob("*")) if d.exists() else []
            if existing and not overwrite:
                raise FileExistsError(f"{d} already contains {len(existing)} file(s)")
            for p in existing:
                if p.is_file():
                    p.unlink()

        rng = np.random.default_rng(self.datagen.seed)
        start = datetime.fromisoformat(self.datagen.timestamp_start)
        end = datetime.fromisoformat(self.datagen.timestamp_end)
        files = min(self.datagen.files, self.datagen.rows)
        result = GenerationResult()

        span = (end - start) / files
        rows_per_file = np.array_split(np.arange(self.datagen.rows), files)
        mtime_base = time.time() - files
        for i, chunk in enumerate(rows_per_file):
            table = generate_events(
                len(chunk),
                rng,
                self.datagen.customers,
                start + span * i,
                start + span * (i + 1),
                self.datagen.dirty_ratio,
            )
            path = write_table(table, events_dir / self._file_name("events", i), self.fmt)
            os.utime(path, (mtime_base + i, mtime_base + i))
            result.event_files.append(path)
            result.rows += table.num_rows
            logger.debug("Wrote %s rows to %s", table.num_rows, path)
            if progress_callback:
                progress_callback(i + 1, files)

        referrals = generate_referrals(self.datagen.referral_edges, rng, self.datagen.customers)
        result.referral_files.append(
            write_table(referrals, referrals_dir / self._file_name("referrals", 0), self.fmt)
        )
        result.edges = referrals.num_rows

        result.elapsed_seconds = time.time() - started
        logger.info(
            "Generated %s events in %s files and %s referral edges",
            result.rows,
            len(result.event_files),
            result.edges,
        )
        return result
