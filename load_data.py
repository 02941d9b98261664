"""
Learning Insights Data Loader

Turns loosely structured spreadsheet/CSV exports of students' digital-learning
activity into a canonical, immutable Dataset.

Handles the messy parts of real exports:
- Column names vary between files (Chinese headers, English, camelCase)
- Usage time arrives as "H:MM:SS" text or as a spreadsheet time serial
- Optional numeric columns may be blank or contain text
- Rows without both a pre-score and a post-score are dropped, not fatal
"""

import pandas as pd
import numpy as np
import argparse
import contextlib
import datetime
import io
import json
import math
import re
import sys
from pathlib import Path
from typing import Dict, List, Any, Callable, Iterable, Mapping, Optional, Sequence, Tuple

from analytics import (
    Dataset,
    EmptyDatasetError,
    FilterState,
    Provenance,
    StudentRecord,
    filter_options,
    project,
    view_to_dict,
)
from config import (
    FIELD_ALIASES,
    UNKNOWN_SCHOOL,
    DEFAULT_SUBJECT,
    DEFAULT_GRADE,
    ALL,
    SAMPLE_SCHOOLS,
    SAMPLE_SUBJECTS,
    SAMPLE_SIZE,
    SAMPLE_SEED,
)

RawRow = Mapping[str, Any]

# Leading number, like "85", "85.5", "-3", "85 pts"
_NUMBER_PREFIX = re.compile(r'^[+-]?(\d+(\.\d*)?|\.\d+)([eE][+-]?\d+)?')
_INTEGER_PREFIX = re.compile(r'\s*[+-]?\d+')

MINUTES_PER_DAY = 24 * 60


# ==================== VALUE COERCION ====================

def _is_blank(value: Any) -> bool:
    """True for None, empty/whitespace strings and NaN-like cells."""
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ''
    try:
        return bool(pd.isna(value))
    except (TypeError, ValueError):
        return False


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float, np.integer, np.floating)) and not isinstance(value, (bool, np.bool_))


def parse_score(value: Any) -> float:
    """Parse a score permissively; returns NaN when no number can be read."""
    if _is_number(value):
        number = float(value)
    else:
        match = _NUMBER_PREFIX.match(str(value).strip())
        if not match:
            return float('nan')
        number = float(match.group(0))

    if not math.isfinite(number):
        return float('nan')
    return number


def parse_count(value: Any) -> int:
    """Parse a non-negative count; anything unreadable becomes 0."""
    number = parse_score(value)
    if math.isnan(number) or number < 0:
        return 0
    return int(number)


def parse_text(value: Any) -> str:
    """Stringify a cell, turning spreadsheet floats like 5.0 into "5"."""
    if isinstance(value, (float, np.floating)) and float(value).is_integer():
        return str(int(value))
    return str(value).strip()


def _to_int(part: str) -> int:
    """Leading integer of a duration part ("30min" -> 30, "30.5" -> 30), else 0."""
    match = _INTEGER_PREFIX.match(part)
    if not match:
        return 0
    return int(match.group(0))


def parse_duration(raw: Any) -> int:
    """
    Convert a raw usage-time value into whole minutes (>= 0).

    - Blank -> 0
    - Numbers are spreadsheet time serials (fraction of a day): 0.5 -> 720
    - Text "H:MM" or "H:MM:SS" -> hours * 60 + minutes (seconds are ignored);
      each part is read up to its first non-digit, so "1:30min" -> 90
    - Anything else -> 0

    There is no upper bound: "250:00:00" is 15000 minutes.
    """
    if _is_blank(raw):
        return 0

    if _is_number(raw):
        value = float(raw)
        if not math.isfinite(value):
            return 0
        # Round half up
        return max(0, int(math.floor(value * MINUTES_PER_DAY + 0.5)))

    parts = str(raw).strip().split(':')
    if len(parts) < 2:
        return 0

    hours = _to_int(parts[0])
    minutes = _to_int(parts[1])
    return max(0, hours * 60 + minutes)


# ==================== FIELD RESOLUTION ====================

def resolve_field(row: RawRow,
                  aliases: Sequence[str],
                  default: Any,
                  parser: Callable[[Any], Any] = parse_text) -> Any:
    """
    Return parser(value) for the first alias with a non-empty value in row.

    Falls back to default when no alias matches.
    """
    for alias in aliases:
        if alias in row and not _is_blank(row[alias]):
            return parser(row[alias])
    return default


def resolve_display_name(row: RawRow, index: int) -> str:
    """
    Pick a label for the student.

    Priority: explicit name > "(<teacher>'s class)" > "Student <index+1>".
    """
    name = resolve_field(row, FIELD_ALIASES['name'], '')
    if name:
        return name

    teacher = resolve_field(row, FIELD_ALIASES['teacher'], '')
    if teacher:
        return f"({teacher}'s class)"

    return f"Student {index + 1}"


def resolve_row(row: RawRow, index: int) -> Optional[Dict[str, Any]]:
    """
    Map one raw row onto the canonical fields.

    Returns None (row rejected) when the pre-score or post-score is missing
    under every alias or cannot be read as a number. The raw usage value is
    returned under 'usage_time' for duration parsing.
    """
    row = {str(key).strip(): value for key, value in row.items()}

    pre_score = resolve_field(row, FIELD_ALIASES['pre_score'], None, parse_score)
    post_score = resolve_field(row, FIELD_ALIASES['post_score'], None, parse_score)

    if pre_score is None or post_score is None:
        return None
    if math.isnan(pre_score) or math.isnan(post_score):
        return None

    return {
        'school': resolve_field(row, FIELD_ALIASES['school'], UNKNOWN_SCHOOL),
        'grade': resolve_field(row, FIELD_ALIASES['grade'], DEFAULT_GRADE),
        'subject': resolve_field(row, FIELD_ALIASES['subject'], DEFAULT_SUBJECT),
        'pre_score': pre_score,
        'post_score': post_score,
        'usage_time': resolve_field(row, FIELD_ALIASES['usage_time'], '', lambda value: value),
        'tasks_completed': resolve_field(row, FIELD_ALIASES['tasks_completed'], 0, parse_count),
        'practice_quiz_count': resolve_field(row, FIELD_ALIASES['practice_quiz_count'], 0, parse_count),
        'display_name': resolve_display_name(row, index),
    }


# ==================== DATASET BUILDING ====================

def build_dataset(raw_rows: Iterable[RawRow],
                  provenance: Provenance = Provenance.UPLOADED) -> Dataset:
    """
    Build a complete Dataset from raw rows.

    This is the main entry point for turning decoded rows into records.

    Rows missing a mandatory score are dropped and counted. Raises
    EmptyDatasetError if no row survives; callers must then keep whatever
    dataset they already had.
    """
    records = []
    dropped = 0

    for index, row in enumerate(raw_rows):
        fields = resolve_row(row, index)
        if fields is None:
            dropped += 1
            continue

        usage_minutes = parse_duration(fields.pop('usage_time'))
        records.append(StudentRecord(usage_minutes=usage_minutes, **fields))

    if not records:
        raise EmptyDatasetError(dropped)

    if dropped:
        print(f"  Warning: Dropped {dropped} of {dropped + len(records)} rows "
              f"missing a pre-score or post-score")

    return Dataset(
        records=tuple(records),
        provenance=Provenance(provenance),
        dropped_rows=dropped
    )


def replace_dataset(current: Optional[Dataset],
                    raw_rows: Iterable[RawRow],
                    provenance: Provenance = Provenance.UPLOADED) -> Tuple[Optional[Dataset], Optional[str]]:
    """
    Build a replacement for the active dataset.

    Returns (new_dataset, None) on success. If the rows yield no usable
    records, returns (current, explanation) so the caller keeps its dataset.
    """
    try:
        return build_dataset(raw_rows, provenance), None
    except EmptyDatasetError as e:
        print(f"  Warning: {e}")
        return current, str(e)


# ==================== FILE DECODING ====================

def _format_cell(value: Any) -> Any:
    """Normalize a decoded cell: blanks -> "", spreadsheet times -> "H:MM:SS"."""
    if _is_blank(value):
        return ''
    if isinstance(value, datetime.time):
        return f"{value.hour}:{value.minute:02d}:{value.second:02d}"
    if isinstance(value, datetime.timedelta):
        total_seconds = int(value.total_seconds())
        hours, remainder = divmod(total_seconds, 3600)
        minutes, seconds = divmod(remainder, 60)
        return f"{hours}:{minutes:02d}:{seconds:02d}"
    return value


def read_raw_rows(source: Any, filename: Optional[str] = None) -> List[Dict[str, Any]]:
    """
    Decode a CSV/TSV/Excel export into a list of raw rows.

    Args:
        source: Path or file-like object (e.g. a Streamlit upload)
        filename: Name used to pick the format when source has none

    Returns:
        List of dicts keyed by stripped header names, one per non-blank row
    """
    name = filename or getattr(source, 'name', None) or str(source)
    suffix = Path(name).suffix.lower()

    if suffix in ('.csv', '.txt'):
        df = pd.read_csv(source, dtype=object, keep_default_na=False, encoding='utf-8-sig')
    elif suffix == '.tsv':
        df = pd.read_csv(source, sep='\t', dtype=object, keep_default_na=False, encoding='utf-8-sig')
    elif suffix == '.xlsx':
        df = pd.read_excel(source, dtype=object)
    else:
        raise ValueError(f"Unsupported file type '{suffix}' for {name} (expected .csv, .tsv or .xlsx)")

    df.columns = [str(col).strip() for col in df.columns]

    rows = []
    for record in df.to_dict(orient='records'):
        if all(_is_blank(value) for value in record.values()):
            continue
        rows.append({key: _format_cell(value) for key, value in record.items()})

    print(f"  Loaded: {Path(name).name} -> {len(rows)} rows")
    return rows


def parse_pasted_text(text: str) -> List[Dict[str, Any]]:
    """Decode CSV text pasted from a spreadsheet (tab-separated if copied from Excel)."""
    if not text.strip():
        return []

    header = text.strip().splitlines()[0]
    filename = 'pasted.tsv' if '\t' in header and ',' not in header else 'pasted.csv'
    return read_raw_rows(io.StringIO(text.strip()), filename=filename)


# ==================== SAMPLE DATA ====================

def generate_sample_rows(n_students: int = SAMPLE_SIZE,
                         random_state: int = SAMPLE_SEED) -> List[Dict[str, Any]]:
    """
    Illustrative raw rows in the platform's own export layout.

    Scores and usage carry random jitter; a fixed seed keeps the sample
    reproducible between sessions.
    """
    rng = np.random.default_rng(random_state)

    pre = np.clip(rng.normal(68, 12, size=n_students), 20, 100).round()
    gain = rng.normal(6, 9, size=n_students)
    post = np.clip(pre + gain, 0, 100).round()
    usage = np.clip(rng.gamma(2.0, 60, size=n_students), 5, 900).astype(int)
    tasks = np.clip(rng.poisson(12, size=n_students), 0, 40)
    practice = np.clip(rng.poisson(4, size=n_students), 0, 20)

    rows = []
    for i in range(n_students):
        hours, minutes = divmod(int(usage[i]), 60)
        rows.append({
            '學校名稱': SAMPLE_SCHOOLS[i % len(SAMPLE_SCHOOLS)],
            '科目': SAMPLE_SUBJECTS[i % len(SAMPLE_SUBJECTS)],
            '年級': str(3 + i % 4),
            '姓名': f"S{11301 + i}",
            '前測成績': float(pre[i]),
            '後測成績': float(post[i]),
            '使用總時數': f"{hours}:{minutes:02d}:00",
            '任務完成數': int(tasks[i]),
            '練習題測驗': int(practice[i]),
        })

    return rows


def load_sample_dataset() -> Dataset:
    """Build the sample dataset shown before anything is uploaded."""
    return build_dataset(generate_sample_rows(), Provenance.SAMPLE)


# ==================== CLI ====================

def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Summarize a learning-activity export.")
    parser.add_argument(
        "file",
        nargs="?",
        help="CSV/TSV/XLSX export. Uses the sample dataset when omitted.",
    )
    parser.add_argument("--school", default=ALL, help="Filter by school.")
    parser.add_argument("--subject", default=ALL, help="Filter by subject.")
    parser.add_argument(
        "--json",
        action="store_true",
        help="Print the derived view as JSON instead of a summary.",
    )
    return parser.parse_args(argv)


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)

    # Keep stdout clean for JSON output
    status_stream = sys.stderr if args.json else sys.stdout

    with contextlib.redirect_stdout(status_stream):
        print("=" * 60)
        print("Learning Insights Data Loader")
        print("=" * 60)

        try:
            if args.file:
                dataset = build_dataset(read_raw_rows(args.file), Provenance.UPLOADED)
            else:
                dataset = load_sample_dataset()
        except EmptyDatasetError as e:
            print(f"ERROR: {e}")
            return 1
        except (ValueError, OSError) as e:
            print(f"ERROR: Could not read {args.file}: {e}")
            return 1

    view = project(dataset, FilterState(school=args.school, subject=args.subject))

    if args.json:
        print(json.dumps(view_to_dict(view), indent=2, ensure_ascii=False))
        return 0

    schools, subjects = filter_options(dataset)
    kpi = view.kpi

    print("\n" + "=" * 60)
    print("Data Summary")
    print("=" * 60)
    print(f"  Provenance: {dataset.provenance.value}")
    print(f"  Records: {len(dataset)} ({dataset.dropped_rows} rows dropped)")
    print(f"  Schools: {schools[1:]}")
    print(f"  Subjects: {subjects[1:]}")
    print(f"  Filter: school={args.school}, subject={args.subject}")
    print(f"  Total Students: {kpi.total_students}")
    print(f"  Average Improvement: {kpi.avg_improvement:+.1f}")
    print(f"  Needs Attention: {kpi.needs_attention_count}")
    print(f"  Ineffective Learning: {kpi.ineffective_learning_count}")
    print(f"  High Potential: {kpi.high_potential_count}")

    if view.bar_series:
        print("\n  Average improvement by school:")
        for point in view.bar_series:
            print(f"    {point.school}: {point.avg_improvement:+.1f}")

    return 0


# CLI entry point
if __name__ == "__main__":
    sys.exit(main())
