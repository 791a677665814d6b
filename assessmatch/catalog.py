"""
Catalog loading for AssessMatch.

Parses the static assessment CSV into AssessmentRecords and registers each
record's embedding in a VectorStore. Columns are looked up by header name,
so column order does not matter.
"""

import csv
import io
import re
from pathlib import Path
from typing import Callable, Dict, IO, List, Optional, Union

from rich.console import Console
from rich.progress import Progress

from .cache import EmbeddingCache
from .errors import MalformedCatalog
from .models import AssessmentRecord
from .preprocessing import TextPreprocessor
from .store import VectorStore

console = Console(stderr=True)

CatalogSource = Union[str, Path, IO[str]]
ProgressCallback = Callable[[str, str], None]

# Record field -> accepted header spellings (compared after header normalization)
COLUMN_ALIASES = {
    "id": ("id", "identifier", "assessment id", "entity id"),
    "name": ("assessment name", "name"),
    "duration": ("duration", "assessment length"),
    "test_type": ("test type", "type"),
    "adaptive_irt": ("adaptive/irt", "adaptive irt", "adaptive"),
    "remote_testing": ("remote testing", "remote"),
    "url": ("url", "link"),
    "description": ("description",),
}

# Fields that may not be blank in any row
REQUIRED_VALUES = ("id", "name", "adaptive_irt", "remote_testing", "url", "description")

TRUE_VALUES = {"yes", "y", "true", "1"}
FALSE_VALUES = {"no", "n", "false", "0"}

EMBED_BATCH_SIZE = 32


def _normalize_header(header: str) -> str:
    return re.sub(r"[\s_]+", " ", (header or "").strip().lower())


def parse_flag(value: str) -> Optional[bool]:
    value = (value or "").strip().lower()
    if value in TRUE_VALUES:
        return True
    if value in FALSE_VALUES:
        return False
    return None


class CatalogLoader:
    """Parses the assessment catalog and loads it into a vector store."""

    def __init__(self, preprocessor: Optional[TextPreprocessor] = None, batch_size: int = EMBED_BATCH_SIZE):
        # Catalog descriptions are never rejected for length, only cut.
        if preprocessor is None:
            from .config import get_config_manager
            max_chars = get_config_manager().get('preprocessing', 'max_chars')
            preprocessor = TextPreprocessor(max_chars=max_chars, overflow_policy="truncate")
        self.preprocessor = preprocessor
        self.batch_size = max(1, batch_size)

    def _open(self, source: CatalogSource) -> IO[str]:
        if isinstance(source, (str, Path)):
            path = Path(source)
            if not path.exists():
                raise MalformedCatalog(f"Catalog file not found: {path}")
            return open(path, 'r', newline='', encoding='utf-8-sig')
        return source

    def _resolve_columns(self, headers: List[str]) -> Dict[str, str]:
        """Map record fields to the actual header names in the file."""
        by_normalized = {}
        for header in headers:
            by_normalized.setdefault(_normalize_header(header), header)

        columns = {}
        for field, aliases in COLUMN_ALIASES.items():
            for alias in aliases:
                if alias in by_normalized:
                    columns[field] = by_normalized[alias]
                    break
            else:
                raise MalformedCatalog(
                    f"Missing required column (expected one of: {', '.join(aliases)})",
                    field=field,
                )
        return columns

    def _parse_row(self, row: Dict[str, str], columns: Dict[str, str], row_number: int) -> AssessmentRecord:
        values = {field: (row.get(header) or "").strip() for field, header in columns.items()}

        for field in REQUIRED_VALUES:
            if not values[field]:
                raise MalformedCatalog("Missing value", row=row_number, field=field)

        flags = {}
        for field in ("adaptive_irt", "remote_testing"):
            flag = parse_flag(values[field])
            if flag is None:
                raise MalformedCatalog(f"Invalid yes/no value '{values[field]}'", row=row_number, field=field)
            flags[field] = flag

        return AssessmentRecord(
            id=values["id"],
            name=values["name"],
            duration=values["duration"],
            test_type=values["test_type"],
            adaptive_irt=flags["adaptive_irt"],
            remote_testing=flags["remote_testing"],
            url=values["url"],
            description=values["description"],
        )

    def _read(self, source: CatalogSource, issues: Optional[List[str]] = None) -> List[AssessmentRecord]:
        handle = self._open(source)
        try:
            reader = csv.DictReader(handle)
            if not reader.fieldnames:
                raise MalformedCatalog("Catalog has no header row")
            columns = self._resolve_columns(list(reader.fieldnames))

            records = []
            seen_ids = set()
            for row_number, row in enumerate(reader, start=1):
                try:
                    record = self._parse_row(row, columns, row_number)
                    if record.id in seen_ids:
                        raise MalformedCatalog(f"Duplicate id '{record.id}'", row=row_number, field="id")
                except MalformedCatalog as e:
                    if issues is None:
                        raise
                    issues.append(str(e))
                    continue
                seen_ids.add(record.id)
                records.append(record)
        except csv.Error as e:
            raise MalformedCatalog(f"Unreadable CSV: {e}") from e
        finally:
            if handle is not source:
                handle.close()

        if not records and issues is None:
            raise MalformedCatalog("Catalog contains no assessments")
        return records

    def parse(self, source: CatalogSource) -> List[AssessmentRecord]:
        """Parse the catalog, failing on the first malformed row."""
        return self._read(source)

    def parse_text(self, text: str) -> List[AssessmentRecord]:
        return self.parse(io.StringIO(text))

    def validate(self, source: CatalogSource) -> List[str]:
        """Return every problem found in the catalog without raising."""
        issues: List[str] = []
        try:
            records = self._read(source, issues=issues)
        except MalformedCatalog as e:
            return [str(e)]
        if not records and not issues:
            issues.append("Catalog contains no assessments")
        return issues

    def load(self,
             source: CatalogSource,
             store: VectorStore,
             cache: EmbeddingCache,
             progress: Optional[ProgressCallback] = None,
             show_progress: bool = True) -> List[AssessmentRecord]:
        """
        Parse the catalog, embed every description and populate the store.

        Nothing is added to the store until every record has been embedded,
        so a failure leaves it empty. Reloading unchanged content is served
        from the embedding cache.
        """
        if len(store) or store.frozen:
            raise ValueError("Catalog must be loaded into a new, empty vector store")

        emit = progress or (lambda msg_type, message: None)
        emit('info', "Reading catalog...")
        records = self.parse(source)
        emit('info', f"Loaded {len(records)} assessments")

        texts = [self.preprocessor.normalize(record.embedding_text()) for record in records]

        emit('info', "Generating embeddings (one-time)...")
        vectors = []
        batches = [texts[i:i + self.batch_size] for i in range(0, len(texts), self.batch_size)]
        if show_progress and len(batches) > 1:
            with Progress(console=console) as bar:
                task = bar.add_task("Embedding assessments...", total=len(texts))
                for batch in batches:
                    vectors.extend(cache.get_or_compute_many(batch))
                    bar.update(task, advance=len(batch))
        else:
            for batch in batches:
                vectors.extend(cache.get_or_compute_many(batch))

        for record, vector in zip(records, vectors):
            store.add(record.id, vector, record)
        store.freeze()

        console.print(f"[green]✓ Assessment store ready with {len(store)} assessments[/green]")
        emit('success', "Assessment store ready")
        return records
