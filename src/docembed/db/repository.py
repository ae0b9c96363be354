"""Repository pattern for all docembed database operations.

Single interface for: sources, files, file sections, token usage and
vector search. The connection is shared between orchestrator workers, so
every public method runs under one re-entrant lock.
"""

from __future__ import annotations

import json
import sqlite3
import struct
import threading
from typing import Any

from sqlite_vec import serialize_float32

from docembed.db.models import FileRecord, SectionRecord, SourceRecord

_FILE_COLUMNS = (
    "id, source_id, project_id, path, checksum, meta, raw_content, "
    "token_count, internal_metadata, updated_at"
)
_SECTION_COLUMNS = (
    "id, file_id, content, meta, embedding, token_count, cf_project_id, cf_file_meta"
)


class Repository:
    """Data access layer for docembed database entities.

    Wraps an open sqlite3.Connection and provides typed methods for sources,
    files and sections. The connection is owned by the caller and must be
    closed after use.
    """

    def __init__(self, conn: sqlite3.Connection, dimensions: int | None = None) -> None:
        """Initialise with an open database connection.

        Args:
            conn: An open sqlite3.Connection with sqlite-vec loaded and schema
                initialised (see docembed.db.schema.initialize).
            dimensions: Expected embedding length. When set, sections whose
                embedding has a different length are rejected.
        """
        self._conn = conn
        self._dimensions = dimensions
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Sources
    # ------------------------------------------------------------------

    def add_source(self, source: SourceRecord) -> None:
        """Insert a new source record."""
        with self._lock:
            self._conn.execute(
                "INSERT INTO sources (id, project_id, type, data) VALUES (?, ?, ?, ?)",
                (source.id, source.project_id, source.type, source.data),
            )
            self._conn.commit()

    def get_source(self, source_id: str) -> SourceRecord | None:
        """Return a source by ID, or None if not found."""
        with self._lock:
            row = self._conn.execute(
                "SELECT id, project_id, type, data, inserted_at FROM sources WHERE id = ?",
                (source_id,),
            ).fetchone()
        return _row_to_source(row) if row else None

    def list_sources(self, project_id: str | None = None) -> list[SourceRecord]:
        """Return sources ordered by insertion time, optionally for one project."""
        sql = "SELECT id, project_id, type, data, inserted_at FROM sources"
        params: tuple[Any, ...] = ()
        if project_id is not None:
            sql += " WHERE project_id = ?"
            params = (project_id,)
        with self._lock:
            rows = self._conn.execute(sql + " ORDER BY inserted_at, id", params).fetchall()
        return [_row_to_source(r) for r in rows]

    def ensure_source(
        self,
        source_id: str,
        project_id: str,
        type: str = "files",
        data: dict[str, Any] | None = None,
    ) -> SourceRecord:
        """Return the source with *source_id*, creating it if missing."""
        with self._lock:
            existing = self.get_source(source_id)
            if existing is not None:
                return existing
            source = SourceRecord(
                id=source_id, project_id=project_id, type=type, data=json.dumps(data or {})
            )
            self.add_source(source)
            return self.get_source(source_id) or source

    # ------------------------------------------------------------------
    # Files
    # ------------------------------------------------------------------

    def get_file_id_at_path(self, source_id: str, path: str) -> int | None:
        with self._lock:
            row = self._conn.execute(
                "SELECT id FROM files WHERE source_id = ? AND path = ?",
                (source_id, path),
            ).fetchone()
        return row["id"] if row else None

    def create_file(
        self,
        *,
        source_id: str,
        project_id: str,
        path: str,
        checksum: str,
        meta: dict[str, Any],
        raw_content: str,
        internal_metadata: dict[str, Any] | None = None,
    ) -> int:
        """Insert a file row and return its id."""
        with self._lock:
            cur = self._conn.execute(
                """
                INSERT INTO files
                    (source_id, project_id, path, checksum, meta, raw_content, internal_metadata)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    source_id,
                    project_id,
                    path,
                    checksum,
                    json.dumps(meta),
                    raw_content,
                    json.dumps(internal_metadata or {}),
                ),
            )
            self._conn.commit()
            return int(cur.lastrowid)

    def update_file(
        self,
        file_id: int,
        *,
        checksum: str,
        meta: dict[str, Any],
        raw_content: str,
        internal_metadata: dict[str, Any] | None = None,
    ) -> None:
        """Overwrite the content fields of an existing file row."""
        with self._lock:
            self._conn.execute(
                """
                UPDATE files
                SET checksum = ?, meta = ?, raw_content = ?, internal_metadata = ?,
                    updated_at = datetime('now')
                WHERE id = ?
                """,
                (
                    checksum,
                    json.dumps(meta),
                    raw_content,
                    json.dumps(internal_metadata or {}),
                    file_id,
                ),
            )
            self._conn.commit()

    def update_file_token_count(
        self, file_id: int, token_count: int, *, checksum: str | None = None
    ) -> None:
        """Record a file's committed token count, and optionally its checksum."""
        with self._lock:
            if checksum is None:
                self._conn.execute(
                    "UPDATE files SET token_count = ? WHERE id = ?", (token_count, file_id)
                )
            else:
                self._conn.execute(
                    "UPDATE files SET token_count = ?, checksum = ? WHERE id = ?",
                    (token_count, checksum, file_id),
                )
            self._conn.commit()

    def delete_file(self, file_id: int) -> None:
        """Delete a file row. Its sections are removed by ON DELETE CASCADE."""
        with self._lock:
            self._conn.execute("DELETE FROM files WHERE id = ?", (file_id,))
            self._conn.commit()

    def get_file(self, file_id: int) -> FileRecord | None:
        with self._lock:
            row = self._conn.execute(
                f"SELECT {_FILE_COLUMNS} FROM files WHERE id = ?", (file_id,)
            ).fetchone()
        return _row_to_file(row) if row else None

    def list_files(
        self, project_id: str | None = None, source_id: str | None = None
    ) -> list[FileRecord]:
        """Return files ordered by path, filtered by project and/or source."""
        clauses: list[str] = []
        params: list[Any] = []
        if project_id is not None:
            clauses.append("project_id = ?")
            params.append(project_id)
        if source_id is not None:
            clauses.append("source_id = ?")
            params.append(source_id)
        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        with self._lock:
            rows = self._conn.execute(
                f"SELECT {_FILE_COLUMNS} FROM files{where} ORDER BY path", params
            ).fetchall()
        return [_row_to_file(r) for r in rows]

    def get_checksums(self, source_id: str) -> dict[str, str]:
        """Return a ``path -> checksum`` mapping for every file of a source."""
        with self._lock:
            rows = self._conn.execute(
                "SELECT path, checksum FROM files WHERE source_id = ?", (source_id,)
            ).fetchall()
        return {r["path"]: r["checksum"] for r in rows}

    # ------------------------------------------------------------------
    # Sections
    # ------------------------------------------------------------------

    def insert_sections(self, sections: list[SectionRecord]) -> list[int]:
        """Insert all *sections* in a single transaction.

        On any failure the transaction is rolled back and the error re-raised,
        so either every row is stored or none is.

        Raises:
            ValueError: If an embedding has the wrong number of dimensions.
            sqlite3.Error: If the database rejects a row.
        """
        with self._lock:
            try:
                ids = [self._insert_section_row(s) for s in sections]
                self._conn.commit()
            except Exception:
                self._conn.rollback()
                raise
        return ids

    def insert_section(self, section: SectionRecord) -> int:
        """Insert and commit a single section row. Returns the new id."""
        return self.insert_sections([section])[0]

    def delete_sections_for_file(self, file_id: int) -> None:
        with self._lock:
            self._conn.execute("DELETE FROM file_sections WHERE file_id = ?", (file_id,))
            self._conn.commit()

    def count_sections(
        self, file_id: int | None = None, project_id: str | None = None
    ) -> int:
        clauses: list[str] = []
        params: list[Any] = []
        if file_id is not None:
            clauses.append("file_id = ?")
            params.append(file_id)
        if project_id is not None:
            clauses.append("cf_project_id = ?")
            params.append(project_id)
        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        with self._lock:
            row = self._conn.execute(
                f"SELECT COUNT(*) FROM file_sections{where}", params
            ).fetchone()
        return int(row[0])

    def list_sections(self, file_id: int) -> list[SectionRecord]:
        """Return the sections of a file in insertion order."""
        with self._lock:
            rows = self._conn.execute(
                f"SELECT {_SECTION_COLUMNS} FROM file_sections WHERE file_id = ? ORDER BY id",
                (file_id,),
            ).fetchall()
        return [_row_to_section(r) for r in rows]

    # ------------------------------------------------------------------
    # Usage + search
    # ------------------------------------------------------------------

    def sum_token_count(self, project_id: str) -> int:
        """Total tokens committed by all files of a project."""
        with self._lock:
            row = self._conn.execute(
                "SELECT COALESCE(SUM(token_count), 0) FROM files WHERE project_id = ?",
                (project_id,),
            ).fetchone()
        return int(row[0])

    def search_sections(
        self, embedding: list[float], project_id: str, limit: int = 10
    ) -> list[tuple[SectionRecord, float]]:
        """Cosine nearest-neighbour search over a project's sections.

        Returns:
            List of (section, distance) tuples, closest first.
        """
        with self._lock:
            rows = self._conn.execute(
                f"""
                SELECT {_SECTION_COLUMNS},
                       vec_distance_cosine(embedding, ?) AS distance
                FROM file_sections
                WHERE cf_project_id = ?
                ORDER BY distance
                LIMIT ?
                """,
                (serialize_float32(embedding), project_id, limit),
            ).fetchall()
        return [(_row_to_section(r), float(r["distance"])) for r in rows]

    def _insert_section_row(self, section: SectionRecord) -> int:
        if self._dimensions is not None and len(section.embedding) != self._dimensions:
            raise ValueError(
                f"Embedding has {len(section.embedding)} dimensions, "
                f"expected {self._dimensions}"
            )
        cur = self._conn.execute(
            """
            INSERT INTO file_sections
                (file_id, content, meta, embedding, token_count, cf_project_id, cf_file_meta)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                section.file_id,
                section.content,
                json.dumps(section.meta) if section.meta is not None else None,
                serialize_float32(section.embedding),
                section.token_count,
                section.cf_project_id,
                json.dumps(section.cf_file_meta),
            ),
        )
        section.id = int(cur.lastrowid)
        return section.id


# ------------------------------------------------------------------
# Row mappers
# ------------------------------------------------------------------


def _row_to_source(row: sqlite3.Row) -> SourceRecord:
    return SourceRecord(
        id=row["id"],
        project_id=row["project_id"],
        type=row["type"],
        data=row["data"],
        inserted_at=row["inserted_at"],
    )


def _row_to_file(row: sqlite3.Row) -> FileRecord:
    return FileRecord(
        id=row["id"],
        source_id=row["source_id"],
        project_id=row["project_id"],
        path=row["path"],
        checksum=row["checksum"],
        meta=row["meta"],
        raw_content=row["raw_content"],
        token_count=row["token_count"],
        internal_metadata=row["internal_metadata"],
        updated_at=row["updated_at"],
    )


def _row_to_section(row: sqlite3.Row) -> SectionRecord:
    blob = row["embedding"]
    return SectionRecord(
        id=row["id"],
        file_id=row["file_id"],
        content=row["content"],
        meta=json.loads(row["meta"]) if row["meta"] is not None else None,
        embedding=list(struct.unpack(f"{len(blob) // 4}f", blob)),
        token_count=row["token_count"],
        cf_project_id=row["cf_project_id"],
        cf_file_meta=json.loads(row["cf_file_meta"]),
    )
