"""
Vector store module using SQLite for persistent storage.
Stores resources and chunk embeddings and answers ranked cosine-similarity queries.
"""
import json
import logging
import sqlite3
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import numpy as np

from .embeddings import cosine_similarity
from .exceptions import DimensionMismatchError, VectorStoreError

logger = logging.getLogger(__name__)

DEFAULT_SIMILARITY_THRESHOLD = 0.7


class ResourceStatus(Enum):
    """Persisted indexing state of a resource."""
    UPLOADED = "uploaded"
    INDEXED = "indexed"
    FAILED = "failed"


@dataclass
class Resource:
    """An uploaded study resource."""
    id: str
    title: str
    type: str = "document"
    file_url: Optional[str] = None
    content: Optional[str] = None  # Inline text when there is no file
    mime_type: Optional[str] = None
    user_id: Optional[str] = None
    session_id: Optional[str] = None  # Anonymous owner
    module_id: Optional[str] = None
    status: ResourceStatus = ResourceStatus.UPLOADED
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def source(self) -> str:
        return self.file_url or "inline"


@dataclass
class ChunkRecord:
    """An embedded chunk as persisted in the store."""
    chunk_id: str
    resource_id: str
    ordinal: int
    content: str
    embedding: np.ndarray
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class RetrievalResult:
    """Result from similarity search."""
    chunk_id: str
    resource_id: str
    resource_title: str
    content: str
    score: float
    resource_type: str = "document"
    metadata: Dict[str, Any] = field(default_factory=dict)


class VectorStoreClient(ABC):
    """Capabilities the RAG core needs from a vector-searchable store."""

    @abstractmethod
    def upsert_resource(self, resource: Resource):
        """Create or update resource metadata without touching its chunks."""

    @abstractmethod
    def get_resource(self, resource_id: str) -> Optional[Resource]:
        """Get a resource by ID."""

    @abstractmethod
    def delete_resource(self, resource_id: str) -> bool:
        """Delete a resource and, by cascade, all its chunks."""

    @abstractmethod
    def replace_resource_chunks(self, resource_id: str, chunks: Sequence[ChunkRecord]) -> int:
        """Atomically swap the chunk set of a resource and mark it indexed."""

    @abstractmethod
    def delete_resource_chunks(
        self,
        resource_id: str,
        status: ResourceStatus = ResourceStatus.FAILED
    ) -> int:
        """Remove every chunk of a resource and record its new status."""

    @abstractmethod
    def get_resource_chunks(self, resource_id: str) -> List[ChunkRecord]:
        """Get all chunks for a resource in ordinal order."""

    @abstractmethod
    def search(
        self,
        query_vector: np.ndarray,
        scope_id: Optional[str] = None,
        limit: int = 5,
        min_score: float = DEFAULT_SIMILARITY_THRESHOLD
    ) -> List[RetrievalResult]:
        """Ranked cosine-similarity search over stored chunks."""

    @abstractmethod
    def list_unindexed_resources(self) -> List[Resource]:
        """Resources with a source that are not currently indexed."""


def _scope_clause(scoped: bool) -> str:
    return "WHERE r.module_id = :scope_id" if scoped else ""


def build_similarity_query(scoped: bool) -> str:
    """
    Build the ranked similarity query.

    Every value is a named parameter: query_vector, min_score, limit and,
    when scoped, scope_id.
    """
    scope_clause = _scope_clause(scoped)
    return f"""
        SELECT chunk_id, resource_id, content, metadata, resource_title,
               resource_type, score
        FROM (
            SELECT c.id AS chunk_id,
                   c.resource_id AS resource_id,
                   c.content AS content,
                   c.metadata AS metadata,
                   r.title AS resource_title,
                   r.type AS resource_type,
                   c.rowid AS position,
                   1 - cosine_distance(c.embedding, :query_vector) AS score
            FROM chunks c
            JOIN resources r ON c.resource_id = r.id
            {scope_clause}
        )
        WHERE score > :min_score
        ORDER BY score DESC, position ASC
        LIMIT :limit
    """


def _cosine_distance(blob_a: Optional[bytes], blob_b: Optional[bytes]) -> Optional[float]:
    """SQLite function: cosine distance between two float32 blobs."""
    if blob_a is None or blob_b is None:
        return None
    a = np.frombuffer(blob_a, dtype=np.float32)
    b = np.frombuffer(blob_b, dtype=np.float32)
    return 1.0 - cosine_similarity(a, b)


def _to_blob(vector: np.ndarray) -> bytes:
    return np.asarray(vector, dtype=np.float32).tobytes()


class SQLiteVectorStore(VectorStoreClient):
    """
    SQLite-based vector store for resources and chunk embeddings.
    Similarity is computed by a cosine_distance SQL function backed by numpy.
    """

    def __init__(
        self,
        db_path: str = "data/vector_store.db",
        embedding_dim: Optional[int] = None,
        timeout: float = 10.0
    ):
        """
        Initialize vector store.

        Args:
            db_path: Path to SQLite database file
            embedding_dim: Required dimension of stored vectors (None accepts any
                single dimension per search scope)
            timeout: Seconds to wait on a locked database
        """
        self.db_path = Path(db_path)
        self.embedding_dim = embedding_dim
        self.timeout = timeout
        self._local = threading.local()
        self._connections: List[sqlite3.Connection] = []
        self._connections_lock = threading.Lock()

        # Ensure directory exists
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        # Initialize database
        self._init_db()

        logger.info(f"Initialized SQLiteVectorStore at {self.db_path}")

    @property
    def _conn(self) -> sqlite3.Connection:
        """Get thread-local database connection."""
        conn = getattr(self._local, 'conn', None)
        with self._connections_lock:
            # close() may have closed this thread's connection
            if conn is not None and conn not in self._connections:
                conn = None

        if conn is None:
            try:
                conn = sqlite3.connect(
                    str(self.db_path),
                    timeout=self.timeout,
                    check_same_thread=False
                )
                conn.row_factory = sqlite3.Row
                conn.execute("PRAGMA foreign_keys = ON")
                conn.execute("PRAGMA journal_mode = WAL")
                conn.create_function("cosine_distance", 2, _cosine_distance, deterministic=True)
            except sqlite3.Error as e:
                raise VectorStoreError(
                    f"Could not open vector store {self.db_path}: {e}", cause=e
                ) from e
            with self._connections_lock:
                self._connections.append(conn)
            self._local.conn = conn
        return conn

    @contextmanager
    def _get_cursor(self):
        """Get a database cursor; commits on success, rolls back on any error."""
        conn = self._conn
        cursor = conn.cursor()
        try:
            yield cursor
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise VectorStoreError(
                f"Vector store operation failed: {e}",
                cause=e,
                transient=isinstance(e, sqlite3.OperationalError) and "locked" in str(e)
            ) from e
        except Exception:
            conn.rollback()
            raise
        finally:
            cursor.close()

    def _init_db(self):
        """Initialize database schema."""
        with self._get_cursor() as cursor:
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS resources (
                    id TEXT PRIMARY KEY,
                    title TEXT NOT NULL,
                    type TEXT NOT NULL DEFAULT 'document',
                    file_url TEXT,
                    content TEXT,
                    mime_type TEXT,
                    user_id TEXT,
                    session_id TEXT,
                    module_id TEXT,
                    status TEXT NOT NULL DEFAULT 'uploaded',
                    embedding BLOB,
                    num_chunks INTEGER NOT NULL DEFAULT 0,
                    metadata TEXT,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS chunks (
                    id TEXT PRIMARY KEY,
                    resource_id TEXT NOT NULL
                        REFERENCES resources(id) ON DELETE CASCADE,
                    ordinal INTEGER NOT NULL,
                    content TEXT NOT NULL,
                    embedding BLOB NOT NULL,
                    dimension INTEGER NOT NULL,
                    metadata TEXT,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """)

            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_chunks_resource_id
                ON chunks(resource_id)
            """)

            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_resources_module_id
                ON resources(module_id)
            """)

    def upsert_resource(self, resource: Resource):
        """Create or update a resource; status and chunks are left as they are."""
        with self._get_cursor() as cursor:
            cursor.execute("""
                INSERT INTO resources
                (id, title, type, file_url, content, mime_type,
                 user_id, session_id, module_id, status, metadata)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    title = excluded.title,
                    type = excluded.type,
                    file_url = excluded.file_url,
                    content = excluded.content,
                    mime_type = excluded.mime_type,
                    user_id = excluded.user_id,
                    session_id = excluded.session_id,
                    module_id = excluded.module_id,
                    metadata = excluded.metadata,
                    updated_at = CURRENT_TIMESTAMP
            """, (
                resource.id, resource.title, resource.type, resource.file_url,
                resource.content, resource.mime_type, resource.user_id,
                resource.session_id, resource.module_id, resource.status.value,
                json.dumps(resource.metadata or {})
            ))

    def get_resource(self, resource_id: str) -> Optional[Resource]:
        with self._get_cursor() as cursor:
            cursor.execute("SELECT * FROM resources WHERE id = ?", (resource_id,))
            row = cursor.fetchone()
        return self._row_to_resource(row) if row else None

    def delete_resource(self, resource_id: str) -> bool:
        with self._get_cursor() as cursor:
            cursor.execute("DELETE FROM resources WHERE id = ?", (resource_id,))
            deleted = cursor.rowcount > 0

        if deleted:
            logger.info(f"Deleted resource {resource_id} and its chunks")
        return deleted

    def replace_resource_chunks(self, resource_id: str, chunks: Sequence[ChunkRecord]) -> int:
        """
        Replace all chunks of a resource in one transaction.

        The resource embedding is set to the first chunk's vector and the
        resource is marked indexed. Readers see the old set or the new one.

        Args:
            resource_id: Owning resource
            chunks: Embedded chunks, all with the same dimension

        Returns:
            Number of chunks written
        """
        if not chunks:
            raise VectorStoreError(f"Refusing to index resource {resource_id} with no chunks")

        dimension = len(chunks[0].embedding)
        for chunk in chunks:
            if chunk.resource_id != resource_id:
                raise VectorStoreError(
                    f"Chunk {chunk.chunk_id} belongs to {chunk.resource_id}, not {resource_id}"
                )
            if len(chunk.embedding) != dimension:
                raise DimensionMismatchError(dimension, len(chunk.embedding))
        if self.embedding_dim is not None and dimension != self.embedding_dim:
            raise DimensionMismatchError(self.embedding_dim, dimension)

        with self._get_cursor() as cursor:
            cursor.execute("SELECT 1 FROM resources WHERE id = ?", (resource_id,))
            if cursor.fetchone() is None:
                raise VectorStoreError(f"Unknown resource {resource_id}")

            cursor.execute("DELETE FROM chunks WHERE resource_id = ?", (resource_id,))

            cursor.executemany("""
                INSERT INTO chunks
                (id, resource_id, ordinal, content, embedding, dimension, metadata)
                VALUES (?, ?, ?, ?, ?, ?, ?)
            """, [
                (
                    chunk.chunk_id, resource_id, chunk.ordinal, chunk.content,
                    _to_blob(chunk.embedding), dimension, json.dumps(chunk.metadata or {})
                )
                for chunk in chunks
            ])

            cursor.execute("""
                UPDATE resources
                SET embedding = ?, num_chunks = ?, status = ?, updated_at = CURRENT_TIMESTAMP
                WHERE id = ?
            """, (
                _to_blob(chunks[0].embedding), len(chunks),
                ResourceStatus.INDEXED.value, resource_id
            ))

        logger.info(f"Stored {len(chunks)} chunks for resource {resource_id}")
        return len(chunks)

    def delete_resource_chunks(
        self,
        resource_id: str,
        status: ResourceStatus = ResourceStatus.FAILED
    ) -> int:
        with self._get_cursor() as cursor:
            cursor.execute("DELETE FROM chunks WHERE resource_id = ?", (resource_id,))
            count = cursor.rowcount
            cursor.execute("""
                UPDATE resources
                SET embedding = NULL, num_chunks = 0, status = ?, updated_at = CURRENT_TIMESTAMP
                WHERE id = ?
            """, (status.value, resource_id))

        if count > 0:
            logger.info(f"Deleted {count} chunks for resource {resource_id}")
        return count

    def get_resource_chunks(self, resource_id: str) -> List[ChunkRecord]:
        with self._get_cursor() as cursor:
            cursor.execute("""
                SELECT id, resource_id, ordinal, content, embedding, metadata
                FROM chunks
                WHERE resource_id = ?
                ORDER BY ordinal
            """, (resource_id,))
            rows = cursor.fetchall()

        return [
            ChunkRecord(
                chunk_id=row['id'],
                resource_id=row['resource_id'],
                ordinal=row['ordinal'],
                content=row['content'],
                embedding=np.frombuffer(row['embedding'], dtype=np.float32),
                metadata=json.loads(row['metadata']) if row['metadata'] else {}
            )
            for row in rows
        ]

    def search(
        self,
        query_vector: np.ndarray,
        scope_id: Optional[str] = None,
        limit: int = 5,
        min_score: float = DEFAULT_SIMILARITY_THRESHOLD
    ) -> List[RetrievalResult]:
        """
        Search for chunks similar to the query vector.

        Args:
            query_vector: Query embedding
            scope_id: Only search resources of this module
            limit: Maximum number of results
            min_score: Exclusive lower bound on similarity

        Returns:
            RetrievalResult objects sorted by descending score; ties keep
            insertion order
        """
        query_dim = len(query_vector)
        params: Dict[str, Any] = {
            "query_vector": _to_blob(query_vector),
            "min_score": min_score,
            "limit": limit,
        }
        if scope_id is not None:
            params["scope_id"] = scope_id

        with self._get_cursor() as cursor:
            cursor.execute(f"""
                SELECT DISTINCT c.dimension AS dimension
                FROM chunks c
                JOIN resources r ON c.resource_id = r.id
                {_scope_clause(scope_id is not None)}
            """, params)
            for row in cursor.fetchall():
                if row['dimension'] != query_dim:
                    raise DimensionMismatchError(row['dimension'], query_dim)

            cursor.execute(build_similarity_query(scope_id is not None), params)
            rows = cursor.fetchall()

        return [
            RetrievalResult(
                chunk_id=row['chunk_id'],
                resource_id=row['resource_id'],
                resource_title=row['resource_title'],
                content=row['content'],
                score=float(row['score']),
                resource_type=row['resource_type'],
                metadata=json.loads(row['metadata']) if row['metadata'] else {}
            )
            for row in rows
        ]

    def list_unindexed_resources(self) -> List[Resource]:
        with self._get_cursor() as cursor:
            cursor.execute("""
                SELECT * FROM resources
                WHERE status != ?
                  AND (file_url IS NOT NULL OR content IS NOT NULL)
                ORDER BY created_at, rowid
            """, (ResourceStatus.INDEXED.value,))
            rows = cursor.fetchall()

        return [self._row_to_resource(row) for row in rows]

    @staticmethod
    def _row_to_resource(row: sqlite3.Row) -> Resource:
        return Resource(
            id=row['id'],
            title=row['title'],
            type=row['type'],
            file_url=row['file_url'],
            content=row['content'],
            mime_type=row['mime_type'],
            user_id=row['user_id'],
            session_id=row['session_id'],
            module_id=row['module_id'],
            status=ResourceStatus(row['status']),
            metadata=json.loads(row['metadata']) if row['metadata'] else {}
        )

    def get_stats(self) -> Dict[str, Any]:
        """Get store statistics."""
        with self._get_cursor() as cursor:
            cursor.execute("SELECT COUNT(*) AS count FROM chunks")
            chunk_count = cursor.fetchone()['count']

            cursor.execute("SELECT status, COUNT(*) AS count FROM resources GROUP BY status")
            by_status = {row['status']: row['count'] for row in cursor.fetchall()}

            cursor.execute("SELECT DISTINCT dimension FROM chunks")
            dimensions = sorted(row['dimension'] for row in cursor.fetchall())

        return {
            "total_chunks": chunk_count,
            "total_resources": sum(by_status.values()),
            "resources_by_status": by_status,
            "embedding_dimensions": dimensions,
            "db_path": str(self.db_path)
        }

    def close(self):
        """Close the database connections of every thread."""
        with self._connections_lock:
            connections, self._connections = self._connections, []

        for conn in connections:
            conn.close()
        self._local.conn = None

        if connections:
            logger.debug(f"Closed {len(connections)} vector store connections")
