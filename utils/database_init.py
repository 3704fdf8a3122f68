import asyncio
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator

import aiosqlite


class AsyncDatabaseInitializer:
    """
    Manage the async SQLite database backing identities and documents.

    - The database file is located at: <database_dir>/app.db
    - A RuntimeError is raised if `database_dir` points to a file or cannot
      be created.
    - On the first call to `ensure_database()` for a given instance the
      IDENTITY and DOCUMENT tables are created if missing. Existing rows are
      kept, so the analysis history survives restarts.
    - Subsequent calls to `ensure_database()` on the same instance are no-ops,
      so it is safe for `connection()` to call it.
    """

    def __init__(self, database_dir: Path | str) -> None:
        db_dir = Path(database_dir).expanduser()

        if db_dir.exists() and not db_dir.is_dir():
            raise RuntimeError(
                f"Database directory {str(database_dir)!r} points to a file, not a directory "
                f"({db_dir}). Please configure a directory path."
            )

        try:
            db_dir.mkdir(parents=True, exist_ok=True)
        except Exception as exc:
            raise RuntimeError(
                f"Failed to create or access database directory at {db_dir}"
            ) from exc

        self.db_dir = db_dir
        self.db_path = self.db_dir / "app.db"

        self._initialized = False
        self._init_lock = asyncio.Lock()

    async def ensure_database(self) -> None:
        """
        Ensure the SQLite schema exists at `self.db_path`.

        On first call this will create the IDENTITY and DOCUMENT tables and the
        index used for ordered snapshot queries. Subsequent calls are no-ops.
        """
        if self._initialized:
            return

        async with self._init_lock:
            if self._initialized:
                return

            max_attempts = 3
            for attempt in range(1, max_attempts + 1):
                try:
                    async with aiosqlite.connect(self.db_path) as db:
                        await db.execute(
                            """
                            CREATE TABLE IF NOT EXISTS IDENTITY (
                                uid TEXT PRIMARY KEY,
                                token TEXT UNIQUE,
                                anonymous INTEGER NOT NULL DEFAULT 0,
                                revoked INTEGER NOT NULL DEFAULT 0,
                                created_at REAL NOT NULL
                            )
                            """
                        )
                        await db.execute(
                            """
                            CREATE TABLE IF NOT EXISTS DOCUMENT (
                                id TEXT PRIMARY KEY,
                                path TEXT NOT NULL,
                                data TEXT NOT NULL,
                                created_at REAL NOT NULL
                            )
                            """
                        )
                        await db.execute(
                            "CREATE INDEX IF NOT EXISTS idx_document_path_created "
                            "ON DOCUMENT (path, created_at)"
                        )
                        await db.commit()
                    break
                except FileNotFoundError:
                    # On some platforms a transient missing file error may occur; retry a few times.
                    if attempt >= max_attempts:
                        raise
                    await asyncio.sleep(0.1 * attempt)

            self._initialized = True

    @asynccontextmanager
    async def connection(self) -> AsyncIterator[aiosqlite.Connection]:
        """
        Async context manager yielding an `aiosqlite.Connection`.

        The schema is created on the first use via `ensure_database()`.
        """
        await self.ensure_database()
        conn = await aiosqlite.connect(self.db_path)
        try:
            yield conn
        finally:
            await conn.close()
