from contextlib import contextmanager
from pathlib import Path

import duckdb


@contextmanager
def duckdb_connection(db_path: Path | str):
    con = duckdb.connect(str(db_path))
    try:
        yield con
    finally:
        con.close()
