"""
SQL assembly for materialized view DDL.

All identifier quoting happens here. Services never interpolate a schema,
relation, index or column name into SQL by themselves.
"""
import hashlib
from typing import Iterable, List, Optional, Sequence

# NAMEDATALEN - 1; PostgreSQL trunca en silencio lo que pase de aquí
MAX_IDENTIFIER_LENGTH = 63


def quote_ident(name: str) -> str:
    """Double-quote a PostgreSQL identifier, doubling embedded quotes."""
    return '"' + str(name).replace('"', '""') + '"'


def qualified_name(schema: str, rel: str) -> str:
    return f"{quote_ident(schema)}.{quote_ident(rel)}"


def quote_columns(columns: Iterable[str]) -> str:
    return ", ".join(quote_ident(col) for col in columns)


def normalize_columns(columns: Optional[Sequence]) -> List[str]:
    """Stringify, drop blanks and duplicates, keep declaration order."""
    seen = []
    for col in columns or []:
        col = str(col).strip()
        if col and col not in seen:
            seen.append(col)
    return seen


def fit_identifier(base: str, suffix: str = "") -> str:
    """
    Join ``base`` and ``suffix``, cutting ``base`` so the result fits in
    MAX_IDENTIFIER_LENGTH bytes. The suffix is always kept whole.
    """
    budget = MAX_IDENTIFIER_LENGTH - len(suffix.encode("utf-8"))
    encoded = base.encode("utf-8")
    if len(encoded) > budget:
        base = encoded[:budget].decode("utf-8", errors="ignore")
    return base + suffix


def unique_index_name(schema: str, rel: str, columns: Sequence[str]) -> str:
    """
    Name like ``public_mv_users_uniq_id_account_id``.

    Names too long for PostgreSQL keep a prefix plus a short hash of the full
    name, so different column lists never collapse into the same index name.
    """
    name = "_".join([schema, rel, "uniq", *columns])
    if len(name.encode("utf-8")) <= MAX_IDENTIFIER_LENGTH:
        return name
    digest = hashlib.md5(name.encode("utf-8")).hexdigest()[:8]
    return fit_identifier(name, f"_{digest}")


def create_view_sql(schema: str, rel: str, select_sql: str) -> str:
    return f"CREATE MATERIALIZED VIEW {qualified_name(schema, rel)} AS {select_sql.strip().rstrip(';')} WITH DATA"


def refresh_view_sql(schema: str, rel: str, concurrently: bool = False) -> str:
    mode = "CONCURRENTLY " if concurrently else ""
    return f"REFRESH MATERIALIZED VIEW {mode}{qualified_name(schema, rel)}"


def drop_view_sql(schema: str, rel: str, cascade: Optional[bool] = None) -> str:
    """
    Build the DROP statement.

    Args:
        cascade: True -> CASCADE, False -> RESTRICT, None -> no drop mode
    """
    sql = f"DROP MATERIALIZED VIEW IF EXISTS {qualified_name(schema, rel)}"
    if cascade is None:
        return sql
    return f"{sql} {'CASCADE' if cascade else 'RESTRICT'}"


def rename_view_sql(schema: str, rel: str, new_name: str) -> str:
    return f"ALTER MATERIALIZED VIEW {qualified_name(schema, rel)} RENAME TO {quote_ident(new_name)}"


def create_unique_index_sql(
    index_name: str,
    schema: str,
    rel: str,
    columns: Sequence[str],
    concurrently: bool = False,
) -> str:
    if not columns:
        raise ValueError("unique index requires at least one column")
    mode = "CONCURRENTLY " if concurrently else ""
    return (
        f"CREATE UNIQUE INDEX {mode}{quote_ident(index_name)} "
        f"ON {qualified_name(schema, rel)} ({quote_columns(columns)})"
    )


def count_rows_sql(schema: str, rel: str) -> str:
    return f"SELECT COUNT(*) FROM {qualified_name(schema, rel)}"
