"""config.database

Database configuration.

Priority:
1) DATABASE_URL (Postgres on Render/managed DBs)
2) DB_* variables (MySQL), when DB_HOST or DB_NAME is set
3) a local SQLite file for development

Notes for Render Postgres:
- Render URLs may be `postgres://...`; SQLAlchemy expects `postgresql://...`.
"""
import os
from pathlib import Path
from dotenv import load_dotenv

_is_production = os.getenv('FLASK_ENV', 'development') == 'production'
load_dotenv(override=(not _is_production))


def _normalize_database_url(url: str) -> str:
    url = url.strip()
    # Heroku/Render-style scheme alias + make the psycopg (v3) driver explicit.
    if url.startswith('postgres://'):
        return 'postgresql+psycopg://' + url[len('postgres://'):]
    if url.startswith('postgresql://'):
        return 'postgresql+psycopg://' + url[len('postgresql://'):]

    return url


def _build_mysql_uri() -> str:
    database_config = {
        'host': os.getenv('DB_HOST', 'localhost'),
        'port': int(os.getenv('DB_PORT', 3306)),
        'user': os.getenv('DB_USER', 'root'),
        'password': os.getenv('DB_PASSWORD', ''),
        'database': os.getenv('DB_NAME', 'loyalty_qr'),
        'charset': 'utf8mb4',
    }

    return (
        f"mysql+pymysql://{database_config['user']}:{database_config['password']}"
        f"@{database_config['host']}:{database_config['port']}/{database_config['database']}"
        f"?charset={database_config['charset']}"
    )


def _build_sqlite_uri() -> str:
    path = os.getenv('SQLITE_PATH') or str(Path(__file__).resolve().parent.parent / 'loyalty.db')
    return f'sqlite:///{path}'


def get_sqlalchemy_database_uri() -> str:
    """Return the SQLAlchemy DB URI."""
    database_url = os.getenv('DATABASE_URL') or os.getenv('RENDER_DATABASE_URL')
    if database_url:
        return _normalize_database_url(database_url)

    if os.getenv('DB_HOST') or os.getenv('DB_NAME'):
        return _build_mysql_uri()

    return _build_sqlite_uri()


SQLALCHEMY_DATABASE_URI = get_sqlalchemy_database_uri()

SQLALCHEMY_TRACK_MODIFICATIONS = False
SQLALCHEMY_ECHO = os.getenv('DEBUG', 'False').lower() == 'true'
