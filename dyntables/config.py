"""
Runtime configuration, read once from the environment (and a local .env).

DATABASE_URL wins when set; otherwise the URL is assembled from MYSQL_* parts.
"""

import os

from dotenv import load_dotenv
from sqlalchemy.engine import URL, make_url

load_dotenv()

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()

ADMIN_TOKEN = os.environ.get("ADMIN_TOKEN")

CORS_ORIGINS = [
    origin.strip()
    for origin in os.environ.get(
        "CORS_ORIGINS", "http://localhost:5173,http://localhost:3000"
    ).split(",")
    if origin.strip()
]

DEFAULT_POOL_SIZE = 10
MAX_ALLOWED_POOL = 50


def database_url() -> URL:
    url = os.environ.get("DATABASE_URL")
    if url:
        return make_url(url)
    return URL.create(
        drivername="mysql+pymysql",
        host=os.environ.get("MYSQL_HOST", "localhost"),
        port=int(os.environ.get("MYSQL_PORT", 3306)),
        username=os.environ.get("MYSQL_USER"),
        password=os.environ.get("MYSQL_PASSWORD"),
        database=os.environ.get("MYSQL_DATABASE"),
        query={"charset": "utf8mb4"},
    )


def pool_size() -> int:
    return min(int(os.environ.get("DB_POOL_SIZE", DEFAULT_POOL_SIZE)), MAX_ALLOWED_POOL)
