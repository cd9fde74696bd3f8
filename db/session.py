import os

from dotenv import load_dotenv
from sqlalchemy.pool import StaticPool
from sqlmodel import create_engine

# Load environment variables from .env file
load_dotenv()

# Get database connection details from environment variables
DATABASE_URL = os.getenv("DATABASE_URL")
DB_HOST = os.getenv("DB_HOST")
DB_PORT = os.getenv("DB_PORT", "5432")  # Default PostgreSQL port
DB_NAME = os.getenv("DB_NAME")
DB_USER = os.getenv("DB_USER")
DB_PASSWORD = os.getenv("DB_PASSWORD")

required_vars_for_tcp = ["DB_HOST", "DB_NAME", "DB_USER", "DB_PASSWORD"]

if not DATABASE_URL:
    present = [var for var in required_vars_for_tcp if os.getenv(var)]
    if present and len(present) != len(required_vars_for_tcp):
        missing_vars = [var for var in required_vars_for_tcp if not os.getenv(var)]
        raise ValueError(
            f"Missing required environment variables for TCP: {', '.join(missing_vars)}"
        )
    if present:
        DATABASE_URL = (
            f"postgresql://{DB_USER}:{DB_PASSWORD}@{DB_HOST}:{DB_PORT}/{DB_NAME}"
        )
    else:
        # Local development falls back to a SQLite file next to the app
        DATABASE_URL = "sqlite:///./presence_clock.db"


def build_engine(url: str):
    """Create an engine; SQLite connections are shared across worker threads."""
    if url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
        return create_engine(url, echo=False, **kwargs)
    # Note: echo=True will log all SQL statements, keep it off in production
    return create_engine(url, echo=False)


engine = build_engine(DATABASE_URL)


def get_engine():
    """FastAPI dependency returning the process-wide engine."""
    return engine

