"""
Pytest configuration and fixtures.
"""
import io
import os
import tempfile
from pathlib import Path
from typing import Callable, Generator

# Keep the app's own engine and storage root away from the working tree
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("STORAGE_ROOT", tempfile.mkdtemp(prefix="ddsportal-storage-"))
os.environ.setdefault("CACHE_BACKEND", "memory")
os.environ.setdefault("JSON_LOGS", "false")

import pymupdf
import pytest
from fastapi.testclient import TestClient
from PIL import Image
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

import ddsportal.models  # noqa: F401
from ddsportal.database import Base, get_db
from ddsportal.main import app
from ddsportal.models.attachment import InvoiceAttachment, attachment_directory
from ddsportal.models.user import Department, User
from ddsportal.services import cache_service as cache_module
from ddsportal.services import storage as storage_module
from ddsportal.services.cache_service import MemoryCache
from ddsportal.services.storage import LocalStorage


# Create in-memory SQLite database for testing
SQLALCHEMY_DATABASE_URL = "sqlite:///:memory:"

engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(scope="function")
def db_session() -> Generator[Session, None, None]:
    """Create a fresh database session for each test."""
    Base.metadata.create_all(bind=engine)

    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def storage(temp_dir: Path) -> LocalStorage:
    """Attachment storage rooted in a temporary directory, installed as the default."""
    local = LocalStorage(temp_dir)
    storage_module._storage = local
    return local


@pytest.fixture
def memory_cache() -> MemoryCache:
    """In-memory cache without eviction, installed as the default."""
    cache = MemoryCache()
    cache_module._cache_service = cache
    return cache


@pytest.fixture(autouse=True)
def reset_singletons():
    """Reset global singleton instances before each test for proper isolation."""
    cache_module._cache_service = None
    storage_module._storage = None

    yield

    cache_module._cache_service = None
    storage_module._storage = None


@pytest.fixture(scope="function")
def client(db_session: Session, storage: LocalStorage, memory_cache: MemoryCache) -> Generator[TestClient, None, None]:
    """Create a test client with database override."""

    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


@pytest.fixture
def uploader(db_session: Session) -> User:
    """A user in the Finance department."""
    department = Department(name="Finance", location_code="000HLOG")
    user = User(name="Jane Doe", email="jane@example.com", department=department)
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture
def sample_pdf_content() -> bytes:
    """Generate a one-page PDF."""
    doc = pymupdf.open()
    page = doc.new_page(width=595, height=842)
    page.insert_text((72, 72), "Invoice INV-001 total: 1,500,000", fontsize=12)
    content = doc.tobytes()
    doc.close()
    return content


@pytest.fixture
def sample_png_content() -> bytes:
    """Generate a small white PNG."""
    output = io.BytesIO()
    Image.new("RGB", (320, 200), "white").save(output, format="PNG")
    return output.getvalue()


@pytest.fixture
def make_attachment(db_session: Session, storage: LocalStorage) -> Callable[..., InvoiceAttachment]:
    """Factory storing a file under the invoice's attachment directory and recording it."""

    def _make(
        invoice_id: int = 1,
        file_name: str = "invoice.pdf",
        content: bytes = b"attachment",
        mime_type: str = "application/pdf",
        uploaded_by: int = None,
    ) -> InvoiceAttachment:
        file_path = f"{attachment_directory(invoice_id)}/{file_name}"
        storage.write(file_path, content)
        attachment = InvoiceAttachment(
            invoice_id=invoice_id,
            file_name=file_name,
            file_path=file_path,
            file_size=len(content),
            mime_type=mime_type,
            uploaded_by=uploaded_by,
        )
        db_session.add(attachment)
        db_session.commit()
        return attachment

    return _make
