"""Pytest fixtures for the portal backend.

Provides reusable test fixtures for:
- Mocked S3 bucket (moto) and an initialized S3BlobStore
- In-memory SQLite database session with fresh tables per test
- ApplicationService wired to both
- FastAPI TestClient running the real lifespan against the mocked bucket

Usage:
    @pytest.mark.asyncio
    async def test_submit(service):
        record = await service.submit_with_attachments(FormVariant.UG_2, "s-1", {}, [pdf()])
"""

import os
import sys
from pathlib import Path
from typing import Generator

# Set environment variables BEFORE any portal imports so cached settings see them
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["S3_ENDPOINT_URL"] = ""
os.environ["S3_ACCESS_KEY_ID"] = "testing"
os.environ["S3_SECRET_ACCESS_KEY"] = "testing"
os.environ["S3_BUCKET_NAME"] = "test-portal-bucket"
os.environ["S3_REGION"] = "us-east-1"
os.environ["S3_CREATE_BUCKET"] = "true"
os.environ["LOG_JSON"] = "false"
os.environ.setdefault("AWS_DEFAULT_REGION", "us-east-1")

import boto3
import pytest
import pytest_asyncio
from moto import mock_aws
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

backend_src = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(backend_src))
sys.path.insert(0, str(Path(__file__).parent))

from portal.infrastructure.repositories.form_record_repository import FormRecordRepository
from portal.infrastructure.storage.s3_blob_store import S3BlobStore
from portal.models.base import Base
from portal.services.applications import ApplicationService
from fixtures.blob_stores import (
    TEST_ACCESS_KEY,
    TEST_BUCKET,
    TEST_REGION,
    TEST_SECRET_KEY,
    make_store,
)


@pytest.fixture
def s3_client():
    """Mocked S3 with the test bucket created"""
    with mock_aws():
        client = boto3.client(
            "s3",
            region_name=TEST_REGION,
            aws_access_key_id=TEST_ACCESS_KEY,
            aws_secret_access_key=TEST_SECRET_KEY,
        )
        client.create_bucket(Bucket=TEST_BUCKET)
        yield client


@pytest_asyncio.fixture
async def blob_store(s3_client) -> S3BlobStore:
    """Initialized blob store backed by the mocked bucket"""
    store = make_store()
    await store.initialize()
    return store


@pytest.fixture
def uninitialized_store(s3_client) -> S3BlobStore:
    """Blob store whose initialize() has not run"""
    return make_store()


@pytest.fixture(scope="function")
def test_engine():
    """Fresh in-memory SQLite database shared by every connection of one test"""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture(scope="function")
def db_session(test_engine) -> Generator[Session, None, None]:
    """Database session for one test"""
    session = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def repo(db_session) -> FormRecordRepository:
    return FormRecordRepository(db_session)


@pytest.fixture
def service(blob_store, repo) -> ApplicationService:
    """ApplicationService over the mocked bucket and the SQLite session"""
    return ApplicationService(
        store=blob_store,
        repo=repo,
        file_base_url="/api/v1/files",
        upload_concurrency=8,
        resolve_concurrency=8,
    )


@pytest.fixture
def client(s3_client, test_engine):
    """TestClient running the real application lifespan.

    The lifespan builds the blob store from the test environment (inside
    the moto mock) and the database dependency is pointed at the test engine.
    """
    from fastapi.testclient import TestClient

    from portal.database import get_db
    from portal.main import app

    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)

    def override_get_db():
        db = TestingSessionLocal()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
