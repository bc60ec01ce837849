import atexit
import os
import shutil
import tempfile
from pathlib import Path

# Settings are read when the app is imported, so the environment has to be
# in place before anything from mpesa_gateway is loaded.
TEST_DIR = Path(tempfile.mkdtemp(prefix="mpesa_gateway_tests_"))
atexit.register(shutil.rmtree, TEST_DIR, ignore_errors=True)
os.environ["DATABASE_URL"] = f"sqlite:///{TEST_DIR / 'app.db'}"
os.environ["MPESA_SHORTCODE"] = "174379"
os.environ["MPESA_PASSKEY"] = "test_passkey"
os.environ["MPESA_CONSUMER_KEY"] = "consumer_key"
os.environ["MPESA_CONSUMER_SECRET"] = "consumer_secret"
os.environ["MPESA_CALLBACK_URL"] = "https://gateway.example.com/api/payment/callback"
os.environ["MPESA_ENV"] = "sandbox"
os.environ["SHOPIFY_WEBHOOK_SECRET"] = "shpss_test_secret"
os.environ["JWT_SECRET"] = "jwt_test_secret"
os.environ["LOG_JSON"] = "false"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from mpesa_gateway.database import Base, build_engine, get_db
from mpesa_gateway.main import app as fastapi_app
from mpesa_gateway.mpesa_service import MpesaClient, get_mpesa_client
from mpesa_gateway.repository import PaymentIntentRepository


@pytest.fixture
def engine(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'test.db'}")
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def repository(db):
    return PaymentIntentRepository(db)


@pytest.fixture
def mpesa(mocker):
    """Stand-in for the Daraja client; the push request is accepted by default."""
    client = mocker.Mock(spec=MpesaClient)
    client.get_access_token.return_value = "token_123"
    client.stk_push.return_value = {
        "MerchantRequestID": "mr_1",
        "CheckoutRequestID": "ws_1",
        "ResponseCode": "0",
        "ResponseDescription": "Success. Request accepted for processing",
        "CustomerMessage": "Success. Request accepted for processing",
    }
    return client


@pytest.fixture
def client(session_factory, mpesa):
    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    fastapi_app.dependency_overrides[get_db] = override_get_db
    fastapi_app.dependency_overrides[get_mpesa_client] = lambda: mpesa
    with TestClient(fastapi_app) as c:
        yield c
    fastapi_app.dependency_overrides.clear()
