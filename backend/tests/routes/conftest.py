# backend/tests/routes/conftest.py
"""Route test fixtures: an app wired to the test session and signed JWTs."""

from typing import Callable, Dict, Iterator, Optional

from fastapi.testclient import TestClient
import jwt
import pytest

from spacebook.api.dependencies import get_services
from spacebook.core.config import settings
from spacebook.main import create_app


@pytest.fixture
def client(services) -> Iterator[TestClient]:
    app = create_app()
    app.dependency_overrides[get_services] = lambda: services
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers() -> Callable[..., Dict[str, str]]:
    def _headers(user_id: str, role: Optional[str] = None) -> Dict[str, str]:
        claims = {"sub": user_id}
        if role:
            claims["role"] = role
        token = jwt.encode(
            claims, settings.secret_key.get_secret_value(), algorithm=settings.algorithm
        )
        return {"Authorization": f"Bearer {token}"}

    return _headers
