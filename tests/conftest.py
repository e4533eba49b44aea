import pytest

pytest.importorskip("fastapi")
from fastapi.testclient import TestClient

from jojo.config import Settings
from jojo.database import create_db_engine, create_session_factory, init_db
from jojo.main import create_app
from jojo.store import MessageStore


class ProviderError(Exception):
    def __init__(self, message: str, status_code=None):
        super().__init__(message)
        self.status_code = status_code


class FakeProvider:
    """Scripted stand-in for ChatProvider.

    `behaviour` maps a model name to a reply string, an exception, or a list
    of fragments (an exception inside the list is raised mid-stream).
    """

    def __init__(self, behaviour=None, default="Hello from the model"):
        self.behaviour = dict(behaviour or {})
        self.default = default
        self.calls = []

    def _outcome(self, model, messages, mode):
        self.calls.append({"model": model, "messages": messages, "mode": mode})
        return self.behaviour.get(model, self.default)

    async def complete(self, *, model, messages, max_output_tokens=None, temperature=None):
        outcome = self._outcome(model, messages, "complete")
        if isinstance(outcome, BaseException):
            raise outcome
        if isinstance(outcome, list):
            return "".join(item for item in outcome if isinstance(item, str))
        return outcome

    async def stream(self, *, model, messages, max_output_tokens=None, temperature=None):
        outcome = self._outcome(model, messages, "stream")
        if isinstance(outcome, BaseException):
            raise outcome
        for item in outcome if isinstance(outcome, list) else [outcome]:
            if isinstance(item, BaseException):
                raise item
            if item:
                yield item

    @property
    def models_called(self):
        return [call["model"] for call in self.calls]


CONFIG_VARIABLES = (
    "APP_NAME", "APP_ENV", "GEMINI_API_KEY", "GOOGLE_GENERATIVE_AI_API_KEY", "PROVIDER_BASE_URL",
    "CHAT_MODELS", "SYSTEM_PROMPT", "MAX_OUTPUT_TOKENS", "TEMPERATURE", "CONTEXT_WINDOW",
    "CHAT_STREAMING", "FALLBACK_ON_ANY_ERROR", "AUTH_MODE", "JWT_SECRET", "JWT_ALGORITHM",
    "ACCESS_TOKEN_EXPIRE_MINUTES", "BCRYPT_ROUNDS", "STORAGE", "DATABASE_URL", "VERCEL",
    "AWS_LAMBDA_FUNCTION_VERSION", "HOST", "PORT", "CORS_ORIGINS", "LOG_LEVEL",
)


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    for name in CONFIG_VARIABLES:
        monkeypatch.delenv(name, raising=False)


def make_settings(**overrides) -> Settings:
    values = dict(
        _env_file=None,
        environment="development",
        jwt_secret="test-secret",
        storage="memory",
        bcrypt_rounds=4,
        gemini_api_key="test-key",
        chat_models=["model-a", "model-b", "model-c"],
    )
    values.update(overrides)
    return Settings(**values)


@pytest.fixture()
def settings() -> Settings:
    return make_settings()


@pytest.fixture()
def store() -> MessageStore:
    engine = create_db_engine(make_settings())
    init_db(engine)
    yield MessageStore(create_session_factory(engine))
    engine.dispose()


@pytest.fixture()
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture()
def client(settings, provider):
    app = create_app(settings, provider=provider)
    with TestClient(app) as test_client:
        yield test_client


def register(client, email="a@b.com", password="pw", first_name="A", last_name="B"):
    return client.post(
        "/api/register",
        json={"first_name": first_name, "last_name": last_name, "email": email, "password": password},
    )


def auth_headers(client, email="a@b.com", password="pw"):
    register(client, email=email, password=password)
    resp = client.post("/api/login", json={"email": email, "password": password})
    assert resp.status_code == 200, resp.text
    return {"Authorization": f"Bearer {resp.json()['token']}"}
