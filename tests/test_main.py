from starlette.testclient import TestClient

import server
from tests.test_env import REQUIRED


class _RunRecorder:
    def __init__(self) -> None:
        self.calls: list[dict] = []

    def __call__(self, app, **kwargs) -> None:
        self.calls.append({"app": app, **kwargs})


def test_main_uses_local_defaults(monkeypatch) -> None:
    recorder = _RunRecorder()
    app = object()
    monkeypatch.setattr(server, "create_app", lambda: app)
    monkeypatch.setattr(server.uvicorn, "run", recorder)
    monkeypatch.delenv("WEBMAIL_HOST", raising=False)
    monkeypatch.delenv("WEBMAIL_PORT", raising=False)

    server.main()

    assert recorder.calls == [{"app": app, "host": "127.0.0.1", "port": 8000}]


def test_main_reads_host_and_port_from_env(monkeypatch) -> None:
    recorder = _RunRecorder()
    app = object()
    monkeypatch.setattr(server, "create_app", lambda: app)
    monkeypatch.setattr(server.uvicorn, "run", recorder)
    monkeypatch.setenv("WEBMAIL_HOST", "0.0.0.0")
    monkeypatch.setenv("WEBMAIL_PORT", "9100")

    server.main()

    assert recorder.calls == [{"app": app, "host": "0.0.0.0", "port": 9100}]


def test_create_app_serves_health(monkeypatch) -> None:
    monkeypatch.setattr(server, "load_env", lambda: None)
    monkeypatch.setattr(server, "setup_logging", lambda: False)
    for key, value in REQUIRED.items():
        monkeypatch.setenv(key, value)
    monkeypatch.delenv("WEBMAIL_TOKEN_STORE_PATH", raising=False)

    with TestClient(server.create_app()) as client:
        response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["auth_mode"] == "oauth2-pkce"
