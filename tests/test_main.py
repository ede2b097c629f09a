from io import StringIO
import logging

import pytest
from fastapi import APIRouter
from fastapi.testclient import TestClient
from sqlalchemy import Column, Integer, MetaData, String, Table, create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.pool import StaticPool

from glaze import GLAZE_VERSION
from glaze.core.config import GlazeConfig, Settings
from glaze.core.errors import ConfigurationError
from glaze.core.schemas import LoggerOptions
from glaze.db.session import DatabaseHandle
from glaze.logging.logging_config import create_logger
from glaze.main import GlazeServer, create_glaze_server, glaze

DATABASE = "postgres://u:p@h:5432/d"


class _UnreachableHandle(DatabaseHandle):
    def ping(self) -> None:
        raise OperationalError("SELECT 1", {}, Exception("connection refused\nis the server running?"))


def _engine() -> Engine:
    return create_engine("sqlite://", poolclass=StaticPool, connect_args={"check_same_thread": False})


def _tables() -> dict[str, Table]:
    metadata = MetaData()
    return {
        "posts": Table(
            "posts",
            metadata,
            Column("id", Integer, primary_key=True),
            Column("title", String(255), nullable=False),
        ),
        "authors": Table(
            "authors",
            metadata,
            Column("id", Integer, primary_key=True),
            Column("name", String(100)),
        ),
    }


def _logger(stream: StringIO | None = None) -> logging.Logger:
    return create_logger(
        LoggerOptions(name="glaze.test.server", env="production"),
        settings=_settings(),
        stream=stream or StringIO(),
    )


def _settings(**overrides: object) -> Settings:
    base = {"environment": "development", "log_level": "INFO"}
    base.update(overrides)
    return Settings(**base)


def _server(engine: Engine | None = None, handle_cls: type = DatabaseHandle, **overrides: object):
    engine = engine or _engine()
    partial: dict = {"database": DATABASE, "schema": _tables(), "strategy": "push"}
    partial.update(overrides)

    def factory(database: str, tables: dict) -> DatabaseHandle:
        return handle_cls.for_engine(engine, tables)

    return create_glaze_server(partial, engine_factory=factory, logger=_logger(), settings=_settings())


def _seed(app) -> None:
    db: DatabaseHandle = app.state.db
    with db.engine.begin() as connection:
        connection.execute(
            db.tables["posts"].insert(),
            [{"id": 1, "title": "Hello"}, {"id": 2, "title": "World"}, {"id": 3, "title": "Again"}],
        )


def test_health_endpoint() -> None:
    client = TestClient(_server())

    response = client.get("/api/health")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "ok"
    assert body["version"] == GLAZE_VERSION
    assert body["timestamp"]


def test_ready_endpoint_reports_connected_database() -> None:
    client = TestClient(_server())

    response = client.get("/api/ready")

    assert response.status_code == 200
    assert response.json()["status"] == "ready"
    assert response.json()["database"] == "connected"


def test_ready_endpoint_reports_unreachable_database() -> None:
    client = TestClient(_server(handle_cls=_UnreachableHandle))

    response = client.get("/api/ready")

    assert response.status_code == 503
    body = response.json()
    assert body["status"] == "error"
    assert body["database"] == "disconnected"
    assert "connection refused" in body["error"]
    assert "\n" not in body["error"]


def test_invalid_config_fails_before_database_handle() -> None:
    calls: list[str] = []

    def factory(database: str, tables: dict) -> DatabaseHandle:
        calls.append(database)
        return DatabaseHandle.for_engine(_engine(), tables)

    stream = StringIO()
    with pytest.raises(ConfigurationError):
        create_glaze_server(
            {"database": "mysql://u:p@h/d", "schema": {}},
            engine_factory=factory,
            logger=_logger(stream),
            settings=_settings(),
        )

    assert calls == []
    assert "startup_config_invalid" in stream.getvalue()


def test_push_rejected_for_production_server() -> None:
    with pytest.raises(ConfigurationError):
        create_glaze_server(
            {"database": DATABASE, "schema": {}, "strategy": "push"},
            logger=_logger(),
            settings=_settings(environment="production"),
        )


def test_resolved_config_stored_on_app() -> None:
    app = _server(port=5050)

    assert isinstance(app.state.config, GlazeConfig)
    assert app.state.config.port == 5050


def test_custom_prefix() -> None:
    client = TestClient(_server(prefix="/cms"))

    assert client.get("/cms/health").status_code == 200
    assert client.get("/api/health").status_code == 404


def test_empty_prefix_serves_from_root() -> None:
    client = TestClient(_server(prefix=""))

    assert client.get("/health").status_code == 200


def test_content_api_lists_and_fetches_rows() -> None:
    app = _server()
    with TestClient(app) as client:
        _seed(app)

        listing = client.get("/api/posts", params={"limit": 2, "offset": 1})
        item = client.get("/api/posts/1")
        missing = client.get("/api/posts/999")
        malformed = client.get("/api/posts/abc")

    assert listing.status_code == 200
    assert listing.json() == {
        "count": 2,
        "limit": 2,
        "offset": 1,
        "items": [{"id": 2, "title": "World"}, {"id": 3, "title": "Again"}],
    }
    assert item.json() == {"id": 1, "title": "Hello"}
    assert missing.status_code == 404
    assert malformed.status_code == 404


def test_content_api_validates_pagination() -> None:
    app = _server()
    with TestClient(app) as client:
        assert client.get("/api/posts", params={"limit": 0}).status_code == 422
        assert client.get("/api/posts", params={"offset": -1}).status_code == 422


def test_content_api_honours_exclude() -> None:
    app = _server(content_api_exclude=["authors"])
    with TestClient(app) as client:
        assert client.get("/api/posts").status_code == 200
        assert client.get("/api/authors").status_code == 404


def test_content_api_can_be_disabled() -> None:
    app = _server(content_api_enabled=False)
    with TestClient(app) as client:
        assert client.get("/api/posts").status_code == 404
        assert client.get("/api/health").status_code == 200


def test_custom_routes_are_merged_and_take_precedence() -> None:
    routes = APIRouter()

    @routes.get("/posts")
    def list_posts() -> dict:
        return {"custom": True}

    @routes.get("/stats")
    def stats() -> dict:
        return {"posts": 0}

    app = _server(custom_routes=routes)
    with TestClient(app) as client:
        assert client.get("/api/posts").json() == {"custom": True}
        assert client.get("/api/stats").json() == {"posts": 0}
        assert client.get("/api/health").status_code == 200


def test_startup_pushes_schema_and_logs_ready() -> None:
    stream = StringIO()
    engine = _engine()

    def factory(database: str, tables: dict) -> DatabaseHandle:
        return DatabaseHandle.for_engine(engine, tables)

    app = create_glaze_server(
        {"database": DATABASE, "schema": _tables(), "strategy": "push"},
        engine_factory=factory,
        logger=_logger(stream),
        settings=_settings(),
    )
    with TestClient(app):
        pass

    output = stream.getvalue()
    assert "schema_pushed" in output
    assert "api_startup_complete" in output


def test_glaze_start_uses_configured_port(monkeypatch: pytest.MonkeyPatch) -> None:
    import uvicorn

    calls: list[dict] = []
    monkeypatch.setattr(uvicorn, "run", lambda app, **kwargs: calls.append(kwargs))

    engine = _engine()
    server = glaze(
        {"database": DATABASE, "schema": {}, "port": 4321},
        engine_factory=lambda database, tables: DatabaseHandle.for_engine(engine, tables),
        logger=_logger(),
        settings=_settings(),
    )

    assert isinstance(server, GlazeServer)
    server.start()
    server.start(8080, host="127.0.0.1")

    assert calls[0]["port"] == 4321
    assert calls[1] == {"host": "127.0.0.1", "port": 8080, "log_config": None}


def test_rejected_database_url_is_not_logged_with_credentials() -> None:
    stream = StringIO()
    with pytest.raises(ConfigurationError):
        create_glaze_server(
            {"database": "mysql://admin:s3cret@h/d", "schema": {}},
            logger=_logger(stream),
            settings=_settings(),
        )

    output = stream.getvalue()
    assert "startup_config_invalid" in output
    assert "s3cret" not in output


def test_rejection_reason_shown_in_development_logs() -> None:
    stream = StringIO()
    logger = create_logger(
        LoggerOptions(name="glaze.test.server_dev"), settings=_settings(), stream=stream
    )

    with pytest.raises(ConfigurationError):
        create_glaze_server(
            {"database": DATABASE, "schema": {}, "strategy": "sync"},
            logger=logger,
            settings=_settings(),
        )

    output = stream.getvalue()
    assert "Startup configuration validation failed" in output
    assert "strategy" in output
    assert '"migrate" or "push"' in output


def test_engine_disposed_when_startup_fails(monkeypatch: pytest.MonkeyPatch) -> None:
    disposed: list[bool] = []

    class _TrackedHandle(DatabaseHandle):
        def dispose(self) -> None:
            disposed.append(True)
            super().dispose()

    def fail(*args: object, **kwargs: object) -> None:
        raise RuntimeError("Schema push failed after 10 attempts")

    monkeypatch.setattr("glaze.main.prepare_database", fail)
    app = _server(handle_cls=_TrackedHandle)

    with pytest.raises(RuntimeError):
        with TestClient(app):
            pass

    assert disposed == [True]
