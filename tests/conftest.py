import threading

import pytest

_PROXY_VARS = ("HTTP_PROXY", "HTTPS_PROXY", "ALL_PROXY",
               "http_proxy", "https_proxy", "all_proxy")


@pytest.fixture(autouse=True)
def no_proxy_env(monkeypatch):
    """Live-lab traffic to 127.0.0.1 must not be routed through an env proxy."""
    for var in _PROXY_VARS:
        monkeypatch.delenv(var, raising=False)


@pytest.fixture(scope="module")
def lab_url(tmp_path_factory):
    pytest.importorskip("flask")
    from werkzeug.serving import make_server
    from vuln_lab.app import app, init_db

    db_path = str(tmp_path_factory.mktemp("lab") / "lab.db")
    init_db(db_path)
    app.config["DB_PATH"] = db_path

    server = make_server("127.0.0.1", 0, app, threaded=True)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    yield f"http://127.0.0.1:{server.server_port}"
    server.shutdown()
    thread.join(timeout=5)
