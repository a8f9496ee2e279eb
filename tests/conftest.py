from __future__ import annotations

import socket
import sys
import textwrap
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path
from typing import Any, Callable, Iterator

import pytest
import yaml

from prerender.config import AppSettings, load_settings

HOME_HTML = "<html><body>Domů ✓ 5 €</body></html>"
NOT_FOUND_HTML = "<html><body>Stránka nenalezena</body></html>"

APP_SERVER_SCRIPT = textwrap.dedent(
    """
    import os
    import sys
    from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

    PORT = int(sys.argv[1])
    ROUTES = {
        "/": (200, %(home)r),
        "/404": (404, %(not_found)r),
        "/mode": (200, "%%s|%%s" %% (os.environ.get("NODE_ENV"), os.environ.get("IS_SERVERLESS"))),
    }


    class Handler(BaseHTTPRequestHandler):
        def do_GET(self):
            status, body = ROUTES.get(self.path, (404, "missing"))
            data = body.encode("utf-8")
            self.send_response(status)
            self.send_header("Content-Type", "text/html; charset=utf-8")
            self.send_header("Content-Length", str(len(data)))
            self.end_headers()
            self.wfile.write(data)

        def log_message(self, fmt, *args):
            sys.stderr.write("request " + (fmt %% args) + "\\n")
            sys.stderr.flush()


    server = ThreadingHTTPServer(("127.0.0.1", PORT), Handler)
    print("booting app", flush=True)
    sys.stderr.write("warming caches\\n")
    sys.stderr.flush()
    print("Server started at http://127.0.0.1:%%d" %% PORT, flush=True)
    server.serve_forever()
    """
) % {"home": HOME_HTML, "not_found": NOT_FOUND_HTML}

NEVER_READY_SCRIPT = textwrap.dedent(
    """
    import time

    print("booting app", flush=True)
    time.sleep(60)
    """
)

EARLY_EXIT_SCRIPT = textwrap.dedent(
    """
    import sys

    print("booting app", flush=True)
    sys.stderr.write("fatal: port in use\\n")
    sys.exit(3)
    """
)


def free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return int(sock.getsockname()[1])


@pytest.fixture
def port() -> int:
    return free_port()


def _write_script(tmp_path: Path, name: str, content: str) -> Path:
    path = tmp_path / name
    path.write_text(content, encoding="utf-8")
    return path


@pytest.fixture
def app_server_command(tmp_path: Path, port: int) -> list[str]:
    script = _write_script(tmp_path, "app_server.py", APP_SERVER_SCRIPT)
    return [sys.executable, "-u", str(script), str(port)]


@pytest.fixture
def never_ready_command(tmp_path: Path) -> list[str]:
    script = _write_script(tmp_path, "never_ready.py", NEVER_READY_SCRIPT)
    return [sys.executable, "-u", str(script)]


@pytest.fixture
def early_exit_command(tmp_path: Path) -> list[str]:
    script = _write_script(tmp_path, "early_exit.py", EARLY_EXIT_SCRIPT)
    return [sys.executable, "-u", str(script)]


@pytest.fixture
def make_settings(tmp_path: Path, port: int, app_server_command: list[str]) -> Callable[..., AppSettings]:
    """Write a settings YAML under tmp_path and load it the way the CLI does."""

    def _make(**sections: dict[str, Any]) -> AppSettings:
        payload: dict[str, Any] = {
            "paths": {
                "project_root": ".",
                "build_root": "./build",
                "artifacts_root": "./artifacts",
                "logs_root": "./logs",
            },
            "server": {
                "command": app_server_command,
                "host": "127.0.0.1",
                "port": port,
                "ready_marker": "Server started",
                "ready_timeout_seconds": 15,
                "stop_timeout_seconds": 5,
            },
            "render": {
                "routes": {"/": "index.html", "/404": "404.html"},
                "expected_statuses": {"/404": 404},
                "fetch_timeout_seconds": 5,
            },
        }
        for section, values in sections.items():
            payload.setdefault(section, {}).update(values)
        settings_file = tmp_path / "configs" / "settings.yaml"
        settings_file.parent.mkdir(parents=True, exist_ok=True)
        settings_file.write_text(yaml.safe_dump(payload), encoding="utf-8")
        return load_settings(config_file=settings_file)

    return _make


class _StaticHandler(BaseHTTPRequestHandler):
    routes: dict[str, tuple[int, bytes]] = {}

    def do_GET(self) -> None:  # noqa: N802
        status, body = self.routes.get(self.path, (404, b"missing"))
        self.send_response(status)
        self.send_header("Content-Type", "text/html; charset=utf-8")
        self.end_headers()
        # Small writes so multi-byte characters straddle chunk boundaries.
        for offset in range(0, len(body), 3):
            self.wfile.write(body[offset : offset + 3])
            self.wfile.flush()

    def log_message(self, format: str, *args: object) -> None:
        return


@pytest.fixture
def static_server() -> Iterator[Callable[[dict[str, tuple[int, str]]], str]]:
    """Serve fixed routes from a background thread; yields a factory returning the base address."""

    servers: list[ThreadingHTTPServer] = []

    def _serve(routes: dict[str, tuple[int, str]]) -> str:
        handler = type(
            "RoutesHandler",
            (_StaticHandler,),
            {"routes": {path: (status, body.encode("utf-8")) for path, (status, body) in routes.items()}},
        )
        server = ThreadingHTTPServer(("127.0.0.1", 0), handler)
        servers.append(server)
        threading.Thread(target=server.serve_forever, daemon=True).start()
        host, bound_port = server.server_address[:2]
        return f"http://{host}:{bound_port}"

    yield _serve
    for server in servers:
        server.shutdown()
        server.server_close()
