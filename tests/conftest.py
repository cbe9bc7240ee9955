import logging
import sys
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path

import pytest

# Ensure src/ is in the python path for imports
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

from lifecycled.infrastructure.metadata import InstanceMetadata  # noqa: E402
from lifecycled.utils.logs import FieldLogger  # noqa: E402


@pytest.fixture
def logger():
    """
    Debug-level logger handle that propagates to the root logger so caplog sees it.
    """
    base = logging.getLogger("tests.lifecycled")
    base.setLevel(logging.DEBUG)
    return FieldLogger(base)


class MetadataStub:
    """Canned responses for the metadata endpoint, keyed by meta-data key."""

    def __init__(self):
        self.values = {}
        self.statuses = {}
        self.token = "stub-token"
        self.requests = []

    def respond(self, path, headers):
        self.requests.append((path, dict(headers)))
        prefix = "/latest/meta-data/"
        if not path.startswith(prefix):
            return 404, "not found"

        key = path[len(prefix):]
        if key in self.statuses:
            return self.statuses[key], "error"
        if key in self.values:
            return 200, self.values[key]
        return 404, "404 - not found"


def _stub_handler(stub):
    class Handler(BaseHTTPRequestHandler):
        def do_GET(self):
            status, body = stub.respond(self.path, self.headers)
            self._reply(status, body)

        def do_PUT(self):
            if self.path == "/latest/api/token" and stub.token:
                self._reply(200, stub.token)
            else:
                self._reply(405, "method not allowed")

        def _reply(self, status, body):
            payload = body.encode("utf-8")
            self.send_response(status)
            self.send_header("Content-Length", str(len(payload)))
            self.end_headers()
            self.wfile.write(payload)

        def log_message(self, format, *args):
            return

    return Handler


@pytest.fixture
def metadata_stub():
    """
    Local HTTP server standing in for the instance metadata service.
    """
    stub = MetadataStub()
    server = ThreadingHTTPServer(("127.0.0.1", 0), _stub_handler(stub))
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()

    stub.endpoint = f"http://127.0.0.1:{server.server_address[1]}/latest"
    stub.client = InstanceMetadata(endpoint=stub.endpoint, timeout=1.0)
    try:
        yield stub
    finally:
        server.shutdown()
        server.server_close()
