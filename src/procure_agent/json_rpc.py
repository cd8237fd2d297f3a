"""
Line-delimited JSON-RPC 2.0 over stdio.

Handlers take ``params`` and return the ``result`` value; raising
``JsonRpcError`` produces an error response with optional ``data``.
"""

import json
import logging
import sys
from typing import IO, Any, Callable, Dict, Optional

logger = logging.getLogger(__name__)

JSONRPC_VERSION = "2.0"
ERROR_PARSE = -32700
ERROR_INVALID_REQUEST = -32600
ERROR_METHOD_NOT_FOUND = -32601
ERROR_INVALID_PARAMS = -32602
ERROR_INTERNAL = -32603

# Application-defined codes (server error range).
ERROR_TURN_FAILED = -32000
ERROR_INVALID_TURN = -32001

Handler = Callable[[Dict[str, Any]], Any]


class JsonRpcError(Exception):
    """Raised by handlers to return a JSON-RPC error object."""

    def __init__(self, code: int, message: str, data: Any = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.data = data

    def to_dict(self) -> dict:
        d = {"code": self.code, "message": self.message}
        if self.data is not None:
            d["data"] = self.data
        return d


def create_result_response(request_id: Any, result: Any) -> dict:
    return {"jsonrpc": JSONRPC_VERSION, "id": request_id, "result": result}


def create_error_response(request_id: Any, error: JsonRpcError) -> dict:
    return {"jsonrpc": JSONRPC_VERSION, "id": request_id, "error": error.to_dict()}


class JsonRpcServer:
    """A synchronous JSON-RPC 2.0 server reading one request per line."""

    def __init__(
        self,
        server_name: str,
        stdin: Optional[IO[str]] = None,
        stdout: Optional[IO[str]] = None,
    ):
        self.server_name = server_name
        self._handlers: Dict[str, Handler] = {}
        self._stdin = stdin
        self._stdout = stdout
        self._running = False

    def register_handler(self, method: str, handler: Handler):
        logger.info(f"Registering handler for method: {method}")
        self._handlers[method] = handler

    def _read_message(self) -> Optional[str]:
        line = (self._stdin or sys.stdin).readline()
        if not line:
            return None
        return line.strip()

    def _write_message(self, message: dict):
        out = self._stdout or sys.stdout
        out.write(json.dumps(message, default=str) + "\n")
        out.flush()

    def process_request(self, request_str: str) -> Optional[dict]:
        """Process one raw request line. Returns None for notifications."""
        try:
            data = json.loads(request_str)
        except json.JSONDecodeError as e:
            return create_error_response(None, JsonRpcError(ERROR_PARSE, f"Parse error: {e}"))

        if not isinstance(data, dict):
            return create_error_response(
                None, JsonRpcError(ERROR_INVALID_REQUEST, "Request must be an object")
            )

        request_id = data.get("id")
        method = data.get("method")
        params = data.get("params") or {}

        if data.get("jsonrpc") != JSONRPC_VERSION:
            return create_error_response(
                request_id,
                JsonRpcError(ERROR_INVALID_REQUEST, f"Invalid JSON-RPC version: {data.get('jsonrpc')}"),
            )
        if not method:
            return create_error_response(request_id, JsonRpcError(ERROR_INVALID_REQUEST, "Missing method"))
        if not isinstance(params, dict):
            return create_error_response(
                request_id, JsonRpcError(ERROR_INVALID_PARAMS, "Params must be an object")
            )

        handler = self._handlers.get(method)
        if handler is None:
            error = JsonRpcError(ERROR_METHOD_NOT_FOUND, f"Method not found: {method}")
            return None if "id" not in data else create_error_response(request_id, error)

        try:
            result = handler(params)
        except JsonRpcError as e:
            response = create_error_response(request_id, e)
        except Exception as e:
            logger.error(f"Handler error for {method}: {e}", exc_info=True)
            response = create_error_response(
                request_id, JsonRpcError(ERROR_INTERNAL, f"Internal error: {e}")
            )
        else:
            response = create_result_response(request_id, result)

        # Notifications get no response.
        return response if "id" in data else None

    def run(self):
        """Serve requests until EOF."""
        logger.info(f"Starting JSON-RPC server '{self.server_name}'...")
        self._running = True

        while self._running:
            try:
                line = self._read_message()
                if line is None:
                    logger.info("EOF reached, shutting down")
                    break
                if not line:
                    continue

                response = self.process_request(line)
                if response:
                    self._write_message(response)

            except KeyboardInterrupt:
                logger.info("Keyboard interrupt, shutting down")
                break

        logger.info("Server stopped")

    def stop(self):
        self._running = False
