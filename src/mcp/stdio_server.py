"""
Stdio transport: newline-delimited JSON-RPC over stdin/stdout.

One UTF-8 JSON object per input line; exactly one response line per request,
written in the order requests arrive. Lines that are not valid UTF-8 or JSON
get a parse error. Notifications get no output line. The loop ends
when input is exhausted. Logging must go to stderr while this runs.
"""

import json
import logging
import sys
from typing import Optional, TextIO

from ..splitwise.client import SplitwiseClient
from .dispatcher import dispatch, parse_error_response
from .tools import ToolRegistry

logger = logging.getLogger(__name__)


def _write(stdout: TextIO, response: dict) -> None:
    stdout.write(json.dumps(response, ensure_ascii=False) + "\n")
    stdout.flush()


def run_stdio(
    registry: ToolRegistry,
    client: SplitwiseClient,
    stdin: Optional[TextIO] = None,
    stdout: Optional[TextIO] = None,
) -> int:
    """
    Serve requests from stdin until end of input.

    Args:
        registry: Tool registry shared with the dispatcher
        client: Splitwise client used by tool handlers
        stdin: Input stream (default: sys.stdin)
        stdout: Output stream (default: sys.stdout)

    Returns:
        Number of responses written
    """
    stdin = stdin if stdin is not None else sys.stdin
    stdout = stdout if stdout is not None else sys.stdout

    logger.info("Splitwise MCP server ready on stdio (%d tools)", len(registry))
    # Decode per line from the byte stream when there is one
    source = getattr(stdin, "buffer", stdin)
    written = 0
    try:
        for line_number, line in enumerate(source, start=1):
            if isinstance(line, bytes):
                try:
                    line = line.decode("utf-8")
                except UnicodeDecodeError as e:
                    logger.warning("Undecodable input on line %d: %s", line_number, e)
                    _write(stdout, parse_error_response("Parse error: input is not valid UTF-8"))
                    written += 1
                    continue
            line = line.strip()
            if not line:
                continue

            try:
                message = json.loads(line)
            except json.JSONDecodeError as e:
                logger.warning("Malformed JSON on line %d: %s", line_number, e)
                _write(stdout, parse_error_response(f"Parse error: {e.msg}"))
                written += 1
                continue

            response = dispatch(message, registry, client)
            if response is not None:
                _write(stdout, response)
                written += 1
    except BrokenPipeError:
        logger.warning("Output closed by the client, stopping stdio server")
        return written

    logger.info("Input closed, stopping stdio server")
    return written