"""
Main entry point for running the Splitwise MCP server.

Transports:
- stdio: newline-delimited JSON-RPC on stdin/stdout (for local MCP clients)
- http: JSON-RPC POST endpoint at /mcp with bearer-token auth

Configuration comes from the environment (or a .env file); see src/config.py.
Command-line flags override the environment.
"""

import argparse
import dataclasses
import logging
import os
import sys

# Add project root to path
project_root = os.path.dirname(os.path.abspath(__file__))
if project_root not in sys.path:
    sys.path.insert(0, project_root)

from src.config import ConfigurationError, configure_logging, load_settings

logger = logging.getLogger("run_servers")


def run_mcp_server(transport: str = "stdio", host=None, port=None, log_level=None) -> int:
    """Run the MCP server with the given transport until it stops."""
    try:
        settings = load_settings()
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        print("Set SPLITWISE_API_KEY in the environment or in a .env file.", file=sys.stderr)
        return 1

    overrides = {
        key: value
        for key, value in (("host", host), ("port", port), ("log_level", log_level))
        if value is not None
    }
    settings = dataclasses.replace(settings, **overrides)
    configure_logging(settings.log_level)

    from src.mcp import build_registry, run_http_server, run_stdio
    from src.splitwise import SplitwiseClient

    registry = build_registry()
    logger.info("Starting Splitwise MCP server (%s transport, %d tools)", transport, len(registry))

    with SplitwiseClient(settings.api_key, base_url=settings.base_url, timeout=settings.timeout) as client:
        if transport == "stdio":
            run_stdio(registry, client)
        elif transport == "http":
            try:
                run_http_server(settings, registry, client)
            except KeyboardInterrupt:
                logger.info("Shutting down HTTP server...")
        else:
            print(f"Unknown transport: {transport}. Use 'stdio' or 'http'", file=sys.stderr)
            return 1
    return 0


def main():
    """Parse the command line and run the chosen server."""
    parser = argparse.ArgumentParser(
        description="Run the Splitwise MCP server",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run MCP server with stdio (for MCP clients like desktop assistants)
  python run_servers.py mcp

  # Run MCP server with HTTP transport
  MCP_AUTH_TOKEN=secret python run_servers.py mcp --transport http --port 8080
"""
    )

    subparsers = parser.add_subparsers(dest="command", metavar="COMMAND")

    mcp_parser = subparsers.add_parser("mcp", help="Serve the Splitwise tools over MCP")
    mcp_parser.add_argument(
        "--transport",
        choices=["stdio", "http"],
        default="stdio",
        help="stdio for local MCP clients, http for remote ones (default: stdio)"
    )
    mcp_parser.add_argument("--host", default=None, help="Host for HTTP transport (default: $HOST or 0.0.0.0)")
    mcp_parser.add_argument("--port", type=int, default=None, help="Port for HTTP transport (default: $PORT or 8080)")
    mcp_parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=None,
        help="Log verbosity (default: $LOG_LEVEL or INFO)"
    )

    args = parser.parse_args()

    if args.command == "mcp":
        sys.exit(run_mcp_server(
            transport=args.transport,
            host=args.host,
            port=args.port,
            log_level=args.log_level,
        ))
    else:
        parser.print_help()
        print("\nNo command specified. Use: mcp")
        sys.exit(1)


if __name__ == "__main__":
    main()
