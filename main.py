"""Entry point for running the network test server."""

from __future__ import annotations

import argparse

from speedprobe import bootstrap


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Network test server")
    parser.add_argument("--config", help="Path to config.yaml", default="config.yaml")
    parser.add_argument("--host", default=None, help="Override web server host")
    parser.add_argument("--port", type=int, default=None, help="Override web server port")
    parser.add_argument("--maxsize", type=int, default=None, help="Override maximum download size in MB")
    parser.add_argument("--debug", action="store_true", help="Enable Flask debug mode")
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    context = bootstrap(args.config)
    if args.maxsize is not None:
        context.config.streaming.max_download_mb = args.maxsize
    context.start()

    host = args.host or context.config.web.host
    port = args.port or context.config.web.port
    try:
        # The reloader would start a second echo server loop in the child process.
        context.web_app.run(host=host, port=port, debug=args.debug, threaded=True, use_reloader=False)
    finally:
        context.shutdown()


if __name__ == "__main__":
    main()
