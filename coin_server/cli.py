import argparse
import os
import sys

import uvicorn

__all__ = ["main"]


def _parse_args(argv):
    p = argparse.ArgumentParser(prog="coin-counter", description="Coin counter WebSocket server")
    p.add_argument("--host", default=os.getenv("WS_HOST", "127.0.0.1"), help="Bind address")
    p.add_argument("--port", type=int, default=int(os.getenv("WS_PORT", "8081")), help="Bind port")
    p.add_argument("--log-level", choices=["DEBUG", "INFO", "WARNING", "ERROR"], help="Log level for coin_server and uvicorn")
    p.add_argument("--static-dir", help="Directory with the browser client (index.html)")
    p.add_argument("--metrics", dest="metrics", action="store_true", default=None, help="Start the Prometheus metrics server")
    p.add_argument("--no-metrics", dest="metrics", action="store_false", help="Do not start the metrics server")
    p.add_argument("--metrics-port", type=int, help="Port of the metrics server")
    p.add_argument("--reconcile-interval", type=float, help="Seconds between consistency checks (0 disables)")
    return p.parse_args(argv[1:])


def _apply_overrides(args) -> None:
    os.environ["WS_HOST"] = args.host
    os.environ["WS_PORT"] = str(args.port)
    if args.log_level:
        os.environ["LOG_LEVEL"] = args.log_level
    if args.static_dir:
        os.environ["STATIC_DIR"] = args.static_dir
    if args.metrics is not None:
        os.environ["METRICS_ENABLED"] = "1" if args.metrics else "0"
    if args.metrics_port:
        os.environ["METRICS_PORT"] = str(args.metrics_port)
    if args.reconcile_interval is not None:
        os.environ["RECONCILE_INTERVAL"] = str(args.reconcile_interval)


def main(argv: list[str] | None = None):
    args = _parse_args(argv or sys.argv)
    # Overrides must land in the environment before the app reads its config
    _apply_overrides(args)

    from coin_server.core.config import Config
    from coin_server.transport.fastapi_adapter import create_app

    cfg = Config.from_env()
    app = create_app(cfg)
    print(f"[coin-counter] Listening on {cfg.ws_host}:{cfg.ws_port}")
    return uvicorn.run(app, host=cfg.ws_host, port=cfg.ws_port, log_level=cfg.log_level.lower())


if __name__ == "__main__":
    main()
