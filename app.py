import json
import signal
import sys
import threading

from flask import Flask, Response, jsonify, render_template
from loguru import logger
from werkzeug.serving import make_server

from countdown.block_rate import display_rate, strategy_for
from countdown.config import find_config_path, load_config, load_settings
from countdown.errors import ConfigError, NetworkNotFoundError, UpstreamError
from countdown.height_cache import HeightCache
from countdown.log import configure_logging, network_logger
from countdown.networks import NetworkDirectory
from countdown.resolver import CountdownResolver
from countdown.upstream import UpstreamClient


class RequestTracker:
    """Counts requests in flight so shutdown can wait for them."""

    def __init__(self):
        self.active = 0
        self._condition = threading.Condition()

    def started(self):
        with self._condition:
            self.active += 1

    def finished(self):
        with self._condition:
            self.active -= 1
            self._condition.notify_all()

    def wait_idle(self, timeout):
        with self._condition:
            return self._condition.wait_for(lambda: self.active == 0, timeout=timeout)


def create_app(resolver, tracker=None):
    app = Flask(__name__)
    app.config["RESOLVER"] = resolver
    tracker = tracker or RequestTracker()
    app.config["REQUEST_TRACKER"] = tracker

    @app.before_request
    def track_request():
        tracker.started()

    @app.teardown_request
    def untrack_request(exc):
        tracker.finished()

    @app.errorhandler(NetworkNotFoundError)
    def network_not_found(e):
        logger.debug(f"Unknown network requested: {e.name!r}")
        return Response(str(e) + "\n", status=404, content_type="text/plain")

    @app.errorhandler(UpstreamError)
    def upstream_failed(e):
        network_logger(e.network).error(
            f"Upstream failure: {e}", cause=repr(e.__cause__) if e.__cause__ else None
        )
        return Response(str(e) + "\n", status=500, content_type="text/plain")

    def render_countdown(result):
        return render_template(
            "index.html",
            result=result,
            block_rate=display_rate(result.block_rate),
            estimated_upgrade_time=result.estimated_upgrade_time(),
        )

    def height_response(height):
        return jsonify(current_height=height)

    @app.route("/healthz")
    def health_check():
        return jsonify(status="OK"), 200

    @app.route("/")
    def default_countdown():
        return render_countdown(resolver.resolve_default())

    @app.route("/status")
    def default_status():
        return height_response(resolver.resolve_default().current_height)

    @app.route("/<network>")
    def countdown_page(network):
        return render_countdown(resolver.resolve(network))

    @app.route("/<network>/status")
    def network_status(network):
        return height_response(resolver.current_height(network))

    @app.route("/<network>/countdown")
    def network_countdown(network):
        result = resolver.resolve(network)
        return Response(json.dumps(result.to_dict()) + "\n", content_type="application/json")

    return app


def refresh_wait_timeout(settings):
    """Longest a refresh can take: /status plus /header and the /block fallback,
    each bounded once for connect and once for read."""
    return 2 * (settings.status_timeout_seconds + 2 * settings.block_fetch_timeout_seconds)


def build_cache(settings):
    def client_factory(network):
        return UpstreamClient(
            network.rpc,
            network=network.name,
            status_timeout=settings.status_timeout_seconds,
            block_fetch_timeout=settings.block_fetch_timeout_seconds,
        )

    return HeightCache(
        client_factory,
        refresh_interval=settings.height_refresh_seconds,
        rate_strategy_factory=lambda network: strategy_for(network, settings),
        wait_timeout=refresh_wait_timeout(settings),
        num_workers=settings.num_workers,
    )


def log_settings(settings, directory):
    logger.info(f"--- Configuration ---")
    logger.info(f"App Version: {settings.app_version}")
    logger.info(f"Log Level: {settings.log_level}")
    logger.info(f"Networks: {', '.join(directory.names())}")
    logger.info(f"Default Network: {directory.default.name}")
    logger.info(f"Height Refresh Interval: {settings.height_refresh_seconds}s")
    logger.info(f"Status Timeout: {settings.status_timeout_seconds}s")
    logger.info(f"Block Fetch Timeout: {settings.block_fetch_timeout_seconds}s")
    logger.info(f"Block Rate Strategy: {settings.block_rate_strategy}")
    logger.info(f"Block Range For Avg Time: {settings.block_range_for_avg_time}")
    logger.info(f"--- End Configuration ---")


def serve(app, host, port, cache, grace_seconds):
    """Serve until SIGINT/SIGTERM, then drain in-flight requests for up to ``grace_seconds``."""
    server = make_server(host, port, app, threaded=True)

    def handle_signal(signum, frame):
        logger.info(f"Received {signal.Signals(signum).name}, shutting down")
        # shutdown() blocks until serve_forever returns, so it cannot run on the serving thread
        threading.Thread(target=server.shutdown, daemon=True).start()

    signal.signal(signal.SIGINT, handle_signal)
    signal.signal(signal.SIGTERM, handle_signal)

    logger.info(f"Server is starting on {host}:{port}")
    try:
        server.serve_forever()
    finally:
        tracker = app.config["REQUEST_TRACKER"]
        if not tracker.wait_idle(grace_seconds):
            logger.warning(f"{tracker.active} request(s) still running after {grace_seconds}s grace period")
        cache.close()
        server.server_close()
        logger.info("Server stopped")


def main():
    try:
        settings = load_settings()
        configure_logging(settings.log_level, settings.log_force_color)
        config = load_config(find_config_path(settings.config_path))
        directory = NetworkDirectory(
            config.networks, default_name=settings.default_network, require_networks=True
        )
    except ConfigError as e:
        logger.error(f"Invalid configuration: {e}")
        return 1

    log_settings(settings, directory)

    cache = build_cache(settings)
    resolver = CountdownResolver(directory, cache)
    app = create_app(resolver)

    cache.warm([directory.default])

    port = settings.port or config.port
    serve(app, settings.host, port, cache, settings.shutdown_grace_seconds)
    return 0


if __name__ == "__main__":
    sys.exit(main())
