from __future__ import annotations

import argparse
import signal
import sys
from dataclasses import replace

from skyreg import db
from skyreg.errors import ConfigError
from skyreg.settings import Settings, settings
from skyreg.watcher import Watcher


def build_parser(defaults: Settings) -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="Register running docker containers in skydns")
    p.add_argument("-s", "--docker", dest="docker_url", default=defaults.docker_url, help="path to the docker unix socket or a docker URL")
    p.add_argument("--skydns", dest="skydns_url", default=defaults.skydns_url, help="url to the skydns API")
    p.add_argument("--secret", default=defaults.secret, help="skydns secret")
    p.add_argument("--domain", default=defaults.domain, help="same domain passed to skydns")
    p.add_argument("--environment", default=defaults.environment, help="environment name where services are running")
    p.add_argument("--ttl", dest="ttl_s", type=int, default=defaults.ttl_s, help="default ttl to use when registering a service")
    p.add_argument("--beat", dest="beat_s", type=int, default=defaults.beat_s, help="heartbeat interval (0: ttl minus a quarter)")
    p.add_argument("--workers", type=int, default=defaults.workers, help="number of event handler workers")
    p.add_argument("--queue-size", type=int, default=defaults.queue_size, help="events buffered before the reader blocks")
    p.add_argument("--rule", choices=["default", "env"], default=defaults.rule, help="built-in service derivation rule")
    p.add_argument("--plugins", default=defaults.plugins, help="plugin file or directory defining create_service")
    p.add_argument("--db-path", default=defaults.db_path, help="sqlite journal path ('' disables it)")
    p.add_argument("--log-level", default=defaults.log_level, choices=["DEBUG", "INFO", "WARN", "ERROR"])
    p.add_argument("--status-host", default=defaults.status_host)
    p.add_argument("--status-port", type=int, default=defaults.status_port, help="serve the status API on this port (0: off)")
    p.add_argument("--reconnect-delay", dest="reconnect_delay_s", type=int, default=defaults.reconnect_delay_s, help="seconds before re-subscribing after losing docker (0: exit)")
    p.add_argument("--deregister-on-shutdown", action="store_true", default=defaults.deregister_on_shutdown, help="remove entries on shutdown instead of letting them expire")
    return p


def settings_from_args(argv: list[str] | None = None, defaults: Settings = settings) -> Settings:
    args = build_parser(defaults).parse_args(argv)
    return replace(defaults, **vars(args))


def main(argv: list[str] | None = None) -> int:
    s = settings_from_args(argv)
    # The journal reads the module-level settings.
    db.settings = s
    db.init_db()

    try:
        watcher = Watcher(s)
    except ConfigError as e:
        print(f"skyreg: {e}", file=sys.stderr)
        return 2

    def _on_signal(signum, _frame) -> None:
        db.log_event("INFO", f"Received signal {signal.Signals(signum).name}, exiting")
        watcher.stop()

    signal.signal(signal.SIGINT, _on_signal)
    signal.signal(signal.SIGTERM, _on_signal)

    return watcher.run()


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
