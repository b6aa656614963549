"""Application bootstrap helpers."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from .config import AppConfig, load_config
from .db import init_db
from .echo_server import EchoServer
from .logging_setup import configure_logging
from .scheduler import SchedulerService
from .store import SQLResultStore
from .web.app import create_web_app


class ApplicationContext:
    """Holds shared singletons for the server."""

    def __init__(self, config: AppConfig):
        self.config = config
        configure_logging(config)
        self.Session = init_db(config.paths.data_dir)
        self.store = SQLResultStore(self.Session)
        self.echo_server = EchoServer(config.exchange)
        self.scheduler = SchedulerService(config, self.echo_server)
        self.web_app = create_web_app(config=config, store=self.store, echo_server=self.echo_server)

    def start(self) -> None:
        self.echo_server.start()
        self.scheduler.start()

    def shutdown(self) -> None:
        self.scheduler.shutdown()
        self.echo_server.stop()
        self.store.close()


def bootstrap(config_path: Optional[str] = None) -> ApplicationContext:
    """Load configuration and wire dependencies."""

    config_file = Path(config_path).resolve() if config_path else None
    config = load_config(str(config_file)) if config_file else load_config()
    return ApplicationContext(config)
