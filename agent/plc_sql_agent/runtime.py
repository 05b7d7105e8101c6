"""
Process-wide services, built once at startup and handed to whoever needs
them (the API app, the launcher, tests).
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional, Union

from apscheduler.schedulers.background import BackgroundScheduler

from .config import ConfigChannel, default_config_path, load_config
from .errors import ConfigError
from .metrics import MetricsRegistry
from .models import AgentConfig
from .poller import PollLoop
from .protocol import ProtocolClient
from .sink import PersistenceSink, SqlAlchemySink


log = logging.getLogger(__name__)


def _env_target(config: AgentConfig) -> AgentConfig:
    # PLC_HOST/PLC_PORT win over the file on every load
    host = os.environ.get("PLC_HOST")
    if host:
        config.plc.host = host
    port = os.environ.get("PLC_PORT")
    if port:
        config.plc.port = int(port)
    return config


class Runtime:
    def __init__(
        self,
        config: AgentConfig,
        *,
        config_path: Optional[Union[str, Path]] = None,
        client: Optional[ProtocolClient] = None,
        sink: Optional[PersistenceSink] = None,
        scheduler=None,
        metrics: Optional[MetricsRegistry] = None,
    ) -> None:
        self.config_path = Path(config_path) if config_path else default_config_path()
        self.metrics = metrics or MetricsRegistry()
        self.client = client or ProtocolClient(config.plc.host, config.plc.port, metrics=self.metrics)
        self.sink = sink or SqlAlchemySink(pool_pre_ping=True)
        self.scheduler = scheduler or BackgroundScheduler(job_defaults={"misfire_grace_time": 1})
        self.channel = ConfigChannel()
        self.poller = PollLoop(
            self.client,
            self.sink,
            self.scheduler,
            config,
            channel=self.channel,
            metrics=self.metrics,
        )

    @classmethod
    def from_env(cls) -> "Runtime":
        path = default_config_path()
        try:
            config = load_config(path)
        except ConfigError as e:
            log.warning("%s; starting with an empty register list", e.message)
            config = AgentConfig()
        return cls(_env_target(config), config_path=path)

    def start(self) -> None:
        if not self.scheduler.running:
            self.scheduler.start()
        if os.environ.get("AGENT_AUTOCONNECT", "0").lower() not in ("0", "false", ""):
            self.poller.connect()

    def reload_config(self) -> AgentConfig:
        """Load the file and queue it for the poll loop (applied next tick)."""
        config = _env_target(load_config(self.config_path))
        self.channel.publish(config)
        if not self.poller.running:
            # no tick will come to pick it up
            self.poller.apply_config(self.channel.take_latest() or config)
        log.info("Configuration reloaded from file")
        return config

    def shutdown(self) -> None:
        self.poller.disconnect()
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        dispose = getattr(self.sink, "dispose", None)
        if dispose:
            dispose()
