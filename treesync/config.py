"""Module for configuration variables with defaults that are overridable by a file."""

from __future__ import annotations

from configparser import ConfigParser, SectionProxy
from dataclasses import dataclass, field
import os
from typing import Optional

from treesync.constants import CHUNK_SIZE
from treesync.logger import log


@dataclass
class OriginConfig:
    """Configuration variables related to the origin of a mirrored tree."""

    url: Optional[str] = None

    timeout: float = 30.0  # seconds
    chunk_size: int = CHUNK_SIZE

    @staticmethod
    def load(section: SectionProxy) -> OriginConfig:
        """Load overridden variables from a section within a config file."""
        config = OriginConfig()

        config.url = section.get("url", fallback=config.url)

        config.timeout = section.getfloat("timeout", fallback=config.timeout)
        config.chunk_size = section.getint("chunk_size", fallback=config.chunk_size)

        return config


@dataclass
class CacheConfig:
    """Configuration variables related to the local cache of a mirrored tree."""

    path: str = os.path.expanduser("~/.treesync/cache")

    @staticmethod
    def load(section: SectionProxy) -> CacheConfig:
        """Load overridden variables from a section within a config file."""
        config = CacheConfig()

        config.path = os.path.expanduser(section.get("path", fallback=config.path))

        return config


@dataclass
class WatchConfig:
    """Configuration variables related to watching a published tree for changes."""

    track_changes: bool = True

    # Full scan every this many seconds to heal missed notifications (0 = never)
    scan_interval: float = 0.0

    batch_delay: float = 0.1  # seconds

    @staticmethod
    def load(section: SectionProxy) -> WatchConfig:
        """Load overridden variables from a section within a config file."""
        config = WatchConfig()

        config.track_changes = section.getboolean(
            "track_changes", fallback=config.track_changes
        )
        config.scan_interval = section.getfloat(
            "scan_interval", fallback=config.scan_interval
        )
        config.batch_delay = section.getfloat(
            "batch_delay", fallback=config.batch_delay
        )

        return config


@dataclass
class Config:
    """Configuration variables."""

    origin: OriginConfig = field(default_factory=OriginConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    watch: WatchConfig = field(default_factory=WatchConfig)

    @staticmethod
    def load(filename: str) -> Config:
        """Load overridden configuration variables from a config file."""
        parser = ConfigParser()

        config = Config()

        try:
            with open(filename, "r") as f:
                parser.read_string(f.read(), filename)

            if "origin" in parser:
                config.origin = OriginConfig.load(parser["origin"])
            if "cache" in parser:
                config.cache = CacheConfig.load(parser["cache"])
            if "watch" in parser:
                config.watch = WatchConfig.load(parser["watch"])
        except FileNotFoundError:
            log.info(f"no config file at {filename}")
        except Exception as e:
            # An unreadable config file is not considered a fatal error since we can
            # fall back to defaults.
            log.error(f"failed to read config file {filename}: {e}")
        else:
            log.info(f"loaded config: {config}")

        return config
