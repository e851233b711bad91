import os.path

from configparser import ConfigParser

from treesync.config import CacheConfig, Config, OriginConfig, WatchConfig


def test_origin_config_defaults():
    parser = ConfigParser()
    parser.read_string("[origin]")

    cfg = OriginConfig.load(parser["origin"])

    assert cfg.url is None
    assert cfg.timeout > 0
    assert cfg.chunk_size > 0


def test_origin_config_load():
    parser = ConfigParser()
    parser.read_string(
        """
        [origin]
        url = https://example.com/tree/
        timeout = 2.5
        chunk_size = 1024
        """
    )

    cfg = OriginConfig.load(parser["origin"])

    assert cfg.url == "https://example.com/tree/"
    assert cfg.timeout == 2.5
    assert cfg.chunk_size == 1024


def test_cache_config_defaults():
    parser = ConfigParser()
    parser.read_string("[cache]")

    cfg = CacheConfig.load(parser["cache"])

    assert cfg.path == os.path.expanduser("~/.treesync/cache")


def test_cache_config_load():
    parser = ConfigParser()
    parser.read_string(
        """
        [cache]
        path = ~/test
        """
    )

    cfg = CacheConfig.load(parser["cache"])

    assert cfg.path == os.path.expanduser("~/test")


def test_watch_config_load():
    parser = ConfigParser()
    parser.read_string(
        """
        [watch]
        track_changes = no
        scan_interval = 60
        batch_delay = 0.5
        """
    )

    cfg = WatchConfig.load(parser["watch"])

    assert not cfg.track_changes
    assert cfg.scan_interval == 60.0
    assert cfg.batch_delay == 0.5


def test_config_defaults(tmp_path):
    cfg = Config.load(str(tmp_path / "nonexistent"))

    assert cfg.origin.url is None
    assert cfg.cache is not None
    assert cfg.watch.track_changes


def test_config_load(tmp_path):
    (tmp_path / "config").write_text(
        """
        [origin]
        url = /srv/tree

        [cache]
        path = ~/test

        [watch]
        scan_interval = 10
        """
    )

    cfg = Config.load(str(tmp_path / "config"))

    assert cfg.origin.url == "/srv/tree"
    assert cfg.cache.path == os.path.expanduser("~/test")
    assert cfg.watch.scan_interval == 10.0
    assert cfg.watch.track_changes


def test_config_load_failure_nonfatal(tmp_path, caplog):
    (tmp_path / "config").write_text("blabla")

    cfg = Config.load(str(tmp_path / "config"))

    assert cfg.cache is not None
    assert "failed to read config file" in caplog.text
