from unittest import mock

from treesync.args import Arguments
from treesync.operations import ScanOperations, WatchOperations


def parse(tmp_path, *arguments):
    return Arguments.parse(["--config", str(tmp_path / "config"), *arguments])


def test_scan(tree, tmp_path, capsys):
    assert ScanOperations(parse(tmp_path, "scan", str(tree))).run() == 0

    assert "revision 1: 2 added, 0 removed" in capsys.readouterr().out

    (tree / "a.txt").unlink()

    assert ScanOperations(parse(tmp_path, "scan", str(tree))).run() == 0

    assert "revision 2: 0 added, 1 removed" in capsys.readouterr().out


def test_watch_options(tree, tmp_path):
    (tmp_path / "config").write_text(
        """
        [watch]
        track_changes = no
        scan_interval = 5
        batch_delay = 0.25
        """
    )

    with mock.patch("treesync.operations.producer.Watcher") as mock_watcher:
        with mock.patch("treesync.operations.producer.WatcherBridge") as mock_bridge:
            mock_watcher().running = False

            args = parse(tmp_path, "watch", str(tree), "--scan-interval=7")

            assert WatchOperations(args).run() == 0

    assert mock_bridge.call_args[0][1] is False

    assert mock_watcher.call_args[1]["scan_interval"] == 7.0
    assert mock_watcher.call_args[1]["batch_delay"] == 0.25

    assert mock_watcher().start.called
    assert mock_watcher().stop.called


def test_watch_initial_scan(tree, tmp_path):
    with mock.patch("treesync.operations.producer.Watcher") as mock_watcher:
        mock_watcher().running = False

        WatchOperations(parse(tmp_path, "watch", str(tree))).run()

    assert mock_watcher.call_args[1]["initial_scan"] is True
