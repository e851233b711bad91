import io
import os
from unittest import mock

import pytest
import requests

from treesync.errors import NotFoundUpstream, TransportFailure
from treesync.remote.transport import HttpTransport, LocalTransport, open_transport


def mock_session(status_code=200, chunks=(b"",)):
    response = mock.MagicMock()
    response.status_code = status_code
    response.iter_content.return_value = list(chunks)

    if status_code >= 400:
        response.raise_for_status.side_effect = requests.HTTPError(
            f"{status_code} error"
        )

    session = mock.MagicMock()
    session.get.return_value.__enter__.return_value = response

    return session


def test_http_url():
    assert HttpTransport("http://host/base").url("a b/c#d") == (
        "http://host/base/a%20b/c%23d"
    )
    assert HttpTransport("http://host/base/").url("./x//y") == "http://host/base/x/y"


def test_http_download():
    session = mock_session(200, [b"0123", b"456789"])
    transport = HttpTransport("http://host/", timeout=5.0, session=session)

    f = io.BytesIO()

    assert transport.download("a.txt", f) == 10
    assert f.getvalue() == b"0123456789"

    args, kwargs = session.get.call_args

    assert args == ("http://host/a.txt",)
    assert "Range" not in kwargs["headers"]
    assert kwargs["headers"]["Accept-Encoding"] == "identity"
    assert kwargs["stream"]
    assert kwargs["timeout"] == 5.0


def test_http_resume():
    session = mock_session(206, [b"456789"])
    transport = HttpTransport("http://host/", session=session)

    f = io.BytesIO(b"0123")

    assert transport.download("a.txt", f) == 6
    assert f.getvalue() == b"0123456789"

    assert session.get.call_args[1]["headers"]["Range"] == "bytes=4-"


def test_http_resume_unsupported():
    session = mock_session(200, [b"0123456789"])
    transport = HttpTransport("http://host/", session=session)

    f = io.BytesIO(b"xxxx")

    transport.download("a.txt", f)

    assert f.getvalue() == b"0123456789"


def test_http_resume_nothing_left():
    session = mock_session(416)
    transport = HttpTransport("http://host/", session=session)

    f = io.BytesIO(b"0123")

    assert transport.download("a.txt", f) == 0
    assert f.getvalue() == b"0123"


def test_http_range_error_without_offset():
    transport = HttpTransport("http://host/", session=mock_session(416))

    with pytest.raises(TransportFailure):
        transport.download("a.txt", io.BytesIO())


def test_http_not_found():
    transport = HttpTransport("http://host/", session=mock_session(404))

    with pytest.raises(NotFoundUpstream) as e:
        transport.download("missing.txt", io.BytesIO())

    assert e.value.url == "http://host/missing.txt"


def test_http_server_error():
    transport = HttpTransport("http://host/", session=mock_session(500))

    with pytest.raises(TransportFailure, match="500 error"):
        transport.download("a.txt", io.BytesIO())


def test_http_connection_error():
    session = mock.MagicMock()
    session.get.side_effect = requests.ConnectionError("refused")

    transport = HttpTransport("http://host/", session=session)

    with pytest.raises(TransportFailure) as e:
        transport.download("a.txt", io.BytesIO())

    assert isinstance(e.value, IOError)


def test_http_server(http_origin):
    transport = HttpTransport(http_origin)

    f = io.BytesIO()
    transport.download("b/c.txt", f)
    assert f.getvalue() == b"hello"

    # The test server ignores ranges, so the download is restarted
    f = io.BytesIO(b"01")
    transport.download("a.txt", f)
    assert f.getvalue() == b"0123456789"

    with pytest.raises(NotFoundUpstream):
        transport.download("missing.txt", io.BytesIO())


def test_local_download(tmp_path):
    (tmp_path / "a.txt").write_bytes(b"0123456789")

    transport = LocalTransport(str(tmp_path), chunk_size=3)

    f = io.BytesIO()
    assert transport.download("a.txt", f) == 10
    assert f.getvalue() == b"0123456789"

    f = io.BytesIO(b"0123")
    assert transport.download("a.txt", f) == 6
    assert f.getvalue() == b"0123456789"


def test_local_not_found(tmp_path):
    (tmp_path / "dir").mkdir()

    transport = LocalTransport(str(tmp_path))

    with pytest.raises(NotFoundUpstream):
        transport.download("missing.txt", io.BytesIO())

    with pytest.raises(NotFoundUpstream):
        transport.download("dir", io.BytesIO())


def test_open_transport(tmp_path):
    assert isinstance(open_transport("http://host/tree"), HttpTransport)
    assert isinstance(open_transport("HTTPS://host/tree"), HttpTransport)

    local = open_transport(f"file://{tmp_path}")
    assert isinstance(local, LocalTransport)
    assert local.url("a") == os.path.join(str(tmp_path), "a")

    assert isinstance(open_transport(str(tmp_path)), LocalTransport)
    assert isinstance(open_transport("relative/dir"), LocalTransport)

    with pytest.raises(ValueError):
        open_transport("ftp://host/tree")
