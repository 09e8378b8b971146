from unittest.mock import Mock, patch

import pytest
import requests

from download_ephemeris import DownloadError, ensure_ephemeris_files, fetch_file, main

MIRRORS = ("https://primary.example/ephe", "https://secondary.example/ephe/")


def _response(content=b"ephemeris-bytes", status=200):
    resp = Mock()
    resp.status_code = status
    if status >= 400:
        resp.raise_for_status.side_effect = requests.HTTPError(f"{status}")
    resp.iter_content.return_value = [content]
    return resp


def test_falls_back_to_next_mirror(tmp_path):
    with patch("download_ephemeris.requests.get") as get:
        get.side_effect = [requests.ConnectionError("down"), _response()]
        path = fetch_file("seas_18.se1", tmp_path, MIRRORS)

    assert path.read_bytes() == b"ephemeris-bytes"
    urls = [c.args[0] for c in get.call_args_list]
    assert urls == [
        "https://primary.example/ephe/seas_18.se1",
        "https://secondary.example/ephe/seas_18.se1",
    ]
    assert not (tmp_path / "seas_18.se1.part").exists()


def test_http_error_tries_next_mirror(tmp_path):
    with patch("download_ephemeris.requests.get") as get:
        get.side_effect = [_response(status=404), _response(b"ok")]
        path = fetch_file("semo_18.se1", tmp_path, MIRRORS)
    assert path.read_bytes() == b"ok"


def test_all_mirrors_fail(tmp_path):
    with patch("download_ephemeris.requests.get", side_effect=requests.Timeout("slow")):
        with pytest.raises(DownloadError):
            fetch_file("sepl_18.se1", tmp_path, MIRRORS)
    assert not (tmp_path / "sepl_18.se1").exists()


def test_ensure_skips_present_files(tmp_path):
    for name in ("seas_18.se1", "semo_18.se1", "sepl_18.se1"):
        (tmp_path / name).write_bytes(b"x")
    with patch("download_ephemeris.requests.get") as get:
        assert ensure_ephemeris_files(tmp_path, MIRRORS) is True
    get.assert_not_called()


def test_ensure_reports_incomplete(tmp_path):
    with patch("download_ephemeris.requests.get", side_effect=requests.ConnectionError("offline")):
        assert ensure_ephemeris_files(tmp_path, MIRRORS) is False


def test_ensure_downloads_missing(tmp_path):
    with patch("download_ephemeris.requests.get", side_effect=lambda *a, **kw: _response()):
        assert ensure_ephemeris_files(tmp_path / "ephe", MIRRORS) is True
    assert sorted(p.name for p in (tmp_path / "ephe").iterdir()) == [
        "seas_18.se1", "semo_18.se1", "sepl_18.se1",
    ]


def test_cli_exit_code(tmp_path):
    with patch("download_ephemeris.requests.get", side_effect=requests.ConnectionError("offline")):
        assert main(["--target", str(tmp_path), "--mirror", "https://only.example"]) == 1
