"""Tests for the command line interface."""

import base64
import json

import pytest

from dockdiver.main import main


def run_cli(capsys, *argv):
    main(list(argv))
    return json.loads(capsys.readouterr().out)


def base_args(registry, tmp_path):
    return [
        "--url", f"127.0.0.1:{registry.port}",
        "--rate", "1000",
        "--dir", str(tmp_path),
        "--log-level", "ERROR",
    ]


def test_list(registry, tmp_path, capsys):
    registry.state.add_repository("alpine", ["latest"])
    registry.state.add_repository("busybox", ["latest"])

    output = run_cli(capsys, *base_args(registry, tmp_path), "list")

    assert output["Operation"] == "List"
    assert output["Registry"] == f"http://127.0.0.1:{registry.port}"
    assert output["Repositories"] == ["alpine", "busybox"]


def test_dump(registry, tmp_path, capsys):
    registry.state.add_image("alpine")

    output = run_cli(capsys, *base_args(registry, tmp_path), "dump", "alpine")

    assert output["Repository"]["Status"] == "Success"
    assert output["Repository"]["Blobs"] == 3
    assert (tmp_path / "alpine" / "manifest.json").exists()


def test_dump_all_reports_failures(registry, tmp_path, capsys):
    registry.state.add_image("alpine")
    registry.state.add_repository("empty")

    with pytest.raises(SystemExit) as excinfo:
        main([*base_args(registry, tmp_path), "dump-all", "--num-workers", "2"])

    assert excinfo.value.code == 1
    output = json.loads(capsys.readouterr().out)
    assert output["Summary"]["Status"] == "Failed"
    assert output["Summary"]["RepositoriesFailed"] == "1"


def test_unauthorized_list(registry, tmp_path, capsys):
    registry.state.required_auth = "Basic bm9ib2R5Om5vcGU="

    with pytest.raises(SystemExit) as excinfo:
        main([*base_args(registry, tmp_path), "list"])

    assert excinfo.value.code == 1
    output = json.loads(capsys.readouterr().out)
    assert output["Status"] == "Failed"
    assert output["Error"].startswith("unauthorized")


def test_credentials_are_sent(registry, tmp_path, capsys):
    registry.state.required_auth = "Basic " + base64.b64encode(b"someone:secret").decode()
    registry.state.add_repository("private", ["v1"])

    output = run_cli(
        capsys, *base_args(registry, tmp_path),
        "--username", "someone", "--password", "secret", "list"
    )

    assert output["Repositories"] == ["private"]


def test_list_through_socks_proxy(registry, socks_proxy, tmp_path, capsys):
    registry.state.add_repository("alpine", ["latest"])

    output = run_cli(
        capsys, *base_args(registry, tmp_path),
        "--proxy", f"socks5://127.0.0.1:{socks_proxy.port}", "list"
    )

    assert output["Repositories"] == ["alpine"]
    assert socks_proxy.connects == [(0x03, "127.0.0.1", registry.port)]


def test_missing_url(tmp_path, capsys, monkeypatch):
    monkeypatch.delenv("DOCKDIVER_URL", raising=False)
    monkeypatch.delenv("DOCKDIVER_CONFIG", raising=False)

    with pytest.raises(SystemExit) as excinfo:
        main(["--dir", str(tmp_path), "--log-level", "ERROR", "list"])

    assert excinfo.value.code == 1
    assert "Missing registry URL" in json.loads(capsys.readouterr().out)["Error"]


def test_no_command(capsys):
    with pytest.raises(SystemExit) as excinfo:
        main([])
    assert excinfo.value.code == 1
