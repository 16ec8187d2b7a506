import threading

import httpx
import pytest

from wallet_link import cli
from wallet_link.audit import AuditLog, build_event

from helpers import AUTH_URL


def test_requires_command():
    with pytest.raises(SystemExit):
        cli.main([])


def test_verify_audit_ok(tmp_path, capsys):
    log = AuditLog(tmp_path)
    log.append(build_event(outcome="accepted", port=1))
    assert cli.main(["verify-audit", str(log.log_path)]) == 0
    assert capsys.readouterr().out.strip() == "OK"


def test_verify_audit_fail(tmp_path, capsys):
    p = tmp_path / "bad.jsonl"
    p.write_text('{"hash":"x","prev_hash":"y"}\n')
    assert cli.main(["verify-audit", str(p)]) == 1
    assert "FAIL" in capsys.readouterr().err


def test_link_timeout(capsys):
    rc = cli.main(
        ["link", "--auth-url", AUTH_URL, "--no-browser", "--unverified", "--timeout", "0.1"]
    )
    captured = capsys.readouterr()
    assert rc == 1
    assert f"Authenticator: {AUTH_URL}?port=" in captured.out
    assert "outcome=timed_out" in captured.err


def test_link_success(monkeypatch, capsys, tmp_path):
    threads = []

    def fake_open(url: str) -> bool:
        port = int(url.split("port=")[1])

        def page():
            with httpx.Client(trust_env=False, timeout=5.0) as client:
                client.post(
                    f"http://127.0.0.1:{port}/",
                    content='{"publicKey":"Test1234"}',
                    headers={"Origin": AUTH_URL},
                )

        t = threading.Thread(target=page)
        t.start()
        threads.append(t)
        return True

    monkeypatch.setattr(cli.webbrowser, "open", fake_open)

    rc = cli.main(
        [
            "link",
            "--auth-url",
            AUTH_URL,
            "--unverified",
            "--timeout",
            "10",
            "--audit-dir",
            str(tmp_path),
        ]
    )
    for t in threads:
        t.join(5)

    out = capsys.readouterr().out
    assert rc == 0
    assert "public_key=Test1234" in out
    assert AuditLog(tmp_path).verify()


def test_link_require_verified_flag():
    args = cli.build_parser().parse_args(["link", "--require-verified"])
    assert args.require_verified is True
    assert cli.build_parser().parse_args(["link"]).require_verified is False
