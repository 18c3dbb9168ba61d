import subprocess
import sys


def test_cli_help() -> None:
    cp = subprocess.run(
        [sys.executable, "-m", "vcfroc", "--help"],
        check=True,
        capture_output=True,
        text=True,
    )
    assert "vcfroc" in cp.stdout.lower()
    assert "eval" in cp.stdout
