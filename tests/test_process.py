import subprocess
import sys
import unittest
from unittest.mock import patch

from playground_runner.process import ProcessRunner


class ProcessRunnerTests(unittest.TestCase):
    def test_run_captures_output(self) -> None:
        with patch("playground_runner.process.subprocess.run") as mock_run:
            mock_run.return_value = subprocess.CompletedProcess(
                args=[], returncode=0, stdout="Program Id: abc\n", stderr=""
            )
            result = ProcessRunner().run(["solana", "program", "deploy", "x.so"], cwd="/tmp", env={"A": "1"})

        called_cmd = mock_run.call_args.args[0]
        kwargs = mock_run.call_args.kwargs
        self.assertEqual(called_cmd, ["solana", "program", "deploy", "x.so"])
        self.assertEqual(kwargs["cwd"], "/tmp")
        self.assertEqual(kwargs["env"]["A"], "1")
        self.assertIn("PATH", kwargs["env"])
        self.assertTrue(result.ok)
        self.assertEqual(result.output, "Program Id: abc")

    def test_run_failure_prefers_stderr(self) -> None:
        with patch("playground_runner.process.subprocess.run") as mock_run:
            mock_run.return_value = subprocess.CompletedProcess(
                args=[], returncode=1, stdout="partial", stderr="error: insufficient funds\n"
            )
            result = ProcessRunner().run(["solana"])
        self.assertFalse(result.ok)
        self.assertEqual(result.error_text("deploy failed"), "error: insufficient funds")

    def test_run_timeout_is_a_result(self) -> None:
        with patch("playground_runner.process.subprocess.run") as mock_run:
            mock_run.side_effect = subprocess.TimeoutExpired(cmd=["anchor", "build"], timeout=2)
            result = ProcessRunner().run(["anchor", "build"], timeout=2)
        self.assertEqual(result.returncode, -9)
        self.assertIn("timed out", result.stderr)


class ManagedProcessTests(unittest.TestCase):
    def test_readiness_and_terminate(self) -> None:
        script = "import time; print('JSON RPC URL: http://127.0.0.1:8899', flush=True); time.sleep(30)"
        proc = ProcessRunner().spawn([sys.executable, "-c", script])
        try:
            self.assertTrue(proc.wait_for_output(["json rpc url"], timeout=10))
            self.assertTrue(proc.is_alive())
        finally:
            proc.terminate(grace=2)
        self.assertFalse(proc.is_alive())
        self.assertIsNotNone(proc.returncode)

    def test_exit_before_ready(self) -> None:
        proc = ProcessRunner().spawn([sys.executable, "-c", "print('starting'); raise SystemExit(3)"])
        self.assertFalse(proc.wait_for_output(["validator ready"], timeout=10))
        proc.terminate(grace=1)
        self.assertEqual(proc.returncode, 3)


if __name__ == "__main__":
    unittest.main()
