import unittest

from playground_runner.errors import ValidatorExited, ValidatorSpawnFailed, ValidatorStartupTimeout
from playground_runner.validator import ValidatorSupervisor

from fakes import FakeProcess, FakeRunner


def supervisor(runner: FakeRunner, **kwargs) -> ValidatorSupervisor:
    return ValidatorSupervisor(rpc_port=18899, runner=runner, settle_delay=0, **kwargs)


class ValidatorSupervisorTests(unittest.TestCase):
    def test_ensure_running_is_idempotent(self) -> None:
        runner = FakeRunner()
        validator = supervisor(runner)
        self.assertTrue(validator.ensure_running())
        self.assertFalse(validator.ensure_running())
        self.assertEqual(len(runner.spawned), 1)
        self.assertTrue(validator.is_running())
        self.assertEqual(validator.get_endpoint(), "http://127.0.0.1:18899")

    def test_command_line(self) -> None:
        runner = FakeRunner()
        supervisor(runner, ledger_dir=None).start()
        self.assertEqual(runner.spawned[0], ["solana-test-validator", "--reset", "--rpc-port", "18899"])

    def test_readiness_uses_markers_and_timeout(self) -> None:
        proc = FakeProcess()
        supervisor(FakeRunner(processes=[proc]), startup_timeout=3.5).start()
        markers, timeout = proc.waited_for[0]
        self.assertIn("JSON RPC URL", markers)
        self.assertEqual(timeout, 3.5)

    def test_spawn_failure(self) -> None:
        validator = supervisor(FakeRunner(spawn_error=FileNotFoundError("solana-test-validator")))
        with self.assertRaises(ValidatorSpawnFailed):
            validator.ensure_running()
        self.assertFalse(validator.is_running())

    def test_exit_before_ready(self) -> None:
        proc = FakeProcess(ready=False, exit_code=1, lines=["Error: Address already in use"])
        validator = supervisor(FakeRunner(processes=[proc]))
        with self.assertRaises(ValidatorExited) as ctx:
            validator.ensure_running()
        self.assertIn("Address already in use", ctx.exception.message)

    def test_startup_timeout_terminates_process(self) -> None:
        proc = FakeProcess(ready=False)
        validator = supervisor(FakeRunner(processes=[proc]))
        with self.assertRaises(ValidatorStartupTimeout):
            validator.ensure_running()
        self.assertTrue(proc.terminated)
        self.assertFalse(validator.is_running())

    def test_dead_process_is_restarted(self) -> None:
        first, second = FakeProcess(), FakeProcess()
        runner = FakeRunner(processes=[first, second])
        validator = supervisor(runner)
        validator.ensure_running()
        first.alive = False
        self.assertFalse(validator.is_running())
        self.assertTrue(validator.ensure_running())
        self.assertEqual(len(runner.spawned), 2)

    def test_stop_and_reset(self) -> None:
        first, second = FakeProcess(), FakeProcess()
        runner = FakeRunner(processes=[first, second])
        validator = supervisor(runner)
        validator.start()
        validator.reset()
        self.assertTrue(first.terminated)
        self.assertTrue(validator.is_running())
        validator.stop()
        self.assertTrue(second.terminated)
        self.assertFalse(validator.is_running())
        validator.stop()


if __name__ == "__main__":
    unittest.main()
