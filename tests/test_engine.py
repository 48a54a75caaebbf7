import tempfile
import threading
import time
import unittest
from pathlib import Path
from unittest.mock import Mock

from playground_runner.adapter import LocalValidatorAdapter
from playground_runner.config import Settings
from playground_runner.engine import ExecutionEngine
from playground_runner.models import ExecutionResult, parse_request
from playground_runner.templates import DirectoryTemplateLoader, StaticTemplateLoader
from playground_runner.validator import ValidatorSupervisor

from fakes import FakeChain, FakeRunner, account_init_template

REPO_TEMPLATES = Path(__file__).resolve().parents[1] / "templates"


def mock_adapter(supported: bool = True) -> Mock:
    adapter = Mock(spec=LocalValidatorAdapter)
    adapter.supports.return_value = supported
    adapter.execute_scenario.side_effect = lambda inp: ExecutionResult(success=True, scenario=inp.scenario_name)
    adapter.execute_transaction.side_effect = lambda inp: ExecutionResult(success=True, scenario="custom-transaction")
    return adapter


class ExecutionEngineTests(unittest.TestCase):
    def setUp(self) -> None:
        self.loader = StaticTemplateLoader({"account-init": account_init_template()})

    def engine(self, adapter, **settings) -> ExecutionEngine:
        engine = ExecutionEngine(self.loader, adapter=adapter, settings=Settings(**settings))
        self.addCleanup(engine.close)
        return engine

    def test_scenario_args_take_precedence(self) -> None:
        adapter = mock_adapter()
        result = self.engine(adapter).execute(
            parse_request({"templateId": "account-init", "scenario": "update-account", "args": [1]})
        )
        self.assertTrue(result.success)
        inp = adapter.execute_scenario.call_args.args[0]
        self.assertEqual(inp.scenario_name, "update-account")
        self.assertEqual(inp.instruction, "update")
        self.assertEqual(inp.args, [1337])

    def test_request_args_used_when_scenario_has_none(self) -> None:
        template = account_init_template()
        template.scenarios[0].args = None
        adapter = mock_adapter()
        engine = ExecutionEngine(StaticTemplateLoader({"account-init": template}), adapter=adapter)
        self.addCleanup(engine.close)
        engine.execute(parse_request({"templateId": "account-init", "instruction": "initialize", "args": [9]}))
        self.assertEqual(adapter.execute_scenario.call_args.args[0].args, [9])

    def test_unknown_scenario(self) -> None:
        adapter = mock_adapter()
        result = self.engine(adapter).execute(parse_request({"templateId": "account-init", "scenario": "close"}))
        self.assertFalse(result.success)
        self.assertEqual(result.error, 'Scenario "close" not found for template "account-init"')
        adapter.execute_scenario.assert_not_called()

    def test_unknown_template(self) -> None:
        result = self.engine(mock_adapter()).execute(parse_request({"templateId": "nft-mint", "scenario": "mint"}))
        self.assertFalse(result.success)
        self.assertIn("nft-mint", result.error)

    def test_invalid_template_id_is_a_failed_result(self) -> None:
        result = self.engine(mock_adapter()).execute(parse_request({"templateId": "../etc", "scenario": "x"}))
        self.assertFalse(result.success)
        self.assertIn("../etc", result.error)

    def test_transaction_dispatch(self) -> None:
        adapter = mock_adapter()
        body = {
            "type": "transaction",
            "templateId": "account-init",
            "transaction": {"instructions": [{"instructionName": "initialize", "args": [1], "accounts": []}]},
        }
        result = self.engine(adapter).execute(parse_request(body))
        self.assertEqual(result.scenario, "custom-transaction")
        inp = adapter.execute_transaction.call_args.args[0]
        self.assertEqual(inp.transaction.instructions[0].instruction_name, "initialize")

    def test_precomputed_fallback_is_opt_in(self) -> None:
        loader = DirectoryTemplateLoader(REPO_TEMPLATES)
        request = parse_request({"templateId": "hello-solana", "scenario": "say-hello"})

        adapter = mock_adapter(supported=False)
        engine = ExecutionEngine(loader, adapter=adapter, settings=Settings(precomputed_fallback=True))
        self.addCleanup(engine.close)
        result = engine.execute(request)
        self.assertTrue(result.success)
        self.assertEqual(result.compute_units, 1394)
        self.assertEqual(result.accounts_after[0].changes, ["Lamports decreased by 5000"])
        self.assertEqual(result.trace[0].status, "success")
        adapter.execute_scenario.assert_not_called()

        adapter = mock_adapter(supported=False)
        engine = ExecutionEngine(loader, adapter=adapter, settings=Settings())
        self.addCleanup(engine.close)
        engine.execute(request)
        adapter.execute_scenario.assert_called_once()

    def test_timeout_returns_failed_result(self) -> None:
        release = threading.Event()
        adapter = mock_adapter()

        def slow(inp):
            release.wait(5)
            return ExecutionResult(success=True, scenario=inp.scenario_name)

        adapter.execute_scenario.side_effect = slow
        engine = self.engine(adapter, max_execution_time_ms=100)

        started = time.monotonic()
        result = engine.execute_with_timeout(
            parse_request({"templateId": "account-init", "scenario": "initialize-account"})
        )
        elapsed = time.monotonic() - started
        release.set()

        self.assertFalse(result.success)
        self.assertEqual(result.error, "Execution timed out after 100ms")
        self.assertEqual(result.scenario, "initialize-account")
        self.assertLess(elapsed, 2.0)

    def test_queued_request_is_dropped_after_timeout(self) -> None:
        release = threading.Event()
        adapter = mock_adapter()

        def slow(inp):
            release.wait(5)
            return ExecutionResult(success=True, scenario=inp.scenario_name)

        adapter.execute_scenario.side_effect = slow
        engine = ExecutionEngine(
            self.loader, adapter=adapter, settings=Settings(max_execution_time_ms=100), max_workers=1
        )
        self.addCleanup(engine.close)

        first = engine.execute_with_timeout(
            parse_request({"templateId": "account-init", "scenario": "initialize-account"})
        )
        second = engine.execute_with_timeout(
            parse_request({"templateId": "account-init", "scenario": "update-account"})
        )
        release.set()
        engine._executor.shutdown(wait=True)

        self.assertEqual(first.error, "Execution timed out after 100ms")
        self.assertEqual(second.error, "Execution timed out after 100ms")
        self.assertEqual(adapter.execute_scenario.call_count, 1)
        self.assertEqual(adapter.execute_scenario.call_args.args[0].scenario_name, "initialize-account")

    def test_close_stops_adapter(self) -> None:
        adapter = mock_adapter()
        ExecutionEngine(self.loader, adapter=adapter).close()
        adapter.close.assert_called_once()


class UnsupportedTemplateTests(unittest.TestCase):
    def test_unsupported_template_fails_without_spawning(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            runner = FakeRunner()
            settings = Settings(
                workspace_dir=Path(tmp) / "ws",
                build_cache_dir=Path(tmp) / "cache",
                supported_templates=frozenset({"hello-solana"}),
            )
            adapter = LocalValidatorAdapter(
                settings,
                runner=runner,
                validator=ValidatorSupervisor(runner=runner, settle_delay=0),
                chain_factory=lambda endpoint: FakeChain(endpoint),
            )
            engine = ExecutionEngine(
                StaticTemplateLoader({"account-init": account_init_template()}),
                adapter=adapter,
                settings=settings,
            )
            try:
                result = engine.execute_with_timeout(
                    parse_request({"templateId": "account-init", "scenario": "initialize-account"})
                )
            finally:
                engine.close()

        self.assertFalse(result.success)
        self.assertIn("account-init", result.error)
        self.assertEqual(runner.calls, [])
        self.assertEqual(runner.spawned, [])


if __name__ == "__main__":
    unittest.main()
