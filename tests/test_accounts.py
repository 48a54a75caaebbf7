import json
import tempfile
import unittest
from pathlib import Path

from solders.keypair import Keypair
from solders.pubkey import Pubkey

from playground_runner.accounts import (
    SYSTEM_PROGRAM,
    AccountResolver,
    ExecutionSession,
    derive_pda,
    load_keypair,
    unique_labels,
    write_keypair,
)
from playground_runner.errors import AccountResolutionFailed
from playground_runner.interface import ProgramInterface
from playground_runner.models import TransactionAccount, TransactionInstruction
from playground_runner.templates import AccountDecl

from fakes import ACCOUNT_INIT_IDL, account_init_template, pda_vault_template


class DerivePdaTests(unittest.TestCase):
    def test_payer_token_uses_payer_bytes(self) -> None:
        payer = Keypair().pubkey()
        program = Keypair().pubkey()
        expected, _ = Pubkey.find_program_address([b"vault", bytes(payer)], program)
        self.assertEqual(derive_pda(["vault", "authority.key()"], payer, program), expected)

    def test_empty_seeds_is_hard_error(self) -> None:
        with self.assertRaises(AccountResolutionFailed) as ctx:
            derive_pda([], Keypair().pubkey(), Keypair().pubkey())
        self.assertIn("PDA seeds are required", ctx.exception.message)

    def test_oversized_seed_rejected(self) -> None:
        with self.assertRaises(AccountResolutionFailed):
            derive_pda(["x" * 33], Keypair().pubkey(), Keypair().pubkey())


class ResolveAccountsTests(unittest.TestCase):
    def setUp(self) -> None:
        self.payer = Keypair()
        self.program_id = Keypair().pubkey()
        self.session = ExecutionSession(payer=self.payer)
        self.resolver = AccountResolver(self.session)

    def test_payer_is_first_signer_and_roles_resolve_to_payer(self) -> None:
        resolved = self.resolver.resolve_accounts(account_init_template(), "initialize", self.program_id)
        self.assertEqual(resolved.signers[0].pubkey(), self.payer.pubkey())
        self.assertEqual(resolved.accounts["user"], self.payer.pubkey())
        self.assertEqual(resolved.accounts["system_program"], SYSTEM_PROGRAM)
        labels = [label for _, label in resolved.labels]
        self.assertEqual(labels, ["My Account", "user", "System Program"])

    def test_resolution_is_idempotent_within_session(self) -> None:
        first = self.resolver.resolve_accounts(account_init_template(), "initialize", self.program_id)
        second = self.resolver.resolve_accounts(account_init_template(), "update", self.program_id)
        self.assertEqual(first.accounts["my_account"], second.accounts["my_account"])
        self.assertIn(second.accounts["my_account"], [kp.pubkey() for kp in second.signers])

    def test_signers_never_duplicate(self) -> None:
        resolved = self.resolver.resolve_accounts(account_init_template(), "initialize", self.program_id)
        keys = [kp.pubkey() for kp in resolved.signers]
        self.assertEqual(len(keys), len(set(keys)))
        self.assertEqual(len(keys), 2)

    def test_pda_account_is_derived(self) -> None:
        resolved = self.resolver.resolve_accounts(pda_vault_template(), "initialize", self.program_id)
        expected, _ = Pubkey.find_program_address([b"vault", bytes(self.payer.pubkey())], self.program_id)
        self.assertEqual(resolved.accounts["vault"], expected)
        self.assertEqual([kp.pubkey() for kp in resolved.signers], [self.payer.pubkey()])

    def test_empty_pda_seeds_fail(self) -> None:
        with self.assertRaises(AccountResolutionFailed):
            self.resolver.resolve_accounts(pda_vault_template(), "broken", self.program_id)

    def test_unknown_instruction_fails(self) -> None:
        with self.assertRaises(AccountResolutionFailed) as ctx:
            self.resolver.resolve_accounts(account_init_template(), "close", self.program_id)
        self.assertIn("not found in program map", ctx.exception.message)

    def test_program_map_name_must_exist_in_interface(self) -> None:
        interface = ProgramInterface.from_idl(ACCOUNT_INIT_IDL).instruction("update")
        template = account_init_template()
        template.program_map.instructions[1].accounts.append(AccountDecl(name="my_acount"))
        with self.assertRaises(AccountResolutionFailed) as ctx:
            self.resolver.resolve_accounts(template, "update", self.program_id, interface)
        self.assertIn("my_acount", ctx.exception.message)

    def test_separate_sessions_do_not_share_addresses(self) -> None:
        other = AccountResolver(ExecutionSession(payer=self.payer))
        ours = self.resolver.resolve_accounts(account_init_template(), "initialize", self.program_id)
        theirs = other.resolve_accounts(account_init_template(), "initialize", self.program_id)
        self.assertNotEqual(ours.accounts["my_account"], theirs.accounts["my_account"])


class ResolveTransactionAccountsTests(unittest.TestCase):
    def setUp(self) -> None:
        self.payer = Keypair()
        self.program_id = Keypair().pubkey()
        self.resolver = AccountResolver(ExecutionSession(payer=self.payer))

    def _instruction(self, name: str, *accounts: TransactionAccount) -> TransactionInstruction:
        return TransactionInstruction(instruction_name=name, accounts=list(accounts), args=[1])

    def test_labels_map_to_declared_names(self) -> None:
        ix = self._instruction(
            "initialize",
            TransactionAccount(pubkey="account-0", name="my_account", is_signer=True, is_writable=True),
            TransactionAccount(pubkey="payer", name="user", is_signer=True),
            TransactionAccount(pubkey="system_program", name="system_program"),
        )
        resolved = self.resolver.resolve_transaction_accounts(account_init_template(), ix, self.program_id)
        self.assertEqual(resolved.accounts["user"], self.payer.pubkey())
        self.assertEqual(resolved.accounts["system_program"], SYSTEM_PROGRAM)
        self.assertEqual([label for _, label in resolved.labels], ["account-0", "payer", "system_program"])
        self.assertEqual(resolved.signers[0].pubkey(), self.payer.pubkey())

    def test_same_label_reuses_address_across_instructions(self) -> None:
        first = self.resolver.resolve_transaction_accounts(
            account_init_template(),
            self._instruction("initialize", TransactionAccount(pubkey="account-0", name="my_account")),
            self.program_id,
        )
        second = self.resolver.resolve_transaction_accounts(
            account_init_template(),
            self._instruction("update", TransactionAccount(pubkey="account-0", name="my_account")),
            self.program_id,
        )
        self.assertEqual(first.accounts["my_account"], second.accounts["my_account"])
        self.assertEqual(unique_labels([first, second]), [(first.accounts["my_account"], "account-0")])

    def test_label_naming_pda_and_keypair_keeps_both_addresses(self) -> None:
        as_pda = self.resolver.resolve_transaction_accounts(
            pda_vault_template(),
            self._instruction("deposit", TransactionAccount(pubkey="shared", name="vault")),
            self.program_id,
        )
        as_keypair = self.resolver.resolve_transaction_accounts(
            pda_vault_template(),
            self._instruction("initialize", TransactionAccount(pubkey="shared", name="authority")),
            self.program_id,
        )
        vault = as_pda.accounts["vault"]
        fresh = as_keypair.accounts["authority"]
        self.assertNotEqual(vault, fresh)

        merged = unique_labels([as_pda, as_keypair])
        self.assertIn((vault, "shared"), merged)
        self.assertIn((fresh, "shared"), merged)
        self.assertEqual(len(merged), 2)

    def test_pda_role_is_derived_regardless_of_label(self) -> None:
        resolved = self.resolver.resolve_transaction_accounts(
            pda_vault_template(),
            self._instruction("deposit", TransactionAccount(pubkey="my-vault", name="vault")),
            self.program_id,
        )
        expected, _ = Pubkey.find_program_address([b"vault", bytes(self.payer.pubkey())], self.program_id)
        self.assertEqual(resolved.accounts["vault"], expected)

    def test_undeclared_role_name_fails(self) -> None:
        interface = ProgramInterface.from_idl(ACCOUNT_INIT_IDL).instruction("initialize")
        with self.assertRaises(AccountResolutionFailed):
            self.resolver.resolve_transaction_accounts(
                account_init_template(),
                self._instruction("initialize", TransactionAccount(pubkey="account-0", name="vault")),
                self.program_id,
                interface,
            )


class KeypairFileTests(unittest.TestCase):
    def test_write_then_load(self) -> None:
        keypair = Keypair()
        with tempfile.TemporaryDirectory() as tmp:
            path = write_keypair(keypair, Path(tmp) / "keys" / "payer.json")
            self.assertEqual(len(json.loads(path.read_text())), 64)
            self.assertEqual(load_keypair(path).pubkey(), keypair.pubkey())


if __name__ == "__main__":
    unittest.main()
