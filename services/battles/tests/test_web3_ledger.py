import asyncio

import pytest
from eth_account import Account
from web3 import Web3
from web3.exceptions import BadFunctionCallOutput, ContractLogicError

from predikt.errors import LedgerNoData, LedgerRevert, LedgerTransportError
from predikt.ledger import provider as ledger_provider
from predikt.ledger.stub_ledger import StubLedger
from predikt.ledger.web3_ledger import Web3Ledger, _revert_reason

CONTRACT = "0xD9361b16aaD90B23929E571564668b542aC7F4a9"

# Throwaway key used only in tests.
TEST_KEY = "0x4c0883a69102937d6231471b5dbb6204fe5129617082792ae468d01a3f362318"


class FailingCall:
    def __init__(self, exc):
        self.exc = exc

    async def call(self, *args, **kwargs):
        raise self.exc


@pytest.fixture()
def web3_ledger():
    # AsyncHTTPProvider does not connect until the first request.
    return Web3Ledger("http://127.0.0.1:8545", CONTRACT)


def test_revert_reason_strips_prefix():
    assert _revert_reason(ContractLogicError("execution reverted: Battle is not open")) == "Battle is not open"
    assert _revert_reason(ContractLogicError("Only challenger can resolve")) == "Only challenger can resolve"


def test_contract_binding(web3_ledger):
    assert web3_ledger.name == "web3"
    assert web3_ledger.contract.address == Web3.to_checksum_address(CONTRACT)
    for fn in ("getAllBattles", "getBattle", "createBattle", "acceptBattle", "resolveBattle", "cancelBattle"):
        assert hasattr(web3_ledger.contract.functions, fn)
    for ev in ("BattleCreated", "BattleAccepted", "BattleResolved", "BattleCancelled"):
        assert hasattr(web3_ledger.contract.events, ev)


@pytest.mark.parametrize(
    "exc, expected",
    [
        (ContractLogicError("execution reverted: Battle does not exist"), LedgerRevert),
        (BadFunctionCallOutput("Could not decode contract function call"), LedgerNoData),
        (ConnectionError("connection refused"), LedgerTransportError),
    ],
)
def test_view_error_mapping(web3_ledger, exc, expected):
    with pytest.raises(expected):
        asyncio.run(web3_ledger._view(FailingCall(exc)))


def test_view_revert_keeps_reason(web3_ledger):
    with pytest.raises(LedgerRevert) as err:
        asyncio.run(
            web3_ledger._view(FailingCall(ContractLogicError("execution reverted: Battle does not exist")))
        )
    assert err.value.reason == "Battle does not exist"


def test_local_wallet_address(web3_ledger):
    from predikt.wallet.local_wallet import LocalAccountWallet

    wallet = LocalAccountWallet(TEST_KEY, web3_ledger.w3)
    assert wallet.address == Account.from_key(TEST_KEY).address


def test_local_wallet_needs_key(web3_ledger):
    from predikt.wallet.local_wallet import LocalAccountWallet

    with pytest.raises(RuntimeError):
        LocalAccountWallet("", web3_ledger.w3)


def test_provider_factory(monkeypatch):
    monkeypatch.setattr(ledger_provider, "_provider", None)
    monkeypatch.setattr(ledger_provider, "LEDGER_PROVIDER", "stub")
    first = ledger_provider.get_ledger_provider()
    assert isinstance(first, StubLedger)
    assert ledger_provider.get_ledger_provider() is first

    monkeypatch.setattr(ledger_provider, "_provider", None)
    monkeypatch.setattr(ledger_provider, "LEDGER_PROVIDER", "carrier-pigeon")
    with pytest.raises(RuntimeError):
        ledger_provider.get_ledger_provider()
