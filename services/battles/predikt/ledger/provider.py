from predikt.config import LEDGER_PROVIDER
from predikt.ledger.stub_ledger import StubLedger
from predikt.ledger.web3_ledger import Web3Ledger

_provider = None


def get_ledger_provider():
    """
    Singleton-ish provider factory.
    """
    global _provider
    if _provider is not None:
        return _provider

    if LEDGER_PROVIDER == "stub":
        _provider = StubLedger()
        return _provider

    if LEDGER_PROVIDER == "web3":
        _provider = Web3Ledger()
        return _provider

    raise RuntimeError(f"Invalid LEDGER_PROVIDER={LEDGER_PROVIDER}")
