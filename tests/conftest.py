"""
Shared fixtures: in-memory chain reader, signing account and allowlist index.

FakeChain duck-types ReadEndpointRouter; nothing here touches the network.
"""

from typing import Callable, Optional

import pytest

from mintflow.abis import TRANSFER_TOPIC
from mintflow.account import Account
from mintflow.allowlist import AllowlistIndex, MerkleInfo
from mintflow.config import NATIVE_CURRENCY, ZERO_HASH, MintflowConfig
from mintflow.money import Money
from mintflow.products.base import AppType, InstanceData
from mintflow.transactions import LogEntry, TransactionRequest, TransactionResponse

ETH = 10 ** 18

BUYER = "0x1111111111111111111111111111111111111111"
OTHER = "0x2222222222222222222222222222222222222222"
CREATOR = "0x3333333333333333333333333333333333333333"
EXTENSION = "0x4444444444444444444444444444444444444444"
USDC = "0x5555555555555555555555555555555555555555"

NETWORK_ID = 8453


def eth(value, network_id: int = NETWORK_ID, usd: Optional[str] = None) -> Money:
    return Money(int(value), 18, NATIVE_CURRENCY, "ETH", network_id, usd)


def usdc(value, network_id: int = NETWORK_ID) -> Money:
    return Money(int(value), 6, USDC, "USDC", network_id)


def pad_address(address: str) -> str:
    return "0x" + "00" * 12 + address.lower()[2:]


def erc721_mint_log(contract: str, to: str, token_id: int) -> LogEntry:
    return LogEntry(
        address=contract.lower(),
        topics=(TRANSFER_TOPIC, pad_address(NATIVE_CURRENCY), pad_address(to), "0x" + format(token_id, "064x")),
        data="0x",
    )


# ============================================================
# FAKE CHAIN READER
# ============================================================

class FakeChain:
    """Answers the router calls products and the orchestrator make."""

    def __init__(self):
        self.claim: dict = {}
        self.mint_fee = 0
        self.merkle_fee = 0
        self.total_mints: dict[str, int] = {}
        self.used_indices: set[int] = set()
        self.tokens = {USDC.lower(): ("USDC", 6)}
        self.token_balances: dict[tuple[str, str], int] = {}
        self.allowances: dict[tuple[str, str, str], int] = {}
        self.native_balances: dict[str, int] = {}
        self.native_balance_error: Optional[Exception] = None
        self.estimate_error: Optional[Exception] = None
        self.gas_estimate = 100_000
        self.calls: list[tuple[str, tuple]] = []
        self.estimates: list[dict] = []

    async def call_function(self, network_id, address, abi, fn_name, *args):
        self.calls.append((fn_name, args))
        if fn_name == "getClaim":
            return dict(self.claim)
        if fn_name == "MINT_FEE":
            return self.mint_fee
        if fn_name == "MINT_FEE_MERKLE":
            return self.merkle_fee
        if fn_name == "getTotalMints":
            return self.total_mints.get(args[0].lower(), 0)
        if fn_name == "checkMintIndices":
            return [i in self.used_indices for i in args[2]]
        raise AssertionError(f"unexpected call {fn_name}")

    async def get_token_metadata(self, network_id, token):
        return self.tokens[token.lower()]

    async def get_token_balance(self, network_id, token, owner):
        return self.token_balances.get((token.lower(), owner.lower()), 0)

    async def get_allowance(self, network_id, token, owner, spender):
        return self.allowances.get((token.lower(), owner.lower(), spender.lower()), 0)

    async def get_balance(self, network_id, address):
        if self.native_balance_error is not None:
            raise self.native_balance_error
        return self.native_balances.get(address.lower(), 1000 * ETH)

    async def estimate_gas(self, network_id, tx):
        self.estimates.append(tx)
        if self.estimate_error is not None:
            raise self.estimate_error
        return self.gas_estimate

    async def get_connection(self, network_id):
        return object()


# ============================================================
# FAKE ACCOUNT
# ============================================================

class FakeAccount(Account):

    def __init__(
        self,
        address: str = BUYER,
        balance: int = 1000 * ETH,
        logs_for: Optional[Callable[[TransactionRequest], tuple]] = None,
        fail_on_call: Optional[int] = None,
    ):
        self.address = address
        self.balance = balance
        self.logs_for = logs_for or (lambda request: ())
        self.fail_on_call = fail_on_call
        self.sent: list[TransactionRequest] = []
        self.confirmations: list[int] = []
        self.networks: list[int] = []

    async def get_address(self) -> str:
        return self.address

    async def get_balance(self, network_id: int) -> Money:
        return eth(self.balance, network_id)

    async def switch_network(self, network_id: int) -> None:
        self.networks.append(network_id)

    async def send_transaction_with_confirmation(self, request, confirmations=1):
        self.sent.append(request)
        self.confirmations.append(confirmations)
        if self.fail_on_call == len(self.sent):
            raise RuntimeError("user rejected transaction")
        n = len(self.sent)
        return TransactionResponse(
            tx_hash="0x" + format(n, "064x"),
            chain_id=request.chain_id,
            block_number=100 + n,
            gas_used=50_000,
            logs=tuple(self.logs_for(request)),
        )


class FakeAllowlistIndex(AllowlistIndex):

    def __init__(self, entries: Optional[dict[str, list[MerkleInfo]]] = None):
        self.entries = {k.lower(): v for k, v in (entries or {}).items()}
        self.requests: list[tuple[int, str]] = []

    async def get_merkle_info(self, tree_id, address):
        self.requests.append((tree_id, address))
        return list(self.entries.get(address.lower(), []))


# ============================================================
# FIXTURES
# ============================================================

def make_claim(**overrides) -> dict:
    claim = {
        "total": 100,
        "totalMax": 1000,
        "walletMax": 5,
        "startDate": 0,
        "endDate": 0,
        "storageProtocol": 1,
        "contractVersion": 2,
        "identical": True,
        "merkleRoot": ZERO_HASH,
        "location": "ipfs://example",
        "cost": ETH,
        "paymentReceiver": CREATOR,
        "erc20": NATIVE_CURRENCY,
        "signingAddress": NATIVE_CURRENCY,
    }
    claim.update(overrides)
    return claim


def make_instance(**overrides) -> InstanceData:
    params = dict(
        instance_id=42,
        app_type=AppType.EDITION,
        network_id=NETWORK_ID,
        creator_contract=CREATOR,
        extension_address=EXTENSION,
        spec="erc721",
    )
    params.update(overrides)
    return InstanceData(**params)


@pytest.fixture
def config():
    return MintflowConfig(fetch_usd=False)


@pytest.fixture
def chain():
    fake = FakeChain()
    fake.claim = make_claim()
    fake.mint_fee = ETH // 2
    fake.merkle_fee = ETH // 4
    return fake


@pytest.fixture
def account():
    return FakeAccount()
