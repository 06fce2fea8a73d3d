"""
PurchaseExecutor: sequential submission, partial-failure reporting, order assembly.
"""

import pytest
from eth_abi import decode, encode

from conftest import (
    BUYER,
    CREATOR,
    ETH,
    EXTENSION,
    OTHER,
    USDC,
    FakeAccount,
    eth,
    erc721_mint_log,
    make_instance,
    pad_address,
)
from mintflow.abis import MINT_PROXY_TYPES, TRANSFER_SINGLE_TOPIC
from mintflow.config import MintflowConfig, NATIVE_CURRENCY
from mintflow.errors import ErrorCode, MintflowError
from mintflow.executor import PurchaseExecutor
from mintflow.orchestrator import PurchaseOrchestrator
from mintflow.products.edition import EditionProduct
from mintflow.transactions import LogEntry, PreparedPurchase, TransactionResponse

NOW = 1_700_000_000


def _mints_to(to: str, *token_ids: int, contract: str = CREATOR):
    return lambda request: [erc721_mint_log(contract, to, t) for t in token_ids] if request.to == EXTENSION else []


@pytest.fixture
def product(chain, config):
    return EditionProduct(make_instance(), chain, config=config, clock=lambda: NOW)


@pytest.fixture
def prepare(product, config):
    async def _prepare(**kwargs):
        kwargs.setdefault("address", BUYER)
        return await PurchaseOrchestrator(config).prepare_purchase(product, **kwargs)
    return _prepare


@pytest.fixture
def usdc_sale(chain):
    chain.claim.update(cost=5_000_000, erc20=USDC)
    chain.token_balances[(USDC, BUYER)] = 100_000_000


async def _expect_failure(account, prepared, config):
    with pytest.raises(MintflowError) as exc:
        await PurchaseExecutor(config).purchase(account, prepared)
    assert exc.value.code is ErrorCode.TRANSACTION_FAILED
    return exc.value


# =============================================================================
# SUCCESS
# =============================================================================

class TestSuccessfulPurchase:

    @pytest.mark.asyncio
    async def test_native_mint_produces_order_per_token(self, prepare, config):
        account = FakeAccount(logs_for=_mints_to(BUYER, 7, 8))
        prepared = await prepare(quantity=2)

        result = await PurchaseExecutor(config).purchase(account, prepared)

        assert len(result.receipts) == 1
        assert result.receipts[0].tx_hash == "0x" + format(1, "064x")
        assert result.order.recipient == BUYER
        assert [(i.token_id, i.quantity) for i in result.order.items] == [(7, 1), (8, 1)]
        # per-token share of the 3 ETH total
        assert all(i.total.native == eth(3 * ETH // 2) for i in result.order.items)
        assert result.order.total.native == eth(3 * ETH)

    @pytest.mark.asyncio
    async def test_mint_request_uses_buffered_gas_and_value(self, chain, prepare, config):
        account = FakeAccount(logs_for=_mints_to(BUYER, 1))
        await PurchaseExecutor(config).purchase(account, await prepare())

        request = account.sent[0]
        assert (request.to, request.value, request.chain_id) == (EXTENSION, ETH + ETH // 2, 8453)
        assert request.gas_limit == chain.gas_estimate * 120 // 100
        assert account.networks == [8453]

    @pytest.mark.asyncio
    async def test_approval_then_mint(self, chain, usdc_sale, prepare, config):
        account = FakeAccount(logs_for=_mints_to(BUYER, 3))
        prepared = await prepare(quantity=1)

        result = await PurchaseExecutor(config).purchase(account, prepared)

        assert [r.to for r in account.sent] == [USDC, EXTENSION]
        assert len(result.receipts) == 2
        assert result.order.quantity == 1

    @pytest.mark.asyncio
    async def test_confirmations_default_and_override(self, prepare):
        account = FakeAccount(logs_for=_mints_to(BUYER, 1))
        await PurchaseExecutor(MintflowConfig(fetch_usd=False, confirmations=2)).purchase(account, await prepare())
        await PurchaseExecutor().purchase(account, await prepare(), confirmations=5)
        assert account.confirmations == [2, 5]

    @pytest.mark.asyncio
    async def test_order_goes_to_recipient(self, prepare, config):
        account = FakeAccount(logs_for=_mints_to(OTHER, 11))
        result = await PurchaseExecutor(config).purchase(account, await prepare(recipient=OTHER))
        assert result.order.recipient == OTHER
        assert [i.token_id for i in result.order.items] == [11]

    @pytest.mark.asyncio
    async def test_transfers_from_other_contracts_ignored(self, prepare, config):
        account = FakeAccount(logs_for=_mints_to(BUYER, 9, contract=OTHER))
        result = await PurchaseExecutor(config).purchase(account, await prepare())
        assert result.order.items == ()

    @pytest.mark.asyncio
    async def test_product_purchase_wrapper(self, product, prepare, config):
        account = FakeAccount(logs_for=_mints_to(BUYER, 4))
        result = await product.purchase(account, await prepare())
        assert result.order.quantity == 1


# =============================================================================
# FAILURE
# =============================================================================

class TestFailedPurchase:

    @pytest.mark.asyncio
    async def test_failure_on_second_step_reports_first_receipt(self, usdc_sale, prepare, config):
        account = FakeAccount(fail_on_call=2)
        err = await _expect_failure(account, await prepare(), config)

        assert err.details["step"] == "mint"
        assert [r.to for r in account.sent] == [USDC, EXTENSION]
        assert len(err.details["receipts"]) == 1
        assert err.details["receipts"][0].tx_hash == "0x" + format(1, "064x")
        assert isinstance(err.cause, RuntimeError)

    @pytest.mark.asyncio
    async def test_failure_on_first_step_has_no_receipts(self, usdc_sale, prepare, config):
        account = FakeAccount(fail_on_call=1)
        err = await _expect_failure(account, await prepare(), config)
        assert err.details["step"] == "approve-usdc"
        assert err.details["receipts"] == []
        # nothing submitted after the failing step
        assert len(account.sent) == 1

    @pytest.mark.asyncio
    async def test_strict_mint_estimate_at_execution(self, chain, prepare, config):
        prepared = await prepare()
        chain.estimate_error = RuntimeError("execution reverted: Maximum tokens already minted")
        account = FakeAccount()
        err = await _expect_failure(account, prepared, config)
        assert err.cause.code is ErrorCode.GAS_ESTIMATION_FAILED
        assert account.sent == []

    @pytest.mark.asyncio
    async def test_other_wallet_cannot_execute(self, usdc_sale, prepare, config):
        account = FakeAccount(address=OTHER, logs_for=_mints_to(OTHER, 1))
        err = await _expect_failure(account, await prepare(), config)
        assert err.details["step"] == "approve-usdc"
        assert err.cause.code is ErrorCode.INVALID_INPUT
        assert account.sent == []

    @pytest.mark.asyncio
    async def test_mint_pinned_to_prepared_recipient(self, chain, prepare, config):
        account = FakeAccount(logs_for=_mints_to(BUYER, 2))
        result = await PurchaseExecutor(config).purchase(account, await prepare())
        mint_for = decode(MINT_PROXY_TYPES, bytes.fromhex(account.sent[0].data[10:]))[5]
        assert mint_for.lower() == BUYER
        assert result.order.recipient == BUYER

    @pytest.mark.asyncio
    async def test_prepared_purchase_is_single_use(self, prepare, config):
        account = FakeAccount(logs_for=_mints_to(BUYER, 1))
        prepared = await prepare()
        executor = PurchaseExecutor(config)
        await executor.purchase(account, prepared)

        with pytest.raises(MintflowError) as exc:
            await executor.purchase(account, prepared)
        assert exc.value.code is ErrorCode.INVALID_INPUT
        assert len(account.sent) == 1

    @pytest.mark.asyncio
    async def test_no_mint_step_means_no_order(self, usdc_sale, prepare, config):
        full = await prepare()
        approvals_only = PreparedPurchase(cost=full.cost, steps=full.approval_steps)
        err = await _expect_failure(FakeAccount(), approvals_only, config)
        assert err.message == "Purchase completed but no order produced"
        assert len(err.details["receipts"]) == 1


# =============================================================================
# ERC1155 LOGS
# =============================================================================

class TestErc1155Orders:

    @pytest.mark.asyncio
    async def test_quantity_read_from_transfer_value(self, chain, config):
        chain.claim = {**chain.claim, "tokenId": 5}
        product = EditionProduct(make_instance(spec="erc1155"), chain, config=config, clock=lambda: NOW)

        def logs_for(request):
            return [LogEntry(
                address=CREATOR,
                topics=(TRANSFER_SINGLE_TOPIC, pad_address(EXTENSION), pad_address(NATIVE_CURRENCY), pad_address(BUYER)),
                data="0x" + encode(["uint256", "uint256"], [5, 3]).hex(),
            )]

        prepared = await PurchaseOrchestrator(config).prepare_purchase(product, address=BUYER, quantity=3)
        result = await PurchaseExecutor(config).purchase(FakeAccount(logs_for=logs_for), prepared)

        assert [(i.token_id, i.quantity) for i in result.order.items] == [(5, 3)]
        assert result.order.items[0].total.product == eth(3 * ETH)


def test_transaction_response_defaults():
    response = TransactionResponse(tx_hash="0xab", chain_id=1, block_number=1, gas_used=1)
    assert response.status == 1 and response.logs == ()
