"""
Product surfaces: blind mints, instance parsing, the client registry.
"""

import pytest
from eth_abi import decode, encode

from conftest import (
    BUYER,
    CREATOR,
    ETH,
    EXTENSION,
    OTHER,
    FakeAllowlistIndex,
    make_instance,
    pad_address,
)
from mintflow.abis import MINT_RESERVE_TYPES, TRANSFER_SINGLE_TOPIC
from mintflow.client import PRODUCT_TYPES, MintflowClient, register_product_type
from mintflow.config import NATIVE_CURRENCY, MintflowConfig
from mintflow.errors import ErrorCode, MintflowError
from mintflow.orchestrator import PurchaseOrchestrator
from mintflow.products.base import AppType, AudienceType, InstanceData, ProductStatus
from mintflow.products.blindmint import BlindMintProduct
from mintflow.products.edition import EditionProduct
from mintflow.transactions import LogEntry

NOW = 1_700_000_000


def blind_claim(**overrides) -> dict:
    claim = {
        "storageProtocol": 1,
        "total": 10,
        "totalMax": 50,
        "startDate": 0,
        "endDate": 0,
        "startingTokenId": 100,
        "tokenVariations": 4,
        "location": "ipfs://drop",
        "paymentReceiver": CREATOR,
        "cost": ETH // 10,
        "erc20": NATIVE_CURRENCY,
    }
    claim.update(overrides)
    return claim


@pytest.fixture
def blindmint(chain, config):
    chain.claim = blind_claim()
    return BlindMintProduct(
        make_instance(app_type=AppType.BLIND_MINT, spec="erc1155"),
        chain,
        config=config,
        clock=lambda: NOW,
    )


# =============================================================================
# BLIND MINT
# =============================================================================

class TestBlindMint:

    @pytest.mark.asyncio
    async def test_onchain_data_and_token_range(self, blindmint):
        data = await blindmint.fetch_onchain_data()
        assert data.wallet_max is None
        assert data.audience is AudienceType.NONE
        assert blindmint.token_ids(data) == [100, 101, 102, 103]

    @pytest.mark.asyncio
    async def test_allocation_is_remaining_supply(self, blindmint):
        allocation = await blindmint.get_allocations(BUYER)
        assert (allocation.is_eligible, allocation.quantity) == (True, 40)

    @pytest.mark.asyncio
    async def test_exhausted_supply(self, chain, blindmint):
        chain.claim.update(total=50)
        assert await blindmint.get_status() is ProductStatus.SOLD_OUT

    @pytest.mark.asyncio
    async def test_minted_tokens_limited_to_drop_range(self, blindmint):
        def transfer(token_id):
            return LogEntry(
                address=CREATOR,
                topics=(TRANSFER_SINGLE_TOPIC, pad_address(EXTENSION), pad_address(NATIVE_CURRENCY), pad_address(BUYER)),
                data="0x" + encode(["uint256", "uint256"], [token_id, 1]).hex(),
            )

        logs = [transfer(101), transfer(7), transfer(103)]
        assert blindmint.parse_minted_tokens(logs, BUYER, BUYER) == [(101, 1), (7, 1), (103, 1)]

        await blindmint.fetch_onchain_data()
        assert blindmint.parse_minted_tokens(logs, BUYER, BUYER) == [(101, 1), (103, 1)]

    @pytest.mark.asyncio
    async def test_prepare_encodes_mint_reserve(self, blindmint):
        prepared = await PurchaseOrchestrator(blindmint.config).prepare_purchase(blindmint, address=BUYER, quantity=3)
        mint = prepared.mint_step.transaction_data
        creator, instance_id, count = decode(MINT_RESERVE_TYPES, bytes.fromhex(mint.data[10:]))
        assert (creator.lower(), instance_id, count) == (CREATOR, 42, 3)
        assert mint.value == 3 * ETH // 10 + 3 * (ETH // 2)

    @pytest.mark.asyncio
    async def test_separate_recipient_rejected(self, blindmint):
        with pytest.raises(MintflowError) as exc:
            await blindmint.prepare_purchase(address=BUYER, recipient=OTHER)
        assert exc.value.code is ErrorCode.INVALID_INPUT


# =============================================================================
# PRODUCT READS
# =============================================================================

class TestEditionReads:

    @pytest.fixture
    def edition(self, chain, config):
        return EditionProduct(make_instance(), chain, config=config, clock=lambda: NOW)

    @pytest.mark.asyncio
    async def test_inventory_and_rules(self, chain, edition):
        inventory = await edition.get_inventory()
        assert (inventory.total_supply, inventory.total_purchased) == (1000, 100)
        rules = await edition.get_rules()
        assert rules.max_per_wallet == 5
        assert rules.audience_restriction is AudienceType.NONE
        assert rules.start_date is None

    @pytest.mark.asyncio
    async def test_open_edition_inventory(self, chain, edition):
        chain.claim["totalMax"] = 0
        assert (await edition.get_inventory()).total_supply == -1

    @pytest.mark.asyncio
    async def test_onchain_data_cached_until_forced(self, chain, edition):
        await edition.fetch_onchain_data()
        await edition.fetch_onchain_data()
        assert sum(1 for name, _ in chain.calls if name == "getClaim") == 1
        await edition.fetch_onchain_data(force=True)
        assert sum(1 for name, _ in chain.calls if name == "getClaim") == 2

    @pytest.mark.asyncio
    async def test_read_failure_becomes_api_error(self, chain, edition):
        chain.claim = None
        with pytest.raises(MintflowError) as exc:
            await edition.fetch_onchain_data()
        assert exc.value.code is ErrorCode.API_ERROR

    def test_unknown_spec_rejected(self, chain, config):
        with pytest.raises(MintflowError) as exc:
            EditionProduct(make_instance(spec="erc20"), chain, config=config)
        assert exc.value.code is ErrorCode.INVALID_INPUT


# =============================================================================
# INSTANCE DATA
# =============================================================================

PAYLOAD = {
    "id": "42",
    "appType": "edition",
    "networkId": 8453,
    "creatorContract": CREATOR,
    "spec": "ERC1155",
    "extensionAddress721": OTHER,
    "extensionAddress1155": EXTENSION,
    "merkleTreeId": 9,
}


class TestInstanceData:

    def test_picks_extension_for_spec(self):
        instance = InstanceData.from_dict(PAYLOAD)
        assert instance.instance_id == 42
        assert instance.spec == "erc1155"
        assert instance.extension_address == EXTENSION
        assert instance.merkle_tree_id == 9

    def test_unknown_app_type(self):
        with pytest.raises(MintflowError) as exc:
            InstanceData.from_dict({**PAYLOAD, "appType": "auction"})
        assert exc.value.code is ErrorCode.UNSUPPORTED_TYPE

    def test_missing_fields(self):
        with pytest.raises(MintflowError) as exc:
            InstanceData.from_dict({"appType": "edition", "id": 1})
        assert exc.value.code is ErrorCode.INVALID_INPUT


# =============================================================================
# CLIENT
# =============================================================================

class TestClient:

    @pytest.fixture
    def client(self, chain):
        return MintflowClient(
            config=MintflowConfig(fetch_usd=False),
            router=chain,
            allowlist_index=FakeAllowlistIndex(),
        )

    def test_product_class_chosen_by_app_type(self, client):
        assert isinstance(client.get_product(make_instance()), EditionProduct)
        assert isinstance(
            client.get_product(make_instance(app_type=AppType.BLIND_MINT, spec="erc1155")),
            BlindMintProduct,
        )

    def test_products_share_collaborators(self, client):
        product = client.get_product(PAYLOAD)
        assert product.router is client.router
        assert product.allowlist_index is client.allowlist_index
        assert product.proof_engine is client.proof_engine

    def test_unregistered_type(self, client, monkeypatch):
        monkeypatch.delitem(PRODUCT_TYPES, AppType.BLIND_MINT)
        with pytest.raises(MintflowError) as exc:
            client.get_product(make_instance(app_type=AppType.BLIND_MINT))
        assert exc.value.code is ErrorCode.UNSUPPORTED_TYPE

    def test_register_product_type(self, client, monkeypatch):
        class CustomEdition(EditionProduct):
            pass

        monkeypatch.setitem(PRODUCT_TYPES, AppType.EDITION, EditionProduct)
        register_product_type(AppType.EDITION, CustomEdition)
        assert type(client.get_product(make_instance())) is CustomEdition

    def test_no_usd_pricing_when_disabled(self, client):
        assert client.pricing is None

    def test_account_from_key(self, client):
        account = client.account_from_key("0x" + "01" * 32)
        assert account.address.startswith("0x") and len(account.address) == 42

    def test_invalid_key_is_not_echoed(self, client):
        with pytest.raises(MintflowError) as exc:
            client.account_from_key("0xnotakey")
        assert exc.value.code is ErrorCode.INVALID_INPUT
        assert "notakey" not in str(exc.value)

    @pytest.mark.asyncio
    async def test_async_context_closes(self, chain):
        async with MintflowClient(config=MintflowConfig(fetch_usd=False), router=chain) as client:
            assert client.allowlist_index is None
        assert client.pricing is None


