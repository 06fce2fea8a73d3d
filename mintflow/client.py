"""
Mintflow Client - entry point for applications

Owns the shared collaborators (config, RPC router, proof engine, price
service, allowlist index) and hands out product objects for sale instances.

Usage:
    async with MintflowClient() as client:
        product = client.get_product(instance)
        prepared = await product.prepare_purchase(address=wallet, quantity=2)
        result = await product.purchase(account, prepared)
"""

import logging
from typing import Optional, Union

from mintflow.account import PrivateKeyAccount
from mintflow.allowlist import AllowlistIndex, HttpAllowlistIndex
from mintflow.config import MintflowConfig
from mintflow.errors import ErrorCode, MintflowError
from mintflow.merkle import AllowlistProofEngine
from mintflow.pricing import CoinbasePriceService, PriceService
from mintflow.products.base import AppType, ClaimProduct, InstanceData
from mintflow.products.blindmint import BlindMintProduct
from mintflow.products.edition import EditionProduct
from mintflow.providers import ReadEndpointRouter

logger = logging.getLogger("mintflow.client")


PRODUCT_TYPES: dict[AppType, type[ClaimProduct]] = {
    AppType.EDITION: EditionProduct,
    AppType.BLIND_MINT: BlindMintProduct,
}


def register_product_type(app_type: AppType, product_cls: type[ClaimProduct]) -> None:
    PRODUCT_TYPES[app_type] = product_cls


class MintflowClient:

    def __init__(
        self,
        config: Optional[MintflowConfig] = None,
        router: Optional[ReadEndpointRouter] = None,
        pricing: Optional[PriceService] = None,
        allowlist_index: Optional[AllowlistIndex] = None,
        proof_engine: Optional[AllowlistProofEngine] = None,
    ):
        self.config = config or MintflowConfig.from_env()
        self.router = router or ReadEndpointRouter(self.config)
        if pricing is None and self.config.fetch_usd:
            pricing = CoinbasePriceService(
                self.config.coinbase_api_url,
                self.config.coingecko_api_url,
                timeout=self.config.http_timeout,
            )
        self.pricing = pricing
        if allowlist_index is None and self.config.allowlist_api_url:
            allowlist_index = HttpAllowlistIndex(self.config.allowlist_api_url, timeout=self.config.http_timeout)
        self.allowlist_index = allowlist_index
        self.proof_engine = proof_engine or AllowlistProofEngine(self.config.proof_cache_size)

    def get_product(self, instance: Union[InstanceData, dict]) -> ClaimProduct:
        if isinstance(instance, dict):
            instance = InstanceData.from_dict(instance)

        product_cls = PRODUCT_TYPES.get(instance.app_type)
        if product_cls is None:
            raise MintflowError(
                ErrorCode.UNSUPPORTED_TYPE,
                f"Unsupported product type: {instance.app_type}",
                {"instanceId": instance.instance_id},
            )
        logger.debug(f"Loading {product_cls.__name__} for instance {instance.instance_id}")
        return product_cls(
            instance,
            self.router,
            config=self.config,
            pricing=self.pricing,
            allowlist_index=self.allowlist_index,
            proof_engine=self.proof_engine,
        )

    def account_from_key(self, private_key: str) -> PrivateKeyAccount:
        return PrivateKeyAccount(private_key, self.router, pricing=self.pricing)

    async def close(self) -> None:
        if self.pricing is not None:
            await self.pricing.close()
        if self.allowlist_index is not None:
            await self.allowlist_index.close()

    async def __aenter__(self) -> "MintflowClient":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()
