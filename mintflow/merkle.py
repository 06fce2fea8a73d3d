"""
Allowlist Merkle Proofs

Builds merkle trees over allowlist entries and produces membership proofs
checkable by a sorted-pair keccak256 verifier (OpenZeppelin MerkleProof style).

Conventions (must bit-match the on-chain verifier):
- leaf  = keccak256(abi.encodePacked(address [, uint256 maxQuantity [, uint256 price]]))
          address lower-cased; price is packed only when maxQuantity is set
- pairs are hashed in sorted order: keccak256(min(a, b) ++ max(a, b))
- leaves are sorted before building, so entry order never changes the root
- an odd trailing node is promoted to the next layer unchanged (not duplicated)

Trees and proofs are cached per engine instance, keyed by a canonical hash of
the sorted entry set.
"""

import logging
from dataclasses import dataclass
from typing import Iterable, Optional, Sequence

from eth_abi.packed import encode_packed
from eth_utils import keccak

from mintflow.cache import BoundedCache, EvictionPolicy
from mintflow.errors import ErrorCode, MintflowError
from mintflow.money import Money

logger = logging.getLogger("mintflow.merkle")


def _to_bytes(node: str) -> bytes:
    return bytes.fromhex(node[2:] if node.startswith("0x") else node)


def _to_hex(data: bytes) -> str:
    return "0x" + data.hex()


def hash_pair(left: str, right: str) -> str:
    first, second = (left, right) if left <= right else (right, left)
    return _to_hex(keccak(_to_bytes(first) + _to_bytes(second)))


# ============================================================
# DATA TYPES
# ============================================================

@dataclass(frozen=True)
class AllowlistEntry:
    address: str
    max_quantity: Optional[int] = None
    price: Optional[Money] = None


@dataclass(frozen=True)
class MerkleProof:
    root: str
    proof: tuple[str, ...]
    leaf: str
    max_quantity: Optional[int] = None
    price: Optional[Money] = None


# ============================================================
# MERKLE TREE
# ============================================================

class MerkleTree:
    """Immutable tree over pre-hashed leaves."""

    def __init__(self, leaves: Iterable[str]):
        self._leaves: list[str] = sorted(leaf.lower() for leaf in leaves)
        if not self._leaves:
            raise MintflowError(ErrorCode.INVALID_INPUT, "Cannot build a merkle tree without leaves")
        self._layers: list[list[str]] = self._build_layers(self._leaves)

    @staticmethod
    def _build_layers(leaves: list[str]) -> list[list[str]]:
        layers = [leaves]
        while len(layers[-1]) > 1:
            current = layers[-1]
            upper = []
            for i in range(0, len(current), 2):
                if i + 1 < len(current):
                    upper.append(hash_pair(current[i], current[i + 1]))
                else:
                    upper.append(current[i])  # promote
            layers.append(upper)
        return layers

    @property
    def root(self) -> str:
        return self._layers[-1][0]

    @property
    def leaves(self) -> list[str]:
        return list(self._leaves)

    @property
    def depth(self) -> int:
        return len(self._layers) - 1

    def get_proof(self, leaf: str) -> list[str]:
        leaf = leaf.lower()
        try:
            index = self._leaves.index(leaf)
        except ValueError:
            raise MintflowError(ErrorCode.NOT_ELIGIBLE, f"Leaf {leaf} not found in tree", {"leaf": leaf})

        proof = []
        for layer in self._layers[:-1]:
            sibling = index - 1 if index % 2 == 1 else index + 1
            if sibling < len(layer):
                proof.append(layer[sibling])
            index //= 2
        return proof

    def verify(self, proof: Sequence[str], leaf: str) -> bool:
        return verify_proof(proof, leaf, self.root)


def verify_proof(proof: Sequence[str], leaf: str, root: str) -> bool:
    try:
        computed = leaf.lower()
        for element in proof:
            computed = hash_pair(computed, element.lower())
        return computed == root.lower()
    except ValueError as e:
        logger.warning(f"Merkle proof validation failed: {e}")
        return False


# ============================================================
# PROOF ENGINE
# ============================================================

class AllowlistProofEngine:
    """
    Leaf hashing, tree construction and proof generation for allowlists.

    Usage:
        engine = AllowlistProofEngine()
        tree = engine.build_tree(entries)
        proof = engine.get_proof(entries, "0xabc...")
        assert engine.verify(proof.proof, proof.leaf, tree.root)
    """

    def __init__(self, cache_size: int = 100, eviction: Optional[EvictionPolicy] = None):
        self._trees: BoundedCache[str, MerkleTree] = BoundedCache(cache_size, eviction)
        self._proofs: BoundedCache[str, MerkleProof] = BoundedCache(cache_size, eviction)

    @staticmethod
    def hash_leaf(address: str, max_quantity: Optional[int] = None, price: Optional[Money] = None) -> str:
        types = ["address"]
        values: list = [address.lower()]
        if max_quantity is not None:
            types.append("uint256")
            values.append(int(max_quantity))
            # price is only committed alongside a quantity
            if price is not None:
                types.append("uint256")
                values.append(price.value)
        try:
            packed = encode_packed(types, values)
        except Exception as e:
            raise MintflowError(
                ErrorCode.INVALID_INPUT,
                f"Cannot hash allowlist entry for {address}",
                {"address": address, "cause": e},
            ) from e
        return _to_hex(keccak(packed))

    def leaf_for(self, entry: AllowlistEntry) -> str:
        return self.hash_leaf(entry.address, entry.max_quantity, entry.price)

    @staticmethod
    def cache_key(entries: Sequence[AllowlistEntry]) -> str:
        parts = sorted(
            f"{e.address.lower()}:{'' if e.max_quantity is None else e.max_quantity}:"
            f"{e.price.value if e.price else ''}:{e.price.currency if e.price else ''}"
            for e in entries
        )
        return _to_hex(keccak(text="|".join(parts)))

    def build_tree(self, entries: Sequence[AllowlistEntry]) -> MerkleTree:
        if not entries:
            raise MintflowError(ErrorCode.INVALID_INPUT, "Allowlist cannot be empty")

        key = self.cache_key(entries)
        cached = self._trees.get(key)
        if cached is not None:
            return cached

        tree = MerkleTree(self.leaf_for(e) for e in entries)
        self._trees.set(key, tree)
        logger.debug(f"Built allowlist tree: {len(entries)} entries, depth {tree.depth}")
        return tree

    @staticmethod
    def find_entry(entries: Sequence[AllowlistEntry], address: str) -> Optional[AllowlistEntry]:
        target = address.lower()
        return next((e for e in entries if e.address.lower() == target), None)

    def get_proof(self, entries: Sequence[AllowlistEntry], address: str) -> MerkleProof:
        entry = self.find_entry(entries, address)
        if entry is None:
            raise MintflowError(
                ErrorCode.NOT_ELIGIBLE,
                f"Address {address} not found in allowlist",
                {"address": address},
            )

        key = f"{self.cache_key(entries)}:{address.lower()}"
        cached = self._proofs.get(key)
        if cached is not None:
            return cached

        tree = self.build_tree(entries)
        leaf = self.leaf_for(entry)
        proof = MerkleProof(
            root=tree.root,
            proof=tuple(tree.get_proof(leaf)),
            leaf=leaf,
            max_quantity=entry.max_quantity,
            price=entry.price,
        )
        self._proofs.set(key, proof)
        return proof

    @staticmethod
    def verify(proof: Sequence[str], leaf: str, root: str) -> bool:
        return verify_proof(proof, leaf, root)

    def check_eligibility(self, entries: Sequence[AllowlistEntry], address: str) -> Optional[MerkleProof]:
        """Proof for `address`, or None when it is not on the list."""
        if self.find_entry(entries, address) is None:
            return None
        return self.get_proof(entries, address)

    def clear_cache(self) -> None:
        self._trees.clear()
        self._proofs.clear()

    def cache_stats(self) -> dict:
        return {
            "trees": len(self._trees),
            "proofs": len(self._proofs),
            "tree_hits": self._trees.hits,
            "proof_hits": self._proofs.hits,
        }
