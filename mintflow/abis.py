"""
Contract ABIs - only the functions and events mintflow touches

- Embedded minimal ABI, no compiled JSON needed
- Struct outputs decoded into dicts by field name (decode_struct)
- Calldata encoded as 4-byte selector + eth_abi arguments (encode_call)
"""

from typing import Any, Mapping, Sequence

from eth_abi import encode
from eth_utils import function_signature_to_4byte_selector, keccak


def _fn(name: str, inputs: list, outputs: list, mutability: str = "view") -> dict:
    return {
        "inputs": [{"name": n, "type": t} for n, t in inputs],
        "name": name,
        "outputs": outputs,
        "stateMutability": mutability,
        "type": "function",
    }


def _struct_output(components: Sequence[tuple[str, str]]) -> list:
    return [{
        "name": "",
        "type": "tuple",
        "components": [{"name": n, "type": t} for n, t in components],
    }]


# ============================================================
# ERC20
# ============================================================

ERC20_ABI = [
    _fn("balanceOf", [("account", "address")], [{"name": "", "type": "uint256"}]),
    _fn("allowance", [("owner", "address"), ("spender", "address")], [{"name": "", "type": "uint256"}]),
    _fn("decimals", [], [{"name": "", "type": "uint8"}]),
    _fn("symbol", [], [{"name": "", "type": "string"}]),
    _fn("approve", [("spender", "address"), ("amount", "uint256")], [{"name": "", "type": "bool"}], "nonpayable"),
]

APPROVE_SIGNATURE = "approve(address,uint256)"


# ============================================================
# EDITION CLAIM EXTENSIONS (ERC721 / ERC1155)
# ============================================================

ERC721_CLAIM_FIELDS: tuple[tuple[str, str], ...] = (
    ("total", "uint32"),
    ("totalMax", "uint32"),
    ("walletMax", "uint32"),
    ("startDate", "uint48"),
    ("endDate", "uint48"),
    ("storageProtocol", "uint8"),
    ("contractVersion", "uint8"),
    ("identical", "bool"),
    ("merkleRoot", "bytes32"),
    ("location", "string"),
    ("cost", "uint256"),
    ("paymentReceiver", "address"),
    ("erc20", "address"),
    ("signingAddress", "address"),
)

ERC1155_CLAIM_FIELDS: tuple[tuple[str, str], ...] = (
    ("total", "uint32"),
    ("totalMax", "uint32"),
    ("walletMax", "uint32"),
    ("startDate", "uint48"),
    ("endDate", "uint48"),
    ("storageProtocol", "uint8"),
    ("merkleRoot", "bytes32"),
    ("location", "string"),
    ("tokenId", "uint256"),
    ("cost", "uint256"),
    ("paymentReceiver", "address"),
    ("erc20", "address"),
    ("signingAddress", "address"),
)

_CLAIM_ARGS = [("creatorContractAddress", "address"), ("instanceId", "uint256")]

MINT_PROXY_SIGNATURE = "mintProxy(address,uint256,uint16,uint32[],bytes32[][],address)"
MINT_PROXY_TYPES = ["address", "uint256", "uint16", "uint32[]", "bytes32[][]", "address"]


def _edition_abi(claim_fields: Sequence[tuple[str, str]]) -> list:
    return [
        _fn("getClaim", _CLAIM_ARGS, _struct_output(claim_fields)),
        _fn(
            "getTotalMints",
            [("minter", "address"), ("creatorContractAddress", "address"), ("instanceId", "uint256")],
            [{"name": "", "type": "uint32"}],
        ),
        _fn(
            "checkMintIndices",
            _CLAIM_ARGS + [("mintIndices", "uint32[]")],
            [{"name": "minted", "type": "bool[]"}],
        ),
        _fn("MINT_FEE", [], [{"name": "", "type": "uint256"}]),
        _fn("MINT_FEE_MERKLE", [], [{"name": "", "type": "uint256"}]),
        _fn(
            "mintProxy",
            [
                ("creatorContractAddress", "address"),
                ("instanceId", "uint256"),
                ("mintCount", "uint16"),
                ("mintIndices", "uint32[]"),
                ("merkleProofs", "bytes32[][]"),
                ("mintFor", "address"),
            ],
            [],
            "payable",
        ),
    ]


EDITION_721_ABI = _edition_abi(ERC721_CLAIM_FIELDS)
EDITION_1155_ABI = _edition_abi(ERC1155_CLAIM_FIELDS)


# ============================================================
# BLIND MINT EXTENSION
# ============================================================

BLINDMINT_CLAIM_FIELDS: tuple[tuple[str, str], ...] = (
    ("storageProtocol", "uint8"),
    ("total", "uint32"),
    ("totalMax", "uint32"),
    ("startDate", "uint48"),
    ("endDate", "uint48"),
    ("startingTokenId", "uint80"),
    ("tokenVariations", "uint8"),
    ("location", "string"),
    ("paymentReceiver", "address"),
    ("cost", "uint96"),
    ("erc20", "address"),
)

MINT_RESERVE_SIGNATURE = "mintReserve(address,uint256,uint32)"
MINT_RESERVE_TYPES = ["address", "uint256", "uint32"]

BLINDMINT_ABI = [
    _fn("getClaim", _CLAIM_ARGS, _struct_output(BLINDMINT_CLAIM_FIELDS)),
    _fn("MINT_FEE", [], [{"name": "", "type": "uint256"}]),
    _fn(
        "mintReserve",
        _CLAIM_ARGS + [("mintCount", "uint32")],
        [],
        "payable",
    ),
]


# ============================================================
# EVENTS
# ============================================================

TRANSFER_TOPIC = "0x" + keccak(text="Transfer(address,address,uint256)").hex()
TRANSFER_SINGLE_TOPIC = "0x" + keccak(text="TransferSingle(address,address,address,uint256,uint256)").hex()
TRANSFER_BATCH_TOPIC = "0x" + keccak(text="TransferBatch(address,address,address,uint256[],uint256[])").hex()


# ============================================================
# HELPERS
# ============================================================

def encode_call(signature: str, types: Sequence[str], args: Sequence[Any]) -> str:
    """0x-prefixed calldata: 4-byte selector followed by ABI-encoded arguments."""
    selector = function_signature_to_4byte_selector(signature)
    return "0x" + (selector + encode(list(types), list(args))).hex()


def decode_struct(fields: Sequence[tuple[str, str]], raw: Any) -> dict:
    """
    Name the members of a struct returned by a contract call.

    web3 returns tuple outputs positionally; in-memory fakes may already
    return a mapping, which is passed through (restricted to known fields).
    """
    names = [name for name, _ in fields]
    if isinstance(raw, Mapping):
        return {name: raw[name] for name in names if name in raw}
    values = list(raw)
    if len(values) != len(names):
        raise ValueError(f"Struct has {len(values)} members, expected {len(names)}")
    return dict(zip(names, values))


def topic_to_address(topic: Any) -> str:
    """Last 20 bytes of an indexed address topic, lower-cased."""
    if isinstance(topic, (bytes, bytearray)):
        return "0x" + bytes(topic)[-20:].hex()
    text = str(topic).lower()
    if text.startswith("0x"):
        text = text[2:]
    return "0x" + text[-40:]


def topic_hex(topic: Any) -> str:
    if isinstance(topic, (bytes, bytearray)):
        return "0x" + bytes(topic).hex()
    text = str(topic).lower()
    return text if text.startswith("0x") else "0x" + text
