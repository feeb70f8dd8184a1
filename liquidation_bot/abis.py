"""Minimal ABIs: only the entries this bot reads or calls."""

from __future__ import annotations

from typing import Any, Dict, List


def _fn(
    name: str,
    inputs: List[Dict[str, Any]],
    outputs: List[Dict[str, Any]],
    mutability: str = "view",
) -> Dict[str, Any]:
    return {
        "type": "function",
        "name": name,
        "inputs": inputs,
        "outputs": outputs,
        "stateMutability": mutability,
    }


def _arg(name: str, type_: str, **extra: Any) -> Dict[str, Any]:
    return {"name": name, "type": type_, **extra}


COMET_ABI: List[Dict[str, Any]] = [
    _fn("numAssets", [], [_arg("", "uint8")]),
    _fn(
        "getAssetInfo",
        [_arg("i", "uint8")],
        [
            _arg(
                "",
                "tuple",
                components=[
                    _arg("offset", "uint8"),
                    _arg("asset", "address"),
                    _arg("priceFeed", "address"),
                    _arg("scale", "uint64"),
                    _arg("borrowCollateralFactor", "uint64"),
                    _arg("liquidateCollateralFactor", "uint64"),
                    _arg("liquidationFactor", "uint64"),
                    _arg("supplyCap", "uint128"),
                ],
            )
        ],
    ),
    _fn("isLiquidatable", [_arg("account", "address")], [_arg("", "bool")]),
    _fn("getCollateralReserves", [_arg("asset", "address")], [_arg("", "uint256")]),
    _fn("getPrice", [_arg("priceFeed", "address")], [_arg("", "uint256")]),
    _fn("baseToken", [], [_arg("", "address")]),
    {
        "type": "event",
        "name": "Withdraw",
        "anonymous": False,
        "inputs": [
            _arg("src", "address", indexed=True),
            _arg("to", "address", indexed=True),
            _arg("amount", "uint256", indexed=False),
        ],
    },
]

LIQUIDATOR_ABI: List[Dict[str, Any]] = [
    _fn(
        "initFlash",
        [
            _arg(
                "params",
                "tuple",
                components=[
                    _arg("accounts", "address[]"),
                    _arg("pairToken", "address"),
                    _arg("poolFee", "uint24"),
                    _arg("reversedPair", "bool"),
                ],
            )
        ],
        [],
        mutability="nonpayable",
    ),
    _fn("comet", [], [_arg("", "address")]),
]

LIQUIDATOR_V2_ABI: List[Dict[str, Any]] = [
    _fn(
        "absorbAndArbitrage",
        [
            _arg("comet", "address"),
            _arg("liquidatableAccounts", "address[]"),
            _arg("assets", "address[]"),
            _arg("swapTargets", "address[]"),
            _arg("swapCallDatas", "bytes[]"),
            _arg("flashLoanPairToken", "address"),
            _arg("flashLoanPoolFee", "uint24"),
        ],
        [],
        mutability="nonpayable",
    ),
    _fn(
        "availableCollateral",
        [_arg("comet", "address"), _arg("liquidatableAccounts", "address[]")],
        [_arg("", "address[]"), _arg("", "uint256[]"), _arg("", "uint256[]")],
    ),
    _fn(
        "setAssetConfig",
        [
            _arg("comet", "address"),
            _arg("asset", "address"),
            _arg("maxCollateralToPurchase", "uint256"),
            _arg("isSet", "bool"),
        ],
        [],
        mutability="nonpayable",
    ),
    _fn(
        "assetConfigs",
        [_arg("comet", "address"), _arg("asset", "address")],
        [_arg("maxCollateralToPurchase", "uint256"), _arg("isSet", "bool")],
    ),
    _fn("admin", [], [_arg("", "address")]),
    {"type": "error", "name": "Unauthorized", "inputs": []},
]
