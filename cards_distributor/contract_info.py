"""
Persisted record of the deployed contract (address and code hash).
"""

import json
import logging
from dataclasses import dataclass
from pathlib import Path

from cards_distributor.errors import ConfigError


@dataclass(frozen=True)
class ContractInfo:
    contract_address: str
    code_hash: str

    def to_json(self) -> dict:
        return {"contractAddress": self.contract_address, "contractCodeHash": self.code_hash}


def load_contract_info(path: str = "contractInfo.json") -> ContractInfo:
    """Load the contract record written by the deployment tooling."""
    file_path = Path(path)
    if not file_path.exists():
        raise ConfigError(f"Contract info file not found: {file_path}")
    try:
        data = json.loads(file_path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise ConfigError(f"Contract info file {file_path} is not valid JSON: {e}") from e

    address = data.get("contractAddress") if isinstance(data, dict) else None
    code_hash = data.get("contractCodeHash") if isinstance(data, dict) else None
    if not address or not code_hash:
        raise ConfigError(f"Contract info file {file_path} lacks contractAddress or contractCodeHash")

    logging.info(f"Contract info loaded: {address}")
    return ContractInfo(contract_address=address, code_hash=code_hash)


def save_contract_info(info: ContractInfo, path: str = "contractInfo.json") -> None:
    Path(path).write_text(json.dumps(info.to_json(), indent=2), encoding="utf-8")
