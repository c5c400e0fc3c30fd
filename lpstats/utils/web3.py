import json
from pathlib import Path
from typing import Any, Dict, List, Optional

from web3 import AsyncHTTPProvider, AsyncWeb3, Web3
from web3.contract import AsyncContract

from lpstats.utils.env import RPC_URL

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"
MAX_UINT128 = (1 << 128) - 1
DEFAULT_ABI_PATH = Path(__file__).parent / "abis"


class AsyncWeb3Helper:
    """Class acting as web3 base class"""

    def __init__(self, web3: Optional[AsyncWeb3] = None) -> None:
        """Initialize web3 helper"""
        self.web3: Optional[AsyncWeb3] = web3
        self._abis: Dict[Path, List[Dict[str, Any]]] = {}

    @classmethod
    def make_web3(cls, rpc_url: Optional[str] = None) -> "AsyncWeb3Helper":
        rpc_url = rpc_url or RPC_URL
        if not rpc_url:
            raise ValueError("No RPC url configured")
        return cls(AsyncWeb3(AsyncHTTPProvider(rpc_url)))

    def load_abi(self, path: Path) -> List[Dict[str, Any]]:
        """Load an ABI file"""
        if path in self._abis:
            return self._abis[path]

        if not path.is_file():
            raise ValueError(f"Invalid ABI file path {path}")

        with open(path, "r") as f:
            abi_data = json.load(f)
            if isinstance(abi_data, dict):
                abi_data = abi_data.get("abi", abi_data)
        self._abis[path] = abi_data
        return abi_data

    def make_contract(self, abi_path: Path, addr: str) -> AsyncContract:
        """Make a contract object"""
        if self.web3 is None:
            raise ValueError("Web3 not initialized")
        abi = self.load_abi(abi_path)
        contract = self.web3.eth.contract(address=Web3.to_checksum_address(addr), abi=abi)
        return contract

    def make_contract_by_name(self, name: str, addr: str) -> AsyncContract:
        """Make a contract object"""
        abi_path = DEFAULT_ABI_PATH / f"{name}.json"
        contract = self.make_contract(abi_path, addr)
        return contract
