from dataclasses import dataclass
from typing import Any, Callable, Optional
import logging

from web3 import Web3

from api.services.compiler_service import CompilerService
from db.repositories.settings_repository import SettingsRepository

logger = logging.getLogger(__name__)

SIGNING_SERVER = "server"
SIGNING_CLIENT = "client"

DEFAULT_RECEIPT_TIMEOUT = 180
OWNERSHIP_TRANSFER_GAS = 150000


class DeploymentError(Exception):
    def __init__(self, detail):
        super().__init__(detail)
        self.detail = detail

    def __str__(self):
        return str(self.detail)


class DeploymentConfigError(DeploymentError):
    """Server-side configuration is missing or invalid (deployer key, network)."""


@dataclass
class NetworkConfig:
    name: str
    rpc_url: Optional[str]
    chain_id: int

    def to_dict(self, include_rpc: bool = True) -> dict:
        data = {"name": self.name, "chainId": self.chain_id}
        if include_rpc and self.rpc_url:
            data["rpcUrl"] = self.rpc_url
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "NetworkConfig":
        return cls(
            name=data.get("name"),
            rpc_url=data.get("rpcUrl") or data.get("rpc_url"),
            chain_id=data.get("chainId") or data.get("chain_id"),
        )


@dataclass
class SigningContext:
    mode: str = SIGNING_SERVER
    private_key: Optional[str] = None


def validate_network_config(network: NetworkConfig, require_rpc: bool = True) -> None:
    missing = []
    if not network.name or not str(network.name).strip():
        missing.append("name")
    if require_rpc and (not network.rpc_url or not str(network.rpc_url).strip()):
        missing.append("rpcUrl")
    if not network.chain_id:
        missing.append("chainId")
    if missing:
        raise ValueError(f"Network config missing required field(s): {', '.join(missing)}")
    try:
        if int(network.chain_id) <= 0:
            raise ValueError
    except (TypeError, ValueError):
        raise ValueError("chainId must be a positive integer")


def _default_web3(rpc_url: str) -> Web3:
    return Web3(Web3.HTTPProvider(rpc_url, request_kwargs={"timeout": 30}))


class DeploymentService:
    def __init__(
        self,
        compiler: CompilerService,
        settings_repo: Optional[SettingsRepository] = None,
        web3_factory: Callable[[str], Web3] = _default_web3,
    ):
        self.compiler = compiler
        self.settings_repo = settings_repo
        self.web3_factory = web3_factory

    def _get_setting(self, key: str, default: Optional[str] = None) -> Optional[str]:
        if self.settings_repo:
            return self.settings_repo.get_setting(key, default)
        return default

    def server_signing_context(self) -> SigningContext:
        private_key = self._get_setting("DEPLOYER_PRIVATE_KEY")
        if not private_key:
            raise DeploymentConfigError("DEPLOYER_PRIVATE_KEY is not configured")
        return SigningContext(mode=SIGNING_SERVER, private_key=private_key)

    def receipt_timeout(self) -> int:
        return int(self._get_setting("DEPLOY_RECEIPT_TIMEOUT", str(DEFAULT_RECEIPT_TIMEOUT)))

    def deploy(
        self,
        network: NetworkConfig,
        source_code: str,
        owner_address: str,
        signing: SigningContext,
        contract_name: Optional[str] = None,
    ) -> dict:
        """
        Compile source_code and broadcast a contract-creation transaction.

        Blocks until the receipt is mined. Ownership is handed to
        owner_address afterwards when the contract exposes transferOwnership;
        that step never fails the deployment.
        """
        validate_network_config(network)
        if not owner_address or not Web3.is_address(owner_address):
            raise DeploymentError("Invalid owner address on project")
        if not source_code:
            raise DeploymentError("Project has no sourceCode to deploy")
        if signing.mode != SIGNING_SERVER:
            raise DeploymentConfigError("Client-signed deployments are recorded, not broadcast by the server")
        if not signing.private_key:
            raise DeploymentConfigError("DEPLOYER_PRIVATE_KEY is not configured")

        logger.info(f"Compiling contract for deployment to {network.name}...")
        compiled = self.compiler.compile(source_code, contract_name=contract_name)

        w3 = self.web3_factory(network.rpc_url)
        chain_id = w3.eth.chain_id
        if int(chain_id) != int(network.chain_id):
            raise DeploymentError(
                f"RPC endpoint reports chain ID {chain_id}, expected {network.chain_id}"
            )

        account = w3.eth.account.from_key(signing.private_key)
        nonce = w3.eth.get_transaction_count(account.address)
        factory = w3.eth.contract(abi=compiled.abi, bytecode=compiled.bytecode)
        tx = factory.constructor().build_transaction(
            {"from": account.address, "nonce": nonce, "chainId": int(network.chain_id)}
        )

        logger.info(
            f"Deploying contract {compiled.contract_name} from {account.address} "
            f"on {network.name} (Chain ID: {network.chain_id})..."
        )
        signed = account.sign_transaction(tx)
        tx_hash = w3.eth.send_raw_transaction(signed.raw_transaction)
        receipt = w3.eth.wait_for_transaction_receipt(tx_hash, timeout=self.receipt_timeout())

        if receipt["status"] != 1:
            raise DeploymentError(f"Deployment transaction {Web3.to_hex(tx_hash)} reverted")
        address = receipt.get("contractAddress")
        if not address:
            raise DeploymentError("Failed to determine deployed contract address")

        result = {
            "address": address,
            "abi": compiled.abi,
            "network": network.name,
            "chainId": int(network.chain_id),
            "txHash": Web3.to_hex(tx_hash),
            "contractName": compiled.contract_name,
            "compilerVersion": compiled.compiler_version,
            "blockNumber": receipt.get("blockNumber"),
            "gasUsed": receipt.get("gasUsed"),
            "ownershipTransferred": False,
            "ownershipError": None,
        }
        logger.info(
            f"Deployed contract {compiled.contract_name} to {address} on {network.name}. Tx: {result['txHash']}"
        )

        if _has_transfer_ownership(compiled.abi) and owner_address.lower() != account.address.lower():
            try:
                self._transfer_ownership(w3, account, address, compiled.abi, owner_address, nonce + 1, network)
                result["ownershipTransferred"] = True
                logger.info(f"Ownership of {address} transferred to {owner_address}")
            except Exception as e:
                result["ownershipError"] = str(e)
                logger.warning(f"Could not automatically transfer ownership of {address}: {e}")

        return result

    def _transfer_ownership(
        self,
        w3: Web3,
        account: Any,
        address: str,
        abi: list,
        owner_address: str,
        nonce: int,
        network: NetworkConfig,
    ) -> None:
        contract = w3.eth.contract(address=Web3.to_checksum_address(address), abi=abi)
        tx = contract.functions.transferOwnership(Web3.to_checksum_address(owner_address)).build_transaction(
            {
                "from": account.address,
                "nonce": nonce,
                "chainId": int(network.chain_id),
                "gas": OWNERSHIP_TRANSFER_GAS,
            }
        )
        signed = account.sign_transaction(tx)
        tx_hash = w3.eth.send_raw_transaction(signed.raw_transaction)
        receipt = w3.eth.wait_for_transaction_receipt(tx_hash, timeout=self.receipt_timeout())
        if receipt["status"] != 1:
            raise DeploymentError(f"transferOwnership transaction {Web3.to_hex(tx_hash)} reverted")


def _has_transfer_ownership(abi: list) -> bool:
    for item in abi:
        if (
            item.get("type") == "function"
            and item.get("name") == "transferOwnership"
            and [i.get("type") for i in item.get("inputs", [])] == ["address"]
        ):
            return True
    return False
