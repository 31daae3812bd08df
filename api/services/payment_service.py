from dataclasses import dataclass
from decimal import Decimal, ROUND_FLOOR
from typing import Callable, Optional
import logging
import time

from eth_abi.exceptions import DecodingError
from web3 import Web3
from web3.exceptions import MismatchedABI, TransactionNotFound

from api.services.polling import PENDING, SUCCESS, poll_until_terminal
from db.repositories.settings_repository import SettingsRepository

logger = logging.getLogger(__name__)

DEFAULT_PAYMENT_RPC_URL = "https://sepolia.base.org"
# USDC on Base Sepolia
DEFAULT_USDC_ADDRESS = "0x036CbD53842c5426634e7929541eC2318f3dCF7e"
DEFAULT_RECIPIENT = "0x0000000000000000000000000000000000000000"
DEFAULT_PAYMENT_NETWORK = "base-sepolia"
DEFAULT_RECEIPT_ATTEMPTS = 5
DEFAULT_RECEIPT_INTERVAL = 3

PLAN_PRICES = {
    "standard": "19.00",
    "premium": "49.00",
}

USDC_ABI = [
    {
        "constant": True,
        "inputs": [],
        "name": "decimals",
        "outputs": [{"name": "", "type": "uint8"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "anonymous": False,
        "inputs": [
            {"indexed": True, "name": "from", "type": "address"},
            {"indexed": True, "name": "to", "type": "address"},
            {"indexed": False, "name": "value", "type": "uint256"},
        ],
        "name": "Transfer",
        "type": "event",
    },
]


def get_plan_price(plan: str) -> str:
    if plan not in PLAN_PRICES:
        raise ValueError(f"No price for plan {plan}")
    return PLAN_PRICES[plan]


@dataclass
class PaymentVerification:
    confirmed: bool
    amount: str
    from_address: str
    to_address: str
    block_number: Optional[int] = None

    def to_dict(self) -> dict:
        data = {
            "confirmed": self.confirmed,
            "amount": self.amount,
            "from": self.from_address,
            "to": self.to_address,
        }
        if self.block_number is not None:
            data["blockNumber"] = self.block_number
        return data


class PaymentVerifier:
    """Checks that a transaction is a USDC transfer of the expected amount to the platform wallet."""

    def __init__(
        self,
        settings_repo: Optional[SettingsRepository] = None,
        web3_factory: Optional[Callable[[str], Web3]] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.settings_repo = settings_repo
        self.web3_factory = web3_factory or (lambda url: Web3(Web3.HTTPProvider(url, request_kwargs={"timeout": 30})))
        self.sleep = sleep

    def _get_setting(self, key: str, default: Optional[str] = None) -> Optional[str]:
        if self.settings_repo:
            return self.settings_repo.get_setting(key, default)
        return default

    @property
    def token_address(self) -> str:
        return self._get_setting("USDC_CONTRACT_ADDRESS", DEFAULT_USDC_ADDRESS)

    @property
    def recipient_address(self) -> str:
        return self._get_setting("PAYMENT_RECIPIENT_ADDRESS", DEFAULT_RECIPIENT)

    @property
    def network(self) -> str:
        return self._get_setting("PAYMENT_NETWORK", DEFAULT_PAYMENT_NETWORK)

    def _not_confirmed(self, expected_from: str) -> PaymentVerification:
        return PaymentVerification(
            confirmed=False,
            amount="0",
            from_address=expected_from,
            to_address=self.recipient_address,
        )

    def _wait_for_receipt(self, w3: Web3, tx_hash: str):
        def fetch():
            try:
                return w3.eth.get_transaction_receipt(tx_hash)
            except TransactionNotFound:
                return None

        outcome = poll_until_terminal(
            poll=fetch,
            classify=lambda receipt: SUCCESS if receipt is not None else PENDING,
            interval=float(self._get_setting("PAYMENT_RECEIPT_INTERVAL", str(DEFAULT_RECEIPT_INTERVAL))),
            max_attempts=int(self._get_setting("PAYMENT_RECEIPT_ATTEMPTS", str(DEFAULT_RECEIPT_ATTEMPTS))),
            sleep=self.sleep,
            label=f"receipt {tx_hash}",
        )
        return outcome.value

    def verify(self, tx_hash: str, expected_amount: str, expected_from: str) -> PaymentVerification:
        """Never raises; any RPC or decoding failure yields confirmed=False."""
        try:
            return self._verify(tx_hash, expected_amount, expected_from)
        except Exception as e:
            logger.error(f"Payment verification error for {tx_hash}: {e}")
            return self._not_confirmed(expected_from)

    def _verify(self, tx_hash: str, expected_amount: str, expected_from: str) -> PaymentVerification:
        w3 = self.web3_factory(self._get_setting("PAYMENT_RPC_URL", DEFAULT_PAYMENT_RPC_URL))

        receipt = self._wait_for_receipt(w3, tx_hash)
        if receipt is None:
            logger.warning(f"Transaction {tx_hash} not found")
            return self._not_confirmed(expected_from)
        if receipt["status"] != 1:
            logger.warning(f"Transaction {tx_hash} failed")
            return self._not_confirmed(expected_from)

        tx = w3.eth.get_transaction(tx_hash)
        token_address = self.token_address
        if not tx or (tx.get("to") or "").lower() != token_address.lower():
            logger.warning(
                f"Transaction {tx_hash} is not to USDC contract. "
                f"Expected {token_address}, got {tx.get('to') if tx else None}"
            )
            return self._not_confirmed(expected_from)

        token = w3.eth.contract(address=Web3.to_checksum_address(token_address), abi=USDC_ABI)
        decimals = int(token.functions.decimals().call())

        transfer = None
        for log in receipt["logs"]:
            try:
                transfer = token.events.Transfer().process_log(log)
                break
            except (MismatchedABI, DecodingError, ValueError):
                continue
        if transfer is None:
            logger.warning(f"No Transfer event found in transaction {tx_hash}")
            return self._not_confirmed(expected_from)

        sender = transfer["args"]["from"]
        recipient = transfer["args"]["to"]
        value = int(transfer["args"]["value"])

        scale = Decimal(10) ** decimals
        amount = str((Decimal(value) / scale).quantize(Decimal(1) / scale))
        expected_units = int((Decimal(expected_amount) * scale).to_integral_value(rounding=ROUND_FLOOR))

        is_correct_amount = value >= expected_units
        is_correct_from = sender.lower() == expected_from.lower()
        is_correct_to = recipient.lower() == self.recipient_address.lower()
        block_number = receipt.get("blockNumber")

        if is_correct_amount and is_correct_from and is_correct_to:
            logger.info(f"Payment verified: {amount} USDC from {sender} to {recipient} (tx: {tx_hash})")
            return PaymentVerification(
                confirmed=True,
                amount=amount,
                from_address=sender,
                to_address=recipient,
                block_number=block_number,
            )

        logger.warning(
            f"Payment verification failed for {tx_hash}: amount={is_correct_amount}, "
            f"from={is_correct_from}, to={is_correct_to}"
        )
        return PaymentVerification(
            confirmed=False,
            amount=amount,
            from_address=sender,
            to_address=recipient,
            block_number=block_number,
        )
