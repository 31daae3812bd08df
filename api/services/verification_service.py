from dataclasses import dataclass
from typing import Callable, Optional
import logging
import time

import requests

from api.services.compiler_service import SOURCE_NAME
from api.services.polling import (
    FAILED,
    PENDING,
    SUCCESS,
    PollOutcome,
    poll_until_terminal,
)
from db.repositories.settings_repository import SettingsRepository

logger = logging.getLogger(__name__)

BASESCAN_ENDPOINTS: dict[int, str] = {
    8453: "https://api.basescan.org/api",
    84532: "https://api-sepolia.basescan.org/api",
}

# chain id -> settings keys to try, in order
API_KEY_SETTINGS: dict[int, tuple[str, ...]] = {
    8453: ("BASESCAN_API_KEY",),
    84532: ("BASESCAN_SEPOLIA_API_KEY", "BASESCAN_API_KEY"),
}

DEFAULT_POLL_INTERVAL = 7
DEFAULT_POLL_ATTEMPTS = 20
DEFAULT_OPTIMIZATION_RUNS = 200
DEFAULT_LICENSE_TYPE = 1  # "No License (None)"


class VerificationError(Exception):
    def __init__(self, detail):
        super().__init__(detail)
        self.detail = detail

    def __str__(self):
        return str(self.detail)


@dataclass
class VerificationSubmission:
    guid: str
    endpoint: str


@dataclass
class VerificationStatus:
    status: str
    message: str


def classify_status_response(data: dict) -> VerificationStatus:
    """Map a checkverifystatus response onto pending / success / failed."""
    result = data.get("result")
    if data.get("status") == "1":
        return VerificationStatus(status=SUCCESS, message=result or "Pass - Verified")
    if "pending" in str(result or "").lower():
        return VerificationStatus(status=PENDING, message=result)
    return VerificationStatus(status=FAILED, message=result or "Verification failed")


class VerificationService:
    def __init__(
        self,
        settings_repo: Optional[SettingsRepository] = None,
        http: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
        timeout: float = 30,
    ):
        self.settings_repo = settings_repo
        self.http = http or requests.Session()
        self.sleep = sleep
        self.timeout = timeout

    def _get_setting(self, key: str, default: Optional[str] = None) -> Optional[str]:
        if self.settings_repo:
            return self.settings_repo.get_setting(key, default)
        return default

    def is_supported_chain(self, chain_id: int) -> bool:
        return int(chain_id) in BASESCAN_ENDPOINTS

    def api_key_for(self, chain_id: int) -> Optional[str]:
        for key in API_KEY_SETTINGS.get(int(chain_id), ()):
            value = self._get_setting(key)
            if value:
                return value
        return None

    def endpoint_for(self, chain_id: int) -> tuple[str, str]:
        endpoint = BASESCAN_ENDPOINTS.get(int(chain_id))
        if not endpoint:
            raise VerificationError("BaseScan verification is only supported on Base networks")
        api_key = self.api_key_for(chain_id)
        if not api_key:
            raise VerificationError(f"No BaseScan API key configured for chain {chain_id}")
        return endpoint, api_key

    def submit_verification(
        self,
        address: str,
        chain_id: int,
        contract_name: str,
        source_code: str,
        compiler_version: str,
        constructor_args: str = "",
        license_type: Optional[int] = None,
        optimization_runs: Optional[int] = None,
    ) -> VerificationSubmission:
        endpoint, api_key = self.endpoint_for(chain_id)

        form = {
            "apikey": api_key,
            "module": "contract",
            "action": "verifysourcecode",
            "contractaddress": address,
            "sourceCode": source_code,
            "codeformat": "solidity-single-file",
            "contractname": f"{SOURCE_NAME}:{contract_name}",
            "compilerversion": compiler_version,
            "optimizationUsed": "1",
            "runs": str(optimization_runs or DEFAULT_OPTIMIZATION_RUNS),
            # The explorer API spells this parameter this way
            "constructorArguements": constructor_args or "",
            "licenseType": str(license_type if license_type is not None else DEFAULT_LICENSE_TYPE),
        }

        try:
            response = self.http.post(endpoint, data=form, timeout=self.timeout)
            data = response.json()
        except (requests.RequestException, ValueError) as e:
            raise VerificationError(f"BaseScan verification submission failed: {e}")

        if data.get("status") != "1":
            raise VerificationError(data.get("result") or "BaseScan verification submission failed")

        logger.info(f"Submitted verification request to BaseScan for {address}: {data['result']}")
        return VerificationSubmission(guid=data["result"], endpoint=endpoint)

    def check_status(self, endpoint: str, api_key: str, guid: str) -> VerificationStatus:
        response = self.http.get(
            endpoint,
            params={
                "apikey": api_key,
                "module": "contract",
                "action": "checkverifystatus",
                "guid": guid,
            },
            timeout=self.timeout,
        )
        return classify_status_response(response.json())

    def await_result(self, chain_id: int, guid: str) -> PollOutcome:
        """Poll the explorer until the job is verified, rejected or the budget runs out."""
        endpoint, api_key = self.endpoint_for(chain_id)
        interval = float(self._get_setting("VERIFY_POLL_INTERVAL", str(DEFAULT_POLL_INTERVAL)))
        attempts = int(self._get_setting("VERIFY_POLL_ATTEMPTS", str(DEFAULT_POLL_ATTEMPTS)))

        outcome = poll_until_terminal(
            poll=lambda: self.check_status(endpoint, api_key, guid),
            classify=lambda status: status.status if status else PENDING,
            interval=interval,
            max_attempts=attempts,
            wait_first=True,
            retry_on=(requests.RequestException, ValueError),
            sleep=self.sleep,
            label=f"verification {guid}",
        )
        if outcome.timed_out:
            outcome.value = VerificationStatus(
                status=FAILED,
                message=f"Verification timed out after {attempts} status checks",
            )
        return outcome
