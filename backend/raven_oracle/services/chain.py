"""
On-chain collaborator for the RavenAccess contract.

Read side (RavenAccessClient): credit estimation, balances and subscription
state, plus calldata for transactions an owner/oracle wallet signs elsewhere.

Write side (Web3BatchSubmitter): the configured oracle key signs and sends
``awardCreditsBatch`` and waits for the receipt. Nonce and gas handling are left
to the node defaults.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Protocol

from requests.exceptions import RequestException
from web3 import Web3
from web3.exceptions import TimeExhausted, Web3Exception

from raven_oracle.core.errors import ChainNotConfigured, ConfirmationTimeout, SubmissionError
from raven_oracle.core.settings import Settings
from raven_oracle.services.inference_rules import decide_inference_authorization

logger = logging.getLogger(__name__)


RAVEN_ACCESS_ABI: list[dict[str, Any]] = [
    {
        "type": "function",
        "name": "calculateCredits",
        "stateMutability": "view",
        "inputs": [{"name": "reason", "type": "string"}, {"name": "parameter", "type": "uint256"}],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "type": "function",
        "name": "getUserCredits",
        "stateMutability": "view",
        "inputs": [{"name": "user", "type": "address"}],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "type": "function",
        "name": "getUserSubscription",
        "stateMutability": "view",
        "inputs": [{"name": "user", "type": "address"}],
        "outputs": [
            {"name": "planId", "type": "uint8"},
            {"name": "expiresAt", "type": "uint256"},
            {"name": "usedThisPeriod", "type": "uint256"},
        ],
    },
    {
        "type": "function",
        "name": "plans",
        "stateMutability": "view",
        "inputs": [{"name": "", "type": "uint8"}],
        "outputs": [
            {"name": "priceUnits", "type": "uint256"},
            {"name": "monthlyCap", "type": "uint256"},
            {"name": "active", "type": "bool"},
        ],
    },
    {
        "type": "function",
        "name": "hasActiveSubscription",
        "stateMutability": "view",
        "inputs": [{"name": "user", "type": "address"}],
        "outputs": [{"name": "", "type": "bool"}],
    },
    {
        "type": "function",
        "name": "awardCredits",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "user", "type": "address"},
            {"name": "amount", "type": "uint256"},
            {"name": "reason", "type": "string"},
        ],
        "outputs": [],
    },
    {
        "type": "function",
        "name": "awardCreditsBatch",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "users", "type": "address[]"},
            {"name": "amounts", "type": "uint256[]"},
            {"name": "reason", "type": "string"},
        ],
        "outputs": [],
    },
    {
        "type": "function",
        "name": "updateUserMemoryPointer",
        "stateMutability": "nonpayable",
        "inputs": [{"name": "user", "type": "address"}, {"name": "memoryHash", "type": "string"}],
        "outputs": [],
    },
]


class BatchSubmitter(Protocol):
    def submit_batch(self, addresses: list[str], amounts: list[int], reason: str) -> str:
        ...

    def wait_for_confirmation(self, tx_hash: str) -> str:
        ...


def get_web3(settings: Settings) -> Web3:
    return Web3(Web3.HTTPProvider(settings.rpc_url, request_kwargs={"timeout": 30}))


class RavenAccessClient:
    def __init__(self, web3: Web3, address: str) -> None:
        self.web3 = web3
        self.address = Web3.to_checksum_address(address)
        self.contract = web3.eth.contract(address=self.address, abi=RAVEN_ACCESS_ABI)

    def calculate_credits(self, reason: str, parameter: int) -> int:
        return int(self.contract.functions.calculateCredits(reason, int(parameter)).call())

    def get_user_credits(self, user: str) -> int:
        return int(self.contract.functions.getUserCredits(user).call())

    def get_user_subscription(self, user: str) -> dict[str, Any] | None:
        plan_id, expires_at, used = self.contract.functions.getUserSubscription(user).call()
        if int(plan_id) == 0:
            return None
        price, cap, active = self.contract.functions.plans(int(plan_id)).call()
        return {
            "plan_id": int(plan_id),
            "expires_at": int(expires_at),
            "used_this_period": int(used),
            "plan": {"price_units": int(price), "monthly_cap": int(cap), "active": bool(active)},
        }

    def has_active_subscription(self, user: str) -> bool:
        return bool(self.contract.functions.hasActiveSubscription(user).call())

    def authorize_inference(self, user: str, mode: str, quantity: int) -> dict[str, Any]:
        return decide_inference_authorization(
            mode=mode,
            quantity=quantity,
            credits=self.get_user_credits(user),
            subscription=self.get_user_subscription(user),
            now_s=int(time.time()),
        )

    def encode_award_credits(self, user: str, amount: int, reason: str) -> dict[str, str]:
        data = self.contract.encode_abi("awardCredits", args=[user, int(amount), reason])
        return {"to": self.address, "data": data}

    def encode_update_memory_pointer(self, user: str, memory_hash: str) -> dict[str, str]:
        data = self.contract.encode_abi("updateUserMemoryPointer", args=[user, memory_hash])
        return {"to": self.address, "data": data}


class Web3BatchSubmitter:
    def __init__(
        self,
        web3: Web3,
        access: RavenAccessClient,
        private_key: str,
        *,
        confirmation_timeout_s: int = 300,
        poll_s: float = 2.0,
    ) -> None:
        self.web3 = web3
        self.contract = access.contract
        self.account = web3.eth.account.from_key(private_key)
        self.confirmation_timeout_s = confirmation_timeout_s
        self.poll_s = poll_s

    @property
    def signer_address(self) -> str:
        return self.account.address

    def submit_batch(self, addresses: list[str], amounts: list[int], reason: str) -> str:
        try:
            tx = self.contract.functions.awardCreditsBatch(addresses, [int(a) for a in amounts], reason).build_transaction(
                {
                    "from": self.account.address,
                    "nonce": self.web3.eth.get_transaction_count(self.account.address, "pending"),
                }
            )
            signed = self.account.sign_transaction(tx)
            tx_hash = self.web3.eth.send_raw_transaction(signed.raw_transaction)
        except (Web3Exception, RequestException, ValueError) as exc:
            raise SubmissionError(str(exc) or "tx submission failed") from exc
        tx_hex = Web3.to_hex(tx_hash)
        logger.info("chain.batch.sent reason=%s addresses=%s tx=%s", reason, len(addresses), tx_hex)
        return tx_hex

    def wait_for_confirmation(self, tx_hash: str) -> str:
        try:
            receipt = self.web3.eth.wait_for_transaction_receipt(
                tx_hash,
                timeout=self.confirmation_timeout_s,
                poll_latency=self.poll_s,
            )
        except TimeExhausted as exc:
            raise ConfirmationTimeout(
                f"transaction not confirmed within {self.confirmation_timeout_s}s",
                tx_hash=tx_hash,
            ) from exc
        except (Web3Exception, RequestException) as exc:
            raise SubmissionError(str(exc) or "confirmation failed", tx_hash=tx_hash) from exc
        if int(receipt.get("status", 0)) != 1:
            raise SubmissionError("transaction reverted", tx_hash=tx_hash)
        return Web3.to_hex(receipt["transactionHash"])


def build_access_client(settings: Settings, web3: Web3) -> RavenAccessClient | None:
    if not settings.contract_configured or not Web3.is_address(settings.raven_access_address):
        logger.warning("chain.access.disabled reason=RAVEN_ACCESS_ADDRESS_not_configured")
        return None
    return RavenAccessClient(web3, settings.raven_access_address)


def build_submitter(settings: Settings, web3: Web3, access: RavenAccessClient | None) -> Web3BatchSubmitter | None:
    if access is None or not settings.oracle_private_key:
        logger.warning("chain.submitter.disabled reason=signer_not_configured")
        return None
    try:
        submitter = Web3BatchSubmitter(
            web3,
            access,
            settings.oracle_private_key,
            confirmation_timeout_s=settings.confirmation_timeout_s,
            poll_s=settings.confirmation_poll_s,
        )
    except ValueError:
        logger.exception("chain.submitter.invalid_key")
        return None
    logger.info("chain.submitter.ready signer=%s", submitter.signer_address)
    return submitter


def require_access(access: RavenAccessClient | None) -> RavenAccessClient:
    if access is None:
        raise ChainNotConfigured("RAVEN_ACCESS_ADDRESS not configured")
    return access
