"""
Chain provider: payment lookups, EAS attestation and reward mint.

- get_transaction_status / verify_payment: read-only receipt lookups.
- attest_and_reward: EAS attest() for the job, then ERC-20 mint() of the
  reward to the payer. Both are signed by the attester key
  (REPLYPROOF_ATTESTER_PRIVATE_KEY) and waited on with an explicit timeout.

Every RPC failure surfaces as CollaboratorError("chain", ...).
"""

import logging
import re
from typing import Optional

import requests
from eth_abi import encode
from eth_account import Account
from eth_account.signers.local import LocalAccount
from web3 import Web3
from web3.exceptions import TimeExhausted, TransactionNotFound, Web3Exception

from replyproof.config import Settings
from replyproof.errors import CollaboratorError
from replyproof.schema import JobDescriptor, MintResult, PaymentDescriptor, TxStatus

logger = logging.getLogger(__name__)

TX_HASH_RE = re.compile(r"^0x[0-9a-fA-F]{64}$")
ZERO_ADDRESS = "0x" + "0" * 40
REWARD_DECIMALS = 18

# Minimal ABI for attest()
EAS_ABI = [
    {
        "inputs": [
            {
                "components": [
                    {"internalType": "bytes32", "name": "schema", "type": "bytes32"},
                    {
                        "components": [
                            {"internalType": "address", "name": "recipient", "type": "address"},
                            {"internalType": "uint64", "name": "expirationTime", "type": "uint64"},
                            {"internalType": "bool", "name": "revocable", "type": "bool"},
                            {"internalType": "bytes32", "name": "refUID", "type": "bytes32"},
                            {"internalType": "bytes", "name": "data", "type": "bytes"},
                            {"internalType": "uint256", "name": "value", "type": "uint256"},
                        ],
                        "internalType": "struct AttestationRequestData",
                        "name": "data",
                        "type": "tuple",
                    },
                ],
                "internalType": "struct AttestationRequest",
                "name": "request",
                "type": "tuple",
            },
        ],
        "name": "attest",
        "outputs": [{"internalType": "bytes32", "name": "", "type": "bytes32"}],
        "stateMutability": "payable",
        "type": "function",
    },
]

ERC20_MINT_ABI = [
    {
        "inputs": [
            {"name": "to", "type": "address"},
            {"name": "amount", "type": "uint256"},
        ],
        "name": "mint",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
]

# Registered schema must match:
# "bytes32 jobId, string castHash, uint256 userFid, string imageUrl, string text, string label"
ATTESTATION_SCHEMA = ["bytes32", "string", "uint256", "string", "string", "string"]


def encode_attestation_data(job: JobDescriptor) -> bytes:
    job_id_bytes = job.job_id.encode("utf-8")[:32].ljust(32, b"\x00")
    fid = int(job.user_fid) if job.user_fid.isdigit() else 0
    return encode(ATTESTATION_SCHEMA, [job_id_bytes, job.cast_hash, fid, job.image_url, job.text, job.label])


class ChainClient:
    name = "chain"

    def __init__(
        self,
        rpc_url: str,
        chain_id: int,
        eas_address: str,
        schema_uid: str,
        private_key: str = "",
        reward_token: str = "",
        reward_amount: float = 1.0,
        payment_recipient: str = "",
        payment_wei: int = 0,
        rpc_timeout: float = 30.0,
        receipt_timeout: float = 120.0,
        w3: Optional[Web3] = None,
    ):
        self.rpc_url = rpc_url
        self.chain_id = chain_id
        self.eas_address = eas_address
        self.schema_uid = schema_uid
        self.reward_token = reward_token
        self.reward_amount = reward_amount
        self.payment_recipient = payment_recipient
        self.payment_wei = payment_wei
        self.rpc_timeout = rpc_timeout
        self.receipt_timeout = receipt_timeout
        self._private_key = private_key
        self._account: Optional[LocalAccount] = None
        self._w3 = w3

    @classmethod
    def from_settings(cls, settings: Settings) -> "ChainClient":
        return cls(
            rpc_url=settings.rpc_url,
            chain_id=settings.chain_id,
            eas_address=settings.eas_address,
            schema_uid=settings.eas_schema_uid,
            private_key=settings.attester_private_key,
            reward_token=settings.reward_token,
            reward_amount=settings.reward_amount,
            payment_recipient=settings.payment_recipient,
            payment_wei=settings.payment_wei,
            rpc_timeout=settings.rpc_timeout,
            receipt_timeout=settings.receipt_timeout,
        )

    @property
    def w3(self) -> Web3:
        if self._w3 is None:
            self._w3 = Web3(Web3.HTTPProvider(self.rpc_url, request_kwargs={"timeout": self.rpc_timeout}))
        return self._w3

    @property
    def account(self) -> LocalAccount:
        if self._account is None:
            pk = (self._private_key or "").strip()
            if not pk:
                raise CollaboratorError(self.name, "REPLYPROOF_ATTESTER_PRIVATE_KEY is not set")
            if not pk.startswith("0x"):
                pk = "0x" + pk
            self._account = Account.from_key(pk)
        return self._account

    # --- lookups ---

    def get_transaction_status(self, tx_hash: str) -> TxStatus:
        tx_hash = (tx_hash or "").strip()
        if not TX_HASH_RE.match(tx_hash):
            return TxStatus(transaction_hash=tx_hash, status="absent")
        try:
            try:
                receipt = self.w3.eth.get_transaction_receipt(tx_hash)
            except TransactionNotFound:
                receipt = None
            if receipt is not None:
                status = "confirmed" if receipt.get("status") == 1 else "failed"
                return TxStatus(transaction_hash=tx_hash, status=status, sender=receipt.get("from"))
            try:
                tx = self.w3.eth.get_transaction(tx_hash)
            except TransactionNotFound:
                return TxStatus(transaction_hash=tx_hash, status="absent")
            return TxStatus(transaction_hash=tx_hash, status="pending", sender=tx.get("from"))
        except (requests.RequestException, Web3Exception, ValueError) as e:
            raise CollaboratorError(self.name, f"status lookup for {tx_hash} failed: {e}") from e

    def verify_payment(self, tx_hash: str) -> TxStatus:
        """
        Status of a payment tx. A confirmed tx that did not pay the configured
        recipient at least payment_wei is reported as failed.
        """
        status = self.get_transaction_status(tx_hash)
        if status.status != "confirmed" or not self.payment_recipient:
            return status
        try:
            tx = self.w3.eth.get_transaction(status.transaction_hash)
        except (requests.RequestException, Web3Exception, ValueError) as e:
            raise CollaboratorError(self.name, f"payment lookup for {tx_hash} failed: {e}") from e
        to = tx.get("to") or ""
        if to.lower() != self.payment_recipient.lower() or int(tx.get("value", 0)) < self.payment_wei:
            logger.warning("Payment %s does not match recipient/amount (to=%s)", tx_hash, to)
            return TxStatus(transaction_hash=status.transaction_hash, status="failed", sender=status.sender)
        return status

    def payment_descriptor(self) -> PaymentDescriptor:
        recipient = self.payment_recipient or ZERO_ADDRESS
        return PaymentDescriptor(
            chain_id=f"eip155:{self.chain_id}",
            to=Web3.to_checksum_address(recipient),
            value=str(self.payment_wei),
        )

    # --- writes ---

    def create_attestation(self, job: JobDescriptor, recipient: Optional[str] = None) -> str:
        """EAS attest() for the job. Returns the attestation tx hash."""
        schema_hex = (self.schema_uid or "").replace("0x", "")
        if not schema_hex or set(schema_hex) == {"0"}:
            raise CollaboratorError(self.name, "REPLYPROOF_EAS_SCHEMA_UID is not set")
        schema_uid = bytes.fromhex(schema_hex.zfill(64)[-64:])
        eas = self.w3.eth.contract(address=Web3.to_checksum_address(self.eas_address), abi=EAS_ABI)
        request = (
            schema_uid,
            (
                Web3.to_checksum_address(recipient or ZERO_ADDRESS),
                0,  # expirationTime (0 = no expiration)
                True,  # revocable
                b"\x00" * 32,  # refUID
                encode_attestation_data(job),
                0,  # value
            ),
        )
        return self._send(eas.functions.attest(request), gas=400_000, what="attestation")

    def mint_reward(self, recipient: str) -> str:
        if not self.reward_token:
            raise CollaboratorError(self.name, "REPLYPROOF_REWARD_TOKEN is not set")
        token = self.w3.eth.contract(address=Web3.to_checksum_address(self.reward_token), abi=ERC20_MINT_ABI)
        amount_units = int(self.reward_amount * (10**REWARD_DECIMALS))
        return self._send(
            token.functions.mint(Web3.to_checksum_address(recipient), amount_units), gas=150_000, what="reward mint"
        )

    def attest_and_reward(self, job: JobDescriptor, recipient: str) -> MintResult:
        attestation_hash = self.create_attestation(job, recipient)
        reward_hash = self.mint_reward(recipient)
        return MintResult(attestation_hash=attestation_hash, reward_transaction_hash=reward_hash)

    def _send(self, fn_call, gas: int, what: str) -> str:
        account = self.account
        try:
            tx = fn_call.build_transaction(
                {
                    "from": account.address,
                    "chainId": self.chain_id,
                    "gas": gas,
                    "nonce": self.w3.eth.get_transaction_count(account.address, "pending"),
                }
            )
            signed = account.sign_transaction(tx)
            raw_tx = getattr(signed, "raw_transaction", None) or getattr(signed, "rawTransaction", None)
            tx_hash = self.w3.eth.send_raw_transaction(raw_tx)
            receipt = self.w3.eth.wait_for_transaction_receipt(tx_hash, timeout=self.receipt_timeout)
        except TimeExhausted as e:
            raise CollaboratorError(self.name, f"{what} not mined after {self.receipt_timeout}s") from e
        except (requests.RequestException, Web3Exception, ValueError) as e:
            raise CollaboratorError(self.name, f"{what} failed: {e}") from e
        hex_hash = Web3.to_hex(tx_hash)
        if receipt["status"] != 1:
            raise CollaboratorError(self.name, f"{what} reverted: {hex_hash}")
        logger.info("%s mined: %s", what.capitalize(), hex_hash)
        return hex_hash
