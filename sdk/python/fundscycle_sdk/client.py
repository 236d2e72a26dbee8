"""
Main FundsCycle RPC client - the I/O boundary to the cluster
"""

import asyncio
import base64
import binascii
import functools
import itertools
import logging
from typing import Any, Dict, List, Optional, Tuple

import base58
import requests

from .crypto import SignedTransaction
from .errors import ErrorContext, GatewayError, SubmissionError
from .models import Confirmation

logger = logging.getLogger("fundscycle.client")

COMMITMENT_LEVELS = ("processed", "confirmed", "finalized")


def commitment_satisfied(status: Optional[str], commitment: str) -> bool:
    if status not in COMMITMENT_LEVELS:
        return False
    return COMMITMENT_LEVELS.index(status) >= COMMITMENT_LEVELS.index(commitment)


def _account_data(value: Dict[str, Any]) -> bytes:
    data = value.get("data") if isinstance(value, dict) else None
    if isinstance(data, list) and data:
        data = data[0]
    if not isinstance(data, str):
        raise GatewayError("Unexpected account data format")
    try:
        return base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError) as e:
        raise GatewayError("Account data is not valid base64") from e


def _rpc_filters(filters: List[dict]) -> List[dict]:
    out = []
    for f in filters:
        if "memcmp" in f:
            memcmp = f["memcmp"]
            out.append({"memcmp": {
                "offset": memcmp["offset"],
                "bytes": base58.b58encode(memcmp["bytes"]).decode("ascii"),
            }})
        else:
            out.append(f)
    return out


class FundsCycleClient:
    """
    Async client for the Solana JSON-RPC endpoints the SDK needs.

    Each public method is an independent suspendable call. Blocking HTTP
    requests run in the loop's default executor. Nothing is retried here;
    retry policy belongs to the query layer.

    Example:
        >>> async with FundsCycleClient("https://api.devnet.solana.com") as client:
        ...     balance = await client.get_balance(vault_address)
    """

    def __init__(
        self,
        rpc_url: str = "https://api.devnet.solana.com",
        timeout: float = 30,
        commitment: str = "confirmed",
        confirm_timeout: float = 60,
        poll_interval: float = 0.5,
    ):
        """
        Initialize FundsCycle client.

        Args:
            rpc_url: JSON-RPC endpoint
            timeout: Request timeout in seconds (default: 30)
            commitment: Commitment level for reads and confirmation
            confirm_timeout: Seconds to wait for a submission to confirm
            poll_interval: Seconds between signature status polls
        """
        self.rpc_url = rpc_url
        self.timeout = timeout
        self.commitment = commitment
        self.confirm_timeout = confirm_timeout
        self.poll_interval = poll_interval
        self._ids = itertools.count(1)
        self.session = requests.Session()
        self.session.headers.update({
            'Content-Type': 'application/json',
        })

    def _post(self, method: str, params: list) -> Dict[str, Any]:
        """Make a JSON-RPC request and return the raw envelope"""
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        try:
            response = self.session.post(self.rpc_url, json=payload, timeout=self.timeout)
            response.raise_for_status()
            return response.json()
        except requests.RequestException as e:
            raise GatewayError(
                f"RPC transport error calling {method}",
                ErrorContext(query=method, debug_info={"error": str(e)}),
            ) from e
        except ValueError as e:
            raise GatewayError(
                f"RPC returned invalid JSON for {method}",
                ErrorContext(query=method),
            ) from e

    async def _call_raw(self, method: str, params: list) -> Dict[str, Any]:
        loop = asyncio.get_running_loop()
        envelope = await loop.run_in_executor(None, functools.partial(self._post, method, params))
        if not isinstance(envelope, dict):
            raise GatewayError(
                f"RPC returned a non-object envelope for {method}",
                ErrorContext(query=method),
            )
        return envelope

    async def _call(self, method: str, params: list) -> Any:
        envelope = await self._call_raw(method, params)
        if "error" in envelope:
            error = envelope["error"]
            raise GatewayError(
                f"RPC error from {method}: {_error_message(error)}",
                ErrorContext(query=method, debug_info={"error": error}),
            )
        if "result" not in envelope:
            raise GatewayError(
                f"RPC response for {method} has neither result nor error",
                ErrorContext(query=method),
            )
        return envelope["result"]

    # Account reads

    async def get_account(self, address: str) -> Optional[bytes]:
        """
        Fetch raw account data.

        Args:
            address: Account address (base58)

        Returns:
            Account bytes, or None if the account does not exist
        """
        result = await self._call("getAccountInfo", [
            address, {"encoding": "base64", "commitment": self.commitment},
        ])
        if not isinstance(result, dict) or "value" not in result:
            raise GatewayError(
                f"Malformed getAccountInfo response for {address}",
                ErrorContext(query="getAccountInfo", address=address),
            )
        if result["value"] is None:
            return None
        return _account_data(result["value"])

    async def account_exists(self, address: str) -> bool:
        """
        Check whether an account exists.

        Returns False only for a "not found" response; transport failures
        raise GatewayError.
        """
        return await self.get_account(address) is not None

    async def get_balance(self, address: str) -> int:
        """
        Get account balance.

        Returns:
            Balance in lamports
        """
        result = await self._call("getBalance", [address, {"commitment": self.commitment}])
        try:
            return int(result["value"])
        except (TypeError, KeyError, ValueError) as e:
            raise GatewayError(f"Malformed getBalance response for {address}") from e

    async def scan_program_accounts(
        self,
        program_id: str,
        filters: List[dict],
    ) -> List[Tuple[str, bytes]]:
        """
        Scan program-owned accounts matching every filter.

        Args:
            program_id: Owning program
            filters: memcmp ({"offset", "bytes"}) and dataSize filters, AND-combined

        Returns:
            List of (address, data) in no particular order
        """
        result = await self._call("getProgramAccounts", [program_id, {
            "encoding": "base64",
            "commitment": self.commitment,
            "filters": _rpc_filters(filters),
        }])
        if not isinstance(result, list):
            raise GatewayError("Malformed getProgramAccounts response")
        try:
            return [(item["pubkey"], _account_data(item["account"])) for item in result]
        except (KeyError, TypeError) as e:
            raise GatewayError("Malformed getProgramAccounts entry") from e

    async def get_latest_blockhash(self) -> str:
        result = await self._call("getLatestBlockhash", [{"commitment": self.commitment}])
        try:
            return result["value"]["blockhash"]
        except (TypeError, KeyError) as e:
            raise GatewayError("Malformed getLatestBlockhash response") from e

    # Submission

    async def submit(self, transaction: SignedTransaction) -> Confirmation:
        """
        Send a signed transaction and wait for the configured commitment.

        Args:
            transaction: Signed transaction

        Returns:
            Confirmation with signature and slot

        Raises:
            SubmissionError: if the cluster rejects it or it never confirms
        """
        encoded = base64.b64encode(transaction.serialize()).decode("ascii")
        envelope = await self._call_raw("sendTransaction", [encoded, {
            "encoding": "base64",
            "preflightCommitment": self.commitment,
        }])
        if "error" in envelope:
            error = envelope["error"]
            data = error.get("data") if isinstance(error, dict) else None
            logs = data.get("logs") if isinstance(data, dict) else None
            raise SubmissionError(
                f"Transaction rejected: {_error_message(error)}",
                reason=_rejection_reason(error, logs),
                signature=transaction.signature,
                context=ErrorContext(debug_info={"error": error}),
            )
        signature = envelope.get("result") or transaction.signature
        logger.info(f"Transaction sent: {signature[:16]}...", extra={"signature": signature})
        return await self._wait_for_confirmation(signature)

    async def _wait_for_confirmation(self, signature: str) -> Confirmation:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.confirm_timeout
        while True:
            try:
                result = await self._call("getSignatureStatuses", [
                    [signature], {"searchTransactionHistory": True},
                ])
            except GatewayError as e:
                raise SubmissionError(
                    f"Lost track of {signature[:16]}... while confirming",
                    reason=e.message,
                    signature=signature,
                    outcome_unknown=True,
                    context=e.context,
                ) from e
            entries = result.get("value") if isinstance(result, dict) else None
            entry = entries[0] if isinstance(entries, list) and entries else None
            if isinstance(entry, dict):
                if entry.get("err") is not None:
                    raise SubmissionError(
                        f"Transaction {signature[:16]}... failed",
                        reason=str(entry["err"]),
                        signature=signature,
                    )
                status = entry.get("confirmationStatus")
                if commitment_satisfied(status, self.commitment):
                    return Confirmation(
                        signature=signature,
                        slot=entry.get("slot"),
                        commitment=status,
                    )
            if loop.time() >= deadline:
                raise SubmissionError(
                    f"Timed out waiting for {signature[:16]}... to reach {self.commitment}",
                    reason="confirmation timeout",
                    signature=signature,
                    outcome_unknown=True,
                )
            await asyncio.sleep(self.poll_interval)

    def close(self):
        """Close the session"""
        self.session.close()

    async def __aenter__(self):
        return self

    async def __aexit__(self, *args):
        self.close()

    def __enter__(self):
        """Context manager entry"""
        return self

    def __exit__(self, *args):
        """Context manager exit"""
        self.close()


def _rejection_reason(error: Any, logs: Optional[List[str]]) -> str:
    if logs:
        for line in reversed(logs):
            if "Error Message:" in line:
                return line.split("Error Message:", 1)[1].strip().rstrip(".")
        return logs[-1]
    return _error_message(error)


def _error_message(error: Any) -> str:
    if isinstance(error, dict):
        return str(error.get("message", "unknown error"))
    return str(error)
