"""
Solana RPC ledger gateway.

Wraps solana-py's AsyncClient and websocket API behind the LedgerGateway
interface. Library exceptions are translated at this edge:

- HTTP 429 → RateLimitedError
- other transport/HTTP failures → ConnectivityError
- send errors → SubmissionFailed carrying the node's message and logs
- confirmation expiry/timeouts → ConfirmationTimeout
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple, TypeVar

import httpx
from solana.exceptions import SolanaRpcException
from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Commitment, Confirmed
from solana.rpc.core import (
    RPCException,
    TransactionExpiredBlockheightExceededError,
    UnconfirmedTxError,
)
from solana.rpc.types import TokenAccountOpts, TxOpts
from solana.rpc.websocket_api import connect
from solders.address_lookup_table_account import AddressLookupTable, AddressLookupTableAccount
from solders.hash import Hash
from solders.instruction import Instruction
from solders.pubkey import Pubkey
from solders.rpc.config import RpcTransactionLogsFilterMentions
from solders.signature import Signature

from ....domain.exceptions import (
    ConfirmationTimeout,
    ConnectivityError,
    RateLimitedError,
    SubmissionFailed,
)
from ....domain.interfaces.ledger_gateway import LedgerGateway, LogCallback, LogSubscription
from ....models.ledger import LogBatch, ProgramAccount, SignatureStatus, TokenBalance
from ....utils.logging_setup import get_logger
from .binding import ProgramBinding

logger = get_logger(__name__)

T = TypeVar("T")

RECONNECT_DELAY_SEC = 5.0


def _translate(operation: str, error: Exception) -> Exception:
    cause = error.__cause__ if isinstance(error, SolanaRpcException) else error
    if isinstance(cause, httpx.HTTPStatusError) and cause.response.status_code == 429:
        return RateLimitedError(f"{operation}: rate limited by RPC")
    return ConnectivityError(f"{operation}: {cause or error}")


def _submission_message(error: RPCException) -> str:
    detail = error.args[0] if error.args else error
    message = getattr(detail, "message", None) or str(detail)
    data = getattr(detail, "data", None)
    logs = getattr(data, "logs", None) if data is not None else None
    if logs:
        message = f"{message} | logs: {' / '.join(logs)}"
    return message


class SolanaLogSubscription(LogSubscription):
    """Background websocket reader delivering program logs to a callback."""

    def __init__(self, ws_url: str, program_id: str, callback: LogCallback, commitment: Commitment):
        self._ws_url = ws_url
        self._program_id = program_id
        self._callback = callback
        self._commitment = commitment
        self._task: Optional[asyncio.Task] = None
        self._connected = asyncio.Event()

    async def start(self, connect_timeout: float = 10.0) -> None:
        self._task = asyncio.create_task(self._run(), name=f"logs-{self._program_id[:8]}")
        try:
            await asyncio.wait_for(self._connected.wait(), timeout=connect_timeout)
        except asyncio.TimeoutError:
            await self.unsubscribe()
            raise ConnectivityError(f"Log subscription to {self._ws_url} timed out")

    async def _run(self) -> None:
        mentions = RpcTransactionLogsFilterMentions(Pubkey.from_string(self._program_id))
        while True:
            try:
                async with connect(self._ws_url) as websocket:
                    await websocket.logs_subscribe(mentions, commitment=self._commitment)
                    await websocket.recv()
                    self._connected.set()
                    logger.info(f"Subscribed to logs of program {self._program_id}")
                    async for messages in websocket:
                        for message in messages:
                            value = message.result.value
                            await self._deliver(
                                LogBatch(signature=str(value.signature), logs=list(value.logs), err=value.err)
                            )
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning(f"Log subscription dropped ({e}), reconnecting in {RECONNECT_DELAY_SEC}s")
            await asyncio.sleep(RECONNECT_DELAY_SEC)

    async def _deliver(self, batch: LogBatch) -> None:
        try:
            await self._callback(batch)
        except Exception as e:
            logger.exception(f"Log callback failed for {batch.signature}: {e}")

    async def unsubscribe(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info(f"Unsubscribed from logs of program {self._program_id}")


class SolanaLedgerGateway(LedgerGateway):
    """LedgerGateway backed by a Solana JSON-RPC endpoint."""

    def __init__(
        self,
        rpc_url: str,
        program_id: str,
        ws_url: Optional[str] = None,
        commitment: Commitment = Confirmed,
        client: Optional[AsyncClient] = None,
    ):
        self.rpc_url = rpc_url
        self.ws_url = ws_url or rpc_url.replace("https://", "wss://").replace("http://", "ws://")
        self.commitment = commitment
        self.binding = ProgramBinding(program_id)
        self._client = client or AsyncClient(rpc_url, commitment=commitment)

    async def _call(self, operation: str, func: Callable[[], Awaitable[T]]) -> T:
        try:
            return await func()
        except (SolanaRpcException, httpx.HTTPError) as e:
            raise _translate(operation, e) from e

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def get_program_accounts(
        self, program_id: str, data_size: Optional[int] = None
    ) -> List[ProgramAccount]:
        filters = [data_size] if data_size is not None else None
        resp = await self._call(
            "getProgramAccounts",
            lambda: self._client.get_program_accounts(
                Pubkey.from_string(program_id), encoding="base64", filters=filters
            ),
        )
        return [ProgramAccount(address=str(item.pubkey), data=bytes(item.account.data)) for item in resp.value]

    async def get_account_info(self, address: str) -> Optional[bytes]:
        resp = await self._call(
            "getAccountInfo",
            lambda: self._client.get_account_info(Pubkey.from_string(address), encoding="base64"),
        )
        if resp.value is None:
            return None
        return bytes(resp.value.data)

    async def get_parsed_token_accounts(self, owner: str, token_program_id: str) -> List[TokenBalance]:
        resp = await self._call(
            "getTokenAccountsByOwner",
            lambda: self._client.get_token_accounts_by_owner_json_parsed(
                Pubkey.from_string(owner),
                TokenAccountOpts(program_id=Pubkey.from_string(token_program_id)),
            ),
        )
        balances: List[TokenBalance] = []
        for item in resp.value:
            info: Dict[str, Any] = item.account.data.parsed.get("info", {})
            token_amount = info.get("tokenAmount", {})
            try:
                amount = int(token_amount.get("amount", 0))
            except (TypeError, ValueError):
                continue
            balances.append(TokenBalance(mint=info.get("mint", ""), amount=amount, account=str(item.pubkey)))
        return balances

    async def get_address_lookup_table(self, address: str) -> Optional[AddressLookupTableAccount]:
        data = await self.get_account_info(address)
        if data is None:
            return None
        table = AddressLookupTable.deserialize(data)
        return AddressLookupTableAccount(key=Pubkey.from_string(address), addresses=list(table.addresses))

    # -------------------------------------------------------------------------
    # Submission
    # -------------------------------------------------------------------------

    async def get_latest_blockhash(self) -> Tuple[Hash, int]:
        resp = await self._call("getLatestBlockhash", lambda: self._client.get_latest_blockhash(self.commitment))
        return resp.value.blockhash, resp.value.last_valid_block_height

    async def send_transaction(self, raw_transaction: bytes) -> str:
        opts = TxOpts(skip_confirmation=True, skip_preflight=False, preflight_commitment=self.commitment)
        try:
            resp = await self._call(
                "sendTransaction", lambda: self._client.send_raw_transaction(raw_transaction, opts=opts)
            )
        except RPCException as e:
            raise SubmissionFailed(_submission_message(e)) from e
        return str(resp.value)

    async def confirm_transaction(
        self,
        signature: str,
        blockhash: Hash,
        last_valid_block_height: int,
        timeout: float,
    ) -> Optional[Any]:
        try:
            resp = await asyncio.wait_for(
                self._client.confirm_transaction(
                    Signature.from_string(signature),
                    commitment=self.commitment,
                    last_valid_block_height=last_valid_block_height,
                ),
                timeout=timeout,
            )
        except (asyncio.TimeoutError, UnconfirmedTxError, TransactionExpiredBlockheightExceededError) as e:
            raise ConfirmationTimeout(f"{signature} not confirmed: {e or 'timed out'}", signature=signature) from e
        except (SolanaRpcException, httpx.HTTPError) as e:
            raise _translate("confirmTransaction", e) from e

        status = resp.value[0] if resp.value else None
        return status.err if status is not None else None

    async def get_signature_status(self, signature: str) -> Optional[SignatureStatus]:
        resp = await self._call(
            "getSignatureStatuses",
            lambda: self._client.get_signature_statuses(
                [Signature.from_string(signature)], search_transaction_history=True
            ),
        )
        status = resp.value[0] if resp.value else None
        if status is None:
            return None
        confirmation = str(status.confirmation_status) if status.confirmation_status is not None else None
        return SignatureStatus(signature=signature, err=status.err, confirmation_status=confirmation)

    # -------------------------------------------------------------------------
    # Subscriptions
    # -------------------------------------------------------------------------

    async def on_logs(self, program_id: str, callback: LogCallback) -> LogSubscription:
        subscription = SolanaLogSubscription(self.ws_url, program_id, callback, self.commitment)
        await subscription.start()
        return subscription

    # -------------------------------------------------------------------------
    # Program binding
    # -------------------------------------------------------------------------

    def build_instruction(
        self,
        method: str,
        accounts: Dict[str, Optional[str]],
        args: Dict[str, Any],
        remaining_accounts: Sequence[str] = (),
    ) -> Instruction:
        return self.binding.build(method, accounts, args, remaining_accounts)

    async def close(self) -> None:
        await self._client.close()
