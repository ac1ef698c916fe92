# chainvote/ledger/client.py
"""Adapter over the election smart contract.

The contract owns election creation, vote casting, tallying and the winner;
this module only translates between Python values and contract calls. It
keeps no local state beyond the web3 connection and the signing account,
and it never retries a write: a failed or timed-out ``start_election``,
``end_election`` or ``vote_for`` is reported to the caller as is.

Exception hierarchy:
- LedgerError: Transport or decoding failure (transient)
  - LedgerRejected: The contract definitely refused the transaction
  - LedgerTimeout: A write was not confirmed in time; it may still be mined
  - InvalidAddress: A wallet address that cannot be checksummed
"""

import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

import requests
from eth_account import Account
from web3 import Web3
from web3.exceptions import ContractLogicError, TimeExhausted
from web3.logs import DISCARD

logger = logging.getLogger(__name__)


class LedgerError(Exception):
    """Base class for ledger call failures."""
    pass


class LedgerRejected(LedgerError):
    """Raised when the contract reverted or emitted no creation event."""
    pass


class LedgerTimeout(LedgerError):
    """Raised when a transaction receipt did not arrive within the bound."""
    pass


class InvalidAddress(LedgerError):
    """Raised for wallet strings that are not ledger addresses."""
    pass


@dataclass(frozen=True)
class ElectionStatus:
    title: str
    started: bool
    ended: bool
    candidate_count: int

    def to_dict(self):
        return {
            'title': self.title,
            'started': self.started,
            'ended': self.ended,
            'candidatesCount': self.candidate_count,
        }


@dataclass(frozen=True)
class ResultEntry:
    candidate_name: str
    votes: int

    def to_dict(self):
        return {'candidateName': self.candidate_name, 'votes': self.votes}


@dataclass(frozen=True)
class WinnerInfo:
    winner_name: str
    winner_votes: int
    is_tie: bool


class VoteOutcome(Enum):
    SUCCESS = "success"
    CANDIDATE_NOT_FOUND = "candidate_not_found"
    CONTRACT_REJECTED = "contract_rejected"
    ERROR = "error"


def load_private_key(config) -> str:
    """Read the signing key, preferring a mounted secret file over the environment."""
    key_file = config.get('LEDGER_PRIVATE_KEY_FILE')
    if key_file:
        with open(key_file, 'r') as f:
            key = f.read().strip()
        if key:
            return key
    key = config.get('LEDGER_PRIVATE_KEY')
    if not key:
        raise RuntimeError("LEDGER_PRIVATE_KEY_FILE or LEDGER_PRIVATE_KEY is required")
    return key


class LedgerClient:
    def __init__(self, w3, contract, account, gas_limit=900000, tx_timeout=120):
        self.w3 = w3
        self.contract = contract
        self.account = account
        self.gas_limit = gas_limit
        self.tx_timeout = tx_timeout

    @classmethod
    def from_config(cls, config) -> "LedgerClient":
        rpc_url = config.get('LEDGER_RPC_URL')
        if not rpc_url:
            raise RuntimeError("LEDGER_RPC_URL is required")
        contract_address = config.get('LEDGER_CONTRACT_ADDRESS')
        if not contract_address:
            raise RuntimeError("LEDGER_CONTRACT_ADDRESS is required")

        w3 = Web3(Web3.HTTPProvider(
            rpc_url,
            request_kwargs={'timeout': config.get('LEDGER_REQUEST_TIMEOUT', 10)},
        ))
        with open(config['LEDGER_CONTRACT_ABI_PATH'], 'r') as f:
            abi = json.load(f)
        contract = w3.eth.contract(address=Web3.to_checksum_address(contract_address), abi=abi)
        account = Account.from_key(load_private_key(config))
        logger.info("Ledger client bound to %s as %s", contract_address, account.address)
        return cls(
            w3,
            contract,
            account,
            gas_limit=config.get('LEDGER_GAS_LIMIT', 900000),
            tx_timeout=config.get('LEDGER_TX_TIMEOUT', 120),
        )

    def is_connected(self) -> bool:
        try:
            return bool(self.w3.is_connected())
        except Exception:
            return False

    @staticmethod
    def _checksum(address: str) -> str:
        # Ledger addresses are case-insensitive; checksumming normalises the case
        try:
            return Web3.to_checksum_address(address.strip().lower())
        except (ValueError, TypeError, AttributeError) as e:
            raise InvalidAddress(f"Invalid ledger address: {address!r}") from e

    def _transact(self, fn, gas=None):
        tx = fn.build_transaction({
            'from': self.account.address,
            'nonce': self.w3.eth.get_transaction_count(self.account.address),
            'gas': gas or self.gas_limit,
        })
        signed = self.account.sign_transaction(tx)
        try:
            tx_hash = self.w3.eth.send_raw_transaction(signed.raw_transaction)
        except requests.exceptions.Timeout as e:
            raise LedgerTimeout("Transaction submission timed out") from e
        try:
            return self.w3.eth.wait_for_transaction_receipt(tx_hash, timeout=self.tx_timeout)
        except (TimeExhausted, requests.exceptions.Timeout) as e:
            raise LedgerTimeout(f"Transaction {tx_hash.hex()} not confirmed after {self.tx_timeout}s") from e

    def start_election(self, title: str, candidate_names: List[str], gas=None) -> int:
        """Create the election on-chain and return the id from its ElectionStarted event."""
        logger.info("startNewElection title=%r candidates=%r", title, candidate_names)
        try:
            receipt = self._transact(
                self.contract.functions.startNewElection(title, list(candidate_names)), gas
            )
        except LedgerTimeout:
            raise
        except ContractLogicError as e:
            raise LedgerRejected(f"startNewElection reverted: {e}") from e
        except Exception as e:
            raise LedgerError(f"startNewElection failed: {e}") from e

        if receipt['status'] != 1:
            raise LedgerRejected("startNewElection transaction reverted")

        events = self.contract.events.ElectionStarted().process_receipt(receipt, errors=DISCARD)
        if not events:
            raise LedgerRejected("No ElectionStarted event in receipt")
        on_chain_id = int(events[0]['args']['electionId'])
        logger.info("ElectionStarted event found, on-chain id %s", on_chain_id)
        return on_chain_id

    def end_election(self, on_chain_id: int, gas=None) -> bool:
        try:
            receipt = self._transact(self.contract.functions.endElection(on_chain_id), gas)
        except LedgerTimeout:
            raise
        except Exception as e:
            logger.warning("endElection(%s) failed: %s", on_chain_id, e)
            return False
        logger.info("endElection(%s) status %s", on_chain_id, receipt['status'])
        return receipt['status'] == 1

    def get_status(self, on_chain_id: int) -> Optional[ElectionStatus]:
        try:
            title, started, ended, count = self.contract.functions.getElectionStatus(on_chain_id).call()
        except Exception as e:
            logger.warning("getElectionStatus(%s) failed: %s", on_chain_id, e)
            return None
        # An unknown id reads back as the zero-valued struct
        if not title and not started and not ended and int(count) == 0:
            return None
        return ElectionStatus(title=title, started=bool(started), ended=bool(ended), candidate_count=int(count))

    def get_results(self, on_chain_id: int, strict=False) -> List[ResultEntry]:
        """Zip the contract's parallel name/vote arrays in ledger order.

        Errors yield an empty list unless ``strict`` is set, in which case
        they raise LedgerError.
        """
        try:
            names, votes = self.contract.functions.getResults(on_chain_id).call()
        except Exception as e:
            logger.warning("getResults(%s) failed: %s", on_chain_id, e)
            if strict:
                raise LedgerError(f"getResults failed: {e}") from e
            return []
        return [ResultEntry(candidate_name=name, votes=int(count)) for name, count in zip(names, votes)]

    def has_voted(self, on_chain_id: int, address: str) -> bool:
        voter = self._checksum(address)
        try:
            return bool(self.contract.functions.hasAddressVoted(on_chain_id, voter).call())
        except Exception as e:
            raise LedgerError(f"hasAddressVoted failed: {e}") from e

    def get_winner(self, on_chain_id: int) -> Optional[WinnerInfo]:
        # Only meaningful once getElectionStatus reports ended
        try:
            name, votes, is_tie = self.contract.functions.getWinner(on_chain_id).call()
        except Exception as e:
            logger.warning("getWinner(%s) failed: %s", on_chain_id, e)
            return None
        return WinnerInfo(winner_name=name, winner_votes=int(votes), is_tie=bool(is_tie))

    def vote_for(self, on_chain_id: int, candidate_index: int, voter_address: str, gas=None) -> VoteOutcome:
        voter = self._checksum(voter_address)
        status = self.get_status(on_chain_id)
        if status is not None and not 0 <= candidate_index < status.candidate_count:
            return VoteOutcome.CANDIDATE_NOT_FOUND

        logger.info("voteFor election=%s index=%s voter=%s", on_chain_id, candidate_index, voter)
        try:
            receipt = self._transact(
                self.contract.functions.voteFor(on_chain_id, candidate_index, voter), gas
            )
        except LedgerTimeout:
            raise
        except ContractLogicError as e:
            logger.warning("voteFor reverted: %s", e)
            return VoteOutcome.CONTRACT_REJECTED
        except Exception as e:
            logger.warning("voteFor failed: %s", e)
            return VoteOutcome.ERROR
        return VoteOutcome.SUCCESS if receipt['status'] == 1 else VoteOutcome.CONTRACT_REJECTED
