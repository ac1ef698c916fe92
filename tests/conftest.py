# tests/conftest.py
import pytest
from eth_account import Account
from eth_account.messages import encode_defunct

from chainvote import create_app, db
from chainvote.authentication.identity import IdentityService
from chainvote.authentication.rbac import UserRole
from chainvote.database.models import Candidate
from chainvote.ledger.client import ElectionStatus, LedgerClient, ResultEntry, VoteOutcome, WinnerInfo
from chainvote.security.token_manager import TokenManager

# 001-0000010-8, 001-0000020-7 and 001-0000003-3 all carry a correct check digit
VALID_NATIONAL_ID = '001-0000010-8'
OTHER_NATIONAL_IDS = ['001-0000020-7', '001-0000003-3']

VOTER_ACCOUNT = Account.from_key('0x' + '11' * 32)
OBSERVER_ACCOUNT = Account.from_key('0x' + '22' * 32)
ADMIN_ACCOUNT = Account.from_key('0x' + '33' * 32)


class FakeLedger:
    """In-process stand-in for LedgerClient backed by plain dicts."""

    def __init__(self):
        self.elections = {}
        self.next_id = 1
        self.calls = []
        self.errors = {}  # method name -> exception to raise
        self.end_result = True
        self.vote_outcome = None
        self.connected = True

    def _maybe_raise(self, name):
        self.calls.append(name)
        if name in self.errors:
            raise self.errors[name]

    def is_connected(self):
        return self.connected

    def start_election(self, title, candidate_names, gas=None):
        self._maybe_raise('start_election')
        on_chain_id = self.next_id
        self.next_id += 1
        self.elections[on_chain_id] = {
            'title': title,
            'names': list(candidate_names),
            'started': True,
            'ended': False,
            'votes': [0] * len(candidate_names),
            'voters': set(),
        }
        return on_chain_id

    def end_election(self, on_chain_id, gas=None):
        self._maybe_raise('end_election')
        if not self.end_result or on_chain_id not in self.elections:
            return False
        self.elections[on_chain_id]['ended'] = True
        return True

    def get_status(self, on_chain_id):
        self._maybe_raise('get_status')
        election = self.elections.get(on_chain_id)
        if election is None:
            return None
        return ElectionStatus(
            title=election['title'],
            started=election['started'],
            ended=election['ended'],
            candidate_count=len(election['names']),
        )

    def get_results(self, on_chain_id, strict=False):
        self._maybe_raise('get_results')
        election = self.elections.get(on_chain_id)
        if election is None:
            return []
        return [ResultEntry(name, votes) for name, votes in zip(election['names'], election['votes'])]

    def has_voted(self, on_chain_id, address):
        self._maybe_raise('has_voted')
        LedgerClient._checksum(address)
        election = self.elections.get(on_chain_id)
        return election is not None and address.lower() in election['voters']

    def get_winner(self, on_chain_id):
        self._maybe_raise('get_winner')
        election = self.elections.get(on_chain_id)
        if election is None:
            return None
        votes = election['votes']
        top = max(votes) if votes else 0
        if votes.count(top) > 1 and top > 0:
            return WinnerInfo('', top, True)
        if top == 0:
            return WinnerInfo('', 0, False)
        return WinnerInfo(election['names'][votes.index(top)], top, False)

    def vote_for(self, on_chain_id, candidate_index, voter_address, gas=None):
        self._maybe_raise('vote_for')
        LedgerClient._checksum(voter_address)
        if self.vote_outcome is not None:
            return self.vote_outcome
        election = self.elections[on_chain_id]
        if not 0 <= candidate_index < len(election['names']):
            return VoteOutcome.CANDIDATE_NOT_FOUND
        if voter_address.lower() in election['voters']:
            return VoteOutcome.CONTRACT_REJECTED
        election['votes'][candidate_index] += 1
        election['voters'].add(voter_address.lower())
        return VoteOutcome.SUCCESS


@pytest.fixture
def ledger():
    return FakeLedger()


@pytest.fixture
def app_config(tmp_path):
    return {
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'RATELIMIT_ENABLED': False,
        'JWT_SECRET_KEY': 'test-jwt-secret-key-with-enough-length-for-hs256',
        'AUDIT_LOG_DIR': str(tmp_path / 'audit'),
    }


@pytest.fixture
def app(app_config, ledger):
    app = create_app(app_config, ledger=ledger)
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    with app.test_client() as client:
        yield client


@pytest.fixture
def audit_logger(app):
    return app.extensions['audit_logger']


@pytest.fixture
def make_user(app):
    """Register a user directly through the identity service."""
    counter = iter(range(len(OTHER_NATIONAL_IDS) + 1))
    national_ids = [VALID_NATIONAL_ID] + OTHER_NATIONAL_IDS

    def _make(account, role=UserRole.VOTER, password='secret1', first_name='Ana', last_name='Pérez'):
        service = IdentityService()
        return service.register({
            'nationalId': national_ids[next(counter)],
            'firstName': first_name,
            'lastName': last_name,
            'wallet': account.address,
            'password': password,
        }, role=role)
    return _make


@pytest.fixture
def token_for(app):
    def _token(voter):
        return TokenManager().issue_credential(voter)
    return _token


@pytest.fixture
def make_candidates(app):
    def _make(*names):
        candidates = []
        for name in names:
            first, _, last = name.partition(' ')
            candidate = Candidate(first_name=first, last_name=last or 'X')
            db.session.add(candidate)
            candidates.append(candidate)
        db.session.commit()
        return candidates
    return _make


def auth_headers(token):
    return {'Authorization': f'Bearer {token}'}


def sign_text(account, text):
    signed = Account.sign_message(encode_defunct(text=text), private_key=account.key)
    return signed.signature.hex()
