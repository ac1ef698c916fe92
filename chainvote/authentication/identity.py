# chainvote/authentication/identity.py

import hmac
import logging
import uuid

from sqlalchemy.exc import IntegrityError

from chainvote import db
from chainvote.authentication.rbac import UserRole
from chainvote.database.models import Voter
from chainvote.encryption.password_hashing import PasswordHashingService
from chainvote.encryption.wallet_signatures import WalletSignatureService
from chainvote.errors import NotFound, Unauthorized, ValidationError
from chainvote.security.input_validator import InputValidator
from chainvote.security.token_manager import TokenManager

logger = logging.getLogger(__name__)

REGISTRATION_FIELDS = ['nationalId', 'firstName', 'lastName', 'wallet', 'password']


def normalize_wallet(wallet):
    return wallet.strip().lower()


class IdentityService:
    """Voter registration, password login and nonce/signature login."""

    def __init__(self, session=None, audit_logger=None, password_service=None,
                 signatures=None, tokens=None, password_min_length=6):
        self.session = session or db.session
        self.audit_logger = audit_logger
        self.passwords = password_service or PasswordHashingService(min_length=password_min_length)
        self.signatures = signatures or WalletSignatureService()
        self.tokens = tokens or TokenManager()
        self.validator = InputValidator()

    def _audit(self, event_type, data, user_id=None):
        if self.audit_logger is not None:
            self.audit_logger.log_security_event(event_type, data, user_id)

    def find_by_wallet(self, wallet):
        return self.session.query(Voter).filter_by(wallet=normalize_wallet(wallet)).first()

    def register(self, data, role=UserRole.VOTER) -> Voter:
        data = data if isinstance(data, dict) else {}
        missing = self.validator.missing_fields(data, REGISTRATION_FIELDS)
        if missing:
            raise ValidationError("Faltan datos obligatorios.", errors=missing)
        if not all(isinstance(data[f], str) for f in REGISTRATION_FIELDS):
            raise ValidationError("Los campos deben ser texto.")

        if not self.validator.validate_national_id(data['nationalId']):
            raise ValidationError("Número de cédula inválido. Solo se permiten cédulas dominicanas válidas.")
        if not self.passwords.is_acceptable_password(data['password']):
            raise ValidationError(
                f"La contraseña debe tener al menos {self.passwords.min_length} caracteres "
                "y combinar letras, números o símbolos."
            )

        national_id = data['nationalId'].replace('-', '').strip()
        wallet = normalize_wallet(data['wallet'])
        first_name = self.validator.sanitize_string(data['firstName'], max_length=100)
        last_name = self.validator.sanitize_string(data['lastName'], max_length=100)
        if not first_name or not last_name:
            raise ValidationError("Faltan datos obligatorios.")

        self._check_unique(wallet, national_id)

        voter = Voter(
            national_id=national_id,
            first_name=first_name,
            last_name=last_name,
            wallet=wallet,
            password_hash=self.passwords.hash_password(data['password']),
            role=UserRole(role).value,
        )
        self.session.add(voter)
        try:
            self.session.commit()
        except IntegrityError:
            # Lost a race with a concurrent registration; report which key collided
            self.session.rollback()
            self._check_unique(wallet, national_id)
            raise ValidationError("No se pudo completar el registro.")

        self._audit('voter_registered', {'voter_id': voter.id, 'role': voter.role}, voter.wallet)
        return voter

    def _check_unique(self, wallet, national_id):
        if self.session.query(Voter.id).filter_by(wallet=wallet).first():
            raise ValidationError("Esta wallet ya está registrada.")
        if self.session.query(Voter.id).filter_by(national_id=national_id).first():
            raise ValidationError("Este número de cédula ya está registrado.")

    def issue_nonce(self, wallet) -> str:
        if not isinstance(wallet, str) or not wallet.strip():
            raise ValidationError("Wallet requerida.")
        voter = self.find_by_wallet(wallet)
        if voter is None:
            raise NotFound("Wallet no registrada.")

        voter.nonce = str(uuid.uuid4())
        self.session.commit()
        self._audit('nonce_issued', {'voter_id': voter.id}, voter.wallet)
        return voter.nonce

    def login_with_password(self, wallet, password):
        if not isinstance(wallet, str) or not wallet.strip() or not isinstance(password, str) or not password:
            raise ValidationError("Faltan datos.")
        voter = self.find_by_wallet(wallet)
        if voter is None:
            self._audit('failed_login', {'reason': 'unknown_wallet', 'method': 'password'})
            raise Unauthorized("Wallet no registrada.")
        if not self.passwords.verify_password(password, voter.password_hash):
            self._audit('failed_login', {'reason': 'bad_password', 'method': 'password'}, voter.wallet)
            raise Unauthorized("Wallet y/o contraseña incorrecta.")

        if self.passwords.needs_rehash(voter.password_hash):
            voter.password_hash = self.passwords.ph.hash(password)
            self.session.commit()

        self._audit('successful_login', {'method': 'password', 'role': voter.role}, voter.wallet)
        return voter, self.tokens.issue_credential(voter)

    def login_with_signature(self, wallet, signature, nonce):
        if not all(isinstance(v, str) and v.strip() for v in (wallet, signature, nonce)):
            raise ValidationError("Faltan datos.")
        voter = self.find_by_wallet(wallet)
        if voter is None:
            self._audit('failed_login', {'reason': 'unknown_wallet', 'method': 'signature'})
            raise Unauthorized("Wallet no registrada.")

        if not voter.nonce or not hmac.compare_digest(voter.nonce.encode('utf-8'), nonce.encode('utf-8')):
            self._audit('failed_login', {'reason': 'nonce_mismatch', 'method': 'signature'}, voter.wallet)
            raise Unauthorized("Nonce inválido.")
        if not self.signatures.verify(voter.wallet, signature, nonce):
            self._audit('failed_login', {'reason': 'bad_signature', 'method': 'signature'}, voter.wallet)
            raise Unauthorized("Firma inválida.")

        # Single use: cleared before the credential is issued
        voter.nonce = None
        self.session.commit()

        self._audit('successful_login', {'method': 'signature', 'role': voter.role}, voter.wallet)
        return voter, self.tokens.issue_credential(voter)
