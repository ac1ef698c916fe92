# chainvote/voting/submission.py

import logging
from dataclasses import dataclass
from enum import Enum

from sqlalchemy.exc import SQLAlchemyError

from chainvote import db
from chainvote.authentication.rbac import UserRole
from chainvote.database.models import Election, Vote
from chainvote.elections.index_mapper import CandidateIndexMapper
from chainvote.errors import (
    ChainVoteError, Forbidden, InconsistencyError, LedgerAmbiguous, LedgerFailure,
    LedgerUnavailable, NotFound, ValidationError,
)
from chainvote.ledger.client import InvalidAddress, LedgerError, LedgerTimeout, VoteOutcome
from chainvote.security.input_validator import InputValidator

logger = logging.getLogger(__name__)

# Vote submission runs Received -> LocallyValidated -> ChainChecked ->
# ChainSubmitted -> LocallyRecorded. Any failure before the last stage aborts
# without a local write. The ledger, not the local store, decides whether a
# wallet has already voted; the local Vote row is an anonymous receipt.


class VoteStage(Enum):
    RECEIVED = "Received"
    LOCALLY_VALIDATED = "LocallyValidated"
    CHAIN_CHECKED = "ChainChecked"
    CHAIN_SUBMITTED = "ChainSubmitted"
    LOCALLY_RECORDED = "LocallyRecorded"


class SigningMode(Enum):
    SERVER = "server"  # backend sends voteFor and waits for the receipt
    CLIENT = "client"  # the wallet already sent the transaction; treated as confirmed


@dataclass
class VoteSubmission:
    vote: Vote
    stage: VoteStage
    on_chain_id: int
    candidate_index: int


class VoteSubmissionService:
    def __init__(self, ledger, signing_mode=SigningMode.SERVER, session=None, audit_logger=None, mapper=None):
        self.ledger = ledger
        self.signing_mode = SigningMode(signing_mode)
        self.session = session or db.session
        self.audit_logger = audit_logger
        self.mapper = mapper or CandidateIndexMapper(self.session)
        self.validator = InputValidator()

    def _audit(self, event_type, data):
        if self.audit_logger is not None:
            self.audit_logger.log_security_event(event_type, data)

    def _require_ledger(self):
        if self.ledger is None:
            raise LedgerUnavailable("El servicio de blockchain no está configurado.")
        return self.ledger

    def submit(self, role, wallet, candidate_id, election_id, identity=None) -> VoteSubmission:
        stage = VoteStage.RECEIVED
        try:
            if role != UserRole.VOTER.value:
                raise Forbidden("Solo los votantes pueden emitir votos.")

            candidate_id = self.validator.parse_positive_int(candidate_id)
            on_chain_id = self.validator.parse_positive_int(election_id)
            if not isinstance(wallet, str) or not wallet.strip() or candidate_id is None or on_chain_id is None:
                raise ValidationError("Faltan datos.")
            wallet = wallet.strip()
            if identity is not None and identity.lower() != wallet.lower():
                raise Forbidden("La wallet no corresponde al votante autenticado.")

            election = self.session.query(Election).filter_by(on_chain_id=on_chain_id).first()
            if election is None:
                raise ValidationError("La elección no está registrada localmente.")
            stage = VoteStage.LOCALLY_VALIDATED

            ledger = self._require_ledger()
            status = ledger.get_status(on_chain_id)
            if status is not None and (not status.started or status.ended):
                raise ValidationError("La elección no está activa actualmente.")

            try:
                candidate_index = self.mapper.index_of(election.id, candidate_id)
            except NotFound:
                raise ValidationError("El candidato no pertenece a esta elección.")

            try:
                already_voted = ledger.has_voted(on_chain_id, wallet)
            except InvalidAddress:
                raise ValidationError("La wallet no es una dirección válida.")
            except LedgerError as e:
                logger.error("hasVoted check failed for election %s: %s", on_chain_id, e)
                raise LedgerFailure("No se pudo verificar el voto en la cadena.")
            if already_voted:
                raise ValidationError("Esta wallet ya ha votado en la cadena.")
            stage = VoteStage.CHAIN_CHECKED

            if self.signing_mode is SigningMode.SERVER:
                try:
                    outcome = ledger.vote_for(on_chain_id, candidate_index, wallet)
                except InvalidAddress:
                    raise ValidationError("La wallet no es una dirección válida.")
                except LedgerTimeout as e:
                    logger.error("voteFor timed out for election %s: %s", on_chain_id, e)
                    raise LedgerAmbiguous(
                        "El voto no se confirmó a tiempo en la cadena; consulte si ya votó antes de reintentar."
                    )
            else:
                logger.warning(
                    "Client signing mode: vote for election %s accepted as confirmed without a server transaction",
                    on_chain_id,
                )
                outcome = VoteOutcome.SUCCESS

            if outcome is VoteOutcome.CANDIDATE_NOT_FOUND:
                raise ValidationError("Candidato no encontrado en la cadena.")
            if outcome is VoteOutcome.CONTRACT_REJECTED:
                raise LedgerFailure("El contrato rechazó el voto.")
            if outcome is not VoteOutcome.SUCCESS:
                raise LedgerFailure("Error al emitir el voto en la cadena.")
            stage = VoteStage.CHAIN_SUBMITTED

            vote = Vote(election_id=election.id)
            self.session.add(vote)
            try:
                self.session.commit()
            except SQLAlchemyError as e:
                self.session.rollback()
                logger.error("Vote accepted on-chain for election %s but receipt not stored: %s", on_chain_id, e)
                self._audit('ledger_local_inconsistency', {
                    'operation': 'submit_vote',
                    'on_chain_id': on_chain_id,
                    'error': str(e),
                })
                raise InconsistencyError(
                    "El voto se registró en la cadena pero no pudo guardarse el comprobante local."
                )
            stage = VoteStage.LOCALLY_RECORDED
        except ChainVoteError as e:
            self._audit('vote_rejected', {'stage': stage.value, 'reason': e.title, 'on_chain_id': election_id})
            raise

        self._audit('vote_recorded', {'on_chain_id': on_chain_id, 'mode': self.signing_mode.value})
        return VoteSubmission(vote=vote, stage=stage, on_chain_id=on_chain_id, candidate_index=candidate_index)

    def has_voted(self, wallet, election_id) -> bool:
        on_chain_id = self.validator.parse_positive_int(election_id)
        if not isinstance(wallet, str) or not wallet.strip() or on_chain_id is None:
            raise ValidationError("Parámetros inválidos.")

        exists = self.session.query(Election.id).filter_by(on_chain_id=on_chain_id).first()
        if exists is None:
            raise NotFound("La elección no está registrada localmente.")

        try:
            return self._require_ledger().has_voted(on_chain_id, wallet.strip())
        except InvalidAddress:
            raise ValidationError("La wallet no es una dirección válida.")
        except LedgerError as e:
            logger.error("hasVoted query failed for election %s: %s", on_chain_id, e)
            raise LedgerFailure("No se pudo consultar la blockchain.")
