# chainvote/elections/reconciliation.py
"""Keeps the local election records consistent with the election contract.

The ledger is authoritative for live status, vote counts and the winner; the
local store holds the election/candidate mirror and observer attestations.
Writes that depend on a ledger call happen strictly after the call returns:

- create: ledger first, then the local Election and its candidate slots in one
  transaction. A ledger failure writes nothing locally. A local failure after
  a ledger success is flagged in the audit log as an inconsistency.
- end: ledger first; only a confirmed end marks the local row finalized.

Reads merge both sources into a single view (state, results, integrity hash).
"""

import hashlib
import logging
from enum import Enum
from typing import List, Optional, Tuple

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from chainvote import db
from chainvote.database.models import Candidate, Election, ElectionSignature
from chainvote.elections.index_mapper import CandidateIndexMapper
from chainvote.encryption.wallet_signatures import WalletSignatureService
from chainvote.errors import (
    Conflict, InconsistencyError, LedgerAmbiguous, LedgerFailure,
    LedgerUnavailable, NotFound, ValidationError,
)
from chainvote.ledger.client import ElectionStatus, LedgerError, LedgerRejected, LedgerTimeout, ResultEntry
from chainvote.security.input_validator import InputValidator

logger = logging.getLogger(__name__)


class ElectionState(Enum):
    NOT_STARTED = "NotStarted"
    ACTIVE = "Active"
    FINALIZED = "Finalized"
    UNKNOWN = "Unknown"


def derive_state(status: Optional[ElectionStatus]) -> ElectionState:
    """Unified state from the ledger's two flags; local flags never override it."""
    if status is None:
        return ElectionState.UNKNOWN
    if status.ended:
        return ElectionState.FINALIZED
    if status.started:
        return ElectionState.ACTIVE
    return ElectionState.NOT_STARTED


def canonical_results(results: List[ResultEntry]) -> str:
    # Ledger order, never re-sorted
    return ''.join(f"{entry.candidate_name}:{entry.votes};" for entry in results)


def compute_integrity_hash(results: List[ResultEntry]) -> str:
    return hashlib.sha256(canonical_results(results).encode('utf-8')).hexdigest()


class ElectionReconciliationService:
    def __init__(self, ledger, session=None, audit_logger=None, signatures=None, mapper=None):
        self.ledger = ledger
        self.session = session or db.session
        self.audit_logger = audit_logger
        self.signatures = signatures or WalletSignatureService()
        self.mapper = mapper or CandidateIndexMapper(self.session)
        self.validator = InputValidator()

    def _require_ledger(self):
        if self.ledger is None:
            raise LedgerUnavailable("El servicio de blockchain no está configurado.")
        return self.ledger

    def _audit(self, event_type, data, user_id=None):
        if self.audit_logger is not None:
            self.audit_logger.log_security_event(event_type, data, user_id)

    def _flag_inconsistency(self, operation, on_chain_id, error):
        logger.error(
            "Ledger/local inconsistency during %s: on-chain election %s has no local mirror (%s)",
            operation, on_chain_id, error,
        )
        self._audit('ledger_local_inconsistency', {
            'operation': operation,
            'on_chain_id': on_chain_id,
            'error': str(error),
        })

    # ------------------------------------------------------------------ writes

    def create_election(self, title, candidate_ids, actor=None) -> Election:
        if not isinstance(title, str) or not title.strip() or not isinstance(candidate_ids, list) or not candidate_ids:
            raise ValidationError("Debe proporcionar un título y al menos un candidato.")
        title = self.validator.sanitize_string(title, max_length=200)
        if not title:
            raise ValidationError("Debe proporcionar un título y al menos un candidato.")

        ids = [self.validator.parse_positive_int(cid) for cid in candidate_ids]
        if any(cid is None for cid in ids):
            raise ValidationError("Los identificadores de candidato deben ser enteros positivos.")
        duplicates = sorted({cid for cid in ids if ids.count(cid) > 1})
        if duplicates:
            listed = ", ".join(str(cid) for cid in duplicates)
            raise ValidationError(
                f"Un candidato no puede aparecer dos veces en la misma elección (repetidos: {listed}).",
                errors={'candidateIds': [f"Candidato {cid} repetido." for cid in duplicates]},
            )

        found = {c.id: c for c in self.session.query(Candidate).filter(Candidate.id.in_(ids)).all()}
        unknown = [cid for cid in ids if cid not in found]
        if unknown:
            raise ValidationError(
                "Algunos candidatos no existen.",
                errors={'candidateIds': [f"Candidato {cid} no encontrado." for cid in unknown]},
            )
        # Submission order defines the on-chain slot of each candidate
        names = [found[cid].full_name for cid in ids]

        ledger = self._require_ledger()
        try:
            on_chain_id = ledger.start_election(title, names)
        except LedgerTimeout as e:
            logger.error("startElection timed out: %s", e)
            raise LedgerAmbiguous(
                "La creación de la elección en la blockchain no se confirmó a tiempo; "
                "verifique su estado antes de reintentar."
            )
        except (LedgerRejected, LedgerError) as e:
            logger.error("startElection failed: %s", e)
            raise LedgerFailure("Error al iniciar la elección en el contrato.")

        try:
            election = Election(title=title, on_chain_id=on_chain_id, started=True, finalized=False)
            self.session.add(election)
            self.session.flush()
            self.mapper.assign(election, ids)
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            self._flag_inconsistency('create_election', on_chain_id, e)
            raise InconsistencyError(
                f"La elección se creó en la blockchain (ID {on_chain_id}) pero no pudo guardarse "
                "localmente. Requiere reconciliación manual."
            )

        logger.info("Election %r created with on-chain id %s", title, on_chain_id)
        self._audit('election_created', {
            'election_id': election.id,
            'on_chain_id': on_chain_id,
            'candidate_ids': ids,
        }, actor)
        return election

    def end_election(self, on_chain_id, actor=None) -> Optional[Election]:
        ledger = self._require_ledger()
        try:
            ended = ledger.end_election(on_chain_id)
        except LedgerTimeout as e:
            logger.error("endElection(%s) timed out: %s", on_chain_id, e)
            raise LedgerAmbiguous(
                f"La finalización de la elección {on_chain_id} no se confirmó a tiempo; "
                "verifique su estado antes de reintentar."
            )
        if not ended:
            self._audit('election_end_failed', {'on_chain_id': on_chain_id}, actor)
            raise LedgerFailure(f"No se pudo finalizar la elección {on_chain_id} en la blockchain.")

        election = self.find_by_on_chain_id(on_chain_id)
        if election is None:
            logger.warning("Election %s ended on-chain but is not registered locally", on_chain_id)
        elif not election.finalized:
            try:
                election.finalized = True
                self.session.commit()
            except SQLAlchemyError as e:
                self.session.rollback()
                self._flag_inconsistency('end_election', on_chain_id, e)
                raise InconsistencyError(
                    f"La elección {on_chain_id} se finalizó en la blockchain pero no pudo "
                    "marcarse localmente. Requiere reconciliación manual."
                )

        self._audit('election_ended', {'on_chain_id': on_chain_id}, actor)
        return election

    def record_signature(self, on_chain_id, integrity_hash, observer_name, observer_public_key,
                         observer_signature) -> ElectionSignature:
        if not integrity_hash or not observer_public_key or not observer_signature:
            raise ValidationError("Faltan datos obligatorios.")
        if not all(isinstance(v, str) for v in (integrity_hash, observer_public_key, observer_signature)):
            raise ValidationError("Faltan datos obligatorios.")
        if not self.validator.validate_integrity_hash(integrity_hash):
            raise ValidationError("El hash de integridad debe ser un SHA-256 hexadecimal en minúsculas.")

        public_key = observer_public_key.strip().lower()
        exists = self.session.query(ElectionSignature).filter_by(
            on_chain_id=on_chain_id,
            integrity_hash=integrity_hash,
            observer_public_key=public_key,
        ).first()
        if exists:
            raise Conflict("Este observador ya ha firmado este resultado.")

        message = self.signatures.integrity_message(integrity_hash)
        try:
            recovered = self.signatures.recover_address(message, observer_signature)
        except Exception as e:
            raise ValidationError(f"Error al validar firma: {e}")
        if recovered.lower() != public_key:
            raise ValidationError(
                f"Firma no válida. La firma corresponde a {recovered}, pero se esperaba {observer_public_key}"
            )

        name = self.validator.sanitize_string(observer_name, max_length=200) if isinstance(observer_name, str) else ''
        signature = ElectionSignature(
            on_chain_id=on_chain_id,
            integrity_hash=integrity_hash,
            observer_name=name,
            observer_public_key=public_key,
            observer_signature=observer_signature,
        )
        self.session.add(signature)
        try:
            self.session.commit()
        except IntegrityError:
            # A concurrent request stored the same triple first
            self.session.rollback()
            raise Conflict("Este observador ya ha firmado este resultado.")
        except SQLAlchemyError:
            self.session.rollback()
            logger.exception("Could not store signature for election %s", on_chain_id)
            raise

        self._audit('result_signed', {
            'on_chain_id': on_chain_id,
            'integrity_hash': integrity_hash,
            'observer_public_key': public_key,
        })
        return signature

    # ------------------------------------------------------------------- reads

    def find_by_on_chain_id(self, on_chain_id) -> Optional[Election]:
        return self.session.query(Election).filter_by(on_chain_id=on_chain_id).first()

    def get_status(self, on_chain_id) -> Optional[ElectionStatus]:
        return self._require_ledger().get_status(on_chain_id)

    def state_of(self, election) -> ElectionState:
        if self.ledger is None:
            return ElectionState.UNKNOWN
        return derive_state(self.ledger.get_status(election.on_chain_id))

    def list_elections(self) -> List[Tuple[Election, ElectionState]]:
        elections = self.session.query(Election).order_by(Election.id).all()
        return [(election, self.state_of(election)) for election in elections]

    def get_election(self, election_id) -> Tuple[Election, ElectionState]:
        election = self.session.get(Election, election_id)
        if election is None:
            raise NotFound("Elección no encontrada.")
        return election, self.state_of(election)

    def list_finalized(self) -> List[Election]:
        return self.session.query(Election).filter_by(finalized=True).order_by(Election.id).all()

    def candidates_of(self, election_id):
        return self.mapper.slots(election_id)

    def get_results(self, on_chain_id) -> List[ResultEntry]:
        return self._require_ledger().get_results(on_chain_id)

    def get_results_with_integrity(self, on_chain_id) -> Tuple[List[ResultEntry], str]:
        try:
            results = self._require_ledger().get_results(on_chain_id, strict=True)
        except LedgerError as e:
            logger.error("Cannot hash results of election %s: %s", on_chain_id, e)
            raise LedgerFailure("No se pudieron obtener los resultados desde la blockchain.")
        return results, compute_integrity_hash(results)

    def get_winner(self, on_chain_id) -> Optional[dict]:
        """Winner summary, or None while the ledger does not report the election ended."""
        ledger = self._require_ledger()
        status = ledger.get_status(on_chain_id)
        if status is None or not status.ended:
            return None
        winner = ledger.get_winner(on_chain_id)
        if winner is None:
            return None

        if winner.is_tie:
            return {
                'winner': None,
                'votes': 0,
                'isTie': True,
                'message': "Empate entre candidatos. No hay un ganador claro.",
            }
        if not winner.winner_name or not winner.winner_name.strip():
            return {
                'winner': None,
                'votes': winner.winner_votes,
                'isTie': False,
                'message': "No hay votos registrados.",
            }
        return {
            'winner': winner.winner_name,
            'votes': winner.winner_votes,
            'isTie': False,
            'message': f"El ganador es {winner.winner_name} con {winner.winner_votes} votos.",
        }

    def list_signatures(self, on_chain_id) -> List[ElectionSignature]:
        return (
            self.session.query(ElectionSignature)
            .filter_by(on_chain_id=on_chain_id)
            .order_by(ElectionSignature.signed_at, ElectionSignature.id)
            .all()
        )
