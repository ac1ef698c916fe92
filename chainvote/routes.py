# chainvote/routes.py

# JSON API for the voting front end. Views parse the request, call the
# identity/election/vote services and serialise the result; every failure is
# raised as a ChainVoteError and rendered by chainvote.errors.

from flask import Blueprint, current_app, jsonify, request

from chainvote import db, limiter
from chainvote.authentication.identity import IdentityService
from chainvote.authentication.rbac import Permission, require_permission
from chainvote.database.models import Candidate
from chainvote.elections.reconciliation import ElectionReconciliationService, derive_state
from chainvote.errors import NotFound, ValidationError
from chainvote.operations.health_monitor import check_health
from chainvote.security.input_validator import InputValidator
from chainvote.security.token_manager import TokenManager
from chainvote.voting.submission import VoteSubmissionService

auth_bp = Blueprint('auth', __name__, url_prefix='/auth')
candidate_bp = Blueprint('candidate', __name__, url_prefix='/candidate')
election_bp = Blueprint('election', __name__, url_prefix='/election')
vote_bp = Blueprint('vote', __name__, url_prefix='/vote')
health_bp = Blueprint('health', __name__)

validator = InputValidator()
tokens = TokenManager()


def register_blueprints(app):
    for blueprint in (auth_bp, candidate_bp, election_bp, vote_bp, health_bp):
        app.register_blueprint(blueprint)


def _ledger():
    return current_app.extensions.get('ledger')


def _audit_logger():
    return current_app.extensions.get('audit_logger')


def _identity_service():
    return IdentityService(
        audit_logger=_audit_logger(),
        password_min_length=current_app.config['PASSWORD_MIN_LENGTH'],
    )


def _election_service():
    return ElectionReconciliationService(_ledger(), audit_logger=_audit_logger())


def _vote_service():
    return VoteSubmissionService(
        _ledger(),
        signing_mode=current_app.config['VOTE_SIGNING_MODE'],
        audit_logger=_audit_logger(),
    )


def _json_body():
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def _election_dict(election, state, with_index=False):
    candidates = []
    for slot in election.candidates:
        entry = {'id': slot.candidate_id, 'name': slot.candidate.full_name}
        if with_index:
            entry['candidateIndex'] = slot.candidate_index
        candidates.append(entry)
    body = {
        'id': election.id,
        'title': election.title,
        'electionIdOnChain': election.on_chain_id,
        'candidates': candidates,
    }
    if state is not None:
        body['status'] = state.value
    return body


# ---------------------------------------------------------------- auth

@auth_bp.route('/register', methods=['POST'])
def register():
    _identity_service().register(_json_body())
    return jsonify({'message': "Registro exitoso."})


@auth_bp.route('/nonce', methods=['GET'])
@limiter.limit("30/minute")
def nonce():
    wallet = request.args.get('wallet')
    issued = _identity_service().issue_nonce(wallet)
    return jsonify({'wallet': wallet, 'nonce': issued})


@auth_bp.route('/login', methods=['POST'])
@limiter.limit("10/minute")
def login():
    data = _json_body()
    voter, token = _identity_service().login_with_password(data.get('wallet'), data.get('password'))
    return jsonify({'token': token, 'role': voter.role})


@auth_bp.route('/login-with-signature', methods=['POST'])
@limiter.limit("10/minute")
def login_with_signature():
    data = _json_body()
    voter, token = _identity_service().login_with_signature(
        data.get('wallet'), data.get('signature'), data.get('nonce')
    )
    return jsonify({'token': token, 'role': voter.role})


# ----------------------------------------------------------- candidates

@candidate_bp.route('', methods=['POST'])
@require_permission(Permission.MANAGE_CANDIDATES)
def create_candidate():
    data = _json_body()
    missing = validator.missing_fields(data, ['firstName', 'lastName'])
    if missing:
        raise ValidationError("Nombre y apellido son obligatorios.", errors=missing)
    if not isinstance(data['firstName'], str) or not isinstance(data['lastName'], str):
        raise ValidationError("Nombre y apellido son obligatorios.")
    first_name = validator.sanitize_string(data['firstName'], max_length=100)
    last_name = validator.sanitize_string(data['lastName'], max_length=100)
    if not first_name or not last_name:
        raise ValidationError("Nombre y apellido son obligatorios.")

    candidate = Candidate(first_name=first_name, last_name=last_name)
    db.session.add(candidate)
    db.session.commit()
    return jsonify(candidate.to_dict())


@candidate_bp.route('', methods=['GET'])
def list_candidates():
    candidates = db.session.query(Candidate).order_by(Candidate.id).all()
    return jsonify([c.to_dict() for c in candidates])


@candidate_bp.route('/<int:candidate_id>', methods=['GET'])
def get_candidate(candidate_id):
    candidate = db.session.get(Candidate, candidate_id)
    if candidate is None:
        raise NotFound("Candidato no encontrado.")
    return jsonify(candidate.to_dict())


# ------------------------------------------------------------ elections

@election_bp.route('/start', methods=['POST'])
@require_permission(Permission.MANAGE_ELECTIONS)
def start_election():
    data = _json_body()
    election = _election_service().create_election(
        data.get('title'), data.get('candidateIds'), actor=tokens.get_identity()
    )
    return jsonify({'id': election.id, 'title': election.title, 'electionIdOnChain': election.on_chain_id})


@election_bp.route('/<int:on_chain_id>/end', methods=['POST'])
@require_permission(Permission.MANAGE_ELECTIONS)
def end_election(on_chain_id):
    _election_service().end_election(on_chain_id, actor=tokens.get_identity())
    return jsonify({'message': f"Elección {on_chain_id} finalizada correctamente."})


@election_bp.route('', methods=['GET'])
def list_elections():
    return jsonify([
        _election_dict(election, state)
        for election, state in _election_service().list_elections()
    ])


@election_bp.route('/finalized', methods=['GET'])
def list_finalized_elections():
    return jsonify([
        _election_dict(election, None)
        for election in _election_service().list_finalized()
    ])


@election_bp.route('/<int:election_id>', methods=['GET'])
def get_election(election_id):
    election, state = _election_service().get_election(election_id)
    return jsonify(_election_dict(election, state, with_index=True))


@election_bp.route('/<int:election_id>/candidates', methods=['GET'])
def get_election_candidates(election_id):
    return jsonify([
        {
            'candidateId': slot.candidate_id,
            'firstName': slot.candidate.first_name,
            'lastName': slot.candidate.last_name,
            'candidateIndex': slot.candidate_index,
        }
        for slot in _election_service().candidates_of(election_id)
    ])


@election_bp.route('/<int:on_chain_id>/winner', methods=['GET'])
def get_winner(on_chain_id):
    winner = _election_service().get_winner(on_chain_id)
    if winner is None:
        raise ValidationError("La elección aún no ha finalizado o no se pudo obtener el ganador.")
    return jsonify(winner)


@election_bp.route('/<int:on_chain_id>/results', methods=['GET'])
def get_results(on_chain_id):
    return jsonify([entry.to_dict() for entry in _election_service().get_results(on_chain_id)])


@election_bp.route('/<int:on_chain_id>/results-with-integrity', methods=['GET'])
def get_results_with_integrity(on_chain_id):
    results, integrity_hash = _election_service().get_results_with_integrity(on_chain_id)
    return jsonify({
        'results': [entry.to_dict() for entry in results],
        'integrityHash': integrity_hash,
    })


@election_bp.route('/<int:on_chain_id>/status', methods=['GET'])
def get_status(on_chain_id):
    status = _election_service().get_status(on_chain_id)
    if status is None:
        raise NotFound(f"No se encontró el estado de la elección con ID {on_chain_id}")
    body = status.to_dict()
    body['state'] = derive_state(status).value
    return jsonify(body)


@election_bp.route('/<int:on_chain_id>/sign-result', methods=['POST'])
def sign_result(on_chain_id):
    data = _json_body()
    _election_service().record_signature(
        on_chain_id,
        data.get('integrityHash'),
        data.get('observerName'),
        data.get('observerPublicKey'),
        data.get('observerSignature'),
    )
    return jsonify({'message': "Firma registrada correctamente."})


@election_bp.route('/<int:on_chain_id>/signatures', methods=['GET'])
def get_signatures(on_chain_id):
    return jsonify([s.to_dict() for s in _election_service().list_signatures(on_chain_id)])


# ---------------------------------------------------------------- votes

@vote_bp.route('/submit', methods=['POST'])
@require_permission(Permission.CAST_VOTE)
@limiter.limit("5/minute")
def submit_vote():
    data = _json_body()
    _vote_service().submit(
        tokens.get_role(),
        data.get('wallet'),
        data.get('candidateId'),
        data.get('electionId'),
        identity=tokens.get_identity(),
    )
    return jsonify({'message': "Voto registrado correctamente."})


@vote_bp.route('/has-voted', methods=['GET'])
def has_voted():
    wallet = request.args.get('wallet')
    election_id = request.args.get('electionId')
    voted = _vote_service().has_voted(wallet, election_id)
    return jsonify({'electionId': int(election_id), 'wallet': wallet, 'hasVoted': voted})


# --------------------------------------------------------------- health

@health_bp.route('/health', methods=['GET'])
def health():
    result = check_health(_ledger())
    return jsonify(result), 200 if result['overall_ok'] else 503
