import pytest

from chainvote.authentication.rbac import UserRole

from conftest import (
    ADMIN_ACCOUNT, OBSERVER_ACCOUNT, VALID_NATIONAL_ID, VOTER_ACCOUNT, auth_headers, sign_text,
)


def _register(client, wallet, national_id=VALID_NATIONAL_ID, password="secret1"):
    return client.post('/auth/register', json={
        'nationalId': national_id,
        'firstName': 'Ana',
        'lastName': 'Pérez',
        'wallet': wallet,
        'password': password,
    })


def _login(client, wallet, password="secret1"):
    return client.post('/auth/login', json={'wallet': wallet, 'password': password})


@pytest.fixture
def admin_headers(make_user, token_for):
    admin = make_user(ADMIN_ACCOUNT, role=UserRole.ADMIN)
    return auth_headers(token_for(admin))


@pytest.fixture
def voter_headers(client):
    assert _register(client, VOTER_ACCOUNT.address, national_id='001-0000020-7').status_code == 200
    token = _login(client, VOTER_ACCOUNT.address).get_json()['token']
    return auth_headers(token)


@pytest.fixture
def candidate_ids(client, admin_headers):
    ids = []
    for first, last in [("Ana", "Pérez"), ("Bruno", "Díaz"), ("Carla", "Gómez")]:
        resp = client.post('/candidate', json={'firstName': first, 'lastName': last}, headers=admin_headers)
        assert resp.status_code == 200
        ids.append(resp.get_json()['id'])
    return ids


@pytest.fixture
def started(client, admin_headers, candidate_ids):
    a, b, c = candidate_ids
    resp = client.post('/election/start', json={'title': 'Municipal', 'candidateIds': [b, a, c]},
                       headers=admin_headers)
    assert resp.status_code == 200
    return resp.get_json()


# ------------------------------------------------------------------ scenario

def test_register_login_and_vote_without_election(client):
    resp = _register(client, "0xABC")
    assert resp.status_code == 200
    assert resp.get_json() == {'message': "Registro exitoso."}

    resp = _login(client, "0xABC")
    assert resp.status_code == 200
    token = resp.get_json()['token']

    assert _login(client, "0xABC", password="wrong1").status_code == 401

    resp = client.post('/vote/submit', json={'wallet': "0xABC", 'candidateId': 1, 'electionId': 1},
                       headers=auth_headers(token))
    assert resp.status_code == 400
    assert resp.get_json() == {'title': "La elección no está registrada localmente."}


def test_register_validation_errors(client):
    resp = client.post('/auth/register', json={'wallet': '0xabc'})
    assert resp.status_code == 400
    body = resp.get_json()
    assert body['title'] == "Faltan datos obligatorios."
    assert 'nationalId' in body['errors']

    resp = _register(client, "0xabc", national_id='001-0000010-7')
    assert resp.status_code == 400

    assert _register(client, "0xabc").status_code == 200
    resp = _register(client, "0xABC", national_id='001-0000020-7')
    assert resp.status_code == 400
    assert resp.get_json()['title'] == "Esta wallet ya está registrada."


def test_register_without_body(client):
    resp = client.post('/auth/register', data="not json", content_type="text/plain")
    assert resp.status_code == 400


def test_signature_login_flow(client):
    _register(client, VOTER_ACCOUNT.address)

    resp = client.get('/auth/nonce', query_string={'wallet': VOTER_ACCOUNT.address})
    assert resp.status_code == 200
    nonce = resp.get_json()['nonce']

    resp = client.post('/auth/login-with-signature', json={
        'wallet': VOTER_ACCOUNT.address,
        'signature': sign_text(VOTER_ACCOUNT, nonce),
        'nonce': nonce,
    })
    assert resp.status_code == 200
    assert resp.get_json()['role'] == "Voter"

    resp = client.post('/auth/login-with-signature', json={
        'wallet': VOTER_ACCOUNT.address,
        'signature': sign_text(VOTER_ACCOUNT, nonce),
        'nonce': nonce,
    })
    assert resp.status_code == 401


def test_signature_login_with_non_ascii_nonce(client):
    _register(client, VOTER_ACCOUNT.address)
    client.get('/auth/nonce', query_string={'wallet': VOTER_ACCOUNT.address})

    resp = client.post('/auth/login-with-signature', json={
        'wallet': VOTER_ACCOUNT.address,
        'signature': sign_text(VOTER_ACCOUNT, "ñonce"),
        'nonce': "ñonce",
    })
    assert resp.status_code == 401
    assert resp.get_json() == {'title': "Nonce inválido."}


def test_nonce_for_unknown_wallet(client):
    resp = client.get('/auth/nonce', query_string={'wallet': VOTER_ACCOUNT.address})
    assert resp.status_code == 404
    assert resp.get_json() == {'title': "Wallet no registrada."}


# ------------------------------------------------------------------ candidates

def test_candidates(client, admin_headers, candidate_ids):
    resp = client.get('/candidate')
    assert [c['id'] for c in resp.get_json()] == candidate_ids

    resp = client.get(f'/candidate/{candidate_ids[1]}')
    assert resp.get_json() == {'id': candidate_ids[1], 'firstName': "Bruno", 'lastName': "Díaz"}

    assert client.get('/candidate/999').status_code == 404


def test_candidate_creation_requires_admin(client, voter_headers):
    resp = client.post('/candidate', json={'firstName': "X", 'lastName': "Y"}, headers=voter_headers)
    assert resp.status_code == 403
    resp = client.post('/candidate', json={'firstName': "X", 'lastName': "Y"})
    assert resp.status_code == 401


def test_candidate_creation_validation(client, admin_headers):
    resp = client.post('/candidate', json={'firstName': "<script>x</script>", 'lastName': "Y"},
                       headers=admin_headers)
    assert resp.status_code == 400


# ------------------------------------------------------------------ elections

def test_start_election(client, started, candidate_ids):
    a, b, c = candidate_ids
    assert started['electionIdOnChain'] == 1
    assert started['title'] == "Municipal"

    resp = client.get(f"/election/{started['id']}")
    body = resp.get_json()
    assert body['status'] == "Active"
    assert [(x['id'], x['candidateIndex']) for x in body['candidates']] == [(b, 0), (a, 1), (c, 2)]

    resp = client.get(f"/election/{started['id']}/candidates")
    assert [x['candidateId'] for x in resp.get_json()] == [b, a, c]

    resp = client.get('/election')
    assert [(e['electionIdOnChain'], e['status']) for e in resp.get_json()] == [(1, "Active")]


def test_start_election_requires_admin(client, voter_headers, candidate_ids, ledger):
    resp = client.post('/election/start', json={'title': 'X', 'candidateIds': candidate_ids},
                       headers=voter_headers)
    assert resp.status_code == 403
    assert ledger.calls == []


def test_start_election_validation(client, admin_headers, candidate_ids, ledger):
    resp = client.post('/election/start', json={'title': 'X', 'candidateIds': []}, headers=admin_headers)
    assert resp.status_code == 400
    resp = client.post('/election/start', json={'title': 'X', 'candidateIds': [candidate_ids[0]] * 2},
                       headers=admin_headers)
    assert resp.status_code == 400
    assert ledger.calls == []


def test_status(client, started):
    resp = client.get('/election/1/status')
    assert resp.status_code == 200
    assert resp.get_json() == {
        'title': "Municipal",
        'started': True,
        'ended': False,
        'candidatesCount': 3,
        'state': "Active",
    }

    resp = client.get('/election/99/status')
    assert resp.status_code == 404
    assert resp.get_json() == {'title': "No se encontró el estado de la elección con ID 99"}


def test_winner_before_end(client, started):
    resp = client.get('/election/1/winner')
    assert resp.status_code == 400
    assert resp.get_json() == {'title': "La elección aún no ha finalizado o no se pudo obtener el ganador."}


def test_full_election_lifecycle(client, admin_headers, voter_headers, started, candidate_ids, ledger):
    a, b, c = candidate_ids

    resp = client.post('/vote/submit', json={
        'wallet': VOTER_ACCOUNT.address, 'candidateId': a, 'electionId': 1,
    }, headers=voter_headers)
    assert resp.status_code == 200
    # A is in slot 1 because it was submitted second
    assert ledger.elections[1]['votes'] == [0, 1, 0]

    resp = client.get('/vote/has-voted', query_string={'wallet': VOTER_ACCOUNT.address, 'electionId': 1})
    assert resp.get_json() == {'electionId': 1, 'wallet': VOTER_ACCOUNT.address, 'hasVoted': True}

    resp = client.post('/vote/submit', json={
        'wallet': VOTER_ACCOUNT.address, 'candidateId': b, 'electionId': 1,
    }, headers=voter_headers)
    assert resp.status_code == 400
    assert resp.get_json() == {'title': "Esta wallet ya ha votado en la cadena."}

    resp = client.get('/election/1/results')
    assert resp.get_json() == [
        {'candidateName': "Bruno Díaz", 'votes': 0},
        {'candidateName': "Ana Pérez", 'votes': 1},
        {'candidateName': "Carla Gómez", 'votes': 0},
    ]

    assert client.get('/election/finalized').get_json() == []
    resp = client.post('/election/1/end', headers=admin_headers)
    assert resp.status_code == 200
    assert [e['electionIdOnChain'] for e in client.get('/election/finalized').get_json()] == [1]

    resp = client.get('/election/1/winner')
    assert resp.status_code == 200
    assert resp.get_json()['message'] == "El ganador es Ana Pérez con 1 votos."

    integrity = client.get('/election/1/results-with-integrity').get_json()
    integrity_hash = integrity['integrityHash']
    assert len(integrity_hash) == 64

    payload = {
        'integrityHash': integrity_hash,
        'observerName': "Observador OEA",
        'observerPublicKey': OBSERVER_ACCOUNT.address,
        'observerSignature': sign_text(OBSERVER_ACCOUNT, "Hash de integridad: " + integrity_hash),
    }
    resp = client.post('/election/1/sign-result', json=payload)
    assert resp.status_code == 200
    assert resp.get_json() == {'message': "Firma registrada correctamente."}

    resp = client.post('/election/1/sign-result', json=payload)
    assert resp.status_code == 409

    signatures = client.get('/election/1/signatures').get_json()
    assert len(signatures) == 1
    assert signatures[0]['observerPublicKey'] == OBSERVER_ACCOUNT.address.lower()
    assert signatures[0]['integrityHash'] == integrity_hash

    resp = client.post('/vote/submit', json={
        'wallet': VOTER_ACCOUNT.address, 'candidateId': c, 'electionId': 1,
    }, headers=voter_headers)
    assert resp.status_code == 400


def test_vote_not_started_on_ledger(client, voter_headers, started, candidate_ids, ledger):
    ledger.elections[1]['started'] = False
    resp = client.post('/vote/submit', json={
        'wallet': VOTER_ACCOUNT.address, 'candidateId': candidate_ids[0], 'electionId': 1,
    }, headers=voter_headers)
    assert resp.status_code == 400
    assert resp.get_json() == {'title': "La elección no está activa actualmente."}


def test_vote_requires_voter_role(client, admin_headers, started, candidate_ids):
    resp = client.post('/vote/submit', json={
        'wallet': ADMIN_ACCOUNT.address, 'candidateId': candidate_ids[0], 'electionId': 1,
    }, headers=admin_headers)
    assert resp.status_code == 403

    resp = client.post('/vote/submit', json={
        'wallet': VOTER_ACCOUNT.address, 'candidateId': candidate_ids[0], 'electionId': 1,
    })
    assert resp.status_code == 401


def test_has_voted_errors(client, started):
    resp = client.get('/vote/has-voted', query_string={'wallet': VOTER_ACCOUNT.address})
    assert resp.status_code == 400
    resp = client.get('/vote/has-voted', query_string={'wallet': VOTER_ACCOUNT.address, 'electionId': 5})
    assert resp.status_code == 404


def test_end_election_failure(client, admin_headers, started, ledger):
    ledger.end_result = False
    resp = client.post('/election/1/end', headers=admin_headers)
    assert resp.status_code == 500
    assert resp.get_json() == {'title': "No se pudo finalizar la elección 1 en la blockchain."}


def test_ledger_failure_on_start_is_json(client, admin_headers, candidate_ids, ledger):
    from chainvote.ledger.client import LedgerRejected
    ledger.errors['start_election'] = LedgerRejected("reverted")
    resp = client.post('/election/start', json={'title': 'X', 'candidateIds': candidate_ids},
                       headers=admin_headers)
    assert resp.status_code == 500
    assert resp.get_json() == {'title': "Error al iniciar la elección en el contrato."}
    assert client.get('/election').get_json() == []


def test_unknown_route_is_json(client):
    resp = client.get('/nope')
    assert resp.status_code == 404
    assert 'title' in resp.get_json()


# ------------------------------------------------------------------ health

def test_health(client, ledger):
    resp = client.get('/health')
    assert resp.status_code == 200
    body = resp.get_json()
    assert body['overall_ok'] is True
    assert body['ledger'] == {'ok': True, 'configured': True}

    ledger.connected = False
    resp = client.get('/health')
    assert resp.status_code == 200
    assert resp.get_json()['ledger']['ok'] is False


def test_without_ledger(app_config):
    from chainvote import create_app, db
    app = create_app(app_config)
    with app.app_context():
        db.create_all()
        with app.test_client() as client:
            assert client.get('/health').get_json()['ledger'] == {'ok': False, 'configured': False}
            resp = client.get('/election/1/results')
            assert resp.status_code == 500
            assert resp.get_json() == {'title': "El servicio de blockchain no está configurado."}
        db.session.remove()
        db.drop_all()
