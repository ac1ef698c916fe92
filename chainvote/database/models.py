# chainvote/database/models.py

from chainvote import db
from datetime import datetime, timezone

# Local mirror of the ledger: elections, their candidate slots, anonymous vote
# receipts and observer attestations, plus the voter identity records.


def _utcnow():
    return datetime.now(timezone.utc)


class Voter(db.Model):
    __tablename__ = 'voters'
    id = db.Column(db.Integer, primary_key=True)
    national_id = db.Column(db.String(20), unique=True, nullable=False)
    first_name = db.Column(db.String(100), nullable=False)
    last_name = db.Column(db.String(100), nullable=False)
    wallet = db.Column(db.String(100), unique=True, nullable=False)  # stored lower-case
    password_hash = db.Column(db.String(200), nullable=False)  # Argon2id
    role = db.Column(db.String(20), nullable=False, default='Voter')
    nonce = db.Column(db.String(100), nullable=True)  # single-use signature-login challenge
    created_at = db.Column(db.DateTime, default=_utcnow)

    @property
    def display_name(self):
        return f"{self.first_name} {self.last_name}"


class Candidate(db.Model):
    __tablename__ = 'candidates'
    id = db.Column(db.Integer, primary_key=True)
    first_name = db.Column(db.String(100), nullable=False)
    last_name = db.Column(db.String(100), nullable=False)

    election_slots = db.relationship('ElectionCandidate', back_populates='candidate', lazy=True)

    @property
    def full_name(self):
        # The ledger stores candidates by this name
        return f"{self.first_name} {self.last_name}"

    def to_dict(self):
        return {'id': self.id, 'firstName': self.first_name, 'lastName': self.last_name}


class Election(db.Model):
    __tablename__ = 'elections'
    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(200), nullable=False)
    on_chain_id = db.Column(db.BigInteger, unique=True, nullable=False)  # set once, at creation
    started = db.Column(db.Boolean, nullable=False, default=False)
    finalized = db.Column(db.Boolean, nullable=False, default=False)  # false -> true only

    candidates = db.relationship(
        'ElectionCandidate',
        back_populates='election',
        order_by='ElectionCandidate.candidate_index',
        lazy=True,
    )
    votes = db.relationship('Vote', backref='election', lazy=True)

    def __repr__(self):
        return f'<Election {self.id} on-chain {self.on_chain_id}>'


class ElectionCandidate(db.Model):
    __tablename__ = 'election_candidates'
    election_id = db.Column(db.Integer, db.ForeignKey('elections.id'), primary_key=True)
    candidate_id = db.Column(db.Integer, db.ForeignKey('candidates.id'), primary_key=True)
    candidate_index = db.Column(db.Integer, nullable=False)  # 0-based slot in the on-chain array

    election = db.relationship('Election', back_populates='candidates')
    candidate = db.relationship('Candidate', back_populates='election_slots')

    __table_args__ = (
        db.UniqueConstraint('election_id', 'candidate_index', name='uq_election_candidate_index'),
    )


class Vote(db.Model):
    """Anonymous receipt: no voter, no candidate."""
    __tablename__ = 'votes'
    id = db.Column(db.Integer, primary_key=True)
    election_id = db.Column(db.Integer, db.ForeignKey('elections.id'), nullable=False)
    timestamp = db.Column(db.DateTime, nullable=False, default=_utcnow)

    def __repr__(self):
        return f'<Vote {self.id} in Election {self.election_id}>'


class ElectionSignature(db.Model):
    __tablename__ = 'election_signatures'
    id = db.Column(db.Integer, primary_key=True)
    on_chain_id = db.Column(db.BigInteger, nullable=False)
    integrity_hash = db.Column(db.String(128), nullable=False)
    observer_name = db.Column(db.String(200), nullable=False)
    observer_public_key = db.Column(db.String(200), nullable=False)  # stored lower-case
    observer_signature = db.Column(db.Text, nullable=False)
    signed_at = db.Column(db.DateTime, nullable=False, default=_utcnow)

    __table_args__ = (
        db.UniqueConstraint(
            'on_chain_id', 'integrity_hash', 'observer_public_key',
            name='uq_signature_election_hash_observer',
        ),
    )

    def to_dict(self):
        return {
            'observerName': self.observer_name,
            'observerPublicKey': self.observer_public_key,
            'observerSignature': self.observer_signature,
            'integrityHash': self.integrity_hash,
            'signedAt': self.signed_at.isoformat(),
        }
