# chainvote/elections/index_mapper.py

from typing import List

from chainvote import db
from chainvote.database.models import ElectionCandidate
from chainvote.errors import NotFound

# The ledger knows candidates only by their 0-based slot in an election's
# candidate array. Slots are assigned once, from the order the candidates were
# submitted at creation, and never change afterwards; every translation
# between a local candidate id and a slot goes through this class.


class CandidateIndexMapper:
    def __init__(self, session=None):
        self.session = session or db.session

    def assign(self, election, candidate_ids: List[int]) -> List[ElectionCandidate]:
        """Stage one mapping row per candidate, slot = position in ``candidate_ids``."""
        rows = []
        for index, candidate_id in enumerate(candidate_ids):
            row = ElectionCandidate(
                election_id=election.id,
                candidate_id=candidate_id,
                candidate_index=index,
            )
            self.session.add(row)
            rows.append(row)
        return rows

    def index_of(self, election_id: int, candidate_id: int) -> int:
        row = self.session.get(ElectionCandidate, (election_id, candidate_id))
        if row is None:
            raise NotFound("El candidato no pertenece a esta elección.")
        return row.candidate_index

    def slots(self, election_id: int) -> List[ElectionCandidate]:
        return (
            self.session.query(ElectionCandidate)
            .filter_by(election_id=election_id)
            .order_by(ElectionCandidate.candidate_index)
            .all()
        )
