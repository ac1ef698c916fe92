# chainvote/security/token_manager.py
from datetime import timedelta
from flask_jwt_extended import create_access_token, get_jwt_identity, get_jwt

# Session credentials: a JWT whose identity is the voter's wallet and whose
# claims carry the display name and role.
class TokenManager:
    def issue_credential(self, voter, expires_in: int = None) -> str:
        expires_delta = timedelta(seconds=expires_in) if expires_in else None
        claims = {"role": voter.role, "name": voter.display_name}
        return create_access_token(identity=voter.wallet, additional_claims=claims, expires_delta=expires_delta)

    def get_identity(self):
        # Current wallet from the JWT in request context.
        try:
            return get_jwt_identity()
        except RuntimeError:
            return None

    def get_role(self):
        try:
            return get_jwt().get("role")
        except RuntimeError:
            return None
