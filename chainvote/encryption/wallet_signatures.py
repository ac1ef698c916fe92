# chainvote/encryption/wallet_signatures.py

from eth_account import Account
from eth_account.messages import encode_defunct

# Wallet (personal_sign / EIP-191) signature recovery for signature login and
# observer attestations. The signer's address is recovered from the signature
# and compared case-insensitively with the address the caller claims.

INTEGRITY_MESSAGE_PREFIX = "Hash de integridad: "


class WalletSignatureService:
    @staticmethod
    def integrity_message(integrity_hash: str) -> str:
        """The exact text an observer signs to attest a result hash."""
        return INTEGRITY_MESSAGE_PREFIX + integrity_hash

    def recover_address(self, message: str, signature: str) -> str:
        if not isinstance(signature, str) or not signature.strip():
            raise ValueError("Signature is required")
        signature = signature.strip()
        if signature.startswith('0x'):
            signature = signature[2:]
        encoded = encode_defunct(text=message)
        return Account.recover_message(encoded, signature='0x' + signature)

    def verify(self, address: str, signature: str, message: str) -> bool:
        if not address:
            return False
        try:
            recovered = self.recover_address(message, signature)
        except Exception:
            return False
        return recovered.lower() == address.strip().lower()
