# chainvote/audit/audit_logger.py

import os
import json
import hashlib
import base64
import logging
from datetime import datetime, timezone
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey
from cryptography.exceptions import InvalidSignature

logger = logging.getLogger(__name__)

# Append-only audit trail with hash chaining and Ed25519 signatures. Besides
# logins and votes it carries the ledger/local inconsistency flags that need
# manual reconciliation.

class AuditLogger:
    def __init__(self, log_dir='logs'):
        self.log_dir = log_dir
        self.log_file = os.path.join(log_dir, 'audit.log')
        self.previous_hash = None

        os.makedirs(log_dir, exist_ok=True)

        self.signing_key = Ed25519PrivateKey.generate()
        self._load_previous_hash()

    def _load_previous_hash(self):
        if os.path.exists(self.log_file):
            with open(self.log_file, 'r') as f:
                lines = f.readlines()
                if lines:
                    try:
                        last_entry = json.loads(lines[-1])
                        self.previous_hash = last_entry.get('hash')
                    except ValueError:
                        self.previous_hash = None

    def log_security_event(self, event_type, data, user_id=None):
        try:
            timestamp = datetime.now(timezone.utc).isoformat()
            log_entry = {
                "timestamp": timestamp,
                "event_type": event_type,
                "data": data,
                "user_id": user_id,
                "previous_hash": self.previous_hash,
            }
            entry_json = json.dumps(log_entry, sort_keys=True, default=str)
            entry_hash = hashlib.sha256(entry_json.encode()).hexdigest()
            log_entry['hash'] = entry_hash

            signature = self.signing_key.sign(entry_json.encode())
            log_entry['signature'] = base64.b64encode(signature).decode()

            with open(self.log_file, 'a') as f:
                f.write(json.dumps(log_entry, default=str) + "\n")

            self.previous_hash = entry_hash
        except Exception as e:
            # Auditing must never break the request that triggered it
            logger.error("Audit log error: %s", e)

    def read_entries(self, event_type=None):
        entries = []
        if not os.path.exists(self.log_file):
            return entries
        with open(self.log_file, 'r') as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                entry = json.loads(line)
                if event_type is None or entry.get('event_type') == event_type:
                    entries.append(entry)
        return entries

    def verify_log_integrity(self):
        try:
            if not os.path.exists(self.log_file):
                return True
            previous_hash = None
            public_key = self.signing_key.public_key()
            with open(self.log_file, 'r') as f:
                for line in f:
                    if not line.strip():
                        continue
                    log_entry = json.loads(line)
                    if log_entry.get('previous_hash') != previous_hash:
                        return False
                    signature = base64.b64decode(log_entry['signature'])
                    entry_copy = dict(log_entry)
                    entry_copy.pop('signature')
                    entry_hash = entry_copy.pop('hash')
                    entry_json = json.dumps(entry_copy, sort_keys=True, default=str).encode()
                    if hashlib.sha256(entry_json).hexdigest() != entry_hash:
                        return False
                    public_key.verify(signature, entry_json)
                    previous_hash = entry_hash
            return True
        except (ValueError, KeyError, InvalidSignature):
            return False
