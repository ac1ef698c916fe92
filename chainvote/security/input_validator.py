# chainvote/security/input_validator.py

import re
import html
import bleach

# Input validation and sanitisation for request payloads: free-text names are
# escaped and stripped of markup, national IDs are checked against their
# check digit, identifiers must be positive integers.

class InputValidator:
    def __init__(self):
        self.allowed_html_tags = []
        self.allowed_html_attributes = {}

        self.patterns = {
            'national_id': re.compile(r'^\d{11}$'),
            'integrity_hash': re.compile(r'[0-9a-f]{64}'),
            'xss_script': re.compile(r'<script[^>]*>.*?</script>', re.IGNORECASE | re.DOTALL),
            'xss_event': re.compile(r'\bon\w+\s*=', re.IGNORECASE)
        }

    def sanitize_string(self, input_str, max_length=255):
        if not isinstance(input_str, str):
            raise ValueError("Input must be a string")
        if len(input_str) > max_length:
            input_str = input_str[:max_length]

        sanitized = re.sub(self.patterns['xss_script'], '', input_str)
        sanitized = re.sub(self.patterns['xss_event'], '', sanitized)
        sanitized = bleach.clean(sanitized, tags=self.allowed_html_tags, attributes=self.allowed_html_attributes, strip=True)
        return html.unescape(sanitized).strip()

    def missing_fields(self, data, required_fields):
        """Return {field: message} for every required field that is absent or blank."""
        missing = {}
        for field in required_fields:
            value = data.get(field) if isinstance(data, dict) else None
            if value is None or (isinstance(value, str) and not value.strip()):
                missing[field] = "Campo obligatorio."
        return missing

    def validate_national_id(self, national_id):
        """Check an 11-digit national ID (dashes allowed) against its mod-10 check digit.

        The first ten digits are weighted 1, 2, 1, 2, ...; products above 9
        are reduced to the sum of their digits. The eleventh digit must equal
        (10 - sum % 10) % 10.
        """
        if not isinstance(national_id, str):
            return False
        digits = national_id.replace('-', '').strip()
        if not self.patterns['national_id'].match(digits):
            return False

        total = 0
        for i, ch in enumerate(digits[:10]):
            product = int(ch) * (1 if i % 2 == 0 else 2)
            if product > 9:
                product = product // 10 + product % 10
            total += product

        return int(digits[10]) == (10 - total % 10) % 10

    def parse_positive_int(self, value):
        """Return value as a positive int, or None if it is missing or not positive."""
        if isinstance(value, bool):
            return None
        try:
            number = int(value)
        except (TypeError, ValueError):
            return None
        return number if number > 0 else None

    def validate_integrity_hash(self, value):
        # Lowercase sha256 hex, as produced for the results-with-integrity view
        return isinstance(value, str) and self.patterns['integrity_hash'].fullmatch(value) is not None
