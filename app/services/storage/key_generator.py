from datetime import datetime, timezone
import re
import secrets
import string

_SUFFIX_ALPHABET = string.ascii_lowercase + string.digits
_SUFFIX_LENGTH = 9


class KeyGenerator:
    @staticmethod
    def _safe_segment(value: str) -> str:
        return re.sub(r"[^a-zA-Z0-9_.-]", "_", value)

    @staticmethod
    def _timestamp(now: datetime) -> str:
        # Millisecond ISO-8601 with a trailing Z, punctuation made key-safe
        iso = now.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z"
        return iso.replace(":", "-").replace(".", "-")

    @staticmethod
    def _random_suffix() -> str:
        return "".join(secrets.choice(_SUFFIX_ALPHABET) for _ in range(_SUFFIX_LENGTH))

    @staticmethod
    def loan_document_key(
        loan_id: str,
        document_type: str,
        extension: str,
        now: datetime | None = None,
    ) -> str:
        if not loan_id:
            raise ValueError("loan_id required for loan_document")
        ext = extension.lower().lstrip(".")
        stamp = KeyGenerator._timestamp(now or datetime.now(timezone.utc))
        return (
            f"loans/{KeyGenerator._safe_segment(loan_id)}/"
            f"{KeyGenerator._safe_segment(document_type)}/"
            f"{stamp}-{KeyGenerator._random_suffix()}.{ext}"
        )
