import secrets
import string

_ALPHABET = string.ascii_letters + string.digits + "_-"


def _random_id(size: int) -> str:
    return "".join(secrets.choice(_ALPHABET) for _ in range(size))


def generate_trace_id() -> str:
    """Trace ids group the LLM calls made for one user action: ``tr_`` + 21 chars."""
    return f"tr_{_random_id(21)}"


def generate_span_id() -> str:
    """Span ids identify a single LLM call: ``sp_`` + 16 chars."""
    return f"sp_{_random_id(16)}"
