"""Helpers for keeping identifiers and secrets out of log lines."""


def mask_value(value, visible: int = 4) -> str:
    if value is None:
        return "<none>"
    text = str(value)
    if len(text) <= visible:
        return "*" * len(text)
    return f"{'*' * (len(text) - visible)}{text[-visible:]}"


def mask_token(token) -> str:
    # Session tokens and signatures: show a short prefix only.
    if not token:
        return "<none>"
    text = str(token)
    return f"{text[:6]}..." if len(text) > 6 else "***"


def mask_email(email) -> str:
    if not email or "@" not in str(email):
        return mask_value(email)
    local, domain = str(email).split("@", 1)
    return f"{local[:1]}***@{domain}"
