from dataclasses import dataclass, field
from uuid import uuid4


@dataclass(frozen=True)
class RequestContext:
    """Actor information threaded explicitly through every KYC call."""
    ip_address: str = "unknown"
    user_agent: str = "unknown"
    correlation_id: str = field(default_factory=lambda: str(uuid4()))

    @classmethod
    def system(cls, name: str = "kyc-service") -> "RequestContext":
        return cls(ip_address="internal", user_agent=name)
