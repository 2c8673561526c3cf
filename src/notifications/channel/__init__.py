"""Mail transport adapters.

Only the fake transport ships with the engine; a real SMTP or HTTP mail
provider plugs in by implementing ``MailTransport``.
"""

from notifications.channel.email_port import MailMessage, MailTransport, SendResult
from notifications.channel.fake_email import FakeEmailTransport

__all__ = ["FakeEmailTransport", "MailMessage", "MailTransport", "SendResult", "build_transport"]


def build_transport(name: str = "fake") -> MailTransport:
    """Return a new transport instance for the configured adapter name."""
    if name == "fake":
        return FakeEmailTransport()
    raise ValueError(f"Unknown mail transport: {name}")
