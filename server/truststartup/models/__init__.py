from .user import User  # noqa: F401
from .startup import Startup  # noqa: F401
from .sponsor_audit import SponsorAudit  # noqa: F401
from .stripe_event import StripeEvent  # noqa: F401
