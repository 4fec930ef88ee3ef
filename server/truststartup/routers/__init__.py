"""API routers for the TrustStartup application."""

from truststartup.routers import (
    account,
    auth,
    payments,
    sponsorships,
    startups,
    whoami,
)  # noqa: F401
