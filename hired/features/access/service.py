"""
hired/features/access/service.py

Navigation-time access gates.

Gates are small immutable values built once per protected surface:

    certificates_gate = AccessGate.requiring("certificates", resolver=resolver)
    decision = await certificates_gate.evaluate(identity)

Denial is an expected outcome and is returned, never raised.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from hired.core.config import Settings, settings
from hired.core.metrics import access_decisions_total
from hired.features.entitlements.service import EntitlementResolver, has_feature
from hired.models.access import AccessDecision, Allow, Deny
from hired.models.identity import Identity

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AccessGate:
    """Allows navigation iff the identity's plan grants required_feature."""

    required_feature: str
    resolver: EntitlementResolver = field(compare=False, repr=False)
    upgrade_redirect: str = "/plans"
    safe_redirect: str = "/dashboard"

    @classmethod
    def requiring(
        cls,
        feature: str,
        *,
        resolver: EntitlementResolver,
        cfg: Settings = settings,
    ) -> "AccessGate":
        return cls(
            required_feature=feature,
            resolver=resolver,
            upgrade_redirect=cfg.UPGRADE_REDIRECT,
            safe_redirect=cfg.SAFE_REDIRECT,
        )

    async def evaluate(self, identity: Optional[Identity]) -> AccessDecision:
        """Allow or Deny. Any resolver failure denies towards safe_redirect."""
        try:
            resolved = await self.resolver.resolve_plan(identity)
        except Exception as exc:
            access_decisions_total.inc(labels={"gate": "feature", "outcome": "fail_closed"})
            logger.warning(
                "[access] plan resolution failed, denying",
                extra={
                    "identity_id": identity.id if identity else None,
                    "error_code": getattr(exc, "code", type(exc).__name__),
                    "feature": self.required_feature,
                },
            )
            return Deny(
                reason="We could not verify your plan right now. Please try again later.",
                redirect_target=self.safe_redirect,
            )

        plan = resolved.plan
        if has_feature(plan.slug, self.required_feature):
            access_decisions_total.inc(labels={"gate": "feature", "outcome": "allow"})
            return Allow()

        access_decisions_total.inc(labels={"gate": "feature", "outcome": "deny"})
        return Deny(
            reason=(
                f'The "{self.required_feature}" feature is not included in the {plan.name} plan. '
                "Upgrade your plan to access this section."
            ),
            redirect_target=self.upgrade_redirect,
        )


@dataclass(frozen=True)
class AuthGate:
    """Allows navigation iff someone is signed in."""

    login_redirect: str = "/auth/login"

    @classmethod
    def from_settings(cls, cfg: Settings = settings) -> "AuthGate":
        return cls(login_redirect=cfg.LOGIN_REDIRECT)

    def evaluate(self, identity: Optional[Identity], return_url: Optional[str] = None) -> AccessDecision:
        if identity is not None:
            access_decisions_total.inc(labels={"gate": "auth", "outcome": "allow"})
            return Allow()
        access_decisions_total.inc(labels={"gate": "auth", "outcome": "deny"})
        return Deny(
            reason="Sign in to continue.",
            redirect_target=self.login_redirect,
            return_url=return_url,
        )
