"""ADPILOT - Campaign Launch Saga.

Materializes a draft on Meta as a chain of dependent resources:

  campaign -> ad set -> lead form -> creative -> ad -> activate

Each step is an async function ``(client, plan, state) -> state | failure``
that returns a new ``LaunchState`` carrying the identifier it just acquired.
The saga stops at the first failure. Once the campaign exists, any later
failure triggers the compensating delete of the campaign before the failure
is returned. An unexpected exception from a step is re-raised after the same
rollback. Rollback outcomes are logged but never reported to the caller.

Activation runs leaf-to-root (ad, ad set, campaign) so no parent is live
while a child is still paused. Only the ad activation can fail the launch;
the ad set and campaign activations are attempted and logged.

Launches are not idempotent: two launches of the same draft build two
independent resource chains.
"""

from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple, Union

from sqlmodel import Session

from adpilot.config import settings
from adpilot.connectors.meta import endpoints
from adpilot.connectors.meta.client import MetaClient, MetaErr, MetaResponse, MetaTransportError
from adpilot.core.errors import MetaApiError
from adpilot.core.logging import bind, get_logger
from adpilot.models.campaigns import ApiCampaign, CreativeVariant
from adpilot.models.keys import utcnow

logger = get_logger("saga.launch")

STEP_CAMPAIGN = "campaign"
STEP_ADSET = "adset"
STEP_LEADFORM = "leadform"
STEP_CREATIVE = "creative"
STEP_AD = "ad"
STEP_ACTIVATE = "activate"


@dataclass(frozen=True)
class LaunchPlan:
    """Everything the steps need, resolved from the draft and the overrides."""

    ad_account_id: str
    page_id: str
    business_name: str
    campaign_name: str
    headline: str
    body: str
    variant: CreativeVariant
    daily_budget_cents: int
    radius_km: float
    targeting: Dict[str, Any]
    started_at: datetime


@dataclass(frozen=True)
class LaunchState:
    """Identifiers acquired so far, in creation order."""

    campaign_id: Optional[str] = None
    adset_id: Optional[str] = None
    leadform_id: Optional[str] = None
    creative_id: Optional[str] = None
    ad_id: Optional[str] = None

    def created(self) -> Tuple[Tuple[str, str], ...]:
        """(step, id) pairs for every resource that exists, oldest first."""
        pairs = (
            (STEP_CAMPAIGN, self.campaign_id),
            (STEP_ADSET, self.adset_id),
            (STEP_LEADFORM, self.leadform_id),
            (STEP_CREATIVE, self.creative_id),
            (STEP_AD, self.ad_id),
        )
        return tuple((step, rid) for step, rid in pairs if rid)


@dataclass(frozen=True)
class SagaFailure:
    step: str
    message: str
    meta_error: Any = None
    raw_body: str = ""


@dataclass(frozen=True)
class LaunchResult:
    meta_campaign_id: str
    meta_adset_id: str
    meta_leadform_id: str
    meta_creative_id: str
    meta_ad_id: str
    daily_budget_cents: int
    radius_km: float
    launched_at: datetime


StepResult = Union[LaunchState, SagaFailure]
Step = Callable[[MetaClient, LaunchPlan, LaunchState], Awaitable[StepResult]]


def _failed(step: str, resp: MetaResponse, outcome: MetaErr) -> SagaFailure:
    return SagaFailure(
        step=step,
        message=outcome.message,
        meta_error=outcome.raw,
        raw_body=resp.raw_body,
    )


# ── Steps ──


async def create_campaign(client: MetaClient, plan: LaunchPlan, state: LaunchState) -> StepResult:
    resp = await client.post(
        endpoints.campaign_path(plan.ad_account_id),
        endpoints.campaign_params(plan.campaign_name),
    )
    outcome = resp.outcome("Failed to create campaign on Meta")
    if isinstance(outcome, MetaErr):
        return _failed(STEP_CAMPAIGN, resp, outcome)
    return replace(state, campaign_id=outcome.resource_id)


async def create_adset(client: MetaClient, plan: LaunchPlan, state: LaunchState) -> StepResult:
    resp = await client.post(
        endpoints.adset_path(plan.ad_account_id),
        endpoints.adset_params(
            plan.campaign_name,
            state.campaign_id,
            plan.daily_budget_cents,
            plan.targeting,
            plan.page_id,
            plan.started_at,
        ),
    )
    outcome = resp.outcome("Failed to create ad set on Meta")
    if isinstance(outcome, MetaErr):
        return _failed(STEP_ADSET, resp, outcome)
    return replace(state, adset_id=outcome.resource_id)


async def create_leadform(client: MetaClient, plan: LaunchPlan, state: LaunchState) -> StepResult:
    resp = await client.post(
        endpoints.leadform_path(plan.page_id),
        endpoints.leadform_params(
            plan.business_name, settings.meta_privacy_policy_url, plan.started_at
        ),
    )
    outcome = resp.outcome("Failed to create lead form")
    if isinstance(outcome, MetaErr):
        return _failed(STEP_LEADFORM, resp, outcome)
    return replace(state, leadform_id=outcome.resource_id)


async def create_creative(client: MetaClient, plan: LaunchPlan, state: LaunchState) -> StepResult:
    resp = await client.post(
        endpoints.creative_path(plan.ad_account_id),
        endpoints.creative_params(
            plan.campaign_name,
            plan.page_id,
            state.leadform_id,
            plan.headline,
            plan.body,
            plan.variant,
            settings.meta_default_link_url,
        ),
    )
    outcome = resp.outcome("Failed to create ad creative")
    if isinstance(outcome, MetaErr):
        return _failed(STEP_CREATIVE, resp, outcome)
    return replace(state, creative_id=outcome.resource_id)


async def create_ad(client: MetaClient, plan: LaunchPlan, state: LaunchState) -> StepResult:
    resp = await client.post(
        endpoints.ad_path(plan.ad_account_id),
        endpoints.ad_params(plan.campaign_name, state.adset_id, state.creative_id),
    )
    outcome = resp.outcome("Failed to create ad")
    if isinstance(outcome, MetaErr):
        return _failed(STEP_AD, resp, outcome)
    return replace(state, ad_id=outcome.resource_id)


async def activate_ad(client: MetaClient, plan: LaunchPlan, state: LaunchState) -> StepResult:
    resp = await client.set_status(state.ad_id, endpoints.ACTIVE)
    outcome = resp.outcome("Failed to activate ad", require_id=False)
    if isinstance(outcome, MetaErr):
        return _failed(STEP_ACTIVATE, resp, outcome)
    return state


STEPS: Tuple[Tuple[str, Step], ...] = (
    (STEP_CAMPAIGN, create_campaign),
    (STEP_ADSET, create_adset),
    (STEP_LEADFORM, create_leadform),
    (STEP_CREATIVE, create_creative),
    (STEP_AD, create_ad),
    (STEP_ACTIVATE, activate_ad),
)


# ── Orchestrator ──


class CampaignLaunchSaga:
    """Runs STEPS in order against one Meta client.

    ``cascade_delete`` reflects whether Meta removes a campaign's children
    with it. When False, rollback deletes every created resource explicitly,
    newest first, ending with the campaign.
    """

    def __init__(
        self,
        client: MetaClient,
        cascade_delete: bool = True,
        campaign_id: Optional[str] = None,
    ):
        self.client = client
        self.log = bind(logger, campaign_id=campaign_id)
        self.cascade_delete = cascade_delete

    async def run(self, plan: LaunchPlan) -> Union[LaunchResult, SagaFailure]:
        state = LaunchState()
        for name, step in STEPS:
            self.log.info(f"Launch step '{name}' starting", extra={"step": name})
            try:
                result = await step(self.client, plan, state)
            except MetaTransportError as e:
                self.log.error(f"Step '{name}' transport failure: {e}", extra={"step": name})
                result = SagaFailure(
                    step=name,
                    message=f"Could not reach Meta: {e}",
                    meta_error={"message": str(e), "type": "TransportError", "code": -1},
                )
            except Exception:
                self.log.error(
                    f"Step '{name}' raised unexpectedly", exc_info=True, extra={"step": name}
                )
                await self.compensate(state)
                raise

            if isinstance(result, SagaFailure):
                if result.raw_body:
                    self.log.error(
                        f"Step '{name}' failed: {result.raw_body[:1000]}",
                        extra={"step": name},
                    )
                await self.compensate(state)
                return result
            self.log.info(f"Launch step '{name}' done", extra={"step": name})
            state = result

        await self._activate_parents(state)
        return LaunchResult(
            meta_campaign_id=state.campaign_id,
            meta_adset_id=state.adset_id,
            meta_leadform_id=state.leadform_id,
            meta_creative_id=state.creative_id,
            meta_ad_id=state.ad_id,
            daily_budget_cents=plan.daily_budget_cents,
            radius_km=plan.radius_km,
            launched_at=utcnow(),
        )

    async def _activate_parents(self, state: LaunchState) -> None:
        for step, resource_id in ((STEP_ADSET, state.adset_id), (STEP_CAMPAIGN, state.campaign_id)):
            try:
                resp = await self.client.set_status(resource_id, endpoints.ACTIVE)
            except Exception as e:
                self.log.warning(f"Activating {step} {resource_id} failed: {e}", extra={"step": step})
                continue
            if isinstance(resp.outcome("", require_id=False), MetaErr):
                self.log.warning(
                    f"Activating {step} {resource_id} failed: {resp.raw_body[:500]}",
                    extra={"step": step},
                )

    async def compensate(self, state: LaunchState) -> None:
        """Best-effort rollback. Never raises; outcomes are only logged."""
        if not state.campaign_id:
            return
        if self.cascade_delete:
            targets = ((STEP_CAMPAIGN, state.campaign_id),)
        else:
            targets = tuple(reversed(state.created()))

        for step, resource_id in targets:
            try:
                resp = await self.client.delete(resource_id)
            except Exception as e:
                self.log.error(f"Rollback delete of {step} {resource_id} failed: {e}", extra={"step": step})
                continue
            if resp.ok:
                self.log.info(f"Rolled back {step} {resource_id}", extra={"step": step})
            else:
                self.log.error(
                    f"Rollback delete of {step} {resource_id} failed: {resp.raw_body[:500]}",
                    extra={"step": step},
                )


# ── Draft -> plan -> persisted launch ──


def _apply_radius(targeting: Dict[str, Any], radius_km: Optional[float]) -> Dict[str, Any]:
    """Override the radius of every custom location when the caller asked to."""
    if radius_km is None:
        return targeting
    geo = dict(targeting.get("geo_locations") or {})
    locations = geo.get("custom_locations") or []
    if not locations:
        return targeting
    geo["custom_locations"] = [
        {**loc, "radius": radius_km, "distance_unit": "kilometer"} for loc in locations
    ]
    return {**targeting, "geo_locations": geo}


def build_plan(
    draft: ApiCampaign,
    ad_account_id: str,
    page_id: str,
    variant_index: int = 0,
    daily_budget_cents: Optional[int] = None,
    radius_km: Optional[float] = None,
    now: Optional[datetime] = None,
) -> LaunchPlan:
    now = now or utcnow()
    business_name = draft.business_name or "Campaign"
    variant = draft.variant(variant_index)
    targeting = _apply_radius(draft.targeting or {}, radius_km)

    return LaunchPlan(
        ad_account_id=endpoints.normalize_ad_account_id(ad_account_id),
        page_id=page_id,
        business_name=business_name,
        campaign_name=endpoints.campaign_name(business_name, now),
        headline=variant.headline or business_name,
        body=variant.copy or f"Check out {business_name}",
        variant=variant,
        daily_budget_cents=(
            daily_budget_cents
            or draft.daily_budget_cents
            or settings.default_daily_budget_cents
        ),
        radius_km=(
            radius_km
            or (draft.targeting or {}).get("radius_km")
            or settings.default_radius_km
        ),
        targeting=endpoints.build_targeting(
            targeting,
            settings.default_country,
            settings.default_age_min,
            settings.default_age_max,
        ),
        started_at=now,
    )


def record_launch(session: Session, draft: ApiCampaign, result: LaunchResult) -> None:
    """Write the whole resource chain at once and flip the draft live."""
    draft.meta_campaign_id = result.meta_campaign_id
    draft.meta_adset_id = result.meta_adset_id
    draft.meta_leadform_id = result.meta_leadform_id
    draft.meta_creative_id = result.meta_creative_id
    draft.meta_ad_id = result.meta_ad_id
    draft.daily_budget_cents = result.daily_budget_cents
    draft.radius_km = result.radius_km
    draft.launched_at = result.launched_at
    draft.status = "active"
    session.add(draft)
    session.commit()
    session.refresh(draft)


async def launch_campaign(
    session: Session,
    draft: ApiCampaign,
    client: MetaClient,
    plan: LaunchPlan,
    cascade_delete: bool = True,
) -> LaunchResult:
    """Run the saga for a draft; raise MetaApiError with the failing step."""
    if draft.meta_campaign_id:
        logger.warning(
            f"Draft already launched as {draft.meta_campaign_id}; building a new chain",
            extra={"campaign_id": draft.id},
        )

    outcome = await CampaignLaunchSaga(
        client, cascade_delete=cascade_delete, campaign_id=draft.id
    ).run(plan)
    if isinstance(outcome, SagaFailure):
        raise MetaApiError(outcome.message, meta_error=outcome.meta_error, step=outcome.step)

    record_launch(session, draft, outcome)
    logger.info(
        f"Launched draft as Meta campaign {outcome.meta_campaign_id}",
        extra={"campaign_id": draft.id},
    )
    return outcome
