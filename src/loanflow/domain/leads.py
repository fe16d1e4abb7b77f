"""
Video-KYC calling lead push.

When an applicant's video KYC stalls, a calling lead is created for them in
the lending store (``calling_service_leads``) and then pushed to the dialer,
which tracks it in the calling store (``vendor_lead_details``). Two
campaigns share the flow and differ in which KYC rows qualify:

===========  ==========================================  ===========  ==========
Campaign     KYC status                                  Provider     Attempts
===========  ==========================================  ===========  ==========
VKYC_NOTRY   STARTED, INITIATED, VKYC_INVALIDATED        IN_HOUSE,    0
                                                         HYPERVERGE
VKYC_TRIED   IN_PROGRESS, INITIATED, FAILED, RETRY,      any          > 0
             VKYC_INVALIDATED
===========  ==========================================  ===========  ==========

Both require ``flow_type = ASSISTED``.

Chain
-----
==================  ============  ==============================================
Link                Store         Does
==================  ============  ==============================================
application_status  lending       review status is ``REQ_CREDIT_CHECK``
vkyc_touch          lending       backdate the KYC row so the lead job sees it
vkyc_eligible       lending       KYC row qualifies for the campaign
lead_exists         lending       lead already created → done
create_lead         lending       trigger the campaign's create endpoint; wait
                                  for an ADDED lead; derive application number
push_lead           calling       by application number: READY_TO_ADD → trigger
                                  ``push_lead`` once → ADDED
==================  ============  ==============================================

Keys
----
``calling_service_leads.entity_id`` holds the loan application *number*, not
the id. The ``calling_lead`` statement resolves it from the id, so lending
lookups stay keyed by the id and the confirmed lead row's ``entity_id`` is
the derived key every calling-store lookup uses.

Statement keys
--------------
lending: ``application_status``, ``vkyc_touch``, ``vkyc_retry_touch``,
``vkyc_info``, ``calling_lead`` (binds ``campaign_id``)
calling: ``vendor_lead`` (binds ``campaign_id``)
"""

from __future__ import annotations

import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any

from loanflow.core.errors import ConfigurationError, InvalidEntityIdError
from loanflow.core.protocols import Actuator, Sleeper, StoreHandle
from loanflow.execution.cancellation import CancelToken, SystemSleeper
from loanflow.execution.retry import RetryPolicy
from loanflow.orchestration.chain import (
    ChainReport,
    ExpectRecordLink,
    PreconditionLink,
    PushConfirmLink,
    ReconciliationChain,
    TouchRecordLink,
    TriggerConfirmLink,
    greater_than,
)

ENTITY_ID_PATTERN = re.compile(r"[A-Za-z0-9_-]+")

CREDIT_CHECK_STATUS = "REQ_CREDIT_CHECK"
KYC_FLOW_TYPE = "ASSISTED"

LEAD_CREATION_POLICY = RetryPolicy(max_attempts=12, interval_ms=5000)
LEAD_CONFIRMATION_POLICY = RetryPolicy(max_attempts=20, interval_ms=15000)
TRIGGER_POLICY = RetryPolicy(max_attempts=3, interval_ms=1000)

# vkyc_info rows younger than this are not picked up by the lead job
DEFAULT_TOUCH_AGE = timedelta(minutes=60)


@dataclass(frozen=True)
class LeadCampaign:
    """What distinguishes one calling campaign's lead chain."""

    campaign_id: str
    create_trigger: str
    touch_statement: str
    touch_field: str
    kyc_expected: Mapping[str, Any] = field(default_factory=dict)

    @property
    def chain_name(self) -> str:
        return self.campaign_id.lower()


VKYC_NOTRY = LeadCampaign(
    campaign_id="VKYC_NOTRY",
    create_trigger="create_lead",
    touch_statement="vkyc_touch",
    touch_field="date_created",
    kyc_expected={
        "status": frozenset({"STARTED", "INITIATED", "VKYC_INVALIDATED"}),
        "provider": frozenset({"IN_HOUSE", "HYPERVERGE"}),
        "flow_type": KYC_FLOW_TYPE,
        "attempts": 0,
    },
)

VKYC_TRIED = LeadCampaign(
    campaign_id="VKYC_TRIED",
    create_trigger="create_lead_tried",
    touch_statement="vkyc_retry_touch",
    touch_field="date_modified",
    kyc_expected={
        "status": frozenset({"IN_PROGRESS", "INITIATED", "FAILED", "RETRY", "VKYC_INVALIDATED"}),
        "flow_type": KYC_FLOW_TYPE,
        "attempts": greater_than(0),
    },
)

CAMPAIGNS = {c.campaign_id: c for c in (VKYC_NOTRY, VKYC_TRIED)}


def lead_campaign(campaign_id: str) -> LeadCampaign:
    """Look up a campaign by id (case-insensitive)."""
    try:
        return CAMPAIGNS[campaign_id.upper()]
    except KeyError:
        raise ConfigurationError(
            f"Unknown campaign: {campaign_id} (expected one of {sorted(CAMPAIGNS)})"
        ) from None


def validate_entity_id(entity_id: str | None) -> str:
    """Return ``entity_id`` if it is a safe identifier, else raise."""
    if not entity_id or not ENTITY_ID_PATTERN.fullmatch(entity_id):
        raise InvalidEntityIdError(entity_id)
    return entity_id


class LeadStatus(str, Enum):
    READY_TO_ADD = "READY_TO_ADD"
    ADDED = "ADDED"
    OTHER = "OTHER"

    @classmethod
    def parse(cls, value: Any) -> LeadStatus:
        try:
            return cls(str(value))
        except ValueError:
            return cls.OTHER


@dataclass(frozen=True)
class LeadRecord:
    """A calling lead as a store row shows it."""

    entity_id: str
    campaign_id: str | None
    status: LeadStatus

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> LeadRecord:
        return cls(
            entity_id=str(row.get("entity_id")),
            campaign_id=row.get("campaign_id"),
            status=LeadStatus.parse(row.get("status")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "entity_id": self.entity_id,
            "campaign_id": self.campaign_id,
            "status": self.status.value,
        }


def lead_records(report: ChainReport) -> dict[str, LeadRecord]:
    """Lead rows confirmed during a chain run, by link name."""
    return {
        link: LeadRecord.from_row(row)
        for link, row in report.rows.items()
        if "status" in row and "entity_id" in row
    }


def build_lead_chain(
    lead_store: StoreHandle,
    calling_store: StoreHandle,
    actuator: Actuator,
    *,
    campaign: LeadCampaign = VKYC_NOTRY,
    lead_creation_policy: RetryPolicy = LEAD_CREATION_POLICY,
    lead_confirmation_policy: RetryPolicy = LEAD_CONFIRMATION_POLICY,
    trigger_policy: RetryPolicy = TRIGGER_POLICY,
    sleeper: Sleeper | None = None,
    cancel: CancelToken | None = None,
    touch_age: timedelta = DEFAULT_TOUCH_AGE,
    clock: Callable[[], datetime] = datetime.now,
) -> ReconciliationChain:
    """The lead push chain for ``campaign`` (VKYC_NOTRY by default).

    Pass the same ``cancel`` token to ``chain.run`` so aborts wake the
    default sleeper.
    """
    sleeper = sleeper if sleeper is not None else SystemSleeper(cancel)
    by_campaign = {"campaign_id": campaign.campaign_id}

    def backdated() -> dict[str, Any]:
        return {campaign.touch_field: (clock() - touch_age).strftime("%Y-%m-%d %H:%M:%S")}

    return ReconciliationChain(
        campaign.chain_name,
        [
            ExpectRecordLink(
                "application_status",
                lead_store,
                "application_status",
                {"user_data_review_status": CREDIT_CHECK_STATUS},
            ),
            TouchRecordLink("vkyc_touch", lead_store, campaign.touch_statement, params=backdated),
            ExpectRecordLink("vkyc_eligible", lead_store, "vkyc_info", campaign.kyc_expected),
            PreconditionLink(
                "lead_exists",
                lead_store,
                "calling_lead",
                expected=by_campaign,
                params=by_campaign,
            ),
            TriggerConfirmLink(
                "create_lead",
                lead_store,
                "calling_lead",
                expected={**by_campaign, "status": LeadStatus.ADDED.value},
                derive_key_field="entity_id",
                stage="lead_created",
                actuator=actuator,
                trigger=campaign.create_trigger,
                policy=lead_creation_policy,
                actuation_policy=trigger_policy,
                sleeper=sleeper,
                params=by_campaign,
            ),
            PushConfirmLink(
                "push_lead",
                calling_store,
                "vendor_lead",
                ready_status=LeadStatus.READY_TO_ADD.value,
                added_status=LeadStatus.ADDED.value,
                actuator=actuator,
                trigger="push_lead",
                policy=lead_confirmation_policy,
                actuation_policy=trigger_policy,
                sleeper=sleeper,
                params=by_campaign,
            ),
        ],
    )


def build_tried_lead_chain(
    lead_store: StoreHandle,
    calling_store: StoreHandle,
    actuator: Actuator,
    **kwargs: Any,
) -> ReconciliationChain:
    """The VKYC_TRIED lead push chain."""
    return build_lead_chain(lead_store, calling_store, actuator, campaign=VKYC_TRIED, **kwargs)
