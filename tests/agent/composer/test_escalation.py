"""
Tests for escalation targets and referral composition.

Tests verify:
- Domain to target resolution and the Ombuds fallback
- Urgency rules
- Deterministic referral content
- LLM referrals always carry verified contact details
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from agent.composer.escalation import (
    ATHLETE_OMBUDS,
    build_escalation_info,
    build_referral_message,
    compose_referral,
    determine_urgency,
    get_escalation_targets,
    resolve_targets,
)
from libs.common.errors import EscalationDataMissingError

SAFESPORT_PHONE = "833-5US-SAFE (833-587-7233)"


class TestTargets:
    def test_safesport_targets(self):
        ids = [t.id for t in get_escalation_targets("safesport")]
        assert ids == ["safesport_center", "emergency_services"]

    def test_dispute_resolution_targets(self):
        ids = [t.id for t in get_escalation_targets("dispute_resolution")]
        assert ids == ["athlete_ombuds", "cas"]

    @pytest.mark.parametrize("domain", [None, "financial_assistance", "athlete_safety", "not_a_domain"])
    def test_missing_targets_raise(self, domain):
        with pytest.raises(EscalationDataMissingError):
            get_escalation_targets(domain)

    @pytest.mark.parametrize("domain", [None, "financial_assistance", "athlete_safety"])
    def test_resolve_falls_back_to_ombuds(self, domain):
        assert resolve_targets(domain) == [ATHLETE_OMBUDS]


class TestUrgency:
    @pytest.mark.parametrize("domain", ["safesport", "anti_doping"])
    def test_immediate_domains(self, domain):
        assert determine_urgency(domain, has_time_constraint=False) == "immediate"

    def test_time_constraint_is_immediate(self):
        assert determine_urgency("team_selection", has_time_constraint=True) == "immediate"

    def test_standard_otherwise(self):
        assert determine_urgency("governance", has_time_constraint=False) == "standard"
        assert determine_urgency(None, has_time_constraint=False) == "standard"


class TestEscalationInfo:
    def test_primary_target_details(self):
        info = build_escalation_info(get_escalation_targets("safesport"), "safesport", "immediate")

        assert info.target == "safesport_center"
        assert info.contact_phone == SAFESPORT_PHONE
        assert info.urgency == "immediate"
        assert "safesport" in info.reason

    def test_reason_preserved(self):
        info = build_escalation_info([ATHLETE_OMBUDS], "team_selection", "standard", "Deselected unfairly")
        assert info.reason == "Deselected unfairly"


class TestReferralMessage:
    def test_safesport_mentions_911_and_hotline(self):
        message = build_referral_message(get_escalation_targets("safesport"), "safesport", "immediate")

        assert message.startswith("**If you are in immediate danger, please call 911 first.**")
        assert SAFESPORT_PHONE in message
        assert "## What They Can Help With" in message

    def test_standard_referral_lists_every_target(self):
        targets = get_escalation_targets("dispute_resolution")

        message = build_referral_message(targets, "dispute_resolution", "standard")

        assert "best addressed by a specialized authority" in message
        assert "Athlete Ombuds" in message
        assert "Court of Arbitration for Sport (CAS)" in message
        assert "ombudsman@usathlete.org" in message

    def test_absent_contact_fields_omitted(self):
        message = build_referral_message(get_escalation_targets("dispute_resolution"), "dispute_resolution", "standard")
        cas_block = message.split("**Court of Arbitration for Sport (CAS)**")[1]
        assert "Phone:" not in cas_block.split("**")[0]


class TestComposeReferral:
    @pytest.fixture
    def gateway(self):
        mock = MagicMock()
        mock.ainvoke = AsyncMock()
        return mock

    async def test_template_without_gateway(self):
        targets = get_escalation_targets("anti_doping")
        referral = await compose_referral(None, targets, "anti_doping", "immediate", None, "help")
        assert referral == build_referral_message(targets, "anti_doping", "immediate")

    async def test_llm_referral_used_when_it_names_contact(self, gateway):
        gateway.ainvoke.return_value = f"Please call the Center at {SAFESPORT_PHONE}."
        targets = get_escalation_targets("safesport")

        referral = await compose_referral(gateway, targets, "safesport", "immediate", "abuse", "my coach...")

        assert referral == f"Please call the Center at {SAFESPORT_PHONE}."

    async def test_contacts_appended_when_llm_omits_them(self, gateway):
        gateway.ainvoke.return_value = "You deserve support. Reach out today."
        targets = get_escalation_targets("safesport")

        referral = await compose_referral(gateway, targets, "safesport", "immediate", "abuse", "my coach...")

        assert referral.startswith("You deserve support.")
        assert SAFESPORT_PHONE in referral

    @pytest.mark.parametrize("failure", [RuntimeError("down"), ""])
    async def test_failure_or_empty_falls_back_to_template(self, gateway, failure):
        if isinstance(failure, Exception):
            gateway.ainvoke.side_effect = failure
        else:
            gateway.ainvoke.return_value = failure
        targets = [ATHLETE_OMBUDS]

        referral = await compose_referral(gateway, targets, "team_selection", "standard", None, "help")

        assert referral == build_referral_message(targets, "team_selection", "standard")
