"""
Escalation targets and referral composition.

Maps a topic domain to the human authorities that handle it, decides urgency,
and writes the referral. The LLM-authored referral is preferred; whenever it
cannot be produced the deterministic template is used instead, so every
escalation carries actionable contact details.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

import structlog

from agent.composer.prompts import ESCALATION_TEMPLATE
from agent.llm.gateway import LLMGateway
from agent.schemas.agent_state import EscalationInfo
from libs.common.errors import EscalationDataMissingError

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class EscalationTarget:
    """A human authority the agent can refer an athlete to."""

    id: str
    organization: str
    domains: Tuple[str, ...]
    urgency_default: str
    description: str
    contact_email: Optional[str] = None
    contact_phone: Optional[str] = None
    contact_url: Optional[str] = None


ATHLETE_OMBUDS = EscalationTarget(
    id="athlete_ombuds",
    organization="Athlete Ombuds",
    contact_email="ombudsman@usathlete.org",
    contact_phone="719-866-5000",
    contact_url="https://www.usathlete.org",
    domains=("dispute_resolution", "team_selection", "eligibility", "governance", "athlete_rights"),
    urgency_default="standard",
    description=(
        "Provides free, confidential, and independent advice to athletes on disputes, team selection "
        "concerns, eligibility questions, and athlete rights, and can explain your options."
    ),
)

ESCALATION_TARGETS: List[EscalationTarget] = [
    ATHLETE_OMBUDS,
    EscalationTarget(
        id="safesport_center",
        organization="U.S. Center for SafeSport",
        contact_phone="833-5US-SAFE (833-587-7233)",
        contact_url="https://uscenterforsafesport.org/report-a-concern/",
        domains=("safesport",),
        urgency_default="immediate",
        description=(
            "The exclusive authority for investigating reports of sexual, emotional and physical "
            "misconduct, bullying, hazing, and harassment in U.S. Olympic and Paralympic sport. "
            "Reports can be made anonymously."
        ),
    ),
    EscalationTarget(
        id="usada",
        organization="U.S. Anti-Doping Agency (USADA)",
        contact_phone="1-866-601-2632",
        contact_url="https://www.usada.org",
        domains=("anti_doping",),
        urgency_default="immediate",
        description=(
            "The independent anti-doping organization responsible for testing, education, and "
            "adjudication. Contact USADA about testing, TUEs, whereabouts, and rule violations."
        ),
    ),
    EscalationTarget(
        id="athletes_commission",
        organization="Team USA Athletes' Commission",
        contact_email="teamusa.ac@teamusa-ac.org",
        contact_url="https://www.usopc.org/teamusa-athletes-commission",
        domains=("governance", "athlete_rights"),
        urgency_default="standard",
        description=(
            "Represents athlete interests within USOPC governance, including representation on boards "
            "and committees and the Athlete Bill of Rights."
        ),
    ),
    EscalationTarget(
        id="cas",
        organization="Court of Arbitration for Sport (CAS)",
        contact_url="https://www.tas-cas.org",
        domains=("dispute_resolution",),
        urgency_default="standard",
        description=(
            "International arbitration body for sport disputes, hearing appeals from decisions of sports "
            "organizations. Strict filing deadlines apply (typically 21 days from the decision)."
        ),
    ),
    EscalationTarget(
        id="emergency_services",
        organization="Emergency Services",
        contact_phone="911",
        domains=("safesport",),
        urgency_default="immediate",
        description=(
            "If you or someone else is in immediate physical danger, call 911 first, then follow up "
            "with a report to the U.S. Center for SafeSport."
        ),
    ),
]

IMMEDIATE_DOMAINS = {"safesport", "anti_doping"}

DOMAIN_GUIDANCE: Dict[str, str] = {
    "safesport": (
        "SafeSport matter. The U.S. Center for SafeSport has exclusive jurisdiction over misconduct "
        "investigations. Reports can be anonymous, and the SafeSport Code prohibits retaliation."
    ),
    "anti_doping": (
        "Anti-doping matter. USADA handles testing, adjudication, and TUE decisions. "
        "Time-sensitive action may be required."
    ),
    "dispute_resolution": (
        "Dispute that may need formal resolution. The Athlete Ombuds gives free, confidential guidance. "
        "Section 9 arbitration and AAA proceedings have strict deadlines."
    ),
    "team_selection": (
        "Team selection concern. The Athlete Ombuds can explain options, including whether a "
        "Section 9 arbitration claim is available."
    ),
    "eligibility": "Eligibility question. The Athlete Ombuds can advise on requirements and processes.",
    "governance": (
        "Governance or compliance concern. The Athletes' Commission and Athlete Ombuds can help with "
        "NGB compliance and representation issues."
    ),
    "athlete_rights": (
        "Athlete rights or representation. The Athletes' Commission handles representation, and the "
        "Athlete Ombuds advises on rights-related disputes."
    ),
    "athlete_safety": (
        "Athlete safety concern. The Athlete Ombuds can advise on safety-related protections and refer "
        "misconduct to the U.S. Center for SafeSport."
    ),
    "financial_assistance": (
        "Athlete financial support or benefits. The Athlete Ombuds can advise on funding programs, "
        "stipends, and grant eligibility."
    ),
}

DOMAIN_HELP: Dict[str, str] = {
    "safesport": (
        "The U.S. Center for SafeSport can investigate reports of sexual, emotional, or physical "
        "misconduct, bullying, hazing, and harassment. Reports can be made anonymously."
    ),
    "anti_doping": (
        "USADA can assist with drug testing, Therapeutic Use Exemptions (TUEs), whereabouts requirements, "
        "prohibited substances, and anti-doping rule violation proceedings."
    ),
    "dispute_resolution": (
        "The Athlete Ombuds provides free, confidential advice on disputes including Section 9 "
        "arbitration, grievance procedures, and how to challenge decisions by an NGB or the USOPC."
    ),
    "team_selection": (
        "The Athlete Ombuds can help you understand the selection procedures for your sport and your "
        "options if you believe a selection decision was made in error."
    ),
    "eligibility": (
        "The Athlete Ombuds can advise on eligibility requirements and processes for your sport and "
        "competition level."
    ),
    "governance": (
        "The Athletes' Commission and Athlete Ombuds can assist with governance concerns, NGB compliance "
        "issues, and athlete representation questions."
    ),
    "athlete_rights": (
        "The Athletes' Commission can help with athlete representation, the Athlete Bill of Rights, and "
        "marketing and sponsorship rights. The Athlete Ombuds can give confidential guidance on "
        "rights-related disputes."
    ),
}


def get_escalation_targets(domain: Optional[str]) -> List[EscalationTarget]:
    """Targets serving ``domain``, in directory order.

    Raises:
        EscalationDataMissingError: no target serves the domain
    """
    targets = [t for t in ESCALATION_TARGETS if domain and domain in t.domains]
    if not targets:
        raise EscalationDataMissingError(domain)
    return targets


def resolve_targets(domain: Optional[str]) -> List[EscalationTarget]:
    """Targets for ``domain``, falling back to the Athlete Ombuds."""
    try:
        return get_escalation_targets(domain)
    except EscalationDataMissingError as e:
        logger.warning("No escalation targets for domain, using Athlete Ombuds", domain=e.domain)
        return [ATHLETE_OMBUDS]


def determine_urgency(domain: Optional[str], has_time_constraint: bool) -> str:
    if domain in IMMEDIATE_DOMAINS:
        return "immediate"
    if has_time_constraint:
        return "immediate"
    return "standard"


def build_escalation_info(
    targets: List[EscalationTarget],
    domain: Optional[str],
    urgency: str,
    reason: Optional[str] = None,
) -> EscalationInfo:
    """EscalationInfo for the primary (first) target."""
    primary = targets[0]
    domain_label = (domain or "general").replace("_", " ")
    return EscalationInfo(
        target=primary.id,
        organization=primary.organization,
        contact_email=primary.contact_email,
        contact_phone=primary.contact_phone,
        contact_url=primary.contact_url,
        reason=reason or f"User query requires {urgency} escalation to {primary.organization} for {domain_label} matter",
        urgency=urgency,
    )


def format_contact_block(target: EscalationTarget, markdown_links: bool = False) -> str:
    """Contact block for one target; absent fields are omitted."""
    lines = [f"### {target.organization}" if markdown_links else f"**{target.organization}**", target.description]
    if target.contact_phone:
        lines.append(f"- Phone: {target.contact_phone}")
    if target.contact_email:
        email = f"[{target.contact_email}](mailto:{target.contact_email})" if markdown_links else target.contact_email
        lines.append(f"- Email: {email}")
    if target.contact_url:
        url = f"[{target.organization}]({target.contact_url})" if markdown_links else target.contact_url
        lines.append(f"- Website: {url}")
    return "\n".join(lines)


def build_referral_message(targets: List[EscalationTarget], domain: Optional[str], urgency: str) -> str:
    """Deterministic referral built only from the target list."""
    parts: List[str] = []

    if urgency == "immediate":
        if domain == "safesport":
            parts.append("**If you are in immediate danger, please call 911 first.**\n")
            parts.append(
                "Your concern involves potential abuse or misconduct, which must be reported to the "
                "appropriate authority. I can't investigate or resolve SafeSport matters, but I can "
                "direct you to the right resources.\n"
            )
        elif domain == "anti_doping":
            parts.append(
                "Your question involves an anti-doping matter that may require immediate action. "
                "Please contact USADA directly for guidance specific to your situation.\n"
            )
        else:
            parts.append(
                "Based on the urgency of your situation, I recommend contacting the following "
                "resource(s) directly for timely assistance.\n"
            )
    else:
        parts.append(
            "Your question is best addressed by a specialized authority. I recommend reaching out "
            "to the following resource(s) for personalized guidance.\n"
        )

    parts.append("## Recommended Contact(s)\n")
    for target in targets:
        parts.append(format_contact_block(target))
        parts.append("")

    help_text = DOMAIN_HELP.get(domain or "")
    if help_text:
        parts.append("## What They Can Help With\n")
        parts.append(help_text)

    return "\n".join(parts).rstrip()


async def compose_referral(
    gateway: Optional[LLMGateway],
    targets: List[EscalationTarget],
    domain: Optional[str],
    urgency: str,
    reason: Optional[str],
    user_message: str,
) -> str:
    """LLM-authored referral, or the deterministic template on any failure."""
    template = build_referral_message(targets, domain, urgency)
    if gateway is None:
        return template

    domain_label = (domain or "general").replace("_", " ")
    prompt = ESCALATION_TEMPLATE.format_messages(
        contact_blocks="\n\n".join(format_contact_block(t, markdown_links=True) for t in targets),
        domain_guidance=DOMAIN_GUIDANCE.get(domain or "", ""),
        reason=reason or f"User query requires {urgency} escalation for {domain_label} matter",
        message=user_message,
    )

    try:
        referral = (await gateway.ainvoke(prompt, role="agent")).strip()
    except Exception as e:
        logger.warning("LLM referral failed, using template", error=str(e), domain=domain)
        return template

    if not referral:
        logger.warning("LLM referral empty, using template", domain=domain)
        return template

    primary = targets[0]
    contacts = [c for c in (primary.contact_phone, primary.contact_email, primary.contact_url) if c]
    if not any(contact in referral for contact in contacts):
        # Contact details must always reach the athlete
        blocks = "\n\n".join(format_contact_block(t) for t in targets)
        referral = f"{referral}\n\n## Recommended Contact(s)\n\n{blocks}"
    return referral
