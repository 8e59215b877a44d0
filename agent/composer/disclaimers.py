"""Domain disclaimers appended to every substantive answer."""

from typing import Dict, Optional

OMBUDS_CONTACT = "ombudsman@usathlete.org or 719-866-5000"

GENERAL_DISCLAIMER = (
    "This information is for educational purposes only and does not constitute legal advice. "
    "For personalized guidance, consult the Athlete Ombuds or qualified legal counsel."
)

SAFESPORT_DISCLAIMER = (
    "If you are in immediate danger, call 911. "
    "To report abuse or misconduct in sport, contact the U.S. Center for SafeSport "
    "at https://uscenterforsafesport.org/report-a-concern/ or call 833-5US-SAFE (833-587-7233). "
    "Reports can be made anonymously.\n\n" + GENERAL_DISCLAIMER
)

ANTI_DOPING_DISCLAIMER = (
    GENERAL_DISCLAIMER + "\n\nFor anti-doping questions, including Therapeutic Use Exemptions (TUEs), "
    "whereabouts requirements, or testing procedures, contact USADA at https://www.usada.org "
    "or call 1-866-601-2632. If you have been notified of a potential anti-doping rule violation, "
    "seek legal counsel immediately."
)

DISPUTE_RESOLUTION_DISCLAIMER = (
    GENERAL_DISCLAIMER + "\n\nFor assistance with disputes, including Section 9 arbitration and grievance "
    f"procedures, contact the Athlete Ombuds at {OMBUDS_CONTACT}. "
    "The Ombuds provides free, confidential, and independent advice to athletes."
)

GOVERNANCE_DISCLAIMER = (
    GENERAL_DISCLAIMER + "\n\nFor governance and representation concerns, contact the Team USA "
    "Athletes' Commission at https://www.usopc.org/voice-and-representation or reach out to your "
    "NGB's athlete representative."
)

ATHLETE_RIGHTS_DISCLAIMER = (
    GENERAL_DISCLAIMER + "\n\nFor questions about athlete rights, representation, and the Athlete Bill "
    "of Rights, contact the Team USA Athletes' Commission at "
    "https://www.usopc.org/voice-and-representation. For marketing and sponsorship rights questions, "
    f"the Athlete Ombuds can provide guidance at {OMBUDS_CONTACT}."
)

TEAM_SELECTION_DISCLAIMER = (
    GENERAL_DISCLAIMER + "\n\nTeam selection procedures vary by sport and event. Always refer to the "
    "specific NGB's published selection procedures for the competition in question. If you believe a "
    f"selection decision was made in error, contact the Athlete Ombuds at {OMBUDS_CONTACT}."
)

ELIGIBILITY_DISCLAIMER = (
    GENERAL_DISCLAIMER + "\n\nEligibility requirements vary by sport, competition level, and governing "
    "body. Contact your NGB directly or the Athlete Ombuds at ombudsman@usathlete.org for guidance "
    "specific to your situation."
)

DISCLAIMERS: Dict[str, str] = {
    "team_selection": TEAM_SELECTION_DISCLAIMER,
    "dispute_resolution": DISPUTE_RESOLUTION_DISCLAIMER,
    "safesport": SAFESPORT_DISCLAIMER,
    "anti_doping": ANTI_DOPING_DISCLAIMER,
    "eligibility": ELIGIBILITY_DISCLAIMER,
    "governance": GOVERNANCE_DISCLAIMER,
    "athlete_rights": ATHLETE_RIGHTS_DISCLAIMER,
    "athlete_safety": GENERAL_DISCLAIMER,
    "financial_assistance": GENERAL_DISCLAIMER,
}

DISCLAIMER_SEPARATOR = "\n\n---\n\n"


def get_disclaimer(domain: Optional[str]) -> str:
    """Disclaimer for a domain; the general one when unset or unknown."""
    return DISCLAIMERS.get(domain or "", GENERAL_DISCLAIMER)


def append_disclaimer(answer: str, domain: Optional[str]) -> str:
    return answer + DISCLAIMER_SEPARATOR + get_disclaimer(domain)
