"""
Quality gate for synthesized answers.

An LLM grader scores the answer for specificity, grounding and completeness.
The gate is fail-open: a grader outage, an open breaker or an unreadable
grade all count as a pass so review can never block the athlete's answer.
Deterministic fallback messages skip review entirely.
"""

from __future__ import annotations

from typing import Optional

import structlog
from langsmith import traceable
from pydantic import ValidationError

from agent.composer.prompts import QUALITY_CHECK_TEMPLATE
from agent.llm.gateway import LLMGateway
from agent.llm.parsing import parse_llm_json
from agent.schemas.agent_state import QualityCheckResult
from libs.common.errors import CircuitOpenError, LLMParseError, QualityGradeParseError

logger = structlog.get_logger(__name__)

# Answers starting with these are deterministic fallbacks and never reviewed.
SKIP_PREFIXES = (
    "I wasn't able to understand your question",
    "I was unable to search our knowledge base",
    "I'm temporarily unable to generate a response",
    "I encountered an error while generating your answer",
)


def should_skip_review(answer: Optional[str]) -> bool:
    if not answer or not answer.strip():
        return True
    return answer.lstrip().startswith(SKIP_PREFIXES)


def auto_pass(critique: str = "") -> QualityCheckResult:
    return QualityCheckResult(passed=True, score=1.0, issues=[], critique=critique)


def parse_quality_grade(text: str) -> QualityCheckResult:
    """
    Decode a grader response.

    The decision rule is ``grader.passed AND no critical issue``: a single
    critical issue fails the answer regardless of score.

    Raises:
        QualityGradeParseError: the response is not a usable grade
    """
    try:
        data = parse_llm_json(text)
    except LLMParseError as e:
        raise QualityGradeParseError(str(e)) from e

    if not isinstance(data, dict) or "passed" not in data:
        raise QualityGradeParseError("Grade is not an object with a 'passed' field")

    try:
        score = min(1.0, max(0.0, float(data.get("score", 0.0))))
        grade = QualityCheckResult(
            passed=bool(data["passed"]),
            score=score,
            issues=data.get("issues") or [],
            critique=str(data.get("critique") or ""),
        )
    except (TypeError, ValueError, ValidationError) as e:
        raise QualityGradeParseError(f"Malformed grade: {e}") from e

    has_critical = any(issue.severity == "critical" for issue in grade.issues)
    return grade.model_copy(update={"passed": grade.passed and not has_critical})


class QualityChecker:
    """LLM-graded self review with fail-open semantics."""

    def __init__(self, gateway: LLMGateway):
        self.gateway = gateway

    @traceable(run_type="chain", name="quality_check", tags=["quality", "grader"])
    async def check(
        self,
        answer: Optional[str],
        question: str,
        context: str,
        intent: Optional[str] = None,
    ) -> QualityCheckResult:
        if should_skip_review(answer):
            logger.info("Quality check skipped for fallback answer")
            return auto_pass()

        messages = QUALITY_CHECK_TEMPLATE.format_messages(
            question=question,
            intent=intent or "general",
            context=context,
            answer=answer,
        )

        try:
            response = await self.gateway.ainvoke(messages, role="utility")
            result = parse_quality_grade(response)
        except CircuitOpenError:
            logger.warning("Quality check skipped, llm circuit open")
            return auto_pass("Quality check skipped: grader unavailable")
        except QualityGradeParseError as e:
            logger.warning("Quality grade unparsable, failing open", error=str(e))
            return auto_pass("Quality check skipped: unreadable grade")
        except Exception as e:
            logger.warning("Quality check failed, failing open", error=str(e), error_type=type(e).__name__)
            return auto_pass("Quality check skipped: grader error")

        logger.info(
            "Quality check completed",
            passed=result.passed,
            score=result.score,
            issue_count=len(result.issues),
            critical=[i.type for i in result.issues if i.severity == "critical"],
        )
        return result
