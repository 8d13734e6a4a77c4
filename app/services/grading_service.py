"""
Exam grading service
Correct-count scoring; unanswered questions count as incorrect
"""
import logging
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Any, List, Optional

from app.models import Question

logger = logging.getLogger(__name__)

SCORE_QUANTUM = Decimal("0.01")


@dataclass
class GradeResult:
    """Outcome of grading one submission"""
    correct_count: int
    total_questions: int
    score: Decimal
    breakdown: List[Dict[str, Any]] = field(default_factory=list)
    message: str = ""


class GradingService:
    """
    Service for grading exam submissions

    Strategy:
    - Exact match of the selected option against the correct option
    - Missing entries and the null sentinel are incorrect, never an error
    - Score = correct / total * 100, rounded half-up to two decimals
    """

    def grade(
        self,
        questions: List[Question],
        answers: Dict[int, Optional[int]],
    ) -> GradeResult:
        """
        Grade a complete exam submission

        Args:
            questions: Exam questions with their options
            answers: Selected option per question id, None for unanswered

        Returns:
            GradeResult with counts, score and per-question breakdown
        """
        breakdown = []
        correct_count = 0

        for question in questions:
            selected = answers.get(question.id)
            correct_option = question.correct_option_id
            is_correct = selected is not None and selected == correct_option

            if is_correct:
                correct_count += 1

            breakdown.append({
                "question_id": question.id,
                "selected_option_id": selected,
                "is_correct": is_correct,
            })

        total = len(questions)
        score = self.compute_score(correct_count, total)
        message = self._generate_message(score, correct_count, total)

        logger.info(f"Exam graded: {correct_count}/{total} correct, score {score}")

        return GradeResult(
            correct_count=correct_count,
            total_questions=total,
            score=score,
            breakdown=breakdown,
            message=message,
        )

    @staticmethod
    def compute_score(correct_count: int, total_questions: int) -> Decimal:
        """Percentage of correct answers, half-up to two decimals"""
        if total_questions <= 0:
            return Decimal("0.00")
        raw = Decimal(correct_count) * Decimal(100) / Decimal(total_questions)
        return raw.quantize(SCORE_QUANTUM, rounding=ROUND_HALF_UP)

    def _generate_message(self, score: Decimal, correct_count: int, total: int) -> str:
        """Generate the confirmation message returned with the score"""

        parts = ["Exam submitted successfully."]

        if total == 0:
            return parts[0]

        if score >= 90:
            parts.append("Excellent work!")
        elif score >= 75:
            parts.append("Good performance.")
        elif score >= 51:
            parts.append("Passed.")
        else:
            parts.append("Needs improvement.")

        unanswered_or_wrong = total - correct_count
        if unanswered_or_wrong:
            parts.append(f"{unanswered_or_wrong} of {total} questions were not answered correctly.")

        return " ".join(parts)


# Global instance
grading_service = GradingService()
