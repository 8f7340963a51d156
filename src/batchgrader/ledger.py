from dataclasses import dataclass, field
from typing import List, Optional

# Settings
STARTING_SCORE = 100

@dataclass
class GradingResult:
    """Result returned by a grading run

    Args:
        grade (float): Final grade for the submission.
        comments (str): Deduction comments joined by newlines, oldest first.
    """
    grade: float
    comments: str = ""

    def to_dict(self) -> dict:
        return {
            "grade": self.grade,
            "comments": self.comments,
        }

@dataclass
class ScoreLedger:
    """Running grade and deduction log for one submission

    Args:
        score (float): Current score. Starts at 100 and never increases.
        comments (List[str]): One entry per deduction, in order.
    """
    score: float = STARTING_SCORE
    comments: List[str] = field(default_factory=list)

    def deduct(self, points: float, reason: str, detail: Optional[str] = None):
        """Deduct points from the score

        The score is floored at 0; deductions past that are truncated.

        Args:
            points (float): Points to deduct.
            reason (str): Reason for the deduction.
            detail (str, optional): Associated error text or output.
        """
        self.score = max(0, self.score - points)
        comment = f"-{points}; {reason}"
        if detail:
            comment += f"\n{detail}"
        self.comments.append(comment)

    def finalize(self) -> GradingResult:
        """Get the final grade and comments

        Returns:
            GradingResult: The grade and newline-joined comments.
        """
        return GradingResult(grade=self.score, comments="\n".join(self.comments))
