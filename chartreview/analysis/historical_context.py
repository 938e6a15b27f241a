import logging
from config.settings import HISTORY_WINDOW
from chartreview.database.base import ReviewRepository, build_statistics

logger = logging.getLogger(__name__)


def accuracy_marker(accuracy: int) -> str:
    if accuracy >= 80:
        return '✅'
    if accuracy >= 60:
        return '⚠️'
    return '❌'


def build_historical_context(repository: ReviewRepository, limit: int = HISTORY_WINDOW) -> str:
    """
    Summarize the latest reviewed analyses for the assistant's system prompt.

    Read from the repository on every call so new reviews show up at once.
    Returns an empty string when nothing has been reviewed yet.
    """
    reviews = repository.get_reviews(limit=limit)
    if not reviews:
        return ''

    stats = build_statistics(reviews)
    lines = [
        "📊 Review history (use it to improve new predictions):",
        f"Reviews: {stats.total_reviews}, average accuracy: {stats.average_accuracy:.1f}%",
        ""
    ]

    for review in reviews:
        analysis = repository.get_analysis(review.analysis_id)
        if analysis:
            stock = f"[{analysis.stock_code}] " if analysis.stock_code else ""
            lines.append(f"{stock}{analysis.date}:")
            lines.append(
                f"• Predicted: {analysis.direction}, support {analysis.support_level}, "
                f"resistance {analysis.resistance_level}, target {analysis.target}"
            )
        else:
            lines.append(f"Analysis {review.analysis_id}:")
        lines.append(
            f"• Actual: high {review.actual_high}, low {review.actual_low}, close {review.actual_close}"
        )
        lines.append(f"• Accuracy: {review.accuracy}% {accuracy_marker(review.accuracy)}")
        if review.feedback:
            lines.append(f"• Notes: {review.feedback}")
        lines.append("---")

    lines.append("")
    lines.append(
        "⚠️ Learn from the cases above and avoid repeating their mistakes, "
        "especially those below 60% accuracy."
    )

    logger.debug(f"Built historical context from {len(reviews)} reviews")
    return '\n'.join(lines)
