"""Prompt rendering for grounded review analysis.

Provides:
- format_reviews: Enumerated review blocks ("Review N:" + metadata + title + content).
- build_prompt: Deterministic (system, user) prompt pair from a RetrievalContext.
- summarize_context: One-screen debug summary of a context.

All functions are pure; identical inputs yield identical strings. Dates are rendered as
ISO dates so output never depends on the host locale.
"""
from dataclasses import dataclass
from typing import List

from reviewrag.insights import analyze_sentiment, extract_themes
from reviewrag.retrieval import RetrievalContext
from reviewrag.search import SimilarityCandidate

NO_REVIEWS_FOUND = "No reviews found matching your query."
REVIEW_SEPARATOR = "\n---\n\n"

GUIDELINES = """IMPORTANT GUIDELINES:
1. Base your analysis ONLY on the provided reviews
2. Cite specific reviews when making claims (e.g., "Review 3 mentions...")
3. If the reviews don't contain enough information, acknowledge it
4. Summarize common themes and patterns across reviews
5. Highlight both positive and negative feedback
6. Be objective and data-driven"""


@dataclass(frozen=True)
class RenderedPrompt:
    system_prompt: str
    user_prompt: str


def _format_date(review) -> str:
    return review.review_date.date().isoformat() if review.review_date else "Unknown"


def format_reviews(
    candidates: List[SimilarityCandidate],
    include_metadata: bool = True,
    include_similarity: bool = False,
) -> str:
    """Render candidates as numbered review blocks joined by a separator.

    Args:
        candidates: Reviews in the order they should be cited.
        include_metadata: Include rating, author, date and version lines.
        include_similarity: Include the relevance percentage line.

    Returns:
        str: Rendered blocks, or an explicit no-results sentence when empty.
    """
    if not candidates:
        return NO_REVIEWS_FOUND

    blocks: List[str] = []
    for i, cand in enumerate(candidates, start=1):
        r = cand.review
        lines = [f"Review {i}:"]
        if include_metadata:
            lines.append(f"Rating: {r.rating}/5 stars")
            lines.append(f"Author: {r.author or 'Anonymous'}")
            lines.append(f"Date: {_format_date(r)}")
            if r.app_version:
                lines.append(f"App Version: {r.app_version}")
            if include_similarity:
                lines.append(f"Relevance: {cand.similarity * 100:.1f}%")
        lines.append(f"Title: {r.title}")
        lines.append(f"Content: {r.content}")
        blocks.append("\n".join(lines) + "\n")
    return REVIEW_SEPARATOR.join(blocks)


def build_prompt(context: RetrievalContext, system_instructions: str) -> RenderedPrompt:
    """Build the system and user prompts for one grounded chat turn."""
    reviews_block = format_reviews(context.candidates, include_metadata=True, include_similarity=False)

    system_prompt = (
        f"{system_instructions}\n\n"
        f"You have access to {context.count} relevant app reviews "
        f"(average relevance: {context.avg_similarity * 100:.1f}%).\n\n"
        f"{GUIDELINES}"
    )
    user_prompt = (
        f"USER QUESTION:\n{context.query}\n\n"
        f"RELEVANT REVIEWS:\n{reviews_block}\n\n"
        "Please analyze the above reviews and answer the user's question. Focus on actionable insights."
    )
    return RenderedPrompt(system_prompt=system_prompt, user_prompt=user_prompt)


def summarize_context(context: RetrievalContext, model: str) -> str:
    sentiment = analyze_sentiment(context.candidates)
    themes = extract_themes(context.candidates)
    return "\n".join(
        [
            "RAG Context Summary:",
            f'- Query: "{context.query}"',
            f"- Reviews retrieved: {context.count}",
            f"- Average relevance: {context.avg_similarity * 100:.1f}%",
            f"- Average rating: {themes.avg_rating:.1f}/5",
            f"- Sentiment: {sentiment.positive} positive, {sentiment.neutral} neutral, {sentiment.negative} negative",
            f"- Model: {model}",
        ]
    )
