"""Matching pipeline: unmapped post → article, via title containment then OCR.

Strategy 1 looks for an article headline embedded verbatim in the post
caption. Strategy 2 reads the text baked into the post image and scores
articles by shared significant words.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Protocol, Sequence

from recon.config import MatchingSettings
from recon.models import Article, Post
from recon.pipelines.normalization import clean_text, normalize
from recon.store import ReconciliationStore

logger = logging.getLogger(__name__)


class MatchStrategy(str, Enum):
    """How a match was found."""
    TITLE_MATCH = "title-match"
    OCR_FUZZY = "ocr-fuzzy"


@dataclass
class MatchResult:
    """Article chosen for a post."""
    article: Article
    strategy: MatchStrategy
    score: int | None = None

    @property
    def reason(self) -> str:
        if self.strategy is MatchStrategy.OCR_FUZZY:
            return f"{self.strategy.value}({self.score})"
        return self.strategy.value


@dataclass
class MatchingReport:
    """Outcome counts for one matching run."""
    processed: int = 0
    matched: int = 0
    unmatched: int = 0

    def __str__(self) -> str:
        return f"Processed: {self.processed}, Matched: {self.matched}, Unmatched: {self.unmatched}"


class TextRecognizer(Protocol):
    async def recognize(self, image_url: str) -> str: ...


def find_title_match(
    post_title: str | None,
    articles: Sequence[Article],
    *,
    min_title_length: int = 10,
) -> Article | None:
    """Return the first article whose cleaned title appears in the post text.

    Titles of ``min_title_length`` characters or fewer are ignored; short
    headlines match too much by accident.
    """
    post_text = clean_text(post_title)
    if not post_text:
        return None

    for article in articles:
        article_title = clean_text(article.title)
        if len(article_title) > min_title_length and article_title in post_text:
            return article
    return None


def find_ocr_match(
    ocr_text: str,
    articles: Sequence[Article],
    *,
    min_shared_tokens: int = 2,
    min_token_ratio: float = 0.5,
) -> tuple[Article, int] | None:
    """Score every article against OCR text and return the best one.

    An article scores one point per distinct significant word it shares
    with the OCR text. A candidate must beat the current best score and
    either share ``min_shared_tokens`` words or cover more than
    ``min_token_ratio`` of its own title words. Ties keep the earlier
    article.

    Returns:
        (article, score) or None if nothing passed the threshold
    """
    ocr_tokens = set(normalize(ocr_text))
    if not ocr_tokens:
        return None

    best: Article | None = None
    max_score = 0

    for article in articles:
        article_tokens = set(normalize(article.title))
        if not article_tokens:
            continue

        score = len(ocr_tokens & article_tokens)
        passes = score >= min_shared_tokens or score / len(article_tokens) > min_token_ratio
        if score > max_score and passes:
            max_score = score
            best = article

    if best is None:
        return None
    return best, max_score


async def match_post(
    post: Post,
    articles: Sequence[Article],
    ocr: TextRecognizer | None,
    config: MatchingSettings | None = None,
) -> MatchResult | None:
    """Find the article for a single post.

    OCR errors are logged and treated as "no match" so one bad image does
    not stop a batch.
    """
    config = config or MatchingSettings()

    article = find_title_match(post.title, articles, min_title_length=config.min_title_length)
    if article is not None:
        return MatchResult(article=article, strategy=MatchStrategy.TITLE_MATCH)

    if ocr is None or not post.image or not post.image.startswith("http"):
        return None

    try:
        text = await ocr.recognize(post.image)
    except Exception as e:
        logger.error(f"OCR failed for post {post.id}: {e}")
        return None

    tokens = normalize(text)
    logger.info(f"Post {post.id} OCR words: [{', '.join(tokens[:5])}...]")

    found = find_ocr_match(
        text,
        articles,
        min_shared_tokens=config.min_shared_tokens,
        min_token_ratio=config.min_token_ratio,
    )
    if found is None:
        return None
    article, score = found
    return MatchResult(article=article, strategy=MatchStrategy.OCR_FUZZY, score=score)


async def run_matching(
    store: ReconciliationStore,
    ocr: TextRecognizer | None,
    config: MatchingSettings | None = None,
) -> MatchingReport:
    """Match every unmapped post against the full catalog, one post at a time.

    Workflow:
    1. Load the article catalog (newest first) and unmapped posts
    2. For each post, try title containment, then OCR
    3. Write the article URL back onto matched posts

    Title matches are high-confidence and mark the post as manually
    confirmed; OCR matches do not.
    """
    report = MatchingReport()

    articles = await store.list_articles()
    logger.info(f"Loaded {len(articles)} articles")

    posts = await store.list_unmapped_posts()
    logger.info(f"Analyzing {len(posts)} unmapped posts for matches")
    if not posts:
        logger.info("No unmapped posts found")
        return report

    for post in posts:
        report.processed += 1
        result = await match_post(post, articles, ocr, config)
        if result is None:
            logger.info(f"Post {post.id}: no match found")
            report.unmatched += 1
            continue

        await store.update_post_mapping(
            post.id,
            result.article.url,
            manual=result.strategy is MatchStrategy.TITLE_MATCH,
        )
        logger.info(f"Post {post.id}: {result.reason} linked to \"{result.article.title}\"")
        report.matched += 1

    logger.info(f"Matching complete. {report}")
    return report
