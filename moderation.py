"""
Moderation decision engine.

``analyze`` turns a classifier response into a ``ModerationDecision`` using
per-category thresholds; ``ModerationEvaluator`` puts the cache and the
remote classifier in front of it and fails closed when classification is
impossible.
"""

from dataclasses import dataclass, field
from typing import Optional

import structlog

from cache import ModerationCache
from categories import ModerationCategory, parse_categories
from classifier import ModerationClassifier
from config import (CLASSIFIER_RETRY_ATTEMPTS, HIGH_SENSITIVITY_CATEGORIES, HIGH_SENSITIVITY_THRESHOLD,
                    MAX_POST_LENGTH, MIN_POST_LENGTH, RETRY_BASE_DELAY, RETRY_MAX_JITTER,
                    STANDARD_THRESHOLD)
from errors import ClassifierError, ValidationError
from metrics import CACHE_LOOKUPS, CLASSIFIER_ERRORS, MODERATION_DECISIONS
from retry import with_retry
from schemas import ClassifierResponse, ModerationDecision

log = structlog.get_logger()


@dataclass(frozen=True)
class ThresholdPolicy:
    """Score floors above which a category counts as a violation."""

    standard_threshold: float = STANDARD_THRESHOLD
    high_sensitivity_threshold: float = HIGH_SENSITIVITY_THRESHOLD
    high_sensitivity_categories: frozenset = field(
        default_factory=lambda: parse_categories(HIGH_SENSITIVITY_CATEGORIES))

    @classmethod
    def from_config(cls) -> "ThresholdPolicy":
        return cls()

    def threshold_for(self, category: ModerationCategory) -> float:
        if category in self.high_sensitivity_categories:
            return self.high_sensitivity_threshold
        return self.standard_threshold


def analyze(response: ClassifierResponse, policy: Optional[ThresholdPolicy] = None) -> ModerationDecision:
    """
    Apply ``policy`` (the configured one by default) to every category of
    every result unit.

    A category is a violation when the classifier flagged it or its score
    reaches the category's threshold. ``confidence_score`` is the highest raw
    score seen anywhere, whether or not that category caused the block.
    The result-level ``flagged`` does not block on its own.
    """
    policy = policy if policy is not None else ThresholdPolicy()
    flagged = []
    confidence = 0.0

    for result in response.results:
        violated = False
        for category, is_flagged, score in result.iter_categories():
            confidence = max(confidence, score)
            if is_flagged or score >= policy.threshold_for(category):
                violated = True
                if category.value not in flagged:
                    flagged.append(category.value)
        if result.flagged and not violated:
            log.warning("Classifier Flagged Result Without Category Violation",
                        response_id=response.id,
                        model=response.model)

    return ModerationDecision(
        is_allowed=not flagged,
        flagged_categories=tuple(flagged),
        confidence_score=confidence,
        raw=response.results,
        model=response.model,
        response_id=response.id,
    )


def validate_post_text(text: Optional[str]) -> str:
    """Reject empty or over-long posts before anything is sent to the classifier."""
    if text is None or len(text.strip()) < MIN_POST_LENGTH:
        raise ValidationError("Post cannot be empty.")
    if len(text) > MAX_POST_LENGTH:
        raise ValidationError(f"Post cannot exceed {MAX_POST_LENGTH} characters.")
    return text.strip()


def _preview(text: str) -> str:
    return text[:50] + ("..." if len(text) > 50 else "")


class ModerationEvaluator:
    """Moderates text through the cache and the remote classifier."""

    def __init__(
        self,
        classifier: ModerationClassifier,
        cache: Optional[ModerationCache] = None,
        policy: Optional[ThresholdPolicy] = None,
        retry_attempts: int = CLASSIFIER_RETRY_ATTEMPTS,
        retry_base_delay: float = RETRY_BASE_DELAY,
        retry_max_jitter: float = RETRY_MAX_JITTER,
    ) -> None:
        self.classifier = classifier
        self.cache = cache if cache is not None else ModerationCache()
        self.policy = policy if policy is not None else ThresholdPolicy()
        self.retry_attempts = retry_attempts
        self.retry_base_delay = retry_base_delay
        self.retry_max_jitter = retry_max_jitter

    async def evaluate(self, text: str) -> ModerationDecision:
        if not text:
            raise ValidationError("Post cannot be empty.")

        cached = self._lookup(text)
        if cached is not None:
            CACHE_LOOKUPS.labels(result="hit").inc()
            return cached
        CACHE_LOOKUPS.labels(result="miss").inc()

        try:
            response = await with_retry(
                lambda: self.classifier.classify(text),
                attempts=self.retry_attempts,
                base_delay=self.retry_base_delay,
                max_jitter=self.retry_max_jitter,
            )
            decision = analyze(response, self.policy)
        except ClassifierError as e:
            CLASSIFIER_ERRORS.labels(kind=e.kind.value).inc()
            MODERATION_DECISIONS.labels(outcome="error").inc()
            log.error("Moderation Classifier Failed, Blocking Content",
                      kind=e.kind.value,
                      transient=e.transient,
                      error=str(e))
            return ModerationDecision.fail_closed(str(e), model=self.classifier.model)
        except Exception as e:
            CLASSIFIER_ERRORS.labels(kind="unexpected").inc()
            MODERATION_DECISIONS.labels(outcome="error").inc()
            log.error("Unexpected Moderation Failure, Blocking Content",
                      exception=type(e).__name__,
                      error=str(e))
            return ModerationDecision.fail_closed(f"Unexpected moderation failure: {e}",
                                                  model=self.classifier.model)

        self._store(text, decision)
        MODERATION_DECISIONS.labels(outcome="allowed" if decision.is_allowed else "blocked").inc()
        log.info("Moderation Analysis",
                 content=_preview(text),
                 is_allowed=decision.is_allowed,
                 flagged_categories=list(decision.flagged_categories),
                 confidence_score=decision.confidence_score,
                 model=decision.model)
        return decision

    def _lookup(self, text: str) -> Optional[ModerationDecision]:
        try:
            return self.cache.lookup(text)
        except Exception as e:
            log.warning("Moderation Cache Lookup Failed", error=str(e))
            return None

    def _store(self, text: str, decision: ModerationDecision) -> None:
        try:
            self.cache.store(text, decision)
        except Exception as e:
            log.warning("Moderation Cache Store Failed", error=str(e))
