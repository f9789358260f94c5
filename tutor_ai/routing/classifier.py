"""Task classification for model routing.

The TaskClassifier turns a TaskRequest into a TaskClassification using
keyword and context heuristics only. No model call is made.

Features extracted:
- Word count and keyword signals (complexity, simplicity, research)
- Serialized context size and number of data sources
- Reasoning / creativity / research requirements
- Output detail keywords ("detailed", "comprehensive")

Score -> tier mapping:
- <= 2: LOW
- <= 4: MODERATE
- <= 6: HIGH
- otherwise: RESEARCH (also forced whenever research is required)
"""

from __future__ import annotations

import json
import math
import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any

import structlog

from tutor_ai.routing.types import (
    ComplexityTier,
    TaskClassification,
    TaskRequest,
    TaskType,
)

log = structlog.get_logger(__name__)


@dataclass(frozen=True)
class TaskTypeProfile:
    """Keyword profile for one task type.

    Attributes:
        keywords: Phrases whose presence votes for this type
        nominal_complexity: Starting complexity score for the type
        requires_research: Type benefits from research capability
        requires_reasoning: Type benefits from reasoning capability
        requires_creativity: Type benefits from creative generation
    """

    keywords: tuple[str, ...]
    nominal_complexity: int
    requires_research: bool = False
    requires_reasoning: bool = False
    requires_creativity: bool = False


TASK_TYPE_TABLE: dict[TaskType, TaskTypeProfile] = {
    TaskType.SELECTION: TaskTypeProfile(
        keywords=("commander", "legendary", "choose", "pick", "lead"),
        nominal_complexity=1,
        requires_creativity=True,
    ),
    TaskType.RECOMMENDATION: TaskTypeProfile(
        keywords=("recommend", "suggest", "card for", "cards for", "what should"),
        nominal_complexity=2,
    ),
    TaskType.STRATEGY_ANALYSIS: TaskTypeProfile(
        keywords=("strategy", "game plan", "win condition", "matchup", "play pattern"),
        nominal_complexity=3,
        requires_reasoning=True,
    ),
    TaskType.PERFORMANCE_ANALYSIS: TaskTypeProfile(
        keywords=("win rate", "performance", "results", "playtest", "how well"),
        nominal_complexity=3,
        requires_reasoning=True,
    ),
    TaskType.SYNERGY_ANALYSIS: TaskTypeProfile(
        keywords=("synergy", "synergies", "combo", "interaction", "work together", "combine"),
        nominal_complexity=4,
        requires_research=True,
        requires_reasoning=True,
    ),
    TaskType.OPTIMIZATION: TaskTypeProfile(
        keywords=("optimize", "improve", "upgrade", "better", "fix", "enhance"),
        nominal_complexity=4,
        requires_research=True,
        requires_reasoning=True,
        requires_creativity=True,
    ),
    TaskType.GENERATION: TaskTypeProfile(
        keywords=("generate", "build", "create", "construct", "deck list", "decklist"),
        nominal_complexity=4,
        requires_creativity=True,
    ),
    TaskType.RESEARCH: TaskTypeProfile(
        keywords=("research", "tournament", "competitive", "statistics", "data", "investigate"),
        nominal_complexity=5,
        requires_research=True,
        requires_reasoning=True,
    ),
    TaskType.SYNTHESIS: TaskTypeProfile(
        keywords=("synthesize", "summarize", "consolidate", "merge findings", "combine sources"),
        nominal_complexity=5,
        requires_reasoning=True,
    ),
    TaskType.META_ANALYSIS: TaskTypeProfile(
        keywords=("meta", "metagame", "tier list", "popular", "trending"),
        nominal_complexity=5,
        requires_research=True,
        requires_reasoning=True,
    ),
}

COMPLEXITY_KEYWORDS = (
    "analyze",
    "compare",
    "synthesize",
    "research",
    "optimize",
    "strategy",
    "synergy",
    "meta",
    "tournament",
    "competitive",
    "advanced",
)

SIMPLICITY_KEYWORDS = ("recommend", "suggest", "find", "list", "show", "basic", "simple")

RESEARCH_KEYWORDS = (
    "research",
    "investigate",
    "study",
    "analyze trends",
    "meta analysis",
    "tournament data",
    "community discussion",
    "price trends",
)

REASONING_KEYWORDS = (
    "analyze",
    "compare",
    "evaluate",
    "optimize",
    "strategy",
    "synergy",
    "weakness",
    "strength",
    "improve",
    "why",
    "explain",
    "reason",
    "because",
)

CREATIVITY_KEYWORDS = (
    "create",
    "generate",
    "build",
    "design",
    "innovative",
    "unique",
    "creative",
    "original",
    "alternative",
)

# Weight of each required capability flag shared with a task type
FLAG_MATCH_WEIGHT = 0.25

DEFAULT_CONFIDENCE = 0.1


@dataclass(frozen=True)
class _Features:
    prompt: str
    word_count: int
    complexity_hits: int
    simplicity_hits: int
    research_hits: int
    context_chars: int
    multiple_data_sources: bool
    real_time: bool
    requires_research: bool
    requires_reasoning: bool
    requires_creativity: bool
    detailed: bool
    comprehensive: bool

    @property
    def has_keyword_signal(self) -> bool:
        return bool(self.complexity_hits or self.simplicity_hits or self.research_hits)


def _pattern(phrase: str) -> re.Pattern[str]:
    # Prefix match on word boundary: "optimize" also matches "optimized"
    return re.compile(r"\b" + re.escape(phrase))


_PATTERNS: dict[str, re.Pattern[str]] = {}


def _count_hits(text: str, phrases: Iterable[str]) -> int:
    hits = 0
    for phrase in phrases:
        pattern = _PATTERNS.get(phrase)
        if pattern is None:
            pattern = _PATTERNS.setdefault(phrase, _pattern(phrase))
        if pattern.search(text):
            hits += 1
    return hits


class TaskClassifier:
    """Classifies generation requests into task type and complexity tier.

    Never raises: ambiguous or malformed input yields a low-confidence
    recommendation/moderate classification so routing can proceed.
    """

    LOW_MAX_SCORE = 2
    MODERATE_MAX_SCORE = 4
    HIGH_MAX_SCORE = 6

    LONG_PROMPT_WORDS = 200
    LARGE_CONTEXT_CHARS = 4000

    def __init__(self, type_table: Mapping[TaskType, TaskTypeProfile] | None = None) -> None:
        """Initialize classifier.

        Args:
            type_table: Task type keyword profiles. If None, uses TASK_TYPE_TABLE.
        """
        self._type_table = dict(type_table or TASK_TYPE_TABLE)
        log.debug("task_classifier.initialized", task_types=len(self._type_table))

    def classify(self, request: TaskRequest) -> TaskClassification:
        """Classify a request.

        Args:
            request: Request to classify

        Returns:
            TaskClassification (the low-confidence default on ambiguous input)
        """
        try:
            return self._classify(request)
        except Exception:
            log.exception("task_classifier.classification_failed")
            return self._default_classification(
                request, reason="Classification failed, using default"
            )

    def classify_batch(self, requests: Iterable[TaskRequest]) -> list[TaskClassification]:
        """Classify several requests, preserving order."""
        return [self.classify(request) for request in requests]

    def suggest_task_types(self, prompt: str) -> list[tuple[TaskType, float]]:
        """Rank task types whose keywords match the prompt.

        Returns:
            (task_type, score) pairs with score > 0, best first
        """
        features = self._extract_features(TaskRequest(prompt=prompt))
        scores = self._score_task_types(features)
        ranked = [(task_type, score) for task_type, score in scores.items() if score > 0]
        return sorted(ranked, key=lambda item: item[1], reverse=True)

    def _classify(self, request: TaskRequest) -> TaskClassification:
        features = self._extract_features(request)

        type_scores = self._score_task_types(features)
        if not features.prompt.strip() or (
            features.word_count < 3
            and not features.has_keyword_signal
            and not any(type_scores.values())
        ):
            log.info(
                "task_classifier.ambiguous_input",
                word_count=features.word_count,
            )
            return self._default_classification(
                request, reason="Ambiguous request, using default classification"
            )

        if request.task_type_hint is not None:
            task_type = TaskType(request.task_type_hint)
        else:
            task_type = self._pick_task_type(type_scores)

        score = self._complexity_score(features, task_type)
        if features.requires_research:
            complexity = ComplexityTier.RESEARCH
        else:
            complexity = self._bucket(score)

        confidence = self._confidence(features, hinted=request.task_type_hint is not None)
        estimated_tokens = self._estimate_tokens(request, features)

        factors = {
            "word_count": float(features.word_count),
            "complexity_keywords": float(features.complexity_hits),
            "simplicity_keywords": float(features.simplicity_hits),
            "research_keywords": float(features.research_hits),
            "context_chars": float(features.context_chars),
            "type_score": float(type_scores.get(task_type, 0.0)),
            "complexity_score": float(score),
        }

        classification = TaskClassification(
            task_type=task_type,
            complexity=complexity,
            confidence=confidence,
            reasoning=self._reasoning(task_type, complexity, features),
            estimated_tokens=estimated_tokens,
            requires_research=features.requires_research,
            factors=factors,
        )

        log.info(
            "task_classifier.classified",
            task_type=str(task_type),
            complexity=str(complexity),
            confidence=round(confidence, 2),
            estimated_tokens=estimated_tokens,
            requires_research=features.requires_research,
        )
        return classification

    def _extract_features(self, request: TaskRequest) -> _Features:
        prompt = request.prompt.lower()
        word_count = len(prompt.split())
        context = request.context

        context_chars = len(json.dumps(dict(context), default=str)) if context else 0
        data_sources = context.get("data_sources")
        multiple_data_sources = isinstance(data_sources, (list, tuple)) and len(data_sources) > 1

        complexity_hits = _count_hits(prompt, COMPLEXITY_KEYWORDS)
        research_hits = _count_hits(prompt, RESEARCH_KEYWORDS)

        return _Features(
            prompt=prompt,
            word_count=word_count,
            complexity_hits=complexity_hits,
            simplicity_hits=_count_hits(prompt, SIMPLICITY_KEYWORDS),
            research_hits=research_hits,
            context_chars=context_chars,
            multiple_data_sources=multiple_data_sources,
            real_time=context.get("real_time") is True,
            requires_research=research_hits > 0 or context.get("requires_research") is True,
            requires_reasoning=complexity_hits > 0 or _count_hits(prompt, REASONING_KEYWORDS) > 0,
            requires_creativity=(
                context.get("creative") is True or _count_hits(prompt, CREATIVITY_KEYWORDS) > 0
            ),
            detailed=_count_hits(prompt, ("detailed",)) > 0,
            comprehensive=_count_hits(prompt, ("comprehensive",)) > 0,
        )

    def _score_task_types(self, features: _Features) -> dict[TaskType, float]:
        scores: dict[TaskType, float] = {}
        for task_type, profile in self._type_table.items():
            hits = _count_hits(features.prompt, profile.keywords)
            if hits == 0:
                scores[task_type] = 0.0
                continue
            flags = sum(
                (
                    profile.requires_research and features.requires_research,
                    profile.requires_reasoning and features.requires_reasoning,
                    profile.requires_creativity and features.requires_creativity,
                )
            )
            scores[task_type] = hits + FLAG_MATCH_WEIGHT * flags
        return scores

    @staticmethod
    def _pick_task_type(scores: Mapping[TaskType, float]) -> TaskType:
        best = max(scores.values(), default=0.0)
        if best <= 0:
            return TaskType.RECOMMENDATION
        leaders = [task_type for task_type, score in scores.items() if score == best]
        if len(leaders) > 1:
            return TaskType.RECOMMENDATION
        return leaders[0]

    def _complexity_score(self, features: _Features, task_type: TaskType) -> int:
        profile = self._type_table.get(task_type)
        score = profile.nominal_complexity if profile else 2

        if features.word_count > self.LONG_PROMPT_WORDS:
            score += 1
        if features.context_chars > self.LARGE_CONTEXT_CHARS:
            score += 1
        if features.multiple_data_sources:
            score += 2
        if features.real_time:
            score += 1

        score += features.complexity_hits - features.simplicity_hits

        if features.requires_reasoning:
            score += 1
        if features.requires_research:
            score += 2
        return score

    def _bucket(self, score: int) -> ComplexityTier:
        if score <= self.LOW_MAX_SCORE:
            return ComplexityTier.LOW
        if score <= self.MODERATE_MAX_SCORE:
            return ComplexityTier.MODERATE
        if score <= self.HIGH_MAX_SCORE:
            return ComplexityTier.HIGH
        return ComplexityTier.RESEARCH

    @staticmethod
    def _confidence(features: _Features, *, hinted: bool) -> float:
        confidence = 0.5

        if features.complexity_hits > 2 or features.simplicity_hits > 2:
            confidence += 0.2
        if features.research_hits > 0:
            confidence += 0.1
        if hinted:
            confidence += 0.1

        if features.complexity_hits == features.simplicity_hits:
            confidence -= 0.1
        if features.word_count < 10:
            confidence -= 0.2

        return max(0.1, min(0.95, confidence))

    @staticmethod
    def _estimate_tokens(request: TaskRequest, features: _Features) -> int:
        constraints = request.constraints
        if constraints is not None and constraints.estimated_tokens is not None:
            return constraints.estimated_tokens

        tokens = math.ceil(len(request.prompt) / 4) + math.ceil(features.context_chars / 4)
        if features.detailed:
            tokens += 500
        if features.comprehensive:
            tokens += 1000
        if features.requires_research:
            tokens += 2000
        return tokens

    @staticmethod
    def _reasoning(task_type: TaskType, complexity: ComplexityTier, features: _Features) -> str:
        reasons = [
            f"Identified as {task_type} based on prompt content",
            f"Complexity level: {complexity}",
        ]
        if features.requires_research:
            reasons.append("Requires research capabilities")
        if features.requires_reasoning:
            reasons.append("Requires complex reasoning")
        if features.multiple_data_sources:
            reasons.append("Multiple data sources detected")
        if features.simplicity_hits > features.complexity_hits and features.word_count < 50:
            reasons.append("Simple query format detected")
        return "; ".join(reasons)

    def _default_classification(self, request: Any, *, reason: str) -> TaskClassification:
        prompt = getattr(request, "prompt", "") or ""
        context = getattr(request, "context", None)
        # Explicit research context keeps the research tier even without features
        requires_research = isinstance(context, Mapping) and context.get("requires_research") is True

        estimated_tokens = math.ceil(len(prompt) / 4) if isinstance(prompt, str) else 0
        if requires_research:
            estimated_tokens += 2000
            reason += "; Requires research capabilities"

        return TaskClassification(
            task_type=TaskType.RECOMMENDATION,
            complexity=ComplexityTier.RESEARCH if requires_research else ComplexityTier.MODERATE,
            confidence=DEFAULT_CONFIDENCE,
            reasoning=reason,
            estimated_tokens=estimated_tokens,
            requires_research=requires_research,
        )
