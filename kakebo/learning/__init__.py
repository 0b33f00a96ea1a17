"""
Learning Package

Everything the assistant learns from its users:
- Merchant extraction and rules learned from category corrections
- Correction examples supplied as few-shot prompts
- Search feedback with cross-user consensus
- Metrics on how well all of this is working
"""

from kakebo.learning.category_intent import infer_query_categories
from kakebo.learning.example_retriever import (
    ExampleRetriever,
    format_examples_for_prompt,
)
from kakebo.learning.feedback import (
    SearchFeedbackEngine,
    apply_feedback,
    normalize_query,
)
from kakebo.learning.merchant_extractor import (
    contains_merchant,
    extract_all_merchants,
    extract_merchant,
    get_merchant_confidence,
)
from kakebo.learning.merchant_rules import Correction, MerchantRuleLearner
from kakebo.learning.metrics import (
    LearningMetricsAggregator,
    calculate_learning_score,
)

__all__ = [
    # Merchants
    "contains_merchant",
    "extract_all_merchants",
    "extract_merchant",
    "get_merchant_confidence",
    "infer_query_categories",
    # Rules
    "Correction",
    "MerchantRuleLearner",
    # Examples
    "ExampleRetriever",
    "format_examples_for_prompt",
    # Feedback
    "SearchFeedbackEngine",
    "apply_feedback",
    "normalize_query",
    # Metrics
    "LearningMetricsAggregator",
    "calculate_learning_score",
]
