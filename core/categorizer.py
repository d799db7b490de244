"""
categorizer.py
---------------
Adaptive expense categorizer that learns from user-confirmed labels.

Three independent scorers vote in a weighted ensemble:
    1. Naïve Bayes on description tokens (log space, Laplace smoothing)
    2. TF-IDF cosine similarity between the input and each category
    3. Gaussian likelihood of the amount under each category's running stats

An optional fourth path (embedding centroid matching) is exposed separately
and never contributes to the ensemble score.

Each AdaptiveCategorizer owns its LearnedModel. Callers must serialize
train / train_batch / predict on a single instance; nothing here is
internally synchronized apart from the background persistence worker.

Usage:
    categorizer = AdaptiveCategorizer(model_path="model.json")
    categorizer.train(TrainingExample("Shell gas station", 40.0, "Gas & Fuel"))
    prediction = categorizer.predict("Chevron fill-up", amount=38.0)
    categorizer.close()
"""

import logging
import math
import re
from typing import Iterable

import numpy as np
from scipy.special import logsumexp

from config.config_loader import get_categorizer_config
from core.deductibility import DeductibilityLookup
from core.embeddings import EmbeddingProvider
from core.learned_model import LearnedModel
from core.model_store import ModelStore
from core.models import MLPrediction, PredictionMethod, TrainingExample

logger = logging.getLogger(__name__)

_NON_ALPHANUMERIC = re.compile(r"[^a-z0-9\s]")
_WORD = re.compile(r"[a-z0-9]+")


class AdaptiveCategorizer:
    """
    Incrementally trained ensemble classifier for (description, amount) records.

    Lifecycle: construct (loads any persisted model), train / train_batch,
    predict, close (flushes pending writes).
    """

    def __init__(
        self,
        model_path: str | None = None,
        store: ModelStore | None = None,
        embedding_provider: EmbeddingProvider | None = None,
        deductibility=None,
    ):
        """
        Args:
            model_path: JSON file for the learned model. Defaults to the
                configured path. Ignored when `store` is given.
            store: Pre-built ModelStore (e.g. synchronous in tests).
            embedding_provider: Optional word-embedding distance provider.
            deductibility: Object with `suggest(category)`. Defaults to the
                config-driven DeductibilityLookup.
        """
        self.config = get_categorizer_config()
        self.store = store if store is not None else ModelStore(model_path or self.config["model_path"])
        self.embedding_provider = embedding_provider
        self.deductibility = deductibility if deductibility is not None else DeductibilityLookup()

        self.stop_words = frozenset(self.config["stop_words"])
        self.min_token_length = self.config["min_token_length"]
        self.weights = self.config["ensemble_weights"]

        self.model = self.store.load()
        self.estimated_accuracy = 0.0
        self.estimate_accuracy()

    # -------------------------------------------------------------------------
    # STATE
    # -------------------------------------------------------------------------

    @property
    def is_model_trained(self) -> bool:
        return self.model.total_examples >= self.config["min_training_examples"]

    @property
    def training_size(self) -> int:
        return self.model.total_examples

    def reset(self) -> None:
        """Forgets everything learned and persists the empty model."""
        self.model = LearnedModel()
        self.estimated_accuracy = 0.0
        self.store.save(self.model)

    def save(self) -> None:
        self.store.save(self.model)

    def flush(self) -> None:
        self.store.flush()

    def close(self) -> None:
        self.store.close()

    # -------------------------------------------------------------------------
    # TRAINING
    # -------------------------------------------------------------------------

    def train(self, example: TrainingExample) -> None:
        """
        Learns from one confirmed example.

        Persists and re-estimates accuracy every `flush_every` examples.
        """
        tokens = self.tokenize(f"{example.description} {example.merchant_name or ''}")
        touched = self.model.record_example(example.category, tokens, example.amount)
        self.model.refresh_document_frequency(touched)

        if self.model.total_examples % self.config["flush_every"] == 0:
            self.store.save(self.model)
            self.estimate_accuracy()

    def train_batch(self, examples: Iterable[TrainingExample]) -> None:
        """Learns from many examples, then persists and re-estimates accuracy once."""
        touched: set[str] = set()
        count = 0
        for example in examples:
            tokens = self.tokenize(f"{example.description} {example.merchant_name or ''}")
            touched |= self.model.record_example(example.category, tokens, example.amount)
            count += 1

        self.model.refresh_document_frequency(touched)
        self.store.save(self.model)
        self.estimate_accuracy()

        logger.info(
            f"Batch trained on {count:,} examples. Model size: {self.model.total_examples:,} examples, "
            f"{len(self.model.category_doc_counts)} categories, accuracy≈{self.estimated_accuracy:.0%}."
        )

    # -------------------------------------------------------------------------
    # PREDICTION
    # -------------------------------------------------------------------------

    def predict(self, description: str, merchant_name: str | None = None, amount: float = 0.0) -> MLPrediction | None:
        """
        Weighted ensemble prediction.

        Returns:
            MLPrediction, or None if the model is untrained, the text has no
            usable tokens, or the best ensemble score is too low.
        """
        if not self.is_model_trained:
            return None

        tokens = self.tokenize(f"{description} {merchant_name or ''}")
        if not tokens:
            return None

        bayesian = self.bayesian_classify(tokens)
        tfidf = self.tfidf_classify(tokens)
        by_amount = self.amount_classify(amount)

        scores: dict[str, float] = {}
        for result, weight in (
            (bayesian, self.weights["bayesian"]),
            (tfidf, self.weights["tfidf"]),
            (by_amount, self.weights["amount"]),
        ):
            if result is not None:
                category, confidence = result
                scores[category] = scores.get(category, 0.0) + confidence * weight

        if not scores:
            return None

        best_category = max(scores, key=scores.get)
        best_score = scores[best_category]
        if best_score <= self.config["min_ensemble_score"]:
            return None

        bayes_agrees = bayesian is not None and bayesian[0] == best_category
        tfidf_agrees = tfidf is not None and tfidf[0] == best_category
        if bayes_agrees and not tfidf_agrees:
            method = PredictionMethod.BAYESIAN
        elif tfidf_agrees and not bayes_agrees:
            method = PredictionMethod.TFIDF
        else:
            method = PredictionMethod.ENSEMBLE

        is_deductible, percentage, note = self.deductibility.suggest(best_category)

        return MLPrediction(
            category=best_category,
            confidence=min(best_score, self.config["max_confidence"]),
            method=method,
            reasoning=(
                f"ML: {method.value} ({int(best_score * 100)}% confidence, "
                f"trained on {self.model.total_examples} expenses)"
            ),
            is_deductible=is_deductible,
            deduction_percentage=percentage,
            deduction_note=note,
        )

    def bayesian_classify(self, tokens: list[str]) -> tuple[str, float] | None:
        """
        Naïve Bayes: P(cat|tokens) ∝ P(cat) · Π P(token|cat).

        P(token|cat) = (count(token, cat) + 1) / (tokens_in_cat + |V|).
        Log posteriors are normalized with log-sum-exp.
        """
        model = self.model
        if not model.category_doc_counts or model.total_examples <= 0:
            return None

        vocab_size = len(model.vocabulary)
        categories = model.categories
        log_posteriors = np.empty(len(categories))

        for i, category in enumerate(categories):
            counts = model.category_token_counts.get(category, {})
            denominator = model.token_total(category) + vocab_size
            if denominator <= 0:
                return None

            log_prior = math.log(model.category_doc_counts[category] / model.total_examples)
            log_likelihood = sum(math.log((counts.get(token, 0) + 1) / denominator) for token in tokens)
            log_posteriors[i] = log_prior + log_likelihood

        posteriors = np.exp(log_posteriors - logsumexp(log_posteriors))
        best = int(np.argmax(posteriors))
        return categories[best], float(posteriors[best])

    def tfidf_classify(self, tokens: list[str]) -> tuple[str, float] | None:
        """
        Cosine similarity between TF-IDF vectors of the input and each category.

        tf = count / length, idf = ln(#categories / df). Unseen tokens use df = 1.
        """
        cfg = self.config["tfidf"]
        model = self.model
        num_categories = len(model.category_token_counts)
        if num_categories < cfg["min_categories"]:
            return None

        def idf(token: str) -> float:
            return math.log(num_categories / model.document_frequency.get(token, 1))

        input_tfidf: dict[str, float] = {}
        for token in tokens:
            input_tfidf[token] = input_tfidf.get(token, 0.0) + 1.0 / len(tokens)
        input_tfidf = {token: tf * idf(token) for token, tf in input_tfidf.items()}
        input_norm = math.sqrt(sum(v * v for v in input_tfidf.values()))

        similarities: dict[str, float] = {}
        for category, counts in model.category_token_counts.items():
            total = sum(counts.values())
            if total <= 0:
                continue

            category_tfidf = {token: (n / total) * idf(token) for token, n in counts.items()}
            category_norm = math.sqrt(sum(v * v for v in category_tfidf.values()))
            magnitude = input_norm * category_norm
            if magnitude <= 0:
                continue

            dot = sum(weight * category_tfidf.get(token, 0.0) for token, weight in input_tfidf.items())
            similarities[category] = dot / magnitude

        if not similarities:
            return None

        best_category = max(similarities, key=similarities.get)
        best = similarities[best_category]
        if best <= cfg["min_similarity"]:
            return None

        return best_category, min(best, cfg["max_confidence"])

    def amount_classify(self, amount: float) -> tuple[str, float] | None:
        """
        Gaussian density of the amount under each category, weighted by
        the category prior and normalized across categories.
        """
        cfg = self.config["amount"]
        model = self.model
        scores: dict[str, float] = {}

        for category, stats in model.category_amount_stats.items():
            if stats.count < cfg["min_observations"] or stats.stddev <= 0:
                continue

            exponent = -((amount - stats.mean) ** 2) / (2 * stats.stddev ** 2)
            density = math.exp(exponent) / (stats.stddev * math.sqrt(2 * math.pi))
            prior = model.category_doc_counts.get(category, 0) / max(model.total_examples, 1)
            scores[category] = density * prior

        total = sum(scores.values())
        if not scores or total <= 0:
            return None

        best_category = max(scores, key=scores.get)
        posterior = scores[best_category] / total
        if posterior <= cfg["min_posterior"]:
            return None

        return best_category, posterior

    # -------------------------------------------------------------------------
    # EMBEDDING CENTROID (optional, outside the ensemble)
    # -------------------------------------------------------------------------

    def embedding_centroid_predict(self, description: str) -> tuple[str, float] | None:
        """
        Compares input words to each category's most frequent learned tokens
        through the embedding provider.

        Only word pairs with similarity above the pair threshold count toward
        a category's average. Returns None when no provider is configured.
        """
        if self.embedding_provider is None:
            return None

        cfg = self.config["embedding"]
        words = [w for w in _WORD.findall(description.lower()) if len(w) >= self.min_token_length]
        if not words:
            return None

        averages: dict[str, float] = {}
        for category in self.model.category_token_counts:
            top_tokens = self.model.top_tokens(category, cfg["top_tokens"])
            if not top_tokens:
                continue

            similarities = [
                1.0 - self.embedding_provider.distance(word, token)
                for word in words
                for token in top_tokens
            ]
            meaningful = [s for s in similarities if s > cfg["min_pair_similarity"]]
            if meaningful:
                averages[category] = sum(meaningful) / len(meaningful)

        if not averages:
            return None

        best_category = max(averages, key=averages.get)
        best = averages[best_category]
        if best <= cfg["min_score"]:
            return None

        return best_category, min(best, cfg["max_confidence"])

    # -------------------------------------------------------------------------
    # ACCURACY ESTIMATE
    # -------------------------------------------------------------------------

    def estimate_accuracy(self) -> float:
        """
        Self-consistency proxy: do a category's top tokens classify back to it?

        Returns 0 until `min_accuracy_examples` examples have been seen.
        """
        if self.model.total_examples < self.config["min_accuracy_examples"]:
            self.estimated_accuracy = 0.0
            return self.estimated_accuracy

        correct = 0
        total = 0
        for category in self.model.category_token_counts:
            top_tokens = self.model.top_tokens(category, self.config["accuracy"]["top_tokens"])
            if not top_tokens:
                continue
            prediction = self.bayesian_classify(top_tokens)
            if prediction is not None and prediction[0] == category:
                correct += 1
            total += 1

        self.estimated_accuracy = correct / total if total else 0.0
        return self.estimated_accuracy

    # -------------------------------------------------------------------------
    # TOKENIZATION
    # -------------------------------------------------------------------------

    def tokenize(self, text: str) -> list[str]:
        """Lowercase, strip non-alphanumerics, drop short tokens and stop words."""
        cleaned = _NON_ALPHANUMERIC.sub(" ", text.lower())
        return [
            token for token in cleaned.split()
            if len(token) >= self.min_token_length and token not in self.stop_words
        ]
