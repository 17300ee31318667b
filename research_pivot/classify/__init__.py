"""Query classification: keyword baseline."""

from .keywords import KeywordClassifier, allocate_workers, complexity_for, classify

__all__ = ["KeywordClassifier", "allocate_workers", "complexity_for", "classify"]
