"""Markov substitution model families."""

from .markov import (
    COMPLEMENT,
    GMM,
    JC69,
    K80,
    K81,
    NUCLEOTIDES,
    SSM,
    MarkovModel,
    available_models,
    get_model,
)

__all__ = [
    "COMPLEMENT",
    "GMM",
    "JC69",
    "K80",
    "K81",
    "NUCLEOTIDES",
    "SSM",
    "MarkovModel",
    "available_models",
    "get_model",
]
