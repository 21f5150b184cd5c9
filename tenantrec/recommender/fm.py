"""Factorization machine binary classifier.

A scikit-learn compatible estimator that models the logit of a purchase as

    w0 + sum_i w_i x_i + sum_{i<j} <v_i, v_j> x_i x_j

where the pairwise term is computed in O(k * nnz) with the usual
``0.5 * ((XV)^2 - X^2 V^2)`` identity. It is meant to sit behind one-hot
encoders, so inputs are expected to be sparse.

Training is full-batch gradient descent with AdaGrad step sizes on the mean
log loss. There is no sampling, so for a fixed ``random_state`` the fitted
parameters are fully deterministic.
"""

import logging
from typing import List, Optional

import numpy as np
import scipy.sparse as sp
from scipy.special import expit
from sklearn.base import BaseEstimator, ClassifierMixin
from sklearn.utils.validation import check_array, check_is_fitted

# Configure module logger
logger = logging.getLogger(__name__)

_ADAGRAD_EPS = 1e-8


class FactorizationMachineClassifier(ClassifierMixin, BaseEstimator):
    """Second-order factorization machine for binary labels.

    Args:
        n_factors: Rank of the pairwise interaction factors.
        n_epochs: Number of full-batch gradient steps.
        learning_rate: AdaGrad base step size.
        reg: L2 penalty applied to linear weights and factors.
        init_stdev: Standard deviation of the initial factor weights.
        random_state: Seed for factor initialisation.
    """

    def __init__(
        self,
        n_factors: int = 8,
        n_epochs: int = 200,
        learning_rate: float = 0.1,
        reg: float = 0.001,
        init_stdev: float = 0.01,
        random_state: Optional[int] = None,
    ):
        self.n_factors = n_factors
        self.n_epochs = n_epochs
        self.learning_rate = learning_rate
        self.reg = reg
        self.init_stdev = init_stdev
        self.random_state = random_state

    def _check_input(self, X) -> sp.csr_matrix:
        X = check_array(X, accept_sparse="csr", dtype=np.float64)
        return sp.csr_matrix(X)

    def _raw_scores(self, X: sp.csr_matrix, X_sq: sp.csr_matrix) -> np.ndarray:
        XV = np.asarray(X @ self.V_)
        X2V2 = np.asarray(X_sq @ (self.V_ ** 2))
        linear = np.asarray(X @ self.w_).ravel()
        pairwise = 0.5 * (XV ** 2 - X2V2).sum(axis=1)
        return self.w0_ + linear + pairwise

    def fit(self, X, y):
        """Fit the model.

        Args:
            X: Feature matrix of shape (n_samples, n_features).
            y: Binary labels of shape (n_samples,).

        Returns:
            self

        Raises:
            ValueError: If X is empty, lengths differ, y has more than two
                classes, or n_epochs/n_factors is below 1.
        """
        if self.n_epochs < 1:
            raise ValueError(f"n_epochs must be at least 1, got {self.n_epochs}")
        if self.n_factors < 1:
            raise ValueError(f"n_factors must be at least 1, got {self.n_factors}")

        X = self._check_input(X)
        y = np.asarray(y).ravel()

        n_samples, n_features = X.shape
        if n_samples == 0:
            raise ValueError("Cannot fit a factorization machine on zero samples")
        if y.shape[0] != n_samples:
            raise ValueError(
                f"X has {n_samples} samples but y has {y.shape[0]} labels"
            )

        self.classes_ = np.unique(y)
        if len(self.classes_) > 2:
            raise ValueError(
                f"Expected binary labels, got {len(self.classes_)} classes"
            )
        # With a single observed class every label is treated as that class
        target = (y == self.classes_[-1]).astype(np.float64)

        self.n_features_in_ = n_features
        rng = np.random.RandomState(self.random_state)

        self.w0_ = 0.0
        self.w_ = np.zeros(n_features)
        self.V_ = rng.normal(0.0, self.init_stdev, size=(n_features, self.n_factors))

        g_w0 = 0.0
        g_w = np.zeros(n_features)
        g_V = np.zeros_like(self.V_)

        X_sq = X.multiply(X).tocsr()
        X_t = X.T.tocsr()
        X_sq_t = X_sq.T.tocsr()

        self.loss_curve_: List[float] = []

        for _ in range(self.n_epochs):
            XV = np.asarray(X @ self.V_)
            X2V2 = np.asarray(X_sq @ (self.V_ ** 2))
            scores = (
                self.w0_
                + np.asarray(X @ self.w_).ravel()
                + 0.5 * (XV ** 2 - X2V2).sum(axis=1)
            )
            proba = expit(scores)

            # d(mean log loss)/d(score)
            residual = (proba - target) / n_samples

            grad_w0 = residual.sum()
            grad_w = np.asarray(X_t @ residual).ravel() + self.reg * self.w_
            grad_V = (
                np.asarray(X_t @ (residual[:, None] * XV))
                - self.V_ * np.asarray(X_sq_t @ residual).ravel()[:, None]
                + self.reg * self.V_
            )

            g_w0 += grad_w0 ** 2
            g_w += grad_w ** 2
            g_V += grad_V ** 2

            self.w0_ -= self.learning_rate * grad_w0 / (np.sqrt(g_w0) + _ADAGRAD_EPS)
            self.w_ -= self.learning_rate * grad_w / (np.sqrt(g_w) + _ADAGRAD_EPS)
            self.V_ -= self.learning_rate * grad_V / (np.sqrt(g_V) + _ADAGRAD_EPS)

            eps = np.finfo(np.float64).eps
            clipped = np.clip(proba, eps, 1 - eps)
            loss = -np.mean(target * np.log(clipped) + (1 - target) * np.log(1 - clipped))
            self.loss_curve_.append(float(loss))

        logger.debug(
            "Factorization machine fitted",
            extra={
                "n_samples": n_samples,
                "n_features": n_features,
                "final_loss": self.loss_curve_[-1] if self.loss_curve_ else None,
            },
        )
        return self

    def decision_function(self, X) -> np.ndarray:
        """Raw affinity scores (logits); higher means more likely to buy."""
        check_is_fitted(self, ["w_", "V_"])
        X = self._check_input(X)
        if X.shape[1] != self.n_features_in_:
            raise ValueError(
                f"X has {X.shape[1]} features, expected {self.n_features_in_}"
            )
        return self._raw_scores(X, X.multiply(X).tocsr())

    def predict_proba(self, X) -> np.ndarray:
        proba = expit(self.decision_function(X))
        if len(self.classes_) == 1:
            return proba[:, None]
        return np.column_stack([1.0 - proba, proba])

    def predict(self, X) -> np.ndarray:
        scores = self.decision_function(X)
        if len(self.classes_) == 1:
            return np.full(scores.shape[0], self.classes_[0])
        return self.classes_[(scores > 0).astype(int)]
