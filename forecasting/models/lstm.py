"""
LSTM-based close price prediction model.

The recurrent part runs over the lagged (close, volume) block of the
feature vector, oldest lag first and the current candle last; the final
hidden state is joined with a projection of the full feature vector before
the output head. This keeps the single-FeatureVector contract while still
modelling the recent price path as a sequence.

- MinMax scaling of features and targets
- Dropout regularization
- Early stopping on validation loss
- Multi-output head for direct multi-step forecasts
"""

import logging
import pickle
import re
from pathlib import Path

import numpy as np
import pandas as pd
from sklearn.preprocessing import MinMaxScaler

from forecasting.models.base import BasePredictionModel, ModelFamily

logger = logging.getLogger(__name__)

try:
    import torch
    import torch.nn as nn
    from torch.utils.data import DataLoader, TensorDataset
    HAS_TORCH = True
except ImportError:
    HAS_TORCH = False
    logger.warning("PyTorch not installed. LSTMPredictor will be unavailable.")

_CLOSE_LAG = re.compile(r"^close_lag_(\d+)$")


class _LSTMNetwork(nn.Module if HAS_TORCH else object):
    """LSTM over the lag sequence + dense projection of all features."""

    def __init__(
        self,
        n_static: int,
        hidden_size: int = 64,
        num_layers: int = 2,
        dropout: float = 0.2,
        horizon: int = 1,
    ) -> None:
        if not HAS_TORCH:
            raise RuntimeError("PyTorch is required for LSTMPredictor.")
        super().__init__()
        self.lstm = nn.LSTM(
            input_size=2,
            hidden_size=hidden_size,
            num_layers=num_layers,
            batch_first=True,
            dropout=dropout if num_layers > 1 else 0.0,
        )
        self.static = nn.Linear(n_static, hidden_size)
        self.head = nn.Sequential(
            nn.ReLU(),
            nn.Linear(hidden_size * 2, hidden_size),
            nn.ReLU(),
            nn.Linear(hidden_size, horizon),
        )

    def forward(self, seq, static):
        lstm_out, _ = self.lstm(seq)
        last_hidden = lstm_out[:, -1, :]
        return self.head(torch.cat([last_hidden, self.static(static)], dim=1))


class LSTMPredictor(BasePredictionModel):
    """LSTM model for close price prediction.

    Wraps a PyTorch network with the sklearn-style fit/predict interface.
    Feature importance is not exposed (no indicator drivers).
    """

    family = ModelFamily.RECURRENT

    def __init__(
        self,
        hidden_size: int = 64,
        num_layers: int = 2,
        dropout: float = 0.2,
        learning_rate: float = 0.001,
        epochs: int = 50,
        batch_size: int = 64,
        patience: int = 8,
        horizon: int = 1,
    ) -> None:
        super().__init__(name="LSTM", horizon=horizon)
        self._hidden_size = hidden_size
        self._num_layers = num_layers
        self._dropout = dropout
        self._lr = learning_rate
        self._epochs = epochs
        self._batch_size = batch_size
        self._patience = patience

        self._model: "_LSTMNetwork | None" = None
        self._scaler_X: MinMaxScaler | None = None
        self._scaler_y: MinMaxScaler | None = None
        self._seq_index: list[tuple[int, int]] = []

    def fit(
        self,
        X_train: pd.DataFrame,
        y_train: pd.Series | pd.DataFrame,
        X_val: pd.DataFrame | None = None,
        y_val: pd.Series | pd.DataFrame | None = None,
    ) -> "LSTMPredictor":
        """Train the LSTM with Adam + early stopping on validation loss."""
        if not HAS_TORCH:
            raise RuntimeError("PyTorch is required.")

        torch.manual_seed(42)
        self._feature_names = list(X_train.columns)
        self._seq_index = self._sequence_index(self._feature_names)

        self._scaler_X = MinMaxScaler()
        self._scaler_y = MinMaxScaler()
        X_scaled = self._scaler_X.fit_transform(X_train.values)
        y_scaled = self._scaler_y.fit_transform(
            self._as_2d(self._encode_target(X_train, y_train))
        )

        self._model = _LSTMNetwork(
            n_static=X_train.shape[1],
            hidden_size=self._hidden_size,
            num_layers=self._num_layers,
            dropout=self._dropout,
            horizon=self._horizon,
        )
        optimizer = torch.optim.Adam(self._model.parameters(), lr=self._lr)
        criterion = nn.MSELoss()

        loader = DataLoader(
            self._tensor_dataset(X_scaled, y_scaled),
            batch_size=self._batch_size,
            shuffle=False,
        )

        val_loader = None
        if X_val is not None and y_val is not None and len(X_val) > 0:
            X_val_scaled = self._scaler_X.transform(X_val.values)
            y_val_scaled = self._scaler_y.transform(
                self._as_2d(self._encode_target(X_val, y_val))
            )
            val_loader = DataLoader(
                self._tensor_dataset(X_val_scaled, y_val_scaled),
                batch_size=self._batch_size,
            )

        # Training loop with early stopping
        best_val_loss = float("inf")
        patience_counter = 0
        best_state = None

        for epoch in range(self._epochs):
            self._model.train()
            train_loss = 0.0
            for seq_batch, static_batch, y_batch in loader:
                optimizer.zero_grad()
                output = self._model(seq_batch, static_batch)
                loss = criterion(output, y_batch)
                loss.backward()
                torch.nn.utils.clip_grad_norm_(self._model.parameters(), 1.0)
                optimizer.step()
                train_loss += loss.item()
            train_loss /= max(len(loader), 1)

            if val_loader is None:
                if (epoch + 1) % 10 == 0:
                    logger.info(
                        "[LSTM] Epoch %d/%d — train_loss=%.6f",
                        epoch + 1, self._epochs, train_loss,
                    )
                continue

            self._model.eval()
            val_loss = 0.0
            with torch.no_grad():
                for seq_batch, static_batch, y_batch in val_loader:
                    output = self._model(seq_batch, static_batch)
                    val_loss += criterion(output, y_batch).item()
            val_loss /= max(len(val_loader), 1)

            if val_loss < best_val_loss:
                best_val_loss = val_loss
                patience_counter = 0
                best_state = {
                    k: v.clone() for k, v in self._model.state_dict().items()
                }
            else:
                patience_counter += 1

            if patience_counter >= self._patience:
                logger.info(
                    "[LSTM] Early stopping at epoch %d (val_loss=%.6f)",
                    epoch + 1, val_loss,
                )
                break

            if (epoch + 1) % 10 == 0:
                logger.info(
                    "[LSTM] Epoch %d/%d — train_loss=%.6f, val_loss=%.6f",
                    epoch + 1, self._epochs, train_loss, val_loss,
                )

        if best_state is not None:
            self._model.load_state_dict(best_state)
        self._model.eval()

        self._is_fitted = True
        logger.info("[LSTM] Training complete (horizon=%d).", self._horizon)
        return self

    def predict(self, X: pd.DataFrame) -> np.ndarray:
        """Generate predicted closes from a feature DataFrame."""
        if not self._is_fitted or self._model is None:
            raise RuntimeError("Model is not fitted. Call fit() first.")

        X_scaled = self._scaler_X.transform(X[self._feature_names].values)
        seq, static = self._split_inputs(X_scaled)
        self._model.eval()
        with torch.no_grad():
            out = self._model(
                torch.tensor(seq, dtype=torch.float32),
                torch.tensor(static, dtype=torch.float32),
            ).numpy()

        r = self._scaler_y.inverse_transform(out)
        if self._horizon == 1:
            r = r.ravel()
        return self._decode_target(X, r)

    def save_model(self, path: Path) -> None:
        """Save LSTM weights, scalers and architecture params."""
        path.mkdir(parents=True, exist_ok=True)
        if self._model is not None:
            torch.save(self._model.state_dict(), path / "lstm_weights.pt")
        with open(path / "scalers.pkl", "wb") as f:
            pickle.dump({"X": self._scaler_X, "y": self._scaler_y}, f)
        params = self._base_meta()
        params.update({
            "hidden_size": self._hidden_size,
            "num_layers": self._num_layers,
            "dropout": self._dropout,
        })
        with open(path / "lstm_params.pkl", "wb") as f:
            pickle.dump(params, f)
        logger.info("[LSTM] Model saved to %s", path)

    def load_model(self, path: Path) -> None:
        """Load LSTM weights, scalers and architecture params."""
        if not HAS_TORCH:
            raise RuntimeError("PyTorch is required.")

        with open(path / "lstm_params.pkl", "rb") as f:
            params = pickle.load(f)
        self._restore_base_meta(params)
        self._hidden_size = params["hidden_size"]
        self._num_layers = params["num_layers"]
        self._dropout = params["dropout"]
        self._seq_index = self._sequence_index(self._feature_names)

        self._model = _LSTMNetwork(
            n_static=len(self._feature_names),
            hidden_size=self._hidden_size,
            num_layers=self._num_layers,
            dropout=self._dropout,
            horizon=self._horizon,
        )
        self._model.load_state_dict(
            torch.load(path / "lstm_weights.pt", map_location="cpu")
        )
        self._model.eval()

        with open(path / "scalers.pkl", "rb") as f:
            scalers = pickle.load(f)
        self._scaler_X = scalers["X"]
        self._scaler_y = scalers["y"]

        self._is_fitted = True
        logger.info("[LSTM] Model loaded from %s", path)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _sequence_index(feature_names: list[str]) -> list[tuple[int, int]]:
        """Column positions of (close, volume) per timestep, oldest first."""
        lags = sorted(
            (int(m.group(1)) for n in feature_names if (m := _CLOSE_LAG.match(n))),
            reverse=True,
        )
        steps = [(f"close_lag_{i}", f"volume_lag_{i}") for i in lags]
        steps.append(("close", "volume"))
        missing = [c for pair in steps for c in pair if c not in feature_names]
        if missing:
            raise ValueError(f"LSTM needs lag columns, missing: {missing}")
        return [(feature_names.index(c), feature_names.index(v)) for c, v in steps]

    def _split_inputs(self, X_scaled: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        seq = np.stack(
            [X_scaled[:, [c, v]] for c, v in self._seq_index], axis=1
        )
        return seq.astype(np.float32), X_scaled.astype(np.float32)

    def _tensor_dataset(self, X_scaled: np.ndarray, y_scaled: np.ndarray):
        seq, static = self._split_inputs(X_scaled)
        return TensorDataset(
            torch.tensor(seq, dtype=torch.float32),
            torch.tensor(static, dtype=torch.float32),
            torch.tensor(y_scaled, dtype=torch.float32),
        )
