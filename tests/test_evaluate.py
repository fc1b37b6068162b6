"""
Tests for evaluation: thresholding, the prediction table and accuracy cross-checks.
"""

import numpy as np
import pandas as pd
import pytest
import torch
import torch.nn as nn
from torch.utils.data import DataLoader

from augmentation import build_transform
from config import ExperimentConfig
from dataset import CellImageDataset
from evaluate import (
    PREDICTION_COLUMNS,
    build_prediction_table,
    classification_summary,
    compute_confusion_matrix,
    evaluate,
    evaluate_and_predict,
    recompute_accuracy,
    save_predictions,
    threshold_predictions,
)
from labels import LabelRow, extract_labels
from model import SickleCellClassifier

from conftest import TEST_IMAGE_SIZE, ConstantModel, make_class_tree


def make_val_loader(val_dir):
    config = ExperimentConfig(image_size=TEST_IMAGE_SIZE)
    dataset = CellImageDataset(val_dir, transform=build_transform(config, augment=False))
    return DataLoader(dataset, batch_size=4, shuffle=False)


class TestThreshold:
    """Tests for threshold_predictions."""

    def test_boundary_is_positive(self):
        """Verify a score exactly at the threshold is class 1."""
        assert threshold_predictions([0.5]).tolist() == [1]

    def test_binary_values(self):
        """Verify scores split around 0.5."""
        result = threshold_predictions([0.0, 0.2, 0.49999, 0.5, 0.51, 1.0])

        assert result.tolist() == [0, 0, 0, 1, 1, 1]

    def test_idempotent(self):
        """Verify thresholding twice gives the same classes."""
        scores = np.random.default_rng(0).random(50)

        first = threshold_predictions(scores)
        second = threshold_predictions(scores)

        assert np.array_equal(first, second)
        assert np.array_equal(threshold_predictions(first), first)

    def test_tensor_input(self):
        """Verify torch tensors give float tensors."""
        result = threshold_predictions(torch.tensor([[0.1], [0.9]]))

        assert result.dtype == torch.float32
        assert result.view(-1).tolist() == [0.0, 1.0]

    def test_custom_threshold(self):
        """Verify the threshold is configurable."""
        assert threshold_predictions([0.6, 0.8], threshold=0.7).tolist() == [0, 1]


class TestPredictionTable:
    """Tests for build_prediction_table."""

    def test_columns_and_order(self):
        """Verify one row per label row in supply order."""
        labels = [LabelRow(0, "control/a.jpg", 0), LabelRow(1, "scd/b.jpg", 1)]

        table = build_prediction_table(labels, [0.2, 0.9])

        assert list(table.columns) == PREDICTION_COLUMNS
        assert table["filename"].tolist() == ["control/a.jpg", "scd/b.jpg"]
        assert table["prediction"].tolist() == [0, 1]

    def test_join_uses_supply_position(self):
        """Verify skipped filenames don't shift the scores."""
        filenames = ["control/a.jpg", "misc/b.jpg", "scd/c.jpg"]
        with pytest.warns(UserWarning):
            labels = extract_labels(filenames)

        table = build_prediction_table(labels, [0.1, 0.5, 0.8])

        assert table["index"].tolist() == [0, 2]
        assert table["probability"].tolist() == pytest.approx([0.1, 0.8])

    def test_missing_score_raises(self):
        """Verify a label row without a score is an error."""
        labels = [LabelRow(0, "control/a.jpg", 0), LabelRow(1, "scd/b.jpg", 1)]

        with pytest.raises(ValueError):
            build_prediction_table(labels, [0.3])

    def test_constant_predictions(self):
        """Verify scores fixed at 0.7 predict SCD everywhere."""
        labels = [
            LabelRow(0, "control/a.jpg", 0),
            LabelRow(1, "control/b.jpg", 0),
            LabelRow(2, "control/c.jpg", 0),
            LabelRow(3, "scd/d.jpg", 1),
        ]

        table = build_prediction_table(labels, [0.7] * 4)

        assert table["prediction"].tolist() == [1, 1, 1, 1]
        assert recompute_accuracy(table) == pytest.approx(0.25)


class TestAccuracy:
    """Tests for recompute_accuracy and the aggregate cross-check."""

    def test_recompute_accuracy(self):
        """Verify the fraction of matching rows."""
        table = pd.DataFrame({"label": [0, 1, 1, 0], "prediction": [0, 1, 0, 1]})

        assert recompute_accuracy(table) == 0.5

    def test_empty_table(self):
        """Verify an empty table is an error."""
        with pytest.raises(ValueError):
            recompute_accuracy(pd.DataFrame({"label": [], "prediction": []}))

    def test_mocked_model_end_to_end(self, val_dir):
        """Verify a model stuck at 0.7 predicts 1 everywhere and scores the SCD fraction."""
        loader = make_val_loader(val_dir)
        model = ConstantModel(0.7)
        label_table = extract_labels(loader.dataset.filenames)

        _, aggregate, scores = evaluate_and_predict(model, loader, nn.BCELoss(), torch.device("cpu"))
        table = build_prediction_table(label_table, scores)

        assert (table["prediction"] == 1).all()
        expected = (table["label"] == 1).mean()
        assert recompute_accuracy(table) == pytest.approx(expected)
        assert aggregate == pytest.approx(expected)

    def test_recomputed_matches_aggregate(self, val_dir):
        """Verify both accuracies agree when no score sits on the threshold."""
        torch.manual_seed(3)
        loader = make_val_loader(val_dir)
        model = SickleCellClassifier(image_size=TEST_IMAGE_SIZE)
        label_table = extract_labels(loader.dataset.filenames)

        _, aggregate, scores = evaluate_and_predict(model, loader, nn.BCELoss(), torch.device("cpu"))
        table = build_prediction_table(label_table, scores)

        if np.any(np.abs(scores - 0.5) < 1e-6):
            pytest.skip("score too close to the threshold")
        assert recompute_accuracy(table) == pytest.approx(aggregate, abs=1e-9)

    def test_recomputed_matches_aggregate_with_augmentation(self, tmp_path):
        """Verify both accuracies agree when validation images are augmented."""
        root = make_class_tree(tmp_path / "val", {
            "control": [f"control_{i}.jpg" for i in range(15)],
            "scd": [f"scd_{i}.jpg" for i in range(15)],
        })
        config = ExperimentConfig(image_size=TEST_IMAGE_SIZE)
        dataset = CellImageDataset(root, transform=build_transform(config, augment=True))
        loader = DataLoader(dataset, batch_size=8, shuffle=False)
        label_table = extract_labels(dataset.filenames)

        for seed in range(5):
            torch.manual_seed(seed)
            model = SickleCellClassifier(image_size=TEST_IMAGE_SIZE)

            _, aggregate, scores = evaluate_and_predict(
                model, loader, nn.BCELoss(), torch.device("cpu")
            )
            table = build_prediction_table(label_table, scores)

            if np.any(np.abs(scores - 0.5) < 1e-6):
                continue
            assert recompute_accuracy(table) == pytest.approx(aggregate, abs=1e-9)

    def test_scores_length(self, val_dir):
        """Verify one score per validation sample."""
        loader = make_val_loader(val_dir)

        _, _, scores = evaluate_and_predict(
            ConstantModel(0.3), loader, nn.BCELoss(), torch.device("cpu")
        )

        assert scores.shape == (4,)
        assert np.allclose(scores, 0.3)

    def test_evaluate_matches_single_pass(self, val_dir):
        """Verify evaluate reports the same loss and accuracy as the single pass."""
        loader = make_val_loader(val_dir)
        model = SickleCellClassifier(image_size=TEST_IMAGE_SIZE)

        loss, accuracy = evaluate(model, loader, nn.BCELoss(), torch.device("cpu"))
        single_loss, single_accuracy, _ = evaluate_and_predict(
            model, loader, nn.BCELoss(), torch.device("cpu")
        )

        assert loss == pytest.approx(single_loss)
        assert accuracy == single_accuracy

    def test_empty_loader(self, tmp_path):
        """Verify evaluating an empty validation set is an error."""
        root = make_class_tree(tmp_path / "empty", {"control": [], "scd": []})
        loader = DataLoader(CellImageDataset(root), batch_size=4)

        with pytest.raises(ValueError):
            evaluate_and_predict(ConstantModel(0.5), loader, nn.BCELoss(), torch.device("cpu"))

    def test_evaluate_does_not_modify_weights(self, val_dir):
        """Verify evaluation leaves the weights frozen."""
        loader = make_val_loader(val_dir)
        model = SickleCellClassifier(image_size=TEST_IMAGE_SIZE)
        initial_weights = model.fc2.weight.data.clone()

        evaluate(model, loader, nn.BCELoss(), torch.device("cpu"))

        assert torch.equal(initial_weights, model.fc2.weight.data)


class TestConfusionMatrix:
    """Tests for compute_confusion_matrix and classification_summary."""

    def test_cells_sum_to_rows(self):
        """Verify the matrix counts every row exactly once."""
        table = pd.DataFrame({"label": [0, 0, 1, 1, 1], "prediction": [0, 1, 1, 1, 0]})

        cm = compute_confusion_matrix(table)

        assert cm.shape == (2, 2)
        assert cm.sum() == len(table)
        assert cm.tolist() == [[1, 1], [1, 2]]

    def test_single_class_still_2x2(self):
        """Verify an all-SCD run still gives a 2x2 matrix."""
        table = pd.DataFrame({"label": [1, 1], "prediction": [1, 1]})

        cm = compute_confusion_matrix(table)

        assert cm.shape == (2, 2)
        assert cm.sum() == 2

    def test_summary(self):
        """Verify precision, recall and F1 for the SCD class."""
        table = pd.DataFrame({"label": [0, 0, 1, 1], "prediction": [0, 1, 1, 1]})

        summary = classification_summary(table)

        assert summary["precision"] == pytest.approx(2 / 3)
        assert summary["recall"] == pytest.approx(1.0)
        assert summary["f1"] == pytest.approx(0.8)
        assert summary["confusion_matrix"] == [[1, 1], [0, 2]]


class TestSavePredictions:
    """Tests for save_predictions."""

    def test_csv_round_trip(self, tmp_path):
        """Verify the CSV keeps columns and row order."""
        labels = [LabelRow(0, "control/a.jpg", 0), LabelRow(1, "scd/b.jpg", 1)]
        table = build_prediction_table(labels, [0.25, 0.75])
        filepath = str(tmp_path / "reports" / "predictions.csv")

        save_predictions(table, filepath)
        loaded = pd.read_csv(filepath)

        assert list(loaded.columns) == PREDICTION_COLUMNS
        assert loaded["label"].tolist() == [0, 1]
        assert loaded["prediction"].tolist() == [0, 1]
        assert loaded["probability"].tolist() == pytest.approx([0.25, 0.75])
