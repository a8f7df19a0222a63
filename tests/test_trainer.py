"""
Tests for the training session.

These tests verify:
    - Training runs to completion and records metrics
    - Edits made while training are queued and applied between batches
    - Architecture changes are refused while training runs
    - Checkpoints save and load correctly
"""

import os
import sys
import threading
import time

import numpy as np
import pytest
import torch

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from config import Config
from relu_regions.nn.network import DenseNetwork
from relu_regions.nn.trainer import (
    EVENT_DATA_CHANGED,
    EVENT_EPOCH,
    EVENT_NETWORK_REPLACED,
    EVENT_STATUS,
    EVENT_WEIGHTS_CHANGED,
    STATUS_COMPLETE,
    STATUS_ERROR,
    STATUS_PAUSED,
    STATUS_READY,
    STATUS_RESET,
    SaveMetadata,
    TrainingActiveError,
    TrainingSession,
    inspect_checkpoint,
)


@pytest.fixture
def session(small_config):
    return TrainingSession(small_config)


def constant_network(output_bias: float) -> DenseNetwork:
    """Network whose output is sigmoid(output_bias) everywhere."""
    return DenseNetwork.from_parameters(
        [np.zeros((2, 1)), np.zeros((1, 1))],
        [np.zeros(1), np.array([output_bias])],
    )


class TestTrainingLoop:
    """Test running epochs."""

    def test_initial_state(self, session):
        assert session.state.epoch == 0
        assert session.state.status == STATUS_READY
        assert not session.is_training
        assert list(session.network.hidden_sizes) == [4]

    def test_run_to_completion(self, session):
        state = session.run()
        assert state.epoch == 3
        assert state.status == STATUS_COMPLETE
        assert not state.is_training
        assert len(state.loss_history) == 3
        assert state.loss == state.loss_history[-1]
        assert 0.0 <= state.accuracy <= 1.0

    def test_run_more_epochs(self, session):
        session.run()
        session.run(epochs=2)
        assert session.state.epoch == 5

    def test_run_when_already_complete(self, session):
        session.run()
        session.run()
        assert session.state.epoch == 3

    def test_sample_loss_recorded_per_batch(self, session):
        session.train_epoch()
        # 36 samples in batches of 5
        assert len(session.state.sample_loss_history) == 8

    @pytest.mark.slow
    def test_loss_decreases_on_separable_data(self):
        cfg = Config(HIDDEN_LAYERS=[6], GRID_WIDTH=8, GRID_HEIGHT=8, LEARNING_RATE=0.3,
                     DATA_PATTERN='stripes_fifty_fifty', EPOCHS=150, SEED=3)
        session = TrainingSession(cfg)
        first = session.train_epoch()
        session.run()
        assert session.state.loss < first

    def test_events(self, session):
        session.run()
        events = session.poll_events()
        kinds = [e.kind for e in events]
        assert kinds.count(EVENT_EPOCH) == 3
        assert kinds[0] == EVENT_STATUS
        assert events[-1].kind == EVENT_STATUS
        assert events[-1].payload['status'] == STATUS_COMPLETE
        assert session.poll_events() == []

    def test_run_zero_epochs_trains_nothing(self, small_config):
        small_config.EPOCHS = 0
        session = TrainingSession(small_config)
        state = session.run(epochs=0)
        assert state.epoch == 0
        assert not state.is_training
        assert state.status == STATUS_READY
        assert session.poll_events() == []

    def test_region_count_recorded(self, session):
        session.run()
        assert session.state.region_count >= 1
        assert session.state.to_dict()['region_count'] == session.state.region_count
        epochs = [e for e in session.poll_events() if e.kind == EVENT_EPOCH]
        assert epochs[-1].payload['regions'] == session.state.region_count

    def test_failing_epoch_leaves_session_usable(self, session, monkeypatch):
        def fail():
            raise RuntimeError("epoch blew up")

        monkeypatch.setattr(session, 'train_epoch', fail)
        with pytest.raises(RuntimeError, match="epoch blew up"):
            session.run()

        assert not session.is_training
        assert session.state.status == STATUS_ERROR
        assert session.poll_events()[-1].payload == {'status': STATUS_ERROR, 'is_training': False}

        session.reconfigure([2])
        monkeypatch.undo()
        assert session.run().status == STATUS_COMPLETE

    @pytest.mark.slow
    def test_background_run_stops(self, small_config):
        small_config.EPOCHS = 0
        session = TrainingSession(small_config)
        thread = threading.Thread(target=session.run, daemon=True)
        thread.start()

        deadline = time.time() + 10
        while session.state.epoch < 2 and time.time() < deadline:
            time.sleep(0.01)
        session.stop()
        thread.join(timeout=10)

        assert not thread.is_alive()
        assert session.state.status == STATUS_PAUSED
        assert session.state.epoch >= 2


class TestEditing:
    """Test weight and bias edits."""

    def test_edit_when_paused_applies_now(self, session):
        assert session.edit_weight(0, 1, 2, 0.75) is True
        assert session.network.get_weight(0, 1, 2) == 0.75
        assert session.edit_bias(1, 0, -0.25) is True
        assert session.network.get_bias(1, 0) == -0.25
        kinds = [e.kind for e in session.poll_events()]
        assert kinds == [EVENT_WEIGHTS_CHANGED, EVENT_WEIGHTS_CHANGED]

    def test_edit_while_training_is_queued(self, session):
        before = session.network.get_weight(0, 0, 0)
        session.state.is_training = True

        assert session.edit_weight(0, 0, 0, before + 1.0) is False
        assert session.pending_edits == 1
        assert session.network.get_weight(0, 0, 0) == before

        session.stop()
        assert session.pending_edits == 0
        assert session.network.get_weight(0, 0, 0) == before + 1.0
        assert session.state.status == STATUS_PAUSED

    def test_queued_edits_applied_between_batches(self, session):
        session.state.is_training = True
        session.edit_bias(0, 0, 2.0)
        session.train_epoch()
        assert session.pending_edits == 0
        kinds = [e.kind for e in session.poll_events()]
        assert EVENT_WEIGHTS_CHANGED in kinds

    def test_edit_events_describe_the_change(self, session):
        session.edit_weight(0, 1, 2, 0.75)
        session.edit_bias(1, 0, -0.25)
        weight, bias = session.poll_events()
        assert weight.payload == {'param': 'weight', 'layer': 0, 'from_node': 1, 'to_node': 2, 'value': 0.75}
        assert bias.payload == {'param': 'bias', 'layer': 1, 'node': 0, 'value': -0.25}

    @pytest.mark.slow
    def test_edit_during_background_run(self, small_config):
        small_config.EPOCHS = 0
        session = TrainingSession(small_config)
        thread = threading.Thread(target=session.run, daemon=True)
        thread.start()

        deadline = time.time() + 10
        while session.state.epoch < 1 and time.time() < deadline:
            time.sleep(0.01)
        assert session.edit_bias(0, 0, 1.5) is False
        while session.pending_edits and time.time() < deadline:
            time.sleep(0.01)
        assert session.is_training
        session.stop()
        thread.join(timeout=10)

        assert not thread.is_alive()
        assert session.state.status == STATUS_PAUSED
        edits = [e for e in session.poll_events() if e.kind == EVENT_WEIGHTS_CHANGED]
        assert [e.payload['value'] for e in edits] == [1.5]

    @pytest.mark.parametrize("args", [(5, 0, 0), (0, 2, 0), (0, 0, 4), (-1, 0, 0)])
    def test_bad_weight_index(self, session, args):
        with pytest.raises(IndexError):
            session.edit_weight(*args, 1.0)

    def test_bad_index_rejected_even_while_training(self, session):
        session.state.is_training = True
        with pytest.raises(IndexError):
            session.edit_bias(0, 9, 1.0)
        assert session.pending_edits == 0

    def test_non_finite_value(self, session):
        with pytest.raises(ValueError):
            session.edit_weight(0, 0, 0, float('nan'))
        with pytest.raises(ValueError):
            session.edit_bias(0, 0, float('inf'))


class TestLifecycle:
    """Test reset and reconfigure."""

    def test_reset(self, session):
        session.run()
        session.poll_events()
        session.reset()
        assert session.state.epoch == 0
        assert session.state.status == STATUS_RESET
        assert session.state.loss_history == []
        assert list(session.network.hidden_sizes) == [4]
        kinds = [e.kind for e in session.poll_events()]
        assert EVENT_NETWORK_REPLACED in kinds

    def test_reconfigure(self, session):
        session.run()
        network = session.reconfigure([3, 2], learning_rate=0.2)
        assert list(network.hidden_sizes) == [3, 2]
        assert network.learning_rate == 0.2
        assert session.state.epoch == 0

    def test_reconfigure_keeps_unspecified(self, session):
        session.reconfigure(learning_rate=0.01)
        assert list(session.network.hidden_sizes) == [4]

    def test_reconfigure_while_training(self, session):
        session.state.is_training = True
        with pytest.raises(TrainingActiveError):
            session.reconfigure([2])
        assert list(session.network.hidden_sizes) == [4]

    def test_reconfigure_invalid(self, session):
        with pytest.raises(ValueError):
            session.reconfigure([0])


class TestProducts:
    """Test predictions, accuracy and geometry snapshots."""

    def test_predictions_shape(self, session):
        preds = session.predictions()
        assert preds.shape == (6, 6)
        assert np.all((preds > 0) & (preds < 1))

    def test_accuracy_counts_cells_within_tolerance(self, small_config):
        session = TrainingSession(small_config, network=constant_network(-10.0))
        session.set_custom_data([[0, 0], [0, 1]])
        assert session.accuracy() == pytest.approx(0.75)

    def test_regenerate_data(self, session):
        grid = session.regenerate_data(4, 3, 'checkerboard')
        assert grid.shape == (3, 4)
        assert session.predictions().shape == (3, 4)
        assert session.poll_events()[-1].kind == EVENT_DATA_CHANGED

    def test_geometry(self, session):
        regions = session.sampled_regions()
        assert regions
        assert all(len(r.pattern) == 4 for r in regions)
        assert all(len(r.pattern) == 4 for r in session.analytic_regions())
        assert len(session.boundary_lines()) <= 4
        summary = session.summary()
        assert summary.sampled_regions == len(regions)

    def test_snapshot_is_independent(self, session):
        snap = session.snapshot()
        snap.set_weight(0, 0, 0, 99.0)
        assert session.network.get_weight(0, 0, 0) != 99.0

    def test_network_view(self, session):
        view = session.network_view()
        assert view['info']['hidden_sizes'] == [4]
        assert 'layers' in view and 'edges' in view


class TestReplaceNetwork:
    """Test swapping in an externally built network."""

    def test_replace_when_paused(self, session):
        session.run()
        session.poll_events()
        network = constant_network(0.0)
        session.replace_network(network)
        assert session.network is network
        assert session.state.epoch == 0
        assert session.state.status == STATUS_PAUSED
        assert session.state.accuracy == pytest.approx(session.accuracy())
        assert [e.kind for e in session.poll_events()] == [EVENT_NETWORK_REPLACED]

    def test_replace_from_exported_dict(self, session, small_config):
        session.run(epochs=1)
        other = TrainingSession(small_config)
        other.replace_network(DenseNetwork.from_dict(session.snapshot().to_dict()))
        np.testing.assert_allclose(other.predictions(), session.predictions())

    def test_size_mismatch(self, session):
        wide = DenseNetwork.from_parameters([np.zeros((3, 1)), np.zeros((1, 1))],
                                            [np.zeros(1), np.zeros(1)])
        with pytest.raises(ValueError):
            session.replace_network(wide)
        assert list(session.network.hidden_sizes) == [4]

    def test_replace_while_training(self, session):
        session.state.is_training = True
        with pytest.raises(TrainingActiveError):
            session.replace_network(constant_network(0.0))
        assert list(session.network.hidden_sizes) == [4]


class TestCheckpoints:
    """Test save/load."""

    def test_round_trip(self, session, small_config, tmp_path):
        session.run(epochs=2)
        path = str(tmp_path / 'models' / 'run.pth')
        metadata = session.save_checkpoint(path, save_reason='final')
        assert isinstance(metadata, SaveMetadata)
        assert metadata.epoch == 2
        assert os.path.exists(path)

        restored = TrainingSession(small_config)
        loaded = restored.load_checkpoint(path)
        assert loaded is not None
        assert loaded.save_reason == 'final'
        assert restored.state.epoch == 2
        assert restored.state.status == STATUS_PAUSED
        assert restored.state.loss_history == pytest.approx(session.state.loss_history)
        for a, b in zip(restored.network.weights, session.network.weights):
            np.testing.assert_allclose(a, b)

    def test_load_other_hidden_sizes(self, session, tmp_path):
        path = str(tmp_path / 'wide.pth')
        session.save_checkpoint(path)
        other = TrainingSession(Config(HIDDEN_LAYERS=[2, 2], SEED=1))
        assert other.load_checkpoint(path) is not None
        assert list(other.network.hidden_sizes) == [4]

    def test_missing_file(self, session, tmp_path):
        assert session.load_checkpoint(str(tmp_path / 'nope.pth')) is None

    def test_corrupt_file(self, session, tmp_path):
        path = tmp_path / 'bad.pth'
        path.write_bytes(b'not a checkpoint')
        assert session.load_checkpoint(str(path)) is None
        assert inspect_checkpoint(str(path)) is None

    def test_not_a_dict(self, session, tmp_path):
        path = str(tmp_path / 'list.pth')
        torch.save([1, 2, 3], path)
        assert session.load_checkpoint(path) is None

    def test_incompatible_sizes(self, session, tmp_path):
        path = str(tmp_path / 'wrong.pth')
        torch.save({'input_size': 3, 'output_size': 1, 'weights': [], 'biases': []}, path)
        before = session.network.get_weight(0, 0, 0)
        assert session.load_checkpoint(path) is None
        assert session.network.get_weight(0, 0, 0) == before

    def test_missing_keys(self, session, tmp_path):
        path = str(tmp_path / 'partial.pth')
        torch.save({'input_size': 2, 'output_size': 1}, path)
        assert session.load_checkpoint(path) is None

    def test_load_while_training(self, session, tmp_path):
        path = str(tmp_path / 'm.pth')
        session.save_checkpoint(path)
        session.state.is_training = True
        with pytest.raises(TrainingActiveError):
            session.load_checkpoint(path)

    def test_inspect(self, session, tmp_path):
        session.run(epochs=1)
        path = str(tmp_path / 'm.pth')
        session.save_checkpoint(path, save_reason='final')
        info = inspect_checkpoint(path)
        assert info['filename'] == 'm.pth'
        assert info['epoch'] == 1
        assert info['hidden_sizes'] == [4]
        assert info['metadata']['save_reason'] == 'final'
        assert info['file_size_mb'] > 0

    def test_inspect_missing(self, tmp_path):
        assert inspect_checkpoint(str(tmp_path / 'none.pth')) is None
