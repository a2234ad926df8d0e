"""
test_model_persistence.py
~~~~~~~~~~~~~~~~~~~~~~~~~

Unit tests for the SQLite snapshot store.
"""

import os
import sqlite3

import numpy as np
import pytest

from layercake.fft import FFT
from layercake.layers import C1dxMatrixLayer, C1dxp2Layer, ConvolutionLayer, MatrixLayer
from layercake.network import Network
from layercake.persistence import serialize_network
from layercake.randoms import Float24Source
from layercake.model_persistence import (
    save_network,
    load_network,
    list_saved_networks,
    delete_network,
    get_network_metadata,
    delete_old_networks,
    ModelDatabase
)


def make_network(sizes, seed=0):
    """Chain of matrix layers ending in a compression layer."""
    net = Network()
    for n in sizes[:-1]:
        net.add_layer(MatrixLayer(n))
    net.add_layer(C1dxp2Layer(sizes[-1]))
    net.connect_layers()
    net.random_variables(Float24Source(seed=seed))
    return net


def age_network(db_path, network_id, modifier):
    """Move a snapshot's creation time into the past."""
    conn = sqlite3.connect(db_path)
    cursor = conn.cursor()
    cursor.execute('''
        UPDATE networks
        SET created_at = datetime('now', ?)
        WHERE network_id = ?
    ''', (modifier, network_id))
    conn.commit()
    conn.close()


@pytest.fixture
def temp_db_dir(tmp_path):
    """Create a temporary directory for database storage."""
    db_dir = tmp_path / "test_models"
    db_dir.mkdir()
    return str(db_dir)


@pytest.fixture
def simple_network():
    """Create a simple 3-layer network for testing."""
    return make_network([3, 4, 2])


@pytest.fixture
def trained_network(simple_network):
    """Create a simple network with some training applied."""
    rng = np.random.default_rng(0)
    simple_network.zero_changes()
    for i in range(10):
        x = rng.normal(size=3)
        target = np.zeros(2)
        target[i % 2] = 1.0
        simple_network.evaluate(target - simple_network.process(x))
    simple_network.downscale_changes(10)
    simple_network.adjust()
    return simple_network


@pytest.mark.unit
class TestModelPersistence:
    """Test basic snapshot store operations."""

    def test_save_network_creates_database(self, simple_network, temp_db_dir):
        """Test that saving a network creates the database file."""
        success = save_network(
            simple_network,
            "test_network_1",
            model_dir=temp_db_dir,
            trained=False
        )

        assert success is True
        assert os.path.exists(f"{temp_db_dir}/networks.db")

    def test_save_network_with_metadata(self, trained_network, temp_db_dir):
        """Test that network metadata is saved correctly."""
        network_id = "trained_network_1"
        accuracy = 0.85

        success = save_network(
            trained_network,
            network_id,
            model_dir=temp_db_dir,
            trained=True,
            accuracy=accuracy
        )

        assert success is True

        metadata = get_network_metadata(network_id, temp_db_dir)
        assert metadata is not None
        assert metadata['network_id'] == network_id
        assert metadata['trained'] is True
        assert metadata['accuracy'] == accuracy
        assert metadata['sizes'] == [3, 4, 2]
        assert metadata['architecture'][0] == {'kind': 'matrix', 'n': 3, 'm': 4}

    def test_load_network_returns_network(self, simple_network, temp_db_dir):
        """Test that loading a network returns a valid Network object."""
        save_network(simple_network, "test_network_2", model_dir=temp_db_dir)
        loaded_network = load_network("test_network_2", temp_db_dir)

        assert loaded_network is not None
        assert isinstance(loaded_network, Network)
        assert loaded_network.sizes == simple_network.sizes
        assert loaded_network.connected

    def test_load_nonexistent_network(self, temp_db_dir):
        """Test that loading a non-existent network returns None."""
        assert load_network("nonexistent", temp_db_dir) is None

    def test_load_preserves_weights(self, trained_network, temp_db_dir):
        """Test that saved parameters are preserved exactly."""
        save_network(trained_network, "test_network_3", model_dir=temp_db_dir)
        loaded_network = load_network("test_network_3", temp_db_dir)

        for original, loaded in zip(trained_network.layers, loaded_network.layers):
            for p_original, p_loaded in zip(original.parameters(), loaded.parameters()):
                assert np.array_equal(p_original.values, p_loaded.values)

        assert serialize_network(loaded_network) == serialize_network(trained_network)

    def test_load_convolution_network(self, temp_db_dir):
        """Test that convolution layers come back with an engine."""
        net = Network()
        net.add_layer(ConvolutionLayer(4, fft=FFT()))
        net.add_layer(C1dxMatrixLayer(3))
        net.connect_layers()
        net.random_variables(Float24Source(seed=1))
        x = np.array([0.1, 0.2, 0.3, 0.4])

        save_network(net, "conv", model_dir=temp_db_dir)
        loaded = load_network("conv", temp_db_dir)

        assert np.allclose(loaded.process(x), net.process(x))

    def test_list_saved_networks_empty(self, temp_db_dir):
        """Test listing networks when database is empty."""
        assert list_saved_networks(temp_db_dir) == []

    def test_list_saved_networks(self, simple_network, temp_db_dir):
        """Test that listing networks returns correct metadata."""
        save_network(simple_network, "net1", model_dir=temp_db_dir, trained=True, accuracy=0.9)
        save_network(simple_network, "net2", model_dir=temp_db_dir, trained=False)

        networks = list_saved_networks(temp_db_dir)

        assert len(networks) == 2
        assert any(net['network_id'] == "net1" for net in networks)
        assert any(net['network_id'] == "net2" for net in networks)

    def test_list_saved_networks_includes_metadata(self, simple_network, temp_db_dir):
        """Test that listed networks include all expected metadata fields."""
        save_network(
            simple_network,
            "metadata_test",
            model_dir=temp_db_dir,
            trained=True,
            accuracy=0.75
        )

        network = list_saved_networks(temp_db_dir)[0]

        assert network['network_id'] == "metadata_test"
        assert network['sizes'] == [3, 4, 2]
        assert [layer['kind'] for layer in network['architecture']] == [
            'matrix', 'matrix', 'c1dxp2'
        ]
        assert network['trained'] is True
        assert network['accuracy'] == 0.75
        assert 'created_at' in network
        assert 'updated_at' in network

    def test_delete_network_success(self, simple_network, temp_db_dir):
        """Test successful network deletion."""
        save_network(simple_network, "delete_test", model_dir=temp_db_dir)
        assert load_network("delete_test", temp_db_dir) is not None

        assert delete_network("delete_test", temp_db_dir) is True
        assert load_network("delete_test", temp_db_dir) is None

    def test_delete_nonexistent_network(self, temp_db_dir):
        """Test that deleting a non-existent network returns False."""
        ModelDatabase(db_path=f'{temp_db_dir}/networks.db')
        assert delete_network("nonexistent", temp_db_dir) is False

    def test_save_untrained_network(self, simple_network, temp_db_dir):
        """Test saving a network that hasn't been trained."""
        success = save_network(
            simple_network,
            "untrained_test",
            model_dir=temp_db_dir,
            trained=False,
            accuracy=None
        )

        assert success is True

        metadata = get_network_metadata("untrained_test", temp_db_dir)
        assert metadata['trained'] is False
        assert metadata['accuracy'] is None

    def test_update_network(self, simple_network, temp_db_dir):
        """Test that saving a network with the same ID updates it."""
        save_network(simple_network, "update_test", model_dir=temp_db_dir, trained=False)
        assert get_network_metadata("update_test", temp_db_dir)['trained'] is False

        save_network(
            simple_network,
            "update_test",
            model_dir=temp_db_dir,
            trained=True,
            accuracy=0.88
        )

        metadata = get_network_metadata("update_test", temp_db_dir)
        assert metadata['trained'] is True
        assert metadata['accuracy'] == 0.88
        assert len(list_saved_networks(temp_db_dir)) == 1

    def test_invalid_accuracy_rejected(self, simple_network, temp_db_dir):
        """Test that accuracies outside [0, 1] are not saved."""
        assert save_network(
            simple_network, "bad", model_dir=temp_db_dir, accuracy=1.5
        ) is False
        assert load_network("bad", temp_db_dir) is None

    def test_invalid_network_id_rejected(self, simple_network, temp_db_dir):
        """Test that empty ids are refused by every wrapper."""
        assert save_network(simple_network, "", model_dir=temp_db_dir) is False
        assert load_network("", temp_db_dir) is None
        assert delete_network("", temp_db_dir) is False
        assert get_network_metadata("", temp_db_dir) is None

    def test_snapshot_ids_with_separators(self, simple_network, temp_db_dir):
        """Test ids in the training program's name#round-score form."""
        save_network(simple_network, "run#3-9120", model_dir=temp_db_dir)
        assert load_network("run#3-9120", temp_db_dir) is not None


@pytest.mark.integration
class TestPersistenceIntegration:
    """Integration tests for the snapshot store."""

    def test_save_load_train_cycle(self, simple_network, temp_db_dir):
        """Test complete cycle: save, load, train, save again."""
        save_network(simple_network, "cycle_test", model_dir=temp_db_dir, trained=False)
        loaded_network = load_network("cycle_test", temp_db_dir)

        before = serialize_network(loaded_network)
        loaded_network.zero_changes()
        loaded_network.evaluate(np.ones(2) - loaded_network.process([1.0, 0.0, -1.0]))
        loaded_network.downscale_changes(1)
        loaded_network.adjust()
        assert serialize_network(loaded_network) != before

        save_network(
            loaded_network,
            "cycle_test",
            model_dir=temp_db_dir,
            trained=True,
            accuracy=0.85
        )

        final_network = load_network("cycle_test", temp_db_dir)
        metadata = get_network_metadata("cycle_test", temp_db_dir)

        assert serialize_network(final_network) == serialize_network(loaded_network)
        assert metadata['trained'] is True
        assert metadata['accuracy'] == 0.85

    def test_multiple_networks_coexist(self, temp_db_dir):
        """Test that multiple networks can coexist in the database."""
        networks_to_create = [
            ([20, 8, 10], "wide_network"),
            ([3, 4, 2], "simple_network"),
            ([10, 20, 20, 10], "deep_network")
        ]

        for sizes, network_id in networks_to_create:
            save_network(make_network(sizes), network_id, model_dir=temp_db_dir)

        assert len(list_saved_networks(temp_db_dir)) == len(networks_to_create)

        for sizes, network_id in networks_to_create:
            loaded = load_network(network_id, temp_db_dir)
            assert loaded is not None
            assert loaded.sizes == sizes

    def test_repeated_operations(self, simple_network, temp_db_dir):
        """Test that the database handles many operations in sequence."""
        network_ids = [f"concurrent_{i}" for i in range(5)]

        for network_id in network_ids:
            save_network(simple_network, network_id, model_dir=temp_db_dir)

        loaded_networks = [load_network(nid, temp_db_dir) for nid in network_ids]
        assert all(net is not None for net in loaded_networks)

        for network_id in network_ids:
            assert delete_network(network_id, temp_db_dir) is True

        assert list_saved_networks(temp_db_dir) == []


class TestDeleteOldNetworks:
    """Tests for automatic cleanup of old snapshots."""

    def test_delete_old_networks_basic(self, simple_network, temp_db_dir):
        """Test basic delete_old_networks functionality."""
        save_network(simple_network, "test_network", model_dir=temp_db_dir)
        age_network(os.path.join(temp_db_dir, "networks.db"), "test_network", '-3 days')

        assert delete_old_networks(days=2, model_dir=temp_db_dir) == 1
        assert load_network("test_network", temp_db_dir) is None

    def test_delete_old_networks_preserves_recent(self, simple_network, temp_db_dir):
        """Test that recent snapshots are not deleted."""
        save_network(simple_network, "recent_network", model_dir=temp_db_dir)

        assert delete_old_networks(days=2, model_dir=temp_db_dir) == 0
        assert load_network("recent_network", temp_db_dir) is not None

    def test_delete_old_networks_mixed_ages(self, simple_network, temp_db_dir):
        """Test with a mix of old and recent snapshots."""
        old_ids = ["old_1", "old_2"]
        recent_ids = ["recent_1", "recent_2"]
        db_path = os.path.join(temp_db_dir, "networks.db")

        for network_id in old_ids + recent_ids:
            save_network(simple_network, network_id, model_dir=temp_db_dir)
        for network_id in old_ids:
            age_network(db_path, network_id, '-3 days')

        assert delete_old_networks(days=2, model_dir=temp_db_dir) == len(old_ids)
        for network_id in old_ids:
            assert load_network(network_id, temp_db_dir) is None
        for network_id in recent_ids:
            assert load_network(network_id, temp_db_dir) is not None

    def test_delete_old_networks_custom_days(self, simple_network, temp_db_dir):
        """Test delete_old_networks with different day thresholds."""
        save_network(simple_network, "test_network", model_dir=temp_db_dir)
        age_network(os.path.join(temp_db_dir, "networks.db"), "test_network", '-5 days')

        assert delete_old_networks(days=7, model_dir=temp_db_dir) == 0
        assert load_network("test_network", temp_db_dir) is not None

        assert delete_old_networks(days=3, model_dir=temp_db_dir) == 1
        assert load_network("test_network", temp_db_dir) is None

    def test_delete_old_networks_empty_db(self, temp_db_dir):
        """Test delete_old_networks on empty database."""
        assert delete_old_networks(days=2, model_dir=temp_db_dir) == 0

    def test_delete_old_networks_negative_days(self, temp_db_dir):
        """Test that negative days raises ValueError."""
        with pytest.raises(ValueError) as exc_info:
            delete_old_networks(days=-1, model_dir=temp_db_dir)
        assert "non-negative" in str(exc_info.value)

    def test_delete_old_networks_zero_days(self, simple_network, temp_db_dir):
        """Test delete_old_networks with days=0."""
        save_network(simple_network, "test_network", model_dir=temp_db_dir)
        age_network(os.path.join(temp_db_dir, "networks.db"), "test_network", '-1 hours')

        assert delete_old_networks(days=0, model_dir=temp_db_dir) == 1
        assert load_network("test_network", temp_db_dir) is None

    def test_model_database_delete_old_networks_method(self, temp_db_dir):
        """Test ModelDatabase.delete_old_networks_from_db directly."""
        db = ModelDatabase(db_path=os.path.join(temp_db_dir, "networks.db"))
        db.save_network_to_db(make_network([3, 4, 2]), "test_network", trained=False)
        age_network(db.db_path, "test_network", '-3 days')

        assert db.delete_old_networks_from_db(days=2) == 1
        assert db.load_network_from_db("test_network") is None

    def test_delete_old_networks_keeps_listed(self, simple_network, temp_db_dir):
        """Test that snapshots passed as keep survive their age."""
        db_path = os.path.join(temp_db_dir, "networks.db")
        for network_id in ("run#0-3", "old"):
            save_network(simple_network, network_id, model_dir=temp_db_dir)
            age_network(db_path, network_id, '-3 days')

        assert delete_old_networks(days=2, model_dir=temp_db_dir, keep=["run#0-3"]) == 1
        assert load_network("run#0-3", temp_db_dir) is not None
        assert load_network("old", temp_db_dir) is None
