"""
api_server.py
~~~~~~~~~~~~~

Flask-based REST API server with WebSocket support for driving training.

This module provides endpoints for:
- Loading an IDX dataset from a manifest file
- Creating and managing layer-chain networks
- Training networks in batches or in checkpointed training programs, with
  real-time progress updates via WebSockets
- Testing networks and rendering example predictions
- Reading and changing per-layer configuration
- Persisting networks to/from the SQLite snapshot store

The server uses:
- Flask for REST API endpoints
- Flask-SocketIO for WebSocket communication
- Gevent for async background training tasks
- SQLite for network snapshots
"""

import os
import sys
import uuid
import base64
import logging
from io import BytesIO
from typing import Dict, Any, List, Optional, Tuple

import gevent
import numpy as np
from flask import Flask, request, jsonify
from flask_cors import CORS
from flask_socketio import SocketIO

# Use non-GUI backend for matplotlib (required for server environments)
import matplotlib
matplotlib.use('Agg')
import matplotlib.pyplot as plt

# Local imports
from layercake import mnist_loader
from layercake.layers import ShapeError
from layercake.network import Network
from layercake.persistence import apply_config, serialize_config
from layercake.training import Trainer, build_mnist_network, build_network
from layercake.model_persistence import (
    ModelDatabase,
    save_network,
    load_network,
    list_saved_networks,
    delete_network,
    delete_old_networks
)

# ============================================================================
# LOGGING SETUP
# ============================================================================

def configure_logging() -> None:
    """
    Set up logging based on environment.

    - In production: Show fewer logs (less noise) but keep important logs
    - In development: Show more detailed logs for debugging
    """
    log_level_str = os.getenv('LOG_LEVEL', 'INFO').upper()
    log_level = getattr(logging, log_level_str, logging.INFO)
    is_production = os.getenv('FLASK_ENV') == 'production'

    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    # In production, silence noisy third-party logs but keep our logs visible
    if is_production:
        for logger_name in ['socketio', 'engineio', 'engineio.server',
                            'socketio.server', 'werkzeug']:
            logging.getLogger(logger_name).setLevel(logging.WARNING)
        logging.getLogger('layercake').setLevel(logging.INFO)
    else:
        logging.getLogger('socketio').setLevel(logging.INFO)
        logging.getLogger('engineio').setLevel(logging.INFO)


configure_logging()
logger = logging.getLogger(__name__)

# ============================================================================
# FLASK APP SETUP
# ============================================================================

app = Flask(__name__)
CORS(app, resources={r"/*": {"origins": "*"}})  # Allow requests from any origin
app.config['MODEL_DIR'] = os.getenv('MODEL_DIR', 'models')

is_production = os.getenv('FLASK_ENV') == 'production'

# SocketIO enables real-time communication (WebSockets) for training updates
socketio = SocketIO(
    app,
    cors_allowed_origins="*",
    async_mode='gevent',
    logger=not is_production,
    engineio_logger=not is_production,
    ping_timeout=60,
    ping_interval=25
)

# ============================================================================
# GLOBAL STATE
# ============================================================================

# Networks currently loaded in memory: {network_id: network_info}
active_networks: Dict[str, Dict[str, Any]] = {}

# Training jobs being tracked: {job_id: job_info}
training_jobs: Dict[str, Dict[str, Any]] = {}

# Dataset shared by every network; replaced wholesale by load_dataset()
dataset: mnist_loader.MnistData = mnist_loader.empty_data()

DEFAULT_MANIFEST = 'data/MNIST/input_files'
ACTIVE_STATUSES = ('pending', 'training')


# ============================================================================
# DATA LOADING
# ============================================================================

def load_dataset(manifest: Optional[str] = None) -> mnist_loader.MnistData:
    """
    Load the dataset named by a manifest into the global ``dataset``.

    Args:
        manifest: Manifest path, ``DATA_MANIFEST`` or the default if omitted

    Returns:
        The loaded dataset (empty if the files could not be read)
    """
    global dataset

    path = manifest or os.getenv('DATA_MANIFEST', DEFAULT_MANIFEST)
    logger.info(f"Loading dataset from '{path}'...")
    dataset = mnist_loader.load_manifest(path)
    return dataset


def reload_saved_networks() -> None:
    """
    Reload all saved snapshots from the database into memory.

    Called at startup so that snapshots saved before a restart can be
    tested and trained again.
    """
    model_dir = app.config['MODEL_DIR']
    saved_networks = list_saved_networks(model_dir)

    if not saved_networks:
        logger.info("No saved networks to reload")
        return

    loaded_count = 0
    for net_info in saved_networks:
        network_id = net_info['network_id']
        net = load_network(network_id, model_dir)
        if net is None:
            logger.warning(f"Failed to load network {network_id}")
            continue
        active_networks[network_id] = _network_info(
            net, net_info['trained'], net_info['accuracy']
        )
        loaded_count += 1

    logger.info(f"Reloaded {loaded_count} network(s) from database")


# ============================================================================
# CLEANUP
# ============================================================================

def program_checkpoints() -> List[str]:
    """Best snapshots of programs still running; these must survive cleanup."""
    return [
        job['best_id'] for job in training_jobs.values()
        if job.get('kind') == 'program'
        and job.get('status') in ACTIVE_STATUSES
        and job.get('best_id')
    ]


def cleanup_finished_training_jobs() -> None:
    """Remove completed, stopped or failed training jobs from memory."""
    finished_statuses = {'completed', 'stopped', 'failed'}
    jobs_to_remove = [
        job_id for job_id, job_info in training_jobs.items()
        if job_info.get('status') in finished_statuses
    ]

    for job_id in jobs_to_remove:
        del training_jobs[job_id]

    if jobs_to_remove:
        logger.info(f"Cleaned up {len(jobs_to_remove)} finished training job(s)")


def startup() -> None:
    """Load the dataset and the saved snapshots."""
    load_dataset()
    reload_saved_networks()


# ============================================================================
# HELPER FUNCTIONS
# ============================================================================

def _network_info(
    net: Network,
    trained: bool = False,
    accuracy: Optional[float] = None
) -> Dict[str, Any]:
    return {
        'network': net,
        'architecture': net.describe(),
        'trained': trained,
        'accuracy': accuracy
    }


def _network_busy(network_id: str) -> bool:
    return any(
        job['network_id'] == network_id and job.get('status') in ACTIVE_STATUSES
        for job in training_jobs.values()
    )


def _positive_int(data: Dict[str, Any], key: str, default: int) -> Optional[int]:
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        return None
    return value


def _database() -> ModelDatabase:
    return ModelDatabase(
        db_path=os.path.join(app.config['MODEL_DIR'], 'networks.db')
    )


def array_to_float_list(array: np.ndarray) -> List[float]:
    """Convert a numpy array to a list of floats (for JSON serialization)."""
    return [float(val) for val in array.flatten()]


def create_digit_image(
    image_data: np.ndarray,
    shape: Tuple[int, int],
    predicted: int,
    actual: int
) -> str:
    """
    Create a base64-encoded PNG image of a sample.

    Args:
        image_data: Flat pixel array
        shape: (rows, cols) of the image
        predicted: The class the network predicted
        actual: The correct class

    Returns:
        Base64-encoded PNG image string
    """
    plt.figure(figsize=(3, 3))
    plt.imshow(image_data.reshape(shape), cmap='gray')
    plt.title(f"Predicted: {predicted} | Actual: {actual}")
    plt.axis('off')

    # Save image to a bytes buffer instead of a file
    buffer = BytesIO()
    plt.savefig(buffer, format='png', bbox_inches='tight')
    buffer.seek(0)
    img_base64 = base64.b64encode(buffer.getvalue()).decode('utf-8')
    plt.close()

    return img_base64


# ============================================================================
# API ENDPOINTS
# ============================================================================

@app.route('/api/status', methods=['GET'])
def get_status():
    """Return server status, counts of networks and active jobs, data sizes."""
    active_training = sum(
        1 for job in training_jobs.values()
        if job.get('status') in ACTIVE_STATUSES
    )

    return jsonify({
        'status': 'online',
        'active_networks': len(active_networks),
        'training_jobs': active_training,
        'train_size': dataset.train_size,
        'test_size': dataset.test_size
    }), 200


@app.route('/api/data', methods=['POST'])
def load_data():
    """
    Load a dataset from a manifest file.

    Request body (optional):
        {'manifest': 'data/MNIST/input_files'}

    Returns:
        JSON with train_size, test_size and image_shape
    """
    data = request.get_json(silent=True) or {}
    manifest = data.get('manifest')
    if manifest is not None and not isinstance(manifest, str):
        return jsonify({'error': 'manifest must be a path'}), 400

    loaded = load_dataset(manifest)
    if loaded.train_size == 0 and loaded.test_size == 0:
        return jsonify({'error': 'No samples could be loaded'}), 400

    return jsonify({
        'train_size': loaded.train_size,
        'test_size': loaded.test_size,
        'image_shape': list(loaded.image_shape)
    }), 200


@app.route('/api/networks', methods=['POST'])
def create_network():
    """
    Create a new network.

    Request body (optional):
        {'layers': [{'kind': 'matrix', 'n': 784}, {'kind': 'c1dxp2', 'n': 10}]}

    Without layers the reference digit classifier is built.

    Returns:
        JSON with network_id, architecture, and status
    """
    data = request.get_json(silent=True) or {}
    layers = data.get('layers')

    if layers is not None and (
        not isinstance(layers, list)
        or not all(isinstance(spec, dict) for spec in layers)
    ):
        logger.warning(f"Invalid architecture requested: {layers}")
        return jsonify({'error': 'layers must be a list of layer objects'}), 400

    try:
        if layers is None:
            net = build_mnist_network(image_size=dataset.image_size or 784)
        else:
            net = build_network(layers)
    except ValueError as e:
        logger.warning(f"Invalid architecture requested: {e}")
        return jsonify({'error': str(e)}), 400

    network_id = str(uuid.uuid4())
    active_networks[network_id] = _network_info(net)
    logger.info(f"Created network {network_id} with sizes {net.sizes}")

    return jsonify({
        'network_id': network_id,
        'architecture': net.describe(),
        'status': 'created'
    }), 201


@app.route('/api/networks', methods=['GET'])
def list_networks():
    """List all available networks (both in-memory and saved)."""
    in_memory = [
        {
            'network_id': nid,
            'architecture': info['architecture'],
            'trained': info['trained'],
            'accuracy': info['accuracy'],
            'status': 'in_memory'
        }
        for nid, info in active_networks.items()
    ]

    in_memory_ids = set(active_networks.keys())
    saved_only = []
    for net in list_saved_networks(app.config['MODEL_DIR']):
        if net['network_id'] not in in_memory_ids:
            net['status'] = 'saved'
            saved_only.append(net)

    logger.debug(f"Listing networks: {len(in_memory)} in memory, {len(saved_only)} saved")

    return jsonify({'networks': in_memory + saved_only}), 200


@app.route('/api/networks/<network_id>', methods=['DELETE'])
def delete_network_endpoint(network_id: str):
    """Delete a network from both memory and the snapshot store."""
    if _network_busy(network_id):
        return jsonify({'error': 'Network is training'}), 409

    deleted_from_memory = active_networks.pop(network_id, None) is not None
    deleted_from_disk = delete_network(network_id, app.config['MODEL_DIR'])

    if not deleted_from_memory and not deleted_from_disk:
        logger.warning(f"Delete attempted for non-existent network: {network_id}")
        return jsonify({'error': 'Network not found'}), 404

    logger.info(f"Deleted network {network_id}: memory={deleted_from_memory}, disk={deleted_from_disk}")

    return jsonify({
        'network_id': network_id,
        'deleted_from_memory': deleted_from_memory,
        'deleted_from_disk': deleted_from_disk
    }), 200


@app.route('/api/networks/cleanup', methods=['POST'])
def cleanup_old_networks_endpoint():
    """
    Manually delete snapshots older than the given number of days.

    The current best snapshot of every running training program is kept,
    and finished training jobs are dropped from memory.

    Request body (optional):
        {'days': 2}  # defaults to 2
    """
    data = request.get_json(silent=True) or {}
    days = data.get('days', 2)

    if not isinstance(days, (int, float)) or days < 0:
        return jsonify({'error': 'days must be a non-negative number'}), 400

    deleted_count = delete_old_networks(
        days=int(days), model_dir=app.config['MODEL_DIR'],
        keep=program_checkpoints()
    )
    if deleted_count == -1:
        return jsonify({'error': 'Error occurred during cleanup'}), 500

    cleanup_finished_training_jobs()

    return jsonify({
        'deleted_count': deleted_count,
        'days': days,
        'message': f'Deleted {deleted_count} network(s) older than {days} day(s)'
    }), 200


# ============================================================================
# TRAINING ENDPOINTS
# ============================================================================

def _training_request(network_id: str):
    """Validate a training request; returns (amount, size, error)."""
    if network_id not in active_networks:
        logger.warning(f"Training requested for non-existent network: {network_id}")
        return None, None, (jsonify({'error': 'Network not found'}), 404)
    if _network_busy(network_id):
        return None, None, (jsonify({'error': 'Network is already training'}), 409)
    if dataset.train_size == 0:
        return None, None, (jsonify({'error': 'No training data loaded'}), 400)

    data = request.get_json(silent=True) or {}
    amount = _positive_int(data, 'amount', 100)
    size = _positive_int(data, 'size', 10)
    if amount is None:
        return None, None, (jsonify({'error': 'amount must be a positive integer'}), 400)
    if size is None:
        return None, None, (jsonify({'error': 'size must be a positive integer'}), 400)
    return amount, size, None


@app.route('/api/networks/<network_id>/train', methods=['POST'])
def train_network(network_id: str):
    """
    Start training a network in the background.

    Request body (all optional):
        {'amount': 100, 'size': 10}   # batches, samples per batch

    Returns:
        JSON with job_id, network_id, and status
    """
    amount, size, error = _training_request(network_id)
    if error:
        return error

    job_id = str(uuid.uuid4())
    training_jobs[job_id] = {
        'network_id': network_id,
        'kind': 'batches',
        'status': 'pending',
        'progress': 0,
        'amount': amount,
        'size': size
    }

    logger.info(
        f"Created training job {job_id} for network {network_id}: "
        f"amount={amount}, size={size}"
    )

    # Run training in background so we can return immediately
    socketio.start_background_task(
        train_network_task, network_id, job_id, amount, size
    )

    return jsonify({
        'job_id': job_id,
        'network_id': network_id,
        'status': 'training_started'
    }), 202


def train_network_task(
    network_id: str,
    job_id: str,
    amount: int,
    size: int
) -> None:
    """
    Background task that trains a network for a fixed number of batches.

    Sends progress updates via WebSocket as training progresses.
    """
    trainer = Trainer(active_networks[network_id]['network'], dataset)

    def on_batch_complete(data: Dict[str, Any]) -> None:
        progress = (data['batch'] / data['total_batches']) * 100

        training_jobs[job_id]['status'] = 'training'
        training_jobs[job_id]['progress'] = progress

        socketio.emit('training_update', {
            'job_id': job_id,
            'network_id': network_id,
            'batch': data['batch'],
            'total_batches': data['total_batches'],
            'elapsed_time': data['elapsed_time'],
            'progress': progress
        })

    def yield_to_other_tasks():
        gevent.sleep(0)

    try:
        logger.info(f"Starting training for job {job_id}")
        trainer.train_batches(
            amount, size,
            callback=on_batch_complete,
            yield_func=yield_to_other_tasks
        )

        score = trainer.test()
        accuracy = trainer.accuracy(score)

        active_networks[network_id]['trained'] = True
        active_networks[network_id]['accuracy'] = accuracy

        training_jobs[job_id].update({
            'status': 'completed',
            'score': score,
            'accuracy': accuracy,
            'progress': 100
        })

        save_network(
            trainer.network, network_id, app.config['MODEL_DIR'],
            trained=True, accuracy=accuracy
        )

        logger.info(f"Training completed for job {job_id}: score {score}")

        socketio.emit('training_complete', {
            'job_id': job_id,
            'network_id': network_id,
            'status': 'completed',
            'score': score,
            'accuracy': accuracy,
            'progress': 100
        })
        gevent.sleep(0)

    except Exception as e:
        logger.exception(f"Training failed for job {job_id}: {e}")

        training_jobs[job_id]['status'] = 'failed'
        training_jobs[job_id]['error'] = str(e)

        socketio.emit('training_error', {
            'job_id': job_id,
            'network_id': network_id,
            'status': 'failed',
            'error': str(e)
        })
        gevent.sleep(0)


@app.route('/api/networks/<network_id>/program', methods=['POST'])
def start_program(network_id: str):
    """
    Start a training program that keeps the best snapshot.

    Request body (all optional):
        {'name': 'run', 'amount': 100, 'size': 10, 'max_rounds': null}

    The program runs until stopped through
    ``POST /api/networks/<network_id>/program/stop`` or until
    ``max_rounds`` rounds are done.
    """
    amount, size, error = _training_request(network_id)
    if error:
        return error

    data = request.get_json(silent=True) or {}
    name = data.get('name', network_id)
    max_rounds = data.get('max_rounds')
    if not isinstance(name, str) or not name:
        return jsonify({'error': 'name must be a non-empty string'}), 400
    if max_rounds is not None and _positive_int(data, 'max_rounds', 1) is None:
        return jsonify({'error': 'max_rounds must be a positive integer'}), 400

    job_id = str(uuid.uuid4())
    training_jobs[job_id] = {
        'network_id': network_id,
        'kind': 'program',
        'status': 'pending',
        'name': name,
        'round': 0,
        'best_score': None,
        'best_id': None,
        'stop_requested': False
    }

    logger.info(
        f"Created training program {job_id} '{name}' for network "
        f"{network_id}: amount={amount}, size={size}, max_rounds={max_rounds}"
    )

    socketio.start_background_task(
        program_task, network_id, job_id, name, amount, size, max_rounds
    )

    return jsonify({
        'job_id': job_id,
        'network_id': network_id,
        'status': 'program_started'
    }), 202


def program_task(
    network_id: str,
    job_id: str,
    name: str,
    amount: int,
    size: int,
    max_rounds: Optional[int] = None
) -> None:
    """Background task running a training program until stopped."""
    job = training_jobs[job_id]
    trainer = Trainer(active_networks[network_id]['network'], dataset)

    def on_round_complete(data: Dict[str, Any]) -> None:
        job.update({
            'status': 'training',
            'round': data['round'],
            'best_score': data['best_score'],
            'best_id': data['best_id']
        })
        socketio.emit('program_update', {
            'job_id': job_id,
            'network_id': network_id,
            **data
        })
        gevent.sleep(0)

    try:
        result = trainer.train_program(
            name, amount, size,
            database=_database(),
            should_continue=lambda: not job['stop_requested'],
            max_rounds=max_rounds,
            callback=on_round_complete,
            yield_func=lambda: gevent.sleep(0)
        )

        # Rollbacks replace the network, keep the server's reference current
        accuracy = trainer.accuracy(result.best_score)
        active_networks[network_id].update(
            _network_info(trainer.network, trained=True, accuracy=accuracy)
        )

        job.update({
            'status': 'stopped' if job['stop_requested'] else 'completed',
            'round': result.rounds,
            'best_score': result.best_score,
            'best_id': result.best_id,
            'accuracy': accuracy
        })

        socketio.emit('program_complete', {
            'job_id': job_id,
            'network_id': network_id,
            'status': job['status'],
            'rounds': result.rounds,
            'best_score': result.best_score,
            'best_id': result.best_id,
            'accuracy': accuracy
        })
        gevent.sleep(0)

    except Exception as e:
        logger.exception(f"Training program {job_id} failed: {e}")
        job['status'] = 'failed'
        job['error'] = str(e)

        socketio.emit('training_error', {
            'job_id': job_id,
            'network_id': network_id,
            'status': 'failed',
            'error': str(e)
        })
        gevent.sleep(0)


@app.route('/api/networks/<network_id>/program/stop', methods=['POST'])
def stop_program(network_id: str):
    """Ask the running program of a network to stop after its current round."""
    for job_id, job in training_jobs.items():
        if (job['network_id'] == network_id and job.get('kind') == 'program'
                and job.get('status') in ACTIVE_STATUSES):
            job['stop_requested'] = True
            logger.info(f"Stop requested for training program {job_id}")
            return jsonify({'job_id': job_id, 'status': 'stopping'}), 200

    return jsonify({'error': 'No running program for this network'}), 404


@app.route('/api/training/<job_id>', methods=['GET'])
def get_training_status(job_id: str):
    """Get the current status of a training job."""
    if job_id in training_jobs:
        return jsonify(training_jobs[job_id]), 200

    logger.warning(f"Status requested for non-existent job: {job_id}")
    return jsonify({'error': 'Training job not found'}), 404


@app.route('/api/networks/<network_id>/test', methods=['GET'])
def test_network(network_id: str):
    """Count correct predictions over the test split."""
    if network_id not in active_networks:
        return jsonify({'error': 'Network not found'}), 404
    if dataset.test_size == 0:
        return jsonify({'error': 'No test data loaded'}), 400

    trainer = Trainer(active_networks[network_id]['network'], dataset)
    try:
        score = trainer.test()
    except ShapeError as e:
        return jsonify({'error': str(e)}), 400

    accuracy = trainer.accuracy(score)
    active_networks[network_id]['accuracy'] = accuracy
    return jsonify({
        'network_id': network_id,
        'score': score,
        'total': dataset.test_size,
        'accuracy': accuracy
    }), 200


# ============================================================================
# CONFIGURATION ENDPOINTS
# ============================================================================

@app.route('/api/networks/<network_id>/config', methods=['GET'])
def get_config(network_id: str):
    """Return every layer's configuration, in chain order."""
    if network_id not in active_networks:
        return jsonify({'error': 'Network not found'}), 404

    net = active_networks[network_id]['network']
    return jsonify({
        'network_id': network_id,
        'config': net.get_config(),
        'config_file': serialize_config(net)
    }), 200


@app.route('/api/networks/<network_id>/config', methods=['PUT'])
def set_config(network_id: str):
    """
    Change configuration values.

    Request body, either one value:
        {'layer': 1, 'label': 'matrix_change_speed:', 'value': 0.02}
    or a whole config side file:
        {'config_file': 'CONFIG 65536 2\\nLayer0 16 1\\n...'}
    """
    if network_id not in active_networks:
        return jsonify({'error': 'Network not found'}), 404

    net = active_networks[network_id]['network']
    data = request.get_json(silent=True) or {}

    if 'config_file' in data:
        if not isinstance(data['config_file'], str):
            return jsonify({'error': 'config_file must be text'}), 400
        applied = apply_config(net, data['config_file'])
        return jsonify({
            'network_id': network_id,
            'applied_layers': applied,
            'config': net.get_config()
        }), 200

    layer = data.get('layer')
    label = data.get('label')
    value = data.get('value')
    if (isinstance(layer, bool) or not isinstance(layer, int)
            or not isinstance(label, str)
            or isinstance(value, bool) or not isinstance(value, (int, float))):
        return jsonify({
            'error': 'layer (int), label (str) and value (number) are required'
        }), 400

    try:
        net.set_config(layer, label, value)
    except IndexError:
        return jsonify({'error': f'No layer {layer}'}), 400
    except KeyError as e:
        return jsonify({'error': str(e.args[0])}), 400

    logger.info(f"Network {network_id}: layer {layer} {label} set to {value}")
    return jsonify({
        'network_id': network_id,
        'config': net.get_config()
    }), 200


# ============================================================================
# SNAPSHOT ENDPOINTS
# ============================================================================

@app.route('/api/networks/<network_id>/save', methods=['POST'])
def save_snapshot(network_id: str):
    """
    Save a network to the snapshot store.

    Request body (optional):
        {'snapshot_id': 'my-run'}  # defaults to the network id
    """
    if network_id not in active_networks:
        return jsonify({'error': 'Network not found'}), 404

    data = request.get_json(silent=True) or {}
    snapshot_id = data.get('snapshot_id', network_id)
    info = active_networks[network_id]

    if not save_network(info['network'], snapshot_id, app.config['MODEL_DIR'],
                        trained=info['trained'], accuracy=info['accuracy']):
        return jsonify({'error': 'Failed to save network'}), 500

    return jsonify({
        'network_id': network_id,
        'snapshot_id': snapshot_id,
        'status': 'saved'
    }), 200


@app.route('/api/networks/<network_id>/load', methods=['POST'])
def load_snapshot(network_id: str):
    """
    Load a snapshot into memory under ``network_id``, replacing any network
    held there.

    Request body (optional):
        {'snapshot_id': 'run#3-9120'}  # defaults to the network id
    """
    if _network_busy(network_id):
        return jsonify({'error': 'Network is training'}), 409

    data = request.get_json(silent=True) or {}
    snapshot_id = data.get('snapshot_id', network_id)
    model_dir = app.config['MODEL_DIR']

    net = load_network(snapshot_id, model_dir)
    if net is None:
        return jsonify({'error': 'Snapshot not found'}), 404

    previous = active_networks.get(network_id, {})
    active_networks[network_id] = _network_info(
        net, previous.get('trained', True), previous.get('accuracy')
    )
    logger.info(f"Loaded snapshot '{snapshot_id}' as network {network_id}")

    return jsonify({
        'network_id': network_id,
        'snapshot_id': snapshot_id,
        'architecture': net.describe(),
        'status': 'loaded'
    }), 200


# ============================================================================
# EXAMPLE ENDPOINTS
# ============================================================================

def _find_example(network_id: str, successful: bool, max_attempts: int):
    if network_id not in active_networks:
        logger.warning(f"Example requested for non-existent network: {network_id}")
        return jsonify({'error': 'Network not found'}), 404

    if dataset.test_size == 0:
        logger.error("Test data not loaded")
        return jsonify({'error': 'Test data not available'}), 400

    net = active_networks[network_id]['network']
    trainer = Trainer(net, dataset)

    for attempt in range(max_attempts):
        index = int(np.random.randint(0, dataset.test_size))
        image = dataset.test_images[index]
        actual_digit = int(dataset.test_labels[index])

        predicted_digit = trainer.predict(image)

        if (predicted_digit == actual_digit) == successful:
            logger.debug(f"Found example on attempt {attempt + 1}")
            return jsonify({
                'network_id': network_id,
                'example_index': index,
                'predicted_digit': predicted_digit,
                'actual_digit': actual_digit,
                'image_data': create_digit_image(
                    image, dataset.image_shape, predicted_digit, actual_digit
                ),
                'network_output': array_to_float_list(
                    net.layers[-1].get_values()
                )
            }), 200

    outcome = 'successful' if successful else 'unsuccessful'
    logger.warning(f"No {outcome} example found after {max_attempts} attempts")
    return jsonify({
        'error': f'No {outcome} example found after {max_attempts} attempts'
    }), 404


@app.route('/api/networks/<network_id>/successful_example', methods=['GET'])
def get_successful_example(network_id: str):
    """Return a random test sample the network classifies correctly."""
    return _find_example(network_id, True, max_attempts=100)


@app.route('/api/networks/<network_id>/unsuccessful_example', methods=['GET'])
def get_unsuccessful_example(network_id: str):
    """Return a random test sample the network gets wrong."""
    return _find_example(network_id, False, max_attempts=200)


# ============================================================================
# SERVER STARTUP
# ============================================================================

# Under gunicorn the module is imported, never run
if is_production:
    startup()


if __name__ == '__main__':
    port = int(os.environ.get('PORT', 8000))
    logger.info(f"Starting server at http://localhost:{port}/")

    if not is_production:
        startup()

    try:
        socketio.run(
            app,
            host='0.0.0.0',
            port=port,
            debug=not is_production,
            use_reloader=False,
            allow_unsafe_werkzeug=True
        )
    except OSError as e:
        if "Address already in use" in str(e):
            logger.error(f"Port {port} is already in use.")
            sys.exit(1)
        else:
            raise
