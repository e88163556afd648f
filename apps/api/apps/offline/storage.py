"""
JSON file persistence shared by the mutation log and the local store.
"""
import json
import logging
import os
import tempfile

logger = logging.getLogger(__name__)


def load_json(path, default):
    """Load a JSON document, returning default when the file does not exist yet."""
    if not path or not os.path.exists(path):
        return default
    with open(path, 'r', encoding='utf-8') as f:
        return json.load(f)


def save_json(path, data):
    """
    Write data to path atomically.

    The document is written to a sibling temp file and moved into place,
    so a crash mid-write leaves the previous version intact.
    """
    if not path:
        return
    directory = os.path.dirname(path) or '.'
    os.makedirs(directory, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=directory, prefix='.tmp-', suffix='.json')
    try:
        with os.fdopen(fd, 'w', encoding='utf-8') as f:
            json.dump(data, f, indent=2)
        os.replace(tmp_path, path)
    except (OSError, TypeError, ValueError):
        logger.error(f'Failed to persist {path}', exc_info=True)
        if os.path.exists(tmp_path):
            os.remove(tmp_path)
        raise
