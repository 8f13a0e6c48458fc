"""
Persistence of models and job progress as gzip-compressed pickles.

Every file wraps its payload as {"version", "type", "payload"}; files written
with another SNAPSHOT_VERSION are rejected rather than half-loaded.
"""
import gzip
import os
import pickle

import config


class SnapshotError(IOError):
    pass


class SnapshotStore:

    def __init__(self, path):
        self.path = str(path)

    def save(self, obj):
        """
        Writes obj, keeping the previous file as path + '~'. The record goes to a
        temporary file first, so a failed dump leaves the existing snapshot intact.
        """
        record = {"version": config.SNAPSHOT_VERSION, "type": type(obj).__name__, "payload": obj}
        tmp = self.path + ".tmp"
        try:
            with gzip.open(tmp, "wb") as f:
                pickle.dump(record, f, protocol=pickle.HIGHEST_PROTOCOL)
        except (OSError, pickle.PicklingError, TypeError, AttributeError) as e:
            if os.path.exists(tmp):
                os.remove(tmp)
            raise SnapshotError(f"Cannot save {self.path}: {e}") from e
        if os.path.exists(self.path):
            os.replace(self.path, self.path + "~")
        os.replace(tmp, self.path)
        return self.path

    def load(self):
        if not os.path.exists(self.path):
            raise SnapshotError(f"Snapshot {self.path} does not exist")
        try:
            with gzip.open(self.path, "rb") as f:
                record = pickle.load(f)
        except (OSError, EOFError, pickle.UnpicklingError, AttributeError,
                ImportError, ValueError, TypeError) as e:
            raise SnapshotError(f"Cannot read {self.path}: {e}") from e
        if not isinstance(record, dict) or "payload" not in record:
            raise SnapshotError(f"{self.path} is not a snapshot")
        if record.get("version") != config.SNAPSHOT_VERSION:
            raise SnapshotError(f"{self.path} has version {record.get('version')}, "
                                f"expected {config.SNAPSHOT_VERSION}")
        return record["payload"]

    def exists(self):
        return os.path.exists(self.path)


def save_object(obj, path):
    return SnapshotStore(path).save(obj)


def load_object(path):
    return SnapshotStore(path).load()


def dumps(obj):
    """Bytes of a snapshot record, for objects nested inside other snapshots."""
    record = {"version": config.SNAPSHOT_VERSION, "type": type(obj).__name__, "payload": obj}
    return gzip.compress(pickle.dumps(record, protocol=pickle.HIGHEST_PROTOCOL))


def loads(data):
    try:
        record = pickle.loads(gzip.decompress(data))
    except (OSError, EOFError, pickle.UnpicklingError, AttributeError,
            ImportError, ValueError, TypeError) as e:
        raise SnapshotError(f"Cannot restore nested object: {e}") from e
    if not isinstance(record, dict) or record.get("version") != config.SNAPSHOT_VERSION:
        raise SnapshotError("Nested object has an incompatible version")
    return record["payload"]
