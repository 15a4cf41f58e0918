import torch
import numpy as np
from typing import Optional, Union, Dict, Any
from pathlib import Path
import logging

from textdewarp.exceptions import VersionMismatchError

logger = logging.getLogger(__name__)

# Version tag written with every persisted model. No conversion between
# versions is provided; loaders reject anything else.
MODEL_VERSION = 4


def _pack(value: Any) -> Any:
    """Recursively replace numpy arrays with tensors for ``torch.save``."""
    if isinstance(value, np.ndarray):
        return torch.from_numpy(np.ascontiguousarray(value))
    if isinstance(value, dict):
        return {k: _pack(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_pack(v) for v in value]
    return value


def _unpack(value: Any) -> Any:
    """Inverse of :func:`_pack`."""
    if isinstance(value, torch.Tensor):
        return value.cpu().numpy()
    if isinstance(value, dict):
        return {k: _unpack(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_unpack(v) for v in value]
    return value


class PersistentRecord:
    """
    Base class for engine records that can be written to and read from disk.

    Subclasses provide ``to_dict``/``from_dict``; this class wraps them with
    the version tag and the torch serialization used across the package.
    """

    record_type: str = 'record'

    def to_dict(self) -> Dict[str, Any]:
        raise NotImplementedError

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'PersistentRecord':
        raise NotImplementedError

    def save(self,
             path: Union[str, Path],
             additional_info: Optional[Dict[str, Any]] = None) -> None:
        """
        Save the record with its version tag.

        Args:
            path: Path to save the record
            additional_info: Additional information to save with the record
        """
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)

        save_dict = dict(additional_info or {})
        save_dict.update({
            'version': MODEL_VERSION,
            'record_type': self.record_type,
            'record': _pack(self.to_dict()),
        })

        try:
            torch.save(save_dict, path)
            logger.info(f"Successfully saved {self.record_type} to {path}")
        except Exception as e:
            logger.error(f"Failed to save {self.record_type} to {path}: {str(e)}")
            raise

    @classmethod
    def load(cls, path: Union[str, Path]) -> 'PersistentRecord':
        """
        Load a record saved by :meth:`save`.

        Args:
            path: Path to the saved record

        Raises:
            FileNotFoundError: If the path does not exist
            VersionMismatchError: If the stored version differs from MODEL_VERSION
            ValueError: If the file holds a different record type
        """
        try:
            saved = torch.load(path, map_location='cpu', weights_only=True)
        except Exception as e:
            logger.error(f"Failed to load {cls.record_type} from {path}: {str(e)}")
            raise

        version = saved.get('version') if isinstance(saved, dict) else None
        if version != MODEL_VERSION:
            raise VersionMismatchError(version, MODEL_VERSION)
        if saved.get('record_type') != cls.record_type:
            raise ValueError(
                f"Expected a {cls.record_type} record, found {saved.get('record_type')}"
            )

        record = cls.from_dict(_unpack(saved['record']))
        logger.info(f"Successfully loaded {cls.record_type} from {path}")
        return record
