"""The ACL policy document: extraction from a ConfigMap and the persisted file."""

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any

from kubernetes.client import V1ConfigMap

from .exceptions import PolicyDocumentError

logger = logging.getLogger(__name__)

POLICY_KEY = "acl.json"
POLICY_FILE_NAME = "acl.json"
EMPTY_DOCUMENT = "{}"


def extract_policy(config_map: V1ConfigMap) -> Any:
    """
    Extract the policy document from a ConfigMap.

    Args:
        config_map: Source ConfigMap

    Returns:
        The decoded document (``{}`` if the key is absent)

    Raises:
        PolicyDocumentError: If the document is not valid JSON
    """
    content = (config_map.data or {}).get(POLICY_KEY, EMPTY_DOCUMENT)
    try:
        return json.loads(content)
    except json.JSONDecodeError as e:
        raise PolicyDocumentError(f"{POLICY_KEY} is not valid JSON: {e}") from e


class PolicyFile:
    """The policy file Headscale reads, owned exclusively by this process."""

    def __init__(self, mount_path: Path):
        self.path = Path(mount_path) / POLICY_FILE_NAME

    def read(self) -> Any:
        """
        Read the persisted document.

        Raises:
            OSError: If the file cannot be read
            ValueError: If the file is not valid JSON
        """
        return json.loads(self.path.read_text())

    def changed(self, document: Any) -> bool:
        """
        Compare a document with the persisted one.

        Comparison is structural, so formatting and key order do not matter.
        A missing or unreadable file always counts as changed.

        Args:
            document: Candidate document

        Returns:
            True if the document differs from the persisted one
        """
        try:
            current = self.read()
        except FileNotFoundError:
            return True
        except (OSError, ValueError) as e:
            logger.warning(f"Unable to read {self.path}, rewriting it: {e}")
            return True
        return current != document

    def write(self, document: Any) -> None:
        """
        Replace the persisted document atomically.

        Args:
            document: Document to persist
        """
        content = json.dumps(document)
        self.path.parent.mkdir(parents=True, exist_ok=True)

        fd, tmp_path = tempfile.mkstemp(dir=self.path.parent, prefix=".acl-", suffix=".tmp")
        try:
            with os.fdopen(fd, "w") as f:
                f.write(content)
                f.flush()
                os.fsync(f.fileno())
            os.chmod(tmp_path, 0o644)
            os.replace(tmp_path, self.path)
        except BaseException:
            Path(tmp_path).unlink(missing_ok=True)
            raise

        logger.debug(f"Wrote {len(content)} bytes to {self.path}")
