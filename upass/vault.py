"""
upass - Vault File

Reads and writes a sealed store on disk. Writes go to a temporary file in the
same directory and are moved into place, so a crash never leaves a half
written vault.
"""

import logging
import os
import time
from typing import Union

from . import crypto, otp
from .entry import Clock
from .store import Store

logger = logging.getLogger(__name__)

PathLike = Union[str, os.PathLike]


def save_vault(path: PathLike, store: Store, password: str, **kdf_params) -> None:
    """
    Seal store under password and write it to path atomically.

    Args:
        kdf_params: Optional scrypt overrides (n, r, p) passed to crypto.seal()
    """
    sealed = crypto.seal(store.dumps(), password, **kdf_params)

    path = os.fspath(path)
    directory = os.path.dirname(path)
    if directory and not os.path.exists(directory):
        os.makedirs(directory, exist_ok=True)

    tmp_path = path + ".tmp"
    try:
        with open(tmp_path, "wb") as f:
            f.write(sealed)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
    except BaseException:
        # The tmp file holds a complete sealed vault
        if os.path.exists(tmp_path):
            os.remove(tmp_path)
        raise
    logger.info("Saved vault to %s", path)


def load_vault(path: PathLike, password: str, clock: Clock = time.time, app_tag: str = otp.APP_TAG) -> Store:
    """
    Read, unseal and decode the vault at path.

    Raises:
        FileNotFoundError: no vault at path
        SealError: wrong password or tampered file
        FormatError: decrypted contents are not a valid store
    """
    with open(path, "rb") as f:
        sealed = f.read()

    store = Store.load(crypto.unseal(sealed, password), clock=clock, app_tag=app_tag)
    logger.info("Loaded vault from %s", os.fspath(path))
    return store
