from __future__ import annotations

import os
from pathlib import Path
from typing import Union

from dotenv import find_dotenv, load_dotenv


PathLike = Union[str, Path]

ENV_FILE_VARIABLE = "CRAWLER_ENV_FILE"


def load_environment(dotenv_path: PathLike | None = None, *, override: bool = False) -> bool:
    """Load crawler settings from a .env file into ``os.environ``.

    Args:
        dotenv_path: Explicit path to the .env file. Falls back to
            ``$CRAWLER_ENV_FILE``, then to the first .env found walking up
            from the current working directory.
        override: Whether to overwrite variables that are already set.

    Returns:
        True if an env file was found and loaded, otherwise False.
    """

    path = dotenv_path or os.getenv(ENV_FILE_VARIABLE)
    if not path:
        path = find_dotenv(usecwd=True)

    if not path or not Path(path).is_file():
        return False

    return load_dotenv(dotenv_path=path, override=override)
